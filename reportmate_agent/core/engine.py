"""
Moteur d'acquisition avec fallback multi-backend

Pour une question logique, jusqu'à un programme par type de backend est
fourni. Les programmes sont essayés dans l'ordre ; le premier qui s'exécute
avec succès fournit le résultat, en entier. Les résultats de deux tiers ne
sont jamais fusionnés.
"""

import json
import logging
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .backends import BackendKind, ExecutionBackend
from .errors import BackendError, NoBackendSucceeded
from .records import NormalizedRecord

logger = logging.getLogger("ReportMateAgent")


class Query:
    """
    Liste ordonnée de (type de backend, programme)

    Au plus un programme par type. Un programme absent (None ou vide)
    est ignoré.
    """

    def __init__(self, steps: Optional[Iterable[Tuple[BackendKind, Optional[str]]]] = None):
        self.steps: List[Tuple[BackendKind, str]] = []
        seen = set()

        for kind, program in steps or []:
            if kind in seen:
                raise ValueError(f"Backend déclaré deux fois dans la requête: {kind.value}")
            seen.add(kind)
            if program:
                self.steps.append((kind, program))

    @classmethod
    def build(cls, osquery: Optional[str] = None, bash: Optional[str] = None,
              python: Optional[str] = None) -> "Query":
        """
        Construit une requête dans l'ordre de priorité osquery, bash, python

        Args:
            osquery: Requête SQL osquery
            bash: Script bash
            python: Script python

        Returns:
            Query: Requête prête à être résolue
        """
        return cls([
            (BackendKind.OSQUERY, osquery),
            (BackendKind.BASH, bash),
            (BackendKind.PYTHON, python),
        ])

    def __iter__(self) -> Iterator[Tuple[BackendKind, str]]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def kinds(self) -> List[BackendKind]:
        return [kind for kind, _ in self.steps]


def normalize_output(text: str) -> NormalizedRecord:
    """
    Convertit une sortie de backend en NormalizedRecord

    Règles (déterministes) :
    - objet JSON -> enregistrement unique
    - tableau JSON -> {"items": tableau}
    - sortie vide -> {"items": []} (aucune ligne)
    - tout autre texte -> {"output": texte brut}

    Args:
        text: Sortie standard décodée

    Returns:
        NormalizedRecord: Résultat normalisé
    """
    stripped = text.strip()
    if not stripped:
        return NormalizedRecord.from_items([])

    try:
        parsed = json.loads(stripped)
    except ValueError:
        return NormalizedRecord.raw_output(text)

    if isinstance(parsed, dict):
        return NormalizedRecord.single(parsed)
    if isinstance(parsed, list):
        return NormalizedRecord.from_items(parsed)

    # Scalaire JSON isolé : conserver le texte tel quel
    return NormalizedRecord.raw_output(text)


class FallbackAcquisitionEngine:
    """
    Résout une Query en essayant les backends par ordre de priorité

    Un tier qui réussit avec zéro ligne est une donnée valide : seul un
    échec d'exécution déclenche le passage au tier suivant.
    """

    def __init__(self, backends: Dict[BackendKind, ExecutionBackend]):
        """
        Args:
            backends: Registre des backends disponibles par type
        """
        self.backends = backends

    async def resolve(self, query: Query, timeout: Optional[float] = None) -> NormalizedRecord:
        """
        Exécute la requête et normalise la première sortie réussie

        Args:
            query: Programmes candidats ordonnés
            timeout: Timeout de chaque tier (sinon celui du backend)

        Returns:
            NormalizedRecord: Résultat du premier tier réussi

        Raises:
            NoBackendSucceeded: Tous les tiers ont échoué, ou aucun n'est déclaré
        """
        attempts: List[Tuple[str, BackendError]] = []

        for kind, program in query:
            backend = self.backends.get(kind)
            if backend is None:
                logger.debug(f"Aucun backend enregistré pour {kind.value}, tier ignoré")
                continue

            try:
                output = await backend.execute(program, timeout=timeout)
            except BackendError as e:
                logger.debug(f"Tier {kind.value} en échec ({type(e).__name__}): {e}")
                attempts.append((kind.value, e))
                continue

            if attempts:
                logger.debug(f"Résultat obtenu via {kind.value} après {len(attempts)} échec(s)")

            return normalize_output(output)

        raise NoBackendSucceeded(attempts)
