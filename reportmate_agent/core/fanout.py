"""
Exécution concurrente des sous-collecteurs d'un module

Les tâches sont lancées immédiatement et en parallèle, puis attendues
dans l'ordre déclaré par le module : l'ordre des clés du résultat est
stable quel que soit l'ordre de fin d'exécution.
"""

import asyncio
import copy
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from .errors import ModuleCollectionError

logger = logging.getLogger("ReportMateAgent")

ProgressCallback = Callable[[int, int, str], None]


class CollectionTask:
    """
    Sous-collecteur nommé, exécuté indépendamment des autres

    Attributes:
        name: Clé du champ produit dans les données du module
        factory: Fonction retournant la coroutine à exécuter
        default: Valeur utilisée si la tâche échoue (champ optionnel)
        essential: Si True, un échec fait échouer tout le module
    """

    def __init__(self, name: str, factory: Callable[[], Awaitable[Any]],
                 default: Any = None, essential: bool = False):
        self.name = name
        self.factory = factory
        self.default = default
        self.essential = essential

    def default_value(self) -> Any:
        # Copie pour ne jamais partager un défaut mutable entre deux collectes
        return copy.deepcopy(self.default)

    def __repr__(self) -> str:
        return f"<CollectionTask(name={self.name!r}, essential={self.essential})>"


class FanOutResult:
    """Résultat joint : données ordonnées et avertissements"""

    def __init__(self, data: Dict[str, Any], warnings: List[str]):
        self.data = data
        self.warnings = warnings


class ConcurrentFanOut:
    """
    Lance les tâches d'un module en parallèle et joint leurs résultats

    L'échec d'une tâche n'annule jamais les autres : l'exception est
    capturée au point de jonction et convertie en valeur par défaut
    accompagnée d'un avertissement.
    """

    def __init__(self, module_id: str, progress: Optional[ProgressCallback] = None):
        self.module_id = module_id
        self.progress = progress

    async def run(self, tasks: List[CollectionTask]) -> FanOutResult:
        """
        Exécute toutes les tâches et joint les résultats

        Args:
            tasks: Tâches dans l'ordre déclaré des champs

        Returns:
            FanOutResult: Données dans l'ordre déclaré et avertissements

        Raises:
            ModuleCollectionError: Une tâche essentielle a échoué (après la fin de toutes les tâches)
        """
        total = len(tasks)
        completed = 0

        def on_done(name: str):
            def callback(_future):
                nonlocal completed
                completed += 1
                if self.progress:
                    try:
                        self.progress(completed, total, name)
                    except Exception as e:
                        logger.debug(f"Erreur dans le suivi de progression: {e}")
            return callback

        launched: List[Tuple[CollectionTask, asyncio.Task]] = []
        for task in tasks:
            running = asyncio.ensure_future(task.factory())
            running.add_done_callback(on_done(task.name))
            launched.append((task, running))

        data: Dict[str, Any] = {}
        warnings: List[str] = []
        essential_failure: Optional[ModuleCollectionError] = None

        for task, running in launched:
            try:
                data[task.name] = await running
            except Exception as e:
                reason = str(e) or type(e).__name__
                if task.essential:
                    logger.error(f"[{self.module_id}] Champ essentiel '{task.name}' en échec: {reason}")
                    if essential_failure is None:
                        essential_failure = ModuleCollectionError(self.module_id, task.name, e)
                    continue

                logger.warning(f"[{self.module_id}] '{task.name}' indisponible, valeur par défaut utilisée: {reason}")
                data[task.name] = task.default_value()
                warnings.append(f"{task.name}: {reason}")

        if essential_failure is not None:
            raise essential_failure

        return FanOutResult(data, warnings)
