"""
Classe de base pour tous les modules de collecte de l'agent ReportMate

Un module déclare une liste ordonnée de sous-collecteurs indépendants.
Ils sont exécutés en parallèle par ConcurrentFanOut, puis le module
met en forme les résultats joints.
"""

import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..core.engine import FallbackAcquisitionEngine, Query
from ..core.errors import NoBackendSucceeded
from ..core.fanout import CollectionTask, ConcurrentFanOut, ProgressCallback
from ..core.records import NormalizedRecord


class ModuleData:
    """
    Données produites par un module pour un cycle

    Attributes:
        module_id: Identifiant du module (clé dans le payload)
        data: Champs dans l'ordre déclaré
        warnings: Avertissements des sous-collecteurs en échec
    """

    def __init__(self, module_id: str, data: Dict[str, Any], warnings: Optional[List[str]] = None,
                 collected_at: Optional[str] = None, duration_seconds: float = 0.0):
        self.module_id = module_id
        self.data = data
        self.warnings = list(warnings or [])
        self.collected_at = collected_at or datetime.now(timezone.utc).isoformat()
        self.duration_seconds = duration_seconds

    def to_dict(self) -> Dict[str, Any]:
        """
        Sérialise le module

        Returns:
            dict: {moduleId, data} et warnings si présents
        """
        result = {
            'moduleId': self.module_id,
            'collectedAt': self.collected_at,
            'data': self.data
        }
        if self.warnings:
            result['warnings'] = list(self.warnings)
        return result

    def __repr__(self) -> str:
        return f"<ModuleData(module_id={self.module_id!r}, fields={len(self.data)}, warnings={len(self.warnings)})>"


class ModuleCollector(ABC):
    """
    Classe de base abstraite pour tous les modules de collecte

    Les sous-classes définissent `module_id` et implémentent
    `declare_tasks()`. Elles peuvent surcharger `assemble()` pour
    dériver des champs après la jonction.
    """

    module_id: str = ""

    def __init__(self, config, logger, engine: FallbackAcquisitionEngine):
        """
        Initialise le module

        Args:
            config: Instance de AgentConfig
            logger: Instance de AgentLogger
            engine: Moteur d'acquisition partagé par les sous-collecteurs
        """
        self.config = config
        self.logger = logger
        self.engine = engine

        self.collector_name = self.__class__.__name__
        self.collection_start_time = None
        self.last_collection_duration = 0.0
        self.last_warnings: List[str] = []

    @abstractmethod
    def declare_tasks(self) -> List[CollectionTask]:
        """
        Déclare les sous-collecteurs du module, dans l'ordre des champs

        Returns:
            list: Tâches à exécuter en parallèle
        """

    def assemble(self, results: Dict[str, Any]) -> Dict[str, Any]:
        """
        Met en forme les résultats joints (identité par défaut)

        Args:
            results: Résultats des sous-collecteurs, dans l'ordre déclaré

        Returns:
            dict: Données finales du module
        """
        return results

    def validate_data(self, data: Dict[str, Any]) -> bool:
        """
        Vérifie que les données du module sont exploitables

        Args:
            data: Données assemblées

        Returns:
            bool: True si au moins un champ est présent
        """
        return isinstance(data, dict) and len(data) > 0

    async def collect_data(self, progress: Optional[ProgressCallback] = None) -> ModuleData:
        """
        Collecte complète du module : exécution parallèle, jonction, assemblage

        Args:
            progress: Callback de progression (completed, total, name)

        Returns:
            ModuleData: Données du module

        Raises:
            ModuleCollectionError: Un sous-collecteur essentiel a échoué
        """
        self._start_collection()
        collected_at = datetime.now(timezone.utc).isoformat()

        fan_out = ConcurrentFanOut(self.module_id, progress=progress)
        joined = await fan_out.run(self.declare_tasks())

        data = self.assemble(joined.data)
        if not self.validate_data(data):
            self.logger.warning(f"Module {self.module_id}: données vides ou invalides")

        self.last_warnings = list(joined.warnings)
        duration = self._end_collection()

        return ModuleData(
            self.module_id, data,
            warnings=joined.warnings,
            collected_at=collected_at,
            duration_seconds=round(duration, 3)
        )

    def task(self, name: str, factory, default: Any = None, essential: bool = False) -> CollectionTask:
        """Raccourci de construction d'une CollectionTask"""
        return CollectionTask(name, factory, default=default, essential=essential)

    async def query(self, osquery: Optional[str] = None, bash: Optional[str] = None,
                    python: Optional[str] = None, timeout: Optional[float] = None) -> NormalizedRecord:
        """
        Résout une question logique via le moteur de fallback

        Args:
            osquery: Requête SQL osquery
            bash: Script bash
            python: Script python
            timeout: Timeout spécifique (sinon celui de la configuration)

        Raises:
            NoBackendSucceeded: Aucun backend n'a réussi
        """
        return await self.engine.resolve(Query.build(osquery=osquery, bash=bash, python=python), timeout=timeout)

    async def query_or_none(self, osquery: Optional[str] = None, bash: Optional[str] = None,
                            python: Optional[str] = None) -> Optional[NormalizedRecord]:
        """Comme query(), mais retourne None si aucun backend n'a réussi"""
        try:
            return await self.query(osquery=osquery, bash=bash, python=python)
        except NoBackendSucceeded as e:
            self.logger.debug(f"Module {self.module_id}: requête secondaire sans résultat ({e})")
            return None

    def _start_collection(self):
        """Démarre le chronométrage de la collecte"""
        self.collection_start_time = time.time()
        self.logger.debug(f"Début collecte {self.module_id}")

    def _end_collection(self) -> float:
        """
        Termine le chronométrage

        Returns:
            float: Durée de collecte en secondes
        """
        if not self.collection_start_time:
            return 0.0

        duration = time.time() - self.collection_start_time
        self.last_collection_duration = duration
        self.logger.debug(f"Collecte {self.module_id} terminée en {duration:.2f}s")

        if self.last_warnings:
            self.logger.warning(f"Collecte {self.module_id} avec {len(self.last_warnings)} avertissement(s)")

        return duration

    def get_collection_stats(self) -> Dict[str, Any]:
        """
        Retourne les statistiques de la dernière collecte

        Returns:
            dict: Statistiques du module
        """
        return {
            'module_id': self.module_id,
            'collector_name': self.collector_name,
            'collection_duration': self.last_collection_duration,
            'warnings_count': len(self.last_warnings),
            'warnings': list(self.last_warnings)
        }
