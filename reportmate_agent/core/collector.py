"""
Service de collecte principal de l'agent ReportMate

Ce module orchestre un cycle de collecte :
- Instanciation des modules activés
- Exécution concurrente des modules (l'échec d'un module n'arrête pas les autres)
- Assemblage du payload unifié envoyé à l'API
"""

import sys
import time
import socket
import asyncio
import platform
from datetime import datetime, timezone
from typing import Dict, Any, List, Optional

from .. import __version__
from .backends import BackendKind, ExecutionBackend, create_backends
from .engine import FallbackAcquisitionEngine
from .executor import Executor
from .fanout import ProgressCallback
from ..collectors import MODULE_REGISTRY
from ..collectors.applications import ApplicationsCollector
from ..collectors.base import ModuleCollector, ModuleData
from ..services.usage import ApplicationUsageService


class CollectionRun:
    """
    Résultat d'un cycle de collecte

    Attributes:
        modules: ModuleData par identifiant, dans l'ordre demandé
        failures: Raison de l'échec par identifiant de module
        collection_type: "full" ou "partial"
        usage_session_ids: Sessions d'utilisation lues par ce cycle
    """

    def __init__(self, collection_type: str = "full"):
        self.modules: Dict[str, ModuleData] = {}
        self.failures: Dict[str, str] = {}
        self.collection_type = collection_type
        self.started_at = datetime.now(timezone.utc)
        self.duration_seconds = 0.0
        self.usage_session_ids: List[int] = []

    @property
    def succeeded(self) -> bool:
        return bool(self.modules)

    def warnings(self) -> List[str]:
        """Avertissements du cycle : modules en échec puis champs par défaut"""
        messages = [f"{module_id}: {reason}" for module_id, reason in self.failures.items()]
        for module_id, module in self.modules.items():
            messages.extend(f"{module_id}.{warning}" for warning in module.warnings)
        return messages


class DataCollectionService:
    """
    Service principal qui orchestre la collecte de tous les modules

    Le moteur d'acquisition et les backends sont partagés par tous les
    modules d'un cycle. Aucune donnée n'est conservée d'un cycle à l'autre.
    """

    def __init__(self, config, logger, backends: Optional[Dict[BackendKind, ExecutionBackend]] = None,
                 executor: Optional[Executor] = None, usage_service: Optional[ApplicationUsageService] = None):
        """
        Initialise le service de collecte

        Args:
            config: Instance de AgentConfig
            logger: Instance de AgentLogger
            backends: Registre de backends (créé depuis la configuration si absent)
            executor: Exécuteur de processus passé aux backends créés
            usage_service: Service d'utilisation des applications
        """
        self.config = config
        self.logger = logger.get_logger()

        self.backends = backends if backends is not None else create_backends(config, executor)
        self.engine = FallbackAcquisitionEngine(self.backends)

        collection = config.get_collection_config()
        self.usage_service = usage_service or ApplicationUsageService(
            db_path=collection['usage_db_path'],
            lookback_hours=collection['usage_lookback_hours']
        )

        self.last_run: Optional[CollectionRun] = None

    def enabled_modules(self) -> List[str]:
        """
        Retourne les modules activés connus, dans l'ordre de la configuration

        Returns:
            list: Identifiants de modules
        """
        enabled = []
        for module_id in self.config.get_agent_config()['enabled_modules']:
            if module_id in MODULE_REGISTRY:
                enabled.append(module_id)
            else:
                self.logger.warning(f"Module inconnu ignoré: {module_id}")
        return enabled

    def create_module(self, module_id: str) -> ModuleCollector:
        """
        Instancie un module de collecte

        Args:
            module_id: Identifiant du module

        Returns:
            ModuleCollector: Instance prête à collecter

        Raises:
            KeyError: Module inconnu
        """
        module_class = MODULE_REGISTRY[module_id]
        if module_class is ApplicationsCollector:
            return module_class(self.config, self.logger, self.engine, usage_service=self.usage_service)
        return module_class(self.config, self.logger, self.engine)

    async def _collect_module(self, run: CollectionRun, module_id: str,
                              progress: Optional[ProgressCallback]) -> ModuleData:
        module = self.create_module(module_id)

        def module_progress(completed: int, total: int, name: str):
            if progress:
                progress(completed, total, f"{module_id}.{name}")

        data = await module.collect_data(progress=module_progress)
        if isinstance(module, ApplicationsCollector):
            run.usage_session_ids.extend(module.usage_session_ids)
        return data

    async def collect_modules(self, module_ids: List[str], progress: Optional[ProgressCallback] = None,
                              collection_type: str = "full") -> CollectionRun:
        """
        Collecte plusieurs modules en parallèle

        Args:
            module_ids: Modules à collecter (l'ordre est conservé)
            progress: Callback de progression des sous-collecteurs
            collection_type: Type de collecte reporté dans les métadonnées

        Returns:
            CollectionRun: Modules collectés et modules en échec
        """
        run = CollectionRun(collection_type)
        start_time = time.time()
        self.logger.info(f"=== Début de collecte: {', '.join(module_ids)} ===")

        launched = [
            (module_id, asyncio.ensure_future(self._collect_module(run, module_id, progress)))
            for module_id in module_ids
        ]

        for module_id, running in launched:
            try:
                run.modules[module_id] = await running
                self.logger.info(f"Module {module_id} collecté")
            except Exception as e:
                reason = str(e) or type(e).__name__
                run.failures[module_id] = reason
                self.logger.error(f"Échec du module {module_id}: {reason}")

        run.duration_seconds = round(time.time() - start_time, 2)
        self.logger.info(f"Collecte terminée en {run.duration_seconds:.2f} secondes "
                         f"({len(run.modules)} module(s), {len(run.failures)} échec(s))")

        self.last_run = run
        return run

    async def collect_all_modules(self, progress: Optional[ProgressCallback] = None) -> CollectionRun:
        """Collecte tous les modules activés"""
        return await self.collect_modules(self.enabled_modules(), progress=progress)

    async def collect_specific_modules(self, module_ids: List[str],
                                       progress: Optional[ProgressCallback] = None) -> CollectionRun:
        """
        Collecte uniquement les modules demandés

        Args:
            module_ids: Identifiants demandés (les inconnus sont ignorés avec un avertissement)
        """
        known = []
        for module_id in module_ids:
            if module_id in MODULE_REGISTRY:
                if module_id not in known:
                    known.append(module_id)
            else:
                self.logger.warning(f"Module inconnu ignoré: {module_id}")
        return await self.collect_modules(known, progress=progress, collection_type="partial")

    def run_collection(self, module_ids: Optional[List[str]] = None,
                       progress: Optional[ProgressCallback] = None) -> CollectionRun:
        """
        Exécute un cycle de collecte depuis du code synchrone

        Args:
            module_ids: Modules demandés (tous les modules activés si None)
            progress: Callback de progression des sous-collecteurs

        Returns:
            CollectionRun: Résultat du cycle
        """
        if module_ids:
            return asyncio.run(self.collect_specific_modules(module_ids, progress=progress))
        return asyncio.run(self.collect_all_modules(progress=progress))

    def build_unified_payload(self, run: CollectionRun) -> Dict[str, Any]:
        """
        Construit le payload envoyé à l'API

        Args:
            run: Résultat du cycle de collecte

        Returns:
            dict: {metadata, events, modules, <moduleId>: data...}
        """
        serial_number = self._find_serial_number(run)
        device_id = self.config.get('agent', 'device_id', '') or serial_number or socket.gethostname()

        payload: Dict[str, Any] = {
            'metadata': {
                'deviceId': device_id,
                'serialNumber': serial_number,
                'collectedAt': run.started_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
                'clientVersion': __version__,
                'platform': get_platform_name(),
                'collectionType': run.collection_type,
                'enabledModules': list(run.modules.keys()),
                'collectionDurationSeconds': run.duration_seconds,
                'warnings': run.warnings(),
            },
            'events': [],
            'modules': {module_id: module.to_dict() for module_id, module in run.modules.items()},
        }

        for module_id, module in run.modules.items():
            payload[module_id] = module.data

        return payload

    def _find_serial_number(self, run: CollectionRun) -> str:
        hardware = run.modules.get('hardware')
        if hardware:
            serial = (hardware.data.get('system') or {}).get('serialNumber')
            if serial:
                return serial

        inventory = run.modules.get('inventory')
        if inventory:
            return inventory.data.get('serialNumber', '')

        return ''

    def confirm_transmission(self, run: Optional[CollectionRun] = None):
        """
        Purge les sessions d'utilisation après un envoi réussi

        Args:
            run: Cycle dont le payload a été envoyé (None pour un payload
                 relu depuis un fichier : seules les lignes déjà marquées sont purgées)
        """
        session_ids = run.usage_session_ids if run is not None else []
        return self.usage_service.confirm_transmission(session_ids)

    def get_collection_summary(self) -> Dict[str, Any]:
        """
        Retourne un résumé du dernier cycle

        Returns:
            dict: Résumé pour les logs et l'interface web
        """
        if not self.last_run:
            return {'status': 'no_collection'}

        return {
            'status': 'success' if self.last_run.succeeded else 'failed',
            'collected_at': self.last_run.started_at.isoformat(),
            'duration_seconds': self.last_run.duration_seconds,
            'modules': {
                module_id: {
                    'fields': len(module.data),
                    'warnings': len(module.warnings),
                    'duration_seconds': module.duration_seconds
                }
                for module_id, module in self.last_run.modules.items()
            },
            'failures': dict(self.last_run.failures)
        }


def get_platform_name() -> str:
    """Nom de plateforme reporté à l'API"""
    if sys.platform == "darwin":
        return "macOS"
    return platform.system() or sys.platform
