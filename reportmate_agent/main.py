"""
Point d'entrée principal de l'agent ReportMate

Ce module orchestre tous les composants de l'agent et peut être exécuté
de différentes manières selon les besoins :
- run : un cycle complet (collecte puis envoi)
- collect : collecte seule, JSON sur stdout ou dans un fichier
- transmit : envoi d'un payload déjà collecté
- test : vérification des backends, d'une collecte et de la connexion
- info : informations sur la machine et la configuration
- service : cycles périodiques en arrière-plan
- web : interface web locale seule
"""

import os
import sys
import json
import signal
import argparse
import threading
import platform
from typing import Any, Dict, List, Optional, Tuple

import psutil

from . import __version__
from .core.backends import BackendKind
from .core.collector import CollectionRun, DataCollectionService, get_platform_name
from .core.config import AgentConfig, create_default_config
from .core.errors import BackendError
from .core.fanout import ProgressCallback
from .core.logger import AgentLogger, verbosity_to_level
from .core.scheduler import CollectionScheduler
from .core.sender import ReportSender
from .web.app import ReportWebApp

# Programme trivial par backend, pour le mode test
BACKEND_PROBES = {
    BackendKind.OSQUERY: "SELECT 1 AS ok;",
    BackendKind.BASH: "echo '{\"ok\": 1}'",
    BackendKind.PYTHON: "print('{\"ok\": 1}')",
}


class ReportMateAgent:
    """
    Agent ReportMate principal

    Cette classe assemble la configuration, le logging, le service de
    collecte et l'envoi, et gère les différents modes de fonctionnement.
    """

    def __init__(self, config: AgentConfig, logger: AgentLogger):
        """
        Initialise l'agent

        Args:
            config: Configuration chargée
            logger: Logger configuré
        """
        self.config = config
        self.logger = logger
        self.app_logger = logger.get_logger()

        self.collector = DataCollectionService(config, logger)
        self.sender = ReportSender(config, logger)
        self.scheduler: Optional[CollectionScheduler] = None
        self.web_app: Optional[ReportWebApp] = None

        self.running = False
        self.shutdown_event = threading.Event()

    def collect_run(self, module_ids: Optional[List[str]] = None,
                    progress: Optional[ProgressCallback] = None) -> Tuple[CollectionRun, Dict[str, Any]]:
        """
        Effectue une collecte et construit le payload

        Args:
            module_ids: Modules demandés (tous les modules activés si None)
            progress: Callback de progression des sous-collecteurs

        Returns:
            tuple: (CollectionRun, payload unifié)
        """
        run = self.collector.run_collection(module_ids, progress=progress)
        return run, self.collector.build_unified_payload(run)

    def collect(self, module_ids: Optional[List[str]] = None,
                progress: Optional[ProgressCallback] = None) -> Dict[str, Any]:
        """Effectue une collecte et retourne uniquement le payload"""
        return self.collect_run(module_ids, progress=progress)[1]

    def transmit(self, payload: Dict[str, Any], run: Optional[CollectionRun] = None):
        """
        Envoie un payload et purge les sessions d'utilisation en cas de succès

        Args:
            payload: Payload unifié
            run: Cycle qui a produit le payload (None s'il est relu depuis un fichier)

        Returns:
            tuple: (success, message)
        """
        success, message = self.sender.send_report(payload)
        if success:
            self.collector.confirm_transmission(run)
        return success, message

    def run_cycle(self, module_ids: Optional[List[str]] = None):
        """
        Cycle complet : collecte puis envoi

        Returns:
            tuple: (success, message)
        """
        self.app_logger.info("=== Début du cycle de collecte et envoi ===")
        run, payload = self.collect_run(module_ids)

        if not payload['modules']:
            message = "Aucun module collecté, envoi annulé"
            self.app_logger.error(message)
            return False, message

        success, message = self.transmit(payload, run)
        if success:
            self.app_logger.info(f"Cycle terminé avec succès: {message}")
        else:
            self.app_logger.error(f"Erreur lors de l'envoi: {message}")
        return success, message

    def _scheduled_cycle(self):
        self.run_cycle()

    def run_service_mode(self):
        """
        Lance l'agent en mode service

        Démarre le scheduler, l'interface web si activée, et attend un
        signal d'arrêt.
        """
        self.app_logger.info(f"Démarrage de l'agent ReportMate {__version__} en mode service")
        self.logger.log_config_info(self.config)
        self._setup_signal_handlers()

        self.scheduler = CollectionScheduler(self.config, self.logger, self._scheduled_cycle)
        self.scheduler.start()

        web_config = self.config.get_web_config()
        if web_config['enabled']:
            self.web_app = ReportWebApp(
                self.config, self.logger, self.collector, self.sender, scheduler=self.scheduler
            )
            threading.Thread(
                target=self.web_app.run,
                name="WebInterface",
                daemon=True
            ).start()

        self.running = True
        self.app_logger.info("✅ Agent ReportMate démarré")

        try:
            while self.running and not self.shutdown_event.is_set():
                self.shutdown_event.wait(timeout=1.0)
        except KeyboardInterrupt:
            self.app_logger.info("Interruption clavier détectée")
        finally:
            self.shutdown()

    def run_web_only_mode(self):
        """Lance seulement l'interface web"""
        self.web_app = ReportWebApp(self.config, self.logger, self.collector, self.sender)
        self.web_app.run()

    def _setup_signal_handlers(self):
        def signal_handler(signum, frame):
            self.app_logger.info(f"Signal {signal.Signals(signum).name} reçu - Arrêt en cours...")
            self.shutdown()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

    def shutdown(self):
        """Arrête proprement les composants de l'agent"""
        if not self.running:
            return

        self.app_logger.info("🛑 Arrêt de l'agent ReportMate...")
        self.running = False
        self.shutdown_event.set()

        if self.scheduler:
            self.scheduler.stop()
            self.scheduler = None

        self.app_logger.info("✅ Agent ReportMate arrêté proprement")

    def probe_backends(self) -> Dict[str, str]:
        """
        Vérifie chaque backend avec un programme trivial

        Returns:
            dict: "ok" ou le message d'erreur, par backend
        """
        import asyncio

        async def probe_all():
            results = {}
            for kind, backend in self.collector.backends.items():
                try:
                    await backend.execute(BACKEND_PROBES[kind])
                    results[kind.value] = "ok"
                except BackendError as e:
                    results[kind.value] = str(e)
            return results

        return asyncio.run(probe_all())

    def get_system_info(self) -> Dict[str, Any]:
        """
        Informations de base sur la machine et l'agent

        Returns:
            dict: Plateforme, ressources et configuration effective
        """
        memory = psutil.virtual_memory()
        agent_config = self.config.get_agent_config()
        return {
            'client_version': __version__,
            'platform': get_platform_name(),
            'os_release': platform.release(),
            'architecture': platform.machine(),
            'hostname': platform.node(),
            'cpu_count': psutil.cpu_count(logical=True),
            'memory_total': memory.total,
            'python_version': platform.python_version(),
            'config_file': self.config.config_file,
            'api_url': self.config.get('server', 'api_url', ''),
            'device_id': agent_config['device_id'],
            'enabled_modules': agent_config['enabled_modules'],
            'collection_interval': agent_config['collection_interval'],
        }


def parse_module_list(value: Optional[str]) -> Optional[List[str]]:
    """Découpe la liste --run-modules (séparée par des virgules)"""
    if not value:
        return None
    modules = [item.strip() for item in value.split(',') if item.strip()]
    return modules or None


def console_progress(completed: int, total: int, name: str):
    """Affiche l'avancement d'un sous-collecteur sur stderr"""
    percentage = int(completed / total * 100) if total else 100
    print(f"   [{completed:02d}/{total:02d}] {percentage:3d}% {name}", file=sys.stderr)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='reportmate-agent',
        description='Agent ReportMate - Collecte d\'inventaire et de télémétrie'
    )

    parser.add_argument(
        '--mode', '-m',
        choices=['run', 'collect', 'transmit', 'test', 'info', 'service', 'web'],
        default='run',
        help='Mode de fonctionnement de l\'agent'
    )
    parser.add_argument('--config', '-c', type=str, help='Chemin vers le fichier de configuration')
    parser.add_argument('--run-modules', type=str, help='Modules à collecter, séparés par des virgules')
    parser.add_argument('--output', '-o', type=str, help='Fichier de sortie du payload (mode collect)')
    parser.add_argument('--input', '-i', type=str, help='Fichier de payload à envoyer (mode transmit)')
    parser.add_argument('--api-url', type=str, help='URL de l\'API (prioritaire sur la configuration)')
    parser.add_argument('--device-id', type=str, help='Identifiant de l\'appareil')
    parser.add_argument('--create-config', action='store_true', help='Crée un fichier de configuration par défaut')
    parser.add_argument('--validate-config', action='store_true', help='Valide la configuration actuelle')
    parser.add_argument('--verbose', '-v', action='count', default=0, help='Augmente la verbosité (-v, -vv)')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Point d'entrée principal avec gestion des arguments de ligne de commande

    Returns:
        int: Code de sortie
    """
    args = build_parser().parse_args(argv)

    if args.create_config:
        if not args.config:
            print("❌ --config est requis avec --create-config")
            return 1
        try:
            create_default_config(args.config)
            print(f"✅ Configuration par défaut créée: {args.config}")
            return 0
        except OSError as e:
            print(f"❌ Erreur création configuration: {e}")
            return 1

    config = AgentConfig(args.config)
    if args.api_url:
        config.set('server', 'api_url', args.api_url)
    if args.device_id:
        config.set('agent', 'device_id', args.device_id)

    if args.validate_config:
        if config.validate():
            print("✅ Configuration valide")
            return 0
        print("❌ Configuration invalide")
        return 1

    logger = AgentLogger(config, level=verbosity_to_level(args.verbose))
    modules = parse_module_list(args.run_modules)

    try:
        agent = ReportMateAgent(config, logger)

        if args.mode == 'run':
            success, message = agent.run_cycle(modules)
            print(f"{'✅' if success else '❌'} {message}")
            return 0 if success else 1

        elif args.mode == 'collect':
            payload = agent.collect(modules, progress=console_progress if args.verbose else None)
            content = json.dumps(payload, indent=2, ensure_ascii=False, default=str)
            if args.output:
                with open(args.output, 'w', encoding='utf-8') as f:
                    f.write(content)
                print(f"✅ Données sauvegardées dans: {args.output}", file=sys.stderr)
            else:
                print(content)
            return 0 if payload['modules'] else 1

        elif args.mode == 'transmit':
            if not args.input or not os.path.exists(args.input):
                print("❌ Aucune donnée à envoyer. Utilisez --input pour spécifier le fichier.")
                return 1
            with open(args.input, 'r', encoding='utf-8') as f:
                payload = json.load(f)
            success, message = agent.transmit(payload)
            print(f"{'✅ Envoi réussi' if success else '❌ Erreur envoi'}: {message}")
            return 0 if success else 1

        elif args.mode == 'test':
            print("🧪 Test de l'agent ReportMate")

            print("1. Test des backends...")
            for backend, result in agent.probe_backends().items():
                print(f"   {'✅' if result == 'ok' else '⚠️ '} {backend}: {result}")

            print("2. Test de collecte...")
            payload = agent.collect(modules, progress=console_progress)
            if not payload['modules']:
                print("   ❌ Collecte échouée")
                return 1
            print(f"   ✅ Collecte OK ({len(payload['modules'])} module(s))")
            for warning in payload['metadata']['warnings']:
                print(f"   ⚠️  {warning}")

            print("3. Test de connexion à l'API...")
            success, message = agent.sender.test_connection()
            print(f"   {'✅' if success else '⚠️ '} {message}")

            print("✅ Tests terminés")
            return 0

        elif args.mode == 'info':
            for key, value in agent.get_system_info().items():
                print(f"{key}: {value}")
            return 0

        elif args.mode == 'service':
            agent.run_service_mode()
            return 0

        elif args.mode == 'web':
            agent.run_web_only_mode()
            return 0

        return 0

    except KeyboardInterrupt:
        print("\n🛑 Arrêt demandé par l'utilisateur")
        return 0
    except (OSError, ValueError) as e:
        logger.exception("Erreur fatale")
        print(f"❌ Erreur: {e}")
        return 1


if __name__ == '__main__':
    sys.exit(main())
