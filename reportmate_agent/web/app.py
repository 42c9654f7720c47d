"""
Application Flask pour l'interface web locale de l'agent ReportMate

Endpoints JSON permettant de consulter l'état de l'agent, de déclencher
une collecte et de lire les données du dernier cycle, module par module.
"""

import threading
import logging
from datetime import datetime
from typing import Optional

from flask import Flask, jsonify, request

from .. import __version__
from ..collectors import MODULE_REGISTRY


class ReportWebApp:
    """
    Application web Flask pour l'agent ReportMate

    Cette classe encapsule l'application Flask et ses routes. Les collectes
    déclenchées depuis le web tournent dans un thread d'arrière-plan.
    """

    def __init__(self, config, logger, collection_service, sender=None, scheduler=None):
        """
        Initialise l'application web

        Args:
            config: Instance de AgentConfig
            logger: Instance de AgentLogger
            collection_service: Instance de DataCollectionService
            sender: Instance de ReportSender (optionnelle, pour l'envoi après collecte)
            scheduler: Instance de CollectionScheduler (mode service uniquement)
        """
        self.config = config
        self.logger = logger
        self.app_logger = logger.get_logger()
        self.collection_service = collection_service
        self.sender = sender
        self.scheduler = scheduler

        self.app = Flask(__name__)

        # Désactiver les logs Flask pour éviter la pollution
        logging.getLogger('werkzeug').setLevel(logging.ERROR)

        self.status_lock = threading.Lock()
        self.app_status = {
            'last_payload': None,
            'last_collection_time': None,
            'last_send_result': None,
            'collection_in_progress': False,
        }
        self.collect_thread: Optional[threading.Thread] = None

        self._register_routes()

        self.app_logger.debug("Interface web initialisée")

    def _register_routes(self):
        """Enregistre les routes Flask"""

        @self.app.route('/api/status')
        def api_status():
            """Statut actuel de l'agent"""
            return jsonify(self._get_status_info())

        @self.app.route('/api/collect', methods=['POST'])
        def api_collect():
            """Déclenche une collecte en arrière-plan"""
            body = request.get_json(silent=True) or {}
            module_ids = body.get('modules') or None
            transmit = bool(body.get('transmit', False))

            if module_ids is not None:
                unknown = [m for m in module_ids if m not in MODULE_REGISTRY]
                if unknown:
                    return jsonify({
                        'success': False,
                        'message': f"Modules inconnus: {', '.join(unknown)}"
                    }), 400

            with self.status_lock:
                if self.app_status['collection_in_progress']:
                    return jsonify({
                        'success': False,
                        'message': 'Une collecte est déjà en cours'
                    }), 409
                self.app_status['collection_in_progress'] = True

            self.collect_thread = threading.Thread(
                target=self._collect_background,
                args=(module_ids, transmit),
                name="WebCollection",
                daemon=True
            )
            self.collect_thread.start()

            return jsonify({
                'success': True,
                'message': 'Collecte démarrée'
            }), 202

        @self.app.route('/api/modules/<module_id>')
        def api_module(module_id):
            """Données d'un module issues du dernier cycle"""
            if module_id not in MODULE_REGISTRY:
                return jsonify({'error': f"Module inconnu: {module_id}"}), 404

            payload = self.app_status['last_payload']
            if not payload or module_id not in payload['modules']:
                return jsonify({'error': f"Aucune donnée collectée pour {module_id}"}), 404

            return jsonify(payload['modules'][module_id])

    def _collect_background(self, module_ids, transmit: bool):
        """Exécute une collecte (et optionnellement l'envoi) hors du thread de requête"""
        try:
            self.app_logger.info("Démarrage collecte forcée via web")
            run = self.collection_service.run_collection(module_ids)
            payload = self.collection_service.build_unified_payload(run)

            with self.status_lock:
                self.app_status['last_payload'] = payload
                self.app_status['last_collection_time'] = datetime.now()

            if transmit and self.sender is not None:
                success, message = self.sender.send_report(payload)
                if success:
                    self.collection_service.confirm_transmission(run)
                with self.status_lock:
                    self.app_status['last_send_result'] = {'success': success, 'message': message}

            self.app_logger.info("Collecte forcée terminée")

        except Exception as e:
            self.app_logger.error(f"Erreur collecte forcée: {e}")
        finally:
            with self.status_lock:
                self.app_status['collection_in_progress'] = False

    def _get_status_info(self) -> dict:
        """
        Construit le statut de l'agent

        Returns:
            dict: Version, configuration et dernier cycle
        """
        last_time = self.app_status['last_collection_time']
        agent_config = self.config.get_agent_config()

        return {
            'version': __version__,
            'device_id': agent_config['device_id'],
            'enabled_modules': agent_config['enabled_modules'],
            'collection_interval': agent_config['collection_interval'],
            'collection_in_progress': self.app_status['collection_in_progress'],
            'last_collection_time': last_time.isoformat() if last_time else None,
            'last_collection': self.collection_service.get_collection_summary(),
            'last_send_result': self.app_status['last_send_result'],
            'sender': self.sender.get_stats() if self.sender is not None else None,
            'scheduler': self.scheduler.get_status() if self.scheduler is not None else None,
        }

    def run(self, host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
        """
        Lance l'application Flask

        Args:
            host: Adresse d'écoute (configuration par défaut)
            port: Port d'écoute (configuration par défaut)
            debug: Mode debug Flask
        """
        web_config = self.config.get_web_config()
        host = host or web_config['host']
        port = port or web_config['port']

        self.app_logger.info(f"Démarrage interface web sur http://{host}:{port}")

        self.app.run(
            host=host,
            port=port,
            debug=debug,
            threaded=True,
            use_reloader=False
        )
