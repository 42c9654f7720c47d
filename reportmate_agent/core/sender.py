"""
Module de communication avec l'API ReportMate

Ce module gère :
- L'envoi du payload unifié vers <api_url>/api/events
- L'authentification (clé d'API et passphrase client)
- La traduction des erreurs réseau en (succès, message)

Un envoi correspond à une seule requête POST : aucune nouvelle tentative
n'est faite, le cycle suivant renverra un inventaire complet.
"""

import json
import requests
from typing import Dict, Any, Optional, Tuple
from datetime import datetime

from .. import __version__

EVENTS_ENDPOINT = "/api/events"


class ReportSender:
    """
    Gestionnaire de communication avec l'API ReportMate

    Toute réponse 2xx est un succès ; tout autre code, ou toute erreur
    réseau, est un échec décrit par un message.
    """

    def __init__(self, config, logger, session: Optional[requests.Session] = None):
        """
        Initialise le sender avec la configuration

        Args:
            config: Instance de AgentConfig
            logger: Instance de AgentLogger
            session: Session requests à utiliser (optionnelle)
        """
        self.config = config
        self.logger = logger.get_logger()
        self.session = session

        self._load_server_config()

        # Statistiques de communication
        self.last_successful_send = None
        self.send_attempts = 0
        self.send_failures = 0

        self.logger.debug(f"ReportSender initialisé (API: {self.api_url or 'non configurée'})")

    def _load_server_config(self):
        server_config = self.config.get_server_config()
        self.api_url = server_config['api_url'].rstrip('/')
        self.passphrase = server_config['passphrase']
        self.timeout = server_config['timeout']
        self.verify_ssl = server_config['verify_ssl']

    @property
    def events_url(self) -> str:
        return f"{self.api_url}{EVENTS_ENDPOINT}"

    def _build_headers(self) -> Dict[str, str]:
        """
        Construit les headers HTTP de l'envoi

        Returns:
            dict: Headers incluant l'authentification si configurée
        """
        headers = {
            'Content-Type': 'application/json',
            'User-Agent': f'ReportMate-Agent/{__version__}'
        }

        if self.passphrase:
            headers['X-API-Key'] = self.passphrase
            headers['X-Client-Passphrase'] = self.passphrase

        return headers

    def _post(self, **kwargs) -> requests.Response:
        if self.session is not None:
            return self.session.post(**kwargs)
        return requests.post(**kwargs)

    def _get(self, **kwargs) -> requests.Response:
        if self.session is not None:
            return self.session.get(**kwargs)
        return requests.get(**kwargs)

    def send_report(self, payload: Dict[str, Any]) -> Tuple[bool, str]:
        """
        Envoie le payload unifié à l'API

        Args:
            payload: Payload construit par DataCollectionService.build_unified_payload

        Returns:
            Tuple[bool, str]: (Succès, Message de résultat)
        """
        if not self.api_url:
            return False, "URL de l'API non configurée"

        self.send_attempts += 1

        try:
            body = json.dumps(payload, default=str)
            self.logger.info(f"Envoi du rapport vers {self.events_url} ({len(body)} octets)")

            response = self._post(
                url=self.events_url,
                data=body.encode('utf-8'),
                headers=self._build_headers(),
                timeout=self.timeout,
                verify=self.verify_ssl
            )

            if 200 <= response.status_code < 300:
                self.last_successful_send = datetime.now()
                self.logger.info(f"Rapport envoyé avec succès (HTTP {response.status_code})")
                return True, f"Envoi réussi (HTTP {response.status_code})"

            self.send_failures += 1
            if response.status_code in (401, 403):
                error_msg = f"Authentification refusée par l'API (HTTP {response.status_code})"
            elif response.status_code == 400:
                error_msg = f"Données invalides: {response.text[:200]}"
            else:
                error_msg = f"Erreur serveur HTTP {response.status_code}: {response.text[:200]}"
            self.logger.error(error_msg)
            return False, error_msg

        except requests.exceptions.Timeout:
            self.send_failures += 1
            error_msg = f"Timeout lors de l'envoi (>{self.timeout}s)"
            self.logger.error(error_msg)
            return False, error_msg

        except requests.exceptions.SSLError as e:
            self.send_failures += 1
            error_msg = f"Erreur SSL: {str(e)}"
            self.logger.error(error_msg)
            return False, error_msg

        except requests.exceptions.ConnectionError as e:
            self.send_failures += 1
            error_msg = f"Erreur de connexion: {str(e)}"
            self.logger.error(error_msg)
            return False, error_msg

        except requests.exceptions.RequestException as e:
            self.send_failures += 1
            error_msg = f"Erreur HTTP: {str(e)}"
            self.logger.error(error_msg)
            return False, error_msg

    def test_connection(self) -> Tuple[bool, str]:
        """
        Teste la connexion à l'API sans envoyer de données

        Returns:
            Tuple[bool, str]: (Connexion OK, Message de statut)
        """
        if not self.api_url:
            return False, "URL de l'API non configurée"

        try:
            self.logger.info(f"Test de connexion à {self.api_url}...")
            response = self._get(
                url=f"{self.api_url}/api/health",
                headers=self._build_headers(),
                timeout=self.timeout,
                verify=self.verify_ssl
            )

            # 404/405 : le serveur répond mais l'endpoint n'existe pas
            if response.status_code < 300 or response.status_code in (404, 405):
                self.logger.info("Connexion à l'API réussie")
                return True, "Connexion OK"

            error_msg = f"L'API répond avec le code {response.status_code}"
            self.logger.warning(error_msg)
            return False, error_msg

        except requests.exceptions.Timeout:
            error_msg = "Timeout lors du test de connexion"
            self.logger.error(error_msg)
            return False, error_msg

        except requests.exceptions.RequestException as e:
            error_msg = f"Impossible de se connecter à l'API: {str(e)}"
            self.logger.error(error_msg)
            return False, error_msg

    def get_stats(self) -> Dict[str, Any]:
        """
        Retourne les statistiques de communication

        Returns:
            dict: Statistiques d'envoi
        """
        return {
            'last_successful_send': self.last_successful_send.isoformat() if self.last_successful_send else None,
            'total_attempts': self.send_attempts,
            'total_failures': self.send_failures,
            'success_rate': ((self.send_attempts - self.send_failures) / self.send_attempts * 100) if self.send_attempts > 0 else 0,
            'api_url': self.api_url
        }
