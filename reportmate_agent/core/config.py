"""
Module de configuration pour l'agent ReportMate

Ce module gère la configuration de l'agent, incluant :
- Lecture du fichier de configuration INI
- Surcharges par variables d'environnement (REPORTMATE_*)
- Validation des paramètres
- Valeurs par défaut
"""

import os
import sys
import configparser
from typing import Dict, Any, List, Optional


# Modules collectés par défaut, dans l'ordre du payload
DEFAULT_MODULES = [
    "hardware", "system", "network", "security",
    "applications", "management", "inventory"
]

# Variables d'environnement -> (section, option)
ENVIRONMENT_OVERRIDES = {
    'REPORTMATE_API_URL': ('server', 'api_url'),
    'REPORTMATE_PASSPHRASE': ('server', 'passphrase'),
    'REPORTMATE_DEVICE_ID': ('agent', 'device_id'),
    'REPORTMATE_COLLECTION_INTERVAL': ('agent', 'collection_interval'),
    'REPORTMATE_LOG_LEVEL': ('agent', 'log_level'),
    'REPORTMATE_ENABLED_MODULES': ('agent', 'enabled_modules'),
}


class AgentConfig:
    """
    Gestionnaire de configuration pour l'agent ReportMate

    Ordre de priorité : surcharges d'exécution > environnement > fichier > défauts.
    """

    def __init__(self, config_file: Optional[str] = None, environ: Optional[Dict[str, str]] = None):
        """
        Initialise la configuration de l'agent

        Args:
            config_file: Chemin vers le fichier de configuration (optionnel)
            environ: Environnement à utiliser pour les surcharges (os.environ par défaut)
        """
        self.config = configparser.ConfigParser()
        self.config_file = config_file or self._get_default_config_path()
        self.environ = os.environ if environ is None else environ

        # Définir les valeurs par défaut
        self._set_defaults()

        # Charger la configuration depuis le fichier
        self._load_config()

        # Appliquer les variables d'environnement
        self._load_environment()

    def _get_default_config_path(self) -> str:
        """
        Détermine le chemin par défaut du fichier de configuration

        Returns:
            str: Chemin vers le fichier de configuration
        """
        if sys.platform == "darwin":
            return "/Library/Managed Reports/reportmate.ini"
        return "/etc/reportmate/config.ini"

    def _set_defaults(self):
        """
        Définit les valeurs de configuration par défaut

        Ces valeurs sont utilisées si aucun fichier de configuration n'est trouvé
        ou si certaines sections/clés sont manquantes.
        """
        # Configuration serveur
        self.config.add_section('server')
        self.config.set('server', 'api_url', '')
        self.config.set('server', 'passphrase', '')
        self.config.set('server', 'timeout', '300')
        self.config.set('server', 'verify_ssl', 'true')

        # Configuration agent
        self.config.add_section('agent')
        self.config.set('agent', 'device_id', '')
        self.config.set('agent', 'collection_interval', '3600')
        self.config.set('agent', 'log_level', 'INFO')
        self.config.set('agent', 'enabled_modules', ','.join(DEFAULT_MODULES))

        # Configuration des backends de collecte
        self.config.add_section('collection')
        self.config.set('collection', 'command_timeout', '60')
        self.config.set('collection', 'slow_probe_timeout', '300')
        self.config.set('collection', 'osquery_path', '/usr/local/bin/osqueryi')
        self.config.set('collection', 'osquery_extension_path', '')
        self.config.set('collection', 'extension_enabled', 'true')
        self.config.set('collection', 'bash_path', '/bin/bash')
        self.config.set('collection', 'python_path', '/usr/bin/python3')
        self.config.set('collection', 'storage_mode', 'quick')
        self.config.set('collection', 'usage_db_path', '/Library/Managed Reports/appusage.sqlite')
        self.config.set('collection', 'usage_lookback_hours', '4')
        self.config.set('collection', 'inventory_file', '/Library/Management/Inventory.yaml')

        # Configuration interface web
        self.config.add_section('web_interface')
        self.config.set('web_interface', 'enabled', 'false')
        self.config.set('web_interface', 'port', '18743')
        self.config.set('web_interface', 'host', '127.0.0.1')

        # Configuration logging
        self.config.add_section('logging')
        self.config.set('logging', 'log_file', self._get_default_log_path())
        self.config.set('logging', 'max_log_size', '10485760')  # 10MB
        self.config.set('logging', 'backup_count', '5')

    def _get_default_log_path(self) -> str:
        """
        Détermine le chemin par défaut des logs selon la plateforme

        Returns:
            str: Chemin vers le fichier de log
        """
        if sys.platform == "darwin":
            return "/Library/Managed Reports/logs/reportmate.log"
        return "/var/log/reportmate/agent.log"

    def _load_config(self):
        """
        Charge la configuration depuis le fichier

        Si le fichier n'existe pas, utilise les valeurs par défaut.
        Un fichier illisible n'empêche pas l'agent de démarrer.
        """
        try:
            if os.path.exists(self.config_file):
                self.config.read(self.config_file, encoding='utf-8')
                print(f"Configuration chargée depuis: {self.config_file}", file=sys.stderr)
            else:
                print(f"Fichier de configuration non trouvé: {self.config_file}", file=sys.stderr)
                print("Utilisation des valeurs par défaut", file=sys.stderr)

        except configparser.Error as e:
            print(f"Erreur lors du chargement de la configuration: {e}", file=sys.stderr)
            print("Utilisation des valeurs par défaut", file=sys.stderr)

    def _load_environment(self):
        """Applique les surcharges REPORTMATE_* de l'environnement"""
        for variable, (section, option) in ENVIRONMENT_OVERRIDES.items():
            value = self.environ.get(variable)
            if value:
                self.set(section, option, value)

    def get(self, section: str, option: str, fallback: Any = None) -> str:
        """
        Récupère une valeur de configuration

        Args:
            section: Nom de la section
            option: Nom de l'option
            fallback: Valeur par défaut si non trouvée

        Returns:
            str: Valeur de configuration
        """
        return self.config.get(section, option, fallback=fallback)

    def getboolean(self, section: str, option: str, fallback: bool = False) -> bool:
        """Récupère une valeur booléenne de configuration"""
        try:
            return self.config.getboolean(section, option, fallback=fallback)
        except ValueError:
            return fallback

    def getint(self, section: str, option: str, fallback: int = 0) -> int:
        """Récupère une valeur entière de configuration"""
        try:
            return self.config.getint(section, option, fallback=fallback)
        except ValueError:
            return fallback

    def getfloat(self, section: str, option: str, fallback: float = 0.0) -> float:
        """Récupère une valeur décimale de configuration"""
        try:
            return self.config.getfloat(section, option, fallback=fallback)
        except ValueError:
            return fallback

    def getlist(self, section: str, option: str, fallback: Optional[List[str]] = None) -> List[str]:
        """
        Récupère une liste séparée par des virgules

        Returns:
            list: Éléments nettoyés, sans entrées vides
        """
        raw = self.get(section, option)
        if raw is None:
            return list(fallback or [])
        return [item.strip() for item in raw.split(',') if item.strip()]

    def set(self, section: str, option: str, value: Any):
        """
        Définit une valeur de configuration

        Args:
            section: Nom de la section
            option: Nom de l'option
            value: Nouvelle valeur
        """
        if not self.config.has_section(section):
            self.config.add_section(section)
        if isinstance(value, (list, tuple)):
            value = ','.join(value)
        self.config.set(section, option, str(value))

    def save(self):
        """
        Sauvegarde la configuration dans le fichier

        Crée les dossiers parents si nécessaire.
        """
        try:
            config_dir = os.path.dirname(self.config_file)
            if config_dir and not os.path.exists(config_dir):
                os.makedirs(config_dir, exist_ok=True)

            with open(self.config_file, 'w', encoding='utf-8') as f:
                self.config.write(f)

            print(f"Configuration sauvegardée dans: {self.config_file}")

        except OSError as e:
            print(f"Erreur lors de la sauvegarde de la configuration: {e}")
            raise

    def get_server_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration complète du serveur

        Returns:
            dict: Configuration serveur
        """
        return {
            'api_url': self.get('server', 'api_url', ''),
            'passphrase': self.get('server', 'passphrase', ''),
            'timeout': self.getint('server', 'timeout', 300),
            'verify_ssl': self.getboolean('server', 'verify_ssl', True)
        }

    def get_agent_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration complète de l'agent

        Returns:
            dict: Configuration agent
        """
        return {
            'device_id': self.get('agent', 'device_id', ''),
            'collection_interval': self.getint('agent', 'collection_interval', 3600),
            'log_level': self.get('agent', 'log_level', 'INFO'),
            'enabled_modules': self.getlist('agent', 'enabled_modules', DEFAULT_MODULES)
        }

    def get_collection_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration des backends de collecte

        Returns:
            dict: Chemins des exécutables, timeouts et options de collecte
        """
        return {
            'command_timeout': self.getfloat('collection', 'command_timeout', 60.0),
            'slow_probe_timeout': self.getfloat('collection', 'slow_probe_timeout', 300.0),
            'osquery_path': self.get('collection', 'osquery_path', '/usr/local/bin/osqueryi'),
            'osquery_extension_path': self.get('collection', 'osquery_extension_path', '') or None,
            'extension_enabled': self.getboolean('collection', 'extension_enabled', True),
            'bash_path': self.get('collection', 'bash_path', '/bin/bash'),
            'python_path': self.get('collection', 'python_path', '/usr/bin/python3'),
            'storage_mode': self.get('collection', 'storage_mode', 'quick'),
            'usage_db_path': self.get('collection', 'usage_db_path'),
            'usage_lookback_hours': self.getint('collection', 'usage_lookback_hours', 4),
            'inventory_file': self.get('collection', 'inventory_file')
        }

    def get_web_config(self) -> Dict[str, Any]:
        """
        Récupère la configuration complète de l'interface web

        Returns:
            dict: Configuration interface web
        """
        return {
            'enabled': self.getboolean('web_interface', 'enabled', False),
            'port': self.getint('web_interface', 'port', 18743),
            'host': self.get('web_interface', 'host', '127.0.0.1')
        }

    def validate(self) -> bool:
        """
        Valide la configuration courante

        Returns:
            bool: True si la configuration est valide, False sinon
        """
        errors = self.get_validation_errors()

        if errors:
            for error in errors:
                print(f"Erreur de configuration: {error}")
            return False

        return True

    def get_validation_errors(self) -> List[str]:
        """
        Liste les erreurs de configuration

        Returns:
            list: Messages d'erreur (vide si la configuration est valide)
        """
        errors = []

        api_url = self.get('server', 'api_url', '')
        if api_url and not api_url.startswith(('http://', 'https://')):
            errors.append("URL de l'API invalide")

        log_level = self.get('agent', 'log_level', 'INFO').upper()
        if log_level not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            errors.append("Niveau de log invalide")

        if self.getint('agent', 'collection_interval', 0) <= 0:
            errors.append("Intervalle de collecte invalide (doit être > 0)")

        if self.getfloat('collection', 'command_timeout', 0) <= 0:
            errors.append("Timeout de commande invalide (doit être > 0)")

        storage_mode = self.get('collection', 'storage_mode', 'quick')
        if storage_mode not in ['quick', 'deep']:
            errors.append("Mode de stockage invalide (doit être: quick, deep)")

        from ..collectors import MODULE_REGISTRY
        unknown = [m for m in self.getlist('agent', 'enabled_modules') if m not in MODULE_REGISTRY]
        if unknown:
            errors.append(f"Modules inconnus: {', '.join(unknown)}")

        web_port = self.getint('web_interface', 'port', 0)
        if not (1 <= web_port <= 65535):
            errors.append("Port interface web invalide (doit être entre 1 et 65535)")

        return errors


def create_default_config(config_path: str) -> AgentConfig:
    """
    Crée un fichier de configuration par défaut

    Args:
        config_path: Chemin où créer le fichier de configuration

    Returns:
        AgentConfig: Instance de configuration créée
    """
    config = AgentConfig(config_path, environ={})
    config.save()
    return config
