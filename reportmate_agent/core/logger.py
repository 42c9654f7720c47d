"""
Module de logging pour l'agent ReportMate

Ce module fournit un système de logging centralisé avec :
- Rotation automatique des logs
- Niveau réglable par configuration ou par la ligne de commande
- Formatage cohérent
"""

import os
import sys
import logging
import logging.handlers
from typing import Optional

LOGGER_NAME = "ReportMateAgent"


def verbosity_to_level(verbose: int) -> Optional[str]:
    """
    Convertit le nombre d'options -v en niveau de log

    Args:
        verbose: Nombre d'occurrences de -v (0 = niveau de la configuration)

    Returns:
        str: Nom du niveau, ou None pour garder celui de la configuration
    """
    if verbose <= 0:
        return None
    if verbose == 1:
        return 'INFO'
    return 'DEBUG'


class AgentLogger:
    """
    Gestionnaire de logging pour l'agent ReportMate

    Cette classe configure le logger partagé par tous les composants
    (moteur, modules, envoi), avec rotation automatique du fichier.
    """

    def __init__(self, config=None, level: Optional[str] = None):
        """
        Initialise le système de logging

        Args:
            config: Instance de AgentConfig pour récupérer les paramètres de log
            level: Niveau forcé (prioritaire sur la configuration)
        """
        self.config = config
        self.level_override = level
        self.logger = logging.getLogger(LOGGER_NAME)

        # Éviter la duplication si déjà configuré
        if not self.logger.handlers:
            self._setup_logging()
        elif level:
            self.set_level(level)

    def _setup_logging(self):
        """
        Configure le système de logging avec les handlers appropriés

        Configure :
        - Le niveau de log basé sur la configuration
        - La rotation des fichiers de log
        - La sortie console
        """
        if self.config:
            log_level_str = self.config.get('agent', 'log_level', 'INFO')
            log_file = self.config.get('logging', 'log_file')
            max_size = self.config.getint('logging', 'max_log_size', 10485760)  # 10MB
            backup_count = self.config.getint('logging', 'backup_count', 5)
        else:
            log_level_str = 'INFO'
            log_file = self._get_default_log_file()
            max_size = 10485760  # 10MB
            backup_count = 5

        if self.level_override:
            log_level_str = self.level_override

        log_level = getattr(logging, log_level_str.upper(), logging.INFO)
        self.logger.setLevel(log_level)

        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

        # Handler pour fichier avec rotation
        try:
            log_dir = os.path.dirname(log_file)
            if log_dir and not os.path.exists(log_dir):
                os.makedirs(log_dir, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                filename=log_file,
                maxBytes=max_size,
                backupCount=backup_count,
                encoding='utf-8'
            )
            file_handler.setLevel(log_level)
            file_handler.setFormatter(formatter)
            self.logger.addHandler(file_handler)

        except OSError as e:
            print(f"Erreur lors de la configuration du logging fichier: {e}", file=sys.stderr)

        # Les messages vont sur stderr : stdout est réservé au JSON du mode collect
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(logging.Formatter(fmt='%(levelname)s - %(message)s'))
        self.logger.addHandler(console_handler)

        self.logger.debug("Système de logging initialisé")
        if self.config:
            self.logger.debug(f"Niveau de log: {log_level_str}")
            self.logger.debug(f"Fichier de log: {log_file}")

    def _get_default_log_file(self) -> str:
        """
        Détermine le fichier de log par défaut

        Returns:
            str: Chemin vers le fichier de log par défaut
        """
        return os.path.join(os.environ.get("TMPDIR", "/tmp"), "reportmate-agent.log")

    def set_level(self, level: str):
        """
        Change le niveau de log du logger et de ses handlers

        Args:
            level: Nom du niveau (DEBUG, INFO...)
        """
        log_level = getattr(logging, level.upper(), logging.INFO)
        self.logger.setLevel(log_level)
        for handler in self.logger.handlers:
            handler.setLevel(log_level)

    def get_logger(self) -> logging.Logger:
        """
        Retourne l'instance du logger

        Returns:
            logging.Logger: Instance du logger configuré
        """
        return self.logger

    def info(self, message: str):
        """Log un message de niveau INFO"""
        self.logger.info(message)

    def exception(self, message: str):
        """
        Log une exception avec sa stack trace

        Args:
            message: Message descriptif de l'erreur
        """
        self.logger.exception(message)

    def log_config_info(self, config):
        """
        Log les informations de configuration (sans les données sensibles)

        Args:
            config: Instance de AgentConfig
        """
        self.info("=== Configuration de l'agent ===")

        for key, value in config.get_agent_config().items():
            self.info(f"Agent.{key}: {value}")

        for key, value in config.get_collection_config().items():
            self.info(f"Collection.{key}: {value}")

        for key, value in config.get_server_config().items():
            if key == 'passphrase':
                preview = value[:4] + "..." if len(value) > 4 else "Non configuré"
                self.info(f"Server.{key}: {preview}")
            else:
                self.info(f"Server.{key}: {value}")

        self.info("=== Fin configuration ===")
