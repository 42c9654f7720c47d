"""
ReportMate Agent - Agent de collecte d'inventaire et de télémétrie

Ce package collecte les informations de la machine (matériel, système,
réseau, sécurité, applications, gestion, inventaire) via osquery, bash
ou python, et les envoie à l'API ReportMate.

Version: 1.0.0
"""

__version__ = "1.0.0"
__author__ = "ReportMate Agent Team"

# Imports principaux pour faciliter l'utilisation
from .core.collector import DataCollectionService
from .core.config import AgentConfig
from .core.logger import AgentLogger

__all__ = ['DataCollectionService', 'AgentConfig', 'AgentLogger']
