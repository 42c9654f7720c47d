"""
Package des modules de collecte de l'agent ReportMate

Ce package contient :
- La classe de base ModuleCollector
- Les fonctions de mise en forme des résultats
- Les modules hardware, system, network, security, applications,
  management, inventory, profiles et identity
"""

from .applications import ApplicationsCollector
from .hardware import HardwareCollector
from .identity import IdentityCollector
from .inventory import InventoryCollector
from .management import ManagementCollector
from .network import NetworkCollector
from .profiles import ProfilesCollector
from .security import SecurityCollector
from .system import SystemCollector

# Identifiant de module -> classe, dans l'ordre du payload
MODULE_REGISTRY = {
    HardwareCollector.module_id: HardwareCollector,
    SystemCollector.module_id: SystemCollector,
    NetworkCollector.module_id: NetworkCollector,
    SecurityCollector.module_id: SecurityCollector,
    ApplicationsCollector.module_id: ApplicationsCollector,
    ManagementCollector.module_id: ManagementCollector,
    InventoryCollector.module_id: InventoryCollector,
    ProfilesCollector.module_id: ProfilesCollector,
    IdentityCollector.module_id: IdentityCollector,
}

__all__ = ['MODULE_REGISTRY']
