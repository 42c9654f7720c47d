"""
Module de collecte des informations d'inventaire

Combine l'identité de la machine avec les informations saisies par les
administrateurs dans le fichier Inventory.yaml (numéro d'inventaire,
localisation, affectation...).
"""

import os
import asyncio
from typing import Any, Dict, List

import yaml

from .base import ModuleCollector
from ..core.fanout import CollectionTask

DEFAULT_INVENTORY_FILE = "/Library/Management/Inventory.yaml"


def load_inventory_file(path: str) -> Dict[str, str]:
    """
    Lit le fichier d'inventaire YAML

    Args:
        path: Chemin du fichier

    Returns:
        dict: Clés du fichier (valeurs converties en texte), vide si absent

    Raises:
        yaml.YAMLError: Fichier présent mais invalide
    """
    if not path or not os.path.exists(path):
        return {}

    with open(path, 'r', encoding='utf-8') as f:
        content = yaml.safe_load(f)

    if not isinstance(content, dict):
        return {}

    return {str(key): "" if value is None else str(value) for key, value in content.items()}


class InventoryCollector(ModuleCollector):
    """Collecteur des informations d'inventaire"""

    module_id = "inventory"

    def declare_tasks(self) -> List[CollectionTask]:
        return [
            self.task("identity", self.collect_identity, essential=True),
            self.task("fileInventory", self.collect_file_inventory, default={}),
            self.task("owner", self.collect_console_user, default=""),
            self.task("hostname", self.collect_hostname, default=""),
            self.task("timezone", self.collect_timezone, default=""),
        ]

    async def collect_identity(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT uuid, hardware_serial, computer_name FROM system_info;",
            bash="""printf '{"serial":"%s","uuid":"%s","hostname":"%s"}' \\
                "$(ioreg -l | awk -F'"' '/IOPlatformSerialNumber/ {print $4}')" \\
                "$(ioreg -d2 -c IOPlatformExpertDevice | awk -F'"' '/IOPlatformUUID/ {print $4}')" \\
                "$(hostname)" """
        )
        row = result.first()

        # osquery: hardware_serial/computer_name, bash: serial/hostname
        return {
            'serialNumber': row.get_str("hardware_serial") or row.get_str("serial"),
            'uuid': row.get_str("uuid"),
            'deviceName': row.get_str("computer_name") or row.get_str("hostname"),
        }

    async def collect_file_inventory(self) -> Dict[str, str]:
        path = self.config.get_collection_config().get('inventory_file') or DEFAULT_INVENTORY_FILE
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, load_inventory_file, path)

    async def collect_console_user(self) -> str:
        result = await self.query(
            osquery="SELECT user FROM logged_in_users WHERE tty = 'console' LIMIT 1;",
            bash="""printf '{"user":"%s"}' "$(stat -f %Su /dev/console 2>/dev/null)" """
        )
        return result.first().get_str("user")

    async def collect_hostname(self) -> str:
        result = await self.query(bash="hostname")
        return result.first().get_str("output").strip()

    async def collect_timezone(self) -> str:
        result = await self.query(
            bash="""readlink /etc/localtime 2>/dev/null | sed 's#.*/zoneinfo/##'"""
        )
        return result.first().get_str("output").strip()

    def assemble(self, results: Dict[str, Any]) -> Dict[str, Any]:
        identity = results.get("identity") or {}
        file_info = results.get("fileInventory") or {}

        return {
            'deviceName': identity.get('deviceName') or results.get("hostname", ""),
            'serialNumber': identity.get('serialNumber', ""),
            'uuid': identity.get('uuid', ""),
            'assetTag': file_info.get('asset', ""),
            'location': file_info.get('location', ""),
            'owner': file_info.get('allocation', "") or results.get("owner", ""),
            'department': file_info.get('area', ""),
            'catalog': file_info.get('catalog', ""),
            'usage': file_info.get('usage', ""),
            'timezone': results.get("timezone", ""),
        }
