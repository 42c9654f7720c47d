"""
Module de collecte des informations matérielles

Ce module collecte :
- Identité de la machine (modèle, numéro de série, fabricant)
- Processeur et mémoire
- Stockage (volumes, pourcentage d'occupation)
- Cartes graphiques, écrans et batterie
"""

from typing import Any, Dict, List

from .assembler import (
    determine_form_factor, format_bytes, model_year, normalize_architecture,
    parse_firmware_version, percentage, strip_vendor_suffix
)
from .base import ModuleCollector
from ..core.fanout import CollectionTask

# Préambule commun des scripts python lisant system_profiler
DISPLAYS_SCRIPT = """
import json, subprocess

def load_displays():
    raw = subprocess.run(["system_profiler", "SPDisplaysDataType", "-json"],
                         capture_output=True, text=True, check=True).stdout
    return json.loads(raw).get("SPDisplaysDataType", [])
"""


class HardwareCollector(ModuleCollector):
    """Collecteur des informations matérielles"""

    module_id = "hardware"

    def declare_tasks(self) -> List[CollectionTask]:
        tasks = [
            self.task("system", self.collect_system_info, essential=True),
            self.task("processor", self.collect_processor_info, default={}),
            self.task("memory", self.collect_memory_info, default={}),
            self.task("storage", self.collect_storage_info, default=[]),
            self.task("graphics", self.collect_graphics_info, default=[]),
            self.task("displays", self.collect_display_info, default=[]),
            self.task("battery", self.collect_battery_info, default={}),
            self.task("thermal", self.collect_thermal_info, default={}),
        ]

        if self.config.get_collection_config()['storage_mode'] == 'deep':
            tasks.append(self.task("purgeableSpace", self.collect_purgeable_space, default={}))

        return tasks

    async def collect_system_info(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="""
                SELECT hostname, hardware_serial, hardware_vendor, hardware_model,
                       computer_name, hardware_version, uuid
                FROM system_info;
            """,
            bash="""
                model_id=$(sysctl -n hw.model 2>/dev/null)
                serial=$(ioreg -l | grep IOPlatformSerialNumber | awk -F'"' '{print $4}')
                hw_uuid=$(ioreg -d2 -c IOPlatformExpertDevice | awk -F'"' '/IOPlatformUUID/{print $4}')
                printf '{"hostname":"%s","hardware_serial":"%s","hardware_vendor":"Apple Inc.","hardware_model":"%s","uuid":"%s"}' \\
                    "$(hostname -s)" "$serial" "$model_id" "$hw_uuid"
            """
        )
        row = result.first()

        model_name = ""
        name_result = await self.query_or_none(
            bash="ioreg -ar -k product-name -d1 2>/dev/null | plutil -extract 0.product-name raw -o - - 2>/dev/null "
                 "| base64 -d 2>/dev/null | tr -d '\\0'"
        )
        if name_result is not None:
            model_name = name_result.first().get_str("output").strip()

        return {
            'hostname': row.get_str("hostname"),
            'computerName': row.get_str("computer_name", row.get_str("hostname")),
            'serialNumber': row.get_str("hardware_serial"),
            'manufacturer': strip_vendor_suffix(row.get_str("hardware_vendor")),
            'modelIdentifier': row.get_str("hardware_model"),
            'modelName': model_name,
            'uuid': row.get_str("uuid"),
        }

    async def collect_processor_info(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="""
                SELECT cpu_brand, cpu_logical_cores, cpu_physical_cores, cpu_type
                FROM system_info;
            """,
            bash="""
                printf '{"cpu_brand":"%s","cpu_physical_cores":"%s","cpu_logical_cores":"%s","cpu_type":"%s"}' \\
                    "$(sysctl -n machdep.cpu.brand_string 2>/dev/null || echo 'Apple Silicon')" \\
                    "$(sysctl -n hw.physicalcpu 2>/dev/null || echo 0)" \\
                    "$(sysctl -n hw.logicalcpu 2>/dev/null || echo 0)" \\
                    "$(uname -m)"
            """,
            python="""
import json, os, platform
print(json.dumps({"cpu_brand": platform.processor(), "cpu_logical_cores": os.cpu_count() or 0,
                  "cpu_type": platform.machine()}))
"""
        )
        row = result.first()

        return {
            'name': row.get_str("cpu_brand").strip(),
            'physicalCores': row.get_int("cpu_physical_cores"),
            'logicalCores': row.get_int("cpu_logical_cores"),
            'architecture': normalize_architecture(row.get_str("cpu_type")),
        }

    async def collect_memory_info(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT physical_memory FROM system_info;",
            bash="""printf '{"physical_memory":"%s"}' "$(sysctl -n hw.memsize 2>/dev/null)" """
        )
        total = result.first().get_int("physical_memory")

        return {
            'totalBytes': total,
            'total': format_bytes(total),
        }

    async def collect_storage_info(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT path, device, type, blocks, blocks_size, blocks_available
                FROM mounts
                WHERE path = '/' OR path LIKE '/Volumes/%';
            """,
            bash="""df -kP / /Volumes/* 2>/dev/null | awk 'NR>1 {printf "%s{\\"device\\":\\"%s\\",\\"blocks\\":\\"%s\\",\\"blocks_available\\":\\"%s\\",\\"blocks_size\\":\\"1024\\",\\"path\\":\\"%s\\"}", (NR>2?",":"["), $1, $2, $4, $6} END {print (NR>1?"]":"[]")}'"""
        )

        volumes = []
        for row in result.rows():
            block_size = row.get_int("blocks_size", 4096)
            capacity = row.get_int("blocks") * block_size
            available = row.get_int("blocks_available") * block_size
            used = max(capacity - available, 0)
            volumes.append({
                'name': row.get_str("path"),
                'device': row.get_str("device"),
                'type': row.get_str("type"),
                'capacity': capacity,
                'freeSpace': available,
                'usedSpace': used,
                'percentageOfDrive': round(percentage(used, capacity), 2),
            })
        return volumes

    async def collect_graphics_info(self) -> List[Dict[str, Any]]:
        result = await self.query(
            python=DISPLAYS_SCRIPT + """
data = load_displays()
print(json.dumps([{'name': g.get('sppci_model', ''), 'vendor': g.get('spdisplays_vendor', ''),
                   'cores': g.get('sppci_cores', ''), 'vram': g.get('spdisplays_vram', '')} for g in data]))
"""
        )
        return [
            {
                'name': row.get_str("name"),
                'manufacturer': strip_vendor_suffix(row.get_str("vendor").replace("sppci_vendor_", "")),
                'cores': row.get_int("cores"),
                'memory': row.get_str("vram"),
            }
            for row in result.rows()
        ]

    async def collect_display_info(self) -> List[Dict[str, Any]]:
        result = await self.query(
            python=DISPLAYS_SCRIPT + """
out = []
for gpu in load_displays():
    for d in gpu.get('spdisplays_ndrvs', []):
        out.append({'name': d.get('_name', ''), 'resolution': d.get('_spdisplays_resolution', ''),
                    'main': d.get('spdisplays_main', ''), 'firmware': d.get('spdisplays_display_firmware_version', '')})
print(json.dumps(out))
"""
        )
        return [
            {
                'name': row.get_str("name"),
                'resolution': row.get_str("resolution"),
                'isMain': row.get_str("main") == "spdisplays_yes",
                'firmwareVersion': parse_firmware_version(row.get_str("firmware")),
            }
            for row in result.rows()
        ]

    async def collect_battery_info(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="""
                SELECT health, condition, cycle_count, percent_remaining, charging, charged,
                       max_capacity, designed_capacity
                FROM battery;
            """
        )
        row = result.first()
        if not len(row):
            return {'present': False}

        return {
            'present': True,
            'health': row.get_str("health"),
            'condition': row.get_str("condition"),
            'cycleCount': row.get_int("cycle_count"),
            'chargePercent': row.get_int("percent_remaining"),
            'isCharging': row.get_bool("charging"),
            'capacityPercent': round(percentage(row.get_int("max_capacity"), row.get_int("designed_capacity")), 1),
        }

    async def collect_thermal_info(self) -> Dict[str, Any]:
        result = await self.query(
            bash="""pmset -g therm 2>/dev/null | awk -F'= ' '/CPU_Speed_Limit/ {printf "{\\"cpuSpeedLimit\\":\\"%s\\"}", $2}'"""
        )
        row = result.first()
        return {'cpuSpeedLimit': row.get_int("cpuSpeedLimit", 100)}

    async def collect_purgeable_space(self) -> Dict[str, Any]:
        # Parcourt tout le système de fichiers : uniquement en mode deep
        slow_timeout = self.config.get_collection_config()['slow_probe_timeout']
        result = await self.query(
            bash="""diskutil info -plist / 2>/dev/null | plutil -convert json -o - - 2>/dev/null""",
            timeout=slow_timeout
        )
        row = result.first()
        return {
            'purgeableBytes': row.get_int("APFSContainerFree") - row.get_int("FreeSpace"),
            'containerFreeBytes': row.get_int("APFSContainerFree"),
        }

    def assemble(self, results: Dict[str, Any]) -> Dict[str, Any]:
        system = results.get("system") or {}
        model_id = system.get("modelIdentifier", "")
        model_name = system.get("modelName", "")

        system["formFactor"] = determine_form_factor(model_id, model_name)
        system["modelYear"] = model_year(model_id)

        results["system"] = system
        return results
