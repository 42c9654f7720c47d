"""
Module de collecte des informations système

Ce module collecte :
- Version du système d'exploitation et noyau
- Uptime
- Éléments de démarrage (launchd, login items)
- Mises à jour logicielles en attente
- Extensions système et noyau
"""

import time
from typing import Any, Dict, List

from .assembler import normalize_architecture, rename_fields
from .base import ModuleCollector
from ..core.fanout import CollectionTask


class SystemCollector(ModuleCollector):
    """Collecteur des informations système"""

    module_id = "system"

    def declare_tasks(self) -> List[CollectionTask]:
        return [
            self.task("operatingSystem", self.collect_os_info, essential=True),
            self.task("uptime", self.collect_uptime_info, default={}),
            self.task("kernel", self.collect_kernel_info, default={}),
            self.task("launchdServices", self.collect_launchd_services, default=[]),
            self.task("loginItems", self.collect_login_items, default=[]),
            self.task("pendingUpdates", self.collect_pending_updates, default=[]),
            self.task("systemExtensions", self.collect_system_extensions, default=[]),
            self.task("kernelExtensions", self.collect_kernel_extensions, default=[]),
            self.task("installHistory", self.collect_install_history, default=[]),
        ]

    async def collect_os_info(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT name, version, major, minor, patch, build, arch, platform FROM os_version;",
            bash="""printf '{"name":"%s","version":"%s","build":"%s","arch":"%s","platform":"darwin"}' \\
                "$(sw_vers -productName)" "$(sw_vers -productVersion)" "$(sw_vers -buildVersion)" "$(uname -m)" """,
            python="""
import json, platform
release = platform.mac_ver()[0] or platform.release()
print(json.dumps({"name": platform.system(), "version": release, "arch": platform.machine(),
                  "platform": platform.system().lower()}))
"""
        )
        row = result.first()
        version = row.get_str("version")
        parts = version.split(".")

        return {
            'name': row.get_str("name"),
            'version': version,
            'major': row.get_int("major", int(parts[0]) if parts[0].isdigit() else 0),
            'minor': row.get_int("minor", int(parts[1]) if len(parts) > 1 and parts[1].isdigit() else 0),
            'patch': row.get_int("patch", int(parts[2]) if len(parts) > 2 and parts[2].isdigit() else 0),
            'build': row.get_str("build"),
            'architecture': normalize_architecture(row.get_str("arch")),
            'platform': row.get_str("platform"),
        }

    async def collect_uptime_info(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT total_seconds FROM uptime;",
            bash="""boot=$(sysctl -n kern.boottime | awk -F'[ ,]' '{print $4}'); printf '{"total_seconds":"%s"}' "$(( $(date +%s) - boot ))" """
        )
        seconds = result.first().get_int("total_seconds")
        days, remainder = divmod(seconds, 86400)
        hours, remainder = divmod(remainder, 3600)
        minutes = remainder // 60

        return {
            'totalSeconds': seconds,
            'bootTime': time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time() - seconds)),
            'formatted': f"{days}j {hours}h {minutes}m",
        }

    async def collect_kernel_info(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT version, arguments, path FROM kernel_info;",
            bash="""printf '{"version":"%s"}' "$(uname -r)" """
        )
        return rename_fields(result.first().to_python(), {'arguments': 'bootArguments'})

    async def collect_launchd_services(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT label, path, program, run_at_load, keep_alive, disabled
                FROM launchd
                WHERE path LIKE '/Library/Launch%';
            """
        )
        return [
            {
                'label': row.get_str("label"),
                'path': row.get_str("path"),
                'program': row.get_str("program"),
                'runAtLoad': row.get_bool("run_at_load"),
                'keepAlive': row.get_bool("keep_alive"),
                'disabled': row.get_bool("disabled"),
            }
            for row in result.rows()
        ]

    async def collect_login_items(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="SELECT name, path, source, status FROM startup_items;"
        )
        return [row.to_python() for row in result.rows()]

    async def collect_pending_updates(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="SELECT display_name, product_key, version FROM pending_apple_updates;",
            bash="""softwareupdate -l 2>/dev/null | awk -F': ' '/Label:/ {printf "%s{\\"display_name\\":\\"%s\\"}", (n++?",":"["), $2} END {print (n?"]":"[]")}'"""
        )
        return [
            {
                'name': row.get_str("display_name"),
                'productKey': row.get_str("product_key"),
                'version': row.get_str("version"),
            }
            for row in result.rows()
        ]

    async def collect_system_extensions(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="SELECT identifier, version, state, team, category FROM system_extensions;"
        )
        return [row.to_python() for row in result.rows()]

    async def collect_kernel_extensions(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="SELECT name, version, path FROM kernel_extensions WHERE name NOT LIKE 'com.apple.%';"
        )
        return [row.to_python() for row in result.rows()]

    async def collect_install_history(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT name, package_version, install_time, source
                FROM package_install_history
                ORDER BY install_time DESC
                LIMIT 50;
            """
        )
        return [
            {
                'name': row.get_str("name"),
                'version': row.get_str("package_version"),
                'installTime': row.get_int("install_time"),
                'source': row.get_str("source"),
            }
            for row in result.rows()
        ]
