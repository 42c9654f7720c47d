"""
Module de collecte des applications

Ce module collecte :
- Applications installées (bundles .app)
- Processus en cours
- Programmes de démarrage
- Utilisation des applications (base du service de surveillance)
"""

import os
from typing import Any, Dict, List, Optional

from .base import ModuleCollector
from ..core.fanout import CollectionTask
from ..services.usage import ApplicationUsageService


class ApplicationsCollector(ModuleCollector):
    """Collecteur des applications installées et de leur utilisation"""

    module_id = "applications"

    def __init__(self, config, logger, engine, usage_service: Optional[ApplicationUsageService] = None):
        super().__init__(config, logger, engine)
        self.usage_service = usage_service
        self.usage_session_ids: List[int] = []

    def declare_tasks(self) -> List[CollectionTask]:
        tasks = [
            self.task("installedApplications", self.collect_installed_applications, default=[]),
            self.task("runningProcesses", self.collect_running_processes, default=[]),
            self.task("startupPrograms", self.collect_startup_programs, default=[]),
            self.task("browserExtensions", self.collect_browser_extensions, default=[]),
            self.task("homebrewPackages", self.collect_homebrew_packages, default=[]),
        ]

        if self.usage_service is not None:
            tasks.append(self.task("applicationUsage", self.collect_application_usage, default={}))

        return tasks

    async def collect_installed_applications(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT name, path, bundle_identifier, bundle_name, bundle_short_version,
                       bundle_version, category, minimum_system_version, display_name
                FROM apps
                WHERE path LIKE '/Applications/%'
                   OR path LIKE '/System/Applications/%'
                   OR path LIKE '%/Applications/%';
            """,
            bash="""
                find /Applications /System/Applications -maxdepth 3 -name "*.app" -type d 2>/dev/null | while read -r app; do
                    plist="$app/Contents/Info.plist"
                    id=$(defaults read "$plist" CFBundleIdentifier 2>/dev/null)
                    version=$(defaults read "$plist" CFBundleShortVersionString 2>/dev/null)
                    printf '{"name":"%s","path":"%s","bundle_identifier":"%s","bundle_short_version":"%s"}\\n' \\
                        "$(basename "$app")" "$app" "$id" "$version"
                done | awk 'BEGIN {printf "["} {printf "%s%s", (NR>1?",":""), $0} END {print "]"}'
            """
        )

        applications = []
        for row in result.rows():
            path = row.get_str("path")
            name = (row.get_str("name") or row.get_str("bundle_name")
                    or row.get_str("display_name") or os.path.basename(path))

            applications.append({
                'name': name[:-4] if name.endswith(".app") else name,
                'path': path,
                'bundleIdentifier': row.get_str("bundle_identifier"),
                'version': row.get_str("bundle_short_version") or row.get_str("bundle_version"),
                'buildVersion': row.get_str("bundle_version"),
                'category': row.get_str("category", "Unknown") or "Unknown",
                'source': application_source(path),
                'minimumSystemVersion': row.get_str("minimum_system_version"),
            })

        return applications

    async def collect_running_processes(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT pid, name, path, uid, resident_size, start_time
                FROM processes
                WHERE path LIKE '%.app/%';
            """,
            bash="""ps -axo pid=,rss=,comm= | awk '/\\.app\\// {n=$3; for(i=4;i<=NF;i++) n=n" "$i; gsub(/"/, "", n); printf "%s{\\"pid\\":\\"%s\\",\\"resident_size\\":\\"%s\\",\\"path\\":\\"%s\\"}", (c++?",":"["), $1, $2*1024, n} END {print (c?"]":"[]")}'"""
        )
        return [
            {
                'pid': row.get_int("pid"),
                'name': row.get_str("name") or os.path.basename(row.get_str("path")),
                'path': row.get_str("path"),
                'memoryBytes': row.get_int("resident_size"),
                'startTime': row.get_int("start_time"),
            }
            for row in result.rows()
        ]

    async def collect_startup_programs(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT label, program, path, run_at_load
                FROM launchd
                WHERE run_at_load = '1' AND path NOT LIKE '/System/%';
            """
        )
        return [
            {
                'name': row.get_str("label"),
                'command': row.get_str("program"),
                'location': row.get_str("path"),
            }
            for row in result.rows()
        ]

    async def collect_browser_extensions(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT name, identifier, version, 'chrome' AS browser FROM chrome_extensions
                UNION ALL
                SELECT name, identifier, version, 'firefox' AS browser FROM firefox_addons;
            """
        )
        return [row.to_python() for row in result.rows()]

    async def collect_homebrew_packages(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="SELECT name, version, type FROM homebrew_packages;",
            bash="""brew list --versions 2>/dev/null | awk '{printf "%s{\\"name\\":\\"%s\\",\\"version\\":\\"%s\\"}", (NR>1?",":"["), $1, $2} END {print (NR?"]":"[]")}'"""
        )
        return [
            {'name': row.get_str("name"), 'version': row.get_str("version")}
            for row in result.rows()
        ]

    async def collect_application_usage(self) -> Dict[str, Any]:
        snapshot = await self.usage_service.collect_usage_data()
        self.usage_session_ids = snapshot.session_ids
        return snapshot.to_dict()

    def assemble(self, results: Dict[str, Any]) -> Dict[str, Any]:
        results["totalApplications"] = len(results.get("installedApplications") or [])
        return results


def application_source(path: str) -> str:
    """
    Détermine l'origine d'une application d'après son chemin

    Returns:
        str: "Apple", "Local" ou "User"
    """
    if path.startswith("/System/"):
        return "Apple"
    if path.startswith("/Applications/"):
        return "Local"
    return "User"
