"""
Module de collecte des profils de configuration

Ce module collecte :
- Profils de configuration installés (extension osquery macos_profiles,
  repli sur la commande profiles)
- Éléments de gestion des services en arrière-plan (sfltool)
"""

from typing import Any, Dict, List

from .base import ModuleCollector
from ..core.fanout import CollectionTask

PROFILES_LIST_SCRIPT = """
profiles list -verbose 2>/dev/null | awk '
function flush() {
    if (identifier != "") {
        printf "%s{\\"identifier\\":\\"%s\\",\\"display_name\\":\\"%s\\",\\"organization\\":\\"%s\\",\\"uuid\\":\\"%s\\",\\"scope\\":\\"%s\\",\\"verified\\":\\"1\\"}", (n++ ? "," : ""), identifier, name, org, uuid, scope
    }
    identifier = ""; name = ""; org = ""; uuid = ""
}
BEGIN { printf "["; scope = "system" }
/_computerlevel/ { scope = "system" }
/_userlevel/ { scope = "user" }
/profileIdentifier:/ { flush(); sub(/.*profileIdentifier:[[:space:]]*/, ""); identifier = $0 }
/profileDisplayName:/ { sub(/.*profileDisplayName:[[:space:]]*/, ""); name = $0 }
/profileOrganization:/ { sub(/.*profileOrganization:[[:space:]]*/, ""); org = $0 }
/profileUUID:/ { sub(/.*profileUUID:[[:space:]]*/, ""); uuid = $0 }
END { flush(); print "]" }
'
"""

SERVICE_MANAGEMENT_SCRIPT = """
command -v sfltool >/dev/null 2>&1 || { echo '[]'; exit 0; }
sfltool dumpbtm 2>/dev/null | awk '
function flush() {
    if (name != "") {
        printf "%s{\\"name\\":\\"%s\\",\\"developer\\":\\"%s\\",\\"url\\":\\"%s\\",\\"executable\\":\\"%s\\",\\"type\\":\\"%s\\",\\"enabled\\":%s,\\"hidden\\":%s}", (n++ ? "," : ""), name, developer, url, executable, type, enabled, hidden
    }
    name = ""; developer = ""; url = ""; executable = ""; type = ""; enabled = "true"; hidden = "false"
}
BEGIN { printf "["; enabled = "true"; hidden = "false" }
/^[[:space:]]*Name:/ { flush(); sub(/^[[:space:]]*Name:[[:space:]]*/, ""); name = $0 }
/^[[:space:]]*Developer Name:/ { sub(/^[[:space:]]*Developer Name:[[:space:]]*/, ""); developer = $0 }
/^[[:space:]]*URL:/ { sub(/^[[:space:]]*URL:[[:space:]]*/, ""); url = $0 }
/^[[:space:]]*Executable:/ { sub(/^[[:space:]]*Executable:[[:space:]]*/, ""); executable = $0 }
/^[[:space:]]*Type:/ { sub(/^[[:space:]]*Type:[[:space:]]*/, ""); type = $0 }
/^[[:space:]]*Disposition:/ { if ($0 ~ /[Dd]isabled/) enabled = "false" }
/^[[:space:]]*Hidden:/ { if ($0 ~ /true/) hidden = "true" }
END { flush(); print "]" }
'
"""


class ProfilesCollector(ModuleCollector):
    """Collecteur des profils de configuration et des services gérés"""

    module_id = "profiles"

    def declare_tasks(self) -> List[CollectionTask]:
        return [
            self.task("configurationProfiles", self.collect_configuration_profiles, default=[]),
            self.task("serviceManagement", self.collect_service_management, default=[]),
        ]

    async def collect_configuration_profiles(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT display_name, identifier, uuid, install_date, organization,
                       description, verified, payload_count, scope
                FROM macos_profiles
                ORDER BY install_date DESC;
            """,
            bash=PROFILES_LIST_SCRIPT
        )
        return [
            {
                'identifier': row.get_str("identifier"),
                'displayName': row.get_str("display_name"),
                'organization': row.get_str("organization"),
                'description': row.get_str("description"),
                'uuid': row.get_str("uuid"),
                'installDate': row.get_str("install_date"),
                'scope': (row.get_str("scope") or "unknown").capitalize(),
                'verified': row.get_bool("verified"),
                'payloadCount': row.get_int("payload_count"),
            }
            for row in result.rows()
            if row.get_str("identifier")
        ]

    async def collect_service_management(self) -> List[Dict[str, Any]]:
        result = await self.query(bash=SERVICE_MANAGEMENT_SCRIPT)
        return [
            {
                'name': row.get_str("name"),
                'developer': row.get_str("developer"),
                'url': row.get_str("url"),
                'executable': row.get_str("executable"),
                'type': row.get_str("type"),
                'enabled': row.get_bool("enabled", True),
                'hidden': row.get_bool("hidden"),
            }
            for row in result.rows()
        ]

    def assemble(self, results: Dict[str, Any]) -> Dict[str, Any]:
        profiles = results.get("configurationProfiles") or []
        results["summary"] = {
            'totalProfiles': len(profiles),
            'systemProfiles': sum(1 for profile in profiles if profile['scope'] == "System"),
            'userProfiles': sum(1 for profile in profiles if profile['scope'] == "User"),
            'servicesEnabled': sum(1 for service in results.get("serviceManagement") or [] if service['enabled']),
        }
        return results
