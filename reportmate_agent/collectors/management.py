"""
Module de collecte des informations de gestion (MDM)

Ce module collecte :
- Statut d'inscription MDM
- Configuration ADE (inscription automatisée)
- Identifiants de l'appareil
- Profils de configuration installés
- Gestion à distance (ARD)
- Client Munki
"""

from typing import Any, Dict, List

from .base import ModuleCollector
from ..core.fanout import CollectionTask

ENROLLMENT_SCRIPT = """
enrolled=false; user_approved=false; installed_from_dep=false; dep_capable=false
profiles_output=$(profiles status -type enrollment 2>/dev/null || echo "")
if echo "$profiles_output" | grep -qi "MDM enrollment: Yes"; then enrolled=true; fi
if echo "$profiles_output" | grep -qi "User Approved"; then user_approved=true; fi
if echo "$profiles_output" | grep -qi "DEP enrollment: Yes"; then installed_from_dep=true; dep_capable=true; fi
if [ -f /private/var/db/ConfigurationProfiles/Store/activationRecord.plist ]; then dep_capable=true; fi
server_url=$(profiles -C -v 2>/dev/null | grep -A5 "MDM Profile" | grep "ServerURL" | head -1 \\
    | sed 's/.*ServerURL[[:space:]]*=[[:space:]]*//' | tr -d '; "')
printf '{"enrolled":"%s","server_url":"%s","user_approved":"%s","installed_from_dep":"%s","dep_capable":"%s"}' \\
    "$enrolled" "$server_url" "$user_approved" "$installed_from_dep" "$dep_capable"
"""


class ManagementCollector(ModuleCollector):
    """Collecteur de l'état de gestion de l'appareil"""

    module_id = "management"

    def declare_tasks(self) -> List[CollectionTask]:
        return [
            self.task("mdmEnrollment", self.collect_mdm_enrollment, default={'enrolled': False}),
            self.task("adeConfiguration", self.collect_ade_configuration, default={}),
            self.task("deviceIdentifiers", self.collect_device_identifiers, default={}),
            self.task("profiles", self.collect_installed_profiles, default=[]),
            self.task("remoteManagement", self.collect_remote_management, default={'enabled': False}),
            self.task("munki", self.collect_munki_info, default={}),
        ]

    async def collect_mdm_enrollment(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="""
                SELECT enrolled, server_url, checkin_url, user_approved,
                       installed_from_dep, dep_capable
                FROM mdm;
            """,
            bash=ENROLLMENT_SCRIPT
        )
        row = result.first()
        server_url = row.get_str("server_url")

        return {
            'enrolled': row.get_bool("enrolled"),
            'serverUrl': server_url,
            'checkinUrl': row.get_str("checkin_url"),
            'userApproved': row.get_bool("user_approved"),
            'enrolledViaDep': row.get_bool("installed_from_dep"),
            'depCapable': row.get_bool("dep_capable"),
            'provider': mdm_provider(server_url),
        }

    async def collect_ade_configuration(self) -> Dict[str, Any]:
        result = await self.query(
            bash="""
                record=/private/var/db/ConfigurationProfiles/Settings/.cloudConfigRecordFound
                activated=false
                if [ -f "$record" ]; then activated=true; fi
                org=$(profiles show -type enrollment 2>/dev/null | awk -F'= ' '/OrganizationName/ {gsub(/[";]/, "", $2); print $2; exit}')
                printf '{"activated":"%s","organization":"%s"}' "$activated" "$org"
            """
        )
        row = result.first()
        return {
            'activated': row.get_bool("activated"),
            'organization': row.get_str("organization"),
        }

    async def collect_device_identifiers(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT hardware_serial, uuid, computer_name FROM system_info;",
            bash="""printf '{"hardware_serial":"%s","computer_name":"%s"}' \\
                "$(ioreg -l | awk -F'"' '/IOPlatformSerialNumber/ {print $4}')" "$(scutil --get ComputerName 2>/dev/null)" """
        )
        row = result.first()
        return {
            'serialNumber': row.get_str("hardware_serial"),
            'uuid': row.get_str("uuid"),
            'deviceName': row.get_str("computer_name"),
        }

    async def collect_installed_profiles(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT identifier, display_name, install_date, organization, verification_state
                FROM macos_profiles;
            """
        )
        return [
            {
                'identifier': row.get_str("identifier"),
                'name': row.get_str("display_name"),
                'organization': row.get_str("organization"),
                'installDate': row.get_str("install_date"),
                'verified': row.get_str("verification_state").lower() == "verified",
            }
            for row in result.rows()
        ]

    async def collect_remote_management(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT label, disabled FROM launchd WHERE label = 'com.apple.screensharing';",
            bash="""
                if launchctl print system/com.apple.screensharing >/dev/null 2>&1; then
                    printf '{"disabled":"0"}'
                else
                    printf '{"disabled":"1"}'
                fi
            """
        )
        rows = result.rows()
        enabled = bool(rows) and not rows[0].get_bool("disabled", True)
        return {'enabled': enabled}

    async def collect_munki_info(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT version, manifest_name, success, end_time FROM munki_info;",
            bash="""printf '{"version":"%s"}' "$(defaults read /Library/Preferences/ManagedInstalls ClientIdentifier 2>/dev/null)" """
        )
        row = result.first()
        return {
            'version': row.get_str("version"),
            'manifest': row.get_str("manifest_name"),
            'lastRunSuccess': row.get_bool("success"),
            'lastRunEnd': row.get_str("end_time"),
        }

    def assemble(self, results: Dict[str, Any]) -> Dict[str, Any]:
        enrollment = results.get("mdmEnrollment") or {}
        if not enrollment.get("enrolled"):
            results["enrollmentStatus"] = "Not Enrolled"
        elif enrollment.get("enrolledViaDep"):
            results["enrollmentStatus"] = "ADE Enrolled"
        else:
            results["enrollmentStatus"] = "User Enrolled"
        return results


_MDM_PROVIDERS = (
    ("jamf", "Jamf Pro"),
    ("microsoft", "Microsoft Intune"),
    ("manage.microsoft", "Microsoft Intune"),
    ("kandji", "Kandji"),
    ("mosyle", "Mosyle"),
    ("simplemdm", "SimpleMDM"),
    ("workspaceone", "Workspace ONE"),
    ("awmdm", "Workspace ONE"),
    ("micromdm", "MicroMDM"),
    ("nanomdm", "NanoMDM"),
)


def mdm_provider(server_url: str) -> str:
    """Devine le fournisseur MDM d'après l'URL du serveur"""
    lowered = (server_url or "").lower()
    if not lowered:
        return ""
    for marker, provider in _MDM_PROVIDERS:
        if marker in lowered:
            return provider
    return "Unknown"
