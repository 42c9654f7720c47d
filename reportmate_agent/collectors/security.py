"""
Module de collecte des informations de sécurité

Ce module collecte l'état des protections de la machine :
SIP, Gatekeeper, pare-feu applicatif, FileVault, XProtect, SSH,
et la liste des utilisateurs FileVault (extension osquery).
"""

from typing import Any, Dict, List

from .assembler import lookup, to_bool
from .base import ModuleCollector
from ..core.fanout import CollectionTask

_FIREWALL_MODES = {0: "Off", 1: "On", 2: "Block All"}


class SecurityCollector(ModuleCollector):
    """Collecteur de l'état de sécurité"""

    module_id = "security"

    def declare_tasks(self) -> List[CollectionTask]:
        return [
            self.task("systemIntegrityProtection", self.collect_sip_status, default={'enabled': False, 'status': "Unknown"}),
            self.task("gatekeeper", self.collect_gatekeeper_status, default={'enabled': False, 'status': "Unknown"}),
            self.task("firewall", self.collect_firewall_status, default={'enabled': False}),
            self.task("fileVault", self.collect_filevault_status, default={'enabled': False, 'status': "Unknown"}),
            self.task("fileVaultUsers", self.collect_filevault_users, default=[]),
            self.task("xprotect", self.collect_xprotect_status, default={}),
            self.task("ssh", self.collect_ssh_status, default={'enabled': False}),
            self.task("rootUser", self.collect_root_user_status, default={'enabled': False}),
        ]

    async def collect_sip_status(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT config_flag, enabled FROM sip_config;",
            bash="""
                sip_output=$(csrutil status 2>/dev/null || echo "Unknown")
                enabled=false
                if echo "$sip_output" | grep -qi "enabled"; then enabled=true; fi
                printf '{"enabled": %s}' "$enabled"
            """
        )

        if result.is_items:
            flags = {row.get_str("config_flag"): row.get_bool("enabled") for row in result.rows()}
            enabled = flags.get("sip", all(flags.values()) if flags else False)
            return {'enabled': enabled, 'status': "Enabled" if enabled else "Disabled", 'configFlags': flags}

        enabled = result.first().get_bool("enabled")
        return {'enabled': enabled, 'status': "Enabled" if enabled else "Disabled"}

    async def collect_gatekeeper_status(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT assessments_enabled, dev_id_enabled, version FROM gatekeeper;",
            bash="""
                gk_output=$(spctl --status 2>/dev/null || echo "Unknown")
                enabled=false
                if echo "$gk_output" | grep -qi "enabled"; then enabled=true; fi
                printf '{"enabled": %s}' "$enabled"
            """
        )
        row = result.first()
        enabled = row.get_bool("assessments_enabled") or row.get_bool("enabled")

        return {
            'enabled': enabled,
            'status': "Enabled" if enabled else "Disabled",
            'developerIdEnabled': row.get_bool("dev_id_enabled"),
            'version': row.get_str("version"),
        }

    async def collect_firewall_status(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT global_state, stealth_enabled, logging_enabled FROM alf;",
            bash="""
                fw=/usr/libexec/ApplicationFirewall/socketfilterfw
                state=0; stealth=0
                if $fw --getglobalstate 2>/dev/null | grep -qi "enabled"; then state=1; fi
                if $fw --getblockall 2>/dev/null | grep -qi "enabled"; then state=2; fi
                if $fw --getstealthmode 2>/dev/null | grep -qi "enabled"; then stealth=1; fi
                printf '{"global_state":"%s","stealth_enabled":"%s"}' "$state" "$stealth"
            """
        )
        row = result.first()
        global_state = row.get_int("global_state")

        return {
            'enabled': global_state > 0,
            'mode': lookup(_FIREWALL_MODES, global_state, "Unknown"),
            'blockAllIncoming': global_state == 2,
            'stealthMode': row.get_bool("stealth_enabled"),
            'loggingEnabled': row.get_bool("logging_enabled"),
        }

    async def collect_filevault_status(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT de.encrypted, de.type FROM mounts m JOIN disk_encryption de ON m.device_alias = de.name WHERE m.path = '/';",
            bash="""
                status=$(fdesetup status 2>/dev/null || echo "Unknown")
                encrypted=0
                if echo "$status" | grep -qi "FileVault is On"; then encrypted=1; fi
                printf '{"encrypted":"%s","type":"%s"}' "$encrypted" "$(echo "$status" | head -1)"
            """
        )
        row = result.first()
        enabled = row.get_bool("encrypted")

        return {
            'enabled': enabled,
            'status': "Encrypted" if enabled else "Not Encrypted",
            'type': row.get_str("type"),
        }

    async def collect_filevault_users(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="SELECT username, uuid, user_uuid FROM filevault_users;",
            bash="""fdesetup list 2>/dev/null | awk -F',' '{printf "%s{\\"username\\":\\"%s\\",\\"uuid\\":\\"%s\\"}", (NR>1?",":"["), $1, $2} END {print (NR?"]":"[]")}'"""
        )
        return [{'username': row.get_str("username"), 'uuid': row.get_str("uuid")} for row in result.rows()]

    async def collect_xprotect_status(self) -> Dict[str, Any]:
        result = await self.query(
            bash="""printf '{"version":"%s"}' "$(defaults read /Library/Apple/System/Library/CoreServices/XProtect.bundle/Contents/Info.plist CFBundleShortVersionString 2>/dev/null)" """
        )
        version = result.first().get_str("version")
        return {'installed': bool(version), 'version': version}

    async def collect_ssh_status(self) -> Dict[str, Any]:
        result = await self.query(
            osquery="SELECT label, disabled FROM launchd WHERE label = 'com.openssh.sshd';",
            bash="""
                if systemsetup -getremotelogin 2>/dev/null | grep -qi ": on"; then
                    printf '{"disabled":"0"}'
                else
                    printf '{"disabled":"1"}'
                fi
            """
        )
        rows = result.rows()
        enabled = bool(rows) and not rows[0].get_bool("disabled", True)
        return {'enabled': enabled, 'status': "Enabled" if enabled else "Disabled"}

    async def collect_root_user_status(self) -> Dict[str, Any]:
        result = await self.query(
            bash="""dscl . -read /Users/root AuthenticationAuthority >/dev/null 2>&1 && printf '{"enabled":"true"}' || printf '{"enabled":"false"}'"""
        )
        return {'enabled': to_bool(result.first().get_str("enabled"))}
