"""
Module de collecte des comptes et sessions utilisateurs

Ce module collecte :
- Comptes locaux (UID >= 500) avec droits administrateur et accès SSH
- Groupes principaux et leurs membres
- Utilisateurs connectés et historique de connexion
- Liaison aux annuaires (Active Directory, LDAP)
- Utilisateurs disposant d'un Secure Token
"""

from typing import Any, Dict, List

from .base import ModuleCollector
from ..core.fanout import CollectionTask

USER_ACCOUNTS_SCRIPT = """
auto_login=$(defaults read /Library/Preferences/com.apple.loginwindow autoLoginUser 2>/dev/null || echo "")
admins=$(dscl . -read /Groups/admin GroupMembership 2>/dev/null)
ssh_members=$(dscl . -read /Groups/com.apple.access_ssh GroupMembership 2>/dev/null)
printf "["
n=0
for user in $(dscl . -list /Users UniqueID 2>/dev/null | awk '$2 >= 500 && $2 < 65534 {print $1}'); do
    path="/Users/$user"
    uid=$(dscl . -read "$path" UniqueID 2>/dev/null | awk '{print $2}')
    gid=$(dscl . -read "$path" PrimaryGroupID 2>/dev/null | awk '{print $2}')
    real_name=$(dscl . -read "$path" RealName 2>/dev/null | sed '1s/^RealName:[[:space:]]*//' | tr -d '\\n' | sed 's/^[[:space:]]*//; s/"/\\\\"/g')
    home=$(dscl . -read "$path" NFSHomeDirectory 2>/dev/null | awk '{print $2}')
    shell=$(dscl . -read "$path" UserShell 2>/dev/null | awk '{print $2}')
    guid=$(dscl . -read "$path" GeneratedUID 2>/dev/null | awk '{print $2}')
    is_admin=false; echo "$admins" | grep -qw "$user" && is_admin=true
    ssh_access=false; echo "$ssh_members" | grep -qw "$user" && ssh_access=true
    auto=false; [ "$auto_login" = "$user" ] && auto=true
    disabled=false; dscl . -read "$path" AuthenticationAuthority 2>/dev/null | grep -q "DisabledUser" && disabled=true
    [ $n -gt 0 ] && printf ","
    printf '{"username":"%s","realName":"%s","uid":"%s","gid":"%s","homeDirectory":"%s","shell":"%s","uuid":"%s","isAdmin":%s,"sshAccess":%s,"autoLoginEnabled":%s,"isDisabled":%s}' \\
        "$user" "$real_name" "$uid" "$gid" "$home" "$shell" "$guid" "$is_admin" "$ssh_access" "$auto" "$disabled"
    n=$((n + 1))
done
printf "]"
"""

GROUPS_SCRIPT = """
printf "["
n=0
for group in admin staff wheel com.apple.access_ssh com.apple.access_screensharing; do
    gid=$(dscl . -read "/Groups/$group" PrimaryGroupID 2>/dev/null | awk '{print $2}')
    [ -z "$gid" ] && continue
    members=$(dscl . -read "/Groups/$group" GroupMembership 2>/dev/null | sed 's/^GroupMembership:[[:space:]]*//')
    [ $n -gt 0 ] && printf ","
    printf '{"groupname":"%s","gid":"%s","members":"%s"}' "$group" "$gid" "$members"
    n=$((n + 1))
done
printf "]"
"""

LOGGED_IN_SCRIPT = """who 2>/dev/null | awk '{printf "%s{\\"user\\":\\"%s\\",\\"tty\\":\\"%s\\",\\"time\\":\\"%s %s %s\\"}", (NR>1?",":"["), $1, $2, $3, $4, $5} END {print (NR?"]":"[]")}'"""

LOGIN_HISTORY_SCRIPT = """last -50 2>/dev/null | awk '$1 != "" && $1 != "wtmp" && $1 != "reboot" && $1 != "shutdown" {printf "%s{\\"username\\":\\"%s\\",\\"tty\\":\\"%s\\",\\"time\\":\\"%s %s %s %s\\"}", (n++?",":"["), $1, $2, $3, $4, $5, $6} END {print (n?"]":"[]")}'"""

DIRECTORY_SERVICES_SCRIPT = """
ad_bound=false; ad_domain=""
ad_info=$(dsconfigad -show 2>/dev/null || echo "")
if echo "$ad_info" | grep -q "Active Directory Domain"; then
    ad_bound=true
    ad_domain=$(echo "$ad_info" | awk -F'= ' '/Active Directory Domain/ {print $2}')
fi
ldap_bound=false; ldap_server=""
ldap_info=$(dscl /LDAPv3 -list / 2>/dev/null || echo "")
if [ -n "$ldap_info" ]; then
    ldap_bound=true
    ldap_server=$(echo "$ldap_info" | head -1)
fi
nodes=$(dscl -list / 2>/dev/null | tr '\\n' ',' | sed 's/,$//')
printf '{"activeDirectory":{"bound":%s,"domain":"%s"},"ldap":{"bound":%s,"server":"%s"},"directoryNodes":"%s"}' \\
    "$ad_bound" "$ad_domain" "$ldap_bound" "$ldap_server" "$nodes"
"""

SECURE_TOKEN_SCRIPT = """
with=""; without=""
for user in $(dscl . -list /Users UniqueID 2>/dev/null | awk '$2 >= 500 && $2 < 65534 {print $1}'); do
    status=$(sysadminctl -secureTokenStatus "$user" 2>&1 || echo "Unknown")
    if echo "$status" | grep -qi "enabled"; then
        with="$with${with:+,}\\"$user\\""
    elif echo "$status" | grep -qi "disabled"; then
        without="$without${without:+,}\\"$user\\""
    fi
done
printf '{"usersWithToken":[%s],"usersWithoutToken":[%s]}' "$with" "$without"
"""


class IdentityCollector(ModuleCollector):
    """Collecteur des comptes, groupes et sessions utilisateurs"""

    module_id = "identity"

    def declare_tasks(self) -> List[CollectionTask]:
        return [
            self.task("users", self.collect_user_accounts, default=[]),
            self.task("groups", self.collect_groups, default=[]),
            self.task("loggedInUsers", self.collect_logged_in_users, default=[]),
            self.task("loginHistory", self.collect_login_history, default=[]),
            self.task("directoryServices", self.collect_directory_services, default={}),
            self.task("secureTokenUsers", self.collect_secure_token_users, default={}),
        ]

    async def collect_user_accounts(self) -> List[Dict[str, Any]]:
        # La table osquery users ne donne ni les droits admin ni l'accès SSH
        result = await self.query(bash=USER_ACCOUNTS_SCRIPT)
        return [
            {
                'username': row.get_str("username"),
                'realName': row.get_str("realName"),
                'uid': row.get_int("uid"),
                'gid': row.get_int("gid"),
                'homeDirectory': row.get_str("homeDirectory"),
                'shell': row.get_str("shell"),
                'uuid': row.get_str("uuid"),
                'isAdmin': row.get_bool("isAdmin"),
                'sshAccess': row.get_bool("sshAccess"),
                'autoLoginEnabled': row.get_bool("autoLoginEnabled"),
                'isDisabled': row.get_bool("isDisabled"),
            }
            for row in result.rows()
            if row.get_str("username")
        ]

    async def collect_groups(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT gid, groupname, comment
                FROM groups
                WHERE gid >= 500
                   OR groupname IN ('admin', 'staff', 'wheel', 'com.apple.access_ssh', 'com.apple.access_screensharing');
            """,
            bash=GROUPS_SCRIPT
        )
        return [
            {
                'name': row.get_str("groupname"),
                'gid': row.get_int("gid"),
                'members': row.get_str("members").split(),
                'comment': row.get_str("comment"),
            }
            for row in result.rows()
        ]

    async def collect_logged_in_users(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="SELECT user, tty, host, time, pid FROM logged_in_users;",
            bash=LOGGED_IN_SCRIPT
        )
        return [
            {
                'user': row.get_str("user"),
                'tty': row.get_str("tty"),
                'host': row.get_str("host"),
                'time': row.get_str("time"),
            }
            for row in result.rows()
        ]

    async def collect_login_history(self) -> List[Dict[str, Any]]:
        result = await self.query(
            osquery="""
                SELECT username, tty, pid, type, time
                FROM last
                WHERE username != '' AND username != 'reboot' AND username != 'shutdown'
                ORDER BY time DESC
                LIMIT 50;
            """,
            bash=LOGIN_HISTORY_SCRIPT
        )
        return [
            {
                'username': row.get_str("username"),
                'tty': row.get_str("tty"),
                'time': row.get_str("time"),
            }
            for row in result.rows()
        ]

    async def collect_directory_services(self) -> Dict[str, Any]:
        result = await self.query(bash=DIRECTORY_SERVICES_SCRIPT)
        row = result.first()
        active_directory = row.get_map("activeDirectory")
        ldap = row.get_map("ldap")
        nodes = row.get_str("directoryNodes")

        return {
            'activeDirectory': {
                'bound': active_directory.get_bool("bound"),
                'domain': active_directory.get_str("domain"),
            },
            'ldap': {
                'bound': ldap.get_bool("bound"),
                'server': ldap.get_str("server"),
            },
            'directoryNodes': [node for node in nodes.split(",") if node],
        }

    async def collect_secure_token_users(self) -> Dict[str, Any]:
        result = await self.query(bash=SECURE_TOKEN_SCRIPT)
        data = result.first().to_python()
        with_token = data.get("usersWithToken") or []
        without_token = data.get("usersWithoutToken") or []

        return {
            'usersWithToken': with_token,
            'usersWithoutToken': without_token,
            'tokenGrantedCount': len(with_token),
            'tokenMissingCount': len(without_token),
        }

    def assemble(self, results: Dict[str, Any]) -> Dict[str, Any]:
        users = results.get("users") or []
        logged_in = {session['user'] for session in results.get("loggedInUsers") or [] if session['user']}

        results["summary"] = {
            'totalUsers': len(users),
            'adminUsers': sum(1 for user in users if user['isAdmin']),
            'disabledUsers': sum(1 for user in users if user['isDisabled']),
            'currentlyLoggedIn': len(logged_in),
        }
        return results
