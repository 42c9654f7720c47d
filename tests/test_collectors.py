"""
Tests des collecteurs concrets avec des backends factices

Chaque backend répond selon le programme reçu ; un backend sans
réponse prévue est indisponible, ce qui force le repli.
"""

from unittest.mock import AsyncMock, Mock

import pytest

from reportmate_agent.collectors.applications import ApplicationsCollector
from reportmate_agent.collectors.identity import IdentityCollector
from reportmate_agent.collectors.network import NetworkCollector
from reportmate_agent.collectors.profiles import ProfilesCollector
from reportmate_agent.collectors.security import SecurityCollector
from reportmate_agent.collectors.system import SystemCollector
from reportmate_agent.core.engine import FallbackAcquisitionEngine
from reportmate_agent.core.errors import BackendUnavailable, ModuleCollectionError
from reportmate_agent.services.usage import UsageSnapshot

from conftest import make_backends


def responder(answers, backend="osquery"):
    """Handler qui répond selon un fragment du programme"""
    def handler(program):
        for fragment, output in answers.items():
            if fragment in program:
                return output
        return BackendUnavailable(backend, "table inconnue")
    return handler


def build(collector_class, config, app_logger, **handlers):
    engine = FallbackAcquisitionEngine(make_backends(**handlers))
    return collector_class(config, app_logger, engine)


class TestSecurityCollector:

    @pytest.mark.asyncio
    async def test_sip_from_osquery_rows(self, config, app_logger):
        module = build(SecurityCollector, config, app_logger, osquery=responder({
            "sip_config": '[{"config_flag":"sip","enabled":"1"},{"config_flag":"allow_untrusted_kexts","enabled":"0"}]',
        }))

        sip = await module.collect_sip_status()

        assert sip['enabled'] is True
        assert sip['status'] == "Enabled"
        assert sip['configFlags'] == {"sip": True, "allow_untrusted_kexts": False}

    @pytest.mark.asyncio
    async def test_sip_from_bash_single_record(self, config, app_logger):
        module = build(SecurityCollector, config, app_logger, bash=lambda program: '{"enabled": false}')

        sip = await module.collect_sip_status()

        assert sip == {'enabled': False, 'status': "Disabled"}

    @pytest.mark.asyncio
    async def test_firewall_block_all(self, config, app_logger):
        module = build(SecurityCollector, config, app_logger, osquery=responder({
            "FROM alf": '[{"global_state":"2","stealth_enabled":"1","logging_enabled":"0"}]',
        }))

        firewall = await module.collect_firewall_status()

        assert firewall['enabled'] is True
        assert firewall['mode'] == "Block All"
        assert firewall['blockAllIncoming'] is True
        assert firewall['stealthMode'] is True

    @pytest.mark.asyncio
    async def test_firewall_unknown_state(self, config, app_logger):
        module = build(SecurityCollector, config, app_logger, osquery=responder({
            "FROM alf": '[{"global_state":"5"}]',
        }))

        firewall = await module.collect_firewall_status()

        assert firewall['mode'] == "Unknown"
        assert firewall['blockAllIncoming'] is False

    @pytest.mark.asyncio
    async def test_no_backend_gives_defaults(self, config, app_logger, unavailable_backends):
        module = SecurityCollector(config, app_logger, FallbackAcquisitionEngine(unavailable_backends))

        module_data = await module.collect_data()

        assert module_data.data['systemIntegrityProtection'] == {'enabled': False, 'status': "Unknown"}
        assert module_data.data['fileVaultUsers'] == []
        assert len(module_data.warnings) == len(module.declare_tasks())


class TestSystemCollector:

    @pytest.mark.asyncio
    async def test_os_info_from_python_tier(self, config, app_logger):
        module = build(SystemCollector, config, app_logger,
                       python=lambda program: '{"name":"macOS","version":"14.4.1","arch":"arm64","platform":"darwin"}')

        info = await module.collect_os_info()

        assert (info['major'], info['minor'], info['patch']) == (14, 4, 1)
        assert info['architecture'] == "ARM64"

    @pytest.mark.asyncio
    async def test_missing_os_info_fails_module(self, config, app_logger, unavailable_backends):
        module = SystemCollector(config, app_logger, FallbackAcquisitionEngine(unavailable_backends))

        with pytest.raises(ModuleCollectionError) as excinfo:
            await module.collect_data()

        assert excinfo.value.field == "operatingSystem"

    @pytest.mark.asyncio
    async def test_uptime_formatting(self, config, app_logger):
        module = build(SystemCollector, config, app_logger, osquery=responder({
            "FROM uptime": '[{"total_seconds":"93784"}]',
        }))

        uptime = await module.collect_uptime_info()

        assert uptime['totalSeconds'] == 93784
        assert uptime['formatted'] == "1j 2h 3m"


class TestNetworkCollector:

    @pytest.mark.asyncio
    async def test_dns_splits_servers_and_search_domains(self, config, app_logger):
        module = build(NetworkCollector, config, app_logger, osquery=responder({
            "dns_resolvers": '[{"type":"nameserver","address":"1.1.1.1"},{"type":"search","address":"corp.example"}]',
        }))

        dns = await module.collect_dns()

        assert dns == {'servers': ["1.1.1.1"], 'searchDomains': ["corp.example"]}

    @pytest.mark.asyncio
    async def test_no_wifi_row_means_disconnected(self, config, app_logger):
        module = build(NetworkCollector, config, app_logger, osquery=responder({"wifi_status": "[]"}))

        assert await module.collect_wifi() == {'connected': False}

    @pytest.mark.asyncio
    async def test_address_family(self, config, app_logger):
        module = build(NetworkCollector, config, app_logger, osquery=responder({
            "interface_addresses": '[{"interface":"en0","address":"fe80::1"},{"interface":"en0","address":"192.168.1.2"}]',
        }))

        addresses = await module.collect_addresses()

        assert [address['family'] for address in addresses] == ["IPv6", "IPv4"]


INSTALLED_APPS = (
    '[{"name":"Slack.app","path":"/Applications/Slack.app",'
    '"bundle_identifier":"com.tinyspeck.slackmacgap","bundle_short_version":"4.36"}]'
)


class TestApplicationsCollector:

    @pytest.mark.asyncio
    async def test_without_usage_service(self, config, app_logger):
        module = build(ApplicationsCollector, config, app_logger, osquery=responder({"FROM apps": INSTALLED_APPS}))

        data = (await module.collect_data()).data

        assert 'applicationUsage' not in data
        assert data['totalApplications'] == 1
        assert data['installedApplications'][0]['name'] == "Slack"
        assert data['installedApplications'][0]['source'] == "Local"

    @pytest.mark.asyncio
    async def test_with_usage_service(self, config, app_logger):
        snapshot = UsageSnapshot()
        snapshot.session_ids = [3]
        usage_service = Mock()
        usage_service.collect_usage_data = AsyncMock(return_value=snapshot)
        engine = FallbackAcquisitionEngine(make_backends(osquery=responder({"FROM apps": INSTALLED_APPS})))
        module = ApplicationsCollector(config, app_logger, engine, usage_service=usage_service)

        data = (await module.collect_data()).data

        assert data['applicationUsage']['status'] == "uninitialized"
        assert data['totalApplications'] == 1
        assert module.usage_session_ids == [3]


def profiles_bash(program):
    if "sfltool" in program:
        return '[{"name":"Zoom","enabled":false,"hidden":false},{"name":"Slack","enabled":true,"hidden":true}]'
    return (
        '[{"identifier":"com.acme.wifi","display_name":"Wi-Fi","organization":"Acme","scope":"system","verified":"1"},'
        '{"identifier":"com.acme.vpn","display_name":"VPN","scope":"user","verified":"1"}]'
    )


class TestProfilesCollector:

    @pytest.mark.asyncio
    async def test_profiles_from_bash_fallback(self, config, app_logger):
        module = build(ProfilesCollector, config, app_logger, bash=profiles_bash)

        data = (await module.collect_data()).data

        assert [profile['identifier'] for profile in data['configurationProfiles']] == ["com.acme.wifi", "com.acme.vpn"]
        assert data['configurationProfiles'][0]['scope'] == "System"
        assert data['serviceManagement'][0]['enabled'] is False
        assert data['summary'] == {
            'totalProfiles': 2, 'systemProfiles': 1, 'userProfiles': 1, 'servicesEnabled': 1
        }

    @pytest.mark.asyncio
    async def test_no_profiles_tool(self, config, app_logger, unavailable_backends):
        module = ProfilesCollector(config, app_logger, FallbackAcquisitionEngine(unavailable_backends))

        module_data = await module.collect_data()

        assert module_data.data['summary']['totalProfiles'] == 0
        assert len(module_data.warnings) == 2


IDENTITY_USERS = (
    '[{"username":"alice","realName":"Alice","uid":"501","gid":"20","isAdmin":true,"sshAccess":false,'
    '"autoLoginEnabled":false,"isDisabled":false},'
    '{"username":"bob","realName":"Bob","uid":"502","gid":"20","isAdmin":false,"sshAccess":false,'
    '"autoLoginEnabled":false,"isDisabled":true}]'
)


class TestIdentityCollector:

    @pytest.fixture
    def module(self, config, app_logger):
        osquery = responder({
            "FROM groups": '[{"groupname":"admin","gid":"80"}]',
            "logged_in_users": '[{"user":"alice","tty":"console"},{"user":"alice","tty":"ttys000"},{"user":"","tty":"ttys001"}]',
            "FROM last": "[]",
        })
        bash = responder({
            "autoLoginUser": IDENTITY_USERS,
            "dsconfigad": '{"activeDirectory":{"bound":true,"domain":"corp.example"},'
                          '"ldap":{"bound":false,"server":""},"directoryNodes":"Local,Search"}',
            "secureTokenStatus": '{"usersWithToken":["alice"],"usersWithoutToken":["bob"]}',
        }, backend="bash")
        return build(IdentityCollector, config, app_logger, osquery=osquery, bash=bash)

    @pytest.mark.asyncio
    async def test_identity_data(self, module):
        module_data = await module.collect_data()
        data = module_data.data

        assert module_data.warnings == []
        assert data['users'][0]['uid'] == 501
        assert data['groups'] == [{'name': "admin", 'gid': 80, 'members': [], 'comment': ""}]
        assert data['loginHistory'] == []
        assert data['directoryServices']['activeDirectory'] == {'bound': True, 'domain': "corp.example"}
        assert data['directoryServices']['directoryNodes'] == ["Local", "Search"]
        assert data['secureTokenUsers']['tokenGrantedCount'] == 1
        assert data['summary'] == {
            'totalUsers': 2, 'adminUsers': 1, 'disabledUsers': 1, 'currentlyLoggedIn': 1
        }
