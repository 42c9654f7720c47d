"""
Tests des modules de collecte de bout en bout, avec des backends factices
"""

from typing import Any, Dict, List

import pytest
import yaml

from reportmate_agent.collectors.applications import application_source
from reportmate_agent.collectors.base import ModuleCollector, ModuleData
from reportmate_agent.collectors.hardware import HardwareCollector
from reportmate_agent.collectors.inventory import InventoryCollector, load_inventory_file
from reportmate_agent.collectors.management import ManagementCollector, mdm_provider
from reportmate_agent.core.backends import BackendKind
from reportmate_agent.core.engine import FallbackAcquisitionEngine
from reportmate_agent.core.errors import BackendUnavailable, ModuleCollectionError
from reportmate_agent.core.fanout import CollectionTask

from conftest import make_backends


class SampleCollector(ModuleCollector):
    """Module à trois champs, le deuxième via le fallback bash"""

    module_id = "sample"

    def declare_tasks(self) -> List[CollectionTask]:
        return [
            self.task("a", self.collect_a),
            self.task("b", self.collect_b, default={}),
            self.task("c", self.collect_c),
        ]

    async def collect_a(self):
        return "alpha"

    async def collect_b(self) -> Dict[str, Any]:
        result = await self.query(osquery="SELECT name FROM apps;", bash="list-apps")
        return result.to_python()

    async def collect_c(self):
        return "gamma"


class TestModuleCollector:

    @pytest.mark.asyncio
    async def test_fallback_result_lands_in_declared_order(self, config, app_logger):
        backends = make_backends(
            osquery=lambda program: BackendUnavailable("osquery", "non installé"),
            bash=lambda program: '[{"name":"x"}]',
        )
        module = SampleCollector(config, app_logger, FallbackAcquisitionEngine(backends))

        module_data = await module.collect_data()

        assert isinstance(module_data, ModuleData)
        assert list(module_data.data) == ["a", "b", "c"]
        assert module_data.data["b"] == {"items": [{"name": "x"}]}
        assert module_data.warnings == []

    @pytest.mark.asyncio
    async def test_failed_field_uses_default_and_warns(self, config, app_logger, unavailable_backends):
        module = SampleCollector(config, app_logger, FallbackAcquisitionEngine(unavailable_backends))

        module_data = await module.collect_data()

        assert module_data.data["b"] == {}
        assert len(module_data.warnings) == 1
        assert module_data.warnings[0].startswith("b: ")
        assert module.get_collection_stats()['warnings_count'] == 1

    @pytest.mark.asyncio
    async def test_to_dict_includes_warnings_only_when_present(self, config, app_logger, unavailable_backends):
        module = SampleCollector(config, app_logger, FallbackAcquisitionEngine(unavailable_backends))

        serialized = (await module.collect_data()).to_dict()

        assert serialized['moduleId'] == "sample"
        assert 'warnings' in serialized
        assert 'warnings' not in ModuleData("sample", {"a": 1}).to_dict()


def inventory_osquery(program: str):
    if "system_info" in program:
        return '[{"uuid":"UUID-1","hardware_serial":"C02XYZ","computer_name":"Studio Mac"}]'
    if "logged_in_users" in program:
        return '[{"user":"alice"}]'
    return BackendUnavailable("osquery", "table inconnue")


def inventory_bash(program: str):
    if "localtime" in program:
        return "Europe/Paris\n"
    if program.strip() == "hostname":
        return "studio.local\n"
    return BackendUnavailable("bash", "commande inconnue")


class TestInventoryCollector:

    def test_load_inventory_file(self, tmp_path):
        path = tmp_path / "Inventory.yaml"
        path.write_text(yaml.safe_dump({"asset": 4521, "location": "Paris", "usage": None}))

        assert load_inventory_file(str(path)) == {"asset": "4521", "location": "Paris", "usage": ""}
        assert load_inventory_file(str(tmp_path / "absent.yaml")) == {}

    @pytest.mark.asyncio
    async def test_inventory_combines_identity_and_file(self, config, app_logger, tmp_path):
        (tmp_path / "Inventory.yaml").write_text(yaml.safe_dump({
            "asset": "A-100", "location": "Lyon", "allocation": "Bob", "area": "R&D"
        }))
        backends = make_backends(osquery=inventory_osquery, bash=inventory_bash)
        module = InventoryCollector(config, app_logger, FallbackAcquisitionEngine(backends))

        data = (await module.collect_data()).data

        assert data['serialNumber'] == "C02XYZ"
        assert data['deviceName'] == "Studio Mac"
        assert data['assetTag'] == "A-100"
        assert data['owner'] == "Bob"
        assert data['department'] == "R&D"
        assert data['timezone'] == "Europe/Paris"

    @pytest.mark.asyncio
    async def test_missing_identity_fails_module(self, config, app_logger, unavailable_backends):
        module = InventoryCollector(config, app_logger, FallbackAcquisitionEngine(unavailable_backends))

        with pytest.raises(ModuleCollectionError) as excinfo:
            await module.collect_data()

        assert excinfo.value.field == "identity"


class TestHardwareCollector:

    def test_purgeable_space_only_in_deep_mode(self, config, app_logger, unavailable_backends):
        engine = FallbackAcquisitionEngine(unavailable_backends)

        quick = [task.name for task in HardwareCollector(config, app_logger, engine).declare_tasks()]
        config.set('collection', 'storage_mode', 'deep')
        deep = [task.name for task in HardwareCollector(config, app_logger, engine).declare_tasks()]

        assert "purgeableSpace" not in quick
        assert deep[-1] == "purgeableSpace"

    @pytest.mark.asyncio
    async def test_purgeable_probe_uses_slow_timeout(self, config, app_logger):
        config.set('collection', 'slow_probe_timeout', '300')
        backends = make_backends(bash=lambda program: '{"APFSContainerFree": 500, "FreeSpace": 200}')
        module = HardwareCollector(config, app_logger, FallbackAcquisitionEngine(backends))

        result = await module.collect_purgeable_space()

        assert result['purgeableBytes'] == 300
        assert backends[BackendKind.BASH].calls[0][1] == 300.0

    def test_assemble_derives_form_factor(self, config, app_logger, unavailable_backends):
        module = HardwareCollector(config, app_logger, FallbackAcquisitionEngine(unavailable_backends))

        data = module.assemble({"system": {"modelIdentifier": "Mac14,2", "modelName": "MacBook Air"}})

        assert data["system"]["formFactor"] == "laptop"
        assert data["system"]["modelYear"] == "2022"


class TestManagementCollector:

    @pytest.mark.parametrize("url,expected", [
        ("https://acme.jamfcloud.com/mdm/ServerURL", "Jamf Pro"),
        ("https://manage.microsoft.com/DeviceGateway", "Microsoft Intune"),
        ("https://mdm.example.org", "Unknown"),
        ("", ""),
    ])
    def test_mdm_provider(self, url, expected):
        assert mdm_provider(url) == expected

    def test_enrollment_status(self, config, app_logger, unavailable_backends):
        module = ManagementCollector(config, app_logger, FallbackAcquisitionEngine(unavailable_backends))

        assert module.assemble({"mdmEnrollment": {"enrolled": False}})["enrollmentStatus"] == "Not Enrolled"
        assert module.assemble({"mdmEnrollment": {"enrolled": True, "enrolledViaDep": True}})["enrollmentStatus"] == "ADE Enrolled"
        assert module.assemble({"mdmEnrollment": {"enrolled": True}})["enrollmentStatus"] == "User Enrolled"


def test_application_source():
    assert application_source("/System/Applications/Notes.app") == "Apple"
    assert application_source("/Applications/Slack.app") == "Local"
    assert application_source("/Users/alice/Applications/Tool.app") == "User"
