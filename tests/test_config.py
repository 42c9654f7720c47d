"""
Tests de la configuration de l'agent
"""

from reportmate_agent.core.config import DEFAULT_MODULES, AgentConfig, create_default_config


def write_ini(path, content):
    path.write_text(content, encoding="utf-8")
    return str(path)


class TestAgentConfig:

    def test_defaults_without_file(self, tmp_path):
        config = AgentConfig(str(tmp_path / "absent.ini"), environ={})

        assert config.get_agent_config()['enabled_modules'] == DEFAULT_MODULES
        assert config.get_agent_config()['collection_interval'] == 3600
        assert config.get_collection_config()['command_timeout'] == 60.0
        assert config.get_collection_config()['storage_mode'] == "quick"
        assert config.get_server_config()['api_url'] == ""

    def test_file_values_override_defaults(self, tmp_path):
        path = write_ini(tmp_path / "agent.ini", (
            "[server]\napi_url = https://file.example.com\n"
            "[agent]\nenabled_modules = hardware, inventory\n"
        ))

        config = AgentConfig(path, environ={})

        assert config.get_server_config()['api_url'] == "https://file.example.com"
        assert config.get_agent_config()['enabled_modules'] == ["hardware", "inventory"]

    def test_environment_overrides_file(self, tmp_path):
        path = write_ini(tmp_path / "agent.ini", "[server]\napi_url = https://file.example.com\n")
        environ = {
            'REPORTMATE_API_URL': "https://env.example.com",
            'REPORTMATE_PASSPHRASE': "s3cret",
            'REPORTMATE_COLLECTION_INTERVAL': "900",
        }

        config = AgentConfig(path, environ=environ)

        assert config.get_server_config()['api_url'] == "https://env.example.com"
        assert config.get_server_config()['passphrase'] == "s3cret"
        assert config.get_agent_config()['collection_interval'] == 900

    def test_invalid_numbers_fall_back(self, config):
        config.set('agent', 'collection_interval', 'often')

        assert config.getint('agent', 'collection_interval', 42) == 42

    def test_set_joins_lists(self, config):
        config.set('agent', 'enabled_modules', ["security", "network"])

        assert config.get('agent', 'enabled_modules') == "security,network"

    def test_validation_errors(self, config):
        config.set('server', 'api_url', 'ftp://example.com')
        config.set('collection', 'storage_mode', 'turbo')
        config.set('agent', 'enabled_modules', 'hardware,printers')

        errors = config.get_validation_errors()

        assert not config.validate()
        assert "URL de l'API invalide" in errors
        assert any("storage" in error.lower() or "stockage" in error for error in errors)
        assert any("printers" in error for error in errors)

    def test_default_configuration_is_valid(self, config):
        assert config.validate()

    def test_create_default_config_writes_file(self, tmp_path):
        path = tmp_path / "nested" / "reportmate.ini"

        create_default_config(str(path))

        assert path.exists()
        reloaded = AgentConfig(str(path), environ={})
        assert reloaded.get_web_config()['port'] == 18743
