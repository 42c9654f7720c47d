"""
Tests des backends d'exécution et de l'exécuteur de processus
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from reportmate_agent.core.backends import (
    BackendKind, OSQueryBackend, ScriptBackend, ShellBackend, create_backends
)
from reportmate_agent.core.errors import (
    BackendExecutionFailed, BackendUnavailable, OutputUnparsable
)
from reportmate_agent.core.executor import ProcessResult, SubprocessExecutor

from conftest import FakeExecutor


class TestShellBackend:

    @pytest.mark.asyncio
    async def test_runs_script_through_bash(self, fake_executor):
        fake_executor.result = ProcessResult(0, b'{"ok": 1}')
        backend = ShellBackend(fake_executor, bash_path="/bin/bash", timeout=60)

        output = await backend.execute("echo hello")

        assert output == '{"ok": 1}'
        call = fake_executor.calls[0]
        assert call['argv'] == ["/bin/bash", "-c", "echo hello"]
        assert call['timeout'] == 60
        assert call['backend'] == "bash"

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_execution_failure(self):
        executor = FakeExecutor(ProcessResult(2, b"", b"command not found"))
        backend = ShellBackend(executor)

        with pytest.raises(BackendExecutionFailed) as excinfo:
            await backend.execute("nope")

        assert excinfo.value.reason == "exit"
        assert excinfo.value.returncode == 2
        assert "command not found" in excinfo.value.stderr

    @pytest.mark.asyncio
    async def test_non_utf8_output_is_unparsable(self):
        executor = FakeExecutor(ProcessResult(0, b"\xff\xfe\xfa"))
        backend = ShellBackend(executor)

        with pytest.raises(OutputUnparsable):
            await backend.execute("cat /dev/random")

    @pytest.mark.asyncio
    async def test_per_call_timeout_overrides_default(self, fake_executor):
        backend = ShellBackend(fake_executor, timeout=60)

        await backend.execute("sleep 1", timeout=300)

        assert fake_executor.calls[0]['timeout'] == 300

    @pytest.mark.asyncio
    async def test_launch_failure_propagates(self):
        executor = FakeExecutor(error=BackendUnavailable("bash", "exécutable indisponible"))
        backend = ShellBackend(executor)

        with pytest.raises(BackendUnavailable):
            await backend.execute("echo")


class TestScriptBackend:

    @pytest.mark.asyncio
    async def test_script_is_sent_on_stdin(self, fake_executor):
        backend = ScriptBackend(fake_executor, python_path="/usr/bin/python3")

        await backend.execute("print('{}')")

        call = fake_executor.calls[0]
        assert call['argv'] == ["/usr/bin/python3", "-"]
        assert call['input_data'] == b"print('{}')"
        assert call['backend'] == "python"


class TestOSQueryBackend:

    def test_extension_table_detection(self):
        assert OSQueryBackend.query_uses_extension_tables("SELECT * FROM mdm;")
        assert OSQueryBackend.query_uses_extension_tables(
            "select a.x from   os_version a\n  JOIN wifi_network w"
        )
        assert not OSQueryBackend.query_uses_extension_tables("SELECT * FROM system_info;")

    @pytest.mark.asyncio
    async def test_builtin_tables_use_direct_call(self, fake_executor):
        backend = OSQueryBackend(fake_executor, osquery_path="/usr/local/bin/osqueryi",
                                 extension_path="/opt/ext/macadmins.ext")

        await backend.execute("SELECT * FROM system_info;")

        assert fake_executor.calls[0]['argv'] == [
            "/usr/local/bin/osqueryi", "--json", "SELECT * FROM system_info;"
        ]

    @pytest.mark.asyncio
    async def test_extension_tables_are_piped_through_bash(self):
        stdout = b'Using a virtual database.\n[\n  {"enrolled":"true"}\n]\nosquery> '
        executor = FakeExecutor(ProcessResult(0, stdout))
        backend = OSQueryBackend(executor, extension_path="/opt/ext/macadmins.ext", bash_path="/bin/bash")

        output = await backend.execute("SELECT enrolled FROM mdm;")

        assert output == '[\n  {"enrolled":"true"}\n]'
        argv = executor.calls[0]['argv']
        assert argv[:2] == ["/bin/bash", "-c"]
        assert "--extension" in argv[2]
        assert "SELECT enrolled FROM mdm;" in argv[2]

    @pytest.mark.asyncio
    async def test_missing_extension_table_fails(self):
        executor = FakeExecutor(ProcessResult(0, b"Error: no such table: mdm\n"))
        backend = OSQueryBackend(executor, extension_path="/opt/ext/macadmins.ext")

        with pytest.raises(BackendExecutionFailed):
            await backend.execute("SELECT * FROM mdm;")

    @pytest.mark.asyncio
    async def test_without_extension_everything_is_direct(self, fake_executor):
        backend = OSQueryBackend(fake_executor, extension_path=None)

        await backend.execute("SELECT * FROM mdm;")

        assert fake_executor.calls[0]['argv'][1] == "--json"


class TestCreateBackends:

    def test_registry_uses_configuration(self, config, fake_executor):
        config.set('collection', 'command_timeout', '45')
        config.set('collection', 'bash_path', '/usr/local/bin/bash')
        config.set('collection', 'extension_enabled', 'false')

        backends = create_backends(config, fake_executor)

        assert set(backends) == {BackendKind.OSQUERY, BackendKind.BASH, BackendKind.PYTHON}
        assert backends[BackendKind.BASH].bash_path == "/usr/local/bin/bash"
        assert backends[BackendKind.BASH].timeout == 45.0
        assert backends[BackendKind.OSQUERY].extension_path is None


class TestSubprocessExecutor:

    @pytest.mark.asyncio
    async def test_missing_executable_is_unavailable(self):
        with patch("asyncio.create_subprocess_exec", new=AsyncMock(side_effect=FileNotFoundError("osqueryi"))):
            with pytest.raises(BackendUnavailable) as excinfo:
                await SubprocessExecutor().run(["osqueryi", "--json", "SELECT 1;"], backend="osquery")

        assert excinfo.value.backend == "osquery"

    @pytest.mark.asyncio
    async def test_completed_process_returns_outputs(self):
        process = Mock()
        process.returncode = 0
        process.communicate = AsyncMock(return_value=(b'[{"a":"1"}]', b""))

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            result = await SubprocessExecutor().run(["/bin/bash", "-c", "true"], timeout=5)

        assert result.succeeded
        assert result.stdout == b'[{"a":"1"}]'

    @pytest.mark.asyncio
    async def test_timeout_kills_and_reaps_process(self):
        async def never_finishes(input_data=None):
            await asyncio.sleep(10)

        process = Mock()
        process.communicate = never_finishes
        process.kill = Mock()
        process.wait = AsyncMock(return_value=-9)

        with patch("asyncio.create_subprocess_exec", new=AsyncMock(return_value=process)):
            with pytest.raises(BackendExecutionFailed) as excinfo:
                await SubprocessExecutor().run(["/bin/bash", "-c", "sleep 60"], timeout=0.05, backend="bash")

        assert excinfo.value.reason == "timeout"
        process.kill.assert_called_once()
        process.wait.assert_awaited_once()
