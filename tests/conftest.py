"""Fixtures partagées de la suite de tests.

Centralise :
 - Une configuration isolée (fichiers dans tmp_path, sans variables d'environnement)
 - Un exécuteur de processus factice
 - Des backends factices pilotés par une fonction de réponse
"""

import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from reportmate_agent.core.backends import BackendKind, ExecutionBackend  # noqa: E402
from reportmate_agent.core.config import AgentConfig  # noqa: E402
from reportmate_agent.core.errors import BackendUnavailable  # noqa: E402
from reportmate_agent.core.executor import Executor, ProcessResult  # noqa: E402
from reportmate_agent.core.logger import AgentLogger  # noqa: E402

Response = Union[str, Exception]


class FakeExecutor(Executor):
    """Exécuteur qui enregistre les appels au lieu de lancer des processus"""

    def __init__(self, result: Optional[ProcessResult] = None, error: Optional[Exception] = None):
        self.result = result or ProcessResult(0, b"[]")
        self.error = error
        self.calls: List[Dict] = []

    async def run(self, argv: Sequence[str], input_data: Optional[bytes] = None,
                  timeout: Optional[float] = None, backend: str = "process") -> ProcessResult:
        self.calls.append({
            'argv': list(argv),
            'input_data': input_data,
            'timeout': timeout,
            'backend': backend,
        })
        if self.error is not None:
            raise self.error
        return self.result


class FakeBackend(ExecutionBackend):
    """
    Backend dont la réponse est calculée à partir du programme

    Le handler retourne une chaîne (sortie) ou une exception (levée).
    Sans handler, le backend est indisponible.
    """

    def __init__(self, kind: BackendKind, handler: Optional[Callable[[str], Response]] = None):
        super().__init__(executor=None)
        self.kind = kind
        self.handler = handler
        self.calls: List[tuple] = []

    async def execute(self, program: str, timeout: Optional[float] = None) -> str:
        self.calls.append((program, timeout))
        if self.handler is None:
            raise BackendUnavailable(self.kind.value, "non installé")
        response = self.handler(program)
        if isinstance(response, Exception):
            raise response
        return response


def make_backends(osquery=None, bash=None, python=None) -> Dict[BackendKind, FakeBackend]:
    return {
        BackendKind.OSQUERY: FakeBackend(BackendKind.OSQUERY, osquery),
        BackendKind.BASH: FakeBackend(BackendKind.BASH, bash),
        BackendKind.PYTHON: FakeBackend(BackendKind.PYTHON, python),
    }


# -------------------- Configuration -------------------- #

@pytest.fixture
def config_path(tmp_path):
    return tmp_path / "reportmate.ini"


@pytest.fixture
def config(tmp_path, config_path):
    """Configuration isolée de l'environnement de la machine"""
    cfg = AgentConfig(str(config_path), environ={})
    cfg.set('logging', 'log_file', str(tmp_path / "logs" / "agent.log"))
    cfg.set('collection', 'usage_db_path', str(tmp_path / "appusage.sqlite"))
    cfg.set('collection', 'inventory_file', str(tmp_path / "Inventory.yaml"))
    return cfg


@pytest.fixture
def agent_logger(config):
    return AgentLogger(config)


@pytest.fixture
def app_logger(agent_logger):
    return agent_logger.get_logger()


# -------------------- Backends -------------------- #

@pytest.fixture
def fake_executor():
    return FakeExecutor()


@pytest.fixture
def unavailable_backends():
    """Registre où aucun backend n'est installé"""
    return make_backends()
