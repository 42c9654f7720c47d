"""
Backends d'exécution de l'agent ReportMate

Trois exécuteurs interchangeables répondent à la même question logique :
- osquery (requête SQL structurée, avec extension macadmins optionnelle)
- bash (script shell)
- python (script interprété, dernier recours)

Chaque appel lance un seul processus et retourne la sortie texte brute,
ou lève une erreur typée.
"""

import os
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional

from .errors import BackendExecutionFailed, OutputUnparsable
from .executor import DEFAULT_COMMAND_TIMEOUT, Executor, ProcessResult, SubprocessExecutor

logger = logging.getLogger("ReportMateAgent")


class BackendKind(Enum):
    """Types de backend, dans l'ordre de priorité habituel"""
    OSQUERY = "osquery"
    BASH = "bash"
    PYTHON = "python"


class ExecutionBackend(ABC):
    """
    Classe de base des backends d'exécution

    Aucune nouvelle tentative n'est faite ici : un échec remonte
    immédiatement au moteur de fallback.
    """

    kind: BackendKind

    def __init__(self, executor: Executor, timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT):
        self.executor = executor
        self.timeout = timeout

    @abstractmethod
    async def execute(self, program: str, timeout: Optional[float] = None) -> str:
        """
        Exécute un programme et retourne sa sortie standard

        Args:
            program: Texte du programme (SQL, script bash ou python)
            timeout: Timeout spécifique à cet appel (sinon celui du backend)

        Returns:
            str: Sortie standard décodée

        Raises:
            BackendUnavailable, BackendExecutionFailed, OutputUnparsable
        """

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return self.timeout if timeout is None else timeout

    def _check(self, result: ProcessResult) -> str:
        """Valide le code de sortie et décode la sortie standard"""
        if not result.succeeded:
            raise BackendExecutionFailed(
                self.kind.value, "exit",
                returncode=result.returncode,
                stderr=result.stderr_text()
            )

        try:
            return result.stdout.decode("utf-8")
        except UnicodeDecodeError as e:
            raise OutputUnparsable(self.kind.value, f"sortie non UTF-8: {e}") from e


class ShellBackend(ExecutionBackend):
    """Exécute un script via bash -c"""

    kind = BackendKind.BASH

    def __init__(self, executor: Executor, bash_path: str = "/bin/bash",
                 timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT):
        super().__init__(executor, timeout)
        self.bash_path = bash_path

    async def execute(self, program: str, timeout: Optional[float] = None) -> str:
        result = await self.executor.run(
            [self.bash_path, "-c", program],
            timeout=self._timeout(timeout),
            backend=self.kind.value
        )
        return self._check(result)


class ScriptBackend(ExecutionBackend):
    """Exécute un script Python passé sur l'entrée standard"""

    kind = BackendKind.PYTHON

    def __init__(self, executor: Executor, python_path: str = "/usr/bin/python3",
                 timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT):
        super().__init__(executor, timeout)
        self.python_path = python_path

    async def execute(self, program: str, timeout: Optional[float] = None) -> str:
        result = await self.executor.run(
            [self.python_path, "-"],
            input_data=program.encode("utf-8"),
            timeout=self._timeout(timeout),
            backend=self.kind.value
        )
        return self._check(result)


class OSQueryBackend(ExecutionBackend):
    """
    Exécute une requête SQL via osqueryi --json

    Les tables de l'extension macadmins ne sont disponibles qu'une fois
    l'extension enregistrée (plusieurs secondes). Les requêtes qui les
    utilisent passent par bash, qui retarde l'envoi de la requête à osqueryi.
    Les requêtes sur les tables intégrées utilisent le chemin rapide.
    """

    kind = BackendKind.OSQUERY

    # Tables fournies par l'extension macadmins
    EXTENSION_TABLES = frozenset({
        "network_quality", "wifi_network", "mdm", "macos_profiles",
        "filevault_users", "pending_apple_updates", "munki_info",
        "munki_installs", "sofa_security_release_info", "sofa_unpatched_cves",
        "authdb", "alt_system_info", "macadmins_unified_log", "macos_rsr",
        "crowdstrike_falcon", "puppet_info", "puppet_logs", "puppet_state",
        "puppet_facts", "google_chrome_profiles", "file_lines"
    })

    # Délai d'enregistrement de l'extension avant l'envoi de la requête
    EXTENSION_REGISTRATION_DELAY = 7
    EXTENSION_TIMEOUT = 15

    def __init__(self, executor: Executor, osquery_path: str = "/usr/local/bin/osqueryi",
                 extension_path: Optional[str] = None, bash_path: str = "/bin/bash",
                 timeout: Optional[float] = DEFAULT_COMMAND_TIMEOUT):
        super().__init__(executor, timeout)
        self.osquery_path = osquery_path
        self.extension_path = extension_path
        self.bash_path = bash_path

    @classmethod
    def query_uses_extension_tables(cls, query: str) -> bool:
        """
        Vérifie si une requête interroge une table de l'extension

        Args:
            query: Requête SQL

        Returns:
            bool: True si une table de l'extension apparaît après FROM ou JOIN
        """
        query_lower = " ".join(query.lower().split())
        for table in cls.EXTENSION_TABLES:
            if f"from {table}" in query_lower or f"join {table}" in query_lower:
                return True
        return False

    async def execute(self, program: str, timeout: Optional[float] = None) -> str:
        if self.extension_path and self.query_uses_extension_tables(program):
            return await self._execute_with_extension(program, timeout)

        result = await self.executor.run(
            [self.osquery_path, "--json", program],
            timeout=self._timeout(timeout),
            backend=self.kind.value
        )
        return self._check(result)

    async def _execute_with_extension(self, query: str, timeout: Optional[float] = None) -> str:
        """Exécute la requête avec l'extension chargée par osqueryi"""
        escaped_query = query.replace("'", "'\"'\"'")
        script = (
            f"(sleep {self.EXTENSION_REGISTRATION_DELAY} && echo '{escaped_query}' && echo '.exit') "
            f"| \"{self.osquery_path}\" --json --extension \"{self.extension_path}\" "
            f"--extensions_timeout {self.EXTENSION_TIMEOUT}"
        )

        result = await self.executor.run(
            [self.bash_path, "-c", script],
            timeout=self._timeout(timeout),
            backend=self.kind.value
        )

        stderr = result.stderr_text()
        try:
            output = result.stdout.decode("utf-8")
        except UnicodeDecodeError as e:
            raise OutputUnparsable(self.kind.value, f"sortie non UTF-8: {e}") from e

        logger.debug(f"Sortie osquery (extension): {len(output)} caractères")

        # Le shell interactif mélange la bannière et le tableau JSON
        start = output.find("[")
        end = output.rfind("]")
        if start != -1 and end > start:
            return output[start:end + 1]

        if "no such table" in output or "no such table" in stderr:
            raise BackendExecutionFailed(self.kind.value, "exit", returncode=result.returncode,
                                         stderr="no such table")

        if not result.succeeded or not output.strip():
            raise BackendExecutionFailed(self.kind.value, "exit", returncode=result.returncode,
                                         stderr=stderr or "aucune sortie d'osquery")

        return "[]"


def resolve_extension_path(configured: Optional[str]) -> Optional[str]:
    """
    Détermine le chemin de l'extension osquery

    Args:
        configured: Chemin configuré (prioritaire)

    Returns:
        str: Chemin existant de l'extension, ou None
    """
    candidates = [
        configured,
        "/usr/local/reportmate/macadmins_extension.ext",
    ]

    for candidate in candidates:
        if candidate and os.path.exists(candidate):
            return candidate

    return None


def create_backends(config, executor: Optional[Executor] = None) -> Dict[BackendKind, ExecutionBackend]:
    """
    Construit le registre des backends à partir de la configuration

    Args:
        config: Instance de AgentConfig
        executor: Exécuteur à utiliser (SubprocessExecutor par défaut)

    Returns:
        dict: Backend par type
    """
    executor = executor or SubprocessExecutor()
    collection = config.get_collection_config()
    timeout = collection['command_timeout']

    extension_path = None
    if collection['extension_enabled']:
        extension_path = resolve_extension_path(collection['osquery_extension_path'])
        if extension_path:
            logger.debug(f"Extension osquery activée: {extension_path}")
        else:
            logger.debug("Extension osquery activée mais introuvable")

    return {
        BackendKind.OSQUERY: OSQueryBackend(
            executor,
            osquery_path=collection['osquery_path'],
            extension_path=extension_path,
            bash_path=collection['bash_path'],
            timeout=timeout
        ),
        BackendKind.BASH: ShellBackend(executor, bash_path=collection['bash_path'], timeout=timeout),
        BackendKind.PYTHON: ScriptBackend(executor, python_path=collection['python_path'], timeout=timeout),
    }
