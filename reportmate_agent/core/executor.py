"""
Exécution des processus externes pour l'agent ReportMate

Chaque appel de backend lance exactement un processus. Ce module isole
ce lancement derrière l'interface Executor afin que les tests puissent
substituer un exécuteur factice sans créer de processus.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Sequence

from .errors import BackendExecutionFailed, BackendUnavailable

logger = logging.getLogger("ReportMateAgent")

# Timeout par défaut d'un appel (secondes)
DEFAULT_COMMAND_TIMEOUT = 60.0


class ProcessResult:
    """Résultat brut d'un processus terminé"""

    def __init__(self, returncode: int, stdout: bytes = b"", stderr: bytes = b""):
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    @property
    def succeeded(self) -> bool:
        return self.returncode == 0

    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace").strip()

    def __repr__(self) -> str:
        return f"<ProcessResult(returncode={self.returncode}, stdout={len(self.stdout)} bytes)>"


class Executor(ABC):
    """Interface d'exécution d'un programme externe"""

    @abstractmethod
    async def run(self, argv: Sequence[str], input_data: Optional[bytes] = None,
                  timeout: Optional[float] = None, backend: str = "process") -> ProcessResult:
        """
        Lance un processus et attend sa fin

        Args:
            argv: Commande et arguments
            input_data: Données envoyées sur stdin
            timeout: Durée maximale en secondes (None = pas de limite)
            backend: Nom du backend appelant, pour les messages d'erreur

        Returns:
            ProcessResult: Code de sortie et sorties brutes

        Raises:
            BackendUnavailable: Exécutable introuvable ou lancement impossible
            BackendExecutionFailed: Timeout dépassé
        """


class SubprocessExecutor(Executor):
    """
    Exécuteur réel basé sur asyncio.create_subprocess_exec

    communicate() vide entièrement stdout et stderr avant d'attendre la fin
    du processus : un enfant qui remplit le tampon du pipe ne peut pas
    bloquer le parent.
    """

    async def run(self, argv: Sequence[str], input_data: Optional[bytes] = None,
                  timeout: Optional[float] = None, backend: str = "process") -> ProcessResult:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE if input_data is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise BackendUnavailable(backend, f"exécutable indisponible '{argv[0]}': {e}") from e
        except OSError as e:
            raise BackendUnavailable(backend, f"lancement impossible de '{argv[0]}': {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(input_data), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Timeout ({timeout}s) pour la commande {argv[0]}, arrêt du processus")
            try:
                process.kill()
            except ProcessLookupError:
                pass
            # Récupérer le processus pour ne pas laisser de zombie
            await process.wait()
            raise BackendExecutionFailed(backend, "timeout", timeout=timeout)

        return ProcessResult(process.returncode, stdout or b"", stderr or b"")
