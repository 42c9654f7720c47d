"""
Hiérarchie des erreurs de l'agent ReportMate

Les erreurs de backend (BackendUnavailable, BackendExecutionFailed,
OutputUnparsable) sont récupérées localement par le moteur de fallback.
Seule NoBackendSucceeded remonte jusqu'aux sous-collecteurs.
"""

from typing import List, Optional, Tuple


class AgentError(Exception):
    """Erreur de base de l'agent"""


class BackendError(AgentError):
    """
    Erreur d'exécution d'un backend (osquery, bash, python)

    Toutes les sous-classes sont traitées de la même façon par la politique
    de fallback ("essayer le tier suivant"), mais restent distinguables
    dans les diagnostics.
    """

    def __init__(self, backend: str, message: str):
        self.backend = backend
        super().__init__(f"[{backend}] {message}")


class BackendUnavailable(BackendError):
    """L'exécutable est introuvable ou le processus n'a pas pu être lancé"""


class BackendExecutionFailed(BackendError):
    """
    Le processus a été lancé mais a échoué

    Attributes:
        reason: "exit" (code de sortie non nul) ou "timeout"
        returncode: Code de sortie du processus (None en cas de timeout)
        stderr: Sortie d'erreur tronquée
    """

    def __init__(self, backend: str, reason: str, returncode: Optional[int] = None,
                 stderr: str = "", timeout: Optional[float] = None):
        self.reason = reason
        self.returncode = returncode
        self.stderr = stderr
        self.timeout = timeout

        if reason == "timeout":
            message = f"timeout après {timeout}s"
        else:
            message = f"code de sortie {returncode}"
            if stderr:
                message += f": {stderr[:200]}"

        super().__init__(backend, message)


class OutputUnparsable(BackendError):
    """Sortie du processus inutilisable (ex: octets non UTF-8)"""


class NoBackendSucceeded(AgentError):
    """
    Aucun tier déclaré n'a réussi (ou aucun tier n'était déclaré)

    Attributes:
        attempts: Liste ordonnée de (type de backend, erreur) pour le diagnostic
    """

    def __init__(self, attempts: Optional[List[Tuple[str, BackendError]]] = None):
        self.attempts = attempts or []

        if self.attempts:
            details = "; ".join(str(error) for _, error in self.attempts)
            message = f"Aucun backend n'a réussi ({details})"
        else:
            message = "Aucun backend déclaré pour cette requête"

        super().__init__(message)


class ModuleCollectionError(AgentError):
    """Un champ essentiel d'un module n'a pas pu être collecté"""

    def __init__(self, module_id: str, field: str, cause: BaseException):
        self.module_id = module_id
        self.field = field
        self.cause = cause
        super().__init__(f"Module '{module_id}': champ essentiel '{field}' en échec: {cause}")
