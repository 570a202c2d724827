"""
Exceptions personnalisées pour LSP Relay Proxy.
"""


class LspProxyError(Exception):
    """Exception de base pour toutes les erreurs du proxy."""

    def __init__(self, message: str, code: str = None, details: dict = None):
        super().__init__(message)
        self.message = message
        self.code = code or "unknown_error"
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"[{self.code}] {self.message} - Détails: {self.details}"
        return f"[{self.code}] {self.message}"


class ConfigurationError(LspProxyError):
    """Erreur de configuration (fichier manquant, valeur invalide)."""

    def __init__(self, message: str, config_key: str = None):
        super().__init__(
            message=message,
            code="config_error",
            details={"key": config_key} if config_key else {}
        )


class FramingError(LspProxyError):
    """
    Erreur de découpage du flux (en-tête Content-Length absent ou invalide).

    Fatale pour le flux concerné: le framer s'arrête au lieu de deviner.
    """

    def __init__(self, message: str, header_block: bytes = None):
        details = {}
        if header_block is not None:
            details["headers"] = header_block[:200].decode("ascii", errors="replace")
        super().__init__(
            message=message,
            code="framing_error",
            details=details
        )


class DuplicateRequestIdError(LspProxyError):
    """Un id de requête est déjà en attente dans la table de corrélation."""

    def __init__(self, request_id):
        super().__init__(
            message=f"Requête déjà en attente pour l'id {request_id!r}",
            code="duplicate_request_id",
            details={"id": request_id}
        )


class ProcessError(LspProxyError):
    """Erreur de cycle de vie du serveur de langage (spawn, état invalide)."""

    def __init__(self, message: str, command: str = None, pid: int = None):
        details = {}
        if command:
            details["command"] = command
        if pid is not None:
            details["pid"] = pid
        super().__init__(
            message=message,
            code="process_error",
            details=details
        )


class ControlClientError(LspProxyError):
    """Erreur côté client du control-plane HTTP."""

    def __init__(self, message: str, status_code: int = None, url: str = None):
        super().__init__(
            message=message,
            code="control_client_error",
            details={
                "status_code": status_code,
                "url": url,
            }
        )
        self.status_code = status_code
