"""
Cœur du LSP Relay Proxy.
Modules indépendants sans dépendances externes au package.
"""

from .exceptions import (
    LspProxyError,
    ConfigurationError,
    FramingError,
    DuplicateRequestIdError,
    ProcessError,
    ControlClientError,
)
from .constants import (
    CANCEL_REQUEST_METHOD,
    CONTENT_SEPARATOR,
    DEFAULT_REQUEST_TIMEOUT_MS,
    JSONRPC_VERSION,
    LENGTH_HEADER,
    REQUEST_CANCELLED_CODE,
    REQUEST_TIMEOUT_CODE,
    PROXY_SHUTDOWN_CODE,
)
from .logging_setup import configure_logging

__all__ = [
    # Exceptions
    "LspProxyError",
    "ConfigurationError",
    "FramingError",
    "DuplicateRequestIdError",
    "ProcessError",
    "ControlClientError",
    # Constants
    "CANCEL_REQUEST_METHOD",
    "CONTENT_SEPARATOR",
    "DEFAULT_REQUEST_TIMEOUT_MS",
    "JSONRPC_VERSION",
    "LENGTH_HEADER",
    "REQUEST_CANCELLED_CODE",
    "REQUEST_TIMEOUT_CODE",
    "PROXY_SHUTDOWN_CODE",
    # Logging
    "configure_logging",
]
