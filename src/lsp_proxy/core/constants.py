"""
Constantes globales pour LSP Relay Proxy.
"""

# ============================================================================
# FRAMING (base protocol LSP)
# ============================================================================
HEADER_SEPARATOR = b"\r\n"
CONTENT_SEPARATOR = b"\r\n\r\n"
NAME_VALUE_SEPARATOR = b":"
LENGTH_HEADER = "Content-Length"
HEADER_ENCODING = "ascii"
CONTENT_ENCODING = "utf-8"

JSONRPC_VERSION = "2.0"

# ============================================================================
# REQUÊTES ÉMISES PAR LE PROXY
# ============================================================================
DEFAULT_REQUEST_TIMEOUT_MS = 5_000
CANCEL_REQUEST_METHOD = "$/cancelRequest"

# Codes d'erreur JSON-RPC / LSP
REQUEST_TIMEOUT_CODE = -32803  # LSP RequestFailed
REQUEST_CANCELLED_CODE = -32800  # LSP RequestCancelled
PROXY_SHUTDOWN_CODE = -32099

# ============================================================================
# PROCESSUS SERVEUR
# ============================================================================
DEFAULT_GRACE_PERIOD_S = 1.0
DEFAULT_PARENT_POLL_INTERVAL_S = 5.0
DEFAULT_CHUNK_SIZE = 64 * 1024

# ============================================================================
# CONTROL-PLANE HTTP
# ============================================================================
DEFAULT_CONTROL_HOST = "127.0.0.1"
DEFAULT_CONTROL_PORT = 0  # 0 = port libre choisi par l'OS
PORT_FILE_DIRNAME = "proxy"

# ============================================================================
# MONITORING
# ============================================================================
DEFAULT_MONITOR_QUEUE_MAX = 1000
