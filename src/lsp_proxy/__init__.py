"""
LSP Relay Proxy - relais stdio entre un éditeur et un serveur de langage,
avec requêtes propres au proxy, interception des messages et control-plane HTTP.
"""

__version__ = "1.0.0"
__author__ = "LSP Relay Proxy Team"
