"""
Control-plane HTTP: injection de requêtes dans le serveur de langage par des
processus externes, découverte via un fichier de port.
"""

from .app import create_control_app
from .client import ControlClient
from .discovery import (
    port_file_path,
    proxy_id,
    read_port_file,
    remove_port_file,
    write_port_file,
)
from .server import ControlPlaneServer

__all__ = [
    "create_control_app",
    "ControlClient",
    "ControlPlaneServer",
    "port_file_path",
    "proxy_id",
    "read_port_file",
    "remove_port_file",
    "write_port_file",
]
