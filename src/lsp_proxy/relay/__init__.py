"""
Relais éditeur <-> serveur de langage: interception, corrélation, monitoring.
"""

from .pending import PendingRequest, PendingRequests
from .core import (
    ClientMessage,
    InterceptedMessage,
    LspRelay,
    ServerMessage,
    forward_immediately,
)
from .monitor import TrafficMonitor

__all__ = [
    "PendingRequest",
    "PendingRequests",
    "ClientMessage",
    "InterceptedMessage",
    "LspRelay",
    "ServerMessage",
    "forward_immediately",
    "TrafficMonitor",
]
