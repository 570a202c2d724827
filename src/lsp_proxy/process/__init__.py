"""
Supervision du processus serveur de langage.
"""

from .supervisor import ProcessState, ServerProcess, parent_alive

__all__ = [
    "ProcessState",
    "ServerProcess",
    "parent_alive",
]
