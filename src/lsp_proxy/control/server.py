"""
Serveur HTTP du control-plane (uvicorn) sur la boucle asyncio du relais.

Le serveur tourne sur la même boucle que le relais: les requêtes HTTP
appellent `LspRelay.request` sans passer d'un thread à l'autre.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI

from ..core.constants import DEFAULT_CONTROL_HOST, DEFAULT_CONTROL_PORT
from .discovery import remove_port_file, write_port_file

logger = logging.getLogger(__name__)


class _EmbeddedServer(uvicorn.Server):
    """uvicorn sans gestion des signaux: c'est le proxy qui pilote l'arrêt."""

    def install_signal_handlers(self) -> None:
        return

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class ControlPlaneServer:
    """
    Démarre uvicorn sur un socket déjà lié et publie le port choisi.

    Args:
        app: Application control-plane
        host: Adresse d'écoute (localhost par défaut)
        port: Port (0 = libre, choisi par l'OS)
        port_file: Fichier de découverte à écrire une fois lié
    """

    def __init__(
        self,
        app: FastAPI,
        host: str = DEFAULT_CONTROL_HOST,
        port: int = DEFAULT_CONTROL_PORT,
        port_file: Optional[Path] = None,
    ):
        self.app = app
        self.host = host
        self.requested_port = port
        self.port_file = Path(port_file) if port_file is not None else None
        self.port: Optional[int] = None

        self._server: Optional[_EmbeddedServer] = None
        self._socket: Optional[socket.socket] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def url(self) -> Optional[str]:
        if self.port is None:
            return None
        return f"http://{self.host}:{self.port}"

    async def start(self) -> int:
        """
        Lie le socket, démarre uvicorn et écrit le fichier de découverte.

        Returns:
            Le port effectivement lié
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self.host, self.requested_port))
        self._socket = sock
        self.port = sock.getsockname()[1]

        config = uvicorn.Config(
            self.app,
            # Pas de dictConfig uvicorn: son handler d'accès vise stdout
            log_config=None,
            log_level="warning",
            access_log=False,
            lifespan="off",
        )
        self._server = _EmbeddedServer(config)
        self._task = asyncio.create_task(self._server.serve(sockets=[sock]), name="lsp-control-plane")

        while not self._server.started:
            if self._task.done():
                # serve() s'est arrêté avant d'écouter: on propage l'erreur
                self._task.result()
                raise RuntimeError("Control-plane arrêté avant le démarrage")
            await asyncio.sleep(0.01)

        if self.port_file is not None:
            write_port_file(self.port_file, self.port)
        logger.info(f"🌐 Control-plane disponible sur {self.url}")
        return self.port

    async def stop(self) -> None:
        """Arrête uvicorn et retire le fichier de découverte s'il est encore à nous."""
        if self._server is not None:
            self._server.should_exit = True
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=2.0)
            except asyncio.TimeoutError:
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        if self._socket is not None:
            self._socket.close()
            self._socket = None
        if self.port_file is not None and self.port is not None:
            remove_port_file(self.port_file, self.port)
