"""
LSP Relay Proxy - orchestration du processus.

Lance le serveur de langage, branche le relais sur le stdio du proxy, publie
le control-plane puis attend la première condition d'arrêt:
- fin du flux éditeur (stdin fermé),
- fin du serveur,
- disparition du processus parent,
- SIGTERM / SIGINT.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
from typing import Optional, Sequence

from .config.settings import ProxySettings
from .control.app import create_control_app
from .control.discovery import port_file_path, proxy_id
from .control.server import ControlPlaneServer
from .process.supervisor import IS_WINDOWS, ServerProcess
from .relay.core import LspRelay
from .relay.monitor import TrafficMonitor

logger = logging.getLogger(__name__)


async def _connect_stdin_reader() -> asyncio.StreamReader:
    """Retourne un StreamReader non-bloquant connecté à stdin (binaire)."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin.buffer)
    return reader


async def _connect_stdout_writer() -> asyncio.StreamWriter:
    """Retourne un StreamWriter non-bloquant connecté à stdout (binaire)."""
    loop = asyncio.get_running_loop()
    # StreamReaderProtocol fournit le close waiter attendu par wait_closed()
    transport, protocol = await loop.connect_write_pipe(
        lambda: asyncio.StreamReaderProtocol(asyncio.StreamReader()),
        sys.stdout.buffer,
    )
    return asyncio.StreamWriter(transport, protocol, None, loop)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, shutdown: asyncio.Event) -> list:
    if IS_WINDOWS:
        # Pas de add_signal_handler sous Windows: Ctrl+C lève KeyboardInterrupt
        return []
    installed = []
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)
        installed.append(sig)
    return installed


async def run_proxy(
    workdir: str,
    command: str,
    args: Sequence[str] = (),
    settings: Optional[ProxySettings] = None,
) -> int:
    """
    Exécute le proxy jusqu'à la première condition d'arrêt.

    Args:
        workdir: Répertoire de travail (fichier de découverte sous `proxy/`)
        command: Binaire du serveur de langage
        args: Arguments du serveur
        settings: Configuration (défauts si None)

    Returns:
        Le code de sortie du serveur s'il s'est arrêté de lui-même, 0 sinon

    Raises:
        ProcessError: Le serveur n'a pas pu être lancé
    """
    settings = settings or ProxySettings()
    loop = asyncio.get_running_loop()

    server = ServerProcess(
        command,
        args,
        grace_period=settings.grace_period_s,
        parent_poll_interval=settings.parent_poll_interval_s,
    )
    await server.start()

    monitor: Optional[TrafficMonitor] = None
    control: Optional[ControlPlaneServer] = None
    relay: Optional[LspRelay] = None
    shutdown = asyncio.Event()
    signals = _install_signal_handlers(loop, shutdown)
    background = [
        asyncio.create_task(server.pipe_stderr(sys.stderr.buffer), name="lsp-server-stderr"),
        asyncio.create_task(server.watch_parent(shutdown.set), name="lsp-parent-watch"),
    ]
    waiters: list = []

    try:
        client_reader = await _connect_stdin_reader()
        client_writer = await _connect_stdout_writer()

        if settings.monitor.enabled:
            monitor = TrafficMonitor(settings.monitor)
            await monitor.start()

        relay = LspRelay(
            client_reader,
            client_writer,
            server.stdout,
            server.stdin,
            proxy_id=proxy_id(),
            timeout_ms=settings.timeout_ms,
            chunk_size=settings.chunk_size,
            monitor=monitor,
        )

        if settings.control_enabled:
            control = ControlPlaneServer(
                create_control_app(relay),
                host=settings.control_host,
                port=settings.control_port,
                port_file=port_file_path(workdir),
            )
            await control.start()

        relay_task = asyncio.create_task(relay.run(), name="lsp-relay")
        exit_task = asyncio.create_task(server.wait(), name="lsp-server-wait")
        shutdown_task = asyncio.create_task(shutdown.wait(), name="lsp-shutdown")
        waiters = [relay_task, exit_task, shutdown_task]

        done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)

        if exit_task in done:
            return exit_task.result()

        if relay_task in done and relay_task.result() == "server":
            # stdout du serveur fermé: on lui laisse le délai de grâce pour sortir
            try:
                return await asyncio.wait_for(asyncio.shield(exit_task), timeout=settings.grace_period_s)
            except asyncio.TimeoutError:
                logger.warning("⚠️ stdout du serveur fermé mais processus toujours actif, arrêt forcé")
                return 0

        if shutdown_task in done:
            logger.info("🛑 Arrêt demandé (signal ou parent disparu)")
        return 0
    finally:
        for sig in signals:
            loop.remove_signal_handler(sig)
        for task in [*waiters, *background]:
            if not task.done():
                task.cancel()
        await asyncio.gather(*waiters, *background, return_exceptions=True)

        await server.terminate()
        if relay is not None:
            await relay.aclose()
            logger.info(f"📊 Stats relais: {relay.stats()}")
        if control is not None:
            await control.stop()
        if monitor is not None:
            await monitor.stop()
        logger.info(f"👋 Proxy arrêté (cwd={os.getcwd()})")
