"""
Cycle de vie du processus serveur de langage.

États: RUNNING -> TERMINATING -> TERMINATED.

- POSIX: le serveur est lancé dans sa propre session, donc son propre groupe
  de processus. Les signaux d'arrêt visent tout le groupe (killpg) pour
  emporter les petits-enfants.
- Arrêt gracieux: SIGTERM, puis SIGKILL si le processus n'est pas sorti
  après le délai de grâce (1 s par défaut).
- Windows: `taskkill /T /F` pour tuer tout l'arbre (cmd.exe + enfants).
- Surveillance du parent: si l'éditeur meurt sans fermer nos pipes, on arrête
  le serveur nous-mêmes.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import os
import signal
import subprocess
import sys
from typing import Awaitable, Callable, Mapping, Optional, Sequence, Union

from ..core.constants import DEFAULT_CHUNK_SIZE, DEFAULT_GRACE_PERIOD_S, DEFAULT_PARENT_POLL_INTERVAL_S
from ..core.exceptions import ProcessError

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"


class ProcessState(str, enum.Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


def parent_alive(ppid: int) -> bool:
    """
    Sonde non destructive (signal 0) du processus parent.

    PermissionError signifie que le parent existe mais ne nous appartient pas.
    Aucun pid n'est traité à part: un parent légitime peut être init (pid 1),
    par exemple dans un conteneur. Le rattachement à un nouveau parent est
    détecté par `ServerProcess.watch_parent`.
    """
    if IS_WINDOWS:
        return _windows_process_alive(ppid)
    try:
        os.kill(ppid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _windows_process_alive(pid: int) -> bool:
    # os.kill(pid, 0) appelle TerminateProcess sous Windows: on passe par l'API Win32
    import ctypes

    PROCESS_QUERY_LIMITED_INFORMATION = 0x1000
    STILL_ACTIVE = 259
    kernel32 = ctypes.WinDLL("kernel32", use_last_error=True)
    handle = kernel32.OpenProcess(PROCESS_QUERY_LIMITED_INFORMATION, False, pid)
    if not handle:
        # ERROR_ACCESS_DENIED: le processus existe
        return ctypes.get_last_error() == 5
    try:
        exit_code = ctypes.c_ulong()
        if not kernel32.GetExitCodeProcess(handle, ctypes.byref(exit_code)):
            return True
        return exit_code.value == STILL_ACTIVE
    finally:
        kernel32.CloseHandle(handle)


class ServerProcess:
    """
    Processus enfant du serveur de langage, stdio en pipes.

    Args:
        command: Binaire du serveur
        args: Arguments du serveur
        cwd: Répertoire de travail (défaut: celui du proxy)
        env: Environnement (défaut: celui du proxy)
        grace_period: Délai entre SIGTERM et SIGKILL (s)
        parent_poll_interval: Période de la sonde du parent (s)
    """

    def __init__(
        self,
        command: str,
        args: Sequence[str] = (),
        *,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        grace_period: float = DEFAULT_GRACE_PERIOD_S,
        parent_poll_interval: float = DEFAULT_PARENT_POLL_INTERVAL_S,
    ):
        self.command = command
        self.args = list(args)
        self.cwd = cwd
        self.env = dict(env) if env is not None else None
        self.grace_period = grace_period
        self.parent_poll_interval = parent_poll_interval

        self.state = ProcessState.NOT_STARTED
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._terminate_task: Optional[asyncio.Task] = None

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc is not None else None

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode if self._proc is not None else None

    @property
    def stdin(self):
        return self._require().stdin

    @property
    def stdout(self):
        return self._require().stdout

    @property
    def stderr(self):
        return self._require().stderr

    @property
    def uses_shell(self) -> bool:
        # Les scripts .bat/.cmd ne se lancent que via cmd.exe
        return IS_WINDOWS and self.command.lower().endswith((".bat", ".cmd"))

    async def start(self) -> "ServerProcess":
        """
        Lance le serveur.

        Raises:
            ProcessError: Déjà lancé, ou binaire introuvable / non exécutable
        """
        if self._proc is not None:
            raise ProcessError("Serveur déjà démarré", command=self.command, pid=self.pid)

        pipes = dict(
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=self.cwd,
            env=self.env,
        )
        if not IS_WINDOWS:
            # Groupe de processus dédié (pgid == pid) pour l'arrêt via killpg
            pipes["start_new_session"] = True
        try:
            if self.uses_shell:
                cmdline = subprocess.list2cmdline([self.command, *self.args])
                self._proc = await asyncio.create_subprocess_shell(cmdline, **pipes)
            else:
                self._proc = await asyncio.create_subprocess_exec(self.command, *self.args, **pipes)
        except OSError as e:
            raise ProcessError(f"Impossible de démarrer le serveur: {e}", command=self.command)

        self.state = ProcessState.RUNNING
        logger.info(f"🚀 Serveur démarré: {self.command} (pid={self.pid})")
        return self

    async def wait(self) -> int:
        """Attend la fin du serveur et retourne son code de sortie."""
        returncode = await self._require().wait()
        if self.state is ProcessState.RUNNING:
            logger.info(f"🛑 Serveur terminé de lui-même (code={returncode})")
        self.state = ProcessState.TERMINATED
        return returncode

    async def terminate(self) -> Optional[int]:
        """
        Arrête le serveur (gracieux puis forcé). Ré-entrant: les appels
        concurrents attendent la même terminaison, les appels tardifs sont
        des no-op.
        """
        if self._proc is None:
            return None
        if self._proc.returncode is not None:
            self.state = ProcessState.TERMINATED
            return self._proc.returncode
        if self._terminate_task is None:
            self.state = ProcessState.TERMINATING
            self._terminate_task = asyncio.create_task(self._terminate())
        return await asyncio.shield(self._terminate_task)

    async def _terminate(self) -> int:
        proc = self._require()
        if IS_WINDOWS:
            await self._kill_tree_windows(proc.pid)
            returncode = await proc.wait()
        else:
            self._signal_group(proc, signal.SIGTERM)
            try:
                returncode = await asyncio.wait_for(proc.wait(), timeout=self.grace_period)
            except asyncio.TimeoutError:
                logger.warning(f"⚠️ Serveur pid={proc.pid} toujours actif après {self.grace_period:g}s, SIGKILL")
                self._signal_group(proc, signal.SIGKILL)
                returncode = await proc.wait()
            # Descendants qui ont ignoré SIGTERM alors que le serveur est sorti
            self._signal_group(proc, signal.SIGKILL)
        self.state = ProcessState.TERMINATED
        logger.info(f"✅ Serveur arrêté (code={returncode})")
        return returncode

    @staticmethod
    def _signal_group(proc: asyncio.subprocess.Process, sig: int) -> None:
        try:
            os.killpg(proc.pid, sig)
        except ProcessLookupError:
            pass
        except PermissionError:
            # macOS: EPERM sur un groupe dont il ne reste que des zombies
            try:
                proc.send_signal(sig)
            except ProcessLookupError:
                pass

    @staticmethod
    async def _kill_tree_windows(pid: int) -> None:
        # /T = arbre de processus, /F = forcé
        killer = await asyncio.create_subprocess_exec(
            "taskkill", "/pid", str(pid), "/T", "/F",
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
        await killer.wait()

    async def watch_parent(
        self,
        on_orphaned: Callable[[], Union[Awaitable[None], None]],
        ppid: Optional[int] = None,
    ) -> None:
        """
        Sonde périodiquement le parent; appelle `on_orphaned` une seule fois
        quand il a disparu (ou que le proxy a été rattaché à un autre parent).
        """
        original_ppid = ppid if ppid is not None else os.getppid()
        while True:
            await asyncio.sleep(self.parent_poll_interval)
            reparented = ppid is None and os.getppid() != original_ppid
            if reparented or not parent_alive(original_ppid):
                logger.warning(f"👻 Processus parent {original_ppid} disparu, arrêt du proxy")
                outcome = on_orphaned()
                if asyncio.iscoroutine(outcome):
                    await outcome
                return

    async def pipe_stderr(self, out) -> None:
        """Relaye le stderr du serveur vers `out` (flux binaire), tel quel."""
        stream = self._require().stderr
        if stream is None:
            return
        while True:
            chunk = await stream.read(DEFAULT_CHUNK_SIZE)
            if not chunk:
                return
            out.write(chunk)
            out.flush()

    def _require(self) -> asyncio.subprocess.Process:
        if self._proc is None:
            raise ProcessError("Serveur non démarré", command=self.command)
        return self._proc
