"""
Relais bidirectionnel éditeur <-> serveur de langage.

Deux pipelines indépendants (framer + codec) lisent chaque côté. Chaque
message parsé est classé puis remis à l'observer de sa direction, qui décide
si/quand appeler `forward()`. Le relais transmet toujours les octets
d'origine de la frame: le parsing ne sert qu'à classer et inspecter.

Les réponses du serveur qui correspondent à une requête émise par le proxy
sont consommées par la table de corrélation et ne sont jamais relayées à
l'éditeur.

Important:
- Ne jamais écrire autre chose que des frames complètes sur les sorties.
- Toute la mutation d'état se fait sur la boucle asyncio du relais.
"""
from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Literal, Optional, Union

from ..core.constants import (
    CANCEL_REQUEST_METHOD,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_REQUEST_TIMEOUT_MS,
    PROXY_SHUTDOWN_CODE,
)
from ..core.exceptions import FramingError
from ..protocol.codec import (
    Message,
    MessageKind,
    classify,
    deserialize,
    make_error_response,
    make_notification,
    make_request,
    serialize,
)
from ..protocol.framing import iter_frames
from .pending import PendingRequests

logger = logging.getLogger(__name__)

Direction = Literal["client_to_server", "server_to_client"]
Peer = Literal["client", "server"]


@dataclass
class InterceptedMessage:
    """Message intercepté en transit, avec son action de relais."""

    message: Message
    frame: bytes
    kind: MessageKind
    _forward: Callable[[], Awaitable[None]] = field(repr=False)
    forwarded: bool = False

    direction: Direction = "client_to_server"

    @property
    def method(self) -> Optional[str]:
        method = self.message.get("method")
        return method if isinstance(method, str) else None

    @property
    def id(self) -> Any:
        return self.message.get("id")

    async def forward(self) -> None:
        """Écrit la frame d'origine vers le pair (au plus une fois)."""
        if self.forwarded:
            return
        self.forwarded = True
        await self._forward()


@dataclass
class ClientMessage(InterceptedMessage):
    direction: Direction = "client_to_server"


@dataclass
class ServerMessage(InterceptedMessage):
    direction: Direction = "server_to_client"


Observer = Callable[[InterceptedMessage], Union[Awaitable[None], None]]


async def forward_immediately(event: InterceptedMessage) -> None:
    """Politique par défaut: relaye tout, tout de suite, sans modification."""
    await event.forward()


class LspRelay:
    """
    Relie un flux éditeur et un flux serveur, et expose l'API sortante
    (`request`, `notify`, `cancel`).

    Args:
        client_reader: Flux entrant de l'éditeur (stdin du proxy)
        client_writer: Flux sortant vers l'éditeur (stdout du proxy)
        server_reader: stdout du serveur de langage
        server_writer: stdin du serveur de langage
        proxy_id: Préfixe des ids de requêtes émises par le proxy
        timeout_ms: Timeout des requêtes émises par le proxy
        chunk_size: Taille de lecture des flux entrants
        monitor: Moniteur de trafic optionnel (voir monitor.TrafficMonitor)
    """

    def __init__(
        self,
        client_reader,
        client_writer,
        server_reader,
        server_writer,
        *,
        proxy_id: str,
        timeout_ms: float = DEFAULT_REQUEST_TIMEOUT_MS,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        monitor=None,
    ):
        self._client_reader = client_reader
        self._client_writer = client_writer
        self._server_reader = server_reader
        self._server_writer = server_writer
        self.proxy_id = proxy_id
        self.chunk_size = chunk_size
        self._monitor = monitor

        self._ids = itertools.count(1)
        self.pending = PendingRequests(timeout_ms=timeout_ms, on_cancel=self._send_cancel)

        self._client_observer: Observer = forward_immediately
        self._server_observer: Observer = forward_immediately

        self.frames_total: Dict[Direction, int] = {"client_to_server": 0, "server_to_client": 0}
        self.dropped_total: Dict[Direction, int] = {"client_to_server": 0, "server_to_client": 0}
        self.requests_total = 0

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def on_client(self, observer: Observer) -> Observer:
        """Remplace l'observer client -> serveur. Utilisable en décorateur."""
        self._client_observer = observer
        return observer

    def on_server(self, observer: Observer) -> Observer:
        """Remplace l'observer serveur -> client. Utilisable en décorateur."""
        self._server_observer = observer
        return observer

    # ------------------------------------------------------------------
    # API sortante
    # ------------------------------------------------------------------

    def next_id(self) -> str:
        return f"{self.proxy_id}-{next(self._ids)}"

    async def request_message(self, method: str, params: Any = None) -> Message:
        """
        Envoie une requête au serveur et attend la réponse complète.

        L'entrée est enregistrée avant l'écriture. Le résultat est soit la
        réponse du serveur, soit une réponse d'erreur synthétique (timeout,
        annulation, arrêt du proxy): exactement une des deux.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        request_id = self.next_id()

        def _on_resolve(message: Message) -> None:
            if not future.done():
                future.set_result(message)

        self.pending.register(request_id, _on_resolve)
        self.requests_total += 1
        logger.debug(f"➡️ Requête proxy {request_id}: {method}")

        try:
            if self._send(self._server_writer, serialize(make_request(request_id, method, params))):
                await self._drain(self._server_writer)
            else:
                self.pending.resolve(
                    request_id,
                    make_error_response(request_id, PROXY_SHUTDOWN_CODE, "Language server input is closed."),
                )
            return await future
        except asyncio.CancelledError:
            # L'appelant abandonne: on prévient le serveur
            self.pending.cancel(request_id)
            raise

    async def request(self, method: str, params: Any = None) -> Any:
        """
        Envoie une requête au serveur.

        Returns:
            Le `result` de la réponse, ou l'objet `error` ({code, message})
            en cas d'erreur serveur, de timeout ou d'annulation
        """
        message = await self.request_message(method, params)
        if "error" in message:
            return message["error"]
        return message.get("result")

    async def notify(self, method: str, params: Any = None, *, target: Peer = "client") -> None:
        """Envoie une notification à l'éditeur (défaut) ou au serveur."""
        writer = self._client_writer if target == "client" else self._server_writer
        if self._send(writer, serialize(make_notification(method, params))):
            await self._drain(writer)

    def cancel(self, request_id: Any) -> bool:
        """Annule une requête émise par le proxy avant son timeout."""
        return self.pending.cancel(request_id)

    # ------------------------------------------------------------------
    # Boucles de relais
    # ------------------------------------------------------------------

    async def run(self) -> Peer:
        """
        Relaye dans les deux sens jusqu'à la fin d'un des deux flux.

        Returns:
            Le côté dont le flux s'est terminé en premier ("client" ou "server")
        """
        client_task = asyncio.create_task(self._pump_client(), name="lsp-relay-client")
        server_task = asyncio.create_task(self._pump_server(), name="lsp-relay-server")

        try:
            done, _pending = await asyncio.wait({client_task, server_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (client_task, server_task):
                if not task.done():
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        pass

        ended: Peer = "client" if client_task in done else "server"
        task = client_task if ended == "client" else server_task
        exc = task.exception()
        if exc is not None and not isinstance(exc, FramingError):
            raise exc
        return ended

    async def aclose(self) -> None:
        """Résout les requêtes en attente puis ferme la sortie vers l'éditeur."""
        self.pending.close()
        try:
            self._client_writer.close()
            await self._client_writer.wait_closed()
        except ConnectionError:
            pass

    async def _pump_client(self) -> None:
        try:
            async for frame in iter_frames(self._client_reader, self.chunk_size):
                message = self._parse(frame, "client_to_server")
                if message is None:
                    continue
                event = ClientMessage(
                    message=message,
                    frame=frame,
                    kind=classify(message),
                    _forward=lambda frame=frame: self._forward(self._server_writer, frame),
                )
                await self._dispatch(self._client_observer, event)
        except FramingError as e:
            logger.error(f"❌ Flux éditeur illisible, arrêt du relais client -> serveur: {e}")
            raise
        logger.info("🔌 Flux éditeur fermé")

    async def _pump_server(self) -> None:
        try:
            async for frame in iter_frames(self._server_reader, self.chunk_size):
                message = self._parse(frame, "server_to_client")
                if message is None:
                    continue
                kind = classify(message)
                if kind is MessageKind.RESPONSE and self.pending.resolve(message.get("id"), message):
                    # Réponse destinée au proxy: consommée
                    continue
                event = ServerMessage(
                    message=message,
                    frame=frame,
                    kind=kind,
                    _forward=lambda frame=frame: self._forward(self._client_writer, frame),
                )
                await self._dispatch(self._server_observer, event)
        except FramingError as e:
            logger.error(f"❌ Flux serveur illisible, arrêt du relais serveur -> client: {e}")
            raise
        logger.info("🔌 Flux serveur fermé")

    def _parse(self, frame: bytes, direction: Direction) -> Optional[Message]:
        self.frames_total[direction] += 1
        message = deserialize(frame)
        if message is None:
            self.dropped_total[direction] += 1
            logger.warning(f"⚠️ Message illisible ignoré ({direction}, {len(frame)} octets)")
            return None
        if self._monitor is not None:
            self._monitor.observe(direction=direction, message=message)
        return message

    async def _dispatch(self, observer: Observer, event: InterceptedMessage) -> None:
        try:
            outcome = observer(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            # Un observer défaillant ne doit pas faire tomber le relais.
            logger.exception(f"⚠️ Erreur observer {event.direction} (method={event.method}, id={event.id})")

    async def _forward(self, writer, frame: bytes) -> None:
        if self._send(writer, frame):
            await self._drain(writer)

    def _send_cancel(self, request_id: Any) -> None:
        self._send(self._server_writer, serialize(make_notification(CANCEL_REQUEST_METHOD, {"id": request_id})))

    @staticmethod
    def _send(writer, data: bytes) -> bool:
        """Écriture synchrone d'une frame entière (jamais découpée)."""
        is_closing = getattr(writer, "is_closing", None)
        if is_closing is not None and is_closing():
            logger.warning(f"⚠️ Écriture ignorée: flux fermé ({len(data)} octets)")
            return False
        writer.write(data)
        return True

    @staticmethod
    async def _drain(writer) -> None:
        try:
            await writer.drain()
        except ConnectionError as e:
            logger.warning(f"⚠️ Pair déconnecté pendant l'écriture: {e}")

    def stats(self) -> Dict[str, Any]:
        return {
            "frames_total": dict(self.frames_total),
            "dropped_total": dict(self.dropped_total),
            "requests_total": self.requests_total,
            "requests_pending": len(self.pending),
            "requests_resolved": self.pending.resolved_total,
            "requests_expired": self.pending.expired_total,
            "requests_cancelled": self.pending.cancelled_total,
        }
