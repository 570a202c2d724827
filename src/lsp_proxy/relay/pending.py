"""
Table de corrélation des requêtes émises par le proxy.

Chaque entrée vit jusqu'à la première de trois issues: réponse du serveur
(`resolve`), timeout (`expire`) ou annulation explicite (`cancel`). Toutes
passent par le test "entrée encore présente", les suivantes sont des no-op.

Tout est exécuté sur la boucle asyncio du relais: pas de verrou.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from ..core.constants import (
    DEFAULT_REQUEST_TIMEOUT_MS,
    PROXY_SHUTDOWN_CODE,
    REQUEST_CANCELLED_CODE,
    REQUEST_TIMEOUT_CODE,
)
from ..core.exceptions import DuplicateRequestIdError
from ..protocol.codec import Message, make_error_response

logger = logging.getLogger(__name__)

ResolveCallback = Callable[[Message], None]
CancelCallback = Callable[[Any], None]


@dataclass
class PendingRequest:
    id: Any
    on_resolve: ResolveCallback
    timer: Optional[asyncio.TimerHandle] = None


class PendingRequests:
    """
    Associe un id de réponse à la continuation qui l'attend.

    Args:
        timeout_ms: Délai avant expiration d'une requête (ms)
        on_cancel: Appelé avec l'id à notifier via `$/cancelRequest`
        loop: Boucle asyncio (par défaut la boucle courante)
    """

    def __init__(
        self,
        timeout_ms: float = DEFAULT_REQUEST_TIMEOUT_MS,
        on_cancel: Optional[CancelCallback] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self.timeout_ms = timeout_ms
        self._on_cancel = on_cancel
        self._loop = loop
        self._entries: Dict[Any, PendingRequest] = {}

        self.resolved_total = 0
        self.expired_total = 0
        self.cancelled_total = 0

    def __contains__(self, request_id: Any) -> bool:
        return _hashable(request_id) and request_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def timeout_message(self) -> str:
        return f"Request to language server timed out after {self.timeout_ms:g}ms."

    def register(self, request_id: Any, on_resolve: ResolveCallback) -> PendingRequest:
        """
        Enregistre une requête en attente et démarre son timer.

        Raises:
            DuplicateRequestIdError: L'id est déjà en attente
        """
        if request_id in self._entries:
            raise DuplicateRequestIdError(request_id)

        loop = self._loop or asyncio.get_running_loop()
        entry = PendingRequest(id=request_id, on_resolve=on_resolve)
        entry.timer = loop.call_later(self.timeout_ms / 1000.0, self.expire, request_id)
        self._entries[request_id] = entry
        return entry

    def resolve(self, request_id: Any, message: Message) -> bool:
        """
        Livre la réponse à la continuation en attente.

        Returns:
            False si aucune entrée ne correspond (le message doit alors être relayé)
        """
        entry = self._pop(request_id)
        if entry is None:
            return False
        self.resolved_total += 1
        entry.on_resolve(message)
        return True

    def expire(self, request_id: Any) -> bool:
        """Timeout: erreur synthétique pour l'appelant et `$/cancelRequest` vers le serveur."""
        entry = self._pop(request_id)
        if entry is None:
            return False
        self.expired_total += 1
        logger.warning(f"⏱️ Requête {request_id} expirée après {self.timeout_ms:g}ms")
        entry.on_resolve(make_error_response(request_id, REQUEST_TIMEOUT_CODE, self.timeout_message))
        self._notify_cancel(request_id)
        return True

    def cancel(self, request_id: Any) -> bool:
        """
        Annulation explicite: même retrait + notification que `expire`.

        L'appelant reçoit une erreur RequestCancelled (pas une erreur de timeout)
        pour ne jamais rester en attente indéfiniment.
        """
        entry = self._pop(request_id)
        if entry is None:
            return False
        self.cancelled_total += 1
        entry.on_resolve(
            make_error_response(request_id, REQUEST_CANCELLED_CODE, f"Request {request_id} was cancelled.")
        )
        self._notify_cancel(request_id)
        return True

    def close(self) -> None:
        """Coupe tous les timers et résout les requêtes survivantes en erreur."""
        for request_id in list(self._entries):
            entry = self._pop(request_id)
            if entry is not None:
                entry.on_resolve(
                    make_error_response(request_id, PROXY_SHUTDOWN_CODE, "Language server proxy is shutting down.")
                )

    def _pop(self, request_id: Any) -> Optional[PendingRequest]:
        if not _hashable(request_id):
            return None
        entry = self._entries.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def _notify_cancel(self, request_id: Any) -> None:
        if self._on_cancel is not None:
            self._on_cancel(request_id)


def _hashable(value: Any) -> bool:
    # JSON-RPC: id = string | number | null
    return isinstance(value, (str, int, float))
