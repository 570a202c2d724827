"""Tests unitaires: lsp_proxy.relay.pending (table de corrélation).

Objectifs:
    - Une seule issue par requête (réponse, timeout, annulation)
    - Timeout: une erreur et une seule notification d'annulation
"""

from __future__ import annotations

import asyncio

import pytest

from lsp_proxy.core.exceptions import DuplicateRequestIdError
from lsp_proxy.relay.pending import PendingRequests


class _Recorder:
    def __init__(self):
        self.resolved = []
        self.cancelled = []

    def on_resolve(self, message):
        self.resolved.append(message)

    def on_cancel(self, request_id):
        self.cancelled.append(request_id)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resolve_delivers_message_once():
    rec = _Recorder()
    table = PendingRequests(timeout_ms=1000, on_cancel=rec.on_cancel)
    table.register("P-1", rec.on_resolve)

    response = {"jsonrpc": "2.0", "id": "P-1", "result": 42}
    assert table.resolve("P-1", response) is True
    assert table.resolve("P-1", response) is False
    assert table.expire("P-1") is False
    assert table.cancel("P-1") is False

    assert rec.resolved == [response]
    assert rec.cancelled == []
    assert len(table) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resolve_unknown_id_returns_false():
    table = PendingRequests()
    assert table.resolve("P-9", {"id": "P-9", "result": None}) is False
    assert table.resolve({"not": "hashable"}, {}) is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_timeout_fires_once_with_single_cancel_notification():
    rec = _Recorder()
    table = PendingRequests(timeout_ms=20, on_cancel=rec.on_cancel)
    table.register("P-1", rec.on_resolve)

    await asyncio.sleep(0.1)

    assert len(rec.resolved) == 1
    error = rec.resolved[0]["error"]
    assert error["code"] == -32803
    assert error["message"] == "Request to language server timed out after 20ms."
    assert rec.cancelled == ["P-1"]
    assert table.expired_total == 1

    # Réponse tardive: plus d'entrée
    assert table.resolve("P-1", {"id": "P-1", "result": 1}) is False
    assert len(rec.resolved) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_default_timeout_message_matches_five_seconds():
    assert PendingRequests().timeout_message == "Request to language server timed out after 5000ms."


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resolved_request_timer_is_cancelled():
    rec = _Recorder()
    table = PendingRequests(timeout_ms=20, on_cancel=rec.on_cancel)
    table.register(1, rec.on_resolve)
    table.resolve(1, {"id": 1, "result": None})

    await asyncio.sleep(0.1)

    assert rec.cancelled == []
    assert table.expired_total == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_resolves_caller_and_notifies_server():
    rec = _Recorder()
    table = PendingRequests(timeout_ms=1000, on_cancel=rec.on_cancel)
    table.register("P-3", rec.on_resolve)

    assert table.cancel("P-3") is True
    assert table.cancel("P-3") is False

    assert rec.resolved[0]["error"]["code"] == -32800
    assert rec.cancelled == ["P-3"]
    assert table.cancelled_total == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_duplicate_id_is_rejected():
    table = PendingRequests(timeout_ms=1000)
    table.register("P-1", lambda message: None)
    with pytest.raises(DuplicateRequestIdError):
        table.register("P-1", lambda message: None)
    table.close()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_close_resolves_every_pending_request():
    rec = _Recorder()
    table = PendingRequests(timeout_ms=1000, on_cancel=rec.on_cancel)
    table.register("P-1", rec.on_resolve)
    table.register("P-2", rec.on_resolve)

    table.close()

    assert [m["id"] for m in rec.resolved] == ["P-1", "P-2"]
    assert all(m["error"]["code"] == -32099 for m in rec.resolved)
    assert rec.cancelled == []
    assert "P-1" not in table
