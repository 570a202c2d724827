"""Tests unitaires: lsp_proxy.relay.core (LspRelay).

Objectifs:
    - Relais octet pour octet dans les deux sens
    - Requêtes du proxy: corrélation, timeout + `$/cancelRequest`, annulation
    - Observers: contrôle du relais, erreurs isolées
    - Messages illisibles ignorés

Contraintes:
    - Flux en mémoire uniquement (aucun processus lancé)
"""

from __future__ import annotations

import asyncio

import pytest

from lsp_proxy.protocol.codec import deserialize, make_response, serialize
from lsp_proxy.protocol.framing import MessageFramer
from lsp_proxy.relay.core import ClientMessage, LspRelay, ServerMessage


class _FakeWriter:
    def __init__(self):
        self.data = bytearray()
        self.closed = False

    def write(self, data: bytes) -> None:
        self.data += data

    async def drain(self) -> None:
        return None

    def is_closing(self) -> bool:
        return self.closed

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


def _messages(data: bytes) -> list:
    return [deserialize(frame) for frame in MessageFramer().feed(bytes(data))]


async def _wait_until(predicate, timeout: float = 1.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition jamais atteinte")
        await asyncio.sleep(0.005)


def _make_relay(timeout_ms: float = 1000, **kwargs):
    client_in = asyncio.StreamReader()
    server_out = asyncio.StreamReader()
    client_out = _FakeWriter()
    server_in = _FakeWriter()
    relay = LspRelay(
        client_in,
        client_out,
        server_out,
        server_in,
        proxy_id="P",
        timeout_ms=timeout_ms,
        **kwargs,
    )
    return relay, client_in, client_out, server_out, server_in


@pytest.mark.unit
@pytest.mark.asyncio
async def test_client_frames_forwarded_byte_identical(frame):
    relay, client_in, _client_out, _server_out, server_in = _make_relay()
    first = frame('{ "jsonrpc" : "2.0", "id": 1, "method": "initialize", "params": {} }')
    second = frame('{"jsonrpc":"2.0","method":"initialized"}')

    client_in.feed_data(first + second[:7])
    client_in.feed_data(second[7:])
    client_in.feed_eof()

    ended = await asyncio.wait_for(relay.run(), 1)

    assert ended == "client"
    assert bytes(server_in.data) == first + second
    assert relay.stats()["frames_total"]["client_to_server"] == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_server_frames_forwarded_byte_identical(frame):
    relay, _client_in, client_out, server_out, _server_in = _make_relay()
    notification = frame('{"jsonrpc":"2.0","method":"textDocument/publishDiagnostics","params":{"uri":"file:///é"}}')
    response = frame('{"jsonrpc":"2.0","id":1,"result":{"capabilities":{}}}')

    server_out.feed_data(notification + response)
    server_out.feed_eof()

    assert await asyncio.wait_for(relay.run(), 1) == "server"
    assert bytes(client_out.data) == notification + response


@pytest.mark.unit
@pytest.mark.asyncio
async def test_request_resolved_by_server_response_is_not_forwarded():
    relay, client_in, client_out, server_out, server_in = _make_relay()
    run_task = asyncio.create_task(relay.run())

    req_task = asyncio.create_task(relay.request("workspace/symbol", {"query": "x"}))
    await _wait_until(lambda: server_in.data)

    sent = _messages(server_in.data)
    assert sent == [{"jsonrpc": "2.0", "id": "P-1", "method": "workspace/symbol", "params": {"query": "x"}}]

    server_out.feed_data(serialize(make_response("P-1", [{"name": "x"}])))
    assert await asyncio.wait_for(req_task, 1) == [{"name": "x"}]
    assert client_out.data == b""

    client_in.feed_eof()
    assert await asyncio.wait_for(run_task, 1) == "client"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_second_response_for_resolved_request_reaches_client():
    relay, client_in, client_out, server_out, server_in = _make_relay()
    run_task = asyncio.create_task(relay.run())

    req_task = asyncio.create_task(relay.request("workspace/symbol", {"query": "x"}))
    await _wait_until(lambda: server_in.data)
    server_out.feed_data(serialize(make_response("P-1", [])))
    assert await asyncio.wait_for(req_task, 1) == []

    # Entrée déjà consommée: la réponse suit le chemin non corrélé
    duplicate = serialize(make_response("P-1", "encore"))
    server_out.feed_data(duplicate)
    await _wait_until(lambda: client_out.data)

    assert bytes(client_out.data) == duplicate

    client_in.feed_eof()
    assert await asyncio.wait_for(run_task, 1) == "client"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_request_timeout_returns_error_and_sends_one_cancel():
    relay, _client_in, _client_out, _server_out, server_in = _make_relay(timeout_ms=30)

    result = await asyncio.wait_for(relay.request("foo/bar", {"a": 1}), 1)

    assert result == {"code": -32803, "message": "Request to language server timed out after 30ms."}
    await asyncio.sleep(0.05)
    sent = _messages(server_in.data)
    assert sent[0] == {"jsonrpc": "2.0", "id": "P-1", "method": "foo/bar", "params": {"a": 1}}
    cancels = [m for m in sent if m.get("method") == "$/cancelRequest"]
    assert cancels == [{"jsonrpc": "2.0", "method": "$/cancelRequest", "params": {"id": "P-1"}}]
    assert relay.stats()["requests_expired"] == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_late_response_after_timeout_goes_to_client():
    relay, client_in, client_out, server_out, _server_in = _make_relay(timeout_ms=20)
    run_task = asyncio.create_task(relay.run())

    await relay.request("foo/bar")
    late = serialize(make_response("P-1", "trop tard"))
    server_out.feed_data(late)
    await _wait_until(lambda: client_out.data)

    assert bytes(client_out.data) == late

    client_in.feed_eof()
    await asyncio.wait_for(run_task, 1)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_proxy_id_and_client_id_are_independent(frame):
    relay, client_in, client_out, server_out, server_in = _make_relay()
    run_task = asyncio.create_task(relay.run())

    req_task = asyncio.create_task(relay.request("foo/bar"))
    client_request = frame('{"jsonrpc":"2.0","id":1,"method":"textDocument/hover"}')
    client_in.feed_data(client_request)
    await _wait_until(lambda: len(_messages(server_in.data)) == 2)

    client_response = frame('{"jsonrpc":"2.0","id":1,"result":"hover"}')
    server_out.feed_data(serialize(make_response("P-1", "proxy")) + client_response)

    assert await asyncio.wait_for(req_task, 1) == "proxy"
    await _wait_until(lambda: client_out.data)
    assert bytes(client_out.data) == client_response
    assert client_request in bytes(server_in.data)

    client_in.feed_eof()
    await asyncio.wait_for(run_task, 1)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_proxy_ids_increase():
    relay, *_ = _make_relay()
    assert relay.next_id() == "P-1"
    assert relay.next_id() == "P-2"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_server_error_response_returns_error_object():
    relay, client_in, _client_out, server_out, server_in = _make_relay()
    run_task = asyncio.create_task(relay.run())

    req_task = asyncio.create_task(relay.request("foo/bar"))
    await _wait_until(lambda: server_in.data)
    server_out.feed_data(
        serialize({"jsonrpc": "2.0", "id": "P-1", "error": {"code": -32601, "message": "Unhandled method"}})
    )

    assert await asyncio.wait_for(req_task, 1) == {"code": -32601, "message": "Unhandled method"}

    client_in.feed_eof()
    await asyncio.wait_for(run_task, 1)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_caller_cancellation_sends_cancel_request():
    relay, _client_in, _client_out, _server_out, server_in = _make_relay()

    req_task = asyncio.create_task(relay.request("foo/bar"))
    await _wait_until(lambda: server_in.data)
    req_task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await req_task

    methods = [m.get("method") for m in _messages(server_in.data)]
    assert methods == ["foo/bar", "$/cancelRequest"]
    assert len(relay.pending) == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_explicit_cancel_resolves_with_cancelled_error():
    relay, _client_in, _client_out, _server_out, server_in = _make_relay()

    req_task = asyncio.create_task(relay.request("foo/bar"))
    await _wait_until(lambda: server_in.data)

    assert relay.cancel("P-1") is True
    result = await asyncio.wait_for(req_task, 1)

    assert result["code"] == -32800
    assert [m.get("method") for m in _messages(server_in.data)] == ["foo/bar", "$/cancelRequest"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_request_on_closed_server_input_fails_fast():
    relay, _client_in, _client_out, _server_out, server_in = _make_relay()
    server_in.closed = True

    result = await asyncio.wait_for(relay.request("foo/bar"), 1)

    assert result["code"] == -32099
    assert server_in.data == b""


@pytest.mark.unit
@pytest.mark.asyncio
async def test_observer_can_hold_and_drop_messages(frame):
    relay, client_in, _client_out, _server_out, server_in = _make_relay()
    seen = []

    @relay.on_client
    async def hold(event: ClientMessage):
        seen.append(event)

    keep = frame('{"jsonrpc":"2.0","method":"keep"}')
    drop = frame('{"jsonrpc":"2.0","method":"drop"}')
    client_in.feed_data(keep + drop)
    client_in.feed_eof()
    await asyncio.wait_for(relay.run(), 1)

    assert server_in.data == b""
    assert [event.method for event in seen] == ["keep", "drop"]
    assert seen[0].direction == "client_to_server"

    await seen[0].forward()
    await seen[0].forward()
    assert bytes(server_in.data) == keep


@pytest.mark.unit
@pytest.mark.asyncio
async def test_observer_failure_does_not_stop_relay(frame):
    relay, _client_in, client_out, server_out, _server_in = _make_relay()
    calls = []

    def flaky(event: ServerMessage):
        calls.append(event.method)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return event.forward()

    relay.on_server(flaky)
    first = frame('{"jsonrpc":"2.0","method":"a"}')
    second = frame('{"jsonrpc":"2.0","method":"b"}')
    server_out.feed_data(first + second)
    server_out.feed_eof()

    await asyncio.wait_for(relay.run(), 1)

    assert calls == ["a", "b"]
    assert bytes(client_out.data) == second


@pytest.mark.unit
@pytest.mark.asyncio
async def test_malformed_frame_is_dropped(frame):
    relay, client_in, _client_out, _server_out, server_in = _make_relay()
    bad = frame("{not json")
    good = frame('{"jsonrpc":"2.0","method":"initialized"}')

    client_in.feed_data(bad + good)
    client_in.feed_eof()
    await asyncio.wait_for(relay.run(), 1)

    assert bytes(server_in.data) == good
    assert relay.stats()["dropped_total"]["client_to_server"] == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_framing_error_ends_relay_without_raising():
    relay, client_in, _client_out, _server_out, server_in = _make_relay()

    client_in.feed_data(b"X-Foo: 1\r\n\r\n{}")

    assert await asyncio.wait_for(relay.run(), 1) == "client"
    assert server_in.data == b""


@pytest.mark.unit
@pytest.mark.asyncio
async def test_notify_targets_client_by_default_or_server():
    relay, _client_in, client_out, _server_out, server_in = _make_relay()

    await relay.notify("window/showMessage", {"type": 3, "message": "ok"})
    await relay.notify("workspace/didChangeConfiguration", {"settings": {}}, target="server")

    assert _messages(client_out.data) == [
        {"jsonrpc": "2.0", "method": "window/showMessage", "params": {"type": 3, "message": "ok"}}
    ]
    assert _messages(server_in.data)[0]["method"] == "workspace/didChangeConfiguration"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_aclose_resolves_pending_requests_and_closes_client_output():
    relay, _client_in, client_out, _server_out, server_in = _make_relay()

    req_task = asyncio.create_task(relay.request("foo/bar"))
    await _wait_until(lambda: server_in.data)
    await relay.aclose()

    assert (await asyncio.wait_for(req_task, 1))["code"] == -32099
    assert client_out.closed


@pytest.mark.unit
@pytest.mark.asyncio
async def test_monitor_observes_each_parsed_message(frame):
    class _Monitor:
        def __init__(self):
            self.seen = []

        def observe(self, *, direction, message):
            self.seen.append((direction, message.get("method")))

    monitor = _Monitor()
    relay, client_in, *_ = _make_relay(monitor=monitor)
    client_in.feed_data(frame('{"jsonrpc":"2.0","method":"initialized"}'))
    client_in.feed_eof()

    await asyncio.wait_for(relay.run(), 1)

    assert monitor.seen == [("client_to_server", "initialized")]
