"""Tests for the peer transports."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from peerplay.errors import PeerNotInitializedError, TransportError
from peerplay.protocol import MessageType
from peerplay.transport import (
    ConnectionState,
    MemoryTransport,
    PeerEventHandlers,
    WebSocketTransport,
)
from peerplay.transport.websocket import CLOSE_PROTOCOL_MISMATCH, CLOSE_UNKNOWN_PEER


async def wait_until(predicate, timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


async def _pair(network):
    events = {"a": [], "b": []}
    a = MemoryTransport(network, peer_id="a")
    b = MemoryTransport(network, peer_id="b")
    await a.initialize(
        PeerEventHandlers(
            on_connection=lambda p: events["a"].append(("connected", p)),
            on_disconnection=lambda p: events["a"].append(("disconnected", p)),
        )
    )
    await b.initialize(
        PeerEventHandlers(
            on_connection=lambda p: events["b"].append(("connected", p)),
            on_disconnection=lambda p: events["b"].append(("disconnected", p)),
        )
    )
    await a.connect_to_peer("b")
    await network.drain()
    return a, b, events


async def test_initialize_is_idempotent(network):
    transport = MemoryTransport(network, peer_id="solo")
    first = await transport.initialize()
    second = await transport.initialize()
    assert first == second == "solo"
    assert transport.state == ConnectionState.CONNECTED


async def test_initialize_failure_reports_error(network):
    network.online = False
    errors = []
    transport = MemoryTransport(network)
    with pytest.raises(TransportError):
        await transport.initialize(PeerEventHandlers(on_error=errors.append))
    assert transport.state == ConnectionState.ERROR
    assert len(errors) == 1


async def test_connect_before_initialize_raises(network):
    transport = MemoryTransport(network)
    with pytest.raises(PeerNotInitializedError):
        await transport.connect_to_peer("anyone")


async def test_connect_to_unknown_peer_raises(network):
    transport = MemoryTransport(network, peer_id="lonely")
    await transport.initialize()
    with pytest.raises(TransportError):
        await transport.connect_to_peer("ghost")


async def test_link_open_fires_connection_on_acceptor_only(network):
    a, b, events = await _pair(network)
    assert events["b"] == [("connected", "a")]
    assert events["a"] == []
    assert a.connected_peers == ["b"]
    assert b.connected_peers == ["a"]


async def test_frames_arrive_in_order(network):
    a, b, _ = await _pair(network)
    seen = []
    b.on_message(MessageType.CHAT, lambda env, sender: seen.append((env.payload["n"], sender)))
    for n in range(5):
        assert a.send("b", MessageType.CHAT, {"n": n})
    await network.drain()
    assert seen == [(n, "a") for n in range(5)]


async def test_send_without_link_returns_false(network):
    transport = MemoryTransport(network, peer_id="x")
    await transport.initialize()
    assert transport.send("nobody", MessageType.PING, {"timestamp": 1}) is False


async def test_typed_handlers_run_after_global_handler(network):
    order = []
    a = MemoryTransport(network, peer_id="a")
    b = MemoryTransport(network, peer_id="b")
    await a.initialize()
    await b.initialize(PeerEventHandlers(on_message=lambda env, s: order.append("global")))
    unsubscribe = b.on_message(MessageType.PING, lambda env, s: order.append("typed"))
    await a.connect_to_peer("b")
    a.send("b", MessageType.PING, {"timestamp": 1})
    await network.drain()
    assert order == ["global", "typed"]

    unsubscribe()
    a.send("b", MessageType.PING, {"timestamp": 2})
    await network.drain()
    assert order == ["global", "typed", "global"]


async def test_failing_handler_does_not_stop_delivery(network):
    a, b, _ = await _pair(network)
    seen = []

    def broken(env, sender):
        raise RuntimeError("boom")

    b.on_message(MessageType.CHAT, broken)
    b.on_message(MessageType.CHAT, lambda env, sender: seen.append(env.payload["n"]))
    a.send("b", MessageType.CHAT, {"n": 1})
    a.send("b", MessageType.CHAT, {"n": 2})
    await network.drain()
    assert seen == [1, 2]


async def test_malformed_frame_is_dropped(network):
    a, b, _ = await _pair(network)
    seen = []
    b.on_message(MessageType.CHAT, lambda env, sender: seen.append(env))
    b._deliver({"type": "not-a-type", "senderId": "a"}, "a")
    assert seen == []


async def test_unhandled_message_types_are_not_in_the_protocol(network):
    a, b, _ = await _pair(network)
    seen = []
    b.on_message(MessageType.GAME_STATE, lambda env, sender: seen.append(env))
    for name in ("player_unready", "sync_request", "sync_response"):
        assert name not in {t.value for t in MessageType}
        b._deliver({"type": name, "senderId": "a", "payload": {}}, "a")
    assert seen == []
    assert len(MessageType) == 14


async def test_broadcast_skips_excluded_peer(network):
    hub = MemoryTransport(network, peer_id="hub")
    await hub.initialize()
    spokes = {}
    for name in ("s1", "s2", "s3"):
        spoke = MemoryTransport(network, peer_id=name)
        await spoke.initialize()
        got = []
        spoke.on_message(MessageType.CHAT, lambda env, sender, got=got: got.append(env.payload))
        await spoke.connect_to_peer("hub")
        spokes[name] = got
    await network.drain()

    hub.broadcast(MessageType.CHAT, {"text": "hello"}, exclude="s2")
    await network.drain()
    assert spokes["s1"] == [{"text": "hello"}]
    assert spokes["s2"] == []
    assert spokes["s3"] == [{"text": "hello"}]


async def test_sever_drops_silently(network):
    a, b, events = await _pair(network)
    seen = []
    b.on_message(MessageType.CHAT, lambda env, sender: seen.append(env))
    network.sever("a", "b")
    assert a.send("b", MessageType.CHAT, {"text": "lost"})
    await network.drain()
    assert seen == []
    assert ("disconnected", "a") not in events["b"]

    network.heal("a", "b")
    a.send("b", MessageType.CHAT, {"text": "found"})
    await network.drain()
    assert len(seen) == 1


async def test_disconnect_peer_notifies_both_sides(network):
    a, b, events = await _pair(network)
    a.disconnect_peer("b")
    await network.drain()
    assert ("disconnected", "b") in events["a"]
    assert ("disconnected", "a") in events["b"]
    assert a.connected_peers == []
    assert b.connected_peers == []


async def test_cleanup_closes_links(network):
    a, b, events = await _pair(network)
    await a.cleanup()
    await network.drain()
    assert a.peer_id is None
    assert a.state == ConnectionState.DISCONNECTED
    assert ("disconnected", "a") in events["b"]


def test_peer_endpoint_rejects_unknown_token():
    transport = WebSocketTransport()
    client = TestClient(transport.app)
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect("/peer/not-the-token") as ws:
            ws.receive_json()
    assert excinfo.value.code == CLOSE_UNKNOWN_PEER


def test_peer_endpoint_rejects_protocol_mismatch():
    transport = WebSocketTransport()
    transport._peer_id = f"ws://127.0.0.1:1/peer/{transport.token}"
    client = TestClient(transport.app)
    with pytest.raises(WebSocketDisconnect) as excinfo:
        with client.websocket_connect(f"/peer/{transport.token}") as ws:
            ws.send_json({"type": "hello", "peerId": "ws://elsewhere", "proto": 999})
            ws.receive_json()
    assert excinfo.value.code == CLOSE_PROTOCOL_MISMATCH


async def test_websocket_peers_exchange_frames():
    host = WebSocketTransport(host="127.0.0.1", port=0)
    guest = WebSocketTransport(host="127.0.0.1", port=0)
    connected = []
    received = []
    host_id = await host.initialize(
        PeerEventHandlers(
            on_connection=connected.append,
            on_message=lambda env, sender: received.append((env.type, env.payload, sender)),
        )
    )
    guest_id = await guest.initialize()
    try:
        assert host_id.startswith("ws://127.0.0.1:")
        await guest.connect_to_peer(host_id)
        assert guest.send(host_id, MessageType.CHAT, {"text": "hi"})
        await wait_until(lambda: received)
        assert connected == [guest_id]
        assert received[0] == (MessageType.CHAT, {"text": "hi"}, guest_id)

        replies = []
        guest.on_message(MessageType.PONG, lambda env, sender: replies.append(env.payload))
        assert host.send(guest_id, MessageType.PONG, {"timestamp": 5})
        await wait_until(lambda: replies)
        assert replies == [{"timestamp": 5}]
    finally:
        await guest.cleanup()
        await host.cleanup()
