"""Multi-peer room membership scenarios on the in-memory network."""

from __future__ import annotations

import asyncio

import pytest

from peerplay.errors import JoinError, JoinRejectedError, JoinTimeoutError
from peerplay.models import ROOM_CODE_ALPHABET, RoomConfig, RoomStatus
from peerplay.protocol import MessageType
from peerplay.rooms import (
    CONNECT_FAILED,
    GAME_ALREADY_STARTED,
    HOST_LOST,
    JOIN_TIMED_OUT,
    KICKED,
    PLAYERS_NOT_READY,
    ROOM_CLOSED,
    ROOM_FULL,
    RoomEvent,
    default_config,
)
from peerplay.storage import MemorySessionStorage
from peerplay.transport import MemoryTransport


async def hosted(make_peer, network, guests=(), max_players=4, **kwargs):
    host = make_peer("host", **kwargs)
    await host.host("tic-tac-toe", "Tic Tac Toe", RoomConfig(max_players=max_players))
    joined = []
    for name in guests:
        guest = make_peer(name, **kwargs)
        await guest.join("peer-host")
        joined.append(guest)
    await network.drain()
    return host, joined


async def test_create_room_makes_host_sole_ready_player(make_peer):
    host = make_peer("host")
    room = await host.host("tic-tac-toe", "Tic Tac Toe")

    assert room.status == RoomStatus.WAITING
    assert room.host_peer_id == "peer-host"
    assert room.config.max_players == 2
    assert room.config.min_players == 2
    assert room.config.is_private is False
    assert room.config.game_slug == "tic-tac-toe"
    assert len(room.code) == 6
    assert all(c in ROOM_CODE_ALPHABET for c in room.code)
    [player] = room.players
    assert player.is_host and player.is_ready and player.is_connected
    assert player.peer_id == room.host_peer_id

    saved = host.rooms.storage.load()
    assert saved.is_host and saved.is_in_room
    assert saved.room.id == room.id
    assert host.monitor.running


def test_default_config_follows_engine_limits():
    assert default_config("connect-four").max_players == 2
    assert default_config("connect-four").min_players == 2
    unknown = default_config("chess")
    assert (unknown.min_players, unknown.max_players) == (2, 4)


async def test_default_room_turns_away_third_player(make_peer, network):
    host = make_peer("host")
    await host.host("tic-tac-toe")
    await make_peer("a").join("peer-host")
    await network.drain()

    with pytest.raises(JoinRejectedError) as excinfo:
        await make_peer("b").join("peer-host")
    assert excinfo.value.reason == ROOM_FULL
    assert len(host.rooms.room.players) == 2


async def test_create_room_rejects_inverted_limits(make_peer):
    host = make_peer("host")
    with pytest.raises(ValueError):
        await host.host("tic-tac-toe", config=RoomConfig(min_players=5, max_players=2))


async def test_join_mirrors_room_and_announces_to_others(make_peer, network):
    host, (a, b) = await hosted(make_peer, network, guests=("a", "b"))

    host_ids = [p.od_id for p in host.rooms.room.players]
    assert host_ids == ["user-host", "user-a", "user-b"]
    assert [p.od_id for p in a.rooms.room.players] == host_ids
    assert [p.od_id for p in b.rooms.room.players] == host_ids
    assert a.rooms.is_in_room and not a.rooms.is_host
    assert a.rooms.room.get_player("user-a").peer_id == "peer-a"
    assert a.rooms.storage.load().is_host is False


async def test_full_room_rejects_fifth_player(make_peer, network):
    host, _ = await hosted(make_peer, network, guests=("a", "b", "c"), max_players=4)
    assert len(host.rooms.room.players) == 4

    late = make_peer("late")
    with pytest.raises(JoinRejectedError) as excinfo:
        await late.join("peer-host")
    await network.drain()

    assert excinfo.value.reason == ROOM_FULL
    assert late.rooms.join_error == ROOM_FULL
    assert late.rooms.room is None
    assert len(host.rooms.room.players) == 4


async def test_started_room_rejects_newcomers(make_peer, network):
    host, (a,) = await hosted(make_peer, network, guests=("a",))
    a.rooms.set_ready(True)
    await network.drain()
    assert host.start_game()

    late = make_peer("late")
    with pytest.raises(JoinRejectedError) as excinfo:
        await late.join("peer-host")
    assert excinfo.value.reason == GAME_ALREADY_STARTED


async def test_join_times_out_when_host_is_silent(make_peer, network):
    silent = MemoryTransport(network, peer_id="silent")
    await silent.initialize()
    guest = make_peer("a")

    with pytest.raises(JoinTimeoutError) as excinfo:
        await guest.join("silent")

    assert excinfo.value.reason == JOIN_TIMED_OUT
    assert guest.rooms.join_error == JOIN_TIMED_OUT
    assert guest.rooms.is_joining is False
    assert guest.rooms.room is None
    await silent.cleanup()


async def test_join_unknown_host_fails_to_connect(make_peer):
    guest = make_peer("a")
    with pytest.raises(JoinError) as excinfo:
        await guest.join("peer-nobody")
    assert excinfo.value.reason == CONNECT_FAILED
    assert guest.rooms.join_error == CONNECT_FAILED


async def test_ready_is_idempotent_but_always_broadcast(make_peer, network):
    host, (a, b) = await hosted(make_peer, network, guests=("a", "b"))
    relayed = []
    b.transport.on_message(MessageType.PLAYER_READY, lambda env, sender: relayed.append(env.payload))

    a.rooms.set_ready(True)
    a.rooms.set_ready(True)
    await network.drain()

    assert relayed == [{"odId": "user-a", "ready": True}] * 2
    assert host.rooms.room.get_player("user-a").is_ready
    assert b.rooms.room.get_player("user-a").is_ready

    a.rooms.set_ready(False)
    await network.drain()
    assert not host.rooms.room.get_player("user-a").is_ready


async def test_guest_cannot_change_someone_elses_readiness(make_peer, network):
    host, (a, b) = await hosted(make_peer, network, guests=("a", "b"))
    a.transport.send("peer-host", MessageType.PLAYER_READY, {"odId": "user-b", "ready": True})
    await network.drain()
    assert not host.rooms.room.get_player("user-b").is_ready


async def test_start_refused_until_everyone_is_ready(make_peer, network):
    host, (a,) = await hosted(make_peer, network, guests=("a",))
    starts = []
    a.transport.on_message(MessageType.GAME_START, lambda env, sender: starts.append(env))

    assert host.start_game() is False
    await network.drain()

    assert host.rooms.room.status == RoomStatus.WAITING
    assert host.rooms.join_error == PLAYERS_NOT_READY
    assert a.rooms.room.status == RoomStatus.WAITING
    assert starts == []


async def test_start_refused_below_minimum(make_peer):
    host = make_peer("host")
    await host.host("tic-tac-toe")
    assert host.start_game() is False
    assert host.rooms.join_error == "ต้องมีผู้เล่นอย่างน้อย 2 คน"
    assert host.rooms.room.status == RoomStatus.WAITING


async def test_only_host_may_start(make_peer, network):
    host, (a,) = await hosted(make_peer, network, guests=("a",))
    a.rooms.set_ready(True)
    await network.drain()
    assert a.start_game() is False
    assert host.rooms.room.status == RoomStatus.WAITING


async def test_start_moves_room_to_playing_and_deals_game(make_peer, network):
    host, (a,) = await hosted(make_peer, network, guests=("a",))
    statuses = []
    host.rooms.add_listener(
        lambda event, data: statuses.append(data) if event == RoomEvent.STATUS_CHANGED else None
    )
    a.rooms.set_ready(True)
    await network.drain()

    assert host.start_game() is True
    assert host.rooms.room.status == RoomStatus.STARTING
    await network.drain()
    assert a.rooms.room.status == RoomStatus.PLAYING

    await asyncio.sleep(0.05)
    await network.drain()
    assert host.rooms.room.status == RoomStatus.PLAYING
    assert statuses == [RoomStatus.STARTING, RoomStatus.PLAYING]
    assert host.game.state is not None
    assert a.game.state == host.game.state
    assert a.game.is_playing


async def test_lone_host_can_start_against_ai(make_peer):
    host = make_peer("host")
    await host.host("tic-tac-toe")
    host.game.set_ai(True, "easy")

    assert host.start_game() is True
    await asyncio.sleep(0.05)

    ids = [p["odId"] for p in host.game.state["players"]]
    assert ids == ["user-host", "ai-player-easy"]
    assert host.game.state["players"][1]["isAI"] is True


async def test_kick_removes_player_everywhere(make_peer, network):
    host, (a, b) = await hosted(make_peer, network, guests=("a", "b"))
    events = []
    a.rooms.add_listener(lambda event, data: events.append(event))

    assert host.rooms.kick_player("user-a") is True
    await network.drain()

    assert [p.od_id for p in host.rooms.room.players] == ["user-host", "user-b"]
    assert [p.od_id for p in b.rooms.room.players] == ["user-host", "user-b"]
    assert a.rooms.room is None
    assert a.rooms.join_error == KICKED
    assert RoomEvent.KICKED in events
    assert a.rooms.storage.load() is None
    assert "peer-a" not in host.transport.connected_peers


async def test_host_cannot_be_kicked(make_peer, network):
    host, (a,) = await hosted(make_peer, network, guests=("a",))
    assert host.rooms.kick_player("user-host") is False
    assert a.rooms.kick_player("user-host") is False
    assert len(host.rooms.room.players) == 2


async def test_guest_leave_is_relayed(make_peer, network):
    host, (a, b) = await hosted(make_peer, network, guests=("a", "b"))
    a.leave()
    await network.drain()

    assert a.rooms.room is None
    assert a.rooms.storage.load() is None
    assert [p.od_id for p in host.rooms.room.players] == ["user-host", "user-b"]
    assert [p.od_id for p in b.rooms.room.players] == ["user-host", "user-b"]


async def test_host_leave_closes_every_mirror(make_peer, network):
    host, (a,) = await hosted(make_peer, network, guests=("a",))
    host.leave()
    await network.drain()

    assert host.rooms.room is None
    assert host.rooms.storage.load() is None
    assert a.rooms.room is None
    assert a.rooms.closed_reason == ROOM_CLOSED
    assert a.rooms.storage.load() is None
    assert a.transport.connected_peers == []


async def test_chat_reaches_everyone_through_host(make_peer, network):
    host, (a, b) = await hosted(make_peer, network, guests=("a", "b"))
    sent = a.rooms.send_chat("  hello  ")
    await network.drain()

    assert sent.is_me and sent.text == "hello"
    assert [m.text for m in host.rooms.messages] == ["hello"]
    assert [(m.sender_name, m.text, m.is_me) for m in b.rooms.messages] == [("a", "hello", False)]
    assert a.rooms.send_chat("   ") is None


async def test_pause_and_resume_follow_host(make_peer, network):
    host, (a,) = await hosted(make_peer, network, guests=("a",))
    a.rooms.set_ready(True)
    await network.drain()
    host.start_game()
    await asyncio.sleep(0.05)
    await network.drain()

    assert host.rooms.set_paused(True)
    await network.drain()
    assert a.rooms.room.status == RoomStatus.PAUSED
    assert host.rooms.set_paused(True) is False

    assert host.rooms.set_paused(False)
    await network.drain()
    assert a.rooms.room.status == RoomStatus.PLAYING


async def test_rejoin_with_same_identity_replaces_slot(make_peer, network):
    host, (a,) = await hosted(make_peer, network, guests=("a",))
    storage = a.rooms.storage
    await a.close()
    await network.drain()
    assert host.rooms.room.get_player("user-a").is_connected is False

    again = make_peer("a2", user_id="user-a", storage=storage)
    assert await again.resume() is True
    await network.drain()

    players = host.rooms.room.players
    assert [p.od_id for p in players] == ["user-host", "user-a"]
    assert players[1].peer_id == "peer-a2"
    assert players[1].is_connected
    assert again.rooms.room.get_player("user-a").peer_id == "peer-a2"


async def test_host_resume_adopts_new_identity(make_peer, network):
    storage = MemorySessionStorage()
    host = make_peer("host", storage=storage)
    room = await host.host("tic-tac-toe")
    await host.close()

    back = make_peer("host2", user_id="user-host", storage=storage)
    assert await back.resume() is True
    assert back.rooms.is_host
    assert back.rooms.room.id == room.id
    assert back.rooms.room.host_peer_id == "peer-host2"
    assert back.rooms.room.get_player("user-host").peer_id == "peer-host2"
    assert storage.load().room.host_peer_id == "peer-host2"


async def test_resume_without_saved_room(make_peer):
    peer = make_peer("a")
    assert await peer.resume() is False


async def test_resume_to_vanished_host_clears_saved_room(make_peer, network):
    host, (a,) = await hosted(make_peer, network, guests=("a",))
    storage = a.rooms.storage
    await a.close()
    await host.close()

    again = make_peer("a2", user_id="user-a", storage=storage)
    assert await again.resume() is False
    assert storage.load() is None


async def test_host_marks_silent_guest_offline_for_everyone(make_peer, network, clock):
    host, (a, b) = await hosted(make_peer, network, guests=("a", "b"), clock=clock)
    clock.now = 1000
    host.monitor.ping_peers()
    await network.drain()

    network.sever("peer-host", "peer-a")
    clock.now = 3000
    host.monitor.ping_peers()
    await network.drain()
    clock.now = 4500
    host.monitor.ping_peers()
    await network.drain()

    assert host.rooms.room.get_player("user-a").is_connected is False
    assert b.rooms.room.get_player("user-a").is_connected is False
    assert host.rooms.room.get_player("user-b").is_connected


async def test_guest_leaves_after_host_stays_silent(make_peer, network, clock):
    host, (a,) = await hosted(make_peer, network, guests=("a",), clock=clock)
    clock.now = 1000
    host.monitor.ping_peers()
    await network.drain()

    network.sever("peer-host", "peer-a")
    clock.now = 4500
    a.monitor.check_timeouts()
    await asyncio.sleep(0.15)

    assert a.rooms.room is None
    assert a.rooms.join_error == HOST_LOST
    assert a.rooms.storage.load() is None


async def test_host_heartbeat_recovery_cancels_watchdog(make_peer, network, clock):
    host, (a,) = await hosted(make_peer, network, guests=("a",), clock=clock)
    clock.now = 1000
    host.monitor.ping_peers()
    await network.drain()

    network.sever("peer-host", "peer-a")
    clock.now = 4500
    a.monitor.check_timeouts()
    network.heal("peer-host", "peer-a")
    host.monitor.ping_peers()
    await network.drain()
    await asyncio.sleep(0.15)

    assert a.rooms.room is not None
    assert a.monitor.host_status.is_connected


async def test_finish_room_is_host_only(make_peer, network):
    host, (a,) = await hosted(make_peer, network, guests=("a",))
    a.rooms.finish_room()
    assert host.rooms.room.status == RoomStatus.WAITING

    host.rooms.finish_room()
    assert host.rooms.room.status == RoomStatus.FINISHED
    assert host.rooms.storage.load().room.status == RoomStatus.FINISHED
    assert host.start_game() is False
