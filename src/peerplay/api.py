"""HTTP inspection routes mounted next to the peer endpoint."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, Optional

from fastapi import FastAPI, HTTPException

from .health import QUALITY_LABELS
from .models import RoomStatus

if TYPE_CHECKING:
    from .controller import PeerSession


def install_room_routes(app: FastAPI, session: "PeerSession") -> None:
    @app.get("/api/room")
    def inspect_room() -> Dict[str, object]:
        room = session.rooms.room
        if room is None:
            raise HTTPException(status_code=404, detail="Not in a room")
        return {
            "roomId": room.id,
            "code": room.code,
            "gameSlug": room.game_slug,
            "gameName": room.game_name,
            "status": room.status.value,
            "hostPeerId": room.host_peer_id,
            "players": [p.to_wire() for p in room.players],
            "maxPlayers": room.config.max_players,
            "availableSlots": room.available_slots,
            "joinable": room.status == RoomStatus.WAITING and not room.is_full,
        }

    @app.get("/api/connection")
    def connection_status() -> Dict[str, object]:
        rooms = session.rooms
        monitor = session.monitor
        summary = monitor.summary(rooms.is_host, rooms.is_in_room)
        host: Optional[Dict[str, object]] = None
        if monitor.host_status is not None:
            host = monitor.host_status.to_wire()
        return {
            "peerId": rooms.peer_id,
            "isHost": rooms.is_host,
            "isInRoom": rooms.is_in_room,
            "isConnected": summary.is_connected,
            "quality": summary.quality.value,
            "label": QUALITY_LABELS[summary.quality],
            "latencyMs": summary.latency_ms,
            "host": host,
            "peers": [s.to_wire() for s in monitor.peer_statuses.values()],
            "hasDisconnectedPeers": monitor.has_disconnected_peers,
        }
