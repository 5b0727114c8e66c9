"""Console front end: host or join a room and play from the terminal."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import threading
from typing import Any, Dict, List, Optional, Sequence

from .controller import PeerSession
from .errors import JoinError, PeerPlayError
from .games import DEFAULT_GAME, GameSnapshot, available_engines, get_engine
from .health import QUALITY_LABELS
from .logging_config import get_logger, setup_logging
from .models import RoomConfig, UserProfile, generate_user_id, random_avatar
from .rooms import RoomEvent
from .settings import Settings
from .storage import FileSessionStorage

logger = get_logger(__name__)

HELP = """commands:
  ready | unready          toggle readiness
  start                    start the game (host)
  move <json>              submit a move, e.g. move {"type": "place_mark", "cellIndex": 4}
  aimove <json>            submit a move for the AI seat (host)
  chat <text>              send a chat message
  kick <odId>              remove a player (host)
  pause | resume           pause or resume the game (host)
  rematch                  start a new round with the same players (host)
  status                   show the room, connection and board
  leave                    leave the room and exit"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="peerplay", description="Host-authoritative peer-to-peer board games"
    )
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--session-file", default=None, help="Where to persist the room for 'resume'")
    subparsers = parser.add_subparsers(dest="mode", required=True)

    def add_peer_options(p: argparse.ArgumentParser) -> None:
        p.add_argument("--nickname", default="Player", help="Name shown to other players")
        p.add_argument("--user-id", default=None, help="Stable player id (generated when omitted)")
        p.add_argument("--bind", default=None, help="Address to listen on")
        p.add_argument("--port", type=int, default=None, help="Port to listen on (0 picks one)")
        p.add_argument("--advertise-host", default=None, help="Address other peers should dial")

    host_p = subparsers.add_parser("host", help="Create a room and wait for players")
    add_peer_options(host_p)
    host_p.add_argument("--game", default=DEFAULT_GAME, help="Game slug, see 'peerplay games'")
    host_p.add_argument("--min-players", type=int, default=None)
    host_p.add_argument("--max-players", type=int, default=None)
    host_p.add_argument(
        "--ai", choices=("easy", "medium", "hard"), default=None, help="Add an AI seat"
    )

    join_p = subparsers.add_parser("join", help="Join a room by its host's peer id")
    add_peer_options(join_p)
    join_p.add_argument("peer_id", help="The host's peer id (ws://...)")

    resume_p = subparsers.add_parser("resume", help="Rejoin the room saved in the session file")
    add_peer_options(resume_p)

    subparsers.add_parser("games", help="List the available games")
    return parser


def _settings_for(args: argparse.Namespace) -> Settings:
    return Settings.from_env().with_overrides(
        host=getattr(args, "bind", None),
        port=getattr(args, "port", None),
        advertise_host=getattr(args, "advertise_host", None),
        session_file=args.session_file,
        log_level=args.log_level,
    )


def render_board(state: GameSnapshot) -> List[str]:
    board = state.get("board")
    if not isinstance(board, list):
        return []
    width = 3 if len(board) == 9 else 7
    symbols = {None: ".", "X": "X", "O": "O", "red": "R", "yellow": "Y"}
    rows = []
    for start in range(0, len(board), width):
        rows.append(" ".join(symbols.get(c, "?") for c in board[start:start + width]))
    return rows


class Console:
    def __init__(self, session: PeerSession, out=None) -> None:
        self.session = session
        self.out = out or sys.stdout
        self.done = asyncio.Event()
        session.rooms.add_listener(self._on_room_event)
        session.game.add_listener(self._on_game_state)

    def say(self, text: str) -> None:
        print(text, file=self.out, flush=True)

    def _on_room_event(self, event: RoomEvent, data: Any) -> None:
        if event == RoomEvent.PLAYER_JOINED:
            self.say(f"+ {data.nickname} joined")
        elif event == RoomEvent.PLAYER_LEFT:
            self.say(f"- {data.nickname} left")
        elif event == RoomEvent.PLAYER_READY:
            self.say(f"  {data.nickname} is {'ready' if data.is_ready else 'not ready'}")
        elif event == RoomEvent.STATUS_CHANGED:
            self.say(f"* room is now {data.value}")
        elif event == RoomEvent.CHAT and not data.is_me:
            self.say(f"[{data.sender_name}] {data.text}")
        elif event == RoomEvent.ERROR:
            self.say(f"! {data}")
        elif event in (RoomEvent.KICKED, RoomEvent.CLOSED):
            self.say(f"! {data}")
            self.done.set()

    def _on_game_state(self, state: Optional[GameSnapshot]) -> None:
        if state is None:
            return
        for row in render_board(state):
            self.say(f"  {row}")
        if state.get("status") == "finished":
            winner = state.get("winner")
            self.say(f"* game over: {self._nickname(winner) if winner else 'draw'}")
        elif self.session.game.is_my_turn:
            self.say("* your turn")

    def _nickname(self, od_id: str) -> str:
        state = self.session.game.state or {}
        for player in state.get("players", []):
            if player.get("odId") == od_id:
                return player.get("nickname", od_id)
        return od_id

    def status(self) -> None:
        rooms = self.session.rooms
        room = rooms.room
        if room is None:
            self.say("not in a room")
            return
        summary = self.session.monitor.summary(rooms.is_host, rooms.is_in_room)
        self.say(f"room {room.code} ({room.game_slug}) {room.status.value}")
        self.say(f"peer id: {room.host_peer_id}")
        self.say(f"connection: {QUALITY_LABELS[summary.quality]} {summary.latency_ms} ms")
        for p in room.players:
            flags = [f for f, on in (("host", p.is_host), ("ready", p.is_ready), ("offline", not p.is_connected)) if on]
            self.say(f"  {p.avatar} {p.nickname} [{p.od_id}] {' '.join(flags)}")
        if self.session.game.state is not None:
            for row in render_board(self.session.game.state):
                self.say(f"  {row}")

    def handle(self, line: str) -> None:
        command, _, rest = line.strip().partition(" ")
        rest = rest.strip()
        session = self.session
        if not command:
            return
        if command == "help":
            self.say(HELP)
        elif command in ("ready", "unready"):
            session.rooms.set_ready(command == "ready")
        elif command == "start":
            if not session.start_game():
                self.say(f"! {session.rooms.join_error or 'cannot start now'}")
        elif command in ("move", "aimove"):
            self._move(rest, ai=command == "aimove")
        elif command == "chat":
            session.rooms.send_chat(rest)
        elif command == "kick":
            if not session.rooms.kick_player(rest):
                self.say("! cannot kick that player")
        elif command in ("pause", "resume"):
            if not session.rooms.set_paused(command == "pause"):
                self.say(f"! cannot {command} now")
        elif command == "rematch":
            if session.game.reset_game() is None:
                self.say("! only the host can start a rematch")
        elif command == "status":
            self.status()
        elif command == "leave":
            session.leave()
            self.done.set()
        else:
            self.say(f"unknown command {command!r}, try 'help'")

    def _move(self, raw: str, ai: bool) -> None:
        try:
            data: Dict[str, Any] = json.loads(raw)
        except ValueError:
            self.say("! move expects a JSON object")
            return
        if not isinstance(data, dict) or "type" not in data:
            self.say('! move needs a "type", e.g. {"type": "place_mark", "cellIndex": 0}')
            return
        action_type = str(data.pop("type"))
        ai_player = self.session.game.ai_player
        if ai and ai_player is None:
            self.say("! no AI seat in this game")
            return
        player_id = ai_player.id if ai and ai_player else None
        if not self.session.submit_action(action_type, data, player_id):
            self.say("! move not sent")

    async def run(self, stream=None) -> None:
        loop = asyncio.get_running_loop()
        source = stream or sys.stdin
        lines: "asyncio.Queue[Optional[str]]" = asyncio.Queue()

        def pump() -> None:
            # Blocking reads live on a daemon thread so exit never waits for Enter.
            try:
                for line in source:
                    loop.call_soon_threadsafe(lines.put_nowait, line)
                loop.call_soon_threadsafe(lines.put_nowait, None)
            except RuntimeError:
                return

        threading.Thread(target=pump, name="peerplay-stdin", daemon=True).start()
        self.say("type 'help' for commands")
        while not self.done.is_set():
            getter = asyncio.ensure_future(lines.get())
            waiter = asyncio.ensure_future(self.done.wait())
            finished, pending = await asyncio.wait(
                {getter, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
            for task in pending:
                task.cancel()
            if getter not in finished:
                break
            line = getter.result()
            if line is None:
                if self.session.rooms.room is not None:
                    self.session.leave()
                break
            self.handle(line)


def _user_for(args: argparse.Namespace, fallback_id: Optional[str] = None) -> UserProfile:
    return UserProfile(
        id=args.user_id or fallback_id or generate_user_id(),
        nickname=args.nickname,
        avatar=random_avatar(),
    )


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    fallback_id = None
    if args.mode == "resume":
        if not settings.session_file:
            print("resume needs --session-file or PEERPLAY_SESSION_FILE", file=sys.stderr)
            return 2
        saved = FileSessionStorage(settings.session_file).load()
        if saved is None or saved.room is None:
            print("no saved room to resume", file=sys.stderr)
            return 1
        if saved.is_host:
            fallback_id = saved.room.host_od_id
        elif not args.user_id:
            # A guest must rejoin under the odId that holds its seat.
            print("resuming as a guest needs --user-id (the id you joined with)", file=sys.stderr)
            return 2

    session = PeerSession.from_settings(_user_for(args, fallback_id), settings)
    console = Console(session)
    try:
        if args.mode == "host":
            engine = get_engine(args.game)
            if engine is None:
                print(f"unknown game {args.game!r}", file=sys.stderr)
                return 2
            config = RoomConfig(
                min_players=args.min_players or engine.min_players,
                max_players=args.max_players or engine.max_players,
            )
            if args.ai:
                session.game.set_ai(True, args.ai)
            room = await session.host(engine.slug, engine.name, config)
            console.say(f"hosting {engine.name}, room {room.code}")
            console.say(f"others join with: peerplay join {room.host_peer_id}")
        elif args.mode == "join":
            room = await session.join(args.peer_id)
            console.say(f"joined room {room.code} ({room.game_name or room.game_slug})")
        else:
            if not await session.resume():
                console.say("! could not resume the saved room")
                return 1
            console.say("resumed")
        await console.run()
    except JoinError as exc:
        console.say(f"! {exc.reason}")
        return 1
    except PeerPlayError as exc:
        console.say(f"! {exc}")
        return 1
    finally:
        await session.close()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    if args.mode == "games":
        for engine in available_engines():
            print(f"{engine.slug:<14} {engine.name} ({engine.min_players}-{engine.max_players} players)")
        return 0

    settings = _settings_for(args)
    setup_logging(settings.log_level, settings.log_file)
    try:
        return asyncio.run(_run(args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
