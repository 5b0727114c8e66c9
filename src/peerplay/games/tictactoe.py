"""Classic 3x3 tic-tac-toe."""

from __future__ import annotations

import random
from typing import List, Optional, Sequence, Tuple

from ..protocol import GameAction
from .base import (
    GameEngine,
    GamePlayer,
    GameSnapshot,
    award_point,
    base_state,
    int_field,
    mark_active,
    register_engine,
    seat_players,
    shuffled,
)

SLUG = "tic-tac-toe"
PLACE_MARK = "place_mark"

WINNING_LINES: Tuple[Tuple[int, int, int], ...] = (
    (0, 1, 2),
    (3, 4, 5),
    (6, 7, 8),
    (0, 3, 6),
    (1, 4, 7),
    (2, 5, 8),
    (0, 4, 8),
    (2, 4, 6),
)


def find_winner(board: Sequence[Optional[str]]) -> Optional[Tuple[str, List[int]]]:
    for a, b, c in WINNING_LINES:
        v = board[a]
        if v is not None and v == board[b] == board[c]:
            return v, [a, b, c]
    return None


def create_state(
    room_id: str,
    players: Sequence[GamePlayer],
    ai_player: Optional[GamePlayer] = None,
    *,
    rng: Optional[random.Random] = None,
    now: Optional[int] = None,
) -> GameSnapshot:
    seated = seat_players(players, ai_player, 2, "TicTacToe")
    # X moves first; who gets X is random.
    order = shuffled(seated, rng)
    state = base_state("ttt", room_id, seated, order[0].od_id, now)
    state.update(
        board=[None] * 9,
        playerX=order[0].od_id,
        playerO=order[1].od_id,
        winningLine=None,
    )
    return state


def apply_action(state: GameSnapshot, action: GameAction) -> GameSnapshot:
    if action.type != PLACE_MARK or state.get("status") != "playing":
        return state
    if action.player_id != state.get("currentTurn"):
        return state
    cell = int_field(action.data, "cellIndex")
    board = state.get("board", [])
    if cell is None or not 0 <= cell < 9 or board[cell] is not None:
        return state

    player_x, player_o = state["playerX"], state["playerO"]
    mark = "X" if action.player_id == player_x else "O"
    new_board = list(board)
    new_board[cell] = mark
    new_state: GameSnapshot = {**state, "board": new_board, "lastActionAt": action.timestamp}

    result = find_winner(new_board)
    if result is not None:
        winner_id = player_x if result[0] == "X" else player_o
        new_state.update(
            status="finished",
            winner=winner_id,
            winningLine=result[1],
            players=award_point(state["players"], winner_id),
        )
        return mark_active(new_state)

    if all(c is not None for c in new_board):
        new_state.update(status="finished", winner=None)
        return mark_active(new_state)

    new_state.update(
        currentTurn=player_o if action.player_id == player_x else player_x,
        turnNumber=state.get("turnNumber", 0) + 1,
    )
    return mark_active(new_state)


ENGINE = register_engine(
    GameEngine(
        slug=SLUG,
        name="Tic Tac Toe",
        min_players=2,
        max_players=2,
        create_state=create_state,
        apply_action=apply_action,
    )
)
