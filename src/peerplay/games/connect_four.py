"""Connect four on a 7x6 board; cell index is ``row * COLS + col``, row 0 on top."""

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

SLUG = "connect-four"
DROP_PIECE = "drop_piece"

COLS = 7
ROWS = 6
BOARD_SIZE = COLS * ROWS
WIN_LENGTH = 4

# Directions scanned from each cell: right, down, down-right, down-left.
_DIRECTIONS = ((0, 1), (1, 0), (1, 1), (1, -1))


def drop_position(board: Sequence[Optional[str]], column: int) -> int:
    """Index of the lowest empty cell in ``column``, or -1 when it is full."""

    for row in range(ROWS - 1, -1, -1):
        index = row * COLS + column
        if board[index] is None:
            return index
    return -1


def valid_columns(board: Sequence[Optional[str]]) -> List[int]:
    return [col for col in range(COLS) if board[col] is None]


def find_winner(board: Sequence[Optional[str]]) -> Optional[Tuple[str, List[int]]]:
    for row in range(ROWS):
        for col in range(COLS):
            first = board[row * COLS + col]
            if first is None:
                continue
            for dr, dc in _DIRECTIONS:
                end_row = row + dr * (WIN_LENGTH - 1)
                end_col = col + dc * (WIN_LENGTH - 1)
                if not (0 <= end_row < ROWS and 0 <= end_col < COLS):
                    continue
                line = [(row + dr * i) * COLS + (col + dc * i) for i in range(WIN_LENGTH)]
                if all(board[i] == first for i in line):
                    return first, line
    return None


def create_state(
    room_id: str,
    players: Sequence[GamePlayer],
    ai_player: Optional[GamePlayer] = None,
    *,
    rng: Optional[random.Random] = None,
    now: Optional[int] = None,
) -> GameSnapshot:
    seated = seat_players(players, ai_player, 2, "Connect Four")
    order = shuffled(seated, rng)
    state = base_state("cf", room_id, seated, order[0].od_id, now)
    state.update(
        board=[None] * BOARD_SIZE,
        player1=order[0].od_id,
        player2=order[1].od_id,
        winningCells=None,
        lastMove=None,
    )
    return state


def apply_action(state: GameSnapshot, action: GameAction) -> GameSnapshot:
    if action.type != DROP_PIECE or state.get("status") != "playing":
        return state
    if action.player_id != state.get("currentTurn"):
        return state
    column = int_field(action.data, "column")
    board = state.get("board", [])
    if column is None or not 0 <= column < COLS:
        return state
    cell = drop_position(board, column)
    if cell == -1:
        return state

    player1, player2 = state["player1"], state["player2"]
    new_board = list(board)
    new_board[cell] = "red" if action.player_id == player1 else "yellow"
    new_state: GameSnapshot = {
        **state,
        "board": new_board,
        "lastMove": cell,
        "lastActionAt": action.timestamp,
    }

    result = find_winner(new_board)
    if result is not None:
        winner_id = player1 if result[0] == "red" else player2
        new_state.update(
            status="finished",
            winner=winner_id,
            winningCells=result[1],
            players=award_point(state["players"], winner_id),
        )
        return mark_active(new_state)

    if all(c is not None for c in new_board):
        new_state.update(status="finished", winner=None)
        return mark_active(new_state)

    new_state.update(
        currentTurn=player2 if action.player_id == player1 else player1,
        turnNumber=state.get("turnNumber", 0) + 1,
    )
    return mark_active(new_state)


ENGINE = register_engine(
    GameEngine(
        slug=SLUG,
        name="Connect Four",
        min_players=2,
        max_players=2,
        create_state=create_state,
        apply_action=apply_action,
    )
)
