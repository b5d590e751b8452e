"""Automatic players and the test heuristic used to value game states."""

from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from typing import Protocol, Sequence

from parchisgame.board import Board
from parchisgame.model import BoxType, Color

log = logging.getLogger(__name__)

PLUS_INF = 9999999999.0
MINUS_INF = -9999999999.0
WIN = PLUS_INF - 1
LOSE = MINUS_INF + 1
NUM_PIECES = 3
MINIMAX_DEPTH = 4
ALPHABETA_DEPTH = 6
SKIP_TURN = -9999
"""Piece id that means the player passes the turn."""


class GameState(Protocol):
    """What the heuristic needs to know about a game."""

    board: Board

    def get_winner(self) -> int: ...

    def get_player_colors(self, player: int) -> Sequence[Color]: ...

    def is_safe_piece(self, c: Color, idx: int) -> bool: ...


class Game(Protocol):
    """What a player needs from the game it is playing."""

    def get_current_player_id(self) -> int: ...

    def get_available_normal_dices(self, player: int) -> Sequence[int]: ...

    def get_available_pieces(self, player: int, dice: int) -> Sequence[tuple[Color, int]]: ...

    def get_current_color(self) -> Color: ...

    def move_piece(self, c: Color, idx: int, dice: int) -> None: ...


@dataclass(frozen=True)
class Move:
    """A chosen move: which piece of which colour, with which dice number."""

    color: Color
    piece_id: int
    dice: int


def _side_score(state: GameState, colors: Sequence[Color]) -> int:
    score = 0
    for c in colors:
        for j in range(NUM_PIECES):
            if state.is_safe_piece(c, j):
                score += 1
            elif state.board.get_piece(c, j).box.type == BoxType.GOAL:
                score += 5
    return score


def evaluate_test(state: GameState, player: int) -> float:
    """Value ``state`` for ``player``: safe and finished pieces, mine minus the opponent's."""
    winner = state.get_winner()
    opponent = (player + 1) % 2
    if winner == player:
        return WIN
    if winner == opponent:
        return LOSE
    mine = _side_score(state, state.get_player_colors(player))
    theirs = _side_score(state, state.get_player_colors(opponent))
    return float(mine - theirs)


class AIPlayer:
    """A player that picks a random legal move."""

    def __init__(self, name: str, id: int = 0, rng: random.Random | None = None) -> None:
        self.name = name
        self.id = id
        self.rng = rng if rng is not None else random.Random()

    def think(self, game: Game) -> Move:
        """Choose a move: a random usable dice number and a random piece it can move."""
        player = game.get_current_player_id()
        dice = self.rng.choice(list(game.get_available_normal_dices(player)))
        pieces = list(game.get_available_pieces(player, dice))
        if pieces:
            c_piece, id_piece = self.rng.choice(pieces)
            return Move(Color(c_piece), id_piece, dice)
        return Move(game.get_current_color(), SKIP_TURN, dice)

    def move(self, game: Game) -> bool:
        """Think of a move and play it on ``game``."""
        log.info("Making an automatic move")
        chosen = self.think(game)
        log.info("Chosen move: %s %d %d", chosen.color, chosen.piece_id, chosen.dice)
        game.move_piece(chosen.color, chosen.piece_id, chosen.dice)
        return True


class Ninja(AIPlayer):
    """The opponent run by the game servers."""

    def think(self, game: Game) -> Move:
        return super().think(game)

    def set_ninja_name(self) -> None:
        self.name = "Ninja"