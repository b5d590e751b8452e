"""The board: where every piece stands, plus items and traps lying on it."""

from __future__ import annotations

from dataclasses import replace

from parchisgame.model import (
    BoardConfig,
    BoardTrap,
    Box,
    BoxType,
    Color,
    ItemType,
    Piece,
    PieceSize,
    SpecialItem,
    TrapType,
)


def _home(c: Color) -> Piece:
    return Piece(c, Box(0, BoxType.HOME, c))


def _at(c: Color, num: int, size: PieceSize = PieceSize.NORMAL, turns: int = 0) -> Piece:
    return Piece(c, Box(num, BoxType.NORMAL, Color.NONE), size, turns)


def _row(c: Color, *nums: int) -> list[Piece]:
    return [_at(c, n) for n in nums]


def _home_then(c: Color, *nums: int) -> list[Piece]:
    return [_home(c), *_row(c, *nums)]


def _layout(config: BoardConfig) -> tuple[dict[Color, list[Piece]], list[SpecialItem] | None]:
    """Build the pieces (and, for some layouts, special items) of a configuration."""
    G, R, B, Y = Color.GREEN, Color.RED, Color.BLUE, Color.YELLOW
    star_at_17 = [SpecialItem(ItemType.STAR, Box(17, BoxType.NORMAL, Color.NONE))]

    if config == BoardConfig.ALL_AT_HOME:
        return {c: [_home(c) for _ in range(4)] for c in (G, R, B, Y)}, None
    if config == BoardConfig.GROUPED:
        return {
            G: _row(G, 55, 64, 68),
            R: _row(R, 38, 47, 51),
            B: _row(B, 21, 30, 34),
            Y: _row(Y, 4, 13, 17),
        }, None
    if config == BoardConfig.GROUPED_LEGACY:
        return {
            G: _home_then(G, 55, 64, 68),
            R: _home_then(R, 38, 47, 51),
            B: _home_then(B, 21, 30, 34),
            Y: _home_then(Y, 4, 13, 17),
        }, None
    if config in (BoardConfig.TEST_BOO, BoardConfig.CHANGE_SIZE):
        return {
            G: _home_then(G, 16, 15, 68),
            R: _home_then(R, 18, 47, 51),
            B: _home_then(B, 19, 21, 34),
            Y: _home_then(Y, 20, 13, 17),
        }, None
    if config in (BoardConfig.TEST_BOOM, BoardConfig.TEST_MUSHROOM):
        pieces = {
            R: _row(R, 24, 24, 25, 25),
            G: _row(G, 21, 21, 22, 23),
            B: _row(B, 18, 19, 20, 20),
            Y: _home_then(Y, 4, 13, 16),
        }
        return pieces, (star_at_17 if config == BoardConfig.TEST_BOOM else None)
    if config == BoardConfig.TEST_SIZES:
        N, S, M = PieceSize.NORMAL, PieceSize.SMALL, PieceSize.MEGA
        return {
            R: [_at(R, 1, N, 3), _at(R, 4, S, 3), _at(R, 4, S, 3), _at(R, 7, M, 3)],
            G: [_at(G, 9, M, 3), _at(G, 11, S, 3), _at(G, 13, S, 3), _at(G, 15, M, 3)],
            B: [_at(B, 17, M, 3), _at(B, 19, S, 3), _at(B, 21, S, 3), _at(B, 23, M, 3)],
            Y: [_at(Y, 25, M, 3), _at(Y, 27, S, 3), _at(Y, 29, S, 3), _at(Y, 31, M, 3)],
        }, star_at_17
    if config == BoardConfig.PLAYGROUND:
        return {
            R: _row(R, 24, 24, 25, 25),
            G: _row(G, 21, 21, 22, 23),
            B: _row(B, 18, 19, 20, 20),
            Y: _row(Y, 13, 14, 15, 16),
        }, None
    raise ValueError(f"unknown board configuration: {config!r}")


class Board:
    """Positions of all pieces together with the special items and traps on the board."""

    def __init__(
        self,
        pieces: dict[Color, list[Piece]] | None = None,
        config: BoardConfig = BoardConfig.ALL_AT_HOME,
    ) -> None:
        self.pieces: dict[Color, list[Piece]] = {}
        self.special_items: list[SpecialItem] = []
        self.traps: list[BoardTrap] = []
        if pieces is not None:
            self.pieces = {Color(c): [replace(p) for p in ps] for c, ps in pieces.items()}
        else:
            self.set_from_config(config)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Board):
            return NotImplemented
        return self.pieces == other.pieces

    __hash__ = None  # type: ignore[assignment]

    def get_piece(self, c: Color, idx: int) -> Piece:
        """Return piece number ``idx`` of colour ``c``."""
        return self.pieces[c][idx]

    def get_pieces(self, c: Color) -> list[Piece]:
        """Return all pieces of colour ``c``."""
        return self.pieces[c]

    def set_piece_type(self, c: Color, idx: int, type: PieceSize) -> None:
        self.pieces[c][idx].type = type

    def set_piece_turns_left(self, c: Color, idx: int, turns_left: int) -> None:
        self.pieces[c][idx].turns_left = turns_left

    def decrease_piece_turns_left(self, c: Color, idx: int) -> None:
        """Count down one turn of a piece's effect, never going below zero."""
        piece = self.pieces[c][idx]
        piece.turns_left = max(piece.turns_left - 1, 0)

    def delete_special_item(self, pos: int) -> None:
        """Remove the special item at position ``pos`` of the item list."""
        del self.special_items[pos]

    def delete_trap(self, box: Box) -> None:
        """Remove the first trap lying on ``box``."""
        for i, trap in enumerate(self.traps):
            if trap.box == box:
                del self.traps[i]
                return
        raise ValueError(f"no trap on {box!r}")

    def add_trap(self, type: TrapType, box: Box) -> None:
        self.traps.append(BoardTrap(type, box))

    def move_piece(self, c: Color, idx: int, final_box: Box) -> None:
        self.pieces[c][idx].box = final_box

    def set_from_config(self, config: BoardConfig) -> None:
        """Place the pieces as the named configuration prescribes."""
        pieces, items = _layout(BoardConfig(config))
        self.pieces = pieces
        if items is not None:
            self.special_items = items