"""Core value types of the game: colours, boxes, pieces, items and traps."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum


class Color(IntEnum):
    """Colour of a piece, a box or a player's side."""

    NONE = 0
    YELLOW = 1
    BLUE = 2
    RED = 3
    GREEN = 4

    def __str__(self) -> str:
        return self.name.lower()


class BoxType(IntEnum):
    """Kind of square a piece can stand on."""

    NORMAL = 0
    HOME = 1
    FINAL_QUEUE = 2
    GOAL = 3


class ItemType(IntEnum):
    """Special items that can be picked up on the board."""

    STAR = 101
    BOO = 102
    BULLET = 103
    RED_SHELL = 104
    BLUE_SHELL = 105
    MUSHROOM = 106
    MEGA_MUSHROOM = 107
    SHOCK = 108
    HORN = 109
    BANANA = 110
    POWER = 111


class PieceSize(IntEnum):
    """Size state of a piece."""

    NORMAL = 0
    SMALL = 1
    MEGA = 2


class TrapType(IntEnum):
    """Traps that can be left on the board."""

    BANANA = 0


class BoardConfig(IntEnum):
    """Named starting layouts of the board."""

    ALL_AT_HOME = 0
    GROUPED = 1
    GROUPED_LEGACY = 2
    TEST_BOO = 3
    TEST_BOOM = 4
    TEST_MUSHROOM = 5
    TEST_SIZES = 6
    CHANGE_SIZE = 7
    PLAYGROUND = 8


_PARTNERS = {
    Color.YELLOW: Color.RED,
    Color.RED: Color.YELLOW,
    Color.BLUE: Color.GREEN,
    Color.GREEN: Color.BLUE,
    Color.NONE: Color.NONE,
}


def partner_color(c: Color) -> Color:
    """Return the colour played by the same player as ``c``."""
    return _PARTNERS[Color(c)]


@dataclass(frozen=True)
class Box:
    """A square of the board: its number, kind and owning colour."""

    num: int
    type: BoxType = BoxType.NORMAL
    col: Color = Color.NONE


@dataclass
class Piece:
    """A playing piece with its current square, size and remaining effect turns."""

    color: Color
    box: Box
    type: PieceSize = PieceSize.NORMAL
    turns_left: int = 0


@dataclass(frozen=True)
class SpecialItem:
    """An item lying on a square of the board."""

    type: ItemType
    box: Box


@dataclass(frozen=True)
class BoardTrap:
    """A trap placed on a square of the board."""

    type: TrapType
    box: Box