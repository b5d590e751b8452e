"""Per-player dice: the numbers each side may still use, organised in layers."""

from __future__ import annotations

from parchisgame.model import Color, partner_color

DEFAULT_DICE: tuple[int, ...] = (1, 2, 4, 5, 6, 100)
"""Numbers every player starts with, and gets back once all are spent."""

_DICE_OWNERS = (Color.YELLOW, Color.BLUE)


def _owner(player: Color) -> Color:
    """Map a colour to the colour whose dice it shares."""
    player = Color(player)
    return player if player in _DICE_OWNERS else partner_color(player)


class Dice:
    """The dice of every player.

    Each player owns a stack of layers. The first layer holds the regular
    numbers; a second layer, when present, holds a forced number that must be
    used before the regular ones become available again.
    """

    def __init__(self, layers: dict[Color, list[list[int]]] | None = None) -> None:
        if layers is None:
            layers = {c: [list(DEFAULT_DICE)] for c in (Color.BLUE, Color.YELLOW)}
        self._layers: dict[Color, list[list[int]]] = {
            Color(c): [list(layer) for layer in stack] for c, stack in layers.items()
        }

    def _active_layer(self, player: Color) -> list[int]:
        stack = self._layers[player]
        return stack[-1] if len(stack) == 2 else stack[0]

    def get_dice(self, player: Color) -> list[int]:
        """Return the numbers ``player`` can currently choose from."""
        return list(self._active_layer(Color(player)))

    def get_all_layers(self, player: Color) -> list[list[int]]:
        """Return every layer of ``player``'s dice."""
        return [list(layer) for layer in self._layers[Color(player)]]

    def layers_size(self, player: Color) -> int:
        """Return how many layers ``player``'s dice have."""
        return len(self._layers[Color(player)])

    def remove_number(self, player: Color, n: int) -> None:
        """Spend the number ``n``.

        A forced layer disappears once emptied; an emptied regular layer is
        refilled with the default numbers.
        """
        owner = _owner(player)
        stack = self._layers[owner]
        if len(stack) == 2:
            stack[-1] = [x for x in stack[-1] if x != n]
            if not stack[-1]:
                stack.pop()
        else:
            stack[0] = [x for x in stack[0] if x != n]
            if not stack[0]:
                self.reset_dice(owner)

    def reset_dice(self, player: Color, new_dice: list[int] | tuple[int, ...] = DEFAULT_DICE) -> None:
        """Replace the regular layer of ``player`` with ``new_dice``."""
        self._layers[_owner(player)][0] = list(new_dice)

    def is_available(self, player: Color, n: int) -> bool:
        """Tell whether ``player`` may currently use the number ``n``."""
        return n in self._active_layer(_owner(player))

    def add_number(self, player: Color, n: int) -> None:
        """Add ``n`` to the regular layer of ``player``."""
        self._layers[_owner(player)][0].append(n)

    def force_number(self, player: Color, n: int) -> None:
        """Push a new layer holding only ``n``, which must be used next."""
        self._layers[_owner(player)].append([n])