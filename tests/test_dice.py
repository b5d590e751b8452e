import pytest

from parchisgame.dice import DEFAULT_DICE, Dice
from parchisgame.model import Color


def test_default_dice_for_both_owners():
    dice = Dice()
    assert dice.get_dice(Color.BLUE) == [1, 2, 4, 5, 6, 100]
    assert dice.get_dice(Color.YELLOW) == list(DEFAULT_DICE)
    assert dice.layers_size(Color.BLUE) == 1


def test_get_dice_of_partner_colour_is_not_mapped():
    with pytest.raises(KeyError):
        Dice().get_dice(Color.RED)


def test_remove_number_removes_it():
    dice = Dice()
    dice.remove_number(Color.BLUE, 4)
    assert 4 not in dice.get_dice(Color.BLUE)
    assert not dice.is_available(Color.BLUE, 4)
    assert dice.get_dice(Color.YELLOW) == list(DEFAULT_DICE)


def test_partner_colour_shares_dice():
    dice = Dice()
    dice.remove_number(Color.RED, 5)
    assert not dice.is_available(Color.YELLOW, 5)
    assert not dice.is_available(Color.RED, 5)
    assert dice.is_available(Color.GREEN, 5)


def test_spending_all_numbers_resets_layer():
    dice = Dice()
    for n in DEFAULT_DICE:
        dice.remove_number(Color.YELLOW, n)
    assert dice.get_dice(Color.YELLOW) == list(DEFAULT_DICE)


def test_force_number_adds_layer_used_first():
    dice = Dice()
    dice.force_number(Color.BLUE, 20)
    assert dice.layers_size(Color.BLUE) == 2
    assert dice.get_dice(Color.BLUE) == [20]
    assert dice.is_available(Color.BLUE, 20)
    assert not dice.is_available(Color.BLUE, 1)
    dice.remove_number(Color.BLUE, 20)
    assert dice.layers_size(Color.BLUE) == 1
    assert dice.get_dice(Color.BLUE) == list(DEFAULT_DICE)


def test_force_number_via_partner():
    dice = Dice()
    dice.force_number(Color.GREEN, 10)
    assert dice.get_all_layers(Color.BLUE) == [list(DEFAULT_DICE), [10]]


def test_add_number_appends_to_regular_layer():
    dice = Dice()
    dice.add_number(Color.RED, 3)
    assert dice.get_dice(Color.YELLOW)[-1] == 3
    assert dice.is_available(Color.YELLOW, 3)


def test_reset_dice_replaces_regular_layer():
    dice = Dice()
    dice.reset_dice(Color.BLUE, [2, 6])
    assert dice.get_dice(Color.BLUE) == [2, 6]


def test_custom_layers_are_copied():
    layers = {Color.BLUE: [[1, 2]], Color.YELLOW: [[3]]}
    dice = Dice(layers)
    dice.remove_number(Color.BLUE, 1)
    assert layers[Color.BLUE] == [[1, 2]]
    assert dice.get_dice(Color.BLUE) == [2]


def test_returned_lists_do_not_alter_dice():
    dice = Dice()
    dice.get_dice(Color.BLUE).clear()
    dice.get_all_layers(Color.BLUE)[0].clear()
    assert dice.get_dice(Color.BLUE) == list(DEFAULT_DICE)