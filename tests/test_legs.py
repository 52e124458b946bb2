"""
Tests for the leg model, numeric coercion and broker text import.

Source: src/txo_risk/models/legs.py
"""

import pytest

from tests.conftest import make_leg
from txo_risk.models.legs import (
    Action,
    Leg,
    LegParseError,
    OptionType,
    coerce_legs,
    expand_unit_legs,
    next_leg_id,
    parse_action,
    parse_import_text,
    safe_float,
)


@pytest.mark.parametrize("raw,expected", [
    (32000, 32000.0),
    ("32,000", 32000.0),
    (" 350.5 ", 350.5),
    ("12abc", 12.0),
    ("abc", 0.0),
    ("", 0.0),
    (None, 0.0),
    (float('nan'), 0.0),
    ("-1.5e2", -150.0),
])
def test_safe_float(raw, expected):
    assert safe_float(raw) == expected


def test_safe_float_custom_default():
    assert safe_float(None, 1.0) == 1.0


@pytest.mark.parametrize("raw,expected", [
    ("Buy", Action.BUY), ("long", Action.BUY), ("SELL", Action.SELL), ("Short", Action.SELL),
])
def test_action_aliases(raw, expected):
    assert parse_action(raw) is expected


def test_unknown_action_raises():
    with pytest.raises(LegParseError):
        parse_action("hold")


class TestLeg:

    def test_direction_and_intrinsic(self):
        call = make_leg(strike=32000)
        put = make_leg(action='sell', option_type='put', strike=32000)

        assert call.direction == 1 and not call.is_short
        assert put.direction == -1 and put.is_short
        assert call.intrinsic_value(32300) == 300.0
        assert put.intrinsic_value(32300) == 0.0
        assert put.intrinsic_value(31900) == 100.0

    def test_with_changes_keeps_id(self):
        leg = make_leg(leg_id=3)
        edited = leg.with_changes(premium=120.0, expiry="202602W2")

        assert edited.id == 3
        assert edited.premium == 120.0
        assert leg.premium == 350.0

        with pytest.raises(LegParseError):
            leg.with_changes(id=4)

    def test_to_dict_and_back(self):
        leg = make_leg(leg_id=2, action='sell', option_type='put', strike=31800,
                       premium=120, quantity=2, expiry="202602W1")
        data = leg.to_dict()

        assert data['type'] == 'put'
        assert data['expiry_code'] == "202602W1"
        assert Leg.from_dict(data) == leg

    def test_from_dict_is_permissive(self):
        leg = Leg.from_dict({'action': 'short', 'type': 'P', 'strike': '31,800',
                             'premium': '', 'quantity': None}, default_id=7)

        assert leg.id == 7
        assert leg.action is Action.SELL
        assert leg.option_type is OptionType.PUT
        assert leg.strike == 31800.0
        assert leg.premium == 0.0
        assert leg.quantity == 1.0
        assert leg.expiry is None

    def test_coerce_mixed_input(self):
        legs = coerce_legs([make_leg(leg_id=5), {'action': 'buy', 'type': 'call', 'strike': 32100}])

        assert [leg.id for leg in legs] == [5, 2]
        assert coerce_legs(None) == []


class TestExpandUnitLegs:

    @pytest.mark.parametrize("quantity,copies", [(1, 1), (3, 3), (2.5, 3), (0, 1)])
    def test_copies(self, quantity, copies):
        expanded = expand_unit_legs([make_leg(quantity=quantity)])

        assert len(expanded) == copies
        assert all(leg.quantity == 1.0 for leg in expanded)

    def test_next_leg_id(self):
        assert next_leg_id([]) == 1
        assert next_leg_id([make_leg(leg_id=2), make_leg(leg_id=9)]) == 10


class TestImportText:

    def test_parses_broker_lines(self):
        text = (
            "【202602W1】 32500 Long Put 4口 (每口權利金164)\n"
            "not a position line\n"
            "\n"
            "【202603】 33000 short call 1口 (每口權利金85.5)\n"
        )
        legs = parse_import_text(text, start_id=3)

        assert len(legs) == 2
        first, second = legs
        assert first == Leg(id=3, action=Action.BUY, option_type=OptionType.PUT,
                            strike=32500.0, premium=164.0, quantity=4.0, expiry="202602W1")
        assert second.id == 4
        assert second.action is Action.SELL
        assert second.option_type is OptionType.CALL
        assert second.premium == 85.5
        assert second.expiry == "202603"

    def test_nothing_to_import(self):
        assert parse_import_text("hello\nworld") == []
