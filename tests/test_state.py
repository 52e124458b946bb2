"""
Tests for the application state, market quote updates and persistence.

Source: src/txo_risk/data/state.py
"""

import logging
from datetime import datetime

import pytest
import yaml

from tests.conftest import make_leg
from txo_risk.config.settings import ConfigurationError
from txo_risk.data.state import (
    ALL_EXPIRIES,
    AppState,
    MarketQuote,
    MemoryStateStore,
    YamlStateStore,
    apply_market_quote,
    available_expiries,
    filter_legs_by_expiry,
    load_state,
    roll_expired_expiry,
)
from txo_risk.models.strategies import StrategyNotFoundError

MONDAY = datetime(2026, 2, 2, 10, 0)
THURSDAY = datetime(2026, 2, 5, 9, 0)


@pytest.fixture
def state():
    return AppState(expiry_date="2026-02-04")


@pytest.fixture
def custom_state(state):
    """Custom portfolio with a weekly call and a following-week put."""
    return state.select_strategy('custom').with_legs([
        make_leg(1, 'buy', 'call', 32000, 350, expiry="202602W1"),
        make_leg(2, 'buy', 'put', 32000, 280, expiry="202602W2"),
    ])


# ---------------------------------------------------------------------------
# Market quotes
# ---------------------------------------------------------------------------

class TestApplyMarketQuote:

    def test_updates_snapshot_fields(self, state):
        updated = apply_market_quote(state, MarketQuote(price=32130, implied_vol=18.5, rate=0.0175))

        assert updated.inputs['current_price'] == 32130.0
        assert updated.inputs['vix'] == 18.5
        assert updated.inputs['risk_free_rate'] == 1.75
        assert updated.inputs['strike'] == 32000
        assert updated.expiry_date == "2026-02-04"

    def test_missing_rate_keeps_current_rate(self, state):
        updated = apply_market_quote(state, MarketQuote(price=32100, implied_vol=17))
        assert updated.inputs['risk_free_rate'] == 2.0

    @pytest.mark.parametrize("price,shift", [(32130, 150), (31920, -100), (32020, 0), (32025, 50)])
    def test_strike_shift_rounds_to_spacing(self, state, price, shift):
        updated = apply_market_quote(state, MarketQuote(price=price, implied_vol=16),
                                     shift_strikes=True, now=MONDAY)

        assert updated.inputs['strike'] == 32000 + shift
        assert updated.inputs['put_k1'] == 31600 + shift
        assert updated.inputs['higher_call_k'] == 32200 + shift
        assert updated.inputs['premium'] == 350

    def test_shift_resets_expiry_and_keeps_portfolios(self, custom_state):
        before = custom_state.inputs['custom_legs']
        updated = apply_market_quote(custom_state, MarketQuote(price=32300, implied_vol=16),
                                     shift_strikes=True, now=THURSDAY)

        assert updated.expiry_date == "2026-02-11"
        assert updated.inputs['custom_legs'] == before
        assert custom_state.inputs['current_price'] == 32000

    def test_non_numeric_strike_is_left_alone(self, state):
        state = state.with_inputs(strike="32,000")
        updated = apply_market_quote(state, MarketQuote(price=32130, implied_vol=16), shift_strikes=True)
        assert updated.inputs['strike'] == "32,000"


# ---------------------------------------------------------------------------
# Expiry helpers
# ---------------------------------------------------------------------------

class TestExpiries:

    def test_available_expiries_nearest_first(self):
        legs = [
            make_leg(1, expiry="202603"),
            make_leg(2, expiry="202602W2"),
            make_leg(3, expiry="202602F1"),
            make_leg(4, expiry="202602W1"),
            make_leg(5, expiry="202602W1"),
            make_leg(6, expiry=None),
        ]
        codes = available_expiries(legs, datetime(2026, 2, 1, 12, 0))

        assert codes == ["202602W1", "202602F1", "202602W2", "202603"]

    def test_same_day_codes_are_alphabetical(self):
        legs = [make_leg(1, expiry="202602W3"), make_leg(2, expiry="202602")]
        assert available_expiries(legs, MONDAY) == ["202602", "202602W3"]

    def test_filter_legs_by_expiry(self, custom_state):
        legs = custom_state.portfolio_legs()

        assert [leg.id for leg in filter_legs_by_expiry(legs, "202602W2")] == [2]
        assert filter_legs_by_expiry(legs, ALL_EXPIRIES) == legs
        assert filter_legs_by_expiry(legs, "202603") == []

    def test_roll_after_close(self, state, caplog):
        caplog.set_level(logging.INFO)
        rolled = roll_expired_expiry(state, datetime(2026, 2, 4, 14, 0))

        assert rolled.expiry_date == "2026-02-11"
        assert "rolling to 2026-02-11" in caplog.text

    def test_no_roll_before_close(self, state):
        assert roll_expired_expiry(state, datetime(2026, 2, 4, 13, 0)) is state


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------

class TestAppState:

    def test_defaults(self, state):
        assert state.strategy_id == "ironCondor"
        assert state.expiry_filter == ALL_EXPIRIES
        assert state.inputs['current_price'] == 32000
        assert not state.is_portfolio
        assert state.portfolio_legs() == []

    def test_select_strategy_resets_filter(self, custom_state):
        filtered = custom_state.with_filter("202602W1")
        assert filtered.select_strategy('simulationA').expiry_filter == ALL_EXPIRIES

    def test_select_unknown_strategy(self, state):
        with pytest.raises(StrategyNotFoundError):
            state.select_strategy('butterflyOfDoom')

    def test_with_legs_requires_portfolio(self, state):
        with pytest.raises(ConfigurationError):
            state.with_legs([make_leg()])

    def test_add_update_remove_leg(self, custom_state):
        added = custom_state.add_leg(make_leg(1, 'sell', 'call', 32400, 60))
        assert [leg.id for leg in added.portfolio_legs()] == [1, 2, 3]

        updated = added.update_leg(3, premium=75.0)
        assert updated.portfolio_legs()[2].premium == 75.0

        removed = updated.remove_leg(1)
        assert [leg.id for leg in removed.portfolio_legs()] == [2, 3]
        assert [leg.id for leg in custom_state.portfolio_legs()] == [1, 2]

    def test_filter_narrows_evaluation(self, custom_state):
        everything = custom_state.evaluate(MONDAY, holidays=[])
        weekly = custom_state.with_filter("202602W1").evaluate(MONDAY, holidays=[])

        assert everything.max_loss_points == pytest.approx(630.0)
        assert weekly.max_loss_points == pytest.approx(350.0)

    def test_filter_drives_time_reference(self, custom_state):
        assert custom_state.time_reference() == "2026-02-04"
        assert custom_state.with_filter("202602W2").time_reference() == "202602W2"

    def test_greeks_follow_filter(self, custom_state):
        weekly = custom_state.with_filter("202602W1").greeks(MONDAY, holidays=[])
        assert weekly.delta > 0

    def test_reset_keeps_portfolio_legs(self, custom_state):
        reset = custom_state.with_inputs(vix=30).reset(now=THURSDAY)

        assert reset.strategy_id == "custom"
        assert reset.inputs['vix'] == 16
        assert reset.expiry_date == "2026-02-11"
        assert reset.inputs['custom_legs'] == custom_state.inputs['custom_legs']

    def test_from_dict_fills_missing_inputs(self):
        restored = AppState.from_dict({'strategy_id': 'bullCallSpread', 'inputs': {'vix': 20}})

        assert restored.strategy_id == 'bullCallSpread'
        assert restored.inputs['vix'] == 20
        assert restored.inputs['lower_strike'] == 31800
        assert restored.expiry_date


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

class TestStateStores:

    def test_memory_store(self, custom_state):
        store = MemoryStateStore()
        assert store.load() is None

        store.save(custom_state)
        assert store.load() == custom_state

        store.clear()
        assert store.load() is None

    def test_yaml_round_trip(self, tmp_path, custom_state):
        store = YamlStateStore(tmp_path / "state" / "app.yaml")
        store.save(custom_state.with_filter("202602W1"))

        loaded = store.load()
        assert loaded.strategy_id == "custom"
        assert loaded.expiry_date == "2026-02-04"
        assert loaded.expiry_filter == "202602W1"
        assert loaded.portfolio_legs() == custom_state.portfolio_legs()

        store.clear()
        assert store.load() is None

    def test_failed_save_keeps_previous_file(self, tmp_path, custom_state, monkeypatch):
        path = tmp_path / "app.yaml"
        store = YamlStateStore(path)
        store.save(custom_state)

        def fail_midway(data, stream, **kwargs):
            stream.write("strategy_id: custom\ninputs: {current_pri")
            raise OSError("disk full")

        monkeypatch.setattr(yaml, 'safe_dump', fail_midway)
        with pytest.raises(OSError):
            store.save(custom_state.select_strategy('simulationB'))

        assert store.load().strategy_id == "custom"
        assert list(tmp_path.iterdir()) == [path]

    def test_yaml_parse_error(self, tmp_path):
        path = tmp_path / "app.yaml"
        path.write_text("inputs: [unclosed\n", encoding='utf-8')

        with pytest.raises(ConfigurationError):
            YamlStateStore(path).load()

    def test_yaml_without_mapping_is_ignored(self, tmp_path):
        path = tmp_path / "app.yaml"
        path.write_text("- just\n- a list\n", encoding='utf-8')

        assert YamlStateStore(path).load() is None

    def test_load_state_falls_back_to_defaults(self):
        assert load_state(MemoryStateStore()).strategy_id == "ironCondor"
