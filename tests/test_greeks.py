"""
Tests for portfolio Greeks aggregation.

Source: src/txo_risk/models/greeks.py
"""

from datetime import datetime

import pytest

from tests.conftest import iron_condor_legs, make_leg
from txo_risk.models.black_scholes import calculate_greeks
from txo_risk.models.greeks import (
    PortfolioGreeks,
    aggregate_portfolio_greeks,
    greeks_dataframe,
    shared_time_years,
    strategy_greeks,
)
from txo_risk.models.strategies import get_strategy

T = 5 / 365


def test_single_long_leg_matches_pricer(snapshot):
    greeks = aggregate_portfolio_greeks([make_leg()], snapshot, T)
    expected = calculate_greeks(32000, 32000, T, 0.02, 0.16, 'call')

    assert greeks.as_dict() == pytest.approx(expected)


def test_short_leg_is_negated(snapshot):
    long_greeks = aggregate_portfolio_greeks([make_leg()], snapshot, T)
    short_greeks = aggregate_portfolio_greeks([make_leg(action='sell')], snapshot, T)

    assert short_greeks.as_dict() == pytest.approx(long_greeks.scaled(-1).as_dict())


def test_quantity_weights_each_leg(snapshot):
    one = aggregate_portfolio_greeks([make_leg()], snapshot, T)
    three = aggregate_portfolio_greeks([make_leg(quantity=3)], snapshot, T)

    assert three.delta == pytest.approx(3 * one.delta)
    assert three.vega == pytest.approx(3 * one.vega)


def test_unit_legs_equal_weighted_leg(snapshot):
    strategy = get_strategy('custom')
    params = {'custom_legs': [make_leg(quantity=2).to_dict()]}

    expanded = aggregate_portfolio_greeks(strategy.legs_of(params), snapshot, T)
    weighted = aggregate_portfolio_greeks([make_leg(quantity=2)], snapshot, T)
    assert expanded.as_dict() == pytest.approx(weighted.as_dict())


def test_leg_expiry_is_ignored(snapshot):
    without_expiry = aggregate_portfolio_greeks(iron_condor_legs(), snapshot, T)
    with_expiry = aggregate_portfolio_greeks(iron_condor_legs(expiry="202603"), snapshot, T)

    assert with_expiry == without_expiry


def test_straddle_is_roughly_delta_neutral(snapshot):
    legs = [make_leg(1, option_type='call'), make_leg(2, option_type='put')]
    greeks = aggregate_portfolio_greeks(legs, snapshot, T)

    assert abs(greeks.delta) < 0.15
    assert greeks.gamma > 0
    assert greeks.theta < 0
    assert greeks.vega > 0


def test_iron_condor_collects_theta(snapshot):
    greeks = aggregate_portfolio_greeks(iron_condor_legs(), snapshot, T)

    assert greeks.theta > 0
    assert greeks.vega < 0


def test_expired_time_gives_zero(snapshot):
    assert aggregate_portfolio_greeks(iron_condor_legs(), snapshot, 0.0) == PortfolioGreeks()


def test_strategy_greeks_use_selected_expiry(snapshot, strategy_parameters):
    now = datetime(2026, 2, 2, 10, 0)
    strategy = get_strategy('ironCondor')

    time_years = shared_time_years("2026-02-04", now, [])
    assert time_years == pytest.approx((17.75 + 19 + 4.75) / 19 / 365)

    greeks = strategy_greeks(strategy, strategy_parameters, snapshot, "2026-02-04", now, [])
    expected = aggregate_portfolio_greeks(strategy.legs_of(strategy_parameters), snapshot, time_years)
    assert greeks == expected


def test_greeks_dataframe_sums_to_aggregate(snapshot):
    legs = iron_condor_legs()
    table = greeks_dataframe(legs, snapshot, T)
    total = aggregate_portfolio_greeks(legs, snapshot, T)

    assert len(table) == 4
    assert table['Delta'].sum() == pytest.approx(total.delta)
    assert table['Theta'].sum() == pytest.approx(total.theta)
