"""
Shared pytest fixtures for the TXO risk engine tests.

Every test runs against the built-in default configuration (no holidays),
so results do not depend on the config.yaml shipped with the project.
"""

from datetime import datetime

import pytest

from txo_risk.config.settings import DEFAULT_CONFIG, Config, set_config
from txo_risk.models.legs import Action, Leg, OptionType
from txo_risk.models.payoff import MarketSnapshot


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def default_config():
    """Install the built-in defaults as the global configuration."""
    config = Config.from_dict(DEFAULT_CONFIG)
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def snapshot():
    return MarketSnapshot(spot=32000.0, risk_free_rate_percent=2.0, volatility_proxy_percent=16.0)


@pytest.fixture
def monday_morning():
    """Mon 2026-02-02 10:00, two days before the 202602W1 settlement."""
    return datetime(2026, 2, 2, 10, 0)


@pytest.fixture
def strategy_parameters():
    """Inputs giving every built-in strategy a well-formed profile."""
    return {
        'current_price': 32000,
        'risk_free_rate': 2.0,
        'vix': 16,
        'strike': 32000,
        'premium': 350,
        'lower_strike': 31800,
        'lower_premium': 200,
        'higher_strike': 32200,
        'higher_premium': 80,
        'call_premium': 250,
        'put_premium': 280,
        'put_k1': 31600,
        'put_k1_premium': 40,
        'put_k2': 31800,
        'put_k2_premium': 120,
        'call_k3': 32200,
        'call_k3_premium': 110,
        'call_k4': 32400,
        'call_k4_premium': 30,
        'lower_put_k': 31800,
        'lower_put_premium': 20,
        'center_strike': 32000,
        'center_put_premium': 100,
        'center_call_premium': 110,
        'higher_call_k': 32200,
        'higher_call_premium': 30,
    }


# ---------------------------------------------------------------------------
# Leg factory helpers
# ---------------------------------------------------------------------------

def make_leg(leg_id=1, action='buy', option_type='call', strike=32000.0, premium=350.0,
             quantity=1.0, expiry=None):
    return Leg(
        id=leg_id,
        action=Action(action),
        option_type=OptionType(option_type),
        strike=float(strike),
        premium=float(premium),
        quantity=float(quantity),
        expiry=expiry,
    )


def iron_condor_legs(expiry=None):
    return [
        make_leg(1, 'buy', 'put', 31600, 40, expiry=expiry),
        make_leg(2, 'sell', 'put', 31800, 120, expiry=expiry),
        make_leg(3, 'sell', 'call', 32200, 110, expiry=expiry),
        make_leg(4, 'buy', 'call', 32400, 30, expiry=expiry),
    ]
