"""
Portfolio Greeks aggregation for TXO strategies
Sums per-leg sensitivities from the Black-Scholes engine into one risk profile
"""

from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping, Optional

import pandas as pd

from .black_scholes import calculate_greeks
from .expiry_calendar import ExpiryRef, hours_to_years, remaining_trading_hours
from .legs import Leg
from .payoff import MarketSnapshot
from .strategies import StrategyDefinition


@dataclass(frozen=True)
class PortfolioGreeks:
    """
    Net sensitivities of a leg set

    Units follow the pricer: theta per calendar day, vega per volatility
    point, delta and gamma per index point (one unit of each leg).
    """
    delta: float = 0.0
    gamma: float = 0.0
    theta: float = 0.0
    vega: float = 0.0

    def __add__(self, other: 'PortfolioGreeks') -> 'PortfolioGreeks':
        return PortfolioGreeks(
            delta=self.delta + other.delta,
            gamma=self.gamma + other.gamma,
            theta=self.theta + other.theta,
            vega=self.vega + other.vega,
        )

    def scaled(self, weight: float) -> 'PortfolioGreeks':
        return PortfolioGreeks(
            delta=self.delta * weight,
            gamma=self.gamma * weight,
            theta=self.theta * weight,
            vega=self.vega * weight,
        )

    def as_dict(self) -> Dict[str, float]:
        return asdict(self)


# =============================================================================
# AGGREGATION
# =============================================================================

def leg_greeks(leg: Leg, snapshot: MarketSnapshot, time_years: float) -> PortfolioGreeks:
    """Unsigned Greeks of one unit of the leg"""
    greeks = calculate_greeks(snapshot.spot, leg.strike, time_years, snapshot.rate,
                              snapshot.volatility, leg.option_type)
    return PortfolioGreeks(**greeks)


def aggregate_portfolio_greeks(legs: Iterable[Leg], snapshot: MarketSnapshot,
                               shared_time_years: float) -> PortfolioGreeks:
    """
    Net Greeks of a leg set at one shared time to expiry

    Each leg is priced with ``shared_time_years`` regardless of its own
    expiry, signed +1 for buys and -1 for sells and weighted by quantity.

    Financial Meaning: a quick read of the position's directional (delta),
    convexity (gamma), time-decay (theta) and volatility (vega) exposure.
    Mixed-expiry portfolios are approximated; the payoff engine values each
    leg at its own expiry instead.

    Args:
        legs: Positions to aggregate
        snapshot: Spot, rate and volatility
        shared_time_years: Common time to expiry in years

    Returns:
        PortfolioGreeks
    """
    total = PortfolioGreeks()
    for leg in legs:
        total = total + leg_greeks(leg, snapshot, shared_time_years).scaled(leg.direction * leg.quantity)
    return total


def shared_time_years(expiry_ref: Optional[ExpiryRef], now: Optional[datetime] = None,
                      holidays: Optional[Iterable[str]] = None) -> float:
    """Trading days to the selected expiry (hours / 19) expressed in years"""
    return hours_to_years(remaining_trading_hours(expiry_ref, now, holidays))


def strategy_greeks(strategy: StrategyDefinition, parameters: Mapping[str, Any],
                    snapshot: MarketSnapshot, expiry_ref: Optional[ExpiryRef],
                    now: Optional[datetime] = None,
                    holidays: Optional[Iterable[str]] = None) -> PortfolioGreeks:
    """Net Greeks of a strategy's legs at the selected expiry"""
    time_years = shared_time_years(expiry_ref, now, holidays)
    return aggregate_portfolio_greeks(strategy.legs_of(parameters), snapshot, time_years)


def greeks_dataframe(legs: Iterable[Leg], snapshot: MarketSnapshot,
                     shared_time_years: float) -> pd.DataFrame:
    """
    Per-leg Greeks table, signed and weighted like the aggregate

    Columns: Leg_ID, Action, Option_Type, Strike, Quantity, Delta, Gamma, Theta, Vega
    """
    rows = []
    for leg in legs:
        signed = leg_greeks(leg, snapshot, shared_time_years).scaled(leg.direction * leg.quantity)
        rows.append({
            'Leg_ID': leg.id,
            'Action': leg.action.value,
            'Option_Type': leg.option_type.value,
            'Strike': leg.strike,
            'Quantity': leg.quantity,
            'Delta': signed.delta,
            'Gamma': signed.gamma,
            'Theta': signed.theta,
            'Vega': signed.vega,
        })
    columns = ['Leg_ID', 'Action', 'Option_Type', 'Strike', 'Quantity',
               'Delta', 'Gamma', 'Theta', 'Vega']
    return pd.DataFrame(rows, columns=columns)
