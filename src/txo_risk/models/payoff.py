"""
Payoff aggregation engine for multi-leg TXO positions
P&L functions, sampled extrema, sign-change breakevens and exchange margin estimates
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..config.settings import get_config
from .legs import Leg, OptionType, safe_float
from .black_scholes import black_scholes_price
from .expiry_calendar import hours_to_years, local_now, remaining_trading_hours

logger = logging.getLogger(__name__)

PnLFunction = Callable[[float], float]

# Below this many years the pricer is replaced by intrinsic value
MIN_PRICING_TIME_YEARS = 0.001
FLAT_SLOPE_TOLERANCE = 1e-4
BREAKEVEN_MERGE_DISTANCE = 1.0


class PricingMode(str, Enum):
    EXPIRY = "expiry"
    THEORETICAL = "theoretical"

    @classmethod
    def parse(cls, value) -> 'PricingMode':
        """Anything other than 'theoretical' settles at expiry"""
        if isinstance(value, cls):
            return value
        if str(value).strip().lower() == cls.THEORETICAL.value:
            return cls.THEORETICAL
        if value not in (None, '', cls.EXPIRY.value):
            logger.debug("Unknown analysis mode %r, using expiry settlement", value)
        return cls.EXPIRY


# =============================================================================
# MARKET SNAPSHOT AND RESULTS
# =============================================================================

@dataclass(frozen=True)
class MarketSnapshot:
    """
    Market inputs shared by every leg

    Rates and volatility are kept in percent, the way they are quoted;
    ``rate`` and ``volatility`` give the decimals the pricer expects.
    """
    spot: float
    risk_free_rate_percent: float = 2.0
    volatility_proxy_percent: float = 16.0

    @property
    def rate(self) -> float:
        return self.risk_free_rate_percent / 100.0

    @property
    def volatility(self) -> float:
        return self.volatility_proxy_percent / 100.0

    @classmethod
    def from_inputs(cls, inputs: dict) -> 'MarketSnapshot':
        """Build from application inputs (current_price, risk_free_rate, vix)"""
        return cls(
            spot=safe_float(inputs.get('current_price')),
            risk_free_rate_percent=safe_float(inputs.get('risk_free_rate')),
            volatility_proxy_percent=safe_float(inputs.get('vix')),
        )


def _zero_payoff(price: float) -> float:
    return 0.0


@dataclass(frozen=True)
class StrategyResult:
    """
    Risk profile of a strategy, in index points (except the margin)

    max_profit_points / max_loss_points may be math.inf; the loss is reported
    as a positive magnitude. estimated_margin is in currency units.
    """
    max_profit_points: float
    max_loss_points: float
    break_even_prices: List[float] = field(default_factory=list)
    payoff_fn: PnLFunction = _zero_payoff
    estimated_margin: float = 0.0

    @classmethod
    def neutral(cls) -> 'StrategyResult':
        """Zero result returned when a strategy cannot be evaluated"""
        return cls(0.0, 0.0, [], _zero_payoff, 0.0)

    @property
    def has_unlimited_profit(self) -> bool:
        return math.isinf(self.max_profit_points)

    @property
    def has_unlimited_risk(self) -> bool:
        return math.isinf(self.max_loss_points)

    @property
    def reward_risk_ratio(self) -> float:
        """max profit / max loss; 0 for unlimited or zero risk"""
        if self.has_unlimited_risk or self.max_loss_points == 0:
            return 0.0
        return self.max_profit_points / self.max_loss_points


# =============================================================================
# PER-LEG VALUATION
# =============================================================================

def leg_time_years(leg: Leg, mode: PricingMode, now: datetime,
                   holidays: Optional[Iterable[str]] = None) -> float:
    """
    Time to expiry (years) used to value a leg

    Expiry mode always settles at intrinsic (0). In theoretical mode the
    leg's remaining trading hours are converted with hours / 19 / 365.
    """
    if mode is not PricingMode.THEORETICAL:
        return 0.0
    if not leg.expiry:
        logger.info("Leg %s has no expiry, valuing at intrinsic in theoretical mode", leg.id)
        return 0.0
    return hours_to_years(remaining_trading_hours(leg.expiry, now, holidays))


def leg_value(leg: Leg, price: float, time_years: float, snapshot: MarketSnapshot) -> float:
    """Estimated value of one unit of the leg at the given underlying price"""
    if time_years <= MIN_PRICING_TIME_YEARS:
        return leg.intrinsic_value(price)
    return black_scholes_price(price, leg.strike, time_years, snapshot.rate,
                               snapshot.volatility, leg.option_type)


def leg_pnl(leg: Leg, value: float) -> float:
    """(value - premium) x q for buys, (premium - value) x q for sells"""
    return (value - leg.premium) * leg.quantity * leg.direction


def build_pnl_function(legs: Sequence[Leg], snapshot: MarketSnapshot,
                       mode=PricingMode.EXPIRY, now: Optional[datetime] = None,
                       holidays: Optional[Iterable[str]] = None) -> PnLFunction:
    """
    Aggregate P&L (points) of a leg set as a function of the underlying price

    Times to expiry are resolved once against a frozen ``now``, so the
    returned closure is pure.
    """
    mode = PricingMode.parse(mode)
    now = local_now(now)
    holiday_list = None if holidays is None else list(holidays)
    priced_legs: List[Tuple[Leg, float]] = [
        (leg, leg_time_years(leg, mode, now, holiday_list)) for leg in legs
    ]

    def pnl(price: float) -> float:
        total = 0.0
        for leg, time_years in priced_legs:
            total += leg_pnl(leg, leg_value(leg, price, time_years, snapshot))
        return total

    return pnl


# =============================================================================
# PRICE SWEEP
# =============================================================================

def sweep_grid(center: float, range_points: float, step: float) -> np.ndarray:
    """Samples center - range + step ... center + range (inclusive)"""
    count = int(math.floor(2.0 * range_points / step + 1e-9))
    return center - range_points + step * np.arange(1, count + 1, dtype=float)


def sweep_payoff(pnl_fn: PnLFunction, center: float, range_points: Optional[float] = None,
                 step: Optional[float] = None) -> Tuple[float, float, List[float]]:
    """
    Sample a P&L function around ``center`` and read off its risk profile

    The first sample (center - range) only seeds the breakeven detector; the
    extrema are taken over the remaining samples.

    Breakevens: a crossing is a strict negative -> non-negative or strict
    positive -> non-positive change between consecutive samples. The zero is
    linearly interpolated, skipped when the P&L change is within 1e-4,
    rounded to an integer price and dropped when within 1 point of the
    previously recorded crossing. Crossings closer than one step apart can
    be missed.

    Returns:
        (max_profit_points, max_loss_points, break_even_prices)
    """
    sweep_config = get_config().sweep
    range_points = sweep_config.range_points if range_points is None else range_points
    step = sweep_config.step_points if step is None else step

    max_profit = -math.inf
    min_pnl = math.inf
    breakevens: List[float] = []
    prev_pnl = pnl_fn(center - range_points)

    for price in sweep_grid(center, range_points, step):
        price = float(price)
        current_pnl = pnl_fn(price)
        max_profit = max(max_profit, current_pnl)
        min_pnl = min(min_pnl, current_pnl)

        crossed = (prev_pnl < 0 <= current_pnl) or (prev_pnl > 0 >= current_pnl)
        if crossed:
            change = current_pnl - prev_pnl
            if abs(change) > FLAT_SLOPE_TOLERANCE:
                exact = price - step + (0 - prev_pnl) * step / change
                if not breakevens or abs(exact - breakevens[-1]) > BREAKEVEN_MERGE_DISTANCE:
                    breakevens.append(float(math.floor(exact + 0.5)))
        prev_pnl = current_pnl

    return max_profit, abs(min_pnl), breakevens


def find_breakevens(pnl_fn: PnLFunction, center: float, range_points: Optional[float] = None,
                    step: Optional[float] = None) -> List[float]:
    return sweep_payoff(pnl_fn, center, range_points, step)[2]


# =============================================================================
# MARGIN
# =============================================================================

def short_leg_margin(premium: float, otm_points: float, quantity: float = 1.0,
                     multiplier: Optional[float] = None, margin_a: Optional[float] = None,
                     margin_b: Optional[float] = None) -> float:
    """
    Exchange margin of a short option position

    Formula: (premium x M + max(A - OTM x M, B)) x quantity

    Financial Meaning: the seller posts the option's market value plus a risk
    charge that shrinks as the strike moves out of the money, never below
    the B value.
    """
    market = get_config().market
    multiplier = market.multiplier if multiplier is None else multiplier
    margin_a = market.margin_a if margin_a is None else margin_a
    margin_b = market.margin_b if margin_b is None else margin_b

    market_value = premium * multiplier
    return (market_value + max(margin_a - otm_points * multiplier, margin_b)) * quantity


def out_of_money_points(leg: Leg, spot: float) -> float:
    if leg.option_type is OptionType.CALL:
        return max(0.0, leg.strike - spot)
    return max(0.0, spot - leg.strike)


def estimate_margin(legs: Iterable[Leg], spot: float, multiplier: Optional[float] = None,
                    margin_a: Optional[float] = None, margin_b: Optional[float] = None) -> float:
    """Sum of short_leg_margin over every sell leg, OTM measured from ``spot``"""
    total = 0.0
    for leg in legs:
        if leg.is_short:
            total += short_leg_margin(leg.premium, out_of_money_points(leg, spot), leg.quantity,
                                      multiplier, margin_a, margin_b)
    return total


# =============================================================================
# P&L CURVE
# =============================================================================

CURVE_STEPS = 150
MIN_CURVE_SPREAD = 600.0
MAX_CURVE_PADDING = 2000.0
MIN_VALID_PRICE = 5000.0


def curve_price_range(spot: float, strikes: Iterable[float] = (),
                      breakevens: Iterable[float] = ()) -> Tuple[float, float]:
    """
    Price window framing the spot, strikes and breakevens

    Prices at or below 5000 are ignored. The spread is at least 600 points,
    padded by 40% (at most 2000) and snapped outwards to multiples of 100.
    """
    finite_breakevens = [b for b in breakevens if math.isfinite(b)]
    points = [p for p in [spot, *strikes, *finite_breakevens] if p > MIN_VALID_PRICE]
    if not points:
        points = [spot]

    low, high = min(points), max(points)
    spread = max(high - low, MIN_CURVE_SPREAD)
    padding = min(spread * 0.4, MAX_CURVE_PADDING)

    range_min = math.floor((low - padding) / 100.0) * 100.0
    range_max = math.ceil((high + padding) / 100.0) * 100.0
    return range_min, range_max


def payoff_curve(result: StrategyResult, spot: float, strikes: Iterable[float] = (),
                 multiplier: Optional[float] = None, steps: int = CURVE_STEPS) -> pd.DataFrame:
    """
    Sample a strategy's P&L over its display window

    Returns:
        DataFrame with Price, PnL_Points and PnL_Money columns (NaN rows dropped)
    """
    multiplier = get_config().market.multiplier if multiplier is None else multiplier
    positive_strikes = [k for k in strikes if k > 0]
    range_min, range_max = curve_price_range(spot, positive_strikes, result.break_even_prices)

    step_size = (range_max - range_min) / steps
    prices = np.floor(range_min + np.arange(steps + 1) * step_size + 0.5)
    pnl_points = np.array([result.payoff_fn(float(price)) for price in prices], dtype=float)

    curve = pd.DataFrame({
        'Price': prices,
        'PnL_Points': pnl_points,
        'PnL_Money': pnl_points * multiplier,
    })
    return curve.dropna().reset_index(drop=True)
