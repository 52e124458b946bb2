"""
Position analysis for TXO portfolios
Per-leg live valuation table, strategy assessment and expected move estimates
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from math import sqrt
from typing import Dict, Iterable, List, Optional

import pandas as pd

from ..config.settings import get_config
from ..models.black_scholes import black_scholes_price, calculate_greeks
from ..models.expiry_calendar import (
    SESSION_HOURS_PER_DAY,
    local_now,
    remaining_trading_hours,
)
from ..models.greeks import PortfolioGreeks
from ..models.legs import Leg, OptionType
from ..models.payoff import MarketSnapshot, StrategyResult
from ..models.strategies import GROUP_VOLATILITY_NEUTRAL

logger = logging.getLogger(__name__)

# Floor (in trading days) applied before pricing an open leg
MIN_ANALYSIS_DAYS = 0.001

# sqrt(19 trading hours x 252 trading days), annual -> hourly volatility
HOURLY_VOL_DIVISOR = 69.2

ANALYSIS_COLUMNS = [
    'Leg_ID', 'Expiry', 'Action', 'Option_Type', 'Strike', 'Premium', 'Quantity',
    'Hours', 'Days', 'Theoretical_Price', 'Intrinsic', 'Time_Value',
    'Unit_PnL', 'Total_PnL', 'Premium_Deviation',
    'Delta', 'Gamma', 'Theta', 'Vega',
]


# =============================================================================
# LIVE POSITION TABLE
# =============================================================================

def analyze_legs(legs: Iterable[Leg], snapshot: MarketSnapshot, now: Optional[datetime] = None,
                 holidays: Optional[Iterable[str]] = None,
                 multiplier: Optional[float] = None) -> pd.DataFrame:
    """
    Value every leg at the current spot (T+0)

    Each leg gets its own time to expiry from the trading-hour calendar,
    floored at 0.001 trading days before pricing. Expired legs settle at
    intrinsic value, as do legs without an expiry.

    Columns:
    - Hours / Days: remaining trading hours and hours / 19
    - Theoretical_Price, Intrinsic, Time_Value (theoretical minus intrinsic, >= 0)
    - Unit_PnL: (settlement - premium) signed by action, in points
    - Total_PnL: Unit_PnL x quantity x multiplier, in currency
    - Premium_Deviation: (premium - theoretical) / theoretical, 0 when theoretical is 0
    - Delta, Gamma, Theta, Vega: unsigned, per unit

    Rows are sorted by time to expiry, then strike, calls before puts.

    Args:
        legs: Positions to analyze
        snapshot: Spot, rate and volatility
        now: Valuation instant (defaults to the exchange clock)
        holidays: ISO dates skipped by the trading-hour count
        multiplier: Currency per point (defaults to configuration)

    Returns:
        DataFrame with ANALYSIS_COLUMNS
    """
    multiplier = get_config().market.multiplier if multiplier is None else multiplier
    now = local_now(now)
    holiday_list = None if holidays is None else list(holidays)

    rows = []
    for leg in legs:
        if leg.expiry:
            hours = remaining_trading_hours(leg.expiry, now, holiday_list)
        else:
            logger.info("Leg %s has no expiry, settling at intrinsic", leg.id)
            hours = 0.0
        days = hours / SESSION_HOURS_PER_DAY
        T = max(days, MIN_ANALYSIS_DAYS) / 365.0

        theo_price = black_scholes_price(snapshot.spot, leg.strike, T, snapshot.rate,
                                         snapshot.volatility, leg.option_type)
        intrinsic = leg.intrinsic_value(snapshot.spot)
        settlement = intrinsic if days <= 0 else theo_price
        unit_pnl = (settlement - leg.premium) * leg.direction
        greeks = calculate_greeks(snapshot.spot, leg.strike, T, snapshot.rate,
                                  snapshot.volatility, leg.option_type)

        rows.append({
            'Leg_ID': leg.id,
            'Expiry': leg.expiry,
            'Action': leg.action.value,
            'Option_Type': leg.option_type.value,
            'Strike': leg.strike,
            'Premium': leg.premium,
            'Quantity': leg.quantity,
            'Hours': hours,
            'Days': days,
            'Theoretical_Price': theo_price,
            'Intrinsic': intrinsic,
            'Time_Value': max(0.0, theo_price - intrinsic),
            'Unit_PnL': unit_pnl,
            'Total_PnL': unit_pnl * leg.quantity * multiplier,
            'Premium_Deviation': (leg.premium - theo_price) / theo_price if theo_price > 0 else 0.0,
            'Delta': greeks['delta'],
            'Gamma': greeks['gamma'],
            'Theta': greeks['theta'],
            'Vega': greeks['vega'],
        })

    analysis = pd.DataFrame(rows, columns=ANALYSIS_COLUMNS)
    if analysis.empty:
        return analysis

    analysis['_type_order'] = (analysis['Option_Type'] != OptionType.CALL.value).astype(int)
    analysis = analysis.sort_values(['Days', 'Strike', '_type_order'], kind='mergesort')
    return analysis.drop(columns='_type_order').reset_index(drop=True)


def summarize_leg_analysis(analysis: pd.DataFrame) -> Dict[str, float]:
    """
    Portfolio totals of an analyze_legs table

    Greeks are signed by action and weighted by quantity; Total_PnL is the
    sum of the per-leg currency P&L.
    """
    if analysis.empty:
        return {'delta': 0.0, 'gamma': 0.0, 'theta': 0.0, 'vega': 0.0, 'total_pnl': 0.0, 'legs': 0}

    weight = analysis['Action'].map({'buy': 1, 'sell': -1}) * analysis['Quantity']
    return {
        'delta': float((analysis['Delta'] * weight).sum()),
        'gamma': float((analysis['Gamma'] * weight).sum()),
        'theta': float((analysis['Theta'] * weight).sum()),
        'vega': float((analysis['Vega'] * weight).sum()),
        'total_pnl': float(analysis['Total_PnL'].sum()),
        'legs': int(len(analysis)),
    }


# =============================================================================
# STRATEGY ASSESSMENT
# =============================================================================

VERDICT_AVERAGE = "average"
VERDICT_HIGH_RISK = "high risk"
VERDICT_EXCELLENT = "excellent"
VERDICT_GOOD = "good"
VERDICT_NOT_RECOMMENDED = "not recommended"


@dataclass
class StrategyAssessment:
    score: int
    verdict: str
    advice: List[str] = field(default_factory=list)


def assess_strategy(result: StrategyResult, greeks: Optional[PortfolioGreeks] = None,
                    group: Optional[str] = None, vix: float = 0.0) -> StrategyAssessment:
    """
    Rule-based 0-100 rating of a strategy's risk profile

    Starts at 70:
    - unlimited risk -25 (verdict 'high risk'), otherwise +10
    - with finite profit and limited risk, reward/risk >= 3 +15 ('excellent'),
      >= 1.5 +5 ('good'), < 0.5 -10 ('not recommended')
    - volatility/neutral strategies with |delta| < 0.15 +5
    - positive theta +5
    - VIX below 13 with positive vega +5
    """
    score = 70
    verdict = VERDICT_AVERAGE
    advice = []

    profit = result.max_profit_points
    unlimited_risk = result.has_unlimited_risk
    ratio = result.reward_risk_ratio

    if unlimited_risk:
        score -= 25
        verdict = VERDICT_HIGH_RISK
        advice.append("Unlimited risk: extreme moves can cause very large losses.")
    else:
        score += 10
        advice.append("Limited risk: the maximum loss is locked in.")

    if not unlimited_risk and not result.has_unlimited_profit:
        if ratio >= 3:
            score += 15
            verdict = VERDICT_EXCELLENT
            advice.append("Excellent reward/risk (3:1 or better).")
        elif ratio >= 1.5:
            score += 5
            verdict = VERDICT_GOOD
            advice.append("Good reward/risk.")
        elif ratio < 0.5:
            score -= 10
            verdict = VERDICT_NOT_RECOMMENDED
            advice.append("Reward/risk too low.")

    if greeks is not None:
        if group == GROUP_VOLATILITY_NEUTRAL:
            if abs(greeks.delta) < 0.15:
                score += 5
                advice.append("Delta close to neutral, in line with the strategy.")
            else:
                advice.append("Position carries a directional bias (delta not neutral).")

        if greeks.theta > 0:
            score += 5
            advice.append("Positive theta: time decay works for the position.")
        elif greeks.theta < 0:
            advice.append("Negative theta: the position loses value if the market stays still.")

        if vix < 13 and greeks.vega > 0:
            score += 5
            advice.append("VIX is low; long vega benefits from a volatility pickup.")

    logger.debug("Assessment for profit=%s loss=%s: score %s", profit, result.max_loss_points, score)
    return StrategyAssessment(score=max(0, min(100, score)), verdict=verdict, advice=advice)


# =============================================================================
# EXPECTED MOVE
# =============================================================================

def expected_amplitude(spot: float, hours: float, vix: float,
                       correction: float = 50.0) -> Dict[str, float]:
    """
    Expected index move until expiry

    Formula: spot x sqrt(hours) x (VIX / 69.2 / 100) x (correction / 100)

    Financial Meaning: VIX is an annualized volatility; dividing by
    sqrt(19 x 252) turns it into a per-trading-hour figure, scaled by the
    square root of the hours left. ``correction`` (percent) damps the raw
    estimate.

    Returns:
        Dictionary with the move in points and in percent of spot
    """
    amplitude_ratio = sqrt(max(hours, 0.0)) * (vix / HOURLY_VOL_DIVISOR / 100.0) * (correction / 100.0)
    return {
        'points': spot * amplitude_ratio,
        'percent': amplitude_ratio * 100.0,
    }


class PositionAnalyzer:
    """
    Bundles the analysis helpers for one market snapshot and valuation time
    """

    def __init__(self, snapshot: MarketSnapshot, now: Optional[datetime] = None,
                 holidays: Optional[Iterable[str]] = None):
        self.snapshot = snapshot
        self.now = local_now(now)
        self.holidays = None if holidays is None else list(holidays)

    def analyze(self, legs: Iterable[Leg]) -> pd.DataFrame:
        return analyze_legs(legs, self.snapshot, self.now, self.holidays)

    def risk_metrics(self, legs: Iterable[Leg]) -> Dict[str, float]:
        """Totals of the live table plus counts of long and short legs"""
        analysis = self.analyze(legs)
        metrics = summarize_leg_analysis(analysis)
        metrics['long_legs'] = int((analysis['Action'] == 'buy').sum()) if not analysis.empty else 0
        metrics['short_legs'] = int((analysis['Action'] == 'sell').sum()) if not analysis.empty else 0
        return metrics

    def amplitude(self, expiry_ref, vol_correction: Optional[float] = None) -> Dict[str, float]:
        correction = get_config().defaults.vol_correction if vol_correction is None else vol_correction
        hours = remaining_trading_hours(expiry_ref, self.now, self.holidays)
        return expected_amplitude(self.snapshot.spot, hours, self.snapshot.volatility_proxy_percent,
                                  correction)
