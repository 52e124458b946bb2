"""
Strategy catalogue for the TXO risk engine

Built-in strategies carry textbook closed-form risk profiles; portfolio
strategies (user-entered leg sets) are evaluated by sweeping the aggregate
P&L over a price window. Every strategy exposes the same two operations:
``legs_of(parameters)`` and ``calculate(parameters, snapshot, context)``.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ..config.settings import get_config
from .legs import Action, Leg, OptionType, coerce_legs, expand_unit_legs, safe_float
from .payoff import (
    MarketSnapshot,
    PricingMode,
    StrategyResult,
    build_pnl_function,
    estimate_margin,
    short_leg_margin,
    sweep_payoff,
)

logger = logging.getLogger(__name__)

INF = math.inf

GROUP_SINGLE_LEG = "single_leg"
GROUP_VERTICAL_SPREAD = "vertical_spread"
GROUP_VOLATILITY_NEUTRAL = "volatility_neutral"
GROUP_PORTFOLIO = "portfolio"


class StrategyNotFoundError(Exception):
    """Raised when a strategy id is not in the registry"""
    pass


@dataclass(frozen=True)
class EvaluationContext:
    """
    Everything a calculation needs besides the parameters and market data

    ``now`` is frozen per evaluation; None fields fall back to configuration
    through ``resolve``.
    """
    mode: PricingMode = PricingMode.EXPIRY
    now: Optional[datetime] = None
    holidays: Optional[Tuple[str, ...]] = None
    multiplier: Optional[float] = None
    margin_a: Optional[float] = None
    margin_b: Optional[float] = None
    range_points: Optional[float] = None
    step_points: Optional[float] = None

    @classmethod
    def resolve(cls, mode: Any = PricingMode.EXPIRY, now: Optional[datetime] = None,
                holidays: Optional[Iterable[str]] = None, **overrides) -> 'EvaluationContext':
        """Context with every unset value filled from the global configuration"""
        config = get_config()
        values = {
            'multiplier': config.market.multiplier,
            'margin_a': config.market.margin_a,
            'margin_b': config.market.margin_b,
            'range_points': config.sweep.range_points,
            'step_points': config.sweep.step_points,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(
            mode=PricingMode.parse(mode),
            now=now,
            holidays=tuple(holidays) if holidays is not None else None,
            **values,
        )


# =============================================================================
# STRATEGY DEFINITIONS
# =============================================================================

@dataclass(frozen=True)
class LegTemplate:
    """One leg of a built-in strategy, wired to its parameter fields"""
    action: Action
    option_type: OptionType
    strike_field: str
    premium_field: str


Formula = Callable[[Mapping[str, Any], MarketSnapshot, EvaluationContext], StrategyResult]


@dataclass(frozen=True)
class StrategyDefinition:
    """
    A named strategy with a closed-form risk profile

    Attributes:
        id: Registry key (e.g. 'bullCallSpread')
        name: Display name
        group: Strategy family, used by the assessment rules
        sentiment: Market view the strategy expresses
        templates: Leg layout, read from the parameter mapping
        formula: Closed-form calculation
    """
    id: str
    name: str
    group: str
    sentiment: str = ""
    templates: Tuple[LegTemplate, ...] = ()
    formula: Optional[Formula] = field(default=None, compare=False, repr=False)

    def legs_of(self, parameters: Mapping[str, Any]) -> List[Leg]:
        return [
            Leg(
                id=position,
                action=template.action,
                option_type=template.option_type,
                strike=safe_float(parameters.get(template.strike_field)),
                premium=safe_float(parameters.get(template.premium_field)),
            )
            for position, template in enumerate(self.templates, start=1)
        ]

    def strike_prices(self, parameters: Mapping[str, Any]) -> List[float]:
        """Distinct positive strikes, used to frame P&L charts"""
        strikes = []
        for leg in self.legs_of(parameters):
            if leg.strike > 0 and leg.strike not in strikes:
                strikes.append(leg.strike)
        return strikes

    def calculate(self, parameters: Mapping[str, Any], snapshot: MarketSnapshot,
                  context: Optional[EvaluationContext] = None) -> StrategyResult:
        context = context or EvaluationContext.resolve()
        return self.formula(parameters, snapshot, context)


@dataclass(frozen=True)
class PortfolioStrategy(StrategyDefinition):
    """
    Arbitrary leg set read from ``parameters[legs_key]``

    No closed form: the P&L is swept over spot +/- range at the configured
    step and the extrema and breakevens are read from the samples.
    """
    legs_key: str = "custom_legs"

    def raw_legs(self, parameters: Mapping[str, Any]) -> List[Leg]:
        return coerce_legs(parameters.get(self.legs_key) or [])

    def legs_of(self, parameters: Mapping[str, Any]) -> List[Leg]:
        """Legs expanded into unit-quantity copies"""
        return expand_unit_legs(self.raw_legs(parameters))

    def strike_prices(self, parameters: Mapping[str, Any]) -> List[float]:
        return [leg.strike for leg in self.raw_legs(parameters) if leg.strike > 0]

    def calculate(self, parameters: Mapping[str, Any], snapshot: MarketSnapshot,
                  context: Optional[EvaluationContext] = None) -> StrategyResult:
        context = context or EvaluationContext.resolve()
        legs = self.raw_legs(parameters)

        pnl = build_pnl_function(legs, snapshot, context.mode, context.now, context.holidays)
        max_profit, max_loss, breakevens = sweep_payoff(
            pnl, snapshot.spot, context.range_points, context.step_points
        )
        margin = estimate_margin(legs, snapshot.spot, context.multiplier,
                                 context.margin_a, context.margin_b)

        return StrategyResult(
            max_profit_points=max_profit,
            max_loss_points=max_loss,
            break_even_prices=breakevens,
            payoff_fn=pnl,
            estimated_margin=margin,
        )


# =============================================================================
# CLOSED-FORM FORMULAS
# =============================================================================

def _values(parameters: Mapping[str, Any], *keys: str) -> List[float]:
    return [safe_float(parameters.get(key)) for key in keys]


def _long_call(parameters, snapshot, context):
    k, p = _values(parameters, 'strike', 'premium')
    return StrategyResult(
        max_profit_points=INF,
        max_loss_points=p,
        break_even_prices=[k + p],
        payoff_fn=lambda price: max(0.0, price - k) - p,
    )


def _long_put(parameters, snapshot, context):
    k, p = _values(parameters, 'strike', 'premium')
    return StrategyResult(
        max_profit_points=k - p,
        max_loss_points=p,
        break_even_prices=[k - p],
        payoff_fn=lambda price: max(0.0, k - price) - p,
    )


def _short_call(parameters, snapshot, context):
    k, p = _values(parameters, 'strike', 'premium')
    margin = short_leg_margin(p, max(0.0, k - snapshot.spot), 1.0,
                              context.multiplier, context.margin_a, context.margin_b)
    return StrategyResult(
        max_profit_points=p,
        max_loss_points=INF,
        break_even_prices=[k + p],
        payoff_fn=lambda price: p - max(0.0, price - k),
        estimated_margin=margin,
    )


def _short_put(parameters, snapshot, context):
    k, p = _values(parameters, 'strike', 'premium')
    margin = short_leg_margin(p, max(0.0, snapshot.spot - k), 1.0,
                              context.multiplier, context.margin_a, context.margin_b)
    return StrategyResult(
        max_profit_points=p,
        max_loss_points=k - p,
        break_even_prices=[k - p],
        payoff_fn=lambda price: p - max(0.0, k - price),
        estimated_margin=margin,
    )


def _bull_call_spread(parameters, snapshot, context):
    k1, p1, k2, p2 = _values(parameters, 'lower_strike', 'lower_premium',
                             'higher_strike', 'higher_premium')
    debit = p1 - p2
    return StrategyResult(
        max_profit_points=k2 - k1 - debit,
        max_loss_points=debit,
        break_even_prices=[k1 + debit],
        payoff_fn=lambda price: max(0.0, price - k1) - max(0.0, price - k2) - debit,
    )


def _bull_put_spread(parameters, snapshot, context):
    k1, p1, k2, p2 = _values(parameters, 'lower_strike', 'lower_premium',
                             'higher_strike', 'higher_premium')
    credit = p2 - p1
    return StrategyResult(
        max_profit_points=credit,
        max_loss_points=k2 - k1 - credit,
        break_even_prices=[k2 - credit],
        payoff_fn=lambda price: max(0.0, k1 - price) - max(0.0, k2 - price) + credit,
        estimated_margin=(k2 - k1) * context.multiplier,
    )


def _bear_call_spread(parameters, snapshot, context):
    k1, p1, k2, p2 = _values(parameters, 'lower_strike', 'lower_premium',
                             'higher_strike', 'higher_premium')
    credit = p1 - p2
    return StrategyResult(
        max_profit_points=credit,
        max_loss_points=k2 - k1 - credit,
        break_even_prices=[k1 + credit],
        payoff_fn=lambda price: max(0.0, price - k2) - max(0.0, price - k1) + credit,
        estimated_margin=(k2 - k1) * context.multiplier,
    )


def _bear_put_spread(parameters, snapshot, context):
    k1, p1, k2, p2 = _values(parameters, 'lower_strike', 'lower_premium',
                             'higher_strike', 'higher_premium')
    debit = p2 - p1
    return StrategyResult(
        max_profit_points=k2 - k1 - debit,
        max_loss_points=debit,
        break_even_prices=[k2 - debit],
        payoff_fn=lambda price: max(0.0, k2 - price) - max(0.0, k1 - price) - debit,
    )


def _long_straddle(parameters, snapshot, context):
    k, call_premium, put_premium = _values(parameters, 'strike', 'call_premium', 'put_premium')
    cost = call_premium + put_premium
    return StrategyResult(
        max_profit_points=INF,
        max_loss_points=cost,
        break_even_prices=[k - cost, k + cost],
        payoff_fn=lambda price: max(0.0, price - k) + max(0.0, k - price) - cost,
    )


def _long_strangle(parameters, snapshot, context):
    k1, put_premium, k2, call_premium = _values(parameters, 'lower_strike', 'put_premium',
                                                'higher_strike', 'call_premium')
    cost = put_premium + call_premium
    return StrategyResult(
        max_profit_points=INF,
        max_loss_points=cost,
        break_even_prices=[k1 - cost, k2 + cost],
        payoff_fn=lambda price: max(0.0, k1 - price) + max(0.0, price - k2) - cost,
    )


def _iron_condor(parameters, snapshot, context):
    k1, p1, k2, p2, k3, p3, k4, p4 = _values(
        parameters,
        'put_k1', 'put_k1_premium', 'put_k2', 'put_k2_premium',
        'call_k3', 'call_k3_premium', 'call_k4', 'call_k4_premium',
    )
    credit = p2 + p3 - (p1 + p4)
    spread_width = max(k2 - k1, k4 - k3)

    def payoff(price: float) -> float:
        put_side = max(0.0, k1 - price) - max(0.0, k2 - price)
        call_side = max(0.0, price - k4) - max(0.0, price - k3)
        return put_side + call_side + credit

    return StrategyResult(
        max_profit_points=credit,
        max_loss_points=spread_width - credit,
        break_even_prices=[k2 - credit, k3 + credit],
        payoff_fn=payoff,
        estimated_margin=spread_width * context.multiplier,
    )


def _iron_butterfly(parameters, snapshot, context):
    k1, p1, k2, put_premium, call_premium, k3, p3 = _values(
        parameters,
        'lower_put_k', 'lower_put_premium', 'center_strike',
        'center_put_premium', 'center_call_premium',
        'higher_call_k', 'higher_call_premium',
    )
    credit = put_premium + call_premium - (p1 + p3)
    width = min(k2 - k1, k3 - k2)

    def payoff(price: float) -> float:
        wings = max(0.0, k1 - price) + max(0.0, price - k3)
        body = max(0.0, k2 - price) + max(0.0, price - k2)
        return wings - body + credit

    return StrategyResult(
        max_profit_points=credit,
        max_loss_points=width - credit,
        break_even_prices=[k2 - credit, k2 + credit],
        payoff_fn=payoff,
        estimated_margin=width * context.multiplier,
    )


# =============================================================================
# REGISTRY
# =============================================================================

BUY, SELL = Action.BUY, Action.SELL
CALL, PUT = OptionType.CALL, OptionType.PUT

_BUILT_INS = (
    StrategyDefinition(
        'longCall', 'Long Call', GROUP_SINGLE_LEG, 'strongly bullish',
        (LegTemplate(BUY, CALL, 'strike', 'premium'),), _long_call),
    StrategyDefinition(
        'longPut', 'Long Put', GROUP_SINGLE_LEG, 'strongly bearish',
        (LegTemplate(BUY, PUT, 'strike', 'premium'),), _long_put),
    StrategyDefinition(
        'shortCall', 'Short Call', GROUP_SINGLE_LEG, 'bearish / capped upside',
        (LegTemplate(SELL, CALL, 'strike', 'premium'),), _short_call),
    StrategyDefinition(
        'shortPut', 'Short Put', GROUP_SINGLE_LEG, 'bullish / supported downside',
        (LegTemplate(SELL, PUT, 'strike', 'premium'),), _short_put),
    StrategyDefinition(
        'bullCallSpread', 'Bull Call Spread', GROUP_VERTICAL_SPREAD, 'mildly bullish (debit)',
        (LegTemplate(BUY, CALL, 'lower_strike', 'lower_premium'),
         LegTemplate(SELL, CALL, 'higher_strike', 'higher_premium')), _bull_call_spread),
    StrategyDefinition(
        'bullPutSpread', 'Bull Put Spread', GROUP_VERTICAL_SPREAD, 'mildly bullish (credit)',
        (LegTemplate(BUY, PUT, 'lower_strike', 'lower_premium'),
         LegTemplate(SELL, PUT, 'higher_strike', 'higher_premium')), _bull_put_spread),
    StrategyDefinition(
        'bearCallSpread', 'Bear Call Spread', GROUP_VERTICAL_SPREAD, 'mildly bearish (credit)',
        (LegTemplate(SELL, CALL, 'lower_strike', 'lower_premium'),
         LegTemplate(BUY, CALL, 'higher_strike', 'higher_premium')), _bear_call_spread),
    StrategyDefinition(
        'bearPutSpread', 'Bear Put Spread', GROUP_VERTICAL_SPREAD, 'mildly bearish (debit)',
        (LegTemplate(SELL, PUT, 'lower_strike', 'lower_premium'),
         LegTemplate(BUY, PUT, 'higher_strike', 'higher_premium')), _bear_put_spread),
    StrategyDefinition(
        'longStraddle', 'Long Straddle', GROUP_VOLATILITY_NEUTRAL, 'large move',
        (LegTemplate(BUY, CALL, 'strike', 'call_premium'),
         LegTemplate(BUY, PUT, 'strike', 'put_premium')), _long_straddle),
    StrategyDefinition(
        'longStrangle', 'Long Strangle', GROUP_VOLATILITY_NEUTRAL, 'large move',
        (LegTemplate(BUY, PUT, 'lower_strike', 'put_premium'),
         LegTemplate(BUY, CALL, 'higher_strike', 'call_premium')), _long_strangle),
    StrategyDefinition(
        'ironCondor', 'Iron Condor', GROUP_VOLATILITY_NEUTRAL, 'range bound',
        (LegTemplate(BUY, PUT, 'put_k1', 'put_k1_premium'),
         LegTemplate(SELL, PUT, 'put_k2', 'put_k2_premium'),
         LegTemplate(SELL, CALL, 'call_k3', 'call_k3_premium'),
         LegTemplate(BUY, CALL, 'call_k4', 'call_k4_premium')), _iron_condor),
    StrategyDefinition(
        'ironButterfly', 'Iron Butterfly', GROUP_VOLATILITY_NEUTRAL, 'tight range',
        (LegTemplate(BUY, PUT, 'lower_put_k', 'lower_put_premium'),
         LegTemplate(SELL, PUT, 'center_strike', 'center_put_premium'),
         LegTemplate(SELL, CALL, 'center_strike', 'center_call_premium'),
         LegTemplate(BUY, CALL, 'higher_call_k', 'higher_call_premium')), _iron_butterfly),
)

_PORTFOLIOS = (
    PortfolioStrategy('custom', 'Custom Portfolio', GROUP_PORTFOLIO, 'multi-leg / multi-expiry',
                      legs_key='custom_legs'),
    PortfolioStrategy('simulationA', 'Simulation A', GROUP_PORTFOLIO, 'multi-leg / multi-expiry',
                      legs_key='simulation_a_legs'),
    PortfolioStrategy('simulationB', 'Simulation B', GROUP_PORTFOLIO, 'multi-leg / multi-expiry',
                      legs_key='simulation_b_legs'),
    PortfolioStrategy('simulationC', 'Simulation C', GROUP_PORTFOLIO, 'multi-leg / multi-expiry',
                      legs_key='simulation_c_legs'),
)

STRATEGIES: Dict[str, StrategyDefinition] = {
    strategy.id: strategy for strategy in _BUILT_INS + _PORTFOLIOS
}


def get_strategy(strategy_id: str) -> StrategyDefinition:
    try:
        return STRATEGIES[strategy_id]
    except KeyError:
        raise StrategyNotFoundError(f"Unknown strategy: {strategy_id!r}")


def list_strategies(group: Optional[str] = None) -> List[StrategyDefinition]:
    return [s for s in STRATEGIES.values() if group is None or s.group == group]


def is_portfolio_strategy(strategy_id: str) -> bool:
    return isinstance(STRATEGIES.get(strategy_id), PortfolioStrategy)


def evaluate_strategy(strategy_id: str, parameters: Mapping[str, Any],
                      snapshot: Optional[MarketSnapshot] = None, mode: Any = PricingMode.EXPIRY,
                      now: Optional[datetime] = None,
                      holidays: Optional[Iterable[str]] = None) -> StrategyResult:
    """
    Evaluate a registered strategy, never raising

    Unknown ids and any error inside the calculation are logged and replaced
    by the neutral result (zero extrema, no breakevens, zero margin, flat P&L).

    Args:
        strategy_id: Registry key
        parameters: Strategy inputs (strikes, premiums, leg lists)
        snapshot: Market data; defaults to the spot/rate/vix in ``parameters``
        mode: 'expiry' or 'theoretical'
        now: Evaluation instant, frozen into the P&L function
        holidays: ISO dates skipped by the trading-hour count

    Returns:
        StrategyResult
    """
    try:
        strategy = get_strategy(strategy_id)
        snapshot = snapshot or MarketSnapshot.from_inputs(parameters)
        context = EvaluationContext.resolve(mode, now, holidays)
        return strategy.calculate(parameters, snapshot, context)
    except Exception:
        logger.exception("Strategy %r could not be evaluated, returning neutral result", strategy_id)
        return StrategyResult.neutral()
