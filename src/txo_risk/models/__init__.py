"""
Models package for the TXO strategy risk engine
"""

from .legs import Action, Leg, LegParseError, OptionType, parse_import_text, safe_float
from .black_scholes import PricingResult, norm_cdf, norm_pdf, price_and_greeks
from .expiry_calendar import (
    days_until_expiry,
    default_expiry_date,
    parse_contract_code,
    remaining_trading_hours,
    trading_days_until,
)
from .payoff import MarketSnapshot, PricingMode, StrategyResult, estimate_margin, payoff_curve
from .strategies import (
    EvaluationContext,
    StrategyDefinition,
    StrategyNotFoundError,
    evaluate_strategy,
    get_strategy,
    list_strategies,
)
from .greeks import PortfolioGreeks, aggregate_portfolio_greeks

__all__ = [
    'Action',
    'Leg',
    'LegParseError',
    'OptionType',
    'parse_import_text',
    'safe_float',
    'PricingResult',
    'norm_cdf',
    'norm_pdf',
    'price_and_greeks',
    'days_until_expiry',
    'default_expiry_date',
    'parse_contract_code',
    'remaining_trading_hours',
    'trading_days_until',
    'MarketSnapshot',
    'PricingMode',
    'StrategyResult',
    'estimate_margin',
    'payoff_curve',
    'EvaluationContext',
    'StrategyDefinition',
    'StrategyNotFoundError',
    'evaluate_strategy',
    'get_strategy',
    'list_strategies',
    'PortfolioGreeks',
    'aggregate_portfolio_greeks',
]
