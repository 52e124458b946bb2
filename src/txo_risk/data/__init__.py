"""
Position analysis and application state package for the TXO strategy risk engine
"""

from .options_analyzer import (
    PositionAnalyzer,
    StrategyAssessment,
    analyze_legs,
    assess_strategy,
    expected_amplitude,
    summarize_leg_analysis,
)
from .state import (
    AppState,
    MarketQuote,
    MemoryStateStore,
    StateStore,
    YamlStateStore,
    apply_market_quote,
    available_expiries,
    filter_legs_by_expiry,
    load_state,
    roll_expired_expiry,
)

__all__ = [
    'PositionAnalyzer',
    'StrategyAssessment',
    'analyze_legs',
    'assess_strategy',
    'expected_amplitude',
    'summarize_leg_analysis',
    'AppState',
    'MarketQuote',
    'MemoryStateStore',
    'StateStore',
    'YamlStateStore',
    'apply_market_quote',
    'available_expiries',
    'filter_legs_by_expiry',
    'load_state',
    'roll_expired_expiry',
]
