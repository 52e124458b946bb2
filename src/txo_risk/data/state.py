"""
Application state for the TXO risk engine

The selected strategy, expiry date, inputs and view filters live in one
explicit AppState value. Persistence goes through an injected StateStore.
"""

import copy
import functools
import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Union

import yaml

from ..config.settings import ConfigurationError, get_config
from ..models.expiry_calendar import days_until_expiry, default_expiry_date, is_expired
from ..models.greeks import PortfolioGreeks, strategy_greeks
from ..models.legs import Leg, coerce_legs, next_leg_id, safe_float
from ..models.payoff import MarketSnapshot, PricingMode, StrategyResult
from ..models.strategies import (
    PortfolioStrategy,
    StrategyDefinition,
    evaluate_strategy,
    get_strategy,
)

logger = logging.getLogger(__name__)

DEFAULT_STRATEGY_ID = "ironCondor"
RESET_STRATEGY_ID = "custom"
ALL_EXPIRIES = "ALL"

# Strike inputs of the built-in strategies, shifted when the market moves
SHIFTABLE_STRIKE_FIELDS = (
    'strike', 'lower_strike', 'higher_strike', 'middle_strike',
    'put_k1', 'put_k2', 'call_k3', 'call_k4',
    'lower_put_k', 'center_strike', 'higher_call_k',
)

PORTFOLIO_LEG_KEYS = ('custom_legs', 'simulation_a_legs', 'simulation_b_legs', 'simulation_c_legs')


def _default_inputs() -> Dict[str, Any]:
    return get_config().defaults.as_inputs()


@dataclass
class AppState:
    """
    Everything the user has selected or entered

    Methods never modify the instance; they return an updated copy.
    """
    strategy_id: str = DEFAULT_STRATEGY_ID
    expiry_date: str = field(default_factory=default_expiry_date)
    inputs: Dict[str, Any] = field(default_factory=_default_inputs)
    analysis_mode: str = PricingMode.EXPIRY.value
    expiry_filter: str = ALL_EXPIRIES

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        inputs = copy.deepcopy(self.inputs)
        for key in PORTFOLIO_LEG_KEYS:
            if key in inputs:
                inputs[key] = [leg.to_dict() if isinstance(leg, Leg) else leg for leg in inputs[key]]
        return {
            'strategy_id': self.strategy_id,
            'expiry_date': self.expiry_date,
            'inputs': inputs,
            'analysis_mode': self.analysis_mode,
            'expiry_filter': self.expiry_filter,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AppState':
        """Restore a persisted state; missing inputs take their default values"""
        inputs = _default_inputs()
        inputs.update(copy.deepcopy(data.get('inputs') or {}))
        return cls(
            strategy_id=data.get('strategy_id') or DEFAULT_STRATEGY_ID,
            expiry_date=str(data.get('expiry_date') or default_expiry_date()),
            inputs=inputs,
            analysis_mode=data.get('analysis_mode') or PricingMode.EXPIRY.value,
            expiry_filter=data.get('expiry_filter') or ALL_EXPIRIES,
        )

    # -------------------------------------------------------------------------
    # Strategy selection and legs
    # -------------------------------------------------------------------------

    @property
    def strategy(self) -> StrategyDefinition:
        return get_strategy(self.strategy_id)

    @property
    def is_portfolio(self) -> bool:
        return isinstance(self.strategy, PortfolioStrategy)

    @property
    def legs_key(self) -> Optional[str]:
        strategy = self.strategy
        return strategy.legs_key if isinstance(strategy, PortfolioStrategy) else None

    def portfolio_legs(self) -> List[Leg]:
        if not self.legs_key:
            return []
        return coerce_legs(self.inputs.get(self.legs_key) or [])

    def select_strategy(self, strategy_id: str) -> 'AppState':
        """Switch strategy; the expiry filter goes back to ALL"""
        get_strategy(strategy_id)
        return replace(self, strategy_id=strategy_id, expiry_filter=ALL_EXPIRIES)

    def with_inputs(self, **changes) -> 'AppState':
        inputs = copy.deepcopy(self.inputs)
        inputs.update(changes)
        return replace(self, inputs=inputs)

    def with_legs(self, legs: Iterable[Leg]) -> 'AppState':
        """Replace the active portfolio's leg list"""
        if not self.legs_key:
            raise ConfigurationError(f"Strategy {self.strategy_id!r} has no editable legs")
        return self.with_inputs(**{self.legs_key: [leg.to_dict() for leg in legs]})

    def add_leg(self, leg: Leg) -> 'AppState':
        """Append a leg, assigning the next free id when its id is unset or taken"""
        legs = self.portfolio_legs()
        if not leg.id or any(existing.id == leg.id for existing in legs):
            leg = replace(leg, id=next_leg_id(legs))
        return self.with_legs(legs + [leg])

    def remove_leg(self, leg_id: int) -> 'AppState':
        return self.with_legs([leg for leg in self.portfolio_legs() if leg.id != leg_id])

    def update_leg(self, leg_id: int, **changes) -> 'AppState':
        return self.with_legs([
            leg.with_changes(**changes) if leg.id == leg_id else leg
            for leg in self.portfolio_legs()
        ])

    def with_filter(self, expiry_code: str) -> 'AppState':
        return replace(self, expiry_filter=expiry_code or ALL_EXPIRIES)

    # -------------------------------------------------------------------------
    # Derived values
    # -------------------------------------------------------------------------

    def available_expiries(self, now: Optional[datetime] = None) -> List[str]:
        if not self.is_portfolio:
            return []
        return available_expiries(self.portfolio_legs(), now)

    def active_inputs(self) -> Dict[str, Any]:
        """Inputs with the active portfolio narrowed to the selected expiry"""
        if not self.is_portfolio or self.expiry_filter == ALL_EXPIRIES:
            return self.inputs
        inputs = dict(self.inputs)
        filtered = filter_legs_by_expiry(self.portfolio_legs(), self.expiry_filter)
        inputs[self.legs_key] = filtered
        return inputs

    def time_reference(self) -> str:
        """Expiry driving the countdown, Greeks and amplitude"""
        if self.is_portfolio and self.expiry_filter != ALL_EXPIRIES:
            return self.expiry_filter
        return self.expiry_date

    def snapshot(self) -> MarketSnapshot:
        return MarketSnapshot.from_inputs(self.inputs)

    def evaluate(self, now: Optional[datetime] = None,
                 holidays: Optional[Iterable[str]] = None) -> StrategyResult:
        return evaluate_strategy(self.strategy_id, self.active_inputs(), self.snapshot(),
                                 self.analysis_mode, now, holidays)

    def greeks(self, now: Optional[datetime] = None,
               holidays: Optional[Iterable[str]] = None) -> PortfolioGreeks:
        return strategy_greeks(self.strategy, self.active_inputs(), self.snapshot(),
                               self.time_reference(), now, holidays)

    def reset(self, now: Optional[datetime] = None) -> 'AppState':
        """Default inputs and expiry, keeping every portfolio leg list"""
        inputs = _default_inputs()
        for key in PORTFOLIO_LEG_KEYS:
            inputs[key] = copy.deepcopy(self.inputs.get(key) or [])
        return AppState(strategy_id=RESET_STRATEGY_ID, expiry_date=default_expiry_date(now),
                        inputs=inputs)


# =============================================================================
# EXPIRY HELPERS
# =============================================================================

def available_expiries(legs: Iterable[Leg], now: Optional[datetime] = None) -> List[str]:
    """
    Distinct contract codes of a leg set, nearest expiry first

    Codes expiring within 0.1 day of each other are ordered alphabetically.
    """
    codes = []
    for leg in legs:
        if leg.expiry and leg.expiry not in codes:
            codes.append(leg.expiry)

    days = {code: days_until_expiry(code, now) for code in codes}

    def compare(a: str, b: str) -> int:
        if abs(days[a] - days[b]) < 0.1:
            return (a > b) - (a < b)
        return -1 if days[a] < days[b] else 1

    return sorted(codes, key=functools.cmp_to_key(compare))


def filter_legs_by_expiry(legs: Iterable[Leg], expiry_code: Optional[str]) -> List[Leg]:
    if not expiry_code or expiry_code == ALL_EXPIRIES:
        return list(legs)
    return [leg for leg in legs if leg.expiry == expiry_code]


def roll_expired_expiry(state: AppState, now: Optional[datetime] = None) -> AppState:
    """Move a passed expiry date (after 13:45) to the next weekly settlement"""
    if is_expired(state.expiry_date, now):
        rolled = default_expiry_date(now)
        logger.info("Expiry %s has passed, rolling to %s", state.expiry_date, rolled)
        return replace(state, expiry_date=rolled)
    return state


# =============================================================================
# MARKET UPDATES
# =============================================================================

@dataclass(frozen=True)
class MarketQuote:
    """
    Quote from an external market-data source

    ``rate`` is a raw decimal (0.0175 for 1.75%); None keeps the current rate.
    """
    price: float
    implied_vol: float
    rate: Optional[float] = None


def _round_half_up(value: float) -> float:
    return math.floor(value + 0.5)


def apply_market_quote(state: AppState, quote: MarketQuote, shift_strikes: bool = False,
                       now: Optional[datetime] = None) -> AppState:
    """
    Update spot, volatility and rate from a quote

    With ``shift_strikes`` the strike inputs of the built-in strategies move
    by the price change rounded to the strike spacing, and the expiry date
    goes back to the nearest weekly settlement. Portfolio leg lists are
    never touched.
    """
    inputs = copy.deepcopy(state.inputs)
    old_price = safe_float(inputs.get('current_price'))
    price = safe_float(quote.price)

    inputs['current_price'] = price
    inputs['vix'] = safe_float(quote.implied_vol)
    if quote.rate is not None:
        inputs['risk_free_rate'] = round(safe_float(quote.rate) * 100.0, 3)

    expiry_date = state.expiry_date
    if shift_strikes:
        spacing = get_config().market.strike_spacing
        shift = _round_half_up((price - old_price) / spacing) * spacing
        for key in SHIFTABLE_STRIKE_FIELDS:
            value = inputs.get(key)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                inputs[key] = value + shift
        expiry_date = default_expiry_date(now)
        logger.info("Market moved %.2f points, strikes shifted by %+d", price - old_price, int(shift))

    return replace(state, inputs=inputs, expiry_date=expiry_date)


# =============================================================================
# PERSISTENCE
# =============================================================================

class StateStore(Protocol):
    """Load/save collaborator for AppState"""

    def load(self) -> Optional[AppState]:
        ...

    def save(self, state: AppState) -> None:
        ...

    def clear(self) -> None:
        ...


class MemoryStateStore:
    """In-process store, holding a serialized copy"""

    def __init__(self, initial: Optional[AppState] = None):
        self._data: Optional[Dict[str, Any]] = initial.to_dict() if initial else None

    def load(self) -> Optional[AppState]:
        return AppState.from_dict(self._data) if self._data is not None else None

    def save(self, state: AppState) -> None:
        self._data = state.to_dict()

    def clear(self) -> None:
        self._data = None


class YamlStateStore:
    """Persists the state as a YAML document"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[AppState]:
        if not self.path.exists():
            return None
        try:
            with open(self.path, 'r', encoding='utf-8') as file:
                data = yaml.safe_load(file)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Error parsing saved state {self.path}: {e}")
        if not isinstance(data, dict):
            logger.warning("Ignoring saved state without a mapping root: %s", self.path)
            return None
        return AppState.from_dict(data)

    def save(self, state: AppState) -> None:
        """Write to a sibling temporary file, then swap it into place"""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_name(self.path.name + '.tmp')
        try:
            with open(temp_path, 'w', encoding='utf-8') as file:
                yaml.safe_dump(state.to_dict(), file, allow_unicode=True, sort_keys=False)
            temp_path.replace(self.path)
        except Exception:
            temp_path.unlink(missing_ok=True)
            raise

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


def load_state(store: StateStore) -> AppState:
    """Saved state from the store, or a fresh default state"""
    return store.load() or AppState()
