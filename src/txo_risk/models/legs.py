"""
Option leg model for TXO strategies
Leg representation, permissive numeric coercion and broker text import
"""

import logging
import math
import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


class LegParseError(Exception):
    """Raised by strict leg construction when a field cannot be interpreted"""
    pass


class Action(str, Enum):
    BUY = "buy"
    SELL = "sell"

    @property
    def sign(self) -> int:
        """+1 for long positions, -1 for short positions"""
        return 1 if self is Action.BUY else -1


class OptionType(str, Enum):
    CALL = "call"
    PUT = "put"


_ACTION_ALIASES = {
    'buy': Action.BUY, 'long': Action.BUY, 'b': Action.BUY,
    'sell': Action.SELL, 'short': Action.SELL, 's': Action.SELL,
}

_TYPE_ALIASES = {
    'call': OptionType.CALL, 'c': OptionType.CALL, 'ce': OptionType.CALL,
    'put': OptionType.PUT, 'p': OptionType.PUT, 'pe': OptionType.PUT,
}


def safe_float(value: Any, default: float = 0.0) -> float:
    """
    Permissive numeric coercion used for every user-entered field

    Strips thousands separators ("32,000" -> 32000.0) and falls back to
    ``default`` for None, blanks and anything float() rejects. Never raises.

    Args:
        value: Raw field value (number, string, None...)
        default: Value returned when coercion fails

    Returns:
        Parsed float or default
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return default if math.isnan(value) else float(value)

    text = str(value).replace(',', '').strip()
    match = re.match(r'^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?', text)
    if not match:
        logger.debug("Could not coerce %r to a number, using %s", value, default)
        return default
    return float(match.group(0))


def parse_action(value: Any) -> Action:
    if isinstance(value, Action):
        return value
    try:
        return _ACTION_ALIASES[str(value).strip().lower()]
    except KeyError:
        raise LegParseError(f"Unknown leg action: {value!r}")


def parse_option_type(value: Any) -> OptionType:
    if isinstance(value, OptionType):
        return value
    try:
        return _TYPE_ALIASES[str(value).strip().lower()]
    except KeyError:
        raise LegParseError(f"Unknown option type: {value!r}")


@dataclass(frozen=True)
class Leg:
    """
    One option position

    ``expiry`` is either an ISO date string (YYYY-MM-DD) or an exchange
    contract code such as ``202602W1``; None means "no specific contract".
    Legs are immutable: edits produce a new leg through ``with_changes``.
    """
    id: int
    action: Action
    option_type: OptionType
    strike: float
    premium: float = 0.0
    quantity: float = 1.0
    expiry: Optional[str] = None

    @property
    def direction(self) -> int:
        return self.action.sign

    @property
    def is_short(self) -> bool:
        return self.action is Action.SELL

    def intrinsic_value(self, price: float) -> float:
        """Settlement value of one unit at the given underlying price"""
        if self.option_type is OptionType.CALL:
            return max(0.0, price - self.strike)
        return max(0.0, self.strike - price)

    def with_changes(self, **changes) -> 'Leg':
        """Return an edited copy; the id is part of the identity and cannot change"""
        if 'id' in changes and changes['id'] != self.id:
            raise LegParseError("Leg id is immutable")
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'action': self.action.value,
            'type': self.option_type.value,
            'strike': self.strike,
            'premium': self.premium,
            'quantity': self.quantity,
            'expiry_code': self.expiry,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], default_id: int = 0) -> 'Leg':
        """
        Build a leg from a loosely-typed mapping (UI form / persisted state)

        Numeric fields go through safe_float; quantity defaults to 1.
        Action and type must be recognisable, otherwise LegParseError.
        """
        expiry = data.get('expiry_code', data.get('expiry'))
        return cls(
            id=int(safe_float(data.get('id'), default_id)),
            action=parse_action(data.get('action', 'buy')),
            option_type=parse_option_type(data.get('type', data.get('option_type', 'call'))),
            strike=safe_float(data.get('strike')),
            premium=safe_float(data.get('premium')),
            quantity=safe_float(data.get('quantity'), 1.0),
            expiry=str(expiry) if expiry else None,
        )


def coerce_legs(raw_legs: Optional[Iterable[Any]]) -> List[Leg]:
    """Accept a mix of Leg objects and mappings and return Leg objects"""
    legs = []
    for position, raw in enumerate(raw_legs or [], start=1):
        if isinstance(raw, Leg):
            legs.append(raw)
        else:
            legs.append(Leg.from_dict(raw, default_id=position))
    return legs


def expand_unit_legs(legs: Iterable[Leg]) -> List[Leg]:
    """
    Expand each leg into ``ceil(quantity)`` copies of quantity 1

    A zero or missing quantity still yields one copy.
    """
    expanded = []
    for leg in legs:
        copies = int(math.ceil(leg.quantity)) if leg.quantity else 1
        expanded.extend(replace(leg, quantity=1.0) for _ in range(max(copies, 1)))
    return expanded


def next_leg_id(legs: Iterable[Leg]) -> int:
    ids = [leg.id for leg in legs]
    return max(ids) + 1 if ids else 1


# 【202602W1】 32500 Long Put 4口 (每口權利金164)
IMPORT_LINE_PATTERN = re.compile(
    r'【(.*?)】\s*(\d+)\s*(Long|Short)\s*(Call|Put)\s*(\d+)口\s*\(每口權利金([\d.]+)\)',
    re.IGNORECASE,
)


def parse_import_text(text: str, start_id: int = 1) -> List[Leg]:
    """
    Parse broker position text into legs

    Each matching line looks like ``【202602W1】 32500 Long Put 4口 (每口權利金164)``
    (contract code, strike, side, type, lots, premium per lot). Lines that do
    not match are skipped.

    Args:
        text: Multi-line text pasted from the broker
        start_id: Id assigned to the first parsed leg

    Returns:
        List of legs with consecutive ids
    """
    legs = []
    next_id = start_id
    for line in text.splitlines():
        if not line.strip():
            continue
        match = IMPORT_LINE_PATTERN.search(line)
        if not match:
            logger.debug("Skipping unrecognised import line: %s", line.strip())
            continue
        legs.append(Leg(
            id=next_id,
            action=parse_action(match.group(3)),
            option_type=parse_option_type(match.group(4)),
            strike=float(match.group(2)),
            premium=float(match.group(6)),
            quantity=float(match.group(5)),
            expiry=match.group(1),
        ))
        next_id += 1
    return legs
