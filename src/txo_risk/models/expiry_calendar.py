"""
Exchange calendar and time-to-expiry engine for TXO options

TXO trades a day session (08:45-13:45) and a night session (15:00-05:00),
so time to expiry is measured in trading hours rather than calendar days.
Weekly contracts settle on Wednesdays at 13:30.
"""

import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional, Set, Union

import pytz

from ..config.settings import get_config

logger = logging.getLogger(__name__)

ExpiryRef = Union[str, date, datetime]

# Exchange session schedule (hours as fractions of the local clock)
SESSION_HOURS_PER_DAY = 19.0        # 5h day session + 14h night session
DAY_SESSION_OPEN = 8.75             # 08:45
DAY_SESSION_CLOSE = 13.75           # 13:45
NIGHT_SESSION_OPEN = 15.0           # 15:00
NIGHT_SESSION_CLOSE = 29.0          # 05:00 next day
NIGHT_SESSION_HOURS = 14.0
SETTLEMENT_HOUR = 13.5              # 13:30
SETTLEMENT_DAY_HOURS = 4.75         # 08:45 -> 13:30 on the settlement day

SETTLEMENT_TIME = time(13, 30)      # expiry-hour computations
CLOSE_TIME = time(13, 45)           # date ordering and day counts

WEDNESDAY = 2

CONTRACT_CODE_PATTERN = re.compile(r'^(\d{4})(\d{2})([WF]\d)?$')


def local_now(now: Optional[datetime] = None) -> datetime:
    """
    Naive exchange-local wall clock

    An explicit ``now`` is returned as is (aware values are converted to the
    configured exchange timezone first); otherwise the current time in that
    timezone is used.
    """
    if now is not None and now.tzinfo is None:
        return now
    tz = pytz.timezone(get_config().calendar.timezone)
    if now is None:
        return datetime.now(tz).replace(tzinfo=None)
    return now.astimezone(tz).replace(tzinfo=None)


def _configured_holidays(holidays: Optional[Iterable[str]]) -> Set[str]:
    if holidays is None:
        holidays = get_config().calendar.holidays
    return {str(day) for day in holidays}


# =============================================================================
# CONTRACT CODES
# =============================================================================

def wednesdays_of_month(year: int, month: int):
    """All Wednesdays of the given month, in order"""
    first = date(year, month, 1)
    offset = (WEDNESDAY - first.weekday()) % 7
    current = first + timedelta(days=offset)
    days = []
    while current.month == month:
        days.append(current)
        current += timedelta(days=7)
    return days


def parse_contract_code(code: Optional[str], now: Optional[datetime] = None) -> datetime:
    """
    Map an exchange contract code to its settlement date (at 13:45)

    Code format: YYYYMM[Wn|Fn]
    - no suffix: monthly contract, 3rd Wednesday of the month
    - Wn: n-th Wednesday of the month
    - Fn: n-th Wednesday + 2 calendar days (sorts between Wn and Wn+1)
    Out-of-range week numbers use the last Wednesday of the month.

    Unparseable codes fail open: ``now`` is returned and a warning logged.

    Args:
        code: Contract code such as '202602W1'
        now: Fallback instant (defaults to the exchange-local clock)

    Returns:
        Settlement datetime
    """
    match = CONTRACT_CODE_PATTERN.match(code.strip()) if isinstance(code, str) else None
    month = int(match.group(2)) if match else 0
    if not match or not 1 <= month <= 12:
        logger.warning("Unparseable contract code %r, falling back to now", code)
        return local_now(now)

    year = int(match.group(1))
    suffix = match.group(3)
    wednesdays = wednesdays_of_month(year, month)

    if not suffix:
        target = wednesdays[2] if len(wednesdays) > 2 else wednesdays[-1]
    else:
        index = int(suffix[1:]) - 1
        base = wednesdays[index] if 0 <= index < len(wednesdays) else wednesdays[-1]
        target = base if suffix[0] == 'W' else base + timedelta(days=2)

    return datetime.combine(target, CLOSE_TIME)


def resolve_expiry_date(expiry_ref: Optional[ExpiryRef], now: Optional[datetime] = None) -> date:
    """
    Calendar date of an expiry reference

    Accepts a date, a datetime, an ISO 'YYYY-MM-DD' string or a contract code.
    Anything else resolves to today (same fail-open rule as contract codes).
    """
    if isinstance(expiry_ref, datetime):
        return expiry_ref.date()
    if isinstance(expiry_ref, date):
        return expiry_ref
    if isinstance(expiry_ref, str) and '-' in expiry_ref:
        try:
            return date.fromisoformat(expiry_ref.strip()[:10])
        except ValueError:
            logger.warning("Unparseable expiry date %r, falling back to now", expiry_ref)
            return local_now(now).date()
    return parse_contract_code(expiry_ref, now).date()


# =============================================================================
# TIME TO EXPIRY
# =============================================================================

def _hour_fraction(moment: datetime) -> float:
    return moment.hour + moment.minute / 60.0 + moment.second / 3600.0


def remaining_trading_hours(expiry_ref: Optional[ExpiryRef], now: Optional[datetime] = None,
                            holidays: Optional[Iterable[str]] = None) -> float:
    """
    Trading hours left until settlement (13:30 on the expiry date)

    Rules:
    - at or after settlement: 0
    - on the settlement day itself: max(0, 13.5 - current hour)
    - otherwise: full intervening trading days x 19h, plus what remains of
      today's sessions, plus the 4.75h settlement-day session

    Today's remainder depends on the clock: before 08:45 a full 19h day;
    during the day session the rest of it plus the 14h night session;
    in the 13:45-15:00 break the 14h night session; in the night session the
    hours up to 05:00.

    Intervening days run from tomorrow up to (excluding) the settlement date
    and skip weekends and the holiday set.

    Args:
        expiry_ref: Contract code, ISO date, date or datetime
        now: Current instant (defaults to the exchange-local clock)
        holidays: ISO dates to skip; None uses the configured calendar

    Returns:
        Remaining trading hours (>= 0)
    """
    now = local_now(now)
    expiry_date = resolve_expiry_date(expiry_ref, now)
    settlement = datetime.combine(expiry_date, SETTLEMENT_TIME)

    if now >= settlement:
        return 0.0

    holiday_set = _configured_holidays(holidays)

    full_days = 0
    cursor = now.date() + timedelta(days=1)
    while cursor < expiry_date:
        if cursor.weekday() < 5 and cursor.isoformat() not in holiday_set:
            full_days += 1
        cursor += timedelta(days=1)

    current_hour = _hour_fraction(now)

    if now.date() == expiry_date:
        return max(0.0, SETTLEMENT_HOUR - current_hour)

    if current_hour < DAY_SESSION_OPEN:
        today_remaining = SESSION_HOURS_PER_DAY
    elif current_hour < DAY_SESSION_CLOSE:
        today_remaining = DAY_SESSION_CLOSE - current_hour + NIGHT_SESSION_HOURS
    elif current_hour < NIGHT_SESSION_OPEN:
        today_remaining = NIGHT_SESSION_HOURS
    else:
        today_remaining = NIGHT_SESSION_CLOSE - current_hour

    total_hours = full_days * SESSION_HOURS_PER_DAY + today_remaining + SETTLEMENT_DAY_HOURS
    return max(0.0, total_hours)


def hours_to_trading_days(hours: float) -> float:
    return hours / SESSION_HOURS_PER_DAY


def hours_to_years(hours: float) -> float:
    """Trading hours -> year fraction used by the pricer (hours / 19 / 365)"""
    return max(hours_to_trading_days(hours), 0.0) / 365.0


def trading_days_until(date_or_code: Optional[ExpiryRef], now: Optional[datetime] = None) -> float:
    """
    Business days (Mon-Fri, holidays ignored) from today to the target date

    Counts days in (today, target]. Same day gives 0.5, a past date 0.
    """
    today = local_now(now).date()
    target = resolve_expiry_date(date_or_code, now)

    if target < today:
        return 0.0
    if target == today:
        return 0.5

    count = 0
    current = today + timedelta(days=1)
    while current <= target:
        if current.weekday() < 5:
            count += 1
        current += timedelta(days=1)
    return float(count)


def days_until_expiry(date_or_code: Optional[ExpiryRef], now: Optional[datetime] = None) -> float:
    """Fractional calendar days until 13:45 on the expiry date; negative once past"""
    now = local_now(now)
    target = datetime.combine(resolve_expiry_date(date_or_code, now), CLOSE_TIME)
    return (target - now).total_seconds() / 86400.0


def is_expired(expiry_ref: Optional[ExpiryRef], now: Optional[datetime] = None) -> bool:
    """True once the 13:45 close of the expiry date has passed"""
    return days_until_expiry(expiry_ref, now) < 0


def default_expiry_date(now: Optional[datetime] = None) -> str:
    """
    Nearest weekly settlement date as 'YYYY-MM-DD'

    The coming Wednesday; on a Wednesday from 13:00 onwards, the next one.
    """
    now = local_now(now)
    days_ahead = (WEDNESDAY - now.weekday()) % 7
    if days_ahead == 0 and now.hour >= 13:
        days_ahead = 7
    return (now.date() + timedelta(days=days_ahead)).isoformat()
