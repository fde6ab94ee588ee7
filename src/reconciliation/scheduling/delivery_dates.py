"""Delivery date calculator.

Pure functions deciding which calendar date, and which coarse time window, a
paid order or a subscription delivery lands on. "Today" and the confirmation
instant are always explicit arguments; callers read them from
`reconciliation.scheduling.clock`.

Weekday numbers follow `date.weekday()`: Monday is 0, Sunday is 6.
"""

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from enum import Enum

BUSINESS_DAY_SEARCH_LIMIT = 60
SUBSCRIPTION_SCAN_DAYS = 7
MONTHLY_HORIZON_DAYS = 35
WEEKS_PER_MONTH = 4.33
FALLBACK_WEEKDAY = 0
DEFAULT_BUSINESS_WEEKDAYS = frozenset({0, 1, 2, 3, 4})
DEFAULT_CUTOFF = time(12, 0)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class TimeWindow(Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"


class Frequency(Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


DEFAULT_MONTHLY_COUNTS = {
    Frequency.DAILY: 20,
    Frequency.WEEKLY: 4,
    Frequency.BIWEEKLY: 2,
    Frequency.MONTHLY: 1,
}
UNKNOWN_FREQUENCY_COUNT = 4

# Stored weekday names, as the back-office writes them
WEEKDAYS = {
    "segunda": 0,
    "terca": 1,
    "quarta": 2,
    "quinta": 3,
    "sexta": 4,
    "sabado": 5,
    "domingo": 6,
}

_WEEKDAY_ALIASES = {
    **WEEKDAYS,
    "terça": 1,
    "sábado": 5,
    "monday": 0,
    "tuesday": 1,
    "wednesday": 2,
    "thursday": 3,
    "friday": 4,
    "saturday": 5,
    "sunday": 6,
}

_FREQUENCY_ALIASES = {
    "diaria": Frequency.DAILY,
    "diária": Frequency.DAILY,
    "semanal": Frequency.WEEKLY,
    "quinzenal": Frequency.BIWEEKLY,
    "mensal": Frequency.MONTHLY,
    **{f.value: f for f in Frequency},
}


def parse_weekday(value) -> int | None:
    """Map a stored weekday name to its `date.weekday()` number, or None."""
    if not isinstance(value, str):
        return None
    return _WEEKDAY_ALIASES.get(value.strip().lower())


def parse_frequency(value) -> Frequency | None:
    """Map a stored frequency name (Portuguese or English) to a Frequency."""
    if isinstance(value, Frequency):
        return value
    if not isinstance(value, str):
        return None
    return _FREQUENCY_ALIASES.get(value.strip().lower())


def weekday_name(day: date) -> str:
    return next(name for name, number in WEEKDAYS.items() if number == day.weekday())


# ---------------------------------------------------------------------------
# Business days
# ---------------------------------------------------------------------------
def is_business_day(
    day: date,
    holidays: Iterable[date] = (),
    business_weekdays: Iterable[int] = DEFAULT_BUSINESS_WEEKDAYS,
) -> bool:
    return day.weekday() in set(business_weekdays) and day not in set(holidays)


def next_business_day(
    day: date,
    holidays: Iterable[date] = (),
    business_weekdays: Iterable[int] = DEFAULT_BUSINESS_WEEKDAYS,
) -> date:
    """Return `day` itself when it is a business day, else the first one after it.

    Raises ValueError when no business day exists within
    BUSINESS_DAY_SEARCH_LIMIT days, which only happens with a holiday list or
    weekday set that blocks the whole window.
    """
    holidays = set(holidays)
    weekdays = set(business_weekdays)
    candidate = day
    for _ in range(BUSINESS_DAY_SEARCH_LIMIT):
        if candidate.weekday() in weekdays and candidate not in holidays:
            return candidate
        candidate += timedelta(days=1)
    raise ValueError(f"No business day within {BUSINESS_DAY_SEARCH_LIMIT} days of {day.isoformat()}")


# ---------------------------------------------------------------------------
# One-time orders
# ---------------------------------------------------------------------------
def order_delivery_date(
    confirmed_at: datetime,
    cutoff: time = DEFAULT_CUTOFF,
    holidays: Iterable[date] = (),
    business_weekdays: Iterable[int] = DEFAULT_BUSINESS_WEEKDAYS,
    requested_window: str | None = None,
) -> tuple[date, str]:
    """Delivery date and window for an order confirmed at `confirmed_at`.

    `confirmed_at` must already be expressed in the business's local time.
    Confirmations at or before the cutoff minute are delivered the same day in
    the afternoon; later ones the next day in the morning. The candidate is
    then moved forward to a business day. A window already chosen by the
    caller is kept as is.
    """
    minute_of_day = confirmed_at.hour * 60 + confirmed_at.minute
    cutoff_minute = cutoff.hour * 60 + cutoff.minute

    if minute_of_day <= cutoff_minute:
        candidate = confirmed_at.date()
        window = TimeWindow.AFTERNOON.value
    else:
        candidate = confirmed_at.date() + timedelta(days=1)
        window = TimeWindow.MORNING.value

    delivery_date = next_business_day(candidate, holidays, business_weekdays)
    return delivery_date, requested_window or window


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------
def target_weekdays(weekday: str | None, custom_weekdays: Iterable[str] | None = None) -> set[int]:
    """Weekdays a subscription delivers on.

    A non-empty custom set wins over the single weekday; Monday is used when
    neither resolves to a known weekday name.
    """
    resolved = {parse_weekday(name) for name in (custom_weekdays or [])} - {None}
    if not resolved:
        single = parse_weekday(weekday)
        if single is not None:
            resolved = {single}
    return resolved or {FALLBACK_WEEKDAY}


def next_subscription_delivery_date(
    weekday: str | None,
    custom_weekdays: Iterable[str] | None,
    today: date,
) -> date:
    """First date after `today` falling on one of the subscription's weekdays."""
    targets = target_weekdays(weekday, custom_weekdays)
    for offset in range(1, SUBSCRIPTION_SCAN_DAYS + 1):
        candidate = today + timedelta(days=offset)
        if candidate.weekday() in targets:
            return candidate
    return today + timedelta(days=SUBSCRIPTION_SCAN_DAYS)


def monthly_delivery_dates(
    weekday: str | None,
    custom_weekdays: Iterable[str] | None,
    count: int,
    today: date,
) -> list[date]:
    """Up to `count` delivery dates after `today`, within MONTHLY_HORIZON_DAYS."""
    targets = target_weekdays(weekday, custom_weekdays)
    dates: list[date] = []
    for offset in range(1, MONTHLY_HORIZON_DAYS + 1):
        if len(dates) >= count:
            break
        candidate = today + timedelta(days=offset)
        if candidate.weekday() in targets:
            dates.append(candidate)
    return dates


def monthly_delivery_count(
    frequency: str | Frequency | None,
    custom_weekdays: Iterable[str] | None = None,
    is_emergency: bool = False,
    counts: dict[Frequency, int] | None = None,
) -> int:
    """How many deliveries one paid month covers."""
    if is_emergency:
        return 1
    custom = list(custom_weekdays or [])
    if custom:
        return round(len(custom) * WEEKS_PER_MONTH)
    counts = counts if counts is not None else DEFAULT_MONTHLY_COUNTS
    resolved = parse_frequency(frequency)
    if resolved is None:
        return UNKNOWN_FREQUENCY_COUNT
    return counts.get(resolved, UNKNOWN_FREQUENCY_COUNT)
