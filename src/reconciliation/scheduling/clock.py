"""Injectable clock for reconciliation decisions.

Every "now" read by the reconciliation flow goes through `now()`, so tests can
pin the instant with `set_clock()` and restore it with `reset_clock()`.
"""

from collections.abc import Callable
from datetime import UTC, date, datetime
from zoneinfo import ZoneInfo

_current_clock: Callable[[], datetime] | None = None


def _system_clock() -> datetime:
    return datetime.now(UTC)


def now() -> datetime:
    """Current instant as an aware UTC datetime."""
    clock = _current_clock or _system_clock
    return clock().astimezone(UTC)


def local_now(zone: ZoneInfo) -> datetime:
    return now().astimezone(zone)


def today(zone: ZoneInfo) -> date:
    return local_now(zone).date()


def set_clock(clock: Callable[[], datetime] | datetime) -> None:
    """Override the clock with a callable or a fixed instant (useful for tests)."""
    global _current_clock
    if isinstance(clock, datetime):
        fixed = clock
        _current_clock = lambda: fixed  # noqa: E731
    else:
        _current_clock = clock


def reset_clock() -> None:
    """Go back to the system clock."""
    global _current_clock
    _current_clock = None
