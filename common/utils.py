from __future__ import annotations

from typing import Callable, Iterable, Optional, Tuple, TypeVar, Union
from datetime import date, datetime, time, timedelta, timezone


T = TypeVar("T")
Moment = Union[date, datetime]

# ±days searched around a requested date when looking for alternatives
AVAILABILITY_WINDOW_DAYS = 7


def parse_iso8601(ts: str) -> datetime:
    """
    Parse an ISO-8601 timestamp with optional 'Z'. Naive results are taken as UTC.
    Fractional seconds of any length are accepted (catalogs emit 3 or 6 digits).
    """
    ts = ts.strip()
    if ts.endswith("Z"):
        ts = ts[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(ts)
    except ValueError:
        # Python < 3.11 only understands 3/6 digit fractions
        head, _, frac = ts.partition(".")
        digits = "".join(ch for ch in frac if ch.isdigit())
        tz = frac[len(digits):]
        dt = datetime.fromisoformat(f"{head}.{(digits + '000000')[:6]}{tz}" if digits else head + tz)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def parse_date(value: Union[str, date, datetime]) -> date:
    """Accept 'YYYY-MM-DD', a full ISO timestamp, or a date/datetime."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) == 10:
        return date.fromisoformat(text)
    return parse_iso8601(text).date()


def to_iso_z(dt: datetime) -> str:
    """UTC timestamp as '2023-01-01T00:00:00.000Z'."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def at_time(day: date, when: Optional[time] = None) -> datetime:
    """Combine a date and optional time-of-day into an aware UTC datetime (midnight default)."""
    when = when or time(0, 0)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return datetime.combine(day, when).astimezone(timezone.utc)


def date_window(center: T, days: int = AVAILABILITY_WINDOW_DAYS) -> Tuple[T, T]:
    """Closed [center - days, center + days] window; works for date and datetime."""
    delta = timedelta(days=days)
    return center - delta, center + delta  # type: ignore[operator]


def select_closest(
    candidates: Iterable[T],
    target: Moment,
    key: Optional[Callable[[T], Moment]] = None,
) -> Optional[T]:
    """
    Linear scan for the candidate nearest to `target`.

    The first candidate seeds the minimum and only a strictly smaller distance
    replaces it, so ties resolve to the earlier position in `candidates`.
    Returns None for an empty input.
    """
    key = key or (lambda c: c)  # type: ignore[assignment,return-value]
    best: Optional[T] = None
    best_diff: Optional[timedelta] = None
    for cand in candidates:
        diff = abs(key(cand) - target)  # type: ignore[misc,operator]
        if best_diff is None or diff < best_diff:
            best, best_diff = cand, diff
    return best
