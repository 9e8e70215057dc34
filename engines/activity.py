"""Calendar-day helpers for study activity: streaks, last activity, weekly minutes."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple

from i18n import weekday_label
from schemas import WeeklyProgressPoint

MINUTES_PER_ACCESS = 5
WEEK_DAYS = 7


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Best-effort parsing of the timestamp formats found in the activity tables.

    SQLite defaults (``2024-01-05 10:00:00``), ISO strings with ``Z`` or an
    offset and bare dates all occur; naive values are taken as UTC.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, 12, tzinfo=timezone.utc)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_date(value: Any) -> Optional[date]:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = parse_timestamp(value)
    return parsed.astimezone(timezone.utc).date() if parsed else None


def last_days(today: date, count: int = WEEK_DAYS) -> List[date]:
    """The ``count`` calendar days ending at ``today``, oldest first."""
    return [today - timedelta(days=offset) for offset in range(count - 1, -1, -1)]


def _row_value(row: Any, key: str, default: Any = None) -> Any:
    try:
        value = row[key]
    except (KeyError, IndexError):
        return default
    return default if value is None else value


def has_daily_activity(row: Any) -> bool:
    return any(
        int(_row_value(row, key, 0) or 0) > 0
        for key in ("minutes_studied", "exercises_completed", "contents_completed")
    )


def activity_dates(
    daily_rows: Sequence[Any],
    access_rows: Sequence[Any],
) -> set[date]:
    """Days with recorded activity.

    Daily activity rows win when present; otherwise the distinct days of the
    access log are used.
    """

    if daily_rows:
        days = {to_date(_row_value(row, "activity_date")) for row in daily_rows if has_daily_activity(row)}
    else:
        days = {to_date(_row_value(row, "accessed_at")) for row in access_rows}
    days.discard(None)
    return days  # type: ignore[return-value]


def compute_streaks(days: Iterable[date], today: date) -> Tuple[int, int]:
    """Return ``(current_streak, longest_streak)`` for a set of active days.

    The current streak ends today, or yesterday when today has no activity
    yet. Any gap of two or more calendar days breaks a run.
    """

    unique = sorted(set(days))
    if not unique:
        return 0, 0

    active = set(unique)
    current = 0
    if today in active:
        cursor: Optional[date] = today
    elif today - timedelta(days=1) in active:
        cursor = today - timedelta(days=1)
    else:
        cursor = None
    while cursor is not None and cursor in active:
        current += 1
        cursor -= timedelta(days=1)

    longest = run = 1
    for previous, current_day in zip(unique, unique[1:]):
        if (current_day - previous).days == 1:
            run += 1
        else:
            run = 1
        longest = max(longest, run)

    return current, longest


def last_activity_date(
    today: date,
    *,
    access_rows: Sequence[Any] = (),
    exercise_rows: Sequence[Mapping[str, Any]] = (),
    content_rows: Sequence[Any] = (),
    daily_rows: Sequence[Any] = (),
) -> date:
    """Most recent day across every activity source; ``today`` when there is none."""

    candidates: List[Optional[date]] = []
    candidates.extend(to_date(_row_value(row, "activity_date")) for row in daily_rows)
    candidates.extend(to_date(_row_value(row, "accessed_at")) for row in access_rows)
    for row in exercise_rows:
        candidates.append(to_date(row.get("completed_at")))
        candidates.append(to_date(row.get("last_attempt_at")))
    candidates.extend(to_date(_row_value(row, "last_accessed_at")) for row in content_rows)
    known = [day for day in candidates if day is not None]
    return max(known) if known else today


def weekly_progress(
    today: date,
    *,
    locale: Optional[str] = None,
    daily_rows: Sequence[Any] = (),
    exercise_rows: Sequence[Mapping[str, Any]] = (),
    content_rows: Sequence[Any] = (),
    access_rows: Sequence[Any] = (),
    total_minutes: float = 0.0,
) -> List[WeeklyProgressPoint]:
    """Minutes studied on each of the last seven days, oldest first.

    Sources in order of preference: daily activity rollups; time recorded on
    completions and content progress stamped on that day; five minutes per
    access-log entry; finally ``total_minutes`` spread evenly over the week.
    """

    days = last_days(today)
    window = set(days)
    minutes: dict[date, float] = {}

    if daily_rows:
        for row in daily_rows:
            day = to_date(_row_value(row, "activity_date"))
            if day in window:
                minutes[day] = minutes.get(day, 0) + float(_row_value(row, "minutes_studied", 0))
    else:
        for row in exercise_rows:
            day = to_date(row.get("completed_at"))
            if day in window:
                minutes[day] = minutes.get(day, 0) + round(float(row.get("time_spent_seconds") or 0) / 60)
        for row in content_rows:
            day = to_date(_row_value(row, "last_accessed_at"))
            if day in window:
                minutes[day] = minutes.get(day, 0) + round(float(_row_value(row, "time_spent", 0)) / 60)
        if not any(minutes.values()):
            minutes = {}
            for row in access_rows:
                day = to_date(_row_value(row, "accessed_at"))
                if day in window:
                    minutes[day] = minutes.get(day, 0) + MINUTES_PER_ACCESS
        if not minutes and total_minutes > 0:
            share = total_minutes / len(days)
            minutes = {day: share for day in days}

    return [
        WeeklyProgressPoint(
            day=weekday_label(day, locale),
            date=day.isoformat(),
            minutes=int(round(minutes.get(day, 0))),
        )
        for day in days
    ]
