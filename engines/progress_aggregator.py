"""Dashboard statistics with graceful degradation.

The summary is produced by an ordered chain of providers. Precomputed
summaries (a database view, or a remote RPC function when
``SUMMARY_RPC_URL`` is configured) are tried first; the manual
reconstruction from the raw tables is the durable fallback and tolerates
each optional table being absent. If everything fails the caller still gets
an all-zero summary: the dashboard must always render.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from collections import defaultdict
from datetime import date, datetime, timezone
from types import ModuleType
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests
from pydantic import ValidationError

import db
from engines.activity import (
    activity_dates,
    compute_streaks,
    last_activity_date,
    last_days,
    to_date,
    weekly_progress,
)
from engines.base import ProviderResult, SummaryProvider
from env_validation import get_env_float
from errors import Unavailable
from i18n import weekday_label
from schemas import DashboardSummary, WeeklyProgressPoint, parse_json_safe

_LOGGER = logging.getLogger("linguatrack.stats")

COMPLETION_THRESHOLD = 0.8
DAILY_ACTIVITY_WINDOW = 30
ACCESS_LOG_WINDOW = 100
AVERAGE_WINDOW_DAYS = 30


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def default_summary(today: date, locale: Optional[str] = None) -> DashboardSummary:
    """All-zero summary shown when no source can be read."""
    return DashboardSummary(
        last_activity_date=today.isoformat(),
        weekly_progress=[
            WeeklyProgressPoint(day=weekday_label(day, locale), date=day.isoformat(), minutes=0)
            for day in last_days(today)
        ],
        source="fallback",
    )


class PrecomputedSummaryProvider(SummaryProvider):
    """Reads a precomputed summary from a database view or a remote RPC function.

    The remote variant follows the PostgREST convention: ``POST
    {SUMMARY_RPC_URL}/rpc/<function>`` with ``{"p_user_id": ...}``.
    """

    def __init__(
        self,
        name: str,
        view: str,
        rpc_function: str,
        *,
        store: Optional[ModuleType] = None,
        rpc_url: Optional[str] = None,
        rpc_key: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.name = name
        self.view = view
        self.rpc_function = rpc_function
        self._store = store if store is not None else db
        self.rpc_url = (rpc_url if rpc_url is not None else os.getenv("SUMMARY_RPC_URL") or "").rstrip("/")
        self.rpc_key = rpc_key if rpc_key is not None else os.getenv("SUMMARY_RPC_KEY")
        self.timeout = float(timeout) if timeout is not None else get_env_float("SUMMARY_RPC_TIMEOUT", 5.0)

    def fetch(self, user_id: str, *, locale: Optional[str] = None) -> ProviderResult:
        if self.rpc_url:
            return self._fetch_remote(user_id)
        return self._fetch_local(user_id)

    def _fetch_local(self, user_id: str) -> ProviderResult:
        try:
            payload = self._store.fetch_precomputed_summary(self.view, user_id)
        except Unavailable as exc:
            return ProviderResult.unavailable(str(exc))
        if not payload:
            return ProviderResult.unavailable(f"{self.view} has no row for user")
        try:
            summary = parse_json_safe(payload, DashboardSummary)
        except (ValidationError, ValueError) as exc:
            return ProviderResult.unavailable(f"{self.view} payload rejected: {exc}")
        return ProviderResult.ok(self._tag(summary))

    def _fetch_remote(self, user_id: str) -> ProviderResult:
        url = f"{self.rpc_url}/rpc/{self.rpc_function}"
        headers = {"Content-Type": "application/json"}
        if self.rpc_key:
            headers["apikey"] = self.rpc_key
            headers["Authorization"] = f"Bearer {self.rpc_key}"
        try:
            response = requests.post(url, json={"p_user_id": user_id}, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as exc:
            return ProviderResult.unavailable(f"{self.rpc_function} request failed: {exc}")
        except ValueError as exc:
            return ProviderResult.unavailable(f"{self.rpc_function} returned invalid JSON: {exc}")

        if isinstance(data, list):
            data = data[0] if data else None
        if not data:
            return ProviderResult.unavailable(f"{self.rpc_function} returned no data")
        try:
            summary = DashboardSummary.model_validate(data)
        except ValidationError as exc:
            return ProviderResult.unavailable(f"{self.rpc_function} payload rejected: {exc}")
        return ProviderResult.ok(self._tag(summary))

    def _tag(self, summary: DashboardSummary) -> DashboardSummary:
        if summary.source is None:
            summary.source = self.name
        return summary


class ManualSummaryProvider(SummaryProvider):
    """Rebuilds the summary from the individual event tables."""

    name = "manual"

    def __init__(
        self,
        store: Optional[ModuleType] = None,
        clock: Optional[Callable[[], date]] = None,
    ) -> None:
        self._store = store if store is not None else db
        self._clock = clock or _utc_today

    def fetch(self, user_id: str, *, locale: Optional[str] = None) -> ProviderResult:
        today = self._clock()
        courses = self._store.list_unlocked_active_courses(user_id)
        exercise_rows = self._exercise_rows(user_id)
        daily_rows = self._optional("daily activity", self._store.list_daily_activity, user_id, limit=DAILY_ACTIVITY_WINDOW)
        content_rows = self._optional("content progress", self._store.list_content_progress, user_id)
        access_rows = self._optional("access logs", self._store.list_access_logs, user_id, limit=ACCESS_LOG_WINDOW)

        completed_courses, in_progress_courses = self._course_completion(exercise_rows)

        if daily_rows:
            total_minutes = float(sum(int(row["minutes_studied"] or 0) for row in daily_rows))
        else:
            exercise_seconds = sum(int(row.get("time_spent_seconds") or 0) for row in exercise_rows)
            content_seconds = sum(int(row["time_spent"] or 0) for row in content_rows)
            total_minutes = (exercise_seconds + content_seconds) / 60.0

        current_streak, longest_streak = compute_streaks(activity_dates(daily_rows, access_rows), today)
        last_day = last_activity_date(
            today,
            access_rows=access_rows,
            exercise_rows=exercise_rows,
            content_rows=content_rows,
            daily_rows=daily_rows,
        )

        if daily_rows:
            average_minutes = round(total_minutes / len(daily_rows))
            active_days = len(daily_rows)
        else:
            average_minutes = round(total_minutes / AVERAGE_WINDOW_DAYS) if total_minutes > 0 else 0
            active_days = len({to_date(row["accessed_at"]) for row in access_rows} - {None})

        summary = DashboardSummary(
            total_courses=len(courses),
            completed_courses=completed_courses,
            in_progress_courses=in_progress_courses,
            total_hours_studied=round(total_minutes / 60.0, 1),
            current_streak=current_streak,
            longest_streak=longest_streak,
            last_activity_date=last_day.isoformat(),
            weekly_progress=weekly_progress(
                today,
                locale=locale,
                daily_rows=daily_rows,
                exercise_rows=exercise_rows,
                content_rows=content_rows,
                access_rows=access_rows,
                total_minutes=total_minutes,
            ),
            total_exercises=len(exercise_rows),
            completed_exercises=sum(1 for row in exercise_rows if row.get("completed")),
            total_contents=len(content_rows),
            completed_contents=sum(1 for row in content_rows if row["progress_status"] == "completed"),
            total_sessions=len(access_rows),
            average_minutes_per_day=int(average_minutes),
            total_active_days=active_days,
            source="manual",
        )
        _LOGGER.info(
            "Manual summary for %s: courses=%d exercises=%d/%d daily=%d contents=%d sessions=%d",
            user_id, summary.total_courses, summary.completed_exercises, summary.total_exercises,
            len(daily_rows), len(content_rows), len(access_rows),
        )
        return ProviderResult.ok(summary)

    # ----- helpers -----------------------------------------------------
    def _optional(self, label: str, loader: Callable[..., Sequence[Any]], *args: Any, **kwargs: Any) -> List[Any]:
        try:
            return list(loader(*args, **kwargs))
        except Unavailable as exc:
            _LOGGER.warning("Optional source %s skipped: %s", label, exc)
            return []

    def _exercise_rows(self, user_id: str) -> List[Dict[str, Any]]:
        try:
            rows = [dict(row) for row in self._store.list_exercise_progress(user_id)]
        except (sqlite3.Error, Unavailable) as exc:
            _LOGGER.warning("Exercise progress unavailable: %s", exc)
            return []
        if not rows:
            return rows
        try:
            meta = self._store.get_exercise_meta([row["exercise_id"] for row in rows])
        except (sqlite3.Error, Unavailable) as exc:
            _LOGGER.warning("Exercise metadata join failed: %s", exc)
            meta = {}
        for row in rows:
            info = meta.get(row["exercise_id"]) or {}
            row["course_code"] = info.get("course_code")
            row["lesson"] = info.get("lesson")
        return rows

    def _course_completion(self, exercise_rows: Sequence[Dict[str, Any]]) -> tuple[int, int]:
        per_course: Dict[str, Dict[str, int]] = defaultdict(lambda: {"completed": 0, "tracked": 0})
        for row in exercise_rows:
            code = row.get("course_code")
            if not code:
                continue
            per_course[code]["tracked"] += 1
            if row.get("completed"):
                per_course[code]["completed"] += 1
        if not per_course:
            return 0, 0

        try:
            catalog = self._store.count_active_exercises_by_course(sorted(per_course))
        except sqlite3.Error as exc:
            _LOGGER.warning("Course catalog counts unavailable, using tracked exercises: %s", exc)
            catalog = {}

        completed = in_progress = 0
        for code, counts in per_course.items():
            total = catalog.get(code) or counts["tracked"]
            if total <= 0:
                continue
            ratio = counts["completed"] / total
            if ratio > COMPLETION_THRESHOLD:
                completed += 1
            elif ratio > 0:
                in_progress += 1
        return completed, in_progress


def default_providers(
    store: Optional[ModuleType] = None,
    clock: Optional[Callable[[], date]] = None,
) -> List[SummaryProvider]:
    return [
        PrecomputedSummaryProvider(
            "optimized",
            "dashboard_summary_optimized",
            "get_user_dashboard_summary_optimized",
            store=store,
        ),
        PrecomputedSummaryProvider(
            "basic",
            "dashboard_summary",
            "get_user_dashboard_summary",
            store=store,
        ),
        ManualSummaryProvider(store=store, clock=clock),
    ]


class ProgressAggregator:
    """Produces a :class:`DashboardSummary`, trying each provider in order."""

    def __init__(
        self,
        providers: Optional[Sequence[SummaryProvider]] = None,
        clock: Optional[Callable[[], date]] = None,
        store: Optional[ModuleType] = None,
    ) -> None:
        self._clock = clock or _utc_today
        self.providers: List[SummaryProvider] = list(
            providers if providers is not None else default_providers(store=store, clock=self._clock)
        )

    def get_dashboard_summary(self, user_id: str, locale: Optional[str] = None) -> DashboardSummary:
        """Never raises; falls back to an all-zero summary."""
        for provider in self.providers:
            try:
                result = provider.fetch(user_id, locale=locale)
            except Exception:
                _LOGGER.error("Summary provider %s failed for %s", provider.name, user_id, exc_info=True)
                continue
            if result.is_ok:
                _LOGGER.info("Dashboard summary for %s served by %s", user_id, provider.name)
                summary = result.summary
                if summary.last_activity_date is None:
                    summary.last_activity_date = self._today().isoformat()
                return summary  # type: ignore[return-value]
            _LOGGER.info("Summary provider %s unavailable: %s", provider.name, result.reason)

        _LOGGER.error("No summary provider succeeded for %s; serving zeroed dashboard", user_id)
        return default_summary(self._today(), locale)

    def _today(self) -> date:
        try:
            return self._clock()
        except Exception:
            return _utc_today()
