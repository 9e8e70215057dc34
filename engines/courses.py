"""Course catalog, access codes and per-learner entitlements."""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from types import ModuleType
from typing import Any, Dict, List, Optional

import db
from engines.activity import parse_timestamp
from engines.comparators import resolve_exercise_type
from errors import Forbidden, NotFound, Unavailable, ValidationFailed
from schemas import ExerciseView

_LOGGER = logging.getLogger("linguatrack.access")

CODE_MIN_LENGTH = 3
CODE_MAX_LENGTH = 20
RECENT_ACCESS_DAYS = 7
ACCESS_ACTIONS = ("view", "access", "complete")
CONTENT_STATUSES = ("not_started", "in_progress", "completed")


def sanitize_code(code: Any) -> str:
    if not isinstance(code, str) or not code.strip():
        raise ValidationFailed("access code required")
    cleaned = code.strip().upper()
    if not CODE_MIN_LENGTH <= len(cleaned) <= CODE_MAX_LENGTH:
        raise ValidationFailed("invalid access code")
    return cleaned


class CourseCatalog:
    def __init__(self, store: Optional[ModuleType] = None, clock=None) -> None:
        self._store = store if store is not None else db
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ----- access codes ------------------------------------------------
    def validate_code(self, code: Any, *, client: Optional[str] = None) -> Dict[str, Any]:
        cleaned = sanitize_code(code)
        course = self._store.get_course(cleaned)
        if course is None:
            _LOGGER.warning("Invalid access code %s from %s", cleaned, client or "unknown")
            raise NotFound("invalid code")
        return {
            "valid": True,
            "code": course["code"],
            "name": course["name"],
            "description": course["description"],
        }

    def unlock(self, user_id: str, code: Any) -> Dict[str, Any]:
        course = self.validate_code(code)
        newly_unlocked = self._store.unlock_course(user_id, course["code"])
        if newly_unlocked:
            _LOGGER.info("User %s unlocked course %s", user_id, course["code"])
        unlock = self._store.get_course_unlock(user_id, course["code"])
        return {
            **course,
            "newly_unlocked": newly_unlocked,
            "unlocked_at": unlock["unlocked_at"] if unlock else None,
        }

    def list_user_courses(self, user_id: str) -> Dict[str, Any]:
        unlocks = {row["course_code"]: row for row in self._store.list_course_unlocks(user_id)}
        courses = []
        for course in self._store.list_courses():
            unlock = unlocks.get(course["code"])
            courses.append(
                {
                    "code": course["code"],
                    "name": course["name"],
                    "description": course["description"],
                    "enabled": unlock is not None,
                    "unlocked_at": unlock["unlocked_at"] if unlock else None,
                    "last_accessed_at": unlock["last_accessed_at"] if unlock else None,
                    "access_count": int(unlock["access_count"] or 0) if unlock else 0,
                    "created_at": course["created_at"],
                }
            )
        courses.sort(key=lambda item: (not item["enabled"], item["name"].casefold()))

        cutoff = self._clock() - timedelta(days=RECENT_ACCESS_DAYS)
        recent = 0
        for item in courses:
            accessed = parse_timestamp(item["last_accessed_at"])
            if accessed is not None and accessed > cutoff:
                recent += 1
        enabled = sum(1 for item in courses if item["enabled"])
        return {
            "courses": courses,
            "stats": {
                "total": len(courses),
                "enabled": enabled,
                "disabled": len(courses) - enabled,
                "recently_accessed": recent,
            },
        }

    def log_access(
        self,
        user_id: str,
        code: Any,
        *,
        button_id: Optional[str] = None,
        action: str = "access",
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Record that the learner opened a course section.

        The access log is best effort: a missing table is logged and the
        entitlement counters are still updated.
        """
        cleaned = sanitize_code(code)
        if action not in ACCESS_ACTIONS:
            raise ValidationFailed(f"action must be one of {', '.join(ACCESS_ACTIONS)}")
        self.require_access(user_id, cleaned)
        if self._store.get_course(cleaned) is None:
            raise NotFound("course not found or inactive")

        accessed_at = self._clock().isoformat(timespec="seconds")
        logged = True
        try:
            self._store.insert_access_log(
                user_id,
                cleaned,
                button_id=button_id,
                action=action,
                ip_address=ip_address,
                user_agent=user_agent,
                accessed_at=accessed_at,
            )
        except Unavailable as exc:
            logged = False
            _LOGGER.warning("Access log not written for %s/%s: %s", user_id, cleaned, exc)
        self._store.touch_course_access(user_id, cleaned, accessed_at)
        return {"course_code": cleaned, "action": action, "accessed_at": accessed_at, "logged": logged}

    def require_access(self, user_id: str, code: str) -> None:
        if not self._store.has_course_access(user_id, code):
            _LOGGER.warning("Denied access to course %s for user %s", code, user_id)
            raise Forbidden("course not unlocked for this account")

    # ----- navigation --------------------------------------------------
    def _servable_exercises(self, code: str, level: Optional[str] = None, lesson: Optional[int] = None) -> List[Dict[str, Any]]:
        rows = []
        for row in self._store.list_exercises(code, level=level, lesson=lesson):
            exercise_type = resolve_exercise_type(row["exercise_type"])
            if exercise_type is None:
                _LOGGER.warning("Skipping exercise %s with unsupported type %r", row["id"], row["exercise_type"])
                continue
            rows.append({**row, "exercise_type": exercise_type})
        return rows

    def level_overview(self, user_id: str, code: Any) -> List[Dict[str, Any]]:
        cleaned = sanitize_code(code)
        self.require_access(user_id, cleaned)
        completed_ids = self._store.list_completed_exercise_ids(user_id)
        levels: "OrderedDict[str, Dict[str, Any]]" = OrderedDict()
        for row in sorted(self._servable_exercises(cleaned), key=lambda r: r["level"]):
            entry = levels.setdefault(
                row["level"],
                {"level": row["level"], "lessons": set(), "total_exercises": 0, "completed_exercises": 0},
            )
            entry["lessons"].add(int(row["lesson"]))
            entry["total_exercises"] += 1
            if row["id"] in completed_ids:
                entry["completed_exercises"] += 1
        return [{**entry, "lessons": sorted(entry["lessons"])} for entry in levels.values()]

    def lesson_overview(self, user_id: str, code: Any, level: str) -> List[Dict[str, Any]]:
        cleaned = sanitize_code(code)
        self.require_access(user_id, cleaned)
        completed_ids = self._store.list_completed_exercise_ids(user_id)
        lessons: Dict[int, Dict[str, Any]] = {}
        for row in self._servable_exercises(cleaned, level=level):
            number = int(row["lesson"])
            entry = lessons.setdefault(number, {"lesson": number, "total_exercises": 0, "completed_exercises": 0})
            entry["total_exercises"] += 1
            if row["id"] in completed_ids:
                entry["completed_exercises"] += 1
        if not lessons:
            raise NotFound("level not found")
        return [lessons[number] for number in sorted(lessons)]

    def lesson_exercises(self, user_id: str, code: Any, level: str, lesson: int) -> Dict[str, Any]:
        """Exercises of one lesson without solutions, and where the learner should resume."""
        cleaned = sanitize_code(code)
        self.require_access(user_id, cleaned)
        completed_ids = self._store.list_completed_exercise_ids(user_id)
        exercises = [
            ExerciseView(
                id=str(row["id"]),
                level=str(row["level"]),
                lesson=int(row["lesson"]),
                exercise_type=row["exercise_type"],
                prompt=row.get("prompt") or "",
                options=row.get("options") or {},
                completed=row["id"] in completed_ids,
            )
            for row in self._servable_exercises(cleaned, level=level, lesson=int(lesson))
        ]
        if not exercises:
            raise NotFound("lesson not found")
        starting_index = next(
            (index for index, exercise in enumerate(exercises) if not exercise.completed),
            len(exercises) - 1,
        )
        return {
            "course_code": cleaned,
            "level": level,
            "lesson": int(lesson),
            "exercises": exercises,
            "starting_index": starting_index,
        }

    def video_lessons(self, user_id: str, code: Any) -> List[Dict[str, Any]]:
        cleaned = sanitize_code(code)
        self.require_access(user_id, cleaned)
        return [dict(row) for row in self._store.list_video_lessons(cleaned)]

    # ----- contents ----------------------------------------------------
    def record_content_progress(
        self,
        user_id: str,
        content_id: str,
        *,
        progress_status: str = "in_progress",
        progress_percentage: float = 0.0,
        time_spent: int = 0,
    ) -> Dict[str, Any]:
        if progress_status not in CONTENT_STATUSES:
            raise ValidationFailed(f"status must be one of {', '.join(CONTENT_STATUSES)}")
        if not 0 <= float(progress_percentage) <= 100:
            raise ValidationFailed("progress_percentage must be between 0 and 100")
        if int(time_spent) < 0:
            raise ValidationFailed("time_spent must not be negative")
        accessed_at = self._clock().isoformat(timespec="seconds")
        self._store.upsert_content_progress(
            user_id,
            content_id,
            progress_status=progress_status,
            progress_percentage=progress_percentage,
            time_spent=time_spent,
            last_accessed_at=accessed_at,
        )
        return {
            "content_id": content_id,
            "progress_status": progress_status,
            "last_accessed_at": accessed_at,
        }
