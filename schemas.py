"""Pydantic schemas for exercises, attempts and dashboard summaries."""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any, Dict, List, Type, TypeVar

from pydantic import BaseModel, Field, ValidationError, model_validator

__all__ = [
    "ExerciseType",
    "Exercise",
    "ExerciseView",
    "AttemptRecord",
    "AttemptResult",
    "AttemptState",
    "WeeklyProgressPoint",
    "DashboardSummary",
    "parse_json_safe",
]


class ExerciseType(str, Enum):
    TRANSLATE = "translate"
    FILL_BLANK = "fill-blank"
    LISTEN_ORDER = "listen-order"
    MATCH_PAIRS = "match-pairs"


class Exercise(BaseModel):
    """Immutable content unit as served to the attempt tracker."""

    id: str
    course_code: str
    level: str
    lesson: int
    exercise_type: ExerciseType
    prompt: str = ""
    options: Dict[str, Any] = Field(
        default_factory=dict,
        description="Type-specific option data: word bank, choices or shuffled pair words.",
    )
    solution: str = Field(
        description="Canonical solution; a JSON object of key -> value pairs for match-pairs.",
    )
    active: bool = True
    created_at: str | None = None


class ExerciseView(BaseModel):
    """Exercise as shown to a learner: no solution, plus completion state."""

    id: str
    level: str
    lesson: int
    exercise_type: ExerciseType
    prompt: str = ""
    options: Dict[str, Any] = Field(default_factory=dict)
    completed: bool = False


class AttemptRecord(BaseModel):
    attempt_number: int = Field(ge=1)
    answer: str
    is_correct: bool
    attempted_at: str


class AttemptResult(BaseModel):
    accepted: bool = True
    correct: bool
    attempt_number: int = Field(ge=1)
    attempts_remaining: int = Field(ge=0)
    reveal_solution: bool = False
    solution: str | None = Field(
        default=None,
        description="Only present once the last attempt was used without success.",
    )
    completed: bool = False
    can_advance: bool = Field(
        default=False,
        description="True once the learner may move on: solved or out of attempts.",
    )
    invalid_answer: bool = False
    message: str | None = None


class AttemptState(BaseModel):
    exercise_id: str
    attempts: List[AttemptRecord] = Field(default_factory=list)
    attempts_used: int = 0
    attempts_remaining: int = 0
    is_completed: bool = False
    can_attempt: bool = True
    show_solution: bool = False
    solution: str | None = None
    can_advance: bool = False


class WeeklyProgressPoint(BaseModel):
    day: str
    date: str | None = None
    minutes: int = 0


_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


class DashboardSummary(BaseModel):
    total_courses: int = 0
    completed_courses: int = 0
    in_progress_courses: int = 0
    total_hours_studied: float = 0.0
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: str | None = None
    weekly_progress: List[WeeklyProgressPoint] = Field(default_factory=list)
    total_exercises: int = 0
    completed_exercises: int = 0
    total_contents: int = 0
    completed_contents: int = 0
    total_sessions: int = 0
    average_minutes_per_day: int = 0
    total_active_days: int = 0
    # tier name; precomputed payloads may carry their own label
    source: str | None = None

    # Precomputed summaries may carry fields this service does not know about.
    model_config = {
        "extra": "allow",
    }

    @model_validator(mode="before")
    @classmethod
    def _accept_camel_case(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        return {_snake_case(str(key)): value for key, value in data.items()}


_T = TypeVar("_T", bound=BaseModel)


def _find_first_json_object(text: str) -> tuple[str, int, int]:
    start = text.find("{")
    while start != -1:
        depth = 0
        for idx in range(start, len(text)):
            char = text[idx]
            if char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    candidate = text[start : idx + 1]
                    try:
                        json.loads(candidate)
                    except Exception:
                        break
                    return candidate, start, idx + 1
        start = text.find("{", start + 1)
    raise ValueError("No JSON object found in provided text")


def parse_json_safe(text: str, model: Type[_T]) -> _T:
    """Parse ``text`` into ``model``, retrying on the first embedded JSON object.

    Precomputed summaries sometimes arrive wrapped (``[{...}]`` from an RPC
    returning a set, or a JSON string column with padding).
    """

    first_error: Exception | None = None
    try:
        return model.model_validate_json(text)
    except (ValidationError, ValueError, TypeError) as exc:
        first_error = exc

    try:
        snippet, _, _ = _find_first_json_object(text)
    except ValueError:
        if first_error:
            raise first_error
        raise

    try:
        return model.model_validate_json(snippet)
    except Exception:
        if first_error:
            raise first_error
        raise
