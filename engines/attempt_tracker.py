"""Per-exercise attempt lifecycle.

Every submission for a (learner, exercise) pair is numbered 1, 2, 3, ...
and judged against the exercise's canonical solution. A correct answer
writes the completion record; running out of attempts reveals the solution
but does not complete the exercise. Both outcomes unblock forward navigation
through ``can_advance``.
"""

from __future__ import annotations

import logging
from types import ModuleType
from typing import Any, Optional

import db
from engines.comparators import judge_or_reject, resolve_exercise_type
from errors import AttemptConflict, AttemptsExhausted, Forbidden, NotFound
from schemas import AttemptRecord, AttemptResult, AttemptState, Exercise

_LOGGER = logging.getLogger("linguatrack.attempts")

MAX_ATTEMPTS = 3


class AttemptTracker:
    """Records answer submissions and enforces the attempt cap.

    Parameters
    ----------
    max_attempts:
        Number of tries a learner gets per exercise before the solution is
        revealed.
    store:
        Row store exposing the ``db`` module's exercise, entitlement and
        attempt functions. Defaults to :mod:`db`.
    """

    def __init__(self, max_attempts: int = MAX_ATTEMPTS, store: Optional[ModuleType] = None) -> None:
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self.max_attempts = int(max_attempts)
        self._store = store if store is not None else db

    # ----- public API --------------------------------------------------
    def get_exercise(self, exercise_id: str) -> Exercise:
        row = self._store.get_exercise_row(exercise_id)
        if not row or not row.get("active"):
            raise NotFound("exercise not found")
        exercise_type = resolve_exercise_type(row.get("exercise_type"))
        if exercise_type is None:
            _LOGGER.warning(
                "Exercise %s has unsupported type tag %r", exercise_id, row.get("exercise_type")
            )
            raise NotFound("exercise type not supported")
        return Exercise(
            id=str(row["id"]),
            course_code=str(row["course_code"]),
            level=str(row["level"]),
            lesson=int(row["lesson"]),
            exercise_type=exercise_type,
            prompt=row.get("prompt") or "",
            options=row.get("options") or {},
            solution=str(row["solution"]),
            active=True,
            created_at=row.get("created_at"),
        )

    def record_attempt(self, user_id: str, exercise_id: str, answer: Any) -> AttemptResult:
        """Judge and persist one submission for ``(user_id, exercise_id)``."""

        exercise = self.get_exercise(exercise_id)
        self._require_access(user_id, exercise)

        prior = self._load_attempts(user_id, exercise_id)
        if any(attempt.is_correct for attempt in prior):
            raise AttemptsExhausted("exercise already completed")
        if len(prior) >= self.max_attempts:
            raise AttemptsExhausted("no attempts left for this exercise")

        attempt_number = len(prior) + 1
        judgement = judge_or_reject(exercise.exercise_type, answer, exercise.solution)

        stored = self._store.record_attempt(
            user_id,
            exercise_id,
            attempt_number,
            judgement.stored_answer,
            judgement.correct,
            max_attempts=self.max_attempts,
        )
        if stored is None:
            _LOGGER.warning(
                "Attempt %d for user=%s exercise=%s lost a concurrent submission race",
                attempt_number, user_id, exercise_id,
            )
            raise AttemptConflict("another submission for this exercise was recorded first")

        remaining = self.max_attempts - attempt_number
        reveal = not judgement.correct and remaining == 0
        _LOGGER.info(
            "Attempt %d/%d user=%s exercise=%s correct=%s invalid=%s",
            attempt_number, self.max_attempts, user_id, exercise_id,
            judgement.correct, judgement.invalid,
        )
        return AttemptResult(
            accepted=True,
            correct=judgement.correct,
            attempt_number=attempt_number,
            attempts_remaining=remaining,
            reveal_solution=reveal,
            solution=exercise.solution if reveal else None,
            completed=judgement.correct,
            can_advance=judgement.correct or reveal,
            invalid_answer=judgement.invalid,
            message=judgement.message,
        )

    def get_attempt_state(self, user_id: str, exercise_id: str) -> AttemptState:
        """Read-only snapshot of the attempts made so far."""

        exercise = self.get_exercise(exercise_id)
        self._require_access(user_id, exercise)

        attempts = self._load_attempts(user_id, exercise_id)
        used = len(attempts)
        completed = any(attempt.is_correct for attempt in attempts) or (
            self._store.get_completion(user_id, exercise_id) is not None
        )
        remaining = max(0, self.max_attempts - used)
        show_solution = used >= self.max_attempts and not completed
        return AttemptState(
            exercise_id=exercise_id,
            attempts=attempts,
            attempts_used=used,
            attempts_remaining=remaining,
            is_completed=completed,
            can_attempt=remaining > 0 and not completed,
            show_solution=show_solution,
            solution=exercise.solution if show_solution else None,
            can_advance=completed or show_solution,
        )

    # ----- helpers -----------------------------------------------------
    def _require_access(self, user_id: str, exercise: Exercise) -> None:
        if not self._store.has_course_access(user_id, exercise.course_code):
            _LOGGER.warning(
                "User %s has no access to course %s (exercise %s)",
                user_id, exercise.course_code, exercise.id,
            )
            raise Forbidden("course not unlocked for this account")

    def _load_attempts(self, user_id: str, exercise_id: str) -> list[AttemptRecord]:
        return [
            AttemptRecord(
                attempt_number=int(row["attempt_number"]),
                answer=str(row["answer"]),
                is_correct=bool(row["is_correct"]),
                attempted_at=str(row["attempted_at"]),
            )
            for row in self._store.list_attempts(user_id, exercise_id)
        ]
