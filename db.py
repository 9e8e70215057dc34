import json
import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence

from db_pool import SQLiteConnectionPool
from errors import Unavailable

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data.db")

# Initialize connection pool
_pool = SQLiteConnectionPool(DB_PATH, max_connections=10)

# Tables a partially migrated database may lack; reads against them raise Unavailable.
OPTIONAL_TABLES = ("content_progress", "access_logs", "daily_activity")

# Deployed outside ``init()``; each exposes (user_id, payload JSON).
SUMMARY_VIEWS = ("dashboard_summary_optimized", "dashboard_summary")


def _conn():
    """Return a context manager for acquiring a pooled SQLite connection."""
    return _pool.get_connection()


def _exec(sql: str, params: Iterable = ()):
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        con.commit()
        return cur


def _query(sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    with _pool.get_connection() as con:
        cur = con.execute(sql, params)
        return cur.fetchall()


def _query_optional(source: str, sql: str, params: Iterable = ()) -> list[sqlite3.Row]:
    """Run ``sql`` against an optional table, mapping schema errors to Unavailable."""
    try:
        return _query(sql, params)
    except sqlite3.OperationalError as exc:
        raise Unavailable(f"{source} unavailable: {exc}") from exc


def json_dumps(obj: Any) -> str:
    return json.dumps(obj, ensure_ascii=False, separators=(",", ":"))


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _placeholders(values: Sequence[Any]) -> str:
    return ",".join("?" for _ in values)


def init():
    Path(DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    with _conn() as con:
        con.executescript(
            """
            PRAGMA foreign_keys = ON;
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS users (
              user_id     TEXT PRIMARY KEY,
              email       TEXT UNIQUE NOT NULL,
              pw_hash     TEXT NOT NULL,
              pw_salt     TEXT,
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS courses (
              code        TEXT PRIMARY KEY,
              name        TEXT NOT NULL,
              description TEXT,
              active      INTEGER NOT NULL DEFAULT 1,
              created_at  TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            );

            CREATE TABLE IF NOT EXISTS course_unlocks (
              id               INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id          TEXT NOT NULL,
              course_code      TEXT NOT NULL,
              unlocked_at      TEXT NOT NULL,
              last_accessed_at TEXT,
              access_count     INTEGER NOT NULL DEFAULT 0,
              UNIQUE(user_id, course_code)
            );

            CREATE INDEX IF NOT EXISTS idx_course_unlocks_user ON course_unlocks(user_id);

            CREATE TABLE IF NOT EXISTS exercises (
              id            TEXT PRIMARY KEY,
              course_code   TEXT NOT NULL,
              level         TEXT NOT NULL,
              lesson        INTEGER NOT NULL,
              exercise_type TEXT NOT NULL,
              prompt        TEXT,
              options       TEXT,
              solution      TEXT NOT NULL,
              active        INTEGER NOT NULL DEFAULT 1,
              created_at    TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_exercises_course ON exercises(course_code, level, lesson);

            CREATE TABLE IF NOT EXISTS exercise_attempts (
              id             INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id        TEXT NOT NULL,
              exercise_id    TEXT NOT NULL,
              attempt_number INTEGER NOT NULL CHECK (attempt_number >= 1),
              answer         TEXT NOT NULL,
              is_correct     INTEGER NOT NULL DEFAULT 0,
              attempted_at   TEXT NOT NULL,
              UNIQUE(user_id, exercise_id, attempt_number)
            );

            CREATE INDEX IF NOT EXISTS idx_attempts_user ON exercise_attempts(user_id, exercise_id);

            CREATE TABLE IF NOT EXISTS exercise_progress (
              user_id            TEXT NOT NULL,
              exercise_id        TEXT NOT NULL,
              completed          INTEGER NOT NULL DEFAULT 0,
              attempts           INTEGER NOT NULL DEFAULT 0,
              first_attempt_at   TEXT,
              completed_at       TEXT,
              time_spent_seconds INTEGER NOT NULL DEFAULT 0,
              PRIMARY KEY (user_id, exercise_id)
            );

            CREATE TABLE IF NOT EXISTS content_progress (
              user_id             TEXT NOT NULL,
              content_id          TEXT NOT NULL,
              progress_status     TEXT NOT NULL DEFAULT 'in_progress',
              progress_percentage REAL NOT NULL DEFAULT 0,
              time_spent          INTEGER NOT NULL DEFAULT 0,
              last_accessed_at    TEXT,
              completed_at        TEXT,
              PRIMARY KEY (user_id, content_id)
            );

            CREATE TABLE IF NOT EXISTS access_logs (
              id          INTEGER PRIMARY KEY AUTOINCREMENT,
              user_id     TEXT NOT NULL,
              course_code TEXT NOT NULL,
              button_id   TEXT,
              action      TEXT NOT NULL DEFAULT 'access',
              ip_address  TEXT,
              user_agent  TEXT,
              accessed_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_access_logs_user ON access_logs(user_id, accessed_at DESC);

            CREATE TABLE IF NOT EXISTS daily_activity (
              user_id             TEXT NOT NULL,
              activity_date       TEXT NOT NULL,
              minutes_studied     INTEGER NOT NULL DEFAULT 0,
              exercises_completed INTEGER NOT NULL DEFAULT 0,
              contents_completed  INTEGER NOT NULL DEFAULT 0,
              PRIMARY KEY (user_id, activity_date)
            );

            CREATE TABLE IF NOT EXISTS video_lessons (
              id          TEXT PRIMARY KEY,
              course_code TEXT NOT NULL,
              lesson      INTEGER NOT NULL,
              title       TEXT NOT NULL,
              url         TEXT NOT NULL
            );
            """
        )
        con.commit()


# -------------- users / auth --------------
def create_user(user_id: str, email: str, pw_hash: str, pw_salt: Optional[str] = None):
    _exec(
        "INSERT INTO users(user_id, email, pw_hash, pw_salt) VALUES (?,?,?,?)",
        (user_id, email, pw_hash, pw_salt),
    )


def get_user(user_id: str) -> Optional[sqlite3.Row]:
    rows = _query("SELECT user_id, email, pw_hash, pw_salt FROM users WHERE user_id = ?", (user_id,))
    return rows[0] if rows else None


def get_user_by_email(email: str) -> Optional[sqlite3.Row]:
    rows = _query(
        "SELECT user_id, email, pw_hash, pw_salt FROM users WHERE email = ?",
        (email.strip().lower(),),
    )
    return rows[0] if rows else None


def update_user_password(user_id: str, pw_hash: str, pw_salt: Optional[str]) -> None:
    _exec(
        "UPDATE users SET pw_hash = ?, pw_salt = ? WHERE user_id = ?",
        (pw_hash, pw_salt, user_id),
    )


# -------------- courses / entitlements --------------
def upsert_course(code: str, name: str, description: Optional[str] = None, active: bool = True):
    _exec(
        """
        INSERT INTO courses(code, name, description, active) VALUES (?,?,?,?)
        ON CONFLICT(code) DO UPDATE SET
          name = excluded.name,
          description = excluded.description,
          active = excluded.active
        """,
        (code, name, description, 1 if active else 0),
    )


def get_course(code: str, active_only: bool = True) -> Optional[sqlite3.Row]:
    sql = "SELECT code, name, description, active, created_at FROM courses WHERE code = ?"
    if active_only:
        sql += " AND active = 1"
    rows = _query(sql, (code,))
    return rows[0] if rows else None


def list_courses(active_only: bool = True) -> list[sqlite3.Row]:
    sql = "SELECT code, name, description, active, created_at FROM courses"
    if active_only:
        sql += " WHERE active = 1"
    return _query(sql + " ORDER BY name COLLATE NOCASE")


def unlock_course(user_id: str, course_code: str, unlocked_at: Optional[str] = None) -> bool:
    """Grant ``course_code`` to ``user_id``; return False when it was already unlocked."""
    cur = _exec(
        "INSERT OR IGNORE INTO course_unlocks(user_id, course_code, unlocked_at) VALUES (?,?,?)",
        (user_id, course_code, unlocked_at or now_iso()),
    )
    return cur.rowcount > 0


def get_course_unlock(user_id: str, course_code: str) -> Optional[sqlite3.Row]:
    rows = _query(
        """
        SELECT id, user_id, course_code, unlocked_at, last_accessed_at, access_count
        FROM course_unlocks WHERE user_id = ? AND course_code = ?
        """,
        (user_id, course_code),
    )
    return rows[0] if rows else None


def has_course_access(user_id: str, course_code: str) -> bool:
    return get_course_unlock(user_id, course_code) is not None


def list_course_unlocks(user_id: str) -> list[sqlite3.Row]:
    return _query(
        """
        SELECT course_code, unlocked_at, last_accessed_at, access_count
        FROM course_unlocks WHERE user_id = ?
        """,
        (user_id,),
    )


def list_unlocked_active_courses(user_id: str) -> list[sqlite3.Row]:
    return _query(
        """
        SELECT u.course_code, u.unlocked_at, u.last_accessed_at, u.access_count, c.name
        FROM course_unlocks u
        JOIN courses c ON c.code = u.course_code
        WHERE u.user_id = ? AND c.active = 1
        ORDER BY c.name COLLATE NOCASE
        """,
        (user_id,),
    )


def touch_course_access(user_id: str, course_code: str, accessed_at: Optional[str] = None) -> None:
    _exec(
        """
        UPDATE course_unlocks
        SET last_accessed_at = ?, access_count = access_count + 1
        WHERE user_id = ? AND course_code = ?
        """,
        (accessed_at or now_iso(), user_id, course_code),
    )


# -------------- exercises --------------
def upsert_exercise(
    exercise_id: str,
    course_code: str,
    level: str,
    lesson: int,
    exercise_type: str,
    solution: str,
    *,
    prompt: str = "",
    options: Optional[Dict[str, Any]] = None,
    active: bool = True,
    created_at: Optional[str] = None,
):
    _exec(
        """
        INSERT INTO exercises(id, course_code, level, lesson, exercise_type, prompt, options, solution, active, created_at)
        VALUES (?,?,?,?,?,?,?,?,?,?)
        ON CONFLICT(id) DO UPDATE SET
          course_code = excluded.course_code,
          level = excluded.level,
          lesson = excluded.lesson,
          exercise_type = excluded.exercise_type,
          prompt = excluded.prompt,
          options = excluded.options,
          solution = excluded.solution,
          active = excluded.active
        """,
        (
            exercise_id,
            course_code,
            str(level),
            int(lesson),
            exercise_type,
            prompt,
            json_dumps(options or {}),
            solution,
            1 if active else 0,
            created_at or now_iso(),
        ),
    )


def _decode_options(value: Optional[str]) -> Dict[str, Any]:
    if not value:
        return {}
    try:
        decoded = json.loads(value)
    except json.JSONDecodeError:
        return {}
    return decoded if isinstance(decoded, dict) else {}


def _exercise_dict(row: sqlite3.Row) -> Dict[str, Any]:
    record = dict(row)
    record["options"] = _decode_options(record.get("options"))
    record["active"] = bool(record.get("active"))
    return record


def get_exercise_row(exercise_id: str) -> Optional[Dict[str, Any]]:
    rows = _query(
        """
        SELECT id, course_code, level, lesson, exercise_type, prompt, options, solution, active, created_at
        FROM exercises WHERE id = ?
        """,
        (exercise_id,),
    )
    return _exercise_dict(rows[0]) if rows else None


def list_exercises(
    course_code: str,
    level: Optional[str] = None,
    lesson: Optional[int] = None,
    active_only: bool = True,
) -> list[Dict[str, Any]]:
    clauses = ["course_code = ?"]
    params: list[Any] = [course_code]
    if level is not None:
        clauses.append("level = ?")
        params.append(str(level))
    if lesson is not None:
        clauses.append("lesson = ?")
        params.append(int(lesson))
    if active_only:
        clauses.append("active = 1")
    rows = _query(
        f"""
        SELECT id, course_code, level, lesson, exercise_type, prompt, options, solution, active, created_at
        FROM exercises WHERE {' AND '.join(clauses)}
        ORDER BY created_at ASC, id ASC
        """,
        params,
    )
    return [_exercise_dict(row) for row in rows]


def get_exercise_meta(exercise_ids: Sequence[str]) -> Dict[str, Dict[str, Any]]:
    if not exercise_ids:
        return {}
    rows = _query(
        f"SELECT id, course_code, lesson FROM exercises WHERE id IN ({_placeholders(exercise_ids)})",
        list(exercise_ids),
    )
    return {row["id"]: {"course_code": row["course_code"], "lesson": row["lesson"]} for row in rows}


def count_active_exercises_by_course(course_codes: Sequence[str]) -> Dict[str, int]:
    if not course_codes:
        return {}
    rows = _query(
        f"""
        SELECT course_code, COUNT(*) AS total FROM exercises
        WHERE active = 1 AND course_code IN ({_placeholders(course_codes)})
        GROUP BY course_code
        """,
        list(course_codes),
    )
    return {row["course_code"]: int(row["total"]) for row in rows}


# -------------- attempts / completions --------------
def list_attempts(user_id: str, exercise_id: str) -> list[sqlite3.Row]:
    return _query(
        """
        SELECT attempt_number, answer, is_correct, attempted_at
        FROM exercise_attempts
        WHERE user_id = ? AND exercise_id = ?
        ORDER BY attempt_number ASC
        """,
        (user_id, exercise_id),
    )


def record_attempt(
    user_id: str,
    exercise_id: str,
    attempt_number: int,
    answer: str,
    is_correct: bool,
    *,
    max_attempts: int = 3,
    attempted_at: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Insert attempt ``attempt_number`` only if it is still the next free slot.

    The insert is conditional on the stored attempt count being exactly
    ``attempt_number - 1`` with no correct attempt among them, so two racing
    submissions cannot both claim the same number. Returns ``None`` when the
    slot was taken. A correct attempt upserts the completion row in the same
    transaction.
    """
    timestamp = attempted_at or now_iso()
    with _conn() as con:
        try:
            cur = con.execute(
                """
                INSERT INTO exercise_attempts(user_id, exercise_id, attempt_number, answer, is_correct, attempted_at)
                SELECT ?, ?, ?, ?, ?, ?
                WHERE ? <= ?
                  AND (SELECT COUNT(*) FROM exercise_attempts WHERE user_id = ? AND exercise_id = ?) = ?
                  AND NOT EXISTS (
                    SELECT 1 FROM exercise_attempts
                    WHERE user_id = ? AND exercise_id = ? AND is_correct = 1
                  )
                """,
                (
                    user_id, exercise_id, int(attempt_number), answer, 1 if is_correct else 0, timestamp,
                    int(attempt_number), int(max_attempts),
                    user_id, exercise_id, int(attempt_number) - 1,
                    user_id, exercise_id,
                ),
            )
        except sqlite3.IntegrityError:
            con.rollback()
            return None
        if cur.rowcount == 0:
            con.rollback()
            return None
        if is_correct:
            _upsert_completion(con, user_id, exercise_id, int(attempt_number), timestamp)
        con.commit()
    return {
        "user_id": user_id,
        "exercise_id": exercise_id,
        "attempt_number": int(attempt_number),
        "answer": answer,
        "is_correct": bool(is_correct),
        "attempted_at": timestamp,
    }


def _upsert_completion(
    con: sqlite3.Connection,
    user_id: str,
    exercise_id: str,
    attempts: int,
    completed_at: str,
) -> None:
    first = con.execute(
        "SELECT MIN(attempted_at) AS first_at FROM exercise_attempts WHERE user_id = ? AND exercise_id = ?",
        (user_id, exercise_id),
    ).fetchone()
    first_attempt_at = (first["first_at"] if first else None) or completed_at
    con.execute(
        """
        INSERT INTO exercise_progress(user_id, exercise_id, completed, attempts, first_attempt_at, completed_at)
        VALUES (?, ?, 1, ?, ?, ?)
        ON CONFLICT(user_id, exercise_id) DO UPDATE SET
          completed = 1,
          attempts = excluded.attempts,
          first_attempt_at = COALESCE(exercise_progress.first_attempt_at, excluded.first_attempt_at),
          completed_at = COALESCE(exercise_progress.completed_at, excluded.completed_at)
        """,
        (user_id, exercise_id, int(attempts), first_attempt_at, completed_at),
    )


def upsert_completion(
    user_id: str,
    exercise_id: str,
    attempts: int = 1,
    completed_at: Optional[str] = None,
    time_spent_seconds: Optional[int] = None,
) -> None:
    with _conn() as con:
        _upsert_completion(con, user_id, exercise_id, attempts, completed_at or now_iso())
        if time_spent_seconds is not None:
            con.execute(
                "UPDATE exercise_progress SET time_spent_seconds = ? WHERE user_id = ? AND exercise_id = ?",
                (int(time_spent_seconds), user_id, exercise_id),
            )
        con.commit()


def get_completion(user_id: str, exercise_id: str) -> Optional[sqlite3.Row]:
    rows = _query(
        """
        SELECT user_id, exercise_id, completed, attempts, first_attempt_at, completed_at, time_spent_seconds
        FROM exercise_progress WHERE user_id = ? AND exercise_id = ? AND completed = 1
        """,
        (user_id, exercise_id),
    )
    return rows[0] if rows else None


def list_completed_exercise_ids(user_id: str) -> set[str]:
    rows = _query(
        "SELECT exercise_id FROM exercise_progress WHERE user_id = ? AND completed = 1",
        (user_id,),
    )
    return {row["exercise_id"] for row in rows}


def list_exercise_progress(user_id: str) -> list[Dict[str, Any]]:
    """Per-exercise flags for every exercise the learner attempted or completed."""
    progress: Dict[str, Dict[str, Any]] = {}
    attempt_rows = _query(
        """
        SELECT exercise_id, COUNT(*) AS attempts, MAX(is_correct) AS any_correct,
               MIN(attempted_at) AS first_attempt_at, MAX(attempted_at) AS last_attempt_at
        FROM exercise_attempts WHERE user_id = ?
        GROUP BY exercise_id
        """,
        (user_id,),
    )
    for row in attempt_rows:
        progress[row["exercise_id"]] = {
            "exercise_id": row["exercise_id"],
            "completed": False,
            "attempts": int(row["attempts"]),
            "first_attempt_at": row["first_attempt_at"],
            "last_attempt_at": row["last_attempt_at"],
            "completed_at": None,
            "time_spent_seconds": 0,
        }
    completion_rows = _query(
        """
        SELECT exercise_id, completed, attempts, first_attempt_at, completed_at, time_spent_seconds
        FROM exercise_progress WHERE user_id = ?
        """,
        (user_id,),
    )
    for row in completion_rows:
        entry = progress.setdefault(
            row["exercise_id"],
            {
                "exercise_id": row["exercise_id"],
                "completed": False,
                "attempts": int(row["attempts"] or 0),
                "first_attempt_at": row["first_attempt_at"],
                "last_attempt_at": None,
                "completed_at": None,
                "time_spent_seconds": 0,
            },
        )
        entry["completed"] = bool(row["completed"])
        entry["completed_at"] = row["completed_at"]
        entry["time_spent_seconds"] = int(row["time_spent_seconds"] or 0)
    return list(progress.values())


# -------------- content progress (optional) --------------
def upsert_content_progress(
    user_id: str,
    content_id: str,
    *,
    progress_status: str = "in_progress",
    progress_percentage: float = 0.0,
    time_spent: int = 0,
    last_accessed_at: Optional[str] = None,
) -> None:
    accessed = last_accessed_at or now_iso()
    completed_at = accessed if progress_status == "completed" else None
    try:
        _exec(
            """
            INSERT INTO content_progress(
              user_id, content_id, progress_status, progress_percentage, time_spent, last_accessed_at, completed_at
            ) VALUES (?,?,?,?,?,?,?)
            ON CONFLICT(user_id, content_id) DO UPDATE SET
              progress_status = excluded.progress_status,
              progress_percentage = MAX(content_progress.progress_percentage, excluded.progress_percentage),
              time_spent = content_progress.time_spent + excluded.time_spent,
              last_accessed_at = excluded.last_accessed_at,
              completed_at = COALESCE(content_progress.completed_at, excluded.completed_at)
            """,
            (
                user_id,
                content_id,
                progress_status,
                float(progress_percentage),
                int(time_spent),
                accessed,
                completed_at,
            ),
        )
    except sqlite3.OperationalError as exc:
        raise Unavailable(f"content_progress unavailable: {exc}") from exc


def list_content_progress(user_id: str) -> list[sqlite3.Row]:
    return _query_optional(
        "content_progress",
        """
        SELECT content_id, progress_status, progress_percentage, time_spent, last_accessed_at, completed_at
        FROM content_progress WHERE user_id = ?
        """,
        (user_id,),
    )


# -------------- access logs / daily activity (optional) --------------
def insert_access_log(
    user_id: str,
    course_code: str,
    *,
    button_id: Optional[str] = None,
    action: str = "access",
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    accessed_at: Optional[str] = None,
) -> str:
    timestamp = accessed_at or now_iso()
    try:
        _exec(
            """
            INSERT INTO access_logs(user_id, course_code, button_id, action, ip_address, user_agent, accessed_at)
            VALUES (?,?,?,?,?,?,?)
            """,
            (user_id, course_code, button_id, action, ip_address, user_agent, timestamp),
        )
    except sqlite3.OperationalError as exc:
        raise Unavailable(f"access_logs unavailable: {exc}") from exc
    return timestamp


def list_access_logs(user_id: str, limit: int = 100) -> list[sqlite3.Row]:
    return _query_optional(
        "access_logs",
        """
        SELECT accessed_at, course_code, action FROM access_logs
        WHERE user_id = ? ORDER BY accessed_at DESC, id DESC LIMIT ?
        """,
        (user_id, int(limit)),
    )


def upsert_daily_activity(
    user_id: str,
    activity_date: str,
    minutes_studied: int,
    exercises_completed: int = 0,
    contents_completed: int = 0,
) -> None:
    _exec(
        """
        INSERT INTO daily_activity(user_id, activity_date, minutes_studied, exercises_completed, contents_completed)
        VALUES (?,?,?,?,?)
        ON CONFLICT(user_id, activity_date) DO UPDATE SET
          minutes_studied = excluded.minutes_studied,
          exercises_completed = excluded.exercises_completed,
          contents_completed = excluded.contents_completed
        """,
        (user_id, activity_date, int(minutes_studied), int(exercises_completed), int(contents_completed)),
    )


def list_daily_activity(user_id: str, limit: int = 30) -> list[sqlite3.Row]:
    return _query_optional(
        "daily_activity",
        """
        SELECT activity_date, minutes_studied, exercises_completed, contents_completed
        FROM daily_activity WHERE user_id = ?
        ORDER BY activity_date DESC LIMIT ?
        """,
        (user_id, int(limit)),
    )


# -------------- video lessons --------------
def upsert_video_lesson(video_id: str, course_code: str, lesson: int, title: str, url: str) -> None:
    _exec(
        """
        INSERT INTO video_lessons(id, course_code, lesson, title, url) VALUES (?,?,?,?,?)
        ON CONFLICT(id) DO UPDATE SET
          course_code = excluded.course_code,
          lesson = excluded.lesson,
          title = excluded.title,
          url = excluded.url
        """,
        (video_id, course_code, int(lesson), title, url),
    )


def list_video_lessons(course_code: str) -> list[sqlite3.Row]:
    return _query(
        "SELECT id, course_code, lesson, title, url FROM video_lessons WHERE course_code = ? ORDER BY lesson, id",
        (course_code,),
    )


# -------------- precomputed summaries --------------
def fetch_precomputed_summary(view: str, user_id: str) -> Optional[str]:
    """Return the raw JSON payload of ``view`` for ``user_id``.

    Raises Unavailable when the view is not deployed in this database.
    """
    if view not in SUMMARY_VIEWS:
        raise ValueError(f"Unknown summary view: {view}")
    rows = _query_optional(view, f"SELECT payload FROM {view} WHERE user_id = ? LIMIT 1", (user_id,))
    if not rows:
        return None
    payload = rows[0]["payload"]
    return payload if payload is None or isinstance(payload, str) else str(payload)
