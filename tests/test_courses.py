from datetime import datetime, timezone

import pytest

import db
from engines.courses import CourseCatalog, sanitize_code
from errors import Forbidden, NotFound, ValidationFailed

NOW = datetime(2024, 1, 7, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def catalog():
    return CourseCatalog(clock=lambda: NOW)


@pytest.mark.parametrize("raw, expected", [(" enga1 ", "ENGA1"), ("abc", "ABC")])
def test_sanitize_code(raw, expected):
    assert sanitize_code(raw) == expected


@pytest.mark.parametrize("raw", ["", "  ", "ab", "X" * 21, None, 123])
def test_sanitize_code_rejects(raw):
    with pytest.raises(ValidationFailed):
        sanitize_code(raw)


def test_validate_code(course_with_learner, catalog, caplog):
    assert catalog.validate_code("enga1")["name"] == "English A1"

    with caplog.at_level("WARNING", logger="linguatrack.access"):
        with pytest.raises(NotFound):
            catalog.validate_code("NOPE1", client="10.0.0.1")
    assert "10.0.0.1" in caplog.text

    db.upsert_course("OLD01", "Retired", active=False)
    with pytest.raises(NotFound):
        catalog.validate_code("OLD01")


def test_unlock_is_idempotent(course_with_learner, catalog):
    db.upsert_course("SPAA1", "Spanish A1")

    first = catalog.unlock("newbie", "spaa1")
    second = catalog.unlock("newbie", "SPAA1")

    assert first["newly_unlocked"] is True
    assert second["newly_unlocked"] is False
    assert first["unlocked_at"] == second["unlocked_at"]
    assert db.has_course_access("newbie", "SPAA1")


def test_list_user_courses_orders_enabled_first(course_with_learner, catalog):
    db.upsert_course("AAA01", "Arabic A1")
    db.upsert_course("ZZZ01", "Zulu A1", active=False)
    db.touch_course_access("learner", "ENGA1", "2024-01-05T10:00:00+00:00")

    listing = catalog.list_user_courses("learner")

    assert [c["code"] for c in listing["courses"]] == ["ENGA1", "AAA01"]
    assert listing["courses"][0]["enabled"] is True
    assert listing["courses"][0]["access_count"] == 1
    assert listing["courses"][1]["enabled"] is False
    assert listing["stats"] == {"total": 2, "enabled": 1, "disabled": 1, "recently_accessed": 1}


def test_log_access_updates_counters(course_with_learner, catalog):
    result = catalog.log_access("learner", "enga1", button_id="videos", ip_address="10.0.0.2", user_agent="pytest")

    assert result["logged"] is True
    unlock = db.get_course_unlock("learner", "ENGA1")
    assert unlock["access_count"] == 1
    assert unlock["last_accessed_at"] == NOW.isoformat(timespec="seconds")
    assert len(db.list_access_logs("learner")) == 1


def test_log_access_survives_missing_log_table(course_with_learner, catalog, caplog):
    db._exec("DROP TABLE access_logs")

    with caplog.at_level("WARNING", logger="linguatrack.access"):
        result = catalog.log_access("learner", "ENGA1")

    assert result["logged"] is False
    assert db.get_course_unlock("learner", "ENGA1")["access_count"] == 1
    assert "Access log not written" in caplog.text


def test_log_access_requires_entitlement(course_with_learner, catalog):
    with pytest.raises(Forbidden):
        catalog.log_access("stranger", "ENGA1")
    with pytest.raises(ValidationFailed):
        catalog.log_access("learner", "ENGA1", action="delete")


def test_level_and_lesson_overview(course_with_learner, catalog):
    db.record_attempt("learner", "ex-fill", 1, "HELLO", True)
    db.upsert_exercise("ex-b1", "ENGA1", "B1", 1, "translate", "hi")

    levels = catalog.level_overview("learner", "ENGA1")
    assert levels == [
        {"level": "A1", "lessons": [1, 2], "total_exercises": 4, "completed_exercises": 1},
        {"level": "B1", "lessons": [1], "total_exercises": 1, "completed_exercises": 0},
    ]

    lessons = catalog.lesson_overview("learner", "ENGA1", "A1")
    assert lessons == [
        {"lesson": 1, "total_exercises": 2, "completed_exercises": 1},
        {"lesson": 2, "total_exercises": 2, "completed_exercises": 0},
    ]

    with pytest.raises(NotFound):
        catalog.lesson_overview("learner", "ENGA1", "C2")


def test_lesson_exercises_hide_solutions_and_resume(course_with_learner, catalog):
    db.record_attempt("learner", "ex-fill", 1, "HELLO", True)

    lesson = catalog.lesson_exercises("learner", "ENGA1", "A1", 1)

    assert [e.id for e in lesson["exercises"]] == ["ex-fill", "ex-translate"]
    assert lesson["exercises"][1].exercise_type.value == "translate"
    assert "solution" not in lesson["exercises"][0].model_dump()
    assert lesson["exercises"][0].completed is True
    assert lesson["starting_index"] == 1

    db.record_attempt("learner", "ex-translate", 1, "The cat is black", True)
    assert catalog.lesson_exercises("learner", "ENGA1", "A1", 1)["starting_index"] == 1

    with pytest.raises(NotFound):
        catalog.lesson_exercises("learner", "ENGA1", "A1", 9)
    with pytest.raises(Forbidden):
        catalog.lesson_exercises("stranger", "ENGA1", "A1", 1)


def test_video_lessons(course_with_learner, catalog):
    db.upsert_video_lesson("v2", "ENGA1", 2, "Greetings", "https://videos.example.com/2.mp4")
    db.upsert_video_lesson("v1", "ENGA1", 1, "Alphabet", "https://videos.example.com/1.mp4")

    videos = catalog.video_lessons("learner", "enga1")

    assert [v["id"] for v in videos] == ["v1", "v2"]
    with pytest.raises(Forbidden):
        catalog.video_lessons("stranger", "ENGA1")


def test_record_content_progress(course_with_learner, catalog):
    catalog.record_content_progress("learner", "book-1", time_spent=120)
    catalog.record_content_progress("learner", "book-1", progress_status="completed", progress_percentage=100, time_spent=60)

    rows = db.list_content_progress("learner")
    assert len(rows) == 1
    assert rows[0]["progress_status"] == "completed"
    assert rows[0]["time_spent"] == 180
    assert rows[0]["completed_at"] == NOW.isoformat(timespec="seconds")

    with pytest.raises(ValidationFailed):
        catalog.record_content_progress("learner", "book-1", progress_status="paused")
    with pytest.raises(ValidationFailed):
        catalog.record_content_progress("learner", "book-1", progress_percentage=150)
