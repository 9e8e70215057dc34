import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


@pytest.fixture
def temp_db(monkeypatch, tmp_path):
    import db

    db_path = tmp_path / "test.db"
    monkeypatch.setattr(db, "DB_PATH", str(db_path))
    monkeypatch.delenv("SUMMARY_RPC_URL", raising=False)

    # Reset the connection pool for each test
    db._pool = db.SQLiteConnectionPool(str(db_path), max_connections=10)
    db.init()
    yield str(db_path)
    db._pool.close_all()


@pytest.fixture
def course_with_learner(temp_db):
    """One active course unlocked for ``learner`` with one exercise of each type."""
    import json

    import db

    db.upsert_course("ENGA1", "English A1", "Beginner English")
    db.unlock_course("learner", "ENGA1")
    db.upsert_exercise(
        "ex-fill", "ENGA1", "A1", 1, "fill-blank", "HELLO",
        options={"choices": ["HELLO", "BYE"]}, created_at="2024-01-01T10:00:00+00:00",
    )
    db.upsert_exercise(
        "ex-translate", "ENGA1", "A1", 1, "Traduci", "The cat is black",
        created_at="2024-01-01T10:01:00+00:00",
    )
    db.upsert_exercise(
        "ex-listen", "ENGA1", "A1", 2, "seleziona ciò che senti", "good morning",
        created_at="2024-01-01T10:02:00+00:00",
    )
    db.upsert_exercise(
        "ex-pairs", "ENGA1", "A1", 2, "Seleziona le coppie",
        json.dumps({"cane": "dog", "casa": "house"}),
        created_at="2024-01-01T10:03:00+00:00",
    )
    return "learner"
