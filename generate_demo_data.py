"""Seed a LinguaTrack database with demo content, or replay a learner against a running server.

    python generate_demo_data.py seed --db demo.db --days 21
    python generate_demo_data.py simulate --base-url http://127.0.0.1:8000
"""
from __future__ import annotations

import argparse
import json
import os
import random
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Sequence

import requests

DEMO_EMAIL = "demo@linguatrack.test"
DEMO_PASSWORD = "Demo1234"
DEMO_USER_ID = "demo-learner"

COURSES = {
    "ENGA1": ("English A1", "Beginner English for Italian speakers"),
    "SPAA1": ("Español A1", "Spagnolo per principianti"),
}

# (type tag, prompt, options, solution, sample answers: correct first)
EXERCISES: List[Dict[str, Any]] = [
    {
        "type": "translate",
        "prompt": "Il gatto è nero",
        "options": {"words": ["The", "cat", "is", "black", "dog", "white"]},
        "solution": "The cat is black",
        "answers": [["The", "cat", "is", "black"], ["The", "dog", "is", "black"]],
    },
    {
        "type": "fill-blank",
        "prompt": "I ___ a student",
        "options": {"choices": ["am", "is", "are"]},
        "solution": "am",
        "answers": [["am"], ["is"]],
    },
    {
        "type": "listen-order",
        "prompt": "Seleziona ciò che senti",
        "options": {"words": ["good", "morning", "night", "to", "you"], "audio": "good_morning.mp3"},
        "solution": "good morning to you",
        "answers": [["good", "morning", "to", "you"], ["good", "night", "to", "you"]],
    },
    {
        "type": "match-pairs",
        "prompt": "Seleziona le coppie",
        "options": {"words": ["cane", "dog", "casa", "house", "mela", "apple"]},
        "solution": json.dumps({"cane": "dog", "casa": "house", "mela": "apple"}),
        "answers": [
            [["cane", "dog"], ["casa", "house"], ["mela", "apple"]],
            [["cane", "house"], ["casa", "dog"], ["mela", "apple"]],
        ],
    },
]

LEVELS = ("A1.1", "A1.2")
LESSONS_PER_LEVEL = 2


def _exercise_id(course: str, level: str, lesson: int, index: int) -> str:
    return f"{course}-{level}-L{lesson}-{index + 1}".lower()


def seed(db_path: str, days: int, seed_value: int) -> Dict[str, int]:
    os.environ["DB_PATH"] = db_path
    # db reads DB_PATH at import time
    import db
    from app import _hash_password
    from engines.attempt_tracker import AttemptTracker

    db.init()
    rng = random.Random(seed_value)
    counts = {"courses": 0, "exercises": 0, "attempts": 0, "access_logs": 0, "daily_activity": 0}

    created = datetime(2024, 1, 1, tzinfo=timezone.utc)
    for code, (name, description) in COURSES.items():
        db.upsert_course(code, name, description)
        counts["courses"] += 1
        for level in LEVELS:
            for lesson in range(1, LESSONS_PER_LEVEL + 1):
                db.upsert_video_lesson(
                    f"{code}-{level}-video-{lesson}".lower(),
                    code,
                    lesson,
                    f"{name} {level} - lezione {lesson}",
                    f"https://videos.example.com/{code.lower()}/{level}/{lesson}.mp4",
                )
                for index, item in enumerate(EXERCISES):
                    created += timedelta(minutes=1)
                    db.upsert_exercise(
                        _exercise_id(code, level, lesson, index),
                        code,
                        level,
                        lesson,
                        item["type"],
                        item["solution"],
                        prompt=item["prompt"],
                        options=item["options"],
                        created_at=created.isoformat(timespec="seconds"),
                    )
                    counts["exercises"] += 1

    if not db.get_user_by_email(DEMO_EMAIL):
        pw_hash, pw_salt = _hash_password(DEMO_PASSWORD)
        db.create_user(DEMO_USER_ID, DEMO_EMAIL, pw_hash, pw_salt)
    db.unlock_course(DEMO_USER_ID, "ENGA1")

    tracker = AttemptTracker()
    for lesson in range(1, LESSONS_PER_LEVEL + 1):
        for index, item in enumerate(EXERCISES):
            exercise_id = _exercise_id("ENGA1", LEVELS[0], lesson, index)
            state = tracker.get_attempt_state(DEMO_USER_ID, exercise_id)
            while state.can_attempt:
                correct = rng.random() < 0.6
                answer = item["answers"][0] if correct else item["answers"][1]
                tracker.record_attempt(DEMO_USER_ID, exercise_id, answer)
                counts["attempts"] += 1
                state = tracker.get_attempt_state(DEMO_USER_ID, exercise_id)

    today = datetime.now(timezone.utc).date()
    for offset in range(days):
        day = today - timedelta(days=offset)
        if rng.random() < 0.3:
            continue
        minutes = rng.randint(5, 45)
        db.upsert_daily_activity(DEMO_USER_ID, day.isoformat(), minutes, rng.randint(0, 6), rng.randint(0, 2))
        counts["daily_activity"] += 1
        for _ in range(rng.randint(1, 3)):
            accessed = datetime(day.year, day.month, day.day, rng.randint(7, 22), rng.randint(0, 59), tzinfo=timezone.utc)
            db.insert_access_log(
                DEMO_USER_ID,
                "ENGA1",
                button_id=rng.choice(["levels", "videos", "books"]),
                action="access",
                accessed_at=accessed.isoformat(timespec="seconds"),
            )
            counts["access_logs"] += 1
    return counts


def simulate(base_url: str, code: str) -> int:
    """Register (or log in) a learner over HTTP, answer one lesson and print the dashboard."""
    try:
        r = requests.get(base_url, timeout=5)
        print(f"Server status: {r.status_code}")
    except requests.RequestException as exc:
        print(f"Server connection error: {exc}", file=sys.stderr)
        return 1

    r = requests.post(
        f"{base_url}/auth/register",
        json={"email": DEMO_EMAIL, "password": DEMO_PASSWORD, "access_code": code},
        timeout=10,
    )
    print(f"Registration: {r.status_code}")
    r = requests.post(f"{base_url}/auth/login", json={"email": DEMO_EMAIL, "password": DEMO_PASSWORD}, timeout=10)
    if not r.ok:
        print(f"Login failed: {r.status_code} {r.text}", file=sys.stderr)
        return 1
    headers = {"Authorization": f"Bearer {r.json()['token']}"}
    requests.post(f"{base_url}/courses/unlock", json={"code": code}, headers=headers, timeout=10)
    requests.post(f"{base_url}/courses/access", json={"course_code": code, "button_id": "levels"}, headers=headers, timeout=10)

    level, lesson = LEVELS[0], 1
    r = requests.get(f"{base_url}/courses/{code}/levels/{level}/lessons/{lesson}/exercises", headers=headers, timeout=10)
    if not r.ok:
        print(f"Could not load lesson: {r.status_code} {r.text}", file=sys.stderr)
        return 1
    samples = {item["type"]: item["answers"] for item in EXERCISES}
    for exercise in r.json()["exercises"]:
        answers = samples.get(exercise["exercise_type"])
        if not answers:
            continue
        answer = random.choice(answers)
        resp = requests.post(
            f"{base_url}/exercises/{exercise['id']}/attempts",
            json={"answer": answer},
            headers=headers,
            timeout=10,
        )
        print(f"[{exercise['id']}] → {resp.status_code} {resp.json()}")

    r = requests.get(f"{base_url}/stats/dashboard", headers=headers, timeout=10)
    print(json.dumps(r.json(), indent=2, ensure_ascii=False))
    return 0 if r.ok else 1


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)

    seed_parser = sub.add_parser("seed", help="Write demo courses, exercises and activity into a database")
    seed_parser.add_argument("--db", default=os.getenv("DB_PATH", "data.db"), help="SQLite database path")
    seed_parser.add_argument("--days", type=int, default=21, help="Days of study activity to generate")
    seed_parser.add_argument("--seed", type=int, default=7, help="Random seed")

    sim_parser = sub.add_parser("simulate", help="Drive a running API as the demo learner")
    sim_parser.add_argument("--base-url", default="http://127.0.0.1:8000")
    sim_parser.add_argument("--code", default="ENGA1", help="Access code to unlock")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)
    if args.command == "seed":
        if args.days <= 0:
            print("--days must be positive", file=sys.stderr)
            return 2
        counts = seed(args.db, args.days, args.seed)
        print(json.dumps({"db": args.db, **counts}, indent=2))
        return 0
    return simulate(args.base_url.rstrip("/"), args.code)


if __name__ == "__main__":
    raise SystemExit(main())
