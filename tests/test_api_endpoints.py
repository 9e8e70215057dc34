import asyncio
import json
from typing import Optional

import pytest

import app
import db
from rate_limiter import FixedWindowRateLimiter

PASSWORD = "Secret123"


def _request(
    method: str,
    path: str,
    payload: Optional[dict] = None,
    *,
    token: Optional[str] = None,
    query: str = "",
    headers: Optional[dict] = None,
) -> tuple[int, dict, dict]:
    async def _call():
        body = json.dumps(payload).encode("utf-8") if payload is not None else b""
        received_once = False

        async def receive():
            nonlocal received_once
            if not received_once:
                received_once = True
                return {"type": "http.request", "body": body, "more_body": False}
            return {"type": "http.disconnect"}

        messages = []

        async def send(message):
            messages.append(message)

        raw_headers = [
            (b"host", b"testserver"),
            (b"content-type", b"application/json"),
            (b"content-length", str(len(body)).encode()),
        ]
        if token:
            raw_headers.append((b"authorization", f"Bearer {token}".encode()))
        for name, value in (headers or {}).items():
            raw_headers.append((name.lower().encode(), value.encode()))

        scope = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "scheme": "http",
            "query_string": query.encode(),
            "headers": raw_headers,
            "client": ("testclient", 12345),
            "server": ("testserver", 80),
            "state": {},
        }

        await app.app(scope, receive, send)
        return messages

    messages = asyncio.run(_call())
    status = 500
    response_headers = {}
    body_bytes = b""
    for message in messages:
        if message["type"] == "http.response.start":
            status = message["status"]
            response_headers = {k.decode().lower(): v.decode() for k, v in message.get("headers", [])}
        elif message["type"] == "http.response.body":
            body_bytes += message.get("body", b"")
    data = json.loads(body_bytes.decode("utf-8")) if body_bytes else {}
    return status, data, response_headers


@pytest.fixture
def api(course_with_learner, monkeypatch):
    monkeypatch.setattr(app, "TOKENS", {})
    monkeypatch.setattr(app, "CODE_RATE_LIMITER", FixedWindowRateLimiter(limit=10, window=60))
    return app


def _register_and_login(email="learner@example.com", access_code="ENGA1") -> str:
    status, data, _ = _request(
        "POST", "/auth/register", {"email": email, "password": PASSWORD, "access_code": access_code}
    )
    assert status == 200, data
    status, data, _ = _request("POST", "/auth/login", {"email": email, "password": PASSWORD})
    assert status == 200, data
    return data["token"]


def test_register_unlocks_course_and_login_issues_token(api):
    status, data, _ = _request(
        "POST", "/auth/register", {"email": "New@Example.com", "password": PASSWORD, "access_code": " enga1 "}
    )
    assert status == 200
    assert data["unlocked_course"] == "ENGA1"
    assert db.has_course_access(data["user_id"], "ENGA1")

    status, data, _ = _request("POST", "/auth/register", {"email": "new@example.com", "password": PASSWORD})
    assert status == 400

    status, login, _ = _request("POST", "/auth/login", {"email": "new@example.com", "password": PASSWORD})
    assert status == 200
    assert login["token"] in app.TOKENS

    status, _, _ = _request("POST", "/auth/login", {"email": "new@example.com", "password": "Wrong1234"})
    assert status == 401


@pytest.mark.parametrize("password", ["short1A", "alllowercase1", "ALLUPPERCASE1", "NoDigitsHere"])
def test_register_rejects_weak_passwords(api, password):
    status, data, _ = _request("POST", "/auth/register", {"email": "weak@example.com", "password": password})
    assert status == 400
    assert "password" in data["detail"]


def test_register_rejects_unknown_access_code(api):
    status, _, _ = _request(
        "POST", "/auth/register", {"email": "x@example.com", "password": PASSWORD, "access_code": "NOPE1"}
    )
    assert status == 404
    assert db.get_user_by_email("x@example.com") is None


def test_protected_routes_require_token(api):
    for method, path in [
        ("GET", "/courses"),
        ("GET", "/stats/dashboard"),
        ("POST", "/exercises/ex-fill/attempts"),
        ("GET", "/auth/check"),
    ]:
        status, data, _ = _request(method, path, {"answer": "x"} if method == "POST" else None)
        assert status == 401
        assert data["detail"] == "missing or invalid token"


def test_attempt_flow_reveals_solution(api):
    token = _register_and_login()

    statuses = []
    for answer in ("hi", "hey", "yo"):
        status, data, _ = _request("POST", "/exercises/ex-fill/attempts", {"answer": answer}, token=token)
        statuses.append(status)
    assert statuses == [200, 200, 200]
    assert data["attempt_number"] == 3
    assert data["reveal_solution"] is True
    assert data["solution"] == "HELLO"
    assert data["can_advance"] is True

    status, data, _ = _request("POST", "/exercises/ex-fill/attempts", {"answer": "HELLO"}, token=token)
    assert status == 409

    status, state, _ = _request("GET", "/exercises/ex-fill/attempts", token=token)
    assert status == 200
    assert state["attempts_used"] == 3
    assert state["show_solution"] is True
    assert [a["answer"] for a in state["attempts"]] == ["hi", "hey", "yo"]


def test_attempt_errors_map_to_status_codes(api):
    token = _register_and_login(email="nocode@example.com", access_code=None)

    status, data, _ = _request("POST", "/exercises/ex-fill/attempts", {"answer": "HELLO"}, token=token)
    assert status == 403
    assert data["detail"] == "course not unlocked for this account"

    status, _, _ = _request("GET", "/exercises/missing/attempts", token=token)
    assert status == 404


def test_validate_code_is_rate_limited(api, monkeypatch):
    monkeypatch.setattr(app, "CODE_RATE_LIMITER", FixedWindowRateLimiter(limit=2, window=60))

    status, data, _ = _request("POST", "/courses/validate-code", {"code": "enga1"})
    assert status == 200
    assert data == {"valid": True, "code": "ENGA1", "name": "English A1", "description": "Beginner English"}

    status, _, _ = _request("POST", "/courses/validate-code", {"code": "zzz"})
    assert status == 404

    status, data, headers = _request("POST", "/courses/validate-code", {"code": "ENGA1"})
    assert status == 429
    assert int(headers["retry-after"]) > 0

    # a different client address has its own window
    status, _, _ = _request(
        "POST", "/courses/validate-code", {"code": "ENGA1"}, headers={"X-Forwarded-For": "10.1.1.1"}
    )
    assert status == 200


def test_course_navigation_routes(api):
    token = _register_and_login()
    db.upsert_video_lesson("v1", "ENGA1", 1, "Alphabet", "https://videos.example.com/1.mp4")

    status, data, _ = _request("GET", "/courses", token=token)
    assert status == 200
    assert data["stats"]["enabled"] == 1

    status, data, _ = _request("POST", "/courses/access", {"course_code": "ENGA1", "button_id": "levels"}, token=token)
    assert status == 200
    assert data["logged"] is True

    status, data, _ = _request("GET", "/courses/ENGA1/levels", token=token)
    assert status == 200
    assert data["levels"][0]["level"] == "A1"

    status, data, _ = _request("GET", "/courses/ENGA1/levels/A1/lessons", token=token)
    assert [lesson["lesson"] for lesson in data["lessons"]] == [1, 2]

    status, data, _ = _request("GET", "/courses/ENGA1/levels/A1/lessons/1/exercises", token=token)
    assert status == 200
    assert data["starting_index"] == 0
    assert all("solution" not in exercise for exercise in data["exercises"])

    status, data, _ = _request("GET", "/courses/ENGA1/videos", token=token)
    assert [video["id"] for video in data["videos"]] == ["v1"]

    status, data, _ = _request("POST", "/contents/book-1/progress", {"time_spent": 60}, token=token)
    assert status == 200


def test_unlock_route(api):
    db.upsert_course("SPAA1", "Spanish A1")
    token = _register_and_login()

    status, data, _ = _request("POST", "/courses/unlock", {"code": "spaa1"}, token=token)
    assert status == 200
    assert data["newly_unlocked"] is True

    status, data, _ = _request("POST", "/courses/unlock", {"code": "x"}, token=token)
    assert status == 400


def test_dashboard_route(api):
    token = _register_and_login()
    _request("POST", "/exercises/ex-fill/attempts", {"answer": ["hello"]}, token=token)

    status, data, _ = _request("GET", "/stats/dashboard", token=token, query="locale=en")

    assert status == 200
    assert data["source"] == "manual"
    assert data["total_courses"] == 1
    assert data["completed_exercises"] == 1
    assert len(data["weekly_progress"]) == 7
    assert data["weekly_progress"][-1]["day"] in {"Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"}


def test_change_password_and_logout(api):
    token = _register_and_login()

    status, _, _ = _request(
        "POST", "/auth/change-password", {"current_password": "Wrong1234", "new_password": "Another123"}, token=token
    )
    assert status == 401

    status, _, _ = _request(
        "POST", "/auth/change-password", {"current_password": PASSWORD, "new_password": "Another123"}, token=token
    )
    assert status == 200

    status, data, _ = _request("GET", "/auth/check", token=token)
    assert status == 200
    assert data["email"] == "learner@example.com"

    status, _, _ = _request("POST", "/auth/logout", token=token)
    assert status == 200
    status, _, _ = _request("GET", "/auth/check", token=token)
    assert status == 401

    status, _, _ = _request("POST", "/auth/login", {"email": "learner@example.com", "password": "Another123"})
    assert status == 200
