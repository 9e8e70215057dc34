# app.py - LinguaTrack API
# - Local token auth (PBKDF2 passwords, in-process token map)
# - Course catalog, exercise attempts, dashboard statistics

import logging
import os, re, json, hashlib, hmac, secrets
from contextlib import asynccontextmanager
from typing import Any, Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import Response
from pydantic import BaseModel, Field

import db
from engines.attempt_tracker import AttemptTracker
from engines.courses import CourseCatalog
from engines.progress_aggregator import ProgressAggregator
from env_validation import get_env_float, get_env_int
from errors import InvalidCredentials, LinguaTrackError, RateLimited, ValidationFailed
from rate_limiter import FixedWindowRateLimiter
from schemas import AttemptResult, AttemptState

logger = logging.getLogger(__name__)

_APP_LOGGER = logging.getLogger("linguatrack")
if not _APP_LOGGER.handlers:
    _handler = logging.StreamHandler()
    _handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    _APP_LOGGER.addHandler(_handler)
_APP_LOGGER.setLevel(logging.INFO)


@asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        # Validate environment variables first
        from env_validation import validate_environment
        validate_environment()

        db.init()
        logger.info("Database ready at %s | summary RPC: %s", db.DB_PATH, os.getenv("SUMMARY_RPC_URL") or "local views")
        yield
    except Exception as e:
        logger.error("Failed to initialize application: %s", str(e), exc_info=True)
        raise


app = FastAPI(title="LinguaTrack API", version="1.0.0", lifespan=_lifespan)

TOKENS = {}

_PUBLIC_PATHS = frozenset({"/", "/auth/register", "/auth/login", "/courses/validate-code"})
_PROTECTED_PREFIXES = ("/auth", "/courses", "/exercises", "/contents", "/stats")

TRACKER = AttemptTracker()
CATALOG = CourseCatalog()
AGGREGATOR = ProgressAggregator()
CODE_RATE_LIMITER = FixedWindowRateLimiter(
    limit=get_env_int("CODE_VALIDATION_LIMIT", 10),
    window=get_env_float("CODE_VALIDATION_WINDOW", 60.0),
)


def _normalize_path(path: str) -> str:
    if not path or path == "/":
        return "/"
    return path.rstrip("/")


def _is_protected(path: str) -> bool:
    if path in _PUBLIC_PATHS:
        return False
    return any(path == prefix or path.startswith(prefix + "/") for prefix in _PROTECTED_PREFIXES)


def _extract_token(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    candidate = header_value.strip()
    if not candidate:
        return None
    if " " in candidate:
        prefix, token = candidate.split(" ", 1)
        if prefix.lower() in {"bearer", "token"}:
            candidate = token.strip()
        else:
            candidate = token.strip() or prefix.strip()
    return candidate or None


def _request_token(request: Request) -> Optional[str]:
    header_token = _extract_token(request.headers.get("authorization"))
    if header_token and header_token in TOKENS:
        return header_token
    alt_header = request.headers.get("x-token")
    if alt_header and alt_header in TOKENS:
        return alt_header
    return None


def _authenticate_request(request: Request) -> Optional[str]:
    token = _request_token(request)
    return TOKENS.get(token) if token else None


@app.middleware("http")
async def _enforce_token(request: Request, call_next):
    normalized_path = _normalize_path(request.url.path)
    if _is_protected(normalized_path):
        user_id = _authenticate_request(request)
        if not user_id:
            return Response(
                status_code=401,
                content=json.dumps({"detail": "missing or invalid token"}),
                media_type="application/json",
            )
        request.state.user_id = user_id
    return await call_next(request)


_PBKDF2_ITERATIONS = 150_000
_PBKDF2_DIGEST = "sha256"
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
_MIN_PASSWORD_LENGTH = 8


# ---------- Helpers ----------
def _generate_salt() -> str:
    return secrets.token_bytes(16).hex()


def _pbkdf2_hash(password: str, salt_hex: str) -> str:
    try:
        salt_bytes = bytes.fromhex(salt_hex)
    except ValueError:
        raise ValueError("Invalid salt for password hashing") from None
    return hashlib.pbkdf2_hmac(
        _PBKDF2_DIGEST,
        password.encode("utf-8"),
        salt_bytes,
        _PBKDF2_ITERATIONS,
    ).hex()


def _hash_password(password: str) -> tuple[str, str]:
    salt_hex = _generate_salt()
    return _pbkdf2_hash(password, salt_hex), salt_hex


def _verify_password(password: str, stored_hash: str, stored_salt: Optional[str]) -> bool:
    if not stored_salt:
        return False
    try:
        derived = _pbkdf2_hash(password, stored_salt)
    except ValueError:
        return False
    return hmac.compare_digest(stored_hash or "", derived)


def _check_password_strength(password: str) -> None:
    if len(password) < _MIN_PASSWORD_LENGTH:
        raise ValidationFailed(f"password must be at least {_MIN_PASSWORD_LENGTH} characters long")
    if not (
        re.search(r"[a-z]", password)
        and re.search(r"[A-Z]", password)
        and re.search(r"\d", password)
    ):
        raise ValidationFailed("password must contain a lower-case letter, an upper-case letter and a digit")


def _normalize_email(email: str) -> str:
    cleaned = (email or "").strip().lower()
    if not _EMAIL_RE.match(cleaned):
        raise ValidationFailed("invalid email address")
    return cleaned


def _client_address(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def _request_locale(request: Request, locale: Optional[str]) -> Optional[str]:
    if locale:
        return locale
    accept = request.headers.get("accept-language")
    if not accept:
        return None
    return accept.split(",", 1)[0].split(";", 1)[0].strip() or None


def _http_error(exc: LinguaTrackError) -> HTTPException:
    headers = None
    if isinstance(exc, RateLimited) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    return HTTPException(status_code=exc.status_code, detail=exc.detail, headers=headers)


# ---------- Schemas ----------
class RegisterBody(BaseModel):
    email: str
    password: str
    access_code: Optional[str] = None

class LoginBody(BaseModel):
    email: str
    password: str

class ChangePasswordBody(BaseModel):
    current_password: str
    new_password: str

class CodeBody(BaseModel):
    code: str

class AccessBody(BaseModel):
    course_code: str
    button_id: Optional[str] = None
    action: str = "access"

class AttemptBody(BaseModel):
    answer: Any

class ContentProgressBody(BaseModel):
    progress_status: str = "in_progress"
    progress_percentage: float = Field(default=0.0, ge=0, le=100)
    time_spent: int = Field(default=0, ge=0)


@app.get("/")
def root():
    return {"name": app.title, "version": app.version}


# ---------- Auth ----------
@app.post("/auth/register")
def auth_register(body: RegisterBody):
    try:
        email = _normalize_email(body.email)
        _check_password_strength(body.password)
        if db.get_user_by_email(email):
            raise ValidationFailed("email already registered")
        course = CATALOG.validate_code(body.access_code) if body.access_code else None
    except LinguaTrackError as exc:
        raise _http_error(exc)

    user_id = uuid4().hex
    pw_hash, pw_salt = _hash_password(body.password)
    db.create_user(user_id, email, pw_hash, pw_salt)
    unlocked = None
    if course:
        db.unlock_course(user_id, course["code"])
        unlocked = course["code"]
    logger.info("Registered user %s (course unlocked: %s)", user_id, unlocked or "-")
    return {"ok": True, "user_id": user_id, "email": email, "unlocked_course": unlocked}

@app.post("/auth/login")
def auth_login(body: LoginBody):
    row = db.get_user_by_email(body.email)
    if not row or not _verify_password(body.password, row["pw_hash"], row["pw_salt"]):
        raise _http_error(InvalidCredentials("invalid credentials"))
    token = secrets.token_urlsafe(24)
    TOKENS[token] = row["user_id"]
    return {"token": token, "user_id": row["user_id"], "email": row["email"]}

@app.post("/auth/logout")
def auth_logout(request: Request):
    token = _request_token(request)
    if token:
        TOKENS.pop(token, None)
    return {"ok": True}

@app.get("/auth/check")
def auth_check(request: Request):
    row = db.get_user(request.state.user_id)
    if not row:
        raise HTTPException(status_code=401, detail="unknown user")
    return {"authenticated": True, "user_id": row["user_id"], "email": row["email"]}

@app.post("/auth/change-password")
def auth_change_password(request: Request, body: ChangePasswordBody):
    user_id = request.state.user_id
    row = db.get_user(user_id)
    try:
        if not row or not _verify_password(body.current_password, row["pw_hash"], row["pw_salt"]):
            raise InvalidCredentials("current password is incorrect")
        if body.new_password == body.current_password:
            raise ValidationFailed("new password must differ from the current one")
        _check_password_strength(body.new_password)
    except LinguaTrackError as exc:
        raise _http_error(exc)
    pw_hash, pw_salt = _hash_password(body.new_password)
    db.update_user_password(user_id, pw_hash, pw_salt)
    logger.info("Password changed for user %s", user_id)
    return {"ok": True}


# ---------- Courses ----------
@app.post("/courses/validate-code")
def courses_validate_code(request: Request, body: CodeBody):
    client = _client_address(request)
    try:
        CODE_RATE_LIMITER.check(f"validate-code:{client}")
        return CATALOG.validate_code(body.code, client=client)
    except LinguaTrackError as exc:
        raise _http_error(exc)

@app.post("/courses/unlock")
def courses_unlock(request: Request, body: CodeBody):
    try:
        return CATALOG.unlock(request.state.user_id, body.code)
    except LinguaTrackError as exc:
        raise _http_error(exc)

@app.get("/courses")
def courses_list(request: Request):
    return CATALOG.list_user_courses(request.state.user_id)

@app.post("/courses/access")
def courses_access(request: Request, body: AccessBody):
    try:
        return CATALOG.log_access(
            request.state.user_id,
            body.course_code,
            button_id=body.button_id,
            action=body.action,
            ip_address=_client_address(request),
            user_agent=request.headers.get("user-agent"),
        )
    except LinguaTrackError as exc:
        raise _http_error(exc)

@app.get("/courses/{code}/levels")
def courses_levels(request: Request, code: str):
    try:
        return {"course_code": code.upper(), "levels": CATALOG.level_overview(request.state.user_id, code)}
    except LinguaTrackError as exc:
        raise _http_error(exc)

@app.get("/courses/{code}/levels/{level}/lessons")
def courses_lessons(request: Request, code: str, level: str):
    try:
        return {
            "course_code": code.upper(),
            "level": level,
            "lessons": CATALOG.lesson_overview(request.state.user_id, code, level),
        }
    except LinguaTrackError as exc:
        raise _http_error(exc)

@app.get("/courses/{code}/levels/{level}/lessons/{lesson}/exercises")
def courses_lesson_exercises(request: Request, code: str, level: str, lesson: int):
    try:
        return CATALOG.lesson_exercises(request.state.user_id, code, level, lesson)
    except LinguaTrackError as exc:
        raise _http_error(exc)

@app.get("/courses/{code}/videos")
def courses_videos(request: Request, code: str):
    try:
        return {"course_code": code.upper(), "videos": CATALOG.video_lessons(request.state.user_id, code)}
    except LinguaTrackError as exc:
        raise _http_error(exc)

@app.post("/contents/{content_id}/progress")
def contents_progress(request: Request, content_id: str, body: ContentProgressBody):
    try:
        return CATALOG.record_content_progress(
            request.state.user_id,
            content_id,
            progress_status=body.progress_status,
            progress_percentage=body.progress_percentage,
            time_spent=body.time_spent,
        )
    except LinguaTrackError as exc:
        raise _http_error(exc)


# ---------- Exercises ----------
@app.post("/exercises/{exercise_id}/attempts", response_model=AttemptResult)
def exercises_record_attempt(request: Request, exercise_id: str, body: AttemptBody):
    try:
        return TRACKER.record_attempt(request.state.user_id, exercise_id, body.answer)
    except LinguaTrackError as exc:
        raise _http_error(exc)

@app.get("/exercises/{exercise_id}/attempts", response_model=AttemptState)
def exercises_attempt_state(request: Request, exercise_id: str):
    try:
        return TRACKER.get_attempt_state(request.state.user_id, exercise_id)
    except LinguaTrackError as exc:
        raise _http_error(exc)


# ---------- Stats ----------
@app.get("/stats/dashboard")
def stats_dashboard(request: Request, locale: Optional[str] = None):
    return AGGREGATOR.get_dashboard_summary(request.state.user_id, _request_locale(request, locale))
