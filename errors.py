"""Error taxonomy shared by the attempt tracker, the aggregator and the API layer."""

from typing import Optional


class LinguaTrackError(Exception):
    """Base class for domain errors raised by the core."""

    status_code = 500

    def __init__(self, message: str = "", *, detail: Optional[str] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.detail = detail or message or self.__class__.__name__


class Forbidden(LinguaTrackError):
    """The learner holds no entitlement for the requested course."""

    status_code = 403


class NotFound(LinguaTrackError):
    """Exercise or course is missing, inactive or cannot be served."""

    status_code = 404


class AttemptsExhausted(LinguaTrackError):
    """No attempts left, or the exercise was already solved."""

    status_code = 409


class AttemptConflict(LinguaTrackError):
    """Another submission claimed the same attempt number first."""

    status_code = 409


class InvalidAnswer(LinguaTrackError):
    """Submitted answer does not have the shape its exercise type expects."""

    status_code = 400


class Unavailable(LinguaTrackError):
    """An optional data source (table, view, remote function) cannot be used."""

    status_code = 503


class InvalidCredentials(LinguaTrackError):
    status_code = 401


class ValidationFailed(LinguaTrackError):
    status_code = 400


class RateLimited(LinguaTrackError):
    status_code = 429

    def __init__(self, message: str = "", *, retry_after: int = 0) -> None:
        super().__init__(message)
        self.retry_after = int(retry_after)
