"""
Error kinds raised by the grading and progress services.

Each carries the HTTP status the API maps it to, so routers can let
them propagate and the application-level handler renders them.
"""
from typing import Optional


class CourseGradeError(Exception):
    """Base class for service errors."""

    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str, *, detail: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    @property
    def kind(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        body = {"error": self.kind, "detail": self.message, "retryable": self.retryable}
        if self.detail:
            body["context"] = self.detail
        return body


class ValidationError(CourseGradeError):
    """Incomplete submission or an answer of the wrong shape."""
    status_code = 400


class DegenerateQuizError(CourseGradeError):
    """The quiz has no questions, so no percentage can be computed."""
    status_code = 400


class AttemptLimitExceededError(CourseGradeError):
    status_code = 409


class NotFoundError(CourseGradeError):
    status_code = 404


class StorageError(CourseGradeError):
    """A write failed and was rolled back; the caller may retry."""
    status_code = 503
    retryable = True


class NonFatalSideEffectError(CourseGradeError):
    """Certificate or notification failure. Logged, never raised to callers."""
    status_code = 500
