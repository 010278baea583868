from __future__ import annotations

from typing import Any

from soes.utils.base.enums import BaseEnum


class ErrorKind(BaseEnum):
    NOT_FOUND = "not-found"
    FORBIDDEN = "forbidden"
    INVALID_INPUT = "invalid-input"
    CONFLICT = "conflict"
    STATE_VIOLATION = "state-violation"
    UPSTREAM_FAILURE = "upstream-failure"


class AppError(Exception):
    """Base error raised by services and rendered by the API layer.

    Each subclass pins an error kind, a stable code and the HTTP status the
    API answers with. Only UPSTREAM_FAILURE is considered retryable.
    """
    kind: ErrorKind = ErrorKind.UPSTREAM_FAILURE
    code: str = "internal-error"
    status_code: int = 500
    message: str = "Server error"

    def __init__(self, message: str | None = None, detail: Any = None):
        self.message = message or self.message
        self.detail = detail
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.kind == ErrorKind.UPSTREAM_FAILURE


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND
    code = "not-found"
    status_code = 404
    message = "Not found"


class ForbiddenError(AppError):
    kind = ErrorKind.FORBIDDEN
    code = "access-denied"
    status_code = 403
    message = "Access denied"


class InvalidInputError(AppError):
    kind = ErrorKind.INVALID_INPUT
    code = "invalid-input"
    status_code = 400
    message = "Invalid input"


class StateViolationError(AppError):
    kind = ErrorKind.STATE_VIOLATION
    code = "state-violation"
    status_code = 400
    message = "Operation not allowed in the current state"


class UpstreamFailureError(AppError):
    kind = ErrorKind.UPSTREAM_FAILURE
    code = "upstream-failure"
    status_code = 503
    message = "Data store unavailable, please retry"


class InvalidIdError(InvalidInputError):
    code = "invalid-id"
    message = "Invalid ID format"


class InvalidAnswersError(InvalidInputError):
    code = "invalid-answers-shape"
    message = "Answers must be a non-empty array"


class ExamNotFoundError(NotFoundError):
    code = "exam-not-found"
    message = "Exam not found"


class QuestionNotFoundError(NotFoundError):
    code = "question-not-found"
    message = "Question not found"


class ResultNotFoundError(NotFoundError):
    code = "result-not-found"
    message = "Result not found"


class UserNotFoundError(NotFoundError):
    code = "user-not-found"
    message = "User not found"


class ExamNotActiveError(StateViolationError):
    code = "exam-not-active"
    message = "This exam is not currently active"


class ExamHasNoQuestionsError(StateViolationError):
    code = "no-questions"
    message = "This exam has no questions yet"


class NoActiveAttemptError(StateViolationError):
    code = "no-active-attempt"
    message = "No active attempt found for this exam"


class AlreadySubmittedError(StateViolationError):
    code = "already-submitted"
    message = "This exam has already been submitted"


class QuestionsLockedError(StateViolationError):
    code = "questions-locked"
    message = "Questions cannot change while students have attempts in progress"


class DuplicateEmailError(AppError):
    kind = ErrorKind.CONFLICT
    code = "email-taken"
    status_code = 409
    message = "User with this email already exists"
