"""Exception types raised by the test-attempt services."""

from __future__ import annotations


class AttemptError(RuntimeError):
    """Base class for test-attempt problems."""

    retryable = False


class ConfigurationError(AttemptError):
    """Raised when a test cannot be run as configured (no questions, bad duration)."""


class SessionStateError(AttemptError):
    """Raised when an operation is not valid for the session's current status."""


class SessionConflictError(AttemptError):
    """Raised when a student tries to run two attempts at once."""


class AnswerValidationError(AttemptError):
    """Raised when a selected option is not one of the allowed values."""


class QuestionSetError(AttemptError):
    """Base class for question set loading failures."""


class QuestionSetNotFound(QuestionSetError):
    """Raised when the requested test does not exist."""


class QuestionSetAccessDenied(QuestionSetError):
    """Raised when the test exists but may not be attempted by this caller."""


class QuestionSetNetworkError(QuestionSetError):
    """Raised when the question store could not be reached."""

    retryable = True


class SubmissionError(AttemptError):
    """Base class for attempt persistence failures."""

    retryable = True


class SubmissionValidationError(SubmissionError):
    """Raised when the store rejects the attempt payload."""


class SubmissionNetworkError(SubmissionError):
    """Raised when the result store could not be reached."""


class SubmissionAccessDenied(SubmissionError):
    """Raised when the result store refuses the caller's credentials."""


class AnswerLogFormatError(AttemptError):
    """Raised when a persisted answers log cannot be parsed."""


__all__ = [
    "AttemptError",
    "ConfigurationError",
    "SessionStateError",
    "SessionConflictError",
    "AnswerValidationError",
    "QuestionSetError",
    "QuestionSetNotFound",
    "QuestionSetAccessDenied",
    "QuestionSetNetworkError",
    "SubmissionError",
    "SubmissionValidationError",
    "SubmissionNetworkError",
    "SubmissionAccessDenied",
    "AnswerLogFormatError",
]
