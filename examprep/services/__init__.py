"""Service layer for timed test attempts."""

from .answer_store import AnswerRecord, AnswerStateStore, PaletteStatus
from .attempt_sessions import (
    AttemptSession,
    SessionSnapshot,
    SessionStatus,
    SubmissionOutcome,
    TerminationReason,
)
from .countdown import DEFAULT_DURATION_MINUTES, CountdownTimer, duration_seconds
from .errors import (
    AnswerLogFormatError,
    AnswerValidationError,
    AttemptError,
    ConfigurationError,
    QuestionSetAccessDenied,
    QuestionSetError,
    QuestionSetNetworkError,
    QuestionSetNotFound,
    SessionConflictError,
    SessionStateError,
    SubmissionAccessDenied,
    SubmissionError,
    SubmissionNetworkError,
    SubmissionValidationError,
)
from .question_sets import (
    PocketBaseQuestionSetLoader,
    Question,
    QuestionSet,
    SQLQuestionSetLoader,
    normalise_option,
)
from .result_store import PocketBaseResultStore, SQLResultStore
from .scoring import AttemptResult, AttemptStatus, rescore_answer_log, score_attempt
from .session_registry import SessionRegistry

__all__ = [
    "AnswerRecord",
    "AnswerStateStore",
    "PaletteStatus",
    "AttemptSession",
    "SessionSnapshot",
    "SessionStatus",
    "SubmissionOutcome",
    "TerminationReason",
    "DEFAULT_DURATION_MINUTES",
    "CountdownTimer",
    "duration_seconds",
    "AnswerLogFormatError",
    "AnswerValidationError",
    "AttemptError",
    "ConfigurationError",
    "QuestionSetAccessDenied",
    "QuestionSetError",
    "QuestionSetNetworkError",
    "QuestionSetNotFound",
    "SessionConflictError",
    "SessionStateError",
    "SubmissionAccessDenied",
    "SubmissionError",
    "SubmissionNetworkError",
    "SubmissionValidationError",
    "PocketBaseQuestionSetLoader",
    "Question",
    "QuestionSet",
    "SQLQuestionSetLoader",
    "normalise_option",
    "PocketBaseResultStore",
    "SQLResultStore",
    "AttemptResult",
    "AttemptStatus",
    "rescore_answer_log",
    "score_attempt",
    "SessionRegistry",
]
