"""The timed test-attempt session.

An :class:`AttemptSession` owns everything a single student's run through a
question set needs: the answer records, the countdown and the one-shot
submission guard. Every state change happens under one re-entrant lock so
the countdown thread, HTTP handlers and policy signals never interleave.
Persisting the result is the only slow call and runs outside the lock,
protected by the guard instead.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from .answer_store import AnswerRecord, AnswerStateStore
from .countdown import DEFAULT_DURATION_MINUTES, CountdownTimer, duration_seconds
from .errors import ConfigurationError, SessionStateError, SubmissionError
from .question_sets import Question, QuestionSet, normalise_option
from .result_store import ResultStore
from .scoring import AttemptResult, AttemptStatus, score_attempt

logger = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    TERMINATED = "terminated"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.TERMINATED)


class TerminationReason(str, Enum):
    TIME_UP = "time_up"
    MANUAL = "manual"
    POLICY = "policy"


_ATTEMPT_STATUS = {
    None: AttemptStatus.COMPLETED,
    TerminationReason.TIME_UP: AttemptStatus.TERMINATED_TIME_UP,
    TerminationReason.MANUAL: AttemptStatus.TERMINATED_MANUAL,
    TerminationReason.POLICY: AttemptStatus.TERMINATED_POLICY,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class SubmissionOutcome:
    attempt_id: str
    result: AttemptResult
    status: SessionStatus
    reason: TerminationReason | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = self.result.summary()
        payload.update(
            {
                "attemptId": self.attempt_id,
                "sessionStatus": self.status.value,
                "reason": self.reason.value if self.reason else None,
            }
        )
        return payload


@dataclass(frozen=True, slots=True)
class SessionSnapshot:
    status: SessionStatus
    current_index: int
    remaining_seconds: int
    total_seconds: int
    records: list[AnswerRecord] = field(default_factory=list)
    reason: TerminationReason | None = None
    attempt_id: str | None = None
    tab_switches: int = 0
    abandoned: bool = False
    submitting: bool = False
    last_error: str | None = None


class AttemptSession:
    """State machine for one student's attempt at one question set."""

    def __init__(
        self,
        question_set: QuestionSet,
        result_store: ResultStore,
        *,
        student_id: str | None = None,
        default_duration_minutes: int = DEFAULT_DURATION_MINUTES,
        tab_switch_limit: int = 0,
        autostart_timer: bool = True,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
        timer_factory: Callable[..., CountdownTimer] = CountdownTimer,
    ) -> None:
        self.question_set = question_set
        self.questions: tuple[Question, ...] = tuple(question_set.questions)
        self.result_store = result_store
        self.student_id = student_id
        self.default_duration_minutes = default_duration_minutes
        self.tab_switch_limit = tab_switch_limit
        self.autostart_timer = autostart_timer
        self._clock = clock
        self._now = now
        self._timer_factory = timer_factory

        self._lock = threading.RLock()
        self.status = SessionStatus.NOT_STARTED
        self.current_index = 0
        self.store: AnswerStateStore | None = None
        self.timer: CountdownTimer | None = None
        self.started_at: datetime | None = None
        self.finished_at: datetime | None = None
        self.reason: TerminationReason | None = None
        self.outcome: SubmissionOutcome | None = None
        self.last_error: Exception | None = None
        self.tab_switches = 0
        self.abandoned = False
        self._display_started: float | None = None
        self._submitting = False
        self._pending_reason: TerminationReason | None = None
        self._cleanups: list[Callable[[], None]] = []

    # -- lifecycle -----------------------------------------------------------

    @property
    def test_id(self) -> str:
        return self.question_set.test_id

    @property
    def total_seconds(self) -> int:
        return self.timer.total_seconds if self.timer else 0

    @property
    def remaining_seconds(self) -> int:
        return self.timer.remaining_seconds if self.timer else 0

    @property
    def current_question(self) -> Question | None:
        if not self.questions:
            return None
        return self.questions[self.current_index]

    def add_cleanup(self, callback: Callable[[], None]) -> None:
        """Register a resource release hook run when the session stops being live."""
        self._cleanups.append(callback)

    def start(self) -> "AttemptSession":
        with self._lock:
            if self.status is not SessionStatus.NOT_STARTED or self.abandoned:
                raise SessionStateError("This session has already been started.")
            if not self.questions:
                raise ConfigurationError(
                    f"No questions found for test '{self.test_id}'; the session cannot start."
                )

            total = duration_seconds(self.question_set.duration_minutes_raw, self.default_duration_minutes)
            if total <= 0:
                raise ConfigurationError("Test duration must be positive.")

            self.store = AnswerStateStore(self.questions)
            self.current_index = 0
            self.store.mark_visited(self.questions[0].id)
            self.started_at = self._now()
            self._display_started = self._clock()
            self.timer = self._timer_factory(total, on_expired=self.on_timer_expired)
            self.status = SessionStatus.IN_PROGRESS
            if self.autostart_timer:
                self.timer.start()
            else:
                self.timer.arm()

        logger.info(
            "Attempt session started for test %s (%s questions, %s seconds).",
            self.test_id,
            len(self.questions),
            total,
        )
        return self

    def abandon(self) -> None:
        """Drop the session without persisting anything."""
        with self._lock:
            if self.abandoned:
                return
            self.abandoned = True
            was_live = self.status is SessionStatus.IN_PROGRESS
        self._release()
        if was_live:
            logger.info("Attempt session for test %s abandoned before submission.", self.test_id)

    def _release(self) -> None:
        if self.timer is not None:
            self.timer.stop()
        cleanups, self._cleanups = self._cleanups, []
        for callback in cleanups:
            callback()

    # -- in-progress interaction ---------------------------------------------

    def _accepting_input(self) -> bool:
        return self.status is SessionStatus.IN_PROGRESS and not self._submitting and not self.abandoned

    def _flush_time(self) -> None:
        now = self._clock()
        if self._display_started is not None and self.store is not None:
            elapsed = int(round(now - self._display_started))
            self.store.add_time(self.questions[self.current_index].id, elapsed)
        self._display_started = now

    def goto(self, index: int) -> bool:
        with self._lock:
            if not self._accepting_input():
                return False
            target = max(0, min(int(index), len(self.questions) - 1))
            self._flush_time()
            self.current_index = target
            self.store.mark_visited(self.questions[target].id)
            return True

    def next(self) -> bool:
        with self._lock:
            return self.goto(self.current_index + 1)

    def previous(self) -> bool:
        with self._lock:
            return self.goto(self.current_index - 1)

    def select_option(self, value: str | None) -> AnswerRecord | None:
        with self._lock:
            if not self._accepting_input():
                return None
            option = normalise_option(value)
            return self.store.select(self.questions[self.current_index].id, option)

    def clear(self) -> AnswerRecord | None:
        with self._lock:
            if not self._accepting_input():
                return None
            return self.store.clear(self.questions[self.current_index].id)

    def toggle_review(self) -> AnswerRecord | None:
        with self._lock:
            if not self._accepting_input():
                return None
            return self.store.toggle_review(self.questions[self.current_index].id)

    def record_tab_switch(self) -> SubmissionOutcome | None:
        with self._lock:
            if not self._accepting_input():
                return None
            self.tab_switches += 1
            exceeded = bool(self.tab_switch_limit) and self.tab_switches > self.tab_switch_limit
        if exceeded:
            logger.info(
                "Tab switch limit (%s) exceeded for test %s; terminating.",
                self.tab_switch_limit,
                self.test_id,
            )
            return self.terminate(TerminationReason.POLICY)
        return None

    # -- submission ------------------------------------------------------------

    def submit(self) -> SubmissionOutcome | None:
        return self._finish(None)

    def terminate(self, reason: TerminationReason | str) -> SubmissionOutcome | None:
        return self._finish(TerminationReason(reason))

    def on_timer_expired(self) -> None:
        try:
            self._finish(TerminationReason.TIME_UP)
        except SubmissionError as exc:
            logger.warning("Automatic submission for test %s failed: %s", self.test_id, exc)
        except SessionStateError:
            logger.debug("Timer expired on a session that is no longer live.")

    def _finish(self, reason: TerminationReason | None) -> SubmissionOutcome | None:
        with self._lock:
            if self.status.is_terminal:
                logger.debug("Ignoring repeat submission for finished session on test %s.", self.test_id)
                return self.outcome
            if self.abandoned:
                raise SessionStateError("This session was abandoned.")
            if self.status is not SessionStatus.IN_PROGRESS:
                raise SessionStateError("This session has not started.")
            if self._submitting:
                logger.debug("Submission already running for test %s; ignoring.", self.test_id)
                return None

            if reason is None:
                reason = self._pending_reason
            if reason is None and self.timer is not None and self.timer.expired:
                reason = TerminationReason.TIME_UP

            self._flush_time()
            finished_at = self._now()
            result = score_attempt(
                self.questions,
                self.store.snapshot(),
                status=_ATTEMPT_STATUS[reason],
                started_at=self.started_at,
                finished_at=finished_at,
                duration_taken_seconds=self.timer.elapsed_seconds if self.timer else 0,
                test_id=self.test_id,
                student_id=self.student_id,
            )
            self._submitting = True

        try:
            attempt_id = self.result_store.submit_attempt(result)
        except Exception as exc:
            with self._lock:
                self._submitting = False
                self._pending_reason = reason
                self.last_error = exc
            if isinstance(exc, SubmissionError):
                logger.warning("Submitting attempt for test %s failed: %s", self.test_id, exc)
            raise

        with self._lock:
            self.status = SessionStatus.COMPLETED if reason is None else SessionStatus.TERMINATED
            self.reason = reason
            self.finished_at = finished_at
            self.last_error = None
            self.store.freeze()
            self.outcome = SubmissionOutcome(
                attempt_id=attempt_id, result=result, status=self.status, reason=reason
            )
            self._submitting = False
            outcome = self.outcome
        self._release()
        logger.info(
            "Attempt %s for test %s finished as %s (score %s/%s).",
            attempt_id,
            self.test_id,
            result.status.value,
            result.score,
            result.max_score,
        )
        return outcome

    # -- read-only views ---------------------------------------------------------

    def snapshot(self) -> SessionSnapshot:
        with self._lock:
            return SessionSnapshot(
                status=self.status,
                current_index=self.current_index,
                remaining_seconds=self.remaining_seconds,
                total_seconds=self.total_seconds,
                records=self.store.snapshot() if self.store else [],
                reason=self.reason,
                attempt_id=self.outcome.attempt_id if self.outcome else None,
                tab_switches=self.tab_switches,
                abandoned=self.abandoned,
                submitting=self._submitting,
                last_error=str(self.last_error) if self.last_error else None,
            )


__all__ = [
    "AttemptSession",
    "SessionSnapshot",
    "SessionStatus",
    "SubmissionOutcome",
    "TerminationReason",
]
