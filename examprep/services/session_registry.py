"""Hosting of live attempt sessions inside the web application."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping
from uuid import uuid4

from .attempt_sessions import AttemptSession
from .countdown import DEFAULT_DURATION_MINUTES
from .errors import QuestionSetAccessDenied, SessionConflictError
from .question_sets import PocketBaseQuestionSetLoader, QuestionSetLoader, SQLQuestionSetLoader
from .result_store import PocketBaseResultStore, ResultStore, SQLResultStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SessionStartResult:
    session_id: str
    session: AttemptSession
    resumed: bool


class SessionRegistry:
    """Live sessions keyed by id, with at most one live session per student."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._sessions: dict[str, AttemptSession] = {}
        self._live_by_student: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> AttemptSession | None:
        with self._lock:
            return self._sessions.get(session_id)

    def owner_of(self, session_id: str) -> str | None:
        session = self.get(session_id)
        return session.student_id if session else None

    def live_session_id(self, student_id: str) -> str | None:
        with self._lock:
            return self._live_by_student.get(student_id)

    def _release_student(self, student_id: str, session_id: str) -> None:
        with self._lock:
            if self._live_by_student.get(student_id) == session_id:
                del self._live_by_student[student_id]

    def _evict_finished(self, student_id: str) -> int:
        """Forget the student's finished sessions. Their results live in the result store."""
        with self._lock:
            stale = [
                session_id
                for session_id, session in self._sessions.items()
                if session.student_id == student_id and session.status.is_terminal
            ]
            for session_id in stale:
                del self._sessions[session_id]
        if stale:
            logger.debug("Evicted %s finished session(s) for student %s.", len(stale), student_id)
        return len(stale)

    def start(
        self,
        *,
        student_id: str,
        test_id: str,
        loader: QuestionSetLoader,
        result_store: ResultStore,
        pin: str | None = None,
        **session_options: Any,
    ) -> SessionStartResult:
        """Start an attempt, or resume the student's live attempt at the same test."""

        live_id = self.live_session_id(student_id)
        if live_id:
            live = self.get(live_id)
            if live is not None and live.test_id == str(test_id):
                return SessionStartResult(session_id=live_id, session=live, resumed=True)
            raise SessionConflictError("Finish the current test before starting a new one.")

        self._evict_finished(student_id)
        question_set = loader.load_question_set(str(test_id))
        if question_set.requires_pin and str(pin or "").strip() != question_set.pin:
            raise QuestionSetAccessDenied("Incorrect test PIN.")

        session = AttemptSession(
            question_set, result_store, student_id=student_id, **session_options
        )
        session.start()

        session_id = uuid4().hex
        with self._lock:
            if student_id in self._live_by_student:
                session.abandon()
                raise SessionConflictError("Finish the current test before starting a new one.")
            self._sessions[session_id] = session
            self._live_by_student[student_id] = session_id
        session.add_cleanup(lambda: self._release_student(student_id, session_id))
        logger.info("Registered attempt session %s for student %s.", session_id, student_id)
        return SessionStartResult(session_id=session_id, session=session, resumed=False)

    def discard(self, session_id: str) -> bool:
        """Abandon a session and forget it. Nothing is persisted."""
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.abandon()
        if session.student_id is not None:
            self._release_student(session.student_id, session_id)
        return True

    def close_all(self) -> None:
        with self._lock:
            session_ids = list(self._sessions)
        for session_id in session_ids:
            self.discard(session_id)


def build_question_loader(config: Mapping[str, Any]) -> QuestionSetLoader:
    if config.get("QUESTION_BACKEND", "sql") == "pocketbase":
        return PocketBaseQuestionSetLoader(
            config["POCKETBASE_URL"],
            token=config.get("POCKETBASE_TOKEN"),
            timeout=config.get("POCKETBASE_TIMEOUT", 10),
        )
    return SQLQuestionSetLoader()


def build_result_store(config: Mapping[str, Any], app: Any = None) -> ResultStore:
    if config.get("QUESTION_BACKEND", "sql") == "pocketbase":
        return PocketBaseResultStore(
            config["POCKETBASE_URL"],
            collection=config.get("POCKETBASE_RESULTS_COLLECTION", "teacher_test_attempts"),
            token=config.get("POCKETBASE_TOKEN"),
            timeout=config.get("POCKETBASE_TIMEOUT", 10),
        )
    return SQLResultStore(app)


def session_options(config: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "default_duration_minutes": int(config.get("DEFAULT_DURATION_MINUTES", DEFAULT_DURATION_MINUTES)),
        "tab_switch_limit": int(config.get("TAB_SWITCH_LIMIT", 0)),
        "autostart_timer": bool(config.get("COUNTDOWN_AUTOSTART", True)),
    }


__all__ = [
    "SessionRegistry",
    "SessionStartResult",
    "build_question_loader",
    "build_result_store",
    "session_options",
]
