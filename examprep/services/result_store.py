"""Persistence of finished attempts.

A result store writes one :class:`AttemptResult` and hands back the opaque
identifier the results view uses. Stores never retry on their own; a failure
is raised to the session, which leaves the attempt open for the student to
submit again.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import requests
from flask import has_app_context
from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..models import TestAttempt
from .errors import (
    SubmissionAccessDenied,
    SubmissionNetworkError,
    SubmissionValidationError,
)
from .scoring import AttemptResult, serialise_answer_log

logger = logging.getLogger(__name__)


class ResultStore(Protocol):
    def submit_attempt(self, result: AttemptResult) -> str:
        ...


def validate_result(result: AttemptResult) -> None:
    if not result.entries:
        raise SubmissionValidationError("Answers log must contain at least one entry.")
    seen: set[str] = set()
    for entry in result.entries:
        if entry.question_id in seen:
            raise SubmissionValidationError(
                f"Answers log lists question '{entry.question_id}' more than once."
            )
        seen.add(entry.question_id)
    counted = result.correct_count + result.incorrect_count + result.unattempted_count
    if counted != len(result.entries):
        raise SubmissionValidationError("Answer counts do not add up to the number of questions.")


def attempt_payload(result: AttemptResult) -> dict[str, Any]:
    """Field layout shared by every store."""
    return {
        "student": result.student_id,
        "teacher_test": result.test_id,
        "score": result.score,
        "max_score": result.max_score,
        "percentage": result.percentage,
        "correct_count": result.correct_count,
        "incorrect_count": result.incorrect_count,
        "unattempted_count": result.unattempted_count,
        "answers_log": serialise_answer_log(result.entries),
        "start_time": result.started_at.isoformat() if result.started_at else None,
        "end_time": result.finished_at.isoformat() if result.finished_at else None,
        "duration_taken_seconds": result.duration_taken_seconds,
        "status": result.status.value,
    }


class SQLResultStore:
    """Writes attempts to the ``test_attempts`` table.

    The countdown fires from its own thread, outside any request, so the store
    keeps a reference to the application and pushes a context when needed.
    """

    def __init__(self, app: Any = None) -> None:
        self.app = app

    def submit_attempt(self, result: AttemptResult) -> str:
        if self.app is not None and not has_app_context():
            with self.app.app_context():
                return self._submit(result)
        return self._submit(result)

    def _submit(self, result: AttemptResult) -> str:
        validate_result(result)
        try:
            student_id = int(result.student_id)
            paper_id = int(result.test_id)
        except (TypeError, ValueError) as exc:
            raise SubmissionValidationError("Attempt must reference a stored student and test.") from exc

        attempt = TestAttempt(
            student_id=student_id,
            paper_id=paper_id,
            status=result.status.value,
            score=result.score,
            max_score=result.max_score,
            percentage=result.percentage,
            correct_count=result.correct_count,
            incorrect_count=result.incorrect_count,
            unattempted_count=result.unattempted_count,
            answers_log=serialise_answer_log(result.entries),
            started_at=result.started_at,
            finished_at=result.finished_at,
            duration_taken_seconds=result.duration_taken_seconds,
        )
        try:
            db.session.add(attempt)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.exception("Failed to persist attempt for test %s", result.test_id)
            raise SubmissionNetworkError("Could not save your results.") from exc
        return str(attempt.id)

    def load_attempt(self, attempt_id: str) -> TestAttempt | None:
        try:
            return db.session.get(TestAttempt, int(attempt_id))
        except (TypeError, ValueError):
            return None


class PocketBaseResultStore:
    """Creates attempt records in a hosted PocketBase collection."""

    def __init__(
        self,
        base_url: str,
        *,
        collection: str = "teacher_test_attempts",
        token: str | None = None,
        timeout: float = 10,
        http: Any = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.collection = collection
        self.token = token
        self.timeout = timeout
        self.http = http or requests

    def submit_attempt(self, result: AttemptResult) -> str:
        validate_result(result)
        url = f"{self.base_url}/api/collections/{self.collection}/records"
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = self.token

        try:
            response = self.http.post(url, headers=headers, json=attempt_payload(result), timeout=self.timeout)
        except requests.RequestException as exc:
            raise SubmissionNetworkError("Failed to reach the result store.") from exc

        if response.status_code in (401, 403):
            raise SubmissionAccessDenied("The result store rejected the credentials.")
        if response.status_code == 400:
            try:
                body = response.json() or {}
            except ValueError:
                body = {}
            message = str(body.get("message") or "The result store rejected the attempt.")
            raise SubmissionValidationError(message)
        if response.status_code >= 400:
            raise SubmissionNetworkError(f"Result store returned status {response.status_code}.")

        try:
            record_id = (response.json() or {}).get("id")
        except ValueError as exc:
            raise SubmissionNetworkError("Result store responded with invalid JSON.") from exc
        if not record_id:
            raise SubmissionNetworkError("Result store did not return a record id.")
        return str(record_id)


__all__ = [
    "ResultStore",
    "SQLResultStore",
    "PocketBaseResultStore",
    "attempt_payload",
    "validate_result",
]
