from __future__ import annotations

from datetime import datetime
from functools import wraps
from typing import Any

from flask import current_app, g, jsonify, request

from ..models import StudentAuthToken
from ..services.attempt_sessions import AttemptSession, TerminationReason
from ..services.errors import (
    AnswerLogFormatError,
    AnswerValidationError,
    AttemptError,
    ConfigurationError,
    QuestionSetAccessDenied,
    QuestionSetNetworkError,
    QuestionSetNotFound,
    SessionConflictError,
    SessionStateError,
    SubmissionAccessDenied,
    SubmissionNetworkError,
    SubmissionValidationError,
)
from ..services.question_sets import Question, QuestionSet, SQLQuestionSetLoader
from ..services.result_store import SQLResultStore
from ..services.scoring import rescore_answer_log
from ..services.session_registry import SessionRegistry, session_options
from . import api_bp

# Checked in order, so subclasses come before their bases.
ERROR_STATUS: tuple[tuple[type[AttemptError], int], ...] = (
    (ConfigurationError, 422),
    (QuestionSetNotFound, 404),
    (QuestionSetAccessDenied, 403),
    (QuestionSetNetworkError, 502),
    (SessionConflictError, 409),
    (SessionStateError, 409),
    (AnswerValidationError, 400),
    (SubmissionValidationError, 400),
    (SubmissionAccessDenied, 403),
    (SubmissionNetworkError, 503),
    (AnswerLogFormatError, 500),
)


def _json_error(message: str, status: int = 400, **extra: Any):
    payload = {"error": message}
    payload.update(extra)
    return jsonify(payload), status


def _error_response(exc: AttemptError):
    status = next((code for kind, code in ERROR_STATUS if isinstance(exc, kind)), 400)
    return _json_error(str(exc), status, retryable=exc.retryable)


def _extract_token() -> str | None:
    header = request.headers.get("Authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return None


def _require_auth(func):
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        token_value = _extract_token()
        if not token_value:
            return _json_error("Authentication token required.", 401)
        token = StudentAuthToken.query.filter_by(token=token_value, revoked=False).first()
        if not token or token.expires_at <= datetime.utcnow():
            return _json_error("Invalid or expired token.", 401)
        g.current_student = token.student
        return func(*args, **kwargs)

    return wrapper


def _registry() -> SessionRegistry:
    return current_app.extensions["attempt_sessions"]


def _own_session(session_id: str) -> AttemptSession | None:
    session = _registry().get(session_id)
    if session is None or session.student_id != str(g.current_student.id):
        return None
    return session


def _with_session(func):
    @wraps(func)
    def wrapper(session_id: str, *args: Any, **kwargs: Any):
        session = _own_session(session_id)
        if session is None:
            return _json_error("Attempt session not found.", 404)
        try:
            return func(session_id, session, *args, **kwargs)
        except AttemptError as exc:
            return _error_response(exc)

    return wrapper


def _serialise_question(question: Question, *, reveal: bool) -> dict[str, Any]:
    return {
        "questionId": question.id,
        "text": question.text,
        "imageUrl": question.image_url,
        "options": {
            key: {"text": option.text, "imageUrl": option.image_url}
            for key, option in question.options.items()
        },
        "marks": question.marks,
        "negativeMarks": question.negative_marks,
        "difficulty": question.difficulty,
        "correctOption": question.correct_option if reveal else None,
        "explanation": question.explanation if reveal else None,
    }


def _serialise_session(session_id: str, session: AttemptSession, *, resumed: bool | None = None) -> dict[str, Any]:
    snapshot = session.snapshot()
    reveal = snapshot.status.is_terminal
    current = session.current_question
    payload: dict[str, Any] = {
        "sessionId": session_id,
        "testId": session.test_id,
        "title": session.question_set.title,
        "status": snapshot.status.value,
        "reason": snapshot.reason.value if snapshot.reason else None,
        "currentIndex": snapshot.current_index,
        "currentQuestion": _serialise_question(current, reveal=reveal) if current else None,
        "questionCount": len(session.questions),
        "remainingSeconds": snapshot.remaining_seconds,
        "totalSeconds": snapshot.total_seconds,
        "answers": [record.to_dict() for record in snapshot.records],
        "tabSwitches": snapshot.tab_switches,
        "submitting": snapshot.submitting,
        "lastError": snapshot.last_error,
        "attemptId": snapshot.attempt_id,
    }
    if resumed is not None:
        payload["resumed"] = resumed
    if session.outcome is not None:
        payload["result"] = session.outcome.to_dict()
    return payload


@api_bp.post("/tests/<test_id>/sessions")
@_require_auth
def start_attempt(test_id: str):
    data = request.get_json(silent=True) or {}
    student_id = str(g.current_student.id)
    try:
        started = _registry().start(
            student_id=student_id,
            test_id=test_id,
            loader=current_app.extensions["question_loader"],
            result_store=current_app.extensions["result_store"],
            pin=data.get("pin"),
            **session_options(current_app.config),
        )
    except AttemptError as exc:
        current_app.logger.warning("Could not start test %s for student %s: %s", test_id, student_id, exc)
        return _error_response(exc)

    status = 200 if started.resumed else 201
    return jsonify(_serialise_session(started.session_id, started.session, resumed=started.resumed)), status


@api_bp.get("/attempt-sessions/<session_id>")
@_require_auth
@_with_session
def get_attempt_session(session_id: str, session: AttemptSession):
    return jsonify(_serialise_session(session_id, session))


@api_bp.post("/attempt-sessions/<session_id>/goto")
@_require_auth
@_with_session
def goto_question(session_id: str, session: AttemptSession):
    data = request.get_json(silent=True) or {}
    try:
        index = int(data.get("index"))
    except (TypeError, ValueError):
        return _json_error("index must be an integer.")
    session.goto(index)
    return jsonify(_serialise_session(session_id, session))


@api_bp.post("/attempt-sessions/<session_id>/next")
@_require_auth
@_with_session
def next_question(session_id: str, session: AttemptSession):
    session.next()
    return jsonify(_serialise_session(session_id, session))


@api_bp.post("/attempt-sessions/<session_id>/previous")
@_require_auth
@_with_session
def previous_question(session_id: str, session: AttemptSession):
    session.previous()
    return jsonify(_serialise_session(session_id, session))


@api_bp.post("/attempt-sessions/<session_id>/answer")
@_require_auth
@_with_session
def select_answer(session_id: str, session: AttemptSession):
    data = request.get_json(silent=True) or {}
    session.select_option(data.get("option"))
    return jsonify(_serialise_session(session_id, session))


@api_bp.post("/attempt-sessions/<session_id>/clear")
@_require_auth
@_with_session
def clear_answer(session_id: str, session: AttemptSession):
    session.clear()
    return jsonify(_serialise_session(session_id, session))


@api_bp.post("/attempt-sessions/<session_id>/review")
@_require_auth
@_with_session
def toggle_review(session_id: str, session: AttemptSession):
    session.toggle_review()
    return jsonify(_serialise_session(session_id, session))


@api_bp.post("/attempt-sessions/<session_id>/tab-switch")
@_require_auth
@_with_session
def record_tab_switch(session_id: str, session: AttemptSession):
    session.record_tab_switch()
    return jsonify(_serialise_session(session_id, session))


@api_bp.post("/attempt-sessions/<session_id>/submit")
@_require_auth
@_with_session
def submit_attempt(session_id: str, session: AttemptSession):
    outcome = session.submit()
    if outcome is None:
        return _json_error("Submission already in progress.", 409)
    return jsonify(_serialise_session(session_id, session))


@api_bp.post("/attempt-sessions/<session_id>/terminate")
@_require_auth
@_with_session
def terminate_attempt(session_id: str, session: AttemptSession):
    data = request.get_json(silent=True) or {}
    try:
        reason = TerminationReason(data.get("reason") or TerminationReason.POLICY.value)
    except ValueError:
        return _json_error("reason must be one of: time_up, manual, policy.")
    outcome = session.terminate(reason)
    if outcome is None:
        return _json_error("Submission already in progress.", 409)
    return jsonify(_serialise_session(session_id, session))


@api_bp.delete("/attempt-sessions/<session_id>")
@_require_auth
def abandon_attempt(session_id: str):
    if _own_session(session_id) is None:
        return _json_error("Attempt session not found.", 404)
    _registry().discard(session_id)
    return jsonify({"sessionId": session_id, "abandoned": True})


def _review_question_set(paper_id: str) -> QuestionSet:
    loader = current_app.extensions["question_loader"]
    if isinstance(loader, SQLQuestionSetLoader):
        return loader.load_question_set(paper_id, require_published=False)
    return loader.load_question_set(paper_id)


@api_bp.get("/attempts/<attempt_id>")
@_require_auth
def get_attempt(attempt_id: str):
    result_store = current_app.extensions["result_store"]
    if not isinstance(result_store, SQLResultStore):
        return _json_error("Attempt results are served by the hosted store.", 404)

    attempt = result_store.load_attempt(attempt_id)
    if not attempt or attempt.student_id != g.current_student.id:
        return _json_error("Attempt not found.", 404)

    try:
        question_set = _review_question_set(str(attempt.paper_id))
        result = rescore_answer_log(question_set.questions, attempt.answers_log)
    except AttemptError as exc:
        return _error_response(exc)

    lookup = question_set.question_lookup()
    questions = []
    for entry in result.entries:
        item = _serialise_question(lookup[entry.question_id], reveal=True)
        item.update(entry.to_dict())
        questions.append(item)

    return jsonify(
        {
            "attemptId": str(attempt.id),
            "testId": str(attempt.paper_id),
            "title": question_set.title,
            "status": attempt.status,
            "score": attempt.score,
            "maxScore": attempt.max_score,
            "percentage": attempt.percentage,
            "correct": attempt.correct_count,
            "incorrect": attempt.incorrect_count,
            "unattempted": attempt.unattempted_count,
            "durationTakenSeconds": attempt.duration_taken_seconds,
            "startedAt": attempt.started_at.isoformat() if attempt.started_at else None,
            "finishedAt": attempt.finished_at.isoformat() if attempt.finished_at else None,
            "questions": questions,
        }
    )
