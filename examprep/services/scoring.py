"""Scoring for finished test attempts.

Everything here is a pure function of its arguments: the same questions and
answer records always give the same :class:`AttemptResult`. The answers log
written to the result store is produced and read back by this module, so a
stored attempt can be re-scored later against the same question set.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Sequence

from .answer_store import AnswerRecord
from .errors import AnswerLogFormatError, AnswerValidationError
from .question_sets import Question, normalise_option


class AttemptStatus(str, Enum):
    COMPLETED = "completed"
    TERMINATED_TIME_UP = "terminated_time_up"
    TERMINATED_MANUAL = "terminated_manual"
    TERMINATED_POLICY = "terminated_policy"


@dataclass(frozen=True, slots=True)
class AnswerLogEntry:
    question_id: str
    selected_option: str | None
    correct_option: str
    is_correct: bool
    marked_for_review: bool
    time_spent_seconds: int
    points: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "questionId": self.question_id,
            "selectedOption": self.selected_option,
            "correctOption": self.correct_option,
            "isCorrect": self.is_correct,
            "markedForReview": self.marked_for_review,
            "timeSpentSeconds": self.time_spent_seconds,
            "points": self.points,
        }


@dataclass(frozen=True, slots=True)
class AttemptResult:
    entries: tuple[AnswerLogEntry, ...]
    correct_count: int
    incorrect_count: int
    unattempted_count: int
    score: float
    max_score: int
    percentage: float
    status: AttemptStatus = AttemptStatus.COMPLETED
    started_at: datetime | None = None
    finished_at: datetime | None = None
    duration_taken_seconds: int = 0
    test_id: str | None = None
    student_id: str | None = None

    @property
    def attempted_count(self) -> int:
        return self.correct_count + self.incorrect_count

    def without_timestamps(self) -> "AttemptResult":
        return AttemptResult(
            entries=self.entries,
            correct_count=self.correct_count,
            incorrect_count=self.incorrect_count,
            unattempted_count=self.unattempted_count,
            score=self.score,
            max_score=self.max_score,
            percentage=self.percentage,
            status=self.status,
            duration_taken_seconds=self.duration_taken_seconds,
            test_id=self.test_id,
            student_id=self.student_id,
        )

    def summary(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "maxScore": self.max_score,
            "percentage": self.percentage,
            "attempted": self.attempted_count,
            "correct": self.correct_count,
            "incorrect": self.incorrect_count,
            "unattempted": self.unattempted_count,
            "status": self.status.value,
            "durationTakenSeconds": self.duration_taken_seconds,
            "startedAt": self.started_at.isoformat() if self.started_at else None,
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
        }


def question_points(question: Question, selected_option: str | None) -> tuple[bool, float]:
    """Return ``(is_correct, points)`` for one answer."""
    if selected_option is None:
        return False, 0
    if selected_option == question.correct_option:
        return True, question.marks
    return False, question.negative_marks


def percentage_of(score: float, max_score: float) -> float:
    if max_score == 0:
        return 0.0
    return round(100 * score / max_score, 2)


def _clean_score(value: float) -> float:
    return int(value) if float(value).is_integer() else value


def score_attempt(
    questions: Sequence[Question],
    records: Iterable[AnswerRecord],
    *,
    status: AttemptStatus = AttemptStatus.COMPLETED,
    started_at: datetime | None = None,
    finished_at: datetime | None = None,
    duration_taken_seconds: int = 0,
    test_id: str | None = None,
    student_id: str | None = None,
) -> AttemptResult:
    """Score an attempt.

    ``records`` must hold exactly one record per question; the log keeps the
    order of ``questions``. The percentage is rounded for display, the score is
    not.
    """

    lookup = {record.question_id: record for record in records}
    missing = [question.id for question in questions if question.id not in lookup]
    if missing or len(lookup) != len(questions):
        raise AnswerValidationError(
            f"Answer records do not match the question set (missing: {', '.join(missing) or 'none'})."
        )

    entries: list[AnswerLogEntry] = []
    correct = incorrect = unattempted = 0
    score: float = 0
    max_score = 0
    for question in questions:
        record = lookup[question.id]
        is_correct, points = question_points(question, record.selected_option)
        if record.selected_option is None:
            unattempted += 1
        elif is_correct:
            correct += 1
        else:
            incorrect += 1
        score += points
        max_score += question.marks
        entries.append(
            AnswerLogEntry(
                question_id=question.id,
                selected_option=record.selected_option,
                correct_option=question.correct_option,
                is_correct=is_correct,
                marked_for_review=record.marked_for_review,
                time_spent_seconds=record.time_spent_seconds,
                points=points,
            )
        )

    score = _clean_score(score)
    return AttemptResult(
        entries=tuple(entries),
        correct_count=correct,
        incorrect_count=incorrect,
        unattempted_count=unattempted,
        score=score,
        max_score=max_score,
        percentage=percentage_of(score, max_score),
        status=status,
        started_at=started_at,
        finished_at=finished_at,
        duration_taken_seconds=duration_taken_seconds,
        test_id=test_id,
        student_id=student_id,
    )


def serialise_answer_log(entries: Iterable[AnswerLogEntry]) -> str:
    return json.dumps([entry.to_dict() for entry in entries])


def parse_answer_log(payload: str) -> list[AnswerLogEntry]:
    try:
        raw = json.loads(payload)
    except (TypeError, ValueError) as exc:
        raise AnswerLogFormatError("Answers log is not valid JSON.") from exc
    if not isinstance(raw, list):
        raise AnswerLogFormatError("Answers log must be a list.")

    entries: list[AnswerLogEntry] = []
    for position, item in enumerate(raw):
        if not isinstance(item, dict) or "questionId" not in item:
            raise AnswerLogFormatError(f"Answers log entry {position} is missing questionId.")
        try:
            selected = normalise_option(item.get("selectedOption"))
            correct = normalise_option(item.get("correctOption")) or ""
        except AnswerValidationError as exc:
            raise AnswerLogFormatError(f"Answers log entry {position}: {exc}") from exc
        try:
            time_spent = int(item.get("timeSpentSeconds") or 0)
            points = _clean_score(float(item.get("points") or 0))
        except (TypeError, ValueError) as exc:
            raise AnswerLogFormatError(
                f"Answers log entry {position} has a non-numeric time or points value."
            ) from exc
        entries.append(
            AnswerLogEntry(
                question_id=str(item["questionId"]),
                selected_option=selected,
                correct_option=correct,
                is_correct=bool(item.get("isCorrect")),
                marked_for_review=bool(item.get("markedForReview")),
                time_spent_seconds=time_spent,
                points=points,
            )
        )
    return entries


def records_from_log(entries: Iterable[AnswerLogEntry]) -> list[AnswerRecord]:
    return [
        AnswerRecord(
            question_id=entry.question_id,
            selected_option=entry.selected_option,
            marked_for_review=entry.marked_for_review,
            time_spent_seconds=entry.time_spent_seconds,
            visited=True,
        )
        for entry in entries
    ]


def rescore_answer_log(
    questions: Sequence[Question],
    payload: str,
    **kwargs: Any,
) -> AttemptResult:
    """Re-join a stored answers log against its question set and score it again."""
    return score_attempt(questions, records_from_log(parse_answer_log(payload)), **kwargs)


__all__ = [
    "AttemptStatus",
    "AnswerLogEntry",
    "AttemptResult",
    "question_points",
    "percentage_of",
    "score_attempt",
    "serialise_answer_log",
    "parse_answer_log",
    "records_from_log",
    "rescore_answer_log",
]
