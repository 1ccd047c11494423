from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, Iterator

from .question_sets import Question, normalise_option


class PaletteStatus(str, Enum):
    NOT_VISITED = "notVisited"
    NOT_ANSWERED = "notAnswered"
    ANSWERED = "answered"
    MARKED_FOR_REVIEW = "markedForReview"
    MARKED_AND_ANSWERED = "markedAndAnswered"


@dataclass(slots=True)
class AnswerRecord:
    question_id: str
    selected_option: str | None = None
    marked_for_review: bool = False
    time_spent_seconds: int = 0
    visited: bool = False

    @property
    def attempted(self) -> bool:
        return self.selected_option is not None

    @property
    def palette_status(self) -> PaletteStatus:
        if self.selected_option is None and not self.marked_for_review:
            return PaletteStatus.NOT_ANSWERED if self.visited else PaletteStatus.NOT_VISITED
        if self.selected_option is not None:
            return PaletteStatus.MARKED_AND_ANSWERED if self.marked_for_review else PaletteStatus.ANSWERED
        return PaletteStatus.MARKED_FOR_REVIEW

    def to_dict(self) -> dict:
        return {
            "questionId": self.question_id,
            "selectedOption": self.selected_option,
            "markedForReview": self.marked_for_review,
            "timeSpentSeconds": self.time_spent_seconds,
            "status": self.palette_status.value,
        }


class AnswerStateStore:
    """One :class:`AnswerRecord` per loaded question, kept in question order.

    The store never gains or loses records after construction; callers can only
    mutate the fields of an existing record. ``freeze()`` makes every further
    mutation raise, which the session uses once it leaves ``in_progress``.
    """

    def __init__(self, questions: Iterable[Question]) -> None:
        self._records: dict[str, AnswerRecord] = {}
        for question in questions:
            if question.id in self._records:
                raise ValueError(f"Duplicate question id '{question.id}' in question set.")
            self._records[question.id] = AnswerRecord(question_id=question.id)
        self._frozen = False

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[AnswerRecord]:
        return iter(self._records.values())

    def __contains__(self, question_id: object) -> bool:
        return question_id in self._records

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def get(self, question_id: str) -> AnswerRecord:
        try:
            return self._records[question_id]
        except KeyError:
            raise KeyError(f"Question '{question_id}' is not part of this session.") from None

    def _mutable(self, question_id: str) -> AnswerRecord:
        if self._frozen:
            raise RuntimeError("Answer state is frozen.")
        return self.get(question_id)

    def select(self, question_id: str, option: str | None) -> AnswerRecord:
        record = self._mutable(question_id)
        record.selected_option = normalise_option(option)
        return record

    def clear(self, question_id: str) -> AnswerRecord:
        record = self._mutable(question_id)
        record.selected_option = None
        return record

    def toggle_review(self, question_id: str) -> AnswerRecord:
        record = self._mutable(question_id)
        record.marked_for_review = not record.marked_for_review
        return record

    def mark_visited(self, question_id: str) -> None:
        self._mutable(question_id).visited = True

    def add_time(self, question_id: str, seconds: int) -> AnswerRecord:
        record = self._mutable(question_id)
        if seconds > 0:
            record.time_spent_seconds += int(seconds)
        return record

    def snapshot(self) -> list[AnswerRecord]:
        """Copies of every record, in question order."""
        return [replace(record) for record in self._records.values()]

    def counts(self) -> dict[str, int]:
        totals = {status.value: 0 for status in PaletteStatus}
        for record in self._records.values():
            totals[record.palette_status.value] += 1
        return totals


__all__ = ["AnswerRecord", "AnswerStateStore", "PaletteStatus"]
