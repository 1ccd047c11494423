"""Question set loading and normalisation.

Question records arrive in several shapes: rows from the local SQL store and
records from the hosted PocketBase collections, where field casing differs
between collections (``QuestionText`` vs ``questionText``) and the correct
answer may be stored as ``"Option B"``. Everything is funnelled through
:class:`QuestionRecord` once, so the rest of the attempt code only ever sees
the canonical :class:`Question`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Protocol

import requests
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator
from sqlalchemy.exc import SQLAlchemyError

from .. import db
from ..models import TestPaper
from .errors import (
    AnswerValidationError,
    ConfigurationError,
    QuestionSetAccessDenied,
    QuestionSetNetworkError,
    QuestionSetNotFound,
)

logger = logging.getLogger(__name__)

VALID_OPTIONS: tuple[str, ...] = ("A", "B", "C", "D")
PUBLISHED_STATUS = "Published"
_EMPTY_OPTION_VALUES = {"", "NONE", "NULL"}


def normalise_option(value: str | None) -> str | None:
    """Return ``A``-``D`` for a selected option, ``None`` for an empty selection.

    Accepts lowercase letters and the ``"Option C"`` form used by the hosted
    collections. Anything else raises :class:`AnswerValidationError`.
    """

    if value is None:
        return None
    cleaned = str(value).strip().upper()
    if cleaned.startswith("OPTION"):
        cleaned = cleaned[len("OPTION"):].strip()
    if cleaned in _EMPTY_OPTION_VALUES:
        return None
    if cleaned not in VALID_OPTIONS:
        raise AnswerValidationError(f"'{value}' is not a valid option.")
    return cleaned


@dataclass(frozen=True, slots=True)
class QuestionOption:
    text: str | None = None
    image_url: str | None = None


@dataclass(frozen=True, slots=True)
class Question:
    id: str
    correct_option: str
    text: str | None = None
    image_url: str | None = None
    options: Mapping[str, QuestionOption] = field(default_factory=dict)
    marks: int = 1
    negative_marks: float = 0
    difficulty: str | None = None
    explanation: str | None = None
    subject: str | None = None


@dataclass(frozen=True, slots=True)
class QuestionSet:
    test_id: str
    title: str
    questions: tuple[Question, ...]
    duration_minutes_raw: Any = None
    pin: str | None = None
    status: str = PUBLISHED_STATUS

    @property
    def requires_pin(self) -> bool:
        return bool(self.pin)

    def question_lookup(self) -> dict[str, Question]:
        return {question.id: question for question in self.questions}


def _aliases(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class QuestionRecord(BaseModel):
    """Tolerant view of a stored question record."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    text: Optional[str] = Field(
        default=None, validation_alias=_aliases("text", "QuestionText", "questionText", "question_text", "prompt")
    )
    image_url: Optional[str] = Field(
        default=None, validation_alias=_aliases("image_url", "QuestionImage", "questionImage", "imageUrl")
    )
    option_a_text: Optional[str] = Field(default=None, validation_alias=_aliases("option_a_text", "OptionAText", "optionAText", "option_a"))
    option_a_image: Optional[str] = Field(default=None, validation_alias=_aliases("option_a_image", "OptionAImage", "optionAImage"))
    option_b_text: Optional[str] = Field(default=None, validation_alias=_aliases("option_b_text", "OptionBText", "optionBText", "option_b"))
    option_b_image: Optional[str] = Field(default=None, validation_alias=_aliases("option_b_image", "OptionBImage", "optionBImage"))
    option_c_text: Optional[str] = Field(default=None, validation_alias=_aliases("option_c_text", "OptionCText", "optionCText", "option_c"))
    option_c_image: Optional[str] = Field(default=None, validation_alias=_aliases("option_c_image", "OptionCImage", "optionCImage"))
    option_d_text: Optional[str] = Field(default=None, validation_alias=_aliases("option_d_text", "OptionDText", "optionDText", "option_d"))
    option_d_image: Optional[str] = Field(default=None, validation_alias=_aliases("option_d_image", "OptionDImage", "optionDImage"))
    correct_option: str = Field(validation_alias=_aliases("correct_option", "CorrectOption", "correctOption"))
    marks: int = Field(default=1, validation_alias=_aliases("marks", "Marks"))
    negative_marks: float = Field(
        default=0, validation_alias=_aliases("negative_marks", "negativeMarks", "NegativeMarks", "negative_marking")
    )
    difficulty: Optional[str] = Field(default=None, validation_alias=_aliases("difficulty", "Difficulty"))
    explanation: Optional[str] = Field(
        default=None, validation_alias=_aliases("explanation", "explanationText", "ExplanationText")
    )
    subject: Optional[str] = Field(default=None, validation_alias=_aliases("subject", "Subject"))

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> str:
        return str(value)

    @field_validator(
        "text",
        "image_url",
        "option_a_text",
        "option_a_image",
        "option_b_text",
        "option_b_image",
        "option_c_text",
        "option_c_image",
        "option_d_text",
        "option_d_image",
        "difficulty",
        "explanation",
        "subject",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("correct_option", mode="before")
    @classmethod
    def _normalise_correct_option(cls, value: Any) -> str:
        try:
            option = normalise_option(value)
        except AnswerValidationError as exc:
            raise ValueError(str(exc)) from exc
        if option is None:
            raise ValueError("A correct option is required.")
        return option

    @field_validator("marks", mode="before")
    @classmethod
    def _default_marks(cls, value: Any) -> Any:
        # Missing or non-positive marks count as one mark.
        if value in (None, ""):
            return 1
        try:
            marks = int(value)
        except (TypeError, ValueError):
            return 1
        return marks if marks > 0 else 1

    @field_validator("negative_marks", mode="before")
    @classmethod
    def _penalty_sign(cls, value: Any) -> float:
        # Stores hold the penalty either as "1" or "-1"; both mean lose one point.
        if value in (None, ""):
            return 0
        try:
            penalty = float(value)
        except (TypeError, ValueError):
            return 0
        return -abs(penalty)

    def to_question(self) -> Question:
        options = {
            "A": QuestionOption(self.option_a_text, self.option_a_image),
            "B": QuestionOption(self.option_b_text, self.option_b_image),
            "C": QuestionOption(self.option_c_text, self.option_c_image),
            "D": QuestionOption(self.option_d_text, self.option_d_image),
        }
        negative = self.negative_marks
        if negative == int(negative):
            negative = int(negative)
        return Question(
            id=self.id,
            correct_option=self.correct_option,
            text=self.text,
            image_url=self.image_url,
            options=options,
            marks=self.marks,
            negative_marks=negative,
            difficulty=self.difficulty,
            explanation=self.explanation,
            subject=self.subject,
        )


def normalise_question(record: Mapping[str, Any]) -> Question:
    """Convert one raw store record into a canonical :class:`Question`."""

    try:
        return QuestionRecord.model_validate(dict(record)).to_question()
    except ValidationError as exc:
        raise ConfigurationError(
            f"Question record {record.get('id')!r} is malformed: {exc.errors()[0]['msg']}"
        ) from exc


def normalise_questions(records: Iterable[Mapping[str, Any]]) -> tuple[Question, ...]:
    return tuple(normalise_question(record) for record in records)


class QuestionSetLoader(Protocol):
    def load_question_set(self, test_id: str) -> QuestionSet:
        ...


def _question_row_payload(question: Any) -> dict[str, Any]:
    return {
        "id": question.id,
        "text": question.text,
        "image_url": question.image_url,
        "option_a_text": question.option_a,
        "option_b_text": question.option_b,
        "option_c_text": question.option_c,
        "option_d_text": question.option_d,
        "option_a_image": question.option_a_image,
        "option_b_image": question.option_b_image,
        "option_c_image": question.option_c_image,
        "option_d_image": question.option_d_image,
        "correct_option": question.correct_option,
        "marks": question.marks,
        "negative_marks": question.negative_marks,
        "difficulty": question.difficulty,
        "explanation": question.explanation,
        "subject": question.subject,
    }


class SQLQuestionSetLoader:
    """Loads test papers stored in the application's own database."""

    def load_question_set(self, test_id: str, *, require_published: bool = True) -> QuestionSet:
        try:
            paper_id = int(test_id)
        except (TypeError, ValueError):
            raise QuestionSetNotFound(f"Test '{test_id}' not found.") from None

        try:
            paper = db.session.get(TestPaper, paper_id)
            if not paper:
                raise QuestionSetNotFound(f"Test '{test_id}' not found.")
            ordered = sorted(paper.questions, key=lambda pq: pq.position)
            payloads = [_question_row_payload(pq.question) for pq in ordered]
        except SQLAlchemyError as exc:
            logger.exception("Failed to load test paper %s", test_id)
            raise QuestionSetNetworkError("Could not load test data.") from exc

        if require_published and paper.status != PUBLISHED_STATUS:
            raise QuestionSetAccessDenied("This test is not currently published or available.")

        return QuestionSet(
            test_id=str(paper.id),
            title=paper.title,
            questions=normalise_questions(payloads),
            duration_minutes_raw=paper.duration_minutes,
            pin=paper.access_pin or None,
            status=paper.status,
        )


def escape_filter_value(value: str) -> str:
    return str(value).replace("\\", "\\\\").replace('"', '\\"')


class PocketBaseQuestionSetLoader:
    """Loads teacher tests from a hosted PocketBase instance over its REST API."""

    tests_collection = "teacher_tests"
    questions_collection = "teacher_question_data"
    page_size = 200

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10,
        http: Any = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.http = http or requests

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = self.token
        return headers

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            response = self.http.get(url, headers=self._headers(), params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise QuestionSetNetworkError("Failed to reach the question store.") from exc

        if response.status_code == 404:
            raise QuestionSetNotFound("Test not found.")
        if response.status_code in (401, 403):
            raise QuestionSetAccessDenied("The question store refused access to this test.")
        if response.status_code >= 400:
            raise QuestionSetNetworkError(f"Question store returned status {response.status_code}.")

        try:
            return response.json()
        except ValueError as exc:
            raise QuestionSetNetworkError("Question store responded with invalid JSON.") from exc

    def _question_records(self, teacher_id: str, lesson_name: str) -> list[dict[str, Any]]:
        question_filter = (
            f'teacher = "{escape_filter_value(teacher_id)}" '
            f'&& LessonName = "{escape_filter_value(lesson_name)}"'
        )
        records: list[dict[str, Any]] = []
        page = 1
        while True:
            data = self._get(
                f"/api/collections/{self.questions_collection}/records",
                params={"filter": question_filter, "sort": "created", "page": page, "perPage": self.page_size},
            )
            records.extend(data.get("items") or [])
            if page >= int(data.get("totalPages") or 1):
                break
            page += 1
        return records

    def load_question_set(self, test_id: str) -> QuestionSet:
        test = self._get(f"/api/collections/{self.tests_collection}/records/{test_id}")
        status = test.get("status") or ""
        if status != PUBLISHED_STATUS:
            raise QuestionSetAccessDenied("This test is not currently published or available.")

        teacher_id = test.get("teacherId")
        lesson_name = test.get("testName")
        if not teacher_id or not lesson_name:
            records: list[dict[str, Any]] = []
        else:
            records = self._question_records(teacher_id, lesson_name)
        logger.debug("Loaded %s question records for test %s", len(records), test_id)

        pin = test.get("Admin_Password")
        return QuestionSet(
            test_id=str(test.get("id") or test_id),
            title=lesson_name or "",
            questions=normalise_questions(records),
            duration_minutes_raw=test.get("TotalTime", test.get("duration")),
            pin=str(pin) if pin not in (None, "") else None,
            status=status,
        )


__all__ = [
    "VALID_OPTIONS",
    "PUBLISHED_STATUS",
    "normalise_option",
    "Question",
    "QuestionOption",
    "QuestionSet",
    "QuestionRecord",
    "normalise_question",
    "normalise_questions",
    "QuestionSetLoader",
    "SQLQuestionSetLoader",
    "PocketBaseQuestionSetLoader",
    "escape_filter_value",
]
