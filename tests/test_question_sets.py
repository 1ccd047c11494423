from __future__ import annotations

import pytest
import requests

from examprep import create_app, db
from examprep import models
from examprep.config import TestConfig
from examprep.services.errors import (
    AnswerValidationError,
    ConfigurationError,
    QuestionSetAccessDenied,
    QuestionSetNetworkError,
    QuestionSetNotFound,
)
from examprep.services.question_sets import (
    PocketBaseQuestionSetLoader,
    SQLQuestionSetLoader,
    escape_filter_value,
    normalise_option,
    normalise_question,
)


@pytest.mark.parametrize(
    "raw, expected",
    [("A", "A"), ("b", "B"), (" Option C ", "C"), ("option d", "D"), (None, None), ("", None), ("none", None)],
)
def test_normalise_option(raw, expected):
    assert normalise_option(raw) == expected


@pytest.mark.parametrize("raw", ["E", "AB", "Option 1", "5"])
def test_normalise_option_rejects_unknown_values(raw):
    with pytest.raises(AnswerValidationError):
        normalise_option(raw)


def test_hosted_casing_is_normalised():
    question = normalise_question(
        {
            "id": "rec1",
            "QuestionText": "Which nerve?",
            "OptionAText": "Vagus",
            "OptionBText": "Facial",
            "OptionBImage": "",
            "CorrectOption": "Option B",
            "Marks": "4",
            "negative_marking": "1",
            "explanationText": "Facial nerve.",
            "collectionName": "teacher_question_data",
        }
    )

    assert question.id == "rec1"
    assert question.text == "Which nerve?"
    assert question.options["A"].text == "Vagus"
    assert question.options["B"].image_url is None
    assert question.options["D"].text is None
    assert question.correct_option == "B"
    assert question.marks == 4
    assert question.negative_marks == -1
    assert question.explanation == "Facial nerve."


def test_camel_case_and_defaults():
    question = normalise_question(
        {"id": 12, "questionText": "Q", "optionAText": "x", "correctOption": "a", "marks": 0, "negativeMarks": -0.25}
    )

    assert question.id == "12"
    assert question.correct_option == "A"
    assert question.marks == 1
    assert question.negative_marks == -0.25


@pytest.mark.parametrize(
    "record",
    [
        {"id": "q1", "text": "Missing answer"},
        {"id": "q1", "text": "Bad answer", "correct_option": "Z"},
        {"id": "q1", "text": "Blank answer", "correct_option": ""},
    ],
)
def test_malformed_records_are_configuration_errors(record):
    with pytest.raises(ConfigurationError):
        normalise_question(record)


def test_escape_filter_value():
    assert escape_filter_value('Unit "1" \\ intro') == 'Unit \\"1\\" \\\\ intro'


class _Response:
    def __init__(self, status_code=200, payload=None, invalid_json=False):
        self.status_code = status_code
        self._payload = payload
        self._invalid_json = invalid_json

    def json(self):
        if self._invalid_json:
            raise ValueError("no json")
        return self._payload


class _HttpStub:
    """Serves canned responses keyed by URL path suffix."""

    def __init__(self, routes):
        self.routes = routes
        self.calls = []

    def get(self, url, headers=None, params=None, timeout=None):
        self.calls.append({"url": url, "headers": headers, "params": params, "timeout": timeout})
        for suffix, responses in self.routes.items():
            if url.endswith(suffix):
                result = responses.pop(0) if isinstance(responses, list) else responses
                if isinstance(result, Exception):
                    raise result
                return result
        return _Response(404, {})


def _test_record(**overrides):
    record = {
        "id": "t1",
        "testName": "Cardiology Mock",
        "teacherId": "teach9",
        "status": "Published",
        "TotalTime": "90",
        "Admin_Password": "",
    }
    record.update(overrides)
    return record


def test_pocketbase_loader_reads_test_and_pages_questions():
    page_one = {
        "items": [{"id": "a", "QuestionText": "One", "CorrectOption": "A"}],
        "totalPages": 2,
    }
    page_two = {
        "items": [{"id": "b", "questionText": "Two", "correctOption": "Option C", "Marks": 2}],
        "totalPages": 2,
    }
    http = _HttpStub(
        {
            "/teacher_tests/records/t1": _Response(200, _test_record()),
            "/teacher_question_data/records": [_Response(200, page_one), _Response(200, page_two)],
        }
    )
    loader = PocketBaseQuestionSetLoader("http://pb.local/", token="tok", timeout=3, http=http)

    question_set = loader.load_question_set("t1")

    assert question_set.title == "Cardiology Mock"
    assert [q.id for q in question_set.questions] == ["a", "b"]
    assert question_set.questions[1].correct_option == "C"
    assert question_set.duration_minutes_raw == "90"
    assert not question_set.requires_pin

    first_page = http.calls[1]
    assert first_page["url"] == "http://pb.local/api/collections/teacher_question_data/records"
    assert first_page["params"]["filter"] == 'teacher = "teach9" && LessonName = "Cardiology Mock"'
    assert first_page["params"]["perPage"] == 200
    assert http.calls[2]["params"]["page"] == 2
    assert all(call["headers"]["Authorization"] == "tok" and call["timeout"] == 3 for call in http.calls)


def test_pocketbase_loader_reads_pin():
    http = _HttpStub(
        {
            "/teacher_tests/records/t1": _Response(200, _test_record(Admin_Password=1234)),
            "/teacher_question_data/records": _Response(200, {"items": [], "totalPages": 1}),
        }
    )
    question_set = PocketBaseQuestionSetLoader("http://pb.local", http=http).load_question_set("t1")

    assert question_set.pin == "1234"
    assert question_set.questions == ()


def test_pocketbase_loader_refuses_unpublished_tests():
    http = _HttpStub({"/teacher_tests/records/t1": _Response(200, _test_record(status="Draft"))})
    with pytest.raises(QuestionSetAccessDenied):
        PocketBaseQuestionSetLoader("http://pb.local", http=http).load_question_set("t1")


@pytest.mark.parametrize(
    "response, error",
    [
        (_Response(404, {}), QuestionSetNotFound),
        (_Response(403, {}), QuestionSetAccessDenied),
        (_Response(401, {}), QuestionSetAccessDenied),
        (_Response(500, {}), QuestionSetNetworkError),
        (_Response(200, invalid_json=True), QuestionSetNetworkError),
        (requests.ConnectionError("down"), QuestionSetNetworkError),
    ],
)
def test_pocketbase_loader_error_mapping(response, error):
    http = _HttpStub({"/teacher_tests/records/t1": response})
    with pytest.raises(error) as excinfo:
        PocketBaseQuestionSetLoader("http://pb.local", http=http).load_question_set("t1")
    assert excinfo.value.retryable is (error is QuestionSetNetworkError)


@pytest.fixture
def sql_app():
    app = create_app(TestConfig)
    with app.app_context():
        db.create_all()
        questions = [
            models.Question(text="First", option_a="1", option_b="2", correct_option="B"),
            models.Question(text="Second", option_a="1", option_b="2", correct_option="A", marks=4, negative_marks=1),
        ]
        published = models.TestPaper(title="Published", status="Published", duration_minutes="90", access_pin="99")
        draft = models.TestPaper(title="Draft", status="Draft")
        db.session.add_all(questions + [published, draft])
        db.session.flush()
        db.session.add_all(
            [
                models.TestPaperQuestion(paper_id=published.id, question_id=questions[0].id, position=2),
                models.TestPaperQuestion(paper_id=published.id, question_id=questions[1].id, position=1),
                models.TestPaperQuestion(paper_id=draft.id, question_id=questions[0].id, position=1),
            ]
        )
        db.session.commit()
        app.config["IDS"] = {"published": published.id, "draft": draft.id}
        yield app
        db.session.remove()
        db.drop_all()


def test_sql_loader_orders_by_position(sql_app):
    ids = sql_app.config["IDS"]
    with sql_app.app_context():
        question_set = SQLQuestionSetLoader().load_question_set(str(ids["published"]))

    assert [q.text for q in question_set.questions] == ["Second", "First"]
    assert question_set.questions[0].negative_marks == -1
    assert question_set.duration_minutes_raw == "90"
    assert question_set.pin == "99"


def test_sql_loader_refuses_drafts_unless_asked(sql_app):
    ids = sql_app.config["IDS"]
    loader = SQLQuestionSetLoader()
    with sql_app.app_context():
        with pytest.raises(QuestionSetAccessDenied):
            loader.load_question_set(str(ids["draft"]))
        question_set = loader.load_question_set(str(ids["draft"]), require_published=False)
    assert question_set.status == "Draft"


@pytest.mark.parametrize("test_id", ["9999", "abc"])
def test_sql_loader_unknown_test(sql_app, test_id):
    with sql_app.app_context():
        with pytest.raises(QuestionSetNotFound):
            SQLQuestionSetLoader().load_question_set(test_id)
