from __future__ import annotations

import threading

import pytest

from examprep.services.attempt_sessions import (
    AttemptSession,
    SessionStatus,
    TerminationReason,
)
from examprep.services.errors import (
    AnswerValidationError,
    ConfigurationError,
    SessionStateError,
    SubmissionNetworkError,
)
from examprep.services.question_sets import Question, QuestionSet
from examprep.services.scoring import AttemptStatus


class _ResultStoreStub:
    """Records every attempt it is asked to persist."""

    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls = 0
        self.saved = []

    def submit_attempt(self, result):
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise SubmissionNetworkError("store offline")
        self.saved.append(result)
        return f"attempt-{len(self.saved)}"


class _Clock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def _question_set(count=3, duration="90"):
    questions = tuple(
        Question(id=f"q{i}", correct_option="ABCD"[i % 4], marks=1) for i in range(1, count + 1)
    )
    return QuestionSet(test_id="7", title="Mock", questions=questions, duration_minutes_raw=duration)


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
def store():
    return _ResultStoreStub()


def _session(store, clock=None, **kwargs):
    kwargs.setdefault("student_id", "11")
    kwargs.setdefault("autostart_timer", False)
    if clock is not None:
        kwargs["clock"] = clock
    question_set = kwargs.pop("question_set", None) or _question_set()
    return AttemptSession(question_set, store, **kwargs)


def test_start_sets_up_records_and_countdown(store):
    session = _session(store).start()

    assert session.status is SessionStatus.IN_PROGRESS
    assert session.remaining_seconds == 5400
    assert session.total_seconds == 5400
    assert len(session.store) == len(session.questions) == 3
    assert session.store.get("q1").visited
    assert not session.store.get("q2").visited


def test_start_without_questions_is_a_configuration_error(store):
    session = _session(store, question_set=_question_set(count=0))

    with pytest.raises(ConfigurationError):
        session.start()
    assert session.status is SessionStatus.NOT_STARTED
    assert session.timer is None


def test_unusable_duration_falls_back_to_default(store):
    session = _session(store, question_set=_question_set(duration="soon"), default_duration_minutes=45)
    session.start()
    assert session.remaining_seconds == 2700


def test_start_twice_is_rejected(store):
    session = _session(store).start()
    with pytest.raises(SessionStateError):
        session.start()


def test_countdown_expiry_terminates_with_one_submission(store):
    session = _session(store).start()

    for _ in range(5400):
        session.timer.tick()

    assert session.status is SessionStatus.TERMINATED
    assert session.reason is TerminationReason.TIME_UP
    assert len(store.saved) == 1
    assert store.saved[0].status is AttemptStatus.TERMINATED_TIME_UP
    assert store.saved[0].duration_taken_seconds == 5400
    assert session.outcome.attempt_id == "attempt-1"
    assert not session.timer.running


def test_goto_clamps_out_of_range_indexes(store):
    session = _session(store).start()

    session.goto(99)
    assert session.current_index == 2
    session.goto(-4)
    assert session.current_index == 0
    session.previous()
    assert session.current_index == 0
    session.goto(2)
    session.next()
    assert session.current_index == 2


def test_navigating_away_and_back_keeps_answer_and_time(store, clock):
    session = _session(store, clock).start()

    session.select_option("b")
    session.toggle_review()
    clock.advance(10)
    session.next()
    assert session.store.get("q1").time_spent_seconds == 10

    clock.advance(4)
    session.goto(0)
    record = session.store.get("q1")
    assert record.selected_option == "B"
    assert record.marked_for_review
    assert session.store.get("q2").time_spent_seconds == 4

    clock.advance(6)
    session.goto(5)
    assert session.store.get("q1").time_spent_seconds == 16
    assert len(session.store) == 3


def test_select_then_clear(store):
    session = _session(store).start()
    session.select_option("A")
    session.clear()
    assert session.store.get("q1").selected_option is None


def test_invalid_option_is_rejected_while_in_progress(store):
    session = _session(store).start()
    with pytest.raises(AnswerValidationError):
        session.select_option("Z")


def test_submit_scores_and_freezes(store, clock):
    session = _session(store, clock).start()
    session.select_option("B")
    clock.advance(3)

    outcome = session.submit()

    assert outcome.status is SessionStatus.COMPLETED
    assert outcome.reason is None
    assert outcome.result.status is AttemptStatus.COMPLETED
    assert outcome.result.correct_count == 1
    assert outcome.result.entries[0].time_spent_seconds == 3
    assert session.store.frozen
    assert session.select_option("C") is None
    assert session.goto(1) is False
    assert session.store.get("q1").selected_option == "B"


def test_double_submit_persists_once(store):
    session = _session(store).start()

    first = session.submit()
    second = session.submit()
    session.on_timer_expired()

    assert first is second
    assert len(store.saved) == 1
    assert session.status is SessionStatus.COMPLETED


def test_reentrant_submit_during_persist_is_suppressed():
    inner = []

    class _ReentrantStore(_ResultStoreStub):
        def submit_attempt(self, result):
            inner.append(session.submit())
            return super().submit_attempt(result)

    reentrant = _ReentrantStore()
    session = _session(reentrant).start()

    session.submit()

    assert inner == [None]
    assert len(reentrant.saved) == 1


def test_timer_racing_manual_submit_persists_once():
    entered = threading.Event()
    release = threading.Event()

    class _SlowStore(_ResultStoreStub):
        def submit_attempt(self, result):
            entered.set()
            release.wait(timeout=5)
            return super().submit_attempt(result)

    slow = _SlowStore()
    session = _session(slow).start()
    worker = threading.Thread(target=session.submit)
    worker.start()
    assert entered.wait(timeout=5)

    assert session.snapshot().submitting
    session.on_timer_expired()
    assert session.submit() is None
    assert session.select_option("A") is None

    release.set()
    worker.join(timeout=5)

    assert len(slow.saved) == 1
    assert slow.calls == 1
    assert session.status is SessionStatus.COMPLETED


def test_failed_submission_keeps_session_open_for_retry(clock):
    flaky = _ResultStoreStub(failures=1)
    session = _session(flaky, clock).start()
    session.select_option("B")

    with pytest.raises(SubmissionNetworkError):
        session.submit()

    snapshot = session.snapshot()
    assert snapshot.status is SessionStatus.IN_PROGRESS
    assert not snapshot.submitting
    assert snapshot.last_error == "store offline"
    assert session.store.get("q1").selected_option == "B"

    session.select_option("C")
    outcome = session.submit()

    assert outcome.status is SessionStatus.COMPLETED
    assert len(flaky.saved) == 1
    assert flaky.saved[0].entries[0].selected_option == "C"
    assert session.snapshot().last_error is None


def test_failed_time_up_submission_keeps_reason_on_retry():
    flaky = _ResultStoreStub(failures=1)
    session = _session(flaky, question_set=_question_set(duration="1")).start()

    for _ in range(60):
        session.timer.tick()

    assert session.status is SessionStatus.IN_PROGRESS
    assert flaky.saved == []

    outcome = session.submit()
    assert outcome.status is SessionStatus.TERMINATED
    assert outcome.reason is TerminationReason.TIME_UP
    assert flaky.saved[0].status is AttemptStatus.TERMINATED_TIME_UP


def test_manual_termination(store):
    session = _session(store).start()
    outcome = session.terminate("manual")

    assert outcome.status is SessionStatus.TERMINATED
    assert outcome.reason is TerminationReason.MANUAL
    assert store.saved[0].status is AttemptStatus.TERMINATED_MANUAL


def test_tab_switch_limit_terminates_on_policy(store):
    session = _session(store, tab_switch_limit=2).start()

    assert session.record_tab_switch() is None
    assert session.record_tab_switch() is None
    outcome = session.record_tab_switch()

    assert outcome.reason is TerminationReason.POLICY
    assert store.saved[0].status is AttemptStatus.TERMINATED_POLICY
    assert session.tab_switches == 3


def test_tab_switches_are_only_counted_without_a_limit(store):
    session = _session(store, tab_switch_limit=0).start()
    for _ in range(10):
        session.record_tab_switch()
    assert session.status is SessionStatus.IN_PROGRESS
    assert session.tab_switches == 10


def test_abandon_never_persists(store):
    released = []
    session = _session(store).start()
    session.add_cleanup(lambda: released.append(True))
    session.select_option("A")

    session.abandon()

    assert released == [True]
    assert not session.timer.running
    for _ in range(5400):
        session.timer.tick()
    assert store.calls == 0
    with pytest.raises(SessionStateError):
        session.submit()
    assert session.select_option("B") is None


def test_submit_before_start_is_rejected(store):
    with pytest.raises(SessionStateError):
        _session(store).submit()


def test_cleanups_run_once_after_submission(store):
    released = []
    session = _session(store).start()
    session.add_cleanup(lambda: released.append(True))

    session.submit()
    session.abandon()

    assert released == [True]
