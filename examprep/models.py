from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import Enum, UniqueConstraint

from . import db


class Student(db.Model):
    __tablename__ = "students"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    email = db.Column(db.String(120), unique=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    auth_tokens = db.relationship(
        "StudentAuthToken", back_populates="student", cascade="all, delete-orphan"
    )
    attempts = db.relationship(
        "TestAttempt", back_populates="student", cascade="all, delete-orphan"
    )

    def issue_token(self, *, expires_at: datetime | None = None) -> "StudentAuthToken":
        from secrets import token_urlsafe

        expiry = expires_at or datetime.utcnow() + timedelta(days=7)
        token = StudentAuthToken(
            token=token_urlsafe(32), student=self, expires_at=expiry, revoked=False
        )
        db.session.add(token)
        return token


class StudentAuthToken(db.Model):
    __tablename__ = "student_auth_tokens"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    token = db.Column(db.String(255), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    revoked = db.Column(db.Boolean, nullable=False, default=False)

    student = db.relationship("Student", back_populates="auth_tokens")


class Question(db.Model):
    __tablename__ = "questions"

    id = db.Column(db.Integer, primary_key=True)
    text = db.Column(db.Text)
    image_url = db.Column(db.String(500))
    option_a = db.Column(db.Text)
    option_b = db.Column(db.Text)
    option_c = db.Column(db.Text)
    option_d = db.Column(db.Text)
    option_a_image = db.Column(db.String(500))
    option_b_image = db.Column(db.String(500))
    option_c_image = db.Column(db.String(500))
    option_d_image = db.Column(db.String(500))
    correct_option = db.Column(db.String(10), nullable=False, default="A")
    marks = db.Column(db.Integer, nullable=False, default=1)
    negative_marks = db.Column(db.Float, nullable=False, default=0)
    difficulty = db.Column(db.String(20))
    explanation = db.Column(db.Text)
    subject = db.Column(db.String(120))


class TestPaper(db.Model):
    __tablename__ = "test_papers"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    status = db.Column(
        Enum("Draft", "Published", "Archived", name="test_paper_status"),
        nullable=False,
        default="Draft",
    )
    # Kept as text: legacy papers hold values such as "90 mins" or blanks.
    duration_minutes = db.Column(db.String(20))
    access_pin = db.Column(db.String(20))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    questions = db.relationship(
        "TestPaperQuestion", back_populates="paper", cascade="all, delete-orphan"
    )
    attempts = db.relationship(
        "TestAttempt", back_populates="paper", cascade="all, delete-orphan"
    )


class TestPaperQuestion(db.Model):
    __tablename__ = "test_paper_questions"

    id = db.Column(db.Integer, primary_key=True)
    paper_id = db.Column(db.Integer, db.ForeignKey("test_papers.id"), nullable=False)
    question_id = db.Column(db.Integer, db.ForeignKey("questions.id"), nullable=False)
    position = db.Column(db.Integer, nullable=False)

    paper = db.relationship("TestPaper", back_populates="questions")
    question = db.relationship("Question")

    __table_args__ = (
        UniqueConstraint("paper_id", "question_id", name="uq_paper_question"),
        UniqueConstraint("paper_id", "position", name="uq_paper_position"),
    )


class TestAttempt(db.Model):
    __tablename__ = "test_attempts"

    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False)
    paper_id = db.Column(db.Integer, db.ForeignKey("test_papers.id"), nullable=False)
    status = db.Column(
        Enum(
            "completed",
            "terminated_time_up",
            "terminated_manual",
            "terminated_policy",
            name="test_attempt_status",
        ),
        nullable=False,
    )
    score = db.Column(db.Float, nullable=False)
    max_score = db.Column(db.Integer, nullable=False)
    percentage = db.Column(db.Float, nullable=False)
    correct_count = db.Column(db.Integer, nullable=False, default=0)
    incorrect_count = db.Column(db.Integer, nullable=False, default=0)
    unattempted_count = db.Column(db.Integer, nullable=False, default=0)
    answers_log = db.Column(db.Text, nullable=False)
    started_at = db.Column(db.DateTime)
    finished_at = db.Column(db.DateTime)
    duration_taken_seconds = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    student = db.relationship("Student", back_populates="attempts")
    paper = db.relationship("TestPaper", back_populates="attempts")


__all__ = [
    "Student",
    "StudentAuthToken",
    "Question",
    "TestPaper",
    "TestPaperQuestion",
    "TestAttempt",
]
