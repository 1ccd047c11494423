from __future__ import annotations

import click

from examprep import create_app, db
from examprep.models import Question, Student, TestPaper, TestPaperQuestion

app = create_app()


@app.cli.command("init-db")
def init_db() -> None:
    """Initialise the database schema."""
    db.create_all()
    app.logger.info("Database tables created")


@app.cli.command("seed-demo")
def seed_demo() -> None:
    """Seed the database with demo students and test papers."""
    db.drop_all()
    db.create_all()

    students = [
        Student(name="Jamie Lee", email="jamie@example.com"),
        Student(name="Priya Nair", email="priya@example.com"),
    ]

    LETTERS = ("A", "B", "C", "D")
    SUBJECTS = ("Physiology", "Anatomy", "Pharmacology", "Pathology")

    questions: list[Question] = []
    for index in range(1, 21):
        subject = SUBJECTS[(index - 1) % len(SUBJECTS)]
        correct_letter = LETTERS[(index - 1) % len(LETTERS)]
        questions.append(
            Question(
                text=f"{subject} practice question {index}.",
                option_a=f"First choice for question {index}.",
                option_b=f"Second choice for question {index}.",
                option_c=f"Third choice for question {index}.",
                option_d=f"Fourth choice for question {index}.",
                correct_option=correct_letter,
                marks=4 if index > 10 else 1,
                negative_marks=-1 if index > 10 else 0,
                difficulty=("easy", "medium", "hard")[index % 3],
                explanation=f"Option {correct_letter} is the accepted answer for {subject.lower()}.",
                subject=subject,
            )
        )

    papers = [
        TestPaper(title="Foundations Quiz", status="Published", duration_minutes="90"),
        TestPaper(title="Negative Marking Mock", status="Published", duration_minutes="30", access_pin="4321"),
        TestPaper(title="Upcoming Mock", status="Draft", duration_minutes="60"),
    ]

    db.session.add_all(students)
    db.session.add_all(questions)
    db.session.add_all(papers)
    db.session.flush()

    layout = {
        papers[0]: questions[:10],
        papers[1]: questions[10:],
        papers[2]: questions[5:15],
    }
    paper_questions = [
        TestPaperQuestion(paper_id=paper.id, question_id=question.id, position=position)
        for paper, subset in layout.items()
        for position, question in enumerate(subset, start=1)
    ]
    db.session.add_all(paper_questions)

    tokens = [student.issue_token() for student in students]
    db.session.commit()
    app.logger.info(
        "Demo data created: %s papers; token for %s: %s",
        len(papers),
        students[0].email,
        tokens[0].token,
    )


@app.cli.command("issue-token")
@click.argument("student")
def issue_token(student: str) -> None:
    """Issue an API token for a student, looked up by email or id."""
    record = Student.query.filter_by(email=student).first()
    if record is None and student.isdigit():
        record = db.session.get(Student, int(student))
    if record is None:
        raise click.ClickException(f"No student matches '{student}'.")

    token = record.issue_token()
    db.session.commit()
    click.echo(token.token)
