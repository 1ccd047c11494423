"""Database maintenance helpers to keep legacy deployments compatible."""

from __future__ import annotations

import logging

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from . import db

# Columns added to ``questions`` when per-question marking arrived.
MARKING_COLUMNS = {
    "marks": "INTEGER NOT NULL DEFAULT 1",
    "negative_marks": "FLOAT NOT NULL DEFAULT 0",
}


def ensure_core_tables(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Ensure the base SQLAlchemy models are materialised for new databases."""

    logger = logger or logging.getLogger(__name__)
    try:
        db.create_all()
    except SQLAlchemyError:
        logger.exception("Failed to create core tables during maintenance")
        raise


def ensure_question_marking_columns(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Add the ``marks``/``negative_marks`` columns to question tables that predate them.

    Older databases scored every question as one mark with no penalty; the
    defaults below keep those papers scoring exactly as before.
    """

    inspector = inspect(engine)
    if "questions" not in inspector.get_table_names():
        return

    columns = {col["name"] for col in inspector.get_columns("questions")}
    missing = [name for name in MARKING_COLUMNS if name not in columns]
    if not missing:
        return

    logger = logger or logging.getLogger(__name__)
    logger.warning(
        "Missing questions columns %s detected; applying legacy schema patch.", ", ".join(missing)
    )

    try:
        with engine.begin() as connection:
            for name in missing:
                connection.execute(
                    text(f"ALTER TABLE questions ADD COLUMN {name} {MARKING_COLUMNS[name]}")
                )
    except SQLAlchemyError:
        logger.exception("Failed to patch legacy questions table with marking columns")
        raise


def ensure_database_schema(engine: Engine, logger: logging.Logger | None = None) -> None:
    """Run all lightweight schema checks for legacy compatibility."""

    ensure_question_marking_columns(engine, logger)
    ensure_core_tables(engine, logger)
