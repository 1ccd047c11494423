import os
from pathlib import Path

from sqlalchemy.engine import URL


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() not in {"0", "false", "no"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
    default_db_path = Path(__file__).resolve().parent.parent / "instance" / "examprep.db"
    default_db_uri = URL.create(
        drivername="sqlite",
        database=str(default_db_path),
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", str(default_db_uri))
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "sql" serves tests from the local database; "pocketbase" from the hosted store.
    QUESTION_BACKEND = os.environ.get("QUESTION_BACKEND", "sql").lower()
    POCKETBASE_URL = os.environ.get("POCKETBASE_URL", "http://127.0.0.1:8090")
    POCKETBASE_TOKEN = os.environ.get("POCKETBASE_TOKEN")
    POCKETBASE_TIMEOUT = int(os.environ.get("POCKETBASE_TIMEOUT", "10"))
    POCKETBASE_RESULTS_COLLECTION = os.environ.get(
        "POCKETBASE_RESULTS_COLLECTION", "teacher_test_attempts"
    )

    DEFAULT_DURATION_MINUTES = int(os.environ.get("DEFAULT_DURATION_MINUTES", "60"))
    TAB_SWITCH_LIMIT = int(os.environ.get("TAB_SWITCH_LIMIT", "3"))
    COUNTDOWN_AUTOSTART = _flag("COUNTDOWN_AUTOSTART", "1")


class TestConfig(Config):
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    TESTING = True
    QUESTION_BACKEND = "sql"
    COUNTDOWN_AUTOSTART = False
