from pathlib import Path

import allure
from sqlalchemy import text

from slowquery.engine.repository import JobRepository

pytestmark = [
    allure.epic("Job Engine"),
    allure.feature("Job Store"),
]


def test_alembic_schema_is_initialized_to_head(tmp_path: Path) -> None:
    repository = JobRepository(tmp_path / "migrations.db")
    repository.init_schema()
    repository.init_schema()

    with repository.engine.connect() as connection:
        version = connection.execute(text("SELECT version_num FROM alembic_version")).scalars()
        assert list(version) == ["20261018_0001"]

        tables = connection.execute(
            text(
                """
                SELECT name
                FROM sqlite_master
                WHERE type = 'table'
                  AND name IN ('jobs', 'job_events', 'work_signals')
                ORDER BY name
                """
            )
        ).scalars()
        assert list(tables) == ["job_events", "jobs", "work_signals"]

        journal_mode = connection.execute(text("PRAGMA journal_mode")).scalar_one()
        assert str(journal_mode).lower() == "wal"
        assert connection.execute(text("PRAGMA foreign_keys")).scalar_one() == 1
    repository.close()
