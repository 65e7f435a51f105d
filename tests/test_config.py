from __future__ import annotations

from pathlib import Path

import allure
import pytest

from slowquery.config import Settings, WorkerSettings

pytestmark = [
    allure.epic("Job Engine"),
    allure.feature("Configuration"),
]


def test_from_env_uses_local_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "SLOWQUERY_DB_PATH",
        "SLOWQUERY_QUEUE_BACKEND",
        "SLOWQUERY_WORKER_ID",
        "SLOWQUERY_WORKER_COUNT",
        "SLOWQUERY_WORKER_POLL_INTERVAL_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path(".slowquery.db")
    assert settings.queue_backend == "memory"
    assert settings.worker.worker_count == 1
    assert settings.worker.poll_interval_seconds == 1.0
    assert settings.worker.worker_id
    settings.validate()


def test_from_env_reads_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("SLOWQUERY_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("SLOWQUERY_QUEUE_BACKEND", " SQLite ")
    monkeypatch.setenv("SLOWQUERY_WORKER_ID", "worker-7")
    monkeypatch.setenv("SLOWQUERY_WORKER_COUNT", "3")
    monkeypatch.setenv("SLOWQUERY_WORKER_REQUEUE_AFTER_SECONDS", "15")
    monkeypatch.setenv("SLOWQUERY_WORKER_STALE_IN_PROGRESS_SECONDS", "600")

    settings = Settings.from_env()

    assert settings.db_path == tmp_path / "env.db"
    assert settings.queue_backend == "sqlite"
    assert settings.worker.worker_id == "worker-7"
    assert settings.worker.worker_count == 3
    assert settings.worker.requeue_after_seconds == 15
    assert settings.worker.stale_in_progress_seconds == 600


def test_explicit_db_path_wins_over_environment(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path: Path,
) -> None:
    monkeypatch.setenv("SLOWQUERY_DB_PATH", str(tmp_path / "env.db"))

    settings = Settings.from_env(db_path=tmp_path / "cli.db")

    assert settings.db_path == tmp_path / "cli.db"


def test_validate_rejects_unknown_queue_backend() -> None:
    with pytest.raises(ValueError, match="SLOWQUERY_QUEUE_BACKEND must be one of memory, sqlite"):
        Settings(queue_backend="redis").validate()


@pytest.mark.parametrize(
    ("worker", "env_name"),
    [
        (WorkerSettings(worker_count=0), "SLOWQUERY_WORKER_COUNT"),
        (WorkerSettings(poll_interval_seconds=0), "SLOWQUERY_WORKER_POLL_INTERVAL_SECONDS"),
        (WorkerSettings(error_backoff_seconds=-1), "SLOWQUERY_WORKER_ERROR_BACKOFF_SECONDS"),
        (WorkerSettings(requeue_after_seconds=-1), "SLOWQUERY_WORKER_REQUEUE_AFTER_SECONDS"),
        (
            WorkerSettings(stale_in_progress_seconds=-5),
            "SLOWQUERY_WORKER_STALE_IN_PROGRESS_SECONDS",
        ),
        (
            WorkerSettings(shutdown_timeout_seconds=0),
            "SLOWQUERY_WORKER_SHUTDOWN_TIMEOUT_SECONDS",
        ),
    ],
)
def test_validate_rejects_out_of_range_worker_settings(
    worker: WorkerSettings,
    env_name: str,
) -> None:
    with pytest.raises(ValueError, match=env_name):
        Settings(worker=worker).validate()


def test_validate_rejects_non_positive_busy_timeout() -> None:
    with pytest.raises(ValueError, match="SQLITE_BUSY_TIMEOUT_MS"):
        Settings(sqlite_busy_timeout_ms=0).validate()
