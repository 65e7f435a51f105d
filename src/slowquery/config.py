"""Runtime configuration for the job engine."""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path

QUEUE_BACKENDS = ("memory", "sqlite")


@dataclass(slots=True)
class WorkerSettings:
    """Worker loop settings."""

    worker_id: str = ""
    worker_count: int = 1
    poll_interval_seconds: float = 1.0
    error_backoff_seconds: float = 5.0
    requeue_after_seconds: int = 60
    stale_in_progress_seconds: int = 0
    shutdown_timeout_seconds: float = 30.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    db_path: Path = Path(".slowquery.db")
    sqlite_busy_timeout_ms: int = 5_000
    queue_backend: str = "memory"
    worker: WorkerSettings = field(default_factory=WorkerSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("SLOWQUERY_DB_PATH", ".slowquery.db")),
            sqlite_busy_timeout_ms=int(os.getenv("SLOWQUERY_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            queue_backend=os.getenv("SLOWQUERY_QUEUE_BACKEND", "memory").strip().lower(),
            worker=WorkerSettings(
                worker_id=os.getenv("SLOWQUERY_WORKER_ID", "") or _default_worker_id(),
                worker_count=int(os.getenv("SLOWQUERY_WORKER_COUNT", "1")),
                poll_interval_seconds=float(
                    os.getenv("SLOWQUERY_WORKER_POLL_INTERVAL_SECONDS", "1.0"),
                ),
                error_backoff_seconds=float(
                    os.getenv("SLOWQUERY_WORKER_ERROR_BACKOFF_SECONDS", "5.0"),
                ),
                requeue_after_seconds=int(
                    os.getenv("SLOWQUERY_WORKER_REQUEUE_AFTER_SECONDS", "60"),
                ),
                stale_in_progress_seconds=int(
                    os.getenv("SLOWQUERY_WORKER_STALE_IN_PROGRESS_SECONDS", "0"),
                ),
                shutdown_timeout_seconds=float(
                    os.getenv("SLOWQUERY_WORKER_SHUTDOWN_TIMEOUT_SECONDS", "30.0"),
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for out-of-range values."""

        if self.queue_backend not in QUEUE_BACKENDS:
            raise ValueError(
                f"SLOWQUERY_QUEUE_BACKEND must be one of {', '.join(QUEUE_BACKENDS)}, "
                f"got {self.queue_backend!r}.",
            )
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("SLOWQUERY_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.worker.worker_count <= 0:
            raise ValueError("SLOWQUERY_WORKER_COUNT must be > 0.")
        if self.worker.poll_interval_seconds <= 0:
            raise ValueError("SLOWQUERY_WORKER_POLL_INTERVAL_SECONDS must be > 0.")
        if self.worker.error_backoff_seconds < 0:
            raise ValueError("SLOWQUERY_WORKER_ERROR_BACKOFF_SECONDS must be >= 0.")
        if self.worker.requeue_after_seconds < 0:
            raise ValueError("SLOWQUERY_WORKER_REQUEUE_AFTER_SECONDS must be >= 0.")
        if self.worker.stale_in_progress_seconds < 0:
            raise ValueError("SLOWQUERY_WORKER_STALE_IN_PROGRESS_SECONDS must be >= 0.")
        if self.worker.shutdown_timeout_seconds <= 0:
            raise ValueError("SLOWQUERY_WORKER_SHUTDOWN_TIMEOUT_SECONDS must be > 0.")


def _default_worker_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"
