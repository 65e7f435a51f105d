"""Work signal queues: advisory "job is ready" hints between submit and workers.

The job store stays authoritative. A signal may be lost or delivered more
than once; the worker's atomic claim turns duplicates into no-ops and the
manager's recovery sweep re-signals queued jobs whose signal went missing.
"""

from __future__ import annotations

import queue
import time
from pathlib import Path
from typing import Protocol

from sqlalchemy import delete as sa_delete
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, col, select

from slowquery.errors import QueueUnavailableError
from slowquery.storage.alembic_runner import upgrade_head
from slowquery.storage.common import build_sqlite_engine, to_db_datetime, utc_now
from slowquery.storage.sqlmodel_models import WorkSignal


class WorkQueue(Protocol):
    """Push/pop of request ids with at-least-once delivery."""

    def enqueue(self, request_id: str) -> None:
        """Publish one work signal."""

    def dequeue(self, timeout: float | None = None) -> str | None:
        """Pop one signal, waiting up to ``timeout`` seconds; None when empty."""


class InMemoryWorkQueue:
    """Process-local queue for embedded worker threads."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: queue.Queue[str] = queue.Queue(maxsize=maxsize)

    def enqueue(self, request_id: str) -> None:
        try:
            self._queue.put_nowait(request_id)
        except queue.Full as error:
            raise QueueUnavailableError(f"work queue is full: request_id={request_id}") from error

    def dequeue(self, timeout: float | None = None) -> str | None:
        try:
            if timeout is None or timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self._queue.qsize()


class SqliteWorkQueue:
    """Queue table shared by worker processes that use the same database file."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = 5_000,
        poll_interval_seconds: float = 0.2,
    ) -> None:
        self.db_path = db_path
        self.poll_interval_seconds = poll_interval_seconds
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    def close(self) -> None:
        self.engine.dispose()

    def enqueue(self, request_id: str) -> None:
        try:
            with Session(self.engine) as session:
                session.add(
                    WorkSignal(request_id=request_id, enqueued_at=to_db_datetime(utc_now())),
                )
                session.commit()
        except OperationalError as error:
            raise QueueUnavailableError(f"work queue unavailable: {error}") from error

    def dequeue(self, timeout: float | None = None) -> str | None:
        deadline = time.monotonic() + (timeout or 0.0)
        while True:
            request_id = self._pop()
            if request_id is not None:
                return request_id
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(self.poll_interval_seconds, remaining))

    def _pop(self) -> str | None:
        try:
            while True:
                with Session(self.engine) as session:
                    signal = session.exec(
                        select(WorkSignal).order_by(col(WorkSignal.id).asc()).limit(1),
                    ).one_or_none()
                    if signal is None:
                        return None
                    request_id = signal.request_id
                    result = session.exec(
                        sa_delete(WorkSignal).where(col(WorkSignal.id) == signal.id),
                    )
                    if result.rowcount != 1:
                        # Another consumer popped it first.
                        session.rollback()
                        continue
                    session.commit()
                    return request_id
        except OperationalError as error:
            raise QueueUnavailableError(f"work queue unavailable: {error}") from error

    def __len__(self) -> int:
        with Session(self.engine) as session:
            return len(session.exec(select(WorkSignal.id)).all())
