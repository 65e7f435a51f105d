"""Shared test fixtures."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from slowquery.engine.contracts import InitBlock, ProcessorResult
from slowquery.engine.manager import JobManager
from slowquery.engine.repository import JobRepository
from slowquery.engine.work_queue import InMemoryWorkQueue


@dataclass
class RecordingInitBlock:
    app: str
    closed: bool = False

    def close(self) -> None:
        self.closed = True


@dataclass
class CountingInitializer:
    """Initializer that counts calls and can be made to fail."""

    fail_times: int = 0
    calls: int = 0
    blocks: list[RecordingInitBlock] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def init(self, app: str) -> RecordingInitBlock:
        with self._lock:
            self.calls += 1
            if self.calls <= self.fail_times:
                raise ConnectionError(f"backend for {app} is down")
        block = RecordingInitBlock(app=app)
        self.blocks.append(block)
        return block


class EchoProcessor:
    """Echoes the context and input; raises when the input asks it to."""

    def execute(self, init_block: InitBlock, context, input_data) -> ProcessorResult:  # noqa: ANN001
        if isinstance(input_data, dict) and input_data.get("explode"):
            raise ValueError("explode requested")
        return ProcessorResult.success({"context": context, "input": input_data})


@pytest.fixture()
def repository(tmp_path: Path) -> Iterator[JobRepository]:
    repo = JobRepository(tmp_path / "jobs.db")
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


@pytest.fixture()
def work_queue() -> InMemoryWorkQueue:
    return InMemoryWorkQueue()


@pytest.fixture()
def manager(repository: JobRepository, work_queue: InMemoryWorkQueue) -> Iterator[JobManager]:
    job_manager = JobManager(
        repository=repository,
        work_queue=work_queue,
        worker_id="test-worker",
        poll_interval_seconds=0.05,
        error_backoff_seconds=0.05,
        requeue_after_seconds=0,
    )
    try:
        yield job_manager
    finally:
        job_manager.shutdown(timeout=5)
