"""Job manager: submission, polling and the worker loop."""

from __future__ import annotations

import json
import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from slowquery.config import Settings
from slowquery.engine.contracts import Initializer, Processor, ProcessorResult
from slowquery.engine.initblocks import InitBlockCache
from slowquery.engine.models import (
    JobCreate,
    JobMessage,
    JobOutcome,
    JobStatus,
    JobView,
    JsonDocument,
    PollResult,
)
from slowquery.engine.registry import InitializerRegistry, ProcessorRegistry
from slowquery.engine.repository import JobRepository
from slowquery.engine.work_queue import InMemoryWorkQueue, SqliteWorkQueue, WorkQueue
from slowquery.errors import (
    InitializationError,
    InvalidTransitionError,
    NotFoundError,
    ProcessorError,
    QueueUnavailableError,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkerRunSummary:
    """Aggregate worker counters for CLI reporting."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    discarded: int = 0
    idle_polls: int = 0
    errors: int = 0

    def add(self, other: WorkerRunSummary) -> None:
        self.processed += other.processed
        self.succeeded += other.succeeded
        self.failed += other.failed
        self.discarded += other.discarded
        self.idle_polls += other.idle_polls
        self.errors += other.errors


class JobManager:
    """Owns the registries, the init block cache and the worker loop.

    Every manager is independent: there is no module-level state, so several
    engines can live in one process (one per test, for instance).
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: JobRepository,
        work_queue: WorkQueue,
        worker_id: str = "worker",
        poll_interval_seconds: float = 1.0,
        error_backoff_seconds: float = 5.0,
        requeue_after_seconds: int = 60,
        stale_in_progress_seconds: int = 0,
        shutdown_timeout_seconds: float | None = None,
    ) -> None:
        self.repository = repository
        self.work_queue = work_queue
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self.error_backoff_seconds = error_backoff_seconds
        self.requeue_after_seconds = requeue_after_seconds
        self.stale_in_progress_seconds = stale_in_progress_seconds
        self.shutdown_timeout_seconds = shutdown_timeout_seconds
        self.initializers = InitializerRegistry()
        self.processors = ProcessorRegistry()
        self.init_blocks = InitBlockCache(self.initializers)
        self._stop = threading.Event()
        self._threads: list[threading.Thread] = []
        self._owned: list[Callable[[], None]] = []
        self._last_sweep = time.monotonic()
        self._sweep_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> JobManager:
        """Build a manager with its own repository and queue from settings."""

        settings.validate()
        repository = JobRepository(
            settings.db_path,
            sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
        )
        repository.init_schema()
        work_queue: WorkQueue
        if settings.queue_backend == "sqlite":
            sqlite_queue = SqliteWorkQueue(
                settings.db_path,
                sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
            )
            work_queue = sqlite_queue
        else:
            sqlite_queue = None
            work_queue = InMemoryWorkQueue()

        manager = cls(
            repository=repository,
            work_queue=work_queue,
            worker_id=settings.worker.worker_id or "worker",
            poll_interval_seconds=settings.worker.poll_interval_seconds,
            error_backoff_seconds=settings.worker.error_backoff_seconds,
            requeue_after_seconds=settings.worker.requeue_after_seconds,
            stale_in_progress_seconds=settings.worker.stale_in_progress_seconds,
            shutdown_timeout_seconds=settings.worker.shutdown_timeout_seconds,
        )
        if sqlite_queue is not None:
            manager._owned.append(sqlite_queue.close)
        manager._owned.append(repository.close)
        return manager

    # -- registration ----------------------------------------------------------

    def register_initializer(self, app: str, initializer: Initializer) -> None:
        self.initializers.register(app, initializer)

    def register_processor(self, app: str, op: str, processor: Processor) -> None:
        self.processors.register(app, op, processor)

    # -- client API ------------------------------------------------------------

    def submit(
        self,
        app: str,
        op: str,
        context: JsonDocument = None,
        input_data: JsonDocument = None,
    ) -> str:
        """Persist a job and signal the workers; returns the request id at once."""

        if not self.processors.has(app, op):
            raise NotFoundError(f"processor not found: app={app}, op={op}")

        job = self.repository.create_job(
            JobCreate(application=app, operation=op, context=context, input_data=input_data),
        )
        try:
            self.work_queue.enqueue(job.request_id)
        except QueueUnavailableError:
            # The job is durable; the recovery sweep re-signals it.
            logger.warning("Work signal not delivered: request_id=%s", job.request_id)
        logger.info("Job submitted: request_id=%s app=%s op=%s", job.request_id, app, op)
        return job.request_id

    def poll(self, request_id: str) -> PollResult:
        """Translate stored job state into try-later, success or failure."""

        job = self.repository.get_job(request_id=request_id)
        if job is None:
            raise NotFoundError(f"request not found: request_id={request_id}")
        return PollResult.from_job(job)

    def wait(
        self,
        request_id: str,
        *,
        timeout: float,
        interval: float = 0.5,
    ) -> PollResult:
        """Poll until the job is done or ``timeout`` elapses."""

        deadline = time.monotonic() + timeout
        while True:
            outcome = self.poll(request_id)
            if outcome.done or time.monotonic() >= deadline:
                return outcome
            time.sleep(min(interval, max(0.0, deadline - time.monotonic())))

    # -- worker loop -----------------------------------------------------------

    def run_once(self, *, timeout: float | None = None) -> WorkerRunSummary:
        """Handle at most one work signal."""

        summary = WorkerRunSummary()
        if self._stop.is_set():
            summary.idle_polls = 1
            return summary

        request_id = self.work_queue.dequeue(
            timeout=self.poll_interval_seconds if timeout is None else timeout,
        )
        if request_id is None:
            summary.idle_polls = 1
            self._recover_lost_work()
            return summary

        job = self.repository.claim_job(request_id=request_id, worker_id=self.worker_id)
        if job is None:
            logger.debug("Discarding signal for unclaimable job: request_id=%s", request_id)
            summary.discarded = 1
            return summary

        summary.processed = 1
        outcome = self._execute(job)
        try:
            outcome = self._record_outcome(job, outcome)
        except InvalidTransitionError:
            logger.exception("Job changed state while executing: request_id=%s", job.request_id)
            summary.errors = 1
            return summary

        if outcome.status is JobStatus.SUCCESS:
            summary.succeeded = 1
        else:
            summary.failed = 1
        logger.info(
            "Job finished: request_id=%s app=%s op=%s status=%s",
            job.request_id,
            job.application,
            job.operation,
            outcome.status.value,
        )
        return summary

    def run(
        self,
        *,
        stop_event: threading.Event | None = None,
        max_jobs: int | None = None,
        max_idle_polls: int | None = None,
    ) -> WorkerRunSummary:
        """Run the worker loop until stopped.

        Args:
            stop_event: Optional external stop flag, checked between signals.
            max_jobs: Stop after executing this many jobs (None = unlimited).
            max_idle_polls: Stop after this many consecutive empty dequeues
                (None = keep waiting for work).
        """

        aggregate = WorkerRunSummary()
        consecutive_idle = 0
        with self._signal_handlers():
            while not self._stopping(stop_event):
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    break
                try:
                    summary = self.run_once()
                except Exception:  # noqa: BLE001
                    logger.exception(
                        "Worker loop error; backing off %.1fs",
                        self.error_backoff_seconds,
                    )
                    aggregate.errors += 1
                    self._stop.wait(timeout=self.error_backoff_seconds)
                    continue

                aggregate.add(summary)
                if summary.idle_polls:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        break
                else:
                    consecutive_idle = 0
        return aggregate

    def start(self, workers: int = 1) -> None:
        """Run ``workers`` loops in background threads."""

        self._stop.clear()
        for index in range(workers):
            thread = threading.Thread(
                target=self.run,
                daemon=True,
                name=f"slowquery-worker-{index}",
            )
            thread.start()
            self._threads.append(thread)
        logger.info("Started %d worker thread(s)", workers)

    def stop(self) -> None:
        """Stop taking new signals; in-flight jobs run to completion."""

        self._stop.set()

    def shutdown(self, timeout: float | None = None) -> dict[str, Exception]:
        """Stop workers, wait for in-flight jobs, then release init blocks.

        ``timeout`` bounds each thread join and defaults to
        ``shutdown_timeout_seconds``. While a worker is still running, init
        blocks and owned resources stay open; call ``shutdown`` again later.
        """

        if timeout is None:
            timeout = self.shutdown_timeout_seconds
        self.stop()
        for thread in self._threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("Worker thread did not stop in time: %s", thread.name)
        self._threads = [thread for thread in self._threads if thread.is_alive()]
        if self._threads:
            logger.error(
                "Shutdown incomplete: %d worker thread(s) still running; init blocks left open",
                len(self._threads),
            )
            return {}

        failures = self.init_blocks.close_all()
        for close in self._owned:
            close()
        self._owned.clear()
        logger.info("Job manager shut down (close failures=%d)", len(failures))
        return failures

    def __enter__(self) -> JobManager:
        return self

    def __exit__(self, *_: object) -> None:
        self.shutdown()

    # -- internals -------------------------------------------------------------

    def _execute(self, job: JobView) -> JobOutcome:
        try:
            init_block = self.init_blocks.resolve(job.application)
        except InitializationError as error:
            return _failure(str(error), code="initialization_failed")

        try:
            processor = self.processors.lookup(job.application, job.operation)
        except NotFoundError as error:
            return _failure(str(error), code="processor_not_found")

        try:
            reported = processor.execute(init_block, job.context, job.input_data)
        except Exception as error:  # noqa: BLE001
            logger.exception(
                "Processor raised: request_id=%s app=%s op=%s",
                job.request_id,
                job.application,
                job.operation,
            )
            return _failure(
                f"processor error: {type(error).__name__}: {error}",
                code="processor_error",
            )

        try:
            return _outcome_from_result(reported)
        except ProcessorError as error:
            logger.error(  # noqa: TRY400
                "Malformed processor result: request_id=%s error=%s",
                job.request_id,
                error,
            )
            return _failure(str(error), code="processor_malformed_result")

    def _record_outcome(self, job: JobView, outcome: JobOutcome) -> JobOutcome:
        """Persist ``outcome``, retrying store errors until it sticks or a stop is requested.

        A claimed job must not stay in progress: when the outcome still cannot
        be written at stop time, one last attempt records a failure instead.
        """

        while True:
            try:
                self.repository.complete_job(request_id=job.request_id, outcome=outcome)
                return outcome
            except InvalidTransitionError:
                raise
            except ValueError:
                logger.exception("Outcome rejected by the store: request_id=%s", job.request_id)
                break
            except Exception:  # noqa: BLE001
                logger.exception(
                    "Could not record outcome: request_id=%s; retrying in %.1fs",
                    job.request_id,
                    self.error_backoff_seconds,
                )
            if self._stop.is_set():
                break
            self._stop.wait(timeout=self.error_backoff_seconds)

        fallback = _failure(
            f"job outcome could not be recorded: status={outcome.status.value}",
            code="completion_failed",
        )
        self.repository.complete_job(request_id=job.request_id, outcome=fallback)
        return fallback

    def _recover_lost_work(self) -> None:
        if self.requeue_after_seconds <= 0 and self.stale_in_progress_seconds <= 0:
            return
        interval = min(
            value
            for value in (self.requeue_after_seconds, self.stale_in_progress_seconds)
            if value > 0
        )
        with self._sweep_lock:
            if time.monotonic() - self._last_sweep < interval:
                return
            self._last_sweep = time.monotonic()

        if self.stale_in_progress_seconds > 0:
            abandoned = self.repository.fail_abandoned_jobs(
                stale_after=timedelta(seconds=self.stale_in_progress_seconds),
            )
            if abandoned:
                logger.warning("Failed %d abandoned job(s)", len(abandoned))
        if self.requeue_after_seconds > 0:
            self.resignal_queued(older_than=timedelta(seconds=self.requeue_after_seconds))

    def resignal_queued(self, *, older_than: timedelta) -> int:
        """Re-publish signals for queued jobs that nobody claimed."""

        request_ids = self.repository.list_queued_ids(older_than=older_than)
        for request_id in request_ids:
            self.work_queue.enqueue(request_id)
        if request_ids:
            logger.warning("Re-signalled %d queued job(s)", len(request_ids))
        return len(request_ids)

    def _stopping(self, stop_event: threading.Event | None) -> bool:
        return self._stop.is_set() or (stop_event is not None and stop_event.is_set())

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        # Signal handlers can only be installed in the main thread.
        if threading.current_thread() is not threading.main_thread():
            yield
            return

        original_sigint = signal.getsignal(signal.SIGINT)
        original_sigterm = signal.getsignal(signal.SIGTERM)

        def _handler(signum: int, _: object | None) -> None:
            try:
                name = signal.Signals(signum).name
            except ValueError:
                name = str(signum)
            logger.info("Stop requested by %s", name)
            self._stop.set()

        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
        try:
            yield
        finally:
            if original_sigint is not None:
                signal.signal(signal.SIGINT, original_sigint)
            if original_sigterm is not None:
                signal.signal(signal.SIGTERM, original_sigterm)


def _failure(text: str, *, code: str) -> JobOutcome:
    return JobOutcome(status=JobStatus.FAILED, messages=[JobMessage(text=text, code=code)])


def _outcome_from_result(reported: Any) -> JobOutcome:
    if not isinstance(reported, ProcessorResult):
        raise ProcessorError(
            f"processor returned {type(reported).__name__}, expected ProcessorResult",
        )
    try:
        status = JobStatus(reported.status)
    except ValueError as error:
        raise ProcessorError(f"processor reported unknown status: {reported.status!r}") from error
    if not status.is_terminal:
        raise ProcessorError(f"processor reported non-terminal status: {status.value}")

    output_files = reported.output_files or {}
    if not isinstance(output_files, dict) or not all(
        isinstance(name, str) and isinstance(location, str)
        for name, location in output_files.items()
    ):
        raise ProcessorError("output_files must map file names to location strings")

    messages = [
        message if isinstance(message, JobMessage) else JobMessage(text=str(message))
        for message in reported.messages or []
    ]
    try:
        json.dumps([message.to_dict() for message in messages])
    except (TypeError, ValueError) as error:
        raise ProcessorError(f"error messages are not JSON-serializable: {error}") from error

    if status is JobStatus.SUCCESS:
        if messages:
            raise ProcessorError("processor reported success together with error messages")
        try:
            json.dumps(reported.result)
        except (TypeError, ValueError) as error:
            raise ProcessorError(f"result document is not JSON-serializable: {error}") from error
        return JobOutcome(
            status=JobStatus.SUCCESS,
            result=reported.result,
            output_files=dict(output_files),
        )

    if reported.result is not None:
        raise ProcessorError("processor reported failure together with a result document")
    if not messages:
        messages = [JobMessage(text="processor reported failure without messages")]
    return JobOutcome(status=JobStatus.FAILED, messages=messages, output_files=dict(output_files))
