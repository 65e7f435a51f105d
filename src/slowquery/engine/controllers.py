"""Controllers for job engine CLI commands."""

from __future__ import annotations

import json
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from slowquery.apps import broadside
from slowquery.config import Settings
from slowquery.engine.manager import JobManager
from slowquery.engine.models import JobStatus, PollResult, PollStatus
from slowquery.engine.repository import JobRepository


@dataclass(slots=True)
class DemoCommand:
    """CLI input for the end-to-end broadside demo."""

    db_path: Path | None
    user_id: int
    from_email: str
    poll_interval_seconds: float
    timeout_seconds: float


@dataclass(slots=True)
class ListJobsCommand:
    """CLI input for job listing."""

    db_path: Path | None
    status: str | None
    application: str | None
    limit: int


@dataclass(slots=True)
class InspectJobCommand:
    """CLI input for job inspection."""

    db_path: Path | None
    request_id: str


class JobsCliController:
    """Application controller for job commands."""

    def run_demo(self, command: DemoCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        manager = JobManager.from_settings(settings)
        lines: list[str] = []
        with manager:
            broadside.register(manager)
            request_id = manager.submit(
                broadside.APP_NAME,
                broadside.BOUNCE_REPORT_OP,
                context={"userId": command.user_id},
                input_data={"fromEmail": command.from_email},
            )
            lines.append(f"Slow query submitted. Request ID: {request_id}")
            manager.start(workers=settings.worker.worker_count)

            deadline = time.monotonic() + command.timeout_seconds
            while True:
                outcome = manager.poll(request_id)
                if outcome.status is PollStatus.SUCCESS:
                    lines.append("Report generated successfully:")
                    lines.append(f"Result: {json.dumps(outcome.result, ensure_ascii=False)}")
                    break
                if outcome.status is PollStatus.FAILED:
                    lines.append("Report generation failed:")
                    lines.extend(f"  {message.text}" for message in outcome.messages)
                    break
                if time.monotonic() >= deadline:
                    lines.append(
                        f"Timed out after {command.timeout_seconds:.1f}s; job still pending.",
                    )
                    break
                lines.append(
                    "Report generation in progress. "
                    f"Trying again in {command.poll_interval_seconds:g} seconds...",
                )
                time.sleep(command.poll_interval_seconds)
        return lines

    def list_jobs(self, command: ListJobsCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            jobs = repository.list_jobs(
                status=status_filter,
                application=command.application,
                limit=command.limit,
            )

        lines = [f"Jobs: {len(jobs)}"]
        for job in jobs:
            lines.append(
                f"  {job.request_id} app={job.application} op={job.operation} "
                f"status={job.status.value} created_at={job.created_at.isoformat()}",
            )
        return lines

    def inspect_job(self, command: InspectJobCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            details = repository.get_job_details(request_id=command.request_id)
        if details is None:
            return [f"Job not found: {command.request_id}"]

        job = details.job
        lines = [
            f"Job: {job.request_id}",
            f"Application: {job.application}",
            f"Operation: {job.operation}",
            f"Status: {job.status.value}",
            f"Worker: {job.worker_id or '-'}",
            f"Context: {json.dumps(job.context, ensure_ascii=False)}",
            f"Input: {json.dumps(job.input_data, ensure_ascii=False)}",
        ]
        if job.status is JobStatus.SUCCESS:
            lines.append(f"Result: {json.dumps(job.result, ensure_ascii=False)}")
        for message in job.messages:
            lines.append(f"Message: {message.text}")
        for name, location in sorted(job.output_files.items()):
            lines.append(f"Output file: {name} -> {location}")
        lines.append(f"Events: {len(details.events)}")
        for event in details.events:
            status_from = event.status_from.value if event.status_from else "-"
            status_to = event.status_to.value if event.status_to else "-"
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} {status_from}->{status_to}",
            )
        return lines

    def poll_job(self, command: InspectJobCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            job = repository.get_job(request_id=command.request_id)
        if job is None:
            return [f"Job not found: {command.request_id}"]

        outcome = PollResult.from_job(job)
        lines = [f"Status: {outcome.status.value}"]
        if outcome.status is PollStatus.SUCCESS:
            lines.append(f"Result: {json.dumps(outcome.result, ensure_ascii=False)}")
        for message in outcome.messages:
            lines.append(f"Message: {message.text}")
        return lines


def _parse_status(value: str | None) -> JobStatus | None:
    if value is None:
        return None
    return JobStatus(value.strip().lower())


@contextmanager
def _repository(settings: Settings) -> Iterator[JobRepository]:
    repository = JobRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
