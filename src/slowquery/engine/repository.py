"""Persistent job store backed by SQLModel + SQLite."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from slowquery.engine.models import (
    JobCreate,
    JobDetails,
    JobEventView,
    JobMessage,
    JobOutcome,
    JobStatus,
    JobView,
)
from slowquery.errors import InvalidTransitionError
from slowquery.storage.alembic_runner import upgrade_head
from slowquery.storage.common import (
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from slowquery.storage.sqlmodel_models import JobEvent, JobRequest

logger = logging.getLogger(__name__)

_MAX_ID_ATTEMPTS = 5


class JobRepository:
    """Job persistence facade; the single source of truth for job state."""

    def __init__(self, db_path: Path, *, sqlite_busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create_job(self, payload: JobCreate) -> JobView:
        """Insert a queued job under a fresh request id."""

        for _ in range(_MAX_ID_ATTEMPTS):
            request_id = payload.request_id or str(uuid4())
            try:
                return self._insert_job(request_id=request_id, payload=payload)
            except IntegrityError:
                if payload.request_id is not None:
                    raise
                logger.warning("Request id collision, regenerating: %s", request_id)
        raise RuntimeError(f"Could not allocate a unique request id in {_MAX_ID_ATTEMPTS} attempts")

    def _insert_job(self, *, request_id: str, payload: JobCreate) -> JobView:
        now = utc_now()
        with Session(self.engine) as session:
            row = JobRequest(
                request_id=request_id,
                application=payload.application,
                operation=payload.operation,
                status=JobStatus.QUEUED.value,
                context_json=_dump(payload.context),
                input_json=_dump(payload.input_data),
                created_at=to_db_datetime(now),
                updated_at=to_db_datetime(now),
            )
            session.add(row)
            # Flush the job first so the event's foreign key sees it.
            session.flush()
            self._add_event(
                session=session,
                request_id=request_id,
                event_type="submitted",
                status_from=None,
                status_to=JobStatus.QUEUED,
                details={"application": payload.application, "operation": payload.operation},
            )
            session.commit()
            session.refresh(row)
            return _to_job_view(row)

    def claim_job(self, *, request_id: str, worker_id: str) -> JobView | None:
        """Atomically move a queued job to in-progress; None if not claimable."""

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(JobRequest)
                .where(
                    col(JobRequest.request_id) == request_id,
                    col(JobRequest.status) == JobStatus.QUEUED.value,
                )
                .values(
                    status=JobStatus.IN_PROGRESS.value,
                    worker_id=worker_id,
                    started_at=now,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return None

            claimed = session.exec(
                select(JobRequest).where(JobRequest.request_id == request_id),
            ).one()
            self._add_event(
                session=session,
                request_id=request_id,
                event_type="claimed",
                status_from=JobStatus.QUEUED,
                status_to=JobStatus.IN_PROGRESS,
                details={"worker_id": worker_id},
            )
            session.commit()
            return _to_job_view(claimed)

    def complete_job(self, *, request_id: str, outcome: JobOutcome) -> JobView:
        """Record the terminal outcome of an in-progress job."""

        if not outcome.status.is_terminal:
            raise ValueError(f"Unsupported completion status: {outcome.status.value}")
        if outcome.status is JobStatus.SUCCESS and outcome.messages:
            raise ValueError("A successful job cannot carry error messages.")
        if outcome.status is JobStatus.FAILED and outcome.result is not None:
            raise ValueError("A failed job cannot carry a result document.")

        now = to_db_datetime(utc_now())
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(JobRequest)
                .where(
                    col(JobRequest.request_id) == request_id,
                    col(JobRequest.status) == JobStatus.IN_PROGRESS.value,
                )
                .values(
                    status=outcome.status.value,
                    result_json=(
                        _dump(outcome.result) if outcome.status is JobStatus.SUCCESS else None
                    ),
                    messages_json=(
                        json.dumps([message.to_dict() for message in outcome.messages])
                        if outcome.status is JobStatus.FAILED
                        else None
                    ),
                    output_files_json=_dump(outcome.output_files) if outcome.output_files else None,
                    finished_at=now,
                    updated_at=now,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                current = session.exec(
                    select(JobRequest.status).where(JobRequest.request_id == request_id),
                ).one_or_none()
                logger.error(
                    "Invalid completion: request_id=%s status=%s target=%s",
                    request_id,
                    current,
                    outcome.status.value,
                )
                raise InvalidTransitionError(
                    request_id,
                    expected=JobStatus.IN_PROGRESS.value,
                    actual=current,
                )

            self._add_event(
                session=session,
                request_id=request_id,
                event_type="succeeded" if outcome.status is JobStatus.SUCCESS else "failed",
                status_from=JobStatus.IN_PROGRESS,
                status_to=outcome.status,
                details=(
                    {"messages": [message.text for message in outcome.messages]}
                    if outcome.messages
                    else {}
                ),
            )
            session.commit()
            row = session.exec(
                select(JobRequest).where(JobRequest.request_id == request_id),
            ).one()
            return _to_job_view(row)

    def get_job(self, *, request_id: str) -> JobView | None:
        """Read-only lookup."""

        with Session(self.engine) as session:
            row = session.exec(
                select(JobRequest).where(JobRequest.request_id == request_id),
            ).one_or_none()
        return _to_job_view(row) if row is not None else None

    def list_jobs(
        self,
        *,
        status: JobStatus | None = None,
        application: str | None = None,
        limit: int = 50,
    ) -> list[JobView]:
        """List recent jobs, optionally filtered by status and application."""

        with Session(self.engine) as session:
            statement = select(JobRequest).order_by(col(JobRequest.created_at).desc()).limit(limit)
            if status is not None:
                statement = statement.where(JobRequest.status == status.value)
            if application is not None:
                statement = statement.where(JobRequest.application == application)
            rows = session.exec(statement).all()
        return [_to_job_view(row) for row in rows]

    def get_job_details(self, *, request_id: str) -> JobDetails | None:
        """Return job details with event stream."""

        with Session(self.engine) as session:
            job = session.exec(
                select(JobRequest).where(JobRequest.request_id == request_id),
            ).one_or_none()
            if job is None:
                return None
            event_rows = session.exec(
                select(JobEvent)
                .where(JobEvent.request_id == request_id)
                .order_by(col(JobEvent.created_at).asc(), col(JobEvent.id).asc()),
            ).all()

        events: list[JobEventView] = []
        for row in event_rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                JobEventView(
                    event_id=row.id or 0,
                    request_id=row.request_id,
                    event_type=row.event_type,
                    status_from=JobStatus(row.status_from) if row.status_from else None,
                    status_to=JobStatus(row.status_to) if row.status_to else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return JobDetails(job=_to_job_view(job), events=events)

    def list_queued_ids(self, *, older_than: timedelta, limit: int = 100) -> list[str]:
        """Queued jobs not touched for ``older_than``; candidates for re-signalling."""

        cutoff = to_db_datetime(utc_now() - older_than)
        with Session(self.engine) as session:
            rows = session.exec(
                select(JobRequest.request_id)
                .where(
                    JobRequest.status == JobStatus.QUEUED.value,
                    col(JobRequest.updated_at) <= cutoff,
                )
                .order_by(col(JobRequest.created_at).asc())
                .limit(limit),
            ).all()
        return list(rows)

    def fail_abandoned_jobs(self, *, stale_after: timedelta) -> list[str]:
        """Fail in-progress jobs whose worker stopped updating them."""

        cutoff = to_db_datetime(utc_now() - stale_after)
        with Session(self.engine) as session:
            candidates = session.exec(
                select(JobRequest.request_id).where(
                    JobRequest.status == JobStatus.IN_PROGRESS.value,
                    col(JobRequest.updated_at) <= cutoff,
                ),
            ).all()

        failed: list[str] = []
        message = JobMessage(
            text=f"job abandoned: no completion within {int(stale_after.total_seconds())}s",
            code="abandoned",
        )
        for request_id in candidates:
            now = to_db_datetime(utc_now())
            with Session(self.engine) as session:
                result = session.exec(
                    sa_update(JobRequest)
                    .where(
                        col(JobRequest.request_id) == request_id,
                        col(JobRequest.status) == JobStatus.IN_PROGRESS.value,
                        col(JobRequest.updated_at) <= cutoff,
                    )
                    .values(
                        status=JobStatus.FAILED.value,
                        messages_json=json.dumps([message.to_dict()]),
                        finished_at=now,
                        updated_at=now,
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue
                self._add_event(
                    session=session,
                    request_id=request_id,
                    event_type="abandoned",
                    status_from=JobStatus.IN_PROGRESS,
                    status_to=JobStatus.FAILED,
                    details={"stale_after_seconds": int(stale_after.total_seconds())},
                )
                session.commit()
                failed.append(request_id)
        return failed

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        request_id: str,
        event_type: str,
        status_from: JobStatus | None,
        status_to: JobStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            JobEvent(
                request_id=request_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=to_db_datetime(utc_now()),
            ),
        )


def _dump(value: object) -> str:
    return json.dumps(value, ensure_ascii=False)


def _load(value: str | None) -> object:
    if value is None:
        return None
    return json.loads(value)


def _to_job_view(row: JobRequest) -> JobView:
    messages_raw = _load(row.messages_json) or []
    output_files = _load(row.output_files_json) or {}
    return JobView(
        request_id=row.request_id,
        application=row.application,
        operation=row.operation,
        status=JobStatus(row.status),
        context=_load(row.context_json),
        input_data=_load(row.input_json),
        result=_load(row.result_json),
        messages=[JobMessage.from_dict(item) for item in messages_raw],
        output_files={str(name): str(location) for name, location in output_files.items()},
        worker_id=row.worker_id,
        started_at=_optional_aware(row.started_at),
        finished_at=_optional_aware(row.finished_at),
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )


def _optional_aware(value: datetime | None) -> datetime | None:
    return to_utc_aware_datetime(value) if value is not None else None
