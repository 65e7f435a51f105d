"""Domain models for the job store and client poll API."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

JsonDocument = Any
"""Opaque structured payload; anything ``json.dumps`` accepts."""


class JobStatus(str, Enum):
    """Durable job lifecycle states."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {JobStatus.SUCCESS, JobStatus.FAILED}


class PollStatus(str, Enum):
    """Outcome shapes returned to polling clients."""

    TRY_LATER = "try_later"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class JobMessage:
    """One structured error message attached to a failed job."""

    text: str
    code: str | None = None
    field_name: str | None = None

    def to_dict(self) -> dict[str, str]:
        payload = {"text": self.text}
        if self.code is not None:
            payload["code"] = self.code
        if self.field_name is not None:
            payload["field"] = self.field_name
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> JobMessage:
        return cls(
            text=str(payload.get("text", "")),
            code=payload.get("code"),
            field_name=payload.get("field"),
        )


@dataclass(slots=True)
class JobCreate:
    """Input payload for persisting a new job."""

    application: str
    operation: str
    context: JsonDocument = None
    input_data: JsonDocument = None
    request_id: str | None = None


@dataclass(slots=True)
class JobOutcome:
    """Terminal outcome recorded by ``complete_job``."""

    status: JobStatus
    result: JsonDocument = None
    messages: list[JobMessage] = field(default_factory=list)
    output_files: dict[str, str] = field(default_factory=dict)


@dataclass(slots=True)
class JobView:
    """Readable job record for workers, pollers and the CLI."""

    request_id: str
    application: str
    operation: str
    status: JobStatus
    context: JsonDocument
    input_data: JsonDocument
    result: JsonDocument
    messages: list[JobMessage]
    output_files: dict[str, str]
    worker_id: str | None
    started_at: datetime | None
    finished_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class JobEventView:
    """Job event entry for audit trail."""

    event_id: int
    request_id: str
    event_type: str
    status_from: JobStatus | None
    status_to: JobStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class JobDetails:
    """Job details with event stream."""

    job: JobView
    events: list[JobEventView]


@dataclass(slots=True)
class PollResult:
    """Client-facing job state: pending, success with result, or failure with messages."""

    status: PollStatus
    result: JsonDocument = None
    messages: list[JobMessage] = field(default_factory=list)
    output_files: dict[str, str] = field(default_factory=dict)

    @property
    def done(self) -> bool:
        return self.status is not PollStatus.TRY_LATER

    @classmethod
    def from_job(cls, job: JobView) -> PollResult:
        if job.status is JobStatus.SUCCESS:
            return cls(status=PollStatus.SUCCESS, result=job.result, output_files=job.output_files)
        if job.status is JobStatus.FAILED:
            return cls(
                status=PollStatus.FAILED,
                messages=job.messages,
                output_files=job.output_files,
            )
        return cls(status=PollStatus.TRY_LATER)
