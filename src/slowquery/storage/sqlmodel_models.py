"""SQLModel ORM tables for job storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class JobRequest(SQLModel, table=True):
    __tablename__ = "jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_jobs_status_updated", "status", "updated_at"),)

    request_id: str = Field(primary_key=True)
    application: str = Field(index=True)
    operation: str = Field(index=True)
    status: str = Field(index=True)
    context_json: str = Field(sa_column=Column(Text, nullable=False))
    input_json: str = Field(sa_column=Column(Text, nullable=False))
    result_json: str | None = Field(default=None, sa_column=Column(Text))
    messages_json: str | None = Field(default=None, sa_column=Column(Text))
    output_files_json: str | None = Field(default=None, sa_column=Column(Text))
    worker_id: str | None = Field(default=None, index=True)
    started_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    finished_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class JobEvent(SQLModel, table=True):
    __tablename__ = "job_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_job_events_request_time", "request_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    request_id: str = Field(
        sa_column=Column(
            ForeignKey("jobs.request_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    status_from: str | None = Field(default=None)
    status_to: str | None = Field(default=None)
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class WorkSignal(SQLModel, table=True):
    __tablename__ = "work_signals"  # type: ignore[bad-override]

    id: int | None = Field(default=None, primary_key=True)
    request_id: str = Field(index=True)
    enqueued_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
