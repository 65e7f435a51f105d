"""Capability interfaces implemented by applications plugged into the engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from slowquery.engine.models import JobMessage, JobStatus, JsonDocument


@runtime_checkable
class InitBlock(Protocol):
    """Bundle of shared per-application resources owned by the engine cache."""

    def close(self) -> None:
        """Release the resources held by this block."""


class Initializer(Protocol):
    """Builds the init block for one application."""

    def init(self, app: str) -> InitBlock | None:
        """Create shared resources; raise to report failure.

        Return ``None`` when the application needs no shared resources.
        """


@dataclass(slots=True)
class ProcessorResult:
    """What a processor reports for one job."""

    status: JobStatus
    result: JsonDocument = None
    messages: list[JobMessage] = field(default_factory=list)
    output_files: dict[str, str] = field(default_factory=dict)

    @classmethod
    def success(
        cls,
        result: JsonDocument,
        *,
        output_files: dict[str, str] | None = None,
    ) -> ProcessorResult:
        return cls(status=JobStatus.SUCCESS, result=result, output_files=output_files or {})

    @classmethod
    def failure(
        cls,
        *messages: JobMessage | str,
        output_files: dict[str, str] | None = None,
    ) -> ProcessorResult:
        return cls(
            status=JobStatus.FAILED,
            messages=[
                message if isinstance(message, JobMessage) else JobMessage(text=message)
                for message in messages
            ],
            output_files=output_files or {},
        )


class Processor(Protocol):
    """Executes one kind of work for an (application, operation) pair.

    Implementations are invoked concurrently for different jobs and must
    not keep a reference to ``init_block`` after ``execute`` returns.
    """

    def execute(
        self,
        init_block: InitBlock | None,
        context: JsonDocument,
        input_data: JsonDocument,
    ) -> ProcessorResult:
        """Run the job; raise or return a FAILED result to report errors."""
