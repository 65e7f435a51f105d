"""Asynchronous job orchestration engine for slow queries."""

from slowquery.engine.contracts import InitBlock, Initializer, Processor, ProcessorResult
from slowquery.engine.manager import JobManager, WorkerRunSummary
from slowquery.engine.models import JobMessage, JobStatus, PollResult, PollStatus
from slowquery.errors import (
    AlreadyRegisteredError,
    InitializationError,
    InvalidTransitionError,
    NotFoundError,
    ProcessorError,
    QueueUnavailableError,
    SlowQueryError,
)

__version__ = "0.1.0"

__all__ = [
    "AlreadyRegisteredError",
    "InitBlock",
    "InitializationError",
    "Initializer",
    "InvalidTransitionError",
    "JobManager",
    "JobMessage",
    "JobStatus",
    "NotFoundError",
    "PollResult",
    "PollStatus",
    "Processor",
    "ProcessorError",
    "ProcessorResult",
    "QueueUnavailableError",
    "SlowQueryError",
    "WorkerRunSummary",
    "__version__",
]
