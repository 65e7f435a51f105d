"""Error taxonomy for the job engine."""

from __future__ import annotations


class SlowQueryError(RuntimeError):
    """Base class for engine errors."""


class AlreadyRegisteredError(SlowQueryError):
    """Initializer or processor registered twice for the same key."""


class NotFoundError(SlowQueryError):
    """Unknown application, operation or request id."""


class InitializationError(SlowQueryError):
    """Application initializer failed to produce an init block."""

    def __init__(self, app: str, reason: str) -> None:
        super().__init__(f"initialization failed for app={app}: {reason}")
        self.app = app
        self.reason = reason


class InvalidTransitionError(SlowQueryError):
    """Job store status change requested from an unexpected state."""

    def __init__(self, request_id: str, *, expected: str, actual: str | None) -> None:
        super().__init__(
            f"invalid status transition for request_id={request_id}: "
            f"expected={expected} actual={actual or 'missing'}",
        )
        self.request_id = request_id
        self.expected = expected
        self.actual = actual


class ProcessorError(SlowQueryError):
    """Processor raised or returned a malformed result."""


class QueueUnavailableError(SlowQueryError):
    """Work queue collaborator could not be reached."""
