"""Initializer and processor registries owned by one job manager."""

from __future__ import annotations

import logging
import threading
from typing import Generic, TypeVar

from slowquery.engine.contracts import Initializer, Processor
from slowquery.errors import AlreadyRegisteredError, NotFoundError

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


class _Registry(Generic[K, V]):
    # The lock only guards the check-and-set; lookups are plain dict reads.
    def __init__(self) -> None:
        self._entries: dict[K, V] = {}
        self._lock = threading.Lock()

    def _add(self, key: K, value: V) -> bool:
        with self._lock:
            if key in self._entries:
                return False
            self._entries[key] = value
            return True

    def _get(self, key: K) -> V | None:
        return self._entries.get(key)

    def _keys(self) -> list[K]:
        with self._lock:
            return sorted(self._entries)  # type: ignore[type-var]


class InitializerRegistry(_Registry[str, Initializer]):
    """Maps application name to its single initializer."""

    def register(self, app: str, initializer: Initializer) -> None:
        if not self._add(app, initializer):
            logger.warning("Duplicate initializer registration rejected: app=%s", app)
            raise AlreadyRegisteredError(f"initializer already registered for this app: app={app}")
        logger.debug("Registered initializer: app=%s", app)

    def lookup(self, app: str) -> Initializer:
        initializer = self._get(app)
        if initializer is None:
            raise NotFoundError(f"no initializer registered for app={app}")
        return initializer

    def has(self, app: str) -> bool:
        return self._get(app) is not None

    def applications(self) -> list[str]:
        return self._keys()


class ProcessorRegistry(_Registry[tuple[str, str], Processor]):
    """Maps (application, operation) to its single processor."""

    def register(self, app: str, op: str, processor: Processor) -> None:
        if not self._add((app, op), processor):
            logger.warning("Duplicate processor registration rejected: app=%s op=%s", app, op)
            raise AlreadyRegisteredError(
                f"processor already registered for this app and operation: app={app}, op={op}",
            )
        logger.debug("Registered processor: app=%s op=%s", app, op)

    def lookup(self, app: str, op: str) -> Processor:
        processor = self._get((app, op))
        if processor is None:
            raise NotFoundError(f"processor not found: app={app}, op={op}")
        return processor

    def has(self, app: str, op: str) -> bool:
        return self._get((app, op)) is not None

    def operations(self) -> list[tuple[str, str]]:
        return self._keys()
