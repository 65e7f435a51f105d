"""Per-application init block cache with single-flight construction."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

from slowquery.engine.contracts import InitBlock
from slowquery.engine.registry import InitializerRegistry
from slowquery.errors import InitializationError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _PendingInit:
    """One in-flight initializer call shared by every concurrent resolver."""

    done: threading.Event = field(default_factory=threading.Event)
    ok: bool = False
    block: InitBlock | None = None
    error: InitializationError | None = None


class InitBlockCache:
    """Lazily builds and caches one init block per application.

    The first resolver for an application becomes the leader and calls the
    initializer outside of the cache lock; concurrent resolvers wait for the
    leader and share its block or its error. Failures are never cached, so
    the next resolution after a failure calls the initializer again.

    An initializer may return ``None`` when its application needs no shared
    resources; ``None`` is cached like any other block and never closed.
    """

    def __init__(self, initializers: InitializerRegistry) -> None:
        self._initializers = initializers
        self._blocks: dict[str, InitBlock | None] = {}
        self._pending: dict[str, _PendingInit] = {}
        self._lock = threading.Lock()

    def resolve(self, app: str) -> InitBlock | None:
        with self._lock:
            if app in self._blocks:
                return self._blocks[app]
            pending = self._pending.get(app)
            leader = pending is None
            if pending is None:
                pending = _PendingInit()
                self._pending[app] = pending

        if not leader:
            pending.done.wait()
            if pending.error is not None:
                raise pending.error
            if not pending.ok:
                raise InitializationError(app, "initialization was interrupted")
            return pending.block

        try:
            block = self._initialize(app)
        except InitializationError as error:
            pending.error = error
            raise
        else:
            pending.block = block
            pending.ok = True
            return block
        finally:
            with self._lock:
                if pending.ok:
                    self._blocks[app] = pending.block
                self._pending.pop(app, None)
            pending.done.set()

    def _initialize(self, app: str) -> InitBlock | None:
        try:
            initializer = self._initializers.lookup(app)
        except NotFoundError as error:
            raise InitializationError(app, str(error)) from error

        logger.info("Initializing shared resources: app=%s", app)
        try:
            block = initializer.init(app)
        except Exception as error:
            logger.exception("Initializer failed: app=%s", app)
            raise InitializationError(app, f"{type(error).__name__}: {error}") from error
        if block is None:
            logger.info("Initializer returned no shared resources: app=%s", app)
        return block

    def cached(self, app: str) -> bool:
        with self._lock:
            return app in self._blocks

    def evict(self, app: str) -> bool:
        """Drop one application's block and close it."""

        with self._lock:
            if app not in self._blocks:
                return False
            block = self._blocks.pop(app)
        if block is not None:
            block.close()
        return True

    def close_all(self) -> dict[str, Exception]:
        """Close every cached block; failures are collected, not raised."""

        with self._lock:
            blocks = list(self._blocks.items())
            self._blocks.clear()

        failures: dict[str, Exception] = {}
        for app, block in blocks:
            if block is None:
                continue
            try:
                block.close()
            except Exception as error:  # noqa: BLE001
                logger.warning("Failed to close init block: app=%s error=%s", app, error)
                failures[app] = error
        return failures
