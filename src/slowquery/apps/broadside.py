"""Example "broadside" application: bounce reports over a mock search client."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from slowquery.engine.contracts import InitBlock, ProcessorResult
from slowquery.engine.models import JobMessage, JsonDocument

if TYPE_CHECKING:
    from slowquery.engine.manager import JobManager

logger = logging.getLogger(__name__)

APP_NAME = "broadside"
BOUNCE_REPORT_OP = "bouncerpt"


@dataclass(slots=True)
class MockSearchClient:
    """Stand-in for a search index client."""

    is_open: bool = False
    queries: list[str] = field(default_factory=list)

    def open(self) -> None:
        self.is_open = True

    def close(self) -> None:
        self.is_open = False

    def query(self, query: str) -> str:
        if not self.is_open:
            raise RuntimeError("search client is closed")
        self.queries.append(query)
        return "mock search result"


@dataclass(slots=True)
class BroadsideInitBlock:
    """Shared resources for the broadside application."""

    search_client: MockSearchClient

    def close(self) -> None:
        self.search_client.close()


class BroadsideInitializer:
    def init(self, app: str) -> BroadsideInitBlock:
        client = MockSearchClient()
        client.open()
        logger.debug("Opened search client for app=%s", app)
        return BroadsideInitBlock(search_client=client)


class BounceReportProcessor:
    """Builds a bounce report for one user and sender address."""

    def execute(
        self,
        init_block: InitBlock,
        context: JsonDocument,
        input_data: JsonDocument,
    ) -> ProcessorResult:
        if not isinstance(init_block, BroadsideInitBlock):
            return ProcessorResult.failure(
                JobMessage(text="init block is not a BroadsideInitBlock", code="bad_init_block"),
            )
        if not isinstance(context, dict) or "userId" not in context:
            return ProcessorResult.failure(
                JobMessage(text="context.userId is required", code="missing", field_name="userId"),
            )
        if not isinstance(input_data, dict) or "fromEmail" not in input_data:
            return ProcessorResult.failure(
                JobMessage(
                    text="input.fromEmail is required",
                    code="missing",
                    field_name="fromEmail",
                ),
            )

        init_block.search_client.query(f"bounces from:{input_data['fromEmail']}")
        report = (
            f"Report generated for user {context['userId']}, "
            f"for from email {input_data['fromEmail']}"
        )
        return ProcessorResult.success({"report": report})


def register(manager: JobManager) -> None:
    """Register the broadside initializer and processors on ``manager``."""

    manager.register_initializer(APP_NAME, BroadsideInitializer())
    manager.register_processor(APP_NAME, BOUNCE_REPORT_OP, BounceReportProcessor())
