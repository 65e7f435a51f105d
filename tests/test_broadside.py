from __future__ import annotations

import allure
import pytest

from slowquery.apps.broadside import (
    BounceReportProcessor,
    BroadsideInitBlock,
    BroadsideInitializer,
    MockSearchClient,
)
from slowquery.engine.models import JobStatus

from conftest import RecordingInitBlock

pytestmark = [
    allure.epic("Job Engine"),
    allure.feature("Broadside Reports"),
]


def test_initializer_opens_client_and_close_releases_it() -> None:
    block = BroadsideInitializer().init("broadside")

    assert block.search_client.is_open is True
    block.close()
    assert block.search_client.is_open is False
    with pytest.raises(RuntimeError, match="closed"):
        block.search_client.query("anything")


def test_bounce_report_uses_shared_search_client() -> None:
    client = MockSearchClient()
    client.open()
    block = BroadsideInitBlock(search_client=client)

    reported = BounceReportProcessor().execute(block, {"userId": 123}, {"fromEmail": "a@b.com"})

    assert reported.status is JobStatus.SUCCESS
    assert reported.result == {"report": "Report generated for user 123, for from email a@b.com"}
    assert client.queries == ["bounces from:a@b.com"]


@pytest.mark.parametrize(
    ("context", "input_data", "field_name"),
    [
        ({}, {"fromEmail": "a@b.com"}, "userId"),
        (None, {"fromEmail": "a@b.com"}, "userId"),
        ({"userId": 1}, {}, "fromEmail"),
        ({"userId": 1}, "a@b.com", "fromEmail"),
    ],
)
def test_bounce_report_validates_required_fields(
    context: object,
    input_data: object,
    field_name: str,
) -> None:
    block = BroadsideInitializer().init("broadside")

    reported = BounceReportProcessor().execute(block, context, input_data)

    assert reported.status is JobStatus.FAILED
    assert reported.result is None
    assert [message.field_name for message in reported.messages] == [field_name]


def test_bounce_report_rejects_foreign_init_block() -> None:
    reported = BounceReportProcessor().execute(
        RecordingInitBlock(app="other"),
        {"userId": 1},
        {"fromEmail": "a@b.com"},
    )

    assert reported.status is JobStatus.FAILED
    assert reported.messages[0].code == "bad_init_block"
