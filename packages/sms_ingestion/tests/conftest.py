from datetime import datetime, timezone

import pytest

from packages.sms_ingestion.gateway import InMemoryGateway
from packages.sms_ingestion.models import RawMessage


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def gateway():
    return InMemoryGateway()


def make_message(body: str, minute: int = 0, originator: str = "MPESA") -> RawMessage:
    return RawMessage(
        body=body,
        captured_at=datetime(2025, 10, 1, 10, minute, tzinfo=timezone.utc),
        originator=originator,
    )


@pytest.fixture
def message_factory():
    return make_message
