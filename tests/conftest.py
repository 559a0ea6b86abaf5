"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for aws_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from aws_mock import MockAwsState, MockSession  # noqa: E402

from sg2pl.aws import AwsClients  # noqa: E402
from sg2pl.config import Config  # noqa: E402
from sg2pl.notifications import Severity  # noqa: E402

SG_REGION = "us-east-1"
PL_REGION = "us-west-2"
SG_ID = "sg-0123456789abcdef0"
PL_ID = "pl-0123456789abcdef0"


class RecordingSink:
    """Notification sink that keeps every message for assertions."""

    def __init__(self, fail: bool = False) -> None:
        self.messages: list[tuple[Severity, str]] = []
        self.fail = fail

    def send(self, severity: Severity, message: str) -> None:
        if self.fail:
            raise RuntimeError("sink unavailable")
        self.messages.append((severity, message))

    def severities(self) -> list[Severity]:
        return [severity for severity, _ in self.messages]


@pytest.fixture
def aws_state() -> MockAwsState:
    return MockAwsState()


@pytest.fixture
def clients(aws_state: MockAwsState) -> AwsClients:
    return AwsClients(session=MockSession(aws_state))


@pytest.fixture
def config() -> Config:
    return Config(backoff_base_seconds=0.0, backoff_max_seconds=0.0)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()
