"""AWS API mock for integration testing.

In-memory implementations of the EC2, Service Quotas, SSM and SNS calls the
controller makes, so reconciliation can be tested without AWS connectivity.

Key Features:
- Per-region state for security groups, interfaces and prefix lists
- Prefix list version history (TargetVersion reads, version-guarded modify)
- NextToken pagination with a configurable page size
- Error injection per operation and simulated concurrent writers

Usage:
    from aws_mock import MockAwsState, MockSession

    state = MockAwsState()
    clients = AwsClients(session=MockSession(state))
    reconciler = Reconciler.from_clients(config, clients, sink)
"""

from .clients import (
    MockEc2Client,
    MockPaginator,
    MockServiceQuotasClient,
    MockSession,
    MockSnsClient,
    MockSsmClient,
)
from .context import MockAwsContext, mock_aws_context
from .state import MockAwsState, MockNetworkInterface, MockPrefixList, client_error

__all__ = [
    "MockAwsContext",
    "MockAwsState",
    "MockEc2Client",
    "MockNetworkInterface",
    "MockPaginator",
    "MockPrefixList",
    "MockServiceQuotasClient",
    "MockSession",
    "MockSnsClient",
    "MockSsmClient",
    "client_error",
    "mock_aws_context",
]
