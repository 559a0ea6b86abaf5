"""Tests for binding onboarding."""

from __future__ import annotations

from pathlib import Path

import pytest
from aws_mock import MockAwsState
from conftest import RecordingSink

from sg2pl.aws import AwsClients
from sg2pl.config import Config
from sg2pl.models import Binding
from sg2pl.onboarding import register_binding
from sg2pl.reconciler import Reconciler, SyncOutcome
from sg2pl.registry import FileBindingRegistry

REGION = "us-east-1"

BINDING = Binding.parse(
    {
        "securityGroupId": "sg-0123456789abcdef0",
        "securityGroupRegion": REGION,
        "prefixListId": "pl-0123456789abcdef0",
        "prefixListRegion": REGION,
    }
)


class TestRegisterBinding:
    """Tests for register_binding."""

    @pytest.mark.asyncio
    async def test_registers_and_runs_initial_sync(
        self,
        tmp_path: Path,
        aws_state: MockAwsState,
        clients: AwsClients,
        config: Config,
        sink: RecordingSink,
    ) -> None:
        aws_state.add_security_group(REGION, BINDING.security_group_id)
        aws_state.add_interface(REGION, BINDING.security_group_id, ["10.0.1.5"])
        aws_state.add_prefix_list(REGION, BINDING.prefix_list_id, 100)
        aws_state.set_quota(REGION, "vpc", "L-0EA8095F", 60)
        registry = FileBindingRegistry(tmp_path)

        result = await register_binding(
            registry, Reconciler.from_clients(config, clients, sink), BINDING
        )

        assert result.outcome == SyncOutcome.APPLIED
        assert registry.get(BINDING.key) == BINDING

    @pytest.mark.asyncio
    async def test_binding_kept_when_initial_sync_fails(
        self, tmp_path: Path, clients: AwsClients, config: Config, sink: RecordingSink
    ) -> None:
        """A failed initial sync leaves the binding for the scheduler to retry."""
        registry = FileBindingRegistry(tmp_path)

        result = await register_binding(
            registry, Reconciler.from_clients(config, clients, sink), BINDING
        )

        assert result.outcome == SyncOutcome.FAILED_PERMANENT
        assert list(registry.list_all()) == [BINDING]
