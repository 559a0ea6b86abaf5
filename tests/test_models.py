"""Tests for the binding model and state snapshots."""

from __future__ import annotations

import pytest

from sg2pl.models import (
    AddressFamily,
    Binding,
    BindingValidationError,
    ListStateSnapshot,
    NetworkStateSnapshot,
    canonical_cidr,
    host_prefix,
)

BINDING_DATA = {
    "securityGroupId": "sg-0123456789abcdef0",
    "securityGroupRegion": "us-east-1",
    "prefixListId": "pl-0123456789abcdef0",
    "prefixListRegion": "us-west-2",
}


class TestBinding:
    """Tests for Binding validation and helpers."""

    def test_parse_camel_case(self) -> None:
        """Registry entries use camelCase keys."""
        binding = Binding.parse({**BINDING_DATA, "percentThreshold": 15, "baseThreshold": 3})

        assert binding.security_group_id == "sg-0123456789abcdef0"
        assert binding.prefix_list_region == "us-west-2"
        assert binding.percent_threshold == 15
        assert binding.base_threshold == 3

    def test_ids_are_normalized(self) -> None:
        """Ids are stripped and lowercased before validation."""
        binding = Binding.parse(
            {**BINDING_DATA, "securityGroupId": " SG-0123456789ABCDEF0 "}
        )
        assert binding.security_group_id == "sg-0123456789abcdef0"

    def test_key(self) -> None:
        """The registry key joins regions and ids."""
        binding = Binding.parse(BINDING_DATA)
        assert binding.key == (
            "us-east-1/sg-0123456789abcdef0/us-west-2/pl-0123456789abcdef0"
        )

    def test_invalid_ids_rejected(self) -> None:
        """Malformed ids raise BindingValidationError naming the field."""
        with pytest.raises(BindingValidationError) as exc_info:
            Binding.parse({**BINDING_DATA, "prefixListId": "prefix-1"}, source="event")

        message = str(exc_info.value)
        assert "Invalid event" in message
        assert "prefixListId" in message

    def test_percent_threshold_range(self) -> None:
        """Percent threshold must be 0-100."""
        with pytest.raises(BindingValidationError):
            Binding.parse({**BINDING_DATA, "percentThreshold": 150})

    def test_missing_field(self) -> None:
        """Every identity field is required."""
        data = dict(BINDING_DATA)
        del data["securityGroupRegion"]
        with pytest.raises(BindingValidationError):
            Binding.parse(data)

    def test_non_mapping_rejected(self) -> None:
        """Non-mapping input raises error."""
        with pytest.raises(BindingValidationError):
            Binding.parse(["not", "a", "mapping"])

    def test_effective_thresholds(self) -> None:
        """Defaults fill in unset thresholds only."""
        binding = Binding.parse({**BINDING_DATA, "baseThreshold": 0})
        assert binding.effective_thresholds(10, 10) == (0, 10)

    def test_to_registry_dict_omits_unset_thresholds(self) -> None:
        """Serialized form round-trips through parse."""
        binding = Binding.parse(BINDING_DATA)
        data = binding.to_registry_dict()

        assert data == BINDING_DATA
        assert Binding.parse(data) == binding

    def test_binding_is_frozen(self) -> None:
        """Bindings are immutable."""
        binding = Binding.parse(BINDING_DATA)
        with pytest.raises(Exception):
            binding.security_group_id = "sg-00000000"  # type: ignore[misc]


class TestSnapshots:
    """Tests for network and list snapshots."""

    def test_addresses_by_family(self) -> None:
        """IPv4 and IPv6 sets are kept apart."""
        network = NetworkStateSnapshot(
            security_group_id="sg-0123456789abcdef0",
            ipv4={"10.0.1.5/32": "eni-1"},
            ipv6={"2600:1f18::1/128": "eni-2"},
            interface_count=2,
        )

        assert network.addresses() == frozenset({"10.0.1.5/32"})
        assert network.addresses(AddressFamily.IPV6) == frozenset({"2600:1f18::1/128"})
        assert network.owner("2600:1f18::1/128") == "eni-2"
        assert network.owner("10.9.9.9/32") is None

    def test_list_snapshot_size(self) -> None:
        """Size counts entries."""
        snapshot = ListStateSnapshot(
            prefix_list_id="pl-0123456789abcdef0",
            version=3,
            max_entries=10,
            entries={"10.0.1.5/32": "", "10.0.1.6/32": ""},
        )
        assert snapshot.size == 2
        assert snapshot.cidrs == frozenset({"10.0.1.5/32", "10.0.1.6/32"})


class TestAddressHelpers:
    """Tests for host_prefix and canonical_cidr."""

    def test_host_prefix_ipv4(self) -> None:
        assert host_prefix("10.0.1.5") == "10.0.1.5/32"

    def test_host_prefix_ipv6_is_compressed(self) -> None:
        assert host_prefix("2600:1f18:0000:0000::0001") == "2600:1f18::1/128"

    def test_canonical_cidr(self) -> None:
        """List entries compare equal to host prefixes after normalization."""
        assert canonical_cidr("10.0.1.5/32") == host_prefix("10.0.1.5")
        assert canonical_cidr("10.0.1.7/24") == "10.0.1.0/24"
