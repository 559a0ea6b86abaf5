"""Binding model and state snapshots.

Bindings are validated with Pydantic at the boundary (registry entries,
Lambda events, onboarding requests). Snapshots are plain frozen dataclasses:
they are produced by our own readers and never parsed from user input.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

SECURITY_GROUP_ID_PATTERN = r"^sg-[0-9a-f]{8,17}$"
PREFIX_LIST_ID_PATTERN = r"^pl-[0-9a-f]{8,17}$"
REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d$"


class BindingValidationError(Exception):
    """Raised when binding data fails validation."""

    pass


class Binding(BaseModel):
    """Association between one security group and one prefix list.

    Thresholds are optional; the reconciler falls back to the configured
    defaults when a binding omits them.
    """

    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)

    security_group_id: Annotated[
        str, Field(alias="securityGroupId", pattern=SECURITY_GROUP_ID_PATTERN)
    ]
    security_group_region: Annotated[
        str, Field(alias="securityGroupRegion", pattern=REGION_PATTERN)
    ]
    prefix_list_id: Annotated[str, Field(alias="prefixListId", pattern=PREFIX_LIST_ID_PATTERN)]
    prefix_list_region: Annotated[str, Field(alias="prefixListRegion", pattern=REGION_PATTERN)]
    percent_threshold: Annotated[int | None, Field(alias="percentThreshold", ge=0, le=100)] = None
    base_threshold: Annotated[int | None, Field(alias="baseThreshold", ge=0)] = None

    @field_validator("security_group_id", "prefix_list_id", mode="before")
    @classmethod
    def normalize_id(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @property
    def key(self) -> str:
        """Registry key: ``<sgRegion>/<sgId>/<plRegion>/<plId>``."""
        return "/".join(
            (
                self.security_group_region,
                self.security_group_id,
                self.prefix_list_region,
                self.prefix_list_id,
            )
        )

    def effective_thresholds(self, default_base: int, default_percent: int) -> tuple[int, int]:
        """Return ``(base_threshold, percent_threshold)`` with defaults applied."""
        base = self.base_threshold if self.base_threshold is not None else default_base
        percent = self.percent_threshold if self.percent_threshold is not None else default_percent
        return base, percent

    def to_registry_dict(self) -> dict[str, Any]:
        """Serialize with camelCase keys, omitting unset thresholds."""
        return self.model_dump(by_alias=True, exclude_none=True)

    @classmethod
    def parse(cls, data: Any, source: str = "binding") -> Binding:
        """Validate raw data into a Binding.

        Args:
            data: Mapping from a registry entry or event payload.
            source: Human-readable origin used in error messages.

        Raises:
            BindingValidationError: If validation fails.
        """
        if not isinstance(data, Mapping):
            raise BindingValidationError(f"{source} must be a mapping")
        try:
            return cls.model_validate(dict(data))
        except ValidationError as e:
            errors = []
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                errors.append(f"  - {loc}: {error['msg']}")
            error_list = "\n".join(errors)
            raise BindingValidationError(f"Invalid {source}:\n{error_list}") from e


class AddressFamily(str, Enum):
    """Prefix list address families."""

    IPV4 = "IPv4"
    IPV6 = "IPv6"


@dataclass(frozen=True)
class NetworkStateSnapshot:
    """Desired state: private addresses in use by a security group.

    Attributes:
        security_group_id: Group the snapshot was taken for.
        ipv4: Single-host IPv4 prefixes (``/32``) mapped to the interface id
            that owns them.
        ipv6: Single-host IPv6 prefixes (``/128``) mapped to interface ids.
        interface_count: Number of interfaces read.
    """

    security_group_id: str
    ipv4: Mapping[str, str] = field(default_factory=dict)
    ipv6: Mapping[str, str] = field(default_factory=dict)
    interface_count: int = 0

    def addresses(self, family: AddressFamily = AddressFamily.IPV4) -> frozenset[str]:
        """Deduplicated address set for one address family."""
        source = self.ipv6 if family == AddressFamily.IPV6 else self.ipv4
        return frozenset(source)

    def owner(self, cidr: str) -> str | None:
        """Interface id an address was read from."""
        return self.ipv4.get(cidr) or self.ipv6.get(cidr)


@dataclass(frozen=True)
class ListStateSnapshot:
    """Actual state of a prefix list at one version.

    Attributes:
        prefix_list_id: The list id.
        version: Version token the entries belong to.
        max_entries: Configured capacity.
        entries: CIDR mapped to entry description.
        address_family: IPv4 or IPv6.
        state: Provider lifecycle state (e.g. ``modify-complete``).
    """

    prefix_list_id: str
    version: int
    max_entries: int
    entries: Mapping[str, str] = field(default_factory=dict)
    address_family: AddressFamily = AddressFamily.IPV4
    state: str = ""

    @property
    def cidrs(self) -> frozenset[str]:
        return frozenset(self.entries)

    @property
    def size(self) -> int:
        return len(self.entries)


def host_prefix(address: str) -> str:
    """Express an IP address as a single-host prefix (``/32`` or ``/128``)."""
    ip = ipaddress.ip_address(address.strip())
    return f"{ip}/{ip.max_prefixlen}"


def canonical_cidr(cidr: str) -> str:
    """Normalize a CIDR string so list entries compare equal to host prefixes."""
    return str(ipaddress.ip_network(cidr.strip(), strict=False))
