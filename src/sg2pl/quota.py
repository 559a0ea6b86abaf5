"""Quota headroom evaluation.

Two quotas are tracked per binding:

- Security group rules: every rule that references the prefix list consumes
  one rule per list entry, so the projected list size is measured against the
  account's rules-per-security-group quota. Warnings are advisory.
- Prefix list capacity: the projected size is measured against the list's
  MaxEntries. Going over would fail the modify call, so the reconciler skips
  the apply instead.

Each quota is checked against two independent margins, OR-ed together:
an absolute one (``baseThreshold``) and a proportional one
(``ceil(limit * percentThreshold / 100)``). A fixed percentage is too loose
for small quotas and a fixed count is too tight for large ones.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum

from botocore.exceptions import BotoCoreError, ClientError

from .aws import AwsClients
from .errors import error_code, translate_error

logger = logging.getLogger(__name__)

# Returned by GetServiceQuota when the account has no applied value
NO_APPLIED_QUOTA_CODES = frozenset({"NoSuchResourceException"})


class QuotaKind(str, Enum):
    """The two quotas evaluated on every reconciliation."""

    SECURITY_GROUP_RULES = "security_group_rules"
    PREFIX_LIST_ENTRIES = "prefix_list_entries"


class QuotaLevel(str, Enum):
    """Classification of a quota evaluation."""

    OK = "OK"
    WARNING = "WARNING"


@dataclass(frozen=True)
class QuotaStatus:
    """Headroom of one quota against the binding's thresholds."""

    kind: QuotaKind
    current_count: int
    limit: int
    base_threshold: int
    percent_threshold: int
    absolute_breached: bool
    proportional_breached: bool

    @property
    def headroom(self) -> int:
        return self.limit - self.current_count

    @property
    def is_warning(self) -> bool:
        return self.absolute_breached or self.proportional_breached

    @property
    def level(self) -> QuotaLevel:
        return QuotaLevel.WARNING if self.is_warning else QuotaLevel.OK

    @property
    def exceeded(self) -> bool:
        """True when the projected count is above the limit."""
        return self.current_count > self.limit

    def describe(self) -> str:
        """One-line human-readable summary for notifications."""
        return (
            f"{self.kind.value}: {self.current_count}/{self.limit} used, "
            f"headroom {self.headroom} (base threshold {self.base_threshold}, "
            f"percent threshold {self.percent_threshold}%)"
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "kind": self.kind.value,
            "current_count": self.current_count,
            "limit": self.limit,
            "headroom": self.headroom,
            "level": self.level.value,
        }


def proportional_margin(limit: int, percent_threshold: int) -> int:
    """``ceil(limit * percent_threshold / 100)`` in integer arithmetic."""
    return -(-(limit * percent_threshold) // 100)


def evaluate_quota(
    kind: QuotaKind,
    current_count: int,
    limit: int,
    base_threshold: int,
    percent_threshold: int,
) -> QuotaStatus:
    """Evaluate headroom of one quota. Pure function, no I/O.

    Args:
        kind: Which quota is being evaluated.
        current_count: Current (or projected) usage.
        limit: The quota limit.
        base_threshold: Absolute safety margin.
        percent_threshold: Proportional safety margin, 0-100.

    Returns:
        QuotaStatus flagged WARNING when either margin is breached.
    """
    headroom = limit - current_count
    return QuotaStatus(
        kind=kind,
        current_count=current_count,
        limit=limit,
        base_threshold=base_threshold,
        percent_threshold=percent_threshold,
        absolute_breached=headroom <= base_threshold,
        proportional_breached=headroom <= proportional_margin(limit, percent_threshold),
    )


class QuotaReader:
    """Reads quota limits from Service Quotas.

    Values are cached per (region, service, quota) until clear() is called.
    Callers that outlive one invocation clear the reader at its start.
    """

    def __init__(self, clients: AwsClients) -> None:
        self._clients = clients
        self._cache: dict[tuple[str, str, str], int] = {}
        self._lock = threading.Lock()

    def get_limit(self, region: str, service_code: str, quota_code: str) -> int:
        """Get the applied quota value, falling back to the AWS default.

        Raises:
            TransientError: On throttling or provider outage.
            PermanentError: If the quota cannot be read at all.
        """
        key = (region, service_code, quota_code)
        with self._lock:
            if key in self._cache:
                return self._cache[key]

        client = self._clients.service_quotas(region)
        try:
            response = client.get_service_quota(ServiceCode=service_code, QuotaCode=quota_code)
        except ClientError as e:
            if error_code(e) not in NO_APPLIED_QUOTA_CODES:
                raise translate_error(e, "GetServiceQuota") from e
            logger.debug(
                "No applied quota value, using AWS default",
                extra={"region": region, "quota_code": quota_code},
            )
            try:
                response = client.get_aws_default_service_quota(
                    ServiceCode=service_code, QuotaCode=quota_code
                )
            except (ClientError, BotoCoreError) as inner:
                raise translate_error(inner, "GetAWSDefaultServiceQuota") from inner
        except BotoCoreError as e:
            raise translate_error(e, "GetServiceQuota") from e

        limit = int(response["Quota"]["Value"])
        with self._lock:
            self._cache[key] = limit
        return limit

    def clear(self) -> None:
        """Forget cached limits so the next read goes to Service Quotas."""
        with self._lock:
            self._cache.clear()
