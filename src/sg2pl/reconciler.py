"""Per-binding reconciliation engine (batch sync).

One reconciliation brings a prefix list in line with the addresses in use by
its security group:

1. Read the desired state (interface addresses in the security group)
2. Read the actual state (prefix list entries at a version)
3. Diff by CIDR: to_add = desired - current, to_remove = current - desired
4. Evaluate the security group rule quota and prefix list capacity
5. Skip the apply if the projected size would exceed capacity
6. Apply the diff in one modify call guarded by the read version
7. On a version conflict, start again from step 2 against fresh state

There is no lock anywhere. Two overlapping runs for the same binding are
serialized by the provider's version check: the loser re-reads and re-diffs,
so the result converges on the current interface state instead of replaying
a stale diff. Every run recomputes both sides from scratch, which makes it
safe to repeat on a schedule or after a failure.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

from .aws import AwsClients
from .config import Config
from .deadline import Deadline
from .errors import (
    PermanentError,
    ResourceNotFoundError,
    TransientError,
    VersionConflictError,
)
from .models import Binding, ListStateSnapshot, NetworkStateSnapshot
from .network_state import NetworkStateReader
from .notifications import NotificationSink, Severity, send_in_executor
from .prefix_list import PrefixListReader, PrefixListWriter, entry_description
from .provenance import get_provenance_logger
from .quota import QuotaKind, QuotaReader, QuotaStatus, evaluate_quota

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Fraction of the backoff added as random jitter
BACKOFF_JITTER_FRACTION = 0.2


class SyncOutcome(str, Enum):
    """Outcome of one reconciliation."""

    NO_CHANGE = "NoChange"
    APPLIED = "Applied"
    SKIPPED_QUOTA_EXCEEDED = "SkippedQuotaExceeded"
    FAILED_CONFLICT = "FailedConflict"
    FAILED_TRANSIENT = "FailedTransient"
    FAILED_PERMANENT = "FailedPermanent"

    @property
    def is_success(self) -> bool:
        return self in (SyncOutcome.NO_CHANGE, SyncOutcome.APPLIED)

    @property
    def is_failure(self) -> bool:
        return self in (
            SyncOutcome.FAILED_CONFLICT,
            SyncOutcome.FAILED_TRANSIENT,
            SyncOutcome.FAILED_PERMANENT,
        )


@dataclass
class ReconciliationResult:
    """Result of a single binding reconciliation."""

    binding_key: str
    outcome: SyncOutcome = SyncOutcome.NO_CHANGE
    added: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()
    warnings: list[QuotaStatus] = field(default_factory=list)
    attempts: int = 0
    error: str | None = None
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.outcome.is_success

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready representation, used as the Lambda response."""
        return {
            "bindingKey": self.binding_key,
            "outcome": self.outcome.value,
            "added": sorted(self.added),
            "removed": sorted(self.removed),
            "warnings": [w.to_dict() for w in self.warnings],
            "attempts": self.attempts,
            "error": self.error,
            "durationSeconds": round(self.duration_seconds, 3),
        }


@dataclass(frozen=True)
class SyncPlan:
    """Diff and quota evaluation computed against one list snapshot."""

    snapshot: ListStateSnapshot
    to_add: Mapping[str, str]
    to_remove: frozenset[str]
    security_group_quota: QuotaStatus
    capacity_quota: QuotaStatus

    @property
    def is_empty(self) -> bool:
        return not self.to_add and not self.to_remove

    @property
    def projected_size(self) -> int:
        return self.snapshot.size + len(self.to_add) - len(self.to_remove)

    @property
    def warnings(self) -> list[QuotaStatus]:
        return [q for q in (self.security_group_quota, self.capacity_quota) if q.is_warning]


def compute_plan(
    network: NetworkStateSnapshot,
    snapshot: ListStateSnapshot,
    *,
    security_group_rule_limit: int,
    capacity_limit: int,
    base_threshold: int,
    percent_threshold: int,
    description_prefix: str,
) -> SyncPlan:
    """Diff desired against actual state and evaluate both quotas.

    Pure function; the reconciler calls it once per attempt with a fresh
    list snapshot.
    """
    desired = network.addresses(snapshot.address_family)
    current = snapshot.cidrs

    to_add = {
        cidr: entry_description(description_prefix, network.owner(cidr))
        for cidr in desired - current
    }
    to_remove = frozenset(current - desired)
    projected = snapshot.size + len(to_add) - len(to_remove)

    return SyncPlan(
        snapshot=snapshot,
        to_add=to_add,
        to_remove=to_remove,
        security_group_quota=evaluate_quota(
            QuotaKind.SECURITY_GROUP_RULES,
            projected,
            security_group_rule_limit,
            base_threshold,
            percent_threshold,
        ),
        capacity_quota=evaluate_quota(
            QuotaKind.PREFIX_LIST_ENTRIES,
            projected,
            capacity_limit,
            base_threshold,
            percent_threshold,
        ),
    )


class Reconciler:
    """Synchronizes one binding at a time.

    Instances hold no per-binding state and can reconcile many bindings
    concurrently; the fan-out scheduler shares a single instance.
    """

    def __init__(
        self,
        config: Config,
        *,
        network_reader: NetworkStateReader,
        list_reader: PrefixListReader,
        list_writer: PrefixListWriter,
        quota_reader: QuotaReader,
        sink: NotificationSink,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """Initialize the reconciler.

        Args:
            config: Validated controller configuration.
            network_reader: Desired-state reader.
            list_reader: Actual-state reader.
            list_writer: Version-guarded writer.
            quota_reader: Service Quotas reader.
            sink: Destination for warnings and failures.
            sleep: Backoff sleep, injectable for tests.
        """
        self._config = config
        self._network_reader = network_reader
        self._list_reader = list_reader
        self._list_writer = list_writer
        self._quota_reader = quota_reader
        self._sink = sink
        self._sleep = sleep

    @classmethod
    def from_clients(
        cls, config: Config, clients: AwsClients, sink: NotificationSink
    ) -> Reconciler:
        """Build a reconciler wired to real AWS readers."""
        return cls(
            config,
            network_reader=NetworkStateReader(clients),
            list_reader=PrefixListReader(clients),
            list_writer=PrefixListWriter(clients),
            quota_reader=QuotaReader(clients),
            sink=sink,
        )

    @property
    def config(self) -> Config:
        return self._config

    def begin_invocation(self) -> None:
        """Drop quota limits cached by a previous invocation."""
        self._quota_reader.clear()

    async def reconcile(
        self,
        binding: Binding,
        deadline: Deadline | None = None,
        request_id: str = "",
    ) -> ReconciliationResult:
        """Reconcile one binding.

        Never raises for provider failures: they are mapped onto the result's
        outcome and reported through the notification sink.

        Args:
            binding: The binding to synchronize.
            deadline: Optional invocation deadline; retries that would not
                fit are abandoned with FailedTransient.
            request_id: Caller request id for provenance.

        Returns:
            ReconciliationResult describing what happened.
        """
        result = ReconciliationResult(binding_key=binding.key)
        provenance_logger = get_provenance_logger()
        provenance = provenance_logger.create_provenance(
            binding_key=binding.key,
            security_group_id=binding.security_group_id,
            prefix_list_id=binding.prefix_list_id,
            request_id=request_id,
        )
        started = time.monotonic()

        base_threshold, percent_threshold = binding.effective_thresholds(
            self._config.default_base_threshold, self._config.default_percent_threshold
        )
        network: NetworkStateSnapshot | None = None
        security_group_rule_limit: int | None = None
        quota_capacity_cap: int | None = None
        max_attempts = self._config.max_attempts

        try:
            for attempt in range(1, max_attempts + 1):
                result.attempts = attempt
                try:
                    # Desired state and quota limits are read once; only the
                    # list side is re-read after a conflict.
                    if network is None:
                        network = await self._call(
                            self._network_reader.read,
                            binding.security_group_id,
                            binding.security_group_region,
                        )
                    if security_group_rule_limit is None:
                        security_group_rule_limit = await self._call(
                            self._quota_reader.get_limit,
                            binding.security_group_region,
                            self._config.quota_service_code,
                            self._config.security_group_rules_quota_code,
                        )
                    if self._config.prefix_list_quota_code and quota_capacity_cap is None:
                        quota_capacity_cap = await self._call(
                            self._quota_reader.get_limit,
                            binding.prefix_list_region,
                            self._config.quota_service_code,
                            self._config.prefix_list_quota_code,
                        )

                    snapshot = await self._call(
                        self._list_reader.read,
                        binding.prefix_list_id,
                        binding.prefix_list_region,
                    )
                    provenance.version_before = snapshot.version

                    capacity_limit = snapshot.max_entries
                    if quota_capacity_cap is not None:
                        capacity_limit = min(capacity_limit, quota_capacity_cap)

                    plan = compute_plan(
                        network,
                        snapshot,
                        security_group_rule_limit=security_group_rule_limit,
                        capacity_limit=capacity_limit,
                        base_threshold=base_threshold,
                        percent_threshold=percent_threshold,
                        description_prefix=self._config.entry_description_prefix,
                    )
                    result.warnings = plan.warnings

                    if plan.is_empty:
                        result.outcome = SyncOutcome.NO_CHANGE
                        break

                    if plan.capacity_quota.exceeded:
                        result.outcome = SyncOutcome.SKIPPED_QUOTA_EXCEEDED
                        logger.warning(
                            "Projected prefix list size exceeds capacity, skipping apply",
                            extra={
                                "binding_key": binding.key,
                                "projected_size": plan.projected_size,
                                "capacity": capacity_limit,
                            },
                        )
                        break

                    provenance.version_after = await self._call(
                        self._list_writer.apply,
                        snapshot,
                        binding.prefix_list_region,
                        plan.to_add,
                        plan.to_remove,
                    )
                    result.outcome = SyncOutcome.APPLIED
                    result.added = frozenset(plan.to_add)
                    result.removed = plan.to_remove
                    break

                except (VersionConflictError, TransientError) as e:
                    failed_outcome = (
                        SyncOutcome.FAILED_CONFLICT
                        if isinstance(e, VersionConflictError)
                        else SyncOutcome.FAILED_TRANSIENT
                    )
                    if attempt >= max_attempts:
                        result.outcome = failed_outcome
                        result.error = f"{e} (after {attempt} attempts)"
                        break

                    wait_seconds = self._backoff_seconds(attempt)
                    if deadline is not None and not deadline.allows(wait_seconds):
                        result.outcome = SyncOutcome.FAILED_TRANSIENT
                        result.error = (
                            f"Deadline reached before retry {attempt + 1} "
                            f"({deadline.remaining_seconds():.2f}s left): {e}"
                        )
                        break

                    logger.warning(
                        "Reconciliation attempt failed, retrying",
                        extra={
                            "binding_key": binding.key,
                            "attempt": attempt,
                            "max_attempts": max_attempts,
                            "wait_seconds": round(wait_seconds, 3),
                            "error": str(e),
                            "error_code": e.code,
                            "retry_reason": failed_outcome.value,
                        },
                    )
                    await self._sleep(wait_seconds)

        except (ResourceNotFoundError, PermanentError) as e:
            result.outcome = SyncOutcome.FAILED_PERMANENT
            result.error = str(e)
        except Exception as e:
            logger.exception("Unexpected error during reconciliation")
            result.outcome = SyncOutcome.FAILED_PERMANENT
            result.error = f"{type(e).__name__}: {e}"

        result.end_time = datetime.now(UTC)

        await self._notify(binding, result)
        self._log_result(result)

        provenance.outcome = result.outcome.value
        provenance.attempts = result.attempts
        provenance.added_count = len(result.added)
        provenance.removed_count = len(result.removed)
        provenance.warning_count = len(result.warnings)
        provenance.error = result.error
        provenance.duration_seconds = round(time.monotonic() - started, 3)
        provenance_logger.log_provenance(provenance)

        return result

    async def _call(self, func: Callable[..., T], *args: Any) -> T:
        """Run a blocking SDK call in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    def _backoff_seconds(self, attempt: int) -> float:
        """Exponential backoff with jitter, capped."""
        backoff = self._config.backoff_base_seconds * (2 ** (attempt - 1))
        jitter = random.uniform(0, backoff * BACKOFF_JITTER_FRACTION)
        return min(backoff + jitter, self._config.backoff_max_seconds)

    async def _notify(self, binding: Binding, result: ReconciliationResult) -> None:
        """Send the notifications a result calls for.

        Skips carry their warnings in a single message. Successful runs send
        one message per quota warning. Every failure sends one message.
        """
        target = (
            f"security group {binding.security_group_id} ({binding.security_group_region}) "
            f"-> prefix list {binding.prefix_list_id} ({binding.prefix_list_region})"
        )

        match result.outcome:
            case SyncOutcome.SKIPPED_QUOTA_EXCEEDED:
                details = "\n".join(f"  - {w.describe()}" for w in result.warnings)
                await send_in_executor(
                    self._sink,
                    Severity.WARNING,
                    f"Sync skipped, prefix list capacity would be exceeded for {target}\n"
                    f"{details}",
                )
            case SyncOutcome.NO_CHANGE | SyncOutcome.APPLIED:
                for warning in result.warnings:
                    await send_in_executor(
                        self._sink,
                        Severity.WARNING,
                        f"Quota threshold reached for {target}\n  - {warning.describe()}",
                    )
            case SyncOutcome.FAILED_PERMANENT:
                await send_in_executor(
                    self._sink,
                    Severity.ERROR,
                    f"Sync failed permanently for {target}; the binding needs operator "
                    f"action\n  - {result.error}",
                )
            case SyncOutcome.FAILED_CONFLICT | SyncOutcome.FAILED_TRANSIENT:
                await send_in_executor(
                    self._sink,
                    Severity.WARNING,
                    f"Sync {result.outcome.value} for {target}; will retry on the next "
                    f"scheduled run\n  - {result.error}",
                )

    def _log_result(self, result: ReconciliationResult) -> None:
        """Log reconciliation result with structured data."""
        extra: dict[str, Any] = {
            "binding_key": result.binding_key,
            "outcome": result.outcome.value,
            "added": len(result.added),
            "removed": len(result.removed),
            "warnings": [w.kind.value for w in result.warnings],
            "attempts": result.attempts,
            "duration_seconds": result.duration_seconds,
        }

        if result.error is not None:
            extra["error"] = result.error

        if result.outcome.is_failure:
            logger.error("Reconciliation failed", extra=extra)
        elif result.outcome == SyncOutcome.SKIPPED_QUOTA_EXCEEDED or result.warnings:
            logger.warning("Reconciliation completed with warnings", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
