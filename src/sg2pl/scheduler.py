"""Fan-out scheduler (bulk batch initiator).

Enumerates every onboarded binding and reconciles them with bounded
concurrency. Bindings are independent: each addresses its own prefix list,
so there is no shared mutable state and no cross-binding ordering. A failing
binding only affects its own result.

The registry is drained completely before any work starts, so a page-level
registry failure aborts the run before any prefix list is touched.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from .deadline import Deadline
from .models import Binding
from .notifications import NotificationSink, Severity, send_in_executor
from .reconciler import ReconciliationResult, Reconciler, SyncOutcome
from .registry import BindingRegistry, RegistryError

logger = logging.getLogger(__name__)


@dataclass
class AggregateResult:
    """Per-binding results of one fan-out run."""

    results: list[ReconciliationResult] = field(default_factory=list)
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    def counts(self) -> dict[SyncOutcome, int]:
        """Number of bindings per outcome, including zero counts."""
        counter = Counter(r.outcome for r in self.results)
        return {outcome: counter.get(outcome, 0) for outcome in SyncOutcome}

    @property
    def unsuccessful(self) -> list[ReconciliationResult]:
        """Results that are neither NoChange nor Applied."""
        return [r for r in self.results if not r.success]

    @property
    def has_failures(self) -> bool:
        return any(r.outcome.is_failure for r in self.results)

    def summary(self) -> str:
        parts = [f"{o.value}={n}" for o, n in self.counts().items() if n]
        return f"{len(self.results)} bindings: " + (", ".join(parts) or "none")

    def to_dict(self) -> dict[str, Any]:
        return {
            "bindings": len(self.results),
            "counts": {o.value: n for o, n in self.counts().items()},
            "durationSeconds": round(self.duration_seconds, 3),
            "results": [r.to_dict() for r in self.results],
        }


class BulkBatchInitiator:
    """Drives the reconciler over every registered binding."""

    def __init__(
        self,
        registry: BindingRegistry,
        reconciler: Reconciler,
        sink: NotificationSink,
        max_concurrency: int,
    ) -> None:
        """Initialize the scheduler.

        Args:
            registry: Source of bindings.
            reconciler: Engine invoked once per binding.
            sink: Destination for the aggregate notification.
            max_concurrency: Upper bound on in-flight reconciliations.
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self._registry = registry
        self._reconciler = reconciler
        self._sink = sink
        self._max_concurrency = max_concurrency

    async def run_all(
        self, deadline: Deadline | None = None, request_id: str = ""
    ) -> AggregateResult:
        """Reconcile every registered binding.

        Args:
            deadline: Optional invocation deadline passed to each reconciliation.
            request_id: Caller request id for provenance.

        Returns:
            AggregateResult with one entry per binding, in registry order.

        Raises:
            RegistryError: If the bindings cannot be listed.
        """
        aggregate = AggregateResult()

        try:
            bindings = await self._list_bindings()
        except RegistryError as e:
            logger.error("Failed to list bindings", extra={"error": str(e)})
            await send_in_executor(
                self._sink,
                Severity.CRITICAL,
                f"Scheduled sync aborted, the binding registry could not be read\n  - {e}",
            )
            raise

        if not bindings:
            logger.info("No bindings registered")
            aggregate.end_time = datetime.now(UTC)
            return aggregate

        workers = min(len(bindings), self._max_concurrency)
        semaphore = asyncio.Semaphore(workers)
        logger.info(
            "Starting fan-out",
            extra={"bindings": len(bindings), "workers": workers},
        )

        async def run_one(binding: Binding) -> ReconciliationResult:
            async with semaphore:
                if deadline is not None and deadline.expired:
                    return self._deadline_result(binding)
                return await self._reconcile_isolated(binding, deadline, request_id)

        aggregate.results = list(await asyncio.gather(*(run_one(b) for b in bindings)))
        aggregate.end_time = datetime.now(UTC)

        extra: dict[str, Any] = {
            "bindings": len(aggregate.results),
            "duration_seconds": aggregate.duration_seconds,
            **{f"count_{o.value}": n for o, n in aggregate.counts().items()},
        }
        if aggregate.unsuccessful:
            logger.warning("Fan-out completed with unsuccessful bindings", extra=extra)
            await self._notify_summary(aggregate)
        else:
            logger.info("Fan-out completed", extra=extra)

        return aggregate

    async def _list_bindings(self) -> list[Binding]:
        """Drain every registry page in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: list(self._registry.list_all()))

    async def _reconcile_isolated(
        self, binding: Binding, deadline: Deadline | None, request_id: str
    ) -> ReconciliationResult:
        """Run one reconciliation; an unexpected exception becomes its result."""
        try:
            return await self._reconciler.reconcile(binding, deadline, request_id)
        except Exception as e:
            logger.exception(
                "Unhandled exception reconciling binding",
                extra={"binding_key": binding.key},
            )
            result = ReconciliationResult(
                binding_key=binding.key,
                outcome=SyncOutcome.FAILED_PERMANENT,
                error=f"{type(e).__name__}: {e}",
            )
            result.end_time = datetime.now(UTC)
            await send_in_executor(
                self._sink,
                Severity.ERROR,
                f"Sync crashed for binding {binding.key}\n  - {result.error}",
            )
            return result

    def _deadline_result(self, binding: Binding) -> ReconciliationResult:
        """Result for a binding that was still queued when the deadline passed."""
        logger.warning(
            "Invocation deadline reached, binding not started",
            extra={"binding_key": binding.key},
        )
        result = ReconciliationResult(
            binding_key=binding.key,
            outcome=SyncOutcome.FAILED_TRANSIENT,
            error="Invocation deadline reached before the sync started",
        )
        result.end_time = datetime.now(UTC)
        return result

    async def _notify_summary(self, aggregate: AggregateResult) -> None:
        lines = [f"Scheduled sync finished: {aggregate.summary()}"]
        for result in aggregate.unsuccessful:
            detail = f" ({result.error})" if result.error else ""
            lines.append(f"  - {result.binding_key}: {result.outcome.value}{detail}")
        severity = Severity.ERROR if aggregate.has_failures else Severity.WARNING
        await send_in_executor(self._sink, severity, "\n".join(lines))
