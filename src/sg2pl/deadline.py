"""Invocation time budget.

Lambda invocations have a hard timeout. Retries must stop early enough to
report a result instead of being killed mid-backoff.
"""

from __future__ import annotations

import time
from typing import Any


class Deadline:
    """Monotonic point in time after which no new work should start."""

    def __init__(self, seconds: float, *, clock: Any = time.monotonic) -> None:
        """Create a deadline ``seconds`` from now.

        Args:
            seconds: Time budget. Negative values are treated as zero.
            clock: Monotonic clock, injectable for tests.
        """
        self._clock = clock
        self._expires_at = clock() + max(seconds, 0.0)

    @classmethod
    def from_lambda_context(cls, context: Any, margin_seconds: float = 0.0) -> Deadline | None:
        """Build a deadline from a Lambda context, keeping a safety margin.

        Returns:
            None when the context does not expose a remaining-time budget
            (local runs, tests).
        """
        get_remaining = getattr(context, "get_remaining_time_in_millis", None)
        if get_remaining is None:
            return None
        return cls(get_remaining() / 1000.0 - margin_seconds)

    def remaining_seconds(self) -> float:
        return max(self._expires_at - self._clock(), 0.0)

    def allows(self, seconds: float) -> bool:
        """True if ``seconds`` of work still fits in the budget."""
        return self.remaining_seconds() > seconds

    @property
    def expired(self) -> bool:
        return self.remaining_seconds() <= 0.0
