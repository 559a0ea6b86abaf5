"""Sync provenance records for audit.

Every reconciliation is stamped with one structured record answering:
- "What did this run change on which prefix list, and from which version?"
- "Which function version and request produced the change?"

Records are plain log events; CloudWatch Logs is the retention store.
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

logger = logging.getLogger(__name__)

# Set by the Lambda runtime; falls back to dev for local runs
FUNCTION_VERSION = os.environ.get("AWS_LAMBDA_FUNCTION_VERSION", "dev")


@dataclass
class SyncProvenance:
    """Provenance record for one binding reconciliation."""

    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    # Identity
    binding_key: str = ""
    security_group_id: str = ""
    prefix_list_id: str = ""
    function_name: str = ""
    function_version: str = FUNCTION_VERSION
    request_id: str = ""

    # Outcome
    outcome: str = ""
    attempts: int = 0
    added_count: int = 0
    removed_count: int = 0
    warning_count: int = 0
    version_before: int | None = None
    version_after: int | None = None

    duration_seconds: float = 0.0

    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        result = asdict(self)
        result["timestamp"] = self.timestamp.isoformat()
        return result


class ProvenanceLogger:
    """Emits provenance records to the structured log."""

    def __init__(self) -> None:
        self._function_name = os.environ.get("AWS_LAMBDA_FUNCTION_NAME", "")

    def create_provenance(
        self,
        binding_key: str,
        security_group_id: str,
        prefix_list_id: str,
        request_id: str = "",
    ) -> SyncProvenance:
        """Create a new provenance record for one reconciliation."""
        return SyncProvenance(
            binding_key=binding_key,
            security_group_id=security_group_id,
            prefix_list_id=prefix_list_id,
            function_name=self._function_name,
            function_version=FUNCTION_VERSION,
            request_id=request_id,
        )

    def log_provenance(self, provenance: SyncProvenance) -> None:
        """Log a completed provenance record.

        Failed runs log at ERROR, skipped or warned runs at WARNING, the rest
        at INFO.
        """
        log_level = logging.INFO
        if provenance.error:
            log_level = logging.ERROR
        elif provenance.warning_count > 0 or provenance.outcome == "SkippedQuotaExceeded":
            log_level = logging.WARNING

        logger.log(
            log_level,
            "Sync provenance",
            extra={
                "provenance": provenance.to_dict(),
                "binding_key": provenance.binding_key,
                "outcome": provenance.outcome,
                "added": provenance.added_count,
                "removed": provenance.removed_count,
                "attempts": provenance.attempts,
                "function_version": provenance.function_version,
                "duration_seconds": provenance.duration_seconds,
            },
        )


_provenance_logger: ProvenanceLogger | None = None


def get_provenance_logger() -> ProvenanceLogger:
    """Get the global provenance logger instance."""
    global _provenance_logger
    if _provenance_logger is None:
        _provenance_logger = ProvenanceLogger()
    return _provenance_logger
