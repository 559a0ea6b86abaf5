"""Configuration management with validation.

All knobs are read from environment variables (the Lambda functions and the
local entry point share the same surface) and validated once at load time so
a bad deployment fails before it touches any prefix list.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_LOG_LEVEL = logging.WARNING
DEFAULT_PARAMETER_STORE_PATH = "/AutoSG2PL/SGs"
DEFAULT_REGION = "us-east-1"

DEFAULT_PERCENT_THRESHOLD = 10
DEFAULT_BASE_THRESHOLD = 10

# Service Quotas identifiers for "Inbound or outbound rules per security group"
DEFAULT_QUOTA_SERVICE_CODE = "vpc"
DEFAULT_SECURITY_GROUP_RULES_QUOTA_CODE = "L-0EA8095F"

DEFAULT_MAX_ATTEMPTS = 3
MAX_ATTEMPTS_LIMIT = 10
DEFAULT_BACKOFF_BASE_SECONDS = 0.2
DEFAULT_BACKOFF_MAX_SECONDS = 2.0

DEFAULT_MAX_CONCURRENCY = 5
MAX_CONCURRENCY_LIMIT = 50

DEFAULT_DEADLINE_MARGIN_SECONDS = 1.0
DEFAULT_ENTRY_DESCRIPTION_PREFIX = "AutoSG2PL"

# Prefix list entry descriptions are limited to 255 characters
MAX_ENTRY_DESCRIPTION_LENGTH = 255

# LOG_LEVEL also accepts the 1-3 scale used by the deployment template
NUMERIC_LOG_LEVELS: dict[str, int] = {
    "1": logging.INFO,
    "2": logging.WARNING,
    "3": logging.CRITICAL,
}

VALID_PARAMETER_PATH_PATTERN = r"^(/[A-Za-z0-9_.\-]+)+$"
VALID_TOPIC_ARN_PATTERN = r"^arn:aws[a-z\-]*:sns:[a-z0-9\-]+:\d{12}:[A-Za-z0-9_\-]+$"
VALID_REGION_PATTERN = r"^[a-z]{2}(-[a-z]+)+-\d$"


def parse_log_level(value: str | None) -> int:
    """Parse a log level given as 1-3 or as a standard level name.

    Raises:
        ConfigurationError: If the value is not recognised.
    """
    if not value:
        return DEFAULT_LOG_LEVEL
    value = value.strip()
    if value in NUMERIC_LOG_LEVELS:
        return NUMERIC_LOG_LEVELS[value]
    level = logging.getLevelName(value.upper())
    if isinstance(level, int):
        return level
    raise ConfigurationError(f"LOG_LEVEL must be 1-3 or a logging level name: {value}")


@dataclass(frozen=True)
class Config:
    """Controller configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-sync.
    """

    # Logging and notifications
    log_level: int = DEFAULT_LOG_LEVEL
    notification_topic_arn: str | None = None

    # Binding registry
    parameter_store_path: str = DEFAULT_PARAMETER_STORE_PATH
    bindings_dir: Path | None = None
    registry_region: str = DEFAULT_REGION

    # Threshold defaults for bindings that omit them
    default_percent_threshold: int = DEFAULT_PERCENT_THRESHOLD
    default_base_threshold: int = DEFAULT_BASE_THRESHOLD

    # Quota codes
    quota_service_code: str = DEFAULT_QUOTA_SERVICE_CODE
    security_group_rules_quota_code: str = DEFAULT_SECURITY_GROUP_RULES_QUOTA_CODE
    prefix_list_quota_code: str | None = None

    # Retry behaviour
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_base_seconds: float = DEFAULT_BACKOFF_BASE_SECONDS
    backoff_max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS

    # Fan-out
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    deadline_margin_seconds: float = DEFAULT_DEADLINE_MARGIN_SECONDS

    entry_description_prefix: str = DEFAULT_ENTRY_DESCRIPTION_PREFIX

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if self.notification_topic_arn and not re.match(
            VALID_TOPIC_ARN_PATTERN, self.notification_topic_arn
        ):
            errors.append(f"LOG_SNS_ARN must be an SNS topic ARN: {self.notification_topic_arn}")

        if not re.match(VALID_PARAMETER_PATH_PATTERN, self.parameter_store_path):
            errors.append(
                f"PARAMETER_STORE_PATH must be an absolute parameter path: "
                f"{self.parameter_store_path}"
            )

        if self.bindings_dir is not None and not self.bindings_dir.is_dir():
            errors.append(f"Bindings directory does not exist: {self.bindings_dir}")

        if not re.match(VALID_REGION_PATTERN, self.registry_region):
            errors.append(f"REGISTRY_REGION must be a valid AWS region: {self.registry_region}")

        if not (0 <= self.default_percent_threshold <= 100):
            errors.append("SECURITY_GROUP_QUOTA_PADDING_PERCENTAGE must be between 0 and 100")

        if self.default_base_threshold < 0:
            errors.append("SECURITY_GROUP_QUOTA_PADDING_BASE must not be negative")

        if not self.quota_service_code:
            errors.append("SECURITY_GROUP_QUOTA_SERVICE_CODE is required")

        if not self.security_group_rules_quota_code:
            errors.append("SECURITY_GROUP_QUOTA_CODE is required")

        if not (1 <= self.max_attempts <= MAX_ATTEMPTS_LIMIT):
            errors.append(f"MAX_SYNC_ATTEMPTS must be between 1 and {MAX_ATTEMPTS_LIMIT}")

        if self.backoff_base_seconds < 0:
            errors.append("RETRY_BACKOFF_BASE_SECONDS must not be negative")
        elif self.backoff_max_seconds < self.backoff_base_seconds:
            errors.append("RETRY_BACKOFF_MAX_SECONDS must be >= RETRY_BACKOFF_BASE_SECONDS")

        if not (1 <= self.max_concurrency <= MAX_CONCURRENCY_LIMIT):
            errors.append(f"FANOUT_CONCURRENCY must be between 1 and {MAX_CONCURRENCY_LIMIT}")

        if self.deadline_margin_seconds < 0:
            errors.append("DEADLINE_MARGIN_SECONDS must not be negative")

        if len(self.entry_description_prefix) > MAX_ENTRY_DESCRIPTION_LENGTH // 2:
            errors.append("ENTRY_DESCRIPTION_PREFIX is too long")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            LOG_LEVEL: 1 (INFO), 2 (WARNING), 3 (CRITICAL) or a level name (default: 2)
            LOG_SNS_ARN: SNS topic for warnings and errors (default: log only)
            PARAMETER_STORE_PATH: SSM path holding bindings (default: /AutoSG2PL/SGs)
            BINDINGS_DIR: Directory of YAML bindings; replaces SSM when set
            REGISTRY_REGION: Region of the SSM registry and SNS topic
                (default: AWS_REGION, then us-east-1)
            SECURITY_GROUP_QUOTA_PADDING_PERCENTAGE: Default percent threshold (default: 10)
            SECURITY_GROUP_QUOTA_PADDING_BASE: Default base threshold (default: 10)
            SECURITY_GROUP_QUOTA_SERVICE_CODE: Service Quotas service code (default: vpc)
            SECURITY_GROUP_QUOTA_CODE: Rules-per-security-group quota code (default: L-0EA8095F)
            PREFIX_LIST_QUOTA_CODE: Optional quota code capping prefix list capacity
            MAX_SYNC_ATTEMPTS: Attempts per reconciliation (default: 3)
            RETRY_BACKOFF_BASE_SECONDS: Backoff base (default: 0.2)
            RETRY_BACKOFF_MAX_SECONDS: Backoff cap (default: 2.0)
            FANOUT_CONCURRENCY: Concurrent reconciliations per fan-out (default: 5)
            DEADLINE_MARGIN_SECONDS: Safety margin kept before the Lambda deadline (default: 1.0)
            ENTRY_DESCRIPTION_PREFIX: Prefix for entry descriptions (default: AutoSG2PL)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        bindings_dir = os.environ.get("BINDINGS_DIR")

        return cls(
            log_level=parse_log_level(os.environ.get("LOG_LEVEL")),
            notification_topic_arn=os.environ.get("LOG_SNS_ARN") or None,
            parameter_store_path=os.environ.get(
                "PARAMETER_STORE_PATH", DEFAULT_PARAMETER_STORE_PATH
            ).rstrip("/")
            or DEFAULT_PARAMETER_STORE_PATH,
            bindings_dir=Path(bindings_dir) if bindings_dir else None,
            registry_region=(
                os.environ.get("REGISTRY_REGION") or os.environ.get("AWS_REGION") or DEFAULT_REGION
            ),
            default_percent_threshold=get_int(
                "SECURITY_GROUP_QUOTA_PADDING_PERCENTAGE", DEFAULT_PERCENT_THRESHOLD
            ),
            default_base_threshold=get_int(
                "SECURITY_GROUP_QUOTA_PADDING_BASE", DEFAULT_BASE_THRESHOLD
            ),
            quota_service_code=os.environ.get(
                "SECURITY_GROUP_QUOTA_SERVICE_CODE", DEFAULT_QUOTA_SERVICE_CODE
            ),
            security_group_rules_quota_code=os.environ.get(
                "SECURITY_GROUP_QUOTA_CODE", DEFAULT_SECURITY_GROUP_RULES_QUOTA_CODE
            ),
            prefix_list_quota_code=os.environ.get("PREFIX_LIST_QUOTA_CODE") or None,
            max_attempts=get_int("MAX_SYNC_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
            backoff_base_seconds=get_float(
                "RETRY_BACKOFF_BASE_SECONDS", DEFAULT_BACKOFF_BASE_SECONDS
            ),
            backoff_max_seconds=get_float("RETRY_BACKOFF_MAX_SECONDS", DEFAULT_BACKOFF_MAX_SECONDS),
            max_concurrency=get_int("FANOUT_CONCURRENCY", DEFAULT_MAX_CONCURRENCY),
            deadline_margin_seconds=get_float(
                "DEADLINE_MARGIN_SECONDS", DEFAULT_DEADLINE_MARGIN_SECONDS
            ),
            entry_description_prefix=os.environ.get(
                "ENTRY_DESCRIPTION_PREFIX", DEFAULT_ENTRY_DESCRIPTION_PREFIX
            ),
        )
