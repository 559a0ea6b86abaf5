"""Main entry point for the security group to prefix list controller.

Runs one fan-out tick locally: every registered binding is reconciled once
and the process exits. Scheduling is left to whatever invokes it (cron,
EventBridge, CI).
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from datetime import UTC, datetime

from .aws import AwsClients
from .config import Config, ConfigurationError
from .notifications import LoggingNotificationSink, NotificationSink, SnsNotificationSink
from .reconciler import Reconciler
from .registry import BindingRegistry, FileBindingRegistry, RegistryError, SsmBindingRegistry
from .scheduler import BulkBatchInitiator

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
        # Added by the Lambda runtime's log handler
        "aws_request_id",
    )
)

NOISY_LOGGERS = ("botocore", "boto3", "urllib3", "s3transfer")


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, UTC)
            .isoformat()
            .replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS and not key.startswith("_"):
                log_data[key] = value

        request_id = getattr(record, "aws_request_id", None)
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output.

    The Lambda runtime installs its own root handler; when one is present
    it is reused with the JSON formatter instead of adding a second one.
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        for handler in root_logger.handlers:
            handler.setFormatter(JsonFormatter())
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from the AWS SDK
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


@dataclass
class Components:
    """Collaborators built from one configuration."""

    config: Config
    clients: AwsClients
    registry: BindingRegistry
    sink: NotificationSink
    reconciler: Reconciler

    def scheduler(self) -> BulkBatchInitiator:
        return BulkBatchInitiator(
            self.registry, self.reconciler, self.sink, self.config.max_concurrency
        )


def build_components(config: Config, clients: AwsClients | None = None) -> Components:
    """Wire registry, sink and reconciler for a configuration.

    A configured bindings directory replaces the SSM registry. Without an
    SNS topic, notifications only go to the log.
    """
    clients = clients or AwsClients()

    registry: BindingRegistry
    if config.bindings_dir is not None:
        registry = FileBindingRegistry(config.bindings_dir)
    else:
        registry = SsmBindingRegistry(clients, config.parameter_store_path, config.registry_region)

    sink: NotificationSink
    if config.notification_topic_arn:
        sink = SnsNotificationSink(clients, config.notification_topic_arn)
    else:
        sink = LoggingNotificationSink()

    return Components(
        config=config,
        clients=clients,
        registry=registry,
        sink=sink,
        reconciler=Reconciler.from_clients(config, clients, sink),
    )


async def main() -> int:
    """Run one fan-out tick.

    Returns:
        Exit code (0 when every binding ended NoChange, Applied or skipped,
        1 on configuration errors, registry errors or failed bindings).
    """
    setup_logging()
    logger = logging.getLogger(__name__)

    try:
        config = Config.from_env()
    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.log_level)
    logger.info(
        "Starting sync run",
        extra={
            "registry": str(config.bindings_dir or config.parameter_store_path),
            "registry_region": config.registry_region,
            "max_concurrency": config.max_concurrency,
        },
    )

    components = build_components(config)
    try:
        aggregate = await components.scheduler().run_all()
    except RegistryError:
        return 1
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Sync run finished", extra={"summary": aggregate.summary()})
    return 1 if aggregate.has_failures else 0


def run() -> None:
    """Entry point for the sg2pl-sync command."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
