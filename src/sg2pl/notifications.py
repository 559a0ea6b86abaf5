"""Notification sinks for warnings and failures.

Sending is best-effort: a notification that cannot be delivered is logged
and dropped, and never changes the outcome of a reconciliation.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Protocol

from botocore.exceptions import BotoCoreError, ClientError

from .aws import AwsClients

logger = logging.getLogger(__name__)

# SNS subjects are limited to 100 characters
MAX_SUBJECT_LENGTH = 100
SUBJECT_PREFIX = "AutoSG2PL"


class Severity(str, Enum):
    """Notification severities, ordered by urgency."""

    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def log_level(self) -> int:
        return {
            Severity.INFO: logging.INFO,
            Severity.WARNING: logging.WARNING,
            Severity.ERROR: logging.ERROR,
            Severity.CRITICAL: logging.CRITICAL,
        }[self]


class NotificationSink(Protocol):
    """Destination for warning and error events."""

    def send(self, severity: Severity, message: str) -> None: ...


class LoggingNotificationSink:
    """Sink that only writes notifications to the log.

    Used when no SNS topic is configured.
    """

    def send(self, severity: Severity, message: str) -> None:
        logger.log(severity.log_level, message, extra={"notification": True})


class SnsNotificationSink:
    """Publishes notifications to an SNS topic."""

    def __init__(self, clients: AwsClients, topic_arn: str, region: str | None = None) -> None:
        """Initialize the sink.

        Args:
            clients: AWS client factory.
            topic_arn: Destination topic.
            region: Topic region; taken from the ARN when omitted.
        """
        self._clients = clients
        self._topic_arn = topic_arn
        self._region = region or topic_arn.split(":")[3]

    @property
    def topic_arn(self) -> str:
        return self._topic_arn

    def send(self, severity: Severity, message: str) -> None:
        first_line = message.splitlines()[0] if message else ""
        subject = f"{SUBJECT_PREFIX} {severity.value}: {first_line}"[:MAX_SUBJECT_LENGTH]
        try:
            self._clients.sns(self._region).publish(
                TopicArn=self._topic_arn,
                Subject=subject,
                Message=message,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(
                "Failed to publish notification",
                extra={
                    "topic_arn": self._topic_arn,
                    "severity": severity.value,
                    "error": str(e),
                },
            )
            return
        logger.log(
            severity.log_level,
            "Notification sent",
            extra={"topic_arn": self._topic_arn, "severity": severity.value},
        )


def safe_send(sink: NotificationSink, severity: Severity, message: str) -> None:
    """Send through any sink without letting its failure propagate."""
    try:
        sink.send(severity, message)
    except Exception as e:
        logger.error(
            "Notification sink failed",
            extra={"severity": severity.value, "error": str(e), "error_type": type(e).__name__},
        )


async def send_in_executor(sink: NotificationSink, severity: Severity, message: str) -> None:
    """Run safe_send in the default executor so a slow sink never blocks the loop."""
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, safe_send, sink, severity, message)
