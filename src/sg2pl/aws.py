"""Regional boto3 client factory.

Bindings can point a security group in one region at a prefix list in
another, so clients are created per (service, region) and reused for the
lifetime of one invocation.

botocore's own retry layer is kept small: the reconciler owns the attempt
budget, and stacking two full retry loops would blow through a Lambda time
budget on a throttled account.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

import boto3
from botocore.config import Config as BotoConfig

logger = logging.getLogger(__name__)

SDK_MAX_ATTEMPTS = 2
SDK_CONNECT_TIMEOUT_SECONDS = 5
SDK_READ_TIMEOUT_SECONDS = 10


class AwsClients:
    """Thread-safe cache of boto3 clients keyed by service and region."""

    def __init__(self, session: Any | None = None) -> None:
        """Initialize the factory.

        Args:
            session: Optional boto3 session. A new default session is created
                when omitted.
        """
        self._session = session or boto3.session.Session()
        self._clients: dict[tuple[str, str], Any] = {}
        self._lock = threading.Lock()
        self._config = BotoConfig(
            retries={"max_attempts": SDK_MAX_ATTEMPTS, "mode": "standard"},
            connect_timeout=SDK_CONNECT_TIMEOUT_SECONDS,
            read_timeout=SDK_READ_TIMEOUT_SECONDS,
        )

    def client(self, service: str, region: str) -> Any:
        """Get (or create) a client for a service in a region."""
        key = (service, region)
        with self._lock:
            client = self._clients.get(key)
            if client is None:
                logger.debug("Creating AWS client", extra={"service": service, "region": region})
                client = self._session.client(service, region_name=region, config=self._config)
                self._clients[key] = client
            return client

    def ec2(self, region: str) -> Any:
        return self.client("ec2", region)

    def service_quotas(self, region: str) -> Any:
        return self.client("service-quotas", region)

    def ssm(self, region: str) -> Any:
        return self.client("ssm", region)

    def sns(self, region: str) -> Any:
        return self.client("sns", region)
