"""Desired-state reader: private addresses attached to a security group.

An interface filter on a deleted security group silently returns nothing,
which would drain the prefix list on the next sync. The group's existence is
therefore confirmed with DescribeSecurityGroups before interfaces are listed.
"""

from __future__ import annotations

import logging

from botocore.exceptions import BotoCoreError, ClientError

from .aws import AwsClients
from .errors import ResourceNotFoundError, translate_error
from .models import NetworkStateSnapshot, host_prefix

logger = logging.getLogger(__name__)


class NetworkStateReader:
    """Reads the private addresses of every interface in a security group."""

    def __init__(self, clients: AwsClients) -> None:
        self._clients = clients

    def read(self, security_group_id: str, region: str) -> NetworkStateSnapshot:
        """Take a point-in-time snapshot of a security group's addresses.

        Args:
            security_group_id: The security group to read.
            region: Region the security group lives in.

        Returns:
            Snapshot with IPv4 and IPv6 single-host prefixes.

        Raises:
            ResourceNotFoundError: If the security group no longer exists.
            TransientError: On throttling or provider outage.
            PermanentError: On any other provider failure.
        """
        ec2 = self._clients.ec2(region)

        try:
            response = ec2.describe_security_groups(GroupIds=[security_group_id])
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, "DescribeSecurityGroups") from e

        if not response.get("SecurityGroups"):
            raise ResourceNotFoundError(
                f"Security group {security_group_id} not found in {region}",
                code="InvalidGroup.NotFound",
                operation="DescribeSecurityGroups",
            )

        ipv4: dict[str, str] = {}
        ipv6: dict[str, str] = {}
        interface_count = 0

        try:
            paginator = ec2.get_paginator("describe_network_interfaces")
            pages = paginator.paginate(
                Filters=[{"Name": "group-id", "Values": [security_group_id]}]
            )
            for page in pages:
                for interface in page.get("NetworkInterfaces", []):
                    interface_count += 1
                    eni_id = interface.get("NetworkInterfaceId", "")
                    for private in interface.get("PrivateIpAddresses", []):
                        address = private.get("PrivateIpAddress")
                        if address:
                            ipv4.setdefault(host_prefix(address), eni_id)
                    # Some responses omit the list and only carry the primary address
                    primary = interface.get("PrivateIpAddress")
                    if primary:
                        ipv4.setdefault(host_prefix(primary), eni_id)
                    for v6 in interface.get("Ipv6Addresses", []):
                        address = v6.get("Ipv6Address")
                        if address:
                            ipv6.setdefault(host_prefix(address), eni_id)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, "DescribeNetworkInterfaces") from e

        logger.debug(
            "Read network state",
            extra={
                "security_group_id": security_group_id,
                "region": region,
                "interfaces": interface_count,
                "ipv4_addresses": len(ipv4),
                "ipv6_addresses": len(ipv6),
            },
        )

        return NetworkStateSnapshot(
            security_group_id=security_group_id,
            ipv4=ipv4,
            ipv6=ipv6,
            interface_count=interface_count,
        )
