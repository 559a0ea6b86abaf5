"""Prefix list state reader and version-guarded writer.

The read is made logically atomic by fetching the list metadata first and
then asking for the entries *at that version* (TargetVersion). A concurrent
modification between the two calls cannot leak newer entries into a snapshot
labelled with an older version.

The write is a compare-and-swap: ModifyManagedPrefixList carries the version
the diff was computed against, and the provider rejects it if the list has
moved on. Rejections surface as VersionConflictError.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping

from botocore.exceptions import BotoCoreError, ClientError

from .aws import AwsClients
from .config import MAX_ENTRY_DESCRIPTION_LENGTH
from .errors import ResourceNotFoundError, VersionConflictError, translate_error
from .models import AddressFamily, ListStateSnapshot, canonical_cidr

logger = logging.getLogger(__name__)

# Lifecycle states in which the list accepts a modification
MODIFIABLE_STATES = frozenset({"create-complete", "modify-complete", "restore-complete"})

# Lifecycle states reported while another modification is being applied
IN_PROGRESS_STATES = frozenset({"create-in-progress", "modify-in-progress", "restore-in-progress"})


class PrefixListReader:
    """Reads a prefix list's entries together with their version."""

    def __init__(self, clients: AwsClients) -> None:
        self._clients = clients

    def read(self, prefix_list_id: str, region: str) -> ListStateSnapshot:
        """Read the entries, version and capacity of a prefix list.

        Args:
            prefix_list_id: The prefix list to read.
            region: Region the prefix list lives in.

        Returns:
            Snapshot whose entries correspond exactly to its version.

        Raises:
            ResourceNotFoundError: If the list was deleted.
            TransientError: On throttling or provider outage.
            PermanentError: On any other provider failure.
        """
        ec2 = self._clients.ec2(region)

        try:
            response = ec2.describe_managed_prefix_lists(PrefixListIds=[prefix_list_id])
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, "DescribeManagedPrefixLists") from e

        prefix_lists = response.get("PrefixLists", [])
        if not prefix_lists:
            raise ResourceNotFoundError(
                f"Prefix list {prefix_list_id} not found in {region}",
                code="InvalidPrefixListID.NotFound",
                operation="DescribeManagedPrefixLists",
            )

        metadata = prefix_lists[0]
        state = str(metadata.get("State", ""))
        if state.startswith("delete"):
            raise ResourceNotFoundError(
                f"Prefix list {prefix_list_id} is being deleted (state {state})",
                code="InvalidPrefixListID.NotFound",
                operation="DescribeManagedPrefixLists",
            )

        version = int(metadata["Version"])
        entries: dict[str, str] = {}

        try:
            paginator = ec2.get_paginator("get_managed_prefix_list_entries")
            pages = paginator.paginate(PrefixListId=prefix_list_id, TargetVersion=version)
            for page in pages:
                for entry in page.get("Entries", []):
                    entries[canonical_cidr(entry["Cidr"])] = entry.get("Description", "")
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, "GetManagedPrefixListEntries") from e

        try:
            family = AddressFamily(metadata.get("AddressFamily", AddressFamily.IPV4.value))
        except ValueError:
            family = AddressFamily.IPV4

        snapshot = ListStateSnapshot(
            prefix_list_id=prefix_list_id,
            version=version,
            max_entries=int(metadata.get("MaxEntries", 0)),
            entries=entries,
            address_family=family,
            state=state,
        )

        logger.debug(
            "Read prefix list state",
            extra={
                "prefix_list_id": prefix_list_id,
                "region": region,
                "version": snapshot.version,
                "entries": snapshot.size,
                "max_entries": snapshot.max_entries,
                "state": snapshot.state,
            },
        )
        return snapshot


def entry_description(prefix: str, owner: str | None) -> str:
    """Build an entry description naming the interface an address came from."""
    description = f"{prefix} {owner}" if owner else prefix
    return description[:MAX_ENTRY_DESCRIPTION_LENGTH]


class PrefixListWriter:
    """Applies an add/remove diff to a prefix list with a version guard."""

    def __init__(self, clients: AwsClients) -> None:
        self._clients = clients

    def apply(
        self,
        snapshot: ListStateSnapshot,
        region: str,
        add: Mapping[str, str],
        remove: Iterable[str],
    ) -> int:
        """Issue one ModifyManagedPrefixList call guarded by the snapshot version.

        Args:
            snapshot: The state the diff was computed against.
            region: Region the prefix list lives in.
            add: CIDRs to add mapped to their entry descriptions.
            remove: CIDRs to remove.

        Returns:
            The version reported by the provider after the call.

        Raises:
            VersionConflictError: If the list moved past ``snapshot.version``
                or is busy applying another modification.
            ResourceNotFoundError: If the list was deleted.
            TransientError: On throttling or provider outage.
            PermanentError: On any other provider failure.
        """
        if snapshot.state in IN_PROGRESS_STATES:
            raise VersionConflictError(
                f"Prefix list {snapshot.prefix_list_id} is busy (state {snapshot.state})",
                code="IncorrectState",
                operation="ModifyManagedPrefixList",
            )

        ec2 = self._clients.ec2(region)
        request = {
            "PrefixListId": snapshot.prefix_list_id,
            "CurrentVersion": snapshot.version,
            "AddEntries": [
                {"Cidr": cidr, "Description": description}
                for cidr, description in sorted(add.items())
            ],
            "RemoveEntries": [{"Cidr": cidr} for cidr in sorted(remove)],
            "ClientToken": str(uuid.uuid4()),
        }

        try:
            response = ec2.modify_managed_prefix_list(**request)
        except (ClientError, BotoCoreError) as e:
            raise translate_error(e, "ModifyManagedPrefixList") from e

        new_version = int(response.get("PrefixList", {}).get("Version", snapshot.version + 1))
        logger.info(
            "Modified prefix list",
            extra={
                "prefix_list_id": snapshot.prefix_list_id,
                "region": region,
                "from_version": snapshot.version,
                "to_version": new_version,
                "added": len(request["AddEntries"]),
                "removed": len(request["RemoveEntries"]),
            },
        )
        return new_version
