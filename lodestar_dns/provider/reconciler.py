"""
Change reconciler module for Lodestar-DNS.

This module turns a set of Changes into the ordered sequence of record
adapter calls that brings the backend to the desired state.
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from lodestar_dns.endpoint.domain_filter import DomainFilter
from lodestar_dns.models.models import Changes, Endpoint
from lodestar_dns.provider.errors import LodestarError, SoftError
from lodestar_dns.provider.provider import RecordAdapter

ACTION_CREATE = "CREATE"
ACTION_DELETE = "DELETE"


class ChangeReconciler:
    """
    Applies Changes through a RecordAdapter.

    Updates are applied as delete-old then create-new, since the adapters
    have no in-place update. No state is kept between apply_changes() calls.
    """

    def __init__(
        self,
        adapter: RecordAdapter,
        domain_filter: Optional[DomainFilter] = None,
        dry_run: bool = False,
    ):
        """
        Initialize a ChangeReconciler.

        Args:
            adapter: Backend record adapter
            domain_filter: Records outside this filter are skipped
            dry_run: Log what would be done instead of doing it
        """
        self.adapter = adapter
        self.domain_filter = domain_filter or DomainFilter()
        self.dry_run = dry_run
        self.logger = logging.getLogger("lodestar-dns.reconciler")

    async def apply_changes(self, changes: Changes) -> None:
        """
        Applies the specified changes.

        Order: deletes, then deletes of replaced records, then creates, then
        the new state of updated records.

        Args:
            changes: Changes to apply

        Raises:
            SoftError: After everything else was applied, if some records
                could not be represented by the backend
            LodestarError: On the first hard error; the remaining changes
                are not applied
        """
        soft_errors: List[str] = []

        for endpoint in changes.delete:
            await self._apply(ACTION_DELETE, endpoint, soft_errors)

        update_new = self._merge_updates(changes.update_new)

        for old in changes.update_old:
            candidates = update_new.get(old.key, [])
            unchanged = next(
                (new for new in candidates if self._is_unchanged(old, new)), None
            )
            if unchanged is not None:
                self.logger.debug(f"Skipping unchanged update of {old.id}")
                candidates.remove(unchanged)
                continue
            empty = next((new for new in candidates if not new.targets), None)
            if empty is not None:
                self.logger.info(f"Keeping {old.id}: its new state has no targets")
                candidates.remove(empty)
                continue
            if not candidates:
                self.logger.warning(
                    f"Update of {old.id} has no matching new record, deleting the old one"
                )
            await self._apply(ACTION_DELETE, old, soft_errors)

        for endpoint in changes.create:
            await self._apply(ACTION_CREATE, endpoint, soft_errors)

        for endpoints in update_new.values():
            for endpoint in endpoints:
                await self._apply(ACTION_CREATE, endpoint, soft_errors)

        if soft_errors:
            raise SoftError(
                f"{len(soft_errors)} record(s) could not be applied: "
                + "; ".join(soft_errors),
                soft_errors,
            )

    def _merge_updates(
        self, update_new: List[Endpoint]
    ) -> Dict[Tuple[str, str], List[Endpoint]]:
        """
        Index the new side of updates by entry key.

        Grouping adapters get one record per key holding the sorted union of
        all targets. The caller's endpoints are left untouched.

        Args:
            update_new: New state of updated records

        Returns:
            Dict[Tuple[str, str], List[Endpoint]]: Records per entry key
        """
        merged: Dict[Tuple[str, str], List[Endpoint]] = {}
        for endpoint in update_new:
            group = merged.setdefault(endpoint.key, [])
            if not self.adapter.groups_targets:
                group.append(endpoint)
                continue

            targets = set(endpoint.targets)
            if group:
                targets.update(group[0].targets)
            group[:] = [replace(endpoint, targets=sorted(targets))]
        return merged

    def _is_unchanged(self, old: Endpoint, new: Endpoint) -> bool:
        # An unset TTL accepts whatever the backend holds
        if new.ttl_configured and old.record_ttl != new.record_ttl:
            return False
        if self.adapter.groups_targets:
            return set(old.targets) == set(new.targets)
        # Single target backends only see the first target
        return bool(old.targets and new.targets) and old.targets[0] == new.targets[0]

    async def _apply(
        self, action: str, endpoint: Endpoint, soft_errors: List[str]
    ) -> None:
        """
        Apply one record, one adapter call per target.

        Args:
            action: ACTION_CREATE or ACTION_DELETE
            endpoint: Record to apply
            soft_errors: Collects messages for records the backend cannot hold
        """
        if not self.domain_filter.match(endpoint.dnsname):
            self.logger.debug(
                f"Skipping {action} {endpoint.dnsname} that does not match domain filter"
            )
            return

        supported = self.adapter.supported_record_types
        if supported and endpoint.record_type not in supported:
            self.logger.warning(
                f"Skipping unsupported endpoint {endpoint.dnsname} "
                f"{endpoint.record_type} {endpoint.targets}"
            )
            return

        if not endpoint.targets:
            self.logger.info(
                f"Skipping {action} {endpoint.dnsname} {endpoint.record_type}: missing targets"
            )
            return

        if "*" in endpoint.dnsname and not self.adapter.supports_wildcards:
            self._soft_error(
                soft_errors,
                f"UNSUPPORTED: {endpoint.dnsname}: wildcard DNS names are not supported",
            )
            return

        if (
            endpoint.record_type in self.adapter.single_target_types
            and len(endpoint.targets) > 1
        ):
            self._soft_error(
                soft_errors,
                f"UNSUPPORTED: {endpoint.dnsname}: {endpoint.record_type} records "
                f"cannot have multiple targets",
            )
            return

        first_error: Optional[LodestarError] = None
        for target in endpoint.targets:
            if self.dry_run:
                self.logger.info(
                    f"DRY RUN: {action} {endpoint.dnsname} IN {endpoint.record_type} -> {target}"
                )
                continue

            self.logger.info(
                f"{action} {endpoint.dnsname} IN {endpoint.record_type} -> {target}"
            )
            try:
                if action == ACTION_CREATE:
                    await self.adapter.create_target(endpoint, target)
                else:
                    await self.adapter.delete_target(endpoint, target)
            except LodestarError as e:
                self.logger.error(
                    f"Failed to {action.lower()} {endpoint.dnsname} IN "
                    f"{endpoint.record_type} -> {target}: {e}"
                )
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error

    def _soft_error(self, soft_errors: List[str], message: str) -> None:
        self.logger.warning(message)
        soft_errors.append(message)
