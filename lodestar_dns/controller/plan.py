"""
Plan module for Lodestar-DNS.

Diffs the desired endpoints against the records observed in the backend and
produces the Changes the provider has to apply. Endpoints are paired by
their entry key (normalized name and record type).
"""

import logging
from typing import Dict, List, Tuple

from lodestar_dns.models.models import Changes, Endpoint
from lodestar_dns.provider.errors import ConfigurationError

POLICY_SYNC = "sync"
POLICY_UPSERT_ONLY = "upsert-only"
POLICY_CREATE_ONLY = "create-only"

POLICIES = (POLICY_SYNC, POLICY_UPSERT_ONLY, POLICY_CREATE_ONLY)


class Plan:
    """
    A single diff between current and desired state under a policy.

    sync creates, updates and deletes; upsert-only never deletes;
    create-only neither updates nor deletes.
    """

    def __init__(
        self, current: List[Endpoint], desired: List[Endpoint], policy: str = POLICY_SYNC
    ):
        """
        Initialize a Plan.

        Args:
            current: Endpoints observed in the backend
            desired: Endpoints that should exist
            policy: One of POLICIES

        Raises:
            ConfigurationError: If the policy is unknown
        """
        if policy not in POLICIES:
            raise ConfigurationError(f"unknown policy: {policy}")

        self.current = current
        self.desired = desired
        self.policy = policy
        self.logger = logging.getLogger("lodestar-dns.plan")

    def calculate_changes(self) -> Changes:
        """
        Calculate the changes needed to reach the desired state.

        Returns:
            Changes: Changes to be applied
        """
        changes = Changes()
        current_by_key: Dict[Tuple[str, str], Endpoint] = {
            endpoint.key: endpoint for endpoint in self.current
        }

        for wanted in self.desired:
            if not wanted.targets:
                # No targets is a no-op, it keeps whatever the backend holds
                self.logger.debug(f"Endpoint {wanted.id} has no targets, leaving it alone")
                continue

            existing = current_by_key.get(wanted.key)
            if existing is None:
                self.logger.info(f"Endpoint {wanted} will be created")
                changes.create.append(wanted)
                continue

            if not self._needs_update(existing, wanted):
                self.logger.debug(f"Endpoint {wanted.id} is up-to-date")
            elif self.policy == POLICY_CREATE_ONLY:
                self.logger.debug(
                    f"Endpoint {wanted.id} differs, left alone under policy {self.policy}"
                )
            else:
                self.logger.info(
                    f"Endpoint {wanted.id} needs update: {existing.targets} -> {wanted.targets}"
                )
                changes.update_old.append(existing)
                changes.update_new.append(wanted)

        if self.policy == POLICY_SYNC:
            changes.delete.extend(self._obsolete())

        return changes

    def _obsolete(self) -> List[Endpoint]:
        """Current endpoints no desired endpoint refers to."""
        wanted_keys = {endpoint.key for endpoint in self.desired}
        obsolete = [ep for ep in self.current if ep.key not in wanted_keys]
        for endpoint in obsolete:
            self.logger.info(f"Endpoint {endpoint.id} is no longer desired")
        return obsolete

    @staticmethod
    def _needs_update(current: Endpoint, desired: Endpoint) -> bool:
        """
        Check if a current endpoint differs from its desired state.

        Args:
            current: Endpoint observed in the backend
            desired: Desired endpoint with the same key

        Returns:
            bool: True if targets differ, or a TTL is desired and differs
        """
        if set(current.targets) != set(desired.targets):
            return True
        # Without a desired TTL the backend default is accepted
        return desired.ttl_configured and current.record_ttl != desired.record_ttl
