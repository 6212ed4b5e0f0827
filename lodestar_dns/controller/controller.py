"""
Controller module for Lodestar-DNS.

This module is responsible for coordinating between the source and provider
components to ensure that the desired state is maintained.
"""

import asyncio
import logging

from lodestar_dns.controller.plan import POLICY_SYNC, Plan
from lodestar_dns.provider.errors import SoftError


class Controller:
    """
    Controller that coordinates between the source and provider components.
    """

    def __init__(self, source, provider, interval: int = 60, policy: str = POLICY_SYNC):
        """
        Initialize a Controller.

        Args:
            source: Source component
            provider: Provider component
            interval: Reconciliation interval in seconds
            policy: Synchronization policy passed to the Plan
        """
        self.source = source
        self.provider = provider
        self.interval = interval
        self.policy = policy
        self.logger = logging.getLogger("lodestar-dns.controller")

    async def run_reconciliation_loop(self) -> None:
        """
        Runs the controller's reconciliation loop at the specified interval.
        """
        self.logger.debug(
            f"Reconciliation loop starting with interval {self.interval} seconds"
        )

        while True:
            try:
                await self.run_once()
            except Exception as e:
                self.logger.debug(
                    f"Reconciliation failed, retrying in {self.interval} seconds: {e}"
                )

            await asyncio.sleep(self.interval)

    async def run_once(self) -> None:
        """
        Performs a single reconciliation run.

        Soft errors are logged; any other error is logged and re-raised.
        """
        try:
            domain_filter = self.provider.get_domain_filter()
            desired_endpoints = [
                endpoint
                for endpoint in self.provider.adjust_endpoints(await self.source.endpoints())
                if domain_filter.match(endpoint.dnsname)
            ]
            current_endpoints = await self.provider.records()

            changes = Plan(
                current_endpoints, desired_endpoints, policy=self.policy
            ).calculate_changes()

            log_level = logging.INFO if changes.has_changes() else logging.DEBUG
            self.logger.log(
                log_level,
                f"Running reconciliation: Found {len(desired_endpoints)} desired and "
                f"{len(current_endpoints)} current endpoints.",
            )

            if not changes.has_changes():
                self.logger.debug("No changes to apply")
                return

            self.logger.info(
                f"Applying changes: {len(changes.create)} creates, "
                f"{len(changes.update_old)} updates, {len(changes.delete)} deletes"
            )
            await self.provider.apply_changes(changes)
        except SoftError as e:
            self.logger.warning(f"Reconciliation finished with soft errors: {e}")
        except Exception as e:
            self.logger.error(f"Error in reconciliation: {e}", exc_info=True)
            raise
