"""
Provider interfaces for Lodestar-DNS.

A Provider is the unit an external planner synchronizes against. A
RecordAdapter translates endpoints to one backend's native records and
declares what the backend can represent.
"""

from abc import ABC, abstractmethod
from typing import FrozenSet, List

from lodestar_dns.endpoint.domain_filter import DomainFilter
from lodestar_dns.models.models import Changes, Endpoint


class Provider(ABC):
    """Abstract base class for DNS providers."""

    @abstractmethod
    async def records(self) -> List[Endpoint]:
        """
        Returns the current records of the backend inside the domain filter.

        Returns:
            List[Endpoint]: Observed endpoints
        """

    @abstractmethod
    async def apply_changes(self, changes: Changes) -> None:
        """
        Applies the specified changes to the backend.

        Args:
            changes: Changes to apply
        """

    def adjust_endpoints(self, endpoints: List[Endpoint]) -> List[Endpoint]:
        """Canonicalize desired endpoints before planning. Identity by default."""
        return endpoints

    def get_domain_filter(self) -> DomainFilter:
        return DomainFilter()


class RecordAdapter(ABC):
    """
    Backend-specific record operations.

    The capability attributes are read by the ChangeReconciler:
    groups_targets means one name+type group is one logical record whose
    targets are compared as a set; otherwise only the first target counts.
    """

    groups_targets: bool = False
    supports_wildcards: bool = True
    supported_record_types: FrozenSet[str] = frozenset()
    single_target_types: FrozenSet[str] = frozenset()

    @abstractmethod
    async def list_records(self, record_type: str) -> List[Endpoint]:
        """List all records of one type."""

    @abstractmethod
    async def create_target(self, endpoint: Endpoint, target: str) -> None:
        """Create one target of an endpoint."""

    @abstractmethod
    async def delete_target(self, endpoint: Endpoint, target: str) -> None:
        """Delete one target of an endpoint."""
