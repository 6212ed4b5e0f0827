"""
Data models for Lodestar-DNS.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple

from lodestar_dns.endpoint.domain_filter import normalize_domain

RECORD_TYPE_A = "A"
RECORD_TYPE_AAAA = "AAAA"
RECORD_TYPE_CNAME = "CNAME"


@dataclass
class Endpoint:
    """
    Represents a DNS endpoint (record) managed by Lodestar-DNS.

    An endpoint without targets is a no-op sentinel: applying it does nothing,
    it never means "delete".
    """

    dnsname: str
    targets: List[str]
    record_type: str
    record_ttl: Optional[int] = None

    @property
    def id(self) -> str:
        """
        Generate a human readable identifier for this endpoint.

        Returns:
            str: Identifier in the form name:type
        """
        return f"{self.dnsname}:{self.record_type}"

    @property
    def key(self) -> Tuple[str, str]:
        """
        Entry key used to correlate update pairs and to group targets.

        Returns:
            Tuple[str, str]: Normalized DNS name and record type
        """
        return normalize_domain(self.dnsname), self.record_type

    @property
    def ttl_configured(self) -> bool:
        """Whether a TTL was set; an unset TTL means the backend default."""
        return self.record_ttl is not None and self.record_ttl > 0

    def __str__(self) -> str:
        ttl = self.record_ttl if self.ttl_configured else "default"
        return f"{self.dnsname} {ttl} IN {self.record_type} {' '.join(self.targets)}"


@dataclass
class Changes:
    """
    Represents changes to be applied to DNS records.

    update_old and update_new are paired by Endpoint.key, not by position.
    """

    create: List[Endpoint] = field(default_factory=list)
    update_old: List[Endpoint] = field(default_factory=list)
    update_new: List[Endpoint] = field(default_factory=list)
    delete: List[Endpoint] = field(default_factory=list)

    def has_changes(self) -> bool:
        """
        Check if there are any changes to be applied.

        Returns:
            bool: True if there are changes, False otherwise
        """
        return bool(self.create or self.update_old or self.update_new or self.delete)
