"""
Static source module for Lodestar-DNS.

Desired endpoints declared in the configuration file.
"""

import logging
from typing import List

from lodestar_dns.config.config import EndpointConfig
from lodestar_dns.models.models import Endpoint


class StaticSource:
    """
    Source that always returns the same desired endpoints.
    """

    def __init__(self, endpoints: List[EndpointConfig]):
        self.declared = list(endpoints)
        self.logger = logging.getLogger("lodestar-dns.source.static")

    async def endpoints(self) -> List[Endpoint]:
        """
        Returns fresh Endpoint objects for the declared records.

        Returns:
            List[Endpoint]: Desired endpoints
        """
        endpoints = [
            Endpoint(
                dnsname=declared.name,
                targets=list(declared.targets),
                record_type=declared.type.upper(),
                record_ttl=declared.ttl,
            )
            for declared in self.declared
        ]
        self.logger.debug(f"Static source provides {len(endpoints)} endpoints")
        return endpoints
