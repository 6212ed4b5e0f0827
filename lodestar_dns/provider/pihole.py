"""
Pi-hole provider module for Lodestar-DNS.

This module is responsible for interfacing with the Pi-hole v6 local DNS
configuration API (hosts and CNAME records).
"""

import asyncio
import ipaddress
import logging
import re
from dataclasses import replace
from typing import Dict, List, Optional
from urllib.parse import quote

from lodestar_dns.config.config import Config
from lodestar_dns.endpoint.domain_filter import DomainFilter
from lodestar_dns.models.models import (
    RECORD_TYPE_A,
    RECORD_TYPE_AAAA,
    RECORD_TYPE_CNAME,
    Changes,
    Endpoint,
)
from lodestar_dns.provider.errors import UnsupportedRecordTypeError
from lodestar_dns.provider.provider import Provider, RecordAdapter
from lodestar_dns.provider.reconciler import ChangeReconciler
from lodestar_dns.provider.session import SessionClient

API_CONFIG_DNS = "/api/config/dns"

# Characters left unescaped inside a path segment
PATH_SEGMENT_SAFE = "$&+:=@"

LISTED_RECORD_TYPES = (RECORD_TYPE_A, RECORD_TYPE_AAAA, RECORD_TYPE_CNAME)


def _is_ipv4(address: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(address), ipaddress.IPv4Address)
    except ValueError:
        return False


def _is_ipv6(address: str) -> bool:
    try:
        return isinstance(ipaddress.ip_address(address), ipaddress.IPv6Address)
    except ValueError:
        return False


class PiholeRecordAdapter(RecordAdapter):
    """
    Translates endpoints to Pi-hole config entries.

    Pi-hole stores one entry per target: "<ip> <name>" for A/AAAA and
    "<name>,<target>[,<ttl>]" for CNAME.
    """

    groups_targets = True
    supports_wildcards = False
    supported_record_types = frozenset(LISTED_RECORD_TYPES)
    single_target_types = frozenset({RECORD_TYPE_CNAME})

    def __init__(self, client: SessionClient):
        self.client = client
        self.logger = logging.getLogger("lodestar-dns.provider.pihole")

    @staticmethod
    def path_for_record_type(record_type: str) -> str:
        """
        Returns the config API path holding records of a type.

        Raises:
            UnsupportedRecordTypeError: If Pi-hole cannot hold the type
        """
        if record_type in (RECORD_TYPE_A, RECORD_TYPE_AAAA):
            return f"{API_CONFIG_DNS}/hosts"
        if record_type == RECORD_TYPE_CNAME:
            return f"{API_CONFIG_DNS}/cnameRecords"
        raise UnsupportedRecordTypeError(f"unsupported record type: {record_type}")

    @staticmethod
    def entry_for_target(endpoint: Endpoint, target: str) -> str:
        """
        Builds the config entry for one target of an endpoint.

        Args:
            endpoint: Endpoint
            target: One of the endpoint's targets

        Returns:
            str: Unescaped config entry
        """
        if endpoint.record_type == RECORD_TYPE_CNAME:
            if endpoint.ttl_configured:
                return f"{endpoint.dnsname},{target},{endpoint.record_ttl}"
            return f"{endpoint.dnsname},{target}"
        return f"{target} {endpoint.dnsname}"

    def path_for_target(self, endpoint: Endpoint, target: str) -> str:
        base = self.path_for_record_type(endpoint.record_type)
        entry = quote(self.entry_for_target(endpoint, target), safe=PATH_SEGMENT_SAFE)
        return f"{base}/{entry}"

    async def get_config_value(self, record_type: str) -> List[str]:
        """
        Fetches the raw config entries for a record type.

        Args:
            record_type: A, AAAA or CNAME

        Returns:
            List[str]: Raw entries
        """
        path = self.path_for_record_type(record_type)
        self.logger.debug(f"Listing {record_type} records from {path}")

        body = await self.client.request("GET", path)
        dns = (body.get("config") or {}).get("dns") or {}
        if record_type == RECORD_TYPE_CNAME:
            return list(dns.get("cnameRecords") or [])
        return list(dns.get("hosts") or [])

    async def list_records(self, record_type: str) -> List[Endpoint]:
        """
        Returns the records of one type, targets merged per DNS name.

        Args:
            record_type: A, AAAA or CNAME

        Returns:
            List[Endpoint]: Endpoints in order of first appearance
        """
        entries = await self.get_config_value(record_type)
        endpoints: Dict[str, Endpoint] = {}

        for entry in entries:
            fields = [f for f in re.split(r"[ ,]", entry) if f]
            if len(fields) < 2:
                self.logger.warning(
                    f"Skipping record {entry}: invalid format received from Pi-hole"
                )
                continue

            # A/AAAA entries are "<ip> <name>"
            dnsname, target = fields[1], fields[0]
            ttl: Optional[int] = None
            if record_type == RECORD_TYPE_A:
                # hosts holds both A and AAAA entries
                if not _is_ipv4(target):
                    continue
            elif record_type == RECORD_TYPE_AAAA:
                if not _is_ipv6(target):
                    continue
            elif record_type == RECORD_TYPE_CNAME:
                dnsname, target = fields[0], fields[1]
                if len(fields) == 3:
                    try:
                        ttl = int(fields[2])
                    except ValueError:
                        self.logger.warning(
                            f"Failed to parse TTL value received from Pi-hole '{fields[2]}', "
                            f"using the default TTL"
                        )

            if dnsname in endpoints:
                endpoints[dnsname].targets.append(target)
                if ttl is not None:
                    endpoints[dnsname].record_ttl = ttl
            else:
                endpoints[dnsname] = Endpoint(
                    dnsname=dnsname,
                    targets=[target],
                    record_type=record_type,
                    record_ttl=ttl,
                )

        return list(endpoints.values())

    async def create_target(self, endpoint: Endpoint, target: str) -> None:
        await self.client.request("PUT", self.path_for_target(endpoint, target))

    async def delete_target(self, endpoint: Endpoint, target: str) -> None:
        await self.client.request("DELETE", self.path_for_target(endpoint, target))


class PiholeProvider(Provider):
    """
    Provider that synchronizes records with Pi-hole local DNS.
    """

    def __init__(
        self,
        client: SessionClient,
        domain_filter: Optional[DomainFilter] = None,
        dry_run: bool = False,
    ):
        """
        Initialize a PiholeProvider.

        Args:
            client: Session client bound to the Pi-hole server
            domain_filter: Scope of the names this provider manages
            dry_run: Whether to run in dry-run mode
        """
        self.client = client
        self.adapter = PiholeRecordAdapter(client)
        self.domain_filter = domain_filter or DomainFilter()
        self.dry_run = dry_run
        self.logger = logging.getLogger("lodestar-dns.provider.pihole")

    @classmethod
    async def create(cls, config: Config) -> "PiholeProvider":
        """
        Build a provider from configuration, logging in to Pi-hole.

        Args:
            config: Application configuration

        Returns:
            PiholeProvider: Ready to use provider

        Raises:
            ConfigurationError: If the server or domain filter is invalid
        """
        domain_filter = config.build_domain_filter()
        client = await SessionClient.create(
            config.pihole_server,
            config.pihole_password,
            tls_insecure_skip_verify=config.pihole_tls_insecure_skip_verify,
            timeout=config.request_timeout,
        )
        return cls(client, domain_filter=domain_filter, dry_run=config.dry_run)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def __aenter__(self) -> "PiholeProvider":
        await self.client.__aenter__()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.client.__aexit__(*exc_info)

    def get_domain_filter(self) -> DomainFilter:
        return self.domain_filter

    def adjust_endpoints(self, endpoints: List[Endpoint]) -> List[Endpoint]:
        """
        Drops TTLs Pi-hole cannot store.

        Hosts entries carry no TTL, so a TTL on an A or AAAA endpoint would
        be planned as a change on every pass.

        Args:
            endpoints: Desired endpoints

        Returns:
            List[Endpoint]: Endpoints as Pi-hole can hold them
        """
        adjusted = []
        for endpoint in endpoints:
            if endpoint.record_type != RECORD_TYPE_CNAME and endpoint.record_ttl is not None:
                self.logger.debug(f"Ignoring TTL of {endpoint.id}, Pi-hole hosts entries have none")
                endpoint = replace(endpoint, record_ttl=None)
            adjusted.append(endpoint)
        return adjusted

    async def records(self) -> List[Endpoint]:
        """
        Returns the A, AAAA and CNAME records inside the domain filter.

        The record types are listed concurrently.

        Returns:
            List[Endpoint]: List of endpoints
        """
        tasks = [
            asyncio.ensure_future(self.adapter.list_records(record_type))
            for record_type in LISTED_RECORD_TYPES
        ]
        try:
            results = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        endpoints: List[Endpoint] = []
        for records in results:
            endpoints.extend(records)

        managed = [ep for ep in endpoints if self.domain_filter.match(ep.dnsname)]
        self.logger.debug(
            f"Found {len(endpoints)} records in Pi-hole, {len(managed)} inside the domain filter"
        )
        return managed

    async def apply_changes(self, changes: Changes) -> None:
        """
        Applies the specified changes to Pi-hole.

        Args:
            changes: Changes to apply
        """
        reconciler = ChangeReconciler(self.adapter, self.domain_filter, dry_run=self.dry_run)
        await reconciler.apply_changes(changes)
