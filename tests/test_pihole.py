"""Tests for the Pi-hole record adapter and provider."""

import logging

import pytest

from conftest import SERVER, FakePiholeServer, error_response
from lodestar_dns.config.config import Config
from lodestar_dns.endpoint.domain_filter import DomainFilter
from lodestar_dns.models.models import Changes, Endpoint
from lodestar_dns.provider.errors import (
    APIError,
    ConfigurationError,
    SoftError,
    UnsupportedRecordTypeError,
)
from lodestar_dns.provider.pihole import PiholeProvider, PiholeRecordAdapter
from lodestar_dns.provider.session import SessionClient

HOME = DomainFilter(["home.example.org"])


async def make_provider(server, domain_filter=HOME, dry_run=False):
    client = await SessionClient.create(SERVER, "secret", transport=server.transport())
    return PiholeProvider(client, domain_filter, dry_run=dry_run)


@pytest.mark.parametrize(
    "record_type,path",
    [
        ("A", "/api/config/dns/hosts"),
        ("AAAA", "/api/config/dns/hosts"),
        ("CNAME", "/api/config/dns/cnameRecords"),
    ],
)
def test_path_for_record_type(record_type, path):
    assert PiholeRecordAdapter.path_for_record_type(record_type) == path


@pytest.mark.parametrize("record_type", ["TXT", "MX", "SRV", ""])
def test_unsupported_record_type(record_type):
    with pytest.raises(UnsupportedRecordTypeError, match="unsupported record type"):
        PiholeRecordAdapter.path_for_record_type(record_type)


@pytest.mark.parametrize(
    "endpoint,target,path",
    [
        (
            Endpoint("nas.home.example.org", ["192.168.1.1"], "A"),
            "192.168.1.1",
            "/api/config/dns/hosts/192.168.1.1%20nas.home.example.org",
        ),
        (
            Endpoint("nas.home.example.org", ["fd00::1"], "AAAA"),
            "fd00::1",
            "/api/config/dns/hosts/fd00::1%20nas.home.example.org",
        ),
        (
            Endpoint("media.home.example.org", ["nas.home.example.org"], "CNAME"),
            "nas.home.example.org",
            "/api/config/dns/cnameRecords/media.home.example.org%2Cnas.home.example.org",
        ),
        (
            Endpoint("media.home.example.org", ["nas.home.example.org"], "CNAME", 300),
            "nas.home.example.org",
            "/api/config/dns/cnameRecords/media.home.example.org%2Cnas.home.example.org%2C300",
        ),
        (
            Endpoint("media.home.example.org", ["nas.home.example.org"], "CNAME", 0),
            "nas.home.example.org",
            "/api/config/dns/cnameRecords/media.home.example.org%2Cnas.home.example.org",
        ),
    ],
)
def test_path_for_target(endpoint, target, path):
    assert PiholeRecordAdapter(client=None).path_for_target(endpoint, target) == path


@pytest.mark.asyncio
async def test_list_records_merges_targets_per_name(pihole):
    async with await SessionClient.create(SERVER, "secret", transport=pihole.transport()) as client:
        adapter = PiholeRecordAdapter(client)
        a_records = await adapter.list_records("A")
        aaaa_records = await adapter.list_records("AAAA")
        cname_records = await adapter.list_records("CNAME")

    assert a_records == [
        Endpoint("nas.home.example.org", ["192.168.1.10", "192.168.1.11"], "A"),
        Endpoint("router.other.net", ["10.0.0.1"], "A"),
    ]
    assert aaaa_records == [Endpoint("nas.home.example.org", ["fd00::10"], "AAAA")]
    assert cname_records == [
        Endpoint("media.home.example.org", ["nas.home.example.org"], "CNAME"),
        Endpoint("git.home.example.org", ["nas.home.example.org"], "CNAME", 300),
    ]


@pytest.mark.asyncio
async def test_list_records_skips_malformed_entries(caplog):
    server = FakePiholeServer(
        hosts=["bogus", "not-an-ip broken.example.org", "10.0.0.5 ok.example.org"],
        cname_records=["lonely", "x.example.org,y.example.org,soon"],
    )
    caplog.set_level(logging.WARNING, logger="lodestar-dns.provider.pihole")

    async with await SessionClient.create(SERVER, "secret", transport=server.transport()) as client:
        adapter = PiholeRecordAdapter(client)
        a_records = await adapter.list_records("A")
        aaaa_records = await adapter.list_records("AAAA")
        cname_records = await adapter.list_records("CNAME")

    assert a_records == [Endpoint("ok.example.org", ["10.0.0.5"], "A")]
    assert aaaa_records == []
    assert cname_records == [Endpoint("x.example.org", ["y.example.org"], "CNAME")]
    assert "Skipping record bogus" in caplog.text
    assert "Skipping record lonely" in caplog.text
    assert "Failed to parse TTL value received from Pi-hole 'soon'" in caplog.text


@pytest.mark.asyncio
async def test_records_lists_all_types_inside_filter(pihole):
    provider = await make_provider(pihole)
    try:
        records = await provider.records()
    finally:
        await provider.aclose()

    assert [(ep.dnsname, ep.record_type) for ep in records] == [
        ("nas.home.example.org", "A"),
        ("nas.home.example.org", "AAAA"),
        ("media.home.example.org", "CNAME"),
        ("git.home.example.org", "CNAME"),
    ]


@pytest.mark.asyncio
async def test_records_without_filter_returns_everything(pihole):
    provider = await make_provider(pihole, domain_filter=None)
    try:
        records = await provider.records()
    finally:
        await provider.aclose()

    assert ("router.other.net", "A") in [(ep.dnsname, ep.record_type) for ep in records]
    assert len(records) == 5


class BrokenCnames(FakePiholeServer):
    def handle(self, request):
        if request.url.path.endswith("/cnameRecords"):
            self.requests.append(request)
            return error_response(500, "internal_error", "database locked")
        return super().handle(request)


@pytest.mark.asyncio
async def test_records_fails_when_one_type_fails():
    provider = await make_provider(BrokenCnames(hosts=["10.0.0.1 a.home.example.org"]))
    try:
        with pytest.raises(APIError) as excinfo:
            await provider.records()
    finally:
        await provider.aclose()

    assert excinfo.value.status_code == 500
    assert excinfo.value.message == "database locked"


@pytest.mark.asyncio
async def test_apply_changes_end_to_end(pihole):
    changes = Changes(
        create=[Endpoint("printer.home.example.org", ["192.168.1.20"], "A")],
        update_old=[Endpoint("nas.home.example.org", ["192.168.1.10", "192.168.1.11"], "A")],
        update_new=[Endpoint("nas.home.example.org", ["192.168.1.12", "192.168.1.10"], "A")],
        delete=[Endpoint("media.home.example.org", ["nas.home.example.org"], "CNAME")],
    )
    provider = await make_provider(pihole)
    try:
        await provider.apply_changes(changes)
        records = await provider.records()
    finally:
        await provider.aclose()

    assert pihole.mutations == [
        ("DELETE", "media.home.example.org,nas.home.example.org"),
        ("DELETE", "192.168.1.10 nas.home.example.org"),
        ("DELETE", "192.168.1.11 nas.home.example.org"),
        ("PUT", "192.168.1.20 printer.home.example.org"),
        ("PUT", "192.168.1.10 nas.home.example.org"),
        ("PUT", "192.168.1.12 nas.home.example.org"),
    ]
    assert Endpoint("nas.home.example.org", ["192.168.1.10", "192.168.1.12"], "A") in records
    assert Endpoint("printer.home.example.org", ["192.168.1.20"], "A") in records
    assert "media.home.example.org" not in [ep.dnsname for ep in records]


@pytest.mark.asyncio
async def test_apply_changes_writes_cname_ttl(pihole):
    changes = Changes(
        create=[Endpoint("wiki.home.example.org", ["nas.home.example.org"], "CNAME", 600)]
    )
    provider = await make_provider(pihole)
    try:
        await provider.apply_changes(changes)
    finally:
        await provider.aclose()

    assert "wiki.home.example.org,nas.home.example.org,600" in pihole.cname_records


@pytest.mark.asyncio
async def test_apply_changes_is_idempotent(pihole):
    changes = Changes(
        create=[Endpoint("nas.home.example.org", ["192.168.1.10"], "A")],
        delete=[Endpoint("gone.home.example.org", ["192.168.1.99"], "A")],
    )
    provider = await make_provider(pihole)
    try:
        await provider.apply_changes(changes)
    finally:
        await provider.aclose()

    assert pihole.hosts.count("192.168.1.10 nas.home.example.org") == 1


@pytest.mark.asyncio
async def test_apply_changes_skips_names_outside_filter(pihole):
    changes = Changes(
        create=[Endpoint("evil.other.net", ["10.6.6.6"], "A")],
        delete=[Endpoint("router.other.net", ["10.0.0.1"], "A")],
    )
    provider = await make_provider(pihole)
    try:
        await provider.apply_changes(changes)
    finally:
        await provider.aclose()

    assert pihole.mutations == []
    assert "10.0.0.1 router.other.net" in pihole.hosts


@pytest.mark.asyncio
async def test_apply_changes_survives_expired_session(pihole):
    provider = await make_provider(pihole)
    try:
        pihole.expire_sessions()
        await provider.apply_changes(
            Changes(create=[Endpoint("tv.home.example.org", ["192.168.1.30"], "A")])
        )
    finally:
        await provider.aclose()

    assert "192.168.1.30 tv.home.example.org" in pihole.hosts
    assert len(pihole.auth_requests("POST")) == 2


@pytest.mark.asyncio
async def test_apply_changes_reports_unrepresentable_records(pihole):
    changes = Changes(
        create=[
            Endpoint("*.home.example.org", ["192.168.1.40"], "A"),
            Endpoint("multi.home.example.org", ["a.example.org", "b.example.org"], "CNAME"),
            Endpoint("fine.home.example.org", ["192.168.1.41"], "A"),
        ]
    )
    provider = await make_provider(pihole)
    try:
        with pytest.raises(SoftError) as excinfo:
            await provider.apply_changes(changes)
    finally:
        await provider.aclose()

    assert len(excinfo.value.errors) == 2
    assert pihole.mutations == [("PUT", "192.168.1.41 fine.home.example.org")]


@pytest.mark.asyncio
async def test_dry_run_changes_nothing(pihole, caplog):
    caplog.set_level(logging.INFO, logger="lodestar-dns.reconciler")
    changes = Changes(
        create=[Endpoint("printer.home.example.org", ["192.168.1.20"], "A")],
        delete=[Endpoint("media.home.example.org", ["nas.home.example.org"], "CNAME")],
    )
    provider = await make_provider(pihole, dry_run=True)
    try:
        await provider.apply_changes(changes)
    finally:
        await provider.aclose()

    assert pihole.mutations == []
    assert "DRY RUN: CREATE printer.home.example.org IN A -> 192.168.1.20" in caplog.text
    assert "DRY RUN: DELETE media.home.example.org IN CNAME -> nas.home.example.org" in caplog.text


@pytest.mark.asyncio
async def test_create_requires_server():
    with pytest.raises(ConfigurationError, match="no pihole server found"):
        await PiholeProvider.create(Config())


@pytest.mark.asyncio
async def test_create_rejects_invalid_regex_before_connecting():
    config = Config(pihole_server=SERVER, regex_domain_filter="(")
    with pytest.raises(ConfigurationError, match="invalid regexInclude"):
        await PiholeProvider.create(config)


def test_adjust_endpoints_drops_hosts_ttl():
    provider = PiholeProvider(SessionClient(SERVER))
    desired = [
        Endpoint("nas.home.example.org", ["192.168.1.10"], "A", 300),
        Endpoint("nas.home.example.org", ["fd00::10"], "AAAA", 300),
        Endpoint("git.home.example.org", ["nas.home.example.org"], "CNAME", 300),
    ]

    adjusted = provider.adjust_endpoints(desired)

    assert [ep.record_ttl for ep in adjusted] == [None, None, 300]
    assert desired[0].record_ttl == 300


@pytest.mark.asyncio
async def test_provider_closes_client_on_exit(pihole):
    async with await make_provider(pihole) as provider:
        records = await provider.records()

    assert len(records) == 4
    assert provider.client._http.is_closed
