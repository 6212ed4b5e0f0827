"""Shared fakes for the Lodestar-DNS tests."""

import json
from typing import Dict, List, Tuple

import httpx
import pytest

from lodestar_dns.models.models import Endpoint
from lodestar_dns.provider.errors import APIError
from lodestar_dns.provider.provider import RecordAdapter

SERVER = "http://pi.hole"
CONFIG_PREFIX = "/api/config/dns/"


def error_response(status: int, key: str, message: str, hint: str = "") -> httpx.Response:
    return httpx.Response(
        status,
        json={"error": {"key": key, "message": message, "hint": hint}, "took": 0.0001},
    )


class FakePiholeServer:
    """In-memory Pi-hole v6 local DNS config API."""

    def __init__(self, password: str = "secret", hosts=None, cname_records=None):
        self.password = password
        self.collections: Dict[str, List[str]] = {
            "hosts": list(hosts or []),
            "cnameRecords": list(cname_records or []),
        }
        self.sessions = set()
        self.issued = 0
        self.requests: List[httpx.Request] = []

    @property
    def hosts(self) -> List[str]:
        return self.collections["hosts"]

    @property
    def cname_records(self) -> List[str]:
        return self.collections["cnameRecords"]

    @property
    def mutations(self) -> List[Tuple[str, str]]:
        """(method, entry) of every PUT and DELETE, in order."""
        return [
            (request.method, request.url.path.rsplit("/", 1)[1])
            for request in self.requests
            if request.method in ("PUT", "DELETE")
        ]

    def auth_requests(self, method: str) -> List[httpx.Request]:
        return [
            r for r in self.requests if r.url.path == "/api/auth" and r.method == method
        ]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def expire_sessions(self) -> None:
        self.sessions.clear()

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        sid = request.headers.get("X-FTL-SID", "")

        if path == "/api/auth":
            if request.method == "POST":
                body = json.loads(request.content or b"{}")
                if body.get("password") != self.password:
                    return error_response(401, "unauthorized", "Unauthorized")
                self.issued += 1
                new_sid = f"sid-{self.issued}"
                self.sessions.add(new_sid)
                return httpx.Response(
                    200,
                    json={
                        "session": {"valid": True, "sid": new_sid, "validity": 300},
                        "took": 0.001,
                    },
                )
            return httpx.Response(
                200, json={"session": {"valid": sid in self.sessions}, "took": 0.0001}
            )

        if self.password and sid not in self.sessions:
            return error_response(401, "unauthorized", "Unauthorized")

        if not path.startswith(CONFIG_PREFIX):
            return error_response(404, "not_found", "Not found")
        collection, _, entry = path[len(CONFIG_PREFIX):].partition("/")
        if collection not in self.collections:
            return error_response(404, "not_found", "Not found")
        items = self.collections[collection]

        if request.method == "GET" and not entry:
            return httpx.Response(
                200, json={"config": {"dns": {collection: list(items)}}, "took": 0.002}
            )
        if request.method == "PUT":
            if entry in items:
                return error_response(
                    400, "bad_request", "Item already present", "Uniqueness of items is enforced"
                )
            items.append(entry)
            return httpx.Response(201, json={"took": 0.003})
        if request.method == "DELETE":
            if entry not in items:
                return error_response(404, "not_found", "Item not found")
            items.remove(entry)
            return httpx.Response(204)
        return error_response(405, "method_not_allowed", "Method not allowed")


class RecordingAdapter(RecordAdapter):
    """Record adapter that records calls instead of talking to a backend."""

    def __init__(self, groups_targets: bool = True, supports_wildcards: bool = False, fail_on=()):
        self.groups_targets = groups_targets
        self.supports_wildcards = supports_wildcards
        self.supported_record_types = frozenset({"A", "AAAA", "CNAME"})
        self.single_target_types = frozenset({"CNAME"})
        self.fail_on = set(fail_on)
        self.calls: List[Tuple[str, str, str, str]] = []

    async def list_records(self, record_type: str) -> List[Endpoint]:
        return []

    async def create_target(self, endpoint: Endpoint, target: str) -> None:
        self._record("create", endpoint, target)

    async def delete_target(self, endpoint: Endpoint, target: str) -> None:
        self._record("delete", endpoint, target)

    def _record(self, action: str, endpoint: Endpoint, target: str) -> None:
        self.calls.append((action, endpoint.dnsname, endpoint.record_type, target))
        if target in self.fail_on:
            raise APIError(500, "internal_error", f"cannot {action} {target}")


@pytest.fixture
def pihole():
    return FakePiholeServer(
        hosts=[
            "192.168.1.10 nas.home.example.org",
            "192.168.1.11 nas.home.example.org",
            "fd00::10 nas.home.example.org",
            "10.0.0.1 router.other.net",
        ],
        cname_records=[
            "media.home.example.org,nas.home.example.org",
            "git.home.example.org,nas.home.example.org,300",
        ],
    )


@pytest.fixture
def make_adapter():
    return RecordingAdapter
