from __future__ import annotations

import os
import socket

import httpx
import pytest

os.environ["FEEDGUARD_ENV"] = "test"  # Prevents loading dev/staging/prod profile overlays

PUBLIC_V4 = "93.184.216.34"
PUBLIC_V6 = "2606:2800:220:1:248:1893:25c8:1946"


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    from feedguard.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings():
    from feedguard.config import get_settings

    return get_settings()


@pytest.fixture
def fetch_settings():
    from feedguard.config import FetchSettings

    return FetchSettings()


def make_lookup(table: dict[str, list[str]]):
    """Fake resolver lookup answering from *table*; unknown names fail like NXDOMAIN."""
    calls: list[tuple[str, int]] = []

    async def lookup(host: str, port: int) -> list[str]:
        calls.append((host, port))
        if host not in table:
            raise socket.gaierror(socket.EAI_NONAME, "Name or service not known")
        return list(table[host])

    lookup.calls = calls  # type: ignore[attr-defined]
    return lookup


@pytest.fixture
def dns_table():
    return {
        "example.com": [PUBLIC_V4, PUBLIC_V6],
        "feeds.example.com": [PUBLIC_V4],
        "cdn.example.net": ["151.101.1.69"],
        "internal.example.com": ["10.0.0.5"],
        "mixed.example.com": [PUBLIC_V4, "192.168.1.10"],
        "rebind.example.com": ["127.0.0.1"],
        "empty.example.com": [],
    }


@pytest.fixture
def lookup(dns_table):
    return make_lookup(dns_table)


@pytest.fixture
def validator(fetch_settings, lookup):
    from feedguard.security.classifier import HostClassifier
    from feedguard.security.resolver import Resolver
    from feedguard.security.validator import UrlValidator

    classifier = HostClassifier(fetch_settings.blocked_ipv4_ranges, fetch_settings.blocked_ipv6_ranges)
    return UrlValidator(
        fetch_settings,
        classifier=classifier,
        resolver=Resolver(classifier, lookup=lookup),
    )


@pytest.fixture
def mock_client_factory():
    """Build an ``httpx.AsyncClient`` whose requests are answered by *handler*."""
    def factory(handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=False)

    return factory


@pytest.fixture
def lookup_factory():
    return make_lookup
