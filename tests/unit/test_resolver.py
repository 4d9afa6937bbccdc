from __future__ import annotations

import pytest

from feedguard.cache.dns_cache import DnsCache
from feedguard.errors import HostBlockedError, ResolutionFailedError
from feedguard.security.classifier import HostClassifier
from feedguard.security.resolver import Resolver

PUBLIC_V4 = "93.184.216.34"
PUBLIC_V6 = "2606:2800:220:1:248:1893:25c8:1946"


class TestResolve:
    @pytest.mark.asyncio
    async def test_returns_full_address_set(self, lookup):
        resolver = Resolver(HostClassifier(), lookup=lookup)
        assert await resolver.resolve("example.com", 443) == (PUBLIC_V4, PUBLIC_V6)

    @pytest.mark.asyncio
    async def test_duplicates_removed_in_order(self, lookup_factory):
        lookup = lookup_factory({"dup.example.com": [PUBLIC_V4, PUBLIC_V6, PUBLIC_V4]})
        resolver = Resolver(lookup=lookup)
        assert await resolver.resolve("dup.example.com", 443) == (PUBLIC_V4, PUBLIC_V6)

    @pytest.mark.asyncio
    async def test_private_answer_blocked(self, lookup):
        with pytest.raises(HostBlockedError):
            await Resolver(lookup=lookup).resolve("internal.example.com", 443)

    @pytest.mark.asyncio
    async def test_mixed_answer_blocked(self, lookup):
        with pytest.raises(HostBlockedError) as exc_info:
            await Resolver(lookup=lookup).resolve("mixed.example.com", 443)
        assert exc_info.value.details["address"] == "192.168.1.10"

    @pytest.mark.asyncio
    async def test_loopback_answer_blocked(self, lookup):
        with pytest.raises(HostBlockedError):
            await Resolver(lookup=lookup).resolve("rebind.example.com", 80)

    @pytest.mark.asyncio
    async def test_empty_answer(self, lookup):
        with pytest.raises(ResolutionFailedError):
            await Resolver(lookup=lookup).resolve("empty.example.com", 443)

    @pytest.mark.asyncio
    async def test_nxdomain(self, lookup):
        with pytest.raises(ResolutionFailedError):
            await Resolver(lookup=lookup).resolve("nonexistent.invalid", 443)

    @pytest.mark.asyncio
    async def test_os_error(self):
        async def broken(host, port):
            raise OSError("network unreachable")

        with pytest.raises(ResolutionFailedError):
            await Resolver(lookup=broken).resolve("example.com", 443)

    @pytest.mark.asyncio
    async def test_ipv6_mapped_answer_blocked(self, lookup_factory):
        lookup = lookup_factory({"mapped.example.com": ["::ffff:127.0.0.1"]})
        with pytest.raises(HostBlockedError):
            await Resolver(lookup=lookup).resolve("mapped.example.com", 443)


class TestResolveWithCache:
    @pytest.mark.asyncio
    async def test_second_lookup_served_from_cache(self, lookup):
        cache = DnsCache(ttl_seconds=60)
        resolver = Resolver(lookup=lookup, cache=cache)
        await resolver.resolve("feeds.example.com", 443)
        await resolver.resolve("feeds.example.com", 443)
        assert lookup.calls == [("feeds.example.com", 443)]
        assert cache.stats()["total_hits"] == 1

    @pytest.mark.asyncio
    async def test_blocked_answers_not_cached(self, lookup):
        cache = DnsCache()
        resolver = Resolver(lookup=lookup, cache=cache)
        with pytest.raises(HostBlockedError):
            await resolver.resolve("internal.example.com", 443)
        assert cache.size == 0

    @pytest.mark.asyncio
    async def test_cached_addresses_revalidated(self, lookup):
        cache = DnsCache()
        cache.put("stale.example.com", 443, ("10.1.2.3",))
        with pytest.raises(HostBlockedError):
            await Resolver(lookup=lookup, cache=cache).resolve("stale.example.com", 443)
        assert lookup.calls == []
