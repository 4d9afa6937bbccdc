"""Resolve hostnames to the address set a fetch is pinned to."""

from __future__ import annotations

import asyncio
import socket
from collections.abc import Awaitable, Callable

import structlog

from feedguard.cache.dns_cache import DnsCache
from feedguard.errors import HostBlockedError, ResolutionFailedError
from feedguard.security.classifier import HostClassifier

logger = structlog.get_logger(__name__)

Lookup = Callable[[str, int], Awaitable[list[str]]]


async def system_lookup(host: str, port: int) -> list[str]:
    """A and AAAA records in one ``getaddrinfo`` call."""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, port, family=socket.AF_UNSPEC, type=socket.SOCK_STREAM)
    return [str(sockaddr[0]) for _family, _type, _proto, _canon, sockaddr in infos]


class Resolver:
    """Resolve a host and validate every returned address.

    The returned tuple is the exact set the transport may connect to. If any
    address is blocked the whole host is rejected, since a mixed answer can be
    served by round-robin or attacker-controlled zones.
    """

    def __init__(
        self,
        classifier: HostClassifier | None = None,
        *,
        lookup: Lookup = system_lookup,
        cache: DnsCache | None = None,
    ) -> None:
        self._classifier = classifier or HostClassifier()
        self._lookup = lookup
        self._cache = cache

    async def resolve(self, host: str, port: int) -> tuple[str, ...]:
        cached = self._cache.get(host, port) if self._cache is not None else None
        addresses = cached if cached is not None else await self._resolve_uncached(host, port)

        for address in addresses:
            try:
                self._classifier.ensure_public(address, host=host)
            except HostBlockedError:
                logger.warning("host_resolves_to_blocked_address", host=host, count=len(addresses))
                raise

        if self._cache is not None and cached is None:
            self._cache.put(host, port, addresses)
        return addresses

    async def _resolve_uncached(self, host: str, port: int) -> tuple[str, ...]:
        try:
            raw = await self._lookup(host, port)
        except (socket.gaierror, UnicodeError) as exc:
            logger.info("dns_resolution_failed", host=host, error=str(exc))
            raise ResolutionFailedError(
                "DNS resolution failed", details={"host": host, "error": str(exc)}
            ) from exc
        except OSError as exc:
            raise ResolutionFailedError(
                "DNS resolution error", details={"host": host, "error": str(exc)}
            ) from exc

        addresses = tuple(dict.fromkeys(raw))
        if not addresses:
            logger.info("dns_resolution_empty", host=host)
            raise ResolutionFailedError("No addresses resolved", details={"host": host})
        return addresses
