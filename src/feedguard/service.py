"""Composition root used by feed-ingestion and feed-health-check callers.

All shared resources (the HTTP client's connection pool, the optional DNS
cache and rate limiter) are created once here and injected explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
import structlog

from feedguard.cache.dns_cache import DnsCache
from feedguard.config import Settings, get_settings
from feedguard.errors import RateLimitedError
from feedguard.fetch.controller import FetchController
from feedguard.observability.audit import AuditLogger
from feedguard.observability.metrics import FetchMetricsCollector
from feedguard.schemas import FetchOptions, SecureResponse, ValidationResult
from feedguard.security.classifier import HostClassifier
from feedguard.security.rate_limit import RateLimiter
from feedguard.security.resolver import Lookup, Resolver, system_lookup
from feedguard.security.validator import UrlValidator

logger = structlog.get_logger(__name__)


@dataclass
class FeedFetchService:
    validator: UrlValidator
    controller: FetchController
    audit: AuditLogger = field(default_factory=AuditLogger)
    metrics: FetchMetricsCollector = field(default_factory=FetchMetricsCollector)
    rate_limiter: RateLimiter | None = None
    dns_cache: DnsCache | None = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        lookup: Lookup = system_lookup,
        rate_limiter: RateLimiter | None = None,
    ) -> FeedFetchService:
        s = settings or get_settings()
        dns_cache = (
            DnsCache(max_size=s.dns_cache.max_size, ttl_seconds=s.dns_cache.ttl_seconds)
            if s.dns_cache.enabled
            else None
        )
        if rate_limiter is None and s.rate_limit.enabled:
            rate_limiter = RateLimiter(s.rate_limit.max_requests, s.rate_limit.window_seconds)
        audit = AuditLogger()
        metrics = FetchMetricsCollector()
        classifier = HostClassifier(s.fetch.blocked_ipv4_ranges, s.fetch.blocked_ipv6_ranges)
        validator = UrlValidator(
            s.fetch,
            classifier=classifier,
            resolver=Resolver(classifier, lookup=lookup, cache=dns_cache),
            audit=audit,
        )
        controller = FetchController(
            s.fetch,
            validator=validator,
            client=client,
            recorders=(audit.record, metrics.record),
        )
        logger.info(
            "feed_fetch_service_ready",
            max_redirects=s.fetch.max_redirects,
            total_timeout=s.fetch.total_timeout,
            max_bytes=s.fetch.max_bytes,
            dns_cache=dns_cache is not None,
            rate_limited=rate_limiter is not None,
        )
        return cls(
            validator=validator,
            controller=controller,
            audit=audit,
            metrics=metrics,
            rate_limiter=rate_limiter,
            dns_cache=dns_cache,
        )

    async def validate(self, url: str) -> ValidationResult:
        return await self.validator.validate(url)

    async def fetch(
        self,
        url: str,
        options: FetchOptions | None = None,
        *,
        identifier: str | None = None,
    ) -> SecureResponse:
        if identifier is not None and self.rate_limiter is not None:
            if not self.rate_limiter.acquire(identifier):
                raise RateLimitedError(identifier, self.rate_limiter.time_until_reset(identifier))
        return await self.controller.fetch(url, options)

    async def aclose(self) -> None:
        await self.controller.aclose()

    async def __aenter__(self) -> FeedFetchService:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
