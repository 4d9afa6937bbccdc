"""Bounded GET with per-hop validation.

Each hop goes Validating -> Connecting -> Streaming and ends in one of
Redirecting (back to Validating), Done, Blocked or Failed. Redirects are never
delegated to the HTTP client. The whole chain shares one wall-clock budget.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Sequence
from urllib.parse import urljoin

import httpx
import structlog

from feedguard.config import FetchSettings, get_settings
from feedguard.errors import (
    BadRedirectError,
    FeedGuardError,
    ResponseTooLargeError,
    TransportError,
    ValidationFailure,
)
from feedguard.fetch.transport import PinnedTransport, pinned
from feedguard.observability.audit import AttemptRecorder, hash_url
from feedguard.schemas import (
    FetchAttempt,
    FetchOptions,
    FetchOutcome,
    RedirectChain,
    SecureResponse,
    ValidatedUrl,
)
from feedguard.security.validator import UrlValidator

logger = structlog.get_logger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})


class FetchController:
    def __init__(
        self,
        settings: FetchSettings | None = None,
        *,
        validator: UrlValidator | None = None,
        client: httpx.AsyncClient | None = None,
        recorders: Sequence[AttemptRecorder] = (),
    ) -> None:
        self._settings = settings or get_settings().fetch
        self._validator = validator or UrlValidator(self._settings)
        self._external_client = client
        self._own_client: httpx.AsyncClient | None = None
        self._recorders = tuple(recorders)

    @property
    def validator(self) -> UrlValidator:
        return self._validator

    def _get_client(self) -> httpx.AsyncClient:
        if self._external_client is not None:
            return self._external_client
        if self._own_client is None or self._own_client.is_closed:
            s = self._settings
            self._own_client = httpx.AsyncClient(
                transport=PinnedTransport(),
                timeout=httpx.Timeout(
                    connect=s.connect_timeout,
                    read=s.read_timeout,
                    write=s.read_timeout,
                    pool=s.connect_timeout,
                ),
                follow_redirects=False,
                trust_env=False,
            )
        return self._own_client

    async def aclose(self) -> None:
        if self._own_client is not None:
            await self._own_client.aclose()
            self._own_client = None

    async def __aenter__(self) -> FetchController:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self._settings.user_agent,
            "Accept": self._settings.accept,
            "Accept-Encoding": "identity",
        }

    def _record(self, attempt: FetchAttempt) -> None:
        for recorder in self._recorders:
            recorder(attempt)

    async def fetch(self, url: str, options: FetchOptions | None = None) -> SecureResponse:
        """Fetch *url*, following at most ``max_redirects`` validated redirects.

        Returns a ``SecureResponse`` for any final non-redirect status. Raises a
        ``ValidationFailure`` subclass when any hop is unsafe,
        ``ResponseTooLargeError`` when the body passes ``max_bytes`` and
        ``TransportError`` on network failure or when the total time budget
        runs out.
        """
        options = options or FetchOptions()
        s = self._settings
        max_redirects = s.max_redirects if options.max_redirects is None else options.max_redirects
        max_bytes = options.max_bytes or s.max_bytes
        budget = options.timeout or s.total_timeout

        started = time.monotonic()
        try:
            async with asyncio.timeout(budget):
                return await self._run_chain(url, max_redirects, max_bytes, started)
        except TimeoutError as exc:
            logger.info("fetch_budget_exhausted", url_hash=hash_url(url), budget=budget)
            raise TransportError(
                f"Fetch exceeded total time budget of {budget}s",
                retryable=True,
                details={"timeout": budget},
            ) from exc

    async def _run_chain(
        self,
        url: str,
        max_redirects: int,
        max_bytes: int,
        started: float,
    ) -> SecureResponse:
        chain = RedirectChain(max_redirects)
        next_url = url

        while True:
            hop = len(chain)
            hop_started = time.monotonic()
            try:
                target = await self._validator.validate_url(next_url)
            except ValidationFailure as exc:
                self._record(
                    FetchAttempt(
                        url_hash=hash_url(next_url),
                        host="",
                        hop=hop,
                        outcome=FetchOutcome.BLOCKED,
                        elapsed_ms=(time.monotonic() - hop_started) * 1000,
                        error_code=exc.error_code,
                    )
                )
                logger.info(
                    "fetch_blocked",
                    url_hash=hash_url(next_url),
                    hop=hop,
                    error_code=exc.error_code,
                    reason=exc.message,
                )
                raise
            chain.append(target)

            response = await self._send(target, hop, hop_started)
            try:
                if response.status_code in REDIRECT_STATUSES:
                    next_url = self._redirect_target(response, target, hop, hop_started)
                    chain.check_can_follow()
                    logger.debug("redirect_followed", hop=hop, host=target.host)
                    continue

                content = await self._read_capped(response, target, hop, hop_started, max_bytes)
            finally:
                await response.aclose()

            outcome = FetchOutcome.SUCCESS if response.is_success else FetchOutcome.HTTP_ERROR
            elapsed_ms = (time.monotonic() - hop_started) * 1000
            self._record(
                FetchAttempt(
                    url_hash=hash_url(target.url),
                    host=target.host,
                    hop=hop,
                    outcome=outcome,
                    status_code=response.status_code,
                    elapsed_ms=elapsed_ms,
                    bytes_read=len(content),
                )
            )
            logger.info(
                "fetch_completed",
                host=target.host,
                status_code=response.status_code,
                redirects=chain.redirects,
                bytes=len(content),
            )
            return SecureResponse(
                status_code=response.status_code,
                raw_headers=tuple(response.headers.multi_items()),
                content=content,
                url=target.url,
                redirect_chain=chain.urls(),
                elapsed_ms=(time.monotonic() - started) * 1000,
            )

    async def _send(self, target: ValidatedUrl, hop: int, hop_started: float) -> httpx.Response:
        client = self._get_client()
        request = client.build_request("GET", target.url, headers=self._headers())
        try:
            with pinned(target.host, target.port, target.addresses):
                return await client.send(request, stream=True, follow_redirects=False)
        except httpx.HTTPError as exc:
            raise self._transport_failure(exc, target, hop, hop_started) from exc

    def _redirect_target(
        self,
        response: httpx.Response,
        target: ValidatedUrl,
        hop: int,
        hop_started: float,
    ) -> str:
        location = response.headers.get("location", "").strip()
        self._record(
            FetchAttempt(
                url_hash=hash_url(target.url),
                host=target.host,
                hop=hop,
                outcome=FetchOutcome.REDIRECT if location else FetchOutcome.BLOCKED,
                status_code=response.status_code,
                elapsed_ms=(time.monotonic() - hop_started) * 1000,
                error_code="" if location else BadRedirectError.error_code,
            )
        )
        if not location:
            raise BadRedirectError(
                "Redirect without Location header",
                details={"status_code": response.status_code, "host": target.host},
            )
        try:
            return urljoin(target.url, location)
        except ValueError as exc:
            raise BadRedirectError("Unresolvable redirect target", details={"host": target.host}) from exc

    async def _read_capped(
        self,
        response: httpx.Response,
        target: ValidatedUrl,
        hop: int,
        hop_started: float,
        max_bytes: int,
    ) -> bytes:
        declared = response.headers.get("content-length", "")
        if declared.isdigit() and int(declared) > max_bytes:
            self._fail_too_large(target, hop, hop_started, response.status_code, 0)
            raise ResponseTooLargeError(max_bytes, int(declared))

        # Only identity bodies are read, so decoded bytes equal wire bytes.
        encoding = response.headers.get("content-encoding", "").strip().lower()
        if encoding not in ("", "identity"):
            self._record_failure(target, hop, hop_started, response.status_code)
            logger.warning("unsupported_content_encoding", host=target.host, encoding=encoding)
            raise TransportError(
                f"Unsupported Content-Encoding: {encoding}",
                retryable=False,
                details={"host": target.host, "hop": hop, "content_encoding": encoding},
            )

        received = 0
        chunks: list[bytes] = []
        try:
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > max_bytes:
                    self._fail_too_large(target, hop, hop_started, response.status_code, received)
                    raise ResponseTooLargeError(max_bytes, received)
                chunks.append(chunk)
        except httpx.HTTPError as exc:
            raise self._transport_failure(exc, target, hop, hop_started) from exc
        return b"".join(chunks)

    def _fail_too_large(
        self,
        target: ValidatedUrl,
        hop: int,
        hop_started: float,
        status_code: int,
        received: int,
    ) -> None:
        logger.warning("response_too_large", host=target.host, received=received)
        self._record(
            FetchAttempt(
                url_hash=hash_url(target.url),
                host=target.host,
                hop=hop,
                outcome=FetchOutcome.TOO_LARGE,
                status_code=status_code,
                elapsed_ms=(time.monotonic() - hop_started) * 1000,
                bytes_read=received,
                error_code=ResponseTooLargeError.error_code,
            )
        )

    def _record_failure(
        self,
        target: ValidatedUrl,
        hop: int,
        hop_started: float,
        status_code: int = 0,
    ) -> None:
        self._record(
            FetchAttempt(
                url_hash=hash_url(target.url),
                host=target.host,
                hop=hop,
                outcome=FetchOutcome.FAILED,
                status_code=status_code,
                elapsed_ms=(time.monotonic() - hop_started) * 1000,
                error_code=TransportError.error_code,
            )
        )

    def _transport_failure(
        self,
        exc: httpx.HTTPError,
        target: ValidatedUrl,
        hop: int,
        hop_started: float,
    ) -> FeedGuardError:
        retryable = isinstance(exc, (httpx.TimeoutException, httpx.NetworkError))
        logger.warning(
            "fetch_transport_error",
            host=target.host,
            hop=hop,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        self._record_failure(target, hop, hop_started)
        return TransportError(
            f"{type(exc).__name__}: {exc}",
            retryable=retryable,
            details={"host": target.host, "hop": hop},
        )
