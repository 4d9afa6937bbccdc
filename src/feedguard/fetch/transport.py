"""httpx transport that only connects to pre-validated addresses.

The hostname stays in the request URL so TLS SNI, certificate verification
and the ``Host`` header all use the real name, while the TCP connect goes to
an address from the set the validator approved for that host. Pins live in a
context variable scoped to one hop; a connect with no pin for its host fails.
"""

from __future__ import annotations

import contextvars
import typing
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

import httpcore
import httpx
import structlog

logger = structlog.get_logger(__name__)

_PinMap = dict[tuple[str, int], tuple[str, ...]]

_pins: contextvars.ContextVar[_PinMap | None] = contextvars.ContextVar("feedguard_pins", default=None)


def _pin_key(host: str, port: int) -> tuple[str, int]:
    return host.strip("[]").lower(), int(port)


@contextmanager
def pinned(host: str, port: int, addresses: Iterable[str]) -> Iterator[None]:
    """Allow connections to *host*:*port* only via *addresses* inside the block."""
    addresses = tuple(addresses)
    if not addresses:
        raise ValueError("cannot pin an empty address set")
    current: _PinMap = dict(_pins.get() or {})
    current[_pin_key(host, port)] = addresses
    token = _pins.set(current)
    try:
        yield
    finally:
        _pins.reset(token)


def pinned_addresses(host: str, port: int) -> tuple[str, ...] | None:
    pins = _pins.get()
    if not pins:
        return None
    return pins.get(_pin_key(host, port))


class PinnedNetworkBackend(httpcore.AsyncNetworkBackend):
    def __init__(self, backend: httpcore.AsyncNetworkBackend | None = None) -> None:
        self._backend = backend or httpcore.AnyIOBackend()

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: float | None = None,
        local_address: str | None = None,
        socket_options: typing.Iterable[httpcore.SOCKET_OPTION] | None = None,
    ) -> httpcore.AsyncNetworkStream:
        addresses = pinned_addresses(host, port)
        if not addresses:
            logger.warning("unpinned_connect_refused", host=host, port=port)
            raise httpcore.ConnectError(f"No validated address pinned for {host}:{port}")

        last_exc: Exception = httpcore.ConnectError(f"No pinned address for {host}:{port} accepted a connection")
        for address in addresses:
            try:
                return await self._backend.connect_tcp(
                    address,
                    port,
                    timeout=timeout,
                    local_address=local_address,
                    socket_options=socket_options,
                )
            except (httpcore.ConnectError, httpcore.ConnectTimeout) as exc:
                logger.debug("pinned_connect_failed", host=host, address=address, error=str(exc))
                last_exc = exc
        raise last_exc

    async def connect_unix_socket(
        self,
        path: str,
        timeout: float | None = None,
        socket_options: typing.Iterable[httpcore.SOCKET_OPTION] | None = None,
    ) -> httpcore.AsyncNetworkStream:
        raise httpcore.ConnectError("Unix socket connections are not permitted")

    async def sleep(self, seconds: float) -> None:
        await self._backend.sleep(seconds)


class PinnedTransport(httpx.AsyncHTTPTransport):
    """``AsyncHTTPTransport`` whose pool dials through ``PinnedNetworkBackend``.

    The connection pool is shared by all concurrent fetches and is safe for
    concurrent use; pooled connections are keyed by hostname.
    """

    def __init__(
        self,
        *,
        limits: httpx.Limits = httpx.Limits(max_connections=100, max_keepalive_connections=20),
        backend: httpcore.AsyncNetworkBackend | None = None,
    ) -> None:
        super().__init__(limits=limits, trust_env=False, retries=0)
        # Replace the default pool: httpx has no public hook for the network backend.
        self._pool = httpcore.AsyncConnectionPool(
            ssl_context=httpx.create_ssl_context(trust_env=False),
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
            keepalive_expiry=limits.keepalive_expiry,
            http1=True,
            http2=False,
            retries=0,
            network_backend=PinnedNetworkBackend(backend),
        )
