"""Data model for validation and fetching.

Every object here is created per call and discarded on return.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import StrEnum

import httpx
from pydantic import BaseModel, Field

from feedguard.errors import TooManyRedirectsError, UpstreamHttpError


class IpClassification(StrEnum):
    PUBLIC = "public"
    LOOPBACK = "loopback"
    PRIVATE_USE_V4 = "private_use_v4"
    LINK_LOCAL = "link_local"
    MULTICAST = "multicast"
    RESERVED = "reserved"
    UNIQUE_LOCAL_V6 = "unique_local_v6"
    IPV4_MAPPED_V6 = "ipv4_mapped_v6"
    UNSPECIFIED = "unspecified"


class FetchOutcome(StrEnum):
    SUCCESS = "success"
    REDIRECT = "redirect"
    HTTP_ERROR = "http_error"
    BLOCKED = "blocked"
    TOO_LARGE = "too_large"
    FAILED = "failed"


@dataclass(frozen=True)
class ValidatedUrl:
    """A URL that passed every check, with the address set it must connect to."""

    url: str
    scheme: str
    host: str
    port: int
    target: str
    addresses: tuple[str, ...]


class ValidationResult(BaseModel):
    model_config = {"frozen": True}

    valid: bool
    reason: str | None = None
    normalized_url: str | None = None


class FetchOptions(BaseModel):
    """Per-call overrides; ``None`` falls back to the configured limits."""

    max_redirects: int | None = Field(default=None, ge=0)
    timeout: float | None = Field(default=None, gt=0)
    max_bytes: int | None = Field(default=None, gt=0)


@dataclass
class FetchAttempt:
    url_hash: str
    host: str
    hop: int
    outcome: FetchOutcome
    status_code: int = 0
    elapsed_ms: float = 0.0
    bytes_read: int = 0
    error_code: str = ""
    timestamp: float = field(default_factory=time.time)


class RedirectChain:
    """Ordered hops of one fetch; never longer than ``max_redirects + 1``."""

    def __init__(self, max_redirects: int) -> None:
        self._max_redirects = max_redirects
        self._hops: list[ValidatedUrl] = []

    def append(self, hop: ValidatedUrl) -> None:
        self._hops.append(hop)

    def check_can_follow(self) -> None:
        """Raise before the hop that would exceed the redirect limit is requested."""
        if len(self._hops) > self._max_redirects:
            raise TooManyRedirectsError(
                f"Exceeded {self._max_redirects} redirects",
                details={"max_redirects": self._max_redirects},
            )

    @property
    def redirects(self) -> int:
        return max(len(self._hops) - 1, 0)

    def urls(self) -> tuple[str, ...]:
        return tuple(h.url for h in self._hops)

    def __len__(self) -> int:
        return len(self._hops)


@dataclass(frozen=True)
class SecureResponse:
    status_code: int
    raw_headers: tuple[tuple[str, str], ...]
    content: bytes
    url: str
    redirect_chain: tuple[str, ...] = ()
    elapsed_ms: float = 0.0

    @property
    def headers(self) -> httpx.Headers:
        """A fresh case-insensitive copy; edits never reach the response."""
        return httpx.Headers(list(self.raw_headers))

    @property
    def is_success(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def encoding(self) -> str:
        content_type = self.headers.get("content-type", "")
        for param in content_type.split(";")[1:]:
            key, _, value = param.strip().partition("=")
            if key.lower() == "charset" and value:
                return value.strip("\"'")
        return "utf-8"

    @property
    def text(self) -> str:
        try:
            return self.content.decode(self.encoding, errors="replace")
        except LookupError:
            return self.content.decode("utf-8", errors="replace")

    def raise_for_status(self) -> SecureResponse:
        if not self.is_success:
            raise UpstreamHttpError(self.status_code, self.url)
        return self
