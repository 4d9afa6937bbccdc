"""Parse and normalize externally supplied URLs.

Anything the parser cannot interpret unambiguously is rejected with
``InvalidFormatError``; it never guesses.
"""

from __future__ import annotations

import ipaddress
import re
import unicodedata
from dataclasses import dataclass
from urllib.parse import unquote, urlsplit

import idna

from feedguard.errors import InvalidFormatError

MAX_URL_LENGTH = 2048
DEFAULT_PORTS = {"http": 80, "https": 443}

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*:")
_CONTROL_OR_SPACE_RE = re.compile(r"[\x00-\x20\x7f-\x9f]")
_FORBIDDEN_HOST_CHARS = frozenset("\\%@/?#[]<>^|\"' \t\r\n")
# Hex, octal, integer or short-form IPv4 that some resolvers accept.
_LOOSE_IPV4_RE = re.compile(r"^(0x[0-9a-f]*|[0-9]+)(\.(0x[0-9a-f]*|[0-9]+)){0,3}$")
_LABEL_RE = re.compile(r"^[a-z0-9_]([a-z0-9_-]{0,61}[a-z0-9_])?$")


@dataclass(frozen=True)
class ParsedUrl:
    scheme: str
    host: str
    port: int | None
    path: str
    query: str
    ip: ipaddress.IPv4Address | ipaddress.IPv6Address | None = None

    @property
    def is_ip_literal(self) -> bool:
        return self.ip is not None

    @property
    def target(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path

    @property
    def netloc(self) -> str:
        host = f"[{self.host}]" if self.ip is not None and self.ip.version == 6 else self.host
        if self.port is None or self.port == DEFAULT_PORTS.get(self.scheme):
            return host
        return f"{host}:{self.port}"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.netloc}{self.target}"


def _reject(reason: str, **details) -> InvalidFormatError:
    return InvalidFormatError(reason, details={"reason": reason, **details})


def normalize_host(raw_host: str) -> tuple[str, ipaddress.IPv4Address | ipaddress.IPv6Address | None]:
    """Return the canonical ASCII host and, for literal IPs, the parsed address."""
    if raw_host.startswith("[") and raw_host.endswith("]"):
        literal = raw_host[1:-1]
        if "%" in literal:
            raise _reject("scoped IPv6 literal")
        try:
            ipv6 = ipaddress.IPv6Address(literal)
        except ValueError as exc:
            raise _reject("malformed IPv6 literal") from exc
        return str(ipv6), ipv6

    host = unquote(raw_host)
    if "%" in host:
        raise _reject("multiply encoded host")
    if any(ch in _FORBIDDEN_HOST_CHARS for ch in host) or _CONTROL_OR_SPACE_RE.search(host):
        raise _reject("illegal character in host")

    host = unicodedata.normalize("NFC", host).lower()
    if host.endswith("."):
        host = host[:-1]
    if not host:
        raise _reject("empty host")

    if not host.isascii():
        try:
            host = idna.encode(host, uts46=True).decode("ascii").lower()
        except UnicodeError as exc:
            raise _reject("invalid internationalized host") from exc

    try:
        ipv4 = ipaddress.IPv4Address(host)
    except ValueError:
        ipv4 = None
    if ipv4 is not None:
        return str(ipv4), ipv4
    if _LOOSE_IPV4_RE.match(host):
        raise _reject("non-canonical IPv4 literal")

    if len(host) > 253 or not all(_LABEL_RE.match(label) for label in host.split(".")):
        raise _reject("invalid hostname")
    return host, None


def parse_url(raw: str, *, max_length: int = MAX_URL_LENGTH) -> ParsedUrl:
    """Parse *raw* into its normalized components.

    Raises ``InvalidFormatError`` for empty or oversize input, missing scheme
    or host, embedded credentials, control characters, invalid ports and
    hosts that cannot be normalized.
    """
    if not isinstance(raw, str):
        raise _reject("not a string")
    url = raw.strip()
    if not url:
        raise _reject("empty url")
    if len(url.encode("utf-8")) > max_length:
        raise _reject("url too long", length=len(url.encode("utf-8")), limit=max_length)
    if _CONTROL_OR_SPACE_RE.search(url):
        raise _reject("control character or whitespace in url")
    if "\\" in url:
        raise _reject("backslash in url")
    if not _SCHEME_RE.match(url):
        raise _reject("missing scheme")

    try:
        parts = urlsplit(url)
        explicit_port = parts.port
    except ValueError as exc:
        raise _reject("unparseable url") from exc

    scheme = parts.scheme.lower()
    if not parts.netloc:
        raise _reject("missing host", scheme=scheme)
    if "@" in parts.netloc:
        raise _reject("credentials in url")

    raw_host = parts.netloc
    if raw_host.startswith("["):
        raw_host = raw_host[: raw_host.find("]") + 1]
    else:
        raw_host = raw_host.rsplit(":", 1)[0] if ":" in raw_host else raw_host
    host, ip = normalize_host(raw_host)

    if explicit_port is not None and not 1 <= explicit_port <= 65535:
        raise _reject("port out of range", port=explicit_port)
    port = explicit_port if explicit_port is not None else DEFAULT_PORTS.get(scheme)

    return ParsedUrl(
        scheme=scheme,
        host=host,
        port=port,
        path=parts.path or "/",
        query=parts.query,
        ip=ip,
    )
