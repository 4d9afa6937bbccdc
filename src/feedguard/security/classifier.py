"""Classify literal IP addresses as public or one of the blocked categories.

Classification is a pure function of the address bits and the configured
blocked ranges. IPv6 forms that embed an IPv4 address (mapped, NAT64 and
6to4) are only as safe as the IPv4 address they carry.
"""

from __future__ import annotations

import ipaddress
from collections.abc import Iterable

import structlog

from feedguard.config import DEFAULT_BLOCKED_IPV4, DEFAULT_BLOCKED_IPV6
from feedguard.errors import HostBlockedError
from feedguard.schemas import IpClassification

logger = structlog.get_logger(__name__)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address

_C = IpClassification

# Most specific network first; the first match names the category.
_CATEGORY_TABLE: tuple[tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, IpClassification], ...] = tuple(
    (ipaddress.ip_network(cidr), category)
    for cidr, category in (
        ("0.0.0.0/32", _C.UNSPECIFIED),
        ("0.0.0.0/8", _C.RESERVED),
        ("10.0.0.0/8", _C.PRIVATE_USE_V4),
        ("100.64.0.0/10", _C.RESERVED),
        ("127.0.0.0/8", _C.LOOPBACK),
        ("169.254.0.0/16", _C.LINK_LOCAL),
        ("172.16.0.0/12", _C.PRIVATE_USE_V4),
        ("192.168.0.0/16", _C.PRIVATE_USE_V4),
        ("224.0.0.0/4", _C.MULTICAST),
        ("240.0.0.0/4", _C.RESERVED),
        ("::/128", _C.UNSPECIFIED),
        ("::1/128", _C.LOOPBACK),
        ("fc00::/7", _C.UNIQUE_LOCAL_V6),
        ("fe80::/10", _C.LINK_LOCAL),
        ("ff00::/8", _C.MULTICAST),
    )
)

_NAT64 = ipaddress.ip_network("64:ff9b::/96")
# IPv4-compatible (deprecated) addresses; :: and ::1 are categorized above.
_V4_COMPATIBLE = ipaddress.ip_network("::/96")


def parse_ip(value: str | IPAddress) -> IPAddress:
    """Parse *value* as an IP address, dropping any IPv6 zone index."""
    if isinstance(value, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        if isinstance(value, ipaddress.IPv6Address) and value.scope_id:
            return ipaddress.IPv6Address(str(value).split("%", 1)[0])
        return value
    return ipaddress.ip_address(str(value).strip("[]").split("%", 1)[0])


def _embedded_ipv4(ip: ipaddress.IPv6Address) -> ipaddress.IPv4Address | None:
    if ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    if ip.sixtofour is not None:
        return ip.sixtofour
    if ip in _NAT64:
        return ipaddress.IPv4Address(int(ip) & 0xFFFFFFFF)
    return None


class HostClassifier:
    """Classifier over a configurable set of blocked networks."""

    def __init__(
        self,
        blocked_ipv4: Iterable[str] = DEFAULT_BLOCKED_IPV4,
        blocked_ipv6: Iterable[str] = DEFAULT_BLOCKED_IPV6,
    ) -> None:
        self._blocked_v4 = tuple(ipaddress.IPv4Network(c, strict=False) for c in blocked_ipv4)
        self._blocked_v6 = tuple(ipaddress.IPv6Network(c, strict=False) for c in blocked_ipv6)

    def classify(self, value: str | IPAddress) -> IpClassification:
        ip = parse_ip(value)

        if isinstance(ip, ipaddress.IPv6Address):
            embedded = _embedded_ipv4(ip)
            if embedded is not None:
                inner = self.classify(embedded)
                return _C.PUBLIC if inner is _C.PUBLIC else _C.IPV4_MAPPED_V6
            if ip in _V4_COMPATIBLE and int(ip) > 1:
                return _C.RESERVED
            blocked = self._blocked_v6
        else:
            blocked = self._blocked_v4

        if not any(ip in network for network in blocked):
            return _C.PUBLIC
        for network, category in _CATEGORY_TABLE:
            if ip in network:
                return category
        return _C.RESERVED

    def is_public(self, value: str | IPAddress) -> bool:
        return self.classify(value) is _C.PUBLIC

    def ensure_public(self, value: str | IPAddress, *, host: str | None = None) -> IPAddress:
        """Return the parsed address or raise ``HostBlockedError``."""
        try:
            ip = parse_ip(value)
        except ValueError as exc:
            raise HostBlockedError(
                "Unparseable address", details={"address": str(value), "host": host}
            ) from exc
        category = self.classify(ip)
        if category is not _C.PUBLIC:
            logger.info("address_blocked", host=host, category=category.value)
            raise HostBlockedError(
                f"Address is {category.value}",
                details={"address": str(ip), "category": category.value, "host": host},
            )
        return ip


_default = HostClassifier()


def classify_ip(value: str | IPAddress) -> IpClassification:
    """Classify *value* against the built-in blocked ranges."""
    return _default.classify(value)
