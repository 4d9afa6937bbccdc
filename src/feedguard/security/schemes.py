"""Scheme allowlist."""

from __future__ import annotations

from collections.abc import Iterable

from feedguard.errors import SchemeNotAllowedError

ALLOWED_SCHEMES = frozenset({"http", "https"})


class SchemeGate:
    def __init__(self, allowed: Iterable[str] = ALLOWED_SCHEMES) -> None:
        self._allowed = frozenset(s.lower() for s in allowed)

    @property
    def allowed(self) -> frozenset[str]:
        return self._allowed

    def check(self, scheme: str) -> str:
        """Return the lower-cased scheme or raise ``SchemeNotAllowedError``."""
        normalized = (scheme or "").lower()
        if normalized not in self._allowed:
            raise SchemeNotAllowedError(
                f"Unsupported scheme: {normalized or '<none>'}",
                details={"scheme": normalized},
            )
        return normalized
