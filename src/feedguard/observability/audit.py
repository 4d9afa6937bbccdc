"""Audit trail for outbound fetch attempts and validation decisions."""

from __future__ import annotations

import hashlib
from collections.abc import Callable
from dataclasses import asdict

import structlog

from feedguard.schemas import FetchAttempt

AttemptRecorder = Callable[[FetchAttempt], None]


def hash_url(url: str) -> str:
    """Stable, non-reversible fingerprint of a URL for log correlation."""
    return hashlib.sha256(url.encode("utf-8", errors="replace")).hexdigest()[:16]


class AuditLogger:
    def __init__(self, name: str = "feedguard.audit") -> None:
        self._logger = structlog.get_logger(name)

    def record(self, attempt: FetchAttempt) -> None:
        data = asdict(attempt)
        data["outcome"] = attempt.outcome.value
        self._logger.info("fetch_attempt", audit=True, **data)

    def log_validation(self, url: str, *, valid: bool, error_code: str = "", reason: str = "") -> None:
        self._logger.info(
            "url_validation",
            audit=True,
            url_hash=hash_url(url),
            valid=valid,
            error_code=error_code,
            reason=reason,
        )
