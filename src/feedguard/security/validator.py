"""Single entry point for deciding whether a URL may be fetched.

``validate_url`` returns a ``ValidatedUrl`` carrying the exact addresses the
transport is allowed to connect to, or raises a ``ValidationFailure``.
``validate`` wraps it for callers across the trust boundary: the result only
ever carries the generic rejection message, while the specific reason is
logged under a URL hash.
"""

from __future__ import annotations

import structlog

from feedguard.config import FetchSettings, get_settings
from feedguard.errors import (
    GENERIC_REJECTION,
    HostBlockedError,
    InvalidFormatError,
    ValidationFailure,
)
from feedguard.observability.audit import AuditLogger, hash_url
from feedguard.schemas import ValidatedUrl, ValidationResult
from feedguard.security.classifier import HostClassifier
from feedguard.security.resolver import Resolver
from feedguard.security.schemes import SchemeGate
from feedguard.security.url_parser import parse_url

logger = structlog.get_logger(__name__)


class UrlValidator:
    def __init__(
        self,
        settings: FetchSettings | None = None,
        *,
        classifier: HostClassifier | None = None,
        resolver: Resolver | None = None,
        audit: AuditLogger | None = None,
    ) -> None:
        self._settings = settings or get_settings().fetch
        self._classifier = classifier or HostClassifier(
            self._settings.blocked_ipv4_ranges,
            self._settings.blocked_ipv6_ranges,
        )
        self._resolver = resolver or Resolver(self._classifier)
        self._scheme_gate = SchemeGate(self._settings.allowed_schemes)
        self._blocked_hostnames = frozenset(self._settings.blocked_hostnames)
        self._audit = audit

    @property
    def classifier(self) -> HostClassifier:
        return self._classifier

    def _is_blocked_hostname(self, host: str) -> bool:
        return any(host == name or host.endswith(f".{name}") for name in self._blocked_hostnames)

    async def validate_url(self, url: str) -> ValidatedUrl:
        parsed = parse_url(url, max_length=self._settings.max_url_length)
        scheme = self._scheme_gate.check(parsed.scheme)
        if parsed.port is None:
            raise InvalidFormatError("No port for scheme", details={"scheme": scheme})

        if parsed.is_ip_literal:
            self._classifier.ensure_public(parsed.ip, host=parsed.host)
            addresses: tuple[str, ...] = (str(parsed.ip),)
        else:
            if self._is_blocked_hostname(parsed.host):
                raise HostBlockedError("Blocked hostname", details={"host": parsed.host})
            addresses = await self._resolver.resolve(parsed.host, parsed.port)

        return ValidatedUrl(
            url=parsed.url,
            scheme=scheme,
            host=parsed.host,
            port=parsed.port,
            target=parsed.target,
            addresses=addresses,
        )

    async def validate(self, url: str) -> ValidationResult:
        try:
            validated = await self.validate_url(url)
        except ValidationFailure as exc:
            logger.info(
                "url_rejected",
                url_hash=hash_url(str(url)),
                error_code=exc.error_code,
                reason=exc.message,
            )
            if self._audit is not None:
                self._audit.log_validation(
                    str(url), valid=False, error_code=exc.error_code, reason=exc.message
                )
            return ValidationResult(valid=False, reason=exc.public_message)
        except Exception:
            logger.exception("url_validation_error", url_hash=hash_url(str(url)))
            return ValidationResult(valid=False, reason=GENERIC_REJECTION)

        if self._audit is not None:
            self._audit.log_validation(str(url), valid=True)
        return ValidationResult(valid=True, normalized_url=validated.url)
