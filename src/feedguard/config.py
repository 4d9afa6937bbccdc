from __future__ import annotations

import ipaddress
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import Field, ValidationInfo, field_validator
from pydantic.fields import FieldInfo
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource

logger = structlog.get_logger(__name__)

__version__ = "0.1.0"

_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_CONFIG_DIR = _PROJECT_ROOT / "config"
_CONFIG_PATH = _CONFIG_DIR / "settings.yaml"

DEFAULT_BLOCKED_IPV4 = [
    "0.0.0.0/8",
    "10.0.0.0/8",
    "100.64.0.0/10",
    "127.0.0.0/8",
    "169.254.0.0/16",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "224.0.0.0/4",
    "240.0.0.0/4",
]

DEFAULT_BLOCKED_IPV6 = [
    "::/128",
    "::1/128",
    "fc00::/7",
    "fe80::/10",
    "ff00::/8",
]

FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml"


def _load_yaml() -> dict[str, Any]:
    if _CONFIG_PATH.exists():
        with open(_CONFIG_PATH) as f:
            return yaml.safe_load(f) or {}
    return {}


def _load_env_profile() -> dict[str, Any]:
    """Load the environment-specific YAML profile.

    ``FEEDGUARD_ENV`` selects ``config/environments/<env>.yaml`` (default
    ``dev``). The profile is deep-merged on top of ``settings.yaml``.
    """
    env = os.getenv("FEEDGUARD_ENV", "dev").lower()
    profile_path = _CONFIG_DIR / "environments" / f"{env}.yaml"
    if profile_path.exists():
        with open(profile_path) as f:
            data = yaml.safe_load(f) or {}
        logger.info("Loaded environment profile: %s (%s)", env, profile_path)
        return data
    logger.debug("No environment profile found for '%s'", env)
    return {}


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge *override* into *base* (mutates *base*)."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


class YamlConfigSource(PydanticBaseSettingsSource):
    """``settings.yaml`` merged with the environment profile, read on each build."""

    def __init__(self, settings_cls: type[BaseSettings]) -> None:
        super().__init__(settings_cls)
        self._data = _deep_merge(_load_yaml(), _load_env_profile())

    def get_field_value(self, field: FieldInfo, field_name: str) -> tuple[Any, str, bool]:
        return self._data.get(field_name), field_name, False

    def __call__(self) -> dict[str, Any]:
        return {
            name: self._data[name]
            for name in self.settings_cls.model_fields
            if self._data.get(name) is not None
        }


class _SectionSettings(BaseSettings):
    """Base for one settings section; its env vars outrank file values passed in."""

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return env_settings, init_settings, dotenv_settings, file_secret_settings


class FetchSettings(_SectionSettings):
    model_config = {"env_prefix": "FEEDGUARD_FETCH_", "extra": "ignore"}

    allowed_schemes: list[str] = Field(default=["http", "https"])
    blocked_ipv4_ranges: list[str] = Field(default_factory=lambda: list(DEFAULT_BLOCKED_IPV4))
    blocked_ipv6_ranges: list[str] = Field(default_factory=lambda: list(DEFAULT_BLOCKED_IPV6))
    blocked_hostnames: list[str] = Field(
        default=[
            "localhost",
            "localhost.localdomain",
            "metadata.google.internal",
            "metadata.internal",
        ]
    )
    max_url_length: int = Field(default=2048, gt=0)
    max_redirects: int = Field(default=5, ge=0)
    connect_timeout: float = Field(default=10.0, gt=0)
    read_timeout: float = Field(default=15.0, gt=0)
    total_timeout: float = Field(default=30.0, gt=0)
    max_bytes: int = Field(default=10 * 1024 * 1024, gt=0)  # 10 MiB
    user_agent: str = f"FeedGuard/{__version__}"
    accept: str = FEED_ACCEPT

    @field_validator("allowed_schemes", "blocked_hostnames")
    @classmethod
    def _lower(cls, values: list[str]) -> list[str]:
        return [v.strip().lower() for v in values if v.strip()]

    @field_validator("blocked_ipv4_ranges")
    @classmethod
    def _check_ipv4(cls, values: list[str]) -> list[str]:
        for cidr in values:
            if ipaddress.ip_network(cidr, strict=False).version != 4:
                raise ValueError(f"not an IPv4 range: {cidr}")
        return values

    @field_validator("blocked_ipv6_ranges")
    @classmethod
    def _check_ipv6(cls, values: list[str]) -> list[str]:
        for cidr in values:
            if ipaddress.ip_network(cidr, strict=False).version != 6:
                raise ValueError(f"not an IPv6 range: {cidr}")
        return values


class DnsCacheSettings(_SectionSettings):
    model_config = {"env_prefix": "FEEDGUARD_DNS_CACHE_", "extra": "ignore"}

    enabled: bool = False
    ttl_seconds: float = Field(default=60.0, gt=0)
    max_size: int = Field(default=1024, gt=0)


class RateLimitSettings(_SectionSettings):
    model_config = {"env_prefix": "FEEDGUARD_RATE_LIMIT_", "extra": "ignore"}

    enabled: bool = False
    max_requests: int = Field(default=10, gt=0)
    window_seconds: float = Field(default=300.0, gt=0)


class LoggingSettings(_SectionSettings):
    model_config = {"env_prefix": "FEEDGUARD_LOG_", "extra": "ignore"}

    json_output: bool = False
    level: str = "INFO"


_SECTIONS: dict[str, type[BaseSettings]] = {
    "fetch": FetchSettings,
    "dns_cache": DnsCacheSettings,
    "rate_limit": RateLimitSettings,
    "logging": LoggingSettings,
}


class Settings(BaseSettings):
    """Top-level settings.

    Precedence, highest first: section env vars (``FEEDGUARD_FETCH_MAX_BYTES``),
    nested env vars (``FEEDGUARD_FETCH__MAX_BYTES``), the environment profile,
    ``settings.yaml``, then field defaults.
    """

    model_config = {"env_prefix": "FEEDGUARD_", "env_nested_delimiter": "__", "extra": "ignore"}

    fetch: FetchSettings = Field(default_factory=FetchSettings)
    dns_cache: DnsCacheSettings = Field(default_factory=DnsCacheSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return init_settings, env_settings, YamlConfigSource(settings_cls)

    @field_validator("fetch", "dns_cache", "rate_limit", "logging", mode="before")
    @classmethod
    def _build_section(cls, value: Any, info: ValidationInfo) -> Any:
        # Construct through __init__ so the section still reads its own env vars.
        if isinstance(value, dict):
            return _SECTIONS[info.field_name](**value)
        return value


@lru_cache
def get_settings() -> Settings:
    return Settings()
