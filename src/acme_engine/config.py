"""Configuration loading and validation from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass

_LETS_ENCRYPT_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"
_DEFAULT_REQUEST_TIMEOUT = 30
_DEFAULT_KEY_SIZE = 2048
_DEFAULT_VALIDATION_TIMEOUT = 300
_DEFAULT_POLL_INTERVAL = 5
_DEFAULT_RENEWAL_WINDOW_DAYS = 30
_MIN_KEY_SIZE = 2048


@dataclass(frozen=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    acme_directory_url: str = _LETS_ENCRYPT_DIRECTORY
    contact_email: str | None = None
    request_timeout: int = _DEFAULT_REQUEST_TIMEOUT
    key_size: int = _DEFAULT_KEY_SIZE
    validation_timeout: int = _DEFAULT_VALIDATION_TIMEOUT
    poll_interval: int = _DEFAULT_POLL_INTERVAL
    renewal_window_days: int = _DEFAULT_RENEWAL_WINDOW_DAYS
    dns_provider: str | None = None
    cloudflare_api_token: str | None = None
    azure_subscription_id: str | None = None
    azure_dns_resource_group: str | None = None
    log_level: str = "INFO"


def _positive_int_env(name: str, default: int) -> int:
    raw = os.environ.get(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got: {raw!r}")
    if value < 1:
        raise ValueError(f"{name} must be a positive integer, got: {value}")
    return value


def load_config() -> AppConfig:
    """Load and validate application configuration from environment variables."""
    key_size = _positive_int_env("ACME_KEY_SIZE", _DEFAULT_KEY_SIZE)
    if key_size < _MIN_KEY_SIZE:
        raise ValueError(f"ACME_KEY_SIZE must be at least {_MIN_KEY_SIZE}, got: {key_size}")

    log_level = os.environ.get("ACME_LOG_LEVEL", "INFO").upper()
    if log_level not in ("DEBUG", "INFO", "WARNING", "ERROR"):
        raise ValueError(f"ACME_LOG_LEVEL must be one of DEBUG, INFO, WARNING, ERROR, got: {log_level!r}")

    return AppConfig(
        acme_directory_url=os.environ.get("ACME_DIRECTORY_URL", _LETS_ENCRYPT_DIRECTORY),
        contact_email=os.environ.get("ACME_CONTACT_EMAIL") or None,
        request_timeout=_positive_int_env("ACME_REQUEST_TIMEOUT", _DEFAULT_REQUEST_TIMEOUT),
        key_size=key_size,
        validation_timeout=_positive_int_env("ACME_VALIDATION_TIMEOUT", _DEFAULT_VALIDATION_TIMEOUT),
        poll_interval=_positive_int_env("ACME_POLL_INTERVAL", _DEFAULT_POLL_INTERVAL),
        renewal_window_days=_positive_int_env("RENEWAL_WINDOW_DAYS", _DEFAULT_RENEWAL_WINDOW_DAYS),
        dns_provider=os.environ.get("DNS_PROVIDER") or None,
        cloudflare_api_token=os.environ.get("CLOUDFLARE_API_TOKEN") or None,
        azure_subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID") or None,
        azure_dns_resource_group=os.environ.get("AZURE_DNS_RESOURCE_GROUP") or None,
        log_level=log_level,
    )
