"""DNS provider factory: resolve a provider name to a concrete implementation."""

from __future__ import annotations

from azure.identity import DefaultAzureCredential

from acme_engine.config import AppConfig
from acme_engine.dns.azure_dns import AzureDnsProvider
from acme_engine.dns.base import DnsProvider, split_record_name
from acme_engine.dns.cloudflare import CloudflareDnsProvider

_credential: DefaultAzureCredential | None = None


def _get_credential() -> DefaultAzureCredential:
    """Return a cached DefaultAzureCredential instance."""
    global _credential
    if _credential is None:
        _credential = DefaultAzureCredential()
    return _credential


def get_dns_provider(config: AppConfig, provider_name: str | None = None) -> DnsProvider:
    """Instantiate a DNS provider by name.

    Args:
        config: Application configuration.
        provider_name: Override the default provider from config (``--dns-provider``).

    Returns:
        A configured DnsProvider instance.
    """
    name = (provider_name or config.dns_provider or "").lower()
    if not name:
        raise ValueError("DNS_PROVIDER is required (azure or cloudflare)")

    if name == "azure":
        if not config.azure_subscription_id:
            raise ValueError("AZURE_SUBSCRIPTION_ID is required when DNS_PROVIDER=azure")
        if not config.azure_dns_resource_group:
            raise ValueError("AZURE_DNS_RESOURCE_GROUP is required when DNS_PROVIDER=azure")
        return AzureDnsProvider(
            credential=_get_credential(),
            subscription_id=config.azure_subscription_id,
            resource_group=config.azure_dns_resource_group,
        )

    if name == "cloudflare":
        if not config.cloudflare_api_token:
            raise ValueError("CLOUDFLARE_API_TOKEN is required when DNS_PROVIDER=cloudflare")
        return CloudflareDnsProvider(api_token=config.cloudflare_api_token, timeout=config.request_timeout)

    raise ValueError(f"Unknown DNS provider: '{name}'")


__all__ = ["AzureDnsProvider", "CloudflareDnsProvider", "DnsProvider", "get_dns_provider", "split_record_name"]
