"""Azure DNS provider: create/delete challenge TXT record sets via azure-mgmt-dns."""

from __future__ import annotations

import logging

from azure.core.exceptions import ResourceNotFoundError
from azure.mgmt.dns import DnsManagementClient
from azure.mgmt.dns.models import RecordSet, TxtRecord

from acme_engine.dns.base import DnsProvider

logger = logging.getLogger(__name__)

_CHALLENGE_TTL = 60


class AzureDnsProvider(DnsProvider):
    """DNS provider backed by Azure DNS zones."""

    def __init__(
        self,
        credential,
        subscription_id: str,
        resource_group: str,
        _dns_client: DnsManagementClient | None = None,
    ) -> None:
        self._resource_group = resource_group
        self._dns_client = _dns_client or DnsManagementClient(credential, subscription_id)

    def create_txt_record(self, zone: str, record_name: str, values: list[str]) -> None:
        # Each value is its own TXT record so resolvers return them as separate strings.
        record_set = RecordSet(
            ttl=_CHALLENGE_TTL,
            txt_records=[TxtRecord(value=[v]) for v in values],
        )
        self._dns_client.record_sets.create_or_update(
            resource_group_name=self._resource_group,
            zone_name=zone,
            relative_record_set_name=record_name,
            record_type="TXT",
            parameters=record_set,
        )
        logger.info("Created TXT record %s.%s with %d value(s)", record_name, zone, len(values))

    def delete_txt_record(self, zone: str, record_name: str) -> None:
        try:
            self._dns_client.record_sets.delete(
                resource_group_name=self._resource_group,
                zone_name=zone,
                relative_record_set_name=record_name,
                record_type="TXT",
            )
        except ResourceNotFoundError:
            logger.warning("TXT record %s.%s not found in Azure DNS, skipping delete", record_name, zone)
            return
        logger.info("Deleted TXT record %s.%s", record_name, zone)

    def close(self) -> None:
        self._dns_client.close()
