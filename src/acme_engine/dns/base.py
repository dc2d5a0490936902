"""DNS provider interface and challenge record helpers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Self

from acme_engine.models import DnsChallengeInfo

logger = logging.getLogger(__name__)


def split_record_name(record_name: str, domain: str) -> tuple[str, str]:
    """Return ``(zone, relative_name)`` for a challenge record of ``domain``.

    The zone is taken to be the certificate domain itself, wildcard label
    removed. Providers whose zone is a parent of the domain need their own
    mapping.
    """
    zone = domain.removeprefix("*.").rstrip(".")
    name = record_name.rstrip(".")
    if not name.endswith(f".{zone}"):
        raise ValueError(f"Record '{name}' is not under zone '{zone}'")
    return zone, name[: -len(zone) - 1]


def group_records(records: Iterable[DnsChallengeInfo]) -> dict[str, tuple[str, list[str]]]:
    """Group challenge records by record name.

    ``example.com`` and ``*.example.com`` both validate through
    ``_acme-challenge.example.com``, so their values share one TXT record set.
    Returns ``{record_name: (domain, [values...])}`` in first-seen order.
    """
    grouped: dict[str, tuple[str, list[str]]] = {}
    for record in records:
        domain, values = grouped.setdefault(record.record_name, (record.domain, []))
        if record.record_value not in values:
            values.append(record.record_value)
    return grouped


class DnsProvider(ABC):
    """Interface for DNS providers that manage ACME DNS-01 challenge TXT records."""

    def close(self) -> None:
        """Release resources. Override in subclasses that hold open connections."""

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    @abstractmethod
    def create_txt_record(self, zone: str, record_name: str, values: list[str]) -> None:
        """Create (or replace) a TXT record set for DNS-01 challenge validation.

        Args:
            zone: DNS zone name (e.g. "example.com").
            record_name: Relative record name within the zone (e.g. "_acme-challenge").
            values: TXT record values (one digest per authorization sharing the name).
        """

    @abstractmethod
    def delete_txt_record(self, zone: str, record_name: str) -> None:
        """Delete a TXT record set after DNS-01 challenge validation.

        Args:
            zone: DNS zone name (e.g. "example.com").
            record_name: Relative record name within the zone (e.g. "_acme-challenge").
        """

    def provision(self, records: Iterable[DnsChallengeInfo]) -> None:
        """Publish every challenge record, one TXT record set per record name."""
        for fqdn, (domain, values) in group_records(records).items():
            zone, relative = split_record_name(fqdn, domain)
            self.create_txt_record(zone, relative, values)

    def deprovision(self, records: Iterable[DnsChallengeInfo]) -> None:
        """Remove every challenge record set, continuing past individual failures.

        The first failure is re-raised once every record set has been attempted.
        """
        first_error: Exception | None = None
        for fqdn, (domain, _values) in group_records(records).items():
            try:
                zone, relative = split_record_name(fqdn, domain)
                self.delete_txt_record(zone, relative)
            except Exception as exc:
                logger.error("Failed to delete TXT record %s: %s", fqdn, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error
