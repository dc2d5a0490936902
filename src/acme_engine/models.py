"""Protocol entities: Account → Order → Identifier/Authorization → Challenge → Certificate."""

from __future__ import annotations

import re
import uuid
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Generic, Protocol, TypeVar

from acme_engine.crypto import calculate_dns_record_value
from acme_engine.errors import AcmeTransportError

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def new_entity_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: str) -> datetime:
    """Parse an RFC 3339 timestamp as sent by ACME servers.

    Fractional seconds beyond microsecond precision are truncated and naive
    values are taken to be UTC.
    """
    parsed = datetime.fromisoformat(_FRACTION_RE.sub(r"\1", value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def parse_response_timestamp(value: object) -> datetime | None:
    """Parse an optional timestamp from a CA response body."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise AcmeTransportError(f"Response parsing failed: invalid timestamp {value!r}")
    try:
        return parse_timestamp(value)
    except ValueError as exc:
        raise AcmeTransportError(f"Response parsing failed: invalid timestamp {value!r}") from exc


class AccountStatus(StrEnum):
    PENDING = "pending"
    VALID = "valid"
    DEACTIVATED = "deactivated"


class OrderStatus(StrEnum):
    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AuthorizationStatus(StrEnum):
    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


class ChallengeStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class ChallengeType(StrEnum):
    DNS_01 = "dns-01"


class CertificateStatus(StrEnum):
    # VALID and ISSUED are both usable states.
    VALID = "valid"
    ISSUED = "issued"
    EXPIRED = "expired"
    REVOKED = "revoked"


USABLE_CERTIFICATE_STATUSES = frozenset({CertificateStatus.VALID, CertificateStatus.ISSUED})


class _Entity(Protocol):
    id: str


E = TypeVar("E", bound=_Entity)


class EntitySet(Generic[E]):
    """Insertion-ordered collection of owned entities keyed by entity id."""

    def __init__(self, items: Iterable[E] = ()) -> None:
        self._items: dict[str, E] = {}
        for item in items:
            self.add(item)

    def add(self, item: E) -> bool:
        """Add ``item``; returns False if it was already present."""
        if item.id in self._items:
            return False
        self._items[item.id] = item
        return True

    def remove(self, item: E) -> bool:
        """Remove ``item``; returns False if it was absent."""
        return self._items.pop(item.id, None) is not None

    def first(self) -> E | None:
        return next(iter(self._items.values()), None)

    def __contains__(self, item: object) -> bool:
        return getattr(item, "id", None) in self._items

    def __iter__(self) -> Iterator[E]:
        return iter(list(self._items.values()))

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"EntitySet({len(self._items)} items)"


@dataclass(eq=False)
class Account:
    """A CA account and the RSA key pair that signs its requests."""

    acme_server_url: str
    private_key_pem: str = field(repr=False)
    public_key_jwk: dict | None = field(default=None, repr=False)
    account_url: str | None = None
    status: AccountStatus = AccountStatus.PENDING
    contacts: list[str] | None = None
    terms_of_service_agreed: bool = False
    id: str = field(default_factory=new_entity_id)
    orders: EntitySet[Order] = field(default_factory=EntitySet, repr=False)

    @property
    def valid(self) -> bool:
        return self.status is AccountStatus.VALID

    @property
    def is_deactivated(self) -> bool:
        return self.status is AccountStatus.DEACTIVATED

    @property
    def emails(self) -> list[str]:
        return [c.removeprefix("mailto:") for c in self.contacts or [] if c.startswith("mailto:")]

    def add_order(self, order: Order) -> None:
        if self.orders.add(order):
            order.account = self

    def remove_order(self, order: Order) -> None:
        if self.orders.remove(order) and order.account is self:
            order.account = None


@dataclass(eq=False)
class Identifier:
    value: str
    type: str = "dns"
    wildcard: bool = False
    valid: bool = False
    order: Order | None = field(default=None, repr=False)
    id: str = field(default_factory=new_entity_id)

    @classmethod
    def from_domain(cls, domain: str) -> Identifier:
        return cls(value=domain, wildcard=domain.startswith("*."))


@dataclass(eq=False)
class Challenge:
    challenge_url: str = ""
    type: ChallengeType = ChallengeType.DNS_01
    status: ChallengeStatus = ChallengeStatus.PENDING
    token: str = ""
    key_authorization: str = field(default="", repr=False)
    dns_record_name: str | None = None
    dns_record_value: str | None = None
    validated_time: datetime | None = None
    error: dict | None = None
    authorization: Authorization | None = field(default=None, repr=False)
    id: str = field(default_factory=new_entity_id)

    @property
    def valid(self) -> bool:
        return self.status is ChallengeStatus.VALID

    @property
    def is_dns01(self) -> bool:
        return self.type is ChallengeType.DNS_01

    def full_dns_record_name(self) -> str:
        """The stored record name, or "" when the challenge is not prepared yet."""
        return self.dns_record_name or ""

    def calculate_dns_record_value(self) -> str:
        if not self.key_authorization:
            return ""
        return calculate_dns_record_value(self.key_authorization)


@dataclass(eq=False)
class Authorization:
    authorization_url: str = ""
    status: AuthorizationStatus = AuthorizationStatus.PENDING
    expires_time: datetime | None = None
    wildcard: bool = False
    order: Order | None = field(default=None, repr=False)
    identifier: Identifier | None = None
    id: str = field(default_factory=new_entity_id)
    challenges: EntitySet[Challenge] = field(default_factory=EntitySet, repr=False)

    @property
    def valid(self) -> bool:
        return self.status is AuthorizationStatus.VALID

    @property
    def domain(self) -> str | None:
        return self.identifier.value if self.identifier else None

    def is_expired(self, now: datetime | None = None) -> bool:
        """The EXPIRED status wins over the timestamp, even one in the future."""
        if self.status is AuthorizationStatus.EXPIRED:
            return True
        return self.expires_time is not None and self.expires_time < (now or utcnow())

    def add_challenge(self, challenge: Challenge) -> None:
        if self.challenges.add(challenge):
            challenge.authorization = self

    def remove_challenge(self, challenge: Challenge) -> None:
        if self.challenges.remove(challenge) and challenge.authorization is self:
            challenge.authorization = None

    def find_challenge_by_url(self, url: str) -> Challenge | None:
        return next((c for c in self.challenges if c.challenge_url == url), None)


@dataclass(eq=False)
class Certificate:
    certificate_pem: str = field(default="", repr=False)
    status: CertificateStatus = CertificateStatus.VALID
    certificate_chain_pem: str | None = field(default=None, repr=False)
    private_key_pem: str | None = field(default=None, repr=False)
    serial_number: str | None = None
    fingerprint: str | None = None
    domains: list[str] = field(default_factory=list)
    not_before_time: datetime | None = None
    not_after_time: datetime | None = None
    expires_time: datetime | None = None
    issuer: str | None = None
    revoked_time: datetime | None = None
    order: Order | None = field(default=None, repr=False)
    id: str = field(default_factory=new_entity_id)

    @property
    def valid(self) -> bool:
        return self.status in USABLE_CERTIFICATE_STATUSES

    @property
    def is_revoked(self) -> bool:
        return self.status is CertificateStatus.REVOKED

    @property
    def effective_expiry(self) -> datetime | None:
        return self.not_after_time or self.expires_time

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.not_after_time is not None and self.not_after_time < (now or utcnow())

    def is_expiring_within(self, days: int = 30, now: datetime | None = None) -> bool:
        """True iff the certificate expires between now and ``days`` days from now, inclusive."""
        if self.not_after_time is None:
            return False
        remaining = self.not_after_time - (now or utcnow())
        return timedelta(0) <= remaining <= timedelta(days=days)

    def days_until_expiry(self, now: datetime | None = None) -> int | None:
        if self.not_after_time is None:
            return None
        seconds = (self.not_after_time - (now or utcnow())).total_seconds()
        return int(seconds / 86400)

    def contains_domain(self, domain: str) -> bool:
        # Exact match only: "*.example.com" does not cover "sub.example.com".
        return domain in self.domains

    def full_chain_pem(self) -> str:
        if not self.certificate_chain_pem:
            return self.certificate_pem
        return f"{self.certificate_pem}\n{self.certificate_chain_pem}"


@dataclass(eq=False)
class Order:
    order_url: str = ""
    finalize_url: str | None = None
    certificate_url: str | None = None
    status: OrderStatus = OrderStatus.PENDING
    expires_time: datetime | None = None
    error: str | None = None
    private_key_pem: str | None = field(default=None, repr=False)
    account: Account | None = field(default=None, repr=False)
    id: str = field(default_factory=new_entity_id)
    identifiers: EntitySet[Identifier] = field(default_factory=EntitySet, repr=False)
    authorizations: EntitySet[Authorization] = field(default_factory=EntitySet, repr=False)
    certificate: Certificate | None = field(default=None, repr=False)

    @property
    def valid(self) -> bool:
        return self.status is OrderStatus.VALID

    @property
    def domains(self) -> list[str]:
        return [i.value for i in self.identifiers]

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_time is not None and self.expires_time < (now or utcnow())

    def add_identifier(self, identifier: Identifier) -> None:
        if self.identifiers.add(identifier):
            identifier.order = self

    def add_authorization(self, authorization: Authorization) -> None:
        if self.authorizations.add(authorization):
            authorization.order = self

    def remove_authorization(self, authorization: Authorization) -> None:
        if self.authorizations.remove(authorization) and authorization.order is self:
            authorization.order = None

    def find_authorization_by_url(self, url: str) -> Authorization | None:
        return next((a for a in self.authorizations if a.authorization_url == url), None)

    def attach_certificate(self, certificate: Certificate) -> None:
        self.certificate = certificate
        certificate.order = self


@dataclass(frozen=True)
class DnsChallengeInfo:
    """DNS-01 TXT record an operator or DNS provider has to publish."""

    domain: str
    record_name: str
    record_value: str
    record_type: str = "TXT"

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "name": self.record_name,
            "value": self.record_value,
            "type": self.record_type,
        }

    @classmethod
    def from_dict(cls, data: dict) -> DnsChallengeInfo:
        return cls(
            domain=data["domain"],
            record_name=data["name"],
            record_value=data["value"],
            record_type=data.get("type", "TXT"),
        )


S = TypeVar("S", bound=StrEnum)


def parse_status(enum_cls: type[S], value: object, default: S | None = None) -> S:
    """Map a status string from a CA response onto ``enum_cls``.

    Unknown values are a response parsing failure, raised before any entity
    is touched.
    """
    if value is None and default is not None:
        return default
    try:
        return enum_cls(value)
    except ValueError as exc:
        raise AcmeTransportError(f"Response parsing failed: unknown {enum_cls.__name__} {value!r}") from exc
