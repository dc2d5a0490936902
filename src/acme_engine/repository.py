"""Persistence collaborator: entity storage and typed finders."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from datetime import timedelta

from acme_engine.models import (
    USABLE_CERTIFICATE_STATUSES,
    Account,
    AccountStatus,
    Authorization,
    AuthorizationStatus,
    Certificate,
    CertificateStatus,
    Challenge,
    ChallengeStatus,
    Identifier,
    Order,
    OrderStatus,
    new_entity_id,
    utcnow,
)

Entity = Account | Order | Identifier | Authorization | Challenge | Certificate


class Repository(ABC):
    """Storage boundary used by the engines.

    ``save`` makes an entity and its owned children durable. Finders return
    exact matches in no particular order unless stated otherwise.
    """

    @abstractmethod
    def save(self, entity: Entity) -> None:
        """Persist ``entity`` and any children it owns."""

    @abstractmethod
    def find_account_by_email(self, email: str, server_url: str | None = None) -> Account | None: ...

    @abstractmethod
    def find_accounts(self, server_url: str | None = None, status: AccountStatus | None = None) -> list[Account]: ...

    @abstractmethod
    def find_orders(self, account: Account | None = None, status: OrderStatus | None = None) -> list[Order]: ...

    @abstractmethod
    def find_authorization_by_domain(self, domain: str) -> Authorization | None: ...

    @abstractmethod
    def find_authorizations(self, status: AuthorizationStatus) -> list[Authorization]: ...

    @abstractmethod
    def find_challenges(self, status: ChallengeStatus) -> list[Challenge]: ...

    @abstractmethod
    def find_certificates(
        self,
        domain: str | None = None,
        order: Order | None = None,
        status: CertificateStatus | None = None,
    ) -> list[Certificate]: ...

    @abstractmethod
    def find_expiring_certificates(self, days: int) -> list[Certificate]:
        """Usable certificates whose not-after falls within ``days``, ascending by not-after."""

    @abstractmethod
    def find_valid_certificates(self) -> list[Certificate]:
        """Usable, unexpired certificates ascending by not-after."""


class InMemoryRepository(Repository):
    """Process-local repository; last writer wins."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._store: dict[type, dict[str, Entity]] = {
            kind: {} for kind in (Account, Order, Identifier, Authorization, Challenge, Certificate)
        }

    def save(self, entity: Entity) -> None:
        with self._lock:
            self._save(entity)

    def _save(self, entity: Entity) -> None:
        if not entity.id:
            entity.id = new_entity_id()
        self._store[type(entity)][entity.id] = entity

        if isinstance(entity, Account):
            for order in entity.orders:
                self._save(order)
        elif isinstance(entity, Order):
            for child in (*entity.identifiers, *entity.authorizations):
                self._save(child)
            if entity.certificate is not None:
                self._save(entity.certificate)
        elif isinstance(entity, Authorization):
            for challenge in entity.challenges:
                self._save(challenge)

    def _all(self, kind: type) -> list:
        with self._lock:
            return list(self._store[kind].values())

    def find_account_by_email(self, email: str, server_url: str | None = None) -> Account | None:
        for account in self._all(Account):
            if email in account.emails and (server_url is None or account.acme_server_url == server_url):
                return account
        return None

    def find_accounts(self, server_url: str | None = None, status: AccountStatus | None = None) -> list[Account]:
        return [
            a
            for a in self._all(Account)
            if (server_url is None or a.acme_server_url == server_url) and (status is None or a.status is status)
        ]

    def find_orders(self, account: Account | None = None, status: OrderStatus | None = None) -> list[Order]:
        return [
            o
            for o in self._all(Order)
            if (account is None or o.account is account) and (status is None or o.status is status)
        ]

    def find_authorization_by_domain(self, domain: str) -> Authorization | None:
        return next((a for a in self._all(Authorization) if a.domain == domain), None)

    def find_authorizations(self, status: AuthorizationStatus) -> list[Authorization]:
        return [a for a in self._all(Authorization) if a.status is status]

    def find_challenges(self, status: ChallengeStatus) -> list[Challenge]:
        return [c for c in self._all(Challenge) if c.status is status]

    def find_certificates(
        self,
        domain: str | None = None,
        order: Order | None = None,
        status: CertificateStatus | None = None,
    ) -> list[Certificate]:
        return [
            c
            for c in self._all(Certificate)
            if (domain is None or c.contains_domain(domain))
            and (order is None or c.order is order)
            and (status is None or c.status is status)
        ]

    def find_expiring_certificates(self, days: int) -> list[Certificate]:
        threshold = utcnow() + timedelta(days=days)
        matches = [
            c
            for c in self._all(Certificate)
            if c.status in USABLE_CERTIFICATE_STATUSES and c.not_after_time is not None and c.not_after_time <= threshold
        ]
        return sorted(matches, key=lambda c: c.not_after_time)

    def find_valid_certificates(self) -> list[Certificate]:
        now = utcnow()
        matches = [
            c
            for c in self._all(Certificate)
            if c.status in USABLE_CERTIFICATE_STATUSES and c.not_after_time is not None and c.not_after_time > now
        ]
        return sorted(matches, key=lambda c: c.not_after_time)
