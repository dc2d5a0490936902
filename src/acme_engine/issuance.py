"""End-to-end DNS-01 issuance: the caller-side polling loop around the engines."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Self

import httpx

from acme_engine.accounts import AccountEngine
from acme_engine.audit import AuditLog
from acme_engine.authorizations import AuthorizationEngine
from acme_engine.certificates import CertificateEngine
from acme_engine.challenges import ChallengeEngine
from acme_engine.config import AppConfig
from acme_engine.dns.base import DnsProvider
from acme_engine.errors import AcmeOperationError
from acme_engine.models import Account, Certificate, Challenge, ChallengeStatus, Order, OrderStatus
from acme_engine.orders import OrderEngine
from acme_engine.repository import InMemoryRepository, Repository
from acme_engine.transport import AcmeTransport

logger = logging.getLogger(__name__)


@dataclass
class AcmeEngines:
    """The five engines wired to one transport, repository and audit log."""

    transport: AcmeTransport
    repository: Repository
    audit: AuditLog
    accounts: AccountEngine
    orders: OrderEngine
    authorizations: AuthorizationEngine
    challenges: ChallengeEngine
    certificates: CertificateEngine

    def close(self) -> None:
        self.transport.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


def build_engines(
    config: AppConfig,
    repository: Repository | None = None,
    audit: AuditLog | None = None,
    _http_client: httpx.Client | None = None,
) -> AcmeEngines:
    """Build every engine around a single transport so the directory is fetched once."""
    repository = repository or InMemoryRepository()
    audit = audit or AuditLog()
    transport = AcmeTransport(
        config.acme_directory_url,
        timeout=config.request_timeout,
        audit=audit,
        _http_client=_http_client,
    )
    return AcmeEngines(
        transport=transport,
        repository=repository,
        audit=audit,
        accounts=AccountEngine(transport, repository, audit, key_size=config.key_size),
        orders=OrderEngine(transport, repository, audit, key_size=config.key_size),
        authorizations=AuthorizationEngine(transport, repository, audit),
        challenges=ChallengeEngine(transport, repository, audit),
        certificates=CertificateEngine(
            transport, repository, audit, renewal_window_days=config.renewal_window_days
        ),
    )


class _Deadline:
    def __init__(self, seconds: int, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._expires_at = clock() + seconds
        self.seconds = seconds

    @property
    def passed(self) -> bool:
        return self._clock() >= self._expires_at


def _challenge_failure(challenge: Challenge) -> str:
    error = challenge.error or {}
    domain = challenge.authorization.domain if challenge.authorization is not None else "?"
    return f"Challenge for {domain} failed: {error.get('detail') or error.get('type') or 'no detail'}"


def _wait_for_challenges(
    engines: AcmeEngines,
    challenges: list[Challenge],
    deadline: _Deadline,
    poll_interval: int,
    sleep: Callable[[float], None],
) -> None:
    pending = [c for c in challenges if not c.valid]
    while True:
        for challenge in list(pending):
            if challenge.status is ChallengeStatus.INVALID:
                raise AcmeOperationError(_challenge_failure(challenge))
            if challenge.valid:
                pending.remove(challenge)
        if not pending:
            return
        if deadline.passed:
            raise AcmeOperationError(
                f"Timed out after {deadline.seconds}s waiting for {len(pending)} challenge(s) to validate"
            )
        sleep(poll_interval)
        for challenge in pending:
            engines.challenges.check_challenge_status(challenge)


def _wait_for_order(
    engines: AcmeEngines,
    order: Order,
    wanted: OrderStatus,
    deadline: _Deadline,
    poll_interval: int,
    sleep: Callable[[float], None],
) -> None:
    while order.status is not wanted:
        if order.status is OrderStatus.INVALID:
            raise AcmeOperationError(f"Order is invalid: {order.error or 'no detail'}")
        if deadline.passed:
            raise AcmeOperationError(
                f"Timed out after {deadline.seconds}s waiting for order to become {wanted} (status: {order.status})"
            )
        sleep(poll_interval)
        engines.orders.refresh_order_status(order)


def _deprovision(dns_provider: DnsProvider, records: list) -> None:
    try:
        dns_provider.deprovision(records)
    except Exception as exc:
        # Leftover TXT records do not affect the outcome of this issuance.
        logger.error("DNS cleanup failed, remove challenge records manually: %s", exc)


def issue_certificate(
    engines: AcmeEngines,
    account: Account,
    domains: list[str],
    dns_provider: DnsProvider,
    deadline_seconds: int = 300,
    poll_interval: int = 5,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Certificate:
    """Drive one order from creation to a downloaded certificate.

    DNS records are provisioned for every pending authorization and removed
    again whether or not validation succeeds. The deadline covers challenge
    validation and certificate issuance together.
    """
    order = engines.orders.create_order(account, domains)

    challenges: list[Challenge] = []
    for authorization in list(order.authorizations):
        engines.authorizations.fetch_authorization_details(authorization)
        if authorization.valid:
            logger.info("Authorization for %s is already valid", authorization.domain)
            continue
        challenge = engines.authorizations.get_dns_challenge(authorization)
        if challenge is None:
            raise AcmeOperationError(f"No DNS-01 challenge found for domain {authorization.domain}")
        engines.challenges.setup_dns_record(challenge)
        challenges.append(challenge)

    records = [engines.challenges.get_dns_challenge_record(c) for c in challenges]
    deadline = _Deadline(deadline_seconds, clock)
    if records:
        try:
            dns_provider.provision(records)
            for challenge in challenges:
                if challenge.status is ChallengeStatus.PENDING:
                    engines.challenges.complete_challenge(challenge)
            logger.info(
                "Polling for %d challenge(s), deadline in %d seconds",
                len(challenges),
                deadline_seconds,
            )
            _wait_for_challenges(engines, challenges, deadline, poll_interval, sleep)
        finally:
            _deprovision(dns_provider, records)

    engines.orders.refresh_order_status(order)
    _wait_for_order(engines, order, OrderStatus.READY, deadline, poll_interval, sleep)

    engines.orders.finalize_order_with_auto_csr(order)
    _wait_for_order(engines, order, OrderStatus.VALID, deadline, poll_interval, sleep)

    certificate = engines.orders.download_certificate(order)
    logger.info("Issued certificate %s for %s", certificate.serial_number, domains)
    return certificate
