"""Order lifecycle: creation, finalization, status refresh and certificate download."""

from __future__ import annotations

import logging
from datetime import datetime

from acme_engine import crypto
from acme_engine.audit import AuditLog
from acme_engine.errors import AcmeError, AcmeOperationError, AcmeTransportError, AcmeValidationError
from acme_engine.models import (
    Account,
    Authorization,
    Certificate,
    CertificateStatus,
    Identifier,
    Order,
    OrderStatus,
    parse_response_timestamp,
    parse_status,
)
from acme_engine.repository import Repository
from acme_engine.transport import AcmeTransport

logger = logging.getLogger(__name__)


def _problem_detail(problem: object) -> str | None:
    if isinstance(problem, dict):
        return problem.get("detail") or problem.get("type")
    return None


def _parse_order_body(body: dict, default_status: OrderStatus) -> dict:
    """Parse every order field before any of them is applied."""
    authorization_urls = body.get("authorizations", [])
    if not isinstance(authorization_urls, list):
        raise AcmeTransportError("Response parsing failed: order authorizations is not a list")
    return {
        "status": parse_status(OrderStatus, body.get("status"), default=default_status),
        "expires_time": parse_response_timestamp(body.get("expires")),
        "finalize_url": body.get("finalize"),
        "certificate_url": body.get("certificate"),
        "error": _problem_detail(body.get("error")),
        "authorization_urls": authorization_urls,
    }


class OrderEngine:
    def __init__(
        self,
        transport: AcmeTransport,
        repository: Repository,
        audit: AuditLog | None = None,
        key_size: int = crypto.DEFAULT_KEY_SIZE,
    ) -> None:
        self._transport = transport
        self._repository = repository
        self._audit = audit or AuditLog()
        self._key_size = key_size

    def create_order(
        self,
        account: Account,
        domains: list[str],
        not_before: datetime | None = None,
        not_after: datetime | None = None,
    ) -> Order:
        """Submit a newOrder for ``domains`` and record the returned authorizations.

        Authorizations are linked to identifiers by position; fetching their
        details later re-links them from the CA's identifier field.
        """
        if not domains:
            raise AcmeValidationError("At least one domain is required to create an order")
        if not account.valid or not account.account_url:
            raise AcmeOperationError("Account must be valid to create an order")

        identifiers = [Identifier.from_domain(d) for d in domains]
        payload: dict = {"identifiers": [{"type": i.type, "value": i.value} for i in identifiers]}
        if not_before is not None:
            payload["notBefore"] = not_before.isoformat()
        if not_after is not None:
            payload["notAfter"] = not_after.isoformat()

        response = self._transport.post(
            self._transport.resource_url("newOrder"),
            payload,
            account.private_key_pem,
            account.account_url,
        )
        order_url = response.location or response.body.get("location")
        if not order_url:
            raise AcmeTransportError("Order creation failed: no Location header in response")
        parsed = _parse_order_body(response.body, OrderStatus.PENDING)

        order = Order(
            order_url=order_url,
            finalize_url=parsed["finalize_url"],
            certificate_url=parsed["certificate_url"],
            status=parsed["status"],
            expires_time=parsed["expires_time"],
            error=parsed["error"],
        )
        for identifier in identifiers:
            order.add_identifier(identifier)
        self._link_authorizations(order, parsed["authorization_urls"])
        account.add_order(order)
        self._repository.save(order)

        logger.info("Created ACME order %s for %s", order.order_url, domains)
        self._audit.log_operation(
            "create_order",
            "Order created",
            entity_type="Order",
            entity_id=order.id,
            context={"order_url": order.order_url, "domains": list(domains), "status": str(order.status)},
        )
        return order

    def finalize_order(self, order: Order, csr_der: bytes) -> Order:
        """Submit ``csr_der`` to the order's finalize URL.

        Whether the order may be finalized is decided by the CA; a refusal
        surfaces as an AcmeServerError carrying the CA's detail.
        """
        if not order.finalize_url:
            raise AcmeOperationError("Order has no finalize URL")
        if not csr_der:
            raise AcmeValidationError("CSR is empty")
        account = self._require_account(order)

        response = self._transport.post(
            order.finalize_url,
            {"csr": crypto.b64url(csr_der)},
            account.private_key_pem,
            account.account_url,
        )
        parsed = _parse_order_body(response.body, order.status)

        self._apply(order, parsed)
        self._repository.save(order)

        logger.info("Finalized ACME order %s (status: %s)", order.order_url, order.status)
        self._audit.log_operation(
            "finalize_order",
            "Order finalized",
            entity_type="Order",
            entity_id=order.id,
            context={"status": str(order.status), "certificate_url": order.certificate_url},
        )
        return order

    def finalize_order_with_auto_csr(self, order: Order, csr_der: bytes | None = None) -> Order:
        """Finalize with ``csr_der``, or with a CSR built from the order's identifiers.

        The certificate key is the order's existing one or a freshly generated
        key, stored on the order once finalization succeeds.
        """
        if csr_der:
            return self.finalize_order(order, csr_der)
        if len(order.identifiers) == 0:
            raise AcmeOperationError("Order has no identifiers")
        if not order.finalize_url:
            raise AcmeOperationError("Order has no finalize URL")

        private_key_pem = order.private_key_pem or crypto.generate_private_key_pem(self._key_size)
        csr = crypto.generate_csr(order.domains, private_key_pem)
        self.finalize_order(order, csr)

        if order.private_key_pem != private_key_pem:
            order.private_key_pem = private_key_pem
            self._repository.save(order)
        return order

    def refresh_order_status(self, order: Order) -> Order:
        """Re-read the order from the CA. Any failure is reported as an operation fault."""
        try:
            account = self._require_account(order)
            if not order.order_url:
                raise AcmeOperationError("Order URL not available")
            response = self._transport.post_as_get(order.order_url, account.private_key_pem, account.account_url)
            parsed = _parse_order_body(response.body, order.status)
        except AcmeError as exc:
            self._audit.log_exception(exc, entity_type="Order", entity_id=order.id)
            raise AcmeOperationError(
                f"Failed to get order status: {exc}",
                problem_type=exc.problem_type,
                status_code=exc.status_code,
                problem=exc.problem,
            ) from exc

        previous = order.status
        self._apply(order, parsed)
        self._link_authorizations(order, parsed["authorization_urls"])
        self._repository.save(order)

        if order.status is not previous:
            logger.info("Order %s: %s -> %s", order.order_url, previous, order.status)
        return order

    def download_certificate(self, order: Order) -> Certificate:
        """Download the issued chain and attach it to ``order`` as its certificate."""
        if not order.certificate_url:
            raise AcmeOperationError("Certificate URL not available")
        if order.certificate is not None:
            raise AcmeOperationError("Certificate already downloaded for this order")
        account = self._require_account(order)

        response = self._transport.post_as_get(order.certificate_url, account.private_key_pem, account.account_url)
        fullchain_pem = response.body.get("certificate")
        if not fullchain_pem:
            raise AcmeOperationError("Empty certificate received")
        try:
            details = crypto.parse_certificate_chain(fullchain_pem)
        except AcmeValidationError as exc:
            raise AcmeTransportError(f"Certificate download failed: {exc}") from exc

        certificate = Certificate(
            certificate_pem=details.leaf_pem,
            status=CertificateStatus.ISSUED,
            certificate_chain_pem=details.chain_pem,
            private_key_pem=order.private_key_pem,
            serial_number=details.serial_number,
            fingerprint=details.fingerprint,
            domains=details.domains,
            not_before_time=details.not_before,
            not_after_time=details.not_after,
            expires_time=details.not_after,
            issuer=details.issuer,
        )
        order.attach_certificate(certificate)
        self._repository.save(order)

        logger.info(
            "Downloaded certificate %s for order %s (expires %s)",
            certificate.serial_number,
            order.order_url,
            certificate.not_after_time.isoformat(),
        )
        self._audit.log_operation(
            "download_certificate",
            "Certificate downloaded",
            entity_type="Certificate",
            entity_id=certificate.id,
            context={"serial_number": certificate.serial_number, "domains": certificate.domains},
        )
        return certificate

    def is_order_ready(self, order: Order) -> bool:
        """True when the order can be finalized: every authorization holds a valid challenge."""
        if order.status is not OrderStatus.READY or not order.finalize_url or order.is_expired():
            return False
        if len(order.authorizations) == 0:
            return False
        return all(
            authz.valid and not authz.is_expired() and any(c.valid for c in authz.challenges)
            for authz in order.authorizations
        )

    def is_order_valid(self, order: Order) -> bool:
        return order.valid

    def find_orders_by_account(self, account: Account) -> list[Order]:
        return self._repository.find_orders(account=account)

    def find_orders_by_status(self, status: OrderStatus) -> list[Order]:
        return self._repository.find_orders(status=status)

    @staticmethod
    def _require_account(order: Order) -> Account:
        account = order.account
        if account is None or not account.account_url:
            raise AcmeOperationError("Order has no registered account")
        return account

    @staticmethod
    def _apply(order: Order, parsed: dict) -> None:
        order.status = parsed["status"]
        if parsed["expires_time"] is not None:
            order.expires_time = parsed["expires_time"]
        if parsed["finalize_url"]:
            order.finalize_url = parsed["finalize_url"]
        if parsed["certificate_url"]:
            order.certificate_url = parsed["certificate_url"]
        order.error = parsed["error"]

    @staticmethod
    def _link_authorizations(order: Order, authorization_urls: list[str]) -> None:
        identifiers = list(order.identifiers)
        for position, url in enumerate(authorization_urls):
            if order.find_authorization_by_url(url) is not None:
                continue
            identifier = identifiers[position] if position < len(identifiers) else None
            order.add_authorization(
                Authorization(
                    authorization_url=url,
                    identifier=identifier,
                    wildcard=identifier.wildcard if identifier else False,
                )
            )
