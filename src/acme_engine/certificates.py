"""Certificate validation, expiry queries and revocation."""

from __future__ import annotations

import logging

from cryptography import x509

from acme_engine import crypto
from acme_engine.audit import AuditLog
from acme_engine.errors import AcmeOperationError, AcmeValidationError
from acme_engine.models import (
    USABLE_CERTIFICATE_STATUSES,
    Certificate,
    CertificateStatus,
    Order,
    utcnow,
)
from acme_engine.repository import Repository
from acme_engine.transport import AcmeTransport

logger = logging.getLogger(__name__)

# RFC 5280 §5.3.1 CRLReason codes; 7 is unused.
_REVOCATION_REASONS = frozenset({0, 1, 2, 3, 4, 5, 6, 8, 9, 10})


class CertificateEngine:
    def __init__(
        self,
        transport: AcmeTransport,
        repository: Repository,
        audit: AuditLog | None = None,
        renewal_window_days: int = 30,
    ) -> None:
        self._transport = transport
        self._repository = repository
        self._audit = audit or AuditLog()
        self._renewal_window_days = renewal_window_days

    def generate_csr(self, domains: list[str], private_key_pem: str) -> bytes:
        return crypto.generate_csr(domains, private_key_pem)

    def validate_certificate(self, certificate: Certificate) -> bool:
        """True iff usable, the PEM parses and the certificate has not expired.

        Never raises for material that is merely invalid.
        """
        if certificate.status not in USABLE_CERTIFICATE_STATUSES or not certificate.certificate_pem:
            return False
        try:
            parsed = x509.load_pem_x509_certificate(certificate.certificate_pem.encode("ascii"))
        except (ValueError, UnicodeEncodeError):
            logger.debug("Certificate %s has unparseable PEM", certificate.id)
            return False
        expiry = certificate.effective_expiry or parsed.not_valid_after_utc
        return expiry > utcnow()

    is_certificate_valid = validate_certificate

    def is_expired(self, certificate: Certificate) -> bool:
        return certificate.is_expired()

    def is_expiring_within(self, certificate: Certificate, days: int = 30) -> bool:
        return certificate.is_expiring_within(days)

    def get_days_until_expiry(self, certificate: Certificate) -> int | None:
        return certificate.days_until_expiry()

    def contains_domain(self, certificate: Certificate, domain: str) -> bool:
        return certificate.contains_domain(domain)

    def get_full_chain_pem(self, certificate: Certificate) -> str:
        return certificate.full_chain_pem()

    def revoke_certificate(self, certificate: Certificate, reason: int = 0) -> Certificate:
        """Revoke ``certificate`` at the CA, signed by its order's account key.

        A CA refusal (for instance ``alreadyRevoked``) propagates and leaves
        the local status untouched.
        """
        if reason not in _REVOCATION_REASONS:
            raise AcmeValidationError(f"Invalid revocation reason code: {reason}")
        order = certificate.order
        account = order.account if order is not None else None
        if account is None or not account.account_url:
            raise AcmeOperationError("Certificate has no owning account")
        der = crypto.pem_to_der(certificate.certificate_pem)

        self._transport.post(
            self._transport.resource_url("revokeCert"),
            {"certificate": crypto.b64url(der), "reason": reason},
            account.private_key_pem,
            account.account_url,
        )

        certificate.status = CertificateStatus.REVOKED
        certificate.revoked_time = utcnow()
        self._repository.save(certificate)

        logger.info("Revoked certificate %s (reason %d)", certificate.serial_number, reason)
        self._audit.log_operation(
            "revoke_certificate",
            "Certificate revoked",
            entity_type="Certificate",
            entity_id=certificate.id,
            context={"serial_number": certificate.serial_number, "reason": reason},
        )
        return certificate

    def find_certificates_by_domain(self, domain: str) -> list[Certificate]:
        return self._repository.find_certificates(domain=domain)

    def find_certificates_by_order(self, order: Order) -> list[Certificate]:
        return self._repository.find_certificates(order=order)

    def find_certificates_by_status(self, status: CertificateStatus) -> list[Certificate]:
        return self._repository.find_certificates(status=status)

    def find_expiring_certificates(self, days: int | None = None) -> list[Certificate]:
        """Usable certificates expiring within ``days`` (default: the renewal window), soonest first."""
        return self._repository.find_expiring_certificates(self._renewal_window_days if days is None else days)

    def find_valid_certificates(self) -> list[Certificate]:
        return self._repository.find_valid_certificates()
