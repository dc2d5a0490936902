"""Account registration, deactivation and contact management."""

from __future__ import annotations

import logging

from acme_engine import crypto
from acme_engine.audit import AuditLog
from acme_engine.errors import AcmeError, AcmeOperationError, AcmeValidationError
from acme_engine.models import Account, AccountStatus, parse_status
from acme_engine.repository import Repository
from acme_engine.transport import AcmeTransport

logger = logging.getLogger(__name__)


class AccountEngine:
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

    @property
    def server_url(self) -> str:
        return self._transport.directory_url

    def register_account(
        self,
        contacts: list[str] | None,
        terms_agreed: bool,
        private_key_pem: str,
    ) -> Account:
        """Create an account at the CA for the given key pair.

        The public JWK is embedded in the request; the CA's ``Location``
        header becomes the account URL used as ``kid`` afterwards.
        """
        public_jwk = crypto.public_jwk(private_key_pem)

        payload: dict = {"termsOfServiceAgreed": terms_agreed}
        if contacts:
            payload["contact"] = list(contacts)

        response = self._transport.post(
            self._transport.resource_url("newAccount"),
            payload,
            private_key_pem,
        )
        status = parse_status(AccountStatus, response.body.get("status"), default=AccountStatus.VALID)

        account = Account(
            acme_server_url=self.server_url,
            private_key_pem=private_key_pem,
            public_key_jwk=public_jwk,
            account_url=response.location,
            status=status,
            contacts=response.body.get("contact", list(contacts or [])),
            terms_of_service_agreed=terms_agreed,
        )
        self._repository.save(account)

        logger.info("Registered ACME account %s (status: %s)", account.account_url, account.status)
        self._audit.log_operation(
            "register_account",
            "Account registered",
            entity_type="Account",
            entity_id=account.id,
            context={"account_url": account.account_url, "status": str(account.status)},
        )
        return account

    def register_account_by_email(
        self,
        email: str,
        server_url: str | None = None,
        key_size: int | None = None,
        terms_agreed: bool = True,
    ) -> Account:
        """Generate a fresh account key and register it with a ``mailto:`` contact."""
        if not email:
            raise AcmeValidationError("Email is required for account registration")
        if server_url is not None and server_url != self.server_url:
            raise AcmeValidationError(f"Engine is bound to {self.server_url}, not {server_url}")

        private_key_pem = crypto.generate_private_key_pem(key_size or self._key_size)
        try:
            return self.register_account([f"mailto:{email}"], terms_agreed, private_key_pem)
        except AcmeError as exc:
            self._audit.log_exception(exc, entity_type="Account", context={"email": email})
            raise AcmeOperationError(
                f"Account registration failed: {exc}",
                problem_type=exc.problem_type,
                status_code=exc.status_code,
                problem=exc.problem,
            ) from exc

    def find_account_by_email(self, email: str, server_url: str | None = None) -> Account | None:
        return self._repository.find_account_by_email(email, server_url)

    def find_accounts_by_server_url(self, server_url: str) -> list[Account]:
        return self._repository.find_accounts(server_url=server_url)

    def find_accounts_by_status(self, status: AccountStatus) -> list[Account]:
        return self._repository.find_accounts(status=status)

    def is_account_valid(self, account: Account) -> bool:
        # Local view only; call get_account_info to resync with the CA.
        return account.valid

    def deactivate_account(self, account: Account) -> Account:
        """Permanently deactivate ``account`` at the CA (RFC 8555 §7.3.6)."""
        self._require_registered(account)
        response = self._transport.post(
            account.account_url,
            {"status": "deactivated"},
            account.private_key_pem,
            account.account_url,
        )
        status = parse_status(AccountStatus, response.body.get("status"), default=AccountStatus.DEACTIVATED)

        account.status = status
        self._repository.save(account)

        logger.info("Deactivated ACME account %s", account.account_url)
        self._audit.log_operation(
            "deactivate_account",
            "Account deactivated",
            entity_type="Account",
            entity_id=account.id,
        )
        return account

    def update_account_contacts(self, account: Account, contacts: list[str]) -> Account:
        self._require_registered(account)
        response = self._transport.post(
            account.account_url,
            {"contact": list(contacts)},
            account.private_key_pem,
            account.account_url,
        )

        account.contacts = response.body.get("contact", list(contacts))
        self._repository.save(account)

        logger.info("Updated contacts for ACME account %s", account.account_url)
        self._audit.log_operation(
            "update_account_contacts",
            "Account contacts updated",
            entity_type="Account",
            entity_id=account.id,
            context={"contacts": account.contacts},
        )
        return account

    def get_account_info(self, account: Account) -> dict:
        """Fetch the CA's account object and resync local status and contacts."""
        self._require_registered(account)
        response = self._transport.post(
            account.account_url,
            {},
            account.private_key_pem,
            account.account_url,
        )
        status = parse_status(AccountStatus, response.body.get("status"), default=account.status)

        account.status = status
        if "contact" in response.body:
            account.contacts = response.body["contact"]
        self._repository.save(account)
        return response.body

    @staticmethod
    def _require_registered(account: Account) -> None:
        if not account.account_url:
            raise AcmeOperationError("Account URL not available")
        if not account.private_key_pem:
            raise AcmeValidationError("Private key is empty")
