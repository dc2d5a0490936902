"""Tests for acme_engine.accounts."""

from unittest.mock import patch

import pytest

from acme_engine.accounts import AccountEngine
from acme_engine.errors import AcmeOperationError, AcmeServerError, AcmeTransportError, AcmeValidationError
from acme_engine.models import Account, AccountStatus

DIRECTORY_URL = "https://acme.test/directory"
ACCOUNT_URL = "https://acme.test/acct/1"


@pytest.fixture
def engine(transport, repository, audit):
    return AccountEngine(transport, repository, audit)


class TestRegisterAccount:
    def test_builds_valid_account_from_response(self, engine, transport, repository, account_key_pem, acme_response):
        transport.post.return_value = acme_response({"status": "valid"}, location=ACCOUNT_URL)

        account = engine.register_account(["mailto:a@x.com"], True, account_key_pem)

        assert account.status is AccountStatus.VALID
        assert account.valid
        assert account.contacts == ["mailto:a@x.com"]
        assert account.account_url == ACCOUNT_URL
        assert account.acme_server_url == DIRECTORY_URL
        assert account.private_key_pem == account_key_pem
        assert account.public_key_jwk["kty"] == "RSA"
        assert repository.find_account_by_email("a@x.com") is account

    def test_signs_new_account_with_jwk(self, engine, transport, account_key_pem, acme_response):
        transport.post.return_value = acme_response({"status": "valid"}, location=ACCOUNT_URL)

        engine.register_account(["mailto:a@x.com"], True, account_key_pem)

        transport.post.assert_called_once_with(
            "https://acme.test/newAccount",
            {"termsOfServiceAgreed": True, "contact": ["mailto:a@x.com"]},
            account_key_pem,
        )

    def test_invalid_key_fails_before_network(self, engine, transport):
        with pytest.raises(AcmeValidationError):
            engine.register_account(["mailto:a@x.com"], True, "")
        transport.post.assert_not_called()

    def test_unknown_status_is_rejected_and_nothing_saved(self, engine, transport, repository, account_key_pem, acme_response):
        transport.post.return_value = acme_response({"status": "weird"}, location=ACCOUNT_URL)

        with pytest.raises(AcmeTransportError):
            engine.register_account(["mailto:a@x.com"], True, account_key_pem)

        assert repository.find_accounts() == []

    def test_records_audit_entry(self, engine, transport, audit, account_key_pem, acme_response):
        transport.post.return_value = acme_response({"status": "valid"}, location=ACCOUNT_URL)

        account = engine.register_account([], True, account_key_pem)

        audit.log_operation.assert_called_once()
        assert audit.log_operation.call_args.kwargs["entity_id"] == account.id


class TestRegisterAccountByEmail:
    @patch("acme_engine.accounts.crypto.generate_private_key_pem")
    def test_generates_key_and_uses_mailto_contact(self, mock_gen, engine, transport, account_key_pem, acme_response):
        mock_gen.return_value = account_key_pem
        transport.post.return_value = acme_response({"status": "valid"}, location=ACCOUNT_URL)

        account = engine.register_account_by_email("a@x.com", key_size=4096)

        mock_gen.assert_called_once_with(4096)
        assert account.contacts == ["mailto:a@x.com"]
        assert account.terms_of_service_agreed is True

    @patch("acme_engine.accounts.crypto.generate_private_key_pem")
    def test_wraps_server_fault_preserving_message(self, mock_gen, engine, transport, account_key_pem):
        mock_gen.return_value = account_key_pem
        transport.post.side_effect = AcmeServerError("Invalid contact domain", problem_type="invalidContact")

        with pytest.raises(AcmeOperationError, match="Account registration failed: Invalid contact domain") as excinfo:
            engine.register_account_by_email("a@invalid")

        assert excinfo.value.problem_type == "invalidContact"
        assert isinstance(excinfo.value.__cause__, AcmeServerError)

    def test_rejects_other_server_url(self, engine, transport):
        with pytest.raises(AcmeValidationError, match="bound to"):
            engine.register_account_by_email("a@x.com", server_url="https://other/directory")
        transport.post.assert_not_called()

    def test_requires_email(self, engine):
        with pytest.raises(AcmeValidationError, match="Email is required"):
            engine.register_account_by_email("")


class TestLookups:
    def test_find_by_email_server_and_status(self, engine, repository, account):
        repository.save(account)

        assert engine.find_account_by_email("admin@example.com") is account
        assert engine.find_accounts_by_server_url(DIRECTORY_URL) == [account]
        assert engine.find_accounts_by_status(AccountStatus.VALID) == [account]
        assert engine.find_accounts_by_status(AccountStatus.DEACTIVATED) == []

    def test_is_account_valid_uses_local_status(self, engine, transport, account):
        assert engine.is_account_valid(account)
        account.status = AccountStatus.PENDING
        assert not engine.is_account_valid(account)
        transport.post.assert_not_called()


class TestDeactivateAccount:
    def test_posts_deactivation_with_kid(self, engine, transport, repository, account, acme_response):
        transport.post.return_value = acme_response({"status": "deactivated"})

        result = engine.deactivate_account(account)

        transport.post.assert_called_once_with(ACCOUNT_URL, {"status": "deactivated"}, account.private_key_pem, ACCOUNT_URL)
        assert result is account
        assert account.status is AccountStatus.DEACTIVATED
        assert account.is_deactivated
        assert not account.valid
        assert repository.find_accounts(status=AccountStatus.DEACTIVATED) == [account]

    def test_server_fault_leaves_status_unchanged(self, engine, transport, account):
        transport.post.side_effect = AcmeServerError("nope")

        with pytest.raises(AcmeServerError):
            engine.deactivate_account(account)

        assert account.status is AccountStatus.VALID

    def test_requires_account_url(self, engine, account_key_pem):
        with pytest.raises(AcmeOperationError, match="Account URL not available"):
            engine.deactivate_account(Account(DIRECTORY_URL, account_key_pem))


class TestContactsAndInfo:
    def test_update_contacts(self, engine, transport, account, acme_response):
        transport.post.return_value = acme_response({"status": "valid", "contact": ["mailto:new@x.com"]})

        engine.update_account_contacts(account, ["mailto:new@x.com"])

        transport.post.assert_called_once_with(
            ACCOUNT_URL, {"contact": ["mailto:new@x.com"]}, account.private_key_pem, ACCOUNT_URL
        )
        assert account.contacts == ["mailto:new@x.com"]

    def test_update_contacts_failure_keeps_old_contacts(self, engine, transport, account):
        transport.post.side_effect = AcmeServerError("unsupported contact")

        with pytest.raises(AcmeServerError):
            engine.update_account_contacts(account, ["tel:+1"])

        assert account.contacts == ["mailto:admin@example.com"]

    def test_get_account_info_resyncs_status(self, engine, transport, account, acme_response):
        transport.post.return_value = acme_response({"status": "deactivated", "contact": []})

        info = engine.get_account_info(account)

        transport.post.assert_called_once_with(ACCOUNT_URL, {}, account.private_key_pem, ACCOUNT_URL)
        assert info == {"status": "deactivated", "contact": []}
        assert account.status is AccountStatus.DEACTIVATED
        assert account.contacts == []
