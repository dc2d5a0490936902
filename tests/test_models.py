"""Tests for acme_engine.models."""

import datetime
import re

import pytest

from acme_engine.errors import AcmeTransportError
from acme_engine.models import (
    Account,
    AccountStatus,
    Authorization,
    AuthorizationStatus,
    Certificate,
    CertificateStatus,
    Challenge,
    ChallengeStatus,
    DnsChallengeInfo,
    EntitySet,
    Identifier,
    Order,
    OrderStatus,
    parse_status,
    parse_timestamp,
)

NOW = datetime.datetime(2026, 1, 1, 12, 0, tzinfo=datetime.UTC)


def _cert(days=None, **kwargs):
    not_after = NOW + datetime.timedelta(days=days) if days is not None else None
    return Certificate(certificate_pem="pem", not_after_time=not_after, **kwargs)


# --- valid flag follows status ---


@pytest.mark.parametrize(
    ("entity", "statuses", "valid"),
    [
        (lambda: Account("https://acme.test/directory", "key"), AccountStatus, AccountStatus.VALID),
        (Order, OrderStatus, OrderStatus.VALID),
        (Authorization, AuthorizationStatus, AuthorizationStatus.VALID),
        (Challenge, ChallengeStatus, ChallengeStatus.VALID),
    ],
)
def test_valid_tracks_status(entity, statuses, valid):
    obj = entity()
    for status in statuses:
        obj.status = status
        assert obj.valid is (status is valid)


def test_certificate_is_valid_by_default_and_issued_is_usable():
    cert = Certificate()
    assert cert.status is CertificateStatus.VALID
    assert cert.valid
    cert.status = CertificateStatus.ISSUED
    assert cert.valid
    cert.status = CertificateStatus.REVOKED
    assert not cert.valid
    assert cert.is_revoked


# --- EntitySet and ownership ---


class TestEntitySet:
    def test_add_is_noop_when_present(self):
        items = EntitySet()
        challenge = Challenge()

        assert items.add(challenge) is True
        assert items.add(challenge) is False
        assert len(items) == 1

    def test_remove_is_noop_when_absent(self):
        items = EntitySet()
        challenge = Challenge()

        assert items.remove(challenge) is False
        items.add(challenge)
        assert items.remove(challenge) is True
        assert challenge not in items

    def test_identity_is_by_id_not_field_values(self):
        items = EntitySet([Challenge(token="t"), Challenge(token="t")])
        assert len(items) == 2

    def test_iteration_preserves_insertion_order(self):
        first, second = Identifier("a.com"), Identifier("b.com")
        items = EntitySet([first, second])

        assert list(items) == [first, second]
        assert items.first() is first


def test_account_order_ownership_is_bidirectional():
    account = Account("https://acme.test/directory", "key")
    order = Order()

    account.add_order(order)
    account.add_order(order)
    assert order.account is account
    assert len(account.orders) == 1

    account.remove_order(order)
    assert order.account is None
    assert len(account.orders) == 0


def test_authorization_challenge_ownership():
    authz = Authorization(authorization_url="https://acme.test/authz/1")
    challenge = Challenge(challenge_url="https://acme.test/chall/1")

    authz.add_challenge(challenge)

    assert challenge.authorization is authz
    assert authz.find_challenge_by_url("https://acme.test/chall/1") is challenge
    assert authz.find_challenge_by_url("https://acme.test/chall/2") is None
    authz.remove_challenge(challenge)
    assert challenge.authorization is None


def test_order_attach_certificate_sets_owner():
    order = Order()
    cert = Certificate()

    order.attach_certificate(cert)

    assert order.certificate is cert
    assert cert.order is order


# --- Identifier / Challenge ---


def test_identifier_from_wildcard_domain_keeps_literal_value():
    identifier = Identifier.from_domain("*.example.com")
    assert identifier.value == "*.example.com"
    assert identifier.wildcard is True
    assert identifier.type == "dns"
    assert Identifier.from_domain("example.com").wildcard is False


def test_full_dns_record_name_returns_stored_value_without_prefixing():
    challenge = Challenge()
    assert challenge.full_dns_record_name() == ""

    challenge.dns_record_name = "example.com"
    assert challenge.full_dns_record_name() == "example.com"


def test_challenge_dns_value_requires_key_authorization():
    challenge = Challenge()
    assert challenge.calculate_dns_record_value() == ""

    challenge.key_authorization = "tok.thumb"
    value = challenge.calculate_dns_record_value()
    assert re.fullmatch(r"[A-Za-z0-9_-]{43}", value)


# --- Authorization expiry ---


def test_authorization_expired_status_wins_over_future_timestamp():
    authz = Authorization(
        status=AuthorizationStatus.EXPIRED,
        expires_time=NOW + datetime.timedelta(days=7),
    )
    assert authz.is_expired(now=NOW)


def test_authorization_expiry_by_timestamp():
    authz = Authorization(expires_time=NOW - datetime.timedelta(seconds=1))
    assert authz.is_expired(now=NOW)
    authz.expires_time = NOW + datetime.timedelta(seconds=1)
    assert not authz.is_expired(now=NOW)
    assert not Authorization().is_expired(now=NOW)


# --- Certificate expiry and domains ---


class TestCertificateExpiry:
    def test_is_expired(self):
        assert _cert(days=-1).is_expired(now=NOW)
        assert not _cert(days=1).is_expired(now=NOW)
        assert not _cert().is_expired(now=NOW)

    def test_expiring_within_boundary_is_inclusive(self):
        assert _cert(days=30).is_expiring_within(30, now=NOW)
        assert not _cert(days=31).is_expiring_within(30, now=NOW)

    def test_already_expired_is_not_expiring_within(self):
        assert not _cert(days=-1).is_expiring_within(30, now=NOW)

    def test_no_not_after_is_never_expiring(self):
        assert not _cert().is_expiring_within(30, now=NOW)

    def test_days_until_expiry_is_signed(self):
        assert _cert(days=10).days_until_expiry(now=NOW) == 10
        assert _cert(days=-3).days_until_expiry(now=NOW) == -3
        assert _cert().days_until_expiry(now=NOW) is None


def test_contains_domain_is_exact_and_case_sensitive():
    cert = Certificate(domains=["example.com", "*.example.com"])

    assert cert.contains_domain("example.com")
    assert cert.contains_domain("*.example.com")
    assert not cert.contains_domain("sub.example.com")
    assert not cert.contains_domain("EXAMPLE.com")


def test_full_chain_pem():
    assert Certificate(certificate_pem="LEAF").full_chain_pem() == "LEAF"
    assert Certificate(certificate_pem="LEAF", certificate_chain_pem="CHAIN").full_chain_pem() == "LEAF\nCHAIN"


# --- Parsing helpers ---


def test_parse_timestamp_handles_zulu_and_nanoseconds():
    parsed = parse_timestamp("2026-03-01T10:20:30.123456789Z")
    assert parsed == datetime.datetime(2026, 3, 1, 10, 20, 30, 123456, tzinfo=datetime.UTC)


def test_parse_timestamp_naive_is_utc():
    assert parse_timestamp("2026-03-01T10:20:30").tzinfo is datetime.UTC


def test_parse_status_maps_known_value_and_default():
    assert parse_status(OrderStatus, "ready") is OrderStatus.READY
    assert parse_status(OrderStatus, None, default=OrderStatus.PENDING) is OrderStatus.PENDING


def test_parse_status_rejects_unknown_value():
    with pytest.raises(AcmeTransportError, match="unknown OrderStatus 'bogus'"):
        parse_status(OrderStatus, "bogus")


def test_dns_challenge_info_to_dict():
    info = DnsChallengeInfo(domain="example.com", record_name="_acme-challenge.example.com", record_value="v")

    assert info.to_dict() == {
        "domain": "example.com",
        "name": "_acme-challenge.example.com",
        "value": "v",
        "type": "TXT",
    }
    assert DnsChallengeInfo.from_dict(info.to_dict()) == info
