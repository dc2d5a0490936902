"""Tests for acme_engine.repository."""

import datetime
import threading

from acme_engine.models import (
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
)
from acme_engine.repository import InMemoryRepository

SERVER = "https://acme.test/directory"


def _days(n):
    return datetime.datetime.now(datetime.UTC) + datetime.timedelta(days=n)


def _order_graph():
    account = Account(SERVER, "key", contacts=["mailto:a@x.com"], status=AccountStatus.VALID)
    order = Order(order_url="https://acme.test/order/1")
    account.add_order(order)
    identifier = Identifier.from_domain("example.com")
    order.add_identifier(identifier)
    authz = Authorization(authorization_url="https://acme.test/authz/1", identifier=identifier)
    order.add_authorization(authz)
    challenge = Challenge(challenge_url="https://acme.test/chall/1")
    authz.add_challenge(challenge)
    return account, order, authz, challenge


def test_save_cascades_to_owned_children():
    repo = InMemoryRepository()
    account, order, authz, challenge = _order_graph()

    repo.save(account)

    assert repo.find_orders(account=account) == [order]
    assert repo.find_authorization_by_domain("example.com") is authz
    assert repo.find_challenges(ChallengeStatus.PENDING) == [challenge]


def test_save_is_last_writer_wins():
    repo = InMemoryRepository()
    account, order, _, _ = _order_graph()
    repo.save(order)

    order.status = OrderStatus.READY
    repo.save(order)

    assert repo.find_orders(status=OrderStatus.READY) == [order]
    assert repo.find_orders(status=OrderStatus.PENDING) == []


def test_find_account_by_email_and_server():
    repo = InMemoryRepository()
    account = Account(SERVER, "key", contacts=["mailto:a@x.com", "tel:+1"])
    repo.save(account)

    assert repo.find_account_by_email("a@x.com") is account
    assert repo.find_account_by_email("a@x.com", server_url=SERVER) is account
    assert repo.find_account_by_email("a@x.com", server_url="https://other/directory") is None
    assert repo.find_account_by_email("tel:+1") is None


def test_find_accounts_by_server_and_status():
    repo = InMemoryRepository()
    valid = Account(SERVER, "k1", status=AccountStatus.VALID)
    deactivated = Account(SERVER, "k2", status=AccountStatus.DEACTIVATED)
    elsewhere = Account("https://other/directory", "k3", status=AccountStatus.VALID)
    for account in (valid, deactivated, elsewhere):
        repo.save(account)

    assert set(map(id, repo.find_accounts(server_url=SERVER))) == {id(valid), id(deactivated)}
    assert repo.find_accounts(status=AccountStatus.DEACTIVATED) == [deactivated]


def test_find_authorizations_by_status():
    repo = InMemoryRepository()
    _, order, authz, _ = _order_graph()
    authz.status = AuthorizationStatus.VALID
    repo.save(order)

    assert repo.find_authorizations(AuthorizationStatus.VALID) == [authz]
    assert repo.find_authorizations(AuthorizationStatus.PENDING) == []


def test_find_certificates_by_domain_order_status():
    repo = InMemoryRepository()
    order = Order()
    cert = Certificate(domains=["example.com"], status=CertificateStatus.ISSUED)
    order.attach_certificate(cert)
    repo.save(order)

    assert repo.find_certificates(domain="example.com") == [cert]
    assert repo.find_certificates(domain="sub.example.com") == []
    assert repo.find_certificates(order=order) == [cert]
    assert repo.find_certificates(status=CertificateStatus.ISSUED) == [cert]
    assert repo.find_certificates(status=CertificateStatus.REVOKED) == []


def test_expiring_certificates_sorted_ascending_and_usable_only():
    repo = InMemoryRepository()
    later = Certificate(not_after_time=_days(20))
    sooner = Certificate(not_after_time=_days(5), status=CertificateStatus.ISSUED)
    outside = Certificate(not_after_time=_days(60))
    revoked = Certificate(not_after_time=_days(3), status=CertificateStatus.REVOKED)
    for cert in (later, sooner, outside, revoked):
        repo.save(cert)

    assert repo.find_expiring_certificates(30) == [sooner, later]


def test_valid_certificates_exclude_expired():
    repo = InMemoryRepository()
    expired = Certificate(not_after_time=_days(-1))
    far = Certificate(not_after_time=_days(80))
    near = Certificate(not_after_time=_days(10))
    for cert in (expired, far, near):
        repo.save(cert)

    assert repo.find_valid_certificates() == [near, far]


def test_concurrent_saves_are_all_kept():
    repo = InMemoryRepository()
    accounts = [Account(SERVER, f"k{i}") for i in range(50)]

    threads = [threading.Thread(target=repo.save, args=(a,)) for a in accounts]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(repo.find_accounts(server_url=SERVER)) == 50
