"""Shared test fixtures for acme-engine."""

import datetime
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

import acme_engine.dns as _dns
from acme_engine.audit import AuditLog
from acme_engine.models import Account, AccountStatus
from acme_engine.repository import InMemoryRepository
from acme_engine.transport import AcmeResponse, AcmeTransport

DIRECTORY_URL = "https://acme.test/directory"
ACCOUNT_URL = "https://acme.test/acct/1"


def pytest_runtest_setup(item):
    """Reset module-level caches between tests."""
    _dns._credential = None


def _pem(key) -> str:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def account_key_pem(rsa_key) -> str:
    return _pem(rsa_key)


@pytest.fixture(scope="session")
def other_key_pem() -> str:
    return _pem(rsa.generate_private_key(public_exponent=65537, key_size=2048))


@pytest.fixture(scope="session")
def ec_key_pem() -> str:
    return _pem(ec.generate_private_key(ec.SECP256R1()))


@pytest.fixture(scope="session")
def issuer_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def make_certificate_pem(rsa_key, issuer_key):
    """Factory for a CA-signed leaf PEM, optionally followed by the issuer PEM."""
    issuer_name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Test Issuing CA")])
    now = datetime.datetime.now(datetime.UTC)
    issuer_cert = (
        x509.CertificateBuilder()
        .subject_name(issuer_name)
        .issuer_name(issuer_name)
        .public_key(issuer_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - datetime.timedelta(days=1))
        .not_valid_after(now + datetime.timedelta(days=3650))
        .sign(issuer_key, hashes.SHA256())
    )
    issuer_pem = issuer_cert.public_bytes(serialization.Encoding.PEM).decode()

    def _make(domains=("example.com", "www.example.com"), days=90, with_chain=True, serial=0x1234ABCD):
        not_before = datetime.datetime.now(datetime.UTC) - datetime.timedelta(days=1)
        builder = (
            x509.CertificateBuilder()
            .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])]))
            .issuer_name(issuer_name)
            .public_key(rsa_key.public_key())
            .serial_number(serial)
            .not_valid_before(not_before)
            .not_valid_after(not_before + datetime.timedelta(days=days + 1))
            .add_extension(x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]), critical=False)
        )
        leaf_pem = builder.sign(issuer_key, hashes.SHA256()).public_bytes(serialization.Encoding.PEM).decode()
        return leaf_pem + issuer_pem if with_chain else leaf_pem

    return _make


@pytest.fixture
def transport():
    mock = MagicMock(spec=AcmeTransport)
    mock.directory_url = DIRECTORY_URL
    mock.resource_url.side_effect = lambda name: f"https://acme.test/{name}"
    return mock


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def audit():
    return MagicMock(spec=AuditLog)


@pytest.fixture
def account(account_key_pem) -> Account:
    return Account(
        acme_server_url=DIRECTORY_URL,
        private_key_pem=account_key_pem,
        account_url=ACCOUNT_URL,
        status=AccountStatus.VALID,
        contacts=["mailto:admin@example.com"],
    )


def response(body=None, location=None, status_code=200) -> AcmeResponse:
    return AcmeResponse(body=body if body is not None else {}, status_code=status_code, location=location)


@pytest.fixture
def acme_response():
    """Factory for AcmeResponse objects returned by a mocked transport."""
    return response
