"""Key material, JWK thumbprints, DNS-01 digests and CSR generation."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime

import josepy
from acme import challenges
from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from acme_engine.errors import AcmeValidationError

DEFAULT_KEY_SIZE = 2048
_MAX_CN_LENGTH = 64


def b64url(data: bytes) -> str:
    """Base64url-encode without padding."""
    return josepy.b64encode(data).decode("ascii")


def generate_private_key_pem(key_size: int = DEFAULT_KEY_SIZE) -> str:
    """Generate an RSA private key and return it as PKCS#8 PEM text."""
    key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")


def load_private_key(private_key_pem: str | bytes | None) -> rsa.RSAPrivateKey:
    """Parse an RSA private key, raising AcmeValidationError on unusable material."""
    if not private_key_pem:
        raise AcmeValidationError("Private key is empty")
    if isinstance(private_key_pem, str):
        private_key_pem = private_key_pem.encode("ascii", errors="replace")
    try:
        key = serialization.load_pem_private_key(private_key_pem, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise AcmeValidationError(f"Invalid private key: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise AcmeValidationError("Only RSA keys are supported")
    return key


def load_jwk(private_key_pem: str | bytes | None) -> josepy.JWKRSA:
    """Wrap a PEM private key as a signing JWK."""
    return josepy.JWKRSA(key=load_private_key(private_key_pem))


def public_jwk(private_key_pem: str | bytes | None) -> dict:
    """Return the public JWK (``kty``, ``n``, ``e``) advertised to the CA."""
    return load_jwk(private_key_pem).public_key().to_json()


def jwk_thumbprint(private_key_pem: str | bytes | None) -> str:
    """RFC 7638 SHA-256 thumbprint of the account key, base64url without padding."""
    return b64url(load_jwk(private_key_pem).thumbprint(hash_function=hashes.SHA256))


def dns01_challenge(token: str) -> challenges.DNS01:
    """Wrap a CA-issued token as a DNS-01 challenge."""
    try:
        decoded = josepy.decode_b64jose(token)
    except josepy.DeserializationError as exc:
        raise AcmeValidationError(f"Invalid challenge token: {token!r}") from exc
    if b64url(decoded) != token:
        raise AcmeValidationError(f"Invalid challenge token: {token!r}")
    return challenges.DNS01(token=decoded)


def key_authorization(token: str, private_key_pem: str | bytes | None) -> str:
    return dns01_challenge(token).key_authorization(load_jwk(private_key_pem))


def dns01_response(token: str, private_key_pem: str | bytes | None) -> tuple[str, str]:
    """Return ``(key_authorization, txt_value)`` for a DNS-01 token."""
    response, validation = dns01_challenge(token).response_and_validation(load_jwk(private_key_pem))
    return response.key_authorization, validation


def calculate_dns_record_value(key_authorization: str) -> str:
    """DNS-01 TXT value: base64url(sha256(key_authorization)) without padding.

    Always 43 characters for a 256-bit digest.
    """
    return b64url(hashlib.sha256(key_authorization.encode("ascii")).digest())


def generate_csr(domains: list[str], private_key_pem: str | bytes) -> bytes:
    """Build a DER PKCS#10 CSR with CN = first domain and SAN = all domains.

    The CN is left out when the first domain is too long for it.
    """
    if not domains:
        raise AcmeValidationError("At least one domain is required for CSR generation")
    try:
        key = load_private_key(private_key_pem)
    except AcmeValidationError as exc:
        raise AcmeValidationError(f"Invalid private key for CSR generation: {exc}") from exc

    # X.509 caps the CN at 64 characters; longer names live in the SAN only.
    subject = [x509.NameAttribute(NameOID.COMMON_NAME, domains[0])] if len(domains[0]) <= _MAX_CN_LENGTH else []
    try:
        csr = (
            x509.CertificateSigningRequestBuilder()
            .subject_name(x509.Name(subject))
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
                critical=False,
            )
            .sign(key, hashes.SHA256())
        )
    except ValueError as exc:
        raise AcmeValidationError(f"Failed to generate CSR: {exc}") from exc
    return csr.public_bytes(serialization.Encoding.DER)


def split_pem_chain(fullchain_pem: str) -> list[x509.Certificate]:
    """Parse every certificate in a PEM bundle, leaf first."""
    try:
        return x509.load_pem_x509_certificates(fullchain_pem.encode("ascii"))
    except ValueError:
        return []


def certificate_to_pem(cert: x509.Certificate) -> str:
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def pem_to_der(certificate_pem: str) -> bytes:
    """Convert the first certificate of a PEM string to DER."""
    try:
        cert = x509.load_pem_x509_certificate(certificate_pem.encode("ascii"))
    except ValueError as exc:
        raise AcmeValidationError(f"Invalid certificate PEM: {exc}") from exc
    return cert.public_bytes(serialization.Encoding.DER)


@dataclass(frozen=True)
class CertificateDetails:
    """Metadata extracted from a PEM chain; the leaf is the first certificate."""

    leaf_pem: str
    chain_pem: str | None
    serial_number: str
    fingerprint: str
    issuer: str
    domains: list[str]
    not_before: datetime
    not_after: datetime


def _certificate_domains(cert: x509.Certificate) -> list[str]:
    domains = [str(a.value) for a in cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)]
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName)
    except x509.ExtensionNotFound:
        return domains
    for name in san.value.get_values_for_type(x509.DNSName):
        if name not in domains:
            domains.append(name)
    return domains


def parse_certificate_chain(fullchain_pem: str) -> CertificateDetails:
    """Split a PEM bundle into leaf and chain and read the leaf's metadata."""
    certs = split_pem_chain(fullchain_pem)
    if not certs:
        raise AcmeValidationError("No certificates found in PEM data")

    leaf = certs[0]
    issuer_cn = leaf.issuer.get_attributes_for_oid(NameOID.COMMON_NAME)
    chain = "".join(certificate_to_pem(c) for c in certs[1:])
    return CertificateDetails(
        leaf_pem=certificate_to_pem(leaf),
        chain_pem=chain or None,
        serial_number=format(leaf.serial_number, "x"),
        fingerprint=leaf.fingerprint(hashes.SHA256()).hex(),
        issuer=str(issuer_cn[0].value) if issuer_cn else leaf.issuer.rfc4514_string(),
        domains=_certificate_domains(leaf),
        not_before=leaf.not_valid_before_utc,
        not_after=leaf.not_valid_after_utc,
    )
