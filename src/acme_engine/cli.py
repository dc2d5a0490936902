"""acme-engine command-line entry point.

Usage::

    acme-engine register --email admin@example.com --account-key account.pem
    acme-engine issue --account-key account.pem -d example.com -d '*.example.com' --output ./certs
    acme-engine renew --account-key account.pem --cert ./certs/cert.pem --days-before-expiry 30
    acme-engine revoke --account-key account.pem --cert ./certs/cert.pem --reason 4

Configuration comes from the environment (see ``acme_engine.config``).
"""

from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path

from acme_engine import crypto
from acme_engine.config import AppConfig, load_config
from acme_engine.dns import get_dns_provider
from acme_engine.errors import AcmeError
from acme_engine.issuance import AcmeEngines, build_engines, issue_certificate
from acme_engine.models import Account, Certificate, Order

log = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acme-engine",
        description="Issue and revoke certificates from an ACME CA using DNS-01 validation",
    )
    parser.add_argument(
        "--directory-url",
        metavar="URL",
        help="ACME directory URL (overrides ACME_DIRECTORY_URL).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    register = subparsers.add_parser("register", help="Register an ACME account")
    register.add_argument("--email", help="Contact email (defaults to ACME_CONTACT_EMAIL)")
    register.add_argument(
        "--account-key",
        required=True,
        metavar="PATH",
        help="Account key PEM; generated and written here if the file does not exist.",
    )

    issue = subparsers.add_parser("issue", help="Issue a certificate via DNS-01")
    issue.add_argument("--account-key", required=True, metavar="PATH", help="Account key PEM")
    issue.add_argument("--email", help="Contact email (defaults to ACME_CONTACT_EMAIL)")
    issue.add_argument("-d", "--domain", dest="domains", action="append", required=True, help="Domain (repeatable)")
    issue.add_argument("--dns-provider", help="DNS provider (overrides DNS_PROVIDER)")
    issue.add_argument("--output", default=".", metavar="DIR", help="Directory for the PEM files")

    renew = subparsers.add_parser("renew", help="Reissue a certificate that is close to expiry")
    renew.add_argument("--account-key", required=True, metavar="PATH", help="Account key PEM")
    renew.add_argument("--email", help="Contact email (defaults to ACME_CONTACT_EMAIL)")
    renew.add_argument("--cert", required=True, metavar="PATH", help="Certificate PEM to renew")
    renew.add_argument(
        "--days-before-expiry",
        type=int,
        metavar="DAYS",
        help="Renew when the certificate expires within DAYS (defaults to RENEWAL_WINDOW_DAYS)",
    )
    renew.add_argument("--force", action="store_true", help="Renew regardless of expiry")
    renew.add_argument("--dry-run", action="store_true", help="Report what would happen without contacting the CA")
    renew.add_argument("--dns-provider", help="DNS provider (overrides DNS_PROVIDER)")
    renew.add_argument("--output", metavar="DIR", help="Directory for the PEM files (defaults to the certificate's)")

    revoke = subparsers.add_parser("revoke", help="Revoke a certificate")
    revoke.add_argument("--account-key", required=True, metavar="PATH", help="Account key PEM")
    revoke.add_argument("--cert", required=True, metavar="PATH", help="Certificate PEM to revoke")
    revoke.add_argument("--reason", type=int, default=0, help="RFC 5280 reason code (default 0)")

    return parser


def _contacts(email: str | None, config: AppConfig) -> list[str]:
    email = email or config.contact_email
    return [f"mailto:{email}"] if email else []


def _load_account(engines: AcmeEngines, key_path: Path, contacts: list[str]) -> Account:
    # newAccount with a known key returns the existing account.
    return engines.accounts.register_account(contacts, True, key_path.read_text())


def _write(path: Path, content: str, private: bool = False) -> None:
    path.write_text(content)
    if private:
        path.chmod(0o600)
    log.info("Wrote %s", path)


def _run_register(engines: AcmeEngines, config: AppConfig, args: argparse.Namespace) -> None:
    key_path = Path(args.account_key)
    if not key_path.exists():
        _write(key_path, crypto.generate_private_key_pem(config.key_size), private=True)
    account = _load_account(engines, key_path, _contacts(args.email, config))
    print(account.account_url)


def _issue_and_write(
    engines: AcmeEngines,
    config: AppConfig,
    args: argparse.Namespace,
    domains: list[str],
    output: Path,
) -> None:
    account = _load_account(engines, Path(args.account_key), _contacts(args.email, config))
    output.mkdir(parents=True, exist_ok=True)

    with get_dns_provider(config, provider_name=args.dns_provider) as provider:
        certificate = issue_certificate(
            engines,
            account,
            domains,
            provider,
            deadline_seconds=config.validation_timeout,
            poll_interval=config.poll_interval,
        )

    _write(output / "cert.pem", certificate.certificate_pem)
    _write(output / "chain.pem", certificate.certificate_chain_pem or "")
    _write(output / "fullchain.pem", engines.certificates.get_full_chain_pem(certificate))
    _write(output / "privkey.pem", certificate.private_key_pem or "", private=True)
    print(f"Issued certificate {certificate.serial_number}, expires {certificate.not_after_time.isoformat()}")


def _run_issue(engines: AcmeEngines, config: AppConfig, args: argparse.Namespace) -> None:
    _issue_and_write(engines, config, args, args.domains, Path(args.output))


def _certificate_from_pem(pem: str) -> Certificate:
    details = crypto.parse_certificate_chain(pem)
    return Certificate(
        certificate_pem=details.leaf_pem,
        certificate_chain_pem=details.chain_pem,
        serial_number=details.serial_number,
        fingerprint=details.fingerprint,
        domains=details.domains,
        not_before_time=details.not_before,
        not_after_time=details.not_after,
        issuer=details.issuer,
    )


def _run_renew(engines: AcmeEngines, config: AppConfig, args: argparse.Namespace) -> None:
    cert_path = Path(args.cert)
    existing = _certificate_from_pem(cert_path.read_text())
    days = config.renewal_window_days if args.days_before_expiry is None else args.days_before_expiry
    due = engines.certificates.is_expired(existing) or engines.certificates.is_expiring_within(existing, days)

    if not due and not args.force:
        print(
            f"Certificate {existing.serial_number} is not due for renewal "
            f"({engines.certificates.get_days_until_expiry(existing)} days left, window {days} days)"
        )
        return
    if args.dry_run:
        print(f"Would renew certificate {existing.serial_number} for {', '.join(existing.domains)}")
        return

    log.info("Renewing certificate %s for %s", existing.serial_number, existing.domains)
    output = Path(args.output) if args.output else cert_path.parent
    _issue_and_write(engines, config, args, existing.domains, output)


def _run_revoke(engines: AcmeEngines, config: AppConfig, args: argparse.Namespace) -> None:
    account = _load_account(engines, Path(args.account_key), [])
    certificate = _certificate_from_pem(Path(args.cert).read_text())

    order = Order()
    account.add_order(order)
    order.attach_certificate(certificate)

    engines.certificates.revoke_certificate(certificate, args.reason)
    print(f"Revoked certificate {certificate.serial_number}")


_COMMANDS = {
    "register": _run_register,
    "issue": _run_issue,
    "renew": _run_renew,
    "revoke": _run_revoke,
}


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config()
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    if args.directory_url:
        config = replace(config, acme_directory_url=args.directory_url)

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        with build_engines(config) as engines:
            _COMMANDS[args.command](engines, config, args)
    except (AcmeError, ValueError, OSError) as exc:
        log.error("%s failed: %s", args.command, exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
