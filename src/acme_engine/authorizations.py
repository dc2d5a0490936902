"""Authorization details, DNS-01 challenge selection and deactivation."""

from __future__ import annotations

import logging

from acme_engine.audit import AuditLog
from acme_engine.errors import AcmeOperationError, AcmeTransportError
from acme_engine.models import (
    Account,
    Authorization,
    AuthorizationStatus,
    Challenge,
    ChallengeStatus,
    ChallengeType,
    Identifier,
    parse_response_timestamp,
    parse_status,
)
from acme_engine.repository import Repository
from acme_engine.transport import AcmeTransport

logger = logging.getLogger(__name__)


def _parse_challenges(entries: object) -> list[dict]:
    """Parse the dns-01 entries of an authorization's challenge list; other types are skipped."""
    if not isinstance(entries, list):
        raise AcmeTransportError("Response parsing failed: authorization challenges is not a list")
    parsed = []
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("type") != ChallengeType.DNS_01:
            continue
        parsed.append(
            {
                "challenge_url": entry.get("url", ""),
                "token": entry.get("token", ""),
                "status": parse_status(ChallengeStatus, entry.get("status"), default=ChallengeStatus.PENDING),
                "validated_time": parse_response_timestamp(entry.get("validated")),
                "error": entry.get("error"),
            }
        )
    return parsed


class AuthorizationEngine:
    def __init__(
        self,
        transport: AcmeTransport,
        repository: Repository,
        audit: AuditLog | None = None,
    ) -> None:
        self._transport = transport
        self._repository = repository
        self._audit = audit or AuditLog()

    def fetch_authorization_details(self, authorization: Authorization) -> Authorization:
        """Read an authorization from the CA and upsert its dns-01 challenges by URL."""
        account = self._require_account(authorization)
        response = self._transport.post_as_get(
            authorization.authorization_url,
            account.private_key_pem,
            account.account_url,
        )
        body = response.body
        status = parse_status(AuthorizationStatus, body.get("status"), default=authorization.status)
        expires_time = parse_response_timestamp(body.get("expires"))
        challenges = _parse_challenges(body.get("challenges", []))
        identifier = body.get("identifier") if isinstance(body.get("identifier"), dict) else None
        wildcard = bool(body.get("wildcard", authorization.wildcard))

        authorization.status = status
        if expires_time is not None:
            authorization.expires_time = expires_time
        authorization.wildcard = wildcard
        if identifier and identifier.get("value"):
            self._link_identifier(authorization, identifier, wildcard)
        for fields in challenges:
            self._upsert_challenge(authorization, fields)
        self._repository.save(authorization)

        logger.info(
            "Fetched authorization %s for %s (status: %s, %d dns-01 challenge(s))",
            authorization.authorization_url,
            authorization.domain,
            authorization.status,
            len(challenges),
        )
        return authorization

    def get_dns_challenge(self, authorization: Authorization) -> Challenge | None:
        return next((c for c in authorization.challenges if c.is_dns01), None)

    def is_authorization_valid(self, authorization: Authorization) -> bool:
        return authorization.valid

    def is_authorization_expired(self, authorization: Authorization) -> bool:
        return authorization.is_expired()

    def deactivate_authorization(self, authorization: Authorization) -> Authorization:
        """Relinquish an authorization at the CA (RFC 8555 §7.5.2)."""
        account = self._require_account(authorization)
        response = self._transport.post(
            authorization.authorization_url,
            {"status": "deactivated"},
            account.private_key_pem,
            account.account_url,
        )
        status = parse_status(
            AuthorizationStatus,
            response.body.get("status"),
            default=AuthorizationStatus.DEACTIVATED,
        )

        authorization.status = status
        self._repository.save(authorization)

        logger.info("Deactivated authorization %s", authorization.authorization_url)
        self._audit.log_operation(
            "deactivate_authorization",
            "Authorization deactivated",
            entity_type="Authorization",
            entity_id=authorization.id,
            context={"domain": authorization.domain},
        )
        return authorization

    def find_authorization_by_domain(self, domain: str) -> Authorization | None:
        return self._repository.find_authorization_by_domain(domain)

    def find_authorizations_by_status(self, status: AuthorizationStatus) -> list[Authorization]:
        return self._repository.find_authorizations(status)

    @staticmethod
    def _require_account(authorization: Authorization) -> Account:
        order = authorization.order
        account = order.account if order is not None else None
        if (
            not authorization.authorization_url
            or account is None
            or not account.account_url
            or not account.private_key_pem
        ):
            raise AcmeOperationError("Invalid authorization or account data")
        return account

    @staticmethod
    def _link_identifier(authorization: Authorization, identifier: dict, wildcard: bool) -> None:
        """Point the authorization at the ordered identifier the CA is reporting on.

        The CA reports a wildcard authorization under its base domain and may
        change the case of a name. The order's identifiers are never extended
        here: they define what goes into the CSR.
        """
        value = identifier["value"]
        domain = f"*.{value}" if wildcard and not value.startswith("*.") else value
        match = next((i for i in authorization.order.identifiers if i.value.lower() == domain.lower()), None)
        if match is not None:
            authorization.identifier = match
        elif authorization.identifier is None:
            authorization.identifier = Identifier(value=domain, type=identifier.get("type", "dns"), wildcard=wildcard)

    @staticmethod
    def _upsert_challenge(authorization: Authorization, fields: dict) -> None:
        challenge = authorization.find_challenge_by_url(fields["challenge_url"])
        if challenge is None:
            challenge = Challenge(challenge_url=fields["challenge_url"], type=ChallengeType.DNS_01)
            authorization.add_challenge(challenge)
        if challenge.token != fields["token"]:
            # A new token invalidates anything prepared for the old one.
            challenge.token = fields["token"]
            challenge.key_authorization = ""
            challenge.dns_record_name = None
            challenge.dns_record_value = None
        challenge.status = fields["status"]
        if fields["validated_time"] is not None:
            challenge.validated_time = fields["validated_time"]
        if fields["error"] is not None:
            challenge.error = fields["error"]
