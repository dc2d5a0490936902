"""DNS-01 challenge preparation, response and status tracking."""

from __future__ import annotations

import logging

from acme_engine import crypto
from acme_engine.audit import AuditLog, LogLevel
from acme_engine.errors import AcmeOperationError, AcmeValidationError
from acme_engine.models import (
    Account,
    Challenge,
    ChallengeStatus,
    DnsChallengeInfo,
    parse_response_timestamp,
    parse_status,
)
from acme_engine.repository import Repository
from acme_engine.transport import AcmeTransport

logger = logging.getLogger(__name__)

_RECORD_PREFIX = "_acme-challenge."


def _account_for(challenge: Challenge) -> Account | None:
    authorization = challenge.authorization
    order = authorization.order if authorization is not None else None
    return order.account if order is not None else None


class ChallengeEngine:
    def __init__(
        self,
        transport: AcmeTransport,
        repository: Repository,
        audit: AuditLog | None = None,
    ) -> None:
        self._transport = transport
        self._repository = repository
        self._audit = audit or AuditLog()

    def prepare_dns_challenge(self, challenge: Challenge) -> Challenge:
        """Compute the key authorization and the TXT record that proves it.

        For ``*.example.com`` the record is ``_acme-challenge.example.com``
        (RFC 8555 §8.4), the same name the apex domain uses.
        """
        authorization = challenge.authorization
        domain = authorization.domain if authorization is not None else None
        if not domain:
            raise AcmeValidationError("Challenge has no identifier domain")
        if not challenge.token:
            raise AcmeValidationError("Challenge has no token")
        account = _account_for(challenge)
        if account is None:
            raise AcmeValidationError("Challenge has no account key")

        key_authorization, record_value = crypto.dns01_response(challenge.token, account.private_key_pem)

        challenge.key_authorization = key_authorization
        challenge.dns_record_name = _RECORD_PREFIX + domain.removeprefix("*.")
        challenge.dns_record_value = record_value
        challenge.status = ChallengeStatus.PENDING
        self._repository.save(challenge)

        logger.info("Prepared DNS-01 challenge for %s: %s", domain, challenge.dns_record_name)
        return challenge

    def setup_dns_record(self, challenge: Challenge) -> Challenge:
        """Make sure the TXT record name and value are computed; no DNS provider is called."""
        if not challenge.dns_record_name or not challenge.dns_record_value:
            return self.prepare_dns_challenge(challenge)
        return challenge

    def get_dns_challenge_record(self, challenge: Challenge) -> DnsChallengeInfo:
        if not challenge.dns_record_name or not challenge.dns_record_value:
            raise AcmeOperationError("DNS challenge has not been prepared")
        authorization = challenge.authorization
        return DnsChallengeInfo(
            domain=(authorization.domain if authorization is not None else None) or "",
            record_name=challenge.dns_record_name,
            record_value=challenge.dns_record_value,
        )

    def respond_to_challenge(self, challenge: Challenge) -> Challenge:
        """Tell the CA the TXT record is in place by POSTing ``{}`` to the challenge URL."""
        account = self._require_account(challenge)
        try:
            crypto.load_jwk(account.private_key_pem)
        except AcmeValidationError as exc:
            raise AcmeOperationError("Invalid challenge or account data") from exc

        response = self._transport.post(
            challenge.challenge_url,
            {},
            account.private_key_pem,
            account.account_url,
        )
        self._apply(challenge, response.body, default_status=ChallengeStatus.PROCESSING)
        self._repository.save(challenge)

        logger.info("Responded to challenge %s (status: %s)", challenge.challenge_url, challenge.status)
        self._audit.log_operation(
            "respond_to_challenge",
            "Challenge response sent",
            entity_type="Challenge",
            entity_id=challenge.id,
            context={"status": str(challenge.status), "record_name": challenge.dns_record_name},
        )
        return challenge

    start_challenge = respond_to_challenge
    validate_challenge = respond_to_challenge

    def complete_challenge(self, challenge: Challenge) -> Challenge:
        if challenge.status is not ChallengeStatus.PENDING:
            raise AcmeOperationError("Challenge must be in PENDING status to complete")
        return self.respond_to_challenge(challenge)

    def check_challenge_status(self, challenge: Challenge) -> Challenge:
        """Re-read the challenge from the CA; callers poll this with their own backoff."""
        if not challenge.challenge_url:
            raise AcmeOperationError("Challenge URL not available")
        account = self._require_account(challenge)

        response = self._transport.post_as_get(
            challenge.challenge_url,
            account.private_key_pem,
            account.account_url,
        )
        previous = challenge.status
        self._apply(challenge, response.body, default_status=challenge.status)
        self._repository.save(challenge)

        if challenge.status is not previous:
            logger.info("Challenge %s: %s -> %s", challenge.challenge_url, previous, challenge.status)
        return challenge

    def cleanup_dns_record(self, challenge: Challenge) -> None:
        """Record that the TXT record is no longer needed; deletion belongs to the DNS provider."""
        if not challenge.dns_record_name:
            return
        logger.warning(
            "TXT record %s is no longer needed; remove it through the DNS provider",
            challenge.dns_record_name,
        )
        self._audit.log_operation(
            "cleanup_dns_record",
            "DNS record cleanup requested",
            entity_type="Challenge",
            entity_id=challenge.id,
            context={"record_name": challenge.dns_record_name},
            level=LogLevel.WARNING,
        )

    def is_challenge_valid(self, challenge: Challenge) -> bool:
        return challenge.valid

    def is_challenge_processing(self, challenge: Challenge) -> bool:
        return challenge.status is ChallengeStatus.PROCESSING

    def is_challenge_invalid(self, challenge: Challenge) -> bool:
        return challenge.status is ChallengeStatus.INVALID

    def find_challenges_by_status(self, status: ChallengeStatus) -> list[Challenge]:
        return self._repository.find_challenges(status)

    @staticmethod
    def _require_account(challenge: Challenge) -> Account:
        account = _account_for(challenge)
        if not challenge.challenge_url or account is None or not account.account_url:
            raise AcmeOperationError("Invalid challenge or account data")
        return account

    @staticmethod
    def _apply(challenge: Challenge, body: dict, default_status: ChallengeStatus) -> None:
        status = parse_status(ChallengeStatus, body.get("status"), default=default_status)
        validated_time = parse_response_timestamp(body.get("validated"))
        error = body.get("error")
        if error:
            status = ChallengeStatus.INVALID

        challenge.status = status
        if validated_time is not None:
            challenge.validated_time = validated_time
        if error:
            challenge.error = error
