"""ACME wire transport: directory, replay nonces, JWS-signed requests and problem documents."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from email.utils import parsedate_to_datetime
from typing import Self

import httpx
import josepy
from acme import jws

from acme_engine import crypto
from acme_engine.audit import AuditLog, LogLevel
from acme_engine.errors import AcmeOperationError, AcmeServerError, AcmeTransportError, AcmeValidationError

logger = logging.getLogger(__name__)

_USER_AGENT = "acme-engine"
_DEFAULT_TIMEOUT = 30
_JOSE_CONTENT_TYPE = "application/jose+json"
_PEM_CHAIN_CONTENT_TYPE = "application/pem-certificate-chain"


@dataclass(frozen=True)
class AcmeResponse:
    """Parsed result of a successful authenticated request."""

    body: dict
    status_code: int
    location: str | None = None
    replay_nonce: str | None = None
    headers: dict = field(default_factory=dict, repr=False)


def _validate_url(url: str) -> None:
    try:
        parsed = httpx.URL(url)
    except (httpx.InvalidURL, TypeError) as exc:
        raise AcmeValidationError(f"Invalid URL: {url!r}") from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise AcmeValidationError(f"Invalid URL: {url!r}")


def _parse_retry_after(value: str | None) -> datetime | None:
    if not value:
        return None
    if value.isdigit():
        return datetime.now(UTC) + timedelta(seconds=int(value))
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


def _problem_from(response: httpx.Response) -> dict:
    try:
        problem = response.json()
    except ValueError:
        return {}
    return problem if isinstance(problem, dict) else {}


class AcmeTransport:
    """Authenticated HTTP access to one ACME server.

    The directory is fetched once per transport and shared read-only by every
    engine holding this instance. Nonces are never cached: each signed POST
    fetches a fresh one immediately before sending.
    """

    def __init__(
        self,
        directory_url: str,
        timeout: float = _DEFAULT_TIMEOUT,
        user_agent: str = _USER_AGENT,
        audit: AuditLog | None = None,
        _http_client: httpx.Client | None = None,
    ) -> None:
        self.directory_url = directory_url
        self._audit = audit or AuditLog()
        self._client = _http_client or httpx.Client(
            headers={"User-Agent": user_agent},
            timeout=timeout,
        )
        self._directory: dict | None = None
        self._directory_lock = threading.Lock()
        self.last_nonce: str | None = None

    def close(self) -> None:
        """Close the underlying HTTP client."""
        self._client.close()

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def get_directory(self) -> dict:
        """Return the CA directory, fetching it on first use."""
        if self._directory is not None:
            return self._directory
        with self._directory_lock:
            if self._directory is None:
                try:
                    response = self._client.get(self.directory_url)
                    response.raise_for_status()
                    directory = response.json()
                except (httpx.HTTPError, ValueError) as exc:
                    self._audit.log_exception(exc, context={"operation": "directory_fetch", "url": self.directory_url})
                    raise AcmeTransportError(f"Directory fetch failed: {exc}") from exc
                if not isinstance(directory, dict):
                    raise AcmeTransportError("Directory fetch failed: directory is not a JSON object")
                self._directory = directory
                self._audit.log_operation(
                    "directory_fetch",
                    "Fetched ACME directory",
                    context={"url": self.directory_url},
                )
        return self._directory

    def resource_url(self, name: str) -> str:
        """Look up a named resource (``newAccount``, ``newOrder``, ``revokeCert``...)."""
        url = self.get_directory().get(name)
        if not isinstance(url, str) or not url:
            raise AcmeOperationError(f"{name} URL not found in directory")
        return url

    def get_nonce(self) -> str:
        """Fetch a fresh replay nonce from the ``newNonce`` resource."""
        nonce_url = self.resource_url("newNonce")
        try:
            response = self._client.head(nonce_url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._audit.log_exception(exc, context={"operation": "nonce_fetch", "url": nonce_url})
            raise AcmeTransportError(f"Nonce fetch failed: {exc}") from exc

        nonce = response.headers.get("replay-nonce")
        if not nonce:
            raise AcmeTransportError("Nonce fetch failed: no Replay-Nonce header in response")
        logger.debug("Fetched nonce from %s", nonce_url)
        return nonce

    def get(self, url: str) -> dict:
        """Unauthenticated GET returning the parsed JSON body.

        A PEM certificate chain body is returned as ``{"certificate": <pem>}``.
        """
        _validate_url(url)
        try:
            response = self._client.get(url)
        except httpx.HTTPError as exc:
            self._audit.log_exception(exc, context={"operation": "acme_get", "url": url})
            raise AcmeTransportError(f"GET {url} failed: {exc}") from exc
        logger.debug("GET %s -> %d", url, response.status_code)
        return self._parse(response, f"GET {url}").body

    def post(
        self,
        url: str,
        payload: dict | None,
        account_private_key_pem: str,
        account_url: str | None = None,
    ) -> AcmeResponse:
        """Sign ``payload`` with the account key and POST it to ``url``.

        Without ``account_url`` the public JWK is embedded in the protected
        header (new-account and key-based revocation); otherwise ``kid`` is
        set to the account URL. A ``None`` payload is a POST-as-GET.
        """
        _validate_url(url)
        key = crypto.load_jwk(account_private_key_pem)

        nonce = self.get_nonce()
        body = self._sign(payload, url, key, nonce, account_url)
        try:
            response = self._client.post(url, content=body, headers={"Content-Type": _JOSE_CONTENT_TYPE})
        except httpx.HTTPError as exc:
            self._audit.log_exception(exc, context={"operation": "acme_request", "url": url})
            raise AcmeTransportError(f"POST {url} failed: {exc}") from exc

        self.last_nonce = response.headers.get("replay-nonce") or self.last_nonce
        result = self._parse(response, f"POST {url}")
        self._audit.log_operation(
            "acme_request",
            f"POST request to {url}",
            context={"url": url, "status": response.status_code},
            level=LogLevel.DEBUG,
        )
        return result

    def post_as_get(self, url: str, account_private_key_pem: str, account_url: str) -> AcmeResponse:
        """Fetch an account-bound resource with a signed empty payload (RFC 8555 §6.3)."""
        return self.post(url, None, account_private_key_pem, account_url)

    @staticmethod
    def _sign(
        payload: dict | None,
        url: str,
        key: josepy.JWKRSA,
        nonce: str,
        account_url: str | None,
    ) -> str:
        payload_bytes = json.dumps(payload).encode() if payload is not None else b""
        try:
            decoded_nonce = josepy.decode_b64jose(nonce)
        except josepy.DeserializationError as exc:
            raise AcmeTransportError(f"Nonce fetch failed: malformed nonce {nonce!r}") from exc
        signed = jws.JWS.sign(
            payload_bytes,
            key=key,
            alg=josepy.RS256,
            nonce=decoded_nonce,
            url=url,
            kid=account_url,
        )
        return signed.json_dumps()

    def _parse(self, response: httpx.Response, operation: str) -> AcmeResponse:
        if not response.is_success:
            problem = _problem_from(response)
            error = AcmeServerError.from_problem(
                response.status_code,
                problem,
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )
            logger.warning("%s rejected (HTTP %d): %s", operation, response.status_code, error)
            self._audit.log_exception(error, context={"operation": operation, "problem": problem})
            raise error

        content_type = response.headers.get("content-type", "").split(";")[0].strip()
        if content_type == _PEM_CHAIN_CONTENT_TYPE:
            body: object = {"certificate": response.text}
        elif not response.content:
            body = {}
        else:
            try:
                body = response.json()
            except ValueError as exc:
                raise AcmeTransportError(f"{operation} failed: invalid JSON response: {exc}") from exc
        if not isinstance(body, dict):
            raise AcmeTransportError(f"{operation} failed: expected a JSON object")

        return AcmeResponse(
            body=body,
            status_code=response.status_code,
            location=response.headers.get("location"),
            replay_nonce=response.headers.get("replay-nonce"),
            headers=dict(response.headers),
        )

