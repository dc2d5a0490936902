"""Typed ACME faults raised by the transport and the engines."""

from __future__ import annotations

from datetime import datetime

_PROBLEM_PREFIX = "urn:ietf:params:acme:error:"


class AcmeError(Exception):
    """Base class for every fault raised by the ACME engine."""

    def __init__(
        self,
        message: str,
        problem_type: str | None = None,
        status_code: int | None = None,
        problem: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.problem_type = problem_type
        self.status_code = status_code
        self.problem = problem


class AcmeValidationError(AcmeError, ValueError):
    """Malformed input detected before any network call (URL, key material, CSR)."""


class AcmeOperationError(AcmeError):
    """Local precondition violated, e.g. a challenge that is not pending."""


class AcmeTransportError(AcmeError):
    """Network, timeout or response parsing failure."""


class AcmeServerError(AcmeError):
    """The CA answered with a problem document (RFC 8555 §6.7)."""

    @classmethod
    def from_problem(cls, status_code: int, problem: dict, retry_after: datetime | None = None) -> AcmeServerError:
        raw_type = problem.get("type")
        problem_type = raw_type.removeprefix(_PROBLEM_PREFIX) if isinstance(raw_type, str) else None
        detail = problem.get("detail")
        message = detail if isinstance(detail, str) and detail else f"ACME server returned HTTP {status_code}"

        if status_code == 429 or problem_type == "rateLimited":
            return AcmeRateLimitError(
                message,
                problem_type=problem_type,
                status_code=status_code,
                problem=problem,
                retry_after=retry_after,
            )
        return cls(message, problem_type=problem_type, status_code=status_code, problem=problem)

    @property
    def is_bad_nonce(self) -> bool:
        return self.problem_type == "badNonce"


class AcmeRateLimitError(AcmeServerError):
    """The CA rejected the request with HTTP 429 / rateLimited."""

    def __init__(self, message: str, retry_after: datetime | None = None, **kwargs) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after
