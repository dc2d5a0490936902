"""Operation and exception audit logging."""

from __future__ import annotations

import logging
from enum import StrEnum

logger = logging.getLogger(__name__)


class LogLevel(StrEnum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"

    @property
    def levelno(self) -> int:
        return logging.getLevelName(self.value.upper())


class AuditLog:
    """Records protocol operations and failures for operators.

    The engines call this for observability only: nothing here raises into
    the caller and no return value is consulted. Subclass to ship records
    somewhere other than the ``acme_engine.audit`` logger.
    """

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or logger

    def log_operation(
        self,
        operation: str,
        message: str,
        entity_type: str | None = None,
        entity_id: str | None = None,
        context: dict | None = None,
        level: LogLevel = LogLevel.INFO,
    ) -> None:
        self._log.log(
            level.levelno,
            "%s: %s",
            operation,
            message,
            extra={
                "acme_operation": operation,
                "acme_entity_type": entity_type,
                "acme_entity_id": entity_id,
                "acme_context": context or {},
            },
        )

    def log_exception(
        self,
        exc: BaseException,
        entity_type: str | None = None,
        entity_id: str | None = None,
        context: dict | None = None,
    ) -> None:
        self._log.error(
            "%s: %s",
            type(exc).__name__,
            exc,
            exc_info=exc,
            extra={
                "acme_entity_type": entity_type,
                "acme_entity_id": entity_id,
                "acme_context": context or {},
            },
        )
