"""Audit sinks.

The orchestrator only knows the `AuditSink` interface. The repository-backed
sink persists `AuditEntry` rows through the current unit of work, so a
decision and its audit entry commit (or roll back) together; failures are
recorded by the reconciliation boundary after the rollback.
"""

from abc import ABC, abstractmethod

import structlog
from protean.utils.globals import current_domain

from reconciliation.audit.audit_entry import AuditEntry

logger = structlog.get_logger(__name__)


class AuditSink(ABC):
    @abstractmethod
    def record(
        self,
        provider: str,
        trace_id: str,
        event: str,
        ok: bool = True,
        error_message: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        details: dict | None = None,
    ) -> None: ...


class RepositoryAuditSink(AuditSink):
    def record(
        self,
        provider: str,
        trace_id: str,
        event: str,
        ok: bool = True,
        error_message: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        details: dict | None = None,
    ) -> None:
        entry = AuditEntry.record(
            provider=provider,
            trace_id=trace_id,
            event=event,
            ok=ok,
            error_message=error_message,
            entity_type=entity_type,
            entity_id=entity_id,
            details=details,
        )
        current_domain.repository_for(AuditEntry).add(entry)
        log = logger.info if ok else logger.error
        log(
            "Audit entry recorded",
            provider=provider,
            trace_id=trace_id,
            audit_event=event,
            ok=ok,
            entity_id=entity_id,
        )
