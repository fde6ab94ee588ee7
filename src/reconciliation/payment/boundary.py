"""Reconciliation boundary.

Commands run inside a unit of work that rolls back on error, taking any audit
entry staged inside it along. The boundary records the failure afterwards, in
its own write, and re-raises so the caller still sees the error.
"""

import structlog
from protean.utils.globals import current_domain

from reconciliation.audit.sink import RepositoryAuditSink

logger = structlog.get_logger(__name__)


def process_with_audit(
    command,
    provider: str,
    event: str,
    trace_id: str,
    entity_type: str | None = None,
    entity_id: str | None = None,
):
    """Process `command` synchronously; audit and re-raise any failure."""
    try:
        return current_domain.process(command, asynchronous=False)
    except Exception as exc:
        logger.error(
            "Reconciliation failed",
            provider=provider,
            audit_event=event,
            trace_id=trace_id,
            entity_id=entity_id,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        RepositoryAuditSink().record(
            provider=provider,
            trace_id=trace_id,
            event=event,
            ok=False,
            error_message=f"{type(exc).__name__}: {exc}",
            entity_type=entity_type,
            entity_id=entity_id,
        )
        raise
