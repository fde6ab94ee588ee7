"""AuditEntry aggregate — durable record of every reconciliation decision.

One entry per external event handled (poll, webhook item, provider lookup),
successful or not, keyed by provider, trace id and event name.
"""

import json
from datetime import UTC, datetime

from protean.fields import Boolean, DateTime, String, Text

from reconciliation.domain import reconciliation


@reconciliation.aggregate
class AuditEntry:
    provider = String(required=True, max_length=20)
    trace_id = String(required=True, max_length=100)
    event = String(required=True, max_length=100)
    ok = Boolean(default=True)
    error_message = Text()
    entity_type = String(max_length=20)
    entity_id = String(max_length=100)
    details = Text()  # JSON object
    created_at = DateTime()

    @classmethod
    def record(
        cls,
        provider: str,
        trace_id: str,
        event: str,
        ok: bool = True,
        error_message: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        details: dict | None = None,
    ):
        return cls(
            provider=provider,
            trace_id=trace_id,
            event=event,
            ok=ok,
            error_message=error_message,
            entity_type=entity_type,
            entity_id=entity_id,
            details=json.dumps(details or {}, default=str),
            created_at=datetime.now(UTC),
        )

    @property
    def details_data(self) -> dict:
        return json.loads(self.details) if self.details else {}
