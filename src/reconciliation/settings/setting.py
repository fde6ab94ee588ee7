"""Setting aggregate — one row of the business key/value configuration store."""

import json
from datetime import UTC, datetime

from protean.fields import DateTime, String, Text

from reconciliation.domain import reconciliation


@reconciliation.aggregate
class Setting:
    key = String(identifier=True, required=True, max_length=100)
    value = Text()  # JSON text or a raw scalar
    updated_at = DateTime()

    @classmethod
    def create(cls, key: str, value) -> "Setting":
        """Store `value` as-is when it is a string, JSON-encoded otherwise."""
        return cls(key=key, value=_encode(value), updated_at=datetime.now(UTC))

    def change(self, value) -> None:
        self.value = _encode(value)
        self.updated_at = datetime.now(UTC)


def _encode(value) -> str:
    return value if isinstance(value, str) else json.dumps(value)
