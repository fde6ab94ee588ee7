"""Decoding of Efí instant-payment webhook bodies.

One notification may carry three arrays:

    pix   settled (or removed) immediate charges: txid, valor, endToEndId
    rec   recurring-authorization changes: idRec, status
    cobr  recurring-charge results: idRec, txid, status

Entries are normalized into the dataclasses below; entries without the id
they are keyed on are dropped. A status the provider documents nowhere leaves
the notice without a state.
"""

from dataclasses import dataclass, field

from reconciliation.gateway.efi_adapter import AUTHORIZATION_STATES, CHARGE_STATES
from reconciliation.gateway.port import AuthorizationState, ChargeState, WebhookPayloadError

RECURRING_CHARGE_SETTLED = {"LIQUIDADA", "CONCLUIDA"}
RECURRING_CHARGE_FAILED = {"CANCELADA", "NAO_REALIZADA", "REJEITADA"}


@dataclass(frozen=True)
class ChargeNotice:
    transaction_id: str
    state: ChargeState | None
    provider_status: str
    amount: str | None = None
    end_to_end_id: str | None = None


@dataclass(frozen=True)
class AuthorizationNotice:
    authorization_id: str
    state: AuthorizationState | None
    provider_status: str


@dataclass(frozen=True)
class RecurringChargeNotice:
    authorization_id: str | None
    transaction_id: str | None
    provider_status: str

    @property
    def settled(self) -> bool:
        return self.provider_status in RECURRING_CHARGE_SETTLED

    @property
    def failed(self) -> bool:
        return self.provider_status in RECURRING_CHARGE_FAILED


@dataclass(frozen=True)
class PixNotification:
    charges: list[ChargeNotice] = field(default_factory=list)
    authorizations: list[AuthorizationNotice] = field(default_factory=list)
    recurring_charges: list[RecurringChargeNotice] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (self.charges or self.authorizations or self.recurring_charges)


def _entries(body: dict, key: str) -> list[dict]:
    value = body.get(key)
    if value is None:
        return []
    if isinstance(value, dict):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(entry, dict) for entry in value):
        raise WebhookPayloadError(f"'{key}' must be a list of objects", provider="pix")
    return value


def parse_notification(body) -> PixNotification:
    if not isinstance(body, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object", provider="pix")

    charges = []
    for entry in _entries(body, "pix"):
        if not entry.get("txid"):
            continue
        # Receipts carry no status: their presence means the charge settled
        provider_status = str(entry.get("status") or "CONCLUIDA").upper()
        charges.append(
            ChargeNotice(
                transaction_id=entry["txid"],
                state=CHARGE_STATES.get(provider_status),
                provider_status=provider_status,
                amount=entry.get("valor"),
                end_to_end_id=entry.get("endToEndId"),
            )
        )

    authorizations = [
        AuthorizationNotice(
            authorization_id=entry["idRec"],
            state=AUTHORIZATION_STATES.get(str(entry.get("status", "")).upper()),
            provider_status=str(entry.get("status", "")).upper(),
        )
        for entry in _entries(body, "rec")
        if entry.get("idRec")
    ]

    recurring_charges = [
        RecurringChargeNotice(
            authorization_id=entry.get("idRec"),
            transaction_id=entry.get("txid"),
            provider_status=str(entry.get("status", "")).upper(),
        )
        for entry in _entries(body, "cobr")
        if entry.get("idRec") or entry.get("txid")
    ]

    return PixNotification(charges=charges, authorizations=authorizations, recurring_charges=recurring_charges)
