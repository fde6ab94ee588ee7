"""Configurable fake provider adapters for development and testing.

Both fakes answer from in-memory tables filled with `configure_*()` and record
every call in `calls`, so tests can assert what reconciliation asked the
provider. `fail_next()` makes the following calls raise GatewayError, the way
a provider outage would.
"""

import json
from uuid import uuid4

from reconciliation.gateway.port import (
    AuthorizationState,
    AuthorizationStatus,
    CardGateway,
    ChargeState,
    ChargeStatus,
    GatewayError,
    InstantPaymentGateway,
    IssuedCharge,
    WebhookPayloadError,
    WebhookSignatureError,
)

_PIX_CHARGE_STATUSES = {
    ChargeState.ACTIVE: "ATIVA",
    ChargeState.SETTLED: "CONCLUIDA",
    ChargeState.REMOVED_BY_PAYEE: "REMOVIDA_PELO_USUARIO_RECEBEDOR",
    ChargeState.REMOVED_BY_PROCESSOR: "REMOVIDA_PELO_PSP",
}

_PIX_AUTHORIZATION_STATUSES = {
    AuthorizationState.CREATED: "CRIADA",
    AuthorizationState.APPROVED: "APROVADA",
    AuthorizationState.REJECTED: "REJEITADA",
    AuthorizationState.CANCELLED: "CANCELADA",
}


class _Failing:
    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.failure: str | None = None

    def fail_next(self, reason: str = "Provider unavailable") -> None:
        self.failure = reason

    def recover(self) -> None:
        self.failure = None

    def _record(self, method: str, **kwargs) -> None:
        self.calls.append({"method": method, **kwargs})
        if self.failure:
            raise GatewayError(self.failure, provider=self.provider)


class FakePixGateway(_Failing, InstantPaymentGateway):
    """Fake instant-payment rail."""

    def __init__(self) -> None:
        super().__init__()
        self.charges: dict[str, ChargeState] = {}
        self.authorizations: dict[str, AuthorizationState] = {}

    def configure_charge(self, transaction_id: str, state: ChargeState) -> None:
        self.charges[transaction_id] = state

    def configure_authorization(self, authorization_id: str, state: AuthorizationState) -> None:
        self.authorizations[authorization_id] = state

    def obtain_access_token(self) -> str:
        self._record("obtain_access_token")
        return "fake-access-token"

    def query_charge_status(self, transaction_id: str) -> ChargeStatus:
        self._record("query_charge_status", transaction_id=transaction_id)
        state = self.charges.get(transaction_id, ChargeState.ACTIVE)
        return ChargeStatus(
            state=state,
            transaction_id=transaction_id,
            provider_status=_PIX_CHARGE_STATUSES[state],
        )

    def query_authorization_status(self, authorization_id: str) -> AuthorizationStatus:
        self._record("query_authorization_status", authorization_id=authorization_id)
        state = self.authorizations.get(authorization_id, AuthorizationState.CREATED)
        return AuthorizationStatus(
            state=state,
            authorization_id=authorization_id,
            provider_status=_PIX_AUTHORIZATION_STATUSES[state],
        )

    def create_charge(self, amount: float, description: str, reference: str | None = None) -> IssuedCharge:
        self._record("create_charge", amount=amount, description=description, reference=reference)
        transaction_id = f"fake{uuid4().hex}"
        self.charges[transaction_id] = ChargeState.ACTIVE
        return IssuedCharge(
            transaction_id=transaction_id,
            copy_paste_code=f"00020101fake{transaction_id}",
            location=f"fake.pix/{transaction_id}",
        )


class FakeCardGateway(_Failing, CardGateway):
    """Fake card rail. Webhook signatures must equal `signature`."""

    def __init__(self, signature: str = "fake-signature") -> None:
        super().__init__()
        self.signature = signature
        self.sessions: dict[str, dict] = {}

    def configure_session(
        self,
        session_id: str,
        payment_status: str = "paid",
        payment_intent: str | None = None,
        subscription: str | None = None,
    ) -> None:
        self.sessions[session_id] = {
            "payment_status": payment_status,
            "payment_intent": payment_intent,
            "subscription": subscription,
        }

    def obtain_access_token(self) -> str:
        self._record("obtain_access_token")
        return "sk_test_fake"

    def query_charge_status(self, transaction_id: str) -> ChargeStatus:
        self._record("query_charge_status", transaction_id=transaction_id)
        session = self.sessions.get(transaction_id, {"payment_status": "unpaid"})
        state = ChargeState.SETTLED if session["payment_status"] == "paid" else ChargeState.ACTIVE
        return ChargeStatus(
            state=state,
            transaction_id=transaction_id,
            provider_status=session["payment_status"],
            payment_reference=session.get("payment_intent"),
            subscription_reference=session.get("subscription"),
        )

    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        self._record("construct_event", signature=signature)
        if signature != self.signature:
            raise WebhookSignatureError("Invalid webhook signature", provider=self.provider)
        try:
            event = json.loads(payload)
        except ValueError as exc:
            raise WebhookPayloadError("Payload is not JSON", provider=self.provider) from exc
        if not isinstance(event, dict):
            raise WebhookPayloadError("Payload is not an event object", provider=self.provider)
        return event
