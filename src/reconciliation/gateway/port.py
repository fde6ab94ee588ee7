"""Payment provider ports (abstract interfaces).

Adapters for the instant-payment rail and the card rail normalize provider
answers into the enums below. They are read-only with respect to business
state: nothing here writes orders or subscriptions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class GatewayError(Exception):
    """A provider could not be reached, refused us, or answered nonsense."""

    def __init__(self, message: str, provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class CredentialsError(GatewayError):
    """Provider credentials or certificates are missing or unreadable."""


class WebhookSignatureError(GatewayError):
    """A webhook payload failed provider signature verification."""


class WebhookPayloadError(GatewayError):
    """A webhook body is not a decodable provider event."""


# ---------------------------------------------------------------------------
# Normalized states
# ---------------------------------------------------------------------------
class ChargeState(Enum):
    ACTIVE = "active"
    SETTLED = "settled"
    REMOVED_BY_PAYEE = "removed_by_payee"
    REMOVED_BY_PROCESSOR = "removed_by_processor"

    @property
    def is_removed(self) -> bool:
        return self in (ChargeState.REMOVED_BY_PAYEE, ChargeState.REMOVED_BY_PROCESSOR)


class AuthorizationState(Enum):
    CREATED = "created"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ChargeStatus:
    """Normalized answer to a charge lookup."""

    state: ChargeState
    transaction_id: str
    provider_status: str
    # Card rail: the payment intent or subscription created by the session
    payment_reference: str | None = None
    subscription_reference: str | None = None


@dataclass(frozen=True)
class AuthorizationStatus:
    state: AuthorizationState
    authorization_id: str
    provider_status: str


@dataclass(frozen=True)
class IssuedCharge:
    """A freshly created instant-payment charge."""

    transaction_id: str
    copy_paste_code: str | None = None
    location: str | None = None


# ---------------------------------------------------------------------------
# Ports
# ---------------------------------------------------------------------------
class PaymentGateway(ABC):
    provider: str = ""

    @abstractmethod
    def obtain_access_token(self) -> str:
        """Credential used to authorize the next provider call."""
        ...

    @abstractmethod
    def query_charge_status(self, transaction_id: str) -> ChargeStatus:
        """Look up one charge (or checkout session) by its provider id."""
        ...


class InstantPaymentGateway(PaymentGateway):
    provider = "pix"

    @abstractmethod
    def query_authorization_status(self, authorization_id: str) -> AuthorizationStatus:
        """Look up a recurring authorization by its provider id."""
        ...

    @abstractmethod
    def create_charge(self, amount: float, description: str, reference: str | None = None) -> IssuedCharge:
        """Issue a fresh immediate charge."""
        ...


class CardGateway(PaymentGateway):
    provider = "card"

    @abstractmethod
    def construct_event(self, payload: bytes, signature: str | None) -> dict:
        """Verify a webhook payload's signature and decode it."""
        ...
