"""Statuses shared by orders and subscription deliveries."""

from enum import Enum

from protean.exceptions import ValidationError


class DeliveryStatus(Enum):
    AWAITING = "awaiting"
    EN_ROUTE = "en_route"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(Enum):
    INSTANT_PAYMENT = "instant_payment"
    CARD = "card"


_VALID_DELIVERY_TRANSITIONS = {
    DeliveryStatus.AWAITING: {DeliveryStatus.EN_ROUTE, DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED},
    DeliveryStatus.EN_ROUTE: {DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED, DeliveryStatus.AWAITING},
    DeliveryStatus.DELIVERED: set(),
    DeliveryStatus.CANCELLED: set(),
}


def assert_delivery_transition(current: str, target: DeliveryStatus) -> None:
    current_status = DeliveryStatus(current)
    if target not in _VALID_DELIVERY_TRANSITIONS.get(current_status, set()):
        raise ValidationError(
            {"delivery_status": [f"Cannot transition from {current_status.value} to {target.value}"]}
        )
