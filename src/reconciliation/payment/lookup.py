"""Find the order or subscription a provider id belongs to."""

from protean.utils.globals import current_domain

from reconciliation.order.order import Order
from reconciliation.subscription.delivery import SubscriptionDelivery
from reconciliation.subscription.subscription import Subscription


def _first(aggregate_cls, **filters):
    if any(value in (None, "") for value in filters.values()):
        return None
    results = current_domain.repository_for(aggregate_cls)._dao.query.filter(**filters).all().items
    return results[0] if results else None


def order_by_pix_transaction(transaction_id: str) -> Order | None:
    return _first(Order, pix_transaction_id=transaction_id)


def order_by_card_payment(payment_id: str) -> Order | None:
    return _first(Order, card_payment_id=payment_id)


def subscription_by_pix_transaction(transaction_id: str) -> Subscription | None:
    """Match on the first charge's txid, then on the authorization id."""
    return _first(Subscription, pix_transaction_id=transaction_id) or _first(
        Subscription, pix_authorization_id=transaction_id
    )


def subscription_by_authorization(authorization_id: str) -> Subscription | None:
    return _first(Subscription, pix_authorization_id=authorization_id)


def subscription_by_card(reference: str) -> Subscription | None:
    """Match on the card-processor subscription id, then on the checkout session id."""
    return _first(Subscription, card_subscription_id=reference) or _first(
        Subscription, card_session_id=reference
    )


def deliveries_for_charge(subscription_id: str, charge_reference: str) -> list[SubscriptionDelivery]:
    if not charge_reference:
        return []
    return (
        current_domain.repository_for(SubscriptionDelivery)
        ._dao.query.filter(subscription_id=subscription_id, charge_reference=charge_reference)
        .all()
        .items
    )
