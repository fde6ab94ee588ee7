"""Delivery agenda for one day.

Gathers every paid order and subscription delivery scheduled on a date,
grouped by time window, with the product quantities the route needs.
"""

from collections import defaultdict
from datetime import date

from protean.exceptions import ObjectNotFoundError
from protean.utils.globals import current_domain

from reconciliation.order.order import Order, PaymentStatus
from reconciliation.scheduling.delivery_dates import TimeWindow, is_business_day
from reconciliation.scheduling.status import DeliveryStatus
from reconciliation.settings.resolver import SettingsResolver
from reconciliation.stock.product import Product
from reconciliation.subscription.delivery import SubscriptionDelivery
from reconciliation.subscription.subscription import Subscription

AGENDA_QUERY_LIMIT = 1000


def _scheduled_on(aggregate_cls, day: date) -> list:
    return (
        current_domain.repository_for(aggregate_cls)
        ._dao.query.filter(delivery_date=day)
        .limit(AGENDA_QUERY_LIMIT)
        .all()
        .items
    )


def delivery_agenda(day: date, settings: SettingsResolver) -> dict:
    if not is_business_day(day, settings.holidays, settings.business_weekdays):
        return {"date": day.isoformat(), "working_day": False, "deliveries": [], "counts": {}, "products": []}

    entries = []
    quantities: dict[str, int] = defaultdict(int)

    for order in _scheduled_on(Order, day):
        if order.payment_status != PaymentStatus.CONFIRMED.value or order.delivery_status == DeliveryStatus.CANCELLED.value:
            continue
        for item in order.items or []:
            quantities[str(item.product_id)] += item.quantity
        entries.append(
            {
                "type": "one_off",
                "id": str(order.id),
                "number": order.order_number,
                "customer_id": order.customer_id,
                "time_slot": order.delivery_time_slot or TimeWindow.MORNING.value,
                "delivery_status": order.delivery_status,
                "total_amount": order.total_amount,
            }
        )

    subscriptions: dict[str, Subscription | None] = {}
    subscription_repo = current_domain.repository_for(Subscription)
    for delivery in _scheduled_on(SubscriptionDelivery, day):
        if delivery.delivery_status == DeliveryStatus.CANCELLED.value:
            continue
        key = str(delivery.subscription_id)
        if key not in subscriptions:
            try:
                subscriptions[key] = subscription_repo.get(key)
            except ObjectNotFoundError:
                subscriptions[key] = None
        subscription = subscriptions[key]
        if subscription is None:
            continue

        for item in subscription.items or []:
            quantities[str(item.product_id)] += item.quantity
        entries.append(
            {
                "type": "emergency" if subscription.is_emergency else "subscription",
                "id": str(delivery.id),
                "number": subscription.subscription_number,
                "customer_id": subscription.customer_id,
                "time_slot": subscription.delivery_time_slot or TimeWindow.MORNING.value,
                "delivery_status": delivery.delivery_status,
                "total_amount": delivery.total_amount,
            }
        )

    windows: dict[str, list[dict]] = defaultdict(list)
    counts = {"one_off": 0, "subscription": 0, "emergency": 0}
    for entry in entries:
        windows[entry["time_slot"]].append(entry)
        counts[entry["type"]] += 1

    product_repo = current_domain.repository_for(Product)
    products = []
    for product_id, quantity in sorted(quantities.items()):
        try:
            name = product_repo.get(product_id).name
        except ObjectNotFoundError:
            name = None
        products.append({"product_id": product_id, "name": name, "quantity": quantity})

    return {
        "date": day.isoformat(),
        "working_day": True,
        "deliveries": [{"time_slot": slot, "entries": windows[slot]} for slot in sorted(windows)],
        "counts": counts,
        "products": products,
    }
