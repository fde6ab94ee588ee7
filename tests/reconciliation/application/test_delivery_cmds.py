"""Application tests for operator delivery commands."""

from datetime import UTC, date, datetime

import pytest
from protean import current_domain
from protean.exceptions import ValidationError
from reconciliation.order.delivery import ChangeOrderDeliveryStatus, RescheduleOrderDelivery
from reconciliation.order.order import Order
from reconciliation.subscription.delivery import SubscriptionDelivery
from reconciliation.subscription.delivery_status import ChangeSubscriptionDeliveryStatus


def _confirmed_order(make_order, product):
    order = make_order(product)
    order.confirm(datetime(2026, 3, 10, 14, 30, tzinfo=UTC), date(2026, 3, 10), "afternoon")
    current_domain.repository_for(Order).add(order)
    return order


def _order(order):
    return current_domain.repository_for(Order).get(str(order.id))


class TestOrderDeliveryStatus:
    def test_en_route_then_delivered(self, lettuce, make_order):
        order = _confirmed_order(make_order, lettuce)

        current_domain.process(ChangeOrderDeliveryStatus(order_id=str(order.id), action="en_route"), asynchronous=False)
        assert _order(order).delivery_status == "en_route"

        current_domain.process(ChangeOrderDeliveryStatus(order_id=str(order.id), action="delivered"), asynchronous=False)
        assert _order(order).delivery_status == "delivered"

    def test_cancel_delivery_keeps_payment(self, lettuce, make_order):
        order = _confirmed_order(make_order, lettuce)

        current_domain.process(ChangeOrderDeliveryStatus(order_id=str(order.id), action="cancelled"), asynchronous=False)

        stored = _order(order)
        assert stored.delivery_status == "cancelled"
        assert stored.payment_status == "confirmed"

    def test_unpaid_order_cannot_leave(self, lettuce, make_order):
        order = make_order(lettuce)
        with pytest.raises(ValidationError):
            current_domain.process(
                ChangeOrderDeliveryStatus(order_id=str(order.id), action="en_route"), asynchronous=False
            )

    def test_unknown_action_is_rejected(self):
        with pytest.raises(ValidationError):
            ChangeOrderDeliveryStatus(order_id="ord-001", action="teleported")


class TestRescheduleOrder:
    def test_reschedule(self, lettuce, make_order):
        order = _confirmed_order(make_order, lettuce)

        current_domain.process(
            RescheduleOrderDelivery(order_id=str(order.id), delivery_date=date(2026, 3, 12), delivery_time_slot="morning"),
            asynchronous=False,
        )

        stored = _order(order)
        assert stored.delivery_date == date(2026, 3, 12)
        assert stored.delivery_time_slot == "morning"
        assert stored.manually_scheduled is True

    def test_unknown_window_is_rejected(self):
        with pytest.raises(ValidationError):
            RescheduleOrderDelivery(order_id="ord-001", delivery_date=date(2026, 3, 12), delivery_time_slot="night")


class TestSubscriptionDeliveryStatus:
    def test_mark_delivered(self):
        delivery = SubscriptionDelivery.schedule("sub-001", date(2026, 3, 16), 10.0, "txid-sub-001")
        repo = current_domain.repository_for(SubscriptionDelivery)
        repo.add(delivery)

        current_domain.process(
            ChangeSubscriptionDeliveryStatus(delivery_id=str(delivery.id), action="delivered"), asynchronous=False
        )

        assert repo.get(str(delivery.id)).delivery_status == "delivered"

    def test_cancelled_delivery_is_final(self):
        delivery = SubscriptionDelivery.schedule("sub-001", date(2026, 3, 16), 10.0)
        repo = current_domain.repository_for(SubscriptionDelivery)
        repo.add(delivery)
        current_domain.process(
            ChangeSubscriptionDeliveryStatus(delivery_id=str(delivery.id), action="cancelled"), asynchronous=False
        )

        with pytest.raises(ValidationError):
            current_domain.process(
                ChangeSubscriptionDeliveryStatus(delivery_id=str(delivery.id), action="en_route"), asynchronous=False
            )
