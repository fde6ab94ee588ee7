"""Tests for the Order aggregate state machines."""

from datetime import UTC, date, datetime

import pytest
from protean.exceptions import ValidationError
from reconciliation.order.events import (
    OrderChargeReissued,
    OrderConfirmed,
    OrderDeliveryStatusChanged,
    OrderRescheduled,
)
from reconciliation.order.order import Order, PaymentStatus
from reconciliation.scheduling.status import DeliveryStatus

CONFIRMED_AT = datetime(2026, 3, 10, 14, 30, tzinfo=UTC)


def _make_order(**overrides):
    defaults = {
        "payment_method": "instant_payment",
        "items_data": [
            {"product_id": "prod-001", "quantity": 2, "unit_price": 4.5},
            {"product_id": "prod-002", "quantity": 1, "unit_price": 8.0},
        ],
        "pix_transaction_id": "txid-001",
    }
    defaults.update(overrides)
    return Order.create(**defaults)


def _confirmed_order():
    order = _make_order()
    order.confirm(CONFIRMED_AT, date(2026, 3, 10), "afternoon")
    return order


class TestOrderCreation:
    def test_create_starts_pending_and_awaiting(self):
        order = _make_order()
        assert order.payment_status == PaymentStatus.PENDING.value
        assert order.delivery_status == DeliveryStatus.AWAITING.value
        assert order.is_pending

    def test_total_is_computed_from_items(self):
        assert _make_order().total_amount == 17.0

    def test_explicit_total_is_kept(self):
        assert _make_order(total_amount=20.0).total_amount == 20.0

    def test_items_are_required(self):
        with pytest.raises(ValidationError):
            _make_order(items_data=[])

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            _make_order(items_data=[{"product_id": "prod-001", "quantity": 0}])


class TestPaymentAxis:
    def test_confirm_sets_delivery_and_timestamp(self):
        order = _confirmed_order()
        assert order.is_confirmed
        assert order.payment_confirmed_at == CONFIRMED_AT
        assert order.delivery_date == date(2026, 3, 10)
        assert order.delivery_time_slot == "afternoon"

    def test_confirm_raises_event(self):
        order = _confirmed_order()
        assert any(isinstance(e, OrderConfirmed) for e in order._events)

    def test_confirm_keeps_card_reference(self):
        order = _make_order(payment_method="card", pix_transaction_id=None, card_payment_id="cs_001")
        order.confirm(CONFIRMED_AT, date(2026, 3, 10), "afternoon", card_payment_id="pi_001")
        assert order.card_payment_id == "pi_001"

    def test_confirm_twice_is_rejected(self):
        order = _confirmed_order()
        with pytest.raises(ValidationError):
            order.confirm(CONFIRMED_AT, date(2026, 3, 10), "afternoon")

    def test_decline_and_cancel_only_from_pending(self):
        order = _make_order()
        order.decline("insufficient funds")
        assert order.payment_status == PaymentStatus.DECLINED.value
        with pytest.raises(ValidationError):
            order.cancel()

    def test_cancel_also_cancels_delivery(self):
        order = _make_order()
        order.cancel("customer gave up")
        assert order.payment_status == PaymentStatus.CANCELLED.value
        assert order.delivery_status == DeliveryStatus.CANCELLED.value

    def test_replace_pix_charge(self):
        order = _make_order()
        order.replace_pix_charge("txid-002")
        assert order.pix_transaction_id == "txid-002"
        assert any(isinstance(e, OrderChargeReissued) for e in order._events)

    def test_replace_pix_charge_requires_pending(self):
        order = _confirmed_order()
        with pytest.raises(ValidationError):
            order.replace_pix_charge("txid-002")


class TestDeliveryAxis:
    def test_full_delivery_path(self):
        order = _confirmed_order()
        order.mark_en_route()
        order.mark_delivered()
        assert order.delivery_status == DeliveryStatus.DELIVERED.value
        changes = [e for e in order._events if isinstance(e, OrderDeliveryStatusChanged)]
        assert [e.new_status for e in changes] == ["en_route", "delivered"]

    def test_unpaid_order_cannot_leave(self):
        with pytest.raises(ValidationError):
            _make_order().mark_en_route()

    def test_delivered_is_final(self):
        order = _confirmed_order()
        order.mark_delivered()
        with pytest.raises(ValidationError):
            order.cancel_delivery()

    def test_reschedule_marks_manual(self):
        order = _confirmed_order()
        order.reschedule(date(2026, 3, 12), "morning")
        assert order.delivery_date == date(2026, 3, 12)
        assert order.delivery_time_slot == "morning"
        assert order.manually_scheduled is True
        assert any(isinstance(e, OrderRescheduled) for e in order._events)

    def test_finished_delivery_cannot_be_rescheduled(self):
        order = _confirmed_order()
        order.mark_delivered()
        with pytest.raises(ValidationError):
            order.reschedule(date(2026, 3, 12), "morning")
