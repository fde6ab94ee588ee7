"""Application tests for polled payment reconciliation."""

import json

import pytest
from protean import current_domain
from protean.exceptions import ObjectNotFoundError
from reconciliation.gateway import set_pix_gateway
from reconciliation.gateway.fake_adapter import FakePixGateway
from reconciliation.gateway.port import AuthorizationState, ChargeState, GatewayError
from reconciliation.order.order import Order, PaymentStatus
from reconciliation.payment.pix_webhook import ProcessPixWebhook
from reconciliation.payment.status_check import CheckPaymentStatus
from reconciliation.stock.product import Product
from reconciliation.subscription.delivery import SubscriptionDelivery
from reconciliation.subscription.subscription import Subscription


def _check(target_type, target_id, trace_id="trace-poll-001"):
    command = CheckPaymentStatus(target_type=target_type, target_id=str(target_id), trace_id=trace_id)
    return current_domain.process(command, asynchronous=False)


def _stock(product):
    return current_domain.repository_for(Product).get(str(product.id)).stock


def _deliveries(subscription):
    return (
        current_domain.repository_for(SubscriptionDelivery)
        ._dao.query.filter(subscription_id=str(subscription.id))
        .all()
        .items
    )


class TestOrderPolling:
    def test_active_charge_stays_pending(self, fixed_clock, pix_gateway, lettuce, make_order, audit_log):
        order = make_order(lettuce)

        result = _check("order", order.id)

        assert result["status"] == "pending"
        assert result["provider_status"] == "ATIVA"
        assert result["trace_id"] == "trace-poll-001"
        assert current_domain.repository_for(Order).get(str(order.id)).is_pending
        assert len(audit_log("charge_pending")) == 1

    def test_settled_charge_confirms(self, fixed_clock, pix_gateway, lettuce, make_order):
        order = make_order(lettuce, quantity=3)
        pix_gateway.configure_charge("txid-order-001", ChargeState.SETTLED)

        result = _check("order", order.id)

        assert result["status"] == "confirmed"
        assert result["updated"] is True
        assert result["already_confirmed"] is False
        stored = current_domain.repository_for(Order).get(str(order.id))
        assert stored.payment_status == PaymentStatus.CONFIRMED.value
        assert stored.delivery_date.isoformat() == "2026-03-10"
        assert stored.delivery_time_slot == "afternoon"
        assert _stock(lettuce) == 97

    def test_confirmed_order_skips_the_provider(self, fixed_clock, pix_gateway, lettuce, make_order, audit_log):
        order = make_order(lettuce)
        pix_gateway.configure_charge("txid-order-001", ChargeState.SETTLED)
        _check("order", order.id)
        calls_before = len(pix_gateway.calls)

        result = _check("order", order.id)

        assert result == {"status": "confirmed", "already_confirmed": True, "trace_id": "trace-poll-001"}
        assert len(pix_gateway.calls) == calls_before
        (entry,) = audit_log("payment_already_confirmed")
        assert entry.ok is True
        assert entry.provider == "pix"
        assert (entry.entity_type, entry.entity_id) == ("order", str(order.id))

    def test_poll_then_webhook_consumes_stock_once(self, fixed_clock, pix_gateway, lettuce, make_order, audit_log):
        order = make_order(lettuce, quantity=2)
        pix_gateway.configure_charge("txid-order-001", ChargeState.SETTLED)

        _check("order", order.id)
        current_domain.process(
            ProcessPixWebhook(raw_body=json.dumps({"pix": [{"txid": "txid-order-001"}]}), trace_id="trace-wh-001"),
            asynchronous=False,
        )

        assert _stock(lettuce) == 98
        entries = audit_log("order_confirmed")
        assert len(entries) == 2
        assert sorted(e.details_data["already_confirmed"] for e in entries) == [False, True]

    def test_removed_charge_is_expired_without_reissue(self, fixed_clock, pix_gateway, lettuce, make_order):
        order = make_order(lettuce)
        pix_gateway.configure_charge("txid-order-001", ChargeState.REMOVED_BY_PROCESSOR)

        result = _check("order", order.id)

        assert result["status"] == "expired"
        assert not any(call["method"] == "create_charge" for call in pix_gateway.calls)
        assert current_domain.repository_for(Order).get(str(order.id)).pix_transaction_id == "txid-order-001"

    def test_order_without_charge(self, pix_gateway, lettuce, make_order):
        order = make_order(lettuce, pix_transaction_id=None)
        assert _check("order", order.id)["status"] == "no_transaction"
        assert pix_gateway.calls == []

    def test_declined_order_reports_its_status(self, pix_gateway, lettuce, make_order):
        order = make_order(lettuce)
        order.decline("expired at the bank")
        current_domain.repository_for(Order).add(order)

        assert _check("order", order.id)["status"] == "declined"

    def test_card_order_uses_the_checkout_session(self, fixed_clock, card_gateway, lettuce, make_order):
        order = make_order(lettuce, payment_method="card", card_payment_id="cs_order_001")
        card_gateway.configure_session("cs_order_001", payment_intent="pi_order_001")

        result = _check("order", order.id)

        assert result["status"] == "confirmed"
        assert current_domain.repository_for(Order).get(str(order.id)).card_payment_id == "pi_order_001"

    def test_unknown_order(self, pix_gateway):
        with pytest.raises(ObjectNotFoundError):
            _check("order", "no-such-order")


class _AuthorizationOutage(FakePixGateway):
    def query_authorization_status(self, authorization_id):
        raise GatewayError("authorization endpoint unavailable", provider=self.provider)


class TestSubscriptionPolling:
    def test_settled_charge_activates(self, fixed_clock, pix_gateway, lettuce, make_subscription):
        subscription = make_subscription(lettuce, quantity=1)
        pix_gateway.configure_charge("txid-sub-001", ChargeState.SETTLED)
        pix_gateway.configure_authorization("rec-001", AuthorizationState.APPROVED)

        result = _check("subscription", subscription.id)

        assert result["status"] == "confirmed"
        assert result["rec_status"] == "APROVADA"
        assert result["rec_approved"] is True
        assert result["recurrence_status"] == "active"

        stored = current_domain.repository_for(Subscription).get(str(subscription.id))
        assert stored.is_active
        assert stored.stock_reserved is True
        assert stored.next_delivery_date.isoformat() == "2026-03-16"

        deliveries = _deliveries(subscription)
        assert sorted(d.delivery_date.isoformat() for d in deliveries) == [
            "2026-03-16",
            "2026-03-23",
            "2026-03-30",
            "2026-04-06",
        ]
        assert {d.charge_reference for d in deliveries} == {"txid-sub-001"}
        assert _stock(lettuce) == 96

    def test_activation_is_not_repeated(self, fixed_clock, pix_gateway, lettuce, make_subscription, audit_log):
        subscription = make_subscription(lettuce)
        pix_gateway.configure_charge("txid-sub-001", ChargeState.SETTLED)
        _check("subscription", subscription.id)

        result = _check("subscription", subscription.id)

        assert result["already_confirmed"] is True
        assert len(_deliveries(subscription)) == 4
        assert _stock(lettuce) == 96
        (entry,) = audit_log("payment_already_confirmed")
        assert (entry.entity_type, entry.entity_id) == ("subscription", str(subscription.id))

    def test_authorization_outage_still_activates(self, fixed_clock, lettuce, make_subscription, audit_log):
        gateway = _AuthorizationOutage()
        gateway.configure_charge("txid-sub-001", ChargeState.SETTLED)
        set_pix_gateway(gateway)
        subscription = make_subscription(lettuce)

        result = _check("subscription", subscription.id)

        assert result["status"] == "confirmed"
        assert "rec_status" not in result
        assert result["recurrence_status"] == "awaiting_authorization"
        (failure,) = audit_log("authorization_lookup_failed")
        assert failure.ok is False

    def test_pending_charge_reports_authorization(self, fixed_clock, pix_gateway, lettuce, make_subscription):
        subscription = make_subscription(lettuce)
        pix_gateway.configure_authorization("rec-001", AuthorizationState.CREATED)

        result = _check("subscription", subscription.id)

        assert result["status"] == "pending"
        assert result["rec_status"] == "CRIADA"
        assert result["rec_approved"] is False

    def test_cancelled_subscription(self, pix_gateway, lettuce, make_subscription):
        subscription = make_subscription(lettuce)
        subscription.cancel("changed plans")
        current_domain.repository_for(Subscription).add(subscription)

        assert _check("subscription", subscription.id)["status"] == "cancelled"
        assert pix_gateway.calls == []

    def test_card_subscription(self, fixed_clock, card_gateway, lettuce, make_subscription):
        subscription = make_subscription(lettuce, payment_method="card")
        card_gateway.configure_session("cs_test_001", subscription="sub_card_001")

        result = _check("subscription", subscription.id)

        assert result["status"] == "confirmed"
        stored = current_domain.repository_for(Subscription).get(str(subscription.id))
        assert stored.card_subscription_id == "sub_card_001"
        assert len(_deliveries(subscription)) == 4
