"""Tests for the Stripe card adapter with the Stripe SDK patched out."""

import json
from types import SimpleNamespace
from unittest.mock import patch

import pytest
import stripe
from reconciliation.gateway.port import (
    ChargeState,
    CredentialsError,
    GatewayError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from reconciliation.gateway.stripe_adapter import StripeCardGateway

EVENT = {"id": "evt_001", "type": "invoice.paid", "data": {"object": {"id": "in_001"}}}


class TestSessionLookup:
    def test_paid_session_is_settled(self):
        session = SimpleNamespace(payment_status="paid", payment_intent="pi_001", subscription=None)
        with patch("stripe.checkout.Session.retrieve", return_value=session) as retrieve:
            status = StripeCardGateway(api_key="sk_test_123").query_charge_status("cs_001")

        retrieve.assert_called_once_with("cs_001", api_key="sk_test_123")
        assert status.state is ChargeState.SETTLED
        assert status.payment_reference == "pi_001"

    def test_unpaid_session_is_active(self):
        session = SimpleNamespace(payment_status="unpaid", payment_intent=None, subscription="sub_001")
        with patch("stripe.checkout.Session.retrieve", return_value=session):
            status = StripeCardGateway(api_key="sk_test_123").query_charge_status("cs_001")

        assert status.state is ChargeState.ACTIVE
        assert status.provider_status == "unpaid"
        assert status.subscription_reference == "sub_001"

    def test_sdk_error_becomes_gateway_error(self):
        error = stripe.InvalidRequestError("No such checkout.session", "id")
        with patch("stripe.checkout.Session.retrieve", side_effect=error):
            with pytest.raises(GatewayError):
                StripeCardGateway(api_key="sk_test_123").query_charge_status("cs_missing")

    def test_missing_secret_key(self):
        with pytest.raises(CredentialsError):
            StripeCardGateway(api_key="").query_charge_status("cs_001")


class TestConstructEvent:
    def test_verified_event(self):
        gateway = StripeCardGateway(api_key="sk_test_123", webhook_secret="whsec_123")
        payload = json.dumps(EVENT).encode()
        with patch("stripe.Webhook.construct_event") as construct:
            event = gateway.construct_event(payload, "t=1,v1=abc")

        construct.assert_called_once_with(payload, "t=1,v1=abc", "whsec_123")
        assert event["type"] == "invoice.paid"

    def test_bad_signature(self):
        gateway = StripeCardGateway(api_key="sk_test_123", webhook_secret="whsec_123")
        error = stripe.SignatureVerificationError("No signatures found", "t=1,v1=bad")
        with patch("stripe.Webhook.construct_event", side_effect=error):
            with pytest.raises(WebhookSignatureError):
                gateway.construct_event(json.dumps(EVENT).encode(), "t=1,v1=bad")

    def test_missing_signature_header(self):
        gateway = StripeCardGateway(api_key="sk_test_123", webhook_secret="whsec_123")
        with pytest.raises(WebhookSignatureError):
            gateway.construct_event(json.dumps(EVENT).encode(), None)

    def test_unverified_event_is_accepted_without_secret(self):
        gateway = StripeCardGateway(api_key="sk_test_123", webhook_secret="")
        assert gateway.construct_event(json.dumps(EVENT).encode(), None)["id"] == "evt_001"

    def test_non_object_payload(self):
        gateway = StripeCardGateway(api_key="sk_test_123", webhook_secret="")
        with pytest.raises(WebhookPayloadError):
            gateway.construct_event(b"[1, 2]", None)
