import hashlib
import hmac
import json
import time
from types import SimpleNamespace
from unittest import mock

import pytest
import stripe

from services import stripe_client
from services.errors import BusinessRuleError, IntegrationError


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr(stripe_client, "STRIPE_SECRET_KEY", "sk_test_123")
    monkeypatch.setattr(stripe_client, "_cached_config", None)


@pytest.fixture
def unconfigured(monkeypatch):
    monkeypatch.setattr(stripe_client, "STRIPE_SECRET_KEY", None)
    monkeypatch.setattr(stripe_client, "_cached_config", None)


def test_missing_key_is_a_business_rule_error(unconfigured):
    with pytest.raises(BusinessRuleError, match="Stripe is not configured"):
        stripe_client.load_stripe_config()


def test_create_subscription_product(configured, make_user, make_business):
    owner, _ = make_user()
    business = make_business(owner, monthly_price=19.99, currency="eur")
    with mock.patch.object(stripe.Product, "create", return_value=SimpleNamespace(id="prod_1")) as product, \
            mock.patch.object(stripe.Price, "create", return_value=SimpleNamespace(id="price_1")) as price:
        ids = stripe_client.create_subscription_product(business)

    assert ids == {"productId": "prod_1", "priceId": "price_1"}
    assert product.call_args.kwargs["name"] == "Acme Analytics"
    assert price.call_args.kwargs["unit_amount"] == 1999
    assert price.call_args.kwargs["currency"] == "eur"
    assert price.call_args.kwargs["recurring"]["interval"] == "month"


def test_stripe_failure_becomes_integration_error(configured, make_user, make_business):
    owner, _ = make_user()
    business = make_business(owner)
    with mock.patch.object(stripe.Product, "create", side_effect=stripe.StripeError("card declined")):
        with pytest.raises(IntegrationError, match="Failed to create Stripe product"):
            stripe_client.create_subscription_product(business)


def test_checkout_session_defaults_to_frontend_urls(configured, make_user, make_business):
    owner, _ = make_user()
    business = make_business(owner)
    session = SimpleNamespace(id="cs_1", url="https://checkout.stripe.com/c/cs_1")
    with mock.patch.object(stripe.checkout.Session, "create", return_value=session) as create:
        result = stripe_client.create_checkout_session(business, "price_1")

    assert result == {"sessionId": "cs_1", "url": "https://checkout.stripe.com/c/cs_1"}
    kwargs = create.call_args.kwargs
    assert kwargs["mode"] == "subscription"
    assert kwargs["line_items"] == [{"price": "price_1", "quantity": 1}]
    assert f"/business/{business.id}/pricing" in kwargs["cancel_url"]


def test_setup_product_route_persists_ids(client, configured, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    with mock.patch.object(stripe.Product, "create", return_value=SimpleNamespace(id="prod_9")), \
            mock.patch.object(stripe.Price, "create", return_value=SimpleNamespace(id="price_9")):
        response = client.post("/api/stripe/setup-product", json={"businessId": business.id}, headers=headers)

    assert response.status_code == 201
    assert response.json()["data"]["priceId"] == "price_9"
    stored = client.get(f"/api/businesses/{business.id}", headers=headers).json()["data"]
    assert stored["stripeProductId"] == "prod_9"


def test_checkout_route_requires_price(client, configured, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    response = client.post("/api/stripe/create-checkout-session", json={"businessId": business.id}, headers=headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Stripe product is not configured for this business"


def test_routes_report_missing_configuration(client, unconfigured, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    response = client.post("/api/stripe/setup-product", json={"businessId": business.id}, headers=headers)
    assert response.status_code == 400
    assert response.json()["message"] == "Stripe is not configured"


WEBHOOK_SECRET = "whsec_test"
PERIOD_START = 1704067200
PERIOD_END = 1706745600


@pytest.fixture
def webhooks(configured, monkeypatch):
    monkeypatch.setattr(stripe_client, "STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)


def signed(event):
    payload = json.dumps(event)
    timestamp = int(time.time())
    digest = hmac.new(WEBHOOK_SECRET.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return payload, {"stripe-signature": f"t={timestamp},v1={digest}"}


def event_of(event_type, data_object):
    return {"id": "evt_1", "object": "event", "type": event_type, "data": {"object": data_object}}


def test_webhook_checkout_completed_activates_subscription(client, webhooks, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    payload, sig = signed(event_of("checkout.session.completed", {
        "object": "checkout.session", "mode": "subscription", "subscription": "sub_1", "customer": "cus_1",
    }))

    response = client.post(f"/api/stripe/webhooks/{business.id}", content=payload, headers=sig)
    assert response.status_code == 200
    assert response.json()["data"] == {"received": True}

    stored = client.get(f"/api/businesses/{business.id}", headers=headers).json()["data"]
    assert stored["subscriptionStatus"] == "active"
    assert stored["stripeSubscriptionId"] == "sub_1"
    assert stored["stripeCustomerId"] == "cus_1"


def test_webhook_subscription_deleted_marks_canceled(client, webhooks, db, business_service, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    business_service.update_subscription_status(db, business.id, "sub_1", "cus_1", "active")
    payload, sig = signed(event_of("customer.subscription.deleted", {
        "object": "subscription", "id": "sub_1", "status": "canceled",
        "current_period_start": PERIOD_START, "current_period_end": PERIOD_END,
    }))

    assert client.post(f"/api/stripe/webhooks/{business.id}", content=payload, headers=sig).status_code == 200
    stored = client.get(f"/api/businesses/{business.id}", headers=headers).json()["data"]
    assert stored["subscriptionStatus"] == "canceled"
    assert stored["stripeCustomerId"] == "cus_1"
    assert stored["currentPeriodStart"] == "2024-01-01T00:00:00"
    assert stored["currentPeriodEnd"] == "2024-02-01T00:00:00"


def test_webhook_rejects_bad_or_missing_signature(client, webhooks, make_user, make_business):
    owner, _ = make_user()
    business = make_business(owner)
    payload, _ = signed(event_of("invoice.paid", {"object": "invoice", "id": "in_1"}))

    missing = client.post(f"/api/stripe/webhooks/{business.id}", content=payload)
    assert missing.status_code == 400
    assert missing.json()["message"] == "Missing stripe-signature header"

    forged = client.post(
        f"/api/stripe/webhooks/{business.id}", content=payload, headers={"stripe-signature": "t=1,v1=deadbeef"}
    )
    assert forged.status_code == 400
    assert forged.json()["message"].startswith("Webhook signature verification failed")


def test_webhook_without_secret_is_rejected(client, configured, monkeypatch, make_user, make_business):
    monkeypatch.setattr(stripe_client, "STRIPE_WEBHOOK_SECRET", None)
    owner, _ = make_user()
    business = make_business(owner)
    payload, sig = signed(event_of("invoice.paid", {"object": "invoice", "id": "in_1"}))
    response = client.post(f"/api/stripe/webhooks/{business.id}", content=payload, headers=sig)
    assert response.status_code == 400
    assert response.json()["message"] == "Stripe webhook secret is not configured"


def test_webhook_for_unknown_business(client, webhooks):
    payload, sig = signed(event_of("invoice.paid", {"object": "invoice", "id": "in_1"}))
    response = client.post("/api/stripe/webhooks/missing-id", content=payload, headers=sig)
    assert response.status_code == 404


def test_subscription_status_lists_customer_subscriptions(client, configured, db, business_service, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    business_service.update_subscription_status(db, business.id, "sub_1", "cus_1", "active")
    listing = {"data": [{
        "id": "sub_1", "status": "active", "cancel_at_period_end": False,
        "current_period_start": PERIOD_START, "current_period_end": PERIOD_END,
    }]}
    with mock.patch.object(stripe.Subscription, "list", return_value=listing) as list_subscriptions:
        response = client.get(f"/api/stripe/subscription/{business.id}", headers=headers)

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["subscriptionStatus"] == "active"
    assert data["stripeCustomerId"] == "cus_1"
    assert data["subscriptions"] == [{
        "id": "sub_1",
        "status": "active",
        "currentPeriodStart": "2024-01-01T00:00:00",
        "currentPeriodEnd": "2024-02-01T00:00:00",
        "cancelAtPeriodEnd": False,
    }]
    assert list_subscriptions.call_args.kwargs["customer"] == "cus_1"


def test_subscription_status_is_owner_scoped(client, configured, make_user, make_business):
    owner, _ = make_user(email="owner@example.com")
    _, other_headers = make_user(email="other@example.com")
    business = make_business(owner)
    response = client.get(f"/api/stripe/subscription/{business.id}", headers=other_headers)
    assert response.status_code == 403


def test_cancel_requires_a_subscription(client, configured, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    response = client.delete(f"/api/stripe/subscription/{business.id}", headers=headers)
    assert response.status_code == 400
    assert response.json()["message"] == "No active subscription found"


def test_cancel_subscription_updates_business(client, configured, db, business_service, make_user, make_business):
    owner, headers = make_user()
    business = make_business(owner)
    business_service.update_subscription_status(db, business.id, "sub_1", "cus_1", "active")
    canceled = {
        "id": "sub_1", "status": "canceled", "cancel_at_period_end": False,
        "current_period_start": PERIOD_START, "current_period_end": PERIOD_END,
    }
    with mock.patch.object(stripe.Subscription, "cancel", return_value=canceled) as cancel:
        response = client.delete(f"/api/stripe/subscription/{business.id}", headers=headers)

    assert response.status_code == 200
    assert response.json()["data"] == {"subscriptionId": "sub_1", "status": "canceled"}
    cancel.assert_called_once_with("sub_1")
    stored = client.get(f"/api/businesses/{business.id}", headers=headers).json()["data"]
    assert stored["subscriptionStatus"] == "canceled"
