"""
Stripe client for Sophia.
Creates the monthly subscription product/price for a business and checkout sessions
against it, reads and cancels subscriptions, and applies signed webhook events.
"""

import logging
import stripe
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, List

from sqlalchemy.orm import Session

from services.config import STRIPE_SECRET_KEY, STRIPE_WEBHOOK_SECRET, FRONTEND_URL
from services.business_service import BusinessService
from services.database import Business
from services.errors import BusinessRuleError, IntegrationError

logger = logging.getLogger(__name__)


@dataclass
class StripeConfig:
    api_key: str
    webhook_secret: Optional[str] = None


_cached_config: Optional[StripeConfig] = None


def load_stripe_config() -> StripeConfig:
    """
    Load Stripe configuration from environment variables.
    Caches the result for subsequent calls.
    """
    global _cached_config

    if _cached_config:
        return _cached_config

    if not STRIPE_SECRET_KEY:
        raise BusinessRuleError("Stripe is not configured")

    _cached_config = StripeConfig(api_key=STRIPE_SECRET_KEY, webhook_secret=STRIPE_WEBHOOK_SECRET)
    stripe.api_key = STRIPE_SECRET_KEY
    return _cached_config


def create_subscription_product(business: Business) -> Dict[str, str]:
    """Create a Stripe product and monthly recurring price for the business."""
    load_stripe_config()
    try:
        product = stripe.Product.create(
            name=business.name,
            description=business.description,
            metadata={"businessId": business.id},
        )
        price = stripe.Price.create(
            product=product.id,
            unit_amount=round(business.monthly_price * 100),
            currency=(business.currency or "USD").lower(),
            recurring={"interval": "month", "interval_count": 1},
            metadata={"businessId": business.id},
        )
    except stripe.StripeError as e:
        logger.error("Stripe product setup failed for business %s: %s", business.id, e)
        raise IntegrationError(f"Failed to create Stripe product: {e}")

    logger.info("Stripe product %s / price %s created for business %s", product.id, price.id, business.id)
    return {"productId": product.id, "priceId": price.id}


def create_checkout_session(
    business: Business,
    price_id: str,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None
) -> Dict[str, str]:
    """Create a subscription Checkout session for the business's price."""
    load_stripe_config()
    try:
        session = stripe.checkout.Session.create(
            mode="subscription",
            payment_method_types=["card"],
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url or f"{FRONTEND_URL}/business/{business.id}/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=cancel_url or f"{FRONTEND_URL}/business/{business.id}/pricing",
            metadata={"businessId": business.id},
            subscription_data={"metadata": {"businessId": business.id}},
        )
    except stripe.StripeError as e:
        logger.error("Stripe checkout failed for business %s: %s", business.id, e)
        raise IntegrationError(f"Failed to create checkout session: {e}")

    return {"sessionId": session.id, "url": session.url}


def _field(obj: Any, key: str) -> Any:
    try:
        return obj[key]
    except (KeyError, TypeError):
        return None


def _timestamp(value: Optional[int]) -> Optional[datetime]:
    return datetime.utcfromtimestamp(value) if value else None


def summarize_subscription(subscription: Any) -> Dict[str, Any]:
    return {
        "id": _field(subscription, "id"),
        "status": _field(subscription, "status"),
        "currentPeriodStart": _timestamp(_field(subscription, "current_period_start")),
        "currentPeriodEnd": _timestamp(_field(subscription, "current_period_end")),
        "cancelAtPeriodEnd": bool(_field(subscription, "cancel_at_period_end")),
    }


def list_customer_subscriptions(customer_id: str) -> List[Dict[str, Any]]:
    load_stripe_config()
    try:
        subscriptions = stripe.Subscription.list(customer=customer_id, status="all", limit=10)
    except stripe.StripeError as e:
        logger.error("Fetching subscriptions for customer %s failed: %s", customer_id, e)
        raise IntegrationError(f"Failed to fetch subscriptions: {e}")
    return [summarize_subscription(sub) for sub in subscriptions["data"]]


def cancel_subscription(subscription_id: str) -> Dict[str, Any]:
    load_stripe_config()
    try:
        subscription = stripe.Subscription.cancel(subscription_id)
    except stripe.StripeError as e:
        logger.error("Cancelling subscription %s failed: %s", subscription_id, e)
        raise IntegrationError(f"Failed to cancel subscription: {e}")
    return summarize_subscription(subscription)


def verify_webhook_signature(payload: bytes, sig_header: str) -> stripe.Event:
    """
    Verify a Stripe webhook signature and construct the event.
    A bad signature or payload raises BusinessRuleError.
    """
    config = load_stripe_config()
    if not config.webhook_secret:
        raise BusinessRuleError("Stripe webhook secret is not configured")
    try:
        return stripe.Webhook.construct_event(payload, sig_header, config.webhook_secret)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("Webhook signature verification failed: %s", e)
        raise BusinessRuleError(f"Webhook signature verification failed: {e}")


def apply_webhook_event(db: Session, service: BusinessService, business_id: str, event: Any) -> None:
    """Update the business's subscription state from a verified event."""
    event_type = event["type"]
    data_object = event["data"]["object"]
    logger.info("Stripe webhook %s for business %s", event_type, business_id)

    if event_type == "checkout.session.completed":
        subscription_id = _field(data_object, "subscription")
        if _field(data_object, "mode") == "subscription" and subscription_id:
            service.update_subscription_status(
                db, business_id,
                subscription_id=subscription_id,
                customer_id=_field(data_object, "customer"),
                status="active",
            )
    elif event_type in ("customer.subscription.created", "customer.subscription.updated"):
        summary = summarize_subscription(data_object)
        service.update_subscription_status(
            db, business_id,
            subscription_id=summary["id"],
            customer_id=_field(data_object, "customer"),
            status=summary["status"],
            current_period_start=summary["currentPeriodStart"],
            current_period_end=summary["currentPeriodEnd"],
        )
    elif event_type == "customer.subscription.deleted":
        summary = summarize_subscription(data_object)
        service.update_subscription_status(
            db, business_id,
            subscription_id=summary["id"],
            status="canceled",
            current_period_start=summary["currentPeriodStart"],
            current_period_end=summary["currentPeriodEnd"],
        )
    elif event_type in ("invoice.paid", "invoice.payment_failed"):
        logger.info("Invoice %s for business %s: %s", _field(data_object, "id"), business_id, event_type)
    elif event_type in ("payment_intent.succeeded", "payment_intent.payment_failed"):
        logger.info("Payment intent %s for business %s: %s", _field(data_object, "id"), business_id, event_type)
    else:
        logger.info("Unhandled Stripe event type: %s", event_type)
