import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import stripe

from ..config import settings
from ..constants import PaymentStatus
from ..core.errors import BadRequestError, GatewayError
from ..models.models import PaymentTransaction, User

logger = logging.getLogger(__name__)

# Checkout Session events that carry a final (or failed) outcome for an order.
CHECKOUT_EVENT_STATUS = {
    "checkout.session.completed": PaymentStatus.PAID,
    "checkout.session.async_payment_succeeded": PaymentStatus.PAID,
    "checkout.session.async_payment_failed": PaymentStatus.FAILED,
    "checkout.session.expired": PaymentStatus.EXPIRED,
}


@dataclass(frozen=True)
class CheckoutSession:
    url: str
    reference: Optional[str]


@dataclass(frozen=True)
class GatewayNotification:
    order_id: str
    status: PaymentStatus
    reference: Optional[str]


def _return_url(order_id: str, outcome: str) -> str:
    query = urlencode({"orderId": order_id, "payment": outcome})
    return f"{settings.frontend_url}/dues?{query}"


def create_checkout_session(transaction: PaymentTransaction, user: User) -> CheckoutSession:
    if not settings.stripe_api_key:
        logger.info("Stripe is not configured; issuing mock checkout for %s", transaction.order_id)
        return CheckoutSession(
            url=f"{settings.frontend_url}/dues/mock-checkout?{urlencode({'orderId': transaction.order_id})}",
            reference=f"mock_{transaction.order_id}",
        )

    stripe.api_key = settings.stripe_api_key
    metadata = {
        "order_id": transaction.order_id,
        "user_id": str(user.id),
        "months": str(transaction.months),
    }
    try:
        session = stripe.checkout.Session.create(
            mode="payment",
            client_reference_id=transaction.order_id,
            line_items=[
                {
                    "price_data": {
                        "currency": settings.currency.lower(),
                        "unit_amount": transaction.amount,
                        "product_data": {
                            "name": f"Community dues, {transaction.months} month(s)",
                            "description": f"Paid through {transaction.target_paid_through:%Y-%m}",
                        },
                    },
                    "quantity": 1,
                }
            ],
            customer_email=user.email,
            metadata=metadata,
            payment_intent_data={"metadata": metadata},
            success_url=_return_url(transaction.order_id, "success"),
            cancel_url=_return_url(transaction.order_id, "cancelled"),
        )
    except stripe.StripeError as exc:
        logger.error("Stripe checkout creation failed for %s: %s", transaction.order_id, exc)
        raise GatewayError("Unable to create a checkout session with the payment gateway") from exc

    return CheckoutSession(url=session.url, reference=session.id)


def parse_webhook(payload: bytes, signature: Optional[str]) -> Optional[GatewayNotification]:
    """Verify a Stripe webhook and reduce it to an order status change.

    Returns None for event types that do not affect dues orders.
    """
    if not settings.stripe_webhook_secret:
        raise GatewayError("Stripe webhook secret is not configured")
    try:
        event = stripe.Webhook.construct_event(
            payload=payload,
            sig_header=signature,
            secret=settings.stripe_webhook_secret,
        )
    except ValueError as exc:
        raise BadRequestError("Invalid webhook payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise BadRequestError("Invalid webhook signature") from exc

    status = CHECKOUT_EVENT_STATUS.get(event["type"])
    if status is None:
        return None
    event_object = event["data"]["object"]
    metadata = event_object.get("metadata") or {}
    order_id = metadata.get("order_id") or event_object.get("client_reference_id")
    if not order_id:
        logger.warning("Stripe event %s has no order id; ignoring", event.get("id"))
        return None
    if status == PaymentStatus.PAID and event_object.get("payment_status") == "unpaid":
        # Delayed payment methods complete the session before the money arrives.
        return None
    return GatewayNotification(
        order_id=order_id,
        status=status,
        reference=event_object.get("payment_intent") or event_object.get("id"),
    )
