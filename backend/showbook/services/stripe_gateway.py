"""
Stripe Checkout payment gateway.
Implements PaymentGateway using the stripe library.

The stripe SDK is synchronous, so every call runs in the threadpool to keep
the event loop free. The API key is passed per call instead of being set on
the stripe module, so the gateway owns its configuration.
"""

import json
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import stripe
from starlette.concurrency import run_in_threadpool

from showbook.core.exceptions import InvalidRequest, PaymentGatewayError
from showbook.core.logging import get_logger
from showbook.services.interfaces.offline_payment import event_from_payload
from showbook.services.interfaces.payment import PaymentGateway, PaymentSession, WebhookEvent

logger = get_logger(__name__)

# Stripe rejects checkout sessions that expire sooner than 30 minutes
SESSION_LIFETIME = timedelta(minutes=30)


class StripePaymentGateway(PaymentGateway):

    def __init__(self, api_key: str, webhook_secret: str, currency: str, frontend_url: str):
        if not api_key:
            raise ValueError("STRIPE_SECRET_KEY is required for the stripe payment provider")
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.frontend_url = frontend_url.rstrip("/")

    async def create_session(self, booking) -> PaymentSession:
        unit_amount = int((Decimal(str(booking.amount)) * 100).to_integral_value())
        params = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": f"Show {booking.show_id}: {', '.join(booking.booked_seats)}",
                        },
                        "unit_amount": unit_amount,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": f"{self.frontend_url}/loading/my-bookings",
            "cancel_url": f"{self.frontend_url}/my-bookings",
            "metadata": {"bookingId": str(booking.id)},
            "expires_at": int((datetime.now(timezone.utc) + SESSION_LIFETIME).timestamp()),
        }
        try:
            session = await run_in_threadpool(
                stripe.checkout.Session.create, api_key=self.api_key, **params
            )
        except stripe.StripeError as e:
            logger.error("stripe_session_create_failed", booking_id=booking.id, error=str(e))
            raise PaymentGatewayError("Could not create payment session")

        return PaymentSession(session_id=session.id, url=session.url)

    async def is_session_paid(self, session_id: str) -> bool:
        try:
            session = await run_in_threadpool(
                stripe.checkout.Session.retrieve, session_id, api_key=self.api_key
            )
        except stripe.StripeError as e:
            logger.error("stripe_session_retrieve_failed", session_id=session_id, error=str(e))
            raise PaymentGatewayError("Could not check payment status")
        return session.payment_status == "paid"

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        if not signature:
            raise InvalidRequest("Missing Stripe-Signature header")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError:
            raise InvalidRequest("Webhook body is not valid JSON")
        except stripe.SignatureVerificationError as e:
            logger.warning("stripe_webhook_signature_invalid", error=str(e))
            raise InvalidRequest("Webhook signature verification failed")

        # Signature checked; the raw body carries the same event as plain dicts
        return event_from_payload(json.loads(payload))
