"""
Offline payment gateway - no external provider.
Sessions are local ids; a session counts as paid once `mark_paid` is called.
"""

import json
import uuid
from typing import Optional

from showbook.core.exceptions import InvalidRequest
from showbook.services.interfaces.payment import PaymentGateway, PaymentSession, WebhookEvent


class OfflinePaymentGateway(PaymentGateway):
    """
    Use when:
    - Local development without provider credentials
    - Tests that drive payment state directly

    Webhook bodies are plain JSON in the provider's event shape:
        {"type": "checkout.session.completed",
         "data": {"object": {"id": "...", "metadata": {"bookingId": "42"}}}}
    """

    def __init__(self, frontend_url: str = "http://localhost:5173"):
        self.frontend_url = frontend_url.rstrip("/")
        self._paid: set[str] = set()

    async def create_session(self, booking) -> PaymentSession:
        session_id = f"offline_{booking.id}_{uuid.uuid4().hex[:12]}"
        return PaymentSession(session_id=session_id, url=f"{self.frontend_url}/checkout/{session_id}")

    async def is_session_paid(self, session_id: str) -> bool:
        return session_id in self._paid

    def mark_paid(self, session_id: str) -> None:
        self._paid.add(session_id)

    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        try:
            event = json.loads(payload or b"{}")
        except ValueError:
            raise InvalidRequest("Webhook body is not valid JSON")
        if not isinstance(event, dict) or "type" not in event:
            raise InvalidRequest("Webhook body has no event type")
        return event_from_payload(event)


def event_from_payload(event: dict) -> WebhookEvent:
    """Pull the booking correlation out of a provider-shaped event."""
    obj = (event.get("data") or {}).get("object") or {}
    metadata = obj.get("metadata") or {}
    raw_booking_id = metadata.get("bookingId")
    try:
        booking_id = int(raw_booking_id) if raw_booking_id not in (None, "") else None
    except (TypeError, ValueError):
        booking_id = None
    return WebhookEvent(type=str(event["type"]), booking_id=booking_id, session_id=obj.get("id"))
