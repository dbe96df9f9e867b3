"""
Payment provider callbacks.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from showbook.db.session import get_db
from showbook.schemas.booking import WebhookAck
from showbook.services.interfaces.payment import PaymentGateway
from showbook.services.payment_service import handle_webhook
from showbook.services.strategy_factory import get_payment_gateway

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/webhook", response_model=WebhookAck)
async def payment_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """
    Completed checkout -> booking paid.
    Duplicate deliveries are acknowledged without changing anything.
    """
    payload = await request.body()
    booking = await handle_webhook(db, gateway, payload, stripe_signature)
    if booking is None:
        return WebhookAck()
    return WebhookAck(booking_id=booking.id, status=booking.status)
