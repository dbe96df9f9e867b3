"""
Payment gateway interface.
The reservation core only needs three things from a payment provider:
open a checkout session, ask whether a session was paid, and authenticate
an incoming webhook.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

CHECKOUT_COMPLETED = "checkout.session.completed"


@dataclass(frozen=True)
class PaymentSession:
    session_id: str
    url: str


@dataclass(frozen=True)
class WebhookEvent:
    type: str
    booking_id: Optional[int] = None
    session_id: Optional[str] = None

    @property
    def confirms_payment(self) -> bool:
        return self.type == CHECKOUT_COMPLETED


class PaymentGateway(ABC):
    """
    Interface for payment providers.

    Implementations:
    - StripePaymentGateway: Stripe Checkout
    - OfflinePaymentGateway: local sessions for development and tests
    """

    @abstractmethod
    async def create_session(self, booking) -> PaymentSession:
        """
        Open a checkout session for a pending booking.

        The session must carry the booking id so the webhook can be
        correlated back to exactly one booking.
        """
        pass

    @abstractmethod
    async def is_session_paid(self, session_id: str) -> bool:
        """Whether the provider reports the session as paid."""
        pass

    @abstractmethod
    def parse_webhook(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """
        Authenticate and decode a webhook body.

        Raises:
            InvalidRequest: signature or body rejected
        """
        pass
