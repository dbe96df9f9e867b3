"""
Payment gateway factory.
Configures which payment provider the bridge talks to.
"""

from typing import Optional

from showbook.services.interfaces.payment import PaymentGateway
from showbook.services.interfaces.offline_payment import OfflinePaymentGateway
from showbook.core.config import get_settings


def get_payment_gateway_strategy() -> PaymentGateway:
    """
    Build the configured gateway.

    - offline (default): local sessions, no credentials needed
    - stripe: Stripe Checkout, needs STRIPE_SECRET_KEY / STRIPE_WEBHOOK_SECRET
    """
    settings = get_settings()
    provider = settings.PAYMENT_PROVIDER.lower()

    if provider == "stripe":
        from showbook.services.stripe_gateway import StripePaymentGateway

        return StripePaymentGateway(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            currency=settings.PAYMENT_CURRENCY,
            frontend_url=settings.FRONTEND_URL,
        )
    if provider == "offline":
        return OfflinePaymentGateway(frontend_url=settings.FRONTEND_URL)
    raise ValueError(f"Unknown PAYMENT_PROVIDER: {settings.PAYMENT_PROVIDER}")


# Singleton instance, built once per process
_gateway: Optional[PaymentGateway] = None


def get_payment_gateway() -> PaymentGateway:
    """Get payment gateway singleton. Also the FastAPI dependency."""
    global _gateway
    if _gateway is None:
        _gateway = get_payment_gateway_strategy()
    return _gateway
