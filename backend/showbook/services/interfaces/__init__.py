"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .payment import PaymentGateway, PaymentSession, WebhookEvent
from .offline_payment import OfflinePaymentGateway

__all__ = ['PaymentGateway', 'PaymentSession', 'WebhookEvent', 'OfflinePaymentGateway']
