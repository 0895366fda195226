"""
Factory for payment gateway clients.
"""
from __future__ import annotations

from typing import Optional

from application.ports.payment_gateway import PaymentGateway


def get_payment_gateway(provider: Optional[str] = None) -> PaymentGateway:
    name = (provider or "stripe").lower()
    if name == "stripe":
        from .stripe_client import StripeGateway
        return StripeGateway()
    raise ValueError(f"Unsupported payment provider: {name}")
