"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on this Protocol; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from application.dtos.webhooks import WebhookEvent
from domain.invoicing.entity import CheckoutContext, PaymentEvent, ProductInfo, RefundEvent


@runtime_checkable
class PaymentGateway(Protocol):
    """Read access to authoritative payment state plus metadata writes.

    Implementations should be async and side-effect free beyond IO.
    """

    provider: str

    async def get_payment(self, payment_id: str) -> PaymentEvent: ...

    async def get_refund(self, refund_id: str) -> RefundEvent: ...

    async def get_checkout_context(self, payment_id: str) -> Optional[CheckoutContext]: ...

    async def get_product(self, product_id: str) -> ProductInfo: ...

    async def set_metadata(self, payment_id: str, values: Mapping[str, str]) -> None:
        """Merge ``values`` into the payment's metadata bag (never replaces it)."""
        ...

    async def find_refund_id(self, charge: Mapping[str, Any]) -> Optional[str]:
        """Resolve the refund behind a charge-level refund notification."""
        ...

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent: ...
