"""
Stripe adapter using the official stripe-python SDK.

Notes on SDK usage:
- Module-level resources (``stripe.PaymentIntent``, ``stripe.checkout.Session``,
  ``stripe.Product``, ``stripe.Refund``) are used with ``stripe.api_key``.
- Payment metadata writes go through ``PaymentIntent.modify``, which merges
  keys into the existing metadata bag.
- Webhook verification uses ``stripe.Webhook.construct_event`` with the
  ``Stripe-Signature`` header.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import stripe

from application.dtos.webhooks import WebhookEvent
from domain.invoicing.entity import (
    CheckoutContext,
    CustomerIdentity,
    CustomField,
    PaymentEvent,
    ProductInfo,
    PurchasedLine,
    RefundEvent,
)
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentRecoverableError,
    PaymentSignatureError,
)
from core.settings import invoicing_settings
from core.logging_config import get_logger


logger = get_logger(__name__)

# Product metadata keys carrying per-product invoicing configuration
TAX_RATE_KEY = "vat_rate"
TAX_CATEGORY_KEY = "vat_type"
SERVICE_FEE_KEY = "service_fee_percentage"
SHEET_NAME_KEY = "sheet_name"

_RECOVERABLE_ERRORS = tuple(
    cls
    for cls in (getattr(stripe, "APIConnectionError", None), getattr(stripe, "RateLimitError", None))
    if isinstance(cls, type)
)


def _plain(obj: Any) -> Any:
    """StripeObject trees to plain dicts/lists."""
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        obj = to_dict()
    if isinstance(obj, Mapping):
        return {k: _plain(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_plain(v) for v in obj]
    return obj


def _ref_id(value: Any) -> str:
    """Expanded objects carry their id; unexpanded references are already ids."""
    if isinstance(value, Mapping):
        return str(value.get("id") or "")
    return str(value or "")


def _custom_field_value(field: Mapping[str, Any]) -> str:
    kind = field.get("type") or "text"
    payload = field.get(kind) or {}
    value = payload.get("value") if isinstance(payload, Mapping) else None
    return "" if value is None else str(value)


class StripeGateway(BasePaymentClient):
    provider = "stripe"

    def __init__(self):
        super().__init__(
            retry={"max": invoicing_settings.retry.max, "base": invoicing_settings.retry.base_backoff},
        )
        if not invoicing_settings.stripe.secret_key:
            raise RuntimeError("STRIPE__SECRET_KEY not configured")
        # Configure module-level key for compatibility across SDK variants
        stripe.api_key = invoicing_settings.stripe.secret_key

    def _is_recoverable(self, exc: BaseException) -> bool:
        return bool(_RECOVERABLE_ERRORS) and isinstance(exc, _RECOVERABLE_ERRORS)

    async def _request(self, action: str, fn, *args, **kwargs) -> Any:
        try:
            return _plain(await self._call(fn, *args, **kwargs))
        except Exception as exc:
            provider_code = getattr(exc, "code", None)
            if self._is_recoverable(exc):
                raise PaymentRecoverableError(str(exc), provider=self.provider, provider_code=provider_code, details={"action": action}) from exc
            raise PaymentProviderError(str(exc), provider=self.provider, provider_code=provider_code, details={"action": action}) from exc

    async def get_payment(self, payment_id: str) -> PaymentEvent:
        pi = await self._request("retrieve_payment", stripe.PaymentIntent.retrieve, payment_id)
        metadata = {str(k): str(v) for k, v in (pi.get("metadata") or {}).items()}
        return PaymentEvent(
            id=str(pi["id"]),
            amount=int(pi.get("amount") or 0),
            currency=str(pi.get("currency") or "").upper(),
            created=datetime.fromtimestamp(int(pi.get("created") or 0), tz=timezone.utc),
            metadata=metadata,
            status=self._map_status(str(pi.get("status") or "")),
        )

    async def get_refund(self, refund_id: str) -> RefundEvent:
        refund = await self._request("retrieve_refund", stripe.Refund.retrieve, refund_id)
        payment_id = _ref_id(refund.get("payment_intent"))
        if not payment_id:
            raise PaymentProviderError(
                "Refund is not linked to a payment intent",
                provider=self.provider,
                details={"refund_id": refund_id},
            )
        return RefundEvent(
            id=str(refund["id"]),
            amount=int(refund.get("amount") or 0),
            currency=str(refund.get("currency") or "").upper(),
            payment_id=payment_id,
        )

    async def get_checkout_context(self, payment_id: str) -> Optional[CheckoutContext]:
        sessions = await self._request(
            "list_checkout_sessions", stripe.checkout.Session.list, payment_intent=payment_id, limit=1
        )
        data = sessions.get("data") or []
        if not data:
            return None
        session = data[0]
        items = await self._request(
            "list_line_items", stripe.checkout.Session.list_line_items, session["id"], limit=100
        )
        lines = tuple(
            PurchasedLine(
                product_id=_ref_id((item.get("price") or {}).get("product")),
                quantity=int(item.get("quantity") or 1),
                amount=int(item.get("amount_total") or 0),
            )
            for item in items.get("data") or []
        )
        details = session.get("customer_details") or {}
        fields = tuple(
            CustomField(key=str(f.get("key")), value=_custom_field_value(f))
            for f in session.get("custom_fields") or []
        )
        return CheckoutContext(
            id=str(session["id"]),
            lines=lines,
            customer=CustomerIdentity(name=details.get("name") or "", email=details.get("email") or ""),
            custom_fields=fields,
        )

    async def get_product(self, product_id: str) -> ProductInfo:
        product = await self._request("retrieve_product", stripe.Product.retrieve, product_id)
        meta = product.get("metadata") or {}
        return ProductInfo(
            id=str(product["id"]),
            name=str(product.get("name") or ""),
            tax_rate=meta.get(TAX_RATE_KEY),
            tax_category=meta.get(TAX_CATEGORY_KEY),
            service_fee_percent=meta.get(SERVICE_FEE_KEY),
            ledger_sheet_name=meta.get(SHEET_NAME_KEY),
        )

    async def set_metadata(self, payment_id: str, values: Mapping[str, str]) -> None:
        # Merge semantics: keys not mentioned here are left untouched
        await self._request("update_metadata", stripe.PaymentIntent.modify, payment_id, metadata=dict(values))
        self._log("payment_metadata_updated", payment_id=payment_id, keys=sorted(values))

    async def find_refund_id(self, charge: Mapping[str, Any]) -> Optional[str]:
        """Latest refund of a charge, from the payload or by listing when not expanded."""
        refunds = (charge.get("refunds") or {}).get("data") or []
        if refunds:
            return str(refunds[0]["id"])
        listed = await self._request("list_refunds", stripe.Refund.list, charge=charge.get("id"), limit=1)
        data = listed.get("data") or []
        return str(data[0]["id"]) if data else None

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        secret = invoicing_settings.stripe.webhook_secret
        if not secret:
            raise PaymentSignatureError("Missing STRIPE__WEBHOOK_SECRET", provider=self.provider)
        sig = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig:
            raise PaymentSignatureError("Missing Stripe-Signature header", provider=self.provider)
        try:
            event = _plain(
                stripe.Webhook.construct_event(
                    payload=body,
                    sig_header=sig,
                    secret=secret,
                    tolerance=invoicing_settings.stripe.webhook_tolerance_seconds,
                )
            )
        except Exception as exc:
            raise PaymentSignatureError(str(exc), provider=self.provider) from exc
        return WebhookEvent(
            id=str(event.get("id")),
            type=str(event.get("type")),
            provider=self.provider,
            data=event.get("data", {}) or {},
            raw_headers=headers,
            raw_body=body,
        )
