"""
Base payment client implementing shared concerns: threaded SDK calls, retry,
logging, status mapping.

Provider SDKs are synchronous; calls run in a worker thread so the event loop
stays free. Concrete providers subclass and implement provider-specific logic.
"""
from __future__ import annotations

from functools import partial
from typing import Any, Callable, Mapping, Optional

import anyio
from tenacity import AsyncRetrying, stop_after_attempt, wait_exponential, retry_if_exception

from core.logging_config import get_logger
from application.dtos.webhooks import WebhookEvent
from domain.invoicing.entity import CheckoutContext, PaymentEvent, ProductInfo, RefundEvent
from shared.codes.invoicing_codes import PROVIDER_STATUS_TO_INTERNAL


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "base"

    def __init__(self, *, retry: Optional[dict[str, Any]] = None) -> None:
        self._retry_cfg = retry or {"max": 2, "base": 0.2}

    def _is_recoverable(self, exc: BaseException) -> bool:
        """Override per provider: which SDK errors are safe to retry."""
        return False

    async def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking SDK call in a thread, retrying recoverable failures.

        Only use for reads and idempotent writes.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(int(self._retry_cfg["max"]) + 1),
            wait=wait_exponential(multiplier=self._retry_cfg["base"], min=0.1, max=2.0),
            retry=retry_if_exception(self._is_recoverable),
            reraise=True,
        ):
            with attempt:
                return await anyio.to_thread.run_sync(partial(fn, *args, **kwargs))

    # Default implementations raise to force override where needed
    async def get_payment(self, payment_id: str) -> PaymentEvent:
        raise NotImplementedError

    async def get_refund(self, refund_id: str) -> RefundEvent:
        raise NotImplementedError

    async def get_checkout_context(self, payment_id: str) -> Optional[CheckoutContext]:
        raise NotImplementedError

    async def get_product(self, product_id: str) -> ProductInfo:
        raise NotImplementedError

    async def set_metadata(self, payment_id: str, values: Mapping[str, str]) -> None:
        raise NotImplementedError

    async def find_refund_id(self, charge: Mapping[str, Any]) -> Optional[str]:
        raise NotImplementedError

    def parse_webhook(self, headers: dict[str, Any], body: bytes) -> WebhookEvent:
        raise NotImplementedError

    # Helpers
    def _map_status(self, provider_status: str) -> str:
        mapping = PROVIDER_STATUS_TO_INTERNAL.get(self.provider, {})
        return mapping.get(provider_status, provider_status)

    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
