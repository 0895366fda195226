"""
MarkerStore backed by the payment gateway's per-payment metadata bag.

Writes are merges (other metadata keys survive) and last-writer-wins; the
gateway offers no conditional update, so this store cannot provide strict
mutual exclusion on its own. Pair it with a ClaimStore for strict mode.
"""
from __future__ import annotations

from typing import Optional

from application.ports.payment_gateway import PaymentGateway


class GatewayMetadataMarkerStore:
    def __init__(self, gateway: PaymentGateway) -> None:
        self.gateway = gateway

    async def get_marker(self, key: str, marker: str) -> Optional[str]:
        # Always a fresh read: cached snapshots defeat the gate
        payment = await self.gateway.get_payment(key)
        return payment.metadata.get(marker) or None

    async def set_marker(self, key: str, marker: str, value: str) -> None:
        await self.gateway.set_metadata(key, {marker: value})
