"""
Composition root shared by the API lifespan, Celery tasks and scripts.

Wires the configured adapters into a ReconciliationService.
"""
from __future__ import annotations

from typing import Optional

from application.ports.idempotency import ClaimStore
from application.services.reconciliation_service import ReconciliationOptions, ReconciliationService
from core.logging_config import get_logger
from core.settings import InvoicingSettings, invoicing_settings
from infrastructure.external.invoicing import get_invoice_issuer
from infrastructure.external.ledger import get_ledger
from infrastructure.external.payments import get_payment_gateway
from infrastructure.idempotency import GatewayMetadataMarkerStore


logger = get_logger(__name__)


def build_options(cfg: Optional[InvoicingSettings] = None) -> ReconciliationOptions:
    cfg = cfg or invoicing_settings
    rec = cfg.reconciliation
    return ReconciliationOptions(
        default_tax_rate=rec.default_tax_rate,
        postal_code_field=rec.postal_code_field,
        city_field=rec.city_field,
        address_field=rec.address_field,
        country=rec.country,
        service_fee_label=rec.service_fee_label,
        default_sheet=cfg.ledger.default_sheet,
    )


def build_reconciliation_service() -> ReconciliationService:
    gateway = get_payment_gateway()
    issuer = get_invoice_issuer()
    ledger = get_ledger()

    claims: Optional[ClaimStore] = None
    if invoicing_settings.reconciliation.marker_mode == "strict":
        from infrastructure.idempotency.redis_claims import RedisClaimStore
        claims = RedisClaimStore.from_settings()

    logger.info(
        "reconciliation_service_built",
        gateway=gateway.provider,
        issuer=issuer.provider,
        ledger_enabled=ledger is not None,
        marker_mode=invoicing_settings.reconciliation.marker_mode,
    )
    return ReconciliationService(
        gateway=gateway,
        issuer=issuer,
        markers=GatewayMetadataMarkerStore(gateway),
        ledger=ledger,
        claims=claims,
        options=build_options(),
    )
