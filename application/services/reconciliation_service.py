"""
Application service reconciling gateway payments with the invoicing service
and the ledger.

Invariants enforced here:

* The idempotency marker (MarkerStore) is checked before any side effect and
  re-checked immediately before the non-idempotent issuer call.
* The marker is written right after the issuer returns and before any ledger
  write (marker-before-mirror). A crash between the issuer call and the marker
  write is the only window in which a retry can produce a duplicate document.
* Ledger writes after the marker are best-effort: failures are logged and
  reported through ``ReconciliationOutcome.mirror``, never raised.

Concurrent invocations for the same payment can both pass the gate before
either stores its marker. In ``best_effort`` mode that race is accepted and
surfaces as a logged duplicate; passing a ClaimStore enables strict mode,
where a set-if-absent claim serializes the placeholder ledger rows and the
issuer call per payment.

This class depends only on application ports; adapters are injected from the
composition root (API/tasks/scripts).
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from application.ports.idempotency import ClaimStore, MarkerStore
from application.ports.invoice_issuer import InvoiceIssuer
from application.ports.ledger import Ledger
from application.ports.payment_gateway import PaymentGateway
from core.logging_config import get_logger
from domain.common.exceptions import (
    CheckoutContextMissingException,
    ConcurrentProcessingException,
    LineItemsMissingException,
    MarkerWriteException,
)
from domain.invoicing.derivation import (
    DEFAULT_SERVICE_FEE_LABEL,
    DEFAULT_SHEET_NAME,
    DerivedInvoice,
    derive_invoice,
    map_billing_address,
    resolve_product_config,
)
from domain.invoicing.entity import (
    INVOICE_NUMBER_MARKER,
    REFUND_INVOICE_NUMBER_MARKER,
    CheckoutContext,
    LedgerStatus,
    ProductConfig,
)
from domain.invoicing.outcome import (
    ReconciliationAction,
    ReconciliationOutcome,
    SkipReason,
    StepResult,
)


logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconciliationOptions:
    default_tax_rate: Decimal = Decimal("27")
    postal_code_field: str = "irnytszm"
    city_field: str = "vros"
    address_field: str = "cm"
    country: str = "HU"
    service_fee_label: str = DEFAULT_SERVICE_FEE_LABEL
    default_sheet: str = DEFAULT_SHEET_NAME


class ReconciliationService:
    def __init__(
        self,
        *,
        gateway: PaymentGateway,
        issuer: InvoiceIssuer,
        markers: MarkerStore,
        ledger: Optional[Ledger] = None,
        claims: Optional[ClaimStore] = None,
        options: Optional[ReconciliationOptions] = None,
    ) -> None:
        self.gateway = gateway
        self.issuer = issuer
        self.markers = markers
        self.ledger = ledger
        self.claims = claims
        self.options = options or ReconciliationOptions()

    @property
    def strict(self) -> bool:
        return self.claims is not None

    # ------------------------------------------------------------------
    # Payment path
    # ------------------------------------------------------------------
    async def process_payment(self, payment_id: str) -> ReconciliationOutcome:
        log = logger.bind(payment_id=payment_id, operation="invoice")
        log.info("payment_processing_started", strict=self.strict)

        # Marker reads always hit the gateway; a caller-supplied snapshot is never trusted
        existing = await self.markers.get_marker(payment_id, INVOICE_NUMBER_MARKER)
        if existing:
            log.info("payment_already_invoiced", invoice_number=existing)
            return ReconciliationOutcome(
                action=ReconciliationAction.ALREADY_PROCESSED,
                payment_id=payment_id,
                invoice_number=existing,
            )

        payment = await self.gateway.get_payment(payment_id)
        context = await self.gateway.get_checkout_context(payment_id)
        if context is None:
            log.info("payment_skipped", reason=SkipReason.NO_CHECKOUT_CONTEXT.value)
            return self._skipped(payment_id, SkipReason.NO_CHECKOUT_CONTEXT)

        if not context.has_field(self.options.postal_code_field):
            log.info(
                "payment_skipped",
                reason=SkipReason.NOT_INVOICE_CAPABLE.value,
                required_field=self.options.postal_code_field,
            )
            return self._skipped(payment_id, SkipReason.NOT_INVOICE_CAPABLE)

        if not context.lines:
            raise LineItemsMissingException(payment_id)

        derived = await self._derive(
            payment_id=payment_id,
            currency=payment.currency,
            total=payment.amount,
            context=context,
            reference_date=payment.created_date,
        )

        claim_key = f"invoice:{payment_id}"
        await self._acquire(claim_key, payment_id, "invoice")
        pending_written = False
        try:
            # Narrow the duplicate window: another invocation may have finished meanwhile
            raced = await self.markers.get_marker(payment_id, INVOICE_NUMBER_MARKER)
            if raced:
                log.warning("payment_invoiced_concurrently", invoice_number=raced)
                await self._release(claim_key)
                return ReconciliationOutcome(
                    action=ReconciliationAction.ALREADY_PROCESSED,
                    payment_id=payment_id,
                    invoice_number=raced,
                )
            # Only the claim holder touches the ledger
            pending_written = await self._write_pending_rows(derived)
            invoice_number = await self.issuer.issue(derived.record)
        except Exception as exc:
            await self._release(claim_key)
            log.error("payment_invoice_failed", error=str(exc), error_type=type(exc).__name__)
            if pending_written:
                await self._mark_error(derived)
            raise

        log.info("payment_invoice_issued", invoice_number=invoice_number)
        await self._store_marker(
            derived, INVOICE_NUMBER_MARKER, invoice_number, LedgerStatus.ISSUED
        )

        mirror = await self._write_final_rows(derived, LedgerStatus.ISSUED, invoice_number)
        log.info(
            "payment_processing_completed",
            invoice_number=invoice_number,
            mirror=mirror.status.value,
        )
        return ReconciliationOutcome(
            action=ReconciliationAction.ISSUED,
            payment_id=payment_id,
            invoice_number=invoice_number,
            authoritative=StepResult.success(),
            mirror=mirror,
        )

    # ------------------------------------------------------------------
    # Refund path
    # ------------------------------------------------------------------
    async def process_refund(self, refund_id: str) -> ReconciliationOutcome:
        log = logger.bind(refund_id=refund_id, operation="storno")
        refund = await self.gateway.get_refund(refund_id)
        payment_id = refund.payment_id
        log = log.bind(payment_id=payment_id)
        log.info("refund_processing_started", strict=self.strict)

        original_number = await self.markers.get_marker(payment_id, INVOICE_NUMBER_MARKER)
        if not original_number:
            log.info("refund_skipped", reason=SkipReason.NOT_INVOICED.value)
            return self._skipped(payment_id, SkipReason.NOT_INVOICED, refund_id=refund_id)

        existing = await self.markers.get_marker(payment_id, REFUND_INVOICE_NUMBER_MARKER)
        if existing:
            log.info("refund_already_processed", refund_invoice_number=existing)
            return ReconciliationOutcome(
                action=ReconciliationAction.ALREADY_PROCESSED,
                payment_id=payment_id,
                refund_id=refund_id,
                invoice_number=existing,
            )

        payment = await self.gateway.get_payment(payment_id)
        context = await self.gateway.get_checkout_context(payment_id)
        if context is None:
            raise CheckoutContextMissingException(payment_id)
        if not context.lines:
            raise LineItemsMissingException(payment_id)

        # Storno mirrors the original purchase and carries its date
        derived = await self._derive(
            payment_id=payment_id,
            currency=refund.currency or payment.currency,
            total=refund.amount,
            context=context,
            reference_date=payment.created_date,
        )

        claim_key = f"storno:{payment_id}"
        await self._acquire(claim_key, payment_id, "storno")
        try:
            raced = await self.markers.get_marker(payment_id, REFUND_INVOICE_NUMBER_MARKER)
            if raced:
                log.warning("refund_processed_concurrently", refund_invoice_number=raced)
                await self._release(claim_key)
                return ReconciliationOutcome(
                    action=ReconciliationAction.ALREADY_PROCESSED,
                    payment_id=payment_id,
                    refund_id=refund_id,
                    invoice_number=raced,
                )
            storno_number = await self.issuer.cancel(original_number, derived.record)
        except Exception as exc:
            await self._release(claim_key)
            log.error(
                "refund_storno_failed",
                original_invoice_number=original_number,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise

        log.info(
            "refund_storno_issued",
            refund_invoice_number=storno_number,
            original_invoice_number=original_number,
        )
        await self._store_marker(
            derived, REFUND_INVOICE_NUMBER_MARKER, storno_number, LedgerStatus.CANCELLED
        )

        mirror = await self._write_final_rows(derived, LedgerStatus.CANCELLED, storno_number)
        log.info(
            "refund_processing_completed",
            refund_invoice_number=storno_number,
            mirror=mirror.status.value,
        )
        return ReconciliationOutcome(
            action=ReconciliationAction.CANCELLED,
            payment_id=payment_id,
            refund_id=refund_id,
            invoice_number=storno_number,
            authoritative=StepResult.success(),
            mirror=mirror,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _skipped(
        payment_id: str, reason: SkipReason, *, refund_id: Optional[str] = None
    ) -> ReconciliationOutcome:
        return ReconciliationOutcome(
            action=ReconciliationAction.SKIPPED,
            payment_id=payment_id,
            refund_id=refund_id,
            reason=reason,
        )

    async def _derive(
        self,
        *,
        payment_id: str,
        currency: str,
        total: int,
        context: CheckoutContext,
        reference_date,
    ) -> DerivedInvoice:
        configs: list[ProductConfig] = []
        resolved: dict[str, ProductConfig] = {}
        for line in context.lines:
            config = resolved.get(line.product_id)
            if config is None:
                product = await self.gateway.get_product(line.product_id)
                config = resolve_product_config(
                    product, default_tax_rate=self.options.default_tax_rate
                )
                if config.tax_rate_fallback_reason:
                    logger.warning(
                        "product_tax_rate_defaulted",
                        payment_id=payment_id,
                        product_id=line.product_id,
                        reason=config.tax_rate_fallback_reason,
                        tax_rate=str(config.tax_rate),
                    )
                resolved[line.product_id] = config
            configs.append(config)

        address = map_billing_address(
            context,
            postal_code_field=self.options.postal_code_field,
            city_field=self.options.city_field,
            address_field=self.options.address_field,
            country=self.options.country,
        )
        return derive_invoice(
            payment_id=payment_id,
            currency=currency,
            total=total,
            reference_date=reference_date,
            billing_address=address,
            lines=context.lines,
            configs=configs,
            fee_label=self.options.service_fee_label,
            default_sheet_name=self.options.default_sheet,
        )

    async def _acquire(self, key: str, payment_id: str, operation: str) -> None:
        if self.claims is None:
            return
        if not await self.claims.claim(key):
            logger.warning("reconciliation_claim_busy", payment_id=payment_id, operation=operation)
            raise ConcurrentProcessingException(payment_id, operation)

    async def _release(self, key: str) -> None:
        if self.claims is None:
            return
        try:
            await self.claims.release(key)
        except Exception as exc:
            # Claim expires on its own; the original error matters more
            logger.warning("reconciliation_claim_release_failed", key=key, error=str(exc))

    async def _store_marker(
        self,
        derived: DerivedInvoice,
        marker: str,
        number: str,
        status: LedgerStatus,
    ) -> None:
        payment_id = derived.record.payment_id
        try:
            await self.markers.set_marker(payment_id, marker, number)
        except Exception as exc:
            logger.error(
                "idempotency_marker_write_failed",
                payment_id=payment_id,
                marker=marker,
                invoice_number=number,
                error=str(exc),
            )
            # The ledger keeps the number visible for manual reconciliation
            await self._write_final_rows(derived, status, number)
            raise MarkerWriteException(payment_id, marker, number, str(exc)) from exc

    async def _write_pending_rows(self, derived: DerivedInvoice) -> bool:
        """Append Pending placeholders unless rows already exist. Best-effort."""
        if self.ledger is None:
            return False
        payment_id = derived.record.payment_id
        sheet = derived.sheet_name
        try:
            if await self.ledger.row_exists(payment_id, sheet):
                logger.info("ledger_rows_exist_retrying", payment_id=payment_id, sheet=sheet)
                return True
            for row in derived.ledger_rows(status=LedgerStatus.PENDING):
                await self.ledger.append_row(row, sheet)
        except Exception as exc:
            logger.warning(
                "ledger_mirror_failed",
                payment_id=payment_id,
                sheet=sheet,
                stage="pending",
                error=str(exc),
            )
            return False
        logger.info(
            "ledger_rows_pending",
            payment_id=payment_id,
            sheet=sheet,
            rows=len(derived.ledger_lines),
        )
        return True

    async def _mark_error(self, derived: DerivedInvoice) -> None:
        payment_id = derived.record.payment_id
        try:
            await self.ledger.update_status(payment_id, None, LedgerStatus.ERROR, derived.sheet_name)
        except Exception as exc:
            logger.warning(
                "ledger_mirror_failed",
                payment_id=payment_id,
                sheet=derived.sheet_name,
                stage="error",
                error=str(exc),
            )

    async def _write_final_rows(
        self, derived: DerivedInvoice, status: LedgerStatus, number: str
    ) -> StepResult:
        """Bring the mirror to ``status``: update existing rows or append new ones."""
        if self.ledger is None:
            return StepResult()
        payment_id = derived.record.payment_id
        sheet = derived.sheet_name
        try:
            if await self.ledger.row_exists(payment_id, sheet):
                await self.ledger.update_status(payment_id, number, status, sheet)
            else:
                for row in derived.ledger_rows(status=status, invoice_number=number):
                    await self.ledger.append_row(row, sheet)
        except Exception as exc:
            logger.error(
                "ledger_mirror_failed",
                payment_id=payment_id,
                sheet=sheet,
                stage=status.value.lower(),
                invoice_number=number,
                error=str(exc),
            )
            return StepResult.failure(str(exc))
        logger.info("ledger_rows_updated", payment_id=payment_id, sheet=sheet, status=status.value)
        return StepResult.success()

    async def aclose(self) -> None:
        # Best-effort close underlying resources
        for resource in (self.gateway, self.issuer, self.ledger, self.claims):
            close = getattr(resource, "aclose", None)
            if callable(close):
                await close()
