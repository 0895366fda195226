from decimal import Decimal

import pytest

from application.services.reconciliation_service import ReconciliationService
from domain.common.exceptions import LineItemsMissingException, MarkerWriteException
from domain.invoicing.entity import (
    CheckoutContext,
    CustomerIdentity,
    CustomField,
    LedgerStatus,
    ProductInfo,
    PurchasedLine,
)
from domain.invoicing.outcome import ReconciliationAction, SkipReason, StepStatus
from infrastructure.idempotency import GatewayMetadataMarkerStore
from tests.invoicing.fakes import FakeGateway, FakeIssuer, FakeLedger, invoice_capable_context


def _setup(with_ledger: bool = True):
    gateway = FakeGateway()
    gateway.add_payment("pay_1", 5000)
    gateway.products["prod_1"] = ProductInfo(id="prod_1", name="Workshop", tax_rate="27")
    gateway.contexts["pay_1"] = invoice_capable_context("cs_1", (PurchasedLine("prod_1", 1, 5000),))
    issuer = FakeIssuer()
    ledger = FakeLedger() if with_ledger else None
    service = ReconciliationService(
        gateway=gateway,
        issuer=issuer,
        markers=GatewayMetadataMarkerStore(gateway),
        ledger=ledger,
    )
    return service, gateway, issuer, ledger


@pytest.mark.asyncio
async def test_payment_is_invoiced_and_mirrored():
    service, gateway, issuer, ledger = _setup()

    outcome = await service.process_payment("pay_1")

    assert outcome.action is ReconciliationAction.ISSUED
    assert outcome.invoice_number == "INV-2024-001"
    assert outcome.authoritative.ok and outcome.mirror.ok
    assert len(issuer.issued) == 1
    assert gateway.metadata("pay_1")["invoice_number"] == "INV-2024-001"

    rows = ledger.rows("Sheet1")
    assert len(rows) == 1
    assert rows[0].status is LedgerStatus.ISSUED
    assert rows[0].invoice_number == "INV-2024-001"
    assert rows[0].amount / 100 == Decimal("50")
    assert rows[0].tax_rate == Decimal("27")

    record = issuer.issued[0]
    assert record.currency == "HUF"
    assert record.billing_address.postal_code == "1051"
    assert record.reference_date.isoformat() == "2024-03-15"


@pytest.mark.asyncio
async def test_second_call_is_noop():
    service, gateway, issuer, ledger = _setup()

    await service.process_payment("pay_1")
    second = await service.process_payment("pay_1")

    assert second.action is ReconciliationAction.ALREADY_PROCESSED
    assert second.invoice_number == "INV-2024-001"
    assert len(issuer.issued) == 1
    assert len(gateway.metadata_writes) == 1
    assert len(ledger.rows()) == 1


@pytest.mark.asyncio
async def test_already_invoiced_payment_costs_one_gateway_read():
    service, gateway, issuer, _ = _setup()
    gateway.metadata("pay_1")["invoice_number"] = "INV-2024-009"

    outcome = await service.process_payment("pay_1")

    assert outcome.action is ReconciliationAction.ALREADY_PROCESSED
    assert gateway.payment_fetches == 1
    assert issuer.issued == []


@pytest.mark.asyncio
async def test_no_checkout_context_is_skipped():
    service, gateway, issuer, ledger = _setup()
    del gateway.contexts["pay_1"]

    outcome = await service.process_payment("pay_1")

    assert outcome.action is ReconciliationAction.SKIPPED
    assert outcome.reason is SkipReason.NO_CHECKOUT_CONTEXT
    assert issuer.issued == []
    assert ledger.appends == 0 and ledger.updates == 0


@pytest.mark.asyncio
async def test_missing_billing_field_is_skipped():
    service, gateway, issuer, ledger = _setup()
    gateway.contexts["pay_1"] = CheckoutContext(
        id="cs_1",
        lines=(PurchasedLine("prod_1", 1, 5000),),
        customer=CustomerIdentity(name="Donor", email="d@example.hu"),
        custom_fields=(CustomField("vros", "Budapest"),),
    )

    outcome = await service.process_payment("pay_1")

    assert outcome.reason is SkipReason.NOT_INVOICE_CAPABLE
    assert issuer.issued == []
    assert ledger.appends == 0
    assert gateway.metadata_writes == []


@pytest.mark.asyncio
async def test_missing_line_items_raises_before_side_effects():
    service, gateway, issuer, ledger = _setup()
    gateway.contexts["pay_1"] = invoice_capable_context("cs_1", ())

    with pytest.raises(LineItemsMissingException):
        await service.process_payment("pay_1")

    assert issuer.issued == []
    assert ledger.appends == 0


@pytest.mark.asyncio
async def test_invalid_product_tax_rate_uses_default():
    service, gateway, issuer, _ = _setup()
    gateway.products["prod_1"] = ProductInfo(id="prod_1", name="Workshop", tax_rate="huszonhét")

    outcome = await service.process_payment("pay_1")

    assert outcome.action is ReconciliationAction.ISSUED
    assert issuer.issued[0].lines[0].tax_rate == Decimal("27")


@pytest.mark.asyncio
async def test_ledger_failure_after_issue_keeps_marker():
    service, gateway, issuer, ledger = _setup()
    ledger.fail_appends = True

    outcome = await service.process_payment("pay_1")

    assert outcome.action is ReconciliationAction.ISSUED
    assert outcome.authoritative.ok
    assert outcome.mirror.status is StepStatus.FAILED
    assert gateway.metadata("pay_1")["invoice_number"] == "INV-2024-001"
    assert ledger.rows() == []

    # The retry sees the marker and does not issue again
    again = await service.process_payment("pay_1")
    assert again.action is ReconciliationAction.ALREADY_PROCESSED
    assert len(issuer.issued) == 1


@pytest.mark.asyncio
async def test_issuer_failure_marks_pending_rows_as_error():
    service, gateway, issuer, ledger = _setup()
    issuer.fail_with = RuntimeError("agent down")

    with pytest.raises(RuntimeError):
        await service.process_payment("pay_1")

    rows = ledger.rows()
    assert len(rows) == 1
    assert rows[0].status is LedgerStatus.ERROR
    assert "invoice_number" not in gateway.metadata("pay_1")

    # Recovery: rows exist, so the successful retry updates them instead of appending
    issuer.fail_with = None
    outcome = await service.process_payment("pay_1")
    assert outcome.action is ReconciliationAction.ISSUED
    rows = ledger.rows()
    assert len(rows) == 1
    assert rows[0].status is LedgerStatus.ISSUED
    assert rows[0].invoice_number == outcome.invoice_number


@pytest.mark.asyncio
async def test_pending_row_written_before_issue():
    service, _, issuer, ledger = _setup()
    seen = []

    async def _inspect(record):
        seen.extend(r.status for r in ledger.rows())

    issuer.on_issue = _inspect
    await service.process_payment("pay_1")

    assert seen == [LedgerStatus.PENDING]


@pytest.mark.asyncio
async def test_marker_write_failure_is_propagated_with_number():
    service, gateway, issuer, ledger = _setup()
    gateway.fail_metadata_write = True

    with pytest.raises(MarkerWriteException) as excinfo:
        await service.process_payment("pay_1")

    assert excinfo.value.details["invoice_number"] == "INV-2024-001"
    # The ledger still shows the issued number for manual reconciliation
    assert ledger.rows()[0].status is LedgerStatus.ISSUED
    assert ledger.rows()[0].invoice_number == "INV-2024-001"


@pytest.mark.asyncio
async def test_ledger_disabled_reports_mirror_skipped():
    service, _, issuer, _ = _setup(with_ledger=False)

    outcome = await service.process_payment("pay_1")

    assert outcome.action is ReconciliationAction.ISSUED
    assert outcome.mirror.status is StepStatus.SKIPPED
    assert outcome.to_dict()["mirror"] == {"status": "skipped", "error": None}


@pytest.mark.asyncio
async def test_service_fee_product_lands_on_configured_sheet():
    service, gateway, issuer, ledger = _setup()
    gateway.add_payment("pay_fee", 12700)
    gateway.products["prod_fee"] = ProductInfo(
        id="prod_fee", name="Tábor", tax_rate="27", service_fee_percent="20", ledger_sheet_name="Táborok"
    )
    gateway.contexts["pay_fee"] = invoice_capable_context("cs_fee", (PurchasedLine("prod_fee", 1, 12700),))

    await service.process_payment("pay_fee")

    assert len(issuer.issued[0].lines) == 2
    assert issuer.issued[0].is_advance
    rows = ledger.rows("Táborok")
    assert len(rows) == 1 and rows[0].amount == Decimal(12700)
    assert ledger.rows("Sheet1") == []


@pytest.mark.asyncio
async def test_products_fetched_once_per_invocation():
    service, gateway, _, _ = _setup()
    gateway.contexts["pay_1"] = invoice_capable_context(
        "cs_1", (PurchasedLine("prod_1", 1, 2500), PurchasedLine("prod_1", 1, 2500))
    )

    await service.process_payment("pay_1")

    assert gateway.product_fetches == 1


@pytest.mark.asyncio
async def test_aclose_closes_adapters():
    service, gateway, _, _ = _setup()
    await service.aclose()
    assert gateway.closed
