import asyncio

import pytest

from application.services.reconciliation_service import ReconciliationService
from domain.common.exceptions import ConcurrentProcessingException
from domain.invoicing.entity import LedgerStatus, ProductInfo, PurchasedLine
from domain.invoicing.outcome import ReconciliationAction
from infrastructure.idempotency import GatewayMetadataMarkerStore
from tests.invoicing.fakes import FakeGateway, FakeIssuer, FakeLedger, MemoryClaimStore, invoice_capable_context


def _setup(claims=None):
    gateway = FakeGateway()
    gateway.add_payment("pay_1", 5000)
    gateway.products["prod_1"] = ProductInfo(id="prod_1", name="Workshop", tax_rate="27")
    gateway.contexts["pay_1"] = invoice_capable_context("cs_1", (PurchasedLine("prod_1", 1, 5000),))
    issuer = FakeIssuer()

    async def _slow_issue(record):
        # Let the other invocation run while this one is "talking" to the issuer
        await asyncio.sleep(0)

    issuer.on_issue = _slow_issue
    service = ReconciliationService(
        gateway=gateway,
        issuer=issuer,
        markers=GatewayMetadataMarkerStore(gateway),
        ledger=FakeLedger(),
        claims=claims,
    )
    return service, gateway, issuer


@pytest.mark.asyncio
async def test_best_effort_mode_accepts_overlapping_duplicate():
    service, gateway, issuer = _setup()
    assert not service.strict

    results = await asyncio.gather(service.process_payment("pay_1"), service.process_payment("pay_1"))

    # Both passed the gate before either stored its marker
    assert [r.action for r in results] == [ReconciliationAction.ISSUED, ReconciliationAction.ISSUED]
    assert len(issuer.issued) == 2
    # Last writer wins on the marker
    assert gateway.metadata("pay_1")["invoice_number"] == results[1].invoice_number


@pytest.mark.asyncio
async def test_strict_mode_serializes_issuer_calls():
    claims = MemoryClaimStore()
    service, gateway, issuer = _setup(claims=claims)
    assert service.strict

    results = await asyncio.gather(
        service.process_payment("pay_1"),
        service.process_payment("pay_1"),
        return_exceptions=True,
    )

    issued = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, ConcurrentProcessingException)]
    assert len(issued) == 1 and len(rejected) == 1
    assert len(issuer.issued) == 1

    # The rejected trigger retries later and finds the marker
    retry = await service.process_payment("pay_1")
    assert retry.action is ReconciliationAction.ALREADY_PROCESSED
    assert len(issuer.issued) == 1


@pytest.mark.asyncio
async def test_strict_mode_releases_claim_on_issuer_failure():
    claims = MemoryClaimStore()
    service, _, issuer = _setup(claims=claims)
    issuer.fail_with = RuntimeError("agent down")

    with pytest.raises(RuntimeError):
        await service.process_payment("pay_1")
    assert claims.held == set()

    issuer.fail_with = None
    outcome = await service.process_payment("pay_1")
    assert outcome.action is ReconciliationAction.ISSUED
    # Kept after success; the TTL clears it
    assert claims.held == {"invoice:pay_1"}


class YieldingLedger(FakeLedger):
    """Hands control back to the loop on every call, like a real network client."""

    async def row_exists(self, payment_id, sheet):
        await asyncio.sleep(0)
        return await super().row_exists(payment_id, sheet)

    async def append_row(self, row, sheet):
        await asyncio.sleep(0)
        await super().append_row(row, sheet)


@pytest.mark.asyncio
async def test_strict_mode_rejected_call_leaves_ledger_untouched():
    claims = MemoryClaimStore()
    service, gateway, issuer = _setup(claims=claims)
    ledger = YieldingLedger()
    service.ledger = ledger

    results = await asyncio.gather(
        service.process_payment("pay_1"),
        service.process_payment("pay_1"),
        return_exceptions=True,
    )

    assert sum(isinstance(r, ConcurrentProcessingException) for r in results) == 1
    assert len(issuer.issued) == 1
    rows = ledger.rows()
    assert len(rows) == 1
    assert rows[0].status is LedgerStatus.ISSUED
    assert rows[0].invoice_number == gateway.metadata("pay_1")["invoice_number"]


@pytest.mark.asyncio
async def test_strict_mode_recheck_hit_skips_ledger_and_releases_claim():
    claims = MemoryClaimStore()
    service, gateway, issuer = _setup(claims=claims)
    ledger = service.ledger
    original_get = gateway.get_payment
    reads = {"n": 0}

    async def get_payment_finished_elsewhere(payment_id):
        reads["n"] += 1
        if reads["n"] == 3:
            # Another worker stored its marker between the gate and the claim
            gateway.metadata(payment_id)["invoice_number"] = "INV-OTHER-1"
        return await original_get(payment_id)

    gateway.get_payment = get_payment_finished_elsewhere

    outcome = await service.process_payment("pay_1")

    assert outcome.action is ReconciliationAction.ALREADY_PROCESSED
    assert outcome.invoice_number == "INV-OTHER-1"
    assert issuer.issued == []
    assert ledger.rows() == []
    assert claims.held == set()
