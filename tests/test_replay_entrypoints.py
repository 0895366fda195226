import pytest

from application.services.reconciliation_service import ReconciliationService
from domain.common.exceptions import ConcurrentProcessingException
from domain.invoicing.entity import ProductInfo, PurchasedLine
from infrastructure.external.invoicing.exceptions import InvoiceIssuerError
from infrastructure.idempotency import GatewayMetadataMarkerStore
from infrastructure.tasks import invoicing_tasks
from scripts import process_payments
from tests.invoicing.fakes import FakeGateway, FakeIssuer, FakeLedger, MemoryClaimStore, invoice_capable_context


def _service(claims=None):
    gateway = FakeGateway()
    gateway.add_payment("pay_1", 5000)
    gateway.products["prod_1"] = ProductInfo(id="prod_1", name="Workshop", tax_rate="27")
    gateway.contexts["pay_1"] = invoice_capable_context("cs_1", (PurchasedLine("prod_1", 1, 5000),))
    issuer = FakeIssuer()
    service = ReconciliationService(
        gateway=gateway,
        issuer=issuer,
        markers=GatewayMetadataMarkerStore(gateway),
        ledger=FakeLedger(),
        claims=claims,
    )
    return service, gateway, issuer


def test_cli_reports_each_id_and_fails_on_any_error(capsys):
    service, gateway, issuer = _service()

    code = process_payments.main(["pay_1", "pay_missing", "pay_1"], service_factory=lambda: service)

    out = capsys.readouterr()
    assert code == 1
    assert "OK  pay_1: issued INV-2024-001" in out.out
    assert "ERR pay_missing: KeyError" in out.out
    assert "OK  pay_1: already_processed INV-2024-001" in out.out
    assert "1 of 3 failed" in out.err
    assert len(issuer.issued) == 1
    assert gateway.closed


def test_cli_refund_without_invoice_is_skipped(capsys):
    service, gateway, _ = _service()
    from domain.invoicing.entity import RefundEvent

    gateway.refunds["re_1"] = RefundEvent(id="re_1", amount=5000, currency="huf", payment_id="pay_1")

    code = process_payments.main(["--refund", "re_1"], service_factory=lambda: service)

    assert code == 0
    assert "skipped (payment_not_invoiced)" in capsys.readouterr().out


def test_payment_task_runs_workflow(monkeypatch):
    service, gateway, issuer = _service()
    monkeypatch.setattr(invoicing_tasks, "_service_factory", lambda: service)

    result = invoicing_tasks.task_process_payment.run("pay_1")

    assert result["action"] == "issued"
    assert result["mirror"]["status"] == "ok"
    assert gateway.metadata("pay_1")["invoice_number"] == result["invoice_number"]
    assert gateway.closed


def test_payment_task_surfaces_busy_claim(monkeypatch):
    claims = MemoryClaimStore()
    claims.held.add("invoice:pay_1")
    service, _, issuer = _service(claims=claims)
    monkeypatch.setattr(invoicing_tasks, "_service_factory", lambda: service)

    # Called directly (no worker), retry re-raises the original error
    with pytest.raises(ConcurrentProcessingException):
        invoicing_tasks.task_process_payment.run("pay_1")
    assert issuer.issued == []


def _record_retries(monkeypatch):
    task = invoicing_tasks.task_process_payment._get_current_object()
    scheduled = []

    def fake_retry(**kwargs):
        scheduled.append(kwargs)
        return RuntimeError("retry scheduled")

    monkeypatch.setattr(task, "retry", fake_retry)
    return task, scheduled


def test_payment_task_retries_when_issuer_was_never_reached(monkeypatch):
    service, gateway, issuer = _service()
    issuer.fail_with = InvoiceIssuerError("refused", provider="szamlazz", kind="network")
    monkeypatch.setattr(invoicing_tasks, "_service_factory", lambda: service)
    task, scheduled = _record_retries(monkeypatch)

    with pytest.raises(RuntimeError, match="retry scheduled"):
        task.run("pay_1")

    assert len(scheduled) == 1
    assert scheduled[0]["countdown"] == invoicing_tasks.RETRY_BASE_DELAY
    assert "invoice_number" not in gateway.metadata("pay_1")


def test_payment_task_surfaces_read_timeout_without_retry(monkeypatch):
    service, gateway, issuer = _service()
    issuer.fail_with = InvoiceIssuerError(
        "read timeout", provider="szamlazz", kind="network", may_have_issued=True
    )
    monkeypatch.setattr(invoicing_tasks, "_service_factory", lambda: service)
    task, scheduled = _record_retries(monkeypatch)

    with pytest.raises(InvoiceIssuerError):
        task.run("pay_1")

    assert scheduled == []
