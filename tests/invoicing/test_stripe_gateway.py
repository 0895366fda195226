import pytest

stripe = pytest.importorskip("stripe")

from infrastructure.external.payments import get_payment_gateway  # noqa: E402
from infrastructure.external.payments.exceptions import PaymentProviderError, PaymentSignatureError  # noqa: E402
from infrastructure.external.payments.stripe_client import StripeGateway  # noqa: E402


@pytest.fixture
def gateway() -> StripeGateway:
    gw = get_payment_gateway("stripe")
    assert isinstance(gw, StripeGateway)
    return gw


@pytest.mark.asyncio
async def test_get_payment_maps_intent(monkeypatch, gateway):
    def _retrieve(payment_id):
        return {
            "id": payment_id,
            "amount": 5000,
            "currency": "huf",
            "created": 1710498600,
            "status": "succeeded",
            "metadata": {"invoice_number": "E-ABC-2024-1"},
        }

    monkeypatch.setattr(stripe.PaymentIntent, "retrieve", _retrieve)

    payment = await gateway.get_payment("pi_1")

    assert payment.amount == 5000
    assert payment.currency == "HUF"
    assert payment.invoice_number == "E-ABC-2024-1"
    assert payment.created_date.isoformat() == "2024-03-15"
    assert payment.status == "succeeded"


@pytest.mark.asyncio
async def test_checkout_context_reads_lines_and_custom_fields(monkeypatch, gateway):
    captured = {}

    def _list(**kwargs):
        captured["list"] = kwargs
        return {
            "data": [
                {
                    "id": "cs_1",
                    "customer_details": {"name": "Kovács Anna", "email": "anna@example.hu"},
                    "custom_fields": [
                        {"key": "irnytszm", "type": "numeric", "numeric": {"value": "1051"}},
                        {"key": "vros", "type": "text", "text": {"value": "Budapest"}},
                        {"key": "cm", "type": "dropdown", "dropdown": {"value": "Nádor utca 7."}},
                    ],
                }
            ]
        }

    def _line_items(session_id, **kwargs):
        captured["line_items"] = session_id
        return {"data": [{"price": {"product": "prod_1"}, "quantity": 2, "amount_total": 10000}]}

    monkeypatch.setattr(stripe.checkout.Session, "list", _list)
    monkeypatch.setattr(stripe.checkout.Session, "list_line_items", _line_items)

    context = await gateway.get_checkout_context("pi_1")

    assert captured["list"]["payment_intent"] == "pi_1"
    assert captured["line_items"] == "cs_1"
    assert context.lines[0].product_id == "prod_1"
    assert context.lines[0].quantity == 2
    assert context.lines[0].amount == 10000
    assert context.customer.email == "anna@example.hu"
    assert context.has_field("irnytszm")
    assert context.field_value("irnytszm") == "1051"
    assert context.field_value("cm") == "Nádor utca 7."


@pytest.mark.asyncio
async def test_checkout_context_missing_returns_none(monkeypatch, gateway):
    monkeypatch.setattr(stripe.checkout.Session, "list", lambda **kwargs: {"data": []})

    assert await gateway.get_checkout_context("pi_1") is None


@pytest.mark.asyncio
async def test_product_metadata_is_passed_raw(monkeypatch, gateway):
    def _retrieve(product_id):
        return {
            "id": product_id,
            "name": "Tábor",
            "metadata": {"vat_rate": "27", "vat_type": "AAM", "service_fee_percentage": "20", "sheet_name": "Táborok"},
        }

    monkeypatch.setattr(stripe.Product, "retrieve", _retrieve)

    product = await gateway.get_product("prod_1")

    assert (product.tax_rate, product.tax_category, product.service_fee_percent, product.ledger_sheet_name) == (
        "27",
        "AAM",
        "20",
        "Táborok",
    )


@pytest.mark.asyncio
async def test_set_metadata_merges_via_modify(monkeypatch, gateway):
    calls = []
    monkeypatch.setattr(stripe.PaymentIntent, "modify", lambda pid, **kwargs: calls.append((pid, kwargs)) or {"id": pid})

    await gateway.set_metadata("pi_1", {"invoice_number": "E-1"})

    assert calls == [("pi_1", {"metadata": {"invoice_number": "E-1"}})]


@pytest.mark.asyncio
async def test_sdk_errors_become_provider_errors(monkeypatch, gateway):
    def _boom(refund_id):
        raise stripe.InvalidRequestError("No such refund", param="id")

    monkeypatch.setattr(stripe.Refund, "retrieve", _boom)

    with pytest.raises(PaymentProviderError):
        await gateway.get_refund("re_missing")


@pytest.mark.asyncio
async def test_find_refund_id_lists_when_not_expanded(monkeypatch, gateway):
    monkeypatch.setattr(stripe.Refund, "list", lambda **kwargs: {"data": [{"id": "re_9"}]})

    assert await gateway.find_refund_id({"id": "ch_1", "refunds": {"data": [{"id": "re_1"}]}}) == "re_1"
    assert await gateway.find_refund_id({"id": "ch_1"}) == "re_9"


def test_parse_webhook(monkeypatch, gateway):
    # Fake construct_event to bypass signature crypto
    class _FakeWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            return {"id": "evt_1", "type": "payment_intent.succeeded", "data": {"object": {"id": "pi_1"}}}

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)

    event = gateway.parse_webhook({"stripe-signature": "t=1,v1=abc"}, b"{}")

    assert event.type == "payment_intent.succeeded"
    assert event.object["id"] == "pi_1"
    assert event.provider == "stripe"


def test_parse_webhook_rejects_bad_signature(monkeypatch, gateway):
    class _FakeWebhook:
        @staticmethod
        def construct_event(payload, sig_header, secret, tolerance=None):
            raise ValueError("No signatures found matching the expected signature")

    monkeypatch.setattr(stripe, "Webhook", _FakeWebhook)

    with pytest.raises(PaymentSignatureError):
        gateway.parse_webhook({"stripe-signature": "t=1,v1=bad"}, b"{}")
    with pytest.raises(PaymentSignatureError):
        gateway.parse_webhook({}, b"{}")
