from __future__ import annotations

from collections.abc import Mapping
from datetime import date
from typing import Any

import pytest

from pymandi.exceptions import InvoiceError, MandiTransportError
from pymandi.invoices import HttpInvoiceGateway
from pymandi.models.invoice import InvoiceDraft, InvoiceItem


class _FakeTransport:
    def __init__(self, response: Any = None, error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[tuple[str, str, Mapping[str, Any] | None]] = []

    async def request_json(self, method: str, endpoint: str, payload: Mapping[str, Any] | None = None) -> Any:
        self.calls.append((method, endpoint, payload))
        if self.error is not None:
            raise self.error
        return self.response


def _draft() -> InvoiceDraft:
    return InvoiceDraft(
        invoice_number="INV-1",
        customer_id="C-1",
        vehicle_id="V1",
        date=date(2026, 3, 14),
        items=[
            InvoiceItem(
                product_id="onion",
                vehicle_id="V1",
                quantity=22,
                unit_price=20,
                total=440,
                weight_breakdown=[10, 12],
            )
        ],
        subtotal=440,
        bags=2,
        total_kg_weight=22,
        grand_total=440,
    )


@pytest.mark.asyncio
async def test_create_invoice_posts_camel_case_draft() -> None:
    transport = _FakeTransport({"id": 17, "invoiceNumber": "INV-1", "grandTotal": 440})
    gateway = HttpInvoiceGateway(transport)

    receipt = await gateway.create_invoice(_draft())

    assert receipt.id == "17"
    assert receipt.grand_total == 440
    method, endpoint, payload = transport.calls[0]
    assert (method, endpoint) == ("POST", "/api/invoices")
    assert payload is not None
    assert payload["invoiceNumber"] == "INV-1"
    assert payload["status"] == "pending"
    assert payload["date"] == "2026-03-14"
    assert payload["items"][0]["weightBreakdown"] == "[10.0, 12.0]"
    assert "vendorId" not in payload


@pytest.mark.asyncio
async def test_create_invoice_accepts_wrapped_response() -> None:
    gateway = HttpInvoiceGateway(_FakeTransport({"invoice": {"id": "abc"}}))

    receipt = await gateway.create_invoice(_draft())

    assert receipt.id == "abc"
    assert receipt.invoice_number == "INV-1"


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [None, [], {"ok": True}, {"id": ""}])
async def test_create_invoice_without_id_fails(response: Any) -> None:
    with pytest.raises(InvoiceError):
        await HttpInvoiceGateway(_FakeTransport(response)).create_invoice(_draft())


@pytest.mark.asyncio
async def test_transport_failure_becomes_invoice_error() -> None:
    gateway = HttpInvoiceGateway(_FakeTransport(error=MandiTransportError("HTTP 500", status_code=500)))

    with pytest.raises(InvoiceError):
        await gateway.create_invoice(_draft())
    with pytest.raises(InvoiceError):
        await gateway.void_invoice("17")


@pytest.mark.asyncio
async def test_void_invoice_uses_bulk_delete() -> None:
    transport = _FakeTransport({"deleted": 1})

    await HttpInvoiceGateway(transport).void_invoice("17")

    assert transport.calls == [("POST", "/api/invoices/bulk-delete", {"ids": ["17"]})]
