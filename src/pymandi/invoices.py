"""Invoice collaborator: /api/invoices.

The business server owns invoice persistence. This module only knows the
data contract: a camelCase invoice draft goes in, an identifier comes back,
and a created invoice can be voided through the bulk-delete endpoint.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from pydantic import ValidationError

from pymandi._transport import Transport
from pymandi.exceptions import InvoiceError, MandiTransportError
from pymandi.models.invoice import InvoiceDraft, InvoiceReceipt

_logger = logging.getLogger(__name__)

INVOICES_ENDPOINT = "/api/invoices"
BULK_DELETE_ENDPOINT = "/api/invoices/bulk-delete"


class InvoiceGateway(Protocol):
    async def create_invoice(self, draft: InvoiceDraft) -> InvoiceReceipt: ...

    async def void_invoice(self, invoice_id: str) -> None: ...


def _parse_receipt(response: Any, draft: InvoiceDraft) -> InvoiceReceipt:
    """Build a receipt from the server's echo of the created invoice."""
    if isinstance(response, dict) and isinstance(response.get("invoice"), dict):
        response = response["invoice"]
    if not isinstance(response, dict) or response.get("id") in (None, ""):
        raise InvoiceError(f"Invoice {draft.invoice_number} was not acknowledged with an id")
    data = {
        "invoiceNumber": draft.invoice_number,
        "grandTotal": draft.grand_total,
        **response,
        "id": str(response["id"]),
    }
    try:
        return InvoiceReceipt.model_validate(data)
    except ValidationError as exc:
        raise InvoiceError(f"Malformed invoice response for {draft.invoice_number}") from exc


class HttpInvoiceGateway:
    """Invoice gateway backed by the shared JSON transport."""

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    async def create_invoice(self, draft: InvoiceDraft) -> InvoiceReceipt:
        try:
            response = await self._transport.request_json("POST", INVOICES_ENDPOINT, draft.to_wire())
        except MandiTransportError as exc:
            raise InvoiceError(f"Failed to create invoice {draft.invoice_number}: {exc}") from exc
        receipt = _parse_receipt(response, draft)
        _logger.info("Created invoice %s (id=%s)", receipt.invoice_number, receipt.id)
        return receipt

    async def void_invoice(self, invoice_id: str) -> None:
        try:
            await self._transport.request_json("POST", BULK_DELETE_ENDPOINT, {"ids": [invoice_id]})
        except MandiTransportError as exc:
            raise InvoiceError(f"Failed to void invoice {invoice_id}: {exc}") from exc
        _logger.info("Voided invoice %s", invoice_id)
