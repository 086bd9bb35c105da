"""Invoice payloads exchanged with the invoice collaborator."""

from __future__ import annotations

import json
from datetime import date as date_type
from enum import StrEnum
from typing import Any

from pydantic import Field, field_serializer, field_validator

from pymandi.models._base import MandiBaseModel


class InvoiceStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"


class InvoiceItem(MandiBaseModel):
    """One invoice line.

    ``weight_breakdown`` lists the individually captured weights (one per
    bag); it travels as a JSON-encoded string, as the server stores it.
    """

    product_id: str
    vehicle_id: str | None = None
    quantity: float = Field(gt=0)
    unit_price: float = Field(ge=0)
    total: float
    weight_breakdown: list[float] = Field(default_factory=list)

    @field_validator("weight_breakdown", mode="before")
    @classmethod
    def _decode_breakdown(cls, value: Any) -> Any:
        if isinstance(value, str):
            return json.loads(value)
        return value

    @field_serializer("weight_breakdown")
    def _encode_breakdown(self, value: list[float]) -> str:
        return json.dumps(value)


class InvoiceDraft(MandiBaseModel):
    """A sale ready to be persisted by the invoice collaborator."""

    invoice_number: str
    customer_id: str
    vehicle_id: str
    vendor_id: str | None = None
    date: date_type
    items: list[InvoiceItem]
    subtotal: float
    include_hamali_charge: bool = False
    hamali_rate_per_bag: float = 0.0
    hamali_charge_amount: float = 0.0
    bags: int = 0
    total_kg_weight: float = 0.0
    grand_total: float
    status: InvoiceStatus = InvoiceStatus.PENDING


class InvoiceReceipt(MandiBaseModel):
    """Identity of a persisted invoice."""

    id: str
    invoice_number: str | None = None
    grand_total: float | None = None
