"""Vehicle inventory ledger records."""

from __future__ import annotations

import uuid
from datetime import date as date_type
from enum import StrEnum

from pydantic import Field, computed_field

from pymandi.models._base import MandiBaseModel


class MovementType(StrEnum):
    LOAD = "load"
    SALE = "sale"
    ADJUSTMENT = "adjustment"


class ReferenceType(StrEnum):
    PURCHASE = "purchase"
    INVOICE = "invoice"


class VehicleInventoryLine(MandiBaseModel):
    """Current quantity of one product aboard one vehicle (snapshot)."""

    vehicle_id: str
    product_id: str
    quantity: float = Field(ge=0)


class InventoryMovement(MandiBaseModel):
    """Immutable record of one ledger change.

    ``quantity`` is a positive magnitude for loads and sales and a signed
    delta for adjustments; use :attr:`delta` for the signed change.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    vehicle_id: str
    product_id: str
    type: MovementType
    quantity: float
    reference_id: str | None = None
    reference_type: ReferenceType | None = None
    date: date_type
    notes: str | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def delta(self) -> float:
        if self.type == MovementType.SALE:
            return -self.quantity
        return self.quantity


class SaleItem(MandiBaseModel):
    """One product/quantity pair of a multi-line sale."""

    product_id: str
    quantity: float


class VehicleDriftCounters(MandiBaseModel):
    """Lifetime gain/loss between raw and billed weight for one vehicle."""

    vehicle_id: str
    total_weight_gain: float = Field(default=0.0, ge=0)
    total_weight_loss: float = Field(default=0.0, ge=0)


class DriftDelta(MandiBaseModel):
    """Gain/loss contributed by a single capture."""

    gain: float = 0.0
    loss: float = 0.0

    @property
    def is_zero(self) -> bool:
        return self.gain == 0 and self.loss == 0
