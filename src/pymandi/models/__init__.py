"""Data models for pymandi records."""

from pymandi.models._base import MandiBaseModel
from pymandi.models.inventory import (
    DriftDelta,
    InventoryMovement,
    MovementType,
    ReferenceType,
    SaleItem,
    VehicleDriftCounters,
    VehicleInventoryLine,
)
from pymandi.models.invoice import InvoiceDraft, InvoiceItem, InvoiceReceipt, InvoiceStatus
from pymandi.models.scale import Parity, Sample, ScaleSettings, ScaleState

__all__ = [
    "DriftDelta",
    "InventoryMovement",
    "InvoiceDraft",
    "InvoiceItem",
    "InvoiceReceipt",
    "InvoiceStatus",
    "MandiBaseModel",
    "MovementType",
    "Parity",
    "ReferenceType",
    "SaleItem",
    "Sample",
    "ScaleSettings",
    "ScaleState",
    "VehicleDriftCounters",
    "VehicleInventoryLine",
]
