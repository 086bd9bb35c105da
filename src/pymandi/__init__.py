"""pymandi - Scale acquisition and vehicle inventory for wholesale vegetable trading."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pymandi")
except PackageNotFoundError:
    __version__ = "0+local"
from pymandi._transport import ApiTransport
from pymandi.config import MandiConfig
from pymandi.drift import DriftAccumulator, compute_drift
from pymandi.exceptions import (
    ErrorKind,
    InsufficientStockError,
    InvoiceError,
    LedgerError,
    MandiConfigError,
    MandiError,
    MandiTransportError,
    NotLoadedError,
    ScaleConnectionError,
    ScaleDeviceLostError,
    ScaleError,
    ScaleNotFoundError,
    ScalePermissionError,
    ScaleWriteError,
    describe_error,
)
from pymandi.framing import LineFramer
from pymandi.invoices import HttpInvoiceGateway, InvoiceGateway
from pymandi.ledger import VehicleInventoryLedger
from pymandi.models import (
    DriftDelta,
    InventoryMovement,
    InvoiceDraft,
    InvoiceItem,
    InvoiceReceipt,
    InvoiceStatus,
    MovementType,
    Parity,
    ReferenceType,
    SaleItem,
    Sample,
    ScaleSettings,
    ScaleState,
    VehicleDriftCounters,
    VehicleInventoryLine,
)
from pymandi.parser import WeightReading, parse_weight, round_weight
from pymandi.sale import SaleLine, SalePane
from pymandi.session import FrameStream, ScaleSession
from pymandi.settings_store import (
    HttpSettingsStore,
    JsonFileSettingsStore,
    MemorySettingsStore,
    SettingsStore,
)

__all__ = [
    "__version__",
    "ApiTransport",
    "DriftAccumulator",
    "DriftDelta",
    "ErrorKind",
    "FrameStream",
    "HttpInvoiceGateway",
    "HttpSettingsStore",
    "InsufficientStockError",
    "InventoryMovement",
    "InvoiceDraft",
    "InvoiceError",
    "InvoiceGateway",
    "InvoiceItem",
    "InvoiceReceipt",
    "InvoiceStatus",
    "JsonFileSettingsStore",
    "LedgerError",
    "LineFramer",
    "MandiConfig",
    "MandiConfigError",
    "MandiError",
    "MandiTransportError",
    "MemorySettingsStore",
    "MovementType",
    "NotLoadedError",
    "Parity",
    "ReferenceType",
    "SaleItem",
    "SaleLine",
    "SalePane",
    "Sample",
    "ScaleConnectionError",
    "ScaleDeviceLostError",
    "ScaleError",
    "ScaleNotFoundError",
    "ScalePermissionError",
    "ScaleSettings",
    "ScaleState",
    "ScaleWriteError",
    "SettingsStore",
    "VehicleDriftCounters",
    "VehicleInventoryLedger",
    "VehicleInventoryLine",
    "WeightReading",
    "compute_drift",
    "describe_error",
    "parse_weight",
    "round_weight",
]
