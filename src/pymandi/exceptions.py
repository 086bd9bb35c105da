"""Custom exception hierarchy for pymandi."""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Failure categories surfaced to callers and user interfaces."""

    DEVICE_NOT_FOUND = "device_not_found"
    PERMISSION_DENIED = "permission_denied"
    CONNECTION_FAILED = "connection_failed"
    DEVICE_LOST = "device_lost"
    PARSE_MISS = "parse_miss"
    WRITE_FAILED = "write_failed"
    INSUFFICIENT_STOCK = "insufficient_stock"
    NOT_LOADED = "not_loaded"
    TRANSPORT = "transport"
    INVOICE_FAILED = "invoice_failed"
    UNKNOWN = "unknown"


_USER_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.DEVICE_NOT_FOUND: "No serial port selected.",
    ErrorKind.PERMISSION_DENIED: "Permission denied. Please allow access to the serial port.",
    ErrorKind.CONNECTION_FAILED: "Could not connect to the scale. Check the cable and port settings.",
    ErrorKind.DEVICE_LOST: "The scale was disconnected. Reconnect it to continue weighing.",
    ErrorKind.PARSE_MISS: "The scale sent data that is not a weight reading.",
    ErrorKind.WRITE_FAILED: "Could not send the command to the scale.",
    ErrorKind.INSUFFICIENT_STOCK: "Not enough stock in the vehicle for this sale.",
    ErrorKind.NOT_LOADED: "This product is not loaded on the vehicle.",
    ErrorKind.TRANSPORT: "The server could not be reached. Please try again.",
    ErrorKind.INVOICE_FAILED: "The invoice could not be saved.",
    ErrorKind.UNKNOWN: "Something went wrong.",
}


def describe_error(kind: ErrorKind) -> str:
    """Return the human-readable message shown for *kind*."""
    return _USER_MESSAGES.get(kind, _USER_MESSAGES[ErrorKind.UNKNOWN])


class MandiError(Exception):
    """Base exception for all pymandi errors."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    @property
    def user_message(self) -> str:
        """Message suitable for display; never the raw exception text."""
        return describe_error(self.kind)


class MandiConfigError(MandiError):
    """Invalid or missing configuration."""


# ---------------------------------------------------------------------------
# Scale errors
# ---------------------------------------------------------------------------


class ScaleError(MandiError):
    """Failure talking to a weighing scale."""


class ScaleNotFoundError(ScaleError):
    """No device was selected (the selection was declined or no port exists)."""

    kind = ErrorKind.DEVICE_NOT_FOUND


class ScalePermissionError(ScaleError):
    """The operating system refused access to the serial device."""

    kind = ErrorKind.PERMISSION_DENIED


class ScaleConnectionError(ScaleError):
    """Opening the device failed for any other reason."""

    kind = ErrorKind.CONNECTION_FAILED

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Connection failed: {reason}")


class ScaleDeviceLostError(ScaleError):
    """The device went away while a session was reading from it.

    Raised by serial transports from ``read()``; the session converts it
    into a disconnect and records :attr:`ErrorKind.DEVICE_LOST` instead of
    propagating it.
    """

    kind = ErrorKind.DEVICE_LOST


class ScaleWriteError(ScaleError):
    """Sending a command to the device failed."""

    kind = ErrorKind.WRITE_FAILED


# ---------------------------------------------------------------------------
# Ledger errors
# ---------------------------------------------------------------------------


class LedgerError(MandiError):
    """Vehicle inventory ledger rejected an operation."""

    def __init__(self, message: str, *, vehicle_id: str, product_id: str) -> None:
        self.vehicle_id = vehicle_id
        self.product_id = product_id
        super().__init__(message)


class NotLoadedError(LedgerError):
    """The vehicle has no ledger line for the product."""

    kind = ErrorKind.NOT_LOADED

    def __init__(self, *, vehicle_id: str, product_id: str) -> None:
        super().__init__(
            f"Vehicle {vehicle_id} has no inventory for product {product_id}",
            vehicle_id=vehicle_id,
            product_id=product_id,
        )


class InsufficientStockError(LedgerError):
    """A sale requested more than the vehicle currently carries."""

    kind = ErrorKind.INSUFFICIENT_STOCK

    def __init__(
        self,
        *,
        vehicle_id: str,
        product_id: str,
        available: float,
        requested: float,
    ) -> None:
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock: vehicle {vehicle_id} has {available} of {product_id} but requested {requested}",
            vehicle_id=vehicle_id,
            product_id=product_id,
        )


# ---------------------------------------------------------------------------
# Collaborator errors
# ---------------------------------------------------------------------------


class MandiTransportError(MandiError):
    """HTTP-level failure (network, non-2xx, invalid JSON)."""

    kind = ErrorKind.TRANSPORT

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class InvoiceError(MandiError):
    """The invoice collaborator rejected or mangled a request."""

    kind = ErrorKind.INVOICE_FAILED
