"""Serial device transport built on pyserial.

pyserial is blocking; reads and writes run in worker threads through
:func:`asyncio.to_thread` so the event loop never blocks on the device.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import re
from collections.abc import Awaitable, Callable
from typing import Protocol

import serial
from serial.tools import list_ports

from pymandi.exceptions import (
    ScaleConnectionError,
    ScaleDeviceLostError,
    ScalePermissionError,
    ScaleWriteError,
)
from pymandi.models.scale import Parity, ScaleSettings

_logger = logging.getLogger(__name__)

_PARITY = {
    Parity.NONE: serial.PARITY_NONE,
    Parity.EVEN: serial.PARITY_EVEN,
    Parity.ODD: serial.PARITY_ODD,
}
_BYTESIZE = {7: serial.SEVENBITS, 8: serial.EIGHTBITS}
_STOPBITS = {1: serial.STOPBITS_ONE, 2: serial.STOPBITS_TWO}
_PERMISSION_ERRNOS = frozenset({errno.EACCES, errno.EPERM})


class SerialPort(Protocol):
    """Structural interface of an open device handle.

    ``read`` suspends until at least one byte is available and returns
    ``b""`` once the stream has ended. A device that disappears mid-read
    raises :class:`~pymandi.exceptions.ScaleDeviceLostError`.
    """

    async def read(self) -> bytes: ...

    async def write(self, data: bytes) -> None: ...

    async def close(self) -> None: ...


class PortSelector(Protocol):
    """Chooses the device to open; ``None`` means nothing was selected."""

    async def request_port(self) -> str | None: ...


PortOpener = Callable[[str, ScaleSettings], Awaitable[SerialPort]]


class FixedPortSelector:
    """Always selects the configured device."""

    def __init__(self, port: str | None) -> None:
        self._port = port

    async def request_port(self) -> str | None:
        return self._port


class SystemPortSelector:
    """Selects the first port reported by the operating system.

    When *pattern* is given only ports whose device name, description or
    hardware id match the regular expression are considered.
    """

    def __init__(self, pattern: str | None = None) -> None:
        self._pattern = re.compile(pattern, re.IGNORECASE) if pattern else None

    async def request_port(self) -> str | None:
        ports = await asyncio.to_thread(list_ports.comports)
        for info in sorted(ports, key=lambda p: p.device):
            if self._pattern is None:
                return str(info.device)
            haystack = " ".join(str(part) for part in (info.device, info.description, info.hwid) if part)
            if self._pattern.search(haystack):
                return str(info.device)
        _logger.debug("No serial port matched (pattern=%s, candidates=%d)", self._pattern, len(ports))
        return None


class PySerialPort:
    """Async wrapper around an open :class:`serial.Serial`."""

    def __init__(self, handle: serial.Serial, *, chunk_size: int = 256) -> None:
        self._handle = handle
        self._chunk_size = chunk_size
        self._closing = False

    @property
    def name(self) -> str:
        return str(self._handle.port)

    def _read_blocking(self) -> bytes:
        data = self._handle.read(1)
        if not data:
            return b""
        waiting = self._handle.in_waiting
        if waiting:
            data += self._handle.read(min(waiting, self._chunk_size - 1))
        return data

    async def read(self) -> bytes:
        try:
            return await asyncio.to_thread(self._read_blocking)
        except (serial.SerialException, OSError) as exc:
            if self._closing:
                return b""
            raise ScaleDeviceLostError(f"{self.name}: {exc}") from exc

    def _write_blocking(self, data: bytes) -> None:
        self._handle.write(data)
        self._handle.flush()

    async def write(self, data: bytes) -> None:
        try:
            await asyncio.to_thread(self._write_blocking, data)
        except (serial.SerialException, OSError) as exc:
            raise ScaleWriteError(f"Send failed: {exc}") from exc

    async def close(self) -> None:
        if self._closing:
            return
        self._closing = True
        cancel_read = getattr(self._handle, "cancel_read", None)
        if cancel_read is not None:
            cancel_read()
        await asyncio.to_thread(self._handle.close)
        _logger.debug("Closed serial port %s", self.name)


def _serial_kwargs(settings: ScaleSettings) -> dict[str, object]:
    return {
        "baudrate": settings.baud_rate,
        "bytesize": _BYTESIZE[settings.data_bits],
        "stopbits": _STOPBITS[settings.stop_bits],
        "parity": _PARITY[settings.parity],
        "timeout": None,
    }


async def open_serial_port(port: str, settings: ScaleSettings, *, chunk_size: int = 256) -> PySerialPort:
    """Open *port* with *settings*, mapping failures to scale errors."""
    kwargs = _serial_kwargs(settings)
    _logger.debug("Opening serial port %s with %s", port, kwargs)
    try:
        handle = await asyncio.to_thread(serial.Serial, port, **kwargs)
    except PermissionError as exc:
        raise ScalePermissionError(f"{port}: {exc}") from exc
    except (serial.SerialException, OSError) as exc:
        if getattr(exc, "errno", None) in _PERMISSION_ERRNOS:
            raise ScalePermissionError(f"{port}: {exc}") from exc
        raise ScaleConnectionError(str(exc)) from exc
    except ValueError as exc:
        raise ScaleConnectionError(f"invalid serial parameters for {port}: {exc}") from exc
    return PySerialPort(handle, chunk_size=chunk_size)
