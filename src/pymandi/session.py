"""Scale session: connection lifecycle and latest-sample tracking."""

from __future__ import annotations

import asyncio
import contextlib
import functools
import logging
import random
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic.alias_generators import to_camel

from pymandi._constants import (
    COMMAND_TERMINATOR,
    DEMO_MAX_KG,
    DEMO_MIN_KG,
    DEMO_STEP_KG,
    REQUEST_WEIGHT_COMMAND,
)
from pymandi._serial import (
    FixedPortSelector,
    PortOpener,
    PortSelector,
    SerialPort,
    SystemPortSelector,
    open_serial_port,
)
from pymandi.config import MandiConfig
from pymandi.exceptions import (
    ErrorKind,
    ScaleConnectionError,
    ScaleError,
    ScaleNotFoundError,
    ScaleWriteError,
    describe_error,
)
from pymandi.framing import LineFramer
from pymandi.models._base import utcnow
from pymandi.models.scale import Sample, ScaleSettings, ScaleState
from pymandi.parser import parse_weight
from pymandi.settings_store import SettingsStore, load_scale_settings, save_scale_settings

_logger = logging.getLogger(__name__)

_FRAME_QUEUE_SIZE = 64

_SETTINGS_FIELDS: dict[str, str] = {}
for _name in ScaleSettings.model_fields:
    _SETTINGS_FIELDS[_name] = _name
    _SETTINGS_FIELDS[to_camel(_name)] = _name


@dataclass(eq=False)
class _Connection:
    """One connect attempt and everything it owns.

    Identity matters: background work only writes into the session while
    its connection object is still the session's active one.
    """

    demo: bool
    settings: ScaleSettings
    port: SerialPort | None = None
    task: asyncio.Task[None] | None = None
    framer: LineFramer = field(default_factory=LineFramer)


class FrameStream:
    """Async iterator over a session's incoming frames.

    The stream is subscribed as soon as it is created, so frames that
    arrive before the first ``__anext__`` are kept. It ends when the
    connection ends or :meth:`aclose` is called.
    """

    def __init__(self, subscribers: set[asyncio.Queue[str | None]]) -> None:
        self._subscribers = subscribers
        self._queue: asyncio.Queue[str | None] = asyncio.Queue(maxsize=_FRAME_QUEUE_SIZE)
        self._closed = False
        subscribers.add(self._queue)

    def __aiter__(self) -> FrameStream:
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        frame = await self._queue.get()
        if frame is None:
            await self.aclose()
            raise StopAsyncIteration
        return frame

    async def aclose(self) -> None:
        self._closed = True
        self._subscribers.discard(self._queue)


class ScaleSession:
    """Owns exactly one scale endpoint (real or simulated).

    Usage::

        async with await ScaleSession.create(config, settings_store=store) as scale:
            await scale.connect()
            ...
            sample = scale.capture()

    Parameters
    ----------
    config : MandiConfig or None
        Process configuration (demo timings, port, chunk size).
    settings : ScaleSettings or None
        Initial serial settings; see :meth:`create` to load them from a store.
    settings_store : SettingsStore or None
        Where :meth:`update_settings` persists changes.
    selector : PortSelector or None
        Device selection; defaults to the configured port or the first
        system port.
    opener : PortOpener or None
        Opens a selected device; defaults to pyserial.
    on_frame, on_sample : callable or None
        Invoked for every frame / accepted sample.
    rng : random.Random or None
        Source for the demo random walk.
    clock : callable
        Timestamp source for samples.
    """

    def __init__(
        self,
        config: MandiConfig | None = None,
        *,
        settings: ScaleSettings | None = None,
        settings_store: SettingsStore | None = None,
        selector: PortSelector | None = None,
        opener: PortOpener | None = None,
        on_frame: Callable[[str], None] | None = None,
        on_sample: Callable[[Sample], None] | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or MandiConfig()
        self._settings = settings or ScaleSettings()
        self._store = settings_store
        if selector is None:
            if self._config.serial_port:
                selector = FixedPortSelector(self._config.serial_port)
            else:
                selector = SystemPortSelector()
        self._selector = selector
        self._opener: PortOpener = opener or functools.partial(
            open_serial_port, chunk_size=self._config.read_chunk_size
        )
        self._on_frame = on_frame
        self._on_sample = on_sample
        self._rng = rng or random.Random()
        self._clock = clock

        self._demo_mode = self._config.demo_mode
        self._demo_weight = self._config.demo_base_weight
        self._state = ScaleState.DISCONNECTED
        self._active: _Connection | None = None
        self._latest: Sample | None = None
        self._raw_frame = ""
        self._last_error: ErrorKind | None = None
        self._error_detail: str | None = None
        self._frame_queues: set[asyncio.Queue[str | None]] = set()
        self._releases: set[asyncio.Task[None]] = set()

    @classmethod
    async def create(
        cls,
        config: MandiConfig | None = None,
        *,
        settings_store: SettingsStore | None = None,
        **kwargs: Any,
    ) -> ScaleSession:
        """Build a session with settings loaded from *settings_store*."""
        settings = await load_scale_settings(settings_store)
        return cls(config, settings=settings, settings_store=settings_store, **kwargs)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> ScaleSession:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Dispose: disconnect and end any frame streams still open."""
        await self.disconnect()
        self._end_frame_streams()

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ScaleState:
        if self._state == ScaleState.CONNECTED and self._active is not None and self._active.demo:
            return ScaleState.DEMO
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ScaleState.CONNECTED

    @property
    def is_connecting(self) -> bool:
        return self._state == ScaleState.CONNECTING

    @property
    def demo_mode(self) -> bool:
        return self._demo_mode

    @property
    def settings(self) -> ScaleSettings:
        """Settings used by the next connect."""
        return self._settings

    @property
    def latest_sample(self) -> Sample | None:
        return self._latest

    @property
    def raw_frame(self) -> str:
        """Last frame received, whether or not it parsed."""
        return self._raw_frame

    @property
    def last_error(self) -> ErrorKind | None:
        return self._last_error

    @property
    def error_detail(self) -> str | None:
        """Technical detail for logs; show :attr:`error_message` to users."""
        return self._error_detail

    @property
    def error_message(self) -> str | None:
        if self._last_error is None:
            return None
        return describe_error(self._last_error)

    def clear_error(self) -> None:
        self._last_error = None
        self._error_detail = None

    def _record_error(self, kind: ErrorKind, detail: str) -> None:
        self._last_error = kind
        self._error_detail = detail

    # ------------------------------------------------------------------
    # Connect / disconnect
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect to the device (or start the demo generator).

        An existing or in-progress connection is fully disconnected first.

        Raises
        ------
        ScaleNotFoundError
            No device was selected.
        ScalePermissionError
            Access to the device was refused.
        ScaleConnectionError
            Opening failed, or a newer connect/disconnect superseded this one.
        """
        # The previous handle must be closed before a new one is opened.
        while self._active is not None or self._releases:
            if self._active is not None:
                await self.disconnect()
            else:
                await self._wait_released()

        conn = _Connection(demo=self._demo_mode, settings=self._settings)
        self._active = conn
        self._state = ScaleState.CONNECTING
        self._latest = None
        self._raw_frame = ""
        self.clear_error()

        try:
            if conn.demo:
                await self._connect_demo(conn)
            else:
                await self._connect_device(conn)
        except ScaleError as exc:
            if self._active is conn:
                self._active = None
                self._state = ScaleState.DISCONNECTED
                self._record_error(exc.kind, str(exc))
            _logger.debug("Scale connect failed: %s", exc)
            raise
        except asyncio.CancelledError:
            if self._active is conn:
                self._active = None
                self._state = ScaleState.DISCONNECTED
            if conn.port is not None:
                await conn.port.close()
            raise

    def _ensure_current(self, conn: _Connection) -> None:
        if self._active is not conn:
            raise ScaleConnectionError("connection attempt superseded")

    async def _connect_demo(self, conn: _Connection) -> None:
        await asyncio.sleep(self._config.demo_connect_delay)
        self._ensure_current(conn)
        self._state = ScaleState.CONNECTED
        conn.task = asyncio.create_task(self._demo_loop(conn), name="pymandi-scale-demo")
        _logger.debug("Demo scale connected")

    async def _connect_device(self, conn: _Connection) -> None:
        port_name = await self._selector.request_port()
        self._ensure_current(conn)
        if not port_name:
            raise ScaleNotFoundError("No serial port selected")

        try:
            port = await self._opener(port_name, conn.settings)
        except OSError as exc:
            raise ScaleConnectionError(str(exc)) from exc

        if self._active is not conn:
            await port.close()
            raise ScaleConnectionError("connection attempt superseded")

        conn.port = port
        self._state = ScaleState.CONNECTED
        conn.task = asyncio.create_task(self._read_loop(conn), name=f"pymandi-scale-read-{port_name}")
        _logger.debug("Scale connected on %s (%s)", port_name, conn.settings.to_wire())

    async def disconnect(self) -> None:
        """Stop reading, release the device and clear the sample. Idempotent."""
        conn = self._active
        self._active = None
        self._state = ScaleState.DISCONNECTED
        self._latest = None
        self._raw_frame = ""
        self.clear_error()
        if conn is None:
            await self._wait_released()
            return
        self._end_frame_streams()
        await asyncio.shield(self._start_release(conn))
        _logger.debug("Scale disconnected")

    def _start_release(self, conn: _Connection) -> asyncio.Task[None]:
        task = asyncio.create_task(self._release(conn), name="pymandi-scale-release")
        self._releases.add(task)
        task.add_done_callback(self._releases.discard)
        return task

    async def _wait_released(self) -> None:
        while self._releases:
            await asyncio.wait(set(self._releases))

    async def _release(self, conn: _Connection) -> None:
        task = conn.task
        conn.task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        port = conn.port
        conn.port = None
        if port is not None:
            try:
                await port.close()
            except (ScaleError, OSError):
                _logger.debug("Error while closing scale port", exc_info=True)

    async def _on_device_lost(self, conn: _Connection, detail: str) -> None:
        if self._active is not conn:
            return
        _logger.warning("Scale device lost: %s", detail)
        self._active = None
        self._state = ScaleState.DISCONNECTED
        self._latest = None
        self._raw_frame = ""
        self._record_error(ErrorKind.DEVICE_LOST, detail)
        self._end_frame_streams()
        # Called from the read loop itself, which is about to finish.
        conn.task = None
        await asyncio.shield(self._start_release(conn))

    async def set_demo_mode(self, enabled: bool) -> None:
        """Switch between real device and simulator, disconnecting first."""
        if self._active is not None:
            await self.disconnect()
        self._demo_mode = enabled

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    async def _read_loop(self, conn: _Connection) -> None:
        port = conn.port
        if port is None:
            return
        detail = "stream ended"
        try:
            while True:
                chunk = await port.read()
                if self._active is not conn:
                    return
                if not chunk:
                    break
                for frame in conn.framer.feed(chunk):
                    self._accept_frame(conn, frame)
        except (ScaleError, OSError) as exc:
            detail = str(exc) or type(exc).__name__
        finally:
            discarded = conn.framer.reset()
            if discarded:
                _logger.debug("Discarded partial frame %r", discarded)
        await self._on_device_lost(conn, detail)

    async def _demo_loop(self, conn: _Connection) -> None:
        while True:
            await asyncio.sleep(self._config.demo_interval)
            if self._active is not conn:
                return
            step = self._rng.uniform(-DEMO_STEP_KG, DEMO_STEP_KG)
            self._demo_weight = min(DEMO_MAX_KG, max(DEMO_MIN_KG, self._demo_weight + step))
            self._accept_frame(conn, f"DEMO: {self._demo_weight:.2f} KG")

    def _accept_frame(self, conn: _Connection, frame: str) -> None:
        if self._active is not conn:
            return
        self._raw_frame = frame
        self._publish_frame(frame)

        reading = parse_weight(frame, conn.settings.multiplier)
        if reading is None:
            return

        sample = Sample(raw=reading.raw, rounded=reading.rounded, captured_at=self._clock())
        self._latest = sample
        if self._on_sample is not None:
            try:
                self._on_sample(sample)
            except Exception:
                _logger.debug("on_sample callback failed", exc_info=True)

    def _publish_frame(self, frame: str) -> None:
        if self._on_frame is not None:
            try:
                self._on_frame(frame)
            except Exception:
                _logger.debug("on_frame callback failed", exc_info=True)
        for queue in self._frame_queues:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(frame)

    def _end_frame_streams(self) -> None:
        for queue in self._frame_queues:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(None)
        self._frame_queues.clear()

    def frames(self) -> FrameStream:
        """Iterate over incoming frames until the connection ends.

        Slow consumers lose the oldest frames; only recent data matters.
        """
        return FrameStream(self._frame_queues)

    # ------------------------------------------------------------------
    # Commands, capture and settings
    # ------------------------------------------------------------------

    async def send_command(self, command: str) -> None:
        """Best-effort write of *command* followed by CR LF.

        In demo mode this only logs the command.
        """
        if self._demo_mode:
            _logger.info("Demo scale command: %s", command)
            return

        conn = self._active
        port = conn.port if conn is not None else None
        if port is None or self._state != ScaleState.CONNECTED:
            exc = ScaleWriteError("Scale not connected")
            self._record_error(exc.kind, str(exc))
            raise exc

        try:
            await port.write(f"{command}{COMMAND_TERMINATOR}".encode())
        except ScaleWriteError as exc:
            self._record_error(exc.kind, str(exc))
            raise
        except OSError as exc:
            self._record_error(ErrorKind.WRITE_FAILED, str(exc))
            raise ScaleWriteError(f"Send failed: {exc}") from exc

    async def request_weight(self) -> None:
        """Ask the scale to print a reading."""
        await self.send_command(REQUEST_WEIGHT_COMMAND)

    def capture(self) -> Sample | None:
        """Sample current at this instant (``None`` when there is none)."""
        return self._latest

    async def update_settings(self, changes: Mapping[str, Any] | None = None, **kwargs: Any) -> ScaleSettings:
        """Merge *changes* into the settings and persist them.

        Keys may be field names (``baud_rate``) or their stored camelCase
        form (``baudRate``). The running connection keeps its settings;
        the new ones apply on the next :meth:`connect`.
        """
        merged = dict(changes or {})
        merged.update(kwargs)
        normalized: dict[str, Any] = {}
        for key, value in merged.items():
            name = _SETTINGS_FIELDS.get(key)
            if name is None:
                raise ValueError(f"Unknown scale setting {key!r}")
            normalized[name] = value

        updated = ScaleSettings.model_validate({**self._settings.model_dump(), **normalized})
        self._settings = updated
        await save_scale_settings(self._store, updated)
        return updated
