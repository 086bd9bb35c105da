from __future__ import annotations

import asyncio
import random
from collections.abc import Callable

import pytest

from pymandi._serial import FixedPortSelector
from pymandi.config import MandiConfig
from pymandi.exceptions import (
    ErrorKind,
    ScaleConnectionError,
    ScaleDeviceLostError,
    ScaleNotFoundError,
    ScalePermissionError,
    ScaleWriteError,
    describe_error,
)
from pymandi.models.scale import Sample, ScaleSettings, ScaleState
from pymandi.session import ScaleSession
from pymandi.settings_store import MemorySettingsStore


class _FakePort:
    def __init__(self) -> None:
        self.incoming: asyncio.Queue[bytes | Exception] = asyncio.Queue()
        self.written: list[bytes] = []
        self.closed = False
        self.fail_writes = False

    def push(self, data: bytes) -> None:
        self.incoming.put_nowait(data)

    def lose(self) -> None:
        self.incoming.put_nowait(ScaleDeviceLostError("unplugged"))

    async def read(self) -> bytes:
        item = await self.incoming.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise ScaleWriteError("Send failed: cable")
        self.written.append(data)

    async def close(self) -> None:
        self.closed = True


class _SlowClosePort(_FakePort):
    def __init__(self) -> None:
        super().__init__()
        self.allow_close = asyncio.Event()

    async def close(self) -> None:
        await self.allow_close.wait()
        self.closed = True


class _FakeOpener:
    def __init__(self, *ports: _FakePort, error: Exception | None = None) -> None:
        self.ports = list(ports)
        self.error = error
        self.calls: list[tuple[str, ScaleSettings]] = []
        self.opened: list[_FakePort] = []
        self.other_handle_open: list[bool] = []

    async def __call__(self, port: str, settings: ScaleSettings) -> _FakePort:
        self.calls.append((port, settings))
        self.other_handle_open.append(any(not p.closed for p in self.opened))
        if self.error is not None:
            raise self.error
        handle = self.ports.pop(0)
        self.opened.append(handle)
        return handle


class _BlockingSelector:
    def __init__(self) -> None:
        self.release = asyncio.Event()

    async def request_port(self) -> str | None:
        await self.release.wait()
        return "COM9"


async def _until(predicate: Callable[[], bool]) -> None:
    for _ in range(500):
        if predicate():
            return
        await asyncio.sleep(0.002)
    raise AssertionError("condition not reached")


def _session(opener: _FakeOpener, **kwargs: object) -> ScaleSession:
    return ScaleSession(MandiConfig(), selector=FixedPortSelector("COM3"), opener=opener, **kwargs)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_connect_opens_selected_port_with_session_settings() -> None:
    port = _FakePort()
    opener = _FakeOpener(port)
    settings = ScaleSettings(baud_rate=4800)
    session = _session(opener, settings=settings)

    await session.connect()

    assert session.state == ScaleState.CONNECTED
    assert session.is_connected
    assert opener.calls == [("COM3", settings)]
    await session.disconnect()


@pytest.mark.asyncio
async def test_frames_become_samples_with_billing_rounding() -> None:
    port = _FakePort()
    session = _session(_FakeOpener(port))
    await session.connect()

    port.push(b"ST,+001.799 kg\r\n")
    await _until(lambda: session.latest_sample is not None)
    first = session.capture()
    assert first is not None
    assert first.raw == pytest.approx(1.799)
    assert first.rounded == 1
    assert session.raw_frame == "ST,+001.799 kg"

    port.push(b"ST,+001.8")
    port.push(b"00 kg\r\n")
    await _until(lambda: session.raw_frame == "ST,+001.800 kg")
    second = session.capture()
    assert second is not None
    assert second.raw == pytest.approx(1.8)
    assert second.rounded == 2

    await session.disconnect()


@pytest.mark.asyncio
async def test_unparseable_frame_updates_raw_frame_only() -> None:
    port = _FakePort()
    session = _session(_FakeOpener(port))
    await session.connect()

    port.push(b"12.5 kg\r\n")
    await _until(lambda: session.latest_sample is not None)
    port.push(b"ST,OL\r\n")
    await _until(lambda: session.raw_frame == "ST,OL")

    sample = session.latest_sample
    assert sample is not None
    assert sample.raw == 12.5
    await session.disconnect()


@pytest.mark.asyncio
async def test_disconnect_clears_state_and_is_idempotent() -> None:
    port = _FakePort()
    session = _session(_FakeOpener(port))
    await session.connect()
    port.push(b"3 kg\n")
    await _until(lambda: session.latest_sample is not None)

    await session.disconnect()
    await session.disconnect()

    assert session.state == ScaleState.DISCONNECTED
    assert session.latest_sample is None
    assert session.raw_frame == ""
    assert session.last_error is None
    assert port.closed


@pytest.mark.asyncio
async def test_device_lost_tears_down_and_records_error() -> None:
    port = _FakePort()
    session = _session(_FakeOpener(port))
    await session.connect()
    port.push(b"5 kg\n")
    await _until(lambda: session.latest_sample is not None)

    port.lose()
    await _until(lambda: session.state == ScaleState.DISCONNECTED)

    assert session.last_error == ErrorKind.DEVICE_LOST
    assert session.error_message == describe_error(ErrorKind.DEVICE_LOST)
    assert session.latest_sample is None
    await _until(lambda: port.closed)


@pytest.mark.asyncio
async def test_stream_end_discards_partial_frame_and_counts_as_lost() -> None:
    port = _FakePort()
    session = _session(_FakeOpener(port))
    await session.connect()

    port.push(b"7.9 kg")
    port.push(b"")
    await _until(lambda: session.last_error is not None)

    assert session.last_error == ErrorKind.DEVICE_LOST
    assert session.latest_sample is None
    assert session.raw_frame == ""


@pytest.mark.asyncio
async def test_no_port_selected_raises_not_found() -> None:
    session = ScaleSession(MandiConfig(), selector=FixedPortSelector(None), opener=_FakeOpener())

    with pytest.raises(ScaleNotFoundError):
        await session.connect()

    assert session.state == ScaleState.DISCONNECTED
    assert session.last_error == ErrorKind.DEVICE_NOT_FOUND
    session.clear_error()
    assert session.error_message is None


@pytest.mark.asyncio
async def test_permission_error_propagates() -> None:
    session = _session(_FakeOpener(error=ScalePermissionError("COM3: access denied")))

    with pytest.raises(ScalePermissionError):
        await session.connect()

    assert session.state == ScaleState.DISCONNECTED
    assert session.last_error == ErrorKind.PERMISSION_DENIED


@pytest.mark.asyncio
async def test_os_error_while_opening_becomes_connection_error() -> None:
    session = _session(_FakeOpener(error=OSError("device busy")))

    with pytest.raises(ScaleConnectionError) as exc_info:
        await session.connect()

    assert exc_info.value.reason == "device busy"
    assert session.last_error == ErrorKind.CONNECTION_FAILED


@pytest.mark.asyncio
async def test_second_connect_disconnects_first() -> None:
    first, second = _FakePort(), _FakePort()
    session = _session(_FakeOpener(first, second))

    await session.connect()
    await session.connect()

    assert first.closed
    assert not second.closed
    assert session.is_connected

    second.push(b"4 kg\n")
    await _until(lambda: session.latest_sample is not None)
    sample = session.latest_sample
    assert sample is not None
    assert sample.raw == 4
    await session.disconnect()


@pytest.mark.asyncio
async def test_old_port_data_does_not_reach_newer_connection() -> None:
    old, new = _FakePort(), _FakePort()
    session = _session(_FakeOpener(old, new))
    await session.connect()
    await session.connect()

    old.push(b"99 kg\n")
    old.lose()
    new.push(b"4 kg\n")
    await _until(lambda: session.latest_sample is not None)
    await asyncio.sleep(0.01)

    sample = session.latest_sample
    assert sample is not None
    assert sample.raw == 4
    assert session.raw_frame == "4 kg"
    assert session.is_connected
    assert session.last_error is None
    await session.disconnect()


@pytest.mark.asyncio
async def test_slow_teardown_of_lost_device_leaves_reconnected_session_alone() -> None:
    old, new = _SlowClosePort(), _FakePort()
    opener = _FakeOpener(old, new)
    session = _session(opener)
    await session.connect()

    old.lose()
    await _until(lambda: session.state == ScaleState.DISCONNECTED)
    assert session.last_error == ErrorKind.DEVICE_LOST

    reconnect = asyncio.create_task(session.connect())
    seen: list[str] = []

    async def _collect() -> None:
        async for frame in session.frames():
            seen.append(frame)

    collector = asyncio.create_task(_collect())
    await asyncio.sleep(0.01)
    assert len(opener.calls) == 1

    old.allow_close.set()
    await asyncio.wait_for(reconnect, timeout=1.0)
    new.push(b"4 kg\n")
    await _until(lambda: seen == ["4 kg"])

    assert session.is_connected
    assert session.last_error is None
    assert not collector.done()
    assert opener.other_handle_open == [False, False]
    await session.disconnect()
    await asyncio.wait_for(collector, timeout=1.0)


@pytest.mark.asyncio
async def test_connect_waits_for_pending_disconnect_to_close_port() -> None:
    old, new = _SlowClosePort(), _FakePort()
    opener = _FakeOpener(old, new)
    session = _session(opener)
    await session.connect()

    disconnecting = asyncio.create_task(session.disconnect())
    await asyncio.sleep(0)
    connecting = asyncio.create_task(session.connect())
    await asyncio.sleep(0.01)

    assert len(opener.calls) == 1
    assert not connecting.done()

    old.allow_close.set()
    await asyncio.wait_for(disconnecting, timeout=1.0)
    await asyncio.wait_for(connecting, timeout=1.0)

    assert old.closed
    assert opener.other_handle_open == [False, False]
    assert session.is_connected
    await session.disconnect()


@pytest.mark.asyncio
async def test_superseded_demo_attempt_never_starts_generator() -> None:
    config = MandiConfig(demo_mode=True, demo_interval=0.001, demo_connect_delay=0.02)
    port = _FakePort()
    session = ScaleSession(config, selector=FixedPortSelector("COM3"), opener=_FakeOpener(port), rng=random.Random(3))

    demo_attempt = asyncio.create_task(session.connect())
    await _until(lambda: session.is_connecting)
    await session.set_demo_mode(False)
    await session.connect()

    with pytest.raises(ScaleConnectionError):
        await demo_attempt
    await asyncio.sleep(0.03)

    assert session.state == ScaleState.CONNECTED
    assert session.latest_sample is None
    assert session.raw_frame == ""
    assert session.last_error is None
    await session.disconnect()


@pytest.mark.asyncio
async def test_os_error_from_read_counts_as_device_lost() -> None:
    port = _FakePort()
    session = _session(_FakeOpener(port))
    await session.connect()

    port.incoming.put_nowait(OSError(5, "Input/output error"))
    await _until(lambda: session.state == ScaleState.DISCONNECTED)

    assert session.last_error == ErrorKind.DEVICE_LOST
    assert session.error_detail is not None
    assert "Input/output error" in session.error_detail
    await _until(lambda: port.closed)


@pytest.mark.asyncio
async def test_disconnect_during_connect_supersedes_attempt() -> None:
    selector = _BlockingSelector()
    opener = _FakeOpener(_FakePort())
    session = ScaleSession(MandiConfig(), selector=selector, opener=opener)

    task = asyncio.create_task(session.connect())
    await _until(lambda: session.is_connecting)
    await session.disconnect()
    selector.release.set()

    with pytest.raises(ScaleConnectionError):
        await task

    assert opener.calls == []
    assert session.state == ScaleState.DISCONNECTED
    assert session.last_error is None


@pytest.mark.asyncio
async def test_send_command_appends_crlf() -> None:
    port = _FakePort()
    session = _session(_FakeOpener(port))
    await session.connect()

    await session.send_command("T")
    await session.request_weight()

    assert port.written == [b"T\r\n", b"P\r\n"]
    await session.disconnect()


@pytest.mark.asyncio
async def test_send_command_when_disconnected_fails() -> None:
    session = _session(_FakeOpener())

    with pytest.raises(ScaleWriteError):
        await session.send_command("P")

    assert session.last_error == ErrorKind.WRITE_FAILED


@pytest.mark.asyncio
async def test_send_command_write_failure_is_reported() -> None:
    port = _FakePort()
    port.fail_writes = True
    session = _session(_FakeOpener(port))
    await session.connect()

    with pytest.raises(ScaleWriteError):
        await session.send_command("P")

    assert session.last_error == ErrorKind.WRITE_FAILED
    assert session.is_connected
    await session.disconnect()


@pytest.mark.asyncio
async def test_demo_mode_produces_samples_through_parser() -> None:
    config = MandiConfig(demo_mode=True, demo_interval=0.005, demo_connect_delay=0.0)
    session = ScaleSession(config, rng=random.Random(7), opener=_FakeOpener())

    await session.connect()
    assert session.state == ScaleState.DEMO
    await _until(lambda: session.latest_sample is not None)

    assert session.raw_frame.startswith("DEMO: ")
    assert session.raw_frame.endswith(" KG")
    sample = session.latest_sample
    assert sample is not None
    assert 0.0 <= sample.raw <= 60.0

    await session.send_command("P")
    assert session.last_error is None
    await session.disconnect()
    assert session.state == ScaleState.DISCONNECTED


@pytest.mark.asyncio
async def test_set_demo_mode_disconnects_first() -> None:
    port = _FakePort()
    session = _session(_FakeOpener(port))
    await session.connect()

    await session.set_demo_mode(True)

    assert port.closed
    assert session.state == ScaleState.DISCONNECTED
    assert session.demo_mode


@pytest.mark.asyncio
async def test_update_settings_validates_and_persists() -> None:
    store = MemorySettingsStore()
    session = _session(_FakeOpener(), settings_store=store)

    updated = await session.update_settings({"baudRate": 4800}, parity="even")

    assert updated.baud_rate == 4800
    assert session.settings == updated
    stored = await store.get("scaleSettings")
    assert stored == {"baudRate": 4800, "dataBits": 8, "stopBits": 1, "parity": "even", "multiplier": 1.0}

    with pytest.raises(ValueError):
        await session.update_settings(data_bits=9)
    with pytest.raises(ValueError):
        await session.update_settings(flowControl=True)
    assert session.settings == updated


@pytest.mark.asyncio
async def test_settings_apply_on_next_connect() -> None:
    first, second = _FakePort(), _FakePort()
    session = _session(_FakeOpener(first, second))
    await session.connect()

    await session.update_settings(multiplier=10)
    first.push(b"1 kg\n")
    await _until(lambda: session.latest_sample is not None)
    sample = session.latest_sample
    assert sample is not None
    assert sample.raw == 1

    await session.connect()
    second.push(b"1 kg\n")
    await _until(lambda: session.latest_sample is not None)
    sample = session.latest_sample
    assert sample is not None
    assert sample.raw == 10
    await session.disconnect()


@pytest.mark.asyncio
async def test_create_loads_stored_settings() -> None:
    store = MemorySettingsStore({"scaleSettings": {"baudRate": 2400, "multiplier": 2, "extra": "ignored"}})

    session = await ScaleSession.create(MandiConfig(), settings_store=store, opener=_FakeOpener())

    assert session.settings.baud_rate == 2400
    assert session.settings.multiplier == 2


@pytest.mark.asyncio
async def test_frames_iterator_ends_on_disconnect() -> None:
    port = _FakePort()
    session = _session(_FakeOpener(port))
    await session.connect()

    seen: list[str] = []

    async def _collect() -> None:
        async for frame in session.frames():
            seen.append(frame)

    collector = asyncio.create_task(_collect())
    await asyncio.sleep(0)
    port.push(b"1 kg\nnoise\n")
    await _until(lambda: len(seen) == 2)
    await session.disconnect()
    await asyncio.wait_for(collector, timeout=1.0)

    assert seen == ["1 kg", "noise"]


@pytest.mark.asyncio
async def test_frames_stream_keeps_frames_before_first_iteration() -> None:
    port = _FakePort()
    session = _session(_FakeOpener(port))
    await session.connect()

    stream = session.frames()
    port.push(b"1 kg\n2 kg\n")
    await _until(lambda: session.raw_frame == "2 kg")

    assert await anext(stream) == "1 kg"
    assert await anext(stream) == "2 kg"
    await stream.aclose()
    with pytest.raises(StopAsyncIteration):
        await anext(stream)
    await session.disconnect()


@pytest.mark.asyncio
async def test_failing_callbacks_do_not_stop_reading() -> None:
    port = _FakePort()
    samples: list[Sample] = []

    def _bad_frame(frame: str) -> None:
        raise RuntimeError("ui went away")

    def _record(sample: Sample) -> None:
        samples.append(sample)
        raise RuntimeError("ui went away")

    session = _session(_FakeOpener(port), on_frame=_bad_frame, on_sample=_record)
    await session.connect()
    port.push(b"1 kg\n2 kg\n")
    await _until(lambda: len(samples) == 2)

    assert session.is_connected
    await session.disconnect()


@pytest.mark.asyncio
async def test_context_manager_disconnects() -> None:
    port = _FakePort()
    async with _session(_FakeOpener(port)) as session:
        await session.connect()
        assert session.is_connected

    assert port.closed
    assert session.state == ScaleState.DISCONNECTED
