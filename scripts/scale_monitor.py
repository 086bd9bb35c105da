#!/usr/bin/env python3
"""Watch a weighing scale from the terminal.

Connects to a serial scale (or the demo generator) and prints every frame
together with the parsed sample, so port settings and the multiplier can
be checked before weighing real goods.

Usage
-----
::

    python scripts/scale_monitor.py --port /dev/ttyUSB0 --baud 9600
    python scripts/scale_monitor.py --demo --duration 10

Options::

    --port DEV          Serial device (default: MANDI_SERIAL_PORT or first port)
    --baud N            Override the stored baud rate
    --multiplier X      Override the stored multiplier
    --demo              Use the synthetic generator instead of a device
    --duration SECS     Stop after SECS seconds (0 = until Ctrl+C)
    --request-every S   Send the weight request command every S seconds
    --save              Persist --baud/--multiplier to the settings file
    --verbose / -v      Enable debug logging
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
from pathlib import Path
from typing import Any

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pymandi import (  # noqa: E402
    JsonFileSettingsStore,
    MandiConfig,
    MandiError,
    ScaleSession,
    ScaleSettings,
    ScaleWriteError,
    parse_weight,
)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Print frames and samples from a weighing scale.")
    parser.add_argument("--port", help="Serial device to open")
    parser.add_argument("--baud", type=int, help="Baud rate override")
    parser.add_argument("--multiplier", type=float, help="Weight multiplier override")
    parser.add_argument("--demo", action="store_true", help="Use the demo generator")
    parser.add_argument("--duration", type=float, default=0.0, help="Seconds to run (0 = until Ctrl+C)")
    parser.add_argument("--request-every", type=float, default=0.0, help="Seconds between weight requests")
    parser.add_argument("--save", action="store_true", help="Persist setting overrides")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args()


async def _poll(session: ScaleSession, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await session.request_weight()
        except ScaleWriteError as exc:
            print(f"! request failed: {exc}")


async def _print_frames(session: ScaleSession) -> None:
    async for frame in session.frames():
        reading = parse_weight(frame, session.settings.multiplier)
        if reading is None:
            print(f"{frame!r:40}  (no weight)")
        else:
            unit = reading.unit or "kg"
            print(f"{frame!r:40}  raw={reading.raw:.3f} kg  rounded={reading.rounded:.0f} kg  [{unit}]")


async def main() -> int:
    args = _parse_args()
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    else:
        logging.basicConfig(level=logging.WARNING)

    overrides: dict[str, Any] = {}
    if args.port:
        overrides["serial_port"] = args.port
    if args.demo:
        overrides["demo_mode"] = True
    try:
        config = MandiConfig.from_env(**overrides)
    except MandiError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    store = JsonFileSettingsStore(config.settings_path)
    session = await ScaleSession.create(config, settings_store=store)

    changes: dict[str, Any] = {}
    if args.baud is not None:
        changes["baud_rate"] = args.baud
    if args.multiplier is not None:
        changes["multiplier"] = args.multiplier
    if changes:
        if args.save:
            await session.update_settings(changes)
        else:
            settings = ScaleSettings.model_validate({**session.settings.model_dump(), **changes})
            session = ScaleSession(config, settings=settings)

    print(f"Settings: {session.settings.to_wire()}")
    async with session:
        try:
            await session.connect()
        except MandiError as exc:
            print(f"{exc.user_message} ({exc})", file=sys.stderr)
            return 1
        print(f"State: {session.state.value}")

        tasks = [asyncio.create_task(_print_frames(session))]
        if args.request_every > 0:
            tasks.append(asyncio.create_task(_poll(session, args.request_every)))
        try:
            if args.duration > 0:
                await asyncio.sleep(args.duration)
            else:
                await asyncio.Event().wait()
        finally:
            for task in tasks:
                task.cancel()
            for task in tasks:
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if session.last_error is not None:
            print(f"Stopped: {session.error_message}", file=sys.stderr)
            return 1
    return 0


if __name__ == "__main__":
    with contextlib.suppress(KeyboardInterrupt):
        sys.exit(asyncio.run(main()))
