"""Persistence of small JSON settings blobs.

The scale only needs get/set of one blob (``scaleSettings``); where it
lives (a local file, a server-side settings record, memory in tests) is
up to the store implementation.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

from pydantic import ValidationError

from pymandi._constants import SCALE_SETTINGS_KEY
from pymandi._transport import Transport
from pymandi.exceptions import MandiError, MandiTransportError
from pymandi.models.scale import ScaleSettings

_logger = logging.getLogger(__name__)


class SettingsStore(Protocol):
    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def set(self, key: str, blob: dict[str, Any]) -> None: ...


class MemorySettingsStore:
    """Process-local store, mostly for tests and demo setups."""

    def __init__(self, initial: dict[str, dict[str, Any]] | None = None) -> None:
        self._blobs: dict[str, dict[str, Any]] = copy.deepcopy(initial) if initial else {}

    async def get(self, key: str) -> dict[str, Any] | None:
        blob = self._blobs.get(key)
        return copy.deepcopy(blob) if blob is not None else None

    async def set(self, key: str, blob: dict[str, Any]) -> None:
        self._blobs[key] = copy.deepcopy(blob)


class JsonFileSettingsStore:
    """All blobs in one JSON object on disk, keyed by settings key."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read_all(self) -> dict[str, Any]:
        if not self._path.exists():
            return {}
        data = json.loads(self._path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"{self._path} does not contain a JSON object")
        return data

    def _write_all(self, data: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        tmp.replace(self._path)

    async def get(self, key: str) -> dict[str, Any] | None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
        blob = data.get(key)
        return blob if isinstance(blob, dict) else None

    async def set(self, key: str, blob: dict[str, Any]) -> None:
        async with self._lock:
            data = await asyncio.to_thread(self._read_all)
            data[key] = blob
            await asyncio.to_thread(self._write_all, data)


class HttpSettingsStore:
    """Server-side settings record at ``/api/settings/<key>``.

    The server answers ``{"key": ..., "value": {...}}``; a 404 means the
    record does not exist yet.
    """

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    @staticmethod
    def _endpoint(key: str) -> str:
        return f"/api/settings/{quote(key, safe='')}"

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            response = await self._transport.request_json("GET", self._endpoint(key))
        except MandiTransportError as exc:
            if exc.status_code == 404:
                return None
            raise
        if not isinstance(response, dict):
            return None
        value = response.get("value", response)
        return value if isinstance(value, dict) else None

    async def set(self, key: str, blob: dict[str, Any]) -> None:
        await self._transport.request_json("PUT", self._endpoint(key), {"key": key, "value": blob})


async def load_scale_settings(store: SettingsStore | None, key: str = SCALE_SETTINGS_KEY) -> ScaleSettings:
    """Read stored scale settings, falling back to defaults on any problem."""
    if store is None:
        return ScaleSettings()
    try:
        blob = await store.get(key)
    except (MandiError, OSError, ValueError):
        _logger.warning("Failed to load scale settings", exc_info=True)
        return ScaleSettings()
    if not blob:
        return ScaleSettings()
    try:
        return ScaleSettings.model_validate(blob)
    except ValidationError:
        _logger.warning("Ignoring invalid stored scale settings: %s", blob, exc_info=True)
        return ScaleSettings()


async def save_scale_settings(
    store: SettingsStore | None,
    settings: ScaleSettings,
    key: str = SCALE_SETTINGS_KEY,
) -> bool:
    """Persist *settings*; returns ``False`` (and logs) when the store fails."""
    if store is None:
        return False
    try:
        await store.set(key, settings.to_wire())
    except (MandiError, OSError, ValueError):
        _logger.warning("Failed to save scale settings", exc_info=True)
        return False
    return True
