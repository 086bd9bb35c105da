"""Runtime configuration for pymandi."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pymandi.exceptions import MandiConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class MandiConfig:
    """Process-level configuration.

    Serial line parameters (baud rate, parity, multiplier, ...) are *not*
    configured here: they are user settings persisted through a
    :class:`~pymandi.settings_store.SettingsStore`.

    Parameters
    ----------
    serial_port : str or None
        Device path or name (e.g. ``"/dev/ttyUSB0"``, ``"COM3"``). When
        ``None`` the first port reported by the operating system is used.
    demo_mode : bool
        Start sessions with the synthetic weight generator instead of a
        real device.
    demo_interval : float
        Seconds between synthetic readings in demo mode.
    demo_connect_delay : float
        Simulated connection delay in demo mode.
    demo_base_weight : float
        Starting point of the demo random walk, in kilograms.
    read_chunk_size : int
        Maximum number of bytes requested from the device per read.
    settings_path : str
        File used by :class:`~pymandi.settings_store.JsonFileSettingsStore`.
    api_base_url : str
        Base URL of the business server (settings record, invoices).
    hamali_rate_per_bag : float
        Default per-bag handling charge for new sale panes.
    """

    serial_port: str | None = None
    demo_mode: bool = False
    demo_interval: float = 0.5
    demo_connect_delay: float = 0.5
    demo_base_weight: float = 25.0
    read_chunk_size: int = 256
    settings_path: str = "scale_settings.json"
    api_base_url: str = "http://localhost:5000"
    hamali_rate_per_bag: float = 0.0

    def __post_init__(self) -> None:
        if self.demo_interval <= 0:
            raise MandiConfigError(f"demo_interval must be positive, got {self.demo_interval}")
        if self.demo_connect_delay < 0:
            raise MandiConfigError(f"demo_connect_delay must not be negative, got {self.demo_connect_delay}")
        if self.read_chunk_size <= 0:
            raise MandiConfigError(f"read_chunk_size must be positive, got {self.read_chunk_size}")
        if self.hamali_rate_per_bag < 0:
            raise MandiConfigError(f"hamali_rate_per_bag must not be negative, got {self.hamali_rate_per_bag}")

    @classmethod
    def from_env(cls, **overrides: Any) -> MandiConfig:
        """Create configuration from ``MANDI_*`` environment variables.

        Explicit keyword arguments override environment values.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_STR_MAP = {
            "MANDI_SERIAL_PORT": "serial_port",
            "MANDI_SETTINGS_PATH": "settings_path",
            "MANDI_API_BASE_URL": "api_base_url",
        }
        for env_key, field_name in _ENV_STR_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = val

        _ENV_FLOAT_MAP = {
            "MANDI_DEMO_INTERVAL": "demo_interval",
            "MANDI_DEMO_CONNECT_DELAY": "demo_connect_delay",
            "MANDI_DEMO_BASE_WEIGHT": "demo_base_weight",
            "MANDI_HAMALI_RATE_PER_BAG": "hamali_rate_per_bag",
        }
        for env_key, field_name in _ENV_FLOAT_MAP.items():
            val = env.get(env_key)
            if val is None or field_name in overrides:
                continue
            try:
                config_kwargs[field_name] = float(val)
            except ValueError as exc:
                raise MandiConfigError(f"{env_key} must be a number, got {val!r}") from exc

        chunk_env = env.get("MANDI_READ_CHUNK_SIZE")
        if chunk_env is not None and "read_chunk_size" not in overrides:
            try:
                config_kwargs["read_chunk_size"] = int(chunk_env)
            except ValueError as exc:
                raise MandiConfigError(f"MANDI_READ_CHUNK_SIZE must be an integer, got {chunk_env!r}") from exc

        if "demo_mode" not in overrides:
            config_kwargs["demo_mode"] = _env_bool(env.get("MANDI_DEMO_MODE"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
