"""Scale settings, session state and weight samples."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import Field

from pymandi.models._base import MandiBaseModel, utcnow


class Parity(StrEnum):
    NONE = "none"
    EVEN = "even"
    ODD = "odd"


class ScaleState(StrEnum):
    """Externally visible lifecycle state of a :class:`~pymandi.session.ScaleSession`.

    ``DEMO`` is reported instead of ``CONNECTED`` while the synthetic
    generator is running; the transitions are otherwise identical.
    """

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEMO = "demo"


class ScaleSettings(MandiBaseModel):
    """Serial line parameters and calibration for one scale.

    Stored as a small JSON blob (camelCase keys) and applied on the next
    connect.

    Parameters
    ----------
    baud_rate : int
        Line speed.
    data_bits : {7, 8}
        Bits per character.
    stop_bits : {1, 2}
        Stop bits.
    parity : Parity
        Parity checking.
    multiplier : float
        Hardware correction factor applied to every parsed weight.
    """

    baud_rate: int = Field(default=9600, gt=0)
    data_bits: Literal[7, 8] = 8
    stop_bits: Literal[1, 2] = 1
    parity: Parity = Parity.NONE
    multiplier: float = Field(default=1.0, gt=0, allow_inf_nan=False)


class Sample(MandiBaseModel):
    """Latest accepted reading from a scale.

    ``raw`` is the device value converted to kilograms with the multiplier
    applied; ``rounded`` is the billing value (see
    :func:`pymandi.parser.round_weight`).
    """

    raw: float
    rounded: float
    captured_at: datetime = Field(default_factory=utcnow)
