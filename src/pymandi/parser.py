"""Weight extraction from scale frames.

Scales print lines such as ``"ST,NT, +000.125kg"``, ``"  12.50 kg"`` or a
bare ``"12.5"``. The first signed decimal number in the frame is taken as
the weight, with an optional ``kg``/``g``/``lb`` suffix; anything around it
(status flags, tare markers) is ignored.
"""

from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass

from pymandi._constants import GRAMS_PER_KG, KG_PER_LB, ROUNDING_CARRY

_logger = logging.getLogger(__name__)

_WEIGHT_RE = re.compile(r"([+-]?\d+\.?\d*)\s*(kg|g|lb)?", re.IGNORECASE)


@dataclass(frozen=True)
class WeightReading:
    """Parsed weight in kilograms.

    ``unit`` is the unit printed by the device (``None`` when absent).
    """

    raw: float
    rounded: float
    unit: str | None = None


def round_weight(raw: float) -> float:
    """Billing rounding: ``floor(raw + 0.2)``.

    A fractional part of 0.8 or more carries to the next kilogram, anything
    below is dropped (1.799 -> 1, 1.8 -> 2). Negative values follow the
    same formula (-0.1 -> 0, -0.9 -> -1).
    """
    return float(math.floor(raw + ROUNDING_CARRY))


def to_kilograms(value: float, unit: str | None) -> float:
    if unit is None:
        return value
    unit = unit.lower()
    if unit == "g":
        return value / GRAMS_PER_KG
    if unit == "lb":
        return value * KG_PER_LB
    return value


def parse_weight(frame: str, multiplier: float = 1.0) -> WeightReading | None:
    """Parse a cleaned frame into a :class:`WeightReading`.

    Returns ``None`` when the frame carries no usable number.
    """
    match = _WEIGHT_RE.search(frame)
    if match is None:
        _logger.debug("No weight in frame %r", frame)
        return None

    try:
        value = float(match.group(1))
    except ValueError:
        _logger.debug("Unparseable weight %r in frame %r", match.group(1), frame)
        return None

    unit = match.group(2).lower() if match.group(2) else None
    value = to_kilograms(value, unit)

    if multiplier and multiplier != 1:
        value *= multiplier

    if not math.isfinite(value):
        _logger.debug("Non-finite weight in frame %r", frame)
        return None

    return WeightReading(raw=value, rounded=round_weight(value), unit=unit)
