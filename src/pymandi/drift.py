"""Gain/loss between raw scale readings and billed (rounded) weight."""

from __future__ import annotations

import logging

from pymandi.models.inventory import DriftDelta, VehicleDriftCounters
from pymandi.models.scale import Sample

_logger = logging.getLogger(__name__)


def compute_drift(raw: float, rounded: float) -> DriftDelta:
    """``rounded - raw``: positive is gain, negative is loss (as a magnitude)."""
    diff = rounded - raw
    if diff > 0:
        return DriftDelta(gain=diff)
    if diff < 0:
        return DriftDelta(loss=-diff)
    return DriftDelta()


class DriftAccumulator:
    """Lifetime gain/loss counters per vehicle.

    Counters only grow; they are fed once per explicit capture, never per
    scale tick.
    """

    def __init__(self, initial: list[VehicleDriftCounters] | None = None) -> None:
        self._gain: dict[str, float] = {}
        self._loss: dict[str, float] = {}
        for counters in initial or []:
            self._gain[counters.vehicle_id] = counters.total_weight_gain
            self._loss[counters.vehicle_id] = counters.total_weight_loss

    def record(self, vehicle_id: str, raw: float, rounded: float) -> DriftDelta:
        delta = compute_drift(raw, rounded)
        if delta.gain:
            self._gain[vehicle_id] = self._gain.get(vehicle_id, 0.0) + delta.gain
        if delta.loss:
            self._loss[vehicle_id] = self._loss.get(vehicle_id, 0.0) + delta.loss
        _logger.debug("Drift %s raw=%s rounded=%s gain=%s loss=%s", vehicle_id, raw, rounded, delta.gain, delta.loss)
        return delta

    def record_sample(self, vehicle_id: str, sample: Sample) -> DriftDelta:
        return self.record(vehicle_id, sample.raw, sample.rounded)

    def counters(self, vehicle_id: str) -> VehicleDriftCounters:
        return VehicleDriftCounters(
            vehicle_id=vehicle_id,
            total_weight_gain=self._gain.get(vehicle_id, 0.0),
            total_weight_loss=self._loss.get(vehicle_id, 0.0),
        )

    def all_counters(self) -> list[VehicleDriftCounters]:
        vehicles = sorted(set(self._gain) | set(self._loss))
        return [self.counters(v) for v in vehicles]
