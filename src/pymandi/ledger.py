"""Per-vehicle, per-product inventory ledger.

This is the only component allowed to change vehicle stock quantities.
Every change appends an immutable :class:`InventoryMovement`; replaying a
pair's movement deltas in order from ``0.0`` reproduces its quantity
exactly, because the ledger stores ``quantity + delta`` using the very
delta it records.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from datetime import datetime

from pymandi.exceptions import InsufficientStockError, NotLoadedError
from pymandi.models._base import utcnow
from pymandi.models.inventory import (
    InventoryMovement,
    MovementType,
    ReferenceType,
    SaleItem,
    VehicleInventoryLine,
)

_logger = logging.getLogger(__name__)

_Key = tuple[str, str]
SaleItems = Iterable[SaleItem | tuple[str, float]]


def _positive_quantity(quantity: float) -> float:
    value = float(quantity)
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"quantity must be a positive number, got {quantity}")
    return value


def _as_sale_item(item: SaleItem | tuple[str, float]) -> SaleItem:
    if isinstance(item, SaleItem):
        return item
    product_id, quantity = item
    return SaleItem(product_id=product_id, quantity=quantity)


class VehicleInventoryLedger:
    """In-memory authoritative store of vehicle stock.

    Parameters
    ----------
    clock : callable
        Returns the current time; movement dates are taken from it.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._quantities: dict[_Key, float] = {}
        self._movements: list[InventoryMovement] = []

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def current_quantity(self, vehicle_id: str, product_id: str) -> float:
        """Quantity aboard; ``0.0`` when the product was never loaded."""
        return self._quantities.get((vehicle_id, product_id), 0.0)

    def has_line(self, vehicle_id: str, product_id: str) -> bool:
        return (vehicle_id, product_id) in self._quantities

    def line(self, vehicle_id: str, product_id: str) -> VehicleInventoryLine | None:
        quantity = self._quantities.get((vehicle_id, product_id))
        if quantity is None:
            return None
        return VehicleInventoryLine(vehicle_id=vehicle_id, product_id=product_id, quantity=quantity)

    def lines(self, vehicle_id: str) -> list[VehicleInventoryLine]:
        return [
            VehicleInventoryLine(vehicle_id=v, product_id=p, quantity=q)
            for (v, p), q in sorted(self._quantities.items())
            if v == vehicle_id
        ]

    def all_lines(self) -> list[VehicleInventoryLine]:
        return [
            VehicleInventoryLine(vehicle_id=v, product_id=p, quantity=q) for (v, p), q in sorted(self._quantities.items())
        ]

    def total_quantity(self, vehicle_id: str) -> float:
        return sum(q for (v, _p), q in self._quantities.items() if v == vehicle_id)

    def movements(self, vehicle_id: str | None = None, product_id: str | None = None) -> list[InventoryMovement]:
        """Audit trail in the order changes were applied."""
        return [
            m
            for m in self._movements
            if (vehicle_id is None or m.vehicle_id == vehicle_id) and (product_id is None or m.product_id == product_id)
        ]

    def replay(self, vehicle_id: str, product_id: str) -> float:
        """Rebuild a pair's quantity from its movements alone."""
        quantity = 0.0
        for movement in self.movements(vehicle_id, product_id):
            quantity += movement.delta
        return quantity

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _apply(
        self,
        key: _Key,
        movement_type: MovementType,
        quantity: float,
        delta: float,
        *,
        reference_id: str | None = None,
        reference_type: ReferenceType | None = None,
        notes: str | None = None,
    ) -> VehicleInventoryLine:
        vehicle_id, product_id = key
        current = self._quantities.get(key, 0.0)
        updated = current + delta
        if updated < 0:
            raise InsufficientStockError(
                vehicle_id=vehicle_id,
                product_id=product_id,
                available=current,
                requested=-delta,
            )
        movement = InventoryMovement(
            vehicle_id=vehicle_id,
            product_id=product_id,
            type=movement_type,
            quantity=quantity,
            reference_id=reference_id,
            reference_type=reference_type if reference_id else None,
            date=self._clock().date(),
            notes=notes,
        )
        self._quantities[key] = updated
        self._movements.append(movement)
        _logger.debug(
            "%s %s/%s %+g -> %g (ref=%s)",
            movement_type.value,
            vehicle_id,
            product_id,
            delta,
            updated,
            reference_id,
        )
        return VehicleInventoryLine(vehicle_id=vehicle_id, product_id=product_id, quantity=updated)

    def load(
        self,
        vehicle_id: str,
        product_id: str,
        quantity: float,
        *,
        reference_id: str | None = None,
        notes: str | None = None,
    ) -> VehicleInventoryLine:
        """Put *quantity* of a product aboard, creating the line if needed.

        *reference_id* is the originating purchase, when there is one.
        """
        value = _positive_quantity(quantity)
        return self._apply(
            (vehicle_id, product_id),
            MovementType.LOAD,
            value,
            value,
            reference_id=reference_id,
            reference_type=ReferenceType.PURCHASE,
            notes=notes,
        )

    def _check_one(self, vehicle_id: str, product_id: str, requested: float) -> None:
        available = self._quantities.get((vehicle_id, product_id))
        if available is None:
            raise NotLoadedError(vehicle_id=vehicle_id, product_id=product_id)
        if requested > available:
            raise InsufficientStockError(
                vehicle_id=vehicle_id,
                product_id=product_id,
                available=available,
                requested=requested,
            )

    def sell(
        self,
        vehicle_id: str,
        product_id: str,
        quantity: float,
        *,
        reference_id: str | None = None,
        notes: str | None = None,
    ) -> VehicleInventoryLine:
        """Debit a sale of *quantity*; *reference_id* is the invoice.

        Raises
        ------
        NotLoadedError
            The vehicle has never carried the product.
        InsufficientStockError
            *quantity* exceeds the current quantity; nothing changes.
        """
        value = _positive_quantity(quantity)
        self._check_one(vehicle_id, product_id, value)
        return self._apply(
            (vehicle_id, product_id),
            MovementType.SALE,
            value,
            -value,
            reference_id=reference_id,
            reference_type=ReferenceType.INVOICE,
            notes=notes,
        )

    def adjust(
        self,
        vehicle_id: str,
        product_id: str,
        new_quantity: float,
        *,
        notes: str | None = "Manual stock update",
    ) -> VehicleInventoryLine:
        """Set a line to *new_quantity* (manual stock correction)."""
        target = float(new_quantity)
        if not math.isfinite(target) or target < 0:
            raise ValueError(f"new_quantity must be a non-negative number, got {new_quantity}")
        key = (vehicle_id, product_id)
        current = self._quantities.get(key)
        if current is None and target == 0:
            self._quantities[key] = 0.0
            return VehicleInventoryLine(vehicle_id=vehicle_id, product_id=product_id, quantity=0.0)
        delta = target - (current or 0.0)
        if delta == 0 and current is not None:
            return VehicleInventoryLine(vehicle_id=vehicle_id, product_id=product_id, quantity=current)
        return self._apply(key, MovementType.ADJUSTMENT, delta, delta, notes=notes)

    # ------------------------------------------------------------------
    # Multi-line sales
    # ------------------------------------------------------------------

    def check_sale(self, vehicle_id: str, items: SaleItems) -> dict[str, float]:
        """Validate a whole sale against current quantities without changing them.

        Quantities requested for the same product are summed. Returns the
        per-product totals; raises the first ledger error found.
        """
        totals: dict[str, float] = {}
        for raw_item in items:
            item = _as_sale_item(raw_item)
            totals[item.product_id] = totals.get(item.product_id, 0.0) + _positive_quantity(item.quantity)
        for product_id, requested in totals.items():
            self._check_one(vehicle_id, product_id, requested)
        return totals

    def sell_many(
        self,
        vehicle_id: str,
        items: SaleItems,
        *,
        reference_id: str | None = None,
        notes: str | None = None,
    ) -> list[VehicleInventoryLine]:
        """Debit every line of one invoice, or none of them."""
        totals = self.check_sale(vehicle_id, items)
        return [
            self._apply(
                (vehicle_id, product_id),
                MovementType.SALE,
                quantity,
                -quantity,
                reference_id=reference_id,
                reference_type=ReferenceType.INVOICE,
                notes=notes,
            )
            for product_id, quantity in totals.items()
        ]

    def reverse_sale(
        self,
        vehicle_id: str,
        items: SaleItems,
        *,
        reference_id: str | None = None,
        notes: str | None = None,
    ) -> list[VehicleInventoryLine]:
        """Return stock taken by a sale whose invoice was cancelled."""
        totals: dict[str, float] = {}
        for raw_item in items:
            item = _as_sale_item(raw_item)
            totals[item.product_id] = totals.get(item.product_id, 0.0) + _positive_quantity(item.quantity)
        note = notes or (f"Reversal of invoice {reference_id}" if reference_id else "Sale reversal")
        return [
            self._apply(
                (vehicle_id, product_id),
                MovementType.ADJUSTMENT,
                quantity,
                quantity,
                reference_id=reference_id,
                reference_type=ReferenceType.INVOICE,
                notes=note,
            )
            for product_id, quantity in totals.items()
        ]
