"""Sale pane: captured weights become invoice lines and ledger debits.

A :class:`SalePane` holds the draft for one vehicle while weights are
captured bag by bag. Committing validates against the ledger, creates the
invoice through an :class:`~pymandi.invoices.InvoiceGateway`, debits the
ledger, and voids the invoice again if the debits are rejected.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date as date_type
from datetime import datetime
from typing import Any

from pymandi.config import MandiConfig
from pymandi.drift import DriftAccumulator
from pymandi.exceptions import InvoiceError, LedgerError, NotLoadedError
from pymandi.invoices import InvoiceGateway
from pymandi.ledger import VehicleInventoryLedger
from pymandi.models._base import utcnow
from pymandi.models.inventory import DriftDelta, SaleItem
from pymandi.models.invoice import InvoiceDraft, InvoiceItem, InvoiceReceipt, InvoiceStatus
from pymandi.session import ScaleSession

_logger = logging.getLogger(__name__)


@dataclass
class SaleLine:
    """Draft line: one product, one captured weight per bag."""

    product_id: str
    unit_price: float = 0.0
    weight_breakdown: list[float] = field(default_factory=list)

    @property
    def weight(self) -> float:
        return sum(self.weight_breakdown)

    @property
    def bags(self) -> int:
        return len(self.weight_breakdown)

    @property
    def total(self) -> float:
        return self.weight * self.unit_price


class SalePane:
    """Sale draft for one vehicle.

    Parameters
    ----------
    vehicle_id : str
        Vehicle the goods are sold from.
    ledger : VehicleInventoryLedger
        Stock authority; checked on capture and debited on commit.
    drift : DriftAccumulator
        Receives the gain/loss of every capture.
    session : ScaleSession or None
        Scale to capture from; manual entry works without one.
    hamali_rate_per_bag : float
        Handling charge per bag; ``0`` disables the charge.
    vendor_id : str or None
        Vendor whose goods the vehicle carries, copied onto the invoice.
    clock : callable
        Source of the invoice date and number.
    """

    def __init__(
        self,
        vehicle_id: str,
        ledger: VehicleInventoryLedger,
        drift: DriftAccumulator,
        *,
        session: ScaleSession | None = None,
        hamali_rate_per_bag: float = 0.0,
        vendor_id: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._vehicle_id = vehicle_id
        self._ledger = ledger
        self._drift = drift
        self._session = session
        self._vendor_id = vendor_id
        self._clock = clock
        self._lines: dict[str, SaleLine] = {}
        self._hamali_rate = 0.0
        self.set_hamali_rate(hamali_rate_per_bag)

    @classmethod
    def from_config(
        cls,
        config: MandiConfig,
        vehicle_id: str,
        ledger: VehicleInventoryLedger,
        drift: DriftAccumulator,
        **kwargs: Any,
    ) -> SalePane:
        """Sale pane using the configured default hamali rate."""
        kwargs.setdefault("hamali_rate_per_bag", config.hamali_rate_per_bag)
        return cls(vehicle_id, ledger, drift, **kwargs)

    @property
    def vehicle_id(self) -> str:
        return self._vehicle_id

    @property
    def lines(self) -> list[SaleLine]:
        return list(self._lines.values())

    def line(self, product_id: str) -> SaleLine | None:
        return self._lines.get(product_id)

    @property
    def hamali_rate_per_bag(self) -> float:
        return self._hamali_rate

    def set_hamali_rate(self, rate: float) -> None:
        if not math.isfinite(rate) or rate < 0:
            raise ValueError(f"hamali rate must be a non-negative number, got {rate}")
        self._hamali_rate = float(rate)

    # ------------------------------------------------------------------
    # Draft editing
    # ------------------------------------------------------------------

    def _line_for(self, product_id: str) -> SaleLine:
        if not self._ledger.has_line(self._vehicle_id, product_id):
            raise NotLoadedError(vehicle_id=self._vehicle_id, product_id=product_id)
        line = self._lines.get(product_id)
        if line is None:
            line = self._lines[product_id] = SaleLine(product_id=product_id)
        return line

    def capture(self, product_id: str) -> DriftDelta | None:
        """Append the scale's current rounded weight as one bag of *product_id*.

        Returns the drift recorded for the vehicle, or ``None`` when there
        is no usable reading (no session, no sample, or a non-positive
        rounded weight).
        """
        if self._session is None:
            return None
        sample = self._session.capture()
        if sample is None or sample.rounded <= 0:
            _logger.debug("Capture ignored for %s: sample=%s", product_id, sample)
            return None
        line = self._line_for(product_id)
        delta = self._drift.record_sample(self._vehicle_id, sample)
        line.weight_breakdown.append(sample.rounded)
        _logger.debug(
            "Captured %s kg of %s (raw %s) on %s",
            sample.rounded,
            product_id,
            sample.raw,
            self._vehicle_id,
        )
        return delta

    def add_weight(self, product_id: str, weight: float) -> None:
        """Manual entry of one bag's weight."""
        if not math.isfinite(weight) or weight <= 0:
            raise ValueError(f"weight must be a positive number, got {weight}")
        self._line_for(product_id).weight_breakdown.append(float(weight))

    def remove_weight(self, product_id: str, index: int) -> float:
        """Remove one captured bag; a line left without bags is dropped."""
        line = self._lines.get(product_id)
        if line is None:
            raise KeyError(product_id)
        weight = line.weight_breakdown.pop(index)
        if not line.weight_breakdown:
            del self._lines[product_id]
        return weight

    def set_price(self, product_id: str, price: float) -> None:
        if not math.isfinite(price) or price < 0:
            raise ValueError(f"price must be a non-negative number, got {price}")
        self._line_for(product_id).unit_price = float(price)

    def clear(self) -> None:
        self._lines.clear()

    # ------------------------------------------------------------------
    # Totals
    # ------------------------------------------------------------------

    def _filled_lines(self) -> list[SaleLine]:
        return [line for line in self._lines.values() if line.weight_breakdown]

    @property
    def total_weight(self) -> float:
        return sum(line.weight for line in self._filled_lines())

    @property
    def total_bags(self) -> int:
        return sum(line.bags for line in self._filled_lines())

    @property
    def subtotal(self) -> float:
        return sum(line.total for line in self._filled_lines())

    @property
    def hamali_charge(self) -> float:
        return self.total_bags * self._hamali_rate

    @property
    def grand_total(self) -> float:
        return self.subtotal + self.hamali_charge

    def sale_items(self) -> list[SaleItem]:
        return [SaleItem(product_id=line.product_id, quantity=line.weight) for line in self._filled_lines()]

    # ------------------------------------------------------------------
    # Commit
    # ------------------------------------------------------------------

    def build_draft(
        self,
        *,
        customer_id: str,
        customer_name: str = "",
        date: date_type | None = None,
    ) -> InvoiceDraft:
        now = self._clock()
        status = InvoiceStatus.COMPLETED if "cash" in customer_name.lower() else InvoiceStatus.PENDING
        items = [
            InvoiceItem(
                product_id=line.product_id,
                vehicle_id=self._vehicle_id,
                quantity=line.weight,
                unit_price=line.unit_price,
                total=line.total,
                weight_breakdown=list(line.weight_breakdown),
            )
            for line in self._filled_lines()
        ]
        return InvoiceDraft(
            invoice_number=f"INV-{int(now.timestamp() * 1000)}",
            customer_id=customer_id,
            vehicle_id=self._vehicle_id,
            vendor_id=self._vendor_id,
            date=date or now.date(),
            items=items,
            subtotal=self.subtotal,
            include_hamali_charge=self._hamali_rate > 0,
            hamali_rate_per_bag=self._hamali_rate,
            hamali_charge_amount=self.hamali_charge,
            bags=self.total_bags,
            total_kg_weight=self.total_weight,
            grand_total=self.grand_total,
            status=status,
        )

    async def commit(
        self,
        gateway: InvoiceGateway,
        *,
        customer_id: str,
        customer_name: str = "",
        date: date_type | None = None,
    ) -> InvoiceReceipt:
        """Persist the draft as an invoice and debit the vehicle's stock.

        Raises
        ------
        ValueError
            The draft has no weighed lines.
        NotLoadedError, InsufficientStockError
            The vehicle cannot cover the sale; no invoice is created, or
            the created one is voided again.
        InvoiceError
            The invoice collaborator failed; stock is untouched.
        """
        items = self.sale_items()
        if not items:
            raise ValueError("sale has no weighed items")

        self._ledger.check_sale(self._vehicle_id, items)
        draft = self.build_draft(customer_id=customer_id, customer_name=customer_name, date=date)
        receipt = await gateway.create_invoice(draft)

        try:
            self._ledger.sell_many(self._vehicle_id, items, reference_id=receipt.id)
        except LedgerError:
            _logger.warning("Stock changed during commit of %s; voiding invoice %s", draft.invoice_number, receipt.id)
            try:
                await gateway.void_invoice(receipt.id)
            except InvoiceError:
                _logger.error("Could not void invoice %s", receipt.id, exc_info=True)
            raise

        _logger.info(
            "Sold %s kg in %d bags from %s on invoice %s",
            draft.total_kg_weight,
            draft.bags,
            self._vehicle_id,
            receipt.id,
        )
        self.clear()
        return receipt
