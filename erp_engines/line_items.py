"""
Line Item Engine - Discounted, taxed and rounded document amounts.

Turns raw line items into per-line amounts and a document AmountSummary.
Pure functions with no I/O - precision and rounding unit are provided as
constructor parameters.

Rounding policy (uniform across every document type):
    - Each line amount (gross, discount, each tax component) is rounded
      half-up to ``decimal_places``.
    - Intra-state tax is two equal components of ``rate / 2``; the line
      tax is their sum.  Inter-state tax is one component at full rate.
    - The document carries one ``rounding_adjustment`` that moves
      ``taxable + tax`` onto the nearest multiple of ``rounding_unit``.

Usage:
    from erp_engines.line_items import LineItemCalculator
    from erp_kernel.domain.documents import Discount, LineItem

    calculator = LineItemCalculator()
    summary = calculator.compute_document([
        LineItem("SKU-1", quantity=10, rate=100, tax_rate=18,
                 discount=Discount.percent(10)),
    ])
    print(summary.grand_total)  # Decimal('1062.00')
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from erp_engines.tracer import traced_engine
from erp_kernel.domain.documents import (
    AmountSummary,
    DiscountKind,
    DocumentType,
    LineAmounts,
    LineItem,
    SupplyType,
    TaxComponent,
)
from erp_kernel.domain.values import (
    HUNDRED,
    MONEY_DECIMAL_PLACES,
    ZERO,
    quantum,
    round_money,
    round_to_unit,
)
from erp_kernel.exceptions import EmptyDocumentError, InvalidLineItemError
from erp_kernel.logging_config import get_logger

logger = get_logger("engines.line_items")

INTRA_STATE_COMPONENTS = ("CGST", "SGST")
INTER_STATE_COMPONENT = "IGST"

_TWO = Decimal("2")


@dataclass(frozen=True)
class DocumentAmounts:
    """Per-line amounts together with the document summary they sum to."""

    line_amounts: tuple[LineAmounts, ...]
    summary: AmountSummary


class LineItemCalculator:
    """
    Deterministic line-item amount calculator.

    Contract:
        ``compute_line`` validates and prices one item; ``compute_document``
        prices a non-empty list and returns its AmountSummary.

    Guarantees:
        - ``taxable_amount == subtotal - total_discount`` exactly.
        - ``grand_total == taxable_amount + total_tax + rounding_adjustment``
          exactly, with ``grand_total`` a multiple of ``rounding_unit``.
        - Identical inputs always produce identical outputs.

    Non-goals:
        - Does not clamp bad input: a discount exceeding the gross is
          rejected, not silently capped.
    """

    def __init__(
        self,
        decimal_places: int = MONEY_DECIMAL_PLACES,
        rounding_unit: Decimal | None = None,
    ):
        if not 0 <= decimal_places <= 6:
            raise ValueError(f"decimal_places must be in [0, 6], got {decimal_places}")
        unit = rounding_unit if rounding_unit is not None else quantum(decimal_places)
        if unit <= ZERO:
            raise ValueError(f"rounding_unit must be positive, got {unit}")
        self.decimal_places = decimal_places
        self.rounding_unit = unit

    def _round(self, amount: Decimal) -> Decimal:
        return round_money(amount, self.decimal_places)

    def _validate(self, item: LineItem, index: int) -> None:
        numbers = {"quantity": item.quantity, "rate": item.rate, "tax rate": item.tax_rate}
        if item.discount is not None:
            numbers["discount"] = item.discount.value
        for name, value in numbers.items():
            if not value.is_finite():
                raise InvalidLineItemError(index, f"{name} must be a finite number, got {value}")

        if item.quantity <= ZERO:
            raise InvalidLineItemError(index, f"quantity must be greater than zero, got {item.quantity}")
        if item.rate < ZERO:
            raise InvalidLineItemError(index, f"rate cannot be negative, got {item.rate}")
        if not ZERO <= item.tax_rate <= HUNDRED:
            raise InvalidLineItemError(index, f"tax rate must be between 0 and 100, got {item.tax_rate}")
        if item.discount is not None:
            if item.discount.value < ZERO:
                raise InvalidLineItemError(
                    index, f"discount cannot be negative, got {item.discount.value}"
                )
            if item.discount.kind == DiscountKind.PERCENTAGE and item.discount.value > HUNDRED:
                raise InvalidLineItemError(
                    index, f"percentage discount cannot exceed 100, got {item.discount.value}"
                )

    def _tax_breakup(
        self, taxable: Decimal, item: LineItem,
    ) -> tuple[TaxComponent, ...]:
        if item.supply_type == SupplyType.INTER_STATE:
            amount = self._round(taxable * item.tax_rate / HUNDRED)
            return (TaxComponent(INTER_STATE_COMPONENT, item.tax_rate, amount),)

        half_rate = item.tax_rate / _TWO
        half = self._round(taxable * half_rate / HUNDRED)
        return tuple(TaxComponent(name, half_rate, half) for name in INTRA_STATE_COMPONENTS)

    def compute_line(self, item: LineItem, index: int = 0) -> LineAmounts:
        """
        Price a single line item.

        Args:
            item: The line to price.
            index: Zero-based position in the document, used in errors.

        Raises:
            InvalidLineItemError: quantity <= 0, rate < 0, tax rate outside
                [0, 100], negative discount, or discount exceeding the gross.
        """
        self._validate(item, index)

        gross = self._round(item.quantity * item.rate)
        discount_amount = ZERO
        if item.discount is not None:
            if item.discount.kind == DiscountKind.PERCENTAGE:
                discount_amount = self._round(gross * item.discount.value / HUNDRED)
            else:
                discount_amount = self._round(item.discount.value)
        if discount_amount > gross:
            raise InvalidLineItemError(
                index, f"discount {discount_amount} exceeds gross amount {gross}"
            )

        taxable = gross - discount_amount
        breakup = self._tax_breakup(taxable, item)
        tax = sum((c.amount for c in breakup), ZERO)

        return LineAmounts(
            gross=gross,
            discount_amount=discount_amount,
            taxable_amount=taxable,
            tax_amount=tax,
            line_total=taxable + tax,
            tax_breakup=breakup,
        )

    @traced_engine("line_items", "1.0", fingerprint_fields=("items",))
    def calculate(
        self,
        items: Sequence[LineItem],
        document_type: DocumentType | None = None,
    ) -> DocumentAmounts:
        """
        Price every line and aggregate into an AmountSummary.

        Raises:
            EmptyDocumentError: ``items`` is empty.
            InvalidLineItemError: any line is invalid (first one wins).
        """
        t0 = time.monotonic()
        if not items:
            raise EmptyDocumentError(document_type.value if document_type else None)

        lines = tuple(self.compute_line(item, i) for i, item in enumerate(items))

        subtotal = sum((a.gross for a in lines), ZERO)
        total_discount = sum((a.discount_amount for a in lines), ZERO)
        taxable = sum((a.taxable_amount for a in lines), ZERO)
        total_tax = sum((a.tax_amount for a in lines), ZERO)

        pre_rounding = taxable + total_tax
        grand_total = round_to_unit(pre_rounding, self.rounding_unit, self.decimal_places)

        summary = AmountSummary(
            subtotal=subtotal,
            total_discount=total_discount,
            taxable_amount=taxable,
            total_tax=total_tax,
            rounding_adjustment=grand_total - pre_rounding,
            grand_total=grand_total,
        )

        logger.debug(
            "document_amounts_computed",
            extra={
                "document_type": document_type.value if document_type else None,
                "line_count": len(lines),
                "grand_total": str(grand_total),
                "rounding_adjustment": str(summary.rounding_adjustment),
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return DocumentAmounts(line_amounts=lines, summary=summary)

    def compute_document(
        self,
        items: Sequence[LineItem],
        document_type: DocumentType | None = None,
    ) -> AmountSummary:
        """Aggregate AmountSummary for ``items``; see ``calculate``."""
        return self.calculate(items, document_type).summary
