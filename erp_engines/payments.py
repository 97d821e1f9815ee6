"""
Payment Engine - Applies payments to an invoice's amount summary.

Pure function of (invoice, payment): returns the new summary, the target
status, the path of status changes needed to get there and the payment
event to append.  Nothing is mutated; if any check fails nothing is
returned, so a rejected payment leaves the invoice exactly as it was.

Status selection:
    - outstanding reaches zero                     -> paid
    - otherwise, from draft / sent                 -> partially_paid
    - otherwise, partially_paid / overdue          -> unchanged
A draft invoice is issued implicitly: the path is draft -> sent -> target,
each edge checked by the TransitionValidator.

Usage:
    ledger = PaymentLedger(validator)
    result = ledger.apply_payment(invoice, Decimal("600.00"),
                                  PaymentMethod.BANK_TRANSFER, date(2024, 6, 1))
    result.new_status        # InvoiceStatus.PARTIALLY_PAID
    result.updated_summary   # paid 600.00, outstanding 462.00
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from erp_engines.transitions import TransitionValidator
from erp_kernel.domain.documents import (
    AmountSummary,
    DocumentType,
    FinancialDocument,
    InvoiceStatus,
    PaymentEvent,
    PaymentMethod,
)
from erp_kernel.domain.values import MONEY_DECIMAL_PLACES, ZERO, quantum, to_decimal
from erp_kernel.exceptions import InvalidPaymentAmountError
from erp_kernel.logging_config import get_logger

logger = get_logger("engines.payments")

_ISSUABLE = frozenset({InvoiceStatus.DRAFT, InvoiceStatus.SENT})


@dataclass(frozen=True)
class PaymentApplication:
    """
    Result of applying one payment.

    ``status_path`` lists every status the invoice passes through, in order,
    ending at ``new_status``; it is empty when the status does not change.
    """

    updated_summary: AmountSummary
    new_status: InvoiceStatus
    event: PaymentEvent
    status_path: tuple[InvoiceStatus, ...] = ()

    @property
    def status_changed(self) -> bool:
        return bool(self.status_path)


class PaymentLedger:
    """
    Reconciles partial payments against an invoice's outstanding balance.

    Contract:
        ``apply_payment`` validates the amount, chooses a target status and
        checks every edge on the way there before returning anything.

    Guarantees:
        - ``paid + outstanding == grand_total`` before and after.
        - ``outstanding`` never goes below zero.
        - Prior payment events are never touched; one new event per call.
    """

    def __init__(self, validator: TransitionValidator, decimal_places: int = MONEY_DECIMAL_PLACES):
        self._validator = validator
        self._unit = quantum(decimal_places)

    def _target_status(
        self, current: InvoiceStatus, outstanding: Decimal,
    ) -> InvoiceStatus:
        if outstanding == ZERO:
            return InvoiceStatus.PAID
        if current in _ISSUABLE:
            return InvoiceStatus.PARTIALLY_PAID
        if current in (InvoiceStatus.PARTIALLY_PAID, InvoiceStatus.OVERDUE):
            return current
        # Terminal states: let the validator reject the move.
        return InvoiceStatus.PARTIALLY_PAID

    def _status_path(
        self, current: InvoiceStatus, target: InvoiceStatus,
    ) -> tuple[InvoiceStatus, ...]:
        if target == current:
            return ()
        if current == InvoiceStatus.DRAFT:
            path = (InvoiceStatus.SENT, target)
        else:
            path = (target,)
        source = current
        for step in path:
            self._validator.assert_transition(DocumentType.INVOICE, source, step)
            source = step
        return path

    def apply_payment(
        self,
        invoice: FinancialDocument,
        amount: Decimal,
        method: PaymentMethod,
        payment_date: date,
        recorded_by: str | None = None,
        reference: str | None = None,
        event_id: UUID | None = None,
    ) -> PaymentApplication:
        """
        Apply one payment.

        Raises:
            ValueError: ``invoice`` is not an invoice.
            InvalidPaymentAmountError: amount is not finite, <= 0, above
                outstanding or finer than the currency unit.
            InvalidStatusTransitionError: the invoice cannot reach the
                chosen status (e.g. it is cancelled).
        """
        if invoice.document_type != DocumentType.INVOICE:
            raise ValueError(
                f"Payments apply to invoices only, got {invoice.document_type.value}"
            )

        amount = to_decimal(amount, finite=False)
        summary = invoice.amount_summary
        paid = summary.paid_amount if summary.paid_amount is not None else ZERO
        outstanding = (
            summary.outstanding_amount
            if summary.outstanding_amount is not None
            else summary.grand_total - paid
        )

        if (
            not amount.is_finite()
            or amount <= ZERO
            or amount > outstanding
            or amount % self._unit != ZERO
        ):
            logger.warning(
                "payment_rejected",
                extra={
                    "invoice_id": str(invoice.id),
                    "amount": str(amount),
                    "outstanding": str(outstanding),
                },
            )
            raise InvalidPaymentAmountError(str(invoice.id), amount, outstanding)

        new_outstanding = outstanding - amount
        current = InvoiceStatus(invoice.status_value)
        target = self._target_status(current, new_outstanding)
        path = self._status_path(current, target)

        event = PaymentEvent(
            event_id=event_id or uuid4(),
            invoice_id=invoice.id,
            amount=amount,
            method=PaymentMethod(method),
            payment_date=payment_date,
            recorded_by=recorded_by,
            reference=reference,
        )
        updated = replace(
            summary,
            paid_amount=paid + amount,
            outstanding_amount=new_outstanding,
        )

        logger.info(
            "payment_computed",
            extra={
                "invoice_id": str(invoice.id),
                "amount": str(amount),
                "paid_amount": str(updated.paid_amount),
                "outstanding_amount": str(new_outstanding),
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return PaymentApplication(
            updated_summary=updated,
            new_status=target,
            event=event,
            status_path=path,
        )
