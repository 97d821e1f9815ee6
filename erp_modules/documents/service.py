"""
Financial Document Module Service - Orchestrates the document lifecycle via engines.

Thin glue layer that:
1. Calls LineItemCalculator to price line items
2. Calls DocumentNumberGenerator to number new documents
3. Calls TransitionValidator before every status change
4. Calls PaymentLedger to apply invoice payments
5. Hands every result to the injected repository and audit sink

All computation lives in engines.  All storage lives in collaborators.
Every operation builds the complete new document first and saves it once,
so a failure at any step leaves the stored document untouched.

Usage:
    service = DocumentLifecycleService(
        repository=InMemoryDocumentRepository(),
        sequence_source=InMemorySequenceSource(),
        clock=clock,
    )
    invoice = service.create_document(
        company_id="acme", document_type=DocumentType.INVOICE,
        party=Party("CUST-1", "Globex"),
        line_items=[LineItem("SKU-1", quantity=10, rate=100, tax_rate=18)],
        actor_id="u-42",
    )
    invoice = service.apply_payment(invoice, Decimal("600.00"), PaymentMethod.UPI)
"""

from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Sequence
from uuid import UUID, uuid4

from erp_engines.line_items import DocumentAmounts, LineItemCalculator
from erp_engines.numbering import DocumentNumberGenerator, current_financial_year
from erp_engines.payments import PaymentLedger
from erp_engines.transitions import TransitionValidator
from erp_kernel.domain.clock import Clock, SystemClock
from erp_kernel.domain.documents import (
    CustomerOrderStatus,
    DocumentDates,
    DocumentType,
    FinancialDocument,
    InvoiceStatus,
    LifecycleEvent,
    LineItem,
    OrderDraftPayload,
    Party,
    PartyRole,
    PaymentMethod,
    PurchaseOrderStatus,
    QuotationStatus,
    ReceiptLine,
    StatusChange,
    status_value,
)
from erp_kernel.domain.values import ZERO
from erp_kernel.exceptions import (
    DocumentNotEditableError,
    DocumentNotFoundError,
    InvalidReceiptError,
    InvalidStatusTransitionError,
)
from erp_kernel.logging_config import LogContext, get_logger
from erp_modules.documents.collaborators import (
    AuditSink,
    DocumentRepository,
    SequenceSource,
    StockReservation,
)
from erp_modules.documents.config import DocumentConfig
from erp_modules.documents.workflows import DOCUMENT_WORKFLOWS, timestamp_field

logger = get_logger("modules.documents.service")

_RECEIVABLE_STATUSES = frozenset({
    PurchaseOrderStatus.ACKNOWLEDGED,
    PurchaseOrderStatus.PARTIALLY_RECEIVED,
})

_OVERDUE_CANDIDATES = frozenset({InvoiceStatus.SENT, InvoiceStatus.PARTIALLY_PAID})


class DocumentLifecycleService:
    """
    Orchestrates quotation, order and invoice lifecycles through engines.

    Engine composition:
    - LineItemCalculator: line and document amounts
    - DocumentNumberGenerator: per-scope document numbers
    - TransitionValidator: per-type status graphs
    - PaymentLedger: invoice payment application

    Collaborators: a DocumentRepository (required), a SequenceSource
    (required), a StockReservation for customer orders and an AuditSink
    (both optional).
    """

    def __init__(
        self,
        repository: DocumentRepository,
        sequence_source: SequenceSource,
        config: DocumentConfig | None = None,
        stock_reservation: StockReservation | None = None,
        audit_sink: AuditSink | None = None,
        clock: Clock | None = None,
    ):
        self._repository = repository
        self._config = config or DocumentConfig.with_defaults()
        self._stock = stock_reservation
        self._audit = audit_sink
        self._clock = clock or SystemClock()

        self._calculator = LineItemCalculator(
            decimal_places=self._config.currency_decimal_places,
            rounding_unit=self._config.grand_total_rounding_unit,
        )
        self._numbering = DocumentNumberGenerator(
            sequence_source,
            numbering_rules=self._config.numbering,
            company_prefixes=self._config.company_prefixes,
        )
        self._validator = TransitionValidator(DOCUMENT_WORKFLOWS)
        self._ledger = PaymentLedger(self._validator, self._config.currency_decimal_places)

    @property
    def validator(self) -> TransitionValidator:
        return self._validator

    # =========================================================================
    # Internals
    # =========================================================================

    def _enter_status(
        self,
        document: FinancialDocument,
        target: str,
        actor_id: str | None,
        now: datetime,
    ) -> FinancialDocument:
        """New document in ``target`` with its timestamp and history entry."""
        timestamps = dict(document.status_timestamps)
        field_name = timestamp_field(document.document_type, target)
        if field_name is not None:
            timestamps[field_name] = now
        change = StatusChange(
            from_status=document.status_value,
            to_status=target,
            changed_at=now,
            actor_id=actor_id,
        )
        return replace(
            document,
            status=target,
            status_timestamps=timestamps,
            status_history=document.status_history + (change,),
            modified_by=actor_id,
            modified_at=now,
        )

    def _emit(
        self,
        document: FinancialDocument,
        action: str,
        from_status: str | None,
        actor_id: str | None,
        now: datetime,
        payload: dict[str, Any] | None = None,
    ) -> None:
        if self._audit is None:
            return
        self._audit.record(LifecycleEvent(
            event_id=uuid4(),
            document_id=document.id,
            document_type=document.document_type,
            action=action,
            from_status=from_status,
            to_status=document.status_value,
            actor_id=actor_id,
            timestamp=now,
            payload=payload or {},
        ))

    def _summary_for(
        self, document_type: DocumentType, amounts: DocumentAmounts, paid: Decimal = ZERO,
    ):
        if document_type == DocumentType.INVOICE:
            return amounts.summary.for_invoice(paid)
        return amounts.summary

    def _assert_status_matches_amounts(self, document: FinancialDocument, target: str) -> None:
        """Payment and receipt statuses must agree with what was recorded."""
        reason = None
        if document.document_type == DocumentType.INVOICE:
            summary = document.amount_summary
            paid = summary.paid_amount if summary.paid_amount is not None else ZERO
            outstanding = (
                summary.outstanding_amount
                if summary.outstanding_amount is not None
                else summary.grand_total - paid
            )
            if target == InvoiceStatus.PAID.value and outstanding != ZERO:
                reason = f"outstanding amount is {outstanding}"
            elif target == InvoiceStatus.PARTIALLY_PAID.value and not (
                paid > ZERO and outstanding > ZERO
            ):
                reason = f"paid amount is {paid} with {outstanding} outstanding"
        elif document.document_type == DocumentType.PURCHASE_ORDER:
            received = document.received_quantities
            complete = all(
                received.get(product, ZERO) >= quantity
                for product, quantity in document.ordered_quantities.items()
            )
            if target == PurchaseOrderStatus.RECEIVED.value and not complete:
                reason = "not every ordered quantity has been received"
            elif target == PurchaseOrderStatus.PARTIALLY_RECEIVED.value and (
                complete or not any(q > ZERO for q in received.values())
            ):
                reason = "received quantities do not form a partial receipt"

        if reason is not None:
            logger.warning(
                "status_amount_mismatch",
                extra={
                    "document_type": document.document_type.value,
                    "from_status": document.status_value,
                    "to_status": target,
                    "reason": reason,
                },
            )
            raise InvalidStatusTransitionError(
                document.document_type.value, document.status_value, target, reason,
            )

    def _release_after_cancel(self, token: str) -> None:
        if self._stock is None:
            logger.warning(
                "stock_reservation_not_released",
                extra={"reservation_token": token, "reason": "no stock reservation collaborator"},
            )
            return
        try:
            self._stock.release(token)
        except Exception:
            logger.error(
                "stock_reservation_release_failed",
                extra={"reservation_token": token},
                exc_info=True,
            )

    # =========================================================================
    # Queries
    # =========================================================================

    def get_document(self, document_id: UUID) -> FinancialDocument:
        """Load a document or raise ``DocumentNotFoundError``."""
        document = self._repository.find_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def preview_amounts(
        self,
        line_items: Sequence[LineItem],
        document_type: DocumentType | None = None,
    ) -> DocumentAmounts:
        """Price line items without numbering or saving anything."""
        return self._calculator.calculate(
            line_items, DocumentType(document_type) if document_type else None,
        )

    # =========================================================================
    # Create / edit
    # =========================================================================

    def create_document(
        self,
        company_id: str,
        document_type: DocumentType,
        party: Party,
        line_items: Sequence[LineItem],
        dates: DocumentDates | None = None,
        actor_id: str | None = None,
        source_reference: str | None = None,
    ) -> FinancialDocument:
        """
        Price, number and save a new draft document.

        Amounts are computed before a number is allocated, so invalid line
        items never consume a sequence value.

        Raises:
            EmptyDocumentError, InvalidLineItemError: from the calculator.
            NumberGenerationFailedError: the sequence source failed.
        """
        document_type = DocumentType(document_type)
        with LogContext.bind(company_id=company_id, actor_id=actor_id):
            amounts = self._calculator.calculate(line_items, document_type)

            now = self._clock.now()
            dates = dates or DocumentDates(issue_date=self._clock.today())
            if document_type == DocumentType.INVOICE and dates.due_date is None:
                dates = replace(
                    dates,
                    due_date=dates.issue_date
                    + timedelta(days=self._config.default_payment_terms_days),
                )

            financial_year = current_financial_year(dates.issue_date)
            number = self._numbering.next_number(company_id, document_type, financial_year)

            initial = DOCUMENT_WORKFLOWS[document_type].initial_state
            document = FinancialDocument(
                id=uuid4(),
                company_id=company_id,
                document_type=document_type,
                document_number=number,
                financial_year=financial_year,
                party=replace(party, role=document_type.party_role),
                line_items=tuple(line_items),
                line_amounts=amounts.line_amounts,
                amount_summary=self._summary_for(document_type, amounts),
                status=initial,
                dates=dates,
                status_history=(StatusChange(None, initial, now, actor_id),),
                source_reference=source_reference,
                created_by=actor_id,
                created_at=now,
                modified_by=actor_id,
                modified_at=now,
            )

            saved = self._repository.save(document)
            self._emit(
                saved, "create", None, actor_id, now,
                {
                    "document_number": saved.document_number,
                    "grand_total": str(saved.amount_summary.grand_total),
                },
            )
            logger.info(
                "document_created",
                extra={
                    "document_id": str(saved.id),
                    "document_type": document_type.value,
                    "document_number": saved.document_number,
                    "line_count": len(saved.line_items),
                    "grand_total": str(saved.amount_summary.grand_total),
                },
            )
            return saved

    def recompute_amounts(
        self,
        document: FinancialDocument,
        line_items: Sequence[LineItem],
        actor_id: str | None = None,
    ) -> FinancialDocument:
        """
        Replace the document's line items and re-run the calculator.

        Raises:
            DocumentNotEditableError: the status does not allow line edits.
            EmptyDocumentError, InvalidLineItemError: from the calculator.
        """
        with LogContext.bind(document_id=document.id, actor_id=actor_id):
            if not self._config.is_editable(document.document_type, document.status_value):
                logger.warning(
                    "document_not_editable",
                    extra={"status": document.status_value},
                )
                raise DocumentNotEditableError(str(document.id), document.status_value)

            amounts = self._calculator.calculate(line_items, document.document_type)
            paid = document.amount_summary.paid_amount or ZERO
            updated = replace(
                document,
                line_items=tuple(line_items),
                line_amounts=amounts.line_amounts,
                amount_summary=self._summary_for(document.document_type, amounts, paid),
                modified_by=actor_id,
                modified_at=self._clock.now(),
            )
            saved = self._repository.save(updated)
            logger.info(
                "document_amounts_recomputed",
                extra={
                    "line_count": len(saved.line_items),
                    "previous_grand_total": str(document.amount_summary.grand_total),
                    "grand_total": str(saved.amount_summary.grand_total),
                },
            )
            return saved

    # =========================================================================
    # Status changes
    # =========================================================================

    def change_status(
        self,
        document: FinancialDocument,
        target_status: str | Enum,
        actor_id: str | None = None,
    ) -> FinancialDocument:
        """
        Move a document along one edge of its type's graph.

        Customer orders take a stock reservation on entering
        ``in_production`` and release it on ``cancelled``; the release
        runs after the cancellation is saved and its failure is logged,
        not raised.

        Payment statuses of invoices and receipt statuses of purchase
        orders are accepted only when the recorded payments or receipts
        already support them.

        Raises:
            InvalidStatusTransitionError: the edge is not in the graph, or
                the amounts or quantities disagree with the target.
            StockReservationError: the reservation was refused.
            ConcurrentModificationError: from the repository.
        """
        target = status_value(target_status)
        source = document.status_value
        with LogContext.bind(document_id=document.id, actor_id=actor_id):
            action = self._validator.assert_transition(document.document_type, source, target)
            self._assert_status_matches_amounts(document, target)
            now = self._clock.now()
            updated = self._enter_status(document, target, actor_id, now)

            is_order = document.document_type == DocumentType.CUSTOMER_ORDER
            new_token = None
            if (
                is_order
                and target == CustomerOrderStatus.IN_PRODUCTION.value
                and self._stock
                and not document.reservation_token
            ):
                try:
                    new_token = self._stock.reserve(document.id, document.line_items)
                except Exception:
                    logger.error("stock_reservation_failed", exc_info=True)
                    raise
                updated = replace(updated, reservation_token=new_token)

            released_token = None
            if (
                is_order
                and target == CustomerOrderStatus.CANCELLED.value
                and document.reservation_token
            ):
                released_token = document.reservation_token
                updated = replace(updated, reservation_token=None)

            try:
                saved = self._repository.save(updated)
            except Exception:
                if new_token is not None:
                    logger.warning(
                        "stock_reservation_compensated",
                        extra={"reservation_token": new_token},
                    )
                    self._stock.release(new_token)
                raise

            self._emit(saved, action, source, actor_id, now)
            if released_token is not None:
                self._release_after_cancel(released_token)
            logger.info(
                "status_changed",
                extra={
                    "document_type": document.document_type.value,
                    "document_number": document.document_number,
                    "action": action,
                    "from_status": source,
                    "to_status": target,
                },
            )
            return saved

    def convert_quotation_to_order(
        self,
        quotation: FinancialDocument,
        actor_id: str | None = None,
    ) -> OrderDraftPayload:
        """
        Build the payload for an external order-creation collaborator and
        mark the quotation ``converted``.

        Raises:
            ValueError: ``quotation`` is not a quotation.
            InvalidStatusTransitionError: the quotation is not ``accepted``.
        """
        if quotation.document_type != DocumentType.QUOTATION:
            raise ValueError(
                f"Only quotations convert to orders, got {quotation.document_type.value}"
            )
        self._validator.assert_transition(
            DocumentType.QUOTATION, quotation.status, QuotationStatus.CONVERTED,
        )

        payload = OrderDraftPayload(
            company_id=quotation.company_id,
            party=replace(quotation.party, role=PartyRole.CUSTOMER),
            line_items=quotation.line_items,
            amount_summary=quotation.amount_summary,
            source_document_id=quotation.id,
            source_document_number=quotation.document_number,
        )
        self.change_status(quotation, QuotationStatus.CONVERTED, actor_id)
        logger.info(
            "quotation_converted",
            extra={
                "document_id": str(quotation.id),
                "document_number": quotation.document_number,
                "line_count": len(payload.line_items),
            },
        )
        return payload

    # =========================================================================
    # Payments and receipts
    # =========================================================================

    def apply_payment(
        self,
        invoice: FinancialDocument,
        amount: Decimal,
        method: PaymentMethod,
        payment_date: date | None = None,
        actor_id: str | None = None,
        reference: str | None = None,
    ) -> FinancialDocument:
        """
        Record a payment against an invoice.

        Amount summary, status, timestamps and the new payment event are
        saved together or not at all.

        Raises:
            InvalidPaymentAmountError: amount not finite, <= 0, above
                outstanding or finer than the currency unit.
            InvalidStatusTransitionError: e.g. the invoice is cancelled.
            ConcurrentModificationError: from the repository.
        """
        with LogContext.bind(document_id=invoice.id, actor_id=actor_id):
            result = self._ledger.apply_payment(
                invoice,
                amount,
                method,
                payment_date or self._clock.today(),
                recorded_by=actor_id,
                reference=reference,
            )
            now = self._clock.now()
            updated = invoice
            for step in result.status_path:
                updated = self._enter_status(updated, step.value, actor_id, now)
            updated = replace(
                updated,
                amount_summary=result.updated_summary,
                payments=invoice.payments + (result.event,),
                modified_by=actor_id,
                modified_at=now,
            )

            saved = self._repository.save(updated)
            summary = saved.amount_summary
            self._emit(
                saved, "apply_payment", invoice.status_value, actor_id, now,
                {
                    "payment_event_id": str(result.event.event_id),
                    "amount": str(result.event.amount),
                    "method": result.event.method.value,
                    "paid_amount": str(summary.paid_amount),
                    "outstanding_amount": str(summary.outstanding_amount),
                },
            )
            logger.info(
                "payment_applied",
                extra={
                    "document_number": invoice.document_number,
                    "amount": str(result.event.amount),
                    "from_status": invoice.status_value,
                    "to_status": saved.status_value,
                    "outstanding_amount": str(summary.outstanding_amount),
                },
            )
            return saved

    def receive_items(
        self,
        purchase_order: FinancialDocument,
        receipts: Sequence[ReceiptLine],
        actor_id: str | None = None,
    ) -> FinancialDocument:
        """
        Record goods received against a purchase order.

        Moves the order to ``received`` once every ordered quantity is
        covered, otherwise to ``partially_received``.

        Raises:
            InvalidReceiptError: unknown product, non-positive quantity,
                over-receipt or no receipt lines.
            InvalidStatusTransitionError: the order is not acknowledged or
                partially received.
        """
        if purchase_order.document_type != DocumentType.PURCHASE_ORDER:
            raise ValueError(
                f"Receipts apply to purchase orders only, got "
                f"{purchase_order.document_type.value}"
            )
        doc_id = str(purchase_order.id)
        with LogContext.bind(document_id=doc_id, actor_id=actor_id):
            if not receipts:
                raise InvalidReceiptError(doc_id, "no receipt lines")

            ordered = purchase_order.ordered_quantities
            received = dict(purchase_order.received_quantities)
            for line in receipts:
                if line.product_id not in ordered:
                    raise InvalidReceiptError(doc_id, f"product {line.product_id} is not on the order")
                if not line.received_quantity.is_finite() or line.received_quantity <= ZERO:
                    raise InvalidReceiptError(
                        doc_id,
                        f"received quantity for {line.product_id} must be positive, "
                        f"got {line.received_quantity}",
                    )
                total = received.get(line.product_id, ZERO) + line.received_quantity
                if total > ordered[line.product_id]:
                    raise InvalidReceiptError(
                        doc_id,
                        f"over-receipt of {line.product_id}: "
                        f"{total} received against {ordered[line.product_id]} ordered",
                    )
                received[line.product_id] = total

            complete = all(received.get(p, ZERO) >= q for p, q in ordered.items())
            target = (
                PurchaseOrderStatus.RECEIVED if complete
                else PurchaseOrderStatus.PARTIALLY_RECEIVED
            )
            source = purchase_order.status_value
            if PurchaseOrderStatus(source) not in _RECEIVABLE_STATUSES:
                # Let the validator name the rejected edge.
                self._validator.assert_transition(DocumentType.PURCHASE_ORDER, source, target)

            now = self._clock.now()
            updated = replace(
                purchase_order,
                received_quantities=received,
                modified_by=actor_id,
                modified_at=now,
            )
            action = None
            if target.value != source:
                action = self._validator.assert_transition(
                    DocumentType.PURCHASE_ORDER, source, target,
                )
                updated = self._enter_status(updated, target.value, actor_id, now)

            saved = self._repository.save(updated)
            if action is not None:
                self._emit(
                    saved, action, source, actor_id, now,
                    {"received_quantities": {k: str(v) for k, v in received.items()}},
                )
            logger.info(
                "goods_received",
                extra={
                    "document_number": purchase_order.document_number,
                    "from_status": source,
                    "to_status": saved.status_value,
                    "receipt_lines": len(receipts),
                },
            )
            return saved

    # =========================================================================
    # Time-based sweeps
    # =========================================================================

    def refresh_time_based_status(
        self,
        document: FinancialDocument,
        as_of: date | None = None,
        actor_id: str | None = None,
    ) -> FinancialDocument:
        """
        Expire lapsed quotations and mark late invoices overdue.

        A quotation past ``valid_until`` expires when its graph allows it
        (only from ``sent``).  An invoice past ``due_date`` in ``sent`` or
        ``partially_paid`` with money outstanding becomes ``overdue``.
        Everything else is returned unchanged.
        """
        as_of = as_of or self._clock.today()
        status = document.status_value

        if document.document_type == DocumentType.QUOTATION:
            valid_until = document.dates.valid_until
            if (
                valid_until is not None
                and as_of > valid_until
                and self._validator.can_transition(
                    DocumentType.QUOTATION, status, QuotationStatus.EXPIRED,
                )
            ):
                return self.change_status(document, QuotationStatus.EXPIRED, actor_id)

        if document.document_type == DocumentType.INVOICE:
            due_date = document.dates.due_date
            outstanding = document.amount_summary.outstanding_amount
            if (
                due_date is not None
                and as_of > due_date
                and InvoiceStatus(status) in _OVERDUE_CANDIDATES
                and outstanding is not None
                and outstanding > ZERO
            ):
                return self.change_status(document, InvoiceStatus.OVERDUE, actor_id)

        return document
