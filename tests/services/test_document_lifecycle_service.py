"""
Tests for DocumentLifecycleService.

End-to-end behaviour over the in-memory collaborators: creation and
numbering, status changes with timestamps and history, audit events,
line edits, quotation conversion, payments, goods receipts, time-based
sweeps and customer order stock reservation.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from erp_kernel.domain.documents import (
    CustomerOrderStatus,
    DocumentDates,
    DocumentType,
    InvoiceStatus,
    LineItem,
    PartyRole,
    PaymentMethod,
    PurchaseOrderStatus,
    QuotationStatus,
    ReceiptLine,
)
from erp_kernel.exceptions import (
    ConcurrentModificationError,
    DocumentNotEditableError,
    DocumentNotFoundError,
    EmptyDocumentError,
    InvalidLineItemError,
    InvalidPaymentAmountError,
    InvalidReceiptError,
    InvalidStatusTransitionError,
    NumberGenerationFailedError,
    StockReservationError,
)
from erp_modules.documents.collaborators import (
    InMemoryAuditSink,
    InMemoryDocumentRepository,
    InMemorySequenceSource,
    InMemoryStockReservation,
)
from erp_modules.documents.config import DocumentConfig
from erp_modules.documents.service import DocumentLifecycleService

ACTOR = "user-7"


def advance(service, document, *statuses):
    """Walk a document through ``statuses`` one edge at a time."""
    for status in statuses:
        document = service.change_status(document, status, actor_id=ACTOR)
    return document


class _FailingSequenceSource:
    def next_sequence(self, scope_key: str) -> int:
        raise ConnectionError("counter store down")


class _ReleaseFailsStock(InMemoryStockReservation):
    def release(self, token: str) -> None:
        raise RuntimeError("stock service unavailable")


# =============================================================================
# Creation
# =============================================================================


class TestCreateDocument:
    """Pricing, numbering and the initial draft."""

    def test_invoice_created_in_draft(self, create_document, clock):
        invoice = create_document(DocumentType.INVOICE)

        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.document_number == "INV/2024-25/001"
        assert invoice.financial_year == "2024-25"
        assert invoice.version == 1
        assert invoice.created_by == ACTOR
        assert invoice.created_at == clock.now()
        assert invoice.status_timestamps == {}

    def test_invoice_carries_payment_fields(self, create_document):
        summary = create_document(DocumentType.INVOICE).amount_summary

        assert summary.grand_total == Decimal("1062.00")
        assert summary.paid_amount == Decimal("0")
        assert summary.outstanding_amount == Decimal("1062.00")

    def test_non_invoice_has_no_payment_fields(self, create_document):
        summary = create_document(DocumentType.QUOTATION).amount_summary
        assert summary.paid_amount is None
        assert summary.outstanding_amount is None

    def test_invoice_due_date_from_payment_terms(self, create_document):
        invoice = create_document(DocumentType.INVOICE)
        assert invoice.dates.issue_date == date(2024, 6, 1)
        assert invoice.dates.due_date == date(2024, 7, 1)

    def test_explicit_due_date_kept(self, create_document):
        dates = DocumentDates(issue_date=date(2024, 6, 1), due_date=date(2024, 6, 10))
        assert create_document(DocumentType.INVOICE, dates=dates).dates.due_date == date(2024, 6, 10)

    def test_financial_year_from_issue_date(self, create_document):
        invoice = create_document(DocumentType.INVOICE, dates=DocumentDates(issue_date=date(2025, 4, 2)))
        assert invoice.document_number == "INV/2025-26/001"
        assert invoice.financial_year == "2025-26"

    def test_party_role_follows_document_type(self, create_document):
        assert create_document(DocumentType.PURCHASE_ORDER).party.role == PartyRole.SUPPLIER
        assert create_document(DocumentType.CUSTOMER_ORDER).party.role == PartyRole.CUSTOMER

    def test_initial_history_entry(self, create_document):
        history = create_document(DocumentType.QUOTATION).status_history
        assert len(history) == 1
        assert history[0].from_status is None
        assert history[0].to_status == "draft"
        assert history[0].actor_id == ACTOR

    def test_numbers_increase_per_type(self, create_document):
        first = create_document(DocumentType.QUOTATION)
        second = create_document(DocumentType.QUOTATION)
        order = create_document(DocumentType.CUSTOMER_ORDER)

        assert first.document_number == "QUO/2024-25/0001"
        assert second.document_number == "QUO/2024-25/0002"
        assert order.document_number == "CO/2024-25/0001"

    def test_invalid_lines_do_not_consume_a_number(self, create_document, sequence_source):
        with pytest.raises(InvalidLineItemError):
            create_document(DocumentType.INVOICE, line_items=[LineItem("SKU", quantity=0, rate=10)])
        assert sequence_source.current("acme:invoice:2024-25") == 0

    def test_empty_document_rejected(self, service, customer, repository):
        with pytest.raises(EmptyDocumentError):
            service.create_document("acme", DocumentType.INVOICE, customer, [])
        assert len(repository) == 0

    def test_number_failure_saves_nothing(self, customer, sample_line_items, clock):
        repository = InMemoryDocumentRepository()
        service = DocumentLifecycleService(repository, _FailingSequenceSource(), clock=clock)

        with pytest.raises(NumberGenerationFailedError):
            service.create_document("acme", DocumentType.INVOICE, customer, sample_line_items)
        assert len(repository) == 0

    def test_create_event_emitted(self, create_document, audit_sink):
        invoice = create_document(DocumentType.INVOICE)
        (event,) = audit_sink.events_for(invoice.id)

        assert event.action == "create"
        assert event.from_status is None
        assert event.to_status == "draft"
        assert event.actor_id == ACTOR
        assert event.payload["document_number"] == "INV/2024-25/001"
        assert event.payload["grand_total"] == "1062.00"

    def test_created_logged(self, create_document, captured_logs):
        create_document(DocumentType.INVOICE)
        records = [r for r in captured_logs() if r["message"] == "document_created"]
        assert records[0]["document_number"] == "INV/2024-25/001"
        assert records[0]["company_id"] == "acme"

    def test_get_document(self, service, create_document):
        invoice = create_document(DocumentType.INVOICE)
        assert service.get_document(invoice.id) == invoice
        with pytest.raises(DocumentNotFoundError):
            service.get_document(uuid4())


class TestPreviewAmounts:
    """Pricing without side effects."""

    def test_preview_does_not_number_or_save(self, service, sample_line_items, sequence_source, repository):
        amounts = service.preview_amounts(sample_line_items, DocumentType.INVOICE)

        assert amounts.summary.grand_total == Decimal("1062.00")
        assert sequence_source.current("acme:invoice:2024-25") == 0
        assert len(repository) == 0


# =============================================================================
# Status changes
# =============================================================================


class TestChangeStatus:
    """Validated moves along the graph."""

    def test_quotation_happy_path_timestamps(self, service, create_document, clock):
        quotation = create_document(DocumentType.QUOTATION)
        clock.tick()
        submitted = service.change_status(quotation, QuotationStatus.PENDING_APPROVAL, ACTOR)
        submitted_at = clock.now()
        clock.tick()
        approved = service.change_status(submitted, "approved", ACTOR)

        assert approved.status == QuotationStatus.APPROVED
        assert approved.timestamp("submitted_at") == submitted_at
        assert approved.timestamp("approved_at") == clock.now()
        assert approved.modified_at == clock.now()
        assert approved.version == 3

    def test_history_records_every_change(self, service, create_document):
        quotation = advance(
            service, create_document(DocumentType.QUOTATION),
            "pending_approval", "approved", "sent", "accepted",
        )
        assert [(h.from_status, h.to_status) for h in quotation.status_history] == [
            (None, "draft"),
            ("draft", "pending_approval"),
            ("pending_approval", "approved"),
            ("approved", "sent"),
            ("sent", "accepted"),
        ]

    def test_invalid_transition_leaves_document_unchanged(self, service, create_document, repository):
        invoice = create_document(DocumentType.INVOICE)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            service.change_status(invoice, InvoiceStatus.PAID, ACTOR)

        assert exc_info.value.from_status == "draft"
        assert repository.get(invoice.id) == invoice

    def test_terminal_status_is_final(self, service, create_document):
        cancelled = service.change_status(create_document(DocumentType.INVOICE), "cancelled", ACTOR)
        for target in ("draft", "sent", "paid"):
            with pytest.raises(InvalidStatusTransitionError):
                service.change_status(cancelled, target, ACTOR)

    def test_re_entering_status_overwrites_its_timestamp(self, service, create_document, clock):
        order = advance(service, create_document(DocumentType.CUSTOMER_ORDER), "confirmed", "in_production")
        first_start = order.timestamp("production_started_at")
        clock.tick()
        order = service.change_status(order, "quality_check", ACTOR)
        checked_at = order.timestamp("quality_checked_at")
        clock.tick()
        order = service.change_status(order, CustomerOrderStatus.IN_PRODUCTION, ACTOR)

        assert order.timestamp("production_started_at") == clock.now()
        assert order.timestamp("production_started_at") > first_start
        assert order.timestamp("quality_checked_at") == checked_at
        assert order.timestamp("confirmed_at") == first_start
        assert len(order.status_history) == 5

    def test_status_change_events(self, service, create_document, audit_sink):
        order = advance(service, create_document(DocumentType.CUSTOMER_ORDER), "confirmed", "cancelled")
        events = audit_sink.events_for(order.id)

        assert [e.action for e in events] == ["create", "confirm", "cancel"]
        assert events[-1].from_status == "confirmed"
        assert events[-1].to_status == "cancelled"

    def test_rejected_change_emits_no_event(self, service, create_document, audit_sink):
        invoice = create_document(DocumentType.INVOICE)
        with pytest.raises(InvalidStatusTransitionError):
            service.change_status(invoice, "overdue", ACTOR)
        assert [e.action for e in audit_sink.events_for(invoice.id)] == ["create"]

    def test_repository_keeps_every_saved_version(self, service, create_document, repository):
        invoice = create_document(DocumentType.INVOICE)
        sent = service.change_status(invoice, "sent", ACTOR)

        versions = repository.history(invoice.id)
        assert [d.version for d in versions] == [1, 2]
        assert [d.status for d in versions] == [InvoiceStatus.DRAFT, InvoiceStatus.SENT]
        assert versions[-1] == sent
        assert repository.history(uuid4()) == []

    def test_stale_copy_rejected(self, service, create_document):
        invoice = create_document(DocumentType.INVOICE)
        service.change_status(invoice, "sent", ACTOR)

        with pytest.raises(ConcurrentModificationError) as exc_info:
            service.change_status(invoice, "cancelled", ACTOR)
        assert exc_info.value.retryable is True
        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2


class TestStatusMustMatchAmounts:
    """Payment and receipt statuses follow what was actually recorded."""

    def test_unpaid_invoice_cannot_be_marked_paid(self, service, create_document, repository, audit_sink):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            service.change_status(invoice, "paid", ACTOR)

        assert exc_info.value.reason == "outstanding amount is 1062.00"
        assert "outstanding amount" in str(exc_info.value)
        assert repository.get(invoice.id) == invoice
        assert [e.action for e in audit_sink.events_for(invoice.id)] == ["create", "send"]

    def test_unpaid_invoice_cannot_be_marked_partially_paid(self, service, create_document, captured_logs):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)

        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            service.change_status(invoice, InvoiceStatus.PARTIALLY_PAID, ACTOR)

        assert exc_info.value.reason is not None
        assert any(r["message"] == "status_amount_mismatch" for r in captured_logs())

    def test_partially_paid_invoice_cannot_be_marked_paid(self, service, create_document):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)
        partial = service.apply_payment(invoice, Decimal("600.00"), "cash", actor_id=ACTOR)

        with pytest.raises(InvalidStatusTransitionError):
            service.change_status(partial, "paid", ACTOR)

        paid = service.apply_payment(partial, Decimal("462.00"), "cash", actor_id=ACTOR)
        assert paid.status == InvoiceStatus.PAID

    def test_unreceived_order_cannot_be_marked_received(self, service, create_document, repository):
        po = advance(service, create_document(DocumentType.PURCHASE_ORDER), "sent", "acknowledged")

        for target in ("received", "partially_received"):
            with pytest.raises(InvalidStatusTransitionError) as exc_info:
                service.change_status(po, target, ACTOR)
            assert exc_info.value.reason is not None

        assert repository.get(po.id) == po

    def test_partial_receipt_cannot_be_marked_received(self, service, create_document):
        po = advance(service, create_document(DocumentType.PURCHASE_ORDER), "sent", "acknowledged")
        partial = service.receive_items(po, [ReceiptLine("SKU-100", 4)], ACTOR)

        with pytest.raises(InvalidStatusTransitionError):
            service.change_status(partial, "received", ACTOR)

        received = service.receive_items(partial, [ReceiptLine("SKU-100", 6)], ACTOR)
        assert received.status == PurchaseOrderStatus.RECEIVED

    def test_other_moves_unaffected(self, service, create_document):
        invoice = advance(service, create_document(DocumentType.INVOICE), "sent", "overdue", "cancelled")
        assert invoice.status == InvoiceStatus.CANCELLED


# =============================================================================
# Stock reservation
# =============================================================================


@pytest.fixture
def limited_stock() -> InMemoryStockReservation:
    return InMemoryStockReservation(available={"SKU-100": 10})


@pytest.fixture
def stocked_service(repository, sequence_source, limited_stock, audit_sink, clock):
    return DocumentLifecycleService(
        repository, sequence_source,
        stock_reservation=limited_stock, audit_sink=audit_sink, clock=clock,
    )


class TestStockReservation:
    """Customer orders reserve on production start and release on cancel."""

    def _confirmed_order(self, stocked_service, customer, sample_line_items):
        order = stocked_service.create_document(
            "acme", DocumentType.CUSTOMER_ORDER, customer, sample_line_items, actor_id=ACTOR,
        )
        return stocked_service.change_status(order, "confirmed", ACTOR)

    def test_production_reserves_stock(self, stocked_service, limited_stock, customer, sample_line_items):
        order = self._confirmed_order(stocked_service, customer, sample_line_items)
        in_production = stocked_service.change_status(order, "in_production", ACTOR)

        assert in_production.reservation_token is not None
        assert limited_stock.is_reserved(in_production.reservation_token)
        assert limited_stock.available("SKU-100") == Decimal("0")

    def test_cancel_releases_reservation(self, stocked_service, limited_stock, customer, sample_line_items):
        order = self._confirmed_order(stocked_service, customer, sample_line_items)
        in_production = stocked_service.change_status(order, "in_production", ACTOR)
        token = in_production.reservation_token

        cancelled = stocked_service.change_status(in_production, "cancelled", ACTOR)

        assert cancelled.reservation_token is None
        assert not limited_stock.is_reserved(token)
        assert limited_stock.available("SKU-100") == Decimal("10")

    def test_failed_release_does_not_undo_cancel(
        self, repository, sequence_source, audit_sink, clock, customer, sample_line_items, captured_logs,
    ):
        stock = _ReleaseFailsStock()
        service = DocumentLifecycleService(
            repository, sequence_source, stock_reservation=stock, audit_sink=audit_sink, clock=clock,
        )
        order = service.create_document("acme", DocumentType.CUSTOMER_ORDER, customer, sample_line_items)
        order = advance(service, order, "confirmed", "in_production")
        token = order.reservation_token

        cancelled = service.change_status(order, "cancelled", ACTOR)

        assert cancelled.status == CustomerOrderStatus.CANCELLED
        assert cancelled.reservation_token is None
        assert repository.get(order.id) == cancelled
        assert [e.action for e in audit_sink.events_for(order.id)][-1] == "cancel"
        assert stock.is_reserved(token)
        failures = [r for r in captured_logs() if r["message"] == "stock_reservation_release_failed"]
        assert failures and failures[0]["level"] == "ERROR"
        assert failures[0]["reservation_token"] == token

    def test_cancel_without_stock_collaborator_logs_unreleased_token(
        self, stocked_service, repository, sequence_source, clock, customer, sample_line_items, captured_logs,
    ):
        order = self._confirmed_order(stocked_service, customer, sample_line_items)
        in_production = stocked_service.change_status(order, "in_production", ACTOR)
        token = in_production.reservation_token
        plain_service = DocumentLifecycleService(repository, sequence_source, clock=clock)

        cancelled = plain_service.change_status(in_production, "cancelled", ACTOR)

        assert cancelled.reservation_token is None
        warnings = [r for r in captured_logs() if r["message"] == "stock_reservation_not_released"]
        assert warnings and warnings[0]["reservation_token"] == token

    def test_refused_reservation_aborts_change(
        self, stocked_service, limited_stock, repository, customer,
    ):
        items = [LineItem("SKU-100", quantity=11, rate=100, tax_rate=18)]
        order = stocked_service.create_document("acme", DocumentType.CUSTOMER_ORDER, customer, items)
        order = stocked_service.change_status(order, "confirmed", ACTOR)

        with pytest.raises(StockReservationError):
            stocked_service.change_status(order, "in_production", ACTOR)

        assert repository.get(order.id).status == CustomerOrderStatus.CONFIRMED
        assert limited_stock.available("SKU-100") == Decimal("10")

    def test_reservation_compensated_when_save_fails(
        self, stocked_service, limited_stock, repository, customer, sample_line_items, captured_logs,
    ):
        order = self._confirmed_order(stocked_service, customer, sample_line_items)
        repository.save(order)  # someone else writes first

        with pytest.raises(ConcurrentModificationError):
            stocked_service.change_status(order, "in_production", ACTOR)

        assert limited_stock.available("SKU-100") == Decimal("10")
        assert any(r["message"] == "stock_reservation_compensated" for r in captured_logs())

    def test_rework_keeps_single_reservation(
        self, stocked_service, limited_stock, customer, sample_line_items,
    ):
        order = self._confirmed_order(stocked_service, customer, sample_line_items)
        order = advance(stocked_service, order, "in_production", "quality_check", "in_production")

        assert limited_stock.is_reserved(order.reservation_token)
        assert limited_stock.available("SKU-100") == Decimal("0")

    def test_no_reservation_for_other_types(self, stocked_service, limited_stock, supplier, sample_line_items):
        po = stocked_service.create_document("acme", DocumentType.PURCHASE_ORDER, supplier, sample_line_items)
        po = advance(stocked_service, po, "sent", "cancelled")
        assert po.reservation_token is None
        assert limited_stock.available("SKU-100") == Decimal("10")


# =============================================================================
# Line edits
# =============================================================================


class TestRecomputeAmounts:
    """Line items change only in editable statuses."""

    def test_draft_recompute(self, service, create_document, mixed_line_items):
        invoice = create_document(DocumentType.INVOICE)
        updated = service.recompute_amounts(invoice, mixed_line_items, ACTOR)

        assert updated.amount_summary.grand_total == Decimal("3022.97")
        assert updated.amount_summary.outstanding_amount == Decimal("3022.97")
        assert len(updated.line_amounts) == 2
        assert updated.version == 2
        assert updated.document_number == invoice.document_number

    def test_sent_quotation_still_editable(self, service, create_document, mixed_line_items):
        quotation = advance(
            service, create_document(DocumentType.QUOTATION), "pending_approval", "approved", "sent",
        )
        updated = service.recompute_amounts(quotation, mixed_line_items, ACTOR)
        assert updated.status == QuotationStatus.SENT
        assert updated.amount_summary.grand_total == Decimal("3022.97")

    def test_sent_invoice_not_editable(self, service, create_document, mixed_line_items):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)
        with pytest.raises(DocumentNotEditableError) as exc_info:
            service.recompute_amounts(invoice, mixed_line_items, ACTOR)
        assert exc_info.value.status == "sent"

    def test_invalid_lines_rejected(self, service, create_document):
        invoice = create_document(DocumentType.INVOICE)
        with pytest.raises(EmptyDocumentError):
            service.recompute_amounts(invoice, [], ACTOR)


# =============================================================================
# Quotation conversion
# =============================================================================


class TestConvertQuotation:
    """Accepted quotations become order payloads."""

    def test_accepted_quotation_converts(self, service, create_document, repository, audit_sink):
        quotation = advance(
            service, create_document(DocumentType.QUOTATION),
            "pending_approval", "approved", "sent", "accepted",
        )
        payload = service.convert_quotation_to_order(quotation, ACTOR)

        assert payload.source_document_id == quotation.id
        assert payload.source_document_number == "QUO/2024-25/0001"
        assert payload.line_items == quotation.line_items
        assert payload.amount_summary == quotation.amount_summary
        assert payload.party.role == PartyRole.CUSTOMER

        stored = repository.get(quotation.id)
        assert stored.status == QuotationStatus.CONVERTED
        assert stored.timestamp("converted_at") is not None
        assert audit_sink.events_for(quotation.id)[-1].action == "convert"

    @pytest.mark.parametrize("path", [(), ("pending_approval",), ("pending_approval", "approved", "sent")])
    def test_only_accepted_quotations_convert(self, service, create_document, path):
        quotation = advance(service, create_document(DocumentType.QUOTATION), *path)
        with pytest.raises(InvalidStatusTransitionError):
            service.convert_quotation_to_order(quotation, ACTOR)

    def test_non_quotation_rejected(self, service, create_document):
        with pytest.raises(ValueError):
            service.convert_quotation_to_order(create_document(DocumentType.INVOICE), ACTOR)


# =============================================================================
# Payments
# =============================================================================


class TestApplyPayment:
    """Invoice payments through the service."""

    def test_partial_then_full(self, service, create_document, clock):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)
        clock.tick()
        partial = service.apply_payment(invoice, Decimal("600.00"), PaymentMethod.BANK_TRANSFER, actor_id=ACTOR)

        assert partial.status == InvoiceStatus.PARTIALLY_PAID
        assert partial.amount_summary.paid_amount == Decimal("600.00")
        assert partial.amount_summary.outstanding_amount == Decimal("462.00")
        assert partial.timestamp("partially_paid_at") == clock.now()
        assert partial.payments[0].payment_date == date(2024, 6, 1)

        clock.tick()
        paid = service.apply_payment(partial, Decimal("462.00"), "upi", actor_id=ACTOR, reference="UTR-1")

        assert paid.status == InvoiceStatus.PAID
        assert paid.amount_summary.outstanding_amount == Decimal("0.00")
        assert paid.timestamp("paid_at") == clock.now()
        assert [p.amount for p in paid.payments] == [Decimal("600.00"), Decimal("462.00")]
        assert paid.payments[1].reference == "UTR-1"

    def test_overpayment_leaves_invoice_unchanged(self, service, create_document, repository, audit_sink):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)
        invoice = service.apply_payment(invoice, Decimal("600.00"), "cash", actor_id=ACTOR)

        with pytest.raises(InvalidPaymentAmountError):
            service.apply_payment(invoice, Decimal("500.00"), "cash", actor_id=ACTOR)

        stored = repository.get(invoice.id)
        assert stored == invoice
        assert stored.amount_summary.outstanding_amount == Decimal("462.00")
        assert len(stored.payments) == 1
        assert [e.action for e in audit_sink.events_for(invoice.id)][-1] == "apply_payment"
        assert len(audit_sink.events_for(invoice.id)) == 3

    def test_draft_invoice_payment_records_issue(self, service, create_document, audit_sink):
        invoice = create_document(DocumentType.INVOICE)
        paid = service.apply_payment(invoice, Decimal("100"), "cash", date(2024, 6, 5), ACTOR)

        assert paid.status == InvoiceStatus.PARTIALLY_PAID
        assert paid.timestamp("sent_at") is not None
        assert [h.to_status for h in paid.status_history] == ["draft", "sent", "partially_paid"]
        assert paid.payments[0].payment_date == date(2024, 6, 5)

        event = audit_sink.events_for(invoice.id)[-1]
        assert (event.from_status, event.to_status) == ("draft", "partially_paid")
        assert event.payload["amount"] == "100"
        assert event.payload["outstanding_amount"] == "962.00"

    def test_overdue_partial_payment_keeps_status_and_timestamps(self, service, create_document):
        invoice = advance(service, create_document(DocumentType.INVOICE), "sent", "overdue")
        paid = service.apply_payment(invoice, Decimal("10"), "cash", actor_id=ACTOR)

        assert paid.status == InvoiceStatus.OVERDUE
        assert paid.status_timestamps == invoice.status_timestamps
        assert len(paid.status_history) == len(invoice.status_history)

    def test_cancelled_invoice_rejects_payment(self, service, create_document):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "cancelled", ACTOR)
        with pytest.raises(InvalidStatusTransitionError):
            service.apply_payment(invoice, Decimal("10"), "cash", actor_id=ACTOR)

    @pytest.mark.parametrize("amount", ["NaN", "sNaN", "Infinity"])
    def test_non_finite_payment_leaves_invoice_unchanged(
        self, service, create_document, repository, audit_sink, amount,
    ):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)

        with pytest.raises(InvalidPaymentAmountError):
            service.apply_payment(invoice, Decimal(amount), "cash", actor_id=ACTOR)

        assert repository.get(invoice.id) == invoice
        assert len(audit_sink.events_for(invoice.id)) == 2

    def test_payment_finer_than_currency_unit_rejected(self, service, create_document, repository):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)

        with pytest.raises(InvalidPaymentAmountError):
            service.apply_payment(invoice, Decimal("0.001"), "cash", actor_id=ACTOR)

        assert repository.get(invoice.id).amount_summary.paid_amount == Decimal("0")

    def test_currency_unit_follows_config(self, customer, sample_line_items, clock):
        service = DocumentLifecycleService(
            InMemoryDocumentRepository(), InMemorySequenceSource(),
            config=DocumentConfig(currency_decimal_places=3), clock=clock,
        )
        invoice = service.create_document("acme", DocumentType.INVOICE, customer, sample_line_items)

        partial = service.apply_payment(invoice, Decimal("0.001"), "cash", actor_id=ACTOR)

        assert partial.status == InvoiceStatus.PARTIALLY_PAID
        assert partial.amount_summary.outstanding_amount == Decimal("1061.999")


# =============================================================================
# Goods receipt
# =============================================================================


class TestReceiveItems:
    """Purchase order receipts."""

    @pytest.fixture
    def acknowledged_po(self, service, create_document):
        return advance(service, create_document(DocumentType.PURCHASE_ORDER), "sent", "acknowledged")

    def test_partial_then_full_receipt(self, service, acknowledged_po, audit_sink):
        partial = service.receive_items(acknowledged_po, [ReceiptLine("SKU-100", 4)], ACTOR)

        assert partial.status == PurchaseOrderStatus.PARTIALLY_RECEIVED
        assert partial.received_quantities == {"SKU-100": Decimal("4")}
        assert partial.timestamp("first_receipt_at") is not None

        received = service.receive_items(partial, [ReceiptLine("SKU-100", "6")], ACTOR)

        assert received.status == PurchaseOrderStatus.RECEIVED
        assert received.received_quantities == {"SKU-100": Decimal("10")}
        assert received.timestamp("fully_received_at") is not None
        assert [e.action for e in audit_sink.events_for(received.id)][-2:] == ["receive_partial", "receive"]

    def test_full_receipt_in_one_go(self, service, acknowledged_po):
        received = service.receive_items(acknowledged_po, [ReceiptLine("SKU-100", 10)], ACTOR)
        assert received.status == PurchaseOrderStatus.RECEIVED
        assert received.timestamp("first_receipt_at") is None

    def test_second_partial_receipt_keeps_status(self, service, acknowledged_po, audit_sink):
        first = service.receive_items(acknowledged_po, [ReceiptLine("SKU-100", 2)], ACTOR)
        events_before = len(audit_sink.events_for(first.id))
        second = service.receive_items(first, [ReceiptLine("SKU-100", 3)], ACTOR)

        assert second.status == PurchaseOrderStatus.PARTIALLY_RECEIVED
        assert second.received_quantities == {"SKU-100": Decimal("5")}
        assert second.timestamp("first_receipt_at") == first.timestamp("first_receipt_at")
        assert len(audit_sink.events_for(first.id)) == events_before

    def test_over_receipt_rejected(self, service, acknowledged_po, repository):
        with pytest.raises(InvalidReceiptError):
            service.receive_items(acknowledged_po, [ReceiptLine("SKU-100", 11)], ACTOR)
        assert repository.get(acknowledged_po.id) == acknowledged_po

    def test_unknown_product_rejected(self, service, acknowledged_po):
        with pytest.raises(InvalidReceiptError):
            service.receive_items(acknowledged_po, [ReceiptLine("SKU-999", 1)], ACTOR)

    @pytest.mark.parametrize("quantity", ["0", "-1", "NaN", "Infinity"])
    def test_non_positive_quantity_rejected(self, service, acknowledged_po, quantity):
        with pytest.raises(InvalidReceiptError):
            service.receive_items(acknowledged_po, [ReceiptLine("SKU-100", quantity)], ACTOR)

    def test_empty_receipt_rejected(self, service, acknowledged_po):
        with pytest.raises(InvalidReceiptError):
            service.receive_items(acknowledged_po, [], ACTOR)

    def test_unacknowledged_order_rejected(self, service, create_document):
        sent = service.change_status(create_document(DocumentType.PURCHASE_ORDER), "sent", ACTOR)
        with pytest.raises(InvalidStatusTransitionError):
            service.receive_items(sent, [ReceiptLine("SKU-100", 1)], ACTOR)

    def test_non_purchase_order_rejected(self, service, create_document):
        with pytest.raises(ValueError):
            service.receive_items(create_document(DocumentType.INVOICE), [ReceiptLine("SKU-100", 1)], ACTOR)


# =============================================================================
# Time-based sweeps
# =============================================================================


class TestRefreshTimeBasedStatus:
    """Expiry and overdue detection against an as-of date."""

    @pytest.fixture
    def sent_quotation(self, service, create_document):
        dates = DocumentDates(issue_date=date(2024, 6, 1), valid_until=date(2024, 6, 30))
        return advance(
            service, create_document(DocumentType.QUOTATION, dates=dates),
            "pending_approval", "approved", "sent",
        )

    def test_lapsed_sent_quotation_expires(self, service, sent_quotation):
        expired = service.refresh_time_based_status(sent_quotation, as_of=date(2024, 7, 1))
        assert expired.status == QuotationStatus.EXPIRED
        assert expired.timestamp("expired_at") is not None

    def test_quotation_on_valid_until_date_not_expired(self, service, sent_quotation):
        assert service.refresh_time_based_status(sent_quotation, as_of=date(2024, 6, 30)) is sent_quotation

    def test_quotation_in_negotiation_not_expired(self, service, sent_quotation):
        negotiating = service.change_status(sent_quotation, "negotiation", ACTOR)
        result = service.refresh_time_based_status(negotiating, as_of=date(2024, 8, 1))
        assert result.status == QuotationStatus.NEGOTIATION

    def test_late_sent_invoice_becomes_overdue(self, service, create_document):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)
        overdue = service.refresh_time_based_status(invoice, as_of=date(2024, 7, 2))

        assert overdue.status == InvoiceStatus.OVERDUE
        assert overdue.timestamp("overdue_at") is not None

    def test_late_partially_paid_invoice_becomes_overdue(self, service, create_document):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)
        invoice = service.apply_payment(invoice, Decimal("100"), "cash", actor_id=ACTOR)
        assert service.refresh_time_based_status(invoice, as_of=date(2024, 7, 2)).status == InvoiceStatus.OVERDUE

    def test_invoice_before_due_date_unchanged(self, service, create_document):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)
        assert service.refresh_time_based_status(invoice, as_of=date(2024, 7, 1)) is invoice

    def test_draft_and_paid_invoices_unchanged(self, service, create_document):
        draft = create_document(DocumentType.INVOICE)
        assert service.refresh_time_based_status(draft, as_of=date(2025, 1, 1)) is draft

        paid = service.apply_payment(
            service.change_status(draft, "sent", ACTOR), Decimal("1062.00"), "cash", actor_id=ACTOR,
        )
        assert service.refresh_time_based_status(paid, as_of=date(2025, 1, 1)) is paid

    def test_defaults_to_clock_date(self, service, create_document, clock):
        invoice = service.change_status(create_document(DocumentType.INVOICE), "sent", ACTOR)
        assert service.refresh_time_based_status(invoice) is invoice
        clock.set_time(clock.now().replace(month=8))
        assert service.refresh_time_based_status(invoice).status == InvoiceStatus.OVERDUE

    def test_other_types_unchanged(self, service, create_document):
        order = create_document(DocumentType.CUSTOMER_ORDER)
        assert service.refresh_time_based_status(order, as_of=date(2030, 1, 1)) is order


class TestServiceWithoutOptionalCollaborators:
    """Stock and audit collaborators are optional."""

    def test_customer_order_lifecycle_without_stock(self, customer, sample_line_items, clock):
        service = DocumentLifecycleService(
            InMemoryDocumentRepository(), InMemorySequenceSource(), clock=clock,
        )
        order = service.create_document("acme", DocumentType.CUSTOMER_ORDER, customer, sample_line_items)
        order = advance(
            service, order,
            "confirmed", "in_production", "quality_check", "ready_for_dispatch", "dispatched", "delivered",
        )
        assert order.status == CustomerOrderStatus.DELIVERED
        assert order.reservation_token is None
        assert order.timestamp("delivered_at") is not None
        assert service.validator.is_terminal(DocumentType.CUSTOMER_ORDER, order.status)

    def test_invoice_lifecycle_without_audit_sink(self, customer, sample_line_items, clock):
        service = DocumentLifecycleService(InMemoryDocumentRepository(), InMemorySequenceSource(), clock=clock)
        invoice = service.create_document("acme", DocumentType.INVOICE, customer, sample_line_items)
        paid = service.apply_payment(invoice, Decimal("1062.00"), PaymentMethod.CASH)
        assert paid.status == InvoiceStatus.PAID

    def test_audit_events_are_per_operation(self, create_document, service, audit_sink):
        invoice = create_document(DocumentType.INVOICE)
        other = create_document(DocumentType.INVOICE)
        service.change_status(invoice, "sent", ACTOR)

        assert len(audit_sink.events) == 3
        assert [e.action for e in audit_sink.events_for(other.id)] == ["create"]
        assert isinstance(audit_sink, InMemoryAuditSink)


