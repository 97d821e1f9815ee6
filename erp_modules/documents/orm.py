"""
Financial Document ORM Models (``erp_modules.documents.orm``).

Responsibility
--------------
SQLAlchemy persistence models for financial documents.  Maps the frozen
``FinancialDocument`` dataclass (and its line items and payment events)
to three tables.

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``erp_kernel.db.base``
and the kernel domain types.  MUST NOT be imported by ``erp_kernel``.

Invariants enforced
-------------------
* (company_id, document_type, document_number, financial_year) is unique.
* ``version`` is the optimistic concurrency token; only the repository
  changes it.
* Payment rows are only ever added, never updated or deleted.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_kernel.db.base import TrackedBase
from erp_kernel.domain.documents import (
    AmountSummary,
    Discount,
    DocumentDates,
    FinancialDocument,
    LineAmounts,
    LineItem,
    Party,
    PartyRole,
    PaymentEvent,
    StatusChange,
    TaxComponent,
)


def _timestamps_to_json(timestamps) -> dict[str, str]:
    return {name: value.isoformat() for name, value in timestamps.items()}


def _timestamps_from_json(data: dict[str, str] | None) -> dict[str, datetime]:
    return {name: datetime.fromisoformat(value) for name, value in (data or {}).items()}


def _history_to_json(history) -> list[dict[str, Any]]:
    return [
        {
            "from_status": change.from_status,
            "to_status": change.to_status,
            "changed_at": change.changed_at.isoformat(),
            "actor_id": change.actor_id,
        }
        for change in history
    ]


def _history_from_json(data: list[dict[str, Any]] | None) -> tuple[StatusChange, ...]:
    return tuple(
        StatusChange(
            from_status=entry["from_status"],
            to_status=entry["to_status"],
            changed_at=datetime.fromisoformat(entry["changed_at"]),
            actor_id=entry.get("actor_id"),
        )
        for entry in (data or [])
    )


# ---------------------------------------------------------------------------
# 1. FinancialDocumentModel
# ---------------------------------------------------------------------------


class FinancialDocumentModel(TrackedBase):
    """
    ORM model for quotations, customer orders, purchase orders and invoices.

    Maps to the ``FinancialDocument`` frozen dataclass.  Lines and payments
    live in child tables.

    Guarantees:
        - Monetary fields use Decimal (Numeric(38,9) via type_annotation_map).
        - status and document_type stored as string enum values.
        - Status timestamps, history and received quantities stored as JSON.
    """

    __tablename__ = "financial_documents"

    __table_args__ = (
        UniqueConstraint(
            "company_id", "document_type", "document_number", "financial_year",
            name="uq_financial_documents_number",
        ),
        Index("idx_financial_documents_company_type", "company_id", "document_type"),
        Index("idx_financial_documents_status", "status"),
    )

    company_id: Mapped[str] = mapped_column(String(100), nullable=False)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False)
    document_number: Mapped[str] = mapped_column(String(100), nullable=False)
    financial_year: Mapped[str] = mapped_column(String(7), nullable=False)

    party_id: Mapped[str] = mapped_column(String(100), nullable=False)
    party_name: Mapped[str] = mapped_column(String(255), default="")
    party_role: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(String(50), default="draft")

    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    valid_until: Mapped[date | None] = mapped_column(Date, nullable=True)
    expected_delivery_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    total_discount: Mapped[Decimal] = mapped_column(nullable=False)
    taxable_amount: Mapped[Decimal] = mapped_column(nullable=False)
    total_tax: Mapped[Decimal] = mapped_column(nullable=False)
    rounding_adjustment: Mapped[Decimal] = mapped_column(nullable=False)
    grand_total: Mapped[Decimal] = mapped_column(nullable=False)
    paid_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    outstanding_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    status_timestamps: Mapped[dict] = mapped_column(JSON, default=dict)
    status_history: Mapped[list] = mapped_column(JSON, default=list)
    received_quantities: Mapped[dict] = mapped_column(JSON, default=dict)

    reservation_token: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    lines: Mapped[list["FinancialDocumentLineModel"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FinancialDocumentLineModel.line_number",
    )

    payments: Mapped[list["FinancialDocumentPaymentModel"]] = relationship(
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="FinancialDocumentPaymentModel.sequence",
    )

    def to_dto(self) -> FinancialDocument:
        """Convert ORM model to frozen dataclass."""
        summary = AmountSummary(
            subtotal=self.subtotal,
            total_discount=self.total_discount,
            taxable_amount=self.taxable_amount,
            total_tax=self.total_tax,
            rounding_adjustment=self.rounding_adjustment,
            grand_total=self.grand_total,
            paid_amount=self.paid_amount,
            outstanding_amount=self.outstanding_amount,
        )
        return FinancialDocument(
            id=self.id,
            company_id=self.company_id,
            document_type=self.document_type,
            document_number=self.document_number,
            financial_year=self.financial_year,
            party=Party(self.party_id, self.party_name, PartyRole(self.party_role)),
            line_items=tuple(line.to_line_item() for line in self.lines),
            line_amounts=tuple(line.to_line_amounts() for line in self.lines),
            amount_summary=summary,
            status=self.status,
            dates=DocumentDates(
                issue_date=self.issue_date,
                valid_until=self.valid_until,
                expected_delivery_date=self.expected_delivery_date,
                due_date=self.due_date,
            ),
            status_timestamps=_timestamps_from_json(self.status_timestamps),
            status_history=_history_from_json(self.status_history),
            payments=tuple(p.to_dto() for p in self.payments),
            received_quantities={
                k: Decimal(v) for k, v in (self.received_quantities or {}).items()
            },
            reservation_token=self.reservation_token,
            source_reference=self.source_reference,
            created_by=self.created_by_id,
            created_at=self.created_at,
            modified_by=self.updated_by_id,
            modified_at=self.updated_at,
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: FinancialDocument) -> "FinancialDocumentModel":
        """Create ORM model from frozen dataclass."""
        model = cls(id=dto.id)
        model.update_from_dto(dto)
        return model

    def update_from_dto(self, dto: FinancialDocument) -> None:
        """Copy every field of ``dto`` onto this row; append new payments."""
        summary = dto.amount_summary
        self.company_id = dto.company_id
        self.document_type = dto.document_type.value
        self.document_number = dto.document_number
        self.financial_year = dto.financial_year
        self.party_id = dto.party.party_id
        self.party_name = dto.party.name
        self.party_role = dto.party.role.value
        self.status = dto.status_value
        self.issue_date = dto.dates.issue_date
        self.valid_until = dto.dates.valid_until
        self.expected_delivery_date = dto.dates.expected_delivery_date
        self.due_date = dto.dates.due_date
        self.subtotal = summary.subtotal
        self.total_discount = summary.total_discount
        self.taxable_amount = summary.taxable_amount
        self.total_tax = summary.total_tax
        self.rounding_adjustment = summary.rounding_adjustment
        self.grand_total = summary.grand_total
        self.paid_amount = summary.paid_amount
        self.outstanding_amount = summary.outstanding_amount
        self.status_timestamps = _timestamps_to_json(dto.status_timestamps)
        self.status_history = _history_to_json(dto.status_history)
        self.received_quantities = {k: str(v) for k, v in dto.received_quantities.items()}
        self.reservation_token = dto.reservation_token
        self.source_reference = dto.source_reference
        self.created_by_id = dto.created_by
        self.created_at = dto.created_at
        self.updated_by_id = dto.modified_by
        self.updated_at = dto.modified_at
        self.version = dto.version

        self.lines = [
            FinancialDocumentLineModel.from_dto(index, item, amounts)
            for index, (item, amounts) in enumerate(zip(dto.line_items, dto.line_amounts))
        ]

        known = {p.id for p in self.payments}
        for sequence, event in enumerate(dto.payments):
            if event.event_id not in known:
                self.payments.append(FinancialDocumentPaymentModel.from_dto(sequence, event))

    def __repr__(self) -> str:
        return (
            f"<FinancialDocumentModel {self.document_number} "
            f"type={self.document_type} status={self.status} v{self.version}>"
        )


# ---------------------------------------------------------------------------
# 2. FinancialDocumentLineModel
# ---------------------------------------------------------------------------


class FinancialDocumentLineModel(TrackedBase):
    """
    ORM model for document line items together with their derived amounts.

    Lines are rewritten as a whole whenever the document's line items are
    recomputed.
    """

    __tablename__ = "financial_document_lines"

    __table_args__ = (
        Index("idx_financial_document_lines_document_id", "document_id"),
    )

    document_id: Mapped[UUID] = mapped_column(
        ForeignKey("financial_documents.id"), nullable=False
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    product_id: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(500), default="")
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    rate: Mapped[Decimal] = mapped_column(nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(nullable=False)
    discount_kind: Mapped[str | None] = mapped_column(String(20), nullable=True)
    discount_value: Mapped[Decimal | None] = mapped_column(nullable=True)
    supply_type: Mapped[str] = mapped_column(String(20), nullable=False)

    gross: Mapped[Decimal] = mapped_column(nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(nullable=False)
    taxable_amount: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(nullable=False)
    line_total: Mapped[Decimal] = mapped_column(nullable=False)
    tax_breakup: Mapped[list] = mapped_column(JSON, default=list)

    document: Mapped["FinancialDocumentModel"] = relationship(back_populates="lines")

    def to_line_item(self) -> LineItem:
        discount = None
        if self.discount_kind is not None:
            discount = Discount(self.discount_kind, self.discount_value)
        return LineItem(
            product_id=self.product_id,
            quantity=self.quantity,
            rate=self.rate,
            tax_rate=self.tax_rate,
            discount=discount,
            supply_type=self.supply_type,
            description=self.description,
        )

    def to_line_amounts(self) -> LineAmounts:
        return LineAmounts(
            gross=self.gross,
            discount_amount=self.discount_amount,
            taxable_amount=self.taxable_amount,
            tax_amount=self.tax_amount,
            line_total=self.line_total,
            tax_breakup=tuple(
                TaxComponent(c["name"], Decimal(c["rate"]), Decimal(c["amount"]))
                for c in (self.tax_breakup or [])
            ),
        )

    @classmethod
    def from_dto(
        cls, index: int, item: LineItem, amounts: LineAmounts,
    ) -> "FinancialDocumentLineModel":
        return cls(
            line_number=index + 1,
            product_id=item.product_id,
            description=item.description,
            quantity=item.quantity,
            rate=item.rate,
            tax_rate=item.tax_rate,
            discount_kind=item.discount.kind.value if item.discount else None,
            discount_value=item.discount.value if item.discount else None,
            supply_type=item.supply_type.value,
            gross=amounts.gross,
            discount_amount=amounts.discount_amount,
            taxable_amount=amounts.taxable_amount,
            tax_amount=amounts.tax_amount,
            line_total=amounts.line_total,
            tax_breakup=[
                {"name": c.name, "rate": str(c.rate), "amount": str(c.amount)}
                for c in amounts.tax_breakup
            ],
        )

    def __repr__(self) -> str:
        return f"<FinancialDocumentLineModel line={self.line_number} total={self.line_total}>"


# ---------------------------------------------------------------------------
# 3. FinancialDocumentPaymentModel
# ---------------------------------------------------------------------------


class FinancialDocumentPaymentModel(TrackedBase):
    """
    ORM model for invoice payment events.  Append-only.

    The row id is the payment event id.
    """

    __tablename__ = "financial_document_payments"

    __table_args__ = (
        Index("idx_financial_document_payments_document_id", "document_id"),
    )

    document_id: Mapped[UUID] = mapped_column(
        ForeignKey("financial_documents.id"), nullable=False
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    recorded_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    document: Mapped["FinancialDocumentModel"] = relationship(back_populates="payments")

    def to_dto(self) -> PaymentEvent:
        return PaymentEvent(
            event_id=self.id,
            invoice_id=self.document_id,
            amount=self.amount,
            method=self.method,
            payment_date=self.payment_date,
            recorded_by=self.recorded_by,
            reference=self.reference,
        )

    @classmethod
    def from_dto(cls, sequence: int, event: PaymentEvent) -> "FinancialDocumentPaymentModel":
        return cls(
            id=event.event_id,
            sequence=sequence,
            amount=event.amount,
            method=event.method.value,
            payment_date=event.payment_date,
            recorded_by=event.recorded_by,
            reference=event.reference,
            created_by_id=event.recorded_by,
        )

    def __repr__(self) -> str:
        return f"<FinancialDocumentPaymentModel {self.id} amount={self.amount}>"
