"""
Financial Document Domain Models (``erp_kernel.domain.documents``).

Responsibility
--------------
Frozen dataclass value objects for the nouns of the document lifecycle:
document types and their statuses, line items and their derived amounts,
amount summaries, payments, status history, lifecycle events and the
quotation-to-order payload.

Architecture position
---------------------
**Kernel domain layer** -- pure data definitions with ZERO I/O.  Consumed
by ``erp_engines`` and ``erp_modules.documents``.

Invariants enforced
-------------------
* All models are ``frozen=True``; changes produce new instances via
  ``dataclasses.replace``.
* All monetary and quantity fields are ``Decimal`` -- NEVER ``float``.
* ``PaymentEvent`` and ``LifecycleEvent`` are append-only records.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

from erp_kernel.domain.values import ZERO, to_decimal


# -----------------------------------------------------------------------------
# Document types and statuses
# -----------------------------------------------------------------------------


class PartyRole(str, Enum):
    """Counterparty role on a document."""
    CUSTOMER = "customer"
    SUPPLIER = "supplier"


class QuotationStatus(str, Enum):
    """Quotation lifecycle states."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    SENT = "sent"
    ACKNOWLEDGED = "acknowledged"
    NEGOTIATION = "negotiation"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    CONVERTED = "converted"
    CANCELLED = "cancelled"


class CustomerOrderStatus(str, Enum):
    """Customer order lifecycle states."""
    DRAFT = "draft"
    CONFIRMED = "confirmed"
    IN_PRODUCTION = "in_production"
    QUALITY_CHECK = "quality_check"
    READY_FOR_DISPATCH = "ready_for_dispatch"
    DISPATCHED = "dispatched"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PurchaseOrderStatus(str, Enum):
    """Purchase order lifecycle states."""
    DRAFT = "draft"
    SENT = "sent"
    ACKNOWLEDGED = "acknowledged"
    PARTIALLY_RECEIVED = "partially_received"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class InvoiceStatus(str, Enum):
    """Invoice lifecycle states."""
    DRAFT = "draft"
    SENT = "sent"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    PAID = "paid"
    CANCELLED = "cancelled"


class DocumentType(str, Enum):
    """The four financial document variants sharing the lifecycle engine."""
    QUOTATION = "quotation"
    CUSTOMER_ORDER = "customer_order"
    PURCHASE_ORDER = "purchase_order"
    INVOICE = "invoice"

    @property
    def status_enum(self) -> type[Enum]:
        """The status enum governing this document type."""
        return _STATUS_ENUMS[self]

    @property
    def party_role(self) -> PartyRole:
        """Purchase orders face suppliers; everything else faces customers."""
        if self is DocumentType.PURCHASE_ORDER:
            return PartyRole.SUPPLIER
        return PartyRole.CUSTOMER

    def parse_status(self, value: str | Enum) -> Enum:
        """
        Resolve ``value`` to a member of this type's status enum.

        Raises:
            ValueError: if ``value`` is not a status of this document type.
        """
        return self.status_enum(status_value(value))


_STATUS_ENUMS: dict[DocumentType, type[Enum]] = {
    DocumentType.QUOTATION: QuotationStatus,
    DocumentType.CUSTOMER_ORDER: CustomerOrderStatus,
    DocumentType.PURCHASE_ORDER: PurchaseOrderStatus,
    DocumentType.INVOICE: InvoiceStatus,
}


def status_value(status: str | Enum) -> str:
    """Plain string value of a status enum member or string."""
    if isinstance(status, Enum):
        return str(status.value)
    return str(status)


# -----------------------------------------------------------------------------
# Line items
# -----------------------------------------------------------------------------


class DiscountKind(str, Enum):
    """How a line discount is expressed."""
    PERCENTAGE = "percentage"
    ABSOLUTE = "absolute"


class SupplyType(str, Enum):
    """
    Place-of-supply flag.

    Intra-state supplies split tax into two equal components (CGST + SGST);
    inter-state supplies carry a single component (IGST).
    """
    INTRA_STATE = "intra_state"
    INTER_STATE = "inter_state"


@dataclass(frozen=True)
class Discount:
    """A line discount; ``value`` is a percent or an absolute amount."""
    kind: DiscountKind
    value: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", DiscountKind(self.kind))
        object.__setattr__(self, "value", to_decimal(self.value, finite=False))

    @classmethod
    def percent(cls, value: Decimal | int | str) -> Discount:
        return cls(DiscountKind.PERCENTAGE, to_decimal(value, finite=False))

    @classmethod
    def absolute(cls, value: Decimal | int | str) -> Discount:
        return cls(DiscountKind.ABSOLUTE, to_decimal(value, finite=False))


@dataclass(frozen=True)
class LineItem:
    """One priced unit within a document."""
    product_id: str
    quantity: Decimal
    rate: Decimal
    tax_rate: Decimal = ZERO  # percent, e.g. 18 for 18%
    discount: Discount | None = None
    supply_type: SupplyType = SupplyType.INTRA_STATE
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "quantity", to_decimal(self.quantity, finite=False))
        object.__setattr__(self, "rate", to_decimal(self.rate, finite=False))
        object.__setattr__(self, "tax_rate", to_decimal(self.tax_rate, finite=False))
        object.__setattr__(self, "supply_type", SupplyType(self.supply_type))


@dataclass(frozen=True)
class TaxComponent:
    """One named slice of a line's tax (CGST, SGST or IGST)."""
    name: str
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class LineAmounts:
    """Derived amounts for one line item.  Never stored independently."""
    gross: Decimal
    discount_amount: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal
    line_total: Decimal
    tax_breakup: tuple[TaxComponent, ...] = ()


@dataclass(frozen=True)
class AmountSummary:
    """
    Aggregate of a document's line amounts.

    ``paid_amount`` and ``outstanding_amount`` are only populated for
    invoices; they stay ``None`` on every other document type.
    """
    subtotal: Decimal
    total_discount: Decimal
    taxable_amount: Decimal
    total_tax: Decimal
    rounding_adjustment: Decimal
    grand_total: Decimal
    paid_amount: Decimal | None = None
    outstanding_amount: Decimal | None = None

    def for_invoice(self, paid_amount: Decimal = ZERO) -> AmountSummary:
        """Return a copy carrying invoice payment fields."""
        return replace(
            self,
            paid_amount=paid_amount,
            outstanding_amount=self.grand_total - paid_amount,
        )

    @property
    def tracks_payments(self) -> bool:
        return self.paid_amount is not None


# -----------------------------------------------------------------------------
# Document
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class Party:
    """Customer or supplier reference."""
    party_id: str
    name: str = ""
    role: PartyRole = PartyRole.CUSTOMER


@dataclass(frozen=True)
class DocumentDates:
    """Key dates; which optional date applies depends on the document type."""
    issue_date: date
    valid_until: date | None = None  # quotation
    expected_delivery_date: date | None = None  # orders
    due_date: date | None = None  # invoice


class PaymentMethod(str, Enum):
    """How an invoice payment was settled."""
    CASH = "cash"
    CHEQUE = "cheque"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"
    CARD = "card"
    CREDIT = "credit"
    MIXED = "mixed"


@dataclass(frozen=True)
class PaymentEvent:
    """A payment recorded against an invoice.  Append-only."""
    event_id: UUID
    invoice_id: UUID
    amount: Decimal
    method: PaymentMethod
    payment_date: date
    recorded_by: str | None = None
    reference: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "method", PaymentMethod(self.method))


@dataclass(frozen=True)
class StatusChange:
    """One entry of a document's status history."""
    from_status: str | None
    to_status: str
    changed_at: datetime
    actor_id: str | None = None


@dataclass(frozen=True)
class ReceiptLine:
    """Quantity of a product received against a purchase order."""
    product_id: str
    received_quantity: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "received_quantity", to_decimal(self.received_quantity, finite=False))


@dataclass(frozen=True)
class FinancialDocument:
    """
    A quotation, customer order, purchase order or invoice.

    Identity is (company, document number, financial year).  ``version``
    is the optimistic concurrency token owned by the persistence
    collaborator; the engine never changes it.
    """
    id: UUID
    company_id: str
    document_type: DocumentType
    document_number: str
    financial_year: str
    party: Party
    line_items: tuple[LineItem, ...]
    line_amounts: tuple[LineAmounts, ...]
    amount_summary: AmountSummary
    status: Enum
    dates: DocumentDates
    status_timestamps: Mapping[str, datetime] = field(default_factory=dict)
    status_history: tuple[StatusChange, ...] = ()
    payments: tuple[PaymentEvent, ...] = ()
    received_quantities: Mapping[str, Decimal] = field(default_factory=dict)
    reservation_token: str | None = None
    source_reference: str | None = None
    created_by: str | None = None
    created_at: datetime | None = None
    modified_by: str | None = None
    modified_at: datetime | None = None
    version: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "document_type", DocumentType(self.document_type))
        object.__setattr__(self, "status", self.document_type.parse_status(self.status))
        object.__setattr__(
            self, "status_timestamps", MappingProxyType(dict(self.status_timestamps))
        )
        object.__setattr__(
            self, "received_quantities", MappingProxyType(dict(self.received_quantities))
        )

    @property
    def status_value(self) -> str:
        return status_value(self.status)

    def timestamp(self, field_name: str) -> datetime | None:
        return self.status_timestamps.get(field_name)

    @property
    def ordered_quantities(self) -> dict[str, Decimal]:
        """Total ordered quantity per product across all lines."""
        totals: dict[str, Decimal] = {}
        for item in self.line_items:
            totals[item.product_id] = totals.get(item.product_id, ZERO) + item.quantity
        return totals


# -----------------------------------------------------------------------------
# Outbound payloads
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class OrderDraftPayload:
    """Data an external collaborator needs to create a customer order."""
    company_id: str
    party: Party
    line_items: tuple[LineItem, ...]
    amount_summary: AmountSummary
    source_document_id: UUID
    source_document_number: str
    source_document_type: DocumentType = DocumentType.QUOTATION


@dataclass(frozen=True)
class LifecycleEvent:
    """
    Immutable audit record of a successful create, status change or payment.

    Emitted once per successful operation for the external audit sink.
    """
    event_id: UUID
    document_id: UUID
    document_type: DocumentType
    action: str
    from_status: str | None
    to_status: str
    actor_id: str | None
    timestamp: datetime
    payload: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))
