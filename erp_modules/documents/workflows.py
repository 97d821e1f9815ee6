"""
Financial Document Workflows.

State machines for quotations, customer orders, purchase orders and
invoices, plus the table of status timestamp fields written when a
document enters a status.
"""

from types import MappingProxyType

from erp_kernel.domain.documents import DocumentType
from erp_kernel.domain.workflow import Transition, Workflow
from erp_kernel.logging_config import get_logger

logger = get_logger("modules.documents.workflows")


# -----------------------------------------------------------------------------
# Quotation Workflow
# -----------------------------------------------------------------------------

QUOTATION_WORKFLOW = Workflow(
    name="quotation",
    description="Sales quotation from draft through approval to conversion",
    initial_state="draft",
    states=(
        "draft",
        "pending_approval",
        "approved",
        "sent",
        "acknowledged",
        "negotiation",
        "accepted",
        "rejected",
        "expired",
        "converted",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "pending_approval", action="submit"),
        Transition("draft", "cancelled", action="cancel"),
        Transition("pending_approval", "approved", action="approve"),
        Transition("pending_approval", "rejected", action="reject"),
        Transition("pending_approval", "cancelled", action="cancel"),
        Transition("approved", "sent", action="send"),
        Transition("approved", "cancelled", action="cancel"),
        Transition("sent", "acknowledged", action="acknowledge"),
        Transition("sent", "negotiation", action="negotiate"),
        Transition("sent", "accepted", action="accept"),
        Transition("sent", "rejected", action="reject"),
        Transition("sent", "expired", action="expire"),
        Transition("sent", "cancelled", action="cancel"),
        Transition("negotiation", "accepted", action="accept"),
        Transition("negotiation", "rejected", action="reject"),
        Transition("negotiation", "cancelled", action="cancel"),
        Transition("accepted", "converted", action="convert"),
    ),
)

logger.info(
    "quotation_workflow_registered",
    extra={
        "workflow_name": QUOTATION_WORKFLOW.name,
        "state_count": len(QUOTATION_WORKFLOW.states),
        "transition_count": len(QUOTATION_WORKFLOW.transitions),
    },
)


# -----------------------------------------------------------------------------
# Customer Order Workflow
# -----------------------------------------------------------------------------

CUSTOMER_ORDER_WORKFLOW = Workflow(
    name="customer_order",
    description="Customer order through production, inspection and delivery",
    initial_state="draft",
    states=(
        "draft",
        "confirmed",
        "in_production",
        "quality_check",
        "ready_for_dispatch",
        "dispatched",
        "delivered",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "confirmed", action="confirm"),
        Transition("draft", "cancelled", action="cancel"),
        Transition("confirmed", "in_production", action="start_production"),
        Transition("confirmed", "cancelled", action="cancel"),
        Transition("in_production", "quality_check", action="inspect"),
        Transition("in_production", "cancelled", action="cancel"),
        Transition("quality_check", "ready_for_dispatch", action="pass_inspection"),
        Transition("quality_check", "in_production", action="rework"),
        Transition("ready_for_dispatch", "dispatched", action="dispatch"),
        Transition("dispatched", "delivered", action="deliver"),
    ),
)

logger.info(
    "customer_order_workflow_registered",
    extra={
        "workflow_name": CUSTOMER_ORDER_WORKFLOW.name,
        "state_count": len(CUSTOMER_ORDER_WORKFLOW.states),
        "transition_count": len(CUSTOMER_ORDER_WORKFLOW.transitions),
    },
)


# -----------------------------------------------------------------------------
# Purchase Order Workflow
# -----------------------------------------------------------------------------

PURCHASE_ORDER_WORKFLOW = Workflow(
    name="purchase_order",
    description="Supplier purchase order through goods receipt",
    initial_state="draft",
    states=(
        "draft",
        "sent",
        "acknowledged",
        "partially_received",
        "received",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "sent", action="send"),
        Transition("draft", "cancelled", action="cancel"),
        Transition("sent", "acknowledged", action="acknowledge"),
        Transition("sent", "cancelled", action="cancel"),
        Transition("acknowledged", "partially_received", action="receive_partial"),
        Transition("acknowledged", "received", action="receive"),
        Transition("acknowledged", "cancelled", action="cancel"),
        Transition("partially_received", "received", action="receive"),
        Transition("partially_received", "cancelled", action="cancel"),
    ),
)

logger.info(
    "purchase_order_workflow_registered",
    extra={
        "workflow_name": PURCHASE_ORDER_WORKFLOW.name,
        "state_count": len(PURCHASE_ORDER_WORKFLOW.states),
        "transition_count": len(PURCHASE_ORDER_WORKFLOW.transitions),
    },
)


# -----------------------------------------------------------------------------
# Invoice Workflow
# -----------------------------------------------------------------------------

INVOICE_WORKFLOW = Workflow(
    name="invoice",
    description="Customer invoice through partial and full payment",
    initial_state="draft",
    states=(
        "draft",
        "sent",
        "partially_paid",
        "overdue",
        "paid",
        "cancelled",
    ),
    transitions=(
        Transition("draft", "sent", action="send"),
        Transition("draft", "cancelled", action="cancel"),
        Transition("sent", "paid", action="record_full_payment"),
        Transition("sent", "partially_paid", action="record_partial_payment"),
        Transition("sent", "overdue", action="mark_overdue"),
        Transition("sent", "cancelled", action="cancel"),
        Transition("partially_paid", "paid", action="record_full_payment"),
        Transition("partially_paid", "overdue", action="mark_overdue"),
        Transition("partially_paid", "cancelled", action="cancel"),
        Transition("overdue", "paid", action="record_full_payment"),
        Transition("overdue", "partially_paid", action="record_partial_payment"),
        Transition("overdue", "cancelled", action="cancel"),
    ),
)

logger.info(
    "invoice_workflow_registered",
    extra={
        "workflow_name": INVOICE_WORKFLOW.name,
        "state_count": len(INVOICE_WORKFLOW.states),
        "transition_count": len(INVOICE_WORKFLOW.transitions),
    },
)


DOCUMENT_WORKFLOWS = MappingProxyType({
    DocumentType.QUOTATION: QUOTATION_WORKFLOW,
    DocumentType.CUSTOMER_ORDER: CUSTOMER_ORDER_WORKFLOW,
    DocumentType.PURCHASE_ORDER: PURCHASE_ORDER_WORKFLOW,
    DocumentType.INVOICE: INVOICE_WORKFLOW,
})


# -----------------------------------------------------------------------------
# Status timestamps: (document type, status entered) -> field name
# -----------------------------------------------------------------------------

STATUS_TIMESTAMP_FIELDS = MappingProxyType({
    (DocumentType.QUOTATION, "pending_approval"): "submitted_at",
    (DocumentType.QUOTATION, "approved"): "approved_at",
    (DocumentType.QUOTATION, "sent"): "sent_at",
    (DocumentType.QUOTATION, "acknowledged"): "acknowledged_at",
    (DocumentType.QUOTATION, "negotiation"): "negotiation_started_at",
    (DocumentType.QUOTATION, "accepted"): "accepted_at",
    (DocumentType.QUOTATION, "rejected"): "rejected_at",
    (DocumentType.QUOTATION, "expired"): "expired_at",
    (DocumentType.QUOTATION, "converted"): "converted_at",
    (DocumentType.QUOTATION, "cancelled"): "cancelled_at",

    (DocumentType.CUSTOMER_ORDER, "confirmed"): "confirmed_at",
    (DocumentType.CUSTOMER_ORDER, "in_production"): "production_started_at",
    (DocumentType.CUSTOMER_ORDER, "quality_check"): "quality_checked_at",
    (DocumentType.CUSTOMER_ORDER, "ready_for_dispatch"): "ready_for_dispatch_at",
    (DocumentType.CUSTOMER_ORDER, "dispatched"): "dispatched_at",
    (DocumentType.CUSTOMER_ORDER, "delivered"): "delivered_at",
    (DocumentType.CUSTOMER_ORDER, "cancelled"): "cancelled_at",

    (DocumentType.PURCHASE_ORDER, "sent"): "sent_at",
    (DocumentType.PURCHASE_ORDER, "acknowledged"): "acknowledged_at",
    (DocumentType.PURCHASE_ORDER, "partially_received"): "first_receipt_at",
    (DocumentType.PURCHASE_ORDER, "received"): "fully_received_at",
    (DocumentType.PURCHASE_ORDER, "cancelled"): "cancelled_at",

    (DocumentType.INVOICE, "sent"): "sent_at",
    (DocumentType.INVOICE, "partially_paid"): "partially_paid_at",
    (DocumentType.INVOICE, "paid"): "paid_at",
    (DocumentType.INVOICE, "overdue"): "overdue_at",
    (DocumentType.INVOICE, "cancelled"): "cancelled_at",
})


def timestamp_field(document_type: DocumentType, status: str) -> str | None:
    """Timestamp field written on entering ``status``; None for ``draft``."""
    return STATUS_TIMESTAMP_FIELDS.get((DocumentType(document_type), status))
