"""
Financial Documents Module.

Handles the lifecycle of quotations, customer orders, purchase orders
and invoices: pricing, numbering, status changes, payments and goods
receipt.
"""

from erp_modules.documents.collaborators import (
    AuditSink,
    DocumentRepository,
    InMemoryAuditSink,
    InMemoryDocumentRepository,
    InMemorySequenceSource,
    InMemoryStockReservation,
    SequenceSource,
    StockReservation,
)
from erp_modules.documents.config import DocumentConfig, load_document_config
from erp_modules.documents.service import DocumentLifecycleService
from erp_modules.documents.workflows import (
    CUSTOMER_ORDER_WORKFLOW,
    DOCUMENT_WORKFLOWS,
    INVOICE_WORKFLOW,
    PURCHASE_ORDER_WORKFLOW,
    QUOTATION_WORKFLOW,
    STATUS_TIMESTAMP_FIELDS,
)

__all__ = [
    "DocumentLifecycleService",
    "DocumentConfig",
    "load_document_config",
    "DocumentRepository",
    "SequenceSource",
    "StockReservation",
    "AuditSink",
    "InMemoryDocumentRepository",
    "InMemorySequenceSource",
    "InMemoryStockReservation",
    "InMemoryAuditSink",
    "QUOTATION_WORKFLOW",
    "CUSTOMER_ORDER_WORKFLOW",
    "PURCHASE_ORDER_WORKFLOW",
    "INVOICE_WORKFLOW",
    "DOCUMENT_WORKFLOWS",
    "STATUS_TIMESTAMP_FIELDS",
]
