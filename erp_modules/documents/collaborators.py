"""
Financial Document Collaborators.

The narrow interfaces the lifecycle service consumes (document storage,
atomic sequences, stock reservation, audit trail) and in-memory
implementations of each.  The in-memory versions are complete,
thread-safe implementations used by tests and single-process callers;
SQL-backed storage lives in ``repository.py`` and
``erp_kernel.services.sequence_service``.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from dataclasses import replace
from decimal import Decimal
from typing import Mapping, Protocol, Sequence, runtime_checkable
from uuid import UUID, uuid4

from erp_engines.numbering import SequenceSource
from erp_kernel.domain.documents import FinancialDocument, LifecycleEvent, LineItem
from erp_kernel.domain.values import ZERO, to_decimal
from erp_kernel.exceptions import (
    ConcurrentModificationError,
    DocumentNotFoundError,
    StockReservationError,
)
from erp_kernel.logging_config import get_logger

logger = get_logger("modules.documents.collaborators")


# -----------------------------------------------------------------------------
# Protocols
# -----------------------------------------------------------------------------


@runtime_checkable
class DocumentRepository(Protocol):
    """Document storage with an optimistic version check.

    ``save`` raises ``ConcurrentModificationError`` when the document's
    ``version`` is not the stored version, and returns the stored copy
    with ``version`` incremented.
    """

    def save(self, document: FinancialDocument) -> FinancialDocument: ...

    def find_by_id(self, document_id: UUID) -> FinancialDocument | None: ...


@runtime_checkable
class StockReservation(Protocol):
    """Warehouse stock reservation for customer orders."""

    def reserve(self, document_id: UUID, items: Sequence[LineItem]) -> str: ...

    def release(self, token: str) -> None: ...


@runtime_checkable
class AuditSink(Protocol):
    """Receives one immutable event per successful lifecycle operation."""

    def record(self, event: LifecycleEvent) -> None: ...


__all__ = [
    "DocumentRepository",
    "SequenceSource",
    "StockReservation",
    "AuditSink",
    "InMemoryDocumentRepository",
    "InMemorySequenceSource",
    "InMemoryStockReservation",
    "InMemoryAuditSink",
]


# -----------------------------------------------------------------------------
# In-memory implementations
# -----------------------------------------------------------------------------


class InMemoryDocumentRepository:
    """
    Dict-backed document store.

    Guarantees:
        - Version-checked saves; every saved version is kept in
          ``history(document_id)``.
        - Safe to share between threads.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._documents: dict[UUID, FinancialDocument] = {}
        self._history: dict[UUID, list[FinancialDocument]] = defaultdict(list)

    def save(self, document: FinancialDocument) -> FinancialDocument:
        with self._lock:
            stored = self._documents.get(document.id)
            current_version = stored.version if stored is not None else 0
            if document.version != current_version:
                logger.warning(
                    "concurrent_modification_detected",
                    extra={
                        "document_id": str(document.id),
                        "expected_version": document.version,
                        "actual_version": current_version,
                    },
                )
                raise ConcurrentModificationError(
                    str(document.id), document.version, current_version,
                )
            saved = replace(document, version=current_version + 1)
            self._documents[document.id] = saved
            self._history[document.id].append(saved)
        logger.debug(
            "document_saved",
            extra={"document_id": str(saved.id), "version": saved.version},
        )
        return saved

    def find_by_id(self, document_id: UUID) -> FinancialDocument | None:
        with self._lock:
            return self._documents.get(document_id)

    def get(self, document_id: UUID) -> FinancialDocument:
        """Like ``find_by_id`` but raises ``DocumentNotFoundError`` on a miss."""
        document = self.find_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def history(self, document_id: UUID) -> list[FinancialDocument]:
        with self._lock:
            return list(self._history.get(document_id, ()))

    def __len__(self) -> int:
        with self._lock:
            return len(self._documents)


class InMemorySequenceSource:
    """Lock-guarded per-scope counters."""

    def __init__(self, start_values: Mapping[str, int] | None = None) -> None:
        self._lock = threading.Lock()
        self._counters: dict[str, int] = dict(start_values or {})

    def next_sequence(self, scope_key: str) -> int:
        with self._lock:
            value = self._counters.get(scope_key, 0) + 1
            self._counters[scope_key] = value
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": scope_key, "value": value},
        )
        return value

    def current(self, scope_key: str) -> int:
        with self._lock:
            return self._counters.get(scope_key, 0)


class InMemoryStockReservation:
    """
    Reservation ledger with optional finite stock.

    With ``available=None`` every reservation succeeds.  Otherwise each
    reservation draws down per-product stock and is refused with
    ``StockReservationError`` when any product is short; release returns
    the stock.
    """

    def __init__(self, available: Mapping[str, Decimal | int | str] | None = None) -> None:
        self._lock = threading.Lock()
        self._available = (
            {k: to_decimal(v) for k, v in available.items()} if available is not None else None
        )
        self._reservations: dict[str, tuple[UUID, dict[str, Decimal]]] = {}

    def reserve(self, document_id: UUID, items: Sequence[LineItem]) -> str:
        wanted: dict[str, Decimal] = {}
        for item in items:
            wanted[item.product_id] = wanted.get(item.product_id, ZERO) + item.quantity

        with self._lock:
            if self._available is not None:
                short = sorted(
                    p for p, q in wanted.items() if self._available.get(p, ZERO) < q
                )
                if short:
                    raise StockReservationError(
                        str(document_id), f"insufficient stock for {', '.join(short)}",
                    )
                for product_id, quantity in wanted.items():
                    self._available[product_id] -= quantity
            token = f"RSV-{uuid4().hex[:12]}"
            self._reservations[token] = (document_id, wanted)

        logger.info(
            "stock_reserved",
            extra={"document_id": str(document_id), "reservation_token": token},
        )
        return token

    def release(self, token: str) -> None:
        with self._lock:
            entry = self._reservations.pop(token, None)
            if entry is None:
                logger.warning("stock_release_unknown_token", extra={"reservation_token": token})
                return
            if self._available is not None:
                for product_id, quantity in entry[1].items():
                    self._available[product_id] = (
                        self._available.get(product_id, ZERO) + quantity
                    )
        logger.info(
            "stock_released",
            extra={"document_id": str(entry[0]), "reservation_token": token},
        )

    def is_reserved(self, token: str) -> bool:
        with self._lock:
            return token in self._reservations

    def available(self, product_id: str) -> Decimal | None:
        with self._lock:
            if self._available is None:
                return None
            return self._available.get(product_id, ZERO)


class InMemoryAuditSink:
    """Append-only list of lifecycle events."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[LifecycleEvent] = []

    def record(self, event: LifecycleEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[LifecycleEvent]:
        with self._lock:
            return list(self._events)

    def events_for(self, document_id: UUID) -> list[LifecycleEvent]:
        with self._lock:
            return [e for e in self._events if e.document_id == document_id]
