"""
SqlDocumentRepository -- SQLAlchemy-backed ``DocumentRepository``.

Responsibility:
    Stores and loads ``FinancialDocument`` values through the ORM models
    in ``orm.py``, enforcing the optimistic version check on every save.

Architecture position:
    Modules > Documents -- persistence collaborator.  Does NOT commit;
    the caller owns the transaction (see ``erp_kernel.db.engine.session_scope``).

Invariants enforced:
    - A save whose ``version`` differs from the stored row's version raises
      ``ConcurrentModificationError``; the stored row is locked
      (``SELECT ... FOR UPDATE``) while it is compared and written.
    - A successful save returns the document with ``version + 1``.
"""

from dataclasses import replace
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from erp_kernel.domain.documents import FinancialDocument
from erp_kernel.exceptions import ConcurrentModificationError, DocumentNotFoundError
from erp_kernel.logging_config import get_logger
from erp_modules.documents.orm import FinancialDocumentModel

logger = get_logger("modules.documents.repository")


class SqlDocumentRepository:
    """
    Document repository over a SQLAlchemy session.

    Non-goals:
        - Does NOT call ``session.commit()``.
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_row(self, document_id: UUID) -> FinancialDocumentModel | None:
        return self._session.execute(
            select(FinancialDocumentModel)
            .where(FinancialDocumentModel.id == document_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def save(self, document: FinancialDocument) -> FinancialDocument:
        row = self._locked_row(document.id)
        current_version = row.version if row is not None else 0

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

        stored = replace(document, version=current_version + 1)
        if row is None:
            row = FinancialDocumentModel.from_dto(stored)
            self._session.add(row)
        else:
            row.update_from_dto(stored)
        self._session.flush()

        logger.info(
            "document_persisted",
            extra={
                "document_id": str(stored.id),
                "document_number": stored.document_number,
                "status": stored.status_value,
                "version": stored.version,
            },
        )
        return row.to_dto()

    def find_by_id(self, document_id: UUID) -> FinancialDocument | None:
        row = self._session.get(
            FinancialDocumentModel, document_id, populate_existing=True,
        )
        return row.to_dto() if row is not None else None

    def get(self, document_id: UUID) -> FinancialDocument:
        """Like ``find_by_id`` but raises ``DocumentNotFoundError`` on a miss."""
        document = self.find_by_id(document_id)
        if document is None:
            raise DocumentNotFoundError(str(document_id))
        return document

    def find_by_number(
        self, company_id: str, document_number: str, financial_year: str,
    ) -> FinancialDocument | None:
        row = self._session.execute(
            select(FinancialDocumentModel).where(
                FinancialDocumentModel.company_id == company_id,
                FinancialDocumentModel.document_number == document_number,
                FinancialDocumentModel.financial_year == financial_year,
            )
        ).scalars().first()
        return row.to_dto() if row is not None else None
