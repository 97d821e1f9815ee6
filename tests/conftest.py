"""
Pytest fixtures for the document engine test suite.

Provides:
- Structured logging configuration and log capture
- A deterministic clock
- In-memory collaborators and a ready DocumentLifecycleService
- A SQLAlchemy session for the SQL-backed collaborators

Environment Variables:
- DATABASE_URL: SQLAlchemy URL for the SQL tests.  Defaults to an
  in-memory SQLite database; set a postgresql:// URL to exercise real
  row locks (tests marked ``postgres`` are skipped otherwise).
"""

import json
import logging
import os
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from erp_kernel.db.base import Base
from erp_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    is_postgres,
    reset_engine,
)
from erp_kernel.domain.clock import DeterministicClock
from erp_kernel.domain.documents import (
    Discount,
    DocumentDates,
    DocumentType,
    LineItem,
    Party,
    SupplyType,
)
from erp_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from erp_modules.documents.collaborators import (
    InMemoryAuditSink,
    InMemoryDocumentRepository,
    InMemorySequenceSource,
    InMemoryStockReservation,
)
from erp_modules.documents.config import DocumentConfig
from erp_modules.documents.service import DocumentLifecycleService

TEST_COMPANY_ID = "acme"
TEST_ACTOR_ID = "user-7"

DEFAULT_DATABASE_URL = "sqlite://"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture erp_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.create_document(...)
            logs = captured_logs()
            assert any(r["message"] == "document_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("erp_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    """Clock fixed at 2024-06-01 12:00 UTC (financial year 2024-25)."""
    return DeterministicClock()


@pytest.fixture
def customer() -> Party:
    return Party("CUST-001", "Globex Industries")


@pytest.fixture
def supplier() -> Party:
    return Party("SUP-001", "Initech Metals")


@pytest.fixture
def sample_line_items() -> list[LineItem]:
    """The worked example: 10 x 100, 10% off, 18% intra-state tax -> 1062.00."""
    return [
        LineItem(
            product_id="SKU-100",
            quantity=Decimal("10"),
            rate=Decimal("100"),
            tax_rate=Decimal("18"),
            discount=Discount.percent("10"),
            supply_type=SupplyType.INTRA_STATE,
        ),
    ]


@pytest.fixture
def mixed_line_items() -> list[LineItem]:
    return [
        LineItem("SKU-100", quantity=Decimal("3"), rate=Decimal("249.99"), tax_rate=Decimal("12")),
        LineItem(
            "SKU-200",
            quantity=Decimal("2"),
            rate=Decimal("1000"),
            tax_rate=Decimal("18"),
            discount=Discount.absolute("150"),
            supply_type=SupplyType.INTER_STATE,
        ),
    ]


# =============================================================================
# In-memory collaborators and service
# =============================================================================


@pytest.fixture
def document_config() -> DocumentConfig:
    return DocumentConfig.with_defaults()


@pytest.fixture
def repository() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture
def sequence_source() -> InMemorySequenceSource:
    return InMemorySequenceSource()


@pytest.fixture
def stock_reservation() -> InMemoryStockReservation:
    return InMemoryStockReservation()


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def service(
    repository,
    sequence_source,
    document_config,
    stock_reservation,
    audit_sink,
    clock,
) -> DocumentLifecycleService:
    return DocumentLifecycleService(
        repository=repository,
        sequence_source=sequence_source,
        config=document_config,
        stock_reservation=stock_reservation,
        audit_sink=audit_sink,
        clock=clock,
    )


@pytest.fixture
def create_document(service, customer, supplier, sample_line_items):
    """
    Factory creating a draft document of the given type.

    Purchase orders get the supplier party; everything else the customer.
    """

    def _create(
        document_type: DocumentType,
        line_items=None,
        dates: DocumentDates | None = None,
    ):
        party = supplier if document_type == DocumentType.PURCHASE_ORDER else customer
        return service.create_document(
            company_id=TEST_COMPANY_ID,
            document_type=document_type,
            party=party,
            line_items=line_items or sample_line_items,
            dates=dates,
            actor_id=TEST_ACTOR_ID,
        )

    return _create


@pytest.fixture
def issue_date() -> date:
    return date(2024, 6, 1)


# =============================================================================
# Database fixtures
# =============================================================================


def get_database_url() -> str:
    """Database URL from the environment, or in-memory SQLite."""
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


@pytest.fixture(scope="session")
def db_engine():
    """Create the engine and tables once per test session."""
    import erp_modules.documents.orm  # noqa: F401  (registers document tables)

    engine = init_engine_from_url(get_database_url())
    create_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """A session whose rows are removed after the test."""
    session = get_session()
    yield session
    session.rollback()
    for table in reversed(Base.metadata.sorted_tables):
        session.execute(table.delete())
    session.commit()
    session.close()


@pytest.fixture
def require_postgres(db_engine):
    if not is_postgres():
        pytest.skip("requires DATABASE_URL pointing at PostgreSQL")
