"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence numbers per scope key (for
    document numbering: ``company:document_type:financial_year``).  Uses a
    dedicated counter table with row-level locking (``SELECT ... FOR
    UPDATE``) so that concurrent allocations in one scope never collide.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Satisfies the
    ``SequenceSource`` collaborator protocol consumed by
    ``erp_engines.numbering.DocumentNumberGenerator``.

Invariants enforced:
    - The locked counter row is the sole source of truth for the next
      value.  Counting or ``MAX()+1`` over existing documents is never used.
    - The increment is only visible after the caller's transaction commits;
      a rollback returns the value.

Failure modes:
    - IntegrityError: concurrent first-use creation of a counter row
      (handled via savepoint rollback and retry).
    - Any database error propagates; the number generator turns it into
      ``NumberGenerationFailedError``.
"""

from sqlalchemy import BigInteger, String, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, Session, mapped_column

from erp_kernel.db.base import Base
from erp_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """
    Sequence counter table.

    Each row is one named sequence with its current value.
    """

    __tablename__ = "sequence_counters"

    # Scope key, e.g. "acme:invoice:2024-25"
    name: Mapped[str] = mapped_column(
        String(150),
        nullable=False,
        unique=True,
    )

    current_value: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
    )


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Contract:
        Accepts a scope key and returns the next strictly-monotonic integer.

    Guarantees:
        - ``SELECT ... FOR UPDATE`` serializes allocations for one scope.
        - No value is handed out twice within a scope.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, scope_key: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == scope_key)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, scope_key: str) -> int:
        """
        Lock (or create) the counter row for ``scope_key``, increment it and
        return the new value.

        Preconditions:
            - ``scope_key`` is a non-empty string.
            - The caller is within an active database transaction.

        Returns:
            The next sequence value (always > 0).
        """
        if not scope_key:
            raise ValueError("scope_key must be non-empty")

        self._session.expire_all()
        counter = self._locked_counter(scope_key)

        if counter is None:
            # First use: create under a savepoint so a lost race does not
            # roll back the caller's other work.
            savepoint = self._session.begin_nested()
            try:
                counter = SequenceCounter(name=scope_key, current_value=1)
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": scope_key, "value": 1},
                )
                return 1
            except IntegrityError:
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": scope_key},
                )
                savepoint.rollback()
                self._session.expire_all()
                counter = self._locked_counter(scope_key)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": scope_key, "value": counter.current_value},
        )
        return counter.current_value

    def next_sequence(self, scope_key: str) -> int:
        """``SequenceSource`` protocol entry point."""
        return self.next_value(scope_key)

    def current_value(self, scope_key: str) -> int | None:
        """Current value of a sequence without incrementing, or None if unused."""
        counter = self._session.execute(
            select(SequenceCounter).where(SequenceCounter.name == scope_key)
        ).scalar_one_or_none()
        return counter.current_value if counter is not None else None
