"""
Module: erp_kernel.db.types
Responsibility: The timezone-preserving datetime type shared by every ORM
    model.
Architecture position: Kernel > DB.  May be imported by services/ and by
    module ORM files.  MUST NOT import from domain services or outer layers.

Invariants enforced:
    - Timestamps are always returned timezone-aware (UTC), including on
      backends such as SQLite that drop tzinfo on storage.
"""

from datetime import timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """
    DateTime that always round-trips as an aware UTC ``datetime``.

    Contract:
        Aware values are converted to UTC on bind; naive values read back
        from the database are tagged UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime not allowed: {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


__all__ = ["UTCDateTime"]
