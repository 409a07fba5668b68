"""
Module: commission_kernel.db.types
Responsibility: Column types and annotated aliases for commission data.
Architecture position: Kernel > DB.  MUST NOT import from models/ or
    services/.

Invariants enforced:
    - No floats anywhere in persisted commission data.  DecimalString stores
      a DecimalValue as its canonical (normalized) text, which is exact and
      identical on SQLite and PostgreSQL.
    - UTCDateTime always hands back timezone-aware UTC datetimes, including
      on backends (SQLite) that drop the offset.
"""

from datetime import UTC

from sqlalchemy import DateTime, String
from sqlalchemy.types import TypeDecorator

from commission_kernel.domain.values import DecimalValue


class DecimalString(TypeDecorator):
    """DecimalValue persisted as canonical decimal text."""

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(DecimalValue.of(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return DecimalValue.of(value)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime, normalized to UTC on both sides."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

