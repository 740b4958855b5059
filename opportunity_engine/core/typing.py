"""
Type helpers for SQLModel queries and time handling.

SQLModel fields are declared with Python types (e.g., `keyword: str`) but at the
class level they're actually InstrumentedAttribute descriptors with SQLAlchemy
column methods like .startswith(), .in_(), .desc(), etc.

Type checkers see them as plain Python types and report errors when column
methods are called. `col()` bridges that gap.
"""

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")


def col(attr: T) -> "InstrumentedAttribute[T]":
    """
    Type helper for SQLAlchemy column operations in queries.

    At runtime this is a no-op - it just returns the input unchanged.

    Usage:
        from opportunity_engine.core.typing import col

        select(SharedStateEntry).where(col(SharedStateEntry.key).startswith(prefix))
    """
    return attr  # type: ignore[return-value]


def utc_now() -> datetime:
    """
    Get current UTC time (timezone-aware).

    Use as default_factory in SQLModel fields.
    """
    return datetime.now(timezone.utc)


def epoch_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)
