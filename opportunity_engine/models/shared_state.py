"""
Shared key/value state with expiry.

Backs the SQL SharedStateStore so circuit breaker state is visible to every
process pointed at the same database.
"""

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from opportunity_engine.core.typing import utc_now


class SharedStateEntry(SQLModel, table=True):
    """One shared key (e.g. "circuit-breaker:dataforseo")."""

    __tablename__ = "shared_state"

    id: Optional[int] = Field(default=None, primary_key=True)
    key: str = Field(unique=True, index=True)
    value: bytes
    expires_at: float = Field(index=True)  # epoch seconds
    updated_at: datetime = Field(default_factory=utc_now)
