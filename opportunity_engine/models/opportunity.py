from typing import Any, Dict, Optional
from sqlmodel import Column, Field, JSON, SQLModel, UniqueConstraint
from datetime import datetime

from opportunity_engine.core.typing import utc_now


class SeoOpportunity(SQLModel, table=True):
    """
    A discovered niche, keyed by (keyword, location).

    Written by optimization runs; read back by the next run's pre-filter so
    already-known opportunities never cost another validation call.
    """

    __tablename__ = "seo_opportunity"

    id: Optional[int] = Field(default=None, primary_key=True)
    keyword: str = Field(index=True)
    location: str = Field(default="", index=True)  # destination, "" when generic
    niche: str = Field(default="")
    search_volume: int = Field(default=0)
    difficulty: int = Field(default=0)
    cpc: float = Field(default=0.0)
    intent: str = Field(default="TRANSACTIONAL")
    priority_score: int = Field(default=0, index=True)
    status: str = Field(default="IDENTIFIED", index=True)  # IDENTIFIED, EVALUATED, ASSIGNED, ARCHIVED
    source: str = Field(default="optimized_scan")
    explanation: Optional[str] = Field(default=None)
    site_id: Optional[str] = Field(default=None, index=True)

    # Scan provenance: rank, journey, domain suggestions, projected value, raw metrics
    source_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    __table_args__ = (UniqueConstraint("keyword", "location", name="unique_keyword_location"),)
