from sqlmodel import create_engine, SQLModel
import logging

from opportunity_engine.core.config import settings

logger = logging.getLogger(__name__)


def build_engine(database_url: str):
    """SQLite needs check_same_thread off; breakers persist from worker threads."""
    if database_url.startswith("sqlite"):
        return create_engine(database_url, echo=False, connect_args={"check_same_thread": False})
    return create_engine(
        database_url,
        echo=False,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,
        pool_timeout=30,
    )


engine = build_engine(settings.DATABASE_URL)


def create_db_and_tables():
    # Register tables on the metadata
    import opportunity_engine.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Created tables: %s", ", ".join(sorted(SQLModel.metadata.tables)))
