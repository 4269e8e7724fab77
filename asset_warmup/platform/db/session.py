from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from asset_warmup.platform.config import settings

# One shared sync engine for the collector and the Celery workers
_sync_engine = None
_sync_session_factory = None


def build_engine(db_url: str) -> Engine:
    """Create a sync engine; sqlite gets thread sharing, servers get pooling."""
    if db_url.startswith("sqlite"):
        return create_engine(
            db_url,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )

    # Convert async URL to sync if needed
    if db_url.startswith("postgresql+asyncpg://"):
        db_url = db_url.replace("postgresql+asyncpg://", "postgresql://")

    return create_engine(
        db_url,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_pre_ping=True,
        pool_recycle=1800,
    )


def get_sync_engine() -> Engine:
    global _sync_engine, _sync_session_factory

    if _sync_engine is None:
        _sync_engine = build_engine(settings.DATABASE_URL)
        _sync_session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_sync_engine)

    return _sync_engine


def get_sync_db() -> Session:
    """Get a database session for the collector and Celery tasks."""
    get_sync_engine()
    return _sync_session_factory()
