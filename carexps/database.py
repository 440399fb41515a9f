"""
Database Configuration and Session Management

SQLAlchemy setup with connection pooling. Sessions handed to request
handlers are raw; tenant filtering happens in carexps.core.tenancy.
"""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import QueuePool, StaticPool
from carexps.config import get_settings
import logging

logger = logging.getLogger(__name__)

settings = get_settings()


def _engine_options(url: str) -> dict:
    """Pool options per backend. SQLite is only used for local runs and tests."""
    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every checkout gets an empty db
            options["poolclass"] = StaticPool
        return options
    return {
        "poolclass": QueuePool,
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_pre_ping": True,
    }


engine = create_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    **_engine_options(settings.DATABASE_URL)
)

# expire_on_commit=False so handlers can read attributes after commit
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False
)

Base = declarative_base()


@event.listens_for(engine, "connect")
def set_connection_timezone(dbapi_connection, connection_record):
    """Set connection-level configuration on new connections."""
    cursor = dbapi_connection.cursor()
    # Lockout windows are computed in UTC on both sides
    if settings.DATABASE_URL.startswith("postgresql"):
        cursor.execute("SET TIME ZONE 'UTC'")
    cursor.close()
    logger.debug("New database connection established")


def get_db() -> Session:
    """
    Dependency function that provides a database session.

    The session is closed after the request completes.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Create all tables.

    Used in development and tests; production schemas are managed with
    migrations.
    """
    # Register every model on Base.metadata before create_all
    import carexps.models  # noqa: F401

    logger.warning("init_db() called - use migrations in production!")
    Base.metadata.create_all(bind=engine)
