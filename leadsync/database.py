"""
Database configuration and session management.
Uses SQLAlchemy; SQLite for development, PostgreSQL for production.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from leadsync.config import config


def make_engine(url: str) -> Engine:
    """
    Create an engine for `url`.

    In-memory SQLite gets a single shared connection so that worker
    threads see the same database.
    """
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}  # SQLite specific
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)

    # PostgreSQL
    return create_engine(
        url,
        pool_pre_ping=True,  # Verify connections before using
        pool_size=10,  # Connection pool size
        max_overflow=20,  # Max connections above pool_size
        echo=config.DEBUG  # Log SQL queries in debug mode
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


engine = make_engine(config.DATABASE_URL)

# Create session factory
SessionLocal = make_session_factory(engine)

# Base class for all models
Base = declarative_base()


def init_db(bind: Engine = None):
    """
    Initialize database - create all tables.
    Should be called on application startup.
    """
    from leadsync import db_models  # noqa: F401  (registers tables on Base)

    Base.metadata.create_all(bind=bind or engine)
