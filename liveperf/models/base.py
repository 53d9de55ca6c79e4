"""
Base database model and session management
"""
import os
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from liveperf.config import get_settings

settings = get_settings()


def resolve_database_url(url: str) -> str:
    """Resolve relative SQLite paths to absolute so cwd changes can't break it"""
    if url.startswith("sqlite:///") and not url.startswith("sqlite:////") and url != "sqlite:///:memory:":
        rel_path = url[len("sqlite:///"):]
        return "sqlite:///" + os.path.abspath(rel_path)
    return url


def make_engine(url: str) -> Engine:
    """Create an engine with pool settings suited to the backend"""
    url = resolve_database_url(url)

    if url == "sqlite:///:memory:" or url == "sqlite://":
        # One shared connection so every session sees the same in-memory DB
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    if url.startswith("sqlite"):
        return create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": 60},
            pool_pre_ping=True
        )

    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=300,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


# Create database engine
engine = make_engine(settings.database_url)

# Create session factory
SessionLocal = make_session_factory(engine)

# Base class for all models
Base = declarative_base()


def get_db():
    """Get database session"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = None):
    """Initialize database tables."""
    # Import models so they register on Base.metadata
    from liveperf.models import campaign, performance, user  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)
