"""
Database configuration and session management
"""
from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from csvinsight.config import Settings

Base = declarative_base()


def build_engine(settings: Settings):
    """Create the engine for the configured database URL"""
    kwargs = {"echo": settings.debug}
    if settings.database_url.startswith("sqlite"):
        # Requests are served from a thread pool
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in settings.database_url or settings.database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
    return create_engine(settings.database_url, **kwargs)


def build_session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db(request: Request):
    """Dependency for database session"""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
