"""Database connection and session management."""

import os
from typing import Optional
from sqlalchemy import create_engine, Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Base class for all database models
Base = declarative_base()

# Global engine and session factory, created on first use
_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def create_database_engine(database_url: str,
                           echo: bool = False,
                           connect_args: Optional[dict] = None) -> Engine:
    """Create a database engine with settings suited to the URL."""
    if connect_args is None:
        if database_url.startswith("sqlite"):
            connect_args = {"check_same_thread": False}
        else:
            connect_args = {}

    if database_url.startswith("sqlite"):
        # One shared connection so in-memory databases survive across sessions
        return create_engine(
            database_url,
            connect_args=connect_args,
            poolclass=StaticPool,
            echo=echo
        )
    return create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args,
        pool_pre_ping=True
    )


def get_database_engine(database_url: Optional[str] = None,
                        echo: bool = False,
                        connect_args: Optional[dict] = None) -> Engine:
    """Get or create the global database engine."""
    global _engine

    if _engine is None:
        if database_url is None:
            database_url = os.getenv("FLOWFORGE_DATABASE_URL", "sqlite:///./flowforge.db")
        _engine = create_database_engine(database_url, echo=echo, connect_args=connect_args)

    return _engine


def create_session_factory(engine: Engine) -> sessionmaker:
    """Create a session factory bound to ``engine``."""
    return sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)


def SessionLocal():
    """Open a session on the global engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_database_engine())
    return _session_factory()


def create_tables(engine: Optional[Engine] = None):
    """Create all database tables."""
    # Register models on Base.metadata
    from . import models  # noqa: F401
    Base.metadata.create_all(bind=engine or get_database_engine())


def drop_tables(engine: Optional[Engine] = None):
    """Drop all database tables."""
    from . import models  # noqa: F401
    Base.metadata.drop_all(bind=engine or get_database_engine())
