"""
Database Connection Manager.

This module handles the low-level details of connecting to the database
(PostgreSQL in production, SQLite for local development and tests).
It exposes the SQLModel engine which will be used by the Repositories.
"""

from functools import lru_cache

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from ...config import settings


def build_engine(database_url: str) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        # echo=False in production to avoid leaking sensitive data in logs
        return create_engine(database_url, echo=False, **kwargs)
    return create_engine(database_url, echo=False)


@lru_cache()
def get_engine() -> Engine:
    """Application-wide engine built from settings on first use."""
    return build_engine(settings.DATABASE_URL)


def init_db(engine: Engine):
    """
    Idempotent initialization.
    Creates tables if they do not exist.
    Useful for local dev or simple deployments.
    """
    # Registers the table models on SQLModel.metadata
    from . import tables  # noqa: F401

    SQLModel.metadata.create_all(engine)
