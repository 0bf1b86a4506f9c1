"""
Database connection and session management.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from manuflix.config import get_settings


def build_engine(database_url: str) -> Engine:
    """
    Create an engine for the Supabase Postgres pooler or a SQLite file/memory database.
    """
    if database_url.lower().startswith("sqlite"):
        kwargs: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        echo=False,
    )


def build_session_factory(engine: Engine) -> sessionmaker:
    # Rows outlive their session: checkout sessions hold them across polls.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


@lru_cache
def get_engine() -> Engine:
    return build_engine(get_settings().database_url)


@lru_cache
def get_session_factory() -> sessionmaker:
    return build_session_factory(get_engine())


def init_db(engine: Engine, session_factory: sessionmaker) -> int:
    """
    Create tables and seed the reference plans. Returns the number of plans inserted.
    """
    from manuflix.models import Base
    from manuflix.seeds import seed_plans

    Base.metadata.create_all(bind=engine)

    db = session_factory()
    try:
        return seed_plans(db)
    finally:
        db.close()


def database_health(engine: Engine) -> dict[str, Any]:
    """
    Return structured database health details.
    """
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return {
            "ok": True,
            "dialect": engine.dialect.name,
        }
    except SQLAlchemyError as exc:
        return {
            "ok": False,
            "error": str(exc),
        }
