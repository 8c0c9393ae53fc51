"""
SQLModel session utilities for the allow-list store.

Provides an engine factory, retry-aware transactional scope, and schema
initialisation backed by SQLite (override via DATABASE_URL if needed).
"""

from __future__ import annotations

import logging
import os
import time
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, SQLModel, create_engine

from db import models  # noqa: F401  registers tables on SQLModel.metadata

logger = logging.getLogger("db.session")

RETRY_DELAY = float(os.getenv("DB_RETRY_DELAY", "0.5"))


# ---------------------------------------------------------------------------
# Engine / configuration
# ---------------------------------------------------------------------------
def build_database_url(explicit: Optional[str] = None) -> str:
    """
    Compute the database URL, defaulting to a local SQLite file.
    """

    if url := os.getenv("DATABASE_URL"):
        return url
    if explicit:
        return explicit
    if path := os.getenv("SQLITE_PATH"):
        # Accept bare file paths for convenience.
        if not path.startswith("sqlite"):
            return f"sqlite:///{path}"
        return path

    return "sqlite:///./xmlrpc_allowlist.db"


def create_db_engine(url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    database_url = build_database_url(url)
    engine_kwargs = {
        "echo": bool(int(os.getenv("SQL_ECHO", "0"))) if echo is None else echo,
        "pool_pre_ping": True,
    }
    if database_url.startswith("sqlite"):
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(database_url, **engine_kwargs)


def init_db(engine: Engine, drop_existing: bool = False) -> None:
    """
    Initialise the database schema using SQLModel metadata.
    """

    if drop_existing:
        logger.warning("Dropping existing tables before initialisation.")
        SQLModel.metadata.drop_all(engine)
    SQLModel.metadata.create_all(engine)
    logger.info("Database schema ensured at %s", engine.url)


# ---------------------------------------------------------------------------
# Session helpers
# ---------------------------------------------------------------------------
@contextmanager
def session_scope(
    engine: Engine,
    retries: int = 3,
    retry_delay: Optional[float] = None,
) -> Generator[Session, None, None]:
    """
    Provide a transactional scope with simple retry on connection set-up.
    """

    delay = retry_delay if retry_delay is not None else RETRY_DELAY
    attempt = 0

    while True:
        session = Session(engine)
        try:
            session.connection()
            break
        except OperationalError as exc:
            session.close()
            attempt += 1
            if attempt >= retries:
                logger.exception("Database connection failed after %s retries.", retries)
                raise
            logger.warning(
                "OperationalError opening DB session (attempt %s/%s): %s",
                attempt,
                retries,
                exc,
            )
            time.sleep(delay)

    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("Unhandled error during DB session; rolling back.")
        raise
    finally:
        session.close()
