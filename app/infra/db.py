from __future__ import annotations

import logging
import os
from collections.abc import Generator

from sqlalchemy import event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, create_engine

logger = logging.getLogger("app.db")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://vouchers:vouchers@db:5432/travel_vouchers",
)


def build_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        built = create_engine(url, connect_args={"check_same_thread": False})
        event.listen(built, "connect", _enable_sqlite_foreign_keys)
        return built
    return create_engine(url, pool_pre_ping=True)


def _enable_sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:  # type: ignore[no-untyped-def]
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


engine = build_engine(DATABASE_URL)


def get_engine() -> Engine:
    return engine


def get_session() -> Generator[Session, None, None]:
    with Session(get_engine(), expire_on_commit=False) as session:
        yield session


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except SQLAlchemyError:
        logger.warning("db_not_ready", exc_info=True)
        return False
