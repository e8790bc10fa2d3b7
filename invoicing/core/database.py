from __future__ import annotations

import uuid
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from invoicing.core.config import DATABASE_URL, SQLITE_BUSY_TIMEOUT_SECONDS

Base = declarative_base()


def enable_sqlite_write_serialization(engine: Engine) -> None:
    """Abre toda transação SQLite com BEGIN IMMEDIATE.

    O pysqlite adia o BEGIN até o primeiro INSERT/UPDATE, então duas transações
    podem ler o mesmo estoque antes de qualquer uma escrever. Com BEGIN IMMEDIATE
    o lock de escrita é pego na abertura e os writers entram em fila (busy timeout).
    Também habilita SAVEPOINT de verdade para `begin_nested()`.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str, **kwargs: Any) -> Engine:
    connect_args: dict[str, Any] = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
    else:
        kwargs.setdefault("pool_pre_ping", True)

    engine = create_engine(url, connect_args=connect_args, **kwargs)
    if engine.dialect.name == "sqlite":
        enable_sqlite_write_serialization(engine)
    return engine


def build_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=True, bind=bind)


engine = build_engine(DATABASE_URL)
SessionLocal = build_session_factory(engine)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def new_id() -> str:
    return uuid.uuid4().hex
