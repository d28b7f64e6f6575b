"""Execution contexts shared by every repository.

Repositories are written once against :class:`Executor` and never learn
whether they run on a pooled :class:`Database` or inside a
:class:`Transaction`. Only the transactional form keeps row locks
(``SELECT ... FOR UPDATE``) past a single statement.
"""
from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Optional, Protocol

from sqlalchemy import event
from sqlalchemy.engine import Connection, Engine, RootTransaction
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.sql import Executable
from sqlmodel import Session, SQLModel, create_engine

from ..models import db as _db_models  # noqa: F401 - ensure models register with metadata
from .config import Settings, get_settings
from .errors import ConflictError, StorageError, TransactionClosedError


class Executor(Protocol):
    @property
    def dialect_name(self) -> str:
        ...

    @property
    def in_transaction(self) -> bool:
        ...

    def execute(self, statement: Executable) -> int:
        """Run a mutating statement and return the affected row count."""
        ...

    def query_all(self, statement: Executable) -> list[Any]:
        ...

    def query_one(self, statement: Executable) -> Optional[Any]:
        ...


@contextmanager
def storage_errors(operation: str, identity: object = None) -> Iterator[None]:
    """Translate driver failures into the layer's error taxonomy."""
    try:
        yield
    except IntegrityError as exc:
        raise ConflictError(operation, identity, str(exc.orig)) from exc
    except SQLAlchemyError as exc:
        raise StorageError(operation, identity, exc.__class__.__name__) from exc


def create_engine_for_url(database_url: str, settings: Optional[Settings] = None) -> Engine:
    settings = settings or get_settings()
    connect_args: dict[str, Any] = {}
    engine_args: dict[str, Any] = {}
    if database_url.startswith("sqlite"):
        connect_args = {
            "check_same_thread": False,
            "timeout": settings.sqlite_busy_timeout_seconds,
        }
    else:
        engine_args = {
            "pool_size": settings.db_pool_size,
            "max_overflow": settings.db_max_overflow,
            "pool_timeout": settings.db_pool_timeout_seconds,
            "pool_pre_ping": True,
        }
        if settings.statement_timeout_ms and database_url.startswith("postgresql"):
            connect_args["options"] = f"-c statement_timeout={settings.statement_timeout_ms}"

    engine = create_engine(database_url, echo=False, connect_args=connect_args, **engine_args)
    if engine.dialect.name == "sqlite":
        _install_sqlite_hooks(engine)
    return engine


def _install_sqlite_hooks(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write, which breaks locking reads.
    # Transactions are started explicitly instead; a Transaction asks for
    # BEGIN IMMEDIATE, taking the write lock up front the way FOR UPDATE
    # would on PostgreSQL.
    in_memory = engine.url.database in (None, "", ":memory:")

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if not in_memory:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn: Connection) -> None:
        mode = conn.get_execution_options().get("sqlite_begin", "DEFERRED")
        conn.exec_driver_sql(f"BEGIN {mode}")


def init_db(engine: Engine, logger: Optional[logging.Logger] = None) -> None:
    logger = logger or logging.getLogger(__name__)
    logger.info(
        "database.connecting",
        extra={"url": engine.url.render_as_string(hide_password=True)},
    )
    with storage_errors("database.init"):
        SQLModel.metadata.create_all(engine)
    logger.info("database.ready", extra={"dialect": engine.dialect.name})


class Database:
    """Pooled execution context.

    Each call checks a connection out of the pool, runs in its own short unit
    of work and commits. Use :meth:`begin` or :meth:`transaction` when several
    statements must succeed or fail together.
    """

    def __init__(self, engine: Engine, logger: Optional[logging.Logger] = None) -> None:
        self.engine = engine
        self.logger = logger or logging.getLogger(__name__)

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @property
    def in_transaction(self) -> bool:
        return False

    def execute(self, statement: Executable) -> int:
        with Session(self.engine) as session:
            affected = session.connection().execute(statement).rowcount
            session.commit()
            return affected

    def query_all(self, statement: Executable) -> list[Any]:
        with Session(self.engine, expire_on_commit=False) as session:
            return list(session.exec(statement).all())

    def query_one(self, statement: Executable) -> Optional[Any]:
        with Session(self.engine, expire_on_commit=False) as session:
            return session.exec(statement).first()

    def begin(self) -> Transaction:
        connection: Optional[Connection] = None
        try:
            connection = self.engine.connect().execution_options(sqlite_begin="IMMEDIATE")
            root = connection.begin()
        except SQLAlchemyError as exc:
            if connection is not None:
                connection.close()
            self.logger.error("transaction.begin_failed", exc_info=True)
            raise StorageError("transaction.begin", detail=exc.__class__.__name__) from exc

        self.logger.debug("transaction.started")
        return Transaction(connection, root, self.logger)

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Run a block atomically: commit on success, roll back on any exception.

        ``BaseException`` is caught too, so an abandoned request (``KeyboardInterrupt``,
        ``SystemExit``) never leaves partial state behind.
        """
        tx = self.begin()
        try:
            yield tx
        except BaseException:
            tx.rollback()
            raise
        if not tx.finalized:
            tx.commit()


class Transaction:
    """Transactional execution context; every call shares one database transaction."""

    def __init__(
        self,
        connection: Connection,
        root: RootTransaction,
        logger: logging.Logger,
    ) -> None:
        self._connection = connection
        self._root = root
        self._session = Session(bind=connection, expire_on_commit=False)
        self.logger = logger
        self.finalized = False

    @property
    def dialect_name(self) -> str:
        return self._connection.dialect.name

    @property
    def in_transaction(self) -> bool:
        return not self.finalized

    def _ensure_open(self) -> None:
        if self.finalized:
            raise TransactionClosedError("transaction already committed or rolled back")

    def execute(self, statement: Executable) -> int:
        self._ensure_open()
        return self._session.connection().execute(statement).rowcount

    def query_all(self, statement: Executable) -> list[Any]:
        self._ensure_open()
        # populate_existing: rows changed by UPDATEs in this transaction must not
        # come back from the identity map with their old values.
        return list(
            self._session.exec(statement, execution_options={"populate_existing": True}).all()
        )

    def query_one(self, statement: Executable) -> Optional[Any]:
        self._ensure_open()
        return self._session.exec(
            statement, execution_options={"populate_existing": True}
        ).first()

    def commit(self) -> None:
        self._ensure_open()
        try:
            self._root.commit()
        except SQLAlchemyError as exc:
            self.logger.error("transaction.commit_failed", exc_info=True)
            self._release()
            raise StorageError("transaction.commit", detail=exc.__class__.__name__) from exc
        self._release()
        self.logger.debug("transaction.committed")

    def rollback(self) -> None:
        if self.finalized:
            self.logger.debug("transaction.already_closed")
            return
        try:
            self._root.rollback()
        except SQLAlchemyError as exc:
            self.logger.error("transaction.rollback_failed", exc_info=True)
            raise StorageError("transaction.rollback", detail=exc.__class__.__name__) from exc
        finally:
            self._release()
        self.logger.debug("transaction.rolled_back")

    def _release(self) -> None:
        self.finalized = True
        self._session.close()
        self._connection.close()
