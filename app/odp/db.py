from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from collections.abc import Generator
from typing import Any

from flask import Flask
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, Result
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from app.odp.errors import StoreError

logger = logging.getLogger(__name__)


def engine_options(db_url: str) -> dict[str, object]:
    """create_engine kwargs; pool sizing only applies to a server database."""
    options: dict[str, object] = {"future": True, "pool_pre_ping": True}
    if db_url.startswith("postgres"):
        options.update(pool_recycle=1800, pool_size=5, max_overflow=10, pool_timeout=30)
    return options


def init_db(app: Flask) -> None:
    db_url = app.config["DATABASE_URL"]
    engine = create_engine(db_url, **engine_options(db_url))
    if app.config.get("ENV") != "production":
        @event.listens_for(engine, "checkout")
        def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
            app.logger.debug("DB connection checkout from pool")
    wait_for_database(
        engine,
        retries=int(app.config.get("DB_CONNECT_RETRIES", 5)),
        delay=float(app.config.get("DB_CONNECT_RETRY_DELAY", 2)),
    )
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def wait_for_database(engine: Engine, *, retries: int, delay: float) -> None:
    """
    Block until the substrate answers a trivial query.

    Only the initial bring-up is retried; individual transactions fail fast.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            if attempt > 1:
                logger.info("Database reachable after %s attempts", attempt)
            return
        except OperationalError as e:
            if attempt > retries:
                raise StoreError(f"Database unreachable after {attempt} attempts", e) from e
            logger.warning("Database not reachable (attempt %s/%s): %s", attempt, retries + 1, e)
            time.sleep(delay)


class Transaction:
    """
    Unit of work bound to one caller identity.

    Every store operation runs inside exactly one Transaction; the caller owns
    the commit/rollback boundary.
    """

    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = str(user_id)
        self.is_complete = False

    def get_user_id(self) -> str:
        return self.user_id

    def _ensure_open(self) -> None:
        if self.is_complete:
            raise StoreError("Cannot use a completed transaction")

    def run(self, statement: Any, params: dict[str, Any] | None = None) -> Result:
        self._ensure_open()
        try:
            if params:
                return self.session.execute(statement, params)
            return self.session.execute(statement)
        except SQLAlchemyError as e:
            raise StoreError(f"Query execution failed: {e}", e) from e

    def get(self, model: type, ident: Any) -> Any:
        self._ensure_open()
        try:
            return self.session.get(model, ident)
        except SQLAlchemyError as e:
            raise StoreError(f"Lookup failed: {e}", e) from e

    def add(self, obj: Any) -> None:
        self._ensure_open()
        self.session.add(obj)

    def delete(self, obj: Any) -> None:
        self._ensure_open()
        self.session.delete(obj)

    def flush(self) -> None:
        self._ensure_open()
        try:
            self.session.flush()
        except SQLAlchemyError as e:
            raise StoreError(f"Flush failed: {e}", e) from e

    def commit(self) -> None:
        self._ensure_open()
        try:
            self.session.commit()
        except SQLAlchemyError as e:
            raise StoreError(f"Transaction commit failed: {e}", e) from e
        finally:
            self.is_complete = True

    def rollback(self) -> None:
        if self.is_complete:
            return
        try:
            self.session.rollback()
        except SQLAlchemyError as e:
            raise StoreError(f"Transaction rollback failed: {e}", e) from e
        finally:
            self.is_complete = True


def create_transaction(user_id: str, app: Flask | None = None) -> Transaction:
    if app is None:
        from flask import current_app

        app = current_app
    sm = app.extensions["sqlalchemy_sessionmaker"]
    return Transaction(sm(), user_id)


@contextmanager
def transaction_scope(user_id: str, app: Flask | None = None) -> Generator[Transaction, None, None]:
    """
    Yields a Transaction and commits on success; any exception rolls back
    every write made inside it and propagates unchanged.
    """
    tx = create_transaction(user_id, app)
    try:
        yield tx
        tx.commit()
    except Exception:
        tx.rollback()
        raise
    finally:
        tx.session.close()
