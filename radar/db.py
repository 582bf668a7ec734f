from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from radar.errors import PersistenceError
from radar.models import Base

log = logging.getLogger(__name__)


class Store:
    """Explicit handle on the durable store.

    Constructed once at process start and passed to every component; tests
    open one per case and close it afterwards::

        store = Store(tmp_path / "radar.db")
        try:
            ...
        finally:
            store.close()
    """

    def __init__(self, db_path: str | Path, *, busy_timeout: float = 10.0):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine: Engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False, "timeout": busy_timeout},
        )
        event.listen(self.engine, "connect", _enable_foreign_keys)
        Base.metadata.create_all(self.engine)
        self._factory = sessionmaker(bind=self.engine, autoflush=False, expire_on_commit=False)
        self._closed = False
        log.info("Opened store at %s", self.db_path)

    def session(self) -> Session:
        if self._closed:
            raise RuntimeError("Store has been closed")
        return self._factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Context manager providing a transactional session scope.

        Usage::

            with store.session_scope() as session:
                ...
                session.commit()
        """
        session = self.session()
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        if not self._closed:
            self.engine.dispose()
            self._closed = True
            log.info("Closed store at %s", self.db_path)


def _enable_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


async def call_bounded(fn: Callable[..., Any], *args: Any, timeout: float, **kwargs: Any) -> Any:
    """Run a blocking store operation in a worker thread, giving up after *timeout* seconds."""
    try:
        return await asyncio.wait_for(asyncio.to_thread(fn, *args, **kwargs), timeout)
    except TimeoutError as exc:
        name = getattr(fn, "__name__", repr(fn))
        raise PersistenceError(f"Store call {name} timed out") from exc
