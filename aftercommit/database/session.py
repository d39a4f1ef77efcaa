# aftercommit/database/session.py
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Optional

from sqlalchemy import Engine, MetaData, event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session

from aftercommit.config.settings import Settings
from aftercommit.database.events import SessionEventBinder
from aftercommit.transactions import PendingHandler


def _apply_sqlite_pragmas(dbapi_connection) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA synchronous=NORMAL;")
    cursor.execute("PRAGMA busy_timeout=5000;")  # 5s
    cursor.close()


def configure_sqlite(engine: Engine) -> None:
    """
    Make SQLite transactions nest the way SAVEPOINT-based code expects.

    - pysqlite's own BEGIN handling is switched off and SQLAlchemy emits BEGIN
      itself, otherwise RELEASE / ROLLBACK TO on a SAVEPOINT can end the
      outer transaction
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, _connection_record) -> None:
        _apply_sqlite_pragmas(dbapi_connection)
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")


class DeferringSession(Session):
    """Sync session class behind Database.SessionLocal; deferral listeners live here."""


class Database:
    def __init__(
        self,
        database_url: str,
        *,
        whitelist: Iterable[str] = (),
        connection_name: Optional[str] = None,
    ) -> None:
        self.database_url = database_url
        is_sqlite = database_url.startswith("sqlite")

        self.engine: AsyncEngine = create_async_engine(
            database_url,
            echo=False,
            pool_pre_ping=True,
            connect_args={"timeout": 30} if is_sqlite else {},
        )

        if is_sqlite:
            configure_sqlite(self.engine.sync_engine)

        # per-Database subclass so listeners never leak onto other engines
        self.session_class: type[Session] = type("DeferringSession", (DeferringSession,), {})
        self.events = SessionEventBinder(whitelist, connection_name=connection_name)
        self.events.listen(self.session_class)

        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autoflush=False,
            class_=AsyncSession,
            sync_session_class=self.session_class,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            whitelist=settings.whitelist,
            connection_name=settings.connection_name,
        )

    async def init_models(self, metadata: MetaData) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.SessionLocal() as s:
            yield s

    def submit(self, session: AsyncSession, subject: Any, handler: PendingHandler) -> Any:
        """
        Run `handler` now or once `session`'s current transaction commits.
        Returns the handler's result when it ran now, None when deferred.
        """
        return self.events.submit(session, subject, handler)

    def defer(self, session: AsyncSession, handler: PendingHandler) -> None:
        self.events.defer(session, handler)
