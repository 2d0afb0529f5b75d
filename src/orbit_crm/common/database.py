"""Async engine and session handling.

All request handlers and background jobs go through ``DatabaseManager.get_session``,
which commits when the block exits cleanly and rolls back otherwise. Objects
stay usable after commit (``expire_on_commit=False``) so routers can build
responses from them.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from orbit_crm.common.config import OrbitSettings, get_settings
from orbit_crm.common.models import Base

# Every table must be registered on Base.metadata before create_all()
import orbit_crm.tenants.models  # noqa: F401
import orbit_crm.contacts.models  # noqa: F401
import orbit_crm.projects.models  # noqa: F401
import orbit_crm.invoices.models  # noqa: F401
import orbit_crm.documents.models  # noqa: F401
import orbit_crm.activity.models  # noqa: F401
import orbit_crm.portal.models  # noqa: F401
import orbit_crm.chat.models  # noqa: F401
import orbit_crm.notifications.models  # noqa: F401


def _is_file_sqlite(url: URL) -> bool:
    return url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:")


class DatabaseManager:
    """Owns the async engine and hands out transactional sessions."""

    def __init__(self, settings: OrbitSettings | None = None):
        self._settings = settings or get_settings()
        self.engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    async def init(self) -> None:
        url = make_url(self._settings.db_url)
        kwargs = {}
        if url.get_backend_name() == "sqlite":
            if _is_file_sqlite(url):
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
        else:
            kwargs["pool_pre_ping"] = True
        self.engine = create_async_engine(url, **kwargs)
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    def _require_engine(self) -> AsyncEngine:
        if self.engine is None:
            raise RuntimeError("DatabaseManager not initialized; call init() first")
        return self.engine

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        self._require_engine()
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        async with self._require_engine().begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        """True when the database answers a trivial query."""
        if self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            return False
        return True

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
        self.engine = None
        self._sessions = None
