from __future__ import annotations

import sys
import uuid
import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings


# ─────────────────────────────────────────
# Windows Event Loop Fix (psycopg3 async)
# ─────────────────────────────────────────

def _fix_windows_event_loop() -> None:
    """
    Psycopg async on Windows is not compatible with ProactorEventLoop.
    Force SelectorEventLoop.
    """
    if sys.platform.startswith("win"):
        asyncio.set_event_loop_policy(
            asyncio.WindowsSelectorEventLoopPolicy()
        )


_fix_windows_event_loop()


# ─────────────────────────────────────────
# Engine & Session Factory (created on first use)
# ─────────────────────────────────────────

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    global _engine, _session_factory
    if _engine is None:
        _engine = create_async_engine(
            get_settings().DATABASE_URL,
            echo=False,
            pool_pre_ping=True,
        )
        _session_factory = async_sessionmaker(
            bind=_engine,
            expire_on_commit=False,
            autoflush=False,
        )
    return _engine


def _sessions() -> async_sessionmaker[AsyncSession]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


# ─────────────────────────────────────────
# Tenant-Aware Session (RLS Safe)
# ─────────────────────────────────────────

@asynccontextmanager
async def tenant_session(tenant_id: str) -> AsyncIterator[AsyncSession]:
    """
    Tenant-aware session with an explicit transaction.

    - SET LOCAL inside the transaction, reset when it ends
    - tenant id inlined (SET LOCAL takes no bind parameters in psycopg3),
      so it must parse as a UUID first
    - fail-closed if tenant_id missing
    """

    if not tenant_id:
        raise ValueError("tenant_id is required (fail-closed)")

    tenant_id = str(uuid.UUID(str(tenant_id)))

    async with _sessions()() as session:
        async with session.begin():
            await session.execute(
                text(f"SET LOCAL app.tenant_id = '{tenant_id}'")
            )

            yield session
