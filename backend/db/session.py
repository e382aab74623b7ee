"""
RebalanceOps Database Session Management

Async SQLAlchemy engine, session factory, and the per-session tenant
context that PostgreSQL row-level security policies key on.
"""

import uuid

from sqlalchemy import Connection, event, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Session

from core.config import get_settings

settings = get_settings()


def engine_options(database_url: str) -> dict:
    """Pool settings for server databases; SQLite (local demos, tests) takes none."""
    if database_url.startswith("sqlite"):
        return {}
    return {"pool_size": 10, "max_overflow": 10, "pool_pre_ping": True}


engine = create_async_engine(
    settings.database_url,
    echo=settings.database_echo,
    **engine_options(settings.database_url),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


TENANT_INFO_KEY = "tenant_customer_id"


def _apply_tenant_setting(connection: Connection, customer_id: str) -> None:
    if connection.dialect.name != "postgresql":
        return
    connection.execute(
        text("SELECT set_config('app.current_customer_id', :cid, true)"),
        {"cid": customer_id},
    )


def _reapply_tenant(session: Session, transaction, connection: Connection) -> None:
    customer_id = session.info.get(TENANT_INFO_KEY)
    if customer_id:
        _apply_tenant_setting(connection, customer_id)


async def set_tenant_context(session: AsyncSession, customer_id: uuid.UUID | str) -> None:
    """
    Scope the session to one customer for row-level security.

    ``app.current_customer_id`` is transaction-local, so it is applied again
    at the start of every transaction the session begins (after a commit or
    rollback too) and never outlives the session on a pooled connection.
    """
    session.info[TENANT_INFO_KEY] = str(customer_id)
    if not event.contains(session.sync_session, "after_begin", _reapply_tenant):
        event.listen(session.sync_session, "after_begin", _reapply_tenant)
    if session.in_transaction():
        connection = await session.connection()
        await connection.run_sync(lambda sync_conn: _apply_tenant_setting(sync_conn, str(customer_id)))


class Base(DeclarativeBase):
    """Declarative base for all SQLAlchemy models."""
    pass
