from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from trustlessid.config import settings


class Base(DeclarativeBase):
    pass


def _sqlite_disable_driver_begin(dbapi_connection, connection_record):
    dbapi_connection.isolation_level = None


def _sqlite_begin_immediate(conn):
    # Take the write lock up front so concurrent writers queue instead of deadlocking.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(url: str) -> AsyncEngine:
    if url.startswith("sqlite"):
        engine = create_async_engine(url)
        event.listen(engine.sync_engine, "connect", _sqlite_disable_driver_begin)
        event.listen(engine.sync_engine, "begin", _sqlite_begin_immediate)
        return engine
    return create_async_engine(url, pool_pre_ping=True)


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(bind, expire_on_commit=False)


engine = build_engine(settings.database_url)
async_session = build_sessionmaker(engine)


async def get_db():
    async with async_session() as session:
        yield session


async def create_tables(bind: AsyncEngine = engine) -> None:
    import trustlessid.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
