from contextlib import asynccontextmanager

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from settings import DATABASE_URL, DB_ECHO


def make_engine(url: str = DATABASE_URL, **kwargs):
    return create_async_engine(url, echo=DB_ECHO, **kwargs)


def make_sessionmaker(bind) -> async_sessionmaker:
    return async_sessionmaker(bind=bind, class_=AsyncSession, expire_on_commit=False)


engine = make_engine()

AsyncSessionLocal = make_sessionmaker(engine)


async def get_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def insert_ignore(session: AsyncSession, model, values: dict, index_elements: list, index_where=None):
    """INSERT ... ON CONFLICT DO NOTHING for the session's dialect.

    Returns True when a row was inserted, False when it already existed.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        insert = pg_insert
    elif dialect == "sqlite":
        insert = sqlite_insert
    else:
        raise RuntimeError(f"Unsupported dialect for idempotent insert: {dialect}")

    table = model.__table__
    stmt = insert(table).values(**values).on_conflict_do_nothing(
        index_elements=index_elements, index_where=index_where
    )
    result = await session.execute(stmt)
    return result.rowcount == 1


@asynccontextmanager
async def transaction(session: AsyncSession):
    """Run the block as one atomic unit: commit on success, roll back on any error.

    A transaction opened implicitly by earlier reads (e.g. loading the
    authenticated user) is closed first; sessions use expire_on_commit=False
    so already loaded objects stay usable.
    """
    if session.in_transaction():
        await session.commit()
    async with session.begin():
        yield session
