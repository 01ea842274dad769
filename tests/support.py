"""Shared fixtures: an in-memory database with the default game catalog."""
import unittest
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.future import select
from sqlalchemy.pool import StaticPool

from database import make_sessionmaker, transaction
from game_config import ensure_default_configs
from ledger import adjust
from locks import KeyedLock
from models import Balance, Base, FairnessSeed, User

TEST_DATABASE_URL = "sqlite+aiosqlite://"


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.engine = create_async_engine(TEST_DATABASE_URL, poolclass=StaticPool)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.Session = make_sessionmaker(self.engine)
        async with self.Session() as session:
            await ensure_default_configs(session)
        self.locks = KeyedLock(timeout=5)
        self.user_id = await self.create_user("alice")

    async def asyncTearDown(self):
        await self.engine.dispose()

    async def create_user(self, username: str, is_admin: bool = False) -> int:
        async with self.Session() as session:
            user = User(username=username, hashed_password="not-used", is_admin=is_admin)
            session.add(user)
            await session.commit()
            return user.id

    async def fund(self, user_id: int, amount) -> None:
        async with self.Session() as session:
            async with transaction(session):
                await adjust(session, user_id, Decimal(str(amount)), "test funding")

    async def available(self, user_id: int) -> Decimal:
        async with self.Session() as session:
            balance = await session.get(Balance, user_id)
            return Decimal("0.00") if balance is None else Decimal(balance.available)

    async def count(self, model, *criteria) -> int:
        async with self.Session() as session:
            result = await session.execute(select(func.count()).select_from(model).where(*criteria))
            return result.scalar_one()

    async def active_seed(self, user_id: int, game_slug: str):
        async with self.Session() as session:
            result = await session.execute(
                select(FairnessSeed).where(
                    FairnessSeed.user_id == user_id,
                    FairnessSeed.game_slug == game_slug,
                    FairnessSeed.active == True,  # noqa: E712
                )
            )
            return result.scalar_one_or_none()
