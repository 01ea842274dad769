from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.future import select

from database import transaction
from errors import InsufficientFunds, InvalidInput
from ledger import adjust, debit_and_credit, ensure_balance
from models import Balance, Movement, MovementKind
from tests.support import DatabaseTestCase


class TestLedger(DatabaseTestCase):

    async def movement_sum(self, user_id):
        async with self.Session() as session:
            result = await session.execute(select(func.sum(Movement.amount)).where(Movement.user_id == user_id))
            return Decimal(str(result.scalar_one() or 0)).quantize(Decimal("0.01"))

    async def test_balance_created_lazily_and_once(self):
        async with self.Session() as session:
            async with transaction(session):
                await ensure_balance(session, self.user_id)
                await ensure_balance(session, self.user_id)
        self.assertEqual(await self.count(Balance, Balance.user_id == self.user_id), 1)
        self.assertEqual(await self.available(self.user_id), Decimal("0.00"))

    async def test_debit_and_credit(self):
        await self.fund(self.user_id, "100.00")
        async with self.Session() as session:
            async with transaction(session):
                result = await debit_and_credit(session, self.user_id, Decimal("10.00"), Decimal("25.50"))
        self.assertEqual(result.balance_before, Decimal("100.00"))
        self.assertEqual(result.balance_after, Decimal("115.50"))
        self.assertEqual(await self.available(self.user_id), Decimal("115.50"))
        self.assertEqual(await self.count(Movement, Movement.kind == MovementKind.STAKE.value), 1)
        self.assertEqual(await self.count(Movement, Movement.kind == MovementKind.CREDIT.value), 1)
        self.assertEqual(await self.movement_sum(self.user_id), Decimal("115.50"))

    async def test_losing_round_writes_no_credit(self):
        await self.fund(self.user_id, "10.00")
        async with self.Session() as session:
            async with transaction(session):
                await debit_and_credit(session, self.user_id, Decimal("10.00"), Decimal("0.00"))
        self.assertEqual(await self.available(self.user_id), Decimal("0.00"))
        self.assertEqual(await self.count(Movement, Movement.kind == MovementKind.CREDIT.value), 0)

    async def test_insufficient_funds_changes_nothing(self):
        await self.fund(self.user_id, "5.00")
        with self.assertRaises(InsufficientFunds):
            async with self.Session() as session:
                async with transaction(session):
                    await debit_and_credit(session, self.user_id, Decimal("5.01"), Decimal("0.00"))
        self.assertEqual(await self.available(self.user_id), Decimal("5.00"))
        self.assertEqual(await self.count(Movement), 1)

    async def test_movements_chain_balances(self):
        await self.fund(self.user_id, "50.00")
        async with self.Session() as session:
            async with transaction(session):
                await debit_and_credit(session, self.user_id, Decimal("20.00"), Decimal("39.00"))
                await adjust(session, self.user_id, Decimal("-9.00"), "fee")
        async with self.Session() as session:
            result = await session.execute(select(Movement).order_by(Movement.id))
            movements = result.scalars().all()
        for previous, current in zip(movements, movements[1:]):
            self.assertEqual(Decimal(previous.balance_after), Decimal(current.balance_before))
        for movement in movements:
            self.assertEqual(
                Decimal(movement.balance_before) + Decimal(movement.amount), Decimal(movement.balance_after)
            )
        self.assertEqual(await self.available(self.user_id), Decimal("60.00"))
        self.assertEqual(await self.movement_sum(self.user_id), Decimal("60.00"))

    async def test_adjust_rules(self):
        with self.assertRaises(InvalidInput):
            await self.fund(self.user_id, "0")
        with self.assertRaises(InsufficientFunds):
            await self.fund(self.user_id, "-1.00")
        await self.fund(self.user_id, "3.00")
        await self.fund(self.user_id, "-3.00")
        self.assertEqual(await self.available(self.user_id), Decimal("0.00"))
