"""Balance ledger.

Every balance change happens inside the caller's transaction, on a row read
with ``SELECT ... FOR UPDATE``, and is mirrored by an append-only movement.
Callers also hold the user's ``KeyedLock`` scope for the whole transaction.
"""
from dataclasses import dataclass
from decimal import Decimal
import logging

from fastapi import APIRouter, Body, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db, insert_ignore, transaction
from dependencies import get_current_user, get_locks, require_admin
from errors import InsufficientFunds, InvalidInput, NotFound
from locks import KeyedLock
from models import Balance, Movement, MovementKind, User

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Balance"])

ZERO = Decimal("0.00")


@dataclass
class LedgerResult:
    balance_before: Decimal
    balance_after: Decimal


async def ensure_balance(session: AsyncSession, user_id: int) -> None:
    """Create the zeroed balance row if it does not exist yet."""
    await insert_ignore(
        session, Balance, {"user_id": user_id, "available": ZERO, "held": ZERO}, index_elements=["user_id"]
    )


async def lock_balance(session: AsyncSession, user_id: int) -> Balance:
    await ensure_balance(session, user_id)
    result = await session.execute(
        select(Balance)
        .where(Balance.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


def _append(session, user_id, kind, amount, before, after, description):
    session.add(Movement(
        user_id=user_id,
        kind=kind.value,
        amount=amount,
        balance_before=before,
        balance_after=after,
        description=(description or "")[:255],
    ))


async def debit_and_credit(
    session: AsyncSession,
    user_id: int,
    stake: Decimal,
    payout: Decimal,
    stake_description: str = None,
    credit_description: str = None,
) -> LedgerResult:
    """Take the stake and pay out the winnings as one unit.

    Raises ``InsufficientFunds`` before touching anything when the available
    balance does not cover the stake.
    """
    balance = await lock_balance(session, user_id)
    before = Decimal(balance.available)
    if before < stake:
        logger.info(f"Insufficient funds: user={user_id} available={before} stake={stake}")
        raise InsufficientFunds()

    after_stake = before - stake
    balance.available = after_stake
    _append(session, user_id, MovementKind.STAKE, -stake, before, after_stake, stake_description)

    after = after_stake
    if payout > 0:
        after = after_stake + payout
        balance.available = after
        _append(session, user_id, MovementKind.CREDIT, payout, after_stake, after, credit_description)

    await session.flush()
    return LedgerResult(balance_before=before, balance_after=after)


async def adjust(session: AsyncSession, user_id: int, amount: Decimal, description: str = None) -> LedgerResult:
    """Signed manual adjustment; never drives the balance below zero."""
    if amount == 0:
        raise InvalidInput("Amount must be non-zero")
    balance = await lock_balance(session, user_id)
    before = Decimal(balance.available)
    after = before + amount
    if after < 0:
        raise InsufficientFunds()
    balance.available = after
    _append(session, user_id, MovementKind.ADJUSTMENT, amount, before, after, description)
    await session.flush()
    return LedgerResult(balance_before=before, balance_after=after)


def balance_view(balance: Balance) -> dict:
    available = float(balance.available)
    held = float(balance.held)
    return {"available": available, "held": held, "total": available + held}


# --- Endpoints ---

@router.get("/balance")
async def get_my_balance(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    locks: KeyedLock = Depends(get_locks),
):
    """Get the caller's available and held funds"""
    user_id = current_user.id
    async with locks.hold(user_id):
        async with transaction(db):
            await ensure_balance(db, user_id)
            balance = await db.get(Balance, user_id, populate_existing=True)
            return balance_view(balance)


@router.post("/admin/users/{user_id}/credit", dependencies=[Depends(require_admin)])
async def credit_user(
    user_id: int,
    amount: Decimal = Body(..., decimal_places=2),
    description: str = Body("Manual adjustment", max_length=255),
    db: AsyncSession = Depends(get_db),
    locks: KeyedLock = Depends(get_locks),
):
    """Credit (or debit, with a negative amount) a user's available funds"""
    async with locks.hold(user_id):
        async with transaction(db):
            if await db.get(User, user_id) is None:
                raise NotFound("User not found")
            result = await adjust(db, user_id, amount, description)
    logger.info(f"Balance adjusted: user={user_id} amount={amount} after={result.balance_after}")
    return {
        "user_id": user_id,
        "balance_before": float(result.balance_before),
        "balance_after": float(result.balance_after),
    }
