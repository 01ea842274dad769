"""Fairness seed management.

One active seed per (user, game). The server secret's SHA-256 is published
as soon as the seed exists; the secret itself is only returned when the seed
is rotated out.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
import logging

from database import get_db, insert_ignore, transaction
from dependencies import get_current_user, get_locks
from errors import InvalidInput
from fairness import generate_server_secret, hash_server_secret
from locks import KeyedLock
from models import ACTIVE_SEED_WHERE, FairnessSeed, User, utcnow
from resolver import get_game
from settings import CLIENT_SEED_MAX_LENGTH, DEFAULT_CLIENT_SEED

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/pf-seeds", tags=["Provably Fair"])


class ClientValueUpdate(BaseModel):
    client_value: str


def public_view(seed: FairnessSeed) -> dict:
    return {
        "game": seed.game_slug,
        "server_secret_hash": seed.server_secret_hash,
        "client_value": seed.client_value,
        "counter": int(seed.counter),
        "created_at": seed.created_at,
    }


def _new_seed_values(user_id: int, game_slug: str) -> dict:
    server_secret = generate_server_secret()
    return {
        "user_id": user_id,
        "game_slug": game_slug,
        "server_secret": server_secret,
        "server_secret_hash": hash_server_secret(server_secret),
        "client_value": DEFAULT_CLIENT_SEED,
        "counter": 0,
        "active": True,
    }


async def _select_active(session: AsyncSession, user_id: int, game_slug: str, for_update: bool):
    stmt = select(FairnessSeed).where(
        FairnessSeed.user_id == user_id,
        FairnessSeed.game_slug == game_slug,
        ACTIVE_SEED_WHERE,
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return result.scalar_one_or_none()


async def get_or_create_active_seed(
    session: AsyncSession, user_id: int, game_slug: str, for_update: bool = False
) -> FairnessSeed:
    """Return the active seed, creating it on first use.

    Creation goes through INSERT ... ON CONFLICT DO NOTHING against the
    partial unique index, so concurrent first plays end up on the same row.
    """
    seed = await _select_active(session, user_id, game_slug, for_update)
    if seed is not None:
        return seed
    created = await insert_ignore(
        session,
        FairnessSeed,
        _new_seed_values(user_id, game_slug),
        index_elements=["user_id", "game_slug"],
        index_where=ACTIVE_SEED_WHERE,
    )
    if created:
        logger.info(f"Fairness seed created: user={user_id} game={game_slug}")
    return await _select_active(session, user_id, game_slug, for_update)


async def rotate(session: AsyncSession, user_id: int, game_slug: str) -> dict:
    """Retire the active seed, reveal its secret and start a fresh one."""
    old = await get_or_create_active_seed(session, user_id, game_slug, for_update=True)
    old.active = False
    old.revealed_at = utcnow()
    # the retired row must leave the unique index before the new one enters
    await session.flush()

    new = FairnessSeed(**_new_seed_values(user_id, game_slug))
    session.add(new)
    await session.flush()

    logger.info(f"Fairness seed rotated: user={user_id} game={game_slug} rounds={old.counter}")
    return {
        "rotated": True,
        "reveal_previous": {
            "server_secret": old.server_secret,
            "server_secret_hash": old.server_secret_hash,
            "client_value": old.client_value,
            "last_counter": int(old.counter),
        },
        "new_seed": {
            "server_secret_hash": new.server_secret_hash,
            "client_value": new.client_value,
            "counter": int(new.counter),
        },
    }


async def set_client_value(session: AsyncSession, user_id: int, game_slug: str, value: str) -> FairnessSeed:
    """Replace the client value of the active seed. The counter keeps running."""
    value = (value or "").strip()
    if not value:
        raise InvalidInput("client_value is required")
    if len(value) > CLIENT_SEED_MAX_LENGTH:
        raise InvalidInput(f"client_value must be at most {CLIENT_SEED_MAX_LENGTH} characters")
    seed = await get_or_create_active_seed(session, user_id, game_slug, for_update=True)
    seed.client_value = value
    await session.flush()
    return seed


# --- Endpoints ---

@router.get("/{game_slug}/me")
async def get_my_seed(
    game_slug: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    locks: KeyedLock = Depends(get_locks),
):
    """Active seed: hash of the server secret, client value and counter"""
    game = get_game(game_slug)
    user_id = current_user.id
    async with locks.hold(user_id):
        async with transaction(db):
            seed = await get_or_create_active_seed(db, user_id, game.slug)
            return public_view(seed)


@router.post("/{game_slug}/rotate")
async def rotate_my_seed(
    game_slug: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    locks: KeyedLock = Depends(get_locks),
):
    """Reveal the current server secret and switch to a new seed"""
    game = get_game(game_slug)
    user_id = current_user.id
    async with locks.hold(user_id):
        async with transaction(db):
            return await rotate(db, user_id, game.slug)


@router.patch("/{game_slug}/client")
async def set_my_client_value(
    game_slug: str,
    payload: ClientValueUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    locks: KeyedLock = Depends(get_locks),
):
    game = get_game(game_slug)
    user_id = current_user.id
    async with locks.hold(user_id):
        async with transaction(db):
            seed = await set_client_value(db, user_id, game.slug, payload.client_value)
            return public_view(seed)
