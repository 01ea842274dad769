"""Round orchestration for every casino game.

A round is one transaction: load config, take the seed's current counter,
derive the fraction, bump the counter, calibrate, resolve, move the money and
write the round record. Any failure rolls all of it back, the counter bump
included, so a retried request never reuses or skips randomness.
"""
from decimal import Decimal
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from audit import RoundObservers
from database import get_db, transaction
from dependencies import get_current_user, get_locks, get_observers
from errors import CasinoError, Internal, NotFound, SeedNotRevealed, Unavailable
from fairness import derive, verify_commitment
from game_config import check_playable, load_game_config
from ledger import debit_and_credit
from locks import KeyedLock
from models import CasinoRound, FairnessSeed, User
from resolver import Game, get_game, payout_for
from seeds import get_or_create_active_seed
from settings import ROUNDS_PAGE_LIMIT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/casino", tags=["Casino"])

SNAPSHOT_VERSION = 1


class PlayRequest(BaseModel):
    stake: Decimal = Field(..., decimal_places=2)

    # game-specific fields (bet, choice, target) ride along as extras
    model_config = ConfigDict(extra="allow")


async def play_round(
    session: AsyncSession,
    locks: KeyedLock,
    user_id: int,
    game_slug: str,
    stake: Decimal,
    body: dict,
    observers: Optional[RoundObservers] = None,
) -> dict:
    """Resolve one round for ``user_id`` and return its receipt."""
    game = get_game(game_slug)
    params = game.parse_input(body or {})
    stake = Decimal(stake)

    async with locks.hold(user_id):
        try:
            async with transaction(session):
                settings = await load_game_config(session, game.slug)
                check_playable(settings, stake)

                seed = await get_or_create_active_seed(session, user_id, game.slug, for_update=True)
                counter = int(seed.counter)
                fraction = derive(seed.server_secret, seed.client_value, counter)
                seed.counter = counter + 1

                calibration, resolution = game.resolve(
                    fraction, params, settings.payout_structure, settings.rtp_target
                )
                payout = payout_for(stake, resolution.multiplier)

                moved = await debit_and_credit(
                    session,
                    user_id,
                    stake,
                    payout,
                    stake_description=game.describe(params, resolution),
                    credit_description=f"{game.display_name} win x{resolution.multiplier:g}",
                )

                snapshot = {
                    "version": SNAPSHOT_VERSION,
                    "seed_id": seed.id,
                    "server_secret_hash": seed.server_secret_hash,
                    "client_value": seed.client_value,
                    "counter_used": counter,
                    "random_fraction": fraction,
                    "rtp_target": settings.rtp_target,
                    "calibration": calibration,
                }
                round_obj = CasinoRound(
                    user_id=user_id,
                    game_slug=game.slug,
                    stake=stake,
                    payout=payout,
                    house_profit=stake - payout,
                    input_params=params,
                    outcome={
                        **resolution.fields,
                        "won": resolution.won,
                        "multiplier": resolution.multiplier,
                        "payout": float(payout),
                    },
                    fairness_snapshot=snapshot,
                )
                session.add(round_obj)
                await session.flush()

                receipt = {
                    "round_id": round_obj.id,
                    "user_id": user_id,
                    "game": game.slug,
                    **resolution.fields,
                    "won": resolution.won,
                    "multiplier": resolution.multiplier,
                    "stake": float(stake),
                    "payout": float(payout),
                    "house_profit": float(stake - payout),
                    "balance_before": float(moved.balance_before),
                    "balance_after": float(moved.balance_after),
                    "fairness": {k: v for k, v in snapshot.items() if k != "calibration"},
                    "created_at": round_obj.created_at,
                }
        except CasinoError:
            raise
        except OperationalError as e:
            logger.warning(f"Round aborted by the database: user={user_id} game={game.slug}: {e}")
            raise Unavailable()
        except SQLAlchemyError:
            logger.exception(f"Round failed: user={user_id} game={game.slug}")
            raise Internal("Failed to resolve round")

    logger.debug(
        f"Round resolved: id={receipt['round_id']} user={user_id} game={game.slug} "
        f"counter={counter} stake={stake} payout={payout}"
    )
    if observers is not None:
        observers.notify(receipt)
    return receipt


def round_view(round_obj: CasinoRound) -> dict:
    return {
        "id": round_obj.id,
        "game": round_obj.game_slug,
        "stake": float(round_obj.stake),
        "payout": float(round_obj.payout),
        "house_profit": float(round_obj.house_profit),
        "input": round_obj.input_params,
        "outcome": round_obj.outcome,
        "fairness": round_obj.fairness_snapshot,
        "created_at": round_obj.created_at,
    }


async def list_rounds(session: AsyncSession, user_id: int, game_slug: str, limit: int = ROUNDS_PAGE_LIMIT):
    limit = max(1, min(int(limit), ROUNDS_PAGE_LIMIT))
    result = await session.execute(
        select(CasinoRound)
        .where(CasinoRound.user_id == user_id, CasinoRound.game_slug == game_slug)
        .order_by(CasinoRound.created_at.desc(), CasinoRound.id.desc())
        .limit(limit)
    )
    return result.scalars().all()


def replay_round(game: Game, server_secret: str, snapshot: dict, input_params: dict) -> dict:
    """Recompute a round from its revealed secret.

    Uses the calibration recorded with the round, so later configuration
    changes do not affect the check.
    """
    fraction = derive(server_secret, snapshot["client_value"], snapshot["counter_used"])
    resolution = game.decide(fraction, input_params, snapshot["calibration"])
    return {
        "commitment_ok": verify_commitment(server_secret, snapshot["server_secret_hash"]),
        "random_fraction": fraction,
        "won": resolution.won,
        "multiplier": resolution.multiplier,
        "fields": resolution.fields,
    }


async def verify_round(session: AsyncSession, user_id: int, game_slug: str, round_id: int) -> dict:
    game = get_game(game_slug)
    round_obj = await session.get(CasinoRound, round_id)
    if round_obj is None or round_obj.user_id != user_id or round_obj.game_slug != game.slug:
        raise NotFound("Round not found")

    snapshot = round_obj.fairness_snapshot
    seed = await session.get(FairnessSeed, snapshot["seed_id"])
    if seed is None:
        raise NotFound("Seed not found")
    if seed.active:
        raise SeedNotRevealed()

    replay = replay_round(game, seed.server_secret, snapshot, round_obj.input_params)
    stored = round_obj.outcome
    is_fair = (
        replay["commitment_ok"]
        and replay["random_fraction"] == snapshot["random_fraction"]
        and replay["multiplier"] == stored["multiplier"]
        and all(stored.get(k) == v for k, v in replay["fields"].items())
    )
    return {
        "round_id": round_obj.id,
        "game": game.slug,
        "server_secret": seed.server_secret,
        "server_secret_hash": snapshot["server_secret_hash"],
        "client_value": snapshot["client_value"],
        "counter": snapshot["counter_used"],
        "expected_fraction": replay["random_fraction"],
        "recorded_fraction": snapshot["random_fraction"],
        "expected_outcome": {**replay["fields"], "multiplier": replay["multiplier"]},
        "recorded_outcome": stored,
        "is_fair": is_fair,
        "verification_string": f"HMAC-SHA256({seed.server_secret}, {snapshot['client_value']}:{snapshot['counter_used']})",
    }


# --- Endpoints ---

@router.post("/{game_slug}/play", status_code=201)
async def play(
    game_slug: str,
    payload: PlayRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    locks: KeyedLock = Depends(get_locks),
    observers: RoundObservers = Depends(get_observers),
):
    return await play_round(
        db, locks, current_user.id, game_slug, payload.stake, payload.model_extra or {}, observers
    )


@router.get("/{game_slug}/my-rounds")
async def my_rounds(
    game_slug: str,
    limit: int = Query(ROUNDS_PAGE_LIMIT, ge=1, le=ROUNDS_PAGE_LIMIT),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get the caller's most recent rounds for a game"""
    game = get_game(game_slug)
    rounds = await list_rounds(db, current_user.id, game.slug, limit)
    return [round_view(r) for r in rounds]


@router.get("/{game_slug}/rounds/{round_id}/verify")
async def verify(
    game_slug: str,
    round_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Verify the fairness of a round whose seed has been revealed"""
    return await verify_round(db, current_user.id, game_slug, round_id)
