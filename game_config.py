from decimal import Decimal
from typing import Annotated, List, Literal, Optional, Union
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_serializer, model_validator
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from database import get_db, insert_ignore
from dependencies import require_admin
from errors import GameUnavailable, Internal, InvalidInput, InvalidStake, NotFound
from models import GameConfig
from resolver import GameShape, get_game

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/casino/games-config", tags=["Casino Admin"], dependencies=[Depends(require_admin)])


# --- Payout structure: validated once, here ---

class PaytableEntry(BaseModel):
    multiplier: float = Field(ge=0, allow_inf_nan=False)
    weight: int = Field(ge=1)


class FlatPayout(BaseModel):
    kind: Literal["flat"] = "flat"
    multiplier: float = Field(gt=0, allow_inf_nan=False)


class TablePayout(BaseModel):
    kind: Literal["table"] = "table"
    entries: List[PaytableEntry] = Field(min_length=1)


PayoutStructure = Annotated[Union[FlatPayout, TablePayout], Field(discriminator="kind")]


class GameSettingsIn(BaseModel):
    active: bool = True
    rtp_target: float = Field(ge=0, lt=1, allow_inf_nan=False)
    min_stake: Decimal = Field(gt=0, decimal_places=2)
    max_stake: Decimal = Field(gt=0, decimal_places=2)
    payout_structure: PayoutStructure

    @model_validator(mode="after")
    def check_stake_range(self):
        if self.max_stake < self.min_stake:
            raise ValueError("max_stake must be >= min_stake")
        return self


class GameSettings(GameSettingsIn):
    game_slug: str

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def check_shape(self):
        game = get_game(self.game_slug)
        expected = "table" if game.shape == GameShape.TABLE else "flat"
        if self.payout_structure.kind != expected:
            raise ValueError(f"{self.game_slug} needs a '{expected}' payout structure")
        return self

    @field_serializer("min_stake", "max_stake")
    def _money(self, value: Decimal) -> float:
        return float(value)


class GameSettingsPatch(BaseModel):
    active: Optional[bool] = None
    rtp_target: Optional[float] = None
    min_stake: Optional[Decimal] = None
    max_stake: Optional[Decimal] = None
    payout_structure: Optional[dict] = None


# --- Built-in catalog, inserted at startup when a slug has no row yet ---

def _table(*pairs):
    return {"kind": "table", "entries": [{"multiplier": m, "weight": w} for m, w in pairs]}


DEFAULT_CATALOG = {
    "coinflip": {"rtp_target": 0.95, "payout_structure": {"kind": "flat", "multiplier": 2.0}},
    "hilo": {"rtp_target": 0.95, "payout_structure": {"kind": "flat", "multiplier": 1.95}},
    "dice": {"rtp_target": 0.90, "payout_structure": {"kind": "flat", "multiplier": 6.0}},
    "scratch": {"rtp_target": 0.93, "payout_structure": _table((0, 70), (0.5, 15), (1.0, 8), (2.0, 5), (10, 2))},
    "slots_common": {"rtp_target": 0.93, "payout_structure": _table((0, 64), (1.2, 22), (2, 9), (5, 4), (20, 1))},
    "slots_premium": {"rtp_target": 0.92, "payout_structure": _table((0, 66), (1.2, 20), (2, 8), (5, 5), (25, 1))},
}
DEFAULT_MIN_STAKE = Decimal("1.00")
DEFAULT_MAX_STAKE = Decimal("1000.00")


def _validation_message(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}" for err in exc.errors()
    )


async def ensure_default_configs(session: AsyncSession) -> None:
    async with session.begin():
        for slug, defaults in DEFAULT_CATALOG.items():
            created = await insert_ignore(
                session,
                GameConfig,
                {
                    "game_slug": slug,
                    "active": True,
                    "rtp_target": defaults["rtp_target"],
                    "min_stake": DEFAULT_MIN_STAKE,
                    "max_stake": DEFAULT_MAX_STAKE,
                    "payout_structure": defaults["payout_structure"],
                },
                index_elements=["game_slug"],
            )
            if created:
                logger.info(f"Default game config created: {slug}")


async def load_game_config(session: AsyncSession, slug: str) -> GameSettings:
    """Read and validate the configuration of one game."""
    slug = get_game(slug).slug
    row = await session.get(GameConfig, slug)
    if row is None:
        raise NotFound(f"No configuration for game {slug}")
    try:
        return GameSettings.model_validate(row)
    except ValidationError as e:
        logger.error(f"Stored configuration for {slug} is invalid: {_validation_message(e)}")
        raise Internal("Game configuration is invalid")


def check_playable(settings: GameSettings, stake: Decimal) -> None:
    if not settings.active:
        raise GameUnavailable()
    if stake is None or not Decimal(stake).is_finite() or stake <= 0:
        raise InvalidStake("Stake must be positive")
    if stake < settings.min_stake:
        raise InvalidStake(f"Minimum stake is {settings.min_stake}")
    if stake > settings.max_stake:
        raise InvalidStake(f"Maximum stake is {settings.max_stake}")


def _apply(row: GameConfig, settings: GameSettings) -> None:
    row.active = settings.active
    row.rtp_target = settings.rtp_target
    row.min_stake = settings.min_stake
    row.max_stake = settings.max_stake
    row.payout_structure = settings.payout_structure.model_dump()


def _build_settings(data: dict) -> GameSettings:
    try:
        return GameSettings.model_validate(data)
    except ValidationError as e:
        raise InvalidInput(_validation_message(e))


# --- Admin endpoints ---

@router.get("")
async def list_game_configs(db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(GameConfig).order_by(GameConfig.game_slug))
    rows = result.scalars().all()
    items = [GameSettings.model_validate(r).model_dump() for r in rows]
    return {"items": items, "count": len(items)}


@router.get("/{game_slug}")
async def get_game_config(game_slug: str, db: AsyncSession = Depends(get_db)):
    return (await load_game_config(db, game_slug)).model_dump()


@router.put("/{game_slug}")
async def upsert_game_config(game_slug: str, payload: GameSettingsIn, db: AsyncSession = Depends(get_db)):
    """Create or fully replace a game configuration"""
    slug = get_game(game_slug).slug
    settings = _build_settings({**payload.model_dump(), "game_slug": slug})
    row = await db.get(GameConfig, slug)
    if row is None:
        row = GameConfig(game_slug=slug)
        db.add(row)
    _apply(row, settings)
    await db.commit()
    logger.info(f"Game config upserted: {slug} rtp={settings.rtp_target}")
    return settings.model_dump()


@router.patch("/{game_slug}")
async def patch_game_config(game_slug: str, payload: GameSettingsPatch, db: AsyncSession = Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise InvalidInput("Nothing to update")
    current = await load_game_config(db, game_slug)
    settings = _build_settings({**current.model_dump(), **changes})
    row = await db.get(GameConfig, current.game_slug)
    _apply(row, settings)
    await db.commit()
    logger.info(f"Game config patched: {current.game_slug} fields={sorted(changes)}")
    return settings.model_dump()


@router.delete("/{game_slug}")
async def deactivate_game_config(game_slug: str, db: AsyncSession = Depends(get_db)):
    """Logical delete: the game stays configured but cannot be played"""
    slug = get_game(game_slug).slug
    row = await db.get(GameConfig, slug)
    if row is None:
        raise NotFound(f"No configuration for game {slug}")
    row.active = False
    await db.commit()
    logger.info(f"Game config deactivated: {slug}")
    return GameSettings.model_validate(row).model_dump()
