"""Outcome resolution for every game shape.

Each game turns one round fraction ``r`` into a concrete result in a single
step. Calibration (win probability or re-weighted paytable) is computed
first and kept with the round so a verifier can replay the decision without
the configuration that was live at play time.
"""
import logging
import math
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Dict, List, Optional

from calibration import TableEntry, calibrate_table, expected_return, win_probability
from errors import InvalidInput, NotFound

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


class GameShape(str, Enum):
    BINARY = "binary"
    TARGET = "target"
    TABLE = "table"


@dataclass
class Resolution:
    won: bool
    multiplier: float
    fields: Dict = field(default_factory=dict)


def payout_for(stake: Decimal, multiplier: float) -> Decimal:
    """stake x multiplier, rounded down to the cent."""
    if multiplier <= 0:
        return Decimal("0.00")
    return (Decimal(stake) * Decimal(str(multiplier))).quantize(CENT, rounding=ROUND_DOWN)


def pick_weighted(fraction: float, table: List[TableEntry]) -> TableEntry:
    """First entry whose cumulative weight reaches ``fraction * total``.

    Ties at an exact boundary go to the earliest-listed entry.
    """
    total = sum(entry.weight for entry in table)
    pick = fraction * total
    acc = 0
    for entry in table:
        acc += entry.weight
        if pick <= acc:
            return entry
    return table[0]


def non_target_face(fraction: float, target: int, faces: List[int]) -> int:
    """Losing face, derived from the same fraction that decided the loss."""
    others = [face for face in faces if face != target]
    idx = math.floor(fraction * (len(faces) - 1))
    return others[idx] if idx < len(others) else others[0]


def _as_int(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class Game:
    slug: str = ""
    display_name: str = ""
    shape: GameShape

    def parse_input(self, body: dict) -> dict:
        """Validate the game-specific request fields."""
        return {}

    def calibrate(self, structure, rtp_target: float) -> dict:
        raise NotImplementedError

    def decide(self, fraction: float, params: dict, calibration: dict) -> Resolution:
        raise NotImplementedError

    def resolve(self, fraction: float, params: dict, structure, rtp_target: float):
        calibration = self.calibrate(structure, rtp_target)
        return calibration, self.decide(fraction, params, calibration)

    def describe(self, params: dict, resolution: Resolution) -> str:
        return self.display_name


class FlatGame(Game):
    def calibrate(self, structure, rtp_target: float) -> dict:
        multiplier = float(structure.multiplier)
        return {
            "multiplier": multiplier,
            "win_probability": win_probability(rtp_target, multiplier),
        }


class BinaryGame(FlatGame):
    """Two-sided bet. The shown side follows the win/lose decision."""
    shape = GameShape.BINARY

    def __init__(self, slug, display_name, param, options, result_field):
        self.slug = slug
        self.display_name = display_name
        self.param = param
        self.options = tuple(options)
        self.result_field = result_field

    def parse_input(self, body: dict) -> dict:
        choice = str(body.get(self.param) or "").strip().lower()
        if choice not in self.options:
            raise InvalidInput(f"Invalid {self.param} ({'|'.join(self.options)})")
        return {self.param: choice}

    def opposite(self, choice: str) -> str:
        return self.options[1] if choice == self.options[0] else self.options[0]

    def decide(self, fraction: float, params: dict, calibration: dict) -> Resolution:
        choice = params[self.param]
        won = fraction < calibration["win_probability"]
        shown = choice if won else self.opposite(choice)
        return Resolution(
            won=won,
            multiplier=calibration["multiplier"] if won else 0.0,
            fields={self.param: choice, self.result_field: shown},
        )

    def describe(self, params: dict, resolution: Resolution) -> str:
        return f"{self.display_name} bet on {params[self.param]} ({resolution.fields[self.result_field]})"


class TargetGame(FlatGame):
    """Exact-match bet on one face. A loss shows another face picked from ``r``."""
    shape = GameShape.TARGET

    def __init__(self, slug, display_name, faces=range(1, 7)):
        self.slug = slug
        self.display_name = display_name
        self.faces = list(faces)

    def parse_input(self, body: dict) -> dict:
        target = _as_int(body.get("target"))
        if target not in self.faces:
            raise InvalidInput(f"Invalid target ({self.faces[0]}..{self.faces[-1]})")
        return {"target": target}

    def decide(self, fraction: float, params: dict, calibration: dict) -> Resolution:
        target = params["target"]
        won = fraction < calibration["win_probability"]
        roll = target if won else non_target_face(fraction, target, self.faces)
        return Resolution(
            won=won,
            multiplier=calibration["multiplier"] if won else 0.0,
            fields={"target": target, "roll": roll},
        )

    def describe(self, params: dict, resolution: Resolution) -> str:
        return f"{self.display_name} bet on {params['target']} (roll {resolution.fields['roll']})"


class TableGame(Game):
    """Weighted draw over a paytable recalibrated for the round."""
    shape = GameShape.TABLE

    def __init__(self, slug, display_name):
        self.slug = slug
        self.display_name = display_name

    def calibrate(self, structure, rtp_target: float) -> dict:
        table = calibrate_table(structure.entries, rtp_target)
        logger.debug(f"{self.slug} calibrated for rtp={rtp_target}: expected return {expected_return(table):.4f}")
        return {"paytable": [{"multiplier": e.multiplier, "weight": e.weight} for e in table]}

    def decide(self, fraction: float, params: dict, calibration: dict) -> Resolution:
        table = [TableEntry(e["multiplier"], e["weight"]) for e in calibration["paytable"]]
        hit = pick_weighted(fraction, table)
        multiplier = max(0.0, float(hit.multiplier))
        return Resolution(won=multiplier > 0, multiplier=multiplier, fields={"mult": multiplier})

    def describe(self, params: dict, resolution: Resolution) -> str:
        return f"{self.display_name} x{resolution.multiplier:g}"


GAMES = {
    game.slug: game
    for game in (
        BinaryGame("coinflip", "Coinflip", param="bet", options=("heads", "tails"), result_field="result"),
        BinaryGame("hilo", "HiLo", param="choice", options=("high", "low"), result_field="outcome"),
        TargetGame("dice", "Dice"),
        TableGame("scratch", "Scratch card"),
        TableGame("slots_common", "Slots Common"),
        TableGame("slots_premium", "Slots Premium"),
    )
}


def get_game(slug: str) -> Game:
    game = GAMES.get((slug or "").lower())
    if game is None:
        raise NotFound(f"Unknown game: {slug}")
    return game
