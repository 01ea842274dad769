"""RTP calibration.

Binary and target-match games pay a flat multiplier ``m``; their win
probability is ``p = rtp / m`` so that ``p * m == rtp``.

Weighted-table games keep their multipliers and rescale the weights of the
paying entries by a single factor ``k`` solving

    (k * S) / (k * W_plus + W_0) == T

where ``S`` is the weighted sum of paying multipliers, ``W_plus`` their total
weight and ``W_0`` the weight of the non-paying entries. The calibrated table
only lives for the round being resolved; configured weights are never
rewritten.
"""
import math
from dataclasses import dataclass
from typing import Iterable, List

MAX_TABLE_RTP = 0.9999
MAX_SCALE = 1e6
MIN_DENOMINATOR = 1e-12
NORMALIZED_TOTAL = 1000


@dataclass(frozen=True)
class TableEntry:
    multiplier: float
    weight: float


def win_probability(rtp_target: float, multiplier: float) -> float:
    """Win probability that makes a flat ``multiplier`` return ``rtp_target``."""
    rtp = float(rtp_target)
    mult = float(multiplier)
    if not math.isfinite(rtp) or rtp < 0:
        return 0.0
    if not math.isfinite(mult) or mult <= 0:
        return 0.0
    return max(0.0, min(1.0, rtp / mult))


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calibrate_table(entries: Iterable, rtp_target: float) -> List[TableEntry]:
    """Re-weight a paytable so its expected return approaches ``rtp_target``.

    ``entries`` are objects with ``multiplier`` and ``weight`` attributes.
    Returns integer weights normalized to roughly ``NORMALIZED_TOTAL``, each
    at least 1.
    """
    table = [TableEntry(float(e.multiplier), max(0.0, float(e.weight))) for e in entries]
    if not table:
        return [TableEntry(1.0, 1)]

    zero_mass = paying_mass = paying_value = 0.0
    for entry in table:
        if entry.multiplier <= 0:
            zero_mass += entry.weight
        else:
            paying_mass += entry.weight
            paying_value += entry.weight * entry.multiplier

    if paying_mass <= 0:
        # Nothing can pay: seed a minimal paying entry so sampling stays defined
        table[0] = TableEntry(1.0, 1.0)
        zero_mass = sum(e.weight for e in table if e.multiplier <= 0)
        paying_mass = 1.0
        paying_value = 1.0

    target = max(0.0, min(MAX_TABLE_RTP, float(rtp_target or 0)))
    denominator = paying_value - target * paying_mass
    scale = (target * zero_mass) / denominator if denominator > MIN_DENOMINATOR else 1.0
    if not math.isfinite(scale) or scale <= 0:
        scale = 1.0
    scale = min(scale, MAX_SCALE)

    tuned = [
        TableEntry(e.multiplier, e.weight * scale) if e.multiplier > 0 else e
        for e in table
    ]
    total = sum(e.weight for e in tuned) or 1.0
    return [
        TableEntry(e.multiplier, max(1, _round_half_up(e.weight / total * NORMALIZED_TOTAL)))
        for e in tuned
    ]


def expected_return(entries: Iterable) -> float:
    """Expected payout ratio of a weighted table."""
    total_weight = 0.0
    total_value = 0.0
    for entry in entries:
        total_weight += entry.weight
        total_value += entry.weight * max(0.0, entry.multiplier)
    return total_value / total_weight if total_weight > 0 else 0.0
