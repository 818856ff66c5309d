"""Plinko bin selection and payout tables.

Bin odds are the binomial distribution of a ball falling through ``rows`` pegs.
The house-edge bias is a fixed, published constant per play; it reshapes the
odds before sampling and never consumes randomness of its own.
"""

from math import comb
from typing import List

import numpy as np

from fairsettle.domain.errors import MalformedOutcomeInput
from fairsettle.domain.seed_combiner import combine, derive_float, nonce_digest

MIN_ROWS = 8
MAX_ROWS = 16
RISK_LEVELS = ("low", "medium", "high")
MIN_BIN_ODDS = 0.001

PAYOUT_TABLES = {
    8: {
        "low": [5.6, 2.1, 1.1, 1, 0.5, 1, 1.1, 2.1, 5.6],
        "medium": [13, 3, 1.3, 0.7, 0.4, 0.7, 1.3, 3, 13],
        "high": [29, 4, 1.5, 0.3, 0.2, 0.3, 1.5, 4, 29],
    },
    9: {
        "low": [5.6, 2, 1.6, 1, 0.7, 0.7, 1, 1.6, 2, 5.6],
        "medium": [18, 4, 1.7, 0.9, 0.5, 0.5, 0.9, 1.7, 4, 18],
        "high": [43, 7, 2, 0.6, 0.2, 0.2, 0.6, 2, 7, 43],
    },
    10: {
        "low": [8.9, 3, 1.4, 1.1, 1, 0.5, 1, 1.1, 1.4, 3, 8.9],
        "medium": [22, 5, 2, 1.4, 0.6, 0.4, 0.6, 1.4, 2, 5, 22],
        "high": [76, 10, 3, 0.9, 0.3, 0.2, 0.3, 0.9, 3, 10, 76],
    },
    11: {
        "low": [8.4, 3, 1.9, 1.3, 1, 0.7, 0.7, 1, 1.3, 1.9, 3, 8.4],
        "medium": [24, 6, 3, 1.8, 0.7, 0.5, 0.5, 0.7, 1.8, 3, 6, 24],
        "high": [120, 14, 5.2, 1.4, 0.4, 0.2, 0.2, 0.4, 1.4, 5.2, 14, 120],
    },
    12: {
        "low": [10, 3, 1.6, 1.4, 1.1, 1, 0.5, 1, 1.1, 1.4, 1.6, 3, 10],
        "medium": [33, 11, 4, 2, 1.1, 0.6, 0.3, 0.6, 1.1, 2, 4, 11, 33],
        "high": [170, 24, 8.1, 2, 0.7, 0.2, 0.2, 0.2, 0.7, 2, 8.1, 24, 170],
    },
    13: {
        "low": [8.1, 4, 3, 1.9, 1.2, 0.9, 0.7, 0.7, 0.9, 1.2, 1.9, 3, 4, 8.1],
        "medium": [43, 13, 6, 3, 1.3, 0.7, 0.4, 0.4, 0.7, 1.3, 3, 6, 13, 43],
        "high": [260, 37, 11, 4, 1, 0.2, 0.2, 0.2, 0.2, 1, 4, 11, 37, 260],
    },
    14: {
        "low": [7.1, 4, 1.9, 1.4, 1.3, 1.1, 1, 0.5, 1, 1.1, 1.3, 1.4, 1.9, 4, 7.1],
        "medium": [58, 15, 7, 4, 1.9, 1, 0.5, 0.2, 0.5, 1, 1.9, 4, 7, 15, 58],
        "high": [420, 56, 18, 5, 1.9, 0.3, 0.2, 0.2, 0.2, 0.3, 1.9, 5, 18, 56, 420],
    },
    15: {
        "low": [15, 8, 3, 2, 1.5, 1.1, 1, 0.7, 0.7, 1, 1.1, 1.5, 2, 3, 8, 15],
        "medium": [88, 18, 11, 5, 3, 1.3, 0.5, 0.3, 0.3, 0.5, 1.3, 3, 5, 11, 18, 88],
        "high": [620, 83, 27, 8, 3, 0.5, 0.2, 0.2, 0.2, 0.2, 0.5, 3, 8, 27, 83, 620],
    },
    16: {
        "low": [16, 9, 2, 1.4, 1.4, 1.2, 1.1, 1, 0.5, 1, 1.1, 1.2, 1.4, 1.4, 2, 9, 16],
        "medium": [110, 41, 10, 5, 3, 1.5, 1, 0.5, 0.3, 0.5, 1, 1.5, 3, 5, 10, 41, 110],
        "high": [1000, 130, 26, 9, 4, 2, 0.2, 0.2, 0.2, 0.2, 0.2, 2, 4, 9, 26, 130, 1000],
    },
}


def validate_board(rows: int, risk: str) -> None:
    if not isinstance(rows, int) or not MIN_ROWS <= rows <= MAX_ROWS:
        raise MalformedOutcomeInput(f"rows must be in [{MIN_ROWS}, {MAX_ROWS}], got {rows!r}")
    if risk not in RISK_LEVELS:
        raise MalformedOutcomeInput(f"unknown risk level {risk!r}")


def bin_odds(rows: int) -> List[float]:
    """Binomial bin odds in percent, one entry per bin (``rows + 1`` bins)."""
    total = 2**rows
    return [comb(rows, k) * 100 / total for k in range(rows + 1)]


def apply_house_edge_bias(odds: List[float], bias: float) -> List[float]:
    """Move probability mass toward the centre bins.

    Args:
        odds (List[float]): Bin odds in percent
        bias (float): Strength in [0, 1); 0 returns the odds unchanged

    Returns:
        List[float]: Re-normalised odds summing to 100
    """
    if not np.isfinite(bias) or not 0 <= bias < 1:
        raise MalformedOutcomeInput(f"house edge bias must be in [0, 1), got {bias!r}")
    if bias == 0:
        return list(odds)
    centre = len(odds) // 2
    half_range = max(2, int(len(odds) * 0.4)) / 2
    biased = []
    for i, odd in enumerate(odds):
        distance = abs(i - centre)
        if distance <= half_range:
            biased.append(odd + odd * bias * (1 - distance / half_range))
        else:
            biased.append(max(MIN_BIN_ODDS, odd - odd * bias * 0.5))
    total = sum(biased)
    return [odd / total * 100 for odd in biased]


def select_bin(random_value: float, odds: List[float]) -> int:
    """Cumulative-distribution sampling: the first bin whose CDF reaches the value."""
    if not 0 <= random_value < 1:
        raise MalformedOutcomeInput(f"random value must be in [0, 1), got {random_value!r}")
    cdf = np.cumsum(np.asarray(odds, dtype=float))
    index = int(np.searchsorted(cdf, random_value * 100, side="left"))
    return min(index, len(odds) - 1)


def multiplier_for(rows: int, risk: str, bin_index: int) -> float:
    validate_board(rows, risk)
    table = PAYOUT_TABLES[rows][risk]
    if not 0 <= bin_index < len(table):
        raise MalformedOutcomeInput(f"bin {bin_index} does not exist for {rows} rows")
    return table[bin_index]


def resolve_bin(seed: str, nonce: int, rows: int, risk: str, bias: float = 0.0) -> int:
    validate_board(rows, risk)
    odds = apply_house_edge_bias(bin_odds(rows), bias)
    return select_bin(derive_float(seed, nonce), odds)


def is_jackpot(seed: str, nonce: int, denominator: int) -> bool:
    """One-in-``denominator`` check on the play's digest; 0 disables the jackpot."""
    if denominator <= 0:
        return False
    return int(nonce_digest(seed, nonce), 16) % denominator == 0


def verify_play(
    server_seed: str,
    block_hash: str | None,
    nonce: int,
    rows: int,
    risk: str,
    bias: float,
    claimed_bin: int,
) -> bool:
    hybrid_seed = combine(server_seed, block_hash)
    return resolve_bin(hybrid_seed, nonce, rows, risk, bias) == claimed_bin
