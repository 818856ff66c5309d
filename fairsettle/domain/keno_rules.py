"""Keno draws (10 of 40) and the classic paytable.

The draw runs a 31-bit linear congruential generator seeded from the play's
digest through a partial Fisher-Yates shuffle. Integer arithmetic is exact, so
the sequence is the same on every platform.
"""

from typing import List, Sequence

from fairsettle.domain.errors import MalformedOutcomeInput
from fairsettle.domain.seed_combiner import combine, nonce_digest

NUMBER_COUNT = 40
DRAW_COUNT = 10
MAX_PICKS = 10
LCG_MODULUS = 2147483647
LCG_MULTIPLIER = 1103515245
LCG_INCREMENT = 12345

# picks -> multiplier by number of hits (index = hits)
PAYTABLE = {
    1: [0, 3.96],
    2: [0, 1.8, 5.2],
    3: [0, 1.1, 2.7, 10.4],
    4: [0, 0, 2.2, 7.9, 90],
    5: [0, 0, 1.5, 4.2, 13, 300],
    6: [0, 0, 1.1, 2, 6.2, 100, 700],
    7: [0, 0, 1.1, 1.6, 3.5, 15, 225, 700],
    8: [0, 0, 1.1, 1.5, 2, 5.5, 39, 100, 800],
    9: [0, 0, 1.1, 1.3, 1.7, 2.5, 7.5, 50, 250, 1000],
    10: [0, 0, 1.1, 1.2, 1.3, 1.8, 3.5, 13, 50, 250, 1000],
}


def validate_picks(picks: Sequence[int]) -> List[int]:
    chosen = list(picks)
    if not 1 <= len(chosen) <= MAX_PICKS:
        raise MalformedOutcomeInput(f"pick between 1 and {MAX_PICKS} numbers")
    if len(set(chosen)) != len(chosen):
        raise MalformedOutcomeInput("picks must be unique")
    for number in chosen:
        if isinstance(number, bool) or not isinstance(number, int) or not 1 <= number <= NUMBER_COUNT:
            raise MalformedOutcomeInput(f"pick {number!r} is outside 1..{NUMBER_COUNT}")
    return sorted(chosen)


def draw_numbers(seed: str, nonce: int) -> List[int]:
    """Ten unique numbers from 1 to 40, sorted."""
    state = int(nonce_digest(seed, nonce), 16) % LCG_MODULUS

    def next_random() -> float:
        nonlocal state
        state = (state * LCG_MULTIPLIER + LCG_INCREMENT) & LCG_MODULUS
        return state / LCG_MODULUS

    numbers = list(range(1, NUMBER_COUNT + 1))
    for i in range(NUMBER_COUNT - 1, NUMBER_COUNT - DRAW_COUNT - 1, -1):
        j = min(int(next_random() * (i + 1)), i)
        numbers[i], numbers[j] = numbers[j], numbers[i]
    return sorted(numbers[NUMBER_COUNT - DRAW_COUNT:])


def count_hits(picks: Sequence[int], drawn: Sequence[int]) -> int:
    return len(set(picks) & set(drawn))


def multiplier_for(pick_count: int, hits: int) -> float:
    row = PAYTABLE.get(pick_count)
    if row is None or not 0 <= hits < len(row):
        raise MalformedOutcomeInput(f"no payout for {hits} hits on {pick_count} picks")
    return row[hits]


def verify_draw(server_seed: str, block_hash: str | None, nonce: int, claimed: Sequence[int]) -> bool:
    return draw_numbers(combine(server_seed, block_hash), nonce) == sorted(claimed)
