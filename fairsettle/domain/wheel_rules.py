"""Wheel segments, seats and boost multipliers."""

from typing import Dict, List

from fairsettle.domain.errors import MalformedOutcomeInput
from fairsettle.domain.seed_combiner import combine, derive_value, sha256_hex

SEGMENT_COUNT = 54
SEGMENT_HASH_ROUNDS = 3
SEGMENT_HEX_DIGITS = 13

# Seats 0-8 cover every ninth segment; seats 9-11 are the wide bets.
SEAT_SEGMENTS: List[List[int]] = [
    [i + 9 * k for k in range(6)] for i in range(9)
] + [
    list(range(0, SEGMENT_COUNT, 6)),
    list(range(3, SEGMENT_COUNT, 6)),
    [1, 7, 13, 19, 25, 31, 37, 43, 49, 2, 8, 14],
]
SEAT_MULTIPLIERS = [2, 2, 2, 3, 3, 3, 5, 5, 5, 10, 10, 10]
SEAT_COUNT = len(SEAT_SEGMENTS)

BOOST_SEGMENT_COUNT = 3
# multiplier -> weight
BOOST_DISTRIBUTION = {2: 40, 5: 25, 10: 15, 25: 10, 50: 7, 100: 3}


def validate_seat(seat_index: int) -> None:
    if not isinstance(seat_index, int) or not 0 <= seat_index < SEAT_COUNT:
        raise MalformedOutcomeInput(f"seat must be in [0, {SEAT_COUNT}), got {seat_index!r}")


def resolve_segment(seed: str) -> int:
    """Hash the seed three times, then reduce the leading 13 hex digits mod 54."""
    if not seed:
        raise MalformedOutcomeInput("seed must not be empty")
    digest = seed
    for _ in range(SEGMENT_HASH_ROUNDS):
        digest = sha256_hex(digest)
    return int(digest[:SEGMENT_HEX_DIGITS], 16) % SEGMENT_COUNT


def boost_seed(seed: str) -> str:
    return sha256_hex(f"{seed}:boost")


def _weighted_multiplier(seed: str, nonce: int) -> int:
    total = sum(BOOST_DISTRIBUTION.values())
    roll = derive_value(seed, nonce, total)
    for multiplier, weight in BOOST_DISTRIBUTION.items():
        if roll < weight:
            return multiplier
        roll -= weight
    raise AssertionError("weighted roll fell outside the distribution")


def resolve_boosts(seed: str, count: int = BOOST_SEGMENT_COUNT) -> Dict[int, int]:
    """Pick ``count`` distinct boosted segments and their multipliers.

    Args:
        seed (str): Hybrid seed of the round
        count (int): Number of boosted segments

    Returns:
        Dict[int, int]: segment index -> boost multiplier
    """
    if not 0 <= count <= SEGMENT_COUNT:
        raise MalformedOutcomeInput(f"boost count must be in [0, {SEGMENT_COUNT}]")
    derived = boost_seed(seed)
    boosts: Dict[int, int] = {}
    nonce = 0
    while len(boosts) < count:
        segment = derive_value(derived, nonce, SEGMENT_COUNT)
        if segment not in boosts:
            boosts[segment] = _weighted_multiplier(derived, 1000 + nonce)
        nonce += 1
    return boosts


def seat_wins(seat_index: int, segment: int) -> bool:
    validate_seat(seat_index)
    return segment in SEAT_SEGMENTS[seat_index]


def seat_payout(seat_index: int, bet: int, segment: int, boosts: Dict[int, int]) -> int:
    """Minor units paid to a seat: ``bet * seat multiplier * boost`` on a hit, else 0."""
    if not seat_wins(seat_index, segment):
        return 0
    return bet * SEAT_MULTIPLIERS[seat_index] * boosts.get(segment, 1)


def verify_spin(server_seed: str, block_hash: str | None, claimed_segment: int) -> bool:
    return resolve_segment(combine(server_seed, block_hash)) == claimed_segment
