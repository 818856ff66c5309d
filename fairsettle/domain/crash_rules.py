"""Rugged pool crash checks."""

from fairsettle.domain.errors import MalformedOutcomeInput
from fairsettle.domain.seed_combiner import combine, nonce_digest

ROLL_SIDES = 1000
CRASH_ROLL = 1
POOL_FLOOR = 1
ROLL_HEX_DIGITS = 8


def crash_roll(seed: str, nonce: int) -> int:
    """Roll in [1, 1000] from ``sha256(seed + ':' + nonce)``."""
    if not seed:
        raise MalformedOutcomeInput("seed must not be empty")
    if nonce < 0:
        raise MalformedOutcomeInput(f"nonce must not be negative, got {nonce}")
    return int(nonce_digest(seed, nonce)[:ROLL_HEX_DIGITS], 16) % ROLL_SIDES + 1


def should_crash(roll: int, pool_balance: int) -> bool:
    return roll == CRASH_ROLL or pool_balance <= POOL_FLOOR


def verify_roll(server_seed: str, block_hash: str | None, nonce: int, claimed_roll: int) -> bool:
    return crash_roll(combine(server_seed, block_hash), nonce) == claimed_roll
