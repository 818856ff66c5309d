"""Seed combination and deterministic derivation.

Derivation scheme (``sha256-pcg64``), recorded with every commitment:

1. ``material = seed + str(nonce).zfill(8)``
2. ``state = int(sha256(material), 16)``
3. ``numpy.random.Generator(numpy.random.PCG64(state)).random()`` gives a float
   in ``[0, 1)``, scaled by the caller's upper bound.

PCG64 seeded through ``SeedSequence`` is a stable stream in numpy, so any
third party with numpy can reproduce the values.
"""

import hashlib
import string

import numpy as np

from fairsettle.domain.errors import MalformedOutcomeInput

PRNG_SCHEME = "sha256-pcg64"
NONCE_WIDTH = 8

_HEX_DIGITS = set(string.hexdigits)


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def hash_server_seed(server_seed: str) -> str:
    """Commitment hash published before the outcome is known."""
    return sha256_hex(server_seed)


def is_hex(value: str) -> bool:
    return bool(value) and all(c in _HEX_DIGITS for c in value)


def combine(a: str | None, b: str | None) -> str:
    """XOR two hex strings, left-padding the shorter one with zeros.

    Args:
        a (str | None): First entropy string (hex)
        b (str | None): Second entropy string (hex)

    Returns:
        str: Lower-case hex of the byte-wise XOR. If one side is missing the
        other is returned unchanged.
    """
    if a is None and b is None:
        raise MalformedOutcomeInput("at least one entropy string is required")
    for value in (a, b):
        if value is not None and not is_hex(value):
            raise MalformedOutcomeInput(f"entropy string is not hex: {value[:16]!r}")
    if a is None:
        return b.lower()
    if b is None:
        return a.lower()
    width = max(len(a), len(b))
    width += width % 2
    return format(int(a, 16) ^ int(b, 16), f"0{width}x")


def _generator(seed: str, nonce: int) -> np.random.Generator:
    if not isinstance(nonce, int) or isinstance(nonce, bool) or nonce < 0:
        raise MalformedOutcomeInput(f"nonce must be a non-negative integer, got {nonce!r}")
    if not seed:
        raise MalformedOutcomeInput("seed must not be empty")
    material = f"{seed}{str(nonce).zfill(NONCE_WIDTH)}"
    state = int(sha256_hex(material), 16)
    return np.random.Generator(np.random.PCG64(state))


def derive_float(seed: str, nonce: int) -> float:
    """Draw one float in [0, 1) for ``(seed, nonce)``."""
    return float(_generator(seed, nonce).random())


def derive_value(seed: str, nonce: int, upper_bound_exclusive: int) -> int:
    """Draw one integer in ``[0, upper_bound_exclusive)`` for ``(seed, nonce)``.

    Args:
        seed (str): Hybrid seed of the commitment
        nonce (int): Position of this draw within the commitment
        upper_bound_exclusive (int): Size of the target domain

    Returns:
        int: Deterministic value for the same three arguments
    """
    if (
        not isinstance(upper_bound_exclusive, int)
        or isinstance(upper_bound_exclusive, bool)
        or upper_bound_exclusive <= 0
    ):
        raise MalformedOutcomeInput(
            f"upper bound must be a positive integer, got {upper_bound_exclusive!r}"
        )
    value = int(derive_float(seed, nonce) * upper_bound_exclusive)
    return min(value, upper_bound_exclusive - 1)


def nonce_digest(seed: str, nonce: int) -> str:
    """``sha256(seed + ':' + nonce)``, used by the crash, keno and jackpot rules."""
    return sha256_hex(f"{seed}:{nonce}")
