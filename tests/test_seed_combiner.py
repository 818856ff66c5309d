import hashlib

import pytest

from fairsettle.domain.errors import MalformedOutcomeInput
from fairsettle.domain.seed_combiner import (
    combine,
    derive_float,
    derive_value,
    hash_server_seed,
    nonce_digest,
)

SEED = "3f" * 32


def test_derive_value_is_deterministic():
    first = [derive_value(SEED, nonce, 100000) for nonce in range(20)]
    second = [derive_value(SEED, nonce, 100000) for nonce in range(20)]
    assert first == second
    assert all(0 <= value < 100000 for value in first)


def test_nonce_changes_the_value_stream():
    values = {derive_value(SEED, nonce, 10**9) for nonce in range(50)}
    assert len(values) > 45


def test_derive_float_range():
    for nonce in range(100):
        assert 0.0 <= derive_float(SEED, nonce) < 1.0


@pytest.mark.parametrize("nonce, bound", [(-1, 10), (0, 0), (0, -5), (True, 10)])
def test_derive_value_rejects_bad_arguments(nonce, bound):
    with pytest.raises(MalformedOutcomeInput):
        derive_value(SEED, nonce, bound)


def test_combine_xors_and_pads():
    assert combine("ff", "0f") == "f0"
    assert combine("1", "ff") == "fe"
    assert combine("ABCD", "0000") == "abcd"


def test_combine_with_one_side_missing():
    assert combine("AbC1", None) == "abc1"
    assert combine(None, "12") == "12"


def test_combine_rejects_malformed_input():
    with pytest.raises(MalformedOutcomeInput):
        combine(None, None)
    with pytest.raises(MalformedOutcomeInput):
        combine("xyz", "00")


def test_hashes_are_plain_sha256():
    assert hash_server_seed("abc") == hashlib.sha256(b"abc").hexdigest()
    assert nonce_digest("abc", 7) == hashlib.sha256(b"abc:7").hexdigest()
