from decimal import Decimal
from fractions import Fraction

import pytest

from fairsettle.domain.errors import MalformedOutcomeInput
from fairsettle.domain.payout_rules import (
    ParticipantOutcome,
    battle_distribution,
    crash_split,
    multiplier_payout,
    remaining_entry,
    sell_payout,
    split_pot,
    winning_teams,
)


def test_split_pot_exact_shares_and_remainder_to_earliest():
    split = split_pot(1001, ["alice", "bob"])
    assert split.shares == {"alice": Fraction(1001, 2), "bob": Fraction(1001, 2)}
    assert split.credits == {"alice": 501, "bob": 500}
    assert sum(split.shares.values()) == 1001
    assert sum(split.credits.values()) == 1001


def test_split_pot_three_ways():
    split = split_pot(100, ["a", "b", "c"])
    assert split.credits == {"a": 34, "b": 33, "c": 33}
    assert all(share == Fraction(100, 3) for share in split.shares.values())


def test_split_pot_rejects_duplicates_and_negative_pot():
    with pytest.raises(MalformedOutcomeInput):
        split_pot(10, ["a", "a"])
    with pytest.raises(MalformedOutcomeInput):
        split_pot(-1, ["a"])


def test_winning_teams():
    assert winning_teams({1: 500, 2: 300}) == [1]
    assert winning_teams({1: 500, 2: 300}, lowest_wins=True) == [2]
    assert winning_teams({1: 400, 2: 400}) == [1, 2]
    assert winning_teams({1: 400, 2: 400}, tiebreak_team=2) == [2]
    assert winning_teams({1: 400, 2: 100}, tiebreak_team=2) == [1]


def test_tiebreak_must_be_a_tied_team():
    with pytest.raises(MalformedOutcomeInput):
        winning_teams({1: 400, 2: 400, 3: 100}, tiebreak_team=3)


def test_battle_distribution_tie_split():
    outcomes = [
        ParticipantOutcome(key="alice", team=1, seat=0, value=700, stake=1000),
        ParticipantOutcome(key="bob", team=2, seat=1, value=700, stake=1000),
    ]
    distribution = battle_distribution(outcomes)
    assert distribution.winning_teams == [1, 2]
    assert distribution.split.pot == 1400
    assert distribution.human_credits == {"alice": 700, "bob": 700}
    assert distribution.house_delta == 600


def test_bot_share_stays_with_the_house():
    outcomes = [
        ParticipantOutcome(key="alice", team=1, seat=0, value=100, stake=1000),
        ParticipantOutcome(key="bot_1", team=2, seat=1, value=900, stake=0, is_bot=True),
    ]
    distribution = battle_distribution(outcomes)
    assert distribution.winning_teams == [2]
    assert distribution.human_credits == {}
    assert distribution.bot_credits == {"bot_1": 1000}
    assert distribution.house_delta == 1000


def test_multiplier_payout_rounds_half_up():
    assert multiplier_payout(100, 0.5) == 50
    assert multiplier_payout(3, 0.5) == 2
    assert multiplier_payout(1000, 3.96) == 3960
    assert multiplier_payout(100, 0) == 0


@pytest.mark.parametrize("pool, jackpot, house", [(1001, 500, 501), (1000, 500, 500), (1, 0, 1), (0, 0, 0)])
def test_crash_split(pool, jackpot, house):
    assert crash_split(pool) == (jackpot, house)


def test_sell_payout():
    assert sell_payout(1000, 1000, 4000, 100) == 4000
    assert sell_payout(1000, 4000, 4000, Decimal("50")) == 500
    assert sell_payout(1000, 3000, 2000, 100) == 666
    # cap at the pool
    assert sell_payout(5000, 1000, 2000, 100) == 2000
    assert remaining_entry(1000, Decimal("25")) == 750
    assert remaining_entry(1000, 100) == 0


@pytest.mark.parametrize("percent", [0, -5, 101])
def test_sell_percent_bounds(percent):
    with pytest.raises(MalformedOutcomeInput):
        sell_payout(1000, 1000, 1000, percent)
