import hashlib
from math import comb

import pytest

from fairsettle.domain import crash_rules, keno_rules, plinko_rules, wheel_rules
from fairsettle.domain.errors import MalformedOutcomeInput
from fairsettle.domain.money import MinorUnits, from_display, to_display

SEED = "5e" * 32


class TestPlinko:
    def test_bin_odds_are_binomial(self):
        odds = plinko_rules.bin_odds(8)
        assert len(odds) == 9
        assert sum(odds) == pytest.approx(100)
        assert odds[0] == pytest.approx(100 / 256)
        assert odds[4] == pytest.approx(70 * 100 / 256)

    def test_bias_moves_mass_to_the_centre(self):
        odds = plinko_rules.bin_odds(16)
        biased = plinko_rules.apply_house_edge_bias(odds, 0.3)
        assert sum(biased) == pytest.approx(100)
        assert biased[8] > odds[8]
        assert biased[0] < odds[0]
        assert plinko_rules.apply_house_edge_bias(odds, 0) == odds

    @pytest.mark.parametrize("bias", [-0.1, 1.0, float("nan")])
    def test_bias_bounds(self, bias):
        with pytest.raises(MalformedOutcomeInput):
            plinko_rules.apply_house_edge_bias(plinko_rules.bin_odds(8), bias)

    def test_select_bin_edges(self):
        odds = [25.0, 50.0, 25.0]
        assert plinko_rules.select_bin(0.0, odds) == 0
        assert plinko_rules.select_bin(0.2499, odds) == 0
        assert plinko_rules.select_bin(0.5, odds) == 1
        assert plinko_rules.select_bin(0.9999, odds) == 2

    def test_tables_match_board_sizes(self):
        for rows in range(8, 17):
            for risk in plinko_rules.RISK_LEVELS:
                assert len(plinko_rules.PAYOUT_TABLES[rows][risk]) == rows + 1

    def test_resolve_and_verify(self):
        bin_index = plinko_rules.resolve_bin(SEED, 3, 12, "medium")
        assert 0 <= bin_index <= 12
        assert plinko_rules.verify_play(SEED, None, 3, 12, "medium", 0.0, bin_index)

    @pytest.mark.parametrize("rows, risk", [(7, "low"), (17, "low"), (8, "extreme")])
    def test_invalid_board(self, rows, risk):
        with pytest.raises(MalformedOutcomeInput):
            plinko_rules.resolve_bin(SEED, 0, rows, risk)

    def test_jackpot_denominator(self):
        assert plinko_rules.is_jackpot(SEED, 0, 1)
        assert not plinko_rules.is_jackpot(SEED, 0, 0)


class TestWheel:
    def test_segment_formula(self):
        digest = SEED
        for _ in range(3):
            digest = hashlib.sha256(digest.encode()).hexdigest()
        assert wheel_rules.resolve_segment(SEED) == int(digest[:13], 16) % 54
        assert wheel_rules.verify_spin(SEED, None, wheel_rules.resolve_segment(SEED))

    def test_seat_layout(self):
        assert len(wheel_rules.SEAT_SEGMENTS) == 12
        for segments in wheel_rules.SEAT_SEGMENTS:
            assert all(0 <= s < 54 for s in segments)
        assert wheel_rules.SEAT_SEGMENTS[0] == [0, 9, 18, 27, 36, 45]

    def test_boosts_are_distinct_and_weighted(self):
        boosts = wheel_rules.resolve_boosts(SEED)
        assert len(boosts) == 3
        assert set(boosts.values()) <= set(wheel_rules.BOOST_DISTRIBUTION)
        assert wheel_rules.resolve_boosts(SEED) == boosts

    def test_seat_payout(self):
        assert wheel_rules.seat_payout(0, 100, 9, {}) == 200
        assert wheel_rules.seat_payout(0, 100, 9, {9: 5}) == 1000
        assert wheel_rules.seat_payout(0, 100, 1, {1: 5}) == 0
        assert wheel_rules.seat_payout(11, 100, 14, {}) == 1000

    def test_invalid_seat(self):
        with pytest.raises(MalformedOutcomeInput):
            wheel_rules.validate_seat(12)


class TestCrash:
    def test_roll_formula(self):
        digest = hashlib.sha256(f"{SEED}:4".encode()).hexdigest()
        assert crash_rules.crash_roll(SEED, 4) == int(digest[:8], 16) % 1000 + 1
        assert crash_rules.verify_roll(SEED, None, 4, crash_rules.crash_roll(SEED, 4))

    def test_known_crash_seed(self):
        assert crash_rules.crash_roll("0" * 61 + "2b2", 1) == 1

    def test_should_crash(self):
        assert crash_rules.should_crash(1, 5000)
        assert crash_rules.should_crash(500, 1)
        assert not crash_rules.should_crash(500, 2)


class TestKeno:
    def test_draw_is_ten_unique_sorted_numbers(self):
        for nonce in range(25):
            drawn = keno_rules.draw_numbers(SEED, nonce)
            assert len(drawn) == 10
            assert len(set(drawn)) == 10
            assert drawn == sorted(drawn)
            assert all(1 <= n <= 40 for n in drawn)
        assert keno_rules.verify_draw(SEED, None, 3, keno_rules.draw_numbers(SEED, 3))

    def test_paytable_returns_below_stake(self):
        # hypergeometric expectation: 10 drawn out of 40
        total = comb(40, 10)
        for picks, row in keno_rules.PAYTABLE.items():
            expected = 0.0
            for hits, multiplier in enumerate(row):
                ways = comb(picks, hits) * comb(40 - picks, 10 - hits)
                expected += multiplier * ways / total
            assert expected < 1.0

    @pytest.mark.parametrize("picks", [[], list(range(1, 12)), [0], [41], [3, 3]])
    def test_invalid_picks(self, picks):
        with pytest.raises(MalformedOutcomeInput):
            keno_rules.validate_picks(picks)


class TestMoney:
    def test_display_round_trip_of_known_values(self):
        assert from_display("10.25") == 1025
        assert str(to_display(1025)) == "10.25"

    def test_too_many_decimals(self):
        with pytest.raises(ValueError):
            from_display("1.005")

    def test_minor_units_refuse_floats(self):
        with pytest.raises(TypeError):
            MinorUnits(10) + 0.5
        with pytest.raises(TypeError):
            MinorUnits(10) / 2
        assert MinorUnits(10) - 3 == 7
