from decimal import Decimal

import pytest

from fairsettle.domain.errors import MalformedOutcomeInput
from fairsettle.domain.ticket_rules import (
    TICKET_DOMAIN,
    allocate_tickets,
    build_ticket_ranges,
    draw_item,
    resolve_ticket,
)


def assert_full_coverage(ranges):
    assert ranges[0].start == 0
    assert ranges[-1].end == TICKET_DOMAIN - 1
    for previous, current in zip(ranges, ranges[1:]):
        assert current.start == previous.end + 1
    assert sum(r.size for r in ranges) == TICKET_DOMAIN


def test_common_rare_legendary_ranges():
    ranges = build_ticket_ranges([80, 19, 1])
    assert [(r.start, r.end) for r in ranges] == [(0, 79999), (80000, 98999), (99000, 99999)]
    assert resolve_ticket(0, ranges) == 0
    assert resolve_ticket(79999, ranges) == 0
    assert resolve_ticket(80000, ranges) == 1
    assert resolve_ticket(99999, ranges) == 2


def test_tiny_weights_all_get_a_ticket():
    weights = [Decimal("99.999")] + [Decimal("0.00002")] * 50
    counts = allocate_tickets(weights)
    assert sum(counts) == TICKET_DOMAIN
    assert all(count >= 1 for count in counts)
    assert counts[0] == TICKET_DOMAIN - 50

    ranges = build_ticket_ranges(weights)
    assert len(ranges) == 51
    assert_full_coverage(ranges)


def test_zero_weight_items_get_no_range():
    ranges = build_ticket_ranges([50, 0, 50])
    assert [r.index for r in ranges] == [0, 2]
    assert_full_coverage(ranges)


def test_shortfall_goes_to_last_positive_item():
    ranges = build_ticket_ranges(["60", "39.995", "0"])
    assert_full_coverage(ranges)
    assert ranges[-1].index == 1


def test_float_and_string_weights_agree():
    assert allocate_tickets([33.33, 33.33, 33.34]) == allocate_tickets(["33.33", "33.33", "33.34"])


@pytest.mark.parametrize(
    "weights",
    [[], [50, 40], [101], [-1, 101], [float("nan"), 100], [float("inf")], ["abc", 100], [True, 99]],
)
def test_malformed_weights(weights):
    with pytest.raises(MalformedOutcomeInput):
        build_ticket_ranges(weights)


def test_ticket_outside_domain():
    ranges = build_ticket_ranges([100])
    with pytest.raises(MalformedOutcomeInput):
        resolve_ticket(TICKET_DOMAIN, ranges)
    with pytest.raises(MalformedOutcomeInput):
        resolve_ticket(-1, ranges)


def test_draw_item_is_reproducible():
    items = [
        {"name": "common", "value": 10, "chance": "80"},
        {"name": "rare", "value": 100, "chance": "19"},
        {"name": "legendary", "value": 5000, "chance": "1"},
    ]
    seed = "ab" * 32
    first = [draw_item(items, seed, nonce) for nonce in range(10)]
    second = [draw_item(items, seed, nonce) for nonce in range(10)]
    assert first == second
    ranges = build_ticket_ranges([item["chance"] for item in items])
    for ticket, item in first:
        assert items[resolve_ticket(ticket, ranges)] is item
