"""Weighted ticket draws for case openings.

A case is a list of items with percentage chances. The ticket domain
``[0, 100000)`` is cut into contiguous ranges in list order. Each item asks for
``ceil(chance / 100 * 100000)`` tickets. Ceiling can overrun the domain when
many items have tiny chances, so the overrun is taken back from the largest
ranges (a positive chance always keeps at least one ticket). If the chances
sum slightly below 100, the last positive item absorbs the shortfall. The
result always covers the whole domain with no gap and no overlap.
"""

from bisect import bisect_right
from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal, InvalidOperation
from typing import List, Sequence

from fairsettle.domain.errors import MalformedOutcomeInput
from fairsettle.domain.seed_combiner import derive_value

TICKET_DOMAIN = 100_000
WEIGHT_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class TicketRange:
    index: int
    start: int
    end: int  # inclusive

    def contains(self, ticket: int) -> bool:
        return self.start <= ticket <= self.end

    @property
    def size(self) -> int:
        return self.end - self.start + 1


def _to_decimal(weight) -> Decimal:
    if isinstance(weight, bool):
        raise MalformedOutcomeInput(f"weight must be numeric, got {weight!r}")
    try:
        value = Decimal(str(weight)) if isinstance(weight, float) else Decimal(weight)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise MalformedOutcomeInput(f"weight must be numeric, got {weight!r}") from e
    if not value.is_finite():
        raise MalformedOutcomeInput(f"weight must be finite, got {weight!r}")
    if value < 0:
        raise MalformedOutcomeInput(f"weight must not be negative, got {weight!r}")
    return value


def allocate_tickets(weights: Sequence) -> List[int]:
    """Ticket count per weight, summing exactly to ``TICKET_DOMAIN``.

    Args:
        weights (Sequence): Percentages in list order (int, str, Decimal or float)

    Returns:
        List[int]: Number of tickets owned by each position
    """
    values = [_to_decimal(w) for w in weights]
    if not values:
        raise MalformedOutcomeInput("weight list is empty")
    total = sum(values, Decimal(0))
    if abs(total - 100) > WEIGHT_TOLERANCE:
        raise MalformedOutcomeInput(f"weights sum to {total}, expected 100")
    positive = [i for i, v in enumerate(values) if v > 0]
    if len(positive) > TICKET_DOMAIN:
        raise MalformedOutcomeInput("more weighted items than tickets")

    counts = [
        int((v * TICKET_DOMAIN / 100).to_integral_value(rounding=ROUND_CEILING))
        for v in values
    ]
    overrun = sum(counts) - TICKET_DOMAIN
    while overrun > 0:
        largest = max(range(len(counts)), key=lambda i: (counts[i], -i))
        if counts[largest] <= 1:
            raise MalformedOutcomeInput("weights cannot be fitted into the ticket domain")
        taken = min(overrun, counts[largest] - 1)
        counts[largest] -= taken
        overrun -= taken
    if overrun < 0:
        counts[positive[-1]] -= overrun
    return counts


def build_ticket_ranges(weights: Sequence) -> List[TicketRange]:
    """Contiguous ranges for every positive weight, in list order."""
    ranges = []
    start = 0
    for index, count in enumerate(allocate_tickets(weights)):
        if count == 0:
            continue
        ranges.append(TicketRange(index=index, start=start, end=start + count - 1))
        start += count
    return ranges


def resolve_ticket(ticket: int, ranges: Sequence[TicketRange]) -> int:
    """Return the item index whose range contains ``ticket``."""
    if not ranges:
        raise MalformedOutcomeInput("no ticket ranges")
    if not 0 <= ticket < TICKET_DOMAIN:
        raise MalformedOutcomeInput(f"ticket {ticket} is outside [0, {TICKET_DOMAIN})")
    position = bisect_right([r.start for r in ranges], ticket) - 1
    return ranges[position].index


def draw_ticket(seed: str, nonce: int) -> int:
    return derive_value(seed, nonce, TICKET_DOMAIN)


def draw_item(items: Sequence[dict], seed: str, nonce: int) -> tuple[int, dict]:
    """Draw one item of a case.

    Args:
        items (Sequence[dict]): Case items, each with ``chance`` and ``value``
        seed (str): Hybrid seed of the round's commitment
        nonce (int): Draw position within the round

    Returns:
        tuple[int, dict]: The ticket and the item it selected
    """
    ranges = build_ticket_ranges([item["chance"] for item in items])
    ticket = draw_ticket(seed, nonce)
    return ticket, items[resolve_ticket(ticket, ranges)]
