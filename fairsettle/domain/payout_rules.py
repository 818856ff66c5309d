"""Payout math: winners, pot splits, crash splits and pool exits.

Everything here works in integer minor units. Exact shares are kept as
``Fraction`` so that reports never lose a cent; credited amounts are integers
that always add back up to the pot.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from fractions import Fraction
from typing import Dict, List, Optional, Sequence

from fairsettle.domain.errors import MalformedOutcomeInput

JACKPOT_SHARE = Fraction(1, 2)


@dataclass(frozen=True)
class ParticipantOutcome:
    key: str  # user id, or bot id for synthetic participants
    team: int
    seat: int
    value: int
    stake: int
    is_bot: bool = False


@dataclass
class PotSplit:
    pot: int
    winners: List[str]
    shares: Dict[str, Fraction] = field(default_factory=dict)
    credits: Dict[str, int] = field(default_factory=dict)


@dataclass
class BattleDistribution:
    team_totals: Dict[int, int]
    winning_teams: List[int]
    split: PotSplit
    human_credits: Dict[str, int]
    bot_credits: Dict[str, int]
    stakes_total: int

    @property
    def house_delta(self) -> int:
        """What the house keeps (negative when it pays in) once escrow is emptied."""
        return self.stakes_total - sum(self.human_credits.values())


def split_pot(pot: int, winners: Sequence[str]) -> PotSplit:
    """Divide ``pot`` evenly among ``winners`` (given in seat order).

    Each winner's exact share is ``pot / len(winners)``. Credits are integers:
    the remainder of the division goes one cent at a time to the earliest seats.
    """
    if pot < 0:
        raise MalformedOutcomeInput(f"pot must not be negative, got {pot}")
    if len(set(winners)) != len(winners):
        raise MalformedOutcomeInput("winners must be unique")
    if not winners:
        return PotSplit(pot=pot, winners=[])
    share, remainder = divmod(pot, len(winners))
    return PotSplit(
        pot=pot,
        winners=list(winners),
        shares={w: Fraction(pot, len(winners)) for w in winners},
        credits={w: share + (1 if i < remainder else 0) for i, w in enumerate(winners)},
    )


def winning_teams(
    team_totals: Dict[int, int], lowest_wins: bool = False, tiebreak_team: Optional[int] = None
) -> List[int]:
    """Teams that win, by strictly better aggregate value.

    Args:
        team_totals (Dict[int, int]): Aggregate drawn value per team
        lowest_wins (bool): Crazy mode, where the lowest total wins
        tiebreak_team (Optional[int]): Externally decided winner among tied teams

    Returns:
        List[int]: One team, or every tied team when no tiebreak is supplied
    """
    if not team_totals:
        raise MalformedOutcomeInput("no team totals to compare")
    best = min(team_totals.values()) if lowest_wins else max(team_totals.values())
    leaders = sorted(team for team, total in team_totals.items() if total == best)
    if len(leaders) == 1:
        return leaders
    if tiebreak_team is not None:
        if tiebreak_team not in leaders:
            raise MalformedOutcomeInput(f"tiebreak team {tiebreak_team} is not among tied teams {leaders}")
        return [tiebreak_team]
    return leaders


def battle_distribution(
    outcomes: Sequence[ParticipantOutcome], lowest_wins: bool = False, tiebreak_team: Optional[int] = None
) -> BattleDistribution:
    if not outcomes:
        raise MalformedOutcomeInput("battle has no participants")
    ordered = sorted(outcomes, key=lambda o: o.seat)
    team_totals: Dict[int, int] = {}
    for outcome in ordered:
        team_totals[outcome.team] = team_totals.get(outcome.team, 0) + outcome.value
    teams = winning_teams(team_totals, lowest_wins, tiebreak_team)
    pot = sum(o.value for o in ordered)
    split = split_pot(pot, [o.key for o in ordered if o.team in teams])
    bots = {o.key for o in ordered if o.is_bot}
    return BattleDistribution(
        team_totals=team_totals,
        winning_teams=teams,
        split=split,
        human_credits={k: v for k, v in split.credits.items() if k not in bots},
        bot_credits={k: v for k, v in split.credits.items() if k in bots},
        stakes_total=sum(o.stake for o in ordered if not o.is_bot),
    )


def multiplier_payout(bet: int, multiplier: float | int | str) -> int:
    """``bet * multiplier`` rounded half-up to a whole minor unit."""
    amount = Decimal(bet) * Decimal(str(multiplier))
    return int(amount.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def crash_split(pool_balance: int) -> tuple[int, int]:
    """Split a crashed pool into ``(jackpot, house)``; jackpot is ``floor(pool / 2)``."""
    if pool_balance < 0:
        raise MalformedOutcomeInput(f"pool must not be negative, got {pool_balance}")
    jackpot = int(pool_balance * JACKPOT_SHARE)
    return jackpot, pool_balance - jackpot


def _percent_fraction(percent) -> Fraction:
    fraction = Fraction(str(percent)) / 100
    if not 0 < fraction <= 1:
        raise MalformedOutcomeInput(f"percent must be in (0, 100], got {percent}")
    return fraction


def sell_payout(entry_amount: int, entry_pool: int, current_pool: int, percent) -> int:
    """Value of selling ``percent`` of a position, capped at the current pool.

    Args:
        entry_amount (int): Amount originally staked
        entry_pool (int): Pool balance right after the stake went in
        current_pool (int): Pool balance now
        percent: Share of the position to sell, 0 < percent <= 100

    Returns:
        int: ``floor(entry_amount * current_pool / entry_pool * percent / 100)``
    """
    if entry_pool <= 0:
        raise MalformedOutcomeInput("entry pool must be positive")
    value = Fraction(entry_amount * current_pool, entry_pool) * _percent_fraction(percent)
    return min(int(value), current_pool)


def remaining_entry(entry_amount: int, percent) -> int:
    """Entry amount left on a position after selling ``percent`` of it."""
    return int(entry_amount * (1 - _percent_fraction(percent)))
