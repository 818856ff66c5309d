"""Case battle lifecycle: waiting -> active -> opened -> ended.

- Every mutation runs in one unit of work through the ledger, so a failure
  leaves neither a stake nor a participant behind.
- Status changes are compare-and-set updates; the loser of a race either
  retries (ConcurrencyConflict) or gets a terminal error.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Sequence
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from uuid6 import uuid7

from fairsettle.converter import DataConverter
from fairsettle.crud import ReadData, UpdateData
from fairsettle.domain.errors import (
    AlreadyJoined,
    AlreadySettled,
    ConcurrencyConflict,
    InvalidRoundState,
    MalformedOutcomeInput,
    NotRoundCreator,
    ParticipantsNotReady,
    RoundAlreadyClosed,
    RoundFull,
    RoundNotFound,
)
from fairsettle.domain.payout_rules import ParticipantOutcome, battle_distribution
from fairsettle.domain.ticket_rules import build_ticket_ranges, draw_item
from fairsettle.models.api_models import SettlementResultModel
from fairsettle.models.schema_models import CaseBattleSchema
from fairsettle.models.schemas import BattleParticipant, CaseBattle
from fairsettle.notifier import Notifier
from fairsettle.payout_ledger import HOUSE, PayoutLedger, Posting, escrow_account, user_account
from fairsettle.services.seed_service import SeedService

BATTLE_CHANNEL = "battles"

MODES = ("normal", "crazy", "group")
MAX_TEAM_SIZE = 3
OPEN_STATUSES = ("waiting", "active")


def battle_ref(battle_id: UUID) -> str:
    return f"battle:{battle_id}"


def max_players_for(mode: str, team_size: int) -> int:
    return team_size if mode == "group" else team_size * 2


def teams_for(mode: str) -> List[int]:
    return [1] if mode == "group" else [1, 2]


class SettlementOrchestrator:
    def __init__(
        self,
        Session: async_sessionmaker,
        ledger: PayoutLedger,
        seeds: SeedService,
        notifier: Notifier,
        visibility_minutes: int = 30,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session = Session
        self.ledger = ledger
        self.seeds = seeds
        self.notifier = notifier
        self.visibility_minutes = visibility_minutes
        self.clock = clock

    async def read_round(self, battle_id: UUID) -> CaseBattleSchema:
        async with self.Session() as session:
            battle = await ReadData.read_battle(battle_id, session)
            if battle is None:
                raise RoundNotFound(f"battle {battle_id} does not exist")
            return CaseBattleSchema.model_validate(battle)

    async def _publish(self, event: str, battle_id: UUID, **extra):
        battle = await self.read_round(battle_id)
        data = battle.model_dump(mode="json")
        data.update(extra)
        await self.notifier.publish(BATTLE_CHANNEL, event, data)

    async def _read_open_battle(self, battle_id: UUID, session: AsyncSession) -> CaseBattle:
        """Read and lock a battle that still accepts changes."""
        battle = await ReadData.read_battle(battle_id, session, for_update=True)
        if battle is None:
            raise RoundNotFound(f"battle {battle_id} does not exist")
        if battle.status == "ended":
            raise RoundAlreadyClosed(f"battle {battle_id} has ended")
        if battle.status not in OPEN_STATUSES:
            raise InvalidRoundState(f"battle {battle_id} is {battle.status}")
        return battle

    @staticmethod
    def _pick_team(battle: CaseBattle, participants: Sequence[BattleParticipant], requested: Optional[int]) -> int:
        counts = {team: 0 for team in teams_for(battle.mode)}
        for participant in participants:
            counts[participant.team] = counts.get(participant.team, 0) + 1
        if requested is not None:
            if requested not in counts:
                raise MalformedOutcomeInput(f"team {requested} does not exist in {battle.mode} mode")
            if counts[requested] >= battle.team_size:
                raise RoundFull(f"team {requested} is full")
            return requested
        open_teams = [team for team, count in counts.items() if count < battle.team_size]
        if not open_teams:
            raise RoundFull(f"battle {battle.battle_id} is full")
        return min(open_teams, key=lambda team: (counts[team], team))

    @staticmethod
    def _free_seat(battle: CaseBattle, participants: Sequence[BattleParticipant]) -> int:
        taken = {participant.seat for participant in participants}
        free = [seat for seat in range(battle.max_players) if seat not in taken]
        if not free:
            raise RoundFull(f"battle {battle.battle_id} is full")
        return free[0]

    async def create_round(
        self, user_id: str, case_ids: Sequence[UUID], mode: str = "normal", team_size: int = 1
    ) -> CaseBattleSchema:
        """Open a battle and seat its creator

        Args:
            user_id (str): Creator, seated on team 1 at seat 0
            case_ids (Sequence[UUID]): Cases opened by every participant, in order
            mode (str): "normal", "crazy" or "group"
            team_size (int): Players per team, 1 to 3

        Returns:
            CaseBattleSchema: The waiting battle
        """
        if mode not in MODES:
            raise MalformedOutcomeInput(f"unknown battle mode {mode}")
        if not 1 <= team_size <= MAX_TEAM_SIZE:
            raise MalformedOutcomeInput(f"team size must be between 1 and {MAX_TEAM_SIZE}")
        if mode == "group" and team_size < 2:
            raise MalformedOutcomeInput("a group battle needs at least 2 players")
        if not case_ids:
            raise MalformedOutcomeInput("a battle needs at least one case")

        async with self.Session() as session:
            cases = await ReadData.read_cases(case_ids, session)
        missing = [case_id for case_id in case_ids if case_id not in cases]
        if missing:
            raise RoundNotFound(f"cases {missing} do not exist")

        snapshot = []
        for case_id in case_ids:
            case = cases[case_id]
            build_ticket_ranges([item["chance"] for item in case.items])
            snapshot.append({"case_id": str(case_id), "name": case.name, "price": case.price, "items": case.items})
        stake = sum(case["price"] for case in snapshot)
        if stake <= 0:
            raise MalformedOutcomeInput("cases must have a positive price")

        battle_id = uuid7()
        round_ref = battle_ref(battle_id)
        entropy = await self.seeds.draw_entropy()

        async def operation(session: AsyncSession):
            commitment = await self.seeds.commit(round_ref, entropy, session)
            session.add(
                CaseBattle(
                    battle_id=battle_id,
                    status="waiting",
                    mode=mode,
                    team_size=team_size,
                    max_players=max_players_for(mode, team_size),
                    created_by=user_id,
                    cases=snapshot,
                    stake=stake,
                    pot=stake,
                    commitment_id=commitment.commitment_id,
                    created_at=self.clock(),
                )
            )
            await session.flush()
            await self.ledger.stake(session, user_id, stake, "case_battle_create", round_ref)
            session.add(
                BattleParticipant(battle_id=battle_id, user_id=user_id, team=1, seat=0, stake=stake, ready=False)
            )
            await session.flush()

        await self.ledger.run_serialized([user_account(user_id), round_ref], operation)
        logging.info(f"{user_id} created battle {battle_id} ({mode}, {team_size}v{team_size})")
        await self._publish("battle:created", battle_id)
        return await self.read_round(battle_id)

    async def join_round(self, user_id: str, battle_id: UUID, team: Optional[int] = None) -> CaseBattleSchema:
        """Take a free seat, balancing teams unless ``team`` is given. A full battle locks itself."""
        round_ref = battle_ref(battle_id)

        async def operation(session: AsyncSession) -> str:
            battle = await self._read_open_battle(battle_id, session)
            participants = await ReadData.read_participants(battle_id, session)
            if any(p.user_id == user_id and not p.is_bot for p in participants):
                raise AlreadyJoined(f"{user_id} is already in battle {battle_id}")
            if len(participants) >= battle.max_players:
                raise RoundFull(f"battle {battle_id} is full")
            chosen = self._pick_team(battle, participants, team)
            seat = self._free_seat(battle, participants)
            await self.ledger.stake(session, user_id, battle.stake, "case_battle_join", round_ref)
            session.add(
                BattleParticipant(
                    battle_id=battle_id, user_id=user_id, team=chosen, seat=seat, stake=battle.stake, ready=False
                )
            )
            await session.flush()
            full = len(participants) + 1 == battle.max_players
            status = "opened" if full else "active"
            values = {"pot": CaseBattle.pot + battle.stake}
            if full:
                values["locked_at"] = self.clock()
            if not await UpdateData.transition_battle(battle_id, (battle.status,), status, session, **values):
                raise ConcurrencyConflict(f"battle {battle_id} changed while joining")
            return status

        status = await self.ledger.run_serialized([user_account(user_id), round_ref], operation)
        logging.info(f"{user_id} joined battle {battle_id}, now {status}")
        await self._publish("battle:joined", battle_id, user_id=user_id)
        if status == "opened":
            await self._publish("battle:opened", battle_id)
        return await self.read_round(battle_id)

    async def fill_synthetic(self, user_id: str, battle_id: UUID) -> CaseBattleSchema:
        """Fill every free seat with a bot and lock the battle. Creator only."""
        round_ref = battle_ref(battle_id)

        async def operation(session: AsyncSession) -> int:
            battle = await self._read_open_battle(battle_id, session)
            if battle.created_by != user_id:
                raise NotRoundCreator(f"only {battle.created_by} can add bots to battle {battle_id}")
            participants = await ReadData.read_participants(battle_id, session)
            added = 0
            while len(participants) < battle.max_players:
                seat = self._free_seat(battle, participants)
                bot = BattleParticipant(
                    battle_id=battle_id,
                    user_id=f"bot_{seat}",
                    team=self._pick_team(battle, participants, None),
                    seat=seat,
                    is_bot=True,
                    ready=True,
                    stake=0,
                )
                session.add(bot)
                participants.append(bot)
                added += 1
            await session.flush()
            moved = await UpdateData.transition_battle(
                battle_id, (battle.status,), "opened", session, locked_at=self.clock()
            )
            if not moved:
                raise ConcurrencyConflict(f"battle {battle_id} changed while adding bots")
            return added

        added = await self.ledger.run_serialized([round_ref], operation)
        logging.info(f"Added {added} bots to battle {battle_id}")
        await self._publish("battle:opened", battle_id)
        return await self.read_round(battle_id)

    async def set_ready(self, user_id: str, battle_id: UUID) -> CaseBattleSchema:
        async def operation(session: AsyncSession):
            await self._read_open_battle(battle_id, session)
            participants = await ReadData.read_participants(battle_id, session)
            mine = [p for p in participants if p.user_id == user_id and not p.is_bot]
            if not mine:
                raise RoundNotFound(f"{user_id} is not in battle {battle_id}")
            mine[0].ready = True
            await session.flush()

        await self.ledger.run_serialized([battle_ref(battle_id)], operation)
        await self._publish("battle:ready", battle_id, user_id=user_id)
        return await self.read_round(battle_id)

    async def lock_round(self, user_id: str, battle_id: UUID) -> CaseBattleSchema:
        """Start a battle before it is full

        Raises:
            ParticipantsNotReady: a side is empty or a human is not ready
        """
        async def operation(session: AsyncSession):
            battle = await self._read_open_battle(battle_id, session)
            if battle.created_by != user_id:
                raise NotRoundCreator(f"only {battle.created_by} can start battle {battle_id}")
            participants = await ReadData.read_participants(battle_id, session)
            if battle.mode == "group":
                if len(participants) < 2:
                    raise ParticipantsNotReady("a group battle needs at least 2 participants")
            elif {p.team for p in participants} != set(teams_for(battle.mode)):
                raise ParticipantsNotReady("every team needs at least one participant")
            waiting = [p.user_id for p in participants if not p.is_bot and not p.ready]
            if waiting:
                raise ParticipantsNotReady(f"not ready: {waiting}")
            moved = await UpdateData.transition_battle(
                battle_id, (battle.status,), "opened", session, locked_at=self.clock()
            )
            if not moved:
                raise ConcurrencyConflict(f"battle {battle_id} changed while locking")

        await self.ledger.run_serialized([battle_ref(battle_id)], operation)
        logging.info(f"Battle {battle_id} locked by {user_id}")
        await self._publish("battle:opened", battle_id)
        return await self.read_round(battle_id)

    async def settle_round(self, battle_id: UUID, tiebreak_team: Optional[int] = None) -> SettlementResultModel:
        """Draw every participant's items, pay the winners and reveal the seed

        Args:
            battle_id (UUID): An opened battle
            tiebreak_team (Optional[int]): Winner among tied teams; without it tied teams split

        Returns:
            SettlementResultModel: Winners, exact shares, credits and balance deltas

        Raises:
            AlreadySettled: the battle was settled before; nothing changes
        """
        round_ref = battle_ref(battle_id)
        async with self.Session() as session:
            if await ReadData.read_battle(battle_id, session) is None:
                raise RoundNotFound(f"battle {battle_id} does not exist")
            humans = [p.user_id for p in await ReadData.read_participants(battle_id, session) if not p.is_bot]

        async def operation(session: AsyncSession):
            battle = await ReadData.read_battle(battle_id, session, for_update=True)
            if battle.status == "ended":
                raise AlreadySettled(f"battle {battle_id} was settled at {battle.settled_at}")
            if battle.status != "opened":
                raise InvalidRoundState(f"battle {battle_id} is {battle.status}, not opened")
            participants = await ReadData.read_participants(battle_id, session)
            commitment = await ReadData.read_commitment(battle.commitment_id, session)
            seed = commitment.hybrid_seed
            case_count = len(battle.cases)

            outcomes = []
            for participant in participants:
                drawn = []
                for index, case in enumerate(battle.cases):
                    nonce = participant.seat * case_count + index
                    ticket, item = draw_item(case["items"], seed, nonce)
                    drawn.append(
                        {
                            "case_id": case["case_id"],
                            "nonce": nonce,
                            "ticket": ticket,
                            "name": item["name"],
                            "value": int(item["value"]),
                        }
                    )
                participant.items = drawn
                participant.total_value = sum(d["value"] for d in drawn)
                outcomes.append(
                    ParticipantOutcome(
                        key=participant.user_id,
                        team=participant.team,
                        seat=participant.seat,
                        value=participant.total_value,
                        stake=participant.stake,
                        is_bot=participant.is_bot,
                    )
                )

            distribution = battle_distribution(outcomes, battle.mode == "crazy", tiebreak_team)
            for participant in participants:
                participant.payout = distribution.split.credits.get(participant.user_id, 0)

            postings = [Posting(escrow_account(round_ref), -distribution.stakes_total)]
            postings += [
                Posting(user_account(key), credit, "case_battle_win")
                for key, credit in distribution.human_credits.items()
            ]
            postings.append(Posting(HOUSE, distribution.house_delta, "case_battle_house"))
            await self.ledger.transfer(session, "case_battle_settle", round_ref, postings)

            moved = await UpdateData.transition_battle(
                battle_id,
                ("opened",),
                "ended",
                session,
                pot=distribution.split.pot,
                winning_teams=distribution.winning_teams,
                team_totals={str(team): total for team, total in distribution.team_totals.items()},
                tiebreak_team=tiebreak_team if len(distribution.winning_teams) == 1 else None,
                settled_at=self.clock(),
            )
            if not moved:
                raise AlreadySettled(f"battle {battle_id} was settled concurrently")
            await self.seeds.reveal(battle.commitment_id, session)
            return distribution, participants, battle.commitment_id

        keys = [round_ref] + [user_account(user) for user in humans]
        distribution, participants, commitment_id = await self.ledger.run_serialized(keys, operation)
        logging.info(
            f"Settled battle {battle_id}: teams {distribution.winning_teams} win {distribution.split.pot}"
        )

        revealed = await self.seeds.revealed_seed(commitment_id)
        result = DataConverter.to_battle_result(round_ref, distribution, participants, revealed)
        await self._publish("battle:ended", battle_id, result=result.model_dump(mode="json"))
        return result

    async def list_joinable(self) -> List[CaseBattleSchema]:
        """Battles still taking players, created within the visibility window"""
        since = self.clock() - timedelta(minutes=self.visibility_minutes)
        battles = await ReadData.read_joinable_battles(since, self.Session())
        return [CaseBattleSchema.model_validate(battle) for battle in battles]
