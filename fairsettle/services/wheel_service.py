"""Timed wheel rounds: betting -> spinning -> completed.

- Round timestamps are persisted when the round opens; timers are APScheduler
  ``date`` jobs derived from them, so a restart schedules the same transitions.
- Transitions are compare-and-set, so a timer firing twice changes nothing.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable
from uuid import UUID

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fairsettle.crud import ReadData, UpdateData
from fairsettle.domain import wheel_rules
from fairsettle.domain.errors import (
    AlreadySettled,
    ConcurrencyConflict,
    InvalidRoundState,
    MalformedOutcomeInput,
    RoundAlreadyClosed,
    RoundNotFound,
    SeatTaken,
)
from fairsettle.domain.money import MinorUnits
from fairsettle.models.schema_models import WheelRoundSchema
from fairsettle.models.schemas import WheelRound, WheelSeat
from fairsettle.notifier import Notifier
from fairsettle.payout_ledger import HOUSE, PayoutLedger, Posting, escrow_account, user_account
from fairsettle.services.seed_service import SeedService

WHEEL_CHANNEL = "wheel"
WHEEL_LOCK = "wheel"


def wheel_scope(round_number: int) -> str:
    return f"wheel:{round_number}"


def wheel_ref(round_id: UUID) -> str:
    return f"wheel:{round_id}"


class WheelService:
    def __init__(
        self,
        Session: async_sessionmaker,
        ledger: PayoutLedger,
        seeds: SeedService,
        notifier: Notifier,
        scheduler: AsyncIOScheduler | None = None,
        betting_seconds: int = 25,
        spin_seconds: int = 5,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session = Session
        self.ledger = ledger
        self.seeds = seeds
        self.notifier = notifier
        self.scheduler = scheduler
        self.betting_seconds = betting_seconds
        self.spin_seconds = spin_seconds
        self.clock = clock

    async def read_round(self, round_id: UUID) -> WheelRoundSchema:
        async with self.Session() as session:
            wheel_round = await ReadData.read_wheel_round(round_id, session)
            if wheel_round is None:
                raise RoundNotFound(f"wheel round {round_id} does not exist")
            return WheelRoundSchema.model_validate(wheel_round)

    async def current_round(self) -> WheelRoundSchema | None:
        async with self.Session() as session:
            wheel_round = await ReadData.read_latest_wheel_round(session)
            return WheelRoundSchema.model_validate(wheel_round) if wheel_round is not None else None

    async def _publish(self, event: str, wheel_round: WheelRoundSchema, **extra):
        data = wheel_round.model_dump(mode="json")
        data.update(extra)
        await self.notifier.publish(WHEEL_CHANNEL, event, data)

    def schedule(self, wheel_round: WheelRoundSchema):
        """Register the close and spin timers of a round from its persisted timestamps."""
        if self.scheduler is None:
            return
        now = self.clock()
        if wheel_round.status == "betting":
            self.scheduler.add_job(
                self.close_betting,
                "date",
                run_date=max(wheel_round.betting_ends_at, now),
                args=[wheel_round.round_id],
                id=f"wheel-close-{wheel_round.round_id}",
                replace_existing=True,
                misfire_grace_time=None,
            )
        self.scheduler.add_job(
            self.spin_due,
            "date",
            run_date=max(wheel_round.spin_at, now),
            args=[wheel_round.round_id],
            id=f"wheel-spin-{wheel_round.round_id}",
            replace_existing=True,
            misfire_grace_time=None,
        )

    async def restore_timers(self):
        """Re-derive timers after a restart, or open the first round."""
        async with self.Session() as session:
            unfinished = [WheelRoundSchema.model_validate(r) for r in await ReadData.read_unfinished_wheel_rounds(session)]
        if not unfinished:
            await self.open_round()
            return
        for wheel_round in unfinished:
            logging.info(f"Restoring timers of wheel round {wheel_round.round_number} ({wheel_round.status})")
            self.schedule(wheel_round)

    async def open_round(self) -> WheelRoundSchema:
        """Commit a seed and open betting. Returns the unfinished round instead if there is one."""
        entropy = await self.seeds.draw_entropy()

        async def operation(session: AsyncSession) -> tuple[UUID, bool]:
            latest = await ReadData.read_latest_wheel_round(session)
            if latest is not None and latest.status != "completed":
                return latest.round_id, False
            number = latest.round_number + 1 if latest is not None else 1
            commitment = await self.seeds.commit(wheel_scope(number), entropy, session)
            now = self.clock()
            wheel_round = WheelRound(
                round_number=number,
                status="betting",
                commitment_id=commitment.commitment_id,
                betting_ends_at=now + timedelta(seconds=self.betting_seconds),
                spin_at=now + timedelta(seconds=self.betting_seconds + self.spin_seconds),
                created_at=now,
            )
            session.add(wheel_round)
            await session.flush()
            return wheel_round.round_id, True

        round_id, created = await self.ledger.run_serialized([WHEEL_LOCK], operation)
        wheel_round = await self.read_round(round_id)
        if created:
            logging.info(f"Opened wheel round {wheel_round.round_number}")
            commitment = await self.seeds.read_commitment(wheel_round.commitment_id)
            self.schedule(wheel_round)
            await self._publish("wheel:opened", wheel_round, server_seed_hash=commitment.server_seed_hash)
        return wheel_round

    async def place_bet(self, user_id: str, round_id: UUID, seat_index: int, amount: MinorUnits) -> WheelRoundSchema:
        """Take a seat of a round that is still betting

        Args:
            user_id (str): Player
            round_id (UUID): Round in "betting"
            seat_index (int): 0 to 11; one player per seat
            amount (MinorUnits): Bet
        """
        wheel_rules.validate_seat(seat_index)
        amount = MinorUnits(amount)
        if amount <= 0:
            raise MalformedOutcomeInput(f"bet must be positive, got {amount}")
        round_ref = wheel_ref(round_id)

        async def operation(session: AsyncSession):
            wheel_round = await ReadData.read_wheel_round(round_id, session, for_update=True)
            if wheel_round is None:
                raise RoundNotFound(f"wheel round {round_id} does not exist")
            if wheel_round.status == "completed":
                raise RoundAlreadyClosed(f"wheel round {wheel_round.round_number} is completed")
            if wheel_round.status != "betting" or self.clock() >= wheel_round.betting_ends_at:
                raise InvalidRoundState(f"betting on round {wheel_round.round_number} is closed")
            if any(seat.seat_index == seat_index for seat in wheel_round.seats):
                raise SeatTaken(f"seat {seat_index} of round {wheel_round.round_number} is taken")
            await self.ledger.stake(session, user_id, amount, "wheel_bet", round_ref)
            session.add(WheelSeat(round_id=round_id, seat_index=seat_index, user_id=user_id, bet=int(amount)))
            await session.flush()

        await self.ledger.run_serialized([user_account(user_id), round_ref], operation)
        wheel_round = await self.read_round(round_id)
        await self._publish("wheel:bet", wheel_round, user_id=user_id, seat_index=seat_index)
        return wheel_round

    async def close_betting(self, round_id: UUID) -> WheelRoundSchema:
        """Stop betting and publish the boost segments; a round nobody joined completes here."""

        async def operation(session: AsyncSession) -> str | None:
            wheel_round = await ReadData.read_wheel_round(round_id, session, for_update=True)
            if wheel_round is None:
                raise RoundNotFound(f"wheel round {round_id} does not exist")
            if wheel_round.status != "betting":
                return None
            if not wheel_round.seats:
                moved = await UpdateData.transition_wheel_round(
                    round_id, "betting", "completed", session, settled_at=self.clock()
                )
                if moved:
                    await self.seeds.reveal(wheel_round.commitment_id, session)
                    return "completed"
                return None
            commitment = await ReadData.read_commitment(wheel_round.commitment_id, session)
            boosts = wheel_rules.resolve_boosts(commitment.hybrid_seed)
            moved = await UpdateData.transition_wheel_round(
                round_id, "betting", "spinning", session, boosts={str(k): v for k, v in boosts.items()}
            )
            return "spinning" if moved else None

        status = await self.ledger.run_serialized([wheel_ref(round_id)], operation)
        wheel_round = await self.read_round(round_id)
        if status == "spinning":
            logging.info(f"Wheel round {wheel_round.round_number} boosts: {wheel_round.boosts}")
            await self._publish("wheel:boosts", wheel_round)
        elif status == "completed":
            logging.info(f"Wheel round {wheel_round.round_number} had no bets")
            await self._publish("wheel:completed", wheel_round)
            await self.open_round()
        return wheel_round

    async def spin(self, round_id: UUID) -> WheelRoundSchema:
        """Resolve the segment, pay every seat, reveal the seed and open the next round

        Raises:
            AlreadySettled: the round was already spun
        """
        round_ref = wheel_ref(round_id)
        async with self.Session() as session:
            wheel_round = await ReadData.read_wheel_round(round_id, session)
            if wheel_round is None:
                raise RoundNotFound(f"wheel round {round_id} does not exist")
            players = [seat.user_id for seat in wheel_round.seats]

        async def operation(session: AsyncSession) -> int:
            wheel_round = await ReadData.read_wheel_round(round_id, session, for_update=True)
            if wheel_round.status == "completed":
                raise AlreadySettled(f"wheel round {wheel_round.round_number} is completed")
            if wheel_round.status != "spinning":
                raise InvalidRoundState(f"wheel round {wheel_round.round_number} is {wheel_round.status}")
            commitment = await ReadData.read_commitment(wheel_round.commitment_id, session)
            segment = wheel_rules.resolve_segment(commitment.hybrid_seed)
            boosts = {int(k): v for k, v in (wheel_round.boosts or {}).items()}

            stakes_total = sum(seat.bet for seat in wheel_round.seats)
            postings = [Posting(escrow_account(round_ref), -stakes_total)]
            for seat in wheel_round.seats:
                seat.payout = wheel_rules.seat_payout(seat.seat_index, seat.bet, segment, boosts)
                postings.append(Posting(user_account(seat.user_id), seat.payout, "wheel_win"))
            paid = sum(seat.payout for seat in wheel_round.seats)
            postings.append(Posting(HOUSE, stakes_total - paid, "wheel_house"))
            await self.ledger.transfer(session, "wheel_settle", round_ref, postings)

            moved = await UpdateData.transition_wheel_round(
                round_id, "spinning", "completed", session, winning_segment=segment, settled_at=self.clock()
            )
            if not moved:
                raise ConcurrencyConflict(f"wheel round {wheel_round.round_number} changed while spinning")
            await self.seeds.reveal(wheel_round.commitment_id, session)
            return segment

        keys = [round_ref] + [user_account(player) for player in players]
        segment = await self.ledger.run_serialized(keys, operation)
        wheel_round = await self.read_round(round_id)
        logging.info(f"Wheel round {wheel_round.round_number} landed on {segment}")
        revealed = await self.seeds.revealed_seed(wheel_round.commitment_id)
        await self._publish("wheel:result", wheel_round, revealed=revealed.model_dump(mode="json"))
        await self.open_round()
        return wheel_round

    async def spin_due(self, round_id: UUID):
        """Timer entry point: close betting if that timer was missed, then spin."""
        wheel_round = await self.close_betting(round_id)
        if wheel_round.status != "spinning":
            return
        try:
            await self.spin(round_id)
        except AlreadySettled as e:
            logging.info(f"Skipping spin: {e.detail}")
