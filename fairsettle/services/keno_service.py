from datetime import datetime
from typing import Callable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from uuid6 import uuid7

from fairsettle.crud import ReadData, UpdateData
from fairsettle.domain import keno_rules
from fairsettle.domain.errors import ConcurrencyConflict, MalformedOutcomeInput
from fairsettle.domain.money import MinorUnits
from fairsettle.domain.payout_rules import multiplier_payout
from fairsettle.models.schema_models import KenoDrawSchema
from fairsettle.models.schemas import KenoDraw
from fairsettle.notifier import Notifier
from fairsettle.payout_ledger import HOUSE, PayoutLedger, Posting, escrow_account, user_account
from fairsettle.services.seed_service import SeedService, seed_lock

KENO_CHANNEL = "keno"


def keno_scope(user_id: str) -> str:
    return f"keno:{user_id}"


class KenoService:
    def __init__(
        self,
        Session: async_sessionmaker,
        ledger: PayoutLedger,
        seeds: SeedService,
        notifier: Notifier,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session = Session
        self.ledger = ledger
        self.seeds = seeds
        self.notifier = notifier
        self.clock = clock

    async def play(self, user_id: str, amount: MinorUnits, picks: Sequence[int]) -> KenoDrawSchema:
        """Draw ten numbers against the player's picks

        Args:
            user_id (str): Player
            amount (MinorUnits): Bet
            picks (Sequence[int]): 1 to 10 unique numbers in 1..40
        """
        picks = keno_rules.validate_picks(picks)
        amount = MinorUnits(amount)
        if amount <= 0:
            raise MalformedOutcomeInput(f"bet must be positive, got {amount}")
        scope = keno_scope(user_id)

        async def prepare():
            await self.seeds.ensure_active(scope)

        async def operation(session: AsyncSession) -> KenoDraw:
            commitment = await ReadData.read_active_commitment(scope, session)
            if commitment is None:
                raise ConcurrencyConflict(f"{scope} has no active commitment")
            nonce = await UpdateData.claim_nonce(commitment, session)

            drawn = keno_rules.draw_numbers(commitment.hybrid_seed, nonce)
            hits = keno_rules.count_hits(picks, drawn)
            multiplier = keno_rules.multiplier_for(len(picks), hits)
            payout = multiplier_payout(amount, multiplier)

            draw_id = uuid7()
            round_ref = f"keno:{draw_id}"
            await self.ledger.stake(session, user_id, amount, "keno_bet", round_ref)
            await self.ledger.transfer(
                session,
                "keno_win",
                round_ref,
                [
                    Posting(escrow_account(round_ref), -amount),
                    Posting(user_account(user_id), payout),
                    Posting(HOUSE, amount - payout, "keno_house"),
                ],
            )
            draw = KenoDraw(
                draw_id=draw_id,
                user_id=user_id,
                bet=int(amount),
                picks=picks,
                drawn=drawn,
                hits=hits,
                multiplier=str(multiplier),
                payout=payout,
                commitment_id=commitment.commitment_id,
                nonce=nonce,
                created_at=self.clock(),
            )
            session.add(draw)
            await session.flush()
            return draw

        draw = await self.ledger.run_serialized([user_account(user_id), seed_lock(scope)], operation, prepare)
        result = KenoDrawSchema.model_validate(draw)
        await self.notifier.publish(KENO_CHANNEL, "keno:result", result.model_dump(mode="json"))
        return result
