import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from uuid6 import uuid7

from fairsettle.crud import ReadData, UpdateData
from fairsettle.domain import plinko_rules
from fairsettle.domain.errors import ConcurrencyConflict, MalformedOutcomeInput
from fairsettle.domain.money import MinorUnits
from fairsettle.domain.payout_rules import multiplier_payout
from fairsettle.models.schema_models import PlinkoPlaySchema
from fairsettle.models.schemas import PlinkoPlay
from fairsettle.notifier import Notifier
from fairsettle.payout_ledger import HOUSE, PayoutLedger, Posting, escrow_account, user_account
from fairsettle.services.seed_service import SeedService, seed_lock

PLINKO_CHANNEL = "plinko"


def plinko_scope(user_id: str) -> str:
    return f"plinko:{user_id}"


class PlinkoService:
    """Single-player drops against the user's own commitment.

    Each play claims the next nonce of the commitment, so a rotated or
    concurrently used seed makes the play retry on the fresh state.
    """

    def __init__(
        self,
        Session: async_sessionmaker,
        ledger: PayoutLedger,
        seeds: SeedService,
        notifier: Notifier,
        house_edge_bias: float = 0.0,
        jackpot_denominator: int = 32000,
        jackpot_multiplier: int = 1000,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session = Session
        self.ledger = ledger
        self.seeds = seeds
        self.notifier = notifier
        self.house_edge_bias = house_edge_bias
        self.jackpot_denominator = jackpot_denominator
        self.jackpot_multiplier = jackpot_multiplier
        self.clock = clock

    async def play(self, user_id: str, amount: MinorUnits, rows: int, risk: str) -> PlinkoPlaySchema:
        """Drop one ball

        Args:
            user_id (str): Player
            amount (MinorUnits): Bet
            rows (int): Board height, 8 to 16
            risk (str): "low", "medium" or "high"

        Returns:
            PlinkoPlaySchema: The archived play with its bin, multiplier and payout
        """
        plinko_rules.validate_board(rows, risk)
        amount = MinorUnits(amount)
        if amount <= 0:
            raise MalformedOutcomeInput(f"bet must be positive, got {amount}")
        scope = plinko_scope(user_id)

        async def prepare():
            await self.seeds.ensure_active(scope)

        async def operation(session: AsyncSession) -> PlinkoPlay:
            commitment = await ReadData.read_active_commitment(scope, session)
            if commitment is None:
                raise ConcurrencyConflict(f"{scope} has no active commitment")
            nonce = await UpdateData.claim_nonce(commitment, session)
            seed = commitment.hybrid_seed

            bin_index = plinko_rules.resolve_bin(seed, nonce, rows, risk, self.house_edge_bias)
            jackpot = plinko_rules.is_jackpot(seed, nonce, self.jackpot_denominator)
            multiplier = self.jackpot_multiplier if jackpot else plinko_rules.multiplier_for(rows, risk, bin_index)
            payout = multiplier_payout(amount, multiplier)

            play_id = uuid7()
            round_ref = f"plinko:{play_id}"
            await self.ledger.stake(session, user_id, amount, "plinko_bet", round_ref)
            await self.ledger.transfer(
                session,
                "plinko_win",
                round_ref,
                [
                    Posting(escrow_account(round_ref), -amount),
                    Posting(user_account(user_id), payout),
                    Posting(HOUSE, amount - payout, "plinko_house"),
                ],
            )
            play = PlinkoPlay(
                play_id=play_id,
                user_id=user_id,
                bet=int(amount),
                rows=rows,
                risk=risk,
                house_edge_bias=self.house_edge_bias,
                bin_index=bin_index,
                multiplier=str(multiplier),
                jackpot=jackpot,
                payout=payout,
                commitment_id=commitment.commitment_id,
                nonce=nonce,
                created_at=self.clock(),
            )
            session.add(play)
            await session.flush()
            return play

        play = await self.ledger.run_serialized([user_account(user_id), seed_lock(scope)], operation, prepare)
        result = PlinkoPlaySchema.model_validate(play)
        if result.jackpot:
            logging.info(f"Plinko jackpot for {user_id} on play {result.play_id}")
        await self.notifier.publish(PLINKO_CHANNEL, "plinko:result", result.model_dump(mode="json"))
        return result
