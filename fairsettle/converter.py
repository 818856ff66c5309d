from decimal import Decimal
from typing import Dict, Iterable

from fairsettle.domain.money import MinorUnits, from_display, to_display
from fairsettle.domain.payout_rules import BattleDistribution
from fairsettle.models.api_models import (
    BalanceModel,
    CommitmentModel,
    RevealedSeedModel,
    SettlementResultModel,
)
from fairsettle.models.schema_models import BattleParticipantSchema, SeedCommitmentSchema


class DataConverter:
    """This class is used to convert data between storage, engine and client formats."""

    @staticmethod
    def to_minor_units(amount: Decimal) -> MinorUnits:
        """Convert a client amount in display currency into minor units."""
        return from_display(amount)

    @staticmethod
    def to_public_commitment(commitment: SeedCommitmentSchema) -> CommitmentModel:
        """Strip the secret half of a commitment before it is published

        Args:
            commitment (SeedCommitmentSchema): Stored commitment

        Returns:
            CommitmentModel: Hash, block hash and audit tags only
        """
        return CommitmentModel(
            commitment_id=commitment.commitment_id,
            scope=commitment.scope,
            server_seed_hash=commitment.server_seed_hash,
            block_hash=commitment.block_hash,
            entropy_sources=commitment.entropy_sources,
            prng_scheme=commitment.prng_scheme,
            nonce=commitment.nonce,
            created_at=commitment.created_at,
        )

    @staticmethod
    def to_revealed_seed(commitment: SeedCommitmentSchema) -> RevealedSeedModel:
        if commitment.revealed_at is None:
            raise ValueError(f"commitment {commitment.commitment_id} has not been revealed")
        return RevealedSeedModel(
            commitment_id=commitment.commitment_id,
            scope=commitment.scope,
            server_seed=commitment.server_seed,
            server_seed_hash=commitment.server_seed_hash,
            block_hash=commitment.block_hash,
            hybrid_seed=commitment.hybrid_seed,
            entropy_sources=commitment.entropy_sources,
            prng_scheme=commitment.prng_scheme,
            nonce=commitment.nonce,
            revealed_at=commitment.revealed_at,
        )

    @staticmethod
    def to_battle_result(
        round_ref: str,
        distribution: BattleDistribution,
        participants: Iterable[BattleParticipantSchema],
        revealed: RevealedSeedModel | None,
    ) -> SettlementResultModel:
        balance_deltas: Dict[str, int] = {}
        for participant in participants:
            if participant.is_bot:
                continue
            balance_deltas[participant.user_id] = (
                distribution.human_credits.get(participant.user_id, 0) - participant.stake
            )
        return SettlementResultModel(
            round_ref=round_ref,
            winners=distribution.split.winners,
            shares={k: str(v) for k, v in distribution.split.shares.items()},
            payouts=distribution.split.credits,
            balance_deltas=balance_deltas,
            house_delta=distribution.house_delta,
            revealed=revealed,
        )

    @staticmethod
    def to_balance(holder: str, balance: int) -> BalanceModel:
        return BalanceModel(holder=holder, balance=balance, display=str(to_display(balance)))
