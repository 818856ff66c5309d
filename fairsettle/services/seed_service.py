"""Commit-reveal lifecycle of server seeds.

- A commitment's hash is public as soon as it exists; its secret half is
  only shown after ``reveal``.
- Entropy is fetched before any transaction opens.
"""

import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fairsettle.converter import DataConverter
from fairsettle.crud import CreateData, ReadData, UpdateData
from fairsettle.domain.errors import InvalidRoundState, RoundNotFound
from fairsettle.entropy_source import EntropyResult, EntropySource
from fairsettle.models.api_models import CommitmentModel, RevealedSeedModel
from fairsettle.models.schemas import SeedCommitment
from fairsettle.payout_ledger import PayoutLedger


def seed_lock(scope: str) -> str:
    return f"seed:{scope}"


class SeedService:
    def __init__(
        self,
        Session: async_sessionmaker,
        entropy_source: EntropySource,
        ledger: PayoutLedger,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session = Session
        self.entropy_source = entropy_source
        self.ledger = ledger
        self.clock = clock

    async def draw_entropy(self) -> EntropyResult:
        entropy = await self.entropy_source.generate_hybrid_seed()
        logging.info(f"Drew seed from {entropy.entropy_sources}")
        return entropy

    async def commit(self, scope: str, entropy: EntropyResult, session: AsyncSession) -> SeedCommitment:
        """Store a commitment inside the caller's transaction."""
        commitment = await CreateData.create_commitment(scope, entropy, session)
        logging.info(f"Committed {commitment.server_seed_hash} for {scope}")
        return commitment

    async def ensure_active(self, scope: str) -> SeedCommitment:
        """Return the scope's unrevealed commitment, committing a new seed if there is none

        Args:
            scope (str): e.g. "plinko:<user>"

        Returns:
            SeedCommitment: Active commitment of the scope
        """
        async with self.Session() as session:
            commitment = await ReadData.read_active_commitment(scope, session)
        if commitment is not None:
            return commitment

        entropy = await self.draw_entropy()

        async def operation(session: AsyncSession) -> SeedCommitment:
            existing = await ReadData.read_active_commitment(scope, session)
            if existing is not None:
                return existing
            return await self.commit(scope, entropy, session)

        return await self.ledger.run_serialized([seed_lock(scope)], operation)

    async def reveal(self, commitment_id: UUID, session: AsyncSession) -> bool:
        """Publish the secret half of a commitment inside the caller's transaction.

        Returns:
            bool: False if it had already been revealed
        """
        revealed = await UpdateData.reveal_commitment(commitment_id, self.clock(), session)
        if revealed:
            logging.info(f"Revealed commitment {commitment_id}")
        return revealed

    async def rotate(self, scope: str) -> RevealedSeedModel | None:
        """Reveal the scope's active seed and commit a fresh one

        Args:
            scope (str): User-scoped game, e.g. "keno:<user>"

        Returns:
            RevealedSeedModel | None: The seed that was retired, None if the scope had none
        """
        entropy = await self.draw_entropy()

        async def operation(session: AsyncSession) -> UUID | None:
            current = await ReadData.read_active_commitment(scope, session)
            retired = None
            if current is not None:
                await self.reveal(current.commitment_id, session)
                retired = current.commitment_id
            await self.commit(scope, entropy, session)
            return retired

        retired = await self.ledger.run_serialized([seed_lock(scope)], operation)
        if retired is None:
            return None
        return await self.revealed_seed(retired)

    async def public_commitment(self, scope: str) -> CommitmentModel:
        commitment = await self.ensure_active(scope)
        return DataConverter.to_public_commitment(commitment)

    async def read_commitment(self, commitment_id: UUID) -> SeedCommitment:
        async with self.Session() as session:
            commitment = await ReadData.read_commitment(commitment_id, session)
        if commitment is None:
            raise RoundNotFound(f"commitment {commitment_id} does not exist")
        return commitment

    async def revealed_seed(self, commitment_id: UUID) -> RevealedSeedModel:
        """Full seed of a revealed commitment

        Raises:
            InvalidRoundState: the commitment is still in use
        """
        commitment = await self.read_commitment(commitment_id)
        if commitment.revealed_at is None:
            raise InvalidRoundState(f"commitment {commitment_id} is still active")
        return DataConverter.to_revealed_seed(commitment)
