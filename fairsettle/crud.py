# import database
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, asc, desc
from typing import List, Sequence
from datetime import datetime
import logging

from fairsettle.domain.errors import ConcurrencyConflict
from fairsettle.domain.seed_combiner import PRNG_SCHEME, hash_server_seed
from fairsettle.entropy_source import EntropyResult
from fairsettle.models.schemas import (
    Case,
    CaseBattle,
    BattleParticipant,
    LedgerEntry,
    Pool,
    PoolPosition,
    SeedCommitment,
    Wallet,
    WheelRound,
)
from uuid import UUID

logging.getLogger("aiosqlite").setLevel(logging.WARNING)

# Methods taking a session run inside the caller's transaction: they flush but
# never commit, so a failure anywhere rolls the whole operation back.


class CreateData:
    @staticmethod
    async def create_case(name: str, price: int, items: List[dict], session: AsyncSession) -> Case:
        """Insert a case definition

        Args:
            name (str): Display name of the case
            price (int): Price in minor units
            items (List[dict]): Items with "name", "value" (minor units) and "chance" (percent)
        """
        case = Case(
            name=name,
            price=price,
            items=[
                {"name": item["name"], "value": int(item["value"]), "chance": str(item["chance"])}
                for item in items
            ],
        )
        session.add(case)
        await session.flush()
        return case

    @staticmethod
    async def create_commitment(scope: str, entropy: EntropyResult, session: AsyncSession) -> SeedCommitment:
        """Commit a freshly drawn seed for the given scope

        Args:
            scope (str): Owner of the commitment, e.g. "plinko:<user>" or "battle:<id>"
            entropy (EntropyResult): Seeds returned by the entropy source
        """
        commitment = SeedCommitment(
            scope=scope,
            server_seed=entropy.server_seed,
            server_seed_hash=hash_server_seed(entropy.server_seed),
            block_hash=entropy.block_hash,
            hybrid_seed=entropy.hybrid_seed,
            entropy_sources=list(entropy.entropy_sources),
            prng_scheme=PRNG_SCHEME,
            nonce=0,
            created_at=datetime.now(),
        )
        session.add(commitment)
        await session.flush()
        return commitment

    @staticmethod
    async def create_ledger_entries(entries: Sequence[LedgerEntry], session: AsyncSession):
        session.add_all(list(entries))
        await session.flush()


class ReadData:
    @staticmethod
    async def read_wallet(holder: str, session: AsyncSession) -> Wallet | None:
        stmt = select(Wallet).where(Wallet.holder == holder)
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_cases(case_ids: Sequence[UUID], session: AsyncSession) -> dict:
        """Read cases by id

        Returns:
            dict: case_id -> Case, only for the ids that exist
        """
        stmt = select(Case).where(Case.case_id.in_(set(case_ids)))
        result = await session.execute(stmt)
        return {case.case_id: case for case in result.scalars().all()}

    @staticmethod
    async def read_commitment(commitment_id: UUID, session: AsyncSession) -> SeedCommitment | None:
        stmt = select(SeedCommitment).where(SeedCommitment.commitment_id == commitment_id)
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_active_commitment(scope: str, session: AsyncSession) -> SeedCommitment | None:
        """Oldest unrevealed commitment of the scope"""
        stmt = (
            select(SeedCommitment)
            .where(SeedCommitment.scope == scope, SeedCommitment.revealed_at.is_(None))
            .order_by(asc(SeedCommitment.created_at))
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_battle(battle_id: UUID, session: AsyncSession, for_update: bool = False) -> CaseBattle | None:
        stmt = select(CaseBattle).where(CaseBattle.battle_id == battle_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_participants(battle_id: UUID, session: AsyncSession) -> List[BattleParticipant]:
        stmt = (
            select(BattleParticipant)
            .where(BattleParticipant.battle_id == battle_id)
            .order_by(asc(BattleParticipant.seat))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def read_joinable_battles(since: datetime, session: AsyncSession) -> List[CaseBattle]:
        """Read battles still looking for players, created after ``since``"""
        async with session:
            try:
                stmt = (
                    select(CaseBattle)
                    .where(
                        CaseBattle.status.in_(("waiting", "active")),
                        CaseBattle.created_at >= since,
                    )
                    .order_by(desc(CaseBattle.created_at))
                )
                result = await session.execute(stmt)
                return list(result.scalars().all())
            except Exception as e:
                logging.error(f"Failed to read joinable battles: {e}")
                raise

    @staticmethod
    async def read_pool(pool_id: str, session: AsyncSession, for_update: bool = False) -> Pool | None:
        stmt = select(Pool).where(Pool.pool_id == pool_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_positions(
        pool_id: str, epoch: int, session: AsyncSession, user_id: str | None = None
    ) -> List[PoolPosition]:
        stmt = select(PoolPosition).where(PoolPosition.pool_id == pool_id, PoolPosition.epoch == epoch)
        if user_id is not None:
            stmt = stmt.where(PoolPosition.user_id == user_id)
        result = await session.execute(stmt.order_by(asc(PoolPosition.created_at)))
        return list(result.scalars().all())

    @staticmethod
    async def read_wheel_round(round_id: UUID, session: AsyncSession, for_update: bool = False) -> WheelRound | None:
        stmt = select(WheelRound).where(WheelRound.round_id == round_id)
        if for_update:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_latest_wheel_round(session: AsyncSession) -> WheelRound | None:
        stmt = select(WheelRound).order_by(desc(WheelRound.round_number)).limit(1)
        result = await session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    async def read_unfinished_wheel_rounds(session: AsyncSession) -> List[WheelRound]:
        stmt = (
            select(WheelRound)
            .where(WheelRound.status.in_(("betting", "spinning")))
            .order_by(asc(WheelRound.round_number))
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def read_ledger_total(round_ref: str, session: AsyncSession) -> int:
        stmt = select(func.coalesce(func.sum(LedgerEntry.amount), 0)).where(LedgerEntry.round_ref == round_ref)
        result = await session.execute(stmt)
        return int(result.scalar_one())


class UpdateData:
    @staticmethod
    async def transition_battle(
        battle_id: UUID, from_statuses: Sequence[str], to_status: str, session: AsyncSession, **values
    ) -> bool:
        """Move a battle to ``to_status`` only if it is still in one of ``from_statuses``

        Returns:
            bool: False when another operation changed the status first
        """
        stmt = (
            update(CaseBattle)
            .where(CaseBattle.battle_id == battle_id, CaseBattle.status.in_(tuple(from_statuses)))
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    async def transition_wheel_round(
        round_id: UUID, from_status: str, to_status: str, session: AsyncSession, **values
    ) -> bool:
        stmt = (
            update(WheelRound)
            .where(WheelRound.round_id == round_id, WheelRound.status == from_status)
            .values(status=to_status, **values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    async def claim_nonce(commitment: SeedCommitment, session: AsyncSession) -> int:
        """Reserve the next nonce of an unrevealed commitment

        Args:
            commitment (SeedCommitment): Commitment read in this transaction

        Returns:
            int: The nonce this caller may use

        Raises:
            ConcurrencyConflict: the commitment was revealed or the nonce taken meanwhile
        """
        nonce = commitment.nonce
        stmt = (
            update(SeedCommitment)
            .where(
                SeedCommitment.commitment_id == commitment.commitment_id,
                SeedCommitment.revealed_at.is_(None),
                SeedCommitment.nonce == nonce,
            )
            .values(nonce=nonce + 1)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            raise ConcurrencyConflict(f"nonce {nonce} of {commitment.scope} is no longer free")
        return nonce

    @staticmethod
    async def reveal_commitment(commitment_id: UUID, revealed_at: datetime, session: AsyncSession) -> bool:
        stmt = (
            update(SeedCommitment)
            .where(SeedCommitment.commitment_id == commitment_id, SeedCommitment.revealed_at.is_(None))
            .values(revealed_at=revealed_at)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    async def update_pool(pool_id: str, expected_version: int, session: AsyncSession, **values):
        """Write pool fields if nobody else wrote the pool since it was read

        Raises:
            ConcurrencyConflict: the stored version is not ``expected_version``
        """
        stmt = (
            update(Pool)
            .where(Pool.pool_id == pool_id, Pool.version == expected_version)
            .values(version=expected_version + 1, updated_at=datetime.now(), **values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            raise ConcurrencyConflict(f"pool {pool_id} changed since version {expected_version}")

    @staticmethod
    async def set_next_commitment(pool_id: str, commitment_id: UUID, session: AsyncSession) -> bool:
        stmt = (
            update(Pool)
            .where(Pool.pool_id == pool_id, Pool.next_commitment_id.is_(None))
            .values(next_commitment_id=commitment_id)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount == 1


class DeleteData:
    @staticmethod
    async def delete_positions(pool_id: str, epoch: int, session: AsyncSession) -> int:
        stmt = (
            delete(PoolPosition)
            .where(PoolPosition.pool_id == pool_id, PoolPosition.epoch == epoch)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.rowcount
