"""Rugged: a shared pool that can crash on any buy.

- Each epoch is bound to one commitment; the next epoch's commitment is drawn
  ahead of time, outside the transaction, so a crash never waits on I/O.
- The pool row carries a version; every write checks it.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Callable, List

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fairsettle.converter import DataConverter
from fairsettle.crud import DeleteData, ReadData, UpdateData
from fairsettle.domain.crash_rules import crash_roll, should_crash
from fairsettle.domain.errors import ConcurrencyConflict, MalformedOutcomeInput, PositionNotFound, RoundNotFound
from fairsettle.domain.money import MinorUnits
from fairsettle.domain.payout_rules import crash_split, remaining_entry, sell_payout
from fairsettle.models.api_models import CommitmentModel, PoolActionModel
from fairsettle.models.schema_models import PoolPositionSchema, PoolSchema
from fairsettle.models.schemas import Pool, PoolPosition
from fairsettle.notifier import Notifier
from fairsettle.payout_ledger import HOUSE, JACKPOT, PayoutLedger, Posting, pool_account, user_account
from fairsettle.services.seed_service import SeedService

POOL_CHANNEL = "pool"


def pool_scope(pool_id: str) -> str:
    return f"pool:{pool_id}"


def epoch_ref(pool_id: str, epoch: int) -> str:
    return f"pool:{pool_id}:{epoch}"


class PoolService:
    def __init__(
        self,
        Session: async_sessionmaker,
        ledger: PayoutLedger,
        seeds: SeedService,
        notifier: Notifier,
        pool_id: str = "rugged",
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session = Session
        self.ledger = ledger
        self.seeds = seeds
        self.notifier = notifier
        self.pool_id = pool_id
        self.clock = clock

    async def read_pool(self) -> PoolSchema:
        async with self.Session() as session:
            pool = await ReadData.read_pool(self.pool_id, session)
        if pool is None:
            raise RoundNotFound(f"pool {self.pool_id} does not exist")
        return PoolSchema.model_validate(pool)

    async def _locked_pool(self, session: AsyncSession) -> Pool:
        pool = await ReadData.read_pool(self.pool_id, session, for_update=True)
        if pool is None:
            raise RoundNotFound(f"pool {self.pool_id} does not exist")
        return pool

    async def ensure_pool(self) -> PoolSchema:
        """Create the pool with its first commitment if it does not exist yet."""
        async with self.Session() as session:
            existing = await ReadData.read_pool(self.pool_id, session)
        if existing is None:
            entropy = await self.seeds.draw_entropy()

            async def operation(session: AsyncSession):
                if await ReadData.read_pool(self.pool_id, session, for_update=True) is not None:
                    return
                commitment = await self.seeds.commit(pool_scope(self.pool_id), entropy, session)
                session.add(
                    Pool(
                        pool_id=self.pool_id,
                        balance=0,
                        epoch=1,
                        nonce=0,
                        commitment_id=commitment.commitment_id,
                        version=0,
                    )
                )
                await session.flush()

            await self.ledger.run_serialized([pool_account(self.pool_id)], operation)
            logging.info(f"Created pool {self.pool_id}")
        return await self.read_pool()

    async def ensure_next_commitment(self):
        """Pre-commit the seed of the epoch after the current one."""
        pool = await self.read_pool()
        if pool.next_commitment_id is not None:
            return
        entropy = await self.seeds.draw_entropy()

        async def operation(session: AsyncSession):
            pool = await self._locked_pool(session)
            if pool.next_commitment_id is not None:
                return
            commitment = await self.seeds.commit(pool_scope(self.pool_id), entropy, session)
            await UpdateData.set_next_commitment(self.pool_id, commitment.commitment_id, session)

        await self.ledger.run_serialized([pool_account(self.pool_id)], operation)

    async def _crash(self, session: AsyncSession, pool: Pool, balance: int, nonce: int, roll: int | None, user_id=None, amount=0):
        """End the epoch: split the pool, forfeit positions, reveal and switch seeds."""
        if pool.next_commitment_id is None:
            raise ConcurrencyConflict(f"pool {self.pool_id} has no pre-committed seed")
        jackpot, house = crash_split(balance)
        await self.ledger.transfer(
            session,
            "pool_crash",
            epoch_ref(self.pool_id, pool.epoch),
            [
                Posting(pool_account(self.pool_id), -balance),
                Posting(JACKPOT, jackpot, "pool_jackpot"),
                Posting(HOUSE, house, "pool_house"),
            ],
        )
        forfeited = await DeleteData.delete_positions(self.pool_id, pool.epoch, session)
        await self.seeds.reveal(pool.commitment_id, session)
        await UpdateData.update_pool(
            self.pool_id,
            pool.version,
            session,
            balance=0,
            epoch=pool.epoch + 1,
            nonce=0,
            commitment_id=pool.next_commitment_id,
            next_commitment_id=None,
            last_crash_at=self.clock(),
        )
        return PoolActionModel(
            pool_id=self.pool_id,
            epoch=pool.epoch,
            action="crash",
            user_id=user_id,
            amount=amount,
            nonce=nonce,
            roll=roll,
            crashed=True,
            pool_balance=0,
            jackpot=jackpot,
            house=house,
            forfeited_positions=forfeited,
        ), pool.commitment_id

    async def _finish(self, result: PoolActionModel, retired_commitment) -> PoolActionModel:
        if result.crashed:
            result.revealed = await self.seeds.revealed_seed(retired_commitment)
            logging.info(
                f"Pool {self.pool_id} crashed in epoch {result.epoch}: jackpot {result.jackpot}, house {result.house}"
            )
            await self.notifier.publish(POOL_CHANNEL, "pool:crash", result.model_dump(mode="json"))
        else:
            await self.notifier.publish(POOL_CHANNEL, f"pool:{result.action}", result.model_dump(mode="json"))
        return result

    async def buy(self, user_id: str, amount: MinorUnits) -> PoolActionModel:
        """Stake into the pool, then roll for a crash

        Args:
            user_id (str): Buyer
            amount (MinorUnits): Stake

        Returns:
            PoolActionModel: The buy, or the crash it triggered
        """
        amount = MinorUnits(amount)
        if amount <= 0:
            raise MalformedOutcomeInput(f"buy amount must be positive, got {amount}")

        async def operation(session: AsyncSession):
            pool = await self._locked_pool(session)
            if pool.next_commitment_id is None:
                raise ConcurrencyConflict(f"pool {self.pool_id} has no pre-committed seed")
            await self.ledger.stake(
                session, user_id, amount, "pool_buy", epoch_ref(self.pool_id, pool.epoch), pool_account(self.pool_id)
            )
            balance = pool.balance + int(amount)
            nonce = pool.nonce + 1
            commitment = await ReadData.read_commitment(pool.commitment_id, session)
            roll = crash_roll(commitment.hybrid_seed, nonce)
            if should_crash(roll, balance):
                return await self._crash(session, pool, balance, nonce, roll, user_id, int(amount))

            session.add(
                PoolPosition(
                    pool_id=self.pool_id,
                    epoch=pool.epoch,
                    user_id=user_id,
                    entry_amount=int(amount),
                    entry_pool=balance,
                    created_at=self.clock(),
                )
            )
            await session.flush()
            await UpdateData.update_pool(self.pool_id, pool.version, session, balance=balance, nonce=nonce)
            return PoolActionModel(
                pool_id=self.pool_id,
                epoch=pool.epoch,
                action="buy",
                user_id=user_id,
                amount=int(amount),
                nonce=nonce,
                roll=roll,
                pool_balance=balance,
            ), None

        result, retired = await self.ledger.run_serialized(
            [pool_account(self.pool_id), user_account(user_id)], operation, self.ensure_next_commitment
        )
        return await self._finish(result, retired)

    async def sell(self, user_id: str, percent: Decimal = Decimal(100)) -> PoolActionModel:
        """Sell ``percent`` of every position the user holds in the current epoch

        Raises:
            PositionNotFound: the user holds nothing in this epoch
        """

        async def operation(session: AsyncSession):
            pool = await self._locked_pool(session)
            positions = await ReadData.read_positions(self.pool_id, pool.epoch, session, user_id)
            if not positions:
                raise PositionNotFound(f"{user_id} has no position in epoch {pool.epoch}")
            payouts = [sell_payout(p.entry_amount, p.entry_pool, pool.balance, percent) for p in positions]
            total = min(sum(payouts), pool.balance)
            remaining_pool = pool.balance - total
            for position in positions:
                left = remaining_entry(position.entry_amount, percent)
                if left <= 0:
                    await session.delete(position)
                else:
                    position.entry_amount = left
            await self.ledger.transfer(
                session,
                "pool_sell",
                epoch_ref(self.pool_id, pool.epoch),
                [Posting(pool_account(self.pool_id), -total), Posting(user_account(user_id), total)],
            )
            await session.flush()
            await UpdateData.update_pool(self.pool_id, pool.version, session, balance=remaining_pool)
            return PoolActionModel(
                pool_id=self.pool_id,
                epoch=pool.epoch,
                action="sell",
                user_id=user_id,
                amount=total,
                pool_balance=remaining_pool,
            ), None

        result, retired = await self.ledger.run_serialized(
            [pool_account(self.pool_id), user_account(user_id)], operation
        )
        return await self._finish(result, retired)

    async def force_crash(self) -> PoolActionModel:
        """Crash the current epoch immediately (operator action)."""

        async def operation(session: AsyncSession):
            pool = await self._locked_pool(session)
            return await self._crash(session, pool, pool.balance, pool.nonce, None)

        result, retired = await self.ledger.run_serialized(
            [pool_account(self.pool_id)], operation, self.ensure_next_commitment
        )
        return await self._finish(result, retired)

    async def positions(self, user_id: str) -> List[PoolPositionSchema]:
        pool = await self.read_pool()
        async with self.Session() as session:
            positions = await ReadData.read_positions(self.pool_id, pool.epoch, session, user_id)
            return [PoolPositionSchema.model_validate(p) for p in positions]

    async def current_commitment(self) -> CommitmentModel:
        pool = await self.read_pool()
        commitment = await self.seeds.read_commitment(pool.commitment_id)
        return DataConverter.to_public_commitment(commitment)
