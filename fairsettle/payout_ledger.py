import asyncio
import logging
from contextlib import asynccontextmanager, nullcontext
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Iterable, List, Optional, Sequence, TypeVar

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from fairsettle.crud import CreateData, ReadData
from fairsettle.db import MUTEX, TRANSACTION
from fairsettle.domain.errors import ConcurrencyConflict, InsufficientBalance
from fairsettle.domain.money import MinorUnits
from fairsettle.models.schemas import LedgerEntry, Wallet
from fairsettle.resource_lock_manager import ResourceLockManager

T = TypeVar("T")

HOUSE = "house"
JACKPOT = "jackpot"
EXTERNAL = "external"
SYSTEM_WALLETS = (HOUSE, JACKPOT)


def user_account(user_id: str) -> str:
    return f"user:{user_id}"


def escrow_account(round_ref: str) -> str:
    return f"escrow:{round_ref}"


def pool_account(pool_id: str) -> str:
    return f"pool:{pool_id}"


@dataclass(frozen=True)
class Posting:
    account: str
    amount: int
    entry_type: Optional[str] = None

    @property
    def user_id(self) -> Optional[str]:
        if self.account.startswith("user:"):
            return self.account[len("user:"):]
        return None


def _wallet_holder(account: str) -> Optional[str]:
    """Wallet row behind an account; escrow, pool and external accounts have none."""
    if account.startswith("user:"):
        return account[len("user:"):]
    if account in SYSTEM_WALLETS:
        return account
    return None


class PayoutLedger:
    """The only writer of balances.

    Every change is a balanced set of postings written to the append-only
    ledger in the same transaction as the wallet updates. User debits are a
    single conditional UPDATE, so a balance can never go below zero even when
    two debits race.
    """

    def __init__(
        self,
        Session: async_sessionmaker,
        lock_strategy: str = TRANSACTION,
        lock_manager: ResourceLockManager | None = None,
        max_retries: int = 3,
        retry_delay: float = 0.01,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.Session = Session
        self.lock_strategy = lock_strategy
        self.lock_manager = lock_manager or ResourceLockManager()
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.clock = clock

    @asynccontextmanager
    async def unit_of_work(self, resource_keys: Iterable[str] = ()) -> AsyncIterator[AsyncSession]:
        """Open one transaction, serialized on ``resource_keys`` under the mutex strategy.

        Args:
            resource_keys (Iterable[str]): Resources the operation mutates
        """
        guard = self.lock_manager.hold(resource_keys) if self.lock_strategy == MUTEX else nullcontext()
        async with guard:
            async with self.Session() as session:
                async with session.begin():
                    yield session

    async def run_serialized(
        self,
        resource_keys: Sequence[str],
        operation: Callable[[AsyncSession], Awaitable[T]],
        prepare: Callable[[], Awaitable[None]] | None = None,
    ) -> T:
        """Run ``operation`` atomically, retrying optimistic-lock failures.

        Args:
            resource_keys (Sequence[str]): Resources the operation mutates
            operation (Callable): Coroutine function receiving the open session
            prepare (Callable, optional): I/O to redo before each attempt, outside the transaction

        Returns:
            T: Whatever ``operation`` returns
        """
        for attempt in range(1, self.max_retries + 1):
            if prepare is not None:
                await prepare()
            try:
                async with self.unit_of_work(resource_keys) as session:
                    return await operation(session)
            except ConcurrencyConflict as e:
                if attempt == self.max_retries:
                    logging.error(f"Giving up after {attempt} attempts on {list(resource_keys)}: {e.detail}")
                    raise
                logging.warning(f"Retrying {list(resource_keys)} (attempt {attempt}): {e.detail}")
                await asyncio.sleep(self.retry_delay * attempt)
        raise ConcurrencyConflict("no attempt was made")

    async def ensure_system_wallets(self):
        async with self.unit_of_work() as session:
            for holder in SYSTEM_WALLETS:
                if await ReadData.read_wallet(holder, session) is None:
                    session.add(Wallet(holder=holder, balance=0, is_system=True, version=0))

    async def _debit(self, session: AsyncSession, holder: str, amount: int):
        amount = int(amount)
        stmt = (
            update(Wallet)
            .where(Wallet.holder == holder, Wallet.is_system.is_(False), Wallet.balance >= amount)
            .values(balance=Wallet.balance - amount, version=Wallet.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            raise InsufficientBalance(f"{holder} cannot cover {amount}")

    async def _adjust(self, session: AsyncSession, holder: str, amount: int):
        """Unconditional change; used for credits and for system wallets."""
        amount = int(amount)
        stmt = (
            update(Wallet)
            .where(Wallet.holder == holder)
            .values(balance=Wallet.balance + amount, version=Wallet.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount == 0:
            session.add(
                Wallet(holder=holder, balance=amount, is_system=holder in SYSTEM_WALLETS, version=1)
            )
            await session.flush()

    async def transfer(
        self, session: AsyncSession, entry_type: str, round_ref: str, postings: Sequence[Posting]
    ) -> List[LedgerEntry]:
        """Apply a balanced set of postings inside the caller's transaction.

        User debits are applied first, so an ``InsufficientBalance`` is raised
        before any wallet of this transfer has changed.

        Args:
            entry_type (str): Default ledger type of the postings
            round_ref (str): Round the postings belong to
            postings (Sequence[Posting]): Signed amounts that must sum to zero

        Returns:
            List[LedgerEntry]: The ledger rows written
        """
        postings = [p for p in postings if int(p.amount) != 0]
        total = sum(int(p.amount) for p in postings)
        if total != 0:
            raise ValueError(f"unbalanced transfer for {round_ref}: postings sum to {total}")

        ordered = sorted(postings, key=lambda p: 0 if p.user_id is not None and p.amount < 0 else 1)
        for posting in ordered:
            amount = MinorUnits(int(posting.amount))
            holder = _wallet_holder(posting.account)
            if holder is None:
                continue
            if posting.user_id is not None and amount < 0:
                await self._debit(session, holder, -amount)
            else:
                await self._adjust(session, holder, amount)

        now = self.clock()
        entries = [
            LedgerEntry(
                entry_type=p.entry_type or entry_type,
                account=p.account,
                user_id=p.user_id,
                amount=int(p.amount),
                round_ref=round_ref,
                created_at=now,
            )
            for p in postings
        ]
        await CreateData.create_ledger_entries(entries, session)
        return entries

    async def stake(
        self, session: AsyncSession, user_id: str, amount: MinorUnits, entry_type: str, round_ref: str, to_account: str | None = None
    ) -> List[LedgerEntry]:
        """Move a stake from the user into the round's escrow (or ``to_account``)."""
        amount = MinorUnits(amount)
        if amount <= 0:
            raise ValueError(f"stake must be positive, got {amount}")
        return await self.transfer(
            session,
            entry_type,
            round_ref,
            [
                Posting(user_account(user_id), -amount),
                Posting(to_account or escrow_account(round_ref), amount),
            ],
        )

    async def apply_stake(self, user_id: str, amount: MinorUnits, round_ref: str, entry_type: str = "stake") -> int:
        """Deduct a stake, rejecting it before any change if the balance is short.

        Returns:
            int: Balance after the deduction
        """
        async def operation(session: AsyncSession) -> int:
            await self.stake(session, user_id, amount, entry_type, round_ref)
            wallet = await ReadData.read_wallet(user_id, session)
            await session.refresh(wallet)
            return wallet.balance

        return await self.run_serialized([user_account(user_id)], operation)

    async def apply_payout(
        self, user_id: str, amount: MinorUnits, round_ref: str, entry_type: str = "payout", from_account: str | None = None
    ) -> int:
        """Credit a payout from the round's escrow (or ``from_account``). Never rejected."""
        amount = MinorUnits(amount)
        if amount < 0:
            raise ValueError(f"payout must not be negative, got {amount}")

        async def operation(session: AsyncSession) -> int:
            await self.transfer(
                session,
                entry_type,
                round_ref,
                [
                    Posting(from_account or escrow_account(round_ref), -amount),
                    Posting(user_account(user_id), amount),
                ],
            )
            wallet = await ReadData.read_wallet(user_id, session)
            await session.refresh(wallet)
            return wallet.balance

        return await self.run_serialized([user_account(user_id)], operation)

    async def deposit(self, user_id: str, amount: MinorUnits, reference: str) -> int:
        """Funds handed in by the payment collaborator."""
        return await self.apply_payout(user_id, amount, f"deposit:{reference}", "deposit", EXTERNAL)

    async def read_balance(self, holder: str) -> int:
        async with self.Session() as session:
            wallet = await ReadData.read_wallet(holder, session)
            return wallet.balance if wallet is not None else 0

    async def round_total(self, round_ref: str) -> int:
        """Sum of every ledger entry of a round; zero for any consistent round."""
        async with self.Session() as session:
            return await ReadData.read_ledger_total(round_ref, session)
