import asyncio

import pytest

from fairsettle.db import MUTEX
from fairsettle.domain.errors import ConcurrencyConflict, InsufficientBalance
from fairsettle.payout_ledger import (
    HOUSE,
    PayoutLedger,
    Posting,
    escrow_account,
    user_account,
)
from fairsettle.resource_lock_manager import ResourceLockManager


async def test_deposit_and_read_balance(ledger):
    assert await ledger.read_balance("alice") == 0
    assert await ledger.deposit("alice", 1000, "bank-1") == 1000
    assert await ledger.deposit("alice", 250, "bank-2") == 1250
    assert await ledger.read_balance("alice") == 1250
    assert await ledger.round_total("deposit:bank-1") == 0


async def test_concurrent_stakes_never_overdraw(ledger):
    await ledger.deposit("alice", 1000, "bank")

    async def attempt(i):
        try:
            await ledger.apply_stake("alice", 100, f"plinko:{i}")
            return True
        except InsufficientBalance:
            return False

    results = await asyncio.gather(*(attempt(i) for i in range(50)))
    assert results.count(True) == 10
    assert await ledger.read_balance("alice") == 0


async def test_rejected_stake_changes_nothing(ledger):
    await ledger.deposit("alice", 50, "bank")
    with pytest.raises(InsufficientBalance):
        await ledger.apply_stake("alice", 100, "plinko:1")
    assert await ledger.read_balance("alice") == 50
    assert await ledger.round_total("plinko:1") == 0


async def test_unknown_user_cannot_stake(ledger):
    with pytest.raises(InsufficientBalance):
        await ledger.apply_stake("ghost", 1, "plinko:1")


async def test_stake_then_payout_balances_the_round(ledger):
    await ledger.deposit("alice", 1000, "bank")
    assert await ledger.apply_stake("alice", 300, "keno:1") == 700
    assert await ledger.apply_payout("alice", 500, "keno:1", from_account=HOUSE) == 1200
    assert await ledger.read_balance(HOUSE) == -500


async def test_unbalanced_transfer_is_refused(ledger):
    with pytest.raises(ValueError):
        async with ledger.unit_of_work() as session:
            await ledger.transfer(
                session, "oops", "battle:1", [Posting(escrow_account("battle:1"), 10), Posting(HOUSE, -9)]
            )


async def test_transfer_failure_rolls_back_every_posting(ledger):
    await ledger.deposit("alice", 100, "bank")
    with pytest.raises(InsufficientBalance):
        async with ledger.unit_of_work([user_account("alice")]) as session:
            await ledger.transfer(
                session,
                "settle",
                "battle:1",
                [Posting(HOUSE, 500), Posting(user_account("alice"), -500)],
            )
    assert await ledger.read_balance("alice") == 100
    assert await ledger.read_balance(HOUSE) == 0


async def test_run_serialized_retries_conflicts(Session):
    ledger = PayoutLedger(Session, lock_strategy=MUTEX, lock_manager=ResourceLockManager(), max_retries=3, retry_delay=0)
    attempts = []
    prepared = []

    async def prepare():
        prepared.append(True)

    async def operation(session):
        attempts.append(True)
        if len(attempts) < 3:
            raise ConcurrencyConflict("stale version")
        return "done"

    assert await ledger.run_serialized(["pool:x"], operation, prepare) == "done"
    assert len(attempts) == 3
    assert len(prepared) == 3


async def test_run_serialized_gives_up(Session):
    ledger = PayoutLedger(Session, lock_strategy=MUTEX, max_retries=2, retry_delay=0)
    attempts = []

    async def operation(session):
        attempts.append(True)
        raise ConcurrencyConflict("stale version")

    with pytest.raises(ConcurrencyConflict):
        await ledger.run_serialized(["pool:x"], operation)
    assert len(attempts) == 2


async def test_lock_manager_orders_and_forgets_released_keys():
    manager = ResourceLockManager()
    async with manager.hold(["user:b", "user:a", "user:a"]):
        assert list(manager.locks) == ["user:a", "user:b"]
        assert manager.locks["user:a"].locked()
        assert manager.holders == {"user:a": 1, "user:b": 1}
    assert manager.locks == {}
    assert manager.holders == {}


async def test_lock_manager_keeps_the_entry_while_someone_waits():
    manager = ResourceLockManager()
    order = []

    async def second():
        async with manager.hold(["user:a"]):
            order.append("second")

    async with manager.hold(["user:a"]):
        waiter = asyncio.create_task(second())
        for _ in range(3):
            await asyncio.sleep(0)
        assert manager.holders["user:a"] == 2
        order.append("first")
    await waiter

    assert order == ["first", "second"]
    assert manager.locks == {}
