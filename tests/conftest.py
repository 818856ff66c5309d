import json
import secrets
from typing import List

import pytest

from fairsettle.create_sqlite_engine import build_sqlite_engine
from fairsettle.crud import CreateData
from fairsettle.db import MUTEX, build_session_factory, create_tables
from fairsettle.entropy_source import LOCAL, EntropyResult
from fairsettle.notifier import Notifier
from fairsettle.payout_ledger import PayoutLedger
from fairsettle.resource_lock_manager import ResourceLockManager
from fairsettle.services.keno_service import KenoService
from fairsettle.services.plinko_service import PlinkoService
from fairsettle.services.pool_service import PoolService
from fairsettle.services.seed_service import SeedService
from fairsettle.services.settlement_orchestrator import SettlementOrchestrator
from fairsettle.services.wheel_service import WheelService


class FakeEntropySource:
    """Hands out queued server seeds, then random ones. Never has a block hash."""

    def __init__(self):
        self.seeds: List[str] = []
        self.calls = 0

    def queue(self, *seeds: str):
        self.seeds.extend(seeds)

    async def generate_hybrid_seed(self) -> EntropyResult:
        self.calls += 1
        server_seed = self.seeds.pop(0) if self.seeds else secrets.token_hex(32)
        return EntropyResult(
            server_seed=server_seed,
            block_hash=None,
            hybrid_seed=server_seed,
            entropy_sources=[LOCAL],
        )


class RecordingNotifier(Notifier):
    def __init__(self):
        super().__init__(None)
        self.events = []

    async def publish(self, channel: str, event: str, data: dict):
        self.events.append((channel, event, json.loads(json.dumps(data, default=str))))

    def named(self, event: str) -> list:
        return [data for _, name, data in self.events if name == event]


@pytest.fixture
async def engine(tmp_path):
    engine = build_sqlite_engine(f"sqlite+aiosqlite:///{tmp_path / 'fairsettle.sqlite3'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def Session(engine):
    return build_session_factory(engine)


@pytest.fixture
async def ledger(Session):
    ledger = PayoutLedger(Session, lock_strategy=MUTEX, lock_manager=ResourceLockManager(), max_retries=5)
    await ledger.ensure_system_wallets()
    return ledger


@pytest.fixture
def entropy():
    return FakeEntropySource()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def seeds(Session, entropy, ledger):
    return SeedService(Session, entropy, ledger)


@pytest.fixture
def orchestrator(Session, ledger, seeds, notifier):
    return SettlementOrchestrator(Session, ledger, seeds, notifier)


@pytest.fixture
def plinko(Session, ledger, seeds, notifier):
    return PlinkoService(Session, ledger, seeds, notifier)


@pytest.fixture
def keno(Session, ledger, seeds, notifier):
    return KenoService(Session, ledger, seeds, notifier)


@pytest.fixture
def wheel(Session, ledger, seeds, notifier):
    return WheelService(Session, ledger, seeds, notifier)


@pytest.fixture
def pool_service(Session, ledger, seeds, notifier):
    return PoolService(Session, ledger, seeds, notifier, pool_id="test-pool")


@pytest.fixture
def make_case(Session):
    async def factory(name: str, price: int, items: list):
        async with Session() as session:
            async with session.begin():
                case = await CreateData.create_case(name, price, items, session)
            return case.case_id

    return factory
