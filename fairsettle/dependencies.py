from dataclasses import dataclass

from fastapi import Header, Request
from redis.asyncio import Redis

from fairsettle.payout_ledger import PayoutLedger
from fairsettle.services.keno_service import KenoService
from fairsettle.services.plinko_service import PlinkoService
from fairsettle.services.pool_service import PoolService
from fairsettle.services.seed_service import SeedService
from fairsettle.services.settlement_orchestrator import SettlementOrchestrator
from fairsettle.services.wheel_service import WheelService


@dataclass
class Services:
    """Everything the routers need, built once in the lifespan."""

    ledger: PayoutLedger
    seeds: SeedService
    battles: SettlementOrchestrator
    plinko: PlinkoService
    keno: KenoService
    wheel: WheelService
    pool: PoolService
    redis: Redis | None = None
    admin_token: str | None = None


def get_services(request: Request) -> Services:
    return request.app.state.services


def current_user_id(x_user_id: str = Header(min_length=1)) -> str:
    """User id asserted by the authenticating gateway in front of this service."""
    return x_user_id
