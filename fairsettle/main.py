import logging
from contextlib import asynccontextmanager

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import async_sessionmaker

from fairsettle import load_secrets
from fairsettle.create_postgres_engine import build_engine
from fairsettle.db import build_session_factory, create_tables, detect_lock_strategy
from fairsettle.dependencies import Services
from fairsettle.domain.errors import (
    AlreadyJoined,
    AlreadySettled,
    ConcurrencyConflict,
    ExternalEntropyUnavailable,
    InsufficientBalance,
    InvalidRoundState,
    MalformedOutcomeInput,
    NotRoundCreator,
    ParticipantsNotReady,
    PositionNotFound,
    RoundAlreadyClosed,
    RoundFull,
    RoundNotFound,
    SeatTaken,
    SettlementError,
)
from fairsettle.entropy_source import EntropySource
from fairsettle.notifier import Notifier
from fairsettle.payout_ledger import PayoutLedger
from fairsettle.resource_lock_manager import ResourceLockManager
from fairsettle.routers import battles, events, games, pool, seeds, wallet, wheel
from fairsettle.services.keno_service import KenoService
from fairsettle.services.plinko_service import PlinkoService
from fairsettle.services.pool_service import PoolService
from fairsettle.services.seed_service import SeedService
from fairsettle.services.settlement_orchestrator import SettlementOrchestrator
from fairsettle.services.wheel_service import WheelService

logging.basicConfig(level=logging.INFO)

ERROR_STATUS = {
    ExternalEntropyUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    InsufficientBalance: status.HTTP_402_PAYMENT_REQUIRED,
    RoundAlreadyClosed: status.HTTP_409_CONFLICT,
    AlreadySettled: status.HTTP_409_CONFLICT,
    ConcurrencyConflict: status.HTTP_409_CONFLICT,
    MalformedOutcomeInput: status.HTTP_422_UNPROCESSABLE_ENTITY,
    RoundNotFound: status.HTTP_404_NOT_FOUND,
    InvalidRoundState: status.HTTP_409_CONFLICT,
    ParticipantsNotReady: status.HTTP_409_CONFLICT,
    RoundFull: status.HTTP_409_CONFLICT,
    AlreadyJoined: status.HTTP_409_CONFLICT,
    NotRoundCreator: status.HTTP_403_FORBIDDEN,
    SeatTaken: status.HTTP_409_CONFLICT,
    PositionNotFound: status.HTTP_404_NOT_FOUND,
}


async def settlement_error_handler(request: Request, exc: SettlementError):
    status_code = ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    if status_code >= 500:
        logging.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.detail}")
    return JSONResponse(status_code=status_code, content={"code": exc.code, "detail": exc.detail})


def register_routes(app: FastAPI):
    app.add_exception_handler(SettlementError, settlement_error_handler)
    app.include_router(battles.battle_router)
    app.include_router(games.game_router)
    app.include_router(wheel.wheel_router)
    app.include_router(pool.pool_router)
    app.include_router(seeds.seed_router)
    app.include_router(wallet.wallet_router)
    app.include_router(events.event_router)


def build_services(
    Session: async_sessionmaker,
    lock_strategy: str,
    entropy_source: EntropySource,
    notifier: Notifier,
    scheduler: AsyncIOScheduler | None = None,
    redis: Redis | None = None,
) -> Services:
    """Wire the services around one ledger and one seed service."""
    ledger = PayoutLedger(
        Session,
        lock_strategy=lock_strategy,
        lock_manager=ResourceLockManager(),
        max_retries=load_secrets.settlement_max_retries,
    )
    seed_service = SeedService(Session, entropy_source, ledger)
    return Services(
        ledger=ledger,
        seeds=seed_service,
        battles=SettlementOrchestrator(
            Session, ledger, seed_service, notifier, load_secrets.battle_visibility_minutes
        ),
        plinko=PlinkoService(
            Session,
            ledger,
            seed_service,
            notifier,
            house_edge_bias=load_secrets.plinko_house_edge_bias,
            jackpot_denominator=load_secrets.plinko_jackpot_denominator,
            jackpot_multiplier=load_secrets.plinko_jackpot_multiplier,
        ),
        keno=KenoService(Session, ledger, seed_service, notifier),
        wheel=WheelService(
            Session,
            ledger,
            seed_service,
            notifier,
            scheduler,
            betting_seconds=load_secrets.wheel_betting_seconds,
            spin_seconds=load_secrets.wheel_spin_seconds,
        ),
        pool=PoolService(Session, ledger, seed_service, notifier, load_secrets.pool_id),
        redis=redis,
        admin_token=load_secrets.admin_token,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the engine, services and timers.
    This function is called to start the server.
    """
    engine = build_engine()
    await create_tables(engine)
    lock_strategy = await detect_lock_strategy(engine, load_secrets.lock_strategy)
    Session = build_session_factory(engine)

    redis = Redis(
        host=load_secrets.redis_host,
        port=load_secrets.redis_port,
        decode_responses=True,
        health_check_interval=30,
    )
    client = httpx.AsyncClient()
    entropy_source = EntropySource(
        client,
        load_secrets.random_org_api_key,
        load_secrets.random_org_url,
        load_secrets.block_hash_url,
        load_secrets.random_org_timeout,
        load_secrets.block_hash_timeout,
    )
    scheduler = AsyncIOScheduler()
    services = build_services(Session, lock_strategy, entropy_source, Notifier(redis), scheduler, redis)
    app.state.services = services

    await services.ledger.ensure_system_wallets()
    await services.pool.ensure_pool()
    await services.pool.ensure_next_commitment()
    scheduler.start()
    await services.wheel.restore_timers()
    try:
        yield
    finally:
        scheduler.shutdown()
        await client.aclose()
        await redis.close()
        await engine.dispose()
        logging.info("Stop Server")


app = FastAPI(lifespan=lifespan)
register_routes(app)
