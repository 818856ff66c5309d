import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from fairsettle.models.schemas import Base

TRANSACTION = "transaction"
MUTEX = "mutex"
LOCK_STRATEGIES = ("auto", TRANSACTION, MUTEX)

# Dialects whose transactions can hold row locks (SELECT ... FOR UPDATE).
ROW_LOCKING_DIALECTS = {"postgresql", "mysql", "mariadb", "oracle", "mssql"}


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory owned by the process and handed to every service."""
    return async_sessionmaker(
        autocommit=False,
        class_=AsyncSession,
        autoflush=True,
        expire_on_commit=False,
        bind=engine,
    )


async def create_tables(engine: AsyncEngine):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def detect_lock_strategy(engine: AsyncEngine, requested: str = "auto") -> str:
    """Decide once, at startup, how shared resources are serialized.

    Args:
        engine (AsyncEngine): Engine of the backing store
        requested (str): "auto", "transaction" or "mutex"

    Returns:
        str: "transaction" when the store can lock rows inside a transaction,
        otherwise "mutex" (in-process per-resource locks)
    """
    if requested not in LOCK_STRATEGIES:
        raise ValueError(f"Unknown lock strategy: {requested}")
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
    dialect = engine.dialect.name
    row_locking = dialect in ROW_LOCKING_DIALECTS
    if requested == TRANSACTION and not row_locking:
        raise RuntimeError(f"{dialect} cannot hold row locks; use LOCK_STRATEGY=mutex")
    strategy = requested
    if requested == "auto":
        strategy = TRANSACTION if row_locking else MUTEX
    logging.info(f"Lock strategy: {strategy} (dialect={dialect})")
    return strategy
