from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from fairsettle.create_sqlite_engine import build_sqlite_engine
from fairsettle.load_secrets import user, password, host, port, db_name, database_url

POSTGRES_DATABASE_URL = (
    f"postgresql+asyncpg://{user}:{password}@{host}:{port}/{db_name}"
)


def build_engine(url: str | None = None) -> AsyncEngine:
    """Create the process-wide engine.

    ``DATABASE_URL`` wins over the ``DB_*`` variables so that a deployment can
    point at SQLite without touching code.
    """
    url = url or database_url or POSTGRES_DATABASE_URL
    if url.startswith("sqlite"):
        return build_sqlite_engine(url)
    return create_async_engine(url, pool_size=20, max_overflow=20)
