import pathlib

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

file_path = pathlib.Path(__file__).parents[1]
file_path /= "./fairsettle.sqlite3"
sqlite_url = f"sqlite+aiosqlite:///{file_path}"

# seconds a writer waits on the database lock before failing
BUSY_TIMEOUT = 30


def build_sqlite_engine(url: str = sqlite_url) -> AsyncEngine:
    """SQLite engine whose transactions take the write lock when they begin.

    A deferred transaction that reads and then writes can fail immediately
    with "database is locked" when another writer is active; BEGIN IMMEDIATE
    makes it wait for the busy timeout instead.
    """
    engine = create_async_engine(
        url=url, echo=False, connect_args={"timeout": BUSY_TIMEOUT}
    )

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        # let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine
