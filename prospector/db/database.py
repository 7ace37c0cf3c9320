import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from prospector.config import settings

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT = 30  # seconds a writer waits on a locked database file


def engine_options(database_url: str) -> dict:
    """Backend-specific engine arguments.

    SQLite has no row locks, so concurrent claimers queue on the file lock and
    need a busy timeout. Server databases get a pre-ping'd, recycled pool since
    workers hold connections for long stretches between polls.
    """
    options = {"echo": settings.debug}
    if make_url(database_url).get_backend_name() == "sqlite":
        options["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT}
    else:
        options.update(pool_pre_ping=True, pool_recycle=3600, pool_size=5, max_overflow=10)
    return options


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # attributes stay readable after commit; jobs are handed between sessions
    return async_sessionmaker(bind, class_=AsyncSession, expire_on_commit=False)


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))
async_session = make_session_factory(engine)


async def get_db():
    async with async_session() as session:
        yield session


async def init_db(bind: AsyncEngine | None = None):
    from prospector.db.models import Base

    bind = bind or engine
    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Database ready ({bind.url.get_backend_name()})")
