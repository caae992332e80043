"""Database session factory for async SQLAlchemy."""

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ssgkb.config import settings
from ssgkb.db.models import Base

logger.info(
    "Database URL configured: {}",
    settings.database_url[:50] + "..."
    if len(settings.database_url) > 50
    else settings.database_url,
)
engine = create_async_engine(settings.database_url, echo=settings.debug)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(bind: AsyncEngine | None = None) -> None:
    """Create all SSG tables that do not exist yet.

    Args:
        bind: Engine to migrate. Defaults to the configured engine.
    """
    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("SSG schema ready ({} tables)", len(Base.metadata.tables))
