# marketplace_analytics/core/db.py
import logging

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from marketplace_analytics.core.config import settings

logger = logging.getLogger(__name__)

Base = declarative_base()


def build_engine(database_url: str = settings.DATABASE_URL, echo: bool = settings.DATABASE_ECHO) -> AsyncEngine:
    return create_async_engine(database_url, echo=echo)


def build_session_factory(bind: AsyncEngine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind, class_=AsyncSession, expire_on_commit=False)


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


async def init_models(bind: AsyncEngine = engine) -> None:
    """Создает таблицы журнала событий, если их еще нет."""
    # Импорт регистрирует модели в Base.metadata
    from marketplace_analytics.models import activity_log  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Activity log tables are ready.")
