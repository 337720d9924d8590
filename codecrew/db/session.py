from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from ..core.config import settings
from .models import Base


engine = create_async_engine(settings.DATABASE_URL, echo=settings.DB_ECHO, future=True)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def init_models(bind=None) -> None:
    """Create the cache and usage tables if they do not exist."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
