from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from storyloom.core.config import settings


def make_async_url(url: str) -> str:
    """Convert database URL to async driver format"""
    if "postgresql://" in url and "asyncpg" not in url:
        return url.replace("postgresql://", "postgresql+asyncpg://")
    if "sqlite://" in url and "aiosqlite" not in url:
        return url.replace("sqlite://", "sqlite+aiosqlite://")
    return url


async_database_url = make_async_url(settings.database_url)
async_engine = create_async_engine(async_database_url, echo=settings.debug)
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

Base = declarative_base()


async def init_db(engine=None):
    """Create tables that do not exist yet"""
    from storyloom.models import db  # noqa: F401  registers the jobs table

    engine = engine or async_engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
