import re
from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from draymaster.core.config import get_settings

settings = get_settings()


def get_async_database_url(url: str) -> str:
    """Convert database URL to async-compatible format using psycopg driver."""
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+psycopg://", 1)
    elif url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql+psycopg://", 1)

    if "channel_binding=" in url:
        url = re.sub(r'[&?]channel_binding=[^&]*', '', url)
        url = url.replace('?&', '?').rstrip('?')

    return url


def engine_options(url: str) -> dict:
    """Pool settings only apply to server databases; SQLite uses a static pool."""
    if "postgresql" not in url:
        return {}
    return {
        "pool_pre_ping": True,  # Verify connections before using
        "pool_recycle": 3600,   # Recycle connections after 1 hour
        "pool_timeout": 10,     # Wait up to 10 seconds for a connection from pool
        "max_overflow": 10,
        "connect_args": {"connect_timeout": 10},
    }


database_url = get_async_database_url(settings.database_url)

engine: AsyncEngine = create_async_engine(
    database_url,
    future=True,
    echo=settings.debug,
    **engine_options(database_url),
)

AsyncSessionFactory = async_sessionmaker(
    bind=engine,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionFactory() as session:
        yield session
