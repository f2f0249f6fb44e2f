from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from loanflow.core.settings import settings


def engine_options(database_url: str) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": settings.db_echo}
    if database_url.startswith("sqlite"):
        return options
    options.update(
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
    return options


engine = create_async_engine(settings.database_url, **engine_options(settings.database_url))
# Loan groups are read back after commit for notifications and replies.
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


async def dispose_engine() -> None:
    await engine.dispose()
