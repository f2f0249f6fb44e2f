import asyncio
import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.core.settings import SeedOfficer, settings
from loanflow.db.session import AsyncSessionLocal
from loanflow.models.finance_officer import FinanceOfficer

logger = logging.getLogger(__name__)


async def seed_officer_pool(session: AsyncSession, officers: list[SeedOfficer]) -> int:
    """Populate an empty officer pool; an existing pool is left untouched."""
    count = (await session.execute(select(func.count()).select_from(FinanceOfficer))).scalar_one()
    if count or not officers:
        return 0
    for officer in officers:
        session.add(
            FinanceOfficer(
                name=officer.name,
                officer_id=officer.officer_id,
                email=officer.email,
                phone=officer.phone,
            )
        )
    await session.commit()
    return len(officers)


async def init_db() -> None:
    async with AsyncSessionLocal() as session:
        created = await seed_officer_pool(session, settings.seed_officers)
        if created:
            logger.info("Seeded %s finance officers", created)
        else:
            logger.info("Finance officer pool already populated or no seed configured")


if __name__ == "__main__":
    asyncio.run(init_db())
