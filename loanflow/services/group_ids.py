from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from loanflow.models.archived_loan_group import ArchivedLoanGroup
from loanflow.models.group_id_sequence import GroupIdSequence
from loanflow.models.loan_group import LoanGroup
from loanflow.services.workflow_context import WorkflowContext
from loanflow.services.workflow_errors import ConflictError


logger = logging.getLogger(__name__)


def format_group_id(prefix: str, number: int, width: int) -> str:
    return f"{prefix}{str(number).zfill(width)}"


def parse_group_number(group_id: str | None, prefix: str) -> int | None:
    if not group_id or not group_id.startswith(prefix):
        return None
    digits = group_id[len(prefix):]
    if not digits.isdigit():
        return None
    return int(digits)


async def _highest_existing_number(db: AsyncSession, prefix: str) -> int:
    pattern = f"{prefix}%"
    live = await db.execute(select(LoanGroup.id).where(LoanGroup.id.like(pattern)))
    archived = await db.execute(
        select(ArchivedLoanGroup.group_id).where(ArchivedLoanGroup.group_id.like(pattern))
    )
    numbers = [
        parse_group_number(group_id, prefix)
        for group_id in [*live.scalars().all(), *archived.scalars().all()]
    ]
    return max((n for n in numbers if n is not None), default=0)


async def allocate_group_id(db: AsyncSession, ctx: WorkflowContext) -> str:
    """Advance the counter row for the configured prefix and return the new id.

    The increment is flushed immediately so a concurrent writer that already
    advanced the row surfaces here as a stale version (or, for the very first
    allocation, as a duplicate insert) and the read is retried.  The caller
    commits the counter together with whatever it creates under the new id.
    """
    prefix = ctx.config.group_id_prefix
    attempts = ctx.config.cas_retry_attempts
    for attempt in range(1, attempts + 1):
        sequence = await db.get(GroupIdSequence, prefix, populate_existing=True)
        if sequence is None:
            seed = await _highest_existing_number(db, prefix)
            sequence = GroupIdSequence(prefix=prefix, last_value=seed)
            db.add(sequence)
        sequence.last_value = (sequence.last_value or 0) + 1
        try:
            await db.flush()
        except (StaleDataError, IntegrityError):
            await db.rollback()
            logger.warning(
                "Group id counter moved concurrently; retrying (attempt %s/%s)",
                attempt,
                attempts,
                extra={"operation": "allocate_group_id"},
            )
            continue
        return format_group_id(prefix, sequence.last_value, ctx.config.group_id_width)
    raise ConflictError(
        "Could not allocate a group id after concurrent updates",
        details={"prefix": prefix, "attempts": attempts},
    )
