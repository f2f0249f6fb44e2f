from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.models.finance_officer import FinanceOfficer
from loanflow.models.loan_group import LoanGroup
from loanflow.schemas.loan_group import OfficerContact
from loanflow.services import record_store
from loanflow.services.loan_workflow import assign_officer
from loanflow.services.workflow_context import WorkflowContext
from loanflow.services.workflow_errors import WorkflowError


logger = logging.getLogger(__name__)


def officer_from_pool_entry(entry: FinanceOfficer) -> OfficerContact:
    return OfficerContact(
        name=entry.name,
        officer_id=entry.officer_id,
        email=entry.email,
        phone=entry.phone,
    )


async def eligible_officers(db: AsyncSession) -> list[OfficerContact]:
    officers = [officer_from_pool_entry(entry) for entry in await record_store.list_active_officers(db)]
    return [officer for officer in officers if not officer.missing_fields()]


async def assign_manually(
    db: AsyncSession,
    ctx: WorkflowContext,
    group_id: str,
    officer: OfficerContact,
) -> LoanGroup:
    group = await assign_officer(db, ctx, group_id, officer)
    logger.info(
        "Officer %s assigned manually",
        officer.officer_id,
        extra={"group_id": group_id, "operation": "assign_manually"},
    )
    return group


async def auto_assign(db: AsyncSession, ctx: WorkflowContext, group_id: str) -> OfficerContact | None:
    """Bind a random pool officer to the group.

    Returns the chosen officer, or None when nobody could be assigned; the
    group then stays in PendingOfficer for a manual assignment.
    """
    log_extra = {"group_id": group_id, "operation": "auto_assign"}
    candidates = await eligible_officers(db)
    if not candidates:
        logger.error("No finance officers available for assignment", extra=log_extra)
        return None
    officer = ctx.rng.choice(candidates)
    try:
        await assign_officer(db, ctx, group_id, officer)
    except WorkflowError as exc:
        logger.error("Automatic officer assignment failed: %s", exc.message, extra=log_extra)
        return None
    logger.info("Auto-assigned officer %s", officer.officer_id, extra=log_extra)
    return officer
