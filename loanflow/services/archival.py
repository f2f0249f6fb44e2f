from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from loanflow.core.context import set_group_id
from loanflow.models.archived_loan_group import ArchivedLoanGroup
from loanflow.models.loan_group import LoanGroup
from loanflow.schemas.loan_group import TERMINAL_STATUSES, LoanGroupStatus, NotificationEvent
from loanflow.services import notifications, record_store
from loanflow.services.audit import record_audit_log
from loanflow.services.loan_workflow import ensure_transition, notify_assignment, run_transition
from loanflow.services.workflow_context import WorkflowContext
from loanflow.services.workflow_errors import ConflictError, InvalidTransitionError, NotFoundError


logger = logging.getLogger(__name__)


def archived_payload(archived: ArchivedLoanGroup) -> dict[str, Any]:
    return json.loads(archived.payload)


async def archive(db: AsyncSession, ctx: WorkflowContext, group_id: str) -> bool:
    """Move a terminal group to cold storage.

    Returns False when the group is no longer live because an earlier call
    already archived it.
    """
    set_group_id(group_id)
    log_extra = {"group_id": group_id, "operation": "archive"}
    attempts = ctx.config.cas_retry_attempts
    for attempt in range(1, attempts + 1):
        group = await record_store.get_group(db, group_id, refresh=True)
        if group is None:
            if await record_store.get_archived_group(db, group_id) is not None:
                logger.info("Loan group already archived", extra=log_extra)
                return False
            raise NotFoundError("Loan group not found", group_id=group_id)
        if LoanGroupStatus(group.status) not in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                "Only reviewed or expired loan groups can be archived",
                group_id=group_id,
                details={"status": group.status},
            )
        snapshot = record_store.group_snapshot(group)
        await record_store.move_to_archive(db, group, snapshot)
        record_audit_log(
            db,
            ctx,
            action="loan_group.archived",
            group_id=group_id,
            new_value={"status": group.status, "version": group.version},
        )
        try:
            await db.commit()
        except StaleDataError:
            await db.rollback()
            logger.warning(
                "Concurrent update while archiving; retrying (attempt %s/%s)",
                attempt,
                attempts,
                extra=log_extra,
            )
            continue
        logger.info("Archived loan group with status %s", snapshot["status"], extra=log_extra)
        return True
    raise ConflictError(
        "Loan group was modified concurrently",
        group_id=group_id,
        details={"operation": "archive", "attempts": attempts},
    )


async def reset(db: AsyncSession, ctx: WorkflowContext, group_id: str) -> LoanGroup:
    """Administrative override: return a live group to PendingOfficer.

    Locked groups are reset too.  The cycle counter moves on so every
    notification of the new round is sent afresh.
    """

    async def mutate(group: LoanGroup) -> LoanGroup:
        ensure_transition(group.status, LoanGroupStatus.PENDING_OFFICER, group_id=group.id, administrative=True)
        old_value = {
            "status": group.status,
            "locked": group.locked,
            "notified": group.notified,
            "cycle": group.cycle,
        }
        group.status = LoanGroupStatus.PENDING_OFFICER.value
        group.locked = False
        group.notified = False
        group.submitted_at = None
        group.cycle = (group.cycle or 1) + 1
        record_audit_log(
            db,
            ctx,
            action="loan_group.reset",
            group_id=group.id,
            old_value=old_value,
            new_value={
                "status": group.status,
                "locked": group.locked,
                "notified": group.notified,
                "cycle": group.cycle,
            },
        )
        return group

    group = await run_transition(db, ctx, group_id, mutate, operation="reset")
    has_officer = bool(group.officer_id)
    await notifications.notify_group(db, ctx, group, NotificationEvent.RESET)
    if has_officer:
        await notify_assignment(db, ctx, group_id)
    return group
