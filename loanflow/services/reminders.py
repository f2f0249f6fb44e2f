from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.schemas.loan_group import LoanGroupStatus, NotificationEvent
from loanflow.services import loan_workflow, notifications, record_store
from loanflow.services.workflow_context import WorkflowContext
from loanflow.services.workflow_errors import WorkflowError


logger = logging.getLogger(__name__)


@dataclass
class SweepResult:
    scanned: int = 0
    emails_sent: int = 0
    emails_attempted: int = 0
    expired: list[str] = field(default_factory=list)
    reminded: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return asdict(self)


async def run_sweep(db: AsyncSession, ctx: WorkflowContext, now: datetime | None = None) -> SweepResult:
    """Expire overdue groups and remind the outstanding parties of the rest.

    Reminder emails per sweep are capped by ``reminder_batch_limit``; groups
    that do not fit are reported as deferred and picked up by the next sweep.
    Expiry notices are not counted against the cap.
    """
    now = now or ctx.now()
    window = ctx.config.response_window_periods
    budget = ctx.config.reminder_batch_limit
    result = SweepResult()

    group_ids = [group.id for group in await record_store.list_open_groups_for_sweep(db)]
    for group_id in group_ids:
        result.scanned += 1
        log_extra = {"group_id": group_id, "operation": "sweep"}
        try:
            group = await record_store.get_group(db, group_id, refresh=True)
            if group is None or group.status != LoanGroupStatus.APPLICANT_SUBMITTED.value or not group.officer_id:
                continue
            elapsed = loan_workflow.elapsed_periods(group, now, ctx.config.period_seconds)
            if elapsed >= window:
                await loan_workflow.expire(db, ctx, group_id, now)
                result.expired.append(group_id)
                continue

            remaining_budget = budget - result.emails_attempted
            if remaining_budget <= 0:
                result.deferred.append(group_id)
                continue
            dispatched = await notifications.notify_group(
                db,
                ctx,
                group,
                NotificationEvent.REMINDER,
                qualifier=elapsed,
                remaining_periods=window - elapsed,
                limit=remaining_budget,
            )
            result.emails_sent += dispatched.sent
            result.emails_attempted += dispatched.attempted
            if dispatched.deferred:
                result.deferred.append(group_id)
            elif dispatched.attempted:
                result.reminded.append(group_id)
        except (WorkflowError, SQLAlchemyError) as exc:
            await db.rollback()
            result.failed.append(group_id)
            logger.exception("Sweep failed for loan group: %s", exc, extra=log_extra)

    logger.info(
        "Sweep finished: scanned=%s expired=%s reminded=%s deferred=%s failed=%s emails=%s",
        result.scanned,
        len(result.expired),
        len(result.reminded),
        len(result.deferred),
        len(result.failed),
        result.emails_sent,
        extra={"operation": "sweep"},
    )
    return result
