from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.core.context import set_group_id
from loanflow.models.loan_group import LoanGroup
from loanflow.schemas.intake import (
    EnrollmentSubmission,
    applicant_from_fields,
    guarantor_from_fields,
    officer_review_from_fields,
    role_from_fields,
)
from loanflow.schemas.loan_group import (
    BlockingReason,
    IntakeRole,
    LoanGroupStatus,
    NotificationEvent,
    RecipientRole,
)
from loanflow.services import loan_workflow, notifications, officer_assignment, record_store
from loanflow.services.audit import record_audit_log
from loanflow.services.group_ids import allocate_group_id
from loanflow.services.workflow_context import WorkflowContext
from loanflow.services.workflow_errors import (
    ActiveApplicationExistsError,
    ConflictError,
    LockedError,
    OfficerNotAssignedError,
)


logger = logging.getLogger(__name__)

_BLOCKING_ERRORS = {
    OfficerNotAssignedError: BlockingReason.OFFICER_NOT_ASSIGNED,
    ActiveApplicationExistsError: BlockingReason.ACTIVE_APPLICATION,
    LockedError: BlockingReason.LOCKED,
}


@dataclass
class IntakeOutcome:
    role: IntakeRole
    group: LoanGroup
    guarantor_slot: RecipientRole | None = None


async def enroll(db: AsyncSession, ctx: WorkflowContext, submission: EnrollmentSubmission) -> LoanGroup:
    group_id = await allocate_group_id(db, ctx)
    set_group_id(group_id)
    log_extra = {"group_id": group_id, "operation": "enroll"}

    applicant = submission.applicant
    group = LoanGroup(
        id=group_id,
        status=LoanGroupStatus.PENDING_OFFICER.value,
        locked=False,
        notified=False,
        cycle=1,
        created_at=ctx.now(),
    )
    for prefix, contact in (
        ("applicant", applicant),
        ("guarantor1", submission.guarantor1),
        ("guarantor2", submission.guarantor2),
    ):
        for field in ("cooperator_id", "name", "phone", "email"):
            setattr(group, f"{prefix}_{field}", getattr(contact, field))
    group.applicant_link = ctx.deep_links.build(group_id, IntakeRole.APPLICANT.value, applicant.email)

    record_store.add_group(db, group)
    record_store.add_participants(
        db,
        group_id,
        [
            (IntakeRole.APPLICANT, applicant),
            (IntakeRole.GUARANTOR, submission.guarantor1),
            (IntakeRole.GUARANTOR, submission.guarantor2),
        ],
    )
    record_audit_log(
        db,
        ctx,
        action="loan_group.enrolled",
        group_id=group_id,
        new_value={
            "status": group.status,
            "applicant_cooperator_id": applicant.cooperator_id,
            "guarantor_cooperator_ids": [
                submission.guarantor1.cooperator_id,
                submission.guarantor2.cooperator_id,
            ],
        },
    )
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        logger.error("Enrollment could not be stored: %s", exc.orig, extra=log_extra)
        raise ConflictError("Loan group could not be created", group_id=group_id) from exc
    logger.info("Enrollment stored", extra=log_extra)

    await officer_assignment.auto_assign(db, ctx, group_id)
    group = await record_store.require_group(db, group_id, refresh=True)
    await notifications.notify_group(db, ctx, group, NotificationEvent.ENROLLMENT)
    return group


async def _notify_blocked(
    ctx: WorkflowContext,
    exc: Exception,
    *,
    address: str | None,
    name: str | None,
    group_id: str | None,
) -> None:
    for error_type, reason in _BLOCKING_ERRORS.items():
        if isinstance(exc, error_type):
            await notifications.send_blocking_notice(
                ctx,
                address=address,
                name=name,
                reason=reason,
                group_id=group_id,
            )
            return


async def submit_application(
    db: AsyncSession,
    ctx: WorkflowContext,
    fields: Mapping[str, Any],
) -> IntakeOutcome:
    role = role_from_fields(fields)

    if role is IntakeRole.APPLICANT:
        submission = applicant_from_fields(fields)
        try:
            group = await loan_workflow.record_applicant_submission(db, ctx, submission)
        except tuple(_BLOCKING_ERRORS) as exc:
            await _notify_blocked(
                ctx,
                exc,
                address=submission.applicant.email,
                name=submission.applicant.name,
                group_id=submission.group_id,
            )
            raise
        return IntakeOutcome(role=role, group=group)

    if role is IntakeRole.GUARANTOR:
        submission = guarantor_from_fields(fields)
        try:
            group, slot = await loan_workflow.record_guarantor_submission(db, ctx, submission)
        except LockedError as exc:
            name = submission.guarantor1.name or submission.guarantor2.name
            await _notify_blocked(
                ctx,
                exc,
                address=submission.submitter_email,
                name=name,
                group_id=submission.group_id,
            )
            raise
        return IntakeOutcome(role=role, group=group, guarantor_slot=slot)

    submission = officer_review_from_fields(fields)
    try:
        group = await loan_workflow.record_officer_review(db, ctx, submission)
    except LockedError as exc:
        await _notify_blocked(
            ctx,
            exc,
            address=submission.approver.email,
            name=submission.approver.name,
            group_id=submission.group_id,
        )
        raise
    return IntakeOutcome(role=role, group=group)
