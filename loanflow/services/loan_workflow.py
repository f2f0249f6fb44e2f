from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from loanflow.core.context import set_group_id
from loanflow.models.loan_group import LoanGroup
from loanflow.schemas.intake import (
    ApplicantSubmission,
    GuarantorSubmission,
    LoanDetails,
    OfficerReviewSubmission,
)
from loanflow.schemas.loan_group import (
    IntakeRole,
    LoanGroupStatus,
    NotificationEvent,
    OfficerContact,
    ParticipantContact,
    RecipientRole,
)
from loanflow.services import notifications, record_store
from loanflow.services.audit import model_snapshot, record_audit_log
from loanflow.services.workflow_context import WorkflowContext
from loanflow.services.workflow_errors import (
    ActiveApplicationExistsError,
    ConflictError,
    InvalidOfficerError,
    InvalidTransitionError,
    LockedError,
    NotFoundError,
    OfficerNotAssignedError,
    ValidationError,
    WorkflowError,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")

ALLOWED_TRANSITIONS: dict[LoanGroupStatus, frozenset[LoanGroupStatus]] = {
    LoanGroupStatus.PENDING_OFFICER: frozenset(
        {LoanGroupStatus.NOTIFIED, LoanGroupStatus.APPLICANT_SUBMITTED}
    ),
    LoanGroupStatus.NOTIFIED: frozenset({LoanGroupStatus.APPLICANT_SUBMITTED}),
    LoanGroupStatus.APPLICANT_SUBMITTED: frozenset(
        {
            LoanGroupStatus.APPLICANT_SUBMITTED,
            LoanGroupStatus.FINANCE_REVIEWED,
            LoanGroupStatus.EXPIRED,
        }
    ),
    LoanGroupStatus.FINANCE_REVIEWED: frozenset(),
    LoanGroupStatus.EXPIRED: frozenset(),
}

# Administrative reset may return any live group to the initial state.
RESET_TARGET = LoanGroupStatus.PENDING_OFFICER

_STATUS_FIELDS = ("status", "locked", "notified", "cycle")


def ensure_transition(
    current: LoanGroupStatus | str,
    target: LoanGroupStatus,
    *,
    group_id: str | None = None,
    administrative: bool = False,
) -> None:
    current_status = LoanGroupStatus(current)
    if administrative and target is RESET_TARGET:
        return
    if target not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransitionError(
            f"Cannot move loan group from {current_status.value} to {target.value}",
            group_id=group_id,
            details={"from": current_status.value, "to": target.value},
        )


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_periods(group: LoanGroup, now: datetime, period_seconds: int) -> int:
    anchor = group.submitted_at or group.created_at
    if anchor is None:
        return 0
    delta = _as_utc(now) - _as_utc(anchor)
    return max(int(delta.total_seconds() // period_seconds), 0)


def _status_snapshot(group: LoanGroup) -> dict:
    return {field: getattr(group, field) for field in _STATUS_FIELDS}


def _audit_snapshot(group: LoanGroup) -> dict:
    return model_snapshot(group, exclude={"account_number", "applicant_link", "finance_link"})


def _require_unlocked(group: LoanGroup) -> None:
    if group.locked:
        raise LockedError("Loan group is locked", group_id=group.id)


def _require_officer(group: LoanGroup) -> None:
    if not group.officer_id:
        raise OfficerNotAssignedError("No finance officer assigned to loan group", group_id=group.id)


async def run_transition(
    db: AsyncSession,
    ctx: WorkflowContext,
    group_id: str,
    mutate: Callable[[LoanGroup], Awaitable[T]],
    *,
    operation: str,
    missing: type[WorkflowError] = NotFoundError,
) -> T:
    """Load the group, apply ``mutate`` and commit with a version check.

    ``mutate`` validates its preconditions against the freshly read row
    before touching it.  A commit that loses to a concurrent writer is
    rolled back and the whole read-validate-apply cycle runs again.
    """
    set_group_id(group_id or "-")
    log_extra = {"group_id": group_id, "operation": operation}
    attempts = ctx.config.cas_retry_attempts
    for attempt in range(1, attempts + 1):
        group = await record_store.get_group(db, group_id, refresh=True)
        if group is None:
            logger.warning("Loan group not found", extra=log_extra)
            raise missing("Loan group not found", group_id=group_id)
        try:
            result = await mutate(group)
        except WorkflowError as exc:
            await db.rollback()
            logger.warning("%s rejected: %s", operation, exc.message, extra=log_extra)
            raise
        try:
            await db.commit()
        except StaleDataError:
            await db.rollback()
            logger.warning(
                "Concurrent update detected; retrying (attempt %s/%s)",
                attempt,
                attempts,
                extra=log_extra,
            )
            continue
        return result
    logger.error("Giving up after %s conflicting attempts", attempts, extra=log_extra)
    raise ConflictError(
        "Loan group was modified concurrently",
        group_id=group_id,
        details={"operation": operation, "attempts": attempts},
    )


def _merge_contact(group: LoanGroup, prefix: str, contact: ParticipantContact) -> None:
    for field in ("cooperator_id", "name", "phone", "email"):
        value = getattr(contact, field)
        if value:
            setattr(group, f"{prefix}_{field}", value)


def _merge_loan_details(group: LoanGroup, loan: LoanDetails) -> None:
    for field, value in loan.model_dump().items():
        if value:
            setattr(group, field, value)


def _refresh_links(ctx: WorkflowContext, group: LoanGroup) -> None:
    group.applicant_link = ctx.deep_links.build(group.id, IntakeRole.APPLICANT.value, group.applicant_email)
    group.finance_link = ctx.deep_links.build(group.id, IntakeRole.FINANCE_OFFICER.value, group.officer_email)


async def assign_officer(
    db: AsyncSession,
    ctx: WorkflowContext,
    group_id: str,
    officer: OfficerContact,
) -> LoanGroup:
    missing_fields = officer.missing_fields()
    if missing_fields:
        raise InvalidOfficerError(
            "Finance officer record is incomplete",
            group_id=group_id,
            details={"missing_fields": missing_fields},
        )
    if not notifications.is_valid_email(officer.email):
        raise InvalidOfficerError(
            "Finance officer email is invalid",
            group_id=group_id,
            details={"email": officer.email},
        )

    async def mutate(group: LoanGroup) -> LoanGroup:
        _require_unlocked(group)
        if group.status != LoanGroupStatus.PENDING_OFFICER.value:
            raise InvalidTransitionError(
                "Finance officer can only be assigned while the group waits for one",
                group_id=group.id,
                details={"status": group.status},
            )
        current = OfficerContact(
            name=group.officer_name,
            officer_id=group.officer_id,
            email=group.officer_email,
            phone=group.officer_phone,
        )
        if current == officer:
            return group
        old_value = current.model_dump()
        group.officer_name = officer.name
        group.officer_id = officer.officer_id
        group.officer_email = officer.email
        group.officer_phone = officer.phone
        group.finance_link = ctx.deep_links.build(group.id, IntakeRole.FINANCE_OFFICER.value, officer.email)
        record_audit_log(
            db,
            ctx,
            action="loan_group.officer_assigned",
            group_id=group.id,
            old_value=old_value,
            new_value=officer.model_dump(),
        )
        return group

    return await run_transition(db, ctx, group_id, mutate, operation="assign_officer")


async def notify_assignment(db: AsyncSession, ctx: WorkflowContext, group_id: str) -> bool:
    async def mutate(group: LoanGroup) -> bool:
        _require_officer(group)
        if group.notified:
            return False
        old_value = _status_snapshot(group)
        group.notified = True
        if group.status == LoanGroupStatus.PENDING_OFFICER.value:
            ensure_transition(group.status, LoanGroupStatus.NOTIFIED, group_id=group.id)
            group.status = LoanGroupStatus.NOTIFIED.value
        _refresh_links(ctx, group)
        record_audit_log(
            db,
            ctx,
            action="loan_group.assignment_notified",
            group_id=group.id,
            old_value=old_value,
            new_value=_status_snapshot(group),
        )
        return True

    changed = await run_transition(db, ctx, group_id, mutate, operation="notify_assignment")
    if not changed:
        logger.info(
            "Assignment already notified; nothing sent",
            extra={"group_id": group_id, "operation": "notify_assignment"},
        )
        return False
    group = await record_store.require_group(db, group_id)
    await notifications.notify_group(db, ctx, group, NotificationEvent.OFFICER_ASSIGNED)
    return True


async def record_applicant_submission(
    db: AsyncSession,
    ctx: WorkflowContext,
    submission: ApplicantSubmission,
) -> LoanGroup:
    group_id = submission.group_id
    if not group_id:
        raise OfficerNotAssignedError("Application is not linked to a loan group")
    cooperator_id = submission.applicant.cooperator_id

    async def mutate(group: LoanGroup) -> LoanGroup:
        _require_officer(group)
        active = await record_store.find_active_group_for_cooperator(
            db, cooperator_id, exclude_group_id=group.id
        )
        if active is not None:
            raise ActiveApplicationExistsError(
                "Cooperator already has an active loan application",
                group_id=group.id,
                details={"cooperator_id": cooperator_id, "active_group_id": active.id},
            )
        _require_unlocked(group)
        ensure_transition(group.status, LoanGroupStatus.APPLICANT_SUBMITTED, group_id=group.id)
        old_value = _audit_snapshot(group)
        _merge_contact(group, "applicant", submission.applicant)
        _merge_contact(group, "guarantor1", submission.guarantor1)
        _merge_contact(group, "guarantor2", submission.guarantor2)
        _merge_loan_details(group, submission.loan)
        if group.status != LoanGroupStatus.APPLICANT_SUBMITTED.value:
            group.status = LoanGroupStatus.APPLICANT_SUBMITTED.value
            group.submitted_at = ctx.now()
        group.notified = True
        _refresh_links(ctx, group)
        record_audit_log(
            db,
            ctx,
            action="loan_group.applicant_submitted",
            group_id=group.id,
            old_value=old_value,
            new_value=_audit_snapshot(group),
        )
        return group

    group = await run_transition(
        db,
        ctx,
        group_id,
        mutate,
        operation="record_applicant_submission",
        missing=OfficerNotAssignedError,
    )
    await notifications.notify_group(db, ctx, group, NotificationEvent.APPLICANT_SUBMITTED)
    return group


def resolve_guarantor_slot(group: LoanGroup, submission: GuarantorSubmission) -> RecipientRole:
    submitter = submission.submitter_email.strip().lower()
    if (group.guarantor1_email or "").strip().lower() == submitter:
        return RecipientRole.GUARANTOR1
    if (group.guarantor2_email or "").strip().lower() == submitter:
        return RecipientRole.GUARANTOR2
    if (submission.guarantor1.email or "").strip().lower() == submitter:
        return RecipientRole.GUARANTOR1
    return RecipientRole.GUARANTOR2


async def record_guarantor_submission(
    db: AsyncSession,
    ctx: WorkflowContext,
    submission: GuarantorSubmission,
) -> tuple[LoanGroup, RecipientRole]:
    async def mutate(group: LoanGroup) -> tuple[LoanGroup, RecipientRole]:
        _require_unlocked(group)
        slot = resolve_guarantor_slot(group, submission)
        contact = submission.guarantor1 if slot is RecipientRole.GUARANTOR1 else submission.guarantor2
        if not contact.cooperator_id:
            raise ValidationError(
                "Guarantor submission is missing the guarantor's cooperator id",
                group_id=group.id,
                details={"slot": slot.value},
            )
        old_value = _audit_snapshot(group)
        _merge_contact(group, slot.value, contact)
        record_audit_log(
            db,
            ctx,
            action="loan_group.guarantor_submitted",
            group_id=group.id,
            old_value=old_value,
            new_value=_audit_snapshot(group),
        )
        return group, slot

    group, slot = await run_transition(
        db, ctx, submission.group_id, mutate, operation="record_guarantor_submission"
    )
    await notifications.notify_group(
        db,
        ctx,
        group,
        NotificationEvent.GUARANTOR_SUBMITTED,
        qualifier=slot.value,
        guarantor_slot=slot,
    )
    return group, slot


async def record_officer_review(
    db: AsyncSession,
    ctx: WorkflowContext,
    submission: OfficerReviewSubmission,
) -> LoanGroup:
    from loanflow.services import archival

    async def mutate(group: LoanGroup) -> LoanGroup:
        _require_unlocked(group)
        ensure_transition(group.status, LoanGroupStatus.FINANCE_REVIEWED, group_id=group.id)
        old_value = _status_snapshot(group)
        approver = submission.approver
        review = submission.review
        group.approver_name = approver.name
        group.approver_id = approver.officer_id
        group.approver_email = approver.email
        group.approver_phone = approver.phone
        for field, value in review.model_dump().items():
            setattr(group, field, value)
        for field in ("bank_name", "account_name", "account_number"):
            value = getattr(submission.loan, field)
            if value:
                setattr(group, field, value)
        group.status = LoanGroupStatus.FINANCE_REVIEWED.value
        group.locked = True
        record_audit_log(
            db,
            ctx,
            action="loan_group.officer_reviewed",
            group_id=group.id,
            old_value=old_value,
            new_value={**_status_snapshot(group), "decision": group.decision},
        )
        return group

    group = await run_transition(db, ctx, submission.group_id, mutate, operation="record_officer_review")
    await notifications.notify_group(db, ctx, group, NotificationEvent.OFFICER_REVIEWED)
    await archival.archive(db, ctx, submission.group_id)
    return group


async def expire(
    db: AsyncSession,
    ctx: WorkflowContext,
    group_id: str,
    now: datetime | None = None,
) -> LoanGroup:
    from loanflow.services import archival

    now = now or ctx.now()
    window = ctx.config.response_window_periods

    async def mutate(group: LoanGroup) -> LoanGroup:
        ensure_transition(group.status, LoanGroupStatus.EXPIRED, group_id=group.id)
        elapsed = elapsed_periods(group, now, ctx.config.period_seconds)
        if elapsed < window:
            raise InvalidTransitionError(
                "Response window has not elapsed",
                group_id=group.id,
                details={"elapsed_periods": elapsed, "window": window},
            )
        old_value = _status_snapshot(group)
        group.status = LoanGroupStatus.EXPIRED.value
        group.locked = True
        record_audit_log(
            db,
            ctx,
            action="loan_group.expired",
            group_id=group.id,
            old_value=old_value,
            new_value={**_status_snapshot(group), "elapsed_periods": elapsed},
        )
        return group

    group = await run_transition(db, ctx, group_id, mutate, operation="expire")
    await notifications.notify_group(db, ctx, group, NotificationEvent.EXPIRED)
    await archival.archive(db, ctx, group_id)
    return group


async def reset(db: AsyncSession, ctx: WorkflowContext, group_id: str) -> LoanGroup:
    from loanflow.services import archival

    return await archival.reset(db, ctx, group_id)
