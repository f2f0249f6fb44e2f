"""Row-level access to the live, cold and officer-pool collections.

Nothing here commits; callers own the transaction boundary.
"""

from __future__ import annotations

from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.models.archived_loan_group import ArchivedLoanGroup
from loanflow.models.finance_officer import FinanceOfficer
from loanflow.models.loan_group import LoanGroup
from loanflow.models.participant_intent import ParticipantIntent
from loanflow.schemas.loan_group import (
    TERMINAL_STATUSES,
    FinanceOfficerCreate,
    IntakeRole,
    LoanGroupStatus,
    ParticipantContact,
)
from loanflow.services.audit import canonical_json, model_snapshot
from loanflow.services.workflow_errors import NotFoundError, ValidationError


async def get_group(db: AsyncSession, group_id: str | None, *, refresh: bool = False) -> LoanGroup | None:
    if not group_id:
        return None
    return await db.get(LoanGroup, group_id, populate_existing=refresh)


async def require_group(db: AsyncSession, group_id: str | None, *, refresh: bool = False) -> LoanGroup:
    group = await get_group(db, group_id, refresh=refresh)
    if group is None:
        raise NotFoundError("Loan group not found", group_id=group_id)
    return group


async def list_groups(
    db: AsyncSession,
    *,
    status: LoanGroupStatus | None = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[LoanGroup], int]:
    conditions = []
    if status is not None:
        conditions.append(LoanGroup.status == status.value)
    count_stmt = select(func.count()).select_from(LoanGroup).where(*conditions)
    total = (await db.execute(count_stmt)).scalar_one()
    stmt = select(LoanGroup).where(*conditions).order_by(LoanGroup.id).limit(limit).offset(offset)
    result = await db.execute(stmt)
    return list(result.scalars().all()), int(total)


async def list_open_groups_for_sweep(db: AsyncSession) -> list[LoanGroup]:
    stmt = (
        select(LoanGroup)
        .where(
            LoanGroup.status == LoanGroupStatus.APPLICANT_SUBMITTED.value,
            LoanGroup.officer_id.is_not(None),
        )
        .order_by(LoanGroup.id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def list_pending_assignment_notifications(db: AsyncSession) -> list[LoanGroup]:
    stmt = (
        select(LoanGroup)
        .where(
            LoanGroup.status == LoanGroupStatus.PENDING_OFFICER.value,
            LoanGroup.notified.is_(False),
            LoanGroup.officer_id.is_not(None),
            LoanGroup.officer_email.is_not(None),
        )
        .order_by(LoanGroup.id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def find_active_group_for_cooperator(
    db: AsyncSession,
    cooperator_id: str,
    *,
    exclude_group_id: str | None = None,
) -> LoanGroup | None:
    conditions = [
        LoanGroup.applicant_cooperator_id == cooperator_id,
        LoanGroup.status.not_in([status.value for status in TERMINAL_STATUSES]),
    ]
    if exclude_group_id:
        conditions.append(LoanGroup.id != exclude_group_id)
    result = await db.execute(select(LoanGroup).where(*conditions).order_by(LoanGroup.id).limit(1))
    return result.scalars().first()


def add_group(db: AsyncSession, group: LoanGroup) -> LoanGroup:
    db.add(group)
    return group


def add_participants(
    db: AsyncSession,
    group_id: str,
    participants: Iterable[tuple[IntakeRole, ParticipantContact]],
) -> list[ParticipantIntent]:
    rows: list[ParticipantIntent] = []
    seen: set[str] = set()
    for role, contact in participants:
        if not contact.cooperator_id:
            raise ValidationError("Participant is missing a cooperator id", group_id=group_id)
        if contact.cooperator_id in seen:
            raise ValidationError(
                "Duplicate participant for group",
                group_id=group_id,
                details={"cooperator_id": contact.cooperator_id},
            )
        seen.add(contact.cooperator_id)
        rows.append(
            ParticipantIntent(
                group_id=group_id,
                cooperator_id=contact.cooperator_id,
                name=contact.name,
                phone=contact.phone,
                email=contact.email,
                role=role.value,
            )
        )
    db.add_all(rows)
    return rows


async def list_participants(db: AsyncSession, group_id: str) -> list[ParticipantIntent]:
    stmt = (
        select(ParticipantIntent)
        .where(ParticipantIntent.group_id == group_id)
        .order_by(ParticipantIntent.created_at, ParticipantIntent.role.desc(), ParticipantIntent.cooperator_id)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def get_archived_group(db: AsyncSession, group_id: str) -> ArchivedLoanGroup | None:
    result = await db.execute(select(ArchivedLoanGroup).where(ArchivedLoanGroup.group_id == group_id))
    return result.scalars().first()


def group_snapshot(group: LoanGroup) -> dict[str, Any]:
    return model_snapshot(group)


async def move_to_archive(db: AsyncSession, group: LoanGroup, snapshot: dict[str, Any]) -> ArchivedLoanGroup:
    archived = ArchivedLoanGroup(
        group_id=group.id,
        status=group.status,
        applicant_cooperator_id=group.applicant_cooperator_id,
        payload=canonical_json(snapshot),
    )
    db.add(archived)
    await db.delete(group)
    return archived


async def list_active_officers(db: AsyncSession) -> list[FinanceOfficer]:
    stmt = select(FinanceOfficer).where(FinanceOfficer.is_active.is_(True)).order_by(FinanceOfficer.officer_id)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def add_officer(db: AsyncSession, payload: FinanceOfficerCreate) -> FinanceOfficer:
    existing = await db.execute(select(FinanceOfficer).where(FinanceOfficer.officer_id == payload.officer_id))
    if existing.scalars().first() is not None:
        raise ValidationError(
            "Finance officer already exists",
            details={"officer_id": payload.officer_id},
        )
    officer = FinanceOfficer(
        name=payload.name.strip(),
        officer_id=payload.officer_id.strip(),
        email=payload.email.strip(),
        phone=payload.phone.strip(),
    )
    db.add(officer)
    return officer
