from dataclasses import replace

import pytest
from sqlalchemy import select, text

from conftest import (
    APPLICANT_EMAIL,
    GUARANTOR1_EMAIL,
    OFFICER_EMAIL,
    ClaimingDelivery,
    add_officer,
    enroll_group,
    submitted_group,
)
from loanflow.models.archived_loan_group import ArchivedLoanGroup
from loanflow.models.loan_group import LoanGroup
from loanflow.schemas.loan_group import LoanGroupStatus, NotificationEvent, RecipientRole
from loanflow.services import archival, loan_workflow, record_store
from loanflow.services.notifications import event_key
from loanflow.services.workflow_errors import InvalidTransitionError, NotFoundError


async def _terminal_group(db, clock, *, group_id="LC0001", status=LoanGroupStatus.EXPIRED):
    db.add(
        LoanGroup(
            id=group_id,
            status=status.value,
            locked=True,
            notified=True,
            applicant_cooperator_id="C100",
            applicant_email=APPLICANT_EMAIL,
            account_number="0123456789",
            created_at=clock(),
        )
    )
    await db.commit()
    return await record_store.require_group(db, group_id, refresh=True)


@pytest.mark.asyncio
async def test_archive_moves_row_and_payload_matches_snapshot(db, ctx, clock):
    group = await _terminal_group(db, clock)
    snapshot = record_store.group_snapshot(group)

    assert await archival.archive(db, ctx, group.id) is True

    with pytest.raises(NotFoundError):
        await record_store.require_group(db, group.id)
    archived = await record_store.get_archived_group(db, group.id)
    assert archival.archived_payload(archived) == snapshot
    assert archived.applicant_cooperator_id == "C100"


@pytest.mark.asyncio
async def test_archive_payload_is_stored_encrypted(db, ctx, clock):
    group = await _terminal_group(db, clock)
    await archival.archive(db, ctx, group.id)

    raw = (await db.execute(text("SELECT payload FROM archived_loan_groups"))).scalar_one()

    assert b"0123456789" not in raw


@pytest.mark.asyncio
async def test_archive_twice_is_a_no_op(db, ctx, clock):
    group = await _terminal_group(db, clock)
    await archival.archive(db, ctx, group.id)

    assert await archival.archive(db, ctx, group.id) is False
    rows = (await db.execute(select(ArchivedLoanGroup))).scalars().all()
    assert len(rows) == 1


@pytest.mark.asyncio
async def test_archive_rejects_live_group(db, ctx):
    group = await enroll_group(db, ctx)

    with pytest.raises(InvalidTransitionError):
        await archival.archive(db, ctx, group.id)
    assert await record_store.get_archived_group(db, group.id) is None


@pytest.mark.asyncio
async def test_archive_unknown_group(db, ctx):
    with pytest.raises(NotFoundError):
        await archival.archive(db, ctx, "LC0404")


@pytest.mark.asyncio
async def test_reset_returns_group_to_pending_officer_and_renotifies(db, ctx, delivery):
    group = await submitted_group(db, ctx)
    delivery.clear()

    reset = await loan_workflow.reset(db, ctx, group.id)

    assert reset.cycle == 2
    assert reset.submitted_at is None
    refreshed = await record_store.require_group(db, group.id, refresh=True)
    # The bound officer is announced again, which moves the group on to Notified.
    assert refreshed.status == LoanGroupStatus.NOTIFIED.value
    assert refreshed.locked is False
    subjects = delivery.subjects()
    assert subjects.count(f"Application Reset - {group.id}") == 4
    assert subjects.count(f"Finance Officer Assigned - {group.id}") == 3
    assert f"New Loan Group Assigned - {group.id}" in subjects


@pytest.mark.asyncio
async def test_reset_unlocks_locked_group_without_officer(db, ctx, delivery, clock):
    group = await _terminal_group(db, clock, status=LoanGroupStatus.FINANCE_REVIEWED)

    reset = await archival.reset(db, ctx, group.id)

    assert reset.status == LoanGroupStatus.PENDING_OFFICER.value
    assert reset.locked is False
    assert reset.notified is False
    assert [message.to for message in delivery.sent] == [APPLICANT_EMAIL]


@pytest.mark.asyncio
async def test_reset_of_archived_group_is_not_found(db, ctx, clock):
    group = await _terminal_group(db, clock)
    await archival.archive(db, ctx, group.id)

    with pytest.raises(NotFoundError):
        await archival.reset(db, ctx, group.id)


@pytest.mark.asyncio
async def test_reset_reannounces_officer_assignment(db, ctx, delivery):
    await add_officer(db)
    group = await enroll_group(db, ctx)
    await loan_workflow.notify_assignment(db, ctx, group.id)
    await loan_workflow.reset(db, ctx, group.id)

    officer_emails = [message for message in delivery.to(OFFICER_EMAIL) if "Assigned" in message.subject]

    assert len(officer_emails) == 2


@pytest.mark.asyncio
async def test_reset_reannounces_officer_when_a_recipient_is_claimed_elsewhere(db, ctx, session_factory):
    group = await submitted_group(db, ctx)
    group_id = group.id
    racing = ClaimingDelivery(
        session_factory,
        group_id=group_id,
        cycle=2,
        event=event_key(NotificationEvent.RESET),
        recipient_role=RecipientRole.GUARANTOR1.value,
    )

    await loan_workflow.reset(db, replace(ctx, delivery=racing), group_id)

    assert [message.subject for message in racing.to(GUARANTOR1_EMAIL)] == [
        f"Finance Officer Assigned - {group_id}"
    ]
    assert racing.subjects().count(f"Application Reset - {group_id}") == 3
    assert f"New Loan Group Assigned - {group_id}" in racing.subjects()
    refreshed = await record_store.require_group(db, group_id, refresh=True)
    assert refreshed.status == LoanGroupStatus.NOTIFIED.value
    assert refreshed.cycle == 2
