import pytest
from dataclasses import replace

from conftest import (
    APPLICANT_EMAIL,
    GUARANTOR1_EMAIL,
    OFFICER_EMAIL,
    add_officer,
    applicant_fields,
    enroll_group,
    submitted_group,
)
from loanflow.schemas.intake import applicant_from_fields
from loanflow.schemas.loan_group import LoanGroupStatus
from loanflow.services import loan_workflow, record_store
from loanflow.services.archival import archived_payload
from loanflow.services.reminders import run_sweep


@pytest.mark.asyncio
async def test_sweep_reminds_outstanding_parties(db, ctx, delivery, clock):
    group = await submitted_group(db, ctx)
    delivery.clear()
    clock.advance(days=2, hours=1)

    result = await run_sweep(db, ctx)

    assert result.reminded == [group.id]
    assert result.emails_sent == 3
    assert sorted(message.to for message in delivery.sent) == sorted(
        [GUARANTOR1_EMAIL, "cy@coop.test", OFFICER_EMAIL]
    )
    assert all("5 day(s) remaining" in message.html_body for message in delivery.sent)


@pytest.mark.asyncio
async def test_sweep_sends_one_reminder_per_period(db, ctx, delivery, clock):
    await submitted_group(db, ctx)
    delivery.clear()
    clock.advance(days=1)

    await run_sweep(db, ctx)
    clock.advance(hours=6)
    second = await run_sweep(db, ctx)
    clock.advance(days=1)
    third = await run_sweep(db, ctx)

    assert second.emails_sent == 0
    assert second.reminded == []
    assert third.emails_sent == 3
    assert len(delivery.sent) == 6


@pytest.mark.asyncio
async def test_sweep_expires_and_archives_overdue_group(db, ctx, delivery, clock):
    group = await submitted_group(db, ctx)
    delivery.clear()
    clock.advance(days=8)

    result = await run_sweep(db, ctx)

    assert result.expired == [group.id]
    assert len(delivery.sent) == 1
    assert delivery.sent[0].to == APPLICANT_EMAIL
    assert delivery.sent[0].subject == f"Application Expired - {group.id}"
    assert await record_store.get_group(db, group.id) is None
    archived = await record_store.get_archived_group(db, group.id)
    payload = archived_payload(archived)
    assert payload["status"] == LoanGroupStatus.EXPIRED.value
    assert payload["locked"] is True


@pytest.mark.asyncio
async def test_sweep_expires_group_at_exactly_the_window(db, ctx, delivery, clock):
    group = await submitted_group(db, ctx)
    group_id = group.id
    delivery.clear()
    clock.advance(days=7)

    result = await run_sweep(db, ctx)

    assert result.expired == [group_id]
    assert result.reminded == []
    assert delivery.subjects() == [f"Application Expired - {group_id}"]
    assert await record_store.get_group(db, group_id) is None


@pytest.mark.asyncio
async def test_sweep_reminds_one_second_before_the_window(db, ctx, delivery, clock):
    group = await submitted_group(db, ctx)
    group_id = group.id
    delivery.clear()
    clock.advance(days=7, seconds=-1)

    result = await run_sweep(db, ctx)

    assert result.expired == []
    assert result.reminded == [group_id]
    assert result.emails_sent == 3
    assert all("1 day(s) remaining" in message.html_body for message in delivery.sent)
    refreshed = await record_store.require_group(db, group_id, refresh=True)
    assert refreshed.status == LoanGroupStatus.APPLICANT_SUBMITTED.value


@pytest.mark.asyncio
async def test_sweep_ignores_groups_not_yet_submitted(db, ctx, delivery, clock):
    await add_officer(db)
    group = await enroll_group(db, ctx)
    await loan_workflow.notify_assignment(db, ctx, group.id)
    delivery.clear()
    clock.advance(days=30)

    result = await run_sweep(db, ctx)

    assert result.scanned == 0
    assert delivery.sent == []
    assert (await record_store.require_group(db, group.id)).status == LoanGroupStatus.NOTIFIED.value


@pytest.mark.asyncio
async def test_sweep_caps_reminders_and_defers_the_rest(db, ctx, delivery, clock):
    await add_officer(db)
    group_ids = []
    for index in range(2):
        group = await enroll_group(
            db,
            ctx,
            applicant_id=f"C10{index}",
            guarantor1_id=f"C20{index}",
            guarantor2_id=f"C30{index}",
        )
        await loan_workflow.notify_assignment(db, ctx, group.id)
        await loan_workflow.record_applicant_submission(
            db, ctx, applicant_from_fields(applicant_fields(group.id, cooperator_id=f"C10{index}"))
        )
        group_ids.append(group.id)
    delivery.clear()
    clock.advance(days=1)
    capped = replace(ctx, config=replace(ctx.config, reminder_batch_limit=4))

    first = await run_sweep(db, capped)

    assert first.emails_attempted == 4
    assert first.reminded == [group_ids[0]]
    assert first.deferred == [group_ids[1]]

    second = await run_sweep(db, capped)

    assert second.emails_attempted == 2
    assert second.reminded == [group_ids[1]]
    assert len(delivery.sent) == 6
