import pytest
from sqlalchemy import select

from conftest import (
    APPLICANT_EMAIL,
    GUARANTOR1_EMAIL,
    GUARANTOR2_EMAIL,
    OFFICER_EMAIL,
    add_officer,
    enroll_group,
    officer_review_fields,
    submitted_group,
)
from loanflow.models.loan_group import LoanGroup
from loanflow.models.notification_delivery import NotificationDelivery
from loanflow.schemas.intake import officer_review_from_fields
from loanflow.schemas.loan_group import BlockingReason, NotificationEvent, RecipientRole
from loanflow.services import loan_workflow, notifications
from loanflow.services.workflow_errors import NotFoundError


async def _ledger(db, group_id):
    result = await db.execute(
        select(NotificationDelivery).where(NotificationDelivery.group_id == group_id)
    )
    return {(entry.event, entry.recipient_role): entry for entry in result.scalars().all()}


@pytest.mark.parametrize(
    "address,valid",
    [
        ("ada@coop.test", True),
        ("first.last@mail.example.org", True),
        ("ada@coop", False),
        ("ada coop@test.com", False),
        ("", False),
        (None, False),
    ],
)
def test_is_valid_email(address, valid):
    assert notifications.is_valid_email(address) is valid


def test_event_key_round_trip_with_qualifier():
    key = notifications.event_key(NotificationEvent.REMINDER, 3)
    assert key == "reminder:3"
    assert notifications.parse_event_key(key) == (NotificationEvent.REMINDER, "3")
    assert notifications.parse_event_key("expired") == (NotificationEvent.EXPIRED, None)


def test_summary_table_escapes_values_and_blanks_missing_ones():
    html = notifications.render_summary_table({"Name": "<b>Ada</b>", "Phone": None})

    assert "&lt;b&gt;Ada&lt;/b&gt;" in html
    assert "<b>Ada</b>" not in html
    assert html.count("<tr>") == 2


def test_enrollment_plan_targets_applicant_only(deep_links):
    group = LoanGroup(id="LC0001", applicant_name="Ada", applicant_email=APPLICANT_EMAIL, cycle=1)

    plan = notifications.plan_notifications(NotificationEvent.ENROLLMENT, group, deep_links)

    assert [message.recipient_role for message in plan] == [RecipientRole.APPLICANT]
    assert plan[0].subject == "Loan Intent Submitted - LC0001"
    assert "entry.1001=LC0001" in plan[0].body


def test_reminder_plan_quotes_remaining_periods(deep_links):
    group = LoanGroup(
        id="LC0001",
        status="ApplicantSubmitted",
        guarantor1_email=GUARANTOR1_EMAIL,
        guarantor2_email=GUARANTOR2_EMAIL,
        officer_email=OFFICER_EMAIL,
    )

    plan = notifications.plan_notifications(
        NotificationEvent.REMINDER, group, deep_links, remaining_periods=4
    )

    assert [message.recipient_role for message in plan] == [
        RecipientRole.GUARANTOR1,
        RecipientRole.GUARANTOR2,
        RecipientRole.OFFICER,
    ]
    assert all("4 day(s) remaining" in message.body for message in plan)


@pytest.mark.asyncio
async def test_enrollment_sends_single_email(db, ctx, delivery):
    group = await enroll_group(db, ctx)

    assert group.id == "LC0001"
    assert len(delivery.sent) == 1
    assert delivery.sent[0].to == APPLICANT_EMAIL
    assert delivery.sent[0].subject == "Loan Intent Submitted - LC0001"


@pytest.mark.asyncio
async def test_repeated_event_is_not_resent(db, ctx, delivery):
    await add_officer(db)
    group = await enroll_group(db, ctx)
    await loan_workflow.notify_assignment(db, ctx, group.id)
    delivery.clear()

    result = await notifications.notify_group(db, ctx, group, NotificationEvent.OFFICER_ASSIGNED)

    assert result.sent == 0
    assert result.skipped == 4
    assert delivery.sent == []


@pytest.mark.asyncio
async def test_invalid_recipient_is_skipped_and_others_still_sent(db, ctx, delivery):
    await add_officer(db)
    group = await enroll_group(db, ctx, **{"Guarantor 2 Email": "cy-at-coop"})
    delivery.clear()

    await loan_workflow.notify_assignment(db, ctx, group.id)

    assert sorted(message.to for message in delivery.sent) == sorted(
        [APPLICANT_EMAIL, GUARANTOR1_EMAIL, OFFICER_EMAIL]
    )
    ledger = await _ledger(db, group.id)
    assert ledger[("officer_assigned", "guarantor2")].status == notifications.SKIPPED


@pytest.mark.asyncio
async def test_failed_delivery_is_recorded_and_not_raised(db, ctx, delivery):
    await add_officer(db)
    group = await enroll_group(db, ctx)
    delivery.failing.add(OFFICER_EMAIL)

    assert await loan_workflow.notify_assignment(db, ctx, group.id) is True

    ledger = await _ledger(db, group.id)
    entry = ledger[("officer_assigned", "officer")]
    assert entry.status == notifications.FAILED
    assert entry.attempts == 1
    assert entry.last_error == "provider unavailable"
    assert ledger[("officer_assigned", "applicant")].status == notifications.SENT


@pytest.mark.asyncio
async def test_resume_resends_only_failed_recipients(db, ctx, delivery):
    await add_officer(db)
    group = await enroll_group(db, ctx)
    delivery.failing.add(OFFICER_EMAIL)
    await loan_workflow.notify_assignment(db, ctx, group.id)
    delivery.failing.clear()
    delivery.clear()

    result = await notifications.resume_failed_deliveries(db, ctx, group.id)

    assert result.sent == 1
    assert [message.to for message in delivery.sent] == [OFFICER_EMAIL]
    assert delivery.sent[0].subject == f"New Loan Group Assigned - {group.id}"
    ledger = await _ledger(db, group.id)
    assert ledger[("officer_assigned", "officer")].attempts == 2
    assert ledger[("officer_assigned", "officer")].status == notifications.SENT


@pytest.mark.asyncio
async def test_resume_works_for_archived_group(db, ctx, delivery):
    group = await submitted_group(db, ctx)
    delivery.failing.add(GUARANTOR2_EMAIL)
    await loan_workflow.record_officer_review(
        db, ctx, officer_review_from_fields(officer_review_fields(group.id))
    )
    delivery.failing.clear()
    delivery.clear()

    result = await notifications.resume_failed_deliveries(db, ctx, group.id)

    assert result.sent == 1
    assert delivery.sent[0].to == GUARANTOR2_EMAIL
    assert delivery.sent[0].subject == f"Application Reviewed - {group.id}"


@pytest.mark.asyncio
async def test_resume_unknown_group(db, ctx):
    with pytest.raises(NotFoundError):
        await notifications.resume_failed_deliveries(db, ctx, "LC0404")


@pytest.mark.asyncio
async def test_dispatch_limit_defers_without_ledger_rows(db, ctx, delivery):
    await add_officer(db)
    group = await enroll_group(db, ctx)
    plan = notifications.plan_notifications(NotificationEvent.OFFICER_ASSIGNED, group, ctx.deep_links)
    delivery.clear()

    result = await notifications.dispatch(
        db, ctx, group_id=group.id, cycle=group.cycle, event="officer_assigned", messages=plan, limit=2
    )

    assert (result.sent, result.deferred) == (2, 2)
    ledger = await _ledger(db, group.id)
    assert len([key for key in ledger if key[0] == "officer_assigned"]) == 2


@pytest.mark.asyncio
async def test_blocking_notice_is_sent_directly(ctx, delivery):
    sent = await notifications.send_blocking_notice(
        ctx,
        address=APPLICANT_EMAIL,
        name="Ada",
        reason=BlockingReason.OFFICER_NOT_ASSIGNED,
        group_id="LC0007",
    )

    assert sent is True
    assert delivery.sent[0].subject == "Submission Blocked - LC0007"


@pytest.mark.asyncio
async def test_blocking_notice_to_invalid_address(ctx, delivery):
    sent = await notifications.send_blocking_notice(
        ctx, address="nobody", name=None, reason=BlockingReason.LOCKED, group_id="LC0007"
    )

    assert sent is False
    assert delivery.sent == []
