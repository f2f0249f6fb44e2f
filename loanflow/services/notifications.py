from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from html import escape
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.models.loan_group import LoanGroup
from loanflow.models.notification_delivery import NotificationDelivery
from loanflow.schemas.loan_group import (
    BlockingReason,
    IntakeRole,
    NotificationEvent,
    RecipientRole,
)
from loanflow.services import record_store
from loanflow.services.deep_links import DeepLinkGenerator
from loanflow.services.delivery import OutboundEmail
from loanflow.services.workflow_context import WorkflowContext
from loanflow.services.workflow_errors import DeliveryError, NotFoundError


logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

SENT = "SENT"
FAILED = "FAILED"
SKIPPED = "SKIPPED"
IN_FLIGHT = "in flight"


@dataclass(frozen=True)
class PlannedMessage:
    recipient_role: RecipientRole
    address: str | None
    name: str | None
    subject: str
    body: str


@dataclass
class DispatchResult:
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    deferred: int = 0

    @property
    def attempted(self) -> int:
        return self.sent + self.failed

    def merge(self, other: "DispatchResult") -> "DispatchResult":
        self.sent += other.sent
        self.failed += other.failed
        self.skipped += other.skipped
        self.deferred += other.deferred
        return self


def is_valid_email(address: str | None) -> bool:
    return bool(address) and EMAIL_PATTERN.match(address) is not None


def event_key(event: NotificationEvent, qualifier: Any | None = None) -> str:
    if qualifier is None:
        return event.value
    return f"{event.value}:{qualifier}"


def parse_event_key(key: str) -> tuple[NotificationEvent, str | None]:
    name, _, qualifier = key.partition(":")
    return NotificationEvent(name), qualifier or None


_CELL_STYLE = "border:1px solid #ddd;padding:8px;font-family:Arial,sans-serif;"
_TABLE_STYLE = "border-collapse:collapse;border:2px solid #ddd;font-family:Arial,sans-serif;"


def render_summary_table(fields: Mapping[str, Any]) -> str:
    rows = "".join(
        f'<tr><td style="{_CELL_STYLE}"><strong>{escape(str(key))}</strong></td>'
        f'<td style="{_CELL_STYLE}">{escape(str(value)) if value not in (None, "") else ""}</td></tr>'
        for key, value in fields.items()
    )
    return f'<table style="{_TABLE_STYLE}">{rows}</table>'


def _contact(group: LoanGroup, role: RecipientRole) -> tuple[str | None, str | None]:
    if role is RecipientRole.OFFICER:
        return group.officer_email, group.officer_name
    prefix = role.value
    return getattr(group, f"{prefix}_email"), getattr(group, f"{prefix}_name")


def _greeting(name: str | None) -> str:
    return f"<p>Dear {escape(name or 'Member')},</p>"


def _link(url: str, label: str) -> str:
    if not url:
        return ""
    return f'<p><a href="{escape(url, quote=True)}">{label}</a></p>'


def intent_summary(group: LoanGroup) -> dict[str, Any]:
    return {
        "GroupID": group.id,
        "Applicant Name": group.applicant_name,
        "Applicant Cooperator ID": group.applicant_cooperator_id,
        "Applicant Email": group.applicant_email,
        "Applicant Phone": group.applicant_phone,
        "Guarantor 1 Name": group.guarantor1_name,
        "Guarantor 1 Cooperator ID": group.guarantor1_cooperator_id,
        "Guarantor 1 Email": group.guarantor1_email,
        "Guarantor 1 Phone": group.guarantor1_phone,
        "Guarantor 2 Name": group.guarantor2_name,
        "Guarantor 2 Cooperator ID": group.guarantor2_cooperator_id,
        "Guarantor 2 Email": group.guarantor2_email,
        "Guarantor 2 Phone": group.guarantor2_phone,
    }


def application_summary(group: LoanGroup) -> dict[str, Any]:
    return {
        "Loan ID": group.id,
        "Applicant Name": group.applicant_name,
        "Applicant Cooperator ID": group.applicant_cooperator_id,
        "Applicant Email": group.applicant_email,
        "Applicant Phone": group.applicant_phone,
        "Home Address": group.home_address,
        "Loan Amount (Figures)": group.loan_amount_figures,
        "Loan Amount (Words)": group.loan_amount_words,
        "Repayment Period": group.repayment_period,
        "Bank Name": group.bank_name,
        "Account Name": group.account_name,
        "Account Number": group.account_number,
        "Guarantor 1 Name": group.guarantor1_name,
        "Guarantor 1 Cooperator ID": group.guarantor1_cooperator_id,
        "Guarantor 1 Email": group.guarantor1_email,
        "Guarantor 1 Phone": group.guarantor1_phone,
        "Guarantor 2 Name": group.guarantor2_name,
        "Guarantor 2 Cooperator ID": group.guarantor2_cooperator_id,
        "Guarantor 2 Email": group.guarantor2_email,
        "Guarantor 2 Phone": group.guarantor2_phone,
        "Status": group.decision or "Pending",
    }


def _message(group: LoanGroup, role: RecipientRole, subject: str, body: str) -> PlannedMessage:
    address, name = _contact(group, role)
    return PlannedMessage(
        recipient_role=role,
        address=address,
        name=name,
        subject=subject,
        body=f"{_greeting(name)}{body}",
    )


def _links(group: LoanGroup, deep_links: DeepLinkGenerator) -> dict[RecipientRole, str]:
    return {
        RecipientRole.APPLICANT: group.applicant_link
        or deep_links.build(group.id, IntakeRole.APPLICANT.value, group.applicant_email),
        RecipientRole.GUARANTOR1: deep_links.build(group.id, IntakeRole.GUARANTOR.value, group.guarantor1_email),
        RecipientRole.GUARANTOR2: deep_links.build(group.id, IntakeRole.GUARANTOR.value, group.guarantor2_email),
        RecipientRole.OFFICER: group.finance_link
        or deep_links.build(group.id, IntakeRole.FINANCE_OFFICER.value, group.officer_email),
    }


_GUARANTORS = (RecipientRole.GUARANTOR1, RecipientRole.GUARANTOR2)
_ALL_PARTIES = (RecipientRole.APPLICANT, *_GUARANTORS, RecipientRole.OFFICER)


def plan_notifications(
    event: NotificationEvent,
    group: LoanGroup,
    deep_links: DeepLinkGenerator,
    *,
    guarantor_slot: RecipientRole | None = None,
    remaining_periods: int | None = None,
) -> list[PlannedMessage]:
    """Return the ordered messages an event sends for ``group``.

    ``guarantor_slot`` names the guarantor behind a guarantor submission and
    ``remaining_periods`` is the countdown quoted in reminders.
    """
    gid = escape(group.id)
    applicant_name = escape(group.applicant_name or "the applicant")
    messages: list[PlannedMessage] = []

    if event is NotificationEvent.ENROLLMENT:
        links = _links(group, deep_links)
        table = render_summary_table(intent_summary(group))
        messages.append(
            _message(
                group,
                RecipientRole.APPLICANT,
                f"Loan Intent Submitted - {group.id}",
                f"<p>Your loan intent (GroupID: {gid}) has been received. Please wait for "
                f"Finance Officer assignment before proceeding.</p>{table}"
                f"{_link(links[RecipientRole.APPLICANT], 'Application Form')}",
            )
        )

    elif event is NotificationEvent.OFFICER_ASSIGNED:
        links = _links(group, deep_links)
        table = render_summary_table(
            {
                "Loan ID": group.id,
                "Applicant Name": group.applicant_name,
                "Finance Officer": group.officer_name,
            }
        )
        messages.append(
            _message(
                group,
                RecipientRole.APPLICANT,
                f"Finance Officer Assigned - {group.id}",
                f"<p>A Finance Officer has been assigned to your loan application "
                f"(GroupID: {gid}). You may now proceed.</p>{table}"
                f"{_link(links[RecipientRole.APPLICANT], 'Submit Application')}",
            )
        )
        for role in _GUARANTORS:
            messages.append(
                _message(
                    group,
                    role,
                    f"Finance Officer Assigned - {group.id}",
                    f"<p>A Finance Officer has been assigned to {applicant_name}'s loan "
                    f"application (GroupID: {gid}). You will be asked for your details once "
                    f"the application is submitted.</p>{table}",
                )
            )
        messages.append(
            _message(
                group,
                RecipientRole.OFFICER,
                f"New Loan Group Assigned - {group.id}",
                f"<p>You have been assigned to {applicant_name}'s loan application "
                f"(GroupID: {gid}).</p>{table}",
            )
        )

    elif event is NotificationEvent.APPLICANT_SUBMITTED:
        links = _links(group, deep_links)
        table = render_summary_table(application_summary(group))
        messages.append(
            _message(
                group,
                RecipientRole.APPLICANT,
                f"Application Submitted - {group.id}",
                f"<p>Your application (GroupID: {gid}) has been submitted.</p>{table}"
                f"{_link(links[RecipientRole.APPLICANT], 'Edit application')}",
            )
        )
        for role in _GUARANTORS:
            messages.append(
                _message(
                    group,
                    role,
                    f"Action Required - {group.id}",
                    f"<p>Please submit details for {applicant_name}'s loan (GroupID: {gid}).</p>"
                    f"{table}{_link(links[role], 'Submit')}",
                )
            )
        messages.append(
            _message(
                group,
                RecipientRole.OFFICER,
                f"Review Application - {group.id}",
                f"<p>Please review {applicant_name}'s loan application (GroupID: {gid}).</p>"
                f"{table}{_link(links[RecipientRole.OFFICER], 'Review')}",
            )
        )

    elif event is NotificationEvent.GUARANTOR_SUBMITTED:
        slot = guarantor_slot or RecipientRole.GUARANTOR1
        number = "1" if slot is RecipientRole.GUARANTOR1 else "2"
        _, guarantor_name = _contact(group, slot)
        table = render_summary_table(application_summary(group))
        messages.append(
            _message(
                group,
                slot,
                f"Details Submitted - {group.id}",
                f"<p>Your details for {applicant_name}'s loan (GroupID: {gid}) have been "
                f"submitted.</p>{table}",
            )
        )
        for role in (RecipientRole.APPLICANT, RecipientRole.OFFICER):
            messages.append(
                _message(
                    group,
                    role,
                    f"Guarantor {number} Submitted - {group.id}",
                    f"<p>{escape(guarantor_name or f'Guarantor {number}')} has submitted details "
                    f"for GroupID: {gid}.</p>{table}",
                )
            )

    elif event is NotificationEvent.OFFICER_REVIEWED:
        table = render_summary_table(application_summary(group))
        for role in (RecipientRole.APPLICANT, *_GUARANTORS):
            messages.append(
                _message(
                    group,
                    role,
                    f"Application Reviewed - {group.id}",
                    f"<p>Loan application {gid} has been reviewed. "
                    f"Status: {escape(group.decision or '')}.</p>{table}",
                )
            )

    elif event is NotificationEvent.EXPIRED:
        messages.append(
            _message(
                group,
                RecipientRole.APPLICANT,
                f"Application Expired - {group.id}",
                f"<p>Your application (GroupID: {gid}) has expired due to inactivity.</p>",
            )
        )

    elif event is NotificationEvent.RESET:
        for role in _ALL_PARTIES:
            messages.append(
                _message(
                    group,
                    role,
                    f"Application Reset - {group.id}",
                    f"<p>Loan application {gid} has been reset by an administrator and is "
                    f"waiting for Finance Officer assignment again.</p>",
                )
            )

    elif event is NotificationEvent.REMINDER:
        links = _links(group, deep_links)
        table = render_summary_table(
            {
                "Loan ID": group.id,
                "Applicant Name": group.applicant_name,
                "Status": group.status,
                "Periods Remaining": remaining_periods,
            }
        )
        for role in (*_GUARANTORS, RecipientRole.OFFICER):
            is_officer = role is RecipientRole.OFFICER
            action = "Please review" if is_officer else "Please submit details for"
            messages.append(
                _message(
                    group,
                    role,
                    f"Reminder - {group.id}",
                    f"<p>{action} loan application {gid}. {remaining_periods} day(s) remaining "
                    f"before it expires.</p>{table}"
                    f"{_link(links[role], 'Review' if is_officer else 'Submit')}",
                )
            )

    return messages


async def _ledger_entries(
    db: AsyncSession, group_id: str, cycle: int, event: str
) -> dict[str, NotificationDelivery]:
    stmt = select(NotificationDelivery).where(
        NotificationDelivery.group_id == group_id,
        NotificationDelivery.cycle == cycle,
        NotificationDelivery.event == event,
    )
    result = await db.execute(stmt)
    return {entry.recipient_role: entry for entry in result.scalars().all()}


async def _claim(
    db: AsyncSession,
    *,
    group_id: str,
    cycle: int,
    event: str,
    message: PlannedMessage,
    status: str,
) -> NotificationDelivery | None:
    entry = NotificationDelivery(
        group_id=group_id,
        cycle=cycle,
        event=event,
        recipient_role=message.recipient_role.value,
        recipient_address=message.address,
        subject=message.subject,
        status=status,
        attempts=0,
        last_error=IN_FLIGHT if status == FAILED else None,
    )
    try:
        async with db.begin_nested():
            db.add(entry)
    except IntegrityError:
        # Another dispatcher claimed this recipient first.
        return None
    await db.commit()
    return entry


async def dispatch(
    db: AsyncSession,
    ctx: WorkflowContext,
    *,
    group_id: str,
    cycle: int,
    event: str,
    messages: list[PlannedMessage],
    limit: int | None = None,
) -> DispatchResult:
    """Send ``messages`` once per recipient for (group, cycle, event).

    Recipients already recorded as SENT or SKIPPED are left alone, so a
    repeated dispatch only reaches those still outstanding.  A delivery
    failure is recorded against the recipient and never raised.  ``limit``
    caps the number of send attempts; anything past it is deferred without a
    ledger row.
    """
    result = DispatchResult()
    existing = await _ledger_entries(db, group_id, cycle, event)
    log_extra = {"group_id": group_id, "operation": f"notify:{event}"}

    for message in messages:
        entry = existing.get(message.recipient_role.value)
        if entry is not None and entry.status in (SENT, SKIPPED):
            result.skipped += 1
            continue

        if not is_valid_email(message.address):
            logger.error(
                "Invalid email address for %s: %r",
                message.recipient_role.value,
                message.address,
                extra=log_extra,
            )
            if entry is None:
                await _claim(db, group_id=group_id, cycle=cycle, event=event, message=message, status=SKIPPED)
            else:
                entry.status = SKIPPED
                entry.last_error = "invalid address"
                await db.commit()
            result.skipped += 1
            continue

        if limit is not None and result.attempted >= limit:
            result.deferred += 1
            continue

        if entry is None:
            entry = await _claim(db, group_id=group_id, cycle=cycle, event=event, message=message, status=FAILED)
            if entry is None:
                # Another dispatcher owns this recipient.
                result.skipped += 1
                continue

        entry.attempts = (entry.attempts or 0) + 1
        entry.recipient_address = message.address
        try:
            await ctx.delivery.send(
                OutboundEmail(to=message.address, subject=message.subject, html_body=message.body)
            )
        except DeliveryError as exc:
            entry.status = FAILED
            entry.last_error = exc.message
            result.failed += 1
            logger.error(
                "Failed to send email to %s: %s",
                message.address,
                exc.message,
                extra=log_extra,
            )
        else:
            entry.status = SENT
            entry.last_error = None
            result.sent += 1
            logger.info("Email sent to=%s subject=%s", message.address, message.subject, extra=log_extra)
        await db.commit()

    return result


async def notify_group(
    db: AsyncSession,
    ctx: WorkflowContext,
    group: LoanGroup,
    event: NotificationEvent,
    *,
    qualifier: Any | None = None,
    guarantor_slot: RecipientRole | None = None,
    remaining_periods: int | None = None,
    limit: int | None = None,
) -> DispatchResult:
    messages = plan_notifications(
        event,
        group,
        ctx.deep_links,
        guarantor_slot=guarantor_slot,
        remaining_periods=remaining_periods,
    )
    return await dispatch(
        db,
        ctx,
        group_id=group.id,
        cycle=group.cycle,
        event=event_key(event, qualifier),
        messages=messages,
        limit=limit,
    )


_BLOCKING_NOTICES = {
    BlockingReason.OFFICER_NOT_ASSIGNED: (
        "Submission Blocked - {group_id}",
        "<p>No Finance Officer assigned for GroupID: {group_id}. Please contact the admin.</p>",
    ),
    BlockingReason.ACTIVE_APPLICATION: (
        "Submission Blocked - Active Loan",
        "<p>You have an active loan application. Please contact the admin.</p>",
    ),
    BlockingReason.LOCKED: (
        "Application Locked - {group_id}",
        "<p>Application {group_id} is locked. Please contact the admin.</p>",
    ),
}


async def send_blocking_notice(
    ctx: WorkflowContext,
    *,
    address: str | None,
    name: str | None,
    reason: BlockingReason,
    group_id: str | None,
) -> bool:
    log_extra = {"group_id": group_id or "-", "operation": f"blocked:{reason.value}"}
    if not is_valid_email(address):
        logger.error("Invalid email address for blocking notice: %r", address, extra=log_extra)
        return False
    subject_template, body_template = _BLOCKING_NOTICES[reason]
    shown_id = group_id or "-"
    try:
        await ctx.delivery.send(
            OutboundEmail(
                to=address,
                subject=subject_template.format(group_id=shown_id),
                html_body=f"{_greeting(name)}{body_template.format(group_id=escape(shown_id))}",
            )
        )
    except DeliveryError as exc:
        logger.error("Failed to send blocking notice to %s: %s", address, exc.message, extra=log_extra)
        return False
    return True


def _group_from_archive(payload: str) -> LoanGroup:
    data = json.loads(payload)
    columns = {column.name for column in LoanGroup.__table__.columns}
    return LoanGroup(**{key: value for key, value in data.items() if key in columns})


async def resume_failed_deliveries(db: AsyncSession, ctx: WorkflowContext, group_id: str) -> DispatchResult:
    """Re-dispatch every FAILED ledger entry of the group's current cycle."""
    group = await record_store.get_group(db, group_id)
    if group is None:
        archived = await record_store.get_archived_group(db, group_id)
        if archived is None:
            raise NotFoundError("Loan group not found", group_id=group_id)
        group = _group_from_archive(archived.payload)

    stmt = select(NotificationDelivery).where(
        NotificationDelivery.group_id == group_id,
        NotificationDelivery.cycle == group.cycle,
        NotificationDelivery.status == FAILED,
    )
    failed = (await db.execute(stmt)).scalars().all()
    by_event: dict[str, set[str]] = {}
    for entry in failed:
        by_event.setdefault(entry.event, set()).add(entry.recipient_role)

    total = DispatchResult()
    for key, roles in sorted(by_event.items()):
        event, qualifier = parse_event_key(key)
        guarantor_slot = None
        remaining = None
        if event is NotificationEvent.GUARANTOR_SUBMITTED and qualifier:
            guarantor_slot = RecipientRole(qualifier)
        if event is NotificationEvent.REMINDER and qualifier:
            remaining = max(ctx.config.response_window_periods - int(qualifier), 0)
        messages = [
            message
            for message in plan_notifications(
                event,
                group,
                ctx.deep_links,
                guarantor_slot=guarantor_slot,
                remaining_periods=remaining,
            )
            if message.recipient_role.value in roles
        ]
        result = await dispatch(
            db,
            ctx,
            group_id=group_id,
            cycle=group.cycle,
            event=key,
            messages=messages,
        )
        total.merge(result)
    logger.info(
        "Resumed failed deliveries: sent=%s failed=%s",
        total.sent,
        total.failed,
        extra={"group_id": group_id, "operation": "resume_failed_deliveries"},
    )
    return total
