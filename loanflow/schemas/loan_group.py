from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class LoanGroupStatus(str, Enum):
    PENDING_OFFICER = "PendingOfficer"
    NOTIFIED = "Notified"
    APPLICANT_SUBMITTED = "ApplicantSubmitted"
    FINANCE_REVIEWED = "FinanceReviewed"
    EXPIRED = "Expired"


TERMINAL_STATUSES = frozenset({LoanGroupStatus.FINANCE_REVIEWED, LoanGroupStatus.EXPIRED})


class IntakeRole(str, Enum):
    APPLICANT = "Applicant"
    GUARANTOR = "Guarantor"
    FINANCE_OFFICER = "Finance Officer"


class RecipientRole(str, Enum):
    APPLICANT = "applicant"
    GUARANTOR1 = "guarantor1"
    GUARANTOR2 = "guarantor2"
    OFFICER = "officer"


class NotificationEvent(str, Enum):
    ENROLLMENT = "enrollment"
    OFFICER_ASSIGNED = "officer_assigned"
    APPLICANT_SUBMITTED = "applicant_submitted"
    GUARANTOR_SUBMITTED = "guarantor_submitted"
    OFFICER_REVIEWED = "officer_reviewed"
    EXPIRED = "expired"
    RESET = "reset"
    REMINDER = "reminder"


class BlockingReason(str, Enum):
    OFFICER_NOT_ASSIGNED = "officer_not_assigned"
    ACTIVE_APPLICATION = "active_application_exists"
    LOCKED = "locked"


class ParticipantContact(BaseModel):
    cooperator_id: str | None = None
    name: str | None = None
    phone: str | None = None
    email: str | None = None


class OfficerContact(BaseModel):
    name: str | None = None
    officer_id: str | None = None
    email: str | None = None
    phone: str | None = None

    def missing_fields(self) -> list[str]:
        return [
            field
            for field in ("name", "officer_id", "email", "phone")
            if not (getattr(self, field) or "").strip()
        ]


class LoanGroupDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    status: LoanGroupStatus
    locked: bool
    notified: bool
    cycle: int
    version: int
    applicant_cooperator_id: str | None = None
    applicant_name: str | None = None
    applicant_email: str | None = None
    guarantor1_cooperator_id: str | None = None
    guarantor1_name: str | None = None
    guarantor1_email: str | None = None
    guarantor2_cooperator_id: str | None = None
    guarantor2_name: str | None = None
    guarantor2_email: str | None = None
    officer_name: str | None = None
    officer_id: str | None = None
    officer_email: str | None = None
    loan_amount_figures: str | None = None
    repayment_period: str | None = None
    decision: str | None = None
    created_at: datetime
    submitted_at: datetime | None = None
    updated_at: datetime | None = None


class LoanGroupListResponse(BaseModel):
    items: list[LoanGroupDTO]
    total: int


class ArchivedLoanGroupDTO(BaseModel):
    group_id: str
    status: LoanGroupStatus
    archived_at: datetime
    payload: dict[str, Any]


class FinanceOfficerCreate(BaseModel):
    name: str = Field(min_length=1)
    officer_id: str = Field(min_length=1)
    email: str = Field(min_length=3)
    phone: str = Field(min_length=1)


class FinanceOfficerDTO(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    officer_id: str
    email: str
    phone: str
    is_active: bool


class OperatorReply(BaseModel):
    code: str = "ok"
    message: str
    data: Any = None
