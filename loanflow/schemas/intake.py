"""Typed intake submissions and the explicit field-map builders for each role.

Intake surfaces post flat maps keyed by the form's human-readable question
titles.  Values may be plain strings or single-item lists (form ``namedValues``).
"""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel

from loanflow.schemas.loan_group import IntakeRole, OfficerContact, ParticipantContact
from loanflow.services.workflow_errors import ValidationError


class LoanDetails(BaseModel):
    home_address: str | None = None
    loan_amount_figures: str | None = None
    loan_amount_words: str | None = None
    repayment_period: str | None = None
    bank_name: str | None = None
    account_name: str | None = None
    account_number: str | None = None


class ReviewDetails(BaseModel):
    decision: str
    comments: str | None = None
    applicant_balance: str | None = None
    applicant_rating: str | None = None
    guarantor1_balance: str | None = None
    guarantor1_rating: str | None = None
    guarantor2_balance: str | None = None
    guarantor2_rating: str | None = None


class EnrollmentSubmission(BaseModel):
    applicant: ParticipantContact
    guarantor1: ParticipantContact
    guarantor2: ParticipantContact


class ApplicantSubmission(BaseModel):
    group_id: str | None = None
    applicant: ParticipantContact
    guarantor1: ParticipantContact
    guarantor2: ParticipantContact
    loan: LoanDetails


class GuarantorSubmission(BaseModel):
    group_id: str
    submitter_email: str
    guarantor1: ParticipantContact
    guarantor2: ParticipantContact


class OfficerReviewSubmission(BaseModel):
    group_id: str
    approver: OfficerContact
    review: ReviewDetails
    loan: LoanDetails


def field_value(fields: Mapping[str, Any], name: str) -> str | None:
    raw = fields.get(name)
    if isinstance(raw, (list, tuple)):
        raw = raw[0] if raw else None
    if raw is None:
        return None
    cleaned = str(raw).strip()
    return cleaned or None


def _require(fields: Mapping[str, Any], names: list[str], *, operation: str) -> None:
    missing = [name for name in names if field_value(fields, name) is None]
    if missing:
        raise ValidationError(
            f"Incomplete {operation} submission",
            group_id=field_value(fields, "Loan ID"),
            details={"missing_fields": missing},
        )


def _contact(fields: Mapping[str, Any], label: str) -> ParticipantContact:
    return ParticipantContact(
        cooperator_id=field_value(fields, f"{label} Cooperator ID"),
        name=field_value(fields, f"{label} Name"),
        phone=field_value(fields, f"{label} Phone"),
        email=field_value(fields, f"{label} Email"),
    )


def _loan_details(fields: Mapping[str, Any]) -> LoanDetails:
    return LoanDetails(
        home_address=field_value(fields, "Home Address"),
        loan_amount_figures=field_value(fields, "Loan Amount (Figures)"),
        loan_amount_words=field_value(fields, "Loan Amount (Words)"),
        repayment_period=field_value(fields, "Repayment Period"),
        bank_name=field_value(fields, "Bank Name"),
        account_name=field_value(fields, "Account Name"),
        account_number=field_value(fields, "Account Number"),
    )


def enrollment_from_fields(fields: Mapping[str, Any]) -> EnrollmentSubmission:
    _require(
        fields,
        [
            "Your Cooperator ID",
            "Your Email",
            "Guarantor 1 Cooperator ID",
            "Guarantor 1 Email",
            "Guarantor 2 Cooperator ID",
            "Guarantor 2 Email",
        ],
        operation="enrollment",
    )
    submission = EnrollmentSubmission(
        applicant=_contact(fields, "Your"),
        guarantor1=_contact(fields, "Guarantor 1"),
        guarantor2=_contact(fields, "Guarantor 2"),
    )
    cooperator_ids = [
        submission.applicant.cooperator_id,
        submission.guarantor1.cooperator_id,
        submission.guarantor2.cooperator_id,
    ]
    if len(set(cooperator_ids)) != len(cooperator_ids):
        raise ValidationError(
            "Applicant and guarantors must be three different cooperators",
            details={"cooperator_ids": cooperator_ids},
        )
    return submission


def applicant_from_fields(fields: Mapping[str, Any]) -> ApplicantSubmission:
    _require(
        fields,
        ["Cooperator ID", "Name", "Email", "Phone", "Loan Amount (Figures)", "Repayment Period"],
        operation="applicant",
    )
    return ApplicantSubmission(
        group_id=field_value(fields, "Loan ID"),
        applicant=ParticipantContact(
            cooperator_id=field_value(fields, "Cooperator ID"),
            name=field_value(fields, "Name"),
            phone=field_value(fields, "Phone"),
            email=field_value(fields, "Email"),
        ),
        guarantor1=_contact(fields, "Guarantor 1"),
        guarantor2=_contact(fields, "Guarantor 2"),
        loan=_loan_details(fields),
    )


def guarantor_from_fields(fields: Mapping[str, Any]) -> GuarantorSubmission:
    _require(fields, ["Loan ID", "Email"], operation="guarantor")
    return GuarantorSubmission(
        group_id=field_value(fields, "Loan ID"),
        submitter_email=field_value(fields, "Email"),
        guarantor1=_contact(fields, "Guarantor 1"),
        guarantor2=_contact(fields, "Guarantor 2"),
    )


def officer_review_from_fields(fields: Mapping[str, Any]) -> OfficerReviewSubmission:
    _require(fields, ["Loan ID", "Approver ID", "Approver Email", "Status"], operation="officer review")
    return OfficerReviewSubmission(
        group_id=field_value(fields, "Loan ID"),
        approver=OfficerContact(
            name=field_value(fields, "Approver Name"),
            officer_id=field_value(fields, "Approver ID"),
            email=field_value(fields, "Approver Email"),
            phone=field_value(fields, "Approver Phone"),
        ),
        review=ReviewDetails(
            decision=field_value(fields, "Status"),
            comments=field_value(fields, "Comments"),
            applicant_balance=field_value(fields, "Applicant Balance"),
            applicant_rating=field_value(fields, "Applicant Rating"),
            guarantor1_balance=field_value(fields, "Guarantor 1 Balance"),
            guarantor1_rating=field_value(fields, "Guarantor 1 Rating"),
            guarantor2_balance=field_value(fields, "Guarantor 2 Balance"),
            guarantor2_rating=field_value(fields, "Guarantor 2 Rating"),
        ),
        loan=_loan_details(fields),
    )


def role_from_fields(fields: Mapping[str, Any]) -> IntakeRole:
    raw = field_value(fields, "Role")
    if raw is None:
        raise ValidationError(
            "Application submission is missing a role",
            group_id=field_value(fields, "Loan ID"),
            details={"missing_fields": ["Role"]},
        )
    try:
        return IntakeRole(raw)
    except ValueError as exc:
        raise ValidationError(
            f"Invalid role: {raw}",
            group_id=field_value(fields, "Loan ID"),
            details={"role": raw},
        ) from exc
