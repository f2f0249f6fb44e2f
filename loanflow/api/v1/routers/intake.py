from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.db.session import get_db
from loanflow.schemas.intake import enrollment_from_fields
from loanflow.schemas.loan_group import LoanGroupDTO, OperatorReply
from loanflow.services import intake
from loanflow.services.workflow_context import WorkflowContext

router = APIRouter(prefix="/intake", tags=["intake"])


@router.post(
    "/enrollment",
    response_model=OperatorReply,
    status_code=status.HTTP_201_CREATED,
    summary="Enroll an applicant with two guarantors",
)
async def submit_enrollment(
    fields: dict[str, Any] = Body(...),
    ctx: WorkflowContext = Depends(deps.get_workflow_context),
    db: AsyncSession = Depends(get_db),
) -> OperatorReply:
    submission = enrollment_from_fields(fields)
    group = await intake.enroll(db, ctx, submission)
    return OperatorReply(
        message=f"Loan group {group.id} created",
        data=LoanGroupDTO.model_validate(group).model_dump(mode="json"),
    )


@router.post(
    "/application",
    response_model=OperatorReply,
    summary="Record an applicant, guarantor or finance officer submission",
)
async def submit_application(
    fields: dict[str, Any] = Body(...),
    ctx: WorkflowContext = Depends(deps.get_workflow_context),
    db: AsyncSession = Depends(get_db),
) -> OperatorReply:
    outcome = await intake.submit_application(db, ctx, fields)
    return OperatorReply(
        message=f"{outcome.role.value} submission recorded for {outcome.group.id}",
        data={
            "role": outcome.role.value,
            "guarantor_slot": outcome.guarantor_slot.value if outcome.guarantor_slot else None,
            "group": LoanGroupDTO.model_validate(outcome.group).model_dump(mode="json"),
        },
    )
