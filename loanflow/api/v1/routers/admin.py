from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from loanflow.api import deps
from loanflow.db.session import get_db
from loanflow.schemas.loan_group import (
    ArchivedLoanGroupDTO,
    FinanceOfficerCreate,
    FinanceOfficerDTO,
    LoanGroupDTO,
    LoanGroupListResponse,
    LoanGroupStatus,
    OfficerContact,
    OperatorReply,
)
from loanflow.services import archival, loan_workflow, notifications, officer_assignment, record_store
from loanflow.services.reminders import run_sweep
from loanflow.services.workflow_context import WorkflowContext
from loanflow.services.workflow_errors import NotFoundError

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(deps.require_admin)])


@router.post(
    "/notifications/assignments",
    response_model=OperatorReply,
    summary="Notify every group whose officer was assigned but not yet announced",
)
async def notify_new_assignments(
    ctx: WorkflowContext = Depends(deps.get_workflow_context),
    db: AsyncSession = Depends(get_db),
) -> OperatorReply:
    group_ids = [group.id for group in await record_store.list_pending_assignment_notifications(db)]
    notified = [group_id for group_id in group_ids if await loan_workflow.notify_assignment(db, ctx, group_id)]
    return OperatorReply(
        message=f"Notified {len(notified)} of {len(group_ids)} pending assignments",
        data={"notified": notified},
    )


@router.post("/groups/{group_id}/reset", response_model=OperatorReply, summary="Reset a loan group")
async def reset_group(
    group_id: str,
    ctx: WorkflowContext = Depends(deps.get_workflow_context),
    db: AsyncSession = Depends(get_db),
) -> OperatorReply:
    group = await archival.reset(db, ctx, group_id)
    return OperatorReply(
        message=f"Loan group {group_id} reset to {LoanGroupStatus.PENDING_OFFICER.value}",
        data=LoanGroupDTO.model_validate(group).model_dump(mode="json"),
    )


@router.post("/groups/{group_id}/archive", response_model=OperatorReply, summary="Archive a terminal loan group")
async def archive_group(
    group_id: str,
    ctx: WorkflowContext = Depends(deps.get_workflow_context),
    db: AsyncSession = Depends(get_db),
) -> OperatorReply:
    archived = await archival.archive(db, ctx, group_id)
    message = f"Loan group {group_id} archived" if archived else f"Loan group {group_id} was already archived"
    return OperatorReply(message=message, data={"archived": archived})


@router.put("/groups/{group_id}/officer", response_model=OperatorReply, summary="Assign a finance officer")
async def assign_group_officer(
    group_id: str,
    payload: OfficerContact,
    ctx: WorkflowContext = Depends(deps.get_workflow_context),
    db: AsyncSession = Depends(get_db),
) -> OperatorReply:
    group = await officer_assignment.assign_manually(db, ctx, group_id, payload)
    return OperatorReply(
        message=f"Officer {payload.officer_id} assigned to {group_id}",
        data=LoanGroupDTO.model_validate(group).model_dump(mode="json"),
    )


@router.post(
    "/groups/{group_id}/deliveries/resume",
    response_model=OperatorReply,
    summary="Retry failed notifications for a loan group",
)
async def resume_deliveries(
    group_id: str,
    ctx: WorkflowContext = Depends(deps.get_workflow_context),
    db: AsyncSession = Depends(get_db),
) -> OperatorReply:
    result = await notifications.resume_failed_deliveries(db, ctx, group_id)
    return OperatorReply(
        message=f"Resent {result.sent} notification(s), {result.failed} still failing",
        data={"sent": result.sent, "failed": result.failed, "skipped": result.skipped},
    )


@router.post("/sweep", response_model=OperatorReply, summary="Run the reminder and expiry sweep now")
async def sweep_now(
    ctx: WorkflowContext = Depends(deps.get_workflow_context),
    db: AsyncSession = Depends(get_db),
) -> OperatorReply:
    result = await run_sweep(db, ctx)
    return OperatorReply(
        message=(
            f"Sweep scanned {result.scanned} group(s): {len(result.expired)} expired, "
            f"{len(result.reminded)} reminded"
        ),
        data=result.as_dict(),
    )


@router.get("/groups", response_model=LoanGroupListResponse, summary="List live loan groups")
async def list_groups(
    status_filter: LoanGroupStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: AsyncSession = Depends(get_db),
) -> LoanGroupListResponse:
    groups, total = await record_store.list_groups(db, status=status_filter, limit=limit, offset=offset)
    return LoanGroupListResponse(
        items=[LoanGroupDTO.model_validate(group) for group in groups],
        total=total,
    )


@router.get("/groups/{group_id}", response_model=LoanGroupDTO, summary="Get a live loan group")
async def get_group(group_id: str, db: AsyncSession = Depends(get_db)) -> LoanGroupDTO:
    group = await record_store.require_group(db, group_id)
    return LoanGroupDTO.model_validate(group)


@router.get("/archive/{group_id}", response_model=ArchivedLoanGroupDTO, summary="Get an archived loan group")
async def get_archived_group(group_id: str, db: AsyncSession = Depends(get_db)) -> ArchivedLoanGroupDTO:
    archived = await record_store.get_archived_group(db, group_id)
    if archived is None:
        raise NotFoundError("Archived loan group not found", group_id=group_id)
    return ArchivedLoanGroupDTO(
        group_id=archived.group_id,
        status=archived.status,
        archived_at=archived.archived_at,
        payload=archival.archived_payload(archived),
    )


@router.get("/officers", response_model=list[FinanceOfficerDTO], summary="List active finance officers")
async def list_officers(db: AsyncSession = Depends(get_db)) -> list[FinanceOfficerDTO]:
    officers = await record_store.list_active_officers(db)
    return [FinanceOfficerDTO.model_validate(officer) for officer in officers]


@router.post(
    "/officers",
    response_model=FinanceOfficerDTO,
    status_code=status.HTTP_201_CREATED,
    summary="Add a finance officer to the pool",
)
async def add_officer(payload: FinanceOfficerCreate, db: AsyncSession = Depends(get_db)) -> FinanceOfficerDTO:
    officer = await record_store.add_officer(db, payload)
    await db.commit()
    return FinanceOfficerDTO.model_validate(officer)
