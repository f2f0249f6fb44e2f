from fastapi import APIRouter, Request

from loanflow.core.health import live_payload, ready_payload
from loanflow.core.limiter import limiter
from loanflow.schemas.loan_group import OperatorReply

router = APIRouter(tags=["health"])


@router.get("/health/live", response_model=OperatorReply, summary="Service liveness check")
@limiter.exempt
async def health_live(request: Request) -> OperatorReply:
    return OperatorReply(message="alive", data=await live_payload())


@router.get("/health/ready", response_model=OperatorReply, summary="Service readiness check")
@limiter.exempt
async def health_ready(request: Request) -> OperatorReply:
    payload = await ready_payload()
    return OperatorReply(message=payload["status"], data=payload)
