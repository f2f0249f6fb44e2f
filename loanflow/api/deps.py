from functools import lru_cache

from fastapi import Header, HTTPException, status

from loanflow.core.security import verify_admin_key
from loanflow.db.session import get_db
from loanflow.services.workflow_context import WorkflowContext, build_workflow_context


@lru_cache(maxsize=1)
def _default_workflow_context() -> WorkflowContext:
    return build_workflow_context(actor="api")


def get_workflow_context() -> WorkflowContext:
    return _default_workflow_context()


async def require_admin(x_admin_key: str | None = Header(default=None, alias="X-Admin-Key")) -> str:
    if not verify_admin_key(x_admin_key):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "unauthorized", "message": "Invalid or missing admin key"},
        )
    return "admin"


__all__ = ["get_db", "get_workflow_context", "require_admin"]
