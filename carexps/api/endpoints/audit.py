"""
Audit Log Endpoints

Read-only access to the current tenant's audit trail. Admin only.
"""
from fastapi import APIRouter, Depends, Query
from typing import Optional

from carexps.models.audit import AuditAction, AuditOutcome
from carexps.models.user import User
from carexps.schemas.audit import AuditLogListResponse
from carexps.api.deps import get_audit_logger, require_admin
from carexps.services.audit import AuditLogger

router = APIRouter(prefix="/audit-logs", tags=["audit"])


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    action: Optional[AuditAction] = Query(None),
    user_id: Optional[str] = None,
    outcome: Optional[AuditOutcome] = Query(None),
    current_user: User = Depends(require_admin),
    audit: AuditLogger = Depends(get_audit_logger)
):
    logs, total = audit.search(
        page=page,
        page_size=page_size,
        action=action.value if action else None,
        user_id=user_id,
        outcome=outcome.value if outcome else None
    )
    return AuditLogListResponse(logs=logs, total=total, page=page, page_size=page_size)
