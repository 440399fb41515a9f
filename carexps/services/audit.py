"""
Audit Logger

Writes HIPAA audit records to audit_logs through the tenant scope.
Records are staged on the session; the calling service commits them
together with the change they describe. Failure paths that raise commit
first so the record survives the rollback.
"""
from typing import Any, Dict, List, Optional, Tuple
import logging

from carexps.core.tenancy import TenantScope
from carexps.models.audit import AuditLog, AuditAction, ResourceType, AuditOutcome
from carexps.utils.logging import scrub

logger = logging.getLogger(__name__)


class AuditLogger:
    """Audit trail bound to one tenant and, optionally, one client."""

    def __init__(
        self,
        scope: TenantScope,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ):
        self.scope = scope
        self.ip_address = ip_address
        self.user_agent = user_agent

    def log(
        self,
        action: AuditAction,
        resource_type: ResourceType,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
        user_id: Optional[str] = None,
        resource_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        entry = AuditLog(
            user_id=user_id,
            action=action.value,
            resource_type=resource_type.value,
            resource_id=resource_id,
            outcome=outcome.value,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            details=scrub(details or {})
        )
        self.scope.add(entry)
        logger.debug(
            f"Audit: {action.value} {resource_type.value} {outcome.value}",
            extra={"tenant_id": self.scope.tenant_id, "user_id": user_id}
        )
        return entry

    def log_auth_event(
        self,
        action: AuditAction,
        outcome: AuditOutcome,
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ) -> AuditLog:
        return self.log(action, ResourceType.USER, outcome, user_id=user_id, resource_id=user_id, details=details)

    def log_mfa_event(
        self,
        action: AuditAction,
        user_id: str,
        outcome: AuditOutcome = AuditOutcome.SUCCESS,
        details: Optional[Dict[str, Any]] = None,
        actor_id: Optional[str] = None
    ) -> AuditLog:
        """MFA events are about user_id; actor_id differs for admin resets."""
        return self.log(
            action,
            ResourceType.MFA,
            outcome,
            user_id=actor_id or user_id,
            resource_id=user_id,
            details=details
        )

    def search(
        self,
        page: int = 1,
        page_size: int = 50,
        action: Optional[str] = None,
        user_id: Optional[str] = None,
        outcome: Optional[str] = None
    ) -> Tuple[List[AuditLog], int]:
        """Newest first, this tenant only."""
        query = self.scope.query(AuditLog)
        if action:
            query = query.filter(AuditLog.action == action)
        if user_id:
            query = query.filter(AuditLog.user_id == user_id)
        if outcome:
            query = query.filter(AuditLog.outcome == outcome)

        total = query.count()
        offset = (page - 1) * page_size
        entries = query.order_by(AuditLog.created_at.desc()).offset(offset).limit(page_size).all()
        return entries, total
