# Audit Log API - read-only view of the credential audit trail
#
# Newest first, cursor-paginated: pass the previous page's next_cursor to
# fetch older entries. Administrators only.

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..core.audit_log import AuditAction, AuditFilter, AuditLog, AuditOutcome
from ..core.exceptions import Forbidden
from ..core.identity import Identity
from ..services import VaultServices
from .security import current_actor, get_services

router = APIRouter(prefix="/api/audit-log", tags=["audit"])


@router.get("")
def query_audit_log(
    action: Optional[AuditAction] = None,
    actor_name: Optional[str] = Query(None, alias="actor"),
    since: Optional[datetime] = None,
    until: Optional[datetime] = None,
    outcome: Optional[AuditOutcome] = None,
    cursor: Optional[int] = Query(None, ge=1),
    limit: int = Query(AuditLog.DEFAULT_PAGE_SIZE, ge=1, le=AuditLog.MAX_PAGE_SIZE),
    actor: Identity = Depends(current_actor),
    services: VaultServices = Depends(get_services),
):
    if not actor.is_admin:
        raise Forbidden()
    filters = AuditFilter(
        action=action,
        actor=actor_name,
        since=since,
        until=until,
        outcome=outcome,
    )
    return services.audit_log.query(filters, cursor=cursor, limit=limit).to_dict()
