from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ecosystem_auth.core.database import get_db
from ecosystem_auth.deps import require_company, require_permission
from ecosystem_auth.models.audit_log import AuditLog
from ecosystem_auth.services.permissions import VIEW_AUDIT
from ecosystem_auth.services.session_provider import Identity

router = APIRouter(prefix="/audit", tags=["audit"])


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed.replace(tzinfo=None)
    except ValueError:
        return None


def _load_json(value: Optional[str]) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return {"raw": value}


@router.get("")
def list_audit_entries(
    from_date: Optional[str] = Query(None, alias="from"),
    to_date: Optional[str] = Query(None, alias="to"),
    user_id: Optional[int] = Query(None, alias="userId"),
    action: Optional[str] = None,
    limit: int = Query(200, ge=1, le=500),
    identity: Identity = Depends(require_company),
    _allowed: Identity = Depends(require_permission(VIEW_AUDIT)),
    db: Session = Depends(get_db),
):
    query = db.query(AuditLog).filter(AuditLog.company_id == identity.company_id)

    start_dt = _parse_datetime(from_date)
    end_dt = _parse_datetime(to_date)
    if start_dt:
        query = query.filter(AuditLog.created_at >= start_dt)
    if end_dt:
        query = query.filter(AuditLog.created_at <= end_dt)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)
    if action:
        query = query.filter(AuditLog.action_type == action.strip().upper())

    rows = query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).all()

    entries: List[Dict[str, Any]] = [
        {
            "id": entry.id,
            "companyId": entry.company_id,
            "userId": entry.user_id,
            "actorEmail": entry.actor_email,
            "actionType": entry.action_type,
            "entityType": entry.entity_type,
            "entityId": entry.entity_id,
            "oldValue": _load_json(entry.old_value),
            "newValue": _load_json(entry.new_value),
            "metadata": _load_json(entry.metadata_json),
            "ipAddress": entry.ip_address,
            "createdAt": entry.created_at.isoformat() if entry.created_at else None,
        }
        for entry in rows
    ]
    return {"entries": entries}
