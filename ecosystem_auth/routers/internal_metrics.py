from __future__ import annotations

from fastapi import APIRouter, Depends

from ecosystem_auth.core.metrics import request_metrics
from ecosystem_auth.deps import require_super_admin
from ecosystem_auth.services.session_provider import Identity

router = APIRouter(prefix="/internal/metrics", tags=["internal-metrics"])


@router.get("")
def endpoint_metrics(_identity: Identity = Depends(require_super_admin)):
    return {"endpoints": request_metrics.snapshot()}


@router.get("/companies")
def company_metrics(_identity: Identity = Depends(require_super_admin)):
    return {"companies": request_metrics.snapshot_per_company()}
