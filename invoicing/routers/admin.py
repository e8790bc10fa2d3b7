from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from invoicing.core.config import RECONCILE_GRACE_SECONDS
from invoicing.core.database import get_db
from invoicing.deps import require_role
from invoicing.models.user import User
from invoicing.services.reconciliation import reconcile_pending_invoices

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.post("/reconciliation")
def run_reconciliation(
    older_than_seconds: int = Query(RECONCILE_GRACE_SECONDS, ge=0, alias="olderThan"),
    db: Session = Depends(get_db),
    _admin: User = Depends(require_role(["admin"])),
):
    report = reconcile_pending_invoices(db, older_than_seconds=older_than_seconds)
    return {"status": "success", "data": report.to_dict()}
