from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from invoicing.core.config import RECONCILE_GRACE_SECONDS
from invoicing.core.errors import InsufficientStockError, NotFoundError
from invoicing.models.invoice import INVENTORY_PENDING, Invoice
from invoicing.services.invoices import claim_pending_invoice, discard_invoice, stock_requests_for
from invoicing.services.inventory import reserve_stock

logger = logging.getLogger(__name__)
RECONCILE_PREFIX = "[RECONCILE]"


@dataclass
class ReconciliationReport:
    completed: list[str] = field(default_factory=list)
    reversed: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "completed": self.completed,
            "reversed": self.reversed,
            "failed": self.failed,
        }


def find_stale_pending_invoices(db: Session, cutoff: datetime) -> list[tuple[str, str]]:
    rows = (
        db.query(Invoice.id, Invoice.owner_id)
        .filter(Invoice.inventory_status == INVENTORY_PENDING, Invoice.created_at <= cutoff)
        .order_by(Invoice.created_at.asc())
        .all()
    )
    return [(row[0], row[1]) for row in rows]


def _reconcile_one(db: Session, invoice_id: str, owner_id: str, report: ReconciliationReport) -> None:
    if not claim_pending_invoice(db, invoice_id):
        # Concluída ou removida por outro processo nesse meio tempo
        db.rollback()
        return

    invoice = db.query(Invoice).options(selectinload(Invoice.lines)).filter(Invoice.id == invoice_id).one()
    try:
        reserve_stock(db, owner_id, stock_requests_for(invoice), invoice_id=invoice_id)
    except (InsufficientStockError, NotFoundError) as exc:
        # rollback devolve a fatura para pending antes de apagar
        db.rollback()
        if not discard_invoice(db, invoice_id):
            db.rollback()
            return
        db.commit()
        report.reversed.append(invoice_id)
        logger.warning("%s invoice reversed invoice_id=%s reason=%s", RECONCILE_PREFIX, invoice_id, exc.message)
        return

    db.commit()
    report.completed.append(invoice_id)
    logger.info("%s inventory adjustment completed invoice_id=%s", RECONCILE_PREFIX, invoice_id)


def reconcile_pending_invoices(
    db: Session,
    *,
    older_than_seconds: int = RECONCILE_GRACE_SECONDS,
    now: Optional[datetime] = None,
) -> ReconciliationReport:
    """Resolve faturas que ficaram com ``inventory_status = pending``.

    Para cada uma tenta concluir a baixa de estoque; se não houver mais saldo (ou
    o produto sumiu) a fatura é desfeita. Só olha faturas mais velhas que o
    prazo de tolerância para não competir com criações em andamento.
    """
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=older_than_seconds)
    candidates = find_stale_pending_invoices(db, cutoff)
    db.rollback()

    report = ReconciliationReport()
    logger.info("%s start candidates=%s cutoff=%s", RECONCILE_PREFIX, len(candidates), cutoff.isoformat())

    for invoice_id, owner_id in candidates:
        try:
            _reconcile_one(db, invoice_id, owner_id, report)
        except SQLAlchemyError:
            db.rollback()
            report.failed.append(invoice_id)
            logger.exception("%s failed invoice_id=%s", RECONCILE_PREFIX, invoice_id)

    logger.info(
        "%s done completed=%s reversed=%s failed=%s",
        RECONCILE_PREFIX,
        len(report.completed),
        len(report.reversed),
        len(report.failed),
    )
    return report
