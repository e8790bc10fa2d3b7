from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from invoicing.core.database import get_db
from invoicing.deps import get_current_user
from invoicing.models.user import User
from invoicing.routers.serializers import invoice_to_dict
from invoicing.schemas.invoices import InvoiceCreate, InvoiceUpdate, PaymentStatusUpdate
from invoicing.services.entity_store import get_invoice, list_invoices
from invoicing.services.invoices import (
    create_invoice,
    delete_invoice,
    update_invoice,
    update_payment_status,
)

router = APIRouter(prefix="/api/invoices", tags=["invoices"])


@router.post("", status_code=201)
def create_invoice_endpoint(
    payload: InvoiceCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invoice = create_invoice(db, user.id, payload)
    return {"status": "success", "data": invoice_to_dict(invoice)}


@router.get("")
def list_invoices_endpoint(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invoices = list_invoices(db, user.id)
    return {
        "status": "success",
        "results": len(invoices),
        "data": [invoice_to_dict(invoice) for invoice in invoices],
    }


@router.get("/{invoice_id}")
def get_invoice_endpoint(
    invoice_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return {"status": "success", "data": invoice_to_dict(get_invoice(db, user.id, invoice_id))}


@router.patch("/{invoice_id}")
def update_invoice_endpoint(
    invoice_id: str,
    payload: InvoiceUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invoice = update_invoice(db, user.id, invoice_id, payload)
    return {"status": "success", "data": invoice_to_dict(invoice)}


@router.delete("/{invoice_id}", status_code=204)
def delete_invoice_endpoint(
    invoice_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    delete_invoice(db, user.id, invoice_id)
    return Response(status_code=204)


@router.patch("/{invoice_id}/payment-status")
def update_payment_status_endpoint(
    invoice_id: str,
    payload: PaymentStatusUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    invoice = update_payment_status(db, user.id, invoice_id, payload)
    return {"status": "success", "data": invoice_to_dict(invoice)}
