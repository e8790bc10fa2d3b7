import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy import desc
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from invoicing.core.database import get_db
from invoicing.core.errors import PersistenceError, ValidationError
from invoicing.deps import get_current_user
from invoicing.models.customer import Customer
from invoicing.models.invoice import Invoice
from invoicing.models.user import User
from invoicing.routers.serializers import customer_to_dict
from invoicing.schemas.catalog import CustomerIn
from invoicing.services.entity_store import get_customer, owner_filter

router = APIRouter(prefix="/api/customers", tags=["customers"])
logger = logging.getLogger(__name__)


def _ensure_email_available(db: Session, owner_id: str, email: str, exclude_id: str | None = None) -> None:
    query = owner_filter(db.query(Customer), Customer, owner_id).filter(Customer.email == email)
    if exclude_id is not None:
        query = query.filter(Customer.id != exclude_id)
    if query.first():
        raise ValidationError("Customer with this email already exists", details={"field": "email"})


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError("Customer with this email already exists", details={"field": "email"}) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("customer %s failed", action)
        raise PersistenceError(f"Error {action} customer") from exc


@router.post("", status_code=201)
def create_customer(
    payload: CustomerIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    email = str(payload.email).lower()
    _ensure_email_available(db, user.id, email)
    customer = Customer(
        owner_id=user.id,
        name=payload.name.strip(),
        email=email,
        phone=payload.phone.strip(),
        address=payload.address.strip(),
    )
    db.add(customer)
    _commit(db, "creating")
    db.refresh(customer)
    return {"status": "success", "data": customer_to_dict(customer)}


@router.get("")
def list_customers(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    customers = owner_filter(db.query(Customer), Customer, user.id).order_by(desc(Customer.created_at)).all()
    return {
        "status": "success",
        "results": len(customers),
        "data": [customer_to_dict(c) for c in customers],
    }


@router.get("/{customer_id}")
def get_customer_endpoint(
    customer_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return {"status": "success", "data": customer_to_dict(get_customer(db, user.id, customer_id))}


@router.put("/{customer_id}")
def update_customer(
    customer_id: str,
    payload: CustomerIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    customer = get_customer(db, user.id, customer_id)
    email = str(payload.email).lower()
    _ensure_email_available(db, user.id, email, exclude_id=customer.id)

    customer.name = payload.name.strip()
    customer.email = email
    customer.phone = payload.phone.strip()
    customer.address = payload.address.strip()
    _commit(db, "updating")
    db.refresh(customer)
    return {"status": "success", "data": customer_to_dict(customer)}


@router.delete("/{customer_id}", status_code=204)
def delete_customer(
    customer_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    customer = get_customer(db, user.id, customer_id)
    in_use = db.query(Invoice.id).filter(Invoice.customer_id == customer.id).first()
    if in_use:
        raise ValidationError("Customer has invoices and cannot be deleted")
    db.delete(customer)
    _commit(db, "deleting")
    return Response(status_code=204)
