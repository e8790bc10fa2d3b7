from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Response
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from invoicing.core.database import get_db
from invoicing.core.errors import AuthenticationError, PersistenceError, ValidationError
from invoicing.deps import get_current_user
from invoicing.models.customer import Customer
from invoicing.models.invoice import Invoice
from invoicing.models.product import Product
from invoicing.models.stock_movement import StockMovement
from invoicing.models.user import DEFAULT_BUSINESS_INFO, User
from invoicing.routers.serializers import user_to_dict
from invoicing.schemas.users import UserLogin, UserRegister, UserUpdate
from invoicing.services.auth import create_access_token, hash_password, verify_password

router = APIRouter(prefix="/api/users", tags=["users"])
logger = logging.getLogger(__name__)


def _authenticate(db: Session, email: str, password: str) -> User:
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        logger.info("login rejected email_domain=%s", email.rpartition("@")[2])
        raise AuthenticationError("Invalid email or password")
    return user


def _token_response(user: User) -> dict:
    token = create_access_token(user.id, extra={"role": user.role})
    return {"access_token": token, "token_type": "bearer"}


@router.post("/register", status_code=201)
def register(payload: UserRegister, db: Session = Depends(get_db)):
    email = str(payload.email).lower()
    # email único
    if db.query(User).filter(User.email == email).first():
        raise ValidationError("User already exists", details={"field": "email"})

    user = User(
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        email=email,
        password_hash=hash_password(payload.password),
        role="user",
        business_info=dict(DEFAULT_BUSINESS_INFO),
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ValidationError("User already exists", details={"field": "email"}) from exc
    db.refresh(user)
    return {"status": "success", "data": {"user": user_to_dict(user)}}


@router.post("/login")
def login(payload: UserLogin, db: Session = Depends(get_db)):
    user = _authenticate(db, str(payload.email), payload.password)
    return {"status": "success", "data": {"user": user_to_dict(user), **_token_response(user)}}


@router.post("/token")
def token(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """Endpoint usado pelo botão Authorize do Swagger UI (form-data username/password)."""
    return _token_response(_authenticate(db, form_data.username, form_data.password))


@router.get("/me")
def get_profile(user: User = Depends(get_current_user)):
    return {"status": "success", "data": {"user": user_to_dict(user)}}


@router.patch("/me")
def update_profile(
    payload: UserUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    if payload.first_name is not None:
        user.first_name = payload.first_name.strip()
    if payload.last_name is not None:
        user.last_name = payload.last_name.strip()
    if payload.business_info is not None:
        changes = payload.business_info.model_dump(exclude_none=True)
        if "email" in changes:
            changes["email"] = str(changes["email"])
        # JSON column: reatribui para o SQLAlchemy detectar a mudança
        user.business_info = {**DEFAULT_BUSINESS_INFO, **(user.business_info or {}), **changes}
    db.commit()
    db.refresh(user)
    return {"status": "success", "data": {"user": user_to_dict(user)}}


@router.post("/logout")
def logout(user: User = Depends(get_current_user)):
    """JWT não fica guardado no servidor: o cliente só descarta o token."""
    logger.info("logout user_id=%s", user.id)
    return {"status": "success", "data": None}


@router.delete("/me", status_code=204)
def delete_profile(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    # Fatura é registro fiscal: conta com faturas não é apagada
    if db.query(Invoice.id).filter(Invoice.owner_id == user.id).first():
        raise ValidationError("User has invoices and cannot be deleted")

    db.query(StockMovement).filter(StockMovement.owner_id == user.id).delete(synchronize_session=False)
    db.query(Product).filter(Product.owner_id == user.id).delete(synchronize_session=False)
    db.query(Customer).filter(Customer.owner_id == user.id).delete(synchronize_session=False)
    db.delete(user)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("user deletion failed user_id=%s", user.id)
        raise PersistenceError("Could not delete user") from exc
    logger.info("user deleted user_id=%s", user.id)
    return Response(status_code=204)
