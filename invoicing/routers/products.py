import logging
import math

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy import desc, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from invoicing.core.database import get_db
from invoicing.core.errors import PersistenceError
from invoicing.deps import get_current_user
from invoicing.models.product import Product
from invoicing.models.stock_movement import REASON_MANUAL
from invoicing.models.user import User
from invoicing.routers.serializers import product_to_dict
from invoicing.schemas.catalog import ProductCreate, ProductUpdate, StockAdjustment
from invoicing.services.entity_store import get_product, owner_filter
from invoicing.services.inventory import adjust_stock, set_stock

router = APIRouter(prefix="/api/products", tags=["products"])
logger = logging.getLogger(__name__)


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("product %s failed", action)
        raise PersistenceError(f"Error {action} product") from exc


@router.post("", status_code=201)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    product = Product(
        owner_id=user.id,
        name=payload.name.strip(),
        description=payload.description.strip(),
        price=payload.price,
        quantity=payload.quantity,
        category=payload.category,
        image_url=str(payload.image_url) if payload.image_url else None,
    )
    db.add(product)
    _commit(db, "creating")
    db.refresh(product)
    return {"status": "success", "data": product_to_dict(product)}


@router.get("")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    base = owner_filter(db.query(Product), Product, user.id)
    total = base.with_entities(func.count(Product.id)).scalar() or 0
    products = (
        base.order_by(desc(Product.created_at), Product.name)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "status": "success",
        "results": len(products),
        "total": total,
        "totalPages": math.ceil(total / limit),
        "currentPage": page,
        "data": [product_to_dict(p) for p in products],
    }


@router.get("/search")
def search_products(
    q: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    pattern = f"%{q.strip().lower()}%"
    products = (
        owner_filter(db.query(Product), Product, user.id)
        .filter(
            or_(
                func.lower(Product.name).like(pattern),
                func.lower(Product.description).like(pattern),
                func.lower(Product.category).like(pattern),
            )
        )
        .order_by(Product.name)
        .all()
    )
    return {
        "status": "success",
        "results": len(products),
        "data": [product_to_dict(p) for p in products],
    }


@router.get("/{product_id}")
def get_product_endpoint(
    product_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return {"status": "success", "data": product_to_dict(get_product(db, user.id, product_id))}


@router.patch("/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    product = get_product(db, user.id, product_id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)

    quantity = changes.pop("quantity", None)
    if "image_url" in changes:
        changes["image_url"] = str(changes["image_url"])
    for field, value in changes.items():
        setattr(product, field, value)

    if quantity is not None:
        # estoque só por UPDATE atômico
        db.flush()
        set_stock(db, user.id, product.id, quantity, REASON_MANUAL)

    _commit(db, "updating")
    product = get_product(db, user.id, product_id, refresh=True)
    return {"status": "success", "data": product_to_dict(product)}


@router.post("/{product_id}/stock")
def adjust_product_stock(
    product_id: str,
    payload: StockAdjustment,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    adjust_stock(db, user.id, product_id, payload.delta, payload.reason)
    _commit(db, "adjusting stock of")
    product = get_product(db, user.id, product_id, refresh=True)
    logger.info("product stock adjusted product_id=%s delta=%s reason=%s", product_id, payload.delta, payload.reason)
    return {"status": "success", "data": product_to_dict(product)}


@router.delete("/{product_id}", status_code=204)
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    product = get_product(db, user.id, product_id)
    db.delete(product)
    _commit(db, "deleting")
    return Response(status_code=204)
