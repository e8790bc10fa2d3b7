"""Stock mutations.

``Product.quantity`` só muda por aqui, sempre com UPDATE condicional atômico
(nunca lê-modifica-grava). Cada mudança deixa uma ``StockMovement``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from sqlalchemy import update
from sqlalchemy.orm import Session

from invoicing.core.errors import InsufficientStockError, NotFoundError, ValidationError
from invoicing.models.product import Product
from invoicing.models.stock_movement import REASON_INVOICE, StockMovement
from invoicing.services.entity_store import get_product, get_products_by_ids

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StockRequest:
    product_id: str
    quantity: int


def aggregate_quantities(items: Iterable[StockRequest]) -> dict[str, int]:
    """Soma linhas repetidas do mesmo produto, mantendo a ordem de chegada."""
    totals: dict[str, int] = {}
    for item in items:
        if item.quantity < 1:
            raise ValidationError("Quantity must be at least 1", details={"product_id": item.product_id})
        totals[item.product_id] = totals.get(item.product_id, 0) + item.quantity
    return totals


def ensure_stock_available(products: Mapping[str, Product], requested: Mapping[str, int]) -> None:
    for product_id, quantity in requested.items():
        product = products[product_id]
        if product.quantity < quantity:
            raise InsufficientStockError(product.id, product.name, product.quantity, quantity)


def _current_quantity(db: Session, owner_id: str, product_id: str) -> int | None:
    return (
        db.query(Product.quantity)
        .filter(Product.id == product_id, Product.owner_id == owner_id)
        .scalar()
    )


def _record_movement(
    db: Session,
    *,
    owner_id: str,
    product_id: str,
    quantity: int,
    reason: str,
    invoice_id: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        owner_id=owner_id,
        product_id=product_id,
        invoice_id=invoice_id,
        quantity=quantity,
        reason=reason,
    )
    db.add(movement)
    return movement


def reserve_stock(
    db: Session,
    owner_id: str,
    items: Iterable[StockRequest],
    invoice_id: str | None = None,
) -> list[StockMovement]:
    """Baixa o estoque de todas as linhas ou de nenhuma.

    Primeiro valida tudo (produto existe e tem saldo), depois aplica um UPDATE
    condicional por produto. Se algum UPDATE não afetar linha (alguém levou o
    estoque entre a validação e a escrita) o savepoint desfaz o lote inteiro.
    Não faz commit.
    """
    requested = aggregate_quantities(items)
    if not requested:
        return []

    movements: list[StockMovement] = []
    with db.begin_nested():
        products = get_products_by_ids(db, owner_id, requested.keys(), refresh=True)
        ensure_stock_available(products, requested)

        for product_id, quantity in requested.items():
            result = db.execute(
                update(Product)
                .where(
                    Product.id == product_id,
                    Product.owner_id == owner_id,
                    Product.quantity >= quantity,
                )
                .values(quantity=Product.quantity - quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                available = _current_quantity(db, owner_id, product_id)
                logger.warning(
                    "stock decrement rejected product_id=%s requested=%s available=%s",
                    product_id,
                    quantity,
                    available,
                )
                raise InsufficientStockError(product_id, products[product_id].name, available or 0, quantity)

            movements.append(
                _record_movement(
                    db,
                    owner_id=owner_id,
                    product_id=product_id,
                    quantity=-quantity,
                    reason=REASON_INVOICE,
                    invoice_id=invoice_id,
                )
            )

    for product in products.values():
        db.expire(product)
    logger.info("stock reserved invoice_id=%s products=%s", invoice_id, len(requested))
    return movements


def adjust_stock(db: Session, owner_id: str, product_id: str, delta: int, reason: str) -> StockMovement:
    """Entrada/correção relativa; nunca deixa o saldo negativo. Não faz commit."""
    if delta == 0:
        raise ValidationError("Stock adjustment cannot be zero", details={"field": "delta"})

    result = db.execute(
        update(Product)
        .where(
            Product.id == product_id,
            Product.owner_id == owner_id,
            Product.quantity + delta >= 0,
        )
        .values(quantity=Product.quantity + delta)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        product = get_product(db, owner_id, product_id, refresh=True)
        raise InsufficientStockError(product.id, product.name, product.quantity, -delta)

    return _record_movement(db, owner_id=owner_id, product_id=product_id, quantity=delta, reason=reason)


def set_stock(db: Session, owner_id: str, product_id: str, quantity: int, reason: str) -> StockMovement | None:
    """Grava saldo absoluto (edição do produto). Não faz commit."""
    if quantity < 0:
        raise ValidationError("Quantity cannot be negative", details={"field": "quantity"})

    previous = (
        db.query(Product.quantity)
        .filter(Product.id == product_id, Product.owner_id == owner_id)
        .with_for_update()
        .scalar()
    )
    if previous is None:
        raise NotFoundError("product", [product_id])

    db.execute(
        update(Product)
        .where(Product.id == product_id, Product.owner_id == owner_id)
        .values(quantity=quantity)
        .execution_options(synchronize_session=False)
    )
    if quantity == previous:
        return None
    return _record_movement(
        db,
        owner_id=owner_id,
        product_id=product_id,
        quantity=quantity - previous,
        reason=reason,
    )
