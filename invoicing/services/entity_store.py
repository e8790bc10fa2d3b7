from __future__ import annotations

from typing import Iterable

from sqlalchemy.orm import Session, joinedload, selectinload

from invoicing.core.errors import NotFoundError
from invoicing.models.customer import Customer
from invoicing.models.invoice import Invoice, InvoiceLine
from invoicing.models.product import Product


def owner_filter(query, model, owner_id: str):
    """Restringe a query aos registros do dono. Cross-tenant vira "não encontrado"."""
    return query.filter(model.owner_id == owner_id)


def get_customer(db: Session, owner_id: str, customer_id: str) -> Customer:
    customer = owner_filter(db.query(Customer), Customer, owner_id).filter(Customer.id == customer_id).first()
    if not customer:
        raise NotFoundError("customer", [customer_id])
    return customer


def get_product(db: Session, owner_id: str, product_id: str, *, refresh: bool = False) -> Product:
    query = owner_filter(db.query(Product), Product, owner_id).filter(Product.id == product_id)
    if refresh:
        query = query.populate_existing()
    product = query.first()
    if not product:
        raise NotFoundError("product", [product_id])
    return product


def get_products_by_ids(
    db: Session,
    owner_id: str,
    product_ids: Iterable[str],
    *,
    refresh: bool = False,
) -> dict[str, Product]:
    """Busca todos os produtos numa query só; falta qualquer um -> NotFoundError com todos os ids."""
    wanted = list(dict.fromkeys(product_ids))
    if not wanted:
        return {}

    query = owner_filter(db.query(Product), Product, owner_id).filter(Product.id.in_(wanted))
    if refresh:
        # UPDATEs atômicos não passam pelo identity map
        query = query.populate_existing()
    products = query.all()
    found = {product.id: product for product in products}
    missing = [product_id for product_id in wanted if product_id not in found]
    if missing:
        raise NotFoundError("product", missing)
    return found


def _invoice_query(db: Session, owner_id: str):
    return owner_filter(db.query(Invoice), Invoice, owner_id).options(
        joinedload(Invoice.customer),
        selectinload(Invoice.lines).joinedload(InvoiceLine.product),
    )


def get_invoice(db: Session, owner_id: str, invoice_id: str) -> Invoice:
    invoice = _invoice_query(db, owner_id).filter(Invoice.id == invoice_id).first()
    if not invoice:
        raise NotFoundError("invoice", [invoice_id])
    return invoice


def list_invoices(db: Session, owner_id: str) -> list[Invoice]:
    return _invoice_query(db, owner_id).order_by(Invoice.created_at.desc(), Invoice.invoice_number.desc()).all()
