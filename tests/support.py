from __future__ import annotations

from decimal import Decimal
from typing import Iterable

from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import invoicing.models  # noqa: F401
from invoicing.core.database import Base, build_engine, build_session_factory, get_db
from invoicing.core.error_handlers import install_exception_handlers
from invoicing.deps import get_current_user
from invoicing.models.customer import Customer
from invoicing.models.product import Product
from invoicing.models.user import User
from invoicing.routers.admin import router as admin_router
from invoicing.routers.customers import router as customers_router
from invoicing.routers.invoices import router as invoices_router
from invoicing.routers.products import router as products_router
from invoicing.routers.users import router as users_router
from invoicing.services.auth import hash_password
from tests.fixtures_data import CUSTOMER, OWNER

ALL_ROUTERS = (users_router, customers_router, products_router, invoices_router, admin_router)


def memory_session_factory() -> sessionmaker:
    engine = build_engine("sqlite+pysqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    return build_session_factory(engine)


def file_session_factory(path) -> sessionmaker:
    engine = build_engine(f"sqlite+pysqlite:///{path}")
    Base.metadata.create_all(bind=engine)
    return build_session_factory(engine)


def add_user(db: Session, data: dict = OWNER, password: str = "password123") -> User:
    user = User(password_hash=hash_password(password), **data)
    db.add(user)
    db.commit()
    return user


def add_customer(db: Session, owner: User, **overrides) -> Customer:
    customer = Customer(owner_id=owner.id, **{**CUSTOMER, **overrides})
    db.add(customer)
    db.commit()
    return customer


def add_product(
    db: Session,
    owner: User,
    *,
    name: str = "Widget",
    price: str = "10.00",
    quantity: int = 5,
    category: str = "Other",
) -> Product:
    product = Product(
        owner_id=owner.id,
        name=name,
        description=f"{name} description text",
        price=Decimal(price),
        quantity=quantity,
        category=category,
    )
    db.add(product)
    db.commit()
    return product


def stock_of(db: Session, product_id: str) -> int:
    return db.query(Product.quantity).filter(Product.id == product_id).scalar()


def stock_by_id(db: Session, product_ids: Iterable[str]) -> dict[str, int]:
    return {product_id: stock_of(db, product_id) for product_id in product_ids}


def build_client(db: Session, user: User | None = None) -> TestClient:
    app = FastAPI()
    install_exception_handlers(app)
    for router in ALL_ROUTERS:
        app.include_router(router)

    app.dependency_overrides[get_db] = lambda: db
    if user is not None:
        app.dependency_overrides[get_current_user] = lambda: user
    return TestClient(app)
