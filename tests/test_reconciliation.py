from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlalchemy.exc import OperationalError

from invoicing.models.invoice import INVENTORY_APPLIED, INVENTORY_PENDING, Invoice, InvoiceLine
from invoicing.models.product import Product
from invoicing.models.stock_movement import StockMovement
from invoicing.services import reconciliation
from invoicing.services.invoices import claim_pending_invoice, discard_invoice
from invoicing.services.reconciliation import reconcile_pending_invoices
from invoicing.services.sequence import SequenceAllocator
from tests.support import add_customer, add_product, add_user, memory_session_factory, stock_of

LATER = datetime.now(timezone.utc) + timedelta(hours=1)


@pytest.fixture()
def db():
    session = memory_session_factory()()
    yield session
    session.close()


def _pending_invoice(db, owner, customer, product, quantity):
    """Fatura gravada cuja baixa de estoque nunca aconteceu (processo caiu no meio)."""
    invoice = Invoice(
        owner_id=owner.id,
        invoice_number=SequenceAllocator(db).next_invoice_number(),
        customer_id=customer.id,
        subtotal=Decimal("10"),
        tax_rate=Decimal("13"),
        tax_amount=Decimal("1.3"),
        total=Decimal("11.3"),
        status="pending",
        due_date=datetime(2030, 1, 31).date(),
        inventory_status=INVENTORY_PENDING,
        lines=[
            InvoiceLine(
                position=0,
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_price=Decimal("10"),
            )
        ],
    )
    db.add(invoice)
    db.commit()
    return invoice.id


def test_pending_invoice_with_stock_is_completed(db):
    owner = add_user(db)
    customer = add_customer(db, owner)
    widget = add_product(db, owner, quantity=5)
    invoice_id = _pending_invoice(db, owner, customer, widget, 2)

    report = reconcile_pending_invoices(db, older_than_seconds=0, now=LATER)

    assert report.to_dict() == {"completed": [invoice_id], "reversed": [], "failed": []}
    assert db.get(Invoice, invoice_id).inventory_status == INVENTORY_APPLIED
    assert stock_of(db, widget.id) == 3


def test_pending_invoice_without_stock_is_reversed(db):
    owner = add_user(db)
    customer = add_customer(db, owner)
    widget = add_product(db, owner, quantity=1)
    invoice_id = _pending_invoice(db, owner, customer, widget, 2)

    report = reconcile_pending_invoices(db, older_than_seconds=0, now=LATER)

    assert report.reversed == [invoice_id]
    assert db.get(Invoice, invoice_id) is None
    assert stock_of(db, widget.id) == 1


def test_pending_invoice_for_deleted_product_is_reversed(db):
    owner = add_user(db)
    customer = add_customer(db, owner)
    widget = add_product(db, owner, quantity=5)
    invoice_id = _pending_invoice(db, owner, customer, widget, 1)
    db.delete(db.get(Product, widget.id))
    db.commit()

    report = reconcile_pending_invoices(db, older_than_seconds=0, now=LATER)

    assert report.reversed == [invoice_id]


def test_recent_pending_invoices_are_left_alone(db):
    owner = add_user(db)
    customer = add_customer(db, owner)
    widget = add_product(db, owner, quantity=5)
    invoice_id = _pending_invoice(db, owner, customer, widget, 1)

    report = reconcile_pending_invoices(db, older_than_seconds=3600, now=datetime.now(timezone.utc))

    assert report.to_dict() == {"completed": [], "reversed": [], "failed": []}
    assert db.get(Invoice, invoice_id).inventory_status == INVENTORY_PENDING
    assert stock_of(db, widget.id) == 5


def test_applied_invoices_are_ignored(db):
    owner = add_user(db)
    customer = add_customer(db, owner)
    widget = add_product(db, owner, quantity=5)
    invoice_id = _pending_invoice(db, owner, customer, widget, 1)
    db.execute(update(Invoice).where(Invoice.id == invoice_id).values(inventory_status=INVENTORY_APPLIED))
    db.commit()

    report = reconcile_pending_invoices(db, older_than_seconds=0, now=LATER)

    assert report.completed == []
    assert stock_of(db, widget.id) == 5


def test_database_errors_are_reported_as_failed(db, monkeypatch):
    owner = add_user(db)
    customer = add_customer(db, owner)
    widget = add_product(db, owner, quantity=5)
    invoice_id = _pending_invoice(db, owner, customer, widget, 1)

    def broken_reserve(*_args, **_kwargs):
        raise OperationalError("UPDATE products", {}, Exception("database is locked"))

    monkeypatch.setattr(reconciliation, "reserve_stock", broken_reserve)

    report = reconcile_pending_invoices(db, older_than_seconds=0, now=LATER)

    assert report.failed == [invoice_id]
    assert db.get(Invoice, invoice_id).inventory_status == INVENTORY_PENDING


def test_invoice_claimed_after_listing_is_skipped(db, monkeypatch):
    owner = add_user(db)
    customer = add_customer(db, owner)
    widget = add_product(db, owner, quantity=5)
    invoice_id = _pending_invoice(db, owner, customer, widget, 2)
    real_find = reconciliation.find_stale_pending_invoices

    def find_then_workflow_finishes(session, cutoff):
        candidates = real_find(session, cutoff)
        # A criação termina a baixa enquanto a varredura ainda não chegou nela
        session.execute(
            update(Invoice).where(Invoice.id == invoice_id).values(inventory_status=INVENTORY_APPLIED)
        )
        session.commit()
        return candidates

    monkeypatch.setattr(reconciliation, "find_stale_pending_invoices", find_then_workflow_finishes)

    report = reconcile_pending_invoices(db, older_than_seconds=0, now=LATER)

    assert report.to_dict() == {"completed": [], "reversed": [], "failed": []}
    assert stock_of(db, widget.id) == 5
    assert db.query(StockMovement).count() == 0


def test_claim_is_granted_only_once(db):
    owner = add_user(db)
    customer = add_customer(db, owner)
    widget = add_product(db, owner, quantity=5)
    invoice_id = _pending_invoice(db, owner, customer, widget, 1)

    assert claim_pending_invoice(db, invoice_id) is True
    assert claim_pending_invoice(db, invoice_id) is False
    db.commit()
    assert claim_pending_invoice(db, invoice_id) is False


def test_discard_keeps_invoices_that_are_no_longer_pending(db):
    owner = add_user(db)
    customer = add_customer(db, owner)
    widget = add_product(db, owner, quantity=5)
    invoice_id = _pending_invoice(db, owner, customer, widget, 1)
    claim_pending_invoice(db, invoice_id)
    db.commit()

    assert discard_invoice(db, invoice_id) is False
    db.commit()
    assert db.get(Invoice, invoice_id) is not None
