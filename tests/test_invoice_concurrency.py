import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import update

from invoicing.core.errors import ConflictError, InsufficientStockError
from invoicing.models.invoice import INVENTORY_APPLIED, Invoice
from invoicing.models.product import Product
from invoicing.models.stock_movement import StockMovement
from invoicing.services import invoices as invoice_service
from invoicing.services.invoices import InvoiceState, InvoiceWorkflow, create_invoice
from invoicing.services.reconciliation import reconcile_pending_invoices
from tests.fixtures_data import DUE_DATE
from tests.support import add_customer, add_product, add_user, file_session_factory, stock_of

LATER = datetime.now(timezone.utc) + timedelta(hours=1)


@pytest.fixture()
def session_factory(tmp_path):
    return file_session_factory(tmp_path / "concurrency.db")


def _run_concurrently(session_factory, owner_id, payloads):
    barrier = threading.Barrier(len(payloads))
    created = []
    rejected = []
    unexpected = []
    lock = threading.Lock()

    def worker(payload):
        db = session_factory()
        try:
            barrier.wait()
            invoice = create_invoice(db, owner_id, payload)
            with lock:
                created.append(invoice.invoice_number)
        except InsufficientStockError as exc:
            with lock:
                rejected.append(exc)
        except Exception as exc:  # noqa: BLE001
            with lock:
                unexpected.append(exc)
        finally:
            db.close()

    threads = [threading.Thread(target=worker, args=(payload,)) for payload in payloads]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return created, rejected, unexpected


def _setup(session_factory, quantity):
    db = session_factory()
    owner = add_user(db)
    customer = add_customer(db, owner)
    product = add_product(db, owner, quantity=quantity)
    ids = owner.id, customer.id, product.id
    db.close()
    return ids


def _payload(customer_id, product_id, quantity=1):
    return {
        "customer": customer_id,
        "products": [{"product": product_id, "quantity": quantity}],
        "dueDate": DUE_DATE,
    }


def test_last_unit_is_sold_exactly_once(session_factory):
    owner_id, customer_id, product_id = _setup(session_factory, quantity=1)

    created, rejected, unexpected = _run_concurrently(
        session_factory, owner_id, [_payload(customer_id, product_id)] * 2
    )

    assert unexpected == []
    assert len(created) == 1
    assert len(rejected) == 1
    assert rejected[0].available == 0 or rejected[0].available == 1

    db = session_factory()
    assert stock_of(db, product_id) == 0
    assert db.query(Invoice).count() == 1
    db.close()


def test_concurrent_creations_never_oversell(session_factory):
    initial = 5
    owner_id, customer_id, product_id = _setup(session_factory, quantity=initial)
    quantities = [1, 2, 1, 3, 1, 2, 1, 1]

    created, rejected, unexpected = _run_concurrently(
        session_factory,
        owner_id,
        [_payload(customer_id, product_id, quantity) for quantity in quantities],
    )

    assert unexpected == []
    assert len(created) + len(rejected) == len(quantities)

    db = session_factory()
    invoices = db.query(Invoice).all()
    accepted = sum(line.quantity for invoice in invoices for line in invoice.lines)
    remaining = stock_of(db, product_id)
    assert remaining >= 0
    assert remaining == initial - accepted
    assert {invoice.inventory_status for invoice in invoices} <= {INVENTORY_APPLIED}
    assert -sum(m.quantity for m in db.query(StockMovement).all()) == accepted
    db.close()


def test_concurrent_creations_get_unique_numbers(session_factory):
    owner_id, customer_id, product_id = _setup(session_factory, quantity=100)

    created, rejected, unexpected = _run_concurrently(
        session_factory, owner_id, [_payload(customer_id, product_id)] * 10
    )

    assert unexpected == []
    assert rejected == []
    assert len(set(created)) == 10
    assert sorted(created) == list(range(1000, 1010))


def _sweep_before_claim(monkeypatch, session_factory, before_sweep=None, after_sweep=None):
    """Roda a reconciliação (outra sessão) entre a gravação da fatura e a baixa do estoque."""
    real_claim = invoice_service.claim_pending_invoice
    reports = []

    def claim_after_sweep(db, invoice_id):
        other = session_factory()
        try:
            if before_sweep:
                before_sweep(other)
            reports.append(reconcile_pending_invoices(other, older_than_seconds=0, now=LATER))
            if after_sweep:
                after_sweep(other)
        finally:
            other.close()
        return real_claim(db, invoice_id)

    monkeypatch.setattr(invoice_service, "claim_pending_invoice", claim_after_sweep)
    return reports


def _set_stock(product_id, quantity):
    def apply(db):
        db.execute(update(Product).where(Product.id == product_id).values(quantity=quantity))
        db.commit()

    return apply


def test_invoice_completed_by_sweep_is_not_decremented_twice(session_factory, monkeypatch):
    owner_id, customer_id, product_id = _setup(session_factory, quantity=10)
    reports = _sweep_before_claim(monkeypatch, session_factory)

    db = session_factory()
    invoice = create_invoice(db, owner_id, _payload(customer_id, product_id, quantity=3))
    db.close()

    assert reports[0].completed == [invoice.id]
    assert invoice.inventory_status == INVENTORY_APPLIED

    db = session_factory()
    assert stock_of(db, product_id) == 7
    assert db.query(StockMovement).count() == 1
    db.close()


def test_invoice_reversed_by_sweep_does_not_touch_stock(session_factory, monkeypatch):
    owner_id, customer_id, product_id = _setup(session_factory, quantity=10)
    reports = _sweep_before_claim(
        monkeypatch,
        session_factory,
        before_sweep=_set_stock(product_id, 0),
        after_sweep=_set_stock(product_id, 10),
    )

    db = session_factory()
    workflow = InvoiceWorkflow(db)
    with pytest.raises(ConflictError):
        workflow.create_invoice(owner_id, _payload(customer_id, product_id, quantity=3))
    db.close()

    assert len(reports[0].reversed) == 1
    assert workflow.state == InvoiceState.FAILED

    db = session_factory()
    assert stock_of(db, product_id) == 10
    assert db.query(Invoice).count() == 0
    assert db.query(StockMovement).count() == 0
    db.close()
