"""Invoice use cases.

``InvoiceWorkflow.create_invoice`` percorre os estados

    validating -> resolving_references -> checking_stock -> pricing
    -> numbering -> persisting -> adjusting_inventory -> completed

e qualquer erro leva a ``failed``. A fatura é gravada (commit) com
``inventory_status = pending`` e o estoque é baixado numa segunda transação; se
essa baixa falhar a fatura é apagada (compensação). O que escapar disso fica
``pending`` e é resolvido pela reconciliação (services/reconciliation.py).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Union

import pydantic
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from invoicing.core.config import INVOICE_NUMBER_MAX_ATTEMPTS
from invoicing.core.errors import ConflictError, InvoicingError, PersistenceError, ValidationError
from invoicing.core.request_context import set_request_context
from invoicing.models.invoice import INVENTORY_APPLIED, INVENTORY_PENDING, Invoice, InvoiceLine
from invoicing.schemas.invoices import InvoiceCreate, InvoiceUpdate, PaymentStatusUpdate
from invoicing.services.entity_store import get_customer, get_invoice, get_products_by_ids
from invoicing.services.inventory import StockRequest, aggregate_quantities, ensure_stock_available, reserve_stock
from invoicing.services.pricing import LineItem, Totals, compute_totals, resolve_tax_rate
from invoicing.services.sequence import SequenceAllocator

logger = logging.getLogger(__name__)


class InvoiceState(str, Enum):
    VALIDATING = "validating"
    RESOLVING_REFERENCES = "resolving_references"
    CHECKING_STOCK = "checking_stock"
    PRICING = "pricing"
    NUMBERING = "numbering"
    PERSISTING = "persisting"
    ADJUSTING_INVENTORY = "adjusting_inventory"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class PricedLine:
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal


def stock_requests_for(invoice: Invoice) -> list[StockRequest]:
    return [StockRequest(line.product_id, line.quantity) for line in invoice.lines]


def claim_pending_invoice(db: Session, invoice_id: str) -> bool:
    """Passa a fatura de pending para applied na transação corrente.

    Só quem recebe ``True`` pode baixar o estoque da fatura; workflow e
    reconciliação disputam a mesma linha e o UPDATE condicional escolhe um.
    """
    claimed = (
        db.query(Invoice)
        .filter(Invoice.id == invoice_id, Invoice.inventory_status == INVENTORY_PENDING)
        .update({Invoice.inventory_status: INVENTORY_APPLIED}, synchronize_session=False)
    )
    return claimed == 1


def discard_invoice(db: Session, invoice_id: str) -> bool:
    """Apaga a fatura (e linhas) se ainda estiver pending. Não faz commit."""
    invoice = (
        db.query(Invoice)
        .filter(Invoice.id == invoice_id, Invoice.inventory_status == INVENTORY_PENDING)
        .with_for_update()
        .first()
    )
    if not invoice:
        return False
    db.delete(invoice)
    db.flush()
    return True


def _is_invoice_number_conflict(exc: IntegrityError) -> bool:
    return "invoice_number" in str(getattr(exc, "orig", exc))


class InvoiceWorkflow:
    def __init__(self, db: Session, *, max_number_attempts: int = INVOICE_NUMBER_MAX_ATTEMPTS):
        self.db = db
        self.max_number_attempts = max_number_attempts
        self.state = InvoiceState.VALIDATING

    def _transition(self, state: InvoiceState) -> None:
        self.state = state
        set_request_context(invoice_state=state.value)
        logger.debug("invoice workflow state=%s", state.value)

    def create_invoice(self, owner_id: str, payload: Union[InvoiceCreate, Mapping[str, Any]]) -> Invoice:
        try:
            self._transition(InvoiceState.VALIDATING)
            request = self._validate(payload)

            self._transition(InvoiceState.RESOLVING_REFERENCES)
            customer = get_customer(self.db, owner_id, request.customer)
            requested = aggregate_quantities(StockRequest(line.product, line.quantity) for line in request.products)
            products = get_products_by_ids(self.db, owner_id, requested.keys())

            # Checagem rápida; a garantia real é o UPDATE condicional em reserve_stock
            self._transition(InvoiceState.CHECKING_STOCK)
            ensure_stock_available(products, requested)

            self._transition(InvoiceState.PRICING)
            priced_lines = [
                PricedLine(
                    product_id=line.product,
                    product_name=products[line.product].name,
                    quantity=line.quantity,
                    unit_price=Decimal(products[line.product].price),
                )
                for line in request.products
            ]
            tax_rate = resolve_tax_rate(request.tax_rate)
            totals = compute_totals(
                [LineItem(unit_price=line.unit_price, quantity=line.quantity) for line in priced_lines],
                tax_rate,
            )

            invoice_id = self._number_and_persist(owner_id, customer.id, request, priced_lines, totals, tax_rate)

            self._transition(InvoiceState.ADJUSTING_INVENTORY)
            self._adjust_inventory(owner_id, invoice_id, priced_lines)
            invoice = get_invoice(self.db, owner_id, invoice_id)
        except InvoicingError as exc:
            self._fail(exc)
            raise
        except SQLAlchemyError as exc:
            self.db.rollback()
            error = PersistenceError("Could not create invoice")
            self._fail(error)
            raise error from exc

        self._transition(InvoiceState.COMPLETED)
        logger.info(
            "invoice created",
            extra={"invoice_id": invoice.id, "invoice_number": invoice.invoice_number},
        )
        return invoice

    def _validate(self, payload: Union[InvoiceCreate, Mapping[str, Any]]) -> InvoiceCreate:
        if isinstance(payload, InvoiceCreate):
            return payload
        try:
            return InvoiceCreate.model_validate(payload)
        except pydantic.ValidationError as exc:
            errors = exc.errors(include_url=False, include_context=False, include_input=False)
            field = ".".join(str(part) for part in errors[0].get("loc", ()))
            raise ValidationError(f"{field}: {errors[0].get('msg')}", details={"errors": errors}) from exc

    def _number_and_persist(
        self,
        owner_id: str,
        customer_id: str,
        request: InvoiceCreate,
        priced_lines: list[PricedLine],
        totals: Totals,
        tax_rate: Decimal,
    ) -> str:
        allocator = SequenceAllocator(self.db)
        for attempt in range(1, self.max_number_attempts + 1):
            self._transition(InvoiceState.NUMBERING)
            number = allocator.next_invoice_number()

            self._transition(InvoiceState.PERSISTING)
            invoice = Invoice(
                owner_id=owner_id,
                invoice_number=number,
                customer_id=customer_id,
                subtotal=totals.subtotal,
                tax_rate=tax_rate,
                tax_amount=totals.tax_amount,
                total=totals.total,
                status=request.status,
                due_date=request.due_date,
                inventory_status=INVENTORY_PENDING,
                lines=[
                    InvoiceLine(
                        position=position,
                        product_id=line.product_id,
                        product_name=line.product_name,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                    )
                    for position, line in enumerate(priced_lines)
                ],
            )
            self.db.add(invoice)
            try:
                self.db.flush()
                invoice_id = invoice.id
                self.db.commit()
                return invoice_id
            except IntegrityError as exc:
                self.db.rollback()
                if not _is_invoice_number_conflict(exc):
                    raise
                logger.warning(
                    "invoice number conflict number=%s attempt=%s/%s",
                    number,
                    attempt,
                    self.max_number_attempts,
                )
                allocator.resync()

        raise ConflictError(
            "Could not allocate a unique invoice number, please retry",
            details={"attempts": self.max_number_attempts},
        )

    def _adjust_inventory(self, owner_id: str, invoice_id: str, priced_lines: list[PricedLine]) -> None:
        if not claim_pending_invoice(self.db, invoice_id):
            self.db.rollback()
            self._resolved_elsewhere(invoice_id)
            return
        try:
            reserve_stock(
                self.db,
                owner_id,
                [StockRequest(line.product_id, line.quantity) for line in priced_lines],
                invoice_id=invoice_id,
            )
            self.db.commit()
        except (InvoicingError, SQLAlchemyError) as exc:
            self.db.rollback()
            self._compensate(invoice_id, exc)
            raise

    def _resolved_elsewhere(self, invoice_id: str) -> None:
        """A reconciliação pegou a fatura antes: ou baixou o estoque, ou desfez."""
        if self.db.query(Invoice.id).filter(Invoice.id == invoice_id).first() is not None:
            logger.info("inventory already applied by reconciliation invoice_id=%s", invoice_id)
            return
        raise ConflictError(
            "Invoice was reversed before its stock could be reserved, please retry",
            details={"invoice_id": invoice_id},
        )

    def _compensate(self, invoice_id: str, cause: Exception) -> None:
        logger.warning(
            "inventory adjustment failed, removing invoice invoice_id=%s cause=%s",
            invoice_id,
            type(cause).__name__,
        )
        try:
            if not discard_invoice(self.db, invoice_id):
                logger.warning("invoice no longer pending, nothing to remove invoice_id=%s", invoice_id)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            # Fica pending; a reconciliação resolve
            logger.exception("invoice compensation failed invoice_id=%s", invoice_id)

    def _fail(self, exc: InvoicingError) -> None:
        failed_at = self.state
        self._transition(InvoiceState.FAILED)
        log = logger.error if exc.status_code >= 500 else logger.info
        log("invoice creation failed at=%s kind=%s reason=%s", failed_at.value, exc.kind, exc.message)


def create_invoice(db: Session, owner_id: str, payload: Union[InvoiceCreate, Mapping[str, Any]]) -> Invoice:
    return InvoiceWorkflow(db).create_invoice(owner_id, payload)


def update_invoice(db: Session, owner_id: str, invoice_id: str, payload: InvoiceUpdate) -> Invoice:
    invoice = get_invoice(db, owner_id, invoice_id)
    changes = payload.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("No updatable fields provided (dueDate, status)")
    if changes.get("due_date", invoice.due_date) is None or changes.get("status", invoice.status) is None:
        raise ValidationError("dueDate and status cannot be null")

    for field, value in changes.items():
        setattr(invoice, field, value)
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError("Could not update invoice") from exc
    return get_invoice(db, owner_id, invoice_id)


def update_payment_status(db: Session, owner_id: str, invoice_id: str, payload: PaymentStatusUpdate) -> Invoice:
    invoice = get_invoice(db, owner_id, invoice_id)
    previous = invoice.status
    invoice.status = payload.status
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError("Could not update payment status") from exc
    logger.info("invoice payment status changed invoice_id=%s from=%s to=%s", invoice_id, previous, payload.status)
    return get_invoice(db, owner_id, invoice_id)


def delete_invoice(db: Session, owner_id: str, invoice_id: str) -> None:
    """Remove a fatura. O estoque baixado não volta (mesmo comportamento de sempre)."""
    invoice = get_invoice(db, owner_id, invoice_id)
    try:
        db.delete(invoice)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError("Could not delete invoice") from exc
    logger.info("invoice deleted invoice_id=%s", invoice_id)
