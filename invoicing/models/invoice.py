from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import relationship

from invoicing.core.database import Base, new_id

INVENTORY_PENDING = "pending"
INVENTORY_APPLIED = "applied"


class Invoice(Base):
    __tablename__ = "invoices"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(32), ForeignKey("users.id"), index=True, nullable=False)

    # Numeração global, alocada pelo SequenceAllocator
    invoice_number = Column(Integer, unique=True, index=True, nullable=False)
    customer_id = Column(String(32), ForeignKey("customers.id"), index=True, nullable=False)

    # Snapshot calculado pelo pricing na criação
    subtotal = Column(Numeric(18, 4), nullable=False)
    tax_rate = Column(Numeric(7, 4), nullable=False)
    tax_amount = Column(Numeric(18, 4), nullable=False)
    total = Column(Numeric(18, 4), nullable=False)

    status = Column(String(20), default="pending", nullable=False)  # pending / paid / overdue
    due_date = Column(Date, nullable=False)

    # pending até o estoque ser baixado; a reconciliação varre os que ficaram presos
    inventory_status = Column(String(20), default=INVENTORY_PENDING, index=True, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    customer = relationship("Customer", back_populates="invoices")
    lines = relationship(
        "InvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.position",
    )

    @property
    def formatted_invoice_number(self) -> str:
        return f"INV-{self.invoice_number:04d}"


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"
    __table_args__ = (CheckConstraint("quantity >= 1", name="ck_invoice_lines_quantity_positive"),)

    id = Column(String(32), primary_key=True, default=new_id)
    invoice_id = Column(String(32), ForeignKey("invoices.id", ondelete="CASCADE"), index=True, nullable=False)
    position = Column(Integer, nullable=False, default=0)
    # Sem FK: o produto pode ser apagado depois, a linha guarda nome e preço
    product_id = Column(String(32), index=True, nullable=False)
    product_name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(18, 4), nullable=False)

    invoice = relationship("Invoice", back_populates="lines")
    product = relationship(
        "Product",
        primaryjoin="foreign(InvoiceLine.product_id) == Product.id",
        viewonly=True,
    )
