from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, func

from invoicing.core.database import Base, new_id

REASON_INVOICE = "invoice"
REASON_RESTOCK = "restock"
REASON_MANUAL = "manual"


class StockMovement(Base):
    __tablename__ = "stock_movements"

    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(32), index=True, nullable=False)
    product_id = Column(String(32), ForeignKey("products.id", ondelete="CASCADE"), index=True, nullable=False)
    # Sem FK: a movimentação sobrevive à fatura compensada
    invoice_id = Column(String(32), index=True, nullable=True)
    quantity = Column(Integer, nullable=False)  # negativo = saída
    reason = Column(String(30), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
