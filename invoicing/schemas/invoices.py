from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

InvoiceStatus = Literal["pending", "paid", "overdue"]


class InvoiceLineIn(BaseModel):
    # Preço vem sempre do produto; "price" no payload é rejeitado
    model_config = ConfigDict(extra="forbid")

    product: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)


class InvoiceCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer: str = Field(..., min_length=1)
    products: list[InvoiceLineIn] = Field(..., min_length=1)
    due_date: date = Field(..., alias="dueDate")
    status: InvoiceStatus = "pending"
    tax_rate: Optional[Decimal] = Field(default=None, alias="taxRate", ge=0, le=100)


class InvoiceUpdate(BaseModel):
    """Patch direto: não recalcula totais nem mexe no estoque."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    due_date: Optional[date] = Field(default=None, alias="dueDate")
    status: Optional[InvoiceStatus] = None


class PaymentStatusUpdate(BaseModel):
    status: InvoiceStatus
