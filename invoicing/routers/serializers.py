from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from invoicing.models.customer import Customer
from invoicing.models.invoice import Invoice, InvoiceLine
from invoicing.models.product import Product
from invoicing.models.user import DEFAULT_BUSINESS_INFO, User

CENT = Decimal("0.01")


def money(value: Optional[Decimal]) -> Optional[float]:
    # Arredondamento só na apresentação
    if value is None:
        return None
    return float(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def rate(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def customer_to_dict(c: Customer) -> Dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "email": c.email,
        "phone": c.phone,
        "address": c.address,
        "createdAt": _iso(c.created_at),
        "updatedAt": _iso(c.updated_at),
    }


def product_to_dict(p: Product) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "description": p.description,
        "price": money(p.price),
        "quantity": p.quantity,
        "category": p.category,
        "imageUrl": p.image_url,
        "createdAt": _iso(p.created_at),
        "updatedAt": _iso(p.updated_at),
    }


def _line_to_dict(line: InvoiceLine) -> Dict[str, Any]:
    return {
        "product": product_to_dict(line.product) if line.product is not None else None,
        "productId": line.product_id,
        "productName": line.product_name,
        "quantity": line.quantity,
        "price": money(line.unit_price),
        "lineTotal": money(line.unit_price * line.quantity),
    }


def invoice_to_dict(invoice: Invoice) -> Dict[str, Any]:
    return {
        "id": invoice.id,
        "invoiceNumber": invoice.invoice_number,
        "formattedInvoiceNumber": invoice.formatted_invoice_number,
        "customer": customer_to_dict(invoice.customer) if invoice.customer is not None else None,
        "products": [_line_to_dict(line) for line in invoice.lines],
        "subtotal": money(invoice.subtotal),
        "taxRate": rate(invoice.tax_rate),
        "taxAmount": money(invoice.tax_amount),
        "total": money(invoice.total),
        "status": invoice.status,
        "dueDate": _iso(invoice.due_date),
        "inventoryStatus": invoice.inventory_status,
        "createdAt": _iso(invoice.created_at),
        "updatedAt": _iso(invoice.updated_at),
    }


def user_to_dict(u: User) -> Dict[str, Any]:
    return {
        "id": u.id,
        "firstName": u.first_name,
        "lastName": u.last_name,
        "email": u.email,
        "role": u.role,
        "isActive": u.is_active,
        "businessInfo": {**DEFAULT_BUSINESS_INFO, **(u.business_info or {})},
        "createdAt": _iso(u.created_at),
    }
