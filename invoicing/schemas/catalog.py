from __future__ import annotations

from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, HttpUrl

ProductCategory = Literal[
    "Electronics",
    "Clothing",
    "Books",
    "Home & Garden",
    "Sports",
    "Toys",
    "Food",
    "Other",
]


class CustomerIn(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    phone: str = Field(..., min_length=10)
    address: str = Field(..., min_length=5)


class ProductCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=2, max_length=100)
    description: str = Field(..., min_length=10)
    price: Decimal = Field(..., gt=0)
    quantity: int = Field(..., ge=0)
    category: ProductCategory
    image_url: Optional[HttpUrl] = Field(default=None, alias="imageUrl")


class ProductUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, min_length=10)
    price: Optional[Decimal] = Field(default=None, gt=0)
    quantity: Optional[int] = Field(default=None, ge=0)
    category: Optional[ProductCategory] = None
    image_url: Optional[HttpUrl] = Field(default=None, alias="imageUrl")


class StockAdjustment(BaseModel):
    delta: int
    reason: Literal["restock", "manual"] = "restock"
