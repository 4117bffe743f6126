# backend/schemas/product.py
from datetime import datetime
from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List, Literal


# Base configuration for ORM compatibility
class ORMBase(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Shared base attributes for product entities
class ProductBase(ORMBase):
    name: str
    sku: str
    description: Optional[str] = None
    brand: Optional[str] = None
    category_id: Optional[int] = None
    price: float = Field(ge=0)
    discount_price: Optional[float] = Field(default=None, ge=0)
    image_url: Optional[str] = None


# Schema for creating a new product
class ProductCreate(ProductBase):
    stock: int = Field(default=0, ge=0)
    active: bool = True

    @model_validator(mode="after")
    def _discount_not_above_price(self):
        if self.discount_price is not None and self.discount_price > self.price:
            raise ValueError("discount_price must not exceed price")
        return self


# Schema for partial product updates
class ProductEditRequest(ORMBase):
    """Schema for PATCH requests - all fields optional."""
    name: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    brand: Optional[str] = None
    category_id: Optional[int] = None
    price: Optional[float] = Field(None, ge=0)
    discount_price: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    active: Optional[bool] = None
    image_url: Optional[str] = None

    @model_validator(mode="after")
    def _required_fields_not_null(self):
        # Omit a field to keep it; null is only meaningful for nullable columns
        for field in ("name", "sku", "price", "stock", "active"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be null")
        return self


# Admin stock correction
class StockUpdate(BaseModel):
    quantity: int = Field(ge=0)
    operation: Literal["set", "add", "subtract"] = "set"
    reason: Optional[str] = None


# Full product representation including ID
class ProductOut(ProductBase):
    id: int
    stock: int
    sold: int
    active: bool
    effective_price: float
    created_at: Optional[datetime] = None


# Paginated response for product listings
class ProductListPage(ORMBase):
    items: List[ProductOut]
    total: int
    page: int
    page_size: int


class CategoryCreate(BaseModel):
    name: str = Field(min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None


class CategoryOut(ORMBase):
    id: int
    name: str
    slug: str
    description: Optional[str] = None
    active: bool
