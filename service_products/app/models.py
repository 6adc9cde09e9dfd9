"""
Product data models for the Products Service.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class ProductDraft(BaseModel):
    """Client-supplied product fields for create and full-record update."""

    model_config = ConfigDict(extra="ignore")

    name: str = Field(..., min_length=1, max_length=255, description="Product name")
    description: Optional[str] = Field(None, description="Free-text description")
    price: float = Field(..., ge=0, description="Unit price")
    stock: int = Field(0, ge=0, description="Units in stock")
    category: Optional[str] = Field(None, max_length=100, description="Category")
    image_url: Optional[str] = Field(None, max_length=500, description="Image URL")


class Product(ProductDraft):
    """A product as held by the store. ``id`` and timestamps are store-assigned."""

    model_config = ConfigDict(from_attributes=True, extra="ignore")

    id: int
    created_at: datetime
    updated_at: datetime


ProductList = TypeAdapter(List[Product])

T = TypeVar("T")


@dataclass(frozen=True)
class Fetched(Generic[T]):
    """A repository read result, tagged with where it was served from."""

    value: T
    from_cache: bool = False
