"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable, validate controller input
and map ORM rows to the DTOs returned to clients.
"""

from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

BASKET_QUANTITY_CHOICES = list(range(10))


class RegisterIn(BaseModel):
    """Payload for account registration/login endpoints."""
    username: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=1)


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str
    username: str
    role: str


class ProductIn(BaseModel):
    """Product fields submitted by moderators as form data."""
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    category: Optional[str] = None
    sale_price: Decimal = Field(ge=0, max_digits=10, decimal_places=2)


class ProductPhotoDto(BaseModel):
    """A product photo as returned to clients."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    url: str
    is_main: bool


class ProductDto(BaseModel):
    """A product with its photos and the URL of its main photo."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    sale_price: Decimal
    photo_url: Optional[str] = None
    photos: List[ProductPhotoDto] = []


class OrderedProductDto(BaseModel):
    """One basket/order line with the product details a table needs."""
    id: int
    product_id: int
    product_name: str
    photo_url: Optional[str] = None
    sale_price: Decimal
    quantity: int


class AdminOrderDto(BaseModel):
    """Order summary shown in the moderator area."""
    id: int
    user_id: int
    username: Optional[str] = None
    status: str
    created_at: datetime
    order_date: Optional[datetime] = None
    ordered_products: List[OrderedProductDto] = []
    total: Decimal


class BasketItemIn(BaseModel):
    """Request to put `quantity` units of a product in the basket."""
    product_id: int
    quantity: int = Field(default=1, ge=1, le=9)


class BasketQuantityIn(BaseModel):
    """New quantity for a basket line; 0 removes the line."""
    quantity: int = Field(ge=0, le=9)


class BasketOut(BaseModel):
    """Snapshot of a user's basket, emitted on every basket change."""
    id: int
    user_id: int
    status: str
    ordered_products: List[OrderedProductDto] = []


class BasketRowOut(BaseModel):
    """A rendered row of the side basket table."""
    ordered_product_id: int
    photo: Optional[str] = None
    name: str
    quantity: int
    price: Decimal


class SideBasketListOut(BaseModel):
    """Side basket table: rows, column order and totals."""
    displayed_columns: List[str]
    quantity_choices: List[int] = BASKET_QUANTITY_CHOICES
    rows: List[BasketRowOut] = []
    number_of_items: int = 0
    total_cost: Decimal = Decimal('0')
