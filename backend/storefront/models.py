"""SQLModel data models.

This module defines the storefront's database tables using SQLModel.
An `Order` owns its `OrderedProducts` lines and a `Product` owns its
`ProductPhoto` rows; both collections are deleted with their parent.
"""

from typing import Optional
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Index, text
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

ROLE_MEMBER = 'Member'
ROLE_MODERATOR = 'Moderator'
ROLE_ADMIN = 'Admin'
ROLES = (ROLE_MEMBER, ROLE_MODERATOR, ROLE_ADMIN)

ORDER_STATUS_BASKET = 'Basket'
ORDER_STATUS_ORDERED = 'Ordered'


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """A registered user.

    Fields:
    - `username`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `role`: one of `ROLES`; moderators and admins may use `/api/moderator`
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    role: str = Field(default=ROLE_MEMBER)
    created_at: datetime = Field(default_factory=_utcnow)


class Product(SQLModel, table=True):
    """A sellable catalog item. `name` is unique across the catalog."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, nullable=False, unique=True)
    description: Optional[str] = None
    category: Optional[str] = Field(default=None, index=True)
    sale_price: Decimal = Field(default=Decimal('0'), max_digits=10, decimal_places=2)
    created_at: datetime = Field(default_factory=_utcnow)
    photos: List['ProductPhoto'] = Relationship(
        back_populates='product',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan', 'order_by': 'ProductPhoto.id'},
    )

    @property
    def main_photo(self) -> Optional['ProductPhoto']:
        return next((p for p in self.photos if p.is_main), None)


class ProductPhoto(SQLModel, table=True):
    """An image attached to a `Product`.

    `public_id` identifies the stored file in the photo storage and is
    `None` for photos that point at an external URL.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    product_id: Optional[int] = Field(default=None, foreign_key='product.id', index=True)
    url: str
    public_id: Optional[str] = None
    is_main: bool = False
    product: Optional[Product] = Relationship(back_populates='photos')


class Order(SQLModel, table=True):
    """A customer's purchase record.

    While `status` is `Basket` the order is the user's open shopping
    basket; checkout moves it to `Ordered` and stamps `order_date`.
    """
    # at most one open basket per user
    __table_args__ = (
        Index(
            "uq_order_open_basket", "user_id", unique=True,
            sqlite_where=text("status = 'Basket'"),
            postgresql_where=text("status = 'Basket'"),
        ),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key='user.id', index=True)
    status: str = Field(default=ORDER_STATUS_BASKET, index=True)
    created_at: datetime = Field(default_factory=_utcnow)
    order_date: Optional[datetime] = None
    user: Optional[User] = Relationship()
    ordered_products: List['OrderedProducts'] = Relationship(
        back_populates='order',
        sa_relationship_kwargs={'cascade': 'all, delete-orphan', 'order_by': 'OrderedProducts.id'},
    )


class OrderedProducts(SQLModel, table=True):
    """Line item linking an `Order` to a `Product` with a quantity."""
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: Optional[int] = Field(default=None, foreign_key='order.id', index=True)
    product_id: int = Field(foreign_key='product.id', index=True)
    quantity: int = 1
    order: Optional[Order] = Relationship(back_populates='ordered_products')
    product: Optional[Product] = Relationship()
