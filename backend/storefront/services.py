"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
the unit of work and the photo storage. Services are intentionally thin:
each operation is a lookup, a rule check, a mutation and a commit.
Business-rule violations and failed commits raise `ValueError` with a
client-facing message; missing records raise `NotFoundError`.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from passlib.context import CryptContext
import jwt
from typing import List, Optional
from . import models
from .basket import BasketChangeNotifier
from .config import settings
from .repositories import UnitOfWork
from .schemas import (
    AdminOrderDto,
    BasketOut,
    OrderedProductDto,
    ProductDto,
    ProductIn,
    ProductPhotoDto,
)
from .utils.photo_storage import PhotoService

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_SECRET = settings.JWT_SECRET
JWT_ALGORITHM = settings.JWT_ALGORITHM
JWT_EXPIRE_HOURS = settings.JWT_EXPIRE_HOURS

logger = logging.getLogger("storefront.services")


class NotFoundError(LookupError):
    """Raised when a looked-up record does not exist."""
    def __init__(self, entity: str, id: int):
        super().__init__(f"{entity} {id} not found")
        self.entity = entity
        self.id = id


# ---- ORM -> DTO mapping ----

def to_photo_dto(photo: models.ProductPhoto) -> ProductPhotoDto:
    return ProductPhotoDto(id=photo.id, url=photo.url, is_main=photo.is_main)


def to_product_dto(product: models.Product) -> ProductDto:
    main = product.main_photo
    return ProductDto(
        id=product.id,
        name=product.name,
        description=product.description,
        category=product.category,
        sale_price=product.sale_price,
        photo_url=main.url if main else None,
        photos=[to_photo_dto(p) for p in product.photos],
    )


def to_ordered_product_dto(line: models.OrderedProducts) -> OrderedProductDto:
    product = line.product
    main = product.main_photo
    return OrderedProductDto(
        id=line.id,
        product_id=product.id,
        product_name=product.name,
        photo_url=main.url if main else None,
        sale_price=product.sale_price,
        quantity=line.quantity,
    )


def to_admin_order_dto(order: models.Order) -> AdminOrderDto:
    lines = [to_ordered_product_dto(op) for op in order.ordered_products]
    return AdminOrderDto(
        id=order.id,
        user_id=order.user_id,
        username=order.user.username if order.user else None,
        status=order.status,
        created_at=order.created_at,
        order_date=order.order_date,
        ordered_products=lines,
        total=sum((op.sale_price * op.quantity for op in lines), Decimal('0')),
    )


def to_basket_out(order: models.Order) -> BasketOut:
    return BasketOut(
        id=order.id,
        user_id=order.user_id,
        status=order.status,
        ordered_products=[to_ordered_product_dto(op) for op in order.ordered_products],
    )


class AuthService:
    """Account operations (register + authenticate)."""
    def __init__(self, uow: UnitOfWork):
        self.uow = uow
        self.user_repo = uow.user_repository

    def register(self, username: str, password: str, role: str = models.ROLE_MEMBER) -> models.User:
        """Create a new user with a hashed password.

        Raises `ValueError` if the username is taken, the role is unknown
        or the row could not be saved.
        """
        if role not in models.ROLES:
            raise ValueError(f"Unknown role: {role}")
        if self.user_repo.get_by_username(username):
            raise ValueError("Username is taken")
        hashed = PWD_CTX.hash(password)
        u = models.User(username=username, password_hash=hashed, role=role)
        self.user_repo.add(u)
        if not self.uow.complete():
            raise ValueError("Failed to register user")
        return u

    def authenticate(self, username: str, password: str) -> Optional[str]:
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails.
        """
        user = self.user_repo.get_by_username(username)
        if not user:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return self.issue_token(user)

    @staticmethod
    def issue_token(user: models.User) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "username": user.username, "role": user.role, "exp": int(expire.timestamp())}
        return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


class ModeratorService:
    """Order, product and photo administration."""
    def __init__(self, uow: UnitOfWork, photo_service: PhotoService):
        self.uow = uow
        self.products = uow.product_repository
        self.orders = uow.order_repository
        self.photo_service = photo_service

    def get_orders(self) -> List[models.Order]:
        return self.orders.get_orders()

    def get_order(self, order_id: int) -> models.Order:
        order = self.orders.get_order_by_id(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def get_product(self, product_id: int) -> models.Product:
        product = self.products.get_product_by_id(product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    def create_product(self, data: ProductIn) -> models.Product:
        if self.products.get_product_by_name(data.name) is not None:
            raise ValueError("Product name is taken")
        product = models.Product(**data.model_dump())
        self.products.add_product(product)
        if not self.uow.complete():
            raise ValueError("Failed to add product")
        logger.info("product_created id=%s name=%s", product.id, product.name)
        return product

    def update_product(self, product_id: int, data: ProductIn) -> models.Product:
        """Copy `data` onto the stored product.

        Submitting values identical to the stored ones persists nothing and
        is reported as a failed update.
        """
        product = self.get_product(product_id)
        if data.name != product.name:
            clash = self.products.get_product_by_name(data.name)
            if clash is not None and clash.id != product.id:
                raise ValueError("Product name is taken")
        for field, value in data.model_dump().items():
            setattr(product, field, value)
        self.products.update(product)
        if not self.uow.complete():
            raise ValueError("Failed to update product")
        return product

    def delete_product(self, product_id: int) -> None:
        product = self.get_product(product_id)
        public_ids = [p.public_id for p in product.photos if p.public_id]
        self.products.delete_product(product)
        if not self.uow.complete():
            raise ValueError("Failed to delete product")
        logger.info("product_deleted id=%s", product_id)
        for public_id in public_ids:
            result = self.photo_service.delete_photo(public_id)
            if result.error is not None:
                logger.warning("orphaned_photo public_id=%s error=%s", public_id, result.error.message)

    def add_photo(self, product_id: int, payload: bytes, filename: str) -> models.ProductPhoto:
        """Store an uploaded image and attach it to the product.

        The first photo of a product becomes its main photo.
        """
        product = self.get_product(product_id)
        result = self.photo_service.add_photo(payload, filename)
        if result.error is not None:
            raise ValueError(result.error.message)
        photo = models.ProductPhoto(url=result.secure_url, public_id=result.public_id)
        if len(product.photos) == 0:
            photo.is_main = True
        self.products.add_photo(product, photo)
        if not self.uow.complete():
            # keep storage in step with the rows that actually exist
            self.photo_service.delete_photo(result.public_id)
            raise ValueError("Problem adding photo")
        return photo

    def _find_photo(self, photo_id: int):
        product = self.products.get_product_by_photo_id(photo_id)
        if product is None:
            raise NotFoundError("Photo", photo_id)
        photo = next((p for p in product.photos if p.id == photo_id), None)
        if photo is None:
            raise NotFoundError("Photo", photo_id)
        return product, photo

    def set_main_photo(self, photo_id: int) -> models.ProductPhoto:
        product, photo = self._find_photo(photo_id)
        if photo.is_main:
            raise ValueError("This is already the main photo")
        current_main = product.main_photo
        if current_main is not None:
            current_main.is_main = False
        photo.is_main = True
        if not self.uow.complete():
            raise ValueError("Failed to set main photo")
        return photo

    def delete_photo(self, photo_id: int) -> None:
        product, photo = self._find_photo(photo_id)
        if photo.is_main:
            raise ValueError("You cannot delete the main photo")
        if photo.public_id is not None:
            result = self.photo_service.delete_photo(photo.public_id)
            if result.error is not None:
                raise ValueError(result.error.message)
        self.products.remove_photo(product, photo)
        if not self.uow.complete():
            raise ValueError("Failed to delete the photo")


class BasketService:
    """Per-user basket: an `Order` in `Basket` status until checkout.

    Every committed change publishes a fresh `BasketOut` snapshot on the
    notifier.
    """
    def __init__(self, uow: UnitOfWork, notifier: BasketChangeNotifier):
        self.uow = uow
        self.orders = uow.order_repository
        self.products = uow.product_repository
        self.notifier = notifier

    def get_basket(self, user_id: int) -> Optional[models.Order]:
        return self.orders.get_basket_for_user(user_id)

    def get_basket_snapshot(self, user_id: int) -> Optional[BasketOut]:
        basket = self.get_basket(user_id)
        return to_basket_out(basket) if basket is not None else None

    def num_of_items(self, user_id: int) -> int:
        basket = self.get_basket(user_id)
        if basket is None:
            return 0
        return sum(op.quantity for op in basket.ordered_products)

    def _publish(self, basket: models.Order) -> BasketOut:
        snapshot = to_basket_out(basket)
        self.notifier.publish(basket.user_id, snapshot)
        return snapshot

    def add_product(self, user_id: int, product_id: int, quantity: int = 1) -> BasketOut:
        """Put `quantity` units of a product in the user's basket.

        Adding a product that is already in the basket raises that line's
        quantity, capped at 9.
        """
        product = self.products.get_product_by_id(product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        basket = self.get_basket(user_id)
        if basket is None:
            basket = models.Order(user_id=user_id, status=models.ORDER_STATUS_BASKET)
            self.orders.add_order(basket)
        line = next((op for op in basket.ordered_products if op.product_id == product_id), None)
        if line is None:
            self.orders.add_line(basket, models.OrderedProducts(product=product, product_id=product_id, quantity=quantity))
        else:
            line.quantity = min(line.quantity + quantity, 9)
        # a line already at the cap stays unchanged
        if self.uow.has_changes() and not self.uow.complete():
            raise ValueError("Failed to add product to basket")
        return self._publish(basket)

    def update_product(self, user_id: int, ordered_product_id: int, quantity: int) -> BasketOut:
        """Set a basket line's quantity; 0 removes the line."""
        if quantity < 0 or quantity > 9:
            raise ValueError("Quantity must be between 0 and 9")
        basket = self.get_basket(user_id)
        line = None
        if basket is not None:
            line = next((op for op in basket.ordered_products if op.id == ordered_product_id), None)
        if line is None:
            raise NotFoundError("Basket item", ordered_product_id)
        if quantity == 0:
            self.orders.remove_line(basket, line)
        else:
            line.quantity = quantity
        # re-selecting the current quantity is not an error
        if self.uow.has_changes() and not self.uow.complete():
            raise ValueError("Failed to update basket")
        return self._publish(basket)

    def checkout(self, user_id: int) -> models.Order:
        basket = self.get_basket(user_id)
        if basket is None or not basket.ordered_products:
            raise ValueError("Basket is empty")
        basket.status = models.ORDER_STATUS_ORDERED
        basket.order_date = datetime.now(timezone.utc)
        if not self.uow.complete():
            raise ValueError("Failed to place order")
        logger.info("order_placed id=%s user_id=%s", basket.id, user_id)
        self.notifier.publish(user_id, to_basket_out(basket))
        return basket
