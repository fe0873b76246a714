"""Repository classes and the unit of work that persists their changes.

Each repository is small and focused on a single aggregate (users,
products with their photos, orders with their lines). Repositories only
stage changes on the shared session; nothing is written until
`UnitOfWork.complete()` commits.
"""

import logging
from typing import List, Optional
from sqlmodel import Session, select
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from . import models

logger = logging.getLogger("storefront.repositories")


class UserRepository:
    """Lookups and inserts for `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def add(self, user: models.User) -> None:
        self.session.add(user)

    def get_by_username(self, username: str) -> Optional[models.User]:
        """Return a `User` by username or `None` if not found."""
        stmt = select(models.User).where(models.User.username == username)
        return self.session.exec(stmt).first()

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)


class ProductRepository:
    """Queries and staged mutations for `Product` and its `ProductPhoto` rows."""
    def __init__(self, session: Session):
        self.session = session

    def list_products(self, category: Optional[str] = None) -> List[models.Product]:
        """Return catalog products ordered by name, optionally for one category."""
        stmt = select(models.Product).order_by(models.Product.name)
        if category:
            stmt = stmt.where(models.Product.category == category)
        return self.session.exec(stmt).all()

    def get_product_by_id(self, product_id: int) -> Optional[models.Product]:
        return self.session.get(models.Product, product_id)

    def get_product_by_name(self, name: str) -> Optional[models.Product]:
        stmt = select(models.Product).where(models.Product.name == name)
        return self.session.exec(stmt).first()

    def get_product_by_photo_id(self, photo_id: int) -> Optional[models.Product]:
        """Return the product owning photo `photo_id`, or `None`."""
        stmt = (
            select(models.Product)
            .join(models.ProductPhoto, models.ProductPhoto.product_id == models.Product.id)
            .where(models.ProductPhoto.id == photo_id)
        )
        return self.session.exec(stmt).first()

    def add_product(self, product: models.Product) -> None:
        self.session.add(product)

    def update(self, product: models.Product) -> None:
        self.session.add(product)

    def delete_product(self, product: models.Product) -> None:
        self.session.delete(product)

    def add_photo(self, product: models.Product, photo: models.ProductPhoto) -> None:
        product.photos.append(photo)
        self.session.add(photo)

    def remove_photo(self, product: models.Product, photo: models.ProductPhoto) -> None:
        # delete-orphan cascade removes the row on flush
        product.photos.remove(photo)


class OrderRepository:
    """Queries and staged mutations for `Order` and `OrderedProducts`."""
    def __init__(self, session: Session):
        self.session = session

    def get_orders(self) -> List[models.Order]:
        """Return every order, newest first."""
        stmt = select(models.Order).order_by(models.Order.id.desc())
        return self.session.exec(stmt).all()

    def get_order_by_id(self, order_id: int) -> Optional[models.Order]:
        return self.session.get(models.Order, order_id)

    def get_basket_for_user(self, user_id: int) -> Optional[models.Order]:
        """Return the user's open basket order or `None` if there is none."""
        stmt = select(models.Order).where(
            models.Order.user_id == user_id,
            models.Order.status == models.ORDER_STATUS_BASKET
        )
        return self.session.exec(stmt).first()

    def get_ordered_product(self, ordered_product_id: int) -> Optional[models.OrderedProducts]:
        return self.session.get(models.OrderedProducts, ordered_product_id)

    def add_order(self, order: models.Order) -> None:
        self.session.add(order)

    def add_line(self, order: models.Order, line: models.OrderedProducts) -> None:
        order.ordered_products.append(line)
        self.session.add(line)

    def remove_line(self, order: models.Order, line: models.OrderedProducts) -> None:
        order.ordered_products.remove(line)


class UnitOfWork:
    """Shares one session between the repositories and commits their changes.

    `complete()` mirrors a "save changes" call: it returns `True` only when
    something was actually written. A commit failure is rolled back, logged
    and reported as `False` so controllers can answer with a 400.
    """
    def __init__(self, session: Session):
        self.session = session
        self.user_repository = UserRepository(session)
        self.product_repository = ProductRepository(session)
        self.order_repository = OrderRepository(session)
        self._flushed_changes = False
        # queries may autoflush staged rows before complete() is reached
        event.listen(session, "after_flush", self._record_flush)

    def _record_flush(self, session, _flush_context) -> None:
        # session collections still hold the pre-flush state here
        if self._pending_changes():
            self._flushed_changes = True

    def _pending_changes(self) -> bool:
        if self.session.new or self.session.deleted:
            return True
        return any(self.session.is_modified(obj) for obj in self.session.dirty)

    def has_changes(self) -> bool:
        """Return True if inserts, deletes or net modifications await commit."""
        return self._flushed_changes or self._pending_changes()

    def complete(self) -> bool:
        if not self.has_changes():
            return False
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("unit_of_work_commit_failed")
            return False
        finally:
            self._flushed_changes = False
        return True
