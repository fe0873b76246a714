"""Basket change notifications and the side basket list.

`BasketChangeNotifier` is a small in-process publish/subscribe hub keyed
by user id: `BasketService` publishes a `BasketOut` snapshot after every
committed basket change and subscribers receive it synchronously.

`SideBasketList` is the table shown next to the catalog. It subscribes
on `load()`, replaces its snapshot whenever a change is published and
must be `close()`d to drop the subscription.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, List, Optional

from .schemas import BASKET_QUANTITY_CHOICES, BasketOut, BasketRowOut, SideBasketListOut

if TYPE_CHECKING:
    from .services import BasketService

_LOGGER = logging.getLogger("storefront.basket")

BasketCallback = Callable[[BasketOut], None]

DISPLAYED_COLUMNS = ["photo", "name", "quantity", "price"]


class Subscription:
    """Handle returned by `BasketChangeNotifier.subscribe`."""

    def __init__(self, notifier: "BasketChangeNotifier", user_id: int, callback: BasketCallback):
        self._notifier = notifier
        self.user_id = user_id
        self.callback = callback
        self.closed = False

    def unsubscribe(self) -> None:
        if self.closed:
            return
        self._notifier._remove(self)
        self.closed = True


class BasketChangeNotifier:
    def __init__(self):
        self._subscribers: dict[int, list[Subscription]] = defaultdict(list)
        self._lock = threading.Lock()

    def subscribe(self, user_id: int, callback: BasketCallback) -> Subscription:
        sub = Subscription(self, user_id, callback)
        with self._lock:
            self._subscribers[user_id].append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            subs = self._subscribers.get(sub.user_id, [])
            if sub in subs:
                subs.remove(sub)
            if not subs:
                self._subscribers.pop(sub.user_id, None)

    def subscriber_count(self, user_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))

    def publish(self, user_id: int, snapshot: BasketOut) -> int:
        """Deliver `snapshot` to the user's subscribers and return how many got it."""
        with self._lock:
            targets = list(self._subscribers.get(user_id, []))
        for sub in targets:
            try:
                sub.callback(snapshot)
            except Exception:
                # one broken subscriber must not stop the others
                _LOGGER.exception("basket_subscriber_failed user_id=%s", user_id)
        return len(targets)


class SideBasketList:
    """Table of basket lines with quantity selection and totals."""

    displayed_columns = DISPLAYED_COLUMNS
    quantity_choices = BASKET_QUANTITY_CHOICES

    def __init__(self, basket_service: "BasketService", user_id: int):
        self.basket_service = basket_service
        self.user_id = user_id
        self.basket: Optional[BasketOut] = None
        self.subscription: Optional[Subscription] = None
        self.number_of_items = 0

    def load(self) -> None:
        self.subscription = self.basket_service.notifier.subscribe(self.user_id, self._on_basket_changed)
        self.basket = self.basket_service.get_basket_snapshot(self.user_id)
        if self.basket is not None:
            self._refresh_total_qty()

    def _on_basket_changed(self, snapshot: BasketOut) -> None:
        self.basket = snapshot
        self._refresh_total_qty()

    def _refresh_total_qty(self) -> None:
        if self.basket is None:
            self.number_of_items = 0
            return
        self.number_of_items = sum(op.quantity for op in self.basket.ordered_products)

    def rows(self) -> List[BasketRowOut]:
        if self.basket is None:
            return []
        return [
            BasketRowOut(
                ordered_product_id=op.id,
                photo=op.photo_url,
                name=op.product_name,
                quantity=op.quantity,
                price=op.sale_price,
            )
            for op in self.basket.ordered_products
        ]

    def total_cost(self) -> Decimal:
        if self.basket is None:
            return Decimal('0')
        return sum((op.sale_price * op.quantity for op in self.basket.ordered_products), Decimal('0'))

    def select_qty(self, ordered_product_id: int, quantity: int) -> None:
        """Change a line's quantity; the published snapshot refreshes this table."""
        self.basket_service.update_product(self.user_id, ordered_product_id, quantity)

    def render(self) -> SideBasketListOut:
        return SideBasketListOut(
            displayed_columns=list(self.displayed_columns),
            quantity_choices=list(self.quantity_choices),
            rows=self.rows(),
            number_of_items=self.number_of_items,
            total_cost=self.total_cost(),
        )

    def close(self) -> None:
        if self.subscription is not None:
            self.subscription.unsubscribe()
            self.subscription = None
