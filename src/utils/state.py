from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from services.cart_store import CartStore, JsonFileCartStorage
from services.orders import OrderService
from services.reviews import ReviewService
from utils import config


@dataclass
class GlobalState:
    """
    Centralized application state shared by screens.

    Fields:
      - uid: id of the signed-in user, None when nobody is signed in
      - storage: the cart snapshot file shared with other views
      - cart / orders / reviews: services the screens call
    """

    uid: Optional[str] = None
    storage: Optional[JsonFileCartStorage] = None
    cart: CartStore = field(init=False)
    orders: OrderService = field(init=False)
    reviews: ReviewService = field(init=False)

    def __post_init__(self) -> None:
        if self.storage is None:
            self.storage = JsonFileCartStorage(config.CART_PATH)
        self.cart = CartStore(self.storage)
        self.orders = OrderService(self.cart, self.uid)
        self.reviews = ReviewService()
