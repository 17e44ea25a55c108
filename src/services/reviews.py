from __future__ import annotations

from datetime import datetime
from typing import Awaitable, Callable, Dict, Iterable, Optional, TypeVar

import db.crud as crud
from db.models import Order, Review
from services.status import OrderStatus, normalize
from utils import config
from utils.errors import AuthRequired, PersistenceError, ValidationError
from utils.logger import get_logger
from utils.retry import call_with_retry, with_timeout

_logger = get_logger(__name__)

T = TypeVar("T")


def _newest(reviews: Iterable[Review]) -> Dict[int, Review]:
    latest: Dict[int, Review] = {}
    for review in reviews:
        current = latest.get(review.product_id)
        if current is None or (review.created_at, review.id) > (
            current.created_at,
            current.id,
        ):
            latest[review.product_id] = review
    return latest


class ReviewService:
    """
    Product feedback, unlocked by completed orders.
    One current review per (user, product); a resubmission overwrites it.
    """

    def __init__(
        self,
        backend=crud,
        timeout: float = config.REQUEST_TIMEOUT,
        retries: int = config.READ_RETRIES,
        retry_delay: float = config.RETRY_DELAY,
    ) -> None:
        self.backend = backend
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay

    async def _read(self, fn: Callable[[], Awaitable[T]], what: str) -> T:
        try:
            return await call_with_retry(
                fn,
                retry_on=(crud.BackendError,),
                give_up_on=(crud.SchemaRejected,),
                retries=self.retries,
                delay=self.retry_delay,
                timeout=self.timeout,
                what=what,
            )
        except crud.BackendError as exc:
            raise PersistenceError(f"{what} failed: {exc}") from exc

    @staticmethod
    def is_eligible(order: Order) -> bool:
        return normalize(order.status) is OrderStatus.COMPLETED

    async def submit(
        self,
        user_id: Optional[str],
        product_id: int,
        rating: int,
        comment: str,
        order: Optional[Order] = None,
    ) -> Review:
        """
        Save the user's review of a product, replacing any earlier one.
        With `order`, also checks that it is completed and contains the product.
        """
        if not user_id:
            raise AuthRequired()
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be a whole number from 1 to 5.")
        comment = (comment or "").strip()
        if not comment:
            raise ValidationError("Please write a comment.")
        if order is not None:
            if not self.is_eligible(order):
                raise ValidationError("You can review products once the order is completed.")
            if all(line.product_id != product_id for line in order.lines):
                raise ValidationError(f"Product {product_id} is not part of order #{order.id}.")

        existing = (await self.load_latest_for(user_id, [product_id])).get(product_id)
        try:
            if existing is not None:
                updated = await with_timeout(
                    self.backend.update_review(existing.id, rating, comment),
                    self.timeout,
                    "review update",
                )
                if updated:
                    _logger.info(f"Review {existing.id} updated by {user_id}")
                    return Review(
                        id=existing.id,
                        product_id=product_id,
                        user_id=user_id,
                        rating=rating,
                        comment=comment,
                        created_at=existing.created_at,
                    )
            created_at = datetime.now()
            review_id = await with_timeout(
                self.backend.insert_review(
                    user_id, product_id, rating, comment, created_at=created_at
                ),
                self.timeout,
                "review insert",
            )
        except crud.BackendError as exc:
            raise PersistenceError(f"Could not save your review: {exc}") from exc
        _logger.info(f"Review {review_id} created by {user_id} for product {product_id}")
        return Review(
            id=review_id,
            product_id=product_id,
            user_id=user_id,
            rating=rating,
            comment=comment,
            created_at=created_at,
        )

    async def load_latest_for(
        self, user_id: Optional[str], product_ids: Iterable[int]
    ) -> Dict[int, Review]:
        """The newest review per product id; products without one are absent."""
        if not user_id:
            raise AuthRequired()
        ids = list(product_ids)
        if not ids:
            return {}
        rows = await self._read(
            lambda: self.backend.find_reviews(user_id, ids), "review lookup"
        )
        return _newest(rows)
