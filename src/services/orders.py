from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, TypeVar

import db.crud as crud
from db.models import CartLine, Order, ShippingProfile
from services import pricing
from services.cart_store import CartStore
from services.status import CANCELLED_RAW, OrderStatus, normalize
from utils import config
from utils.errors import (
    AuthRequired,
    NetworkTimeout,
    OrderNotCancellable,
    PersistenceError,
    ValidationError,
)
from utils.logger import get_logger
from utils.retry import call_with_retry, with_timeout

_logger = get_logger(__name__)

T = TypeVar("T")

PAYMENT_METHODS = ("COD", "GCash")


class OrderService:
    """
    Turns the cart into an order and follows the order afterwards.

    Writes (place, cancel) are never retried automatically: a timeout there
    means the order may or may not exist, so the caller decides. Reads go
    through call_with_retry.

    Callers must not start a second place_order while one is in flight for
    the same cart (disable the trigger while it runs).
    """

    def __init__(
        self,
        cart: CartStore,
        user_id: Optional[str],
        backend=crud,
        timeout: float = config.REQUEST_TIMEOUT,
        purchase_timeout: float = config.PURCHASE_TIMEOUT,
        retries: int = config.READ_RETRIES,
        retry_delay: float = config.RETRY_DELAY,
    ) -> None:
        self.cart = cart
        self.user_id = user_id
        self.backend = backend
        self.timeout = timeout
        self.purchase_timeout = purchase_timeout
        self.retries = retries
        self.retry_delay = retry_delay

    def _require_user(self) -> str:
        if not self.user_id:
            raise AuthRequired()
        return self.user_id

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

    # ---------------------------
    # Checkout
    # ---------------------------

    def quote(
        self,
        zone: Optional[str],
        coupon_code: Optional[str],
        product_id: Optional[int] = None,
    ) -> pricing.PriceBreakdown:
        return pricing.quote(self.lines_for(product_id), zone, coupon_code)

    def lines_for(self, product_id: Optional[int]) -> List[CartLine]:
        lines = self.cart.lines
        if product_id is not None:
            lines = [line for line in lines if line.product_id == product_id]
        return lines

    async def load_shipping_defaults(self) -> ShippingProfile:
        """Shipping fields saved by the last checkout, blank if there are none."""
        user_id = self._require_user()
        profile = await self._read(
            lambda: self.backend.get_profile(user_id), "profile lookup"
        )
        return profile or ShippingProfile()

    async def place_order(
        self,
        profile: ShippingProfile,
        payment_method: str = "COD",
        coupon_code: Optional[str] = None,
        payment_reference: Optional[str] = None,
        payment_proof_url: Optional[str] = None,
        product_id: Optional[int] = None,
    ) -> Order:
        """
        Persist the cart (or just line `product_id`) as an order.

        The cart is only touched after the backend confirmed the order; on
        any error it is left exactly as it was.
        """
        user_id = self._require_user()

        lines = self.lines_for(product_id)
        if not lines:
            if product_id is not None and not self.cart.is_empty():
                raise ValidationError("That item is no longer in your cart.")
            raise ValidationError("Your cart is empty.")
        missing = profile.missing_fields()
        if missing:
            raise ValidationError(f"Please fill in: {', '.join(missing)}.")
        if payment_method not in PAYMENT_METHODS:
            raise ValidationError(f"Unsupported payment method: {payment_method!r}.")
        payment_reference = (payment_reference or "").strip() or None
        payment_proof_url = (payment_proof_url or "").strip() or None
        if payment_method == "GCash" and not (payment_reference or payment_proof_url):
            raise ValidationError("GCash payments need a reference number or proof.")

        profile = profile.stripped()
        code = pricing.normalize_code(coupon_code)
        code = code if pricing.find_coupon(code) else None
        price = pricing.quote(lines, profile.zone, code)
        created_at = datetime.now()

        # phase 2 is best effort and runs first so the next checkout pre-fills
        await self._save_shipping_defaults(user_id, profile)

        order_id = await self._submit(
            user_id,
            lines,
            profile,
            price,
            payment_method,
            code,
            payment_reference,
            payment_proof_url,
            created_at,
        )

        if product_id is not None:
            self.cart.remove_item(product_id)
        else:
            self.cart.clear()
        _logger.info(
            f"Order #{order_id} placed by {user_id}: {len(lines)} line(s), total {price.total:.2f}"
        )
        return Order(
            id=order_id,
            user_id=user_id,
            lines=tuple(lines),
            total=price.total,
            status=crud.INITIAL_STATUS,
            created_at=created_at,
            subtotal=price.subtotal,
            discount=price.discount,
            shipping_fee=price.shipping_fee,
            zone=profile.zone,
            payment_method=payment_method,
            coupon_code=code,
            shipping=profile,
            payment_reference=payment_reference,
        )

    async def _save_shipping_defaults(self, user_id: str, profile: ShippingProfile) -> None:
        try:
            await with_timeout(
                self.backend.update_profile(user_id, profile),
                self.timeout,
                "profile update",
            )
        except (crud.BackendError, NetworkTimeout) as exc:
            _logger.warning(f"Could not save shipping defaults for {user_id}: {exc}")

    async def _submit(
        self,
        user_id: str,
        lines: List[CartLine],
        profile: ShippingProfile,
        price: pricing.PriceBreakdown,
        payment_method: str,
        coupon_code: Optional[str],
        payment_reference: Optional[str],
        payment_proof_url: Optional[str],
        created_at: datetime,
    ) -> int:
        try:
            return await with_timeout(
                self.backend.purchase_cart(
                    user_id,
                    lines,
                    discount=price.discount,
                    shipping_fee=price.shipping_fee,
                    shipping_zone=profile.zone,
                    payment_method=payment_method,
                    coupon_code=coupon_code,
                    shipping_name=profile.full_name,
                    shipping_contact=profile.contact_number,
                    shipping_address=profile.street_address,
                    payment_reference=payment_reference,
                    payment_proof_url=payment_proof_url,
                    created_at=created_at,
                ),
                self.purchase_timeout,
                "place order",
            )
        except crud.ProcedureUnavailable as exc:
            _logger.warning(f"Atomic checkout unavailable ({exc}), inserting order row")
        except crud.BackendError as exc:
            raise PersistenceError(f"Could not place your order: {exc}") from exc

        full_row = {
            "user_id": user_id,
            "items": list(lines),
            "subtotal": price.subtotal,
            "discount": price.discount,
            "shipping_fee": price.shipping_fee,
            "total": price.total,
            "shipping_zone": profile.zone,
            "payment_method": payment_method,
            "coupon_code": coupon_code,
            "shipping_name": profile.full_name,
            "shipping_contact": profile.contact_number,
            "shipping_address": profile.street_address,
            "payment_reference": payment_reference,
            "payment_proof_url": payment_proof_url,
            "status": crud.INITIAL_STATUS,
            "created_at": created_at,
        }
        try:
            return await with_timeout(
                self.backend.insert_order(full_row), self.purchase_timeout, "order insert"
            )
        except crud.SchemaRejected as exc:
            _logger.warning(f"Order schema rejected ({exc}), retrying with reduced row")
        except crud.BackendError as exc:
            raise PersistenceError(f"Could not place your order: {exc}") from exc

        reduced_row = {
            "user_id": user_id,
            "items": list(lines),
            "total": price.total,
            "status": crud.INITIAL_STATUS,
        }
        try:
            return await with_timeout(
                self.backend.insert_order(reduced_row),
                self.purchase_timeout,
                "order insert",
            )
        except crud.BackendError as exc:
            raise PersistenceError(f"Could not place your order: {exc}") from exc

    # ---------------------------
    # After checkout
    # ---------------------------

    async def list_orders(self, user_id: Optional[str] = None) -> List[Order]:
        """
        Orders of the user, newest first. A NetworkTimeout here means
        "unknown", not "no orders".
        """
        user_id = user_id or self._require_user()
        return await self._read(lambda: self.backend.list_orders(user_id), "order list")

    async def refresh_order(self, order_id: int) -> Order:
        user_id = self._require_user()
        order = await self._read(lambda: self.backend.get_order(order_id), "order lookup")
        if order is None or order.user_id != user_id:
            raise ValidationError(f"Order #{order_id} not found.")
        return order

    async def cancel_order(self, order_id: int) -> Order:
        """
        Cancel an order that is still To Ship. Confirmation happens upstream.
        Any other status is refused and nothing is written.
        """
        order = await self.refresh_order(order_id)
        status = normalize(order.status)
        if status is not OrderStatus.TO_SHIP:
            raise OrderNotCancellable(order_id, status.display)

        try:
            updated = await with_timeout(
                self.backend.update_order_status(
                    order_id, CANCELLED_RAW, expected_status=order.status
                ),
                self.timeout,
                "cancel order",
            )
        except crud.BackendError as exc:
            raise PersistenceError(f"Could not cancel order #{order_id}: {exc}") from exc
        if not updated:
            raise PersistenceError(
                f"Order #{order_id} changed while cancelling, refresh and try again."
            )
        _logger.info(f"Order #{order_id} cancelled by {order.user_id}")
        return dataclasses.replace(order, status=CANCELLED_RAW)
