import asyncio
import dataclasses
import os
import tempfile
import unittest
from datetime import datetime

from db import crud
from db import database as db_database
from db.models import Order, ShippingProfile
from services.cart_store import CartStore, MemoryCartStorage
from services.orders import OrderService
from utils.errors import (
    AuthRequired,
    NetworkTimeout,
    OrderNotCancellable,
    PersistenceError,
    ValidationError,
)

PROFILE = ShippingProfile(
    full_name="Ana Cruz",
    contact_number="09171234567",
    zone="Poblacion",
    street_address="12 Rizal St",
)


class FakeBackend:
    """Records calls; behaviour is switched through attributes."""

    def __init__(self):
        self.calls = []
        self.orders = {}
        self.profile = None
        self.profile_error = None
        self.purchase_error = None
        self.purchase_delay = 0
        self.insert_errors = []
        self.list_failures = 0
        self.list_error = None
        self.list_delay = 0
        self.cas_fails = False

    def _store(self, user_id, lines, total, status="Pending"):
        order_id = len(self.orders) + 1
        self.orders[order_id] = Order(
            id=order_id,
            user_id=user_id,
            lines=tuple(lines),
            total=total,
            status=status,
            created_at=datetime(2024, 1, order_id),
        )
        return order_id

    async def get_profile(self, user_id):
        self.calls.append("get_profile")
        return self.profile

    async def update_profile(self, user_id, profile):
        self.calls.append("update_profile")
        if self.profile_error:
            raise self.profile_error
        self.profile = profile

    async def purchase_cart(self, user_id, lines, **kwargs):
        self.calls.append("purchase_cart")
        self.purchase_kwargs = kwargs
        if self.purchase_delay:
            await asyncio.sleep(self.purchase_delay)
        if self.purchase_error:
            raise self.purchase_error
        subtotal = sum(line.line_total for line in lines)
        return self._store(
            user_id, lines, subtotal - kwargs["discount"] + kwargs["shipping_fee"]
        )

    async def insert_order(self, row):
        self.calls.append(("insert_order", frozenset(row)))
        if self.insert_errors:
            raise self.insert_errors.pop(0)
        return self._store(row["user_id"], row["items"], row["total"], row["status"])

    async def list_orders(self, user_id):
        self.calls.append("list_orders")
        if self.list_delay:
            await asyncio.sleep(self.list_delay)
        if self.list_error:
            raise self.list_error
        if self.list_failures:
            self.list_failures -= 1
            raise crud.BackendError("connection reset")
        return sorted(
            (o for o in self.orders.values() if o.user_id == user_id),
            key=lambda o: o.created_at,
            reverse=True,
        )

    async def get_order(self, order_id):
        self.calls.append("get_order")
        return self.orders.get(order_id)

    async def update_order_status(self, order_id, status, expected_status=None):
        self.calls.append(("update_order_status", status, expected_status))
        if self.cas_fails:
            return False
        order = self.orders[order_id]
        self.orders[order_id] = dataclasses.replace(order, status=status)
        return True


class OrderServiceTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.cart = CartStore(MemoryCartStorage())
        self.backend = FakeBackend()
        self.service = OrderService(
            self.cart,
            "u1",
            backend=self.backend,
            timeout=0.2,
            purchase_timeout=0.2,
            retries=2,
            retry_delay=0,
        )

    def _fill_cart(self):
        self.cart.add_item(7, 100, "Tote Bag")
        self.cart.add_item(7, 100, "Tote Bag")

    # ---------- place_order ----------

    async def test_place_order_with_percentage_coupon(self):
        self._fill_cart()
        order = await self.service.place_order(PROFILE, coupon_code=" save10 ")

        self.assertEqual((order.subtotal, order.discount, order.shipping_fee, order.total), (200, 20, 20, 200))
        self.assertEqual(order.coupon_code, "SAVE10")
        self.assertEqual(order.status, "Pending")
        self.assertEqual(self.backend.calls, ["update_profile", "purchase_cart"])
        self.assertEqual(self.backend.purchase_kwargs["shipping_zone"], "Poblacion")
        self.assertTrue(self.cart.is_empty())

    async def test_place_order_with_fixed_coupon(self):
        self._fill_cart()
        order = await self.service.place_order(PROFILE, coupon_code="LESS50")
        self.assertEqual(order.total, 170)

    async def test_unknown_coupon_is_not_stored(self):
        self._fill_cart()
        order = await self.service.place_order(PROFILE, coupon_code="FREE100")
        self.assertIsNone(order.coupon_code)
        self.assertEqual(order.discount, 0)
        self.assertEqual(order.total, 220)

    async def test_empty_cart_never_reaches_backend(self):
        with self.assertRaises(ValidationError):
            await self.service.place_order(PROFILE)
        self.assertEqual(self.backend.calls, [])

    async def test_missing_shipping_fields(self):
        self._fill_cart()
        with self.assertRaises(ValidationError) as ctx:
            await self.service.place_order(ShippingProfile(full_name="Ana", zone="  "))
        self.assertIn("contact number", str(ctx.exception))
        self.assertIn("zone", str(ctx.exception))
        self.assertEqual(self.backend.calls, [])
        self.assertEqual(self.cart.get(7).quantity, 2)

    async def test_payment_rules(self):
        self._fill_cart()
        with self.assertRaises(ValidationError):
            await self.service.place_order(PROFILE, payment_method="Card")
        with self.assertRaises(ValidationError):
            await self.service.place_order(PROFILE, payment_method="GCash", payment_reference="  ")
        self.assertEqual(self.backend.calls, [])

        order = await self.service.place_order(
            PROFILE, payment_method="GCash", payment_reference=" 1234 "
        )
        self.assertEqual(order.payment_reference, "1234")
        self.assertEqual(self.backend.purchase_kwargs["payment_reference"], "1234")

    async def test_signed_out_user(self):
        self._fill_cart()
        self.service.user_id = None
        with self.assertRaises(AuthRequired):
            await self.service.place_order(PROFILE)
        with self.assertRaises(AuthRequired):
            await self.service.list_orders()
        self.assertEqual(self.backend.calls, [])

    async def test_single_line_checkout_keeps_other_lines(self):
        self._fill_cart()
        self.cart.add_item(9, 50, "Mug")

        order = await self.service.place_order(PROFILE, product_id=9)

        self.assertEqual([line.product_id for line in order.lines], [9])
        self.assertEqual(order.total, 70)
        self.assertIsNone(self.cart.get(9))
        self.assertEqual(self.cart.get(7).quantity, 2)

        with self.assertRaises(ValidationError):
            await self.service.place_order(PROFILE, product_id=9)

    async def test_profile_sync_failure_does_not_block(self):
        self._fill_cart()
        self.backend.profile_error = crud.SchemaRejected("no such table: profiles")
        order = await self.service.place_order(PROFILE)
        self.assertEqual(order.id, 1)
        self.assertTrue(self.cart.is_empty())

    async def test_falls_back_to_full_then_reduced_row(self):
        self._fill_cart()
        self.backend.purchase_error = crud.ProcedureUnavailable("no procedure")
        self.backend.insert_errors = [crud.SchemaRejected("no column subtotal")]

        order = await self.service.place_order(PROFILE, coupon_code="SAVE10")

        inserts = [c[1] for c in self.backend.calls if isinstance(c, tuple)]
        self.assertEqual(len(inserts), 2)
        self.assertIn("subtotal", inserts[0])
        self.assertEqual(inserts[1], {"user_id", "items", "total", "status"})
        self.assertEqual(self.backend.orders[order.id].total, 200)
        self.assertTrue(self.cart.is_empty())

    async def test_full_row_fallback(self):
        self._fill_cart()
        self.backend.purchase_error = crud.ProcedureUnavailable("no procedure")
        await self.service.place_order(PROFILE)
        inserts = [c for c in self.backend.calls if isinstance(c, tuple)]
        self.assertEqual(len(inserts), 1)

    async def test_all_submissions_fail_leaves_cart(self):
        self._fill_cart()
        self.backend.purchase_error = crud.ProcedureUnavailable("no procedure")
        self.backend.insert_errors = [
            crud.SchemaRejected("no column subtotal"),
            crud.BackendError("disk I/O error"),
        ]
        with self.assertRaises(PersistenceError):
            await self.service.place_order(PROFILE)
        self.assertEqual(self.cart.get(7).quantity, 2)
        self.assertEqual(self.backend.orders, {})

    async def test_ordinary_backend_error_does_not_fall_back(self):
        self._fill_cart()
        self.backend.purchase_error = crud.BackendError("constraint failed")
        with self.assertRaises(PersistenceError):
            await self.service.place_order(PROFILE)
        self.assertNotIn("insert_order", [c[0] for c in self.backend.calls if isinstance(c, tuple)])
        self.assertEqual(len(self.cart), 1)

    async def test_write_timeout_is_not_retried(self):
        self._fill_cart()
        self.backend.purchase_delay = 1
        with self.assertRaises(NetworkTimeout):
            await self.service.place_order(PROFILE)
        self.assertEqual(self.backend.calls.count("purchase_cart"), 1)
        self.assertEqual(self.cart.get(7).quantity, 2)

    # ---------- list / refresh ----------

    async def test_list_orders_retries_transient_errors(self):
        self._fill_cart()
        await self.service.place_order(PROFILE)
        self.backend.list_failures = 2
        orders = await self.service.list_orders()
        self.assertEqual(len(orders), 1)
        self.assertEqual(self.backend.calls.count("list_orders"), 3)

    async def test_list_orders_gives_up(self):
        self.backend.list_failures = 3
        with self.assertRaises(PersistenceError):
            await self.service.list_orders()
        self.assertEqual(self.backend.calls.count("list_orders"), 3)

    async def test_structural_errors_are_not_retried(self):
        self.backend.list_error = crud.SchemaRejected("no such table: orders")
        with self.assertRaises(PersistenceError):
            await self.service.list_orders()
        self.assertEqual(self.backend.calls.count("list_orders"), 1)

    async def test_list_orders_timeout_is_not_empty_result(self):
        self.backend.list_delay = 1
        with self.assertRaises(NetworkTimeout):
            await self.service.list_orders()
        self.assertEqual(self.backend.calls.count("list_orders"), 3)

    async def test_refresh_order_of_another_user(self):
        other_id = self.backend._store("u2", [], 10)
        with self.assertRaises(ValidationError):
            await self.service.refresh_order(other_id)
        with self.assertRaises(ValidationError):
            await self.service.refresh_order(999)

    async def test_load_shipping_defaults(self):
        self.assertEqual(await self.service.load_shipping_defaults(), ShippingProfile())
        self.backend.profile = PROFILE
        self.assertEqual(await self.service.load_shipping_defaults(), PROFILE)

    # ---------- cancel ----------

    async def test_cancel_to_ship_order(self):
        order_id = self.backend._store("u1", [], 100, status="Pending")
        cancelled = await self.service.cancel_order(order_id)
        self.assertEqual(cancelled.status, "Cancelled")
        self.assertEqual(self.backend.orders[order_id].status, "Cancelled")
        self.assertIn(("update_order_status", "Cancelled", "Pending"), self.backend.calls)

    async def test_cancel_refused_after_to_ship(self):
        for raw in ("Completed", "Shipped", "out for delivery", "Cancelled"):
            with self.subTest(status=raw):
                order_id = self.backend._store("u1", [], 100, status=raw)
                with self.assertRaises(OrderNotCancellable):
                    await self.service.cancel_order(order_id)
                self.assertEqual(self.backend.orders[order_id].status, raw)
        self.assertFalse(any(isinstance(c, tuple) for c in self.backend.calls))

    async def test_cancel_not_cancellable_is_a_validation_error(self):
        order_id = self.backend._store("u1", [], 100, status="Completed")
        with self.assertRaises(ValidationError):
            await self.service.cancel_order(order_id)

    async def test_cancel_compares_against_raw_stored_status(self):
        for raw in (None, "", "Paid"):
            with self.subTest(status=raw):
                order_id = self.backend._store("u1", [], 100, status=raw)
                cancelled = await self.service.cancel_order(order_id)
                self.assertEqual(cancelled.status, "Cancelled")
                self.assertIn(("update_order_status", "Cancelled", raw), self.backend.calls)

    async def test_cancel_lost_race(self):
        order_id = self.backend._store("u1", [], 100, status="Pending")
        self.backend.cas_fails = True
        with self.assertRaises(PersistenceError):
            await self.service.cancel_order(order_id)


class OrderServiceSqliteTestCase(unittest.IsolatedAsyncioTestCase):
    """End to end against the sqlite backend."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        db_database.DB_PATH = os.path.join(self.temp_dir.name, "test.sqlite")
        db_database._initialized = False
        self.cart = CartStore(MemoryCartStorage())
        self.cart.add_item(7, 100, "Tote Bag")
        self.cart.add_item(7, 100, "Tote Bag")
        self.service = OrderService(self.cart, "u1", retry_delay=0)

    def tearDown(self):
        self.temp_dir.cleanup()

    async def test_place_list_and_cancel(self):
        placed = await self.service.place_order(PROFILE, coupon_code="LESS50")
        self.assertEqual(await self.service.load_shipping_defaults(), PROFILE)

        orders = await self.service.list_orders()
        self.assertEqual([o.id for o in orders], [placed.id])
        self.assertEqual(orders[0].total, 170)
        self.assertEqual(orders[0].coupon_code, "LESS50")

        cancelled = await self.service.cancel_order(placed.id)
        self.assertEqual(cancelled.status, "Cancelled")
        with self.assertRaises(OrderNotCancellable):
            await self.service.cancel_order(placed.id)

    async def test_blank_status_order_can_be_cancelled(self):
        order_id = await crud.insert_order(
            {"user_id": "u1", "items": [], "total": 10, "status": ""}
        )
        self.assertEqual((await self.service.refresh_order(order_id)).status, "")

        cancelled = await self.service.cancel_order(order_id)

        self.assertEqual(cancelled.status, "Cancelled")
        self.assertEqual((await crud.get_order(order_id)).status, "Cancelled")

    async def test_fulfillment_moves_order_out_of_to_ship(self):
        placed = await self.service.place_order(PROFILE)
        await crud.update_order_status(placed.id, "Shipped")
        with self.assertRaises(OrderNotCancellable):
            await self.service.cancel_order(placed.id)
        self.assertEqual((await self.service.refresh_order(placed.id)).status, "Shipped")
