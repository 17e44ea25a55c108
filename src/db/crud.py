# src/db/crud.py
# persistence API used by the services; every function opens its own connection
from __future__ import annotations

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence

from db import models
from db.database import connect, table_exists


class BackendError(Exception):
    """The backend rejected the request."""


class SchemaRejected(BackendError):
    """Structural rejection: the payload names a column or table that is not there."""


class ProcedureUnavailable(BackendError):
    """The atomic place-order procedure cannot run against this database."""


# columns a caller may write through insert_order
ORDER_COLUMNS = frozenset(
    {
        "user_id",
        "items",
        "subtotal",
        "discount",
        "shipping_fee",
        "total",
        "shipping_zone",
        "payment_method",
        "coupon_code",
        "shipping_name",
        "shipping_contact",
        "shipping_address",
        "payment_reference",
        "payment_proof_url",
        "status",
        "created_at",
    }
)

INITIAL_STATUS = "Pending"


def _translate(exc: sqlite3.Error) -> BackendError:
    msg = str(exc)
    if isinstance(exc, sqlite3.OperationalError) and (
        "no such column" in msg or "has no column named" in msg or "no such table" in msg
    ):
        return SchemaRejected(msg)
    return BackendError(msg)


@contextmanager
def _backend_errors():
    try:
        yield
    except sqlite3.Error as exc:
        raise _translate(exc) from exc


def _to_float(val) -> Optional[float]:
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


def _to_datetime(val) -> datetime:
    if isinstance(val, datetime):
        return val
    try:
        return datetime.fromisoformat(str(val))
    except ValueError:
        return datetime.min


def _iso(when: datetime) -> str:
    # fixed width so text ordering matches time ordering
    return when.isoformat(sep=" ", timespec="microseconds")


def _encode_items(lines: Iterable[models.CartLine]) -> str:
    return json.dumps([line.to_dict() for line in lines])


def _decode_items(raw) -> List[models.CartLine]:
    """Parse the items column; anything unreadable becomes an empty list."""
    if not raw:
        return []
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError:
            return []
    if not isinstance(raw, list):
        return []
    lines = []
    for entry in raw:
        try:
            lines.append(models.CartLine.from_dict(entry))
        except (KeyError, TypeError, ValueError, AttributeError):
            continue
    return lines


def _row_to_order(row: sqlite3.Row) -> models.Order:
    # tolerate rows written with the reduced schema
    keys = set(row.keys())

    def col(name: str):
        return row[name] if name in keys else None

    return models.Order(
        id=int(row["id"]),
        user_id=str(row["user_id"]),
        lines=tuple(_decode_items(col("items"))),
        total=_to_float(col("total")) or 0.0,
        status=col("status"),
        created_at=_to_datetime(col("created_at")),
        subtotal=_to_float(col("subtotal")),
        discount=_to_float(col("discount")),
        shipping_fee=_to_float(col("shipping_fee")),
        zone=col("shipping_zone"),
        payment_method=col("payment_method"),
        coupon_code=col("coupon_code"),
        shipping=models.ShippingProfile(
            full_name=col("shipping_name") or "",
            contact_number=col("shipping_contact") or "",
            zone=col("shipping_zone") or "",
            street_address=col("shipping_address") or "",
        ),
        payment_reference=col("payment_reference"),
    )


def _row_to_review(row: sqlite3.Row) -> models.Review:
    return models.Review(
        id=int(row["id"]),
        product_id=int(row["product_id"]),
        user_id=str(row["user_id"]),
        rating=int(row["rating"]),
        comment=row["comment"],
        created_at=_to_datetime(row["created_at"]),
    )


# ---------------------------
# Profiles
# ---------------------------


async def get_profile(user_id: str) -> Optional[models.ShippingProfile]:
    """Return the saved shipping defaults for a user, or None."""
    with _backend_errors():
        async with connect() as conn:
            cur = await conn.execute(
                "SELECT full_name, contact_number, barangay, address FROM profiles WHERE id = ?;",
                (user_id,),
            )
            row = await cur.fetchone()
            await cur.close()
    if not row:
        return None
    return models.ShippingProfile(
        full_name=row[0] or "",
        contact_number=row[1] or "",
        zone=row[2] or "",
        street_address=row[3] or "",
    )


async def update_profile(user_id: str, profile: models.ShippingProfile) -> None:
    """Store shipping defaults on the user's profile row, creating it if needed."""
    p = profile.stripped()
    with _backend_errors():
        async with connect() as conn:
            await conn.execute(
                """
                INSERT INTO profiles(id, full_name, contact_number, barangay, address)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    full_name = excluded.full_name,
                    contact_number = excluded.contact_number,
                    barangay = excluded.barangay,
                    address = excluded.address;
                """,
                (user_id, p.full_name, p.contact_number, p.zone, p.street_address),
            )
            await conn.commit()


# ---------------------------
# Orders
# ---------------------------


async def purchase_cart(
    user_id: str,
    lines: Sequence[models.CartLine],
    discount: float,
    shipping_fee: float,
    shipping_zone: str,
    payment_method: str,
    coupon_code: Optional[str],
    shipping_name: str,
    shipping_contact: str,
    shipping_address: str,
    payment_reference: Optional[str] = None,
    payment_proof_url: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> int:
    """
    Atomic place-order procedure: writes the order row and its order_items
    in one transaction and returns the new order id.

    Raises ProcedureUnavailable when the database predates order_items or
    the full orders schema; nothing is written in that case.
    """
    if not lines:
        raise BackendError("purchase_cart called without items")
    subtotal = round(sum(line.line_total for line in lines), 2)
    total = round(max(0.0, subtotal - discount) + shipping_fee, 2)
    created_at = created_at or datetime.now()

    try:
        with _backend_errors():
            async with connect() as conn:
                if not await table_exists(conn, "order_items"):
                    raise ProcedureUnavailable("purchase_cart: order_items table missing")
                try:
                    cur = await conn.execute(
                        """
                        INSERT INTO orders(
                            user_id, items, subtotal, discount, shipping_fee, total,
                            shipping_zone, payment_method, coupon_code,
                            shipping_name, shipping_contact, shipping_address,
                            payment_reference, payment_proof_url, status, created_at
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
                        """,
                        (
                            user_id,
                            _encode_items(lines),
                            subtotal,
                            discount,
                            shipping_fee,
                            total,
                            shipping_zone,
                            payment_method,
                            coupon_code,
                            shipping_name,
                            shipping_contact,
                            shipping_address,
                            payment_reference,
                            payment_proof_url,
                            INITIAL_STATUS,
                            _iso(created_at),
                        ),
                    )
                    order_id = cur.lastrowid
                    await cur.close()
                    await conn.executemany(
                        "INSERT INTO order_items(order_id, line_no, product_id, qty, unit_price) VALUES (?, ?, ?, ?, ?);",
                        [
                            (order_id, line_no, line.product_id, line.quantity, line.unit_price)
                            for line_no, line in enumerate(lines, start=1)
                        ],
                    )
                    await conn.commit()
                except sqlite3.Error:
                    await conn.rollback()
                    raise
    except SchemaRejected as exc:
        raise ProcedureUnavailable(f"purchase_cart: {exc}") from exc
    return int(order_id)


async def insert_order(row: Dict[str, Any]) -> int:
    """
    Plain insert into orders with whatever columns `row` carries.
    Lists and dicts are stored as JSON. Returns the new order id.
    """
    unknown = set(row) - ORDER_COLUMNS
    if unknown:
        raise SchemaRejected(f"unknown order columns: {', '.join(sorted(unknown))}")
    values = dict(row)
    for key, val in values.items():
        if isinstance(val, (list, tuple)):
            values[key] = json.dumps(
                [v.to_dict() if isinstance(v, models.CartLine) else v for v in val]
            )
        elif isinstance(val, dict):
            values[key] = json.dumps(val)
        elif isinstance(val, datetime):
            values[key] = _iso(val)

    columns = ", ".join(values)
    marks = ", ".join("?" for _ in values)
    with _backend_errors():
        async with connect() as conn:
            cur = await conn.execute(
                f"INSERT INTO orders({columns}) VALUES ({marks});",
                tuple(values.values()),
            )
            order_id = cur.lastrowid
            await cur.close()
            await conn.commit()
    return int(order_id)


async def list_orders(user_id: str) -> List[models.Order]:
    """All orders of a user, newest first."""
    with _backend_errors():
        async with connect() as conn:
            cur = await conn.execute(
                "SELECT * FROM orders WHERE user_id = ? ORDER BY created_at DESC, id DESC;",
                (user_id,),
            )
            rows = await cur.fetchall()
            await cur.close()
    return [_row_to_order(row) for row in rows]


async def get_order(order_id: int) -> Optional[models.Order]:
    with _backend_errors():
        async with connect() as conn:
            cur = await conn.execute("SELECT * FROM orders WHERE id = ?;", (order_id,))
            row = await cur.fetchone()
            await cur.close()
    return _row_to_order(row) if row else None


# default for update_order_status: update whatever the current status is
ANY_STATUS = object()


async def update_order_status(order_id: int, status: str, expected_status=ANY_STATUS) -> bool:
    """
    Set the raw status of an order. With `expected_status` (None for NULL),
    only updates when the stored status still equals it (compare-and-set).
    Returns True if a row was updated.
    """
    with _backend_errors():
        async with connect() as conn:
            if expected_status is ANY_STATUS:
                res = await conn.execute(
                    "UPDATE orders SET status = ? WHERE id = ?;", (status, order_id)
                )
            else:
                res = await conn.execute(
                    "UPDATE orders SET status = ? WHERE id = ? AND status IS ?;",
                    (status, order_id, expected_status),
                )
            await conn.commit()
            return res.rowcount > 0


# ---------------------------
# Reviews
# ---------------------------


async def find_reviews(user_id: str, product_ids: Sequence[int]) -> List[models.Review]:
    """Every review row the user wrote for the given products, newest first."""
    ids = list(dict.fromkeys(int(pid) for pid in product_ids))
    if not ids:
        return []
    marks = ", ".join("?" for _ in ids)
    with _backend_errors():
        async with connect() as conn:
            cur = await conn.execute(
                f"""
                SELECT id, product_id, user_id, rating, comment, created_at
                FROM reviews
                WHERE user_id = ? AND product_id IN ({marks})
                ORDER BY created_at DESC, id DESC;
                """,
                (user_id, *ids),
            )
            rows = await cur.fetchall()
            await cur.close()
    return [_row_to_review(row) for row in rows]


async def insert_review(
    user_id: str,
    product_id: int,
    rating: int,
    comment: str,
    created_at: Optional[datetime] = None,
) -> int:
    created_at = created_at or datetime.now()
    with _backend_errors():
        async with connect() as conn:
            cur = await conn.execute(
                "INSERT INTO reviews(product_id, user_id, rating, comment, created_at) VALUES (?, ?, ?, ?, ?);",
                (product_id, user_id, rating, comment, _iso(created_at)),
            )
            review_id = cur.lastrowid
            await cur.close()
            await conn.commit()
    return int(review_id)


async def update_review(review_id: int, rating: int, comment: str) -> bool:
    """Overwrite rating and comment of an existing review. True if it existed."""
    with _backend_errors():
        async with connect() as conn:
            res = await conn.execute(
                "UPDATE reviews SET rating = ?, comment = ?, updated_at = ? WHERE id = ?;",
                (rating, comment, _iso(datetime.now()), review_id),
            )
            await conn.commit()
            return res.rowcount > 0
