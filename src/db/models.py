# provide dataclass models

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class CartLine:
    product_id: int
    name: str
    unit_price: float  # >= 0, price when the item was added
    quantity: int = 1  # >= 1
    image_ref: Optional[str] = None
    options: Optional[Dict[str, Any]] = None

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "price": self.unit_price,
            "qty": self.quantity,
            "image_url": self.image_ref,
            "options": self.options,
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "CartLine":
        """Build a line from a stored snapshot entry; tolerant of missing keys."""
        try:
            qty = max(1, int(raw.get("qty") or 1))
        except (TypeError, ValueError):
            qty = 1
        return cls(
            product_id=int(raw["product_id"]),
            name=str(raw.get("name") or ""),
            unit_price=max(0.0, float(raw.get("price") or 0)),
            quantity=qty,
            image_ref=raw.get("image_url"),
            options=raw.get("options"),
        )


@dataclass(frozen=True)
class ShippingProfile:
    full_name: str = ""
    contact_number: str = ""
    zone: str = ""  # barangay
    street_address: str = ""

    def stripped(self) -> "ShippingProfile":
        return ShippingProfile(
            full_name=(self.full_name or "").strip(),
            contact_number=(self.contact_number or "").strip(),
            zone=(self.zone or "").strip(),
            street_address=(self.street_address or "").strip(),
        )

    def missing_fields(self) -> Tuple[str, ...]:
        p = self.stripped()
        return tuple(
            name
            for name, value in (
                ("full name", p.full_name),
                ("contact number", p.contact_number),
                ("zone", p.zone),
                ("street address", p.street_address),
            )
            if not value
        )


@dataclass(frozen=True)
class Order:
    id: int
    user_id: str
    lines: Tuple[CartLine, ...]
    total: float
    status: Optional[str]  # raw text as stored, may be blank; see services.status.normalize
    created_at: datetime
    # None when the row was written with the reduced schema
    subtotal: Optional[float] = None
    discount: Optional[float] = None
    shipping_fee: Optional[float] = None
    zone: Optional[str] = None
    payment_method: Optional[str] = None
    coupon_code: Optional[str] = None
    shipping: ShippingProfile = field(default_factory=ShippingProfile)
    payment_reference: Optional[str] = None


@dataclass(frozen=True)
class Review:
    id: int
    product_id: int
    user_id: str
    rating: int  # 1..5
    comment: str
    created_at: datetime
