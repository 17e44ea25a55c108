"""
Price computation for checkout: zone shipping fees, coupons, totals.

All functions are pure. Amounts are in pesos and rounded to centavos.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Union

from db.models import CartLine

NEAR_FEE = 20.0
MEDIUM_FEE = 40.0
FAR_FEE = 60.0
DEFAULT_FEE = FAR_FEE

# barangay -> fee tier, by distance from the store
SHIPPING_TABLE: Dict[str, float] = {
    "Poblacion": NEAR_FEE,
    "Pinagbarilan": NEAR_FEE,
    "Santo Cristo": NEAR_FEE,
    "Bagong Nayon": MEDIUM_FEE,
    "Barangca": MEDIUM_FEE,
    "Sabang": MEDIUM_FEE,
    "San Jose": MEDIUM_FEE,
    "San Roque": MEDIUM_FEE,
    "Santo Niño": MEDIUM_FEE,
    "Tangos": MEDIUM_FEE,
    "Tibag": MEDIUM_FEE,
    "Calantipay": FAR_FEE,
    "Catulinan": FAR_FEE,
    "Concepcion": FAR_FEE,
    "Hinukay": FAR_FEE,
    "Makinabang": FAR_FEE,
    "Matangtubig": FAR_FEE,
    "Pagala": FAR_FEE,
    "Paitan": FAR_FEE,
    "Piel": FAR_FEE,
    "Santa Barbara": FAR_FEE,
    "Subic": FAR_FEE,
    "Sulivan": FAR_FEE,
    "Tarcan": FAR_FEE,
    "Tiaong": FAR_FEE,
    "Tilapayong": FAR_FEE,
    "Virjen De Los Flores": FAR_FEE,
}

ZONES = sorted(SHIPPING_TABLE)


@dataclass(frozen=True)
class Percentage:
    rate: float  # 0.10 == 10%

    def apply(self, subtotal: float) -> float:
        return subtotal * self.rate

    def describe(self) -> str:
        return f"{self.rate * 100:g}% off"


@dataclass(frozen=True)
class FixedAmount:
    amount: float

    def apply(self, subtotal: float) -> float:
        return min(self.amount, subtotal)

    def describe(self) -> str:
        return f"₱{self.amount:g} off"


Coupon = Union[Percentage, FixedAmount]

COUPONS: Dict[str, Coupon] = {
    "SAVE10": Percentage(0.10),
    "LESS50": FixedAmount(50.0),
}


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: float
    discount: float
    shipping_fee: float
    total: float


def _round(amount: float) -> float:
    return round(amount, 2)


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def find_coupon(code: Optional[str]) -> Optional[Coupon]:
    return COUPONS.get(normalize_code(code))


def shipping_fee(zone: Optional[str]) -> float:
    """Tabulated fee for the zone; unknown or empty zones get the default tier."""
    return SHIPPING_TABLE.get((zone or "").strip(), DEFAULT_FEE)


def subtotal(lines: Iterable[CartLine]) -> float:
    return _round(sum(line.unit_price * line.quantity for line in lines))


def discount(code: Optional[str], subtotal: float) -> float:
    """Discount for a coupon code; unknown codes give 0, never more than subtotal."""
    coupon = find_coupon(code)
    if coupon is None or subtotal <= 0:
        return 0.0
    return _round(min(max(coupon.apply(subtotal), 0.0), subtotal))


def total(subtotal: float, discount: float, shipping_fee: float) -> float:
    return _round(max(0.0, subtotal - discount) + shipping_fee)


def quote(
    lines: Iterable[CartLine], zone: Optional[str], coupon_code: Optional[str]
) -> PriceBreakdown:
    sub = subtotal(lines)
    disc = discount(coupon_code, sub)
    fee = shipping_fee(zone)
    return PriceBreakdown(
        subtotal=sub, discount=disc, shipping_fee=fee, total=total(sub, disc, fee)
    )


def describe_coupon(code: Optional[str]) -> str:
    """Message shown when a customer applies a code."""
    if not normalize_code(code):
        return "Enter a coupon code."
    coupon = find_coupon(code)
    if coupon is None:
        return "Invalid coupon code."
    return f"Applied: {coupon.describe()}"
