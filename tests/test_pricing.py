import unittest

from db.models import CartLine
from services import pricing


class PricingTestCase(unittest.TestCase):
    # ---------- shipping ----------

    def test_every_tabulated_zone_returns_its_fee(self):
        for zone, fee in pricing.SHIPPING_TABLE.items():
            with self.subTest(zone=zone):
                self.assertEqual(pricing.shipping_fee(zone), fee)
        self.assertEqual(pricing.shipping_fee("Poblacion"), 20)
        self.assertEqual(pricing.shipping_fee("Sabang"), 40)
        self.assertEqual(pricing.shipping_fee("Tiaong"), 60)

    def test_unknown_or_empty_zone_gets_default_tier(self):
        for zone in ("", "   ", None, "Atlantis", "poblacion x"):
            with self.subTest(zone=zone):
                self.assertEqual(pricing.shipping_fee(zone), pricing.DEFAULT_FEE)
        self.assertEqual(pricing.DEFAULT_FEE, max(pricing.SHIPPING_TABLE.values()))

    def test_zone_is_trimmed(self):
        self.assertEqual(pricing.shipping_fee("  Poblacion "), 20)

    def test_zones_list_is_sorted_and_complete(self):
        self.assertEqual(pricing.ZONES, sorted(pricing.SHIPPING_TABLE))
        self.assertEqual(len(pricing.ZONES), 27)

    # ---------- coupons ----------

    def test_percentage_coupon(self):
        self.assertEqual(pricing.discount("SAVE10", 200), 20)
        self.assertEqual(pricing.discount("  save10 ", 200), 20)

    def test_fixed_coupon_is_capped_at_subtotal(self):
        self.assertEqual(pricing.discount("LESS50", 200), 50)
        self.assertEqual(pricing.discount("LESS50", 30), 30)
        self.assertEqual(pricing.discount("LESS50", 0), 0)

    def test_unknown_code_gives_no_discount(self):
        for s in (0, 1, 99.99, 200, 10_000):
            for code in ("", None, "FREE", "SAVE 10", "save1"):
                with self.subTest(subtotal=s, code=code):
                    self.assertEqual(pricing.discount(code, s), 0)
                    fee = pricing.shipping_fee("Poblacion")
                    self.assertEqual(pricing.total(s, 0, fee), round(s + fee, 2))

    def test_describe_coupon(self):
        self.assertEqual(pricing.describe_coupon(""), "Enter a coupon code.")
        self.assertEqual(pricing.describe_coupon("nope"), "Invalid coupon code.")
        self.assertEqual(pricing.describe_coupon("save10"), "Applied: 10% off")
        self.assertEqual(pricing.describe_coupon("LESS50"), "Applied: ₱50 off")

    # ---------- totals ----------

    def test_total_never_negative(self):
        self.assertEqual(pricing.total(30, 50, 0), 0)
        self.assertEqual(pricing.total(30, 50, 20), 20)
        for s, d, f in [(0, 0, 0), (10, 10, 0), (10, 1000, 60), (5.5, 0.25, 40)]:
            with self.subTest(s=s, d=d, f=f):
                self.assertGreaterEqual(pricing.total(s, d, f), 0)

    def test_total_rounds_to_centavos(self):
        self.assertEqual(pricing.total(0.1 + 0.2, 0, 0), 0.3)
        self.assertEqual(pricing.discount("SAVE10", 33.33), 3.33)

    def test_quote_examples(self):
        lines = [CartLine(product_id=7, name="Bag", unit_price=100, quantity=2)]
        self.assertEqual(
            pricing.quote(lines, "Poblacion", "SAVE10"),
            pricing.PriceBreakdown(subtotal=200, discount=20, shipping_fee=20, total=200),
        )
        self.assertEqual(
            pricing.quote(lines, "Poblacion", "LESS50"),
            pricing.PriceBreakdown(subtotal=200, discount=50, shipping_fee=20, total=170),
        )

    def test_quote_is_repeatable(self):
        lines = [
            CartLine(product_id=1, name="A", unit_price=19.99, quantity=3),
            CartLine(product_id=2, name="B", unit_price=5, quantity=1),
        ]
        first = pricing.quote(lines, "Tibag", "SAVE10")
        pricing.quote(lines, "Poblacion", "LESS50")
        self.assertEqual(pricing.quote(lines, "Tibag", "SAVE10"), first)
