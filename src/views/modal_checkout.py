from typing import Optional

from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical, VerticalScroll
from textual.screen import ModalScreen
from textual.widgets import Button, Input, Label, MarkdownViewer, Select

from db.models import Order, ShippingProfile
from services import pricing
from services.orders import PAYMENT_METHODS
from utils.errors import AuthRequired, StorefrontError
from utils.pure import generate_markdown_table, money
from views.modal_dialog import DialogModal


class CheckoutModal(ModalScreen[Optional[Order]]):
    """
    Checkout form: order summary, shipping fields, payment and coupon.
    Dismisses with the placed Order, or None if nothing was ordered.

    Checks out the whole cart, or only `product_id` when given.
    """

    def __init__(self, product_id: Optional[int] = None):
        super().__init__()
        self._product_id = product_id

    def compose(self) -> ComposeResult:
        with Vertical():
            yield MarkdownViewer("", show_table_of_contents=False)
            with VerticalScroll(id="vscroll-checkout-form"):
                yield Label("Full Name")
                yield Input(id="input-full-name")
                yield Label("Contact Number")
                yield Input(id="input-contact", placeholder="09xx xxx xxxx")
                yield Label("Barangay")
                yield Select(
                    [(zone, zone) for zone in pricing.ZONES],
                    prompt="Select barangay",
                    id="select-zone",
                )
                yield Label("Street Address")
                yield Input(id="input-address", placeholder="House no., street")
                yield Label("Payment Method")
                yield Select(
                    [(m, m) for m in PAYMENT_METHODS],
                    value=PAYMENT_METHODS[0],
                    allow_blank=False,
                    id="select-payment",
                )
                yield Input(
                    id="input-reference",
                    placeholder="GCash reference number",
                    disabled=True,
                )
                with Horizontal(id="hort-coupon"):
                    yield Input(id="input-coupon", placeholder="Coupon code")
                    yield Button("Apply", id="btn-apply-coupon")
                yield Label("", id="label-coupon-msg")
            with Horizontal():
                yield Button("Go Back", id="btn-quit")
                yield Button("Place Order", id="btn-submit", variant="primary")

    def on_mount(self) -> None:
        self.prefill()
        self.render_summary()

    @work(exclusive=True, group="prefill")
    async def prefill(self) -> None:
        try:
            profile = await self.app.state.orders.load_shipping_defaults()
        except StorefrontError as exc:
            self.notify(f"Could not load saved shipping details: {exc}", severity="warning")
            return
        self.query_one("#input-full-name", Input).value = profile.full_name
        self.query_one("#input-contact", Input).value = profile.contact_number
        self.query_one("#input-address", Input).value = profile.street_address
        if profile.zone in pricing.SHIPPING_TABLE:
            self.query_one("#select-zone", Select).value = profile.zone
        self.query_one("#input-full-name", Input).focus()

    def _zone(self) -> str:
        value = self.query_one("#select-zone", Select).value
        return value if isinstance(value, str) else ""

    def _payment_method(self) -> str:
        value = self.query_one("#select-payment", Select).value
        return value if isinstance(value, str) else PAYMENT_METHODS[0]

    def _coupon(self) -> str:
        return self.query_one("#input-coupon", Input).value

    def _profile(self) -> ShippingProfile:
        return ShippingProfile(
            full_name=self.query_one("#input-full-name", Input).value,
            contact_number=self.query_one("#input-contact", Input).value,
            zone=self._zone(),
            street_address=self.query_one("#input-address", Input).value,
        )

    @on(Select.Changed, "#select-zone")
    @on(Input.Changed, "#input-coupon")
    def render_summary(self) -> None:
        orders = self.app.state.orders
        lines = orders.lines_for(self._product_id)
        price = orders.quote(self._zone(), self._coupon(), self._product_id)
        rows = [
            [line.name, money(line.unit_price), line.quantity, money(line.line_total)]
            for line in lines
        ]
        md = "### Order Summary\n\n"
        md += generate_markdown_table(
            ["Product Name", "Unit Price", "Quantity", "Total Price"],
            rows,
            ["l", "c", "c", "c"],
        )
        md += (
            f"\n\n**Subtotal:** {money(price.subtotal)}  \n"
            f"**Discount:** -{money(price.discount)}  \n"
            f"**Shipping:** {money(price.shipping_fee) if self._zone() else 'select a barangay'}  \n"
            f"**Total:** {money(price.total)}"
        )
        self.query_one(MarkdownViewer).document.update(md)

    @on(Select.Changed, "#select-payment")
    def handle_payment_changed(self) -> None:
        self.query_one("#input-reference", Input).disabled = self._payment_method() != "GCash"

    @on(Button.Pressed, "#btn-apply-coupon")
    def handle_apply_coupon(self) -> None:
        self.query_one("#label-coupon-msg", Label).update(pricing.describe_coupon(self._coupon()))
        self.render_summary()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(None)

    @on(Button.Pressed, "#btn-submit")
    @work(group="submit")
    async def handle_submit(self):
        submit_btn = self.query_one("#btn-submit", Button)
        if submit_btn.disabled:
            return
        # no second submission while one is in flight
        submit_btn.disabled = True
        try:
            if not await self.app.push_screen_wait(
                DialogModal(
                    "Place order? This cannot be undone.",
                    primary_text="Yes",
                    secondary_text="No",
                    tone="positive",
                )
            ):
                return
            submit_btn.label = "Placing..."
            try:
                order = await self.app.state.orders.place_order(
                    self._profile(),
                    payment_method=self._payment_method(),
                    coupon_code=self._coupon(),
                    payment_reference=self.query_one("#input-reference", Input).value,
                    product_id=self._product_id,
                )
            except AuthRequired as exc:
                self.notify(str(exc), title="Sign in required", severity="warning")
                return
            except StorefrontError as exc:
                # cart and form are untouched so the user can retry
                self.notify(str(exc), severity="error")
                return
            self.notify(f"Order placed. Your order number is {order.id}.")
            self.dismiss(order)
        finally:
            submit_btn.disabled = False
            submit_btn.label = "Place Order"
