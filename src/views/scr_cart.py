from textual import on, work
from textual.app import ComposeResult
from textual.containers import Container, Horizontal, HorizontalGroup, VerticalScroll
from textual.events import ScreenResume
from textual.message import Message
from textual.widgets import Button, Label, Rule

from db.models import CartLine
from utils import config
from utils.messages import CartChangedMessage, ModeSwitchedMessage
from utils.pure import money
from views.base_screen import BaseScreen
from views.modal_checkout import CheckoutModal
from views.modal_dialog import DialogModal
from views.modal_line_edit import LineEditModal


class CartLineActionMessage(Message):
    bubble = True

    def __init__(self, action: str) -> None:
        super().__init__()
        self.action = action


class CartLineActionLabel(Label):
    def action_edit(self):
        self.post_message(CartLineActionMessage("edit"))

    def action_remove(self):
        self.post_message(CartLineActionMessage("remove"))

    def action_buy(self):
        self.post_message(CartLineActionMessage("buy"))


class CartLineWidget(HorizontalGroup):
    def __init__(self, line: CartLine):
        super().__init__()
        self.line = line

    def compose(self):
        with Container(id="div-cart-item-group"):
            with Container(id="div-item"):
                yield Label(self.line.name, id="label-item-name")
                yield Label(f"x{self.line.quantity}", id="label-item-qty")
                yield Label(money(self.line.unit_price), id="label-item-price")
                yield Label(money(self.line.line_total), id="label-item-total")
            with Container(id="div-actions"):
                yield CartLineActionLabel("[@click=edit()]Edit[/]", id="link-item-edit")
                yield CartLineActionLabel("[@click=buy()]Buy[/]", id="link-item-buy")
                yield CartLineActionLabel("[@click=remove()]Remove[/]", id="link-item-remove")

    @on(CartLineActionMessage)
    @work()
    async def handle_action(self, message: CartLineActionMessage):
        message.stop()
        if message.action == "edit":
            if await self.app.push_screen_wait(LineEditModal(self.line)):
                self.post_message(CartChangedMessage())
        elif message.action == "buy":
            await self.screen.checkout(self.line.product_id)
        elif message.action == "remove":
            remove_confirmed = await self.app.push_screen_wait(
                DialogModal(
                    "Do you really want to remove this item from cart?",
                    primary_text="Yes",
                    secondary_text="No",
                    tone="warning",
                )
            )
            if remove_confirmed:
                self.app.state.cart.remove_item(self.line.product_id)
                self.notify("Item removed from cart.", severity="information")


class CartScreen(BaseScreen):
    """
    Cart lines with quantity editing, removal and checkout.

    The cart file may be rewritten by another view at any time; the screen
    polls it and redraws. Whoever wrote last wins.
    """

    def compose(self) -> ComposeResult:
        yield from super().compose()
        yield VerticalScroll(id="vertscroll-content")
        yield Label("Total Cart Value: ₱0.00", id="label-cart-total")
        yield Rule(line_style="dashed")
        with Horizontal(id="hort-buttons"):
            yield Button("Clear Cart", id="btn-clear-cart")
            yield Button("Refresh", id="btn-refresh")
            yield Button("Checkout All", id="btn-checkout", variant="primary")

    def on_mount(self):
        self.app.state.cart.on_change(lambda: self.post_message(CartChangedMessage()))
        self._cart_poll = self.set_interval(config.CART_POLL_INTERVAL, self.poll_cart_file)
        self.handle_cart_change()

    def on_unmount(self):
        self._cart_poll.stop()

    def poll_cart_file(self) -> None:
        # listeners post CartChangedMessage when another view wrote the file
        self.app.state.storage.poll()

    @on(CartChangedMessage)
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @on(Button.Pressed, "#btn-refresh")
    @work(exclusive=True, group="cart")  # exclusive, or redraws race and duplicate rows
    async def handle_cart_change(self):
        cart = self.app.state.cart
        lines = sorted(cart.lines, key=lambda x: x.product_id)

        content = self.query_one("#vertscroll-content")
        shown = sorted((c.line for c in content.children), key=lambda x: x.product_id)
        if shown == lines and content.children:
            return

        await content.remove_children()
        await content.mount_all([CartLineWidget(line) for line in lines])
        content.set_class(not lines, "no-items")

        self.query_one("#label-cart-total", Label).update(
            f"Total Cart Value: {money(cart.total())}"
        )

    @on(Button.Pressed, "#btn-clear-cart")
    @work()
    async def handle_clear_cart(self) -> None:
        cart = self.app.state.cart
        if cart.is_empty():
            self.app.notify("Cart is empty.", severity="warning")
            return

        remove_confirmed = await self.app.push_screen_wait(
            DialogModal(
                "Do you really want to remove all items from cart?",
                primary_text="Yes",
                secondary_text="No",
                tone="error",
            )
        )
        if remove_confirmed:
            cart.clear()

    @on(Button.Pressed, "#btn-checkout")
    @work()
    async def handle_checkout(self) -> None:
        await self.checkout(None)

    async def checkout(self, product_id: int | None) -> None:
        """Open the checkout modal for the whole cart or a single line."""
        if self.app.state.cart.is_empty():
            self.app.notify("Cart is empty.", severity="warning")
            return
        if not self.app.state.uid:
            self.app.notify(
                "Please sign in before checking out.",
                title="Sign in required",
                severity="warning",
            )
            return
        order = await self.app.push_screen_wait(CheckoutModal(product_id))
        if order is not None:
            self.post_message(CartChangedMessage())
