from textual import events, on
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.reactive import reactive
from textual.screen import ModalScreen
from textual.validation import Number
from textual.widgets import Button, Input, Label, MarkdownViewer

from db.models import CartLine
from utils.pure import generate_markdown_table, money


class LineEditModal(ModalScreen[bool]):
    """
    Change the quantity of one cart line.
    Will return true if the cart changed, false if not
    """

    CSS = """
    #input-line-qty {
        width: 10;
    }
    #btn-sub-qty, #btn-add-qty {
        min-width: 4
    }
    """

    order_qty = reactive(1)

    def __init__(self, line: CartLine) -> None:
        super().__init__()
        self._line = line

    def compose(self) -> ComposeResult:
        with Horizontal(id="hort-line-detail"):
            yield MarkdownViewer("", show_table_of_contents=False)
            with Vertical():
                yield Label("Quantity")
                with Horizontal():
                    yield Button("-", id="btn-sub-qty")
                    yield Input(
                        value=str(self._line.quantity),
                        id="input-line-qty",
                        type="integer",
                        validators=[Number(minimum=1)],
                    )
                    yield Button("+", id="btn-add-qty")
                with Horizontal():
                    yield Button("Go Back", id="btn-quit")
                    yield Button("Update Cart", id="btn-update", variant="primary")

    async def on_mount(self):
        line = self._line
        rows = [
            ["Product", line.name],
            ["Product ID", line.product_id],
            ["Unit Price", money(line.unit_price)],
        ]
        if line.options:
            rows += [[k.title(), v] for k, v in line.options.items()]
        md = f"### {line.name}\n\n" + generate_markdown_table(["Attribute", "Value"], rows, ["l", "l"])
        await self.query_one(MarkdownViewer).document.update(md)
        self.order_qty = line.quantity
        self.query_one("#input-line-qty").focus()

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(False)

    def on_input_changed(self, message: Input.Changed) -> None:
        if message.input.id == "input-line-qty" and message.input.is_valid:
            self.order_qty = int(message.value)

    def watch_order_qty(self, qty: int) -> None:
        self.query_one("#btn-sub-qty").disabled = qty <= 1
        qty_input = self.query_one("#input-line-qty", Input)
        if qty_input.value != str(qty):
            qty_input.value = str(qty)

    @on(Button.Pressed, "#btn-add-qty")
    def handle_add_qty(self):
        self.order_qty += 1

    @on(Button.Pressed, "#btn-sub-qty")
    def handle_sub_qty(self):
        if self.order_qty > 1:
            self.order_qty -= 1

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self):
        self.dismiss(False)

    @on(Button.Pressed, "#btn-update")
    def handle_update(self):
        if self.order_qty == self._line.quantity:
            self.dismiss(False)
            return
        # non-numeric input is clamped to 1 by the cart
        self.app.state.cart.update_quantity(
            self._line.product_id, self.query_one("#input-line-qty", Input).value
        )
        self.app.notify("Updated cart item quantity.")
        self.dismiss(True)
