from typing import Dict, List, Optional

from textual import on, work
from textual.app import ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.events import ScreenResume
from textual.widgets import Button, DataTable, MarkdownViewer

from db.models import Order
from services.status import OrderStatus, can_cancel, display
from utils import config
from utils.errors import NetworkTimeout, StorefrontError
from utils.messages import ModeSwitchedMessage, OrderCancelledMessage
from utils.pure import generate_markdown_table, money
from views.base_screen import BaseScreen
from views.modal_dialog import DialogModal
from views.modal_review import ReviewModal


class PastOrdersScreen(BaseScreen):
    """
    Customers browse their orders (newest first), cancel the ones still
    To Ship and review products of completed ones.

    Status changes come from the fulfillment side, so the list is polled.
    """

    BINDINGS = [
        Binding("enter", "noop", "View Order Detail", show=True, key_display="⏎"),
    ]

    def __init__(self) -> None:
        super().__init__()
        self._orders: Dict[int, Order] = {}
        self._selected: Optional[int] = None

    def compose(self) -> ComposeResult:
        yield from super().compose()
        with Vertical():
            yield MarkdownViewer(id="md-order-detail", show_table_of_contents=False)
            yield DataTable(id="table-orders")
        with Horizontal(id="hort-table-control"):
            yield Button("Refresh", id="btn-refresh")
            yield Button("Cancel Order", id="btn-cancel", variant="error", disabled=True)
            yield Button("Write Review", id="btn-review", variant="success", disabled=True)

    def on_mount(self) -> None:
        table = self.query_one(DataTable)
        table.cursor_type = "row"
        table.zebra_stripes = True
        table.add_columns("Order No", "Date", "Status", "Payment", "Total")
        self._poll = self.set_interval(config.ORDERS_POLL_INTERVAL, self.handle_refresh)
        self.handle_refresh()

    def on_unmount(self) -> None:
        self._poll.stop()

    def action_noop(self) -> None:
        pass

    @on(Button.Pressed, "#btn-refresh")
    @on(ModeSwitchedMessage)
    @on(ScreenResume)
    @on(OrderCancelledMessage)
    def handle_refresh(self) -> None:
        self._load_orders()

    @work(exclusive=True, group="orders")
    async def _load_orders(self) -> None:
        try:
            orders: List[Order] = await self.app.state.orders.list_orders()
        except NetworkTimeout as exc:
            # unknown, not empty: keep what is shown
            self.notify(f"{exc}. Showing the last loaded orders.", severity="warning")
            return
        except StorefrontError as exc:
            self.report_error(exc)
            return

        self._orders = {o.id: o for o in orders}
        table = self.query_one(DataTable)
        table.clear()
        for o in orders:
            table.add_row(
                o.id,
                o.created_at.strftime("%Y-%m-%d %H:%M"),
                display(o.status),
                o.payment_method or "-",
                money(o.total),
                key=str(o.id),
            )
        if self._selected in self._orders:
            table.move_cursor(row=table.get_row_index(str(self._selected)))
        elif orders:
            self._selected = orders[0].id
        else:
            self._selected = None
        self._render_detail()

    @on(DataTable.RowHighlighted)
    def handle_row_highlight(self, event: DataTable.RowHighlighted) -> None:
        if event.row_key is None or event.row_key.value is None:
            return
        self._selected = int(event.row_key.value)
        self._render_detail()

    def _render_detail(self) -> None:
        order = self._orders.get(self._selected) if self._selected is not None else None
        self.query_one("#btn-cancel", Button).disabled = not (order and can_cancel(order.status))
        self.query_one("#btn-review", Button).disabled = not (
            order and self.app.state.reviews.is_eligible(order)
        )
        viewer = self.query_one("#md-order-detail", MarkdownViewer)
        if not order:
            viewer.document.update("### Select an order to view its details.")
            return

        header = (
            f"### Order #{order.id}\n"
            f"Date: {order.created_at:%Y-%m-%d %H:%M}  \n"
            f"Status: **{display(order.status)}**  \n"
            f"Payment: {order.payment_method or '-'}"
            f"{' (ref ' + order.payment_reference + ')' if order.payment_reference else ''}  \n"
            f"Coupon: {order.coupon_code or '-'}  \n"
            f"Ship To: {order.shipping.full_name or '-'}, {order.shipping.contact_number or '-'}, "
            f"{order.shipping.street_address or '-'}, {order.zone or '-'}\n\n"
        )
        rows = [
            [line.name or f"Product {line.product_id}", line.quantity, money(line.unit_price), money(line.line_total)]
            for line in order.lines
        ]
        items = generate_markdown_table(
            ["Product", "Qty", "Unit Price", "Line Total"], rows, ["l", "r", "r", "r"]
        )
        summary = ["", ""]
        if order.subtotal is not None:
            summary.append(f"**Subtotal:** {money(order.subtotal)}  ")
            summary.append(f"**Discount:** -{money(order.discount or 0)}  ")
            summary.append(f"**Shipping:** {money(order.shipping_fee or 0)}  ")
        summary.append(f"**Total:** {money(order.total)}")
        viewer.document.update(header + items + "\n".join(summary))

    @on(Button.Pressed, "#btn-cancel")
    @work(group="cancel")
    async def handle_cancel(self) -> None:
        order = self._orders.get(self._selected) if self._selected is not None else None
        if order is None:
            return
        if not await self.app.push_screen_wait(
            DialogModal(
                f"Cancel order #{order.id}? This cannot be undone.",
                primary_text="Cancel Order",
                secondary_text="Keep",
                tone="error",
            )
        ):
            return
        button = self.query_one("#btn-cancel", Button)
        button.disabled = True
        try:
            cancelled = await self.app.state.orders.cancel_order(order.id)
        except StorefrontError as exc:
            self.report_error(exc)
            self._render_detail()
            return
        self.notify(f"Order #{cancelled.id} cancelled.")
        self.post_message(OrderCancelledMessage(cancelled.id))

    @on(Button.Pressed, "#btn-review")
    @work(group="review")
    async def handle_review(self) -> None:
        order = self._orders.get(self._selected) if self._selected is not None else None
        if order is None:
            return
        if not self.app.state.reviews.is_eligible(order):
            self.notify(
                f"Reviews open once the order is {OrderStatus.COMPLETED.display}.",
                severity="warning",
            )
            return
        await self.app.push_screen_wait(ReviewModal(order))
