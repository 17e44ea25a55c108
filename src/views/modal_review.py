from typing import Dict

from textual import events, on, work
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.validation import Number
from textual.widgets import Button, Input, Label, Select

from db.models import Order, Review
from utils.errors import AuthRequired, StorefrontError


class ReviewModal(ModalScreen[bool]):
    """
    Rate the products of a completed order. Shows the current review of
    the selected product, if any; submitting replaces it.
    Returns True if at least one review was saved.
    """

    def __init__(self, order: Order) -> None:
        super().__init__()
        self._order = order
        self._latest: Dict[int, Review] = {}
        self._saved = False

    def compose(self) -> ComposeResult:
        with Vertical(id="div-review"):
            yield Label(f"Review products from order #{self._order.id}")
            yield Select(
                [
                    (line.name or f"Product {line.product_id}", line.product_id)
                    for line in self._order.lines
                ],
                allow_blank=False,
                id="select-product",
            )
            yield Label("Rating (1-5)")
            yield Input(
                id="input-rating",
                type="integer",
                validators=[Number(minimum=1, maximum=5)],
            )
            yield Label("Comment")
            yield Input(id="input-comment", placeholder="What did you think?")
            with Horizontal():
                yield Button("Done", id="btn-quit")
                yield Button("Submit Review", id="btn-submit", variant="primary")

    def on_mount(self) -> None:
        self.load_reviews()

    @work(exclusive=True, group="load")
    async def load_reviews(self) -> None:
        try:
            self._latest = await self.app.state.reviews.load_latest_for(
                self.app.state.uid, [line.product_id for line in self._order.lines]
            )
        except StorefrontError as exc:
            self.notify(f"Could not load your reviews: {exc}", severity="warning")
        self._show_current()

    def _product_id(self) -> int | None:
        value = self.query_one("#select-product", Select).value
        return value if isinstance(value, int) else None

    @on(Select.Changed, "#select-product")
    def _show_current(self) -> None:
        review = self._latest.get(self._product_id())
        self.query_one("#input-rating", Input).value = str(review.rating) if review else ""
        self.query_one("#input-comment", Input).value = review.comment if review else ""
        self.query_one("#btn-submit", Button).label = (
            "Update Review" if review else "Submit Review"
        )

    def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(self._saved)

    @on(Button.Pressed, "#btn-quit")
    def handle_quit(self) -> None:
        self.dismiss(self._saved)

    @on(Button.Pressed, "#btn-submit")
    @work(group="submit")
    async def handle_submit(self) -> None:
        product_id = self._product_id()
        if product_id is None:
            return
        raw_rating = self.query_one("#input-rating", Input).value
        try:
            rating = int(raw_rating)
        except ValueError:
            self.notify("Rating must be a whole number from 1 to 5.", severity="error")
            return

        button = self.query_one("#btn-submit", Button)
        button.disabled = True
        try:
            review = await self.app.state.reviews.submit(
                self.app.state.uid,
                product_id,
                rating,
                self.query_one("#input-comment", Input).value,
                order=self._order,
            )
        except AuthRequired as exc:
            self.notify(str(exc), title="Sign in required", severity="warning")
            return
        except StorefrontError as exc:
            # the draft stays in the form
            self.notify(str(exc), severity="error")
            return
        finally:
            button.disabled = False
        self._latest[product_id] = review
        self._saved = True
        self._show_current()
        self.notify("Thanks for your feedback!")
