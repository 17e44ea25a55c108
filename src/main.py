from textual import on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import LoadingIndicator

from utils import config
from utils.logger import get_logger
from utils.messages import ModeSwitchedMessage, QuitRequestedMessage
from utils.state import GlobalState
from views.scr_cart import CartScreen
from views.scr_past_orders import PastOrdersScreen

_logger = get_logger(__name__)


class StorefrontApp(App):
    BINDINGS = [
        Binding("ctrl+t", "switch_light", "Toggle Theme", show=True),
    ]

    MODES = {
        "cart": CartScreen,
        "orders": PastOrdersScreen,
    }

    MODE_TITLES = {
        "cart": "Cart",
        "orders": "My Orders",
    }

    CSS_PATH = [
        "styles/index.tcss",
        "styles/cart.tcss",
        "styles/orders.tcss",
    ]

    state: GlobalState

    def __init__(self, uid: str | None = None):
        super().__init__()
        self.state = GlobalState(uid=uid)

    def compose(self) -> ComposeResult:
        yield LoadingIndicator()

    async def on_mount(self) -> None:
        if not self.state.uid:
            _logger.warning("No STOREFRONT_USER set, running signed out")
            self.notify(
                "You are not signed in. You can edit the cart but not check out.",
                severity="warning",
            )
        self.post_message(ModeSwitchedMessage(self.current_mode, "cart"))
        await self.switch_mode("cart")

    def action_switch_light(self):
        if self.theme == "textual-dark":
            self.theme = "solarized-light"
        else:
            self.theme = "textual-dark"
        self.notify(f"Theme changed to {self.theme}")

    @on(QuitRequestedMessage)
    @work
    async def handle_quit(self):
        self.state.cart.close()
        self.exit()


def run() -> None:
    StorefrontApp(uid=config.USER_ID).run()


if __name__ == "__main__":
    run()
