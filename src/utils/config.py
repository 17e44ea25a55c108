# runtime settings, overridable through environment variables
import os


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except ValueError:
        return default


DB_PATH = os.getenv("STOREFRONT_DB", "data/storefront.sqlite")
CART_PATH = os.getenv("STOREFRONT_CART", "data/cart.json")

# supplied by the auth collaborator; None means nobody is signed in
USER_ID = os.getenv("STOREFRONT_USER") or None

REQUEST_TIMEOUT = _env_float("STOREFRONT_REQUEST_TIMEOUT", 60.0)
PURCHASE_TIMEOUT = _env_float("STOREFRONT_PURCHASE_TIMEOUT", 120.0)
READ_RETRIES = _env_int("STOREFRONT_READ_RETRIES", 2)
RETRY_DELAY = _env_float("STOREFRONT_RETRY_DELAY", 0.4)

CART_POLL_INTERVAL = _env_float("STOREFRONT_CART_POLL", 1.0)
ORDERS_POLL_INTERVAL = _env_float("STOREFRONT_ORDERS_POLL", 15.0)
