class StorefrontError(Exception):
    """
    Base for every error a storefront service is allowed to raise.
    Screens catch this and show the message instead of crashing.
    """


class ValidationError(StorefrontError):
    """Missing or invalid input. Recoverable locally, never retried."""


class OrderNotCancellable(ValidationError):
    """The order is past the point where it can be cancelled."""

    def __init__(self, order_id: int, status: str) -> None:
        super().__init__(f"Order #{order_id} is {status} and can no longer be cancelled.")
        self.order_id = order_id
        self.status = status


class NetworkTimeout(StorefrontError):
    """A remote call exceeded its bound. Outcome unknown, not "empty"."""


class PersistenceError(StorefrontError):
    """The backend rejected a write or a read failed for good."""


class AuthRequired(StorefrontError):
    """No signed-in user. Callers should prompt for sign-in."""

    def __init__(self, message: str = "Please sign in to continue.") -> None:
        super().__init__(message)
