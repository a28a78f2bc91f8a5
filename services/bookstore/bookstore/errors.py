"""
Domain errors raised by the bookstore services
"""
from typing import Any, Optional


class BookstoreError(Exception):
    """Base class for all domain errors"""


class NotFoundError(BookstoreError):
    """A referenced resource does not exist"""

    resource = "Resource"

    def __init__(self, resource_id: str, field: str = "id"):
        self.resource_id = resource_id
        self.field = field
        super().__init__(f"{self.resource} not found with {field}: {resource_id}")


class UserNotFoundError(NotFoundError):
    resource = "User"


class BookNotFoundError(NotFoundError):
    resource = "Book"


class OrderNotFoundError(NotFoundError):
    resource = "Order"


class EmptyCartError(BookstoreError):
    """Checkout was requested for a cart with no items"""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__("Cannot create order from empty cart")


class InsufficientInventoryError(BookstoreError):
    """Requested quantity exceeds the stock on hand"""

    def __init__(self, book_title: str, available: int, requested: int):
        self.book_title = book_title
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient inventory for book: {book_title} "
            f"(available: {available}, requested: {requested})"
        )


class DuplicateError(BookstoreError):
    """A unique field (username, email) is already taken"""

    def __init__(self, field: str, value: Any):
        self.field = field
        self.value = value
        super().__init__(f"{field.capitalize()} already exists")


class InvalidCredentialsError(BookstoreError):
    def __init__(self):
        super().__init__("Invalid username or password")


class InvalidStatusTransitionError(BookstoreError):
    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot change order status from {current} to {requested}")


class CheckoutFollowUpError(BookstoreError):
    """
    The order was committed but recording the purchase history or clearing
    the cart failed afterwards. The order stays confirmed.
    """

    def __init__(self, order: Any, cause: Optional[BaseException] = None):
        self.order = order
        self.cause = cause
        super().__init__(
            f"Order {order.id} was confirmed but post-checkout update failed: {cause}"
        )
