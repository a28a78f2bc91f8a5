"""
Checkout: turns a user's cart into a confirmed order
"""
from decimal import Decimal
from typing import List, Optional, Tuple

from pymongo.client_session import ClientSession
import structlog

from bookstore.db import MongoDB
from bookstore.errors import (
    BookNotFoundError,
    CheckoutFollowUpError,
    EmptyCartError,
    InsufficientInventoryError,
    UserNotFoundError,
)
from bookstore.models import Order, OrderItem, OrderStatus, ShoppingCart, utcnow
from bookstore.repositories import (
    BookRepository,
    CartRepository,
    OrderRepository,
    UserRepository,
)


class CheckoutService:
    """
    Converts a cart into an order.

    Stock validation, inventory deduction and order creation are
    all-or-nothing: they run in a MongoDB transaction, or, when the
    deployment has no transaction support, every applied deduction is
    released again if a later step fails. Purchase history and cart
    clearing happen only once the order is stored.
    """

    def __init__(
        self,
        mongodb: MongoDB,
        books: BookRepository,
        users: UserRepository,
        carts: CartRepository,
        orders: OrderRepository,
    ):
        self.db = mongodb
        self.books = books
        self.users = users
        self.carts = carts
        self.orders = orders
        self.logger = structlog.get_logger().bind(component="checkout_service")

    def checkout(self, user_id: str) -> Order:
        """
        Place an order for everything in the user's cart.

        Args:
            user_id: User checking out

        Returns:
            The persisted order, in CONFIRMED status

        Raises:
            UserNotFoundError: if the user does not exist
            EmptyCartError: if the user has no cart or it has no items
            BookNotFoundError: if a cart line references a deleted book
            InsufficientInventoryError: if a line asks for more than is in stock
            CheckoutFollowUpError: if the order was stored but the purchase
                history or cart could not be updated afterwards
        """
        log = self.logger.bind(user_id=user_id)

        if self.users.get(user_id) is None:
            raise UserNotFoundError(user_id)

        cart = self.carts.get_by_user_id(user_id)
        if cart is None or cart.is_empty:
            log.warning("Checkout rejected: empty cart")
            raise EmptyCartError(user_id)

        log.info("Checkout started", lines=len(cart.items))
        order = self._place_order(user_id, cart)
        log.info("Order created", order_id=order.id, total=str(order.total_amount),
                 items=len(order.items))

        try:
            self.users.add_purchased_books(user_id, order.distinct_book_ids())
            self.carts.clear(user_id)
        except Exception as e:
            log.error("Post-checkout update failed", order_id=order.id, error=str(e))
            raise CheckoutFollowUpError(order, e) from e

        return order

    def _place_order(self, user_id: str, cart: ShoppingCart) -> Order:
        reserved: List[Tuple[str, int]] = []

        with self.db.transaction() as session:
            try:
                self._validate_stock(cart, session)
                items, total = self._take_stock(cart, session, reserved)

                order = Order(
                    user_id=user_id,
                    items=items,
                    total_amount=total,
                    order_date=utcnow(),
                    status=OrderStatus.CONFIRMED,
                )
                return self.orders.insert(order, session=session)

            except Exception:
                if session is None:
                    self._release(reserved)
                raise

    def _validate_stock(self, cart: ShoppingCart, session: Optional[ClientSession]) -> None:
        """Read-only pass over every line; nothing is written until all lines pass"""
        for item in cart.items:
            book = self.books.get(item.book_id, session=session)
            if book is None:
                self.logger.warning("Checkout rejected: book missing", book_id=item.book_id)
                raise BookNotFoundError(item.book_id)
            if item.quantity > book.inventory:
                self.logger.warning("Checkout rejected: insufficient inventory",
                                    book_id=book.id, available=book.inventory,
                                    requested=item.quantity)
                raise InsufficientInventoryError(book.title, book.inventory, item.quantity)

    def _take_stock(
        self,
        cart: ShoppingCart,
        session: Optional[ClientSession],
        reserved: List[Tuple[str, int]],
    ) -> Tuple[List[OrderItem], Decimal]:
        items = []
        total = Decimal("0")

        for line in cart.items:
            # price and title are captured fresh for the snapshot
            book = self.books.get(line.book_id, session=session)
            if book is None:
                raise BookNotFoundError(line.book_id)

            item = OrderItem(
                book_id=book.id,
                book_title=book.title,
                quantity=line.quantity,
                price_at_purchase=book.price,
            )
            self.books.decrement_inventory(book.id, line.quantity, session=session)
            reserved.append((book.id, line.quantity))

            items.append(item)
            total += item.line_total

        return items, total

    def _release(self, reserved: List[Tuple[str, int]]) -> None:
        """Undo inventory deductions when no transaction is available"""
        for book_id, quantity in reversed(reserved):
            try:
                self.books.release_inventory(book_id, quantity)
            except Exception as e:
                self.logger.error("Failed to release reserved inventory",
                                  book_id=book_id, quantity=quantity, error=str(e))
