"""
Business logic for cart operations
"""
from decimal import Decimal
from typing import Tuple
import structlog

from bookstore.errors import BookNotFoundError
from bookstore.models import CartLineView, CartView, ShoppingCart
from bookstore.repositories import BookRepository, CartRepository


class CartService:
    """Service layer for cart business logic"""

    def __init__(self, repository: CartRepository, books: BookRepository):
        self.repo = repository
        self.books = books
        self.logger = structlog.get_logger().bind(component="cart_service")

    def get_cart(self, user_id: str) -> ShoppingCart:
        """
        Get cart for a user. Creates an empty cart if it doesn't exist.

        Args:
            user_id: User identifier

        Returns:
            ShoppingCart instance
        """
        try:
            return self.repo.get_or_create(user_id)
        except Exception as e:
            self.logger.error("Error getting cart", user_id=user_id, error=str(e))
            raise

    def add_item(self, user_id: str, book_id: str, quantity: int) -> Tuple[ShoppingCart, bool]:
        """
        Add a book to the cart or increment its quantity if already present.

        Args:
            user_id: User identifier
            book_id: Book to add
            quantity: Copies to add

        Returns:
            Tuple of (updated cart, was_new_item)

        Raises:
            ValueError: If quantity is not positive
            BookNotFoundError: If the book does not exist
        """
        try:
            if quantity <= 0:
                raise ValueError("Quantity must be positive")

            if self.books.get(book_id) is None:
                raise BookNotFoundError(book_id)

            cart = self.get_cart(user_id)
            was_new_item = cart.add_item(book_id, quantity)

            cart = self.repo.save(cart)
            return cart, was_new_item

        except (ValueError, BookNotFoundError) as e:
            self.logger.warning("Invalid add item request", user_id=user_id, book_id=book_id, error=str(e))
            raise
        except Exception as e:
            self.logger.error("Error adding item to cart", user_id=user_id, error=str(e))
            raise

    def remove_item(self, user_id: str, book_id: str) -> Tuple[ShoppingCart, bool]:
        """
        Remove a book from the cart.

        Returns:
            Tuple of (updated cart, was_removed)
        """
        try:
            cart = self.get_cart(user_id)
            was_removed = cart.remove_item(book_id)

            if was_removed:
                cart = self.repo.save(cart)

            return cart, was_removed

        except Exception as e:
            self.logger.error("Error removing item from cart", user_id=user_id, error=str(e))
            raise

    def update_item_quantity(self, user_id: str, book_id: str, quantity: int) -> ShoppingCart:
        """Set the quantity of a line. Zero or less removes the line."""
        try:
            cart = self.get_cart(user_id)
            if cart.update_item_quantity(book_id, quantity):
                cart = self.repo.save(cart)
            return cart

        except Exception as e:
            self.logger.error("Error updating cart item", user_id=user_id, book_id=book_id, error=str(e))
            raise

    def clear_cart(self, user_id: str) -> None:
        """Remove all items; the cart document is kept for reuse"""
        try:
            self.repo.clear(user_id)
        except Exception as e:
            self.logger.error("Error clearing cart", user_id=user_id, error=str(e))
            raise

    def get_cart_view(self, user_id: str) -> CartView:
        """
        Cart lines joined with current catalog data for display.
        Lines whose book has since been deleted are skipped.
        """
        cart = self.get_cart(user_id)
        lines = []
        for item in cart.items:
            book = self.books.get(item.book_id)
            if book is None:
                self.logger.info("Skipping deleted book in cart view", user_id=user_id, book_id=item.book_id)
                continue
            lines.append(CartLineView(
                book_id=item.book_id,
                title=book.title,
                author=book.author,
                unit_price=book.price,
                quantity=item.quantity,
                line_total=book.price * item.quantity,
                in_stock=book.inventory >= item.quantity,
            ))

        return CartView(
            cart_id=cart.id,
            user_id=user_id,
            items=lines,
            total_quantity=sum(line.quantity for line in lines),
            subtotal=sum((line.line_total for line in lines), Decimal("0")),
        )
