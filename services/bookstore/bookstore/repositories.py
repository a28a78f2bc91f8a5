"""
Repositories for the books, users, shopping_carts and orders collections
"""
import re
import uuid
from typing import Dict, List, Optional, Tuple

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.client_session import ClientSession
from pymongo.errors import DuplicateKeyError
import structlog

from bookstore.db import MongoDB
from bookstore.errors import (
    BookNotFoundError,
    DuplicateError,
    InsufficientInventoryError,
    UserNotFoundError,
)
from bookstore.models import Book, Order, OrderStatus, ShoppingCart, User, utcnow


def new_id() -> str:
    return str(uuid.uuid4())


class BookRepository:
    """Repository for catalog operations"""

    SEARCH_FIELDS = ("author", "publisher", "genre", "title")

    def __init__(self, mongodb: MongoDB):
        self.db = mongodb
        self.logger = structlog.get_logger().bind(component="book_repository")

    def get(self, book_id: str, session: Optional[ClientSession] = None) -> Optional[Book]:
        """Get a book by id, None if it does not exist"""
        doc = self.db.books.find_one({"_id": book_id}, session=session)
        self.logger.debug("Get book", book_id=book_id, found=doc is not None)
        return Book.from_dict(doc)

    def list_all(self) -> List[Book]:
        return [Book.from_dict(doc) for doc in self.db.books.find()]

    def search(self, filters: Dict[str, str]) -> List[Book]:
        """
        Case-insensitive substring match on the given fields, combined with AND.
        Unknown fields and empty values are ignored.
        """
        query = {}
        for field, value in filters.items():
            if field in self.SEARCH_FIELDS and value:
                query[field] = {"$regex": re.escape(value), "$options": "i"}

        books = [Book.from_dict(doc) for doc in self.db.books.find(query)]
        self.logger.debug("Search books", filters=list(query), results=len(books))
        return books

    def insert(self, book: Book) -> Book:
        book = book.model_copy(update={"id": book.id or new_id()})
        self.db.books.insert_one(book.to_dict())
        self.logger.info("Book created", book_id=book.id, title=book.title)
        return book

    def replace(self, book: Book) -> bool:
        result = self.db.books.replace_one({"_id": book.id}, book.to_dict())
        self.logger.info("Book replaced", book_id=book.id, matched=result.matched_count)
        return result.matched_count > 0

    def delete(self, book_id: str) -> bool:
        result = self.db.books.delete_one({"_id": book_id})
        deleted = result.deleted_count > 0
        self.logger.info("Book deleted", book_id=book_id, deleted=deleted)
        return deleted

    def decrement_inventory(
        self,
        book_id: str,
        quantity: int,
        session: Optional[ClientSession] = None
    ) -> Book:
        """
        Atomically take `quantity` copies out of stock.

        The update only applies while inventory >= quantity, so stock can
        never go negative even under concurrent checkouts.

        Raises:
            BookNotFoundError: if the book does not exist
            InsufficientInventoryError: if fewer than `quantity` copies remain
        """
        doc = self.db.books.find_one_and_update(
            {"_id": book_id, "inventory": {"$gte": quantity}},
            {"$inc": {"inventory": -quantity}},
            return_document=ReturnDocument.AFTER,
            session=session,
        )
        if doc is not None:
            self.logger.debug("Inventory decremented", book_id=book_id,
                              quantity=quantity, remaining=doc["inventory"])
            return Book.from_dict(doc)

        current = self.get(book_id, session=session)
        if current is None:
            raise BookNotFoundError(book_id)
        self.logger.warning("Inventory decrement rejected", book_id=book_id,
                            available=current.inventory, requested=quantity)
        raise InsufficientInventoryError(current.title, current.inventory, quantity)

    def release_inventory(
        self,
        book_id: str,
        quantity: int,
        session: Optional[ClientSession] = None
    ) -> None:
        """Put back copies taken by decrement_inventory"""
        self.db.books.update_one(
            {"_id": book_id},
            {"$inc": {"inventory": quantity}},
            session=session,
        )
        self.logger.info("Inventory released", book_id=book_id, quantity=quantity)


class UserRepository:
    """Repository for user accounts"""

    def __init__(self, mongodb: MongoDB):
        self.db = mongodb
        self.logger = structlog.get_logger().bind(component="user_repository")

    def get(self, user_id: str, session: Optional[ClientSession] = None) -> Optional[User]:
        return User.from_dict(self.db.users.find_one({"_id": user_id}, session=session))

    def get_by_username(self, username: str) -> Optional[User]:
        return User.from_dict(self.db.users.find_one({"username": username}))

    def exists_by_username(self, username: str) -> bool:
        return self.db.users.count_documents({"username": username}, limit=1) > 0

    def exists_by_email(self, email: str) -> bool:
        return self.db.users.count_documents({"email": email}, limit=1) > 0

    def list_all(self) -> List[User]:
        return [User.from_dict(doc) for doc in self.db.users.find().sort("_id", ASCENDING)]

    def list_purchase_histories(self) -> List[Tuple[str, List[str]]]:
        """(user_id, purchased_book_ids) for every user, in a stable order"""
        cursor = self.db.users.find(
            {},
            projection={"purchased_book_ids": 1},
        ).sort("_id", ASCENDING)
        return [(doc["_id"], list(doc.get("purchased_book_ids") or [])) for doc in cursor]

    def insert(self, user: User) -> User:
        user = user.model_copy(update={"id": user.id or new_id()})
        try:
            self.db.users.insert_one(user.to_dict())
        except DuplicateKeyError as e:
            raise self._duplicate_error(e, user) from e
        self.logger.info("User created", user_id=user.id, username=user.username)
        return user

    def update_profile(self, user: User) -> User:
        """
        Overwrite account fields. The purchase history is left untouched,
        only checkout writes it.
        """
        fields = user.to_dict()
        fields.pop("_id", None)
        fields.pop("purchased_book_ids", None)
        try:
            doc = self.db.users.find_one_and_update(
                {"_id": user.id},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError as e:
            raise self._duplicate_error(e, user) from e
        if doc is None:
            raise UserNotFoundError(user.id)
        self.logger.info("User updated", user_id=user.id)
        return User.from_dict(doc)

    def add_purchased_books(
        self,
        user_id: str,
        book_ids: List[str],
        session: Optional[ClientSession] = None
    ) -> None:
        """Append book ids that are not already in the purchase history"""
        result = self.db.users.update_one(
            {"_id": user_id},
            {"$addToSet": {"purchased_book_ids": {"$each": list(book_ids)}}},
            session=session,
        )
        if result.matched_count == 0:
            raise UserNotFoundError(user_id)
        self.logger.info("Purchase history updated", user_id=user_id,
                         book_ids=list(book_ids), modified=result.modified_count)

    def delete(self, user_id: str) -> bool:
        result = self.db.users.delete_one({"_id": user_id})
        deleted = result.deleted_count > 0
        self.logger.info("User deleted", user_id=user_id, deleted=deleted)
        return deleted

    @staticmethod
    def _duplicate_error(error: DuplicateKeyError, user: User) -> DuplicateError:
        key_pattern = (error.details or {}).get("keyPattern") or {}
        if "email" in key_pattern:
            return DuplicateError("email", user.email)
        return DuplicateError("username", user.username)


class CartRepository:
    """Repository for cart operations"""

    def __init__(self, mongodb: MongoDB):
        self.db = mongodb
        self.logger = structlog.get_logger().bind(component="cart_repository")

    def get_by_user_id(
        self,
        user_id: str,
        session: Optional[ClientSession] = None
    ) -> Optional[ShoppingCart]:
        """Get cart for a user without creating one"""
        cart = self.db.carts.find_one({"user_id": user_id}, session=session)
        self.logger.debug("Get cart", user_id=user_id, found=cart is not None)
        return ShoppingCart.from_dict(cart)

    def get_or_create(self, user_id: str) -> ShoppingCart:
        """Get cart for a user, inserting an empty one on first access"""
        doc = self.db.carts.find_one_and_update(
            {"user_id": user_id},
            {"$setOnInsert": {
                "_id": new_id(),
                "user_id": user_id,
                "items": [],
                "updated_at": utcnow(),
            }},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        return ShoppingCart.from_dict(doc)

    def save(self, cart: ShoppingCart, session: Optional[ClientSession] = None) -> ShoppingCart:
        """Create or update a cart"""
        cart = cart.model_copy(update={"id": cart.id or new_id(), "updated_at": utcnow()})
        data = cart.to_dict()
        self.db.carts.update_one(
            {"user_id": cart.user_id},
            {"$set": {k: v for k, v in data.items() if k != "_id"},
             "$setOnInsert": {"_id": data["_id"]}},
            upsert=True,
            session=session,
        )
        self.logger.info("Cart saved", user_id=cart.user_id, items=len(cart.items))
        return cart

    def clear(self, user_id: str, session: Optional[ClientSession] = None) -> None:
        """Empty a cart while keeping the document for reuse"""
        self.db.carts.update_one(
            {"user_id": user_id},
            {"$set": {"items": [], "updated_at": utcnow()}},
            session=session,
        )
        self.logger.info("Cart cleared", user_id=user_id)


class OrderRepository:
    """Repository for orders; orders are never deleted"""

    def __init__(self, mongodb: MongoDB):
        self.db = mongodb
        self.logger = structlog.get_logger().bind(component="order_repository")

    def insert(self, order: Order, session: Optional[ClientSession] = None) -> Order:
        order = order.model_copy(update={"id": order.id or new_id()})
        self.db.orders.insert_one(order.to_dict(), session=session)
        self.logger.info("Order stored", order_id=order.id, user_id=order.user_id)
        return order

    def get(self, order_id: str) -> Optional[Order]:
        return Order.from_dict(self.db.orders.find_one({"_id": order_id}))

    def list_by_user(self, user_id: str) -> List[Order]:
        """Orders for a user, newest first"""
        cursor = self.db.orders.find({"user_id": user_id}).sort("order_date", DESCENDING)
        return [Order.from_dict(doc) for doc in cursor]

    def list_all(self) -> List[Order]:
        cursor = self.db.orders.find().sort("order_date", DESCENDING)
        return [Order.from_dict(doc) for doc in cursor]

    def update_status(
        self,
        order_id: str,
        expected: OrderStatus,
        new_status: OrderStatus
    ) -> Optional[Order]:
        """
        Move an order to `new_status` only if it is still in `expected`.
        Returns None when the order changed underneath us or does not exist.
        """
        doc = self.db.orders.find_one_and_update(
            {"_id": order_id, "status": expected.value},
            {"$set": {"status": new_status.value}},
            return_document=ReturnDocument.AFTER,
        )
        if doc is not None:
            self.logger.info("Order status updated", order_id=order_id,
                             old_status=expected.value, new_status=new_status.value)
        return Order.from_dict(doc)
