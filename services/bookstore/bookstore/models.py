"""
Data models and validation using Pydantic
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from bson.decimal128 import Decimal128
from pydantic import BaseModel, EmailStr, Field, validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_decimal128(value: Optional[Decimal]) -> Optional[Decimal128]:
    """Convert a Decimal to the BSON decimal type for MongoDB storage"""
    if value is None:
        return None
    return Decimal128(Decimal(value))


def from_decimal128(value: Any) -> Optional[Decimal]:
    """Convert a stored money value back to Decimal"""
    if value is None:
        return None
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return Decimal(str(value))


class UserRole(str, Enum):
    """User role enum"""
    CUSTOMER = "CUSTOMER"
    OWNER = "OWNER"


class OrderStatus(str, Enum):
    """Order status enum"""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    def can_transition_to(self, new_status: "OrderStatus") -> bool:
        return new_status in _ORDER_TRANSITIONS[self]


_ORDER_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.COMPLETED, OrderStatus.CANCELLED},
    OrderStatus.COMPLETED: set(),
    OrderStatus.CANCELLED: set(),
}


class Book(BaseModel):
    """Represents a book in the catalog"""
    id: Optional[str] = Field(default=None, description="Store-assigned identifier")
    title: str = Field(..., min_length=1, description="Book title")
    author: str = Field(..., min_length=1, description="Author name")
    publisher: str = Field(..., min_length=1, description="Publisher name")
    isbn: str = Field(..., min_length=1, description="ISBN")
    price: Decimal = Field(..., gt=0, description="Unit price")
    genre: Optional[str] = None
    publication_year: Optional[int] = None
    description: Optional[str] = None
    inventory: int = Field(default=0, ge=0, description="Copies in stock")
    picture_url: Optional[str] = None

    @validator('title', 'author', 'publisher', 'isbn')
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError("must not be blank")
        return v

    def to_dict(self) -> dict:
        """Convert to dictionary for MongoDB storage"""
        data = self.model_dump(exclude={"id"})
        data["price"] = to_decimal128(self.price)
        if self.id is not None:
            data["_id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Optional["Book"]:
        """Create Book from MongoDB document"""
        if data is None:
            return None
        fields = {k: v for k, v in data.items() if k != "_id"}
        fields["price"] = from_decimal128(data.get("price"))
        return cls(id=data.get("_id"), **fields)

    class Config:
        json_schema_extra = {
            "example": {
                "title": "The Great Gatsby",
                "author": "F. Scott Fitzgerald",
                "publisher": "Scribner",
                "isbn": "978-0743273565",
                "price": "15.99",
                "genre": "Fiction",
                "publication_year": 1925,
                "inventory": 10
            }
        }


class User(BaseModel):
    """Represents a registered user"""
    id: Optional[str] = None
    username: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str = Field(..., min_length=1)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: UserRole = UserRole.CUSTOMER
    purchased_book_ids: List[str] = Field(default_factory=list)

    def purchased_set(self) -> set:
        """Purchased book ids as a set (stored lists are not trusted to be unique)"""
        return set(self.purchased_book_ids)

    def to_dict(self) -> dict:
        data = self.model_dump(exclude={"id"})
        data["role"] = self.role.value
        if self.id is not None:
            data["_id"] = self.id
        return data

    def to_public_dict(self) -> dict:
        """API representation without the password hash"""
        return self.model_dump(mode="json", exclude={"password_hash"})

    @classmethod
    def from_dict(cls, data: dict) -> Optional["User"]:
        if data is None:
            return None
        fields = {k: v for k, v in data.items() if k != "_id"}
        return cls(id=data.get("_id"), **fields)


class CartItem(BaseModel):
    """Represents a line in the shopping cart"""
    book_id: str = Field(..., min_length=1, description="Book identifier")
    quantity: int = Field(..., ge=1, description="Quantity (must be >= 1)")


class ShoppingCart(BaseModel):
    """Represents a user's shopping cart"""
    id: Optional[str] = None
    user_id: str = Field(..., min_length=1, description="User identifier")
    items: List[CartItem] = Field(default_factory=list, description="Cart items")
    updated_at: datetime = Field(default_factory=utcnow, description="Last update timestamp")

    def get_item(self, book_id: str) -> Optional[CartItem]:
        """Get an item by book id"""
        for item in self.items:
            if item.book_id == book_id:
                return item
        return None

    def add_item(self, book_id: str, quantity: int) -> bool:
        """
        Add a book or increment the quantity of an existing line.
        Returns True if a new line was created.
        """
        if quantity < 1:
            raise ValueError("Quantity must be positive")

        existing = self.get_item(book_id)
        if existing:
            existing.quantity += quantity
            self.updated_at = utcnow()
            return False

        self.items.append(CartItem(book_id=book_id, quantity=quantity))
        self.updated_at = utcnow()
        return True

    def remove_item(self, book_id: str) -> bool:
        """Remove item from cart. Returns True if item was found and removed."""
        original_length = len(self.items)
        self.items = [item for item in self.items if item.book_id != book_id]

        if len(self.items) < original_length:
            self.updated_at = utcnow()
            return True
        return False

    def update_item_quantity(self, book_id: str, quantity: int) -> bool:
        """Set the quantity of a line; zero or less removes it. Returns True if the line existed."""
        item = self.get_item(book_id)
        if item is None:
            return False
        if quantity <= 0:
            return self.remove_item(book_id)
        item.quantity = quantity
        self.updated_at = utcnow()
        return True

    @property
    def is_empty(self) -> bool:
        return not self.items

    def to_dict(self) -> dict:
        """Convert to dictionary for MongoDB storage"""
        data = {
            "user_id": self.user_id,
            "items": [item.model_dump() for item in self.items],
            "updated_at": self.updated_at
        }
        if self.id is not None:
            data["_id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Optional["ShoppingCart"]:
        """Create ShoppingCart from MongoDB document"""
        if data is None:
            return None

        items = [CartItem(**item) for item in data.get("items", [])]
        return cls(
            id=data.get("_id"),
            user_id=data["user_id"],
            items=items,
            updated_at=data.get("updated_at") or utcnow()
        )


class OrderItem(BaseModel):
    """Snapshot of a purchased line; never re-read from the live catalog"""
    book_id: str
    book_title: str
    quantity: int = Field(..., ge=1)
    price_at_purchase: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.price_at_purchase * self.quantity


class Order(BaseModel):
    """Represents a placed order"""
    id: Optional[str] = None
    user_id: str
    items: List[OrderItem] = Field(default_factory=list)
    total_amount: Decimal = Decimal("0")
    order_date: datetime = Field(default_factory=utcnow)
    status: OrderStatus = OrderStatus.PENDING

    def calculate_total(self) -> Decimal:
        """Sum of line totals using exact decimal arithmetic"""
        return sum((item.line_total for item in self.items), Decimal("0"))

    def distinct_book_ids(self) -> List[str]:
        """Ordered book ids without repeats"""
        return list(dict.fromkeys(item.book_id for item in self.items))

    def to_dict(self) -> dict:
        data = {
            "user_id": self.user_id,
            "items": [
                {
                    "book_id": item.book_id,
                    "book_title": item.book_title,
                    "quantity": item.quantity,
                    "price_at_purchase": to_decimal128(item.price_at_purchase),
                }
                for item in self.items
            ],
            "total_amount": to_decimal128(self.total_amount),
            "order_date": self.order_date,
            "status": self.status.value,
        }
        if self.id is not None:
            data["_id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Optional["Order"]:
        if data is None:
            return None

        items = [
            OrderItem(
                book_id=item["book_id"],
                book_title=item["book_title"],
                quantity=item["quantity"],
                price_at_purchase=from_decimal128(item["price_at_purchase"]),
            )
            for item in data.get("items", [])
        ]
        return cls(
            id=data.get("_id"),
            user_id=data["user_id"],
            items=items,
            total_amount=from_decimal128(data.get("total_amount")) or Decimal("0"),
            order_date=data["order_date"],
            status=OrderStatus(data["status"]),
        )


class UserRegistrationRequest(BaseModel):
    """Request to register a new user"""
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: UserRole = UserRole.CUSTOMER


class UserUpdateRequest(BaseModel):
    """Request to update a user; password is optional"""
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: Optional[str] = Field(default=None, min_length=6)
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: UserRole = UserRole.CUSTOMER


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class AddToCartRequest(BaseModel):
    """Request to add item to cart"""
    book_id: str = Field(..., min_length=1)
    quantity: int = Field(default=1, ge=1)


class CartLineView(BaseModel):
    """Cart line enriched with catalog data for display"""
    book_id: str
    title: str
    author: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal
    in_stock: bool


class CartView(BaseModel):
    """Display representation of a cart"""
    cart_id: Optional[str] = None
    user_id: str
    items: List[CartLineView] = Field(default_factory=list)
    total_quantity: int = 0
    subtotal: Decimal = Decimal("0")

    def to_api(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")
