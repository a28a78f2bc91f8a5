"""
Smoke tests for the HTTP API
"""
import pytest
import sys
import os
from decimal import Decimal
from unittest.mock import Mock

from pymongo.errors import PyMongoError
import structlog

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from bookstore.api import Services, create_app
from bookstore.config import Config
from bookstore.db import MongoDB
from bookstore.errors import (
    BookNotFoundError,
    CheckoutFollowUpError,
    DuplicateError,
    EmptyCartError,
    InsufficientInventoryError,
    InvalidCredentialsError,
    InvalidStatusTransitionError,
)
from bookstore.events.publisher import EventPublisher
from bookstore.models import (
    Book,
    CartView,
    Order,
    OrderItem,
    OrderStatus,
    User,
)
from bookstore.services.book_service import BookService
from bookstore.services.cart_service import CartService
from bookstore.services.checkout import CheckoutService
from bookstore.services.order_service import OrderService
from bookstore.services.recommendation import (
    Empty,
    Personalized,
    RecommendationService,
)
from bookstore.services.user_service import UserService


@pytest.fixture
def services():
    return Services(
        books=Mock(spec=BookService),
        users=Mock(spec=UserService),
        carts=Mock(spec=CartService),
        orders=Mock(spec=OrderService),
        checkout=Mock(spec=CheckoutService),
        recommendations=Mock(spec=RecommendationService),
    )


@pytest.fixture
def mock_mongodb():
    mongodb = Mock(spec=MongoDB)
    mongodb.is_healthy.return_value = True
    return mongodb


@pytest.fixture
def mock_event_publisher():
    publisher = Mock(spec=EventPublisher)
    publisher.is_healthy.return_value = True
    return publisher


@pytest.fixture
def client(services, mock_mongodb, mock_event_publisher):
    app = create_app(services, mock_mongodb, Config(), mock_event_publisher)
    app.config["TESTING"] = True
    return app.test_client()


@pytest.fixture
def book():
    return Book(id="book1", title="The Great Gatsby", author="F. Scott Fitzgerald",
                publisher="Scribner", isbn="978-0743273565", price=Decimal("15.99"), inventory=10)


@pytest.fixture
def order():
    return Order(
        id="order1",
        user_id="user1",
        items=[
            OrderItem(book_id="book1", book_title="The Great Gatsby",
                      quantity=2, price_at_purchase=Decimal("15.99")),
            OrderItem(book_id="book2", book_title="1984",
                      quantity=1, price_at_purchase=Decimal("12.99")),
        ],
        total_amount=Decimal("44.97"),
        status=OrderStatus.CONFIRMED,
    )


class TestHealth:
    """Health endpoints"""

    def test_healthz(self, client):
        response = client.get('/healthz')

        assert response.status_code == 200
        assert response.data == b"healthy"

    def test_healthz_mongo_down(self, client, mock_mongodb):
        mock_mongodb.is_healthy.return_value = False

        response = client.get('/healthz')

        assert response.status_code == 503

    def test_root(self, client):
        assert client.get('/').status_code == 200


class TestBooksApi:
    """Catalog endpoints"""

    def test_get_book(self, client, services, book):
        services.books.get_book.return_value = book

        response = client.get('/books/book1')

        assert response.status_code == 200
        assert response.get_json()["price"] == "15.99"

    def test_get_missing_book(self, client, services):
        services.books.get_book.side_effect = BookNotFoundError("book9")

        response = client.get('/books/book9')

        body = response.get_json()
        assert response.status_code == 404
        assert body["status"] == 404
        assert body["message"] == "Book not found with id: book9"
        assert "timestamp" in body

    def test_search_passes_filters(self, client, services, book):
        services.books.search_books.return_value = [book]

        response = client.get('/books?author=fitz&sort=price_desc')

        assert response.status_code == 200
        assert len(response.get_json()) == 1
        services.books.search_books.assert_called_once_with(
            author="fitz", publisher=None, genre=None, title=None, sort_by="price_desc")

    def test_create_book_validation(self, client, services):
        response = client.post('/books', json={"title": "No price"})

        assert response.status_code == 400
        assert response.get_json()["message"] == "Validation failed"
        services.books.create_book.assert_not_called()

    def test_create_book(self, client, services, book):
        services.books.create_book.return_value = book

        response = client.post('/books', json={
            "title": "The Great Gatsby", "author": "F. Scott Fitzgerald",
            "publisher": "Scribner", "isbn": "978-0743273565", "price": "15.99",
        })

        assert response.status_code == 201
        assert response.get_json()["id"] == "book1"

    def test_delete_book(self, client, services):
        response = client.delete('/books/book1')

        assert response.status_code == 204
        services.books.delete_book.assert_called_once_with("book1")

    def test_storage_error(self, client, services):
        services.books.get_book.side_effect = PyMongoError("down")

        response = client.get('/books/book1')

        assert response.status_code == 500


class TestUsersApi:
    """Account endpoints"""

    def test_register(self, client, services):
        services.users.create_user.return_value = User(
            id="user1", username="alice", email="alice@example.com", password_hash="hash")

        response = client.post('/api/users', json={
            "username": "alice", "email": "alice@example.com", "password": "secret1"})

        assert response.status_code == 201
        assert "password_hash" not in response.get_json()

    def test_register_invalid_email(self, client, services):
        response = client.post('/api/users', json={
            "username": "alice", "email": "nope", "password": "secret1"})

        assert response.status_code == 400
        assert "email" in response.get_json()["errors"]

    def test_register_duplicate(self, client, services):
        services.users.create_user.side_effect = DuplicateError("username", "alice")

        response = client.post('/api/users', json={
            "username": "alice", "email": "alice@example.com", "password": "secret1"})

        assert response.status_code == 409
        assert response.get_json()["message"] == "Username already exists"

    def test_login_rejected(self, client, services):
        services.users.authenticate.side_effect = InvalidCredentialsError()

        response = client.post('/api/auth/login', json={"username": "alice", "password": "bad"})

        assert response.status_code == 401

    def test_non_object_body(self, client):
        response = client.post('/api/users', json=["alice"])

        assert response.status_code == 400


class TestCartApi:
    """Cart endpoints"""

    def test_add_to_cart(self, client, services):
        services.carts.get_cart_view.return_value = CartView(cart_id="cart1", user_id="user1")

        response = client.post('/api/cart/user1/items', json={"book_id": "book1", "quantity": 2})

        assert response.status_code == 200
        services.carts.add_item.assert_called_once_with("user1", "book1", 2)

    def test_update_quantity_requires_integer(self, client, services):
        response = client.put('/api/cart/user1/items/book1?quantity=two')

        assert response.status_code == 400
        services.carts.update_item_quantity.assert_not_called()

    def test_clear_cart(self, client, services):
        response = client.delete('/api/cart/user1')

        assert response.status_code == 204
        services.carts.clear_cart.assert_called_once_with("user1")


class TestCheckoutApi:
    """Checkout endpoint"""

    def test_checkout(self, client, services, mock_event_publisher, order):
        services.checkout.checkout.return_value = order

        response = client.post('/api/orders/checkout/user1')

        body = response.get_json()
        assert response.status_code == 201
        assert body["total_amount"] == "44.97"
        assert body["status"] == "CONFIRMED"
        mock_event_publisher.publish_order_confirmed.assert_called_once()

    def test_checkout_survives_publish_failure(self, client, services, mock_event_publisher, order):
        services.checkout.checkout.return_value = order
        mock_event_publisher.publish_order_confirmed.side_effect = RuntimeError("broker down")

        response = client.post('/api/orders/checkout/user1')

        assert response.status_code == 201

    def test_correlation_id_reaches_logs_and_events(self, client, services, mock_event_publisher, order):
        """Test the X-Correlation-ID header is bound for the request and then cleared"""
        seen = {}

        def checkout(user_id):
            seen.update(structlog.contextvars.get_contextvars())
            return order

        services.checkout.checkout.side_effect = checkout

        response = client.post('/api/orders/checkout/user1', headers={"X-Correlation-ID": "cid-9"})

        assert response.status_code == 201
        assert seen == {"correlation_id": "cid-9", "method": "POST",
                        "path": "/api/orders/checkout/user1"}
        assert structlog.contextvars.get_contextvars() == {}
        mock_event_publisher.publish_order_confirmed.assert_called_once_with(order, correlation_id="cid-9")

    def test_checkout_empty_cart(self, client, services, mock_event_publisher):
        services.checkout.checkout.side_effect = EmptyCartError("user1")

        response = client.post('/api/orders/checkout/user1')

        assert response.status_code == 400
        assert response.get_json()["message"] == "Cannot create order from empty cart"
        mock_event_publisher.publish_order_confirmed.assert_not_called()

    def test_checkout_insufficient_inventory(self, client, services):
        services.checkout.checkout.side_effect = InsufficientInventoryError("The Great Gatsby", 1, 2)

        response = client.post('/api/orders/checkout/user1')

        body = response.get_json()
        assert response.status_code == 400
        assert body["book_title"] == "The Great Gatsby"
        assert body["available"] == 1
        assert body["requested"] == 2

    def test_checkout_follow_up_failure(self, client, services, order):
        services.checkout.checkout.side_effect = CheckoutFollowUpError(order, PyMongoError("timeout"))

        response = client.post('/api/orders/checkout/user1')

        assert response.status_code == 500
        assert response.get_json()["order_id"] == "order1"


class TestOrdersApi:
    """Order endpoints"""

    def test_update_status(self, client, services, mock_event_publisher, order):
        completed = order.model_copy(update={"status": OrderStatus.COMPLETED})
        services.orders.update_status.return_value = (completed, OrderStatus.CONFIRMED)

        response = client.patch('/api/orders/order1/status?status=completed')

        assert response.status_code == 200
        assert response.get_json()["status"] == "COMPLETED"
        services.orders.update_status.assert_called_once_with("order1", OrderStatus.COMPLETED)
        mock_event_publisher.publish_order_status_changed.assert_called_once()

    def test_update_status_unknown_value(self, client, services):
        response = client.patch('/api/orders/order1/status?status=shipped')

        assert response.status_code == 400
        services.orders.update_status.assert_not_called()

    def test_update_status_rejected(self, client, services):
        services.orders.update_status.side_effect = InvalidStatusTransitionError("CANCELLED", "COMPLETED")

        response = client.patch('/api/orders/order1/status?status=COMPLETED')

        assert response.status_code == 409


class TestRecommendationsApi:
    """Recommendation endpoint"""

    def test_default_limit(self, client, services):
        services.recommendations.get_recommendations.return_value = Empty()

        response = client.get('/api/recommendations/user1')

        assert response.status_code == 200
        assert response.get_json()["kind"] == "EMPTY"
        services.recommendations.get_recommendations.assert_called_once_with("user1", 10)

    def test_limit_is_clamped(self, client, services, book):
        services.recommendations.get_recommendations.return_value = Personalized((book,))

        response = client.get('/api/recommendations/user1?limit=1000')

        body = response.get_json()
        assert body["kind"] == "PERSONALIZED"
        assert body["fallback"] is False
        services.recommendations.get_recommendations.assert_called_once_with("user1", 100)

    def test_non_numeric_limit(self, client, services):
        response = client.get('/api/recommendations/user1?limit=abc')

        assert response.status_code == 400
        services.recommendations.get_recommendations.assert_not_called()


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
