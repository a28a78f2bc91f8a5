"""
Flask JSON API for the bookstore
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from flask import Flask, Response, g, jsonify, request
from pydantic import ValidationError
from pymongo.errors import PyMongoError
import structlog

from bookstore.config import Config
from bookstore.db import MongoDB
from bookstore.errors import (
    CheckoutFollowUpError,
    DuplicateError,
    EmptyCartError,
    InsufficientInventoryError,
    InvalidCredentialsError,
    InvalidStatusTransitionError,
    NotFoundError,
)
from bookstore.events.publisher import EventPublisher
from bookstore.health_http import register_health_routes
from bookstore.logging import bind_request_context, clear_request_context
from bookstore.models import (
    AddToCartRequest,
    Book,
    LoginRequest,
    OrderStatus,
    UserRegistrationRequest,
    UserUpdateRequest,
)
from bookstore.services.book_service import BookService
from bookstore.services.cart_service import CartService
from bookstore.services.checkout import CheckoutService
from bookstore.services.order_service import OrderService
from bookstore.services.recommendation import RecommendationService, recommendation_to_dict
from bookstore.services.user_service import UserService


@dataclass
class Services:
    """Everything the HTTP layer calls into"""
    books: BookService
    users: UserService
    carts: CartService
    orders: OrderService
    checkout: CheckoutService
    recommendations: RecommendationService


def error_response(status: int, message: str, **extra: Any):
    body = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "status": status,
        "message": message,
    }
    body.update(extra)
    return jsonify(body), status


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValueError("Request body must be a JSON object")
    return data


def _int_arg(name: str, default: Optional[int] = None) -> int:
    raw = request.args.get(name)
    if raw is None:
        if default is None:
            raise ValueError(f"Query parameter '{name}' is required")
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"Query parameter '{name}' must be an integer")


def create_app(
    services: Services,
    mongodb: MongoDB,
    config: Config,
    event_publisher: Optional[EventPublisher] = None
) -> Flask:
    """
    Create Flask app with the bookstore routes

    Args:
        services: service layer instances
        mongodb: MongoDB connection, used by the health check
        config: service configuration
        event_publisher: RabbitMQ publisher, None when events are disabled

    Returns:
        Configured Flask application
    """
    app = Flask(__name__)
    logger = structlog.get_logger().bind(component="http_api")

    register_health_routes(app, mongodb, event_publisher)

    @app.before_request
    def bind_request_logger():
        g.correlation_id = request.headers.get("X-Correlation-ID")
        bind_request_context(g.correlation_id, method=request.method, path=request.path)

    @app.teardown_request
    def unbind_request_logger(exc):
        clear_request_context()

    def publish(method_name: str, *args) -> None:
        if event_publisher is None:
            return
        try:
            getattr(event_publisher, method_name)(*args, correlation_id=g.correlation_id)
        except Exception as e:
            # the write already happened; the event is best-effort
            logger.error("Failed to publish event", event=method_name, error=str(e))

    # Error mapping

    @app.errorhandler(NotFoundError)
    def handle_not_found(e):
        return error_response(404, str(e))

    @app.errorhandler(EmptyCartError)
    def handle_empty_cart(e):
        return error_response(400, str(e))

    @app.errorhandler(InsufficientInventoryError)
    def handle_insufficient_inventory(e):
        return error_response(400, str(e), book_title=e.book_title,
                              available=e.available, requested=e.requested)

    @app.errorhandler(DuplicateError)
    def handle_duplicate(e):
        return error_response(409, str(e), field=e.field)

    @app.errorhandler(InvalidCredentialsError)
    def handle_invalid_credentials(e):
        return error_response(401, str(e))

    @app.errorhandler(InvalidStatusTransitionError)
    def handle_invalid_transition(e):
        return error_response(409, str(e))

    @app.errorhandler(CheckoutFollowUpError)
    def handle_follow_up(e):
        logger.error("Checkout follow-up failed", order_id=e.order.id, error=str(e.cause))
        return error_response(500, str(e), order_id=e.order.id,
                              order=e.order.model_dump(mode="json"))

    @app.errorhandler(ValidationError)
    def handle_validation(e):
        errors = {".".join(str(p) for p in err["loc"]): err["msg"] for err in e.errors()}
        return error_response(400, "Validation failed", errors=errors)

    @app.errorhandler(ValueError)
    def handle_value_error(e):
        return error_response(400, str(e))

    @app.errorhandler(PyMongoError)
    def handle_storage_error(e):
        logger.error("Storage error", error=str(e))
        return error_response(500, "An unexpected error occurred: storage failure")

    # Books

    @app.route('/books', methods=['GET'])
    def search_books():
        books = services.books.search_books(
            author=request.args.get("author"),
            publisher=request.args.get("publisher"),
            genre=request.args.get("genre"),
            title=request.args.get("title"),
            sort_by=request.args.get("sort"),
        )
        return jsonify([book.model_dump(mode="json") for book in books])

    @app.route('/books/<book_id>', methods=['GET'])
    def get_book(book_id):
        return jsonify(services.books.get_book(book_id).model_dump(mode="json"))

    @app.route('/books', methods=['POST'])
    def create_book():
        book = services.books.create_book(Book(**_json_body()))
        return jsonify(book.model_dump(mode="json")), 201

    @app.route('/books/<book_id>', methods=['PUT'])
    def update_book(book_id):
        book = services.books.update_book(book_id, Book(**_json_body()))
        return jsonify(book.model_dump(mode="json"))

    @app.route('/books/<book_id>', methods=['DELETE'])
    def delete_book(book_id):
        services.books.delete_book(book_id)
        return Response(status=204)

    # Users

    @app.route('/api/users', methods=['POST'])
    def register_user():
        user = services.users.create_user(UserRegistrationRequest(**_json_body()))
        return jsonify(user.to_public_dict()), 201

    @app.route('/api/users', methods=['GET'])
    def list_users():
        return jsonify([user.to_public_dict() for user in services.users.list_users()])

    @app.route('/api/users/<user_id>', methods=['GET'])
    def get_user(user_id):
        return jsonify(services.users.get_user(user_id).to_public_dict())

    @app.route('/api/users/<user_id>', methods=['PUT'])
    def update_user(user_id):
        user = services.users.update_user(user_id, UserUpdateRequest(**_json_body()))
        return jsonify(user.to_public_dict())

    @app.route('/api/users/<user_id>', methods=['DELETE'])
    def delete_user(user_id):
        services.users.delete_user(user_id)
        return Response(status=204)

    @app.route('/api/auth/login', methods=['POST'])
    def login():
        credentials = LoginRequest(**_json_body())
        user = services.users.authenticate(credentials.username, credentials.password)
        return jsonify(user.to_public_dict())

    # Cart

    @app.route('/api/cart/<user_id>', methods=['GET'])
    def get_cart(user_id):
        return jsonify(services.carts.get_cart_view(user_id).to_api())

    @app.route('/api/cart/<user_id>/items', methods=['POST'])
    def add_to_cart(user_id):
        item = AddToCartRequest(**_json_body())
        services.carts.add_item(user_id, item.book_id, item.quantity)
        return jsonify(services.carts.get_cart_view(user_id).to_api())

    @app.route('/api/cart/<user_id>/items/<book_id>', methods=['PUT'])
    def update_cart_item(user_id, book_id):
        services.carts.update_item_quantity(user_id, book_id, _int_arg("quantity"))
        return jsonify(services.carts.get_cart_view(user_id).to_api())

    @app.route('/api/cart/<user_id>/items/<book_id>', methods=['DELETE'])
    def remove_cart_item(user_id, book_id):
        services.carts.remove_item(user_id, book_id)
        return jsonify(services.carts.get_cart_view(user_id).to_api())

    @app.route('/api/cart/<user_id>', methods=['DELETE'])
    def clear_cart(user_id):
        services.carts.clear_cart(user_id)
        return Response(status=204)

    # Orders

    @app.route('/api/orders/checkout/<user_id>', methods=['POST'])
    def checkout(user_id):
        order = services.checkout.checkout(user_id)
        publish("publish_order_confirmed", order)
        return jsonify(order.model_dump(mode="json")), 201

    @app.route('/api/orders', methods=['GET'])
    def list_orders():
        return jsonify([order.model_dump(mode="json") for order in services.orders.list_orders()])

    @app.route('/api/orders/<order_id>', methods=['GET'])
    def get_order(order_id):
        return jsonify(services.orders.get_order(order_id).model_dump(mode="json"))

    @app.route('/api/orders/user/<user_id>', methods=['GET'])
    def list_user_orders(user_id):
        orders = services.orders.list_orders_for_user(user_id)
        return jsonify([order.model_dump(mode="json") for order in orders])

    @app.route('/api/orders/<order_id>/status', methods=['PATCH'])
    def update_order_status(order_id):
        raw = request.args.get("status")
        if not raw:
            raise ValueError("Query parameter 'status' is required")
        try:
            new_status = OrderStatus(raw.upper())
        except ValueError:
            raise ValueError(f"Unknown order status: {raw}")

        order, old_status = services.orders.update_status(order_id, new_status)
        publish("publish_order_status_changed", order, old_status)
        return jsonify(order.model_dump(mode="json"))

    # Recommendations

    @app.route('/api/recommendations/<user_id>', methods=['GET'])
    def get_recommendations(user_id):
        limit = _int_arg("limit", config.recommendation_default_limit)
        limit = min(limit, config.recommendation_max_limit)
        result = services.recommendations.get_recommendations(user_id, limit)
        return jsonify(recommendation_to_dict(result))

    logger.info("Flask app created")
    return app
