#!/usr/bin/env python3
"""
Bookstore Service orchestration - connects MongoDB/RabbitMQ and serves the HTTP API
"""
import os
import signal
import sys
import threading
import time
from typing import Optional

import structlog
from pika.exceptions import AMQPConnectionError
from pymongo.errors import ConnectionFailure
from werkzeug.serving import make_server

# Add parent directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from bookstore.api import Services, create_app
from bookstore.config import load_config
from bookstore.db import MongoDB
from bookstore.events.publisher import EventPublisher
from bookstore.logging import configure_logging
from bookstore.repositories import (
    BookRepository,
    CartRepository,
    OrderRepository,
    UserRepository,
)
from bookstore.services.book_service import BookService
from bookstore.services.cart_service import CartService
from bookstore.services.checkout import CheckoutService
from bookstore.services.order_service import OrderService
from bookstore.services.recommendation import RecommendationService
from bookstore.services.user_service import UserService


# Global instances for graceful shutdown
http_server = None
http_thread: Optional[threading.Thread] = None
mongodb: Optional[MongoDB] = None
event_publisher: Optional[EventPublisher] = None
shutdown_event = threading.Event()
logger = structlog.get_logger()


def signal_handler(signum, frame):
    """Handle shutdown signals"""
    logger.info("Received shutdown signal", signal=signum)
    shutdown_event.set()


def shutdown():
    """Graceful shutdown of all components"""
    logger.info("Starting graceful shutdown...")

    if http_server:
        logger.info("Stopping HTTP server...")
        http_server.shutdown()
        if http_thread:
            http_thread.join(timeout=30)

    if event_publisher:
        logger.info("Closing event publisher...")
        event_publisher.close()

    if mongodb:
        logger.info("Closing MongoDB connection...")
        mongodb.close()

    logger.info("Shutdown complete")


def build_services(db: MongoDB) -> Services:
    """Wire repositories into the service layer"""
    books = BookRepository(db)
    users = UserRepository(db)
    carts = CartRepository(db)
    orders = OrderRepository(db)

    return Services(
        books=BookService(books),
        users=UserService(users),
        carts=CartService(carts, books),
        orders=OrderService(orders),
        checkout=CheckoutService(db, books, users, carts, orders),
        recommendations=RecommendationService(users, books),
    )


def main():
    """Main entry point"""
    global http_server, http_thread, mongodb, event_publisher, logger

    config = load_config()

    logger = configure_logging(config.service_name, config.log_level)
    logger.info("Starting Bookstore Service", version="1.0.0")

    try:
        logger.info("Connecting to MongoDB...")
        mongodb = MongoDB(config)
        mongodb.connect()

        services = build_services(mongodb)
        logger.info("Bookstore services initialized")

        if config.rabbitmq_enabled:
            logger.info("Connecting to RabbitMQ for publishing...")
            event_publisher = EventPublisher(config)

        app = create_app(services, mongodb, config, event_publisher)

        logger.info("Starting HTTP server...", port=config.http_port)
        http_server = make_server(config.http_host, config.http_port, app, threaded=True)
        http_thread = threading.Thread(
            target=http_server.serve_forever,
            daemon=False,
            name="FlaskHTTP"
        )
        http_thread.start()

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)

        logger.info("Bookstore service is running",
                    host=config.http_host,
                    http_port=config.http_port)

        while not shutdown_event.is_set():
            time.sleep(1)

            if not http_thread.is_alive():
                logger.error("HTTP server thread died")
                shutdown_event.set()

        shutdown()
        logger.info("Bookstore service stopped")
        sys.exit(0)

    except (ConnectionFailure, AMQPConnectionError) as e:
        logger.error("Fatal error: dependency unavailable", error=str(e))
        shutdown()
        sys.exit(1)
    except Exception as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        shutdown()
        sys.exit(1)


if __name__ == '__main__':
    main()
