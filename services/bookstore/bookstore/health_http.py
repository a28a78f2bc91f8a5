"""
Health check endpoints
"""
from typing import Optional
from flask import Flask, Response
import structlog

from bookstore.db import MongoDB
from bookstore.events.publisher import EventPublisher


logger = structlog.get_logger()


def register_health_routes(
    app: Flask,
    mongodb: MongoDB,
    event_publisher: Optional[EventPublisher] = None
) -> None:
    """
    Add /healthz and / to the app

    Args:
        app: Flask application
        mongodb: MongoDB connection instance
        event_publisher: RabbitMQ publisher instance, if events are enabled
    """

    @app.route('/healthz', methods=['GET'])
    def healthz():
        """
        Health check - checks if service is alive and dependencies are healthy

        Returns:
            200 if healthy, 503 if unhealthy
        """
        if not mongodb.is_healthy():
            logger.error("Health check failed: MongoDB unhealthy")
            return Response(
                "unhealthy: mongodb connection failed",
                status=503,
                mimetype='text/plain'
            )

        if event_publisher is not None and not event_publisher.is_healthy():
            logger.error("Health check failed: RabbitMQ unhealthy")
            return Response(
                "unhealthy: rabbitmq connection failed",
                status=503,
                mimetype='text/plain'
            )

        return Response("healthy", status=200, mimetype='text/plain')

    @app.route('/', methods=['GET'])
    def root():
        """Root endpoint"""
        return Response(
            "Bookstore Service - Use /healthz for health check",
            status=200,
            mimetype='text/plain'
        )
