"""
Order events on a RabbitMQ topic exchange.

Checkout publishes `order.confirmed`; status updates publish
`order.status_changed`. Every message is a JSON envelope carrying the
caller's correlation id so consumers can tie it back to the HTTP request.
"""
import json
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional
import pika
from pika.exceptions import AMQPConnectionError, AMQPChannelError
import structlog

from bookstore.config import Config
from bookstore.models import Order, OrderStatus

EVENT_VERSION = '1.0.0'

ORDER_CONFIRMED = 'order.confirmed'
ORDER_STATUS_CHANGED = 'order.status_changed'


class EventPublisher:
    """Publishes order events with confirms and bounded retries"""

    def __init__(self, config: Config):
        self.config = config
        self.connection: Optional[pika.BlockingConnection] = None
        self.channel = None
        self.logger = structlog.get_logger().bind(
            component="event_publisher", exchange=config.rabbitmq_exchange)
        self._open_channel()

    def _open_channel(self) -> None:
        parameters = pika.URLParameters(self.config.rabbitmq_url)
        parameters.heartbeat = 30
        parameters.blocked_connection_timeout = 300

        try:
            self.connection = pika.BlockingConnection(parameters)
        except AMQPConnectionError as e:
            self.logger.error("RabbitMQ unreachable", error=str(e))
            raise

        self.channel = self.connection.channel()
        self.channel.exchange_declare(
            exchange=self.config.rabbitmq_exchange,
            exchange_type='topic',
            durable=True
        )
        # basic_publish raises instead of silently dropping unroutable/nacked messages
        self.channel.confirm_delivery()
        self.logger.info("Event channel open")

    def _ensure_channel(self) -> None:
        if not self.is_healthy():
            self.logger.info("Event channel closed, reopening")
            self.close()
            self._open_channel()

    @staticmethod
    def _properties(event: Dict[str, Any]) -> pika.BasicProperties:
        return pika.BasicProperties(
            content_type='application/json',
            delivery_mode=2,  # persistent
            message_id=event['event_id'],
            correlation_id=event['correlation_id'],
            timestamp=int(time.time()),
            headers={'event_type': event['event_type'], 'event_version': EVENT_VERSION},
        )

    def _send(self, routing_key: str, event: Dict[str, Any]) -> None:
        """
        Publish one event, retrying connection and channel failures

        Waits rabbitmq_retry_initial_delay after the first failure and doubles
        the wait up to rabbitmq_retry_max_delay. The last failure is re-raised.
        """
        body = json.dumps(event)
        attempts = self.config.rabbitmq_retry_max_attempts
        delay = self.config.rabbitmq_retry_initial_delay
        log = self.logger.bind(event_id=event['event_id'], routing_key=routing_key)

        attempt = 1
        while True:
            try:
                self._ensure_channel()
                self.channel.basic_publish(
                    exchange=self.config.rabbitmq_exchange,
                    routing_key=routing_key,
                    body=body,
                    properties=self._properties(event),
                )
            except (AMQPConnectionError, AMQPChannelError) as e:
                if attempt >= attempts:
                    log.error("Giving up on event", attempts=attempt, error=str(e))
                    raise
                log.warning("Event not delivered", attempt=attempt, retry_in=delay, error=str(e))
                time.sleep(delay)
                delay = min(delay * 2, self.config.rabbitmq_retry_max_delay)
                attempt += 1
            else:
                log.info("Event published", attempt=attempt)
                return

    @staticmethod
    def _envelope(event_type: str, payload: Dict[str, Any],
                  correlation_id: Optional[str] = None) -> Dict[str, Any]:
        return {
            'event_id': str(uuid.uuid4()),
            'event_type': event_type,
            'event_version': EVENT_VERSION,
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'correlation_id': correlation_id,
            'payload': payload
        }

    def publish_order_confirmed(self, order: Order, correlation_id: Optional[str] = None) -> None:
        """Announce a completed checkout with its priced lines"""
        event = self._envelope(ORDER_CONFIRMED, {
            'order_id': order.id,
            'user_id': order.user_id,
            'total_amount': str(order.total_amount),
            'items': [
                {
                    'book_id': item.book_id,
                    'quantity': item.quantity,
                    'price_at_purchase': str(item.price_at_purchase)
                }
                for item in order.items
            ]
        }, correlation_id)

        self._send(ORDER_CONFIRMED, event)

    def publish_order_status_changed(
        self,
        order: Order,
        old_status: OrderStatus,
        correlation_id: Optional[str] = None
    ) -> None:
        event = self._envelope(ORDER_STATUS_CHANGED, {
            'order_id': order.id,
            'user_id': order.user_id,
            'old_status': old_status.value,
            'new_status': order.status.value
        }, correlation_id)

        self._send(ORDER_STATUS_CHANGED, event)

    def is_healthy(self) -> bool:
        return bool(self.channel is not None and self.channel.is_open
                    and self.connection is not None and self.connection.is_open)

    def close(self) -> None:
        """Close channel and connection; safe to call more than once"""
        channel, connection = self.channel, self.connection
        self.channel = None
        self.connection = None
        try:
            if channel is not None and channel.is_open:
                channel.close()
            if connection is not None and connection.is_open:
                connection.close()
        except (AMQPConnectionError, AMQPChannelError) as e:
            self.logger.warning("Error while closing event channel", error=str(e))
        else:
            self.logger.info("Event channel closed")
