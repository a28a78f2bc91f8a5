"""
Order lookup and status management
"""
from typing import List, Tuple
import structlog

from bookstore.errors import InvalidStatusTransitionError, OrderNotFoundError
from bookstore.models import Order, OrderStatus
from bookstore.repositories import OrderRepository


class OrderService:
    """Read access to orders plus the status state machine"""

    def __init__(self, repository: OrderRepository):
        self.repo = repository
        self.logger = structlog.get_logger().bind(component="order_service")

    def get_order(self, order_id: str) -> Order:
        order = self.repo.get(order_id)
        if order is None:
            self.logger.warning("Order not found", order_id=order_id)
            raise OrderNotFoundError(order_id)
        return order

    def list_orders_for_user(self, user_id: str) -> List[Order]:
        """Orders placed by a user, newest first"""
        return self.repo.list_by_user(user_id)

    def list_orders(self) -> List[Order]:
        return self.repo.list_all()

    def update_status(self, order_id: str, new_status: OrderStatus) -> Tuple[Order, OrderStatus]:
        """
        Move an order along PENDING -> CONFIRMED -> COMPLETED, or to
        CANCELLED from any non-terminal state.

        Returns:
            Tuple of (updated order, previous status)

        Raises:
            OrderNotFoundError: if the order does not exist
            InvalidStatusTransitionError: if the transition is not allowed
        """
        order = self.get_order(order_id)
        current = order.status

        if not current.can_transition_to(new_status):
            self.logger.warning("Rejected status transition", order_id=order_id,
                                current=current.value, requested=new_status.value)
            raise InvalidStatusTransitionError(current.value, new_status.value)

        updated = self.repo.update_status(order_id, current, new_status)
        if updated is None:
            # status changed concurrently; report against the fresh state
            latest = self.get_order(order_id)
            raise InvalidStatusTransitionError(latest.status.value, new_status.value)

        self.logger.info("Order status changed", order_id=order_id,
                         old_status=current.value, new_status=new_status.value)
        return updated, current
