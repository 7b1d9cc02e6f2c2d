"""Order lifecycle enums and transition rules.

Defines order status, order type and payment method enums together with the
transition table the order state machine enforces.
"""

from enum import Enum
from typing import Dict, Set


class OrderStatus(str, Enum):
    """Order lifecycle status.

    Valid transitions:
    - PENDING -> PENDING_PAYMENT_VERIFICATION, PROCESSING, CANCELLED
    - PENDING_PAYMENT_VERIFICATION -> PROCESSING, CANCELLED
    - PROCESSING -> SHIPPED, CANCELLED
    - SHIPPED -> DELIVERED, CANCELLED
    - DELIVERED -> (terminal state)
    - CANCELLED -> (terminal state)
    """

    PENDING = "pending"
    PENDING_PAYMENT_VERIFICATION = "pending_payment_verification"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """Convert string to OrderStatus enum.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.lower())
        except ValueError:
            valid_values = ", ".join([s.value for s in cls])
            raise ValueError(
                f"Invalid order status: {value}. "
                f"Valid values are: {valid_values}"
            )

    def is_terminal(self) -> bool:
        """Check if status is a terminal state."""
        return self in {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

    def is_awaiting_payment(self) -> bool:
        """Check if payment has not been confirmed yet."""
        return self in {
            OrderStatus.PENDING,
            OrderStatus.PENDING_PAYMENT_VERIFICATION,
        }

    @property
    def display_name(self) -> str:
        """Get human-readable display name for status."""
        return self.value.replace("_", " ").title()


class OrderType(str, Enum):
    """Whether an order is billed alone or accumulated into a period invoice."""

    ONE_TIME = "onetime-order"
    PERIOD = "period-order"

    @classmethod
    def from_view_mode(cls, view_mode: str) -> "OrderType":
        """Map the admin listing view mode onto an order type."""
        return cls.PERIOD if view_mode == "period" else cls.ONE_TIME


class PaymentMethod(str, Enum):
    """How the customer pays for an order."""

    ONLINE = "online"
    OFFLINE = "offline"
    PERIOD_INVOICE = "periodInvoice"


ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.PENDING_PAYMENT_VERIFICATION,
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PENDING_PAYMENT_VERIFICATION: {
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.DELIVERED: set(),  # Terminal
    OrderStatus.CANCELLED: set(),  # Terminal
}


def validate_order_status_transition(current: OrderStatus, new: OrderStatus) -> bool:
    """Validate if order status transition is allowed."""
    return new in ORDER_STATUS_TRANSITIONS.get(current, set())


def get_allowed_order_transitions(current: OrderStatus) -> Set[OrderStatus]:
    """Get all allowed transitions from current order status."""
    return ORDER_STATUS_TRANSITIONS.get(current, set()).copy()
