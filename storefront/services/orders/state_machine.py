"""Order state machine with guarded transitions.

Target-status guards run before the transition table so callers get the
business reason (no vehicle, not shipped, already paid) rather than a
generic "invalid transition". Applying a transition only mutates the order
in memory; the calling service owns the transaction.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from storefront.core.logging import get_logger
from storefront.services.orders.enums import (
    OrderStatus,
    get_allowed_order_transitions,
    validate_order_status_transition,
)

logger = get_logger(__name__)

NO_VEHICLE_MESSAGE = "Cannot mark as shipped: No vehicle assigned"
NOT_SHIPPED_MESSAGE = "Cannot mark as delivered: Order not shipped"
ALREADY_CONFIRMED_MESSAGE = "Cannot confirm payment: Payment already confirmed"


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: OrderStatus,
        target_state: OrderStatus,
        **context: Any
    ):
        super().__init__(message)
        self.current_state = current_state
        self.target_state = target_state
        self.context = context


class OrderStateMachine:
    """State machine for order lifecycle transitions.

    Guards are keyed by target status and return an error message when the
    transition must be refused. Side effects stamp lifecycle timestamps.
    """

    def __init__(self):
        self._guards: Dict[OrderStatus, Callable[[Any], Optional[str]]] = {
            OrderStatus.PROCESSING: self._guard_payment_pending,
            OrderStatus.SHIPPED: self._guard_vehicle_assigned,
            OrderStatus.DELIVERED: self._guard_shipped,
        }
        self._side_effects: Dict[OrderStatus, Callable[[Any, datetime], None]] = {
            OrderStatus.SHIPPED: self._effect_shipped,
            OrderStatus.DELIVERED: self._effect_delivered,
            OrderStatus.CANCELLED: self._effect_cancelled,
        }

    def validate_transition(self, order: Any, target_status: OrderStatus) -> bool:
        """Validate that ``order`` may move to ``target_status``.

        Raises:
            StateTransitionError: If a guard fails or the move is not allowed
        """
        current_status = order.status

        guard = self._guards.get(target_status)
        if guard is not None:
            message = guard(order)
            if message:
                raise StateTransitionError(
                    message,
                    current_state=current_status,
                    target_state=target_status,
                    guard_failed=True,
                )

        if not validate_order_status_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise StateTransitionError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                allowed_transitions=sorted(s.value for s in allowed),
            )

        return True

    def apply_transition(
        self,
        order: Any,
        target_status: OrderStatus,
        now: Optional[datetime] = None,
    ) -> OrderStatus:
        """Move ``order`` to ``target_status`` and run its side effect.

        Returns:
            The previous status

        Raises:
            StateTransitionError: If the transition is refused; the order is
                left untouched
        """
        self.validate_transition(order, target_status)

        old_status = order.status
        order.status = target_status

        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            side_effect(order, now or datetime.now(timezone.utc))

        logger.info(
            "Order status transition applied",
            order_id=str(order.id),
            transition=f"{old_status.value}->{target_status.value}",
        )
        return old_status

    # Guards

    def _guard_payment_pending(self, order: Any) -> Optional[str]:
        if not order.status.is_awaiting_payment():
            return ALREADY_CONFIRMED_MESSAGE
        return None

    def _guard_vehicle_assigned(self, order: Any) -> Optional[str]:
        if not order.has_vehicle:
            return NO_VEHICLE_MESSAGE
        return None

    def _guard_shipped(self, order: Any) -> Optional[str]:
        if order.status != OrderStatus.SHIPPED:
            return NOT_SHIPPED_MESSAGE
        return None

    # Side effects

    def _effect_shipped(self, order: Any, now: datetime) -> None:
        order.shipped_at = now

    def _effect_delivered(self, order: Any, now: datetime) -> None:
        order.delivered_at = now

    def _effect_cancelled(self, order: Any, now: datetime) -> None:
        order.cancelled_at = now
