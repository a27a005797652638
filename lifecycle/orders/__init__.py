"""Trade order lifecycle machine."""

from lifecycle.orders.state_machine import (
    TRANSITIONS,
    OrderMachine,
    can_cancel_order,
    create_order_context,
    create_order_machine,
    is_order_active,
    is_order_settled,
    is_terminal_order_state,
    remaining_quantity,
    restore_order_machine,
)
from lifecycle.orders.types import (
    ACTIVE_STATES,
    CANCELLABLE_STATES,
    TERMINAL_STATES,
    OrderContext,
    OrderEvent,
    OrderSide,
    OrderState,
)

__all__ = [
    "ACTIVE_STATES",
    "CANCELLABLE_STATES",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "OrderContext",
    "OrderEvent",
    "OrderMachine",
    "OrderSide",
    "OrderState",
    "can_cancel_order",
    "create_order_context",
    "create_order_machine",
    "is_order_active",
    "is_order_settled",
    "is_terminal_order_state",
    "remaining_quantity",
    "restore_order_machine",
]
