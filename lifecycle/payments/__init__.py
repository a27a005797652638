"""Payment lifecycle machine with bounded retry."""

from lifecycle.payments.state_machine import (
    TRANSITIONS,
    PaymentMachine,
    create_payment_context,
    create_payment_machine,
    is_fraud_failure,
    is_payment_settled,
    is_terminal_payment_state,
    restore_payment_machine,
    retries_remaining,
)
from lifecycle.payments.types import (
    DEFAULT_MAX_RETRIES,
    FRAUD_FAILURE_CODES,
    TERMINAL_STATES,
    PaymentContext,
    PaymentEvent,
    PaymentState,
)

__all__ = [
    "DEFAULT_MAX_RETRIES",
    "FRAUD_FAILURE_CODES",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "PaymentContext",
    "PaymentEvent",
    "PaymentMachine",
    "PaymentState",
    "create_payment_context",
    "create_payment_machine",
    "is_fraud_failure",
    "is_payment_settled",
    "is_terminal_payment_state",
    "restore_payment_machine",
    "retries_remaining",
]
