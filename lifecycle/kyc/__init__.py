"""KYC identity verification machine."""

from lifecycle.kyc.state_machine import (
    TRANSITIONS,
    KycMachine,
    can_trade_in_kyc_state,
    create_kyc_context,
    create_kyc_machine,
    is_terminal_kyc_state,
    kyc_progress,
    restore_kyc_machine,
)
from lifecycle.kyc.types import (
    KYC_PROGRESS,
    SUSPENDABLE_STATES,
    KycContext,
    KycEvent,
    KycState,
)

__all__ = [
    "KYC_PROGRESS",
    "SUSPENDABLE_STATES",
    "TRANSITIONS",
    "KycContext",
    "KycEvent",
    "KycMachine",
    "KycState",
    "can_trade_in_kyc_state",
    "create_kyc_context",
    "create_kyc_machine",
    "is_terminal_kyc_state",
    "kyc_progress",
    "restore_kyc_machine",
]
