"""Lookup of the domain machines by kind name.

Lets generic tooling (the CLI, replay scripts) restore a snapshot or
print a transition table without importing each domain module.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from lifecycle.config import AppConfig
from lifecycle.engine import Snapshot, StateMachine
from lifecycle.kyc import KycEvent, KycState, create_kyc_machine, restore_kyc_machine
from lifecycle.markets import (
    MarketEvent,
    MarketState,
    create_prediction_machine,
    restore_prediction_machine,
)
from lifecycle.markets import TERMINAL_STATES as MARKET_TERMINAL_STATES
from lifecycle.orders import OrderEvent, OrderState, create_order_machine, restore_order_machine
from lifecycle.orders import TERMINAL_STATES as ORDER_TERMINAL_STATES
from lifecycle.payments import (
    PaymentEvent,
    PaymentState,
    create_payment_machine,
    restore_payment_machine,
)
from lifecycle.payments import TERMINAL_STATES as PAYMENT_TERMINAL_STATES

AnyMachine = StateMachine[Any, Any, Any]
RestoreFn = Callable[..., AnyMachine]


@dataclass(frozen=True)
class MachineKind:
    """One domain machine: how to restore it and what it declares."""

    name: str
    restore: RestoreFn
    states: type[Enum]
    events: type[Enum]
    terminal_states: frozenset[Any]
    example: Callable[[AppConfig], AnyMachine]

    def restore_from(
        self,
        snapshot: Snapshot | Mapping[str, Any],
        config: AppConfig | None = None,
    ) -> AnyMachine:
        """Restore a snapshot with the configured history cap."""
        cfg = config or AppConfig()
        return self.restore(snapshot, max_history_size=cfg.engine.max_history_size)

    def is_terminal(self, state: Enum) -> bool:
        return state in self.terminal_states


def _example_order(cfg: AppConfig) -> AnyMachine:
    return create_order_machine(
        "example",
        Decimal("1"),
        max_history_size=cfg.engine.max_history_size,
    )


def _example_kyc(cfg: AppConfig) -> AnyMachine:
    return create_kyc_machine("example", max_history_size=cfg.engine.max_history_size)


def _example_payment(cfg: AppConfig) -> AnyMachine:
    return create_payment_machine(
        "example",
        Decimal("1"),
        max_retries=cfg.payments.max_retries,
        max_history_size=cfg.engine.max_history_size,
    )


def _example_prediction(cfg: AppConfig) -> AnyMachine:
    return create_prediction_machine("example", max_history_size=cfg.engine.max_history_size)


MACHINE_KINDS: dict[str, MachineKind] = {
    "order": MachineKind(
        name="order",
        restore=restore_order_machine,
        states=OrderState,
        events=OrderEvent,
        terminal_states=frozenset(ORDER_TERMINAL_STATES),
        example=_example_order,
    ),
    "kyc": MachineKind(
        name="kyc",
        restore=restore_kyc_machine,
        states=KycState,
        events=KycEvent,
        terminal_states=frozenset(),
        example=_example_kyc,
    ),
    "payment": MachineKind(
        name="payment",
        restore=restore_payment_machine,
        states=PaymentState,
        events=PaymentEvent,
        terminal_states=frozenset(PAYMENT_TERMINAL_STATES),
        example=_example_payment,
    ),
    "prediction": MachineKind(
        name="prediction",
        restore=restore_prediction_machine,
        states=MarketState,
        events=MarketEvent,
        terminal_states=frozenset(MARKET_TERMINAL_STATES),
        example=_example_prediction,
    ),
}


def get_machine_kind(name: str) -> MachineKind:
    """Look up a machine kind.

    Raises:
        KeyError: Unknown kind name.
    """
    try:
        return MACHINE_KINDS[name.lower()]
    except KeyError:
        raise KeyError(
            f"Unknown machine kind {name!r}; expected one of {sorted(MACHINE_KINDS)}"
        ) from None
