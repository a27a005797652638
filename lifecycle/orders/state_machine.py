"""Order lifecycle machine.

    pending -> submitted -> open -> partial_fill* -> filled -> settling -> settled
    pending | submitted | open | partial_fill -> cancelled
    submitted -> rejected
    open | partial_fill -> expired

An order cannot settle before it is fully filled: FILL requires
filled_quantity == quantity, and SETTLE_START is only reachable from
filled. Expiry is driven by the caller observing wall-clock time.

CANCEL from partial_fill only records the terminal status. Settling the
already-filled portion is owned by the execution workflow, not enforced
here.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal
from typing import Any, TypeAlias

from lifecycle.audit import AuditSink, audit_hook
from lifecycle.engine import (
    DEFAULT_MAX_HISTORY_SIZE,
    Hook,
    MachineConfig,
    MachineHooks,
    Snapshot,
    StateMachine,
    TransitionDef,
    TransitionRecord,
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
from lifecycle.utils.time import Clock, utc_now

OrderMachine: TypeAlias = StateMachine[OrderState, OrderEvent, OrderContext]


# --- Guards ---


def _can_submit(ctx: OrderContext, *_: Any) -> bool:
    return ctx.valid_params and ctx.quantity > 0


def _is_partial_fill(ctx: OrderContext, *_: Any) -> bool:
    return Decimal("0") < ctx.filled_quantity < ctx.quantity


def _is_full_fill(ctx: OrderContext, *_: Any) -> bool:
    return ctx.quantity > 0 and ctx.filled_quantity == ctx.quantity


def _has_settlement_id(ctx: OrderContext, *_: Any) -> bool:
    return bool(ctx.settlement_id)


def _settlement_confirmed(ctx: OrderContext, *_: Any) -> bool:
    return ctx.settlement_confirmed is True


def _has_canceller(ctx: OrderContext, *_: Any) -> bool:
    return ctx.cancelled_by is not None


def _has_rejection_reason(ctx: OrderContext, *_: Any) -> bool:
    return bool(ctx.rejection_reason)


# --- Hooks ---


def _stamp_once(field: str) -> Hook:
    """Enter hook: record the first time a state is entered."""

    def _stamp(ctx: OrderContext, record: TransitionRecord) -> dict[str, Any] | None:
        if getattr(ctx, field) is None:
            return {field: record.timestamp}
        return None

    return _stamp


def _touch(_ctx: OrderContext, record: TransitionRecord) -> dict[str, Any]:
    return {"updated_at": record.timestamp}


TRANSITIONS: tuple[TransitionDef[OrderState, OrderEvent], ...] = (
    TransitionDef(
        source=OrderState.PENDING,
        target=OrderState.SUBMITTED,
        event=OrderEvent.SUBMIT,
        guard=_can_submit,
        guard_description="Order parameters must be validated and quantity must be positive",
    ),
    TransitionDef(
        source=OrderState.SUBMITTED,
        target=OrderState.OPEN,
        event=OrderEvent.ACCEPT,
    ),
    TransitionDef(
        source=(OrderState.OPEN, OrderState.PARTIAL_FILL),
        target=OrderState.PARTIAL_FILL,
        event=OrderEvent.PARTIAL_FILL,
        guard=_is_partial_fill,
        guard_description="Filled quantity must be greater than zero and less than order quantity",
    ),
    TransitionDef(
        source=(OrderState.OPEN, OrderState.PARTIAL_FILL),
        target=OrderState.FILLED,
        event=OrderEvent.FILL,
        guard=_is_full_fill,
        guard_description="Filled quantity must equal order quantity",
    ),
    TransitionDef(
        source=OrderState.FILLED,
        target=OrderState.SETTLING,
        event=OrderEvent.SETTLE_START,
        guard=_has_settlement_id,
        guard_description="A settlement id must be assigned before settlement starts",
    ),
    TransitionDef(
        source=OrderState.SETTLING,
        target=OrderState.SETTLED,
        event=OrderEvent.SETTLE_CONFIRM,
        guard=_settlement_confirmed,
        guard_description="Settlement must be confirmed",
    ),
    TransitionDef(
        source=(OrderState.PENDING, OrderState.SUBMITTED, OrderState.OPEN),
        target=OrderState.CANCELLED,
        event=OrderEvent.CANCEL,
        guard=_has_canceller,
        guard_description="Cancellation requires the identity of the cancelling actor",
    ),
    TransitionDef(
        source=OrderState.PARTIAL_FILL,
        target=OrderState.CANCELLED,
        event=OrderEvent.CANCEL,
        guard=_has_canceller,
        guard_description=(
            "Cancelling a partially filled order requires the identity of the "
            "cancelling actor; the filled portion is settled by the execution workflow"
        ),
    ),
    TransitionDef(
        source=OrderState.SUBMITTED,
        target=OrderState.REJECTED,
        event=OrderEvent.REJECT,
        guard=_has_rejection_reason,
        guard_description="Rejection must include a reason",
    ),
    TransitionDef(
        source=(OrderState.OPEN, OrderState.PARTIAL_FILL),
        target=OrderState.EXPIRED,
        event=OrderEvent.EXPIRE,
    ),
)


def _build_config(
    context: OrderContext,
    audit_sink: AuditSink | None,
    max_history_size: int,
) -> MachineConfig[OrderState, OrderEvent, OrderContext]:
    machine_id = f"order:{context.order_id}"
    on_transition: list[Hook] = [_touch]
    if audit_sink is not None:
        on_transition.append(audit_hook(machine_id, audit_sink))

    return MachineConfig(
        id=machine_id,
        initial=OrderState.PENDING,
        states=tuple(OrderState),
        context=context,
        transitions=TRANSITIONS,
        hooks=MachineHooks(
            on_enter={
                OrderState.SUBMITTED: _stamp_once("submitted_at"),
                OrderState.FILLED: _stamp_once("filled_at"),
                OrderState.SETTLED: _stamp_once("settled_at"),
            },
            on_transition=tuple(on_transition),
        ),
        max_history_size=max_history_size,
    )


# --- Factories ---


def create_order_context(
    order_id: str,
    quantity: Decimal | int | str,
    *,
    user_id: str | None = None,
    symbol: str | None = None,
    side: OrderSide | None = None,
    clock: Clock = utc_now,
) -> OrderContext:
    """Default context for a freshly created order."""
    now = clock()
    return OrderContext(
        order_id=order_id,
        user_id=user_id,
        symbol=symbol,
        side=side,
        quantity=Decimal(str(quantity)),
        created_at=now,
        updated_at=now,
    )


def create_order_machine(
    order_id: str,
    quantity: Decimal | int | str,
    *,
    user_id: str | None = None,
    symbol: str | None = None,
    side: OrderSide | None = None,
    audit_sink: AuditSink | None = None,
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
    clock: Clock = utc_now,
) -> OrderMachine:
    """Create an order machine in the pending state.

    Example:
        machine = create_order_machine("o1", quantity=100)
        machine.set_context(valid_params=True)
        await machine.transition(OrderEvent.SUBMIT)
    """
    context = create_order_context(
        order_id,
        quantity,
        user_id=user_id,
        symbol=symbol,
        side=side,
        clock=clock,
    )
    return StateMachine(_build_config(context, audit_sink, max_history_size), clock=clock)


def restore_order_machine(
    snapshot: Snapshot | Mapping[str, Any],
    *,
    audit_sink: AuditSink | None = None,
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
    clock: Clock = utc_now,
) -> OrderMachine:
    """Rebuild an order machine from a persisted snapshot."""
    if not isinstance(snapshot, Snapshot):
        snapshot = Snapshot.model_validate(snapshot)
    context = OrderContext.model_validate(snapshot.context)
    machine: OrderMachine = StateMachine(
        _build_config(context, audit_sink, max_history_size),
        clock=clock,
    )
    machine.restore(snapshot)
    return machine


# --- Predicates ---


def is_terminal_order_state(state: OrderState) -> bool:
    return state in TERMINAL_STATES


def is_order_active(state: OrderState) -> bool:
    """Whether the order is working at the venue and may still fill."""
    return state in ACTIVE_STATES


def is_order_settled(state: OrderState) -> bool:
    return state == OrderState.SETTLED


def can_cancel_order(state: OrderState) -> bool:
    """Whether CANCEL is defined from this state (the guard still applies)."""
    return state in CANCELLABLE_STATES


def remaining_quantity(ctx: OrderContext) -> Decimal:
    """Unfilled quantity, never negative."""
    return max(ctx.quantity - ctx.filled_quantity, Decimal("0"))
