"""Payment lifecycle machine with bounded retry.

    initiated -> processing -> succeeded -> settled
    processing -> failed -> retry_pending -> processing    (at most max_retries times)
    failed | retry_pending -> permanently_failed

retry_count changes in exactly one place: the retry_pending enter hook.
Guards only read it, so evaluating a guard twice never double-counts.
The retry window itself is timed by the caller, which fires RETRY or
ABANDON; the machine holds no timers.
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
from lifecycle.payments.types import (
    DEFAULT_MAX_RETRIES,
    FRAUD_FAILURE_CODES,
    TERMINAL_STATES,
    PaymentContext,
    PaymentEvent,
    PaymentState,
)
from lifecycle.utils.time import Clock, utc_now

PaymentMachine: TypeAlias = StateMachine[PaymentState, PaymentEvent, PaymentContext]


# --- Guards ---


def _can_process(
    ctx: PaymentContext,
    _event: PaymentEvent,
    from_state: PaymentState,
    _to: PaymentState,
) -> bool:
    if ctx.amount <= 0:
        return False
    if not ctx.payment_method_id or not ctx.payment_method_id.strip():
        return False
    if from_state == PaymentState.RETRY_PENDING:
        return ctx.retry_count <= ctx.max_retries
    return True


def _processor_confirmed(ctx: PaymentContext, *_: Any) -> bool:
    return ctx.processor_confirmed is True and bool(ctx.processor_payment_id)


def _funds_available(ctx: PaymentContext, *_: Any) -> bool:
    return ctx.funds_available is True


def _has_failure_reason(ctx: PaymentContext, *_: Any) -> bool:
    return bool(ctx.failure_reason)


def _can_retry(ctx: PaymentContext, *_: Any) -> bool:
    return ctx.retry_count < ctx.max_retries


def _can_abandon_failed(ctx: PaymentContext, *_: Any) -> bool:
    return ctx.retry_count >= ctx.max_retries or is_fraud_failure(ctx.failure_code)


# --- Hooks ---


def _on_enter_retry_pending(ctx: PaymentContext, _record: TransitionRecord) -> dict[str, Any]:
    return {
        "retry_count": ctx.retry_count + 1,
        "processor_confirmed": False,
        "processor_payment_id": None,
        "failure_reason": None,
        "failure_code": None,
    }


def _on_enter_succeeded(_ctx: PaymentContext, record: TransitionRecord) -> dict[str, Any]:
    return {"succeeded_at": record.timestamp}


def _on_enter_settled(_ctx: PaymentContext, record: TransitionRecord) -> dict[str, Any]:
    return {"settled_at": record.timestamp}


def _touch(_ctx: PaymentContext, record: TransitionRecord) -> dict[str, Any]:
    return {"updated_at": record.timestamp}


TRANSITIONS: tuple[TransitionDef[PaymentState, PaymentEvent], ...] = (
    TransitionDef(
        source=(PaymentState.INITIATED, PaymentState.RETRY_PENDING),
        target=PaymentState.PROCESSING,
        event=PaymentEvent.PROCESS,
        guard=_can_process,
        guard_description=(
            "Payment needs a positive amount and a payment method; "
            "retries must not exceed the retry limit"
        ),
    ),
    TransitionDef(
        source=PaymentState.PROCESSING,
        target=PaymentState.SUCCEEDED,
        event=PaymentEvent.SUCCEED,
        guard=_processor_confirmed,
        guard_description="Processor must confirm the payment with a processor payment id",
    ),
    TransitionDef(
        source=PaymentState.SUCCEEDED,
        target=PaymentState.SETTLED,
        event=PaymentEvent.SETTLE,
        guard=_funds_available,
        guard_description="Funds must be confirmed available",
    ),
    TransitionDef(
        source=PaymentState.PROCESSING,
        target=PaymentState.FAILED,
        event=PaymentEvent.FAIL,
        guard=_has_failure_reason,
        guard_description="Failure must include a reason",
    ),
    TransitionDef(
        source=PaymentState.FAILED,
        target=PaymentState.RETRY_PENDING,
        event=PaymentEvent.RETRY,
        guard=_can_retry,
        guard_description="Retry count must be below the retry limit",
    ),
    TransitionDef(
        source=PaymentState.FAILED,
        target=PaymentState.PERMANENTLY_FAILED,
        event=PaymentEvent.ABANDON,
        guard=_can_abandon_failed,
        guard_description="Abandon requires exhausted retries or a fraud failure code",
    ),
    TransitionDef(
        source=PaymentState.RETRY_PENDING,
        target=PaymentState.PERMANENTLY_FAILED,
        event=PaymentEvent.ABANDON,
    ),
)


def _build_config(
    context: PaymentContext,
    audit_sink: AuditSink | None,
    max_history_size: int,
) -> MachineConfig[PaymentState, PaymentEvent, PaymentContext]:
    machine_id = f"payment:{context.payment_id}"
    on_transition: list[Hook] = [_touch]
    if audit_sink is not None:
        on_transition.append(audit_hook(machine_id, audit_sink))

    return MachineConfig(
        id=machine_id,
        initial=PaymentState.INITIATED,
        states=tuple(PaymentState),
        context=context,
        transitions=TRANSITIONS,
        hooks=MachineHooks(
            on_enter={
                PaymentState.RETRY_PENDING: _on_enter_retry_pending,
                PaymentState.SUCCEEDED: _on_enter_succeeded,
                PaymentState.SETTLED: _on_enter_settled,
            },
            on_transition=tuple(on_transition),
        ),
        max_history_size=max_history_size,
    )


# --- Factories ---


def create_payment_context(
    payment_id: str,
    amount: Decimal | int | str,
    *,
    user_id: str | None = None,
    currency: str = "USD",
    payment_method_id: str | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    clock: Clock = utc_now,
) -> PaymentContext:
    now = clock()
    return PaymentContext(
        payment_id=payment_id,
        user_id=user_id,
        amount=Decimal(str(amount)),
        currency=currency,
        payment_method_id=payment_method_id,
        max_retries=max_retries,
        created_at=now,
        updated_at=now,
    )


def create_payment_machine(
    payment_id: str,
    amount: Decimal | int | str,
    *,
    user_id: str | None = None,
    currency: str = "USD",
    payment_method_id: str | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    audit_sink: AuditSink | None = None,
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
    clock: Clock = utc_now,
) -> PaymentMachine:
    """Create a payment machine in the initiated state."""
    context = create_payment_context(
        payment_id,
        amount,
        user_id=user_id,
        currency=currency,
        payment_method_id=payment_method_id,
        max_retries=max_retries,
        clock=clock,
    )
    return StateMachine(_build_config(context, audit_sink, max_history_size), clock=clock)


def restore_payment_machine(
    snapshot: Snapshot | Mapping[str, Any],
    *,
    audit_sink: AuditSink | None = None,
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
    clock: Clock = utc_now,
) -> PaymentMachine:
    """Rebuild a payment machine from a persisted snapshot.

    max_retries is part of the persisted context, so a restored payment
    keeps the limit it was created with.
    """
    if not isinstance(snapshot, Snapshot):
        snapshot = Snapshot.model_validate(snapshot)
    context = PaymentContext.model_validate(snapshot.context)
    machine: PaymentMachine = StateMachine(
        _build_config(context, audit_sink, max_history_size),
        clock=clock,
    )
    machine.restore(snapshot)
    return machine


# --- Predicates ---


def is_terminal_payment_state(state: PaymentState) -> bool:
    return state in TERMINAL_STATES


def is_payment_settled(state: PaymentState) -> bool:
    return state == PaymentState.SETTLED


def is_fraud_failure(failure_code: str | None) -> bool:
    return failure_code is not None and failure_code.lower() in FRAUD_FAILURE_CODES


def retries_remaining(ctx: PaymentContext) -> int:
    return max(ctx.max_retries - ctx.retry_count, 0)
