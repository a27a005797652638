"""Prediction-market resolution machine.

    draft -> open -> trading -> closing -> resolution_pending -> resolved -> settled
    closing | resolution_pending | resolved -> disputed -> resolution_pending
    closing | resolution_pending | disputed -> voided

A market cannot resolve without a winning outcome index inside
[0, len(outcomes)) and a resolution proof. Voiding clears any winning
outcome recorded earlier.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
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
from lifecycle.markets.types import (
    MIN_OUTCOMES,
    TERMINAL_STATES,
    MarketEvent,
    MarketState,
    PredictionContext,
)
from lifecycle.utils.time import Clock, utc_now

PredictionMachine: TypeAlias = StateMachine[MarketState, MarketEvent, PredictionContext]


# --- Guards ---


def _valid_metadata(ctx: PredictionContext, *_: Any) -> bool:
    if not ctx.title.strip():
        return False
    outcomes = [o.strip() for o in ctx.outcomes]
    if any(not o for o in outcomes):
        return False
    return len(set(outcomes)) >= MIN_OUTCOMES


def _has_open_time(ctx: PredictionContext, *_: Any) -> bool:
    return ctx.open_time is not None


def _has_close_time(ctx: PredictionContext, *_: Any) -> bool:
    return ctx.close_time is not None


def _has_resolution_source(ctx: PredictionContext, *_: Any) -> bool:
    return bool(ctx.resolution_source)


def _valid_resolution(ctx: PredictionContext, *_: Any) -> bool:
    if ctx.winning_outcome is None or ctx.resolution_proof is None:
        return False
    return 0 <= ctx.winning_outcome < len(ctx.outcomes)


def _has_dispute(ctx: PredictionContext, *_: Any) -> bool:
    return bool(ctx.dispute_reason) and bool(ctx.disputed_by)


def _is_admin(ctx: PredictionContext, *_: Any) -> bool:
    return ctx.is_admin_action is True


def _can_void(ctx: PredictionContext, *_: Any) -> bool:
    return ctx.is_admin_action is True and bool(ctx.void_reason)


# --- Hooks ---


def _stamp_once(field: str) -> Hook:
    def _stamp(ctx: PredictionContext, record: TransitionRecord) -> dict[str, Any] | None:
        if getattr(ctx, field) is None:
            return {field: record.timestamp}
        return None

    return _stamp


def _on_exit_disputed(_ctx: PredictionContext, _record: TransitionRecord) -> dict[str, Any]:
    # The admin flag covers the one transition out of the dispute.
    return {"dispute_reason": None, "disputed_by": None, "is_admin_action": False}


def _on_enter_voided(_ctx: PredictionContext, _record: TransitionRecord) -> dict[str, Any]:
    return {"winning_outcome": None}


def _touch(_ctx: PredictionContext, record: TransitionRecord) -> dict[str, Any]:
    return {"updated_at": record.timestamp}


TRANSITIONS: tuple[TransitionDef[MarketState, MarketEvent], ...] = (
    TransitionDef(
        source=MarketState.DRAFT,
        target=MarketState.OPEN,
        event=MarketEvent.PUBLISH,
        guard=_valid_metadata,
        guard_description="Market needs a title and at least two distinct outcomes",
    ),
    TransitionDef(
        source=MarketState.OPEN,
        target=MarketState.TRADING,
        event=MarketEvent.START_TRADING,
        guard=_has_open_time,
        guard_description="Market open time must be set",
    ),
    TransitionDef(
        source=MarketState.TRADING,
        target=MarketState.CLOSING,
        event=MarketEvent.CLOSE_TRADING,
        guard=_has_close_time,
        guard_description="Market close time must be set",
    ),
    TransitionDef(
        source=MarketState.CLOSING,
        target=MarketState.RESOLUTION_PENDING,
        event=MarketEvent.REQUEST_RESOLUTION,
        guard=_has_resolution_source,
        guard_description="A resolution source must be configured",
    ),
    TransitionDef(
        source=MarketState.RESOLUTION_PENDING,
        target=MarketState.RESOLVED,
        event=MarketEvent.RESOLVE,
        guard=_valid_resolution,
        guard_description="Winning outcome must be a valid outcome index and a resolution proof is required",
    ),
    TransitionDef(
        source=MarketState.RESOLVED,
        target=MarketState.SETTLED,
        event=MarketEvent.SETTLE,
    ),
    TransitionDef(
        source=(MarketState.CLOSING, MarketState.RESOLUTION_PENDING, MarketState.RESOLVED),
        target=MarketState.DISPUTED,
        event=MarketEvent.DISPUTE,
        guard=_has_dispute,
        guard_description="Dispute requires a reason and the identity of the filer",
    ),
    TransitionDef(
        source=MarketState.DISPUTED,
        target=MarketState.RESOLUTION_PENDING,
        event=MarketEvent.RESOLVE_DISPUTE,
        guard=_is_admin,
        guard_description="Resolving a dispute requires admin action",
    ),
    TransitionDef(
        source=(MarketState.CLOSING, MarketState.RESOLUTION_PENDING, MarketState.DISPUTED),
        target=MarketState.VOIDED,
        event=MarketEvent.VOID,
        guard=_can_void,
        guard_description="Voiding requires admin action and a reason",
    ),
)


def _build_config(
    context: PredictionContext,
    audit_sink: AuditSink | None,
    max_history_size: int,
) -> MachineConfig[MarketState, MarketEvent, PredictionContext]:
    machine_id = f"market:{context.market_id}"
    on_transition: list[Hook] = [_touch]
    if audit_sink is not None:
        on_transition.append(audit_hook(machine_id, audit_sink))

    return MachineConfig(
        id=machine_id,
        initial=MarketState.DRAFT,
        states=tuple(MarketState),
        context=context,
        transitions=TRANSITIONS,
        hooks=MachineHooks(
            on_enter={
                MarketState.TRADING: _stamp_once("trading_started_at"),
                MarketState.CLOSING: _stamp_once("trading_closed_at"),
                MarketState.VOIDED: _on_enter_voided,
            },
            on_exit={
                MarketState.DISPUTED: _on_exit_disputed,
            },
            on_transition=tuple(on_transition),
        ),
        max_history_size=max_history_size,
    )


# --- Factories ---


def create_prediction_context(
    market_id: str,
    title: str = "",
    outcomes: Sequence[str] = (),
    *,
    resolution_source: str | None = None,
    clock: Clock = utc_now,
) -> PredictionContext:
    now = clock()
    return PredictionContext(
        market_id=market_id,
        title=title,
        outcomes=tuple(outcomes),
        resolution_source=resolution_source,
        created_at=now,
        updated_at=now,
    )


def create_prediction_machine(
    market_id: str,
    title: str = "",
    outcomes: Sequence[str] = (),
    *,
    resolution_source: str | None = None,
    audit_sink: AuditSink | None = None,
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
    clock: Clock = utc_now,
) -> PredictionMachine:
    """Create a market machine in the draft state."""
    context = create_prediction_context(
        market_id,
        title,
        outcomes,
        resolution_source=resolution_source,
        clock=clock,
    )
    return StateMachine(_build_config(context, audit_sink, max_history_size), clock=clock)


def restore_prediction_machine(
    snapshot: Snapshot | Mapping[str, Any],
    *,
    audit_sink: AuditSink | None = None,
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
    clock: Clock = utc_now,
) -> PredictionMachine:
    """Rebuild a market machine from a persisted snapshot."""
    if not isinstance(snapshot, Snapshot):
        snapshot = Snapshot.model_validate(snapshot)
    context = PredictionContext.model_validate(snapshot.context)
    machine: PredictionMachine = StateMachine(
        _build_config(context, audit_sink, max_history_size),
        clock=clock,
    )
    machine.restore(snapshot)
    return machine


# --- Predicates ---


def is_terminal_market_state(state: MarketState) -> bool:
    return state in TERMINAL_STATES


def can_trade_market(state: MarketState) -> bool:
    return state == MarketState.TRADING


def is_market_settled(state: MarketState) -> bool:
    return state == MarketState.SETTLED


def winning_outcome_name(ctx: PredictionContext) -> str | None:
    """Name of the winning outcome, or None when unresolved or out of range."""
    if ctx.winning_outcome is None or not 0 <= ctx.winning_outcome < len(ctx.outcomes):
        return None
    return ctx.outcomes[ctx.winning_outcome]
