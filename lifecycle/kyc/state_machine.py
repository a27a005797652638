"""KYC verification machine.

Multi-step flow: email verification, identity document verification,
background check, final approval. Each forward step gates on the
matching upstream confirmation already written into the context.

Administrative overrides:
- SUSPEND from any of SUSPENDABLE_STATES (admin + reason). Entering
  suspended records the prior state.
- UNSUSPEND back to exactly that prior state (admin). Leaving suspended
  clears the admin flag and suspension reason.
- RESET from rejected or suspended back to unverified (admin).

No KYC state is terminal: rejected and suspended both have an admin escape.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, TypeAlias

from lifecycle.audit import AuditSink, audit_hook
from lifecycle.engine import (
    DEFAULT_MAX_HISTORY_SIZE,
    Guard,
    Hook,
    MachineConfig,
    MachineHooks,
    Snapshot,
    StateMachine,
    TransitionDef,
    TransitionRecord,
)
from lifecycle.kyc.types import (
    KYC_PROGRESS,
    SUSPENDABLE_STATES,
    KycContext,
    KycEvent,
    KycState,
)
from lifecycle.utils.time import Clock, utc_now

KycMachine: TypeAlias = StateMachine[KycState, KycEvent, KycContext]


# --- Guards ---


def _has_email(ctx: KycContext, *_: Any) -> bool:
    return bool(ctx.email)


def _email_token_valid(ctx: KycContext, *_: Any) -> bool:
    return ctx.email_token is not None and ctx.email_token_valid is True


def _has_identity_inquiry(ctx: KycContext, *_: Any) -> bool:
    return ctx.identity_inquiry_id is not None


def _identity_approved(ctx: KycContext, *_: Any) -> bool:
    return ctx.identity_approved is True


def _has_background_report(ctx: KycContext, *_: Any) -> bool:
    return ctx.background_report_id is not None


def _background_cleared(ctx: KycContext, *_: Any) -> bool:
    return ctx.background_cleared is True


def _has_rejection_reason(ctx: KycContext, *_: Any) -> bool:
    return ctx.rejection_reason is not None


def _admin_rejection(ctx: KycContext, *_: Any) -> bool:
    return ctx.rejection_reason is not None and ctx.is_admin_action is True


def _can_suspend(ctx: KycContext, *_: Any) -> bool:
    return ctx.is_admin_action is True and ctx.suspension_reason is not None


def _is_admin(ctx: KycContext, *_: Any) -> bool:
    return ctx.is_admin_action is True


def _restores_to(state: KycState) -> Guard:
    """UNSUSPEND guard for one possible pre-suspension state."""

    def _guard(ctx: KycContext, *_: Any) -> bool:
        if ctx.is_admin_action is not True:
            return False
        if state == KycState.UNVERIFIED and ctx.pre_suspension_state is None:
            return True
        return ctx.pre_suspension_state == state

    return _guard


# --- Hooks ---


def _on_enter_suspended(_ctx: KycContext, record: TransitionRecord) -> dict[str, Any]:
    return {"pre_suspension_state": record.from_state}


def _on_exit_suspended(_ctx: KycContext, _record: TransitionRecord) -> dict[str, Any]:
    # Admin flags apply to one transition only.
    return {"is_admin_action": False, "suspension_reason": None}


def _on_exit_rejected(_ctx: KycContext, _record: TransitionRecord) -> dict[str, Any]:
    return {"is_admin_action": False, "rejection_reason": None}


def _count_attempt(field: str, event: KycEvent) -> Hook:
    """Enter hook: count a fresh verification attempt, not an unsuspend."""

    def _count(ctx: KycContext, record: TransitionRecord) -> dict[str, Any] | None:
        if record.event != event.value:
            return None
        return {field: getattr(ctx, field) + 1}

    return _count


def _touch(_ctx: KycContext, record: TransitionRecord) -> dict[str, Any]:
    return {"updated_at": record.timestamp}


_REASON_REQUIRED = "Rejection must include a reason"

TRANSITIONS: tuple[TransitionDef[KycState, KycEvent], ...] = (
    # Email verification
    TransitionDef(
        source=KycState.UNVERIFIED,
        target=KycState.EMAIL_PENDING,
        event=KycEvent.START_EMAIL,
        guard=_has_email,
        guard_description="User must have an email address set",
    ),
    TransitionDef(
        source=KycState.EMAIL_PENDING,
        target=KycState.EMAIL_VERIFIED,
        event=KycEvent.VERIFY_EMAIL,
        guard=_email_token_valid,
        guard_description="Email token must be present and validated",
    ),
    # Identity verification
    TransitionDef(
        source=KycState.EMAIL_VERIFIED,
        target=KycState.IDENTITY_PENDING,
        event=KycEvent.START_IDENTITY,
        guard=_has_identity_inquiry,
        guard_description="Identity inquiry must be created before starting identity verification",
    ),
    TransitionDef(
        source=KycState.IDENTITY_PENDING,
        target=KycState.IDENTITY_VERIFIED,
        event=KycEvent.VERIFY_IDENTITY,
        guard=_identity_approved,
        guard_description="Identity provider must approve the verification",
    ),
    # Background check
    TransitionDef(
        source=KycState.IDENTITY_VERIFIED,
        target=KycState.BACKGROUND_PENDING,
        event=KycEvent.START_BACKGROUND,
        guard=_has_background_report,
        guard_description="Background report must be created before starting the background check",
    ),
    TransitionDef(
        source=KycState.BACKGROUND_PENDING,
        target=KycState.BACKGROUND_CLEARED,
        event=KycEvent.CLEAR_BACKGROUND,
        guard=_background_cleared,
        guard_description="Background check must be cleared",
    ),
    TransitionDef(
        source=KycState.BACKGROUND_CLEARED,
        target=KycState.APPROVED,
        event=KycEvent.APPROVE,
    ),
    # Rejection
    TransitionDef(
        source=(KycState.IDENTITY_PENDING, KycState.BACKGROUND_PENDING),
        target=KycState.REJECTED,
        event=KycEvent.REJECT,
        guard=_has_rejection_reason,
        guard_description=_REASON_REQUIRED,
    ),
    TransitionDef(
        source=KycState.BACKGROUND_CLEARED,
        target=KycState.REJECTED,
        event=KycEvent.REJECT,
        guard=_admin_rejection,
        guard_description="Post-clearance rejection requires admin action and a reason",
    ),
    # Suspension from every suspendable state
    TransitionDef(
        source=SUSPENDABLE_STATES,
        target=KycState.SUSPENDED,
        event=KycEvent.SUSPEND,
        guard=_can_suspend,
        guard_description="Suspension requires admin action and a reason",
    ),
    # Unsuspend: one guarded alternative per possible prior state
    *(
        TransitionDef(
            source=KycState.SUSPENDED,
            target=state,
            event=KycEvent.UNSUSPEND,
            guard=_restores_to(state),
            guard_description="Unsuspend requires admin action and restores the pre-suspension state",
        )
        for state in SUSPENDABLE_STATES
    ),
    # Reset
    TransitionDef(
        source=(KycState.REJECTED, KycState.SUSPENDED),
        target=KycState.UNVERIFIED,
        event=KycEvent.RESET,
        guard=_is_admin,
        guard_description="Reset requires admin action",
    ),
)


def _build_config(
    context: KycContext,
    audit_sink: AuditSink | None,
    max_history_size: int,
) -> MachineConfig[KycState, KycEvent, KycContext]:
    machine_id = f"kyc:{context.user_id}"
    on_transition: list[Hook] = [_touch]
    if audit_sink is not None:
        on_transition.append(audit_hook(machine_id, audit_sink))

    return MachineConfig(
        id=machine_id,
        initial=KycState.UNVERIFIED,
        states=tuple(KycState),
        context=context,
        transitions=TRANSITIONS,
        hooks=MachineHooks(
            on_enter={
                KycState.SUSPENDED: _on_enter_suspended,
                KycState.IDENTITY_PENDING: _count_attempt(
                    "identity_attempts", KycEvent.START_IDENTITY
                ),
                KycState.BACKGROUND_PENDING: _count_attempt(
                    "background_attempts", KycEvent.START_BACKGROUND
                ),
            },
            on_exit={
                KycState.SUSPENDED: _on_exit_suspended,
                KycState.REJECTED: _on_exit_rejected,
            },
            on_transition=tuple(on_transition),
        ),
        max_history_size=max_history_size,
    )


# --- Factories ---


def create_kyc_context(
    user_id: str,
    email: str | None = None,
    *,
    clock: Clock = utc_now,
) -> KycContext:
    now = clock()
    return KycContext(user_id=user_id, email=email, created_at=now, updated_at=now)


def create_kyc_machine(
    user_id: str,
    email: str | None = None,
    *,
    audit_sink: AuditSink | None = None,
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
    clock: Clock = utc_now,
) -> KycMachine:
    """Create a KYC machine in the unverified state.

    Example:
        machine = create_kyc_machine("usr_123", email="user@example.com")
        await machine.transition(KycEvent.START_EMAIL)
        machine.set_context(email_token="tok_abc", email_token_valid=True)
        await machine.transition(KycEvent.VERIFY_EMAIL)
    """
    context = create_kyc_context(user_id, email, clock=clock)
    return StateMachine(_build_config(context, audit_sink, max_history_size), clock=clock)


def restore_kyc_machine(
    snapshot: Snapshot | Mapping[str, Any],
    *,
    audit_sink: AuditSink | None = None,
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE,
    clock: Clock = utc_now,
) -> KycMachine:
    """Rebuild a KYC machine from a persisted snapshot."""
    if not isinstance(snapshot, Snapshot):
        snapshot = Snapshot.model_validate(snapshot)
    context = KycContext.model_validate(snapshot.context)
    machine: KycMachine = StateMachine(
        _build_config(context, audit_sink, max_history_size),
        clock=clock,
    )
    machine.restore(snapshot)
    return machine


# --- Predicates ---


def is_terminal_kyc_state(state: KycState) -> bool:
    """Always False: rejected and suspended can be reset or unsuspended by an admin."""
    return False


def can_trade_in_kyc_state(state: KycState) -> bool:
    return state == KycState.APPROVED


def kyc_progress(state: KycState) -> int:
    """Verification progress as a percentage (0-100)."""
    return KYC_PROGRESS[state]
