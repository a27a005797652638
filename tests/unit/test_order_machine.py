"""Tests for the order lifecycle machine.

Covers every guard, the fill-quantity rules, timestamp stamping,
cancellation from each cancellable state, and the predicates.
"""

from __future__ import annotations

import json
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from lifecycle.audit import InMemoryAuditSink
from lifecycle.engine import DenialReason, TransitionDenied
from lifecycle.orders import (
    ACTIVE_STATES,
    CANCELLABLE_STATES,
    TERMINAL_STATES,
    OrderEvent,
    OrderMachine,
    OrderState,
    can_cancel_order,
    create_order_context,
    is_order_active,
    is_order_settled,
    is_terminal_order_state,
    remaining_quantity,
    restore_order_machine,
)
from tests.factories import T0, StepClock, make_order_machine


async def _to_open(sm: OrderMachine) -> None:
    sm.set_context(valid_params=True)
    assert (await sm.transition(OrderEvent.SUBMIT)).ok
    assert (await sm.transition(OrderEvent.ACCEPT)).ok


async def _to_filled(sm: OrderMachine) -> None:
    await _to_open(sm)
    sm.set_context(filled_quantity=sm.context.quantity)
    assert (await sm.transition(OrderEvent.FILL)).ok


class TestCreate:
    """Factories build a pending order."""

    def test_initial_state(self) -> None:
        sm = make_order_machine()
        assert sm.state == OrderState.PENDING
        assert sm.id == "order:o1"
        assert sm.context.quantity == Decimal("100")
        assert sm.context.filled_quantity == Decimal("0")
        assert sm.context.valid_params is False

    def test_context_quantity_is_decimal(self) -> None:
        ctx = create_order_context("o2", "12.5", clock=StepClock())
        assert ctx.quantity == Decimal("12.5")
        assert ctx.created_at == T0
        assert ctx.updated_at == T0


class TestSubmit:
    async def test_denied_without_valid_params(self) -> None:
        sm = make_order_machine()
        result = await sm.transition(OrderEvent.SUBMIT)
        assert isinstance(result, TransitionDenied)
        assert result.reason == DenialReason.GUARD_FAILED
        assert "quantity must be positive" in (result.guard_description or "")

    async def test_denied_with_zero_quantity(self) -> None:
        sm = make_order_machine(quantity=0)
        sm.set_context(valid_params=True)
        result = await sm.transition(OrderEvent.SUBMIT)
        assert not result.ok
        assert sm.state == OrderState.PENDING

    async def test_submit_stamps_submitted_at(self) -> None:
        sm = make_order_machine()
        sm.set_context(valid_params=True)
        result = await sm.transition(OrderEvent.SUBMIT)
        assert result.ok
        assert sm.context.submitted_at == result.record.timestamp
        assert sm.context.updated_at == result.record.timestamp


class TestFills:
    async def test_partial_fill_bounds(self) -> None:
        sm = make_order_machine()
        await _to_open(sm)

        assert not (await sm.transition(OrderEvent.PARTIAL_FILL)).ok

        sm.set_context(filled_quantity=Decimal("100"))
        assert not (await sm.transition(OrderEvent.PARTIAL_FILL)).ok

        sm.set_context(filled_quantity=Decimal("40"))
        assert (await sm.transition(OrderEvent.PARTIAL_FILL)).ok
        assert sm.state == OrderState.PARTIAL_FILL

    async def test_repeated_partial_fills(self) -> None:
        sm = make_order_machine()
        await _to_open(sm)
        for qty in ("10", "35", "99.5"):
            sm.set_context(filled_quantity=Decimal(qty))
            assert (await sm.transition(OrderEvent.PARTIAL_FILL)).ok
        assert sm.state == OrderState.PARTIAL_FILL
        assert remaining_quantity(sm.context) == Decimal("0.5")

    @pytest.mark.parametrize("filled", ["0", "99.99", "100.01", "150"])
    async def test_fill_requires_exact_quantity(self, filled: str) -> None:
        sm = make_order_machine()
        await _to_open(sm)
        sm.set_context(filled_quantity=Decimal(filled))
        result = await sm.transition(OrderEvent.FILL)
        assert isinstance(result, TransitionDenied)
        assert result.guard_description == "Filled quantity must equal order quantity"

    async def test_fill_from_partial(self) -> None:
        sm = make_order_machine()
        await _to_open(sm)
        sm.set_context(filled_quantity=Decimal("40"))
        await sm.transition(OrderEvent.PARTIAL_FILL)
        sm.set_context(filled_quantity=Decimal("100"))
        result = await sm.transition(OrderEvent.FILL)
        assert result.ok
        assert sm.context.filled_at == result.record.timestamp


class TestSettlement:
    async def test_cannot_settle_before_filled(self) -> None:
        sm = make_order_machine()
        await _to_open(sm)
        sm.set_context(settlement_id="s1", settlement_confirmed=True)
        result = await sm.transition(OrderEvent.SETTLE_START)
        assert isinstance(result, TransitionDenied)
        assert result.reason == DenialReason.NO_TRANSITION

    async def test_settle_start_requires_settlement_id(self) -> None:
        sm = make_order_machine()
        await _to_filled(sm)
        assert not (await sm.transition(OrderEvent.SETTLE_START)).ok
        sm.set_context(settlement_id="s1")
        assert (await sm.transition(OrderEvent.SETTLE_START)).ok

    async def test_settle_confirm_requires_confirmation(self) -> None:
        sm = make_order_machine()
        await _to_filled(sm)
        sm.set_context(settlement_id="s1")
        await sm.transition(OrderEvent.SETTLE_START)
        assert not (await sm.transition(OrderEvent.SETTLE_CONFIRM)).ok
        sm.set_context(settlement_confirmed=True)
        result = await sm.transition(OrderEvent.SETTLE_CONFIRM)
        assert result.ok
        assert sm.context.settled_at == result.record.timestamp
        assert is_order_settled(sm.state)


class TestCancelRejectExpire:
    @pytest.mark.parametrize(
        "setup",
        ["pending", "submitted", "open", "partial_fill"],
    )
    async def test_cancel_requires_actor(self, setup: str) -> None:
        sm = make_order_machine()
        sm.set_context(valid_params=True)
        if setup != "pending":
            await sm.transition(OrderEvent.SUBMIT)
        if setup in ("open", "partial_fill"):
            await sm.transition(OrderEvent.ACCEPT)
        if setup == "partial_fill":
            sm.set_context(filled_quantity=Decimal("1"))
            await sm.transition(OrderEvent.PARTIAL_FILL)
        assert sm.state.value == setup

        denied = await sm.transition(OrderEvent.CANCEL)
        assert isinstance(denied, TransitionDenied)
        assert denied.reason == DenialReason.GUARD_FAILED

        sm.set_context(cancelled_by="u1", cancel_reason="changed mind")
        assert (await sm.transition(OrderEvent.CANCEL)).ok
        assert sm.state == OrderState.CANCELLED

    async def test_cancel_after_fill_not_defined(self) -> None:
        sm = make_order_machine()
        await _to_filled(sm)
        sm.set_context(cancelled_by="u1")
        result = await sm.transition(OrderEvent.CANCEL)
        assert isinstance(result, TransitionDenied)
        assert result.reason == DenialReason.NO_TRANSITION

    async def test_reject_requires_reason(self) -> None:
        sm = make_order_machine()
        sm.set_context(valid_params=True)
        await sm.transition(OrderEvent.SUBMIT)
        assert not (await sm.transition(OrderEvent.REJECT)).ok
        sm.set_context(rejection_reason="insufficient buying power")
        assert (await sm.transition(OrderEvent.REJECT)).ok
        assert sm.state == OrderState.REJECTED

    async def test_expire_is_unconditional(self) -> None:
        sm = make_order_machine()
        await _to_open(sm)
        assert (await sm.transition(OrderEvent.EXPIRE)).ok
        assert sm.state == OrderState.EXPIRED

    async def test_expire_not_from_pending(self) -> None:
        sm = make_order_machine()
        assert not sm.can_transition(OrderEvent.EXPIRE)


class TestTerminalStates:
    @pytest.mark.parametrize("state", sorted(TERMINAL_STATES, key=lambda s: s.value))
    def test_terminal_predicate(self, state: OrderState) -> None:
        assert is_terminal_order_state(state)

    def test_terminal_count(self) -> None:
        assert len(TERMINAL_STATES) == 4

    async def test_terminal_states_have_no_events(self) -> None:
        sm = make_order_machine()
        await _to_open(sm)
        await sm.transition(OrderEvent.EXPIRE)
        assert sm.available_events() == []

    @given(
        events=st.lists(st.sampled_from(list(OrderEvent)), min_size=1, max_size=30),
    )
    @settings(max_examples=200)
    def test_terminal_states_are_absorbing(self, events: list[OrderEvent]) -> None:
        """Once terminal, every event is denied, whatever the context says."""
        sm = make_order_machine()
        sm.set_context(
            valid_params=True,
            filled_quantity=Decimal("100"),
            settlement_id="s1",
            settlement_confirmed=True,
            cancelled_by="u1",
            rejection_reason="r",
        )
        reached_terminal = False
        for event in events:
            result = sm.transition_sync(event)
            if reached_terminal:
                assert not result.ok
            elif is_terminal_order_state(sm.state):
                reached_terminal = True


class TestPredicates:
    def test_active_states(self) -> None:
        assert {s for s in OrderState if is_order_active(s)} == ACTIVE_STATES
        assert not is_order_active(OrderState.PENDING)

    def test_cancellable_states(self) -> None:
        assert {s for s in OrderState if can_cancel_order(s)} == CANCELLABLE_STATES
        assert not can_cancel_order(OrderState.FILLED)

    def test_remaining_quantity_never_negative(self) -> None:
        ctx = create_order_context("o1", 10, clock=StepClock())
        assert remaining_quantity(ctx) == Decimal("10")
        over = ctx.model_copy(update={"filled_quantity": Decimal("12")})
        assert remaining_quantity(over) == Decimal("0")


class TestAuditAndRestore:
    async def test_audit_sink_receives_each_commit(self, audit_sink: InMemoryAuditSink) -> None:
        sm = make_order_machine(audit_sink=audit_sink)
        await sm.transition(OrderEvent.SUBMIT)
        await _to_open(sm)

        records = audit_sink.for_machine("order:o1")
        assert [(r.from_state, r.to_state) for r in records] == [
            ("pending", "submitted"),
            ("submitted", "open"),
        ]

    async def test_restore_keeps_rules(self) -> None:
        sm = make_order_machine()
        await _to_open(sm)
        restored = restore_order_machine(json.loads(sm.serialize().to_json()))
        assert restored.state == OrderState.OPEN
        assert restored.id == "order:o1"
        restored.set_context(filled_quantity=Decimal("50"))
        assert not (await restored.transition(OrderEvent.FILL)).ok
        assert (await restored.transition(OrderEvent.PARTIAL_FILL)).ok
