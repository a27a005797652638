"""Tests for the payment machine and its bounded retry loop."""

from __future__ import annotations

from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from lifecycle.engine import DenialReason, TransitionDenied
from lifecycle.payments import (
    FRAUD_FAILURE_CODES,
    PaymentEvent,
    PaymentMachine,
    PaymentState,
    is_fraud_failure,
    is_payment_settled,
    is_terminal_payment_state,
    restore_payment_machine,
    retries_remaining,
)
from tests.factories import make_payment_machine


def _fail_and_retry(sm: PaymentMachine, code: str = "card_declined") -> None:
    sm.set_context(failure_reason="declined", failure_code=code)
    assert sm.transition_sync(PaymentEvent.FAIL).ok
    result = sm.transition_sync(PaymentEvent.RETRY)
    assert result.ok, result
    assert sm.transition_sync(PaymentEvent.PROCESS).ok


class TestHappyPath:
    async def test_process_succeed_settle(self) -> None:
        sm = make_payment_machine()
        assert sm.id == "payment:pay_1"
        assert sm.context.amount == Decimal("25.00")

        assert (await sm.transition(PaymentEvent.PROCESS)).ok
        sm.set_context(processor_confirmed=True, processor_payment_id="pi_1")
        succeeded = await sm.transition(PaymentEvent.SUCCEED)
        assert succeeded.ok
        assert sm.context.succeeded_at == succeeded.record.timestamp

        sm.set_context(funds_available=True)
        settled = await sm.transition(PaymentEvent.SETTLE)
        assert settled.ok
        assert sm.context.settled_at == settled.record.timestamp
        assert is_payment_settled(sm.state)
        assert is_terminal_payment_state(sm.state)
        assert sm.available_events() == []


class TestGuards:
    @pytest.mark.parametrize(
        ("amount", "method"),
        [("0", "pm_card"), ("-5", "pm_card"), ("10", None), ("10", "   ")],
    )
    async def test_process_needs_amount_and_method(self, amount: str, method: str | None) -> None:
        sm = make_payment_machine(amount=amount, payment_method_id=method)
        result = await sm.transition(PaymentEvent.PROCESS)
        assert isinstance(result, TransitionDenied)
        assert result.reason == DenialReason.GUARD_FAILED

    async def test_succeed_needs_processor_id(self) -> None:
        sm = make_payment_machine()
        await sm.transition(PaymentEvent.PROCESS)
        sm.set_context(processor_confirmed=True)
        assert not (await sm.transition(PaymentEvent.SUCCEED)).ok
        sm.set_context(processor_payment_id="pi_1", processor_confirmed=False)
        assert not (await sm.transition(PaymentEvent.SUCCEED)).ok

    async def test_settle_needs_funds(self) -> None:
        sm = make_payment_machine()
        await sm.transition(PaymentEvent.PROCESS)
        sm.set_context(processor_confirmed=True, processor_payment_id="pi_1")
        await sm.transition(PaymentEvent.SUCCEED)
        result = await sm.transition(PaymentEvent.SETTLE)
        assert isinstance(result, TransitionDenied)
        assert result.guard_description == "Funds must be confirmed available"

    async def test_fail_needs_reason(self) -> None:
        sm = make_payment_machine()
        await sm.transition(PaymentEvent.PROCESS)
        assert not (await sm.transition(PaymentEvent.FAIL)).ok
        sm.set_context(failure_reason="insufficient_funds")
        assert (await sm.transition(PaymentEvent.FAIL)).ok


class TestRetries:
    @pytest.mark.parametrize("k", [1, 2, 3])
    def test_retry_count_equals_retries(self, k: int) -> None:
        sm = make_payment_machine()
        sm.transition_sync(PaymentEvent.PROCESS)
        for _ in range(k):
            _fail_and_retry(sm)
        assert sm.context.retry_count == k
        assert retries_remaining(sm.context) == 3 - k

    def test_retry_denied_after_max_retries(self) -> None:
        sm = make_payment_machine()
        sm.transition_sync(PaymentEvent.PROCESS)
        for _ in range(3):
            _fail_and_retry(sm)

        sm.set_context(failure_reason="declined")
        sm.transition_sync(PaymentEvent.FAIL)
        result = sm.transition_sync(PaymentEvent.RETRY)

        assert isinstance(result, TransitionDenied)
        assert result.reason == DenialReason.GUARD_FAILED
        assert result.guard_description == "Retry count must be below the retry limit"
        assert sm.state == PaymentState.FAILED
        assert sm.context.retry_count == 3

    def test_guard_evaluation_never_counts(self) -> None:
        sm = make_payment_machine()
        sm.transition_sync(PaymentEvent.PROCESS)
        sm.set_context(failure_reason="declined")
        sm.transition_sync(PaymentEvent.FAIL)
        for _ in range(5):
            assert sm.can_transition(PaymentEvent.RETRY)
            sm.available_events()
        assert sm.context.retry_count == 0

    def test_retry_clears_processor_and_failure_fields(self) -> None:
        sm = make_payment_machine()
        sm.transition_sync(PaymentEvent.PROCESS)
        sm.set_context(
            processor_payment_id="pi_1",
            processor_confirmed=True,
            failure_reason="declined",
            failure_code="do_not_honor",
        )
        sm.transition_sync(PaymentEvent.FAIL)
        sm.transition_sync(PaymentEvent.RETRY)

        ctx = sm.context
        assert sm.state == PaymentState.RETRY_PENDING
        assert ctx.processor_payment_id is None
        assert ctx.processor_confirmed is False
        assert ctx.failure_reason is None
        assert ctx.failure_code is None

    def test_zero_max_retries(self) -> None:
        sm = make_payment_machine(max_retries=0)
        sm.transition_sync(PaymentEvent.PROCESS)
        sm.set_context(failure_reason="declined")
        sm.transition_sync(PaymentEvent.FAIL)
        assert not sm.can_transition(PaymentEvent.RETRY)
        assert sm.transition_sync(PaymentEvent.ABANDON).ok
        assert sm.state == PaymentState.PERMANENTLY_FAILED

    @given(max_retries=st.integers(min_value=0, max_value=6))
    @settings(max_examples=20)
    def test_retry_loop_is_bounded(self, max_retries: int) -> None:
        sm = make_payment_machine(max_retries=max_retries)
        sm.transition_sync(PaymentEvent.PROCESS)
        cycles = 0
        while True:
            sm.set_context(failure_reason="declined")
            assert sm.transition_sync(PaymentEvent.FAIL).ok
            if not sm.transition_sync(PaymentEvent.RETRY).ok:
                break
            cycles += 1
            assert sm.transition_sync(PaymentEvent.PROCESS).ok
        assert cycles == max_retries
        assert sm.context.retry_count == max_retries


class TestAbandon:
    def test_abandon_from_failed_needs_exhausted_retries(self) -> None:
        sm = make_payment_machine()
        sm.transition_sync(PaymentEvent.PROCESS)
        sm.set_context(failure_reason="declined", failure_code="card_declined")
        sm.transition_sync(PaymentEvent.FAIL)
        result = sm.transition_sync(PaymentEvent.ABANDON)
        assert isinstance(result, TransitionDenied)
        assert result.guard_description == (
            "Abandon requires exhausted retries or a fraud failure code"
        )

    @pytest.mark.parametrize("code", sorted(FRAUD_FAILURE_CODES))
    def test_fraud_code_abandons_immediately(self, code: str) -> None:
        sm = make_payment_machine()
        sm.transition_sync(PaymentEvent.PROCESS)
        sm.set_context(failure_reason="fraud", failure_code=code)
        sm.transition_sync(PaymentEvent.FAIL)
        assert sm.transition_sync(PaymentEvent.ABANDON).ok
        assert sm.state == PaymentState.PERMANENTLY_FAILED

    def test_abandon_from_retry_pending_is_unconditional(self) -> None:
        sm = make_payment_machine()
        sm.transition_sync(PaymentEvent.PROCESS)
        sm.set_context(failure_reason="declined")
        sm.transition_sync(PaymentEvent.FAIL)
        sm.transition_sync(PaymentEvent.RETRY)
        assert sm.transition_sync(PaymentEvent.ABANDON).ok
        assert is_terminal_payment_state(sm.state)


class TestPredicates:
    def test_fraud_codes_case_insensitive(self) -> None:
        assert is_fraud_failure("STOLEN_CARD")
        assert not is_fraud_failure("card_declined")
        assert not is_fraud_failure(None)

    def test_terminal_states(self) -> None:
        terminal = {s for s in PaymentState if is_terminal_payment_state(s)}
        assert terminal == {PaymentState.SETTLED, PaymentState.PERMANENTLY_FAILED}


class TestRestore:
    def test_restored_payment_keeps_retry_limit(self) -> None:
        sm = make_payment_machine(max_retries=1)
        sm.transition_sync(PaymentEvent.PROCESS)
        _fail_and_retry(sm)

        restored = restore_payment_machine(sm.serialize().model_dump(by_alias=True))
        assert restored.context.max_retries == 1
        assert restored.context.retry_count == 1
        assert restored.context.amount == Decimal("25.00")
        restored.set_context(failure_reason="declined")
        restored.transition_sync(PaymentEvent.FAIL)
        assert not restored.can_transition(PaymentEvent.RETRY)
