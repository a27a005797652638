"""Guarded finite-state machine engine.

A StateMachine owns exactly one aggregate (an order, a user's KYC file,
a payment, a market). It is a synchronous transition function wrapped in
an asynchronous hook shell:

1. Look up the definition for (current state, event).
2. Evaluate its guard against the current context.
3. Commit: set state, stamp time, append a TransitionRecord, evict the
   oldest record past the history cap.
4. Fire hooks: exit(from) -> enter(to) -> each on_transition hook.

The commit is visible before any hook runs, and a failing hook never
rolls it back. Hook failures are collected into the result's hook_errors
and logged, in both transition() and transition_sync().

No internal locking. Callers serialize mutation of one instance.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import deque
from collections.abc import Awaitable, Iterator, Mapping
from datetime import datetime
from enum import Enum
from functools import partial
from typing import Any, Generic

import structlog

from lifecycle.engine.errors import MachineConfigError, SnapshotMismatchError
from lifecycle.engine.metadata import MetadataInput, coerce_metadata
from lifecycle.engine.types import (
    C,
    DenialReason,
    E,
    Hook,
    HookFailure,
    HookUpdate,
    MachineConfig,
    S,
    Snapshot,
    TransitionDef,
    TransitionDenied,
    TransitionRecord,
    TransitionResult,
    TransitionSuccess,
)
from lifecycle.utils.time import Clock, utc_now

log = structlog.get_logger()


async def _await(awaitable: Awaitable[HookUpdate]) -> HookUpdate:
    return await awaitable


def _describe_guards(candidates: tuple[TransitionDef[Any, Any], ...]) -> str | None:
    descriptions = [c.guard_description for c in candidates if c.guard_description]
    if not descriptions:
        return None
    return "; ".join(dict.fromkeys(descriptions))


class StateMachine(Generic[S, E, C]):
    """Deterministic guarded transitions with ordered hooks and an audit trail.

    Several definitions may share a (from, event) pair only when every one
    of them is guarded and they lead to different targets. They are tried
    in declaration order and the first passing guard wins. Any other
    repeated (from, event) pair is a configuration error.
    """

    def __init__(
        self,
        config: MachineConfig[S, E, C],
        *,
        clock: Clock = utc_now,
    ) -> None:
        self._id = config.id
        self._states: tuple[S, ...] = tuple(dict.fromkeys(config.states))
        self._state_by_value: dict[Any, S] = {s.value: s for s in self._states}

        if config.initial not in self._states:
            raise MachineConfigError(
                self._id,
                f'Initial state "{config.initial.value}" is not in the states list.',
            )
        if config.max_history_size < 1:
            raise MachineConfigError(
                self._id,
                f"max_history_size must be >= 1, got {config.max_history_size}",
            )

        self._transitions = tuple(config.transitions)
        self._table = self._build_table(self._transitions)
        self._event_by_value: dict[Any, E] = {
            t.event.value: t.event for t in self._transitions
        }
        self._hooks = config.hooks
        self._max_history = config.max_history_size
        self._clock = clock
        self._background: set[asyncio.Task[HookUpdate]] = set()

        self._state: S = config.initial
        self._context: C = config.context
        self._context_type: type[C] = type(config.context)
        self._history: deque[TransitionRecord] = deque(maxlen=self._max_history)
        self._created_at = clock()
        self._updated_at = self._created_at

    def _build_table(
        self,
        transitions: tuple[TransitionDef[S, E], ...],
    ) -> dict[S, dict[E, tuple[TransitionDef[S, E], ...]]]:
        table: dict[S, dict[E, tuple[TransitionDef[S, E], ...]]] = {}
        for tdef in transitions:
            if tdef.target not in self._states:
                raise MachineConfigError(
                    self._id,
                    f'Transition target "{tdef.target.value}" is not in the states list.',
                )
            for source in tdef.sources:
                if source not in self._states:
                    raise MachineConfigError(
                        self._id,
                        f'Transition source "{source.value}" is not in the states list.',
                    )
                events = table.setdefault(source, {})
                existing = events.get(tdef.event, ())
                if existing and not self._is_guarded_alternative(existing, tdef):
                    raise MachineConfigError(
                        self._id,
                        f"Duplicate transition: {source.value} --{tdef.event.value}--> "
                        f"(already defined).",
                    )
                events[tdef.event] = (*existing, tdef)
        return table

    @staticmethod
    def _is_guarded_alternative(
        existing: tuple[TransitionDef[S, E], ...],
        candidate: TransitionDef[S, E],
    ) -> bool:
        if candidate.guard is None or any(t.guard is None for t in existing):
            return False
        return all(t.target != candidate.target for t in existing)

    # -- reads ---------------------------------------------------------------

    @property
    def id(self) -> str:
        """Machine identifier."""
        return self._id

    @property
    def state(self) -> S:
        """Current state."""
        return self._state

    @property
    def context(self) -> C:
        """Current context. Frozen model, safe to hand out."""
        return self._context

    @property
    def states(self) -> tuple[S, ...]:
        """Declared states, in declaration order."""
        return self._states

    @property
    def created_at(self) -> datetime:
        return self._created_at

    @property
    def updated_at(self) -> datetime:
        return self._updated_at

    def get_state(self) -> S:
        return self._state

    def get_context(self) -> C:
        return self._context

    def get_history(self) -> tuple[TransitionRecord, ...]:
        """Committed transitions, oldest first, at most max_history_size."""
        return tuple(self._history)

    def is_in(self, *states: S) -> bool:
        return self._state in states

    def describe(self) -> tuple[TransitionDef[S, E], ...]:
        """The transition table in declaration order."""
        return self._transitions

    def __repr__(self) -> str:
        return f"StateMachine(id={self._id!r}, state={self._state.value!r})"

    # -- context -------------------------------------------------------------

    def set_context(self, values: Mapping[str, Any] | None = None, /, **fields: Any) -> None:
        """Shallow-merge fields into the context.

        Never changes state, never fires hooks, never appends history.

        Raises:
            pydantic.ValidationError: Unknown field or invalid value.
        """
        updates = {**(values or {}), **fields}
        self._context = self._merge(updates)
        self._updated_at = self._clock()

    def _merge(self, updates: Mapping[str, Any]) -> C:
        return self._context_type.model_validate({**self._context.model_dump(), **updates})

    # -- transitions ---------------------------------------------------------

    def _coerce_event(self, event: E | str) -> Any:
        value = event.value if isinstance(event, Enum) else event
        return self._event_by_value.get(value, event)

    def _resolve(self, event: E) -> TransitionDef[S, E] | TransitionDenied[S, E]:
        candidates = self._table.get(self._state, {}).get(event)
        if not candidates:
            return TransitionDenied(
                reason=DenialReason.NO_TRANSITION,
                from_state=self._state,
                event=event,
            )
        for tdef in candidates:
            if tdef.guard is None or tdef.guard(self._context, event, self._state, tdef.target):
                return tdef
        return TransitionDenied(
            reason=DenialReason.GUARD_FAILED,
            from_state=self._state,
            event=event,
            guard_description=_describe_guards(candidates),
        )

    def _commit(
        self,
        tdef: TransitionDef[S, E],
        event: E,
        metadata: MetadataInput,
    ) -> TransitionRecord:
        meta = coerce_metadata(metadata)
        from_state = self._state
        now = self._clock()
        record = TransitionRecord(
            from_state=from_state.value,
            to_state=tdef.target.value,
            event=event.value,
            timestamp=now,
            metadata=meta,
        )
        self._state = tdef.target
        self._updated_at = now
        self._history.append(record)
        log.debug(
            "state_transition",
            machine_id=self._id,
            from_state=record.from_state,
            to_state=record.to_state,
            trigger=record.event,
        )
        return record

    def _hook_chain(self, from_state: S, to_state: S) -> Iterator[tuple[str, Hook]]:
        exit_hook = self._hooks.on_exit.get(from_state)
        if exit_hook is not None:
            yield f"on_exit:{from_state.value}", exit_hook
        enter_hook = self._hooks.on_enter.get(to_state)
        if enter_hook is not None:
            yield f"on_enter:{to_state.value}", enter_hook
        for i, hook in enumerate(self._hooks.on_transition):
            yield f"on_transition[{i}]", hook

    def _apply_hook_update(self, update: HookUpdate) -> None:
        if update:
            self._context = self._merge(update)

    def _hook_failed(
        self,
        name: str,
        record: TransitionRecord,
        exc: BaseException,
    ) -> HookFailure:
        log.error(
            "transition_hook_failed",
            machine_id=self._id,
            hook=name,
            from_state=record.from_state,
            to_state=record.to_state,
            trigger=record.event,
            error=repr(exc),
        )
        return HookFailure(hook=name, error=exc)

    def _denied(self, denial: TransitionDenied[S, E]) -> TransitionDenied[S, E]:
        log.debug(
            "transition_denied",
            machine_id=self._id,
            from_state=denial.from_state.value,
            trigger=getattr(denial.event, "value", denial.event),
            reason=denial.reason.value,
            guard_description=denial.guard_description,
        )
        return denial

    async def transition(
        self,
        event: E,
        metadata: MetadataInput = None,
    ) -> TransitionResult[S, E]:
        """Attempt a transition, awaiting hooks that return awaitables.

        Returns TransitionDenied for rule violations. Hook exceptions are
        reported in TransitionSuccess.hook_errors; the state change stands.
        """
        event = self._coerce_event(event)
        outcome = self._resolve(event)
        if isinstance(outcome, TransitionDenied):
            return self._denied(outcome)

        from_state = self._state
        record = self._commit(outcome, event, metadata)

        failures: list[HookFailure] = []
        for name, hook in self._hook_chain(from_state, outcome.target):
            try:
                update = hook(self._context, record)
                if inspect.isawaitable(update):
                    update = await update
                self._apply_hook_update(update)
            except Exception as exc:
                failures.append(self._hook_failed(name, record, exc))

        return TransitionSuccess(
            from_state=from_state,
            to_state=outcome.target,
            event=event,
            record=record,
            hook_errors=tuple(failures),
        )

    def transition_sync(
        self,
        event: E,
        metadata: MetadataInput = None,
    ) -> TransitionResult[S, E]:
        """Attempt a transition without awaiting.

        Synchronous hooks run inline and their failures are reported in
        hook_errors. A hook returning an awaitable is scheduled on the
        running event loop (failures are logged, updates applied when it
        finishes) or, with no loop running, driven to completion here.
        """
        event = self._coerce_event(event)
        outcome = self._resolve(event)
        if isinstance(outcome, TransitionDenied):
            return self._denied(outcome)

        from_state = self._state
        record = self._commit(outcome, event, metadata)

        failures: list[HookFailure] = []
        for name, hook in self._hook_chain(from_state, outcome.target):
            try:
                update = hook(self._context, record)
                if inspect.isawaitable(update):
                    update = self._run_detached(name, record, update)
                self._apply_hook_update(update)
            except Exception as exc:
                failures.append(self._hook_failed(name, record, exc))

        return TransitionSuccess(
            from_state=from_state,
            to_state=outcome.target,
            event=event,
            record=record,
            hook_errors=tuple(failures),
        )

    def _run_detached(
        self,
        name: str,
        record: TransitionRecord,
        awaitable: Awaitable[HookUpdate],
    ) -> HookUpdate:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return asyncio.run(_await(awaitable))

        task = loop.create_task(_await(awaitable))
        self._background.add(task)
        task.add_done_callback(partial(self._detached_done, name, record))
        return None

    def _detached_done(
        self,
        name: str,
        record: TransitionRecord,
        task: asyncio.Task[HookUpdate],
    ) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._hook_failed(name, record, exc)
            return
        try:
            self._apply_hook_update(task.result())
        except Exception as update_exc:
            self._hook_failed(name, record, update_exc)

    async def drain_hooks(self) -> None:
        """Wait for hooks scheduled by transition_sync() to finish."""
        while self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    def can_transition(self, event: E) -> bool:
        """Dry run of lookup and guard. Commits nothing."""
        return not isinstance(self._resolve(self._coerce_event(event)), TransitionDenied)

    def available_events(self) -> list[E]:
        """Events whose guard currently passes (or that have none)."""
        events = self._table.get(self._state, {})
        return [
            event
            for event, candidates in events.items()
            if any(
                t.guard is None or t.guard(self._context, event, self._state, t.target)
                for t in candidates
            )
        ]

    # -- persistence ---------------------------------------------------------

    def serialize(self) -> Snapshot:
        """Capture state, context and history for the caller to persist."""
        return Snapshot(
            id=self._id,
            current_state=self._state.value,
            context=self._context.model_dump(mode="json"),
            history=list(self._history),
            created_at=self._created_at,
            updated_at=self._updated_at,
        )

    def restore(self, snapshot: Snapshot | Mapping[str, Any]) -> None:
        """Replace state, context and history with a snapshot's.

        Raises:
            SnapshotMismatchError: Foreign machine id or undeclared state.
            pydantic.ValidationError: Malformed snapshot or context.
        """
        if not isinstance(snapshot, Snapshot):
            snapshot = Snapshot.model_validate(snapshot)

        if snapshot.id != self._id:
            raise SnapshotMismatchError(
                self._id,
                f'Cannot restore snapshot from machine "{snapshot.id}".',
            )
        state = self._state_by_value.get(snapshot.current_state)
        if state is None:
            raise SnapshotMismatchError(
                self._id,
                f'Snapshot state "{snapshot.current_state}" is not valid.',
            )

        context = self._context_type.model_validate(snapshot.context)
        self._state = state
        self._context = context
        self._history = deque(snapshot.history, maxlen=self._max_history)
        self._created_at = snapshot.created_at
        self._updated_at = self._clock()
