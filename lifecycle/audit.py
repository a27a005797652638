"""Audit sinks for committed transitions.

One append-only entry per committed transition, carrying from/to/event/
timestamp/metadata, for compliance replay. A sink is attached to a
machine as an on_transition hook via audit_hook().

A sink may be synchronous or return an awaitable (e.g. a network write).
Sink failures surface as hook failures on the TransitionSuccess; they
never undo the transition.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Sequence
from typing import Any, Protocol, runtime_checkable

import structlog
from pydantic import BaseModel, ConfigDict

from lifecycle.engine.types import Hook, TransitionRecord
from lifecycle.utils.time import format_timestamp


class AuditEntry(BaseModel):
    """A transition record tagged with the machine it belongs to."""

    model_config = ConfigDict(frozen=True)

    machine_id: str
    record: TransitionRecord


@runtime_checkable
class AuditSink(Protocol):
    """Anything that accepts audit entries."""

    def append(self, entry: AuditEntry) -> Awaitable[None] | None: ...


class InMemoryAuditSink:
    """Append-only in-process sink. Used for replay checks and tests."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []

    def append(self, entry: AuditEntry) -> None:
        self._entries.append(entry)

    @property
    def entries(self) -> tuple[AuditEntry, ...]:
        return tuple(self._entries)

    def for_machine(self, machine_id: str) -> list[TransitionRecord]:
        """Records for one machine, in append order."""
        return [e.record for e in self._entries if e.machine_id == machine_id]


class StructlogAuditSink:
    """Writes one ``audit_transition`` log line per entry."""

    def __init__(self, logger_name: str = "lifecycle.audit") -> None:
        self._log = structlog.get_logger(logger_name)

    def append(self, entry: AuditEntry) -> None:
        record = entry.record
        metadata: dict[str, Any] | None = None
        if record.metadata is not None:
            metadata = record.metadata.model_dump(mode="json")
        self._log.info(
            "audit_transition",
            machine_id=entry.machine_id,
            from_state=record.from_state,
            to_state=record.to_state,
            trigger=record.event,
            transitioned_at=format_timestamp(record.timestamp),
            metadata=metadata,
        )


async def _settle(awaitable: Awaitable[None]) -> None:
    await awaitable


def audit_hook(machine_id: str, sink: AuditSink) -> Hook:
    """Adapt a sink to an on_transition hook. The hook never updates context."""

    def _write(_ctx: object, record: TransitionRecord) -> Awaitable[None] | None:
        result = sink.append(AuditEntry(machine_id=machine_id, record=record))
        if inspect.isawaitable(result):
            return _settle(result)
        return None

    return _write


def verify_history_chain(records: Sequence[TransitionRecord]) -> int | None:
    """Index of the first record that does not continue from its predecessor.

    Each record's ``from`` must equal the previous record's ``to``.
    Returns None when the chain is intact (including empty histories).
    """
    for i in range(1, len(records)):
        if records[i].from_state != records[i - 1].to_state:
            return i
    return None
