"""Engine value types: transition definitions, hooks, results, snapshots.

Definitions and results are frozen dataclasses. Records and snapshots
are pydantic models because they cross the persistence boundary and
need a stable JSON shape:

    {"id", "currentState", "context", "history", "createdAt", "updatedAt"}

with each history entry shaped {"from", "to", "event", "timestamp", "metadata"}.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Collection, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Generic, Literal, TypeAlias, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from lifecycle.engine.metadata import TransitionMetadata

S = TypeVar("S", bound=Enum)
E = TypeVar("E", bound=Enum)
C = TypeVar("C", bound=BaseModel)

DEFAULT_MAX_HISTORY_SIZE = 1000


class DenialReason(str, Enum):
    """Why a transition did not commit."""

    NO_TRANSITION = "no_transition"
    GUARD_FAILED = "guard_failed"


class TransitionRecord(BaseModel):
    """One committed transition. Immutable audit-trail entry."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    from_state: str = Field(alias="from")
    to_state: str = Field(alias="to")
    event: str
    timestamp: datetime
    metadata: TransitionMetadata | None = None


class Snapshot(BaseModel):
    """Serializable capture of a machine. The only persistence contract."""

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
    )

    id: str
    current_state: str
    context: dict[str, Any]
    history: list[TransitionRecord] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    def to_json(self) -> str:
        """Wire-format JSON (camelCase keys)."""
        return self.model_dump_json(by_alias=True)


Guard: TypeAlias = Callable[[Any, Any, Any, Any], bool]
"""guard(ctx, event, from_state, to_state) -> bool. Pure and cheap."""

HookUpdate: TypeAlias = Mapping[str, Any] | None
Hook: TypeAlias = Callable[[Any, TransitionRecord], HookUpdate | Awaitable[HookUpdate]]
"""hook(ctx, record) -> optional context updates, possibly awaitable."""


@dataclass(frozen=True)
class TransitionDef(Generic[S, E]):
    """One allowed edge (or fan-in of edges) in the transition table."""

    source: S | Collection[S]
    target: S
    event: E
    guard: Guard | None = None
    guard_description: str = ""

    @property
    def sources(self) -> tuple[S, ...]:
        """Source states as a tuple, preserving declaration order."""
        if isinstance(self.source, Enum):
            return (self.source,)
        return tuple(self.source)


@dataclass(frozen=True)
class MachineHooks(Generic[S]):
    """Side-effect callbacks. Fired exit -> enter -> on_transition."""

    on_enter: Mapping[S, Hook] = field(default_factory=dict)
    on_exit: Mapping[S, Hook] = field(default_factory=dict)
    on_transition: Sequence[Hook] = ()


@dataclass(frozen=True)
class MachineConfig(Generic[S, E, C]):
    """Declarative machine configuration."""

    id: str
    initial: S
    states: Collection[S]
    context: C
    transitions: Sequence[TransitionDef[S, E]]
    hooks: MachineHooks[S] = field(default_factory=MachineHooks)
    max_history_size: int = DEFAULT_MAX_HISTORY_SIZE


@dataclass(frozen=True)
class HookFailure:
    """A hook raised after the transition had already committed."""

    hook: str
    error: BaseException


@dataclass(frozen=True)
class TransitionSuccess(Generic[S, E]):
    """Transition committed. hook_errors lists any hooks that failed afterwards."""

    from_state: S
    to_state: S
    event: E
    record: TransitionRecord
    hook_errors: tuple[HookFailure, ...] = ()
    ok: Literal[True] = True


@dataclass(frozen=True)
class TransitionDenied(Generic[S, E]):
    """Transition did not commit; state, context and history are untouched."""

    reason: DenialReason
    from_state: S
    event: E
    guard_description: str | None = None
    ok: Literal[False] = False


TransitionResult: TypeAlias = Union[TransitionSuccess[S, E], TransitionDenied[S, E]]
