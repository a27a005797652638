"""Transition metadata: a tagged union of known shapes.

Callers attach metadata to a transition to explain who or what drove
it. Known shapes are validated; anything else is kept verbatim inside
OpaqueMetadata so it still lands in the audit trail.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError


class _Metadata(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ActorMetadata(_Metadata):
    """A person (user or admin) drove the transition."""

    kind: Literal["actor"] = "actor"
    actor_id: str
    reason: str | None = None


class ProviderMetadata(_Metadata):
    """An upstream provider confirmation or webhook drove the transition."""

    kind: Literal["provider"] = "provider"
    provider: str
    reference: str | None = None
    status: str | None = None


class OpaqueMetadata(_Metadata):
    """Fallback for payloads with no known shape."""

    kind: Literal["opaque"] = "opaque"
    data: dict[str, Any] = Field(default_factory=dict)


TransitionMetadata = Annotated[
    ActorMetadata | ProviderMetadata | OpaqueMetadata,
    Field(discriminator="kind"),
]

_metadata_adapter: TypeAdapter[TransitionMetadata] = TypeAdapter(TransitionMetadata)
_KNOWN_KINDS = frozenset({"actor", "provider", "opaque"})

MetadataInput = ActorMetadata | ProviderMetadata | OpaqueMetadata | Mapping[str, Any] | None


def coerce_metadata(
    value: MetadataInput,
) -> ActorMetadata | ProviderMetadata | OpaqueMetadata | None:
    """Normalize caller-supplied metadata into the tagged union.

    Mappings whose ``kind`` names a known shape and validate against it
    become that shape. Anything else, including an unknown ``kind`` or
    a known shape with bad or extra fields, is kept verbatim as
    OpaqueMetadata.
    """
    if value is None or isinstance(value, _Metadata):
        return value  # type: ignore[return-value]
    payload = dict(value)
    if payload.get("kind") not in _KNOWN_KINDS:
        return OpaqueMetadata(data=payload)
    try:
        return _metadata_adapter.validate_python(payload)
    except ValidationError:
        return OpaqueMetadata(data=payload)
