"""Prediction-market lifecycle types."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict

MIN_OUTCOMES = 2


class MarketState(str, Enum):
    """Market states. settled and voided are terminal."""

    DRAFT = "draft"
    OPEN = "open"
    TRADING = "trading"
    CLOSING = "closing"
    RESOLUTION_PENDING = "resolution_pending"
    RESOLVED = "resolved"
    SETTLED = "settled"
    DISPUTED = "disputed"
    VOIDED = "voided"


class MarketEvent(str, Enum):
    PUBLISH = "PUBLISH"
    START_TRADING = "START_TRADING"
    CLOSE_TRADING = "CLOSE_TRADING"
    REQUEST_RESOLUTION = "REQUEST_RESOLUTION"
    RESOLVE = "RESOLVE"
    SETTLE = "SETTLE"
    DISPUTE = "DISPUTE"
    RESOLVE_DISPUTE = "RESOLVE_DISPUTE"
    VOID = "VOID"


TERMINAL_STATES = frozenset(
    {
        MarketState.SETTLED,
        MarketState.VOIDED,
    }
)


class PredictionContext(BaseModel):
    """Market definition plus resolution and dispute facts.

    open_time/close_time are the scheduled times the guards require;
    trading_started_at/trading_closed_at record when trading actually
    began and ended.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    market_id: str
    title: str = ""
    outcomes: tuple[str, ...] = ()
    resolution_source: str | None = None
    open_time: datetime | None = None
    close_time: datetime | None = None
    trading_started_at: datetime | None = None
    trading_closed_at: datetime | None = None
    winning_outcome: int | None = None
    resolution_proof: str | None = None
    dispute_reason: str | None = None
    disputed_by: str | None = None
    is_admin_action: bool = False
    void_reason: str | None = None
    created_at: datetime
    updated_at: datetime
