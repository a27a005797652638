"""Prediction-market resolution machine."""

from lifecycle.markets.state_machine import (
    TRANSITIONS,
    PredictionMachine,
    can_trade_market,
    create_prediction_context,
    create_prediction_machine,
    is_market_settled,
    is_terminal_market_state,
    restore_prediction_machine,
    winning_outcome_name,
)
from lifecycle.markets.types import (
    MIN_OUTCOMES,
    TERMINAL_STATES,
    MarketEvent,
    MarketState,
    PredictionContext,
)

__all__ = [
    "MIN_OUTCOMES",
    "TERMINAL_STATES",
    "TRANSITIONS",
    "MarketEvent",
    "MarketState",
    "PredictionContext",
    "PredictionMachine",
    "can_trade_market",
    "create_prediction_context",
    "create_prediction_machine",
    "is_market_settled",
    "is_terminal_market_state",
    "restore_prediction_machine",
    "winning_outcome_name",
]
