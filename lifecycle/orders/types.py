"""Order lifecycle types.

Quantities and prices are Decimal. The context is a frozen pydantic
model: upstream services replace fields through set_context() before
firing the matching event.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict


class OrderState(str, Enum):
    """Trade order lifecycle states."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    OPEN = "open"
    PARTIAL_FILL = "partial_fill"
    FILLED = "filled"
    SETTLING = "settling"
    SETTLED = "settled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    EXPIRED = "expired"


class OrderEvent(str, Enum):
    """Events that drive an order through its lifecycle."""

    SUBMIT = "SUBMIT"
    ACCEPT = "ACCEPT"
    PARTIAL_FILL = "PARTIAL_FILL"
    FILL = "FILL"
    SETTLE_START = "SETTLE_START"
    SETTLE_CONFIRM = "SETTLE_CONFIRM"
    CANCEL = "CANCEL"
    REJECT = "REJECT"
    EXPIRE = "EXPIRE"


class OrderSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


TERMINAL_STATES = frozenset(
    {
        OrderState.SETTLED,
        OrderState.CANCELLED,
        OrderState.REJECTED,
        OrderState.EXPIRED,
    }
)

# Working at the venue: fills may still arrive.
ACTIVE_STATES = frozenset(
    {
        OrderState.SUBMITTED,
        OrderState.OPEN,
        OrderState.PARTIAL_FILL,
    }
)

CANCELLABLE_STATES = frozenset(
    {
        OrderState.PENDING,
        OrderState.SUBMITTED,
        OrderState.OPEN,
        OrderState.PARTIAL_FILL,
    }
)


class OrderContext(BaseModel):
    """Facts the order guards consult."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    order_id: str
    user_id: str | None = None
    symbol: str | None = None
    side: OrderSide | None = None
    quantity: Decimal
    filled_quantity: Decimal = Decimal("0")
    average_fill_price: Decimal | None = None
    valid_params: bool = False
    settlement_id: str | None = None
    settlement_confirmed: bool = False
    cancelled_by: str | None = None
    cancel_reason: str | None = None
    rejection_reason: str | None = None
    submitted_at: datetime | None = None
    filled_at: datetime | None = None
    settled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
