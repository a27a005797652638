"""Payment lifecycle types. All monetary values use Decimal."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_MAX_RETRIES = 3

# Processor decline codes that end a payment immediately, retries or not.
FRAUD_FAILURE_CODES = frozenset(
    {
        "fraudulent",
        "fraud_suspected",
        "stolen_card",
        "lost_card",
    }
)


class PaymentState(str, Enum):
    """Payment states. settled and permanently_failed are terminal."""

    INITIATED = "initiated"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    SETTLED = "settled"
    FAILED = "failed"
    RETRY_PENDING = "retry_pending"
    PERMANENTLY_FAILED = "permanently_failed"


class PaymentEvent(str, Enum):
    PROCESS = "PROCESS"
    SUCCEED = "SUCCEED"
    SETTLE = "SETTLE"
    FAIL = "FAIL"
    RETRY = "RETRY"
    ABANDON = "ABANDON"


TERMINAL_STATES = frozenset(
    {
        PaymentState.SETTLED,
        PaymentState.PERMANENTLY_FAILED,
    }
)


class PaymentContext(BaseModel):
    """Processor and funding facts for one payment."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    payment_id: str
    user_id: str | None = None
    amount: Decimal
    currency: str = "USD"
    payment_method_id: str | None = None
    processor_payment_id: str | None = None
    processor_confirmed: bool = False
    funds_available: bool = False
    failure_reason: str | None = None
    failure_code: str | None = None
    retry_count: int = Field(default=0, ge=0)
    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    succeeded_at: datetime | None = None
    settled_at: datetime | None = None
    created_at: datetime
    updated_at: datetime
