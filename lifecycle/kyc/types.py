"""KYC verification types."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class KycState(str, Enum):
    """Identity verification states, in flow order."""

    UNVERIFIED = "unverified"
    EMAIL_PENDING = "email_pending"
    EMAIL_VERIFIED = "email_verified"
    IDENTITY_PENDING = "identity_pending"
    IDENTITY_VERIFIED = "identity_verified"
    BACKGROUND_PENDING = "background_pending"
    BACKGROUND_CLEARED = "background_cleared"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class KycEvent(str, Enum):
    START_EMAIL = "START_EMAIL"
    VERIFY_EMAIL = "VERIFY_EMAIL"
    START_IDENTITY = "START_IDENTITY"
    VERIFY_IDENTITY = "VERIFY_IDENTITY"
    START_BACKGROUND = "START_BACKGROUND"
    CLEAR_BACKGROUND = "CLEAR_BACKGROUND"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    SUSPEND = "SUSPEND"
    UNSUSPEND = "UNSUSPEND"
    RESET = "RESET"


# Every state except rejected and suspended. SUSPEND and UNSUSPEND
# transitions are generated from this tuple.
SUSPENDABLE_STATES: tuple[KycState, ...] = (
    KycState.UNVERIFIED,
    KycState.EMAIL_PENDING,
    KycState.EMAIL_VERIFIED,
    KycState.IDENTITY_PENDING,
    KycState.IDENTITY_VERIFIED,
    KycState.BACKGROUND_PENDING,
    KycState.BACKGROUND_CLEARED,
    KycState.APPROVED,
)

KYC_PROGRESS: dict[KycState, int] = {
    KycState.UNVERIFIED: 0,
    KycState.EMAIL_PENDING: 10,
    KycState.EMAIL_VERIFIED: 25,
    KycState.IDENTITY_PENDING: 40,
    KycState.IDENTITY_VERIFIED: 60,
    KycState.BACKGROUND_PENDING: 75,
    KycState.BACKGROUND_CLEARED: 90,
    KycState.APPROVED: 100,
    KycState.REJECTED: 0,
    KycState.SUSPENDED: 0,
}


class KycContext(BaseModel):
    """Verification facts supplied by the email, identity and background providers."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    user_id: str
    email: str | None = None
    email_token: str | None = None
    email_token_valid: bool = False
    identity_inquiry_id: str | None = None
    identity_approved: bool = False
    background_report_id: str | None = None
    background_cleared: bool = False
    rejection_reason: str | None = None
    suspension_reason: str | None = None
    is_admin_action: bool = False
    identity_attempts: int = 0
    background_attempts: int = 0
    pre_suspension_state: KycState | None = None
    created_at: datetime
    updated_at: datetime
