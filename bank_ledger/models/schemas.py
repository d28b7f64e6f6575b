from datetime import datetime, UTC
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID

from pydantic import AfterValidator, BaseModel, ConfigDict, Field


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


UtcDatetime = Annotated[datetime, AfterValidator(_as_utc)]


class OperationType(str, Enum):
    AUTHORIZATION = "authorization"
    CAPTURE = "capture"
    VOID = "void"
    REFUND = "refund"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    CAPTURED = "captured"
    VOIDED = "voided"
    REFUNDED = "refunded"


ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.AUTHORIZED}),
    PaymentStatus.AUTHORIZED: frozenset({PaymentStatus.CAPTURED, PaymentStatus.VOIDED}),
    PaymentStatus.CAPTURED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.VOIDED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}


def is_valid_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    """Report whether ``current -> target`` is a legal lifecycle step.

    The stores never call this; deciding legality is the caller's job.
    """
    return target in ALLOWED_TRANSITIONS[current]


class AccountRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: UUID
    account_number: str
    cvv: str
    expiry_month: int
    expiry_year: int
    balance_cents: int = Field(..., description="Authoritative total in cents")
    available_balance_cents: int = Field(..., description="Total minus outstanding holds")
    created_at: UtcDatetime
    updated_at: UtcDatetime


class PaymentRecord(BaseModel):
    id: Optional[UUID] = None
    account_id: UUID
    type: OperationType
    amount_cents: int = Field(..., ge=0, description="Amount in cents")
    currency: str = Field(default="USD", min_length=3, max_length=3)
    reference_id: Optional[UUID] = Field(
        default=None, description="Transaction this operation acts upon"
    )
    reference_type: Optional[OperationType] = None
    status: PaymentStatus = PaymentStatus.PENDING
    expires_at: Optional[UtcDatetime] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: Optional[UtcDatetime] = None


class IdempotencyRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str = Field(..., min_length=1)
    request_path: str = Field(..., min_length=1)
    response_status: int
    response_body: str
    created_at: Optional[UtcDatetime] = None
