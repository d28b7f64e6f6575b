from __future__ import annotations
from datetime import datetime, UTC
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Column, DateTime, Text, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(UTC)


class UtcDateTime(TypeDecorator):
    """Timestamp column that always binds and returns UTC.

    SQLite drops the offset of an aware datetime, so values are converted to
    UTC before binding; naive values are taken to be UTC already.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Account(SQLModel, table=True):
    __tablename__ = "accounts"
    __table_args__ = (
        CheckConstraint(
            "available_balance_cents <= balance_cents",
            name="ck_accounts_available_le_balance",
        ),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_number: str = Field(unique=True)
    cvv: str
    expiry_month: int
    expiry_year: int
    balance_cents: int = 0
    available_balance_cents: int = 0
    created_at: datetime = Field(default_factory=utcnow, sa_type=UtcDateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UtcDateTime(timezone=True))


class PaymentTransaction(SQLModel, table=True):
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("reference_id", "type", name="uq_transactions_reference_type"),
    )

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    account_id: UUID = Field(foreign_key="accounts.id", index=True)
    type: str
    amount_cents: int
    currency: str
    reference_id: Optional[UUID] = Field(default=None, index=True)
    reference_type: Optional[str] = None
    status: str
    expires_at: Optional[datetime] = Field(default=None, sa_type=UtcDateTime(timezone=True))
    # "metadata" is reserved on declarative classes, so the attribute is renamed.
    metadata_json: Optional[str] = Field(default=None, sa_column=Column("metadata", Text, nullable=True))
    created_at: datetime = Field(default_factory=utcnow, sa_type=UtcDateTime(timezone=True))


class IdempotencyKey(SQLModel, table=True):
    __tablename__ = "idempotency_keys"

    key: str = Field(primary_key=True)
    request_path: str = Field(primary_key=True)
    response_status: int
    response_body: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=UtcDateTime(timezone=True), index=True)


ACCOUNTS = Account.__table__
TRANSACTIONS = PaymentTransaction.__table__
IDEMPOTENCY_KEYS = IdempotencyKey.__table__
