from .db import ACCOUNTS, IDEMPOTENCY_KEYS, TRANSACTIONS
from .db import Account as AccountModel
from .db import IdempotencyKey as IdempotencyKeyModel
from .db import PaymentTransaction as PaymentTransactionModel
from .schemas import (
    ALLOWED_TRANSITIONS,
    AccountRecord,
    IdempotencyRecord,
    OperationType,
    PaymentRecord,
    PaymentStatus,
    is_valid_transition,
)

__all__ = [
    "ACCOUNTS",
    "ALLOWED_TRANSITIONS",
    "AccountModel",
    "AccountRecord",
    "IDEMPOTENCY_KEYS",
    "IdempotencyKeyModel",
    "IdempotencyRecord",
    "OperationType",
    "PaymentRecord",
    "PaymentStatus",
    "PaymentTransactionModel",
    "TRANSACTIONS",
    "is_valid_transition",
]
