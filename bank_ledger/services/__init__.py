from .accounts import AccountRepository
from .idempotency import IdempotencyRepository
from .maintenance import IdempotencySweeper
from .payments import PaymentRepository

__all__ = [
    "AccountRepository",
    "IdempotencyRepository",
    "IdempotencySweeper",
    "PaymentRepository",
]
