from __future__ import annotations

from typing import Optional


def mask_account_number(account_number: str) -> str:
    return f"****{account_number[-4:]}"


class BankLedgerError(Exception):
    """Base class for every error raised by the bank data layer."""


class NotFoundError(BankLedgerError):
    """Raised when a lookup by identity matches nothing."""

    resource = "record"

    def __init__(self, identity: object) -> None:
        super().__init__(f"{self.resource} {identity} not found")
        self.identity = identity


class AccountNotFoundError(NotFoundError):
    resource = "account"


class PaymentNotFoundError(NotFoundError):
    resource = "transaction"


class OperationError(BankLedgerError):
    """An operation failed; carries the operation name and the identity involved."""

    def __init__(
        self,
        operation: str,
        identity: object = None,
        detail: Optional[str] = None,
    ) -> None:
        message = f"{operation} failed"
        if identity is not None:
            message += f" for {identity}"
        if detail:
            message += f": {detail}"
        super().__init__(message)
        self.operation = operation
        self.identity = identity


class ConflictError(OperationError):
    """Raised when an insert or update violates a uniqueness or integrity rule."""


class DuplicateReferenceError(ConflictError):
    """Raised when a record of the same operation type already references the target."""

    def __init__(self, reference_id: object, operation_type: str) -> None:
        super().__init__(
            "transaction.create",
            reference_id,
            f"a {operation_type} already references this transaction",
        )
        self.reference_id = reference_id
        self.operation_type = operation_type


class DuplicateAccountError(ConflictError):
    """Raised when an account number is already taken."""


class ConstraintError(OperationError):
    """Raised when data is malformed or violates a storage-level check."""


class MetadataEncodingError(ConstraintError):
    """Raised when transaction metadata cannot be encoded or decoded."""


class BalanceConstraintError(ConstraintError):
    """Raised when an adjustment would leave available balance above the total."""


class StorageError(OperationError):
    """Raised when the database fails (connection, timeout, driver error)."""


class TransactionClosedError(BankLedgerError):
    """Raised when a committed or rolled back transaction is used again."""
