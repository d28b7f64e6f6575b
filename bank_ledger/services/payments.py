from __future__ import annotations

import json
import logging
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import insert, update
from sqlmodel import select

from ..core.db import Executor, storage_errors
from ..core.errors import (
    ConflictError,
    DuplicateReferenceError,
    MetadataEncodingError,
    PaymentNotFoundError,
)
from ..models import (
    TRANSACTIONS,
    OperationType,
    PaymentRecord,
    PaymentStatus,
    PaymentTransactionModel,
)
from ..models.db import utcnow

# Matches both the PostgreSQL constraint name and SQLite's column listing.
_REFERENCE_CONSTRAINT_MARKERS = ("uq_transactions_reference_type", "transactions.reference_id")


class PaymentRepository:
    """Lifecycle records for authorizations, captures, voids and refunds.

    The repository stores whatever status it is told to; transition rules
    live with the caller (see :func:`bank_ledger.models.is_valid_transition`).
    At most one record per ``(reference_id, type)`` is enforced by a unique
    constraint, so run :meth:`find_by_reference` and :meth:`create` in the
    same transaction and treat :class:`DuplicateReferenceError` as "someone
    else got there first".
    """

    def __init__(self, executor: Executor, logger: Optional[logging.Logger] = None) -> None:
        self.executor = executor
        self.logger = logger or logging.getLogger(__name__)

    def create(self, record: PaymentRecord) -> PaymentRecord:
        payment = record.model_copy(
            update={
                "id": record.id or uuid4(),
                "created_at": record.created_at or utcnow(),
            }
        )
        stmt = insert(TRANSACTIONS).values(
            id=payment.id,
            account_id=payment.account_id,
            type=payment.type.value,
            amount_cents=payment.amount_cents,
            currency=payment.currency,
            reference_id=payment.reference_id,
            reference_type=payment.reference_type.value if payment.reference_type else None,
            status=payment.status.value,
            expires_at=payment.expires_at,
            metadata=_encode_metadata(payment.id, payment.metadata),
            created_at=payment.created_at,
        )
        try:
            with storage_errors("transaction.create", payment.id):
                self.executor.execute(stmt)
        except ConflictError as exc:
            if payment.reference_id is not None and any(
                marker in str(exc) for marker in _REFERENCE_CONSTRAINT_MARKERS
            ):
                self.logger.info(
                    "transaction.duplicate_reference",
                    extra={
                        "reference_id": str(payment.reference_id),
                        "type": payment.type.value,
                    },
                )
                raise DuplicateReferenceError(
                    payment.reference_id, payment.type.value
                ) from exc.__cause__
            raise

        self.logger.info(
            "transaction.created",
            extra={
                "transaction_id": str(payment.id),
                "account_id": str(payment.account_id),
                "type": payment.type.value,
                "amount_cents": payment.amount_cents,
            },
        )
        return payment

    def find_by_id(self, transaction_id: UUID) -> PaymentRecord:
        stmt = select(PaymentTransactionModel).where(PaymentTransactionModel.id == transaction_id)
        with storage_errors("transaction.find_by_id", transaction_id):
            row = self.executor.query_one(stmt)
        if row is None:
            raise PaymentNotFoundError(transaction_id)
        return _to_record(row)

    def find_by_reference(
        self,
        reference_id: UUID,
        operation_type: OperationType,
    ) -> Optional[PaymentRecord]:
        """Return the record of ``operation_type`` that references ``reference_id``.

        ``None`` means no such operation has happened yet, e.g. the
        authorization has not been captured.
        """
        stmt = (
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.reference_id == reference_id)
            .where(PaymentTransactionModel.type == operation_type.value)
            .limit(1)
        )
        with storage_errors("transaction.find_by_reference", reference_id):
            row = self.executor.query_one(stmt)
        if row is None:
            return None
        return _to_record(row)

    def update_status(self, transaction_id: UUID, status: PaymentStatus) -> None:
        stmt = (
            update(TRANSACTIONS)
            .where(TRANSACTIONS.c.id == transaction_id)
            .values(status=status.value)
        )
        with storage_errors("transaction.update_status", transaction_id):
            affected = self.executor.execute(stmt)
        if affected == 0:
            raise PaymentNotFoundError(transaction_id)

        self.logger.info(
            "transaction.status.updated",
            extra={"transaction_id": str(transaction_id), "status": status.value},
        )


def _encode_metadata(transaction_id: UUID, metadata: Optional[dict[str, Any]]) -> Optional[str]:
    if metadata is None:
        return None
    try:
        return json.dumps(metadata, sort_keys=True)
    except (TypeError, ValueError) as exc:
        raise MetadataEncodingError("transaction.encode_metadata", transaction_id, str(exc)) from exc


def _decode_metadata(transaction_id: UUID, payload: Optional[str]) -> Optional[dict[str, Any]]:
    if payload is None:
        return None
    try:
        return json.loads(payload)
    except ValueError as exc:
        raise MetadataEncodingError("transaction.decode_metadata", transaction_id, str(exc)) from exc


def _to_record(row: PaymentTransactionModel) -> PaymentRecord:
    return PaymentRecord(
        id=row.id,
        account_id=row.account_id,
        type=OperationType(row.type),
        amount_cents=row.amount_cents,
        currency=row.currency,
        reference_id=row.reference_id,
        reference_type=OperationType(row.reference_type) if row.reference_type else None,
        status=PaymentStatus(row.status),
        expires_at=row.expires_at,
        metadata=_decode_metadata(row.id, row.metadata_json),
        created_at=row.created_at,
    )
