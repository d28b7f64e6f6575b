from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.dialects import postgresql, sqlite
from sqlmodel import select

from ..core.db import Executor, storage_errors
from ..core.errors import StorageError
from ..models import IDEMPOTENCY_KEYS, IdempotencyKeyModel, IdempotencyRecord
from ..models.db import utcnow

# Dialects with INSERT ... ON CONFLICT DO NOTHING.
_INSERT_IF_ABSENT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class IdempotencyRepository:
    """Cached responses of mutating requests, keyed by ``(key, request_path)``.

    The first stored response for a pair wins. Later stores for the same pair
    are silently dropped, so a caller that loses a race must :meth:`get` the
    winning response instead of replaying its own.
    """

    def __init__(self, executor: Executor, logger: Optional[logging.Logger] = None) -> None:
        self.executor = executor
        self.logger = logger or logging.getLogger(__name__)

    def get(self, key: str, request_path: str) -> Optional[IdempotencyRecord]:
        """Return the cached response, or ``None`` for a request not seen before."""
        stmt = (
            select(IdempotencyKeyModel)
            .where(IdempotencyKeyModel.key == key)
            .where(IdempotencyKeyModel.request_path == request_path)
        )
        with storage_errors("idempotency.get", key):
            row = self.executor.query_one(stmt)
        if row is None:
            return None
        return IdempotencyRecord.model_validate(row)

    def store(self, record: IdempotencyRecord) -> bool:
        """Insert ``record`` unless its pair is already cached.

        Returns True when this call's row was written, False when an earlier
        record for the same pair was kept.
        """
        insert_if_absent = _INSERT_IF_ABSENT.get(self.executor.dialect_name)
        if insert_if_absent is None:
            raise StorageError(
                "idempotency.store",
                record.key,
                f"dialect {self.executor.dialect_name!r} has no insert-if-absent",
            )

        stmt = (
            insert_if_absent(IDEMPOTENCY_KEYS)
            .values(
                key=record.key,
                request_path=record.request_path,
                response_status=record.response_status,
                response_body=record.response_body,
                created_at=record.created_at or utcnow(),
            )
            .on_conflict_do_nothing(index_elements=["key", "request_path"])
        )
        with storage_errors("idempotency.store", record.key):
            inserted = self.executor.execute(stmt) > 0

        self.logger.info(
            "idempotency.stored" if inserted else "idempotency.store.kept_existing",
            extra={"idempotency_key": record.key, "request_path": record.request_path},
        )
        return inserted

    def purge(self, before: datetime) -> int:
        """Delete records created strictly before ``before``; return how many."""
        stmt = delete(IDEMPOTENCY_KEYS).where(IDEMPOTENCY_KEYS.c.created_at < before)
        with storage_errors("idempotency.purge", before.isoformat()):
            removed = self.executor.execute(stmt)
        self.logger.debug(
            "idempotency.purged",
            extra={"removed": removed, "before": before.isoformat()},
        )
        return removed
