from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import insert, update
from sqlmodel import select

from ..core.db import Executor, storage_errors
from ..core.errors import (
    AccountNotFoundError,
    BalanceConstraintError,
    ConflictError,
    DuplicateAccountError,
    mask_account_number,
)
from ..models import ACCOUNTS, AccountModel, AccountRecord
from ..models.db import utcnow

_BALANCE_CHECK = "ck_accounts_available_le_balance"


class AccountRepository:
    """Balance state per account.

    Balances are only ever changed by :meth:`adjust_balances`, which applies
    deltas in a single UPDATE; callers never write back a balance they read.

    To make a decision on a balance (e.g. "are there enough available funds?")
    hold the row lock from :meth:`find_by_account_number_for_update` across the
    read, the decision and the adjustment, all in one :class:`Transaction`.
    Accounts are locked one at a time; anything touching two accounts must
    lock them in ascending account-number order.
    """

    def __init__(self, executor: Executor, logger: Optional[logging.Logger] = None) -> None:
        self.executor = executor
        self.logger = logger or logging.getLogger(__name__)

    def create(
        self,
        *,
        account_number: str,
        cvv: str,
        expiry_month: int,
        expiry_year: int,
        balance_cents: int = 0,
        available_balance_cents: Optional[int] = None,
    ) -> AccountRecord:
        """Insert a seed account; available balance defaults to the full balance."""
        account_id = uuid4()
        now = utcnow()
        if available_balance_cents is None:
            available_balance_cents = balance_cents
        stmt = insert(ACCOUNTS).values(
            id=account_id,
            account_number=account_number,
            cvv=cvv,
            expiry_month=expiry_month,
            expiry_year=expiry_year,
            balance_cents=balance_cents,
            available_balance_cents=available_balance_cents,
            created_at=now,
            updated_at=now,
        )
        masked = mask_account_number(account_number)
        try:
            with storage_errors("account.create", masked):
                self.executor.execute(stmt)
        except ConflictError as exc:
            driver_message = str(exc.__cause__.orig)
            if "account_number" in driver_message:
                raise DuplicateAccountError(
                    "account.create", masked, "account number already exists"
                ) from exc.__cause__
            if _BALANCE_CHECK in driver_message:
                raise BalanceConstraintError(
                    "account.create", masked, driver_message
                ) from exc.__cause__
            raise

        self.logger.info(
            "account.created",
            extra={"account_id": str(account_id), "account_number": masked},
        )
        return self.find_by_id(account_id)

    def find_by_id(self, account_id: UUID) -> AccountRecord:
        stmt = select(AccountModel).where(AccountModel.id == account_id)
        with storage_errors("account.find_by_id", account_id):
            row = self.executor.query_one(stmt)
        if row is None:
            raise AccountNotFoundError(account_id)
        return AccountRecord.model_validate(row)

    def find_by_account_number(self, account_number: str) -> AccountRecord:
        stmt = select(AccountModel).where(AccountModel.account_number == account_number)
        return self._find_one(stmt, "account.find_by_account_number", account_number)

    def find_by_account_number_for_update(self, account_number: str) -> AccountRecord:
        """Read an account and hold an exclusive row lock on it.

        The lock lasts until the enclosing transaction commits or rolls back,
        so this must be called on a :class:`Transaction`. On a pooled
        :class:`Database` the lock is released as soon as the statement
        finishes; the read still succeeds but a warning is logged, because
        decisions made on it are open to lost updates.
        """
        if not self.executor.in_transaction:
            self.logger.warning(
                "account.lock.outside_transaction",
                extra={"account_number": mask_account_number(account_number)},
            )
        stmt = (
            select(AccountModel)
            .where(AccountModel.account_number == account_number)
            .with_for_update()
        )
        return self._find_one(stmt, "account.find_for_update", account_number)

    def adjust_balances(
        self,
        account_id: UUID,
        balance_delta: int,
        available_delta: int,
    ) -> None:
        """Add both deltas in one statement.

        Raises AccountNotFoundError when no row matched; a zero delta on an
        existing account is a successful no-op.
        """
        stmt = (
            update(ACCOUNTS)
            .where(ACCOUNTS.c.id == account_id)
            .values(
                balance_cents=ACCOUNTS.c.balance_cents + balance_delta,
                available_balance_cents=ACCOUNTS.c.available_balance_cents + available_delta,
                updated_at=utcnow(),
            )
        )
        try:
            with storage_errors("account.adjust_balances", account_id):
                affected = self.executor.execute(stmt)
        except ConflictError as exc:
            if _BALANCE_CHECK not in str(exc.__cause__.orig):
                raise
            raise BalanceConstraintError(
                "account.adjust_balances",
                account_id,
                "available balance would exceed total balance",
            ) from exc.__cause__
        if affected == 0:
            raise AccountNotFoundError(account_id)

        self.logger.info(
            "account.balances.adjusted",
            extra={
                "account_id": str(account_id),
                "balance_delta": balance_delta,
                "available_delta": available_delta,
            },
        )

    def _find_one(self, stmt, operation: str, account_number: str) -> AccountRecord:
        masked = mask_account_number(account_number)
        with storage_errors(operation, masked):
            row = self.executor.query_one(stmt)
        if row is None:
            raise AccountNotFoundError(masked)
        return AccountRecord.model_validate(row)
