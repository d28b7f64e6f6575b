import logging

import pytest
from sqlmodel import select

from ..core.db import Database, Transaction
from ..core.errors import TransactionClosedError
from ..models import AccountModel, AccountRecord
from ..services import AccountRepository


def test_database_is_not_transactional(database: Database) -> None:
    assert database.in_transaction is False
    assert database.dialect_name == "sqlite"


def test_begin_returns_open_transaction(database: Database) -> None:
    tx = database.begin()
    assert isinstance(tx, Transaction)
    assert tx.in_transaction is True
    tx.rollback()
    assert tx.in_transaction is False


def test_transaction_commit_persists_changes(database: Database, account: AccountRecord) -> None:
    with database.transaction() as tx:
        AccountRepository(tx).adjust_balances(account.id, 250, 250)

    assert AccountRepository(database).find_by_id(account.id).balance_cents == 1250


def test_transaction_rolls_back_on_error(database: Database, account: AccountRecord) -> None:
    with pytest.raises(RuntimeError):
        with database.transaction() as tx:
            AccountRepository(tx).adjust_balances(account.id, -400, -400)
            raise RuntimeError("orchestrator gave up")

    assert AccountRepository(database).find_by_id(account.id).balance_cents == 1000


def test_transaction_rolls_back_on_interrupt(database: Database, account: AccountRecord) -> None:
    with pytest.raises(KeyboardInterrupt):
        with database.transaction() as tx:
            AccountRepository(tx).adjust_balances(account.id, -400, -400)
            raise KeyboardInterrupt

    assert AccountRepository(database).find_by_id(account.id).available_balance_cents == 1000


def test_reads_inside_transaction_see_own_updates(
    database: Database, account: AccountRecord
) -> None:
    with database.transaction() as tx:
        accounts = AccountRepository(tx)
        before = accounts.find_by_account_number_for_update(account.account_number)
        accounts.adjust_balances(before.id, -300, -300)
        after = accounts.find_by_account_number_for_update(account.account_number)

    assert before.balance_cents == 1000
    assert after.balance_cents == 700


def test_rollback_after_commit_is_noop(database: Database, caplog) -> None:
    tx = database.begin()
    tx.commit()

    with caplog.at_level(logging.DEBUG, logger="bank_ledger.core.db"):
        tx.rollback()
        tx.rollback()

    assert "transaction.already_closed" in caplog.messages


def test_commit_after_rollback_raises(database: Database) -> None:
    tx = database.begin()
    tx.rollback()

    with pytest.raises(TransactionClosedError):
        tx.commit()


def test_finalized_transaction_rejects_queries(database: Database) -> None:
    tx = database.begin()
    tx.commit()

    with pytest.raises(TransactionClosedError):
        tx.query_all(select(AccountModel))


def test_explicit_commit_inside_context_is_not_repeated(
    database: Database, account: AccountRecord
) -> None:
    with database.transaction() as tx:
        AccountRepository(tx).adjust_balances(account.id, 5, 5)
        tx.commit()

    assert AccountRepository(database).find_by_id(account.id).balance_cents == 1005


def test_query_all_returns_every_row(database: Database, account: AccountRecord) -> None:
    AccountRepository(database).create(
        account_number="5555555555554444",
        cvv="321",
        expiry_month=1,
        expiry_year=2031,
    )

    rows = database.query_all(select(AccountModel).order_by(AccountModel.account_number))

    assert [row.account_number for row in rows] == ["4111111111111111", "5555555555554444"]
