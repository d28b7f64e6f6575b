import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta, timezone

import pytest
from sqlmodel import select

from ..core.db import Database
from ..models import IdempotencyKeyModel, IdempotencyRecord
from ..services import IdempotencyRepository

PATH = "/api/v1/authorizations"


@pytest.fixture
def keys(database: Database) -> IdempotencyRepository:
    return IdempotencyRepository(database)


def _record(key: str, body: str, created_at=None, path: str = PATH) -> IdempotencyRecord:
    return IdempotencyRecord(
        key=key,
        request_path=path,
        response_status=201,
        response_body=body,
        created_at=created_at,
    )


def test_get_unknown_key_returns_none(keys: IdempotencyRepository) -> None:
    assert keys.get("never-seen", PATH) is None


def test_store_then_get(keys: IdempotencyRepository) -> None:
    assert keys.store(_record("k-1", '{"status": "authorized"}')) is True

    cached = keys.get("k-1", PATH)
    assert cached is not None
    assert cached.response_status == 201
    assert cached.response_body == '{"status": "authorized"}'
    assert cached.created_at is not None


def test_key_is_scoped_to_request_path(keys: IdempotencyRepository) -> None:
    keys.store(_record("k-1", "capture", path="/api/v1/captures"))

    assert keys.get("k-1", PATH) is None
    assert keys.store(_record("k-1", "authorize")) is True
    assert keys.get("k-1", "/api/v1/captures").response_body == "capture"


def test_second_store_keeps_first_response(keys: IdempotencyRepository) -> None:
    assert keys.store(_record("k-1", "first")) is True
    assert keys.store(_record("k-1", "second")) is False

    assert keys.get("k-1", PATH).response_body == "first"


def test_concurrent_stores_have_one_winner(
    database: Database, keys: IdempotencyRepository
) -> None:
    workers = 8
    barrier = threading.Barrier(workers)

    def store(n: int) -> bool:
        barrier.wait()
        return keys.store(_record("race", f"response-{n}"))

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(store, range(workers)))

    assert results.count(True) == 1
    rows = database.query_all(
        select(IdempotencyKeyModel).where(IdempotencyKeyModel.key == "race")
    )
    assert len(rows) == 1

    winner = f"response-{results.index(True)}"
    with ThreadPoolExecutor(max_workers=4) as pool:
        bodies = list(pool.map(lambda _: keys.get("race", PATH).response_body, range(8)))
    assert set(bodies) == {winner}


def test_store_inside_transaction_is_discarded_on_rollback(
    database: Database, keys: IdempotencyRepository
) -> None:
    with pytest.raises(RuntimeError):
        with database.transaction() as tx:
            IdempotencyRepository(tx).store(_record("k-tx", "body"))
            raise RuntimeError("handler failed")

    assert keys.get("k-tx", PATH) is None


def test_purge_removes_only_older_records(keys: IdempotencyRepository) -> None:
    cutoff = datetime(2026, 1, 2, tzinfo=UTC)
    keys.store(_record("old", "a", created_at=cutoff - timedelta(hours=1)))
    keys.store(_record("edge", "b", created_at=cutoff))
    keys.store(_record("new", "c", created_at=cutoff + timedelta(hours=1)))

    assert keys.purge(cutoff) == 1

    assert keys.get("old", PATH) is None
    assert keys.get("edge", PATH) is not None
    assert keys.get("new", PATH) is not None
    assert keys.purge(cutoff) == 0


def test_offset_timestamps_are_stored_as_utc(keys: IdempotencyRepository) -> None:
    plus_five = timezone(timedelta(hours=5))
    created = datetime(2026, 1, 2, 3, 0, tzinfo=plus_five)  # 22:00 UTC on Jan 1
    keys.store(_record("offset", "body", created_at=created))

    cached = keys.get("offset", PATH)
    assert cached.created_at == created
    assert cached.created_at.utcoffset() == timedelta(0)

    assert keys.purge(datetime(2026, 1, 1, 21, 0, tzinfo=UTC)) == 0
    # 04:00+05:00 is 23:00 UTC, an hour after the record
    assert keys.purge(datetime(2026, 1, 2, 4, 0, tzinfo=plus_five)) == 1
    assert keys.get("offset", PATH) is None
