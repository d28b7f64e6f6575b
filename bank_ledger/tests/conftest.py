import pytest

from ..core.config import Settings
from ..core.db import Database, create_engine_for_url, init_db
from ..models import AccountRecord
from ..services import AccountRepository


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'test.db'}",
        sqlite_busy_timeout_seconds=30,
        log_level="DEBUG",
    )


@pytest.fixture
def engine(settings: Settings):
    engine = create_engine_for_url(settings.database_url, settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def database(engine) -> Database:
    return Database(engine)


@pytest.fixture
def account(database: Database) -> AccountRecord:
    return AccountRepository(database).create(
        account_number="4111111111111111",
        cvv="123",
        expiry_month=12,
        expiry_year=2030,
        balance_cents=1000,
    )
