from .config import Settings, get_settings
from .db import Database, Executor, Transaction, create_engine_for_url, init_db

__all__ = [
    "Database",
    "Executor",
    "Settings",
    "Transaction",
    "create_engine_for_url",
    "get_settings",
    "init_db",
]
