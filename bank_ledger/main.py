import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

from fastapi import FastAPI

from .core.config import Settings, get_settings
from .core.db import Database, create_engine_for_url, init_db
from .services import IdempotencyRepository, IdempotencySweeper


def configure_logging(level: str) -> logging.Logger:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    return logging.getLogger("bank_ledger")


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logger = configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "bank.starting",
            extra={"app_name": settings.app_name, "log_level": settings.log_level},
        )
        engine = create_engine_for_url(settings.database_url, settings)
        init_db(engine, logger=logger.getChild("db"))
        database = Database(engine, logger=logger.getChild("db"))

        sweeper = IdempotencySweeper(
            IdempotencyRepository(database, logger=logger.getChild("idempotency")),
            retention=timedelta(hours=settings.idempotency_retention_hours),
            interval_seconds=settings.idempotency_sweep_interval_seconds,
            logger=logger.getChild("maintenance"),
        )
        sweeper.run_once()
        sweeper.start()

        app.state.database = database
        app.state.sweeper = sweeper
        try:
            yield
        finally:
            logger.info("bank.stopping")
            sweeper.stop()
            engine.dispose()
            logger.info("bank.stopped")

    app = FastAPI(title=settings.app_name, version=settings.version, lifespan=lifespan)

    @app.get("/")
    def read_root() -> dict[str, str]:
        return {"message": "Welcome to Bank API", "version": settings.version}

    @app.get("/health")
    def read_health() -> dict[str, str]:
        return {"status": "healthy"}

    return app


app = create_app()
