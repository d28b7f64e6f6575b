"""
Periodic purge of expired idempotency keys.

One sweep runs at startup before traffic is served; after that a background
thread repeats it every ``interval_seconds`` so a long-lived process does not
accumulate keys. A failed sweep is logged and retried on the next tick, never
raised: losing a cleanup pass must not take the service down.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Optional

from ..core.errors import StorageError
from ..models.db import utcnow
from .idempotency import IdempotencyRepository

DEFAULT_RETENTION = timedelta(hours=24)


class IdempotencySweeper:
    def __init__(
        self,
        repository: IdempotencyRepository,
        retention: timedelta = DEFAULT_RETENTION,
        interval_seconds: float = 3600.0,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self._repository = repository
        self._retention = retention
        self._interval = interval_seconds
        self._clock = clock or utcnow
        self.logger = logger or logging.getLogger(__name__)
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> Optional[int]:
        """Purge keys older than the retention window.

        Returns the number removed, or None when the purge failed.
        """
        cutoff = self._clock() - self._retention
        try:
            removed = self._repository.purge(cutoff)
        except StorageError:
            self.logger.warning(
                "idempotency.sweep.failed",
                exc_info=True,
                extra={"cutoff": cutoff.isoformat()},
            )
            return None

        self.logger.info(
            "idempotency.sweep.completed",
            extra={"removed": removed, "cutoff": cutoff.isoformat()},
        )
        return removed

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._loop, name="idempotency-sweeper", daemon=True
        )
        self._thread.start()
        self.logger.info(
            "idempotency.sweeper.started",
            extra={"interval_seconds": self._interval},
        )

    def stop(self, timeout: float = 5.0) -> None:
        if self._thread is None:
            return
        self._stop_event.set()
        self._thread.join(timeout=timeout)
        self._thread = None
        self.logger.info("idempotency.sweeper.stopped")

    def _loop(self) -> None:
        while not self._stop_event.wait(timeout=self._interval):
            try:
                self.run_once()
            except Exception:
                self.logger.exception("idempotency.sweep.crashed")
