from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger("api.refresh")


class RefreshScheduler:
    """Background thread that fires the sync task once per interval."""

    def __init__(self) -> None:
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def running(self) -> bool:
        return bool(self._thread and self._thread.is_alive())

    def start(self, interval_minutes: float, task: Callable[[], object]) -> None:
        if interval_minutes <= 0 or self.running:
            return
        self._stop_event.clear()

        def runner() -> None:
            while not self._stop_event.wait(interval_minutes * 60):
                try:
                    task()
                except Exception:  # noqa: BLE001
                    # next tick is the retry
                    logger.exception("Scheduled sync failed")

        self._thread = threading.Thread(target=runner, daemon=True, name="allowlist-refresh-scheduler")
        self._thread.start()
        logger.info("Scheduled sync every %.1f minutes", interval_minutes)

    def stop(self) -> None:
        if self.running:
            self._stop_event.set()
            self._thread.join(timeout=2.0)
        self._thread = None
        self._stop_event.clear()


__all__ = ["RefreshScheduler"]
