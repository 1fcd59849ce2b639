"""Background thread that keeps the mirror and its embeddings fresh."""

import threading
from typing import Optional

from proposal_mirror.config.settings import FULL_SYNC_EVERY_RUNS
from proposal_mirror.services.search_service import SearchService
from proposal_mirror.services.sync_service import SyncService
from proposal_mirror.utils.logger import logger


class SyncWorker:
    """
    Runs a sync followed by indexing every ``interval_minutes``.

    Incremental sync only sees proposals created after the cursor, so every
    ``full_sync_every``-th run is a full sync that re-reads older proposals
    whose status, tallies or flags have moved on. Only one run is in flight at
    a time; ``stop()`` wakes the thread and waits for the current run to finish.
    """

    def __init__(
        self,
        sync_service: SyncService,
        search_service: SearchService,
        interval_minutes: int,
        full_sync_every: int = FULL_SYNC_EVERY_RUNS,
    ):
        self.sync_service = sync_service
        self.search_service = search_service
        self.interval_seconds = interval_minutes * 60
        self.full_sync_every = full_sync_every
        self.runs = 0
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="proposal-sync", daemon=True)
        self._thread.start()
        logger.info("SyncWorker: started, interval %ss, full sync every %s runs",
                    self.interval_seconds, self.full_sync_every or "no")

    def stop(self, timeout: Optional[float] = 30.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
            logger.info("SyncWorker: stopped")

    def run_once(self) -> None:
        """One sync and index pass. Failures are logged; the loop keeps going."""
        self.runs += 1
        full = bool(self.full_sync_every) and self.runs % self.full_sync_every == 0
        try:
            result = self.sync_service.sync(full=full)
            indexed = self.search_service.index_embeddings()
            logger.info(
                "SyncWorker: %s run synced=%d updated=%d indexed=%d reindexed=%d errors=%d",
                "full" if full else "incremental", result.synced, result.updated,
                indexed.indexed, indexed.reindexed, len(result.errors) + len(indexed.errors),
            )
        except Exception as e:
            logger.error("SyncWorker: run failed: %s", e, exc_info=True)

    def _run(self) -> None:
        while not self._stop.is_set():
            self.run_once()
            self._stop.wait(self.interval_seconds)
