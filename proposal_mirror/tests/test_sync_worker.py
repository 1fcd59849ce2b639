"""Tests for the background sync loop."""
import threading
from unittest.mock import MagicMock

from ..data_models.schemas import IndexResult, SyncResult
from ..services.sync_worker import SyncWorker


def _services():
    sync_service = MagicMock()
    sync_service.sync.return_value = SyncResult(synced=1, last_sync_time=100)
    search_service = MagicMock()
    search_service.index_embeddings.return_value = IndexResult(indexed=1)
    return sync_service, search_service


class TestSyncWorker:

    def test_run_once_syncs_then_indexes(self):
        sync_service, search_service = _services()
        SyncWorker(sync_service, search_service, interval_minutes=5, full_sync_every=12).run_once()

        sync_service.sync.assert_called_once_with(full=False)
        search_service.index_embeddings.assert_called_once_with()

    def test_periodic_full_sync(self):
        """Test every third run re-reads all proposals so their status can move on."""
        sync_service, search_service = _services()
        worker = SyncWorker(sync_service, search_service, interval_minutes=5, full_sync_every=3)

        for _ in range(6):
            worker.run_once()

        modes = [c.kwargs["full"] for c in sync_service.sync.call_args_list]
        assert modes == [False, False, True, False, False, True]

    def test_full_sync_disabled(self):
        sync_service, search_service = _services()
        worker = SyncWorker(sync_service, search_service, interval_minutes=5, full_sync_every=0)

        for _ in range(3):
            worker.run_once()

        assert all(c.kwargs["full"] is False for c in sync_service.sync.call_args_list)

    def test_run_once_survives_errors(self):
        """Test an unexpected failure is logged and does not escape the loop."""
        sync_service, search_service = _services()
        sync_service.sync.side_effect = RuntimeError("database is locked")

        SyncWorker(sync_service, search_service, interval_minutes=5).run_once()

        search_service.index_embeddings.assert_not_called()

    def test_start_and_stop(self):
        sync_service, search_service = _services()
        ran = threading.Event()
        sync_service.sync.side_effect = lambda full: (ran.set(), SyncResult(last_sync_time=1))[1]

        worker = SyncWorker(sync_service, search_service, interval_minutes=60)
        worker.start()
        assert ran.wait(5)
        assert worker.is_running

        worker.stop()
        assert not worker.is_running
