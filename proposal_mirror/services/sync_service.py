"""
Reconciles the local mirror with the subgraph.

Both modes advance the sync cursor when they finish, even after partial
failures. Whatever was not mirrored because of a failure is listed in
``SyncResult.skipped`` and logged as a warning.
"""

import threading
import time
from typing import Callable, List, Optional, Sequence

from proposal_mirror.data_models.schemas import SubgraphProposal, SyncResult
from proposal_mirror.services.errors import RemoteFetchError, ValidationError
from proposal_mirror.services.repository import ProposalRepository
from proposal_mirror.services.subgraph_client import RECENT_PAGE_SIZE, SubgraphClient
from proposal_mirror.utils.logger import logger

FULL_SYNC_PAGE_SIZE = 50


class SyncService:
    """Incremental and full synchronization of proposals and their votes."""

    def __init__(
        self,
        repository: ProposalRepository,
        client: SubgraphClient,
        clock: Optional[Callable[[], int]] = None,
        page_size: int = FULL_SYNC_PAGE_SIZE,
        recent_page_size: int = RECENT_PAGE_SIZE,
    ):
        self.repository = repository
        self.client = client
        self.page_size = page_size
        self.recent_page_size = recent_page_size
        self._clock = clock or (lambda: int(time.time()))
        self._lock = threading.Lock()

    def sync(self, full: bool = False) -> SyncResult:
        """
        Run one sync. Concurrent calls are serialized.

        Args:
            full: Re-fetch every proposal instead of those created after the cursor

        Returns:
            SyncResult with counts, per-item errors and the new cursor value
        """
        with self._lock:
            previous = self.repository.get_last_sync_time()
            started_at = self._clock()
            result = SyncResult(previous_sync_time=previous, last_sync_time=started_at)
            mode = "full" if full else "incremental"
            logger.info("SyncService: starting %s sync (cursor=%s)", mode, previous)

            if full:
                self._full_sync(result, started_at)
            else:
                self._incremental_sync(result, previous or 0, started_at)

            result.last_sync_time = self._clock()
            self.repository.set_last_sync_time(result.last_sync_time)

            if result.errors:
                logger.warning(
                    "SyncService: %s sync finished with %d errors, cursor advanced from %s to %s",
                    mode, len(result.errors), previous, result.last_sync_time,
                )
            logger.info(
                "SyncService: %s sync done: synced=%d updated=%d",
                mode, result.synced, result.updated,
            )
            return result

    def _incremental_sync(self, result: SyncResult, since: int, now: int) -> None:
        offset = 0
        while True:
            try:
                proposals = self.client.fetch_recent_proposals(since, first=self.recent_page_size, skip=offset)
            except RemoteFetchError as e:
                window = f"proposals created between {since} and {now}"
                if offset:
                    window += f" from offset {offset} onward"
                self._skip(result, f"Failed to fetch recent proposals: {e}", window)
                return

            stored = self._store_proposals(result, proposals, now)
            self._sync_votes(result, stored)
            offset += len(proposals)

            if len(proposals) < self.recent_page_size:
                return

    def _full_sync(self, result: SyncResult, now: int) -> None:
        offset = 0
        while True:
            try:
                proposals = self.client.fetch_proposals(first=self.page_size, skip=offset)
            except RemoteFetchError as e:
                self._skip(result, f"Failed to fetch proposals at offset {offset}: {e}",
                           f"proposals from offset {offset} onward")
                return

            if not proposals:
                return

            stored = self._store_proposals(result, proposals, now)
            self._sync_votes(result, stored)
            offset += len(proposals)

            if len(proposals) < self.page_size:
                return

    def _store_proposals(
        self,
        result: SyncResult,
        proposals: Sequence[SubgraphProposal],
        now: int,
    ) -> List[SubgraphProposal]:
        """Upsert a page of proposals, falling back to one by one when a row is invalid or conflicting."""
        if not proposals:
            return []
        existing = self.repository.count_existing_proposals(p.proposal_number for p in proposals)
        try:
            result.synced += self.repository.upsert_proposals(proposals, now)
            result.updated += existing
            return list(proposals)
        except ValidationError as e:
            logger.warning("SyncService: page rejected (%s), upserting proposals one by one", e)

        stored: List[SubgraphProposal] = []
        for proposal in proposals:
            existed = self.repository.get_proposal_by_number(proposal.proposal_number) is not None
            try:
                self.repository.upsert_proposal(proposal, now)
            except ValidationError as e:
                self._skip(result, f"Invalid proposal {proposal.proposal_number}: {e}",
                           f"proposal {proposal.proposal_number}")
                continue
            stored.append(proposal)
            result.synced += 1
            result.updated += int(existed)
        return stored

    def _sync_votes(self, result: SyncResult, proposals: Sequence[SubgraphProposal]) -> None:
        for proposal in proposals:
            try:
                votes = self.client.fetch_all_votes(proposal.proposal_number)
                if votes:
                    written = self.repository.upsert_votes(votes, proposal.proposal_id)
                    logger.debug("SyncService: proposal %s: %d new votes",
                                 proposal.proposal_number, written)
            except (RemoteFetchError, ValidationError) as e:
                self._skip(result, f"Failed to fetch votes for proposal {proposal.proposal_number}: {e}",
                           f"votes for proposal {proposal.proposal_number}")

    @staticmethod
    def _skip(result: SyncResult, error: str, skipped: str) -> None:
        logger.warning("SyncService: %s (skipped %s)", error, skipped)
        result.errors.append(error)
        result.skipped.append(skipped)
