"""Tests for incremental and full sync against a fake subgraph."""
from unittest.mock import MagicMock

import pytest

from ..services.subgraph_client import SubgraphError
from ..services.sync_service import SyncService
from .fixtures import AFTER_VOTING, TIME_CREATED, make_proposal, make_vote


class FakeSubgraph:
    """In-memory stand-in for SubgraphClient with switchable failures."""

    def __init__(self, proposals, votes=None):
        self.proposals = list(proposals)
        self.votes = votes or {}
        self.fail_recent = False
        self.fail_recent_offsets = set()
        self.fail_offsets = set()
        self.fail_votes_for = set()
        self.page_requests = []
        self.recent_requests = []

    def fetch_recent_proposals(self, since, first=100, skip=0):
        self.recent_requests.append(skip)
        if self.fail_recent or skip in self.fail_recent_offsets:
            raise SubgraphError("Subgraph request failed: 503 Service Unavailable", "query", {"since": str(since)})
        recent = sorted((p for p in self.proposals if int(p.time_created) > since), key=lambda p: int(p.time_created))
        return recent[skip:skip + first]

    def fetch_proposals(self, first=20, skip=0):
        self.page_requests.append(skip)
        if skip in self.fail_offsets:
            raise SubgraphError("Subgraph query error: indexing error", "query", {"skip": skip})
        return self.proposals[skip:skip + first]

    def fetch_all_votes(self, proposal_number):
        if proposal_number in self.fail_votes_for:
            raise SubgraphError("Subgraph request failed: 500 Internal Server Error", "query", {})
        return list(self.votes.get(proposal_number, []))


def _proposals(count):
    return [make_proposal(proposalNumber=n, timeCreated=str(TIME_CREATED + n)) for n in range(1, count + 1)]


@pytest.fixture
def subgraph():
    proposals = _proposals(2)
    votes = {
        1: [make_vote("p1-v1", 1, 1), make_vote("p1-v2", 0, 1)],
        2: [make_vote("p2-v1", 2, 2)],
    }
    return FakeSubgraph(proposals, votes)


@pytest.fixture
def service(repository, subgraph):
    return SyncService(repository, subgraph, clock=lambda: AFTER_VOTING, page_size=2)


class TestIncrementalSync:
    """Test sync of proposals created after the cursor."""

    def test_first_sync(self, service, repository):
        result = service.sync()

        assert result.synced == 2
        assert result.updated == 0
        assert result.errors == []
        assert result.previous_sync_time is None
        assert result.last_sync_time == AFTER_VOTING
        assert repository.get_last_sync_time() == AFTER_VOTING
        assert repository.get_vote_summary(1).total_voters == 2

    def test_rerun_is_idempotent(self, service, repository):
        """Test a second run with no new data syncs nothing and duplicates nothing."""
        service.sync()
        result = service.sync()

        assert result.synced == 0
        assert result.previous_sync_time == AFTER_VOTING
        _, total = repository.list_proposals()
        assert total == 2
        assert repository.get_votes(1)[1] == 2

    def test_seen_window_does_not_duplicate_votes(self, service, repository):
        """Test re-syncing an already mirrored window keeps one row per vote."""
        service.sync()
        repository.set_last_sync_time(0)
        result = service.sync()

        assert result.synced == 2
        assert result.updated == 2
        assert repository.get_votes(1)[1] == 2
        assert repository.get_votes(2)[1] == 1

    def test_recent_fetch_failure(self, service, subgraph, repository):
        """Test a failed fetch is recorded and the cursor still advances."""
        subgraph.fail_recent = True
        result = service.sync()

        assert result.synced == 0
        assert result.errors == ["Failed to fetch recent proposals: Subgraph request failed: 503 Service Unavailable"]
        assert result.skipped == [f"proposals created between 0 and {AFTER_VOTING}"]
        assert repository.get_last_sync_time() == AFTER_VOTING

    def test_vote_failure_does_not_stop_sync(self, service, subgraph, repository):
        subgraph.fail_votes_for = {1}
        result = service.sync()

        assert result.synced == 2
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Failed to fetch votes for proposal 1:")
        assert result.skipped == ["votes for proposal 1"]
        assert repository.get_vote_summary(1).total_voters == 0
        assert repository.get_vote_summary(2).total_voters == 1

    def test_invalid_proposal_skipped(self, repository, subgraph):
        """Test one out-of-range proposal does not block the rest of the batch."""
        subgraph.proposals.append(
            make_proposal(proposalNumber=3, timeCreated=str(TIME_CREATED + 3), forVotes=str(2 ** 256))
        )
        result = SyncService(repository, subgraph, clock=lambda: AFTER_VOTING).sync()

        assert result.synced == 2
        assert result.skipped == ["proposal 3"]
        assert repository.get_proposal_by_number(3) is None
        assert repository.get_last_sync_time() == AFTER_VOTING

    def test_shared_proposal_id_skipped(self, repository):
        """Test two proposal numbers carrying one proposal id do not block the page or the cursor."""
        subgraph = FakeSubgraph(
            [
                make_proposal(proposalNumber=1, timeCreated=str(TIME_CREATED + 1), proposalId="0xabc"),
                make_proposal(proposalNumber=2, timeCreated=str(TIME_CREATED + 2), proposalId="0xabc"),
                make_proposal(proposalNumber=3, timeCreated=str(TIME_CREATED + 3)),
            ],
            {3: [make_vote("p3-v1", 1, 3)]},
        )
        service = SyncService(repository, subgraph, clock=lambda: AFTER_VOTING)

        result = service.sync()

        assert result.synced == 2
        assert result.skipped == ["proposal 2"]
        assert result.errors[0].startswith("Invalid proposal 2:")
        assert repository.get_proposal_by_number(1) is not None
        assert repository.get_proposal_by_number(3) is not None
        assert repository.get_vote_summary(3).total_voters == 1
        assert repository.get_last_sync_time() == AFTER_VOTING

        # The next run is not stuck on the same page
        repository.set_last_sync_time(0)
        assert service.sync().skipped == ["proposal 2"]


class TestIncrementalPaging:
    """Test incremental sync pages past the subgraph's page size."""

    def test_all_recent_proposals_stored(self, repository):
        subgraph = FakeSubgraph(_proposals(150))
        result = SyncService(repository, subgraph, clock=lambda: AFTER_VOTING).sync()

        assert subgraph.recent_requests == [0, 100]
        assert result.synced == 150
        assert result.skipped == []
        assert repository.list_proposals()[1] == 150

    def test_exact_page_multiple(self, repository):
        subgraph = FakeSubgraph(_proposals(4))
        result = SyncService(repository, subgraph, clock=lambda: AFTER_VOTING, recent_page_size=2).sync()

        assert subgraph.recent_requests == [0, 2, 4]
        assert result.synced == 4

    def test_later_page_failure_is_reported(self, repository):
        """Test a failure after the first page reports the window that was not mirrored."""
        subgraph = FakeSubgraph(_proposals(150))
        subgraph.fail_recent_offsets = {100}
        result = SyncService(repository, subgraph, clock=lambda: AFTER_VOTING).sync()

        assert result.synced == 100
        assert result.skipped == [f"proposals created between 0 and {AFTER_VOTING} from offset 100 onward"]
        assert repository.get_last_sync_time() == AFTER_VOTING


class TestFullSync:
    """Test paging through every proposal."""

    def test_pages_until_short_page(self, repository):
        subgraph = FakeSubgraph(_proposals(5))
        result = SyncService(repository, subgraph, clock=lambda: AFTER_VOTING, page_size=2).sync(full=True)

        assert subgraph.page_requests == [0, 2, 4]
        assert result.synced == 5
        assert result.errors == []

    def test_stops_on_empty_page(self, repository):
        subgraph = FakeSubgraph(_proposals(4))
        result = SyncService(repository, subgraph, clock=lambda: AFTER_VOTING, page_size=2).sync(full=True)

        assert subgraph.page_requests == [0, 2, 4]
        assert result.synced == 4

    def test_page_failure_ends_pagination(self, repository):
        subgraph = FakeSubgraph(_proposals(5))
        subgraph.fail_offsets = {2}
        result = SyncService(repository, subgraph, clock=lambda: AFTER_VOTING, page_size=2).sync(full=True)

        assert result.synced == 2
        assert result.errors == ["Failed to fetch proposals at offset 2: Subgraph query error: indexing error"]
        assert result.skipped == ["proposals from offset 2 onward"]
        assert repository.get_last_sync_time() == AFTER_VOTING

    def test_full_resync_counts_updates(self, service, repository):
        service.sync(full=True)
        result = service.sync(full=True)

        assert result.synced == 2
        assert result.updated == 2


class TestCursor:

    def test_cursor_set_from_clock_at_end(self, repository, subgraph):
        clock = MagicMock(side_effect=[100, 250])
        result = SyncService(repository, subgraph, clock=clock).sync()

        assert result.last_sync_time == 250
        assert repository.get_last_sync_time() == 250
        assert clock.call_count == 2
