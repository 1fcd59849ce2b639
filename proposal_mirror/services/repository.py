"""Persistence for proposals, votes, the sync cursor and embedding chunks."""

import time
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from proposal_mirror.data_models.proposal_status import calculate_proposal_status
from proposal_mirror.data_models.schemas import (
    EmbeddingChunk,
    EmbeddingStats,
    Proposal,
    ProposalStatus,
    SubgraphProposal,
    SubgraphVote,
    Vote,
    VoteSummary,
    VoteSupport,
    parse_timestamp,
    parse_uint256,
)
from proposal_mirror.services.database import INTEGRITY_ERRORS, Cursor, Database
from proposal_mirror.services.embeddings import blob_to_vector, vector_to_blob
from proposal_mirror.services.errors import ConflictError, ValidationError
from proposal_mirror.utils.logger import logger

LAST_SYNC_KEY = "last_sync"

PROPOSAL_COLUMNS = (
    "proposal_number", "proposal_id", "title", "description", "proposer", "status",
    "time_created", "vote_start", "vote_end", "snapshot_block",
    "for_votes", "against_votes", "abstain_votes", "quorum_votes",
    "executed", "canceled", "vetoed", "queued", "transaction_hash",
    "expires_at", "executable_from", "updated_at",
)

# Columns refreshed when an already mirrored proposal is seen again
_MUTABLE_PROPOSAL_COLUMNS = (
    "proposal_id", "title", "description", "status", "snapshot_block",
    "for_votes", "against_votes", "abstain_votes", "quorum_votes",
    "executed", "canceled", "vetoed", "queued", "transaction_hash",
    "expires_at", "executable_from", "updated_at",
)

_UPSERT_PROPOSAL_SQL = (
    f"INSERT INTO proposals ({', '.join(PROPOSAL_COLUMNS)}) "
    f"VALUES ({', '.join(['%s'] * len(PROPOSAL_COLUMNS))}) "
    "ON CONFLICT (proposal_number) DO UPDATE SET "
    + ", ".join(f"{column} = excluded.{column}" for column in _MUTABLE_PROPOSAL_COLUMNS)
)

_INSERT_VOTE_SQL = """
    INSERT INTO votes (
      id, proposal_id, proposal_number, voter, support, weight, reason, timestamp, transaction_hash
    ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (id) DO NOTHING
"""

_UPSERT_EMBEDDING_SQL = """
    INSERT INTO embeddings (proposal_id, chunk_index, chunk_text, embedding, text_hash, created_at)
    VALUES (%s, %s, %s, %s, %s, %s)
    ON CONFLICT (proposal_id, chunk_index) DO UPDATE SET
      chunk_text = excluded.chunk_text,
      embedding = excluded.embedding,
      text_hash = excluded.text_hash,
      created_at = excluded.created_at
"""


def _now() -> int:
    return int(time.time())


class ProposalRepository:
    """
    Upsert/query contract over the mirror's four tables.

    ``proposal_number`` is the lookup key everywhere: it is known before the
    canonical ``proposal_id`` is reliably available.
    """

    def __init__(self, db: Database):
        self.db = db

    # ------------------------------------------------------------------
    # Proposals

    @staticmethod
    def to_record(proposal: SubgraphProposal, now: Optional[int] = None) -> Dict[str, Any]:
        """Validate a subgraph proposal and convert it to a proposals row."""
        now = _now() if now is None else now
        return {
            "proposal_number": proposal.proposal_number,
            "proposal_id": proposal.proposal_id.lower(),
            "title": proposal.title or "",
            "description": proposal.description or "",
            "proposer": proposal.proposer.lower(),
            "status": calculate_proposal_status(proposal, now).value,
            "time_created": parse_timestamp(proposal.time_created, "timeCreated"),
            "vote_start": parse_timestamp(proposal.vote_start, "voteStart"),
            "vote_end": parse_timestamp(proposal.vote_end, "voteEnd"),
            "snapshot_block": proposal.snapshot_block_number,
            # Re-serialized after range validation, still exact
            "for_votes": str(parse_uint256(proposal.for_votes, "forVotes")),
            "against_votes": str(parse_uint256(proposal.against_votes, "againstVotes")),
            "abstain_votes": str(parse_uint256(proposal.abstain_votes, "abstainVotes")),
            "quorum_votes": str(parse_uint256(proposal.quorum_votes, "quorumVotes")),
            "executed": int(proposal.executed),
            "canceled": int(proposal.canceled),
            "vetoed": int(proposal.vetoed),
            "queued": int(proposal.queued),
            "transaction_hash": proposal.transaction_hash,
            "expires_at": parse_timestamp(proposal.expires_at, "expiresAt"),
            "executable_from": parse_timestamp(proposal.executable_from, "executableFrom"),
            "updated_at": now,
        }

    @staticmethod
    def _write_proposal(cur: Cursor, record: Dict[str, Any]) -> None:
        cur.execute(_UPSERT_PROPOSAL_SQL, [record[column] for column in PROPOSAL_COLUMNS])

    def upsert_proposal(self, proposal: SubgraphProposal, now: Optional[int] = None) -> None:
        """
        Raises:
            ValidationError: If a field is out of range
            ConflictError: If another proposal number already holds this proposal id
        """
        record = self.to_record(proposal, now)
        try:
            with self.db.transaction() as cur:
                self._write_proposal(cur, record)
        except INTEGRITY_ERRORS as e:
            raise ConflictError(f"proposal id {record['proposal_id']} conflicts with a stored proposal: {e}") from e

    def upsert_proposals(self, proposals: Sequence[SubgraphProposal], now: Optional[int] = None) -> int:
        """
        Upsert proposals in one transaction. Returns the number of rows written.

        Nothing is written when any proposal is invalid or conflicting.
        """
        records = [self.to_record(proposal, now) for proposal in proposals]
        if not records:
            return 0
        try:
            with self.db.transaction() as cur:
                for record in records:
                    self._write_proposal(cur, record)
        except INTEGRITY_ERRORS as e:
            raise ConflictError(f"proposal batch conflicts with stored proposals: {e}") from e
        return len(records)

    def get_proposal_by_number(self, proposal_number: int) -> Optional[Proposal]:
        row = self.db.fetch_one("SELECT * FROM proposals WHERE proposal_number = %s", (proposal_number,))
        return Proposal(**row) if row else None

    def get_proposal_by_id(self, proposal_id: str) -> Optional[Proposal]:
        """Look up by canonical id. A miss is normal while the subgraph catches up."""
        row = self.db.fetch_one("SELECT * FROM proposals WHERE proposal_id = %s", (proposal_id.lower(),))
        return Proposal(**row) if row else None

    def list_proposals(
        self,
        status: Optional[ProposalStatus] = None,
        limit: int = 20,
        offset: int = 0,
        order: str = "desc",
    ) -> Tuple[List[Proposal], int]:
        if order not in ("asc", "desc"):
            raise ValidationError(f"order must be 'asc' or 'desc', got {order!r}")

        where = ""
        params: List[Any] = []
        if status is not None:
            where = " WHERE status = %s"
            params.append(ProposalStatus(status).value)

        total = self.db.fetch_one(f"SELECT COUNT(*) AS count FROM proposals{where}", params)["count"]
        rows = self.db.fetch_all(
            f"SELECT * FROM proposals{where} "
            f"ORDER BY time_created {order.upper()}, proposal_number {order.upper()} "
            "LIMIT %s OFFSET %s",
            params + [limit, offset],
        )
        return [Proposal(**row) for row in rows], int(total)

    def count_existing_proposals(self, proposal_numbers: Iterable[int]) -> int:
        numbers = list(dict.fromkeys(proposal_numbers))
        if not numbers:
            return 0
        placeholders = ", ".join(["%s"] * len(numbers))
        row = self.db.fetch_one(
            f"SELECT COUNT(*) AS count FROM proposals WHERE proposal_number IN ({placeholders})",
            numbers,
        )
        return int(row["count"])

    # ------------------------------------------------------------------
    # Votes

    @staticmethod
    def _vote_params(vote: SubgraphVote, proposal_id: str) -> List[Any]:
        return [
            vote.id,
            proposal_id.lower(),
            vote.proposal.proposal_number,
            vote.voter.lower(),
            int(vote.support),
            str(parse_uint256(vote.weight, "weight")),
            vote.reason,
            parse_timestamp(vote.timestamp, "timestamp"),
            vote.transaction_hash,
        ]

    def upsert_vote(self, vote: SubgraphVote, proposal_id: str) -> bool:
        """Insert a vote unless its id is already stored. Returns True when written."""
        params = self._vote_params(vote, proposal_id)
        try:
            with self.db.transaction() as cur:
                return cur.execute(_INSERT_VOTE_SQL, params) > 0
        except INTEGRITY_ERRORS as e:
            raise ConflictError(f"vote {vote.id} does not match a stored proposal: {e}") from e

    def upsert_votes(self, votes: Sequence[SubgraphVote], proposal_id: str) -> int:
        """Insert unseen votes in one transaction. Returns the number of rows written."""
        rows = [self._vote_params(vote, proposal_id) for vote in votes]
        written = 0
        if not rows:
            return written
        try:
            with self.db.transaction() as cur:
                for params in rows:
                    written += max(cur.execute(_INSERT_VOTE_SQL, params), 0)
        except INTEGRITY_ERRORS as e:
            raise ConflictError(f"votes do not match stored proposal {proposal_id}: {e}") from e
        return written

    def get_votes(
        self,
        proposal_number: int,
        support: Optional[VoteSupport] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Vote], int]:
        where = " WHERE proposal_number = %s"
        params: List[Any] = [proposal_number]
        if support is not None:
            where += " AND support = %s"
            params.append(int(support))

        total = self.db.fetch_one(f"SELECT COUNT(*) AS count FROM votes{where}", params)["count"]
        rows = self.db.fetch_all(
            f"SELECT * FROM votes{where} ORDER BY timestamp DESC, id ASC LIMIT %s OFFSET %s",
            params + [limit, offset],
        )
        return [Vote(**row) for row in rows], int(total)

    def get_vote_summary(self, proposal_number: int) -> VoteSummary:
        """Voter counts per choice over all stored votes of the proposal."""
        row = self.db.fetch_one(
            """
            SELECT
              COUNT(*) AS total_voters,
              SUM(CASE WHEN support = 1 THEN 1 ELSE 0 END) AS for_voters,
              SUM(CASE WHEN support = 0 THEN 1 ELSE 0 END) AS against_voters,
              SUM(CASE WHEN support = 2 THEN 1 ELSE 0 END) AS abstain_voters
            FROM votes WHERE proposal_number = %s
            """,
            (proposal_number,),
        )
        # SUM over zero rows is NULL
        return VoteSummary(**{key: int(value or 0) for key, value in row.items()})

    # ------------------------------------------------------------------
    # Sync cursor

    def get_last_sync_time(self) -> Optional[int]:
        row = self.db.fetch_one("SELECT value FROM sync_metadata WHERE key = %s", (LAST_SYNC_KEY,))
        return int(row["value"]) if row else None

    def set_last_sync_time(self, timestamp: int) -> None:
        self.db.execute(
            """
            INSERT INTO sync_metadata (key, value) VALUES (%s, %s)
            ON CONFLICT (key) DO UPDATE SET value = excluded.value
            """,
            (LAST_SYNC_KEY, str(int(timestamp))),
        )

    # ------------------------------------------------------------------
    # Embeddings

    def upsert_embedding(
        self,
        proposal_id: str,
        chunk_index: int,
        chunk_text: str,
        embedding: Sequence[float],
        text_hash: Optional[str] = None,
    ) -> None:
        with self.db.transaction() as cur:
            cur.execute(
                _UPSERT_EMBEDDING_SQL,
                (proposal_id.lower(), chunk_index, chunk_text, vector_to_blob(embedding), text_hash, _now()),
            )

    def replace_embeddings(
        self,
        proposal_id: str,
        chunks: Sequence[Tuple[int, str, Sequence[float]]],
        text_hash: Optional[str] = None,
    ) -> int:
        """Swap all chunks of a proposal atomically so indices stay contiguous."""
        pid = proposal_id.lower()
        created_at = _now()
        with self.db.transaction() as cur:
            cur.execute("DELETE FROM embeddings WHERE proposal_id = %s", (pid,))
            for chunk_index, chunk_text, embedding in chunks:
                cur.execute(
                    _UPSERT_EMBEDDING_SQL,
                    (pid, chunk_index, chunk_text, vector_to_blob(embedding), text_hash, created_at),
                )
        return len(chunks)

    def delete_embeddings(self, proposal_id: str) -> int:
        return self.db.execute("DELETE FROM embeddings WHERE proposal_id = %s", (proposal_id.lower(),))

    def has_embeddings(self, proposal_id: str) -> bool:
        row = self.db.fetch_one(
            "SELECT COUNT(*) AS count FROM embeddings WHERE proposal_id = %s", (proposal_id.lower(),)
        )
        return int(row["count"]) > 0

    def count_embeddings(self) -> int:
        return int(self.db.fetch_one("SELECT COUNT(*) AS count FROM embeddings")["count"])

    def get_all_embeddings(self, status: Optional[ProposalStatus] = None) -> List[EmbeddingChunk]:
        """All chunks with their proposal's number, title and status, newest proposals first."""
        where = ""
        params: List[Any] = []
        if status is not None:
            where = " WHERE p.status = %s"
            params.append(ProposalStatus(status).value)

        rows = self.db.fetch_all(
            f"""
            SELECT
              e.proposal_id, e.chunk_index, e.chunk_text, e.embedding,
              p.proposal_number, p.title, p.status
            FROM embeddings e
            JOIN proposals p ON e.proposal_id = p.proposal_id{where}
            ORDER BY p.proposal_number DESC, e.chunk_index ASC
            """,
            params,
        )
        return [
            EmbeddingChunk(
                proposal_id=row["proposal_id"],
                proposal_number=row["proposal_number"],
                title=row["title"],
                status=row["status"],
                chunk_index=row["chunk_index"],
                chunk_text=row["chunk_text"],
                embedding=blob_to_vector(row["embedding"]),
            )
            for row in rows
        ]

    def get_proposals_without_embeddings(self) -> List[Proposal]:
        rows = self.db.fetch_all(
            """
            SELECT p.* FROM proposals p
            LEFT JOIN embeddings e ON p.proposal_id = e.proposal_id
            WHERE e.id IS NULL
            ORDER BY p.proposal_number ASC
            """
        )
        return [Proposal(**row) for row in rows]

    def get_embedded_text_hashes(self) -> Dict[str, Optional[str]]:
        """Map of proposal_id to the text hash its chunks were built from."""
        rows = self.db.fetch_all(
            "SELECT proposal_id, MAX(text_hash) AS text_hash FROM embeddings GROUP BY proposal_id"
        )
        return {row["proposal_id"]: row["text_hash"] for row in rows}

    def get_embedded_proposals(self) -> List[Tuple[Proposal, Optional[str]]]:
        """Proposals that have chunks, paired with their stored text hash."""
        hashes = self.get_embedded_text_hashes()
        if not hashes:
            return []
        rows = self.db.fetch_all("SELECT * FROM proposals ORDER BY proposal_number ASC")
        return [(Proposal(**row), hashes[row["proposal_id"]]) for row in rows if row["proposal_id"] in hashes]

    def get_embedding_stats(self) -> EmbeddingStats:
        total_proposals = self.db.fetch_one("SELECT COUNT(*) AS count FROM proposals")["count"]
        embedded = self.db.fetch_one("SELECT COUNT(DISTINCT proposal_id) AS count FROM embeddings")["count"]
        chunks = self.db.fetch_one("SELECT COUNT(*) AS count FROM embeddings")["count"]
        stats = EmbeddingStats(
            total_proposals=int(total_proposals),
            embedded_proposals=int(embedded),
            total_chunks=int(chunks),
        )
        logger.debug("ProposalRepository: embedding stats %s", stats.model_dump())
        return stats
