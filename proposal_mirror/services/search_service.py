"""
Semantic search over proposal chunks, and the job that indexes them.
"""

import time
from typing import Callable, Dict, List, Optional, Tuple

from proposal_mirror.data_models.schemas import (
    IndexResult,
    Proposal,
    ProposalStatus,
    SearchHit,
    SearchProposalsInput,
    SearchResult,
    parse_input,
)
from proposal_mirror.services.chunker import chunk_text, hash_text, prepare_proposal_text
from proposal_mirror.services.embeddings import EmbeddingService
from proposal_mirror.services.repository import ProposalRepository
from proposal_mirror.utils.logger import logger

EXCERPT_LENGTH = 200
# Candidates fetched per requested result, before collapsing chunks per proposal
CANDIDATE_MULTIPLIER = 3

ProgressCallback = Callable[[int, int], None]


def truncate_excerpt(text: str, max_length: int = EXCERPT_LENGTH) -> str:
    """Shorten text to ``max_length``, preferring a cut at a word boundary."""
    if len(text) <= max_length:
        return text
    truncated = text[:max_length]
    last_space = truncated.rfind(" ")
    if last_space > max_length * 0.7:
        return truncated[:last_space] + "..."
    return truncated + "..."


class SearchService:
    """
    Natural-language search over indexed proposals.

    Usage:
        service = SearchService(repository, embeddings)
        service.index_embeddings()
        result = service.search("funding for skate videos", limit=3)
    """

    def __init__(self, repository: ProposalRepository, embeddings: EmbeddingService):
        self.repository = repository
        self.embeddings = embeddings

    def search(
        self,
        query: str,
        limit: int = 5,
        status: Optional[ProposalStatus] = None,
        threshold: float = 0.3,
    ) -> SearchResult:
        """
        Rank proposals by the similarity of their best chunk to the query.

        Args:
            query: Natural language query, at least 3 characters
            limit: Maximum number of proposals returned (1-20)
            status: Only consider proposals with this status
            threshold: Minimum cosine similarity (0-1)

        Returns:
            SearchResult with at most ``limit`` hits, one per proposal

        Raises:
            ValidationError: If an argument is out of range
        """
        params = parse_input(SearchProposalsInput, query=query, limit=limit, status=status, threshold=threshold)

        total_chunks = self.repository.count_embeddings()
        if total_chunks == 0:
            return SearchResult(results=[], query=params.query, embeddings_indexed=0)

        chunks = self.repository.get_all_embeddings(status=params.status)
        if not chunks:
            return SearchResult(results=[], query=params.query, embeddings_indexed=total_chunks)

        start_time = time.perf_counter()
        query_vector = self.embeddings.embed(params.query)
        matches = self.embeddings.rank(
            query_vector,
            ((position, chunk.embedding) for position, chunk in enumerate(chunks)),
            top_k=params.limit * CANDIDATE_MULTIPLIER,
            threshold=params.threshold,
        )

        best: Dict[int, SearchHit] = {}
        for match in matches:
            chunk = chunks[match.key]
            current = best.get(chunk.proposal_number)
            if current is None or current.similarity < round(match.similarity, 3):
                best[chunk.proposal_number] = SearchHit(
                    proposal_number=chunk.proposal_number,
                    title=chunk.title,
                    status=chunk.status,
                    relevant_excerpt=truncate_excerpt(chunk.chunk_text),
                    similarity=round(match.similarity, 3),
                )

        results = sorted(best.values(), key=lambda hit: hit.similarity, reverse=True)[:params.limit]
        logger.info(
            "SearchService: %d results for %r over %d chunks in %.3fs",
            len(results), params.query, len(chunks), time.perf_counter() - start_time,
        )
        return SearchResult(results=results, query=params.query, embeddings_indexed=total_chunks)

    def index_embeddings(self, progress_callback: Optional[ProgressCallback] = None) -> IndexResult:
        """
        Embed proposals that have no chunks yet, and re-embed proposals whose
        text changed since they were indexed.

        A failure on one proposal is recorded in ``errors`` and the job moves on.
        ``progress_callback(current, total)`` is called after every proposal.
        """
        work: List[Tuple[Proposal, bool]] = [
            (proposal, False) for proposal in self.repository.get_proposals_without_embeddings()
        ]
        for proposal, stored_hash in self.repository.get_embedded_proposals():
            if stored_hash != hash_text(prepare_proposal_text(proposal.title, proposal.description)):
                work.append((proposal, True))

        result = IndexResult()
        total = len(work)
        if total:
            logger.info("SearchService: indexing %d proposals", total)

        for current, (proposal, stale) in enumerate(work, start=1):
            try:
                self._index_proposal(proposal)
                if stale:
                    result.reindexed += 1
                else:
                    result.indexed += 1
            except Exception as e:
                logger.error("SearchService: Failed to index proposal %s: %s",
                             proposal.proposal_number, e, exc_info=True)
                result.errors.append(f"Failed to index proposal {proposal.proposal_number}: {e}")
            if progress_callback:
                progress_callback(current, total)

        return result

    def _index_proposal(self, proposal: Proposal) -> None:
        text = prepare_proposal_text(proposal.title, proposal.description)
        chunks = [chunk for chunk in chunk_text(text) if chunk.text]
        if not chunks:
            raise ValueError("proposal has no text to embed")
        vectors = self.embeddings.embed_batch([chunk.text for chunk in chunks])
        # Chunk indices are renumbered so stored indices stay contiguous
        self.repository.replace_embeddings(
            proposal.proposal_id,
            [(index, chunk.text, vector) for index, (chunk, vector) in enumerate(zip(chunks, vectors))],
            text_hash=hash_text(text),
        )
