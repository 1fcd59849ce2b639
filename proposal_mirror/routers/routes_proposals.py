"""
FastAPI routes over the proposal mirror.

Read routes serve the local store only; ``/sync`` and ``/index`` refresh it.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException

from proposal_mirror.data_models.schemas import (
    EmbeddingStats,
    ProposalDetail,
    ProposalListResult,
    ProposalStatus,
    ProposalVotesResult,
    SearchResult,
    SyncResult,
)
from proposal_mirror.routers.deps import (
    get_proposal_service,
    get_repository,
    get_search_service,
    get_sync_service,
    require_sync_token,
)
from proposal_mirror.services.embeddings import EmbeddingError
from proposal_mirror.services.errors import ValidationError
from proposal_mirror.services.proposal_service import ProposalService
from proposal_mirror.services.repository import ProposalRepository
from proposal_mirror.services.search_service import SearchService
from proposal_mirror.services.sync_service import SyncService
from proposal_mirror.utils.logger import logger

router = APIRouter(tags=["proposals"])


@router.get("/proposals")
def list_proposals(
    status: Optional[ProposalStatus] = None,
    limit: int = 20,
    offset: int = 0,
    order: str = "desc",
    service: ProposalService = Depends(get_proposal_service),
) -> ProposalListResult:
    try:
        return service.list_proposals(status=status, limit=limit, offset=offset, order=order)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/proposals/{identifier}")
def get_proposal(
    identifier: str,
    service: ProposalService = Depends(get_proposal_service),
) -> ProposalDetail:
    """
    Get one proposal by number (``42``) or canonical id (``0x...``).
    """
    try:
        proposal = service.get_proposal(identifier)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if proposal is None:
        raise HTTPException(status_code=404, detail=f"Proposal {identifier} not found")
    return proposal


@router.get("/proposals/{identifier}/votes")
def get_proposal_votes(
    identifier: str,
    support: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
    service: ProposalService = Depends(get_proposal_service),
) -> ProposalVotesResult:
    try:
        votes = service.get_proposal_votes(identifier, support=support, limit=limit, offset=offset)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if votes is None:
        raise HTTPException(status_code=404, detail=f"Proposal {identifier} not found")
    return votes


@router.get("/search")
def search_proposals(
    query: str,
    limit: int = 5,
    status: Optional[ProposalStatus] = None,
    threshold: float = 0.3,
    service: SearchService = Depends(get_search_service),
) -> SearchResult:
    """
    Semantic search over indexed proposals.

    Returns an empty result with ``embeddings_indexed == 0`` until ``/index``
    has run.
    """
    try:
        return service.search(query, limit=limit, status=status, threshold=threshold)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EmbeddingError as e:
        logger.error("Router: search failed: %s", e, exc_info=True)
        raise HTTPException(status_code=503, detail="Embedding model unavailable")


@router.post("/sync", dependencies=[Depends(require_sync_token)])
def sync_proposals(
    full: bool = False,
    service: SyncService = Depends(get_sync_service),
) -> SyncResult:
    return service.sync(full=full)


@router.post("/index", dependencies=[Depends(require_sync_token)])
def index_embeddings(
    service: SearchService = Depends(get_search_service),
    repository: ProposalRepository = Depends(get_repository),
) -> Dict[str, Any]:
    """Embed proposals that are new or whose text changed."""
    previously_indexed = repository.get_embedding_stats().embedded_proposals
    result = service.index_embeddings(
        progress_callback=lambda current, total: logger.debug("Router: indexed %d/%d", current, total)
    )
    return {
        **result.model_dump(),
        "previously_indexed": previously_indexed,
        "stats": repository.get_embedding_stats().model_dump(),
    }


@router.get("/index/stats")
def embedding_stats(repository: ProposalRepository = Depends(get_repository)) -> EmbeddingStats:
    return repository.get_embedding_stats()
