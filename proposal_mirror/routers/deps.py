from typing import Optional

from fastapi import Header, HTTPException, Request

from proposal_mirror.services.proposal_service import ProposalService
from proposal_mirror.services.repository import ProposalRepository
from proposal_mirror.services.search_service import SearchService
from proposal_mirror.services.sync_service import SyncService
from proposal_mirror.utils.logger import logger

# Shared FastAPI dependencies. Services live on app.state, set up by the lifespan.


def get_repository(request: Request) -> ProposalRepository:
    return request.app.state.repository


def get_proposal_service(request: Request) -> ProposalService:
    return request.app.state.proposal_service


def get_search_service(request: Request) -> SearchService:
    return request.app.state.search_service


def get_sync_service(request: Request) -> SyncService:
    return request.app.state.sync_service


def require_sync_token(request: Request, authorization: Optional[str] = Header(None)) -> None:
    """Guard write routes with a bearer token when one is configured."""
    required = request.app.state.sync_api_token
    if not required:
        return
    if not authorization or not authorization.startswith("Bearer "):
        logger.warning("Router: missing or malformed Authorization header")
        raise HTTPException(status_code=401, detail="Missing bearer token")
    if authorization.split("Bearer ", 1)[-1].strip() != required:
        logger.warning("Router: incorrect sync token provided")
        raise HTTPException(status_code=401, detail="Incorrect bearer token")
