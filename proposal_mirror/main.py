from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from proposal_mirror import __version__
from proposal_mirror.config.settings import DATABASE_URL, SYNC_API_TOKEN, SYNC_INTERVAL_MINUTES
from proposal_mirror.routers.routes_proposals import router as proposals_router
from proposal_mirror.services.database import Database
from proposal_mirror.services.embeddings import EmbeddingService
from proposal_mirror.services.proposal_service import ProposalService
from proposal_mirror.services.repository import ProposalRepository
from proposal_mirror.services.search_service import SearchService
from proposal_mirror.services.subgraph_client import SubgraphClient
from proposal_mirror.services.sync_service import SyncService
from proposal_mirror.services.sync_worker import SyncWorker
from proposal_mirror.utils.logger import logger


def create_app(
    database_url: Optional[str] = None,
    client: Optional[SubgraphClient] = None,
    embeddings: Optional[EmbeddingService] = None,
    sync_interval_minutes: int = SYNC_INTERVAL_MINUTES,
    sync_api_token: Optional[str] = SYNC_API_TOKEN,
) -> FastAPI:
    """
    Build the API application.

    Collaborators default to the configured ones; tests pass their own.
    Everything created here is closed when the app shuts down.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Proposal mirror starting up...")
        db = Database.from_url(database_url or DATABASE_URL)
        db.initialize_schema()
        repository = ProposalRepository(db)
        subgraph = client or SubgraphClient()
        embedding_service = embeddings or EmbeddingService()
        sync_service = SyncService(repository, subgraph)
        search_service = SearchService(repository, embedding_service)

        app.state.db = db
        app.state.repository = repository
        app.state.proposal_service = ProposalService(repository)
        app.state.search_service = search_service
        app.state.sync_service = sync_service
        app.state.sync_api_token = sync_api_token

        worker = None
        if sync_interval_minutes > 0:
            worker = SyncWorker(sync_service, search_service, sync_interval_minutes)
            worker.start()
        else:
            logger.info("Background sync disabled (SYNC_INTERVAL_MINUTES=0)")

        try:
            yield
        finally:
            logger.info("Shutting down proposal mirror...")
            if worker is not None:
                worker.stop()
            subgraph.close()
            embedding_service.close()
            db.close()

    app = FastAPI(title="Proposal Mirror", version=__version__, lifespan=lifespan)

    @app.get("/healthz")
    def healthz() -> dict:
        """Health check with store status."""
        health_status = {"status": "ok", "database": app.state.db.dialect}
        try:
            repository: ProposalRepository = app.state.repository
            health_status["last_sync_time"] = repository.get_last_sync_time()
            health_status["embeddings_indexed"] = repository.count_embeddings()
        except Exception as e:
            logger.error("Healthz: store check failed: %s", e, exc_info=True)
            health_status["status"] = "degraded"
            health_status["error"] = str(e)[:100]
        return health_status

    app.include_router(proposals_router)
    return app


app = create_app()
