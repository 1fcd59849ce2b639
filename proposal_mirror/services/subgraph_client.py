"""
HTTP client for the governor subgraph.

Posts GraphQL documents as JSON and parses the payloads into the
``Subgraph*`` boundary models.
"""
from typing import Any, Dict, List, Optional, Type, TypeVar

import httpx
from pydantic import ValidationError as PydanticValidationError

from proposal_mirror.config.settings import DAO_ADDRESS, SUBGRAPH_TIMEOUT_SECONDS, SUBGRAPH_URL
from proposal_mirror.data_models.schemas import SubgraphModel, SubgraphProposal, SubgraphVote
from proposal_mirror.services.errors import RemoteFetchError
from proposal_mirror.services.subgraph_queries import (
    PROPOSAL_BY_ID_QUERY,
    PROPOSAL_BY_NUMBER_QUERY,
    PROPOSALS_QUERY,
    RECENT_PROPOSALS_QUERY,
    VOTES_QUERY,
)
from proposal_mirror.utils.logger import logger

VOTES_PAGE_SIZE = 100
RECENT_PAGE_SIZE = 100

ModelT = TypeVar("ModelT", bound=SubgraphModel)


class SubgraphError(RemoteFetchError):
    """Failed subgraph request, with the query and variables that caused it."""

    def __init__(self, message: str, query: str, variables: Optional[Dict[str, Any]] = None):
        self.message = message
        self.query = query
        self.variables = variables or {}
        super().__init__(message)


class SubgraphClient:
    """
    Client for the proposals subgraph of a single DAO.

    Every query is scoped to ``dao_address`` (lower-cased, as the subgraph
    stores addresses).
    """

    def __init__(
        self,
        url: Optional[str] = None,
        dao_address: Optional[str] = None,
        timeout: float = SUBGRAPH_TIMEOUT_SECONDS,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the subgraph client.

        Args:
            url: GraphQL endpoint (default from SUBGRAPH_URL)
            dao_address: DAO token address (default from DAO_ADDRESS)
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        self.url = url or SUBGRAPH_URL
        self.dao_address = (dao_address or DAO_ADDRESS).lower()
        self.client = httpx.Client(
            timeout=timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def _execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        """
        Run a GraphQL query and return its ``data`` object.

        Raises:
            SubgraphError: On transport failure, non-2xx status, GraphQL errors
                or a payload without data.
        """
        try:
            response = self.client.post(self.url, json={"query": query, "variables": variables})
        except httpx.HTTPError as e:
            raise SubgraphError(f"Subgraph request failed: {e}", query, variables) from e

        if not response.is_success:
            raise SubgraphError(
                f"Subgraph request failed: {response.status_code} {response.reason_phrase}",
                query,
                variables,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise SubgraphError("Subgraph returned invalid JSON", query, variables) from e

        errors = payload.get("errors") if isinstance(payload, dict) else None
        if errors:
            messages = ", ".join(str(err.get("message", err)) if isinstance(err, dict) else str(err) for err in errors)
            raise SubgraphError(f"Subgraph query error: {messages}", query, variables)

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, dict):
            raise SubgraphError("Subgraph response has no data", query, variables)
        return data

    @staticmethod
    def _parse(
        model: Type[ModelT],
        items: Optional[List[Any]],
        query: str,
        variables: Dict[str, Any],
    ) -> List[ModelT]:
        try:
            return [model.model_validate(item) for item in items or []]
        except PydanticValidationError as e:
            logger.warning("SubgraphClient: malformed %s in response: %s", model.__name__, e)
            raise SubgraphError(f"Subgraph returned malformed {model.__name__}: {e}", query, variables) from e

    def _query_proposals(self, query: str, variables: Dict[str, Any]) -> List[SubgraphProposal]:
        data = self._execute(query, variables)
        return self._parse(SubgraphProposal, data.get("proposals"), query, variables)

    def fetch_proposals(self, first: int = 20, skip: int = 0) -> List[SubgraphProposal]:
        """Fetch a page of proposals, newest first."""
        return self._query_proposals(
            PROPOSALS_QUERY, {"daoAddress": self.dao_address, "first": first, "skip": skip}
        )

    def fetch_proposal_by_number(self, proposal_number: int) -> Optional[SubgraphProposal]:
        proposals = self._query_proposals(
            PROPOSAL_BY_NUMBER_QUERY, {"daoAddress": self.dao_address, "proposalNumber": proposal_number}
        )
        return proposals[0] if proposals else None

    def fetch_proposal_by_id(self, proposal_id: str) -> Optional[SubgraphProposal]:
        proposals = self._query_proposals(
            PROPOSAL_BY_ID_QUERY, {"daoAddress": self.dao_address, "proposalId": proposal_id.lower()}
        )
        return proposals[0] if proposals else None

    def fetch_recent_proposals(
        self, since: int, first: int = RECENT_PAGE_SIZE, skip: int = 0
    ) -> List[SubgraphProposal]:
        """Fetch a page of proposals created strictly after the ``since`` unix timestamp, oldest first."""
        variables = {"daoAddress": self.dao_address, "since": str(int(since)), "first": first, "skip": skip}
        return self._query_proposals(RECENT_PROPOSALS_QUERY, variables)

    def fetch_votes(self, proposal_number: int, first: int = 50, skip: int = 0) -> List[SubgraphVote]:
        """Fetch a page of votes for a proposal, newest first."""
        variables = {
            "daoAddress": self.dao_address,
            "proposalNumber": proposal_number,
            "first": first,
            "skip": skip,
        }
        data = self._execute(VOTES_QUERY, variables)
        return self._parse(SubgraphVote, data.get("proposalVotes"), VOTES_QUERY, variables)

    def fetch_all_votes(self, proposal_number: int, page_size: int = VOTES_PAGE_SIZE) -> List[SubgraphVote]:
        """Fetch every vote of a proposal, paging until a short page."""
        votes: List[SubgraphVote] = []
        skip = 0
        while True:
            page = self.fetch_votes(proposal_number, first=page_size, skip=skip)
            votes.extend(page)
            if len(page) < page_size:
                return votes
            skip += len(page)

    def close(self):
        """Close the HTTP client."""
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
