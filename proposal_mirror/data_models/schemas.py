"""Pydantic models for the proposal mirror.

Boundary models (``Subgraph*``) mirror the GraphQL payloads: every on-chain
integer arrives as a decimal string and stays a string until
``parse_uint256`` validates its range. Stored models (``Proposal``, ``Vote``,
``EmbeddingChunk``) are what the repository returns. The remaining models are
the structured results of the caller-facing operations.
"""
import re
from enum import Enum, IntEnum
from typing import List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from proposal_mirror.services.errors import ValidationError

UINT256_MAX = 2 ** 256 - 1
_DECIMAL_PATTERN = re.compile(r"^\d+$")


def parse_uint256(value: Optional[str], field: str = "value") -> int:
    """Convert a decimal string to int after checking it fits in a uint256."""
    if value is None or value == "":
        return 0
    text = str(value).strip()
    if not _DECIMAL_PATTERN.match(text):
        raise ValidationError(f"{field} must be an unsigned decimal string, got {value!r}")
    number = int(text)
    if number > UINT256_MAX:
        raise ValidationError(f"{field} exceeds uint256 range")
    return number


def parse_timestamp(value: Optional[str], field: str = "timestamp") -> Optional[int]:
    """Convert a unix timestamp string to int; empty values stay None."""
    if value is None or value == "":
        return None
    number = parse_uint256(value, field)
    if number > 2 ** 63 - 1:
        raise ValidationError(f"{field} exceeds int64 range")
    return number


class ProposalStatus(str, Enum):
    """Lifecycle status of a governance proposal."""
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    DEFEATED = "DEFEATED"
    SUCCEEDED = "SUCCEEDED"
    QUEUED = "QUEUED"
    EXPIRED = "EXPIRED"
    EXECUTED = "EXECUTED"
    VETOED = "VETOED"


class VoteSupport(IntEnum):
    """On-chain support values used by the governor contract."""
    AGAINST = 0
    FOR = 1
    ABSTAIN = 2

    @classmethod
    def from_label(cls, label: str) -> "VoteSupport":
        try:
            return cls[label.strip().upper()]
        except KeyError:
            raise ValidationError(f"Unknown vote support: {label!r}") from None


# ==================
# Subgraph Schemas
# ==================

class SubgraphModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class SubgraphProposal(SubgraphModel):
    """Proposal as returned by the subgraph."""
    id: str
    proposal_id: str = Field(..., alias="proposalId")
    proposal_number: int = Field(..., alias="proposalNumber")
    title: Optional[str] = ""
    description: Optional[str] = ""
    proposer: str
    time_created: str = Field(..., alias="timeCreated")
    vote_start: str = Field(..., alias="voteStart")
    vote_end: str = Field(..., alias="voteEnd")
    snapshot_block_number: Optional[str] = Field(None, alias="snapshotBlockNumber")
    for_votes: str = Field("0", alias="forVotes")
    against_votes: str = Field("0", alias="againstVotes")
    abstain_votes: str = Field("0", alias="abstainVotes")
    quorum_votes: str = Field("0", alias="quorumVotes")
    executed: bool = False
    canceled: bool = False
    vetoed: bool = False
    queued: bool = False
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")
    executable_from: Optional[str] = Field(None, alias="executableFrom")
    expires_at: Optional[str] = Field(None, alias="expiresAt")

    @field_validator(
        "time_created", "vote_start", "vote_end",
        "for_votes", "against_votes", "abstain_votes", "quorum_votes",
        mode="before",
    )
    @classmethod
    def _decimal_string(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if not isinstance(v, str) or not _DECIMAL_PATTERN.match(v):
            raise ValueError(f"expected an unsigned decimal string, got {v!r}")
        return v


class SubgraphVoteProposal(SubgraphModel):
    proposal_number: int = Field(..., alias="proposalNumber")
    title: Optional[str] = None


class SubgraphVote(SubgraphModel):
    """Vote as returned by the subgraph."""
    id: str
    voter: str
    support: VoteSupport
    weight: str
    reason: Optional[str] = None
    timestamp: str
    transaction_hash: Optional[str] = Field(None, alias="transactionHash")
    proposal: SubgraphVoteProposal

    @field_validator("weight", "timestamp", mode="before")
    @classmethod
    def _decimal_string(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            v = str(v)
        if not isinstance(v, str) or not _DECIMAL_PATTERN.match(v):
            raise ValueError(f"expected an unsigned decimal string, got {v!r}")
        return v


# ==================
# Stored Records
# ==================

class Proposal(BaseModel):
    """Proposal row in the local mirror."""
    proposal_id: str
    proposal_number: int
    title: str = ""
    description: str = ""
    proposer: str
    status: ProposalStatus
    time_created: int
    vote_start: int
    vote_end: int
    snapshot_block: Optional[str] = None
    for_votes: str = "0"
    against_votes: str = "0"
    abstain_votes: str = "0"
    quorum_votes: str = "0"
    executed: bool = False
    canceled: bool = False
    vetoed: bool = False
    queued: bool = False
    transaction_hash: Optional[str] = None
    expires_at: Optional[int] = None
    executable_from: Optional[int] = None
    updated_at: int


class Vote(BaseModel):
    """Vote row in the local mirror."""
    id: str
    proposal_id: str
    proposal_number: int
    voter: str
    support: VoteSupport
    weight: str
    reason: Optional[str] = None
    timestamp: int
    transaction_hash: Optional[str] = None


class EmbeddingChunk(BaseModel):
    """Embedded chunk joined with the owning proposal's number, title and status."""
    proposal_id: str
    proposal_number: int
    title: str
    status: ProposalStatus
    chunk_index: int
    chunk_text: str
    embedding: List[float]


class VoteSummary(BaseModel):
    total_voters: int = 0
    for_voters: int = 0
    against_voters: int = 0
    abstain_voters: int = 0


class EmbeddingStats(BaseModel):
    total_proposals: int = 0
    embedded_proposals: int = 0
    total_chunks: int = 0


# ==================
# Operation Inputs
# ==================

class ListProposalsInput(BaseModel):
    status: Optional[ProposalStatus] = Field(None, description="Filter by proposal status")
    limit: int = Field(20, ge=1, le=100, description="Number of proposals to return")
    offset: int = Field(0, ge=0, description="Offset for pagination")
    order: Literal["asc", "desc"] = Field("desc", description="Sort order by creation time")


class ProposalVotesInput(BaseModel):
    support: Optional[VoteSupport] = Field(None, description="Filter by vote type")
    limit: int = Field(50, ge=1, le=200, description="Number of votes to return")
    offset: int = Field(0, ge=0, description="Offset for pagination")

    @field_validator("support", mode="before")
    @classmethod
    def _support_label(cls, v):
        if isinstance(v, str):
            return int(v) if v.isdigit() else VoteSupport.from_label(v)
        return v


class SearchProposalsInput(BaseModel):
    query: str = Field(..., min_length=3, description="Natural language search query")
    limit: int = Field(5, ge=1, le=20, description="Maximum number of results to return")
    status: Optional[ProposalStatus] = Field(None, description="Filter results by proposal status")
    threshold: float = Field(0.3, ge=0, le=1, description="Minimum similarity score (0-1)")


# ==================
# Operation Results
# ==================

class ProposalSummary(BaseModel):
    proposal_number: int
    title: str
    status: ProposalStatus
    proposer: str
    for_votes: str
    against_votes: str
    abstain_votes: str
    quorum_votes: str
    vote_start: int
    vote_end: int
    time_created: int


class ProposalListResult(BaseModel):
    proposals: List[ProposalSummary]
    total: int
    has_more: bool


class ProposalDetail(BaseModel):
    proposal_id: str
    proposal_number: int
    title: str
    description: str
    status: ProposalStatus
    proposer: str
    for_votes: str
    against_votes: str
    abstain_votes: str
    quorum_votes: str
    vote_start: int
    vote_end: int
    time_created: int
    executed: bool
    canceled: bool
    vetoed: bool
    queued: bool
    transaction_hash: Optional[str] = None
    total_votes: str
    participation_rate: str
    result: Optional[Literal["PASSING", "FAILING", "TIE"]] = None


class VoteView(BaseModel):
    voter: str
    support: str
    weight: str
    reason: Optional[str] = None
    timestamp: int
    transaction_hash: Optional[str] = None


class ProposalVotesResult(BaseModel):
    proposal_number: int
    votes: List[VoteView]
    summary: VoteSummary
    total: int
    has_more: bool


class SearchHit(BaseModel):
    proposal_number: int
    title: str
    status: ProposalStatus
    relevant_excerpt: str
    similarity: float


class SearchResult(BaseModel):
    results: List[SearchHit] = Field(default_factory=list)
    query: str
    embeddings_indexed: int


class SyncResult(BaseModel):
    synced: int = 0
    updated: int = 0
    errors: List[str] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list)
    previous_sync_time: Optional[int] = None
    last_sync_time: int


class IndexResult(BaseModel):
    indexed: int = 0
    reindexed: int = 0
    errors: List[str] = Field(default_factory=list)


InputT = TypeVar("InputT", bound=BaseModel)


def parse_input(model: Type[InputT], **values) -> InputT:
    """Validate operation arguments, raising ValidationError with pydantic's messages."""
    try:
        return model(**values)
    except PydanticValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc']) or 'input'}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid {model.__name__}: {details}") from e
