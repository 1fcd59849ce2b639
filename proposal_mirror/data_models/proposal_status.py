"""Derive a proposal's lifecycle status from its flags, timings and tallies."""
import time
from typing import Optional

from .schemas import ProposalStatus, SubgraphProposal, parse_timestamp, parse_uint256


def calculate_proposal_status(proposal: SubgraphProposal, now: Optional[int] = None) -> ProposalStatus:
    """Compute the status the governor would report at ``now`` (unix seconds)."""
    if now is None:
        now = int(time.time())

    # Terminal flags win over timing
    if proposal.vetoed:
        return ProposalStatus.VETOED
    if proposal.canceled:
        return ProposalStatus.CANCELLED
    if proposal.executed:
        return ProposalStatus.EXECUTED
    if proposal.queued:
        return ProposalStatus.QUEUED

    vote_start = parse_timestamp(proposal.vote_start, "voteStart") or 0
    vote_end = parse_timestamp(proposal.vote_end, "voteEnd") or 0
    if now < vote_start:
        return ProposalStatus.PENDING
    if now <= vote_end:
        return ProposalStatus.ACTIVE

    for_votes = parse_uint256(proposal.for_votes, "forVotes")
    against_votes = parse_uint256(proposal.against_votes, "againstVotes")
    quorum = parse_uint256(proposal.quorum_votes, "quorumVotes")

    if for_votes <= against_votes:
        return ProposalStatus.DEFEATED
    if for_votes < quorum:
        return ProposalStatus.DEFEATED

    # Past the execution window
    expires_at = parse_timestamp(proposal.expires_at, "expiresAt")
    if expires_at is not None and now > expires_at:
        return ProposalStatus.EXPIRED

    return ProposalStatus.SUCCEEDED
