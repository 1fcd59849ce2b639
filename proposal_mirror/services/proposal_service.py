"""Read operations over the local mirror: listing, detail and votes."""

from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Optional, Union

from proposal_mirror.data_models.schemas import (
    ListProposalsInput,
    Proposal,
    ProposalDetail,
    ProposalListResult,
    ProposalStatus,
    ProposalSummary,
    ProposalVotesInput,
    ProposalVotesResult,
    VoteSupport,
    VoteView,
    parse_input,
    parse_uint256,
)
from proposal_mirror.services.errors import ValidationError
from proposal_mirror.services.repository import ProposalRepository

ProposalIdentifier = Union[int, str]

# Statuses for which a passing/failing verdict is meaningless
_NO_RESULT_STATUSES = {ProposalStatus.PENDING, ProposalStatus.CANCELLED, ProposalStatus.VETOED}


def compute_result(proposal: Proposal) -> Optional[str]:
    if proposal.status in _NO_RESULT_STATUSES:
        return None
    for_votes = parse_uint256(proposal.for_votes, "for_votes")
    against_votes = parse_uint256(proposal.against_votes, "against_votes")
    if for_votes > against_votes:
        return "PASSING"
    if against_votes > for_votes:
        return "FAILING"
    if for_votes > 0:
        return "TIE"
    return None


def total_votes(proposal: Proposal) -> int:
    return (
        parse_uint256(proposal.for_votes, "for_votes")
        + parse_uint256(proposal.against_votes, "against_votes")
        + parse_uint256(proposal.abstain_votes, "abstain_votes")
    )


def compute_participation(proposal: Proposal) -> str:
    """Total votes as a percentage of quorum, e.g. ``"212.5% of quorum"``."""
    quorum = parse_uint256(proposal.quorum_votes, "quorum_votes")
    if quorum == 0:
        return "N/A"
    with localcontext() as ctx:
        # Tallies are uint256, far beyond the default 28 digits
        ctx.prec = 100
        percentage = (Decimal(total_votes(proposal)) * 100 / Decimal(quorum)).quantize(
            Decimal("0.1"), rounding=ROUND_HALF_UP
        )
    return f"{percentage}% of quorum"


class ProposalService:
    """
    Caller-facing reads. A proposal that is not mirrored yields ``None``.

    Identifiers are either a proposal number (int or digit string) or a
    canonical ``0x`` proposal id.
    """

    def __init__(self, repository: ProposalRepository):
        self.repository = repository

    def resolve(self, identifier: ProposalIdentifier) -> Optional[Proposal]:
        """
        Find a proposal by number or canonical id.

        Raises:
            ValidationError: If the identifier is neither numeric nor 0x-prefixed
        """
        if isinstance(identifier, bool):
            raise ValidationError(f"Invalid proposal identifier: {identifier!r}")
        if isinstance(identifier, int):
            return self.repository.get_proposal_by_number(identifier)

        text = str(identifier).strip()
        if text.lower().startswith("0x"):
            return self.repository.get_proposal_by_id(text)
        if text.isdigit():
            return self.repository.get_proposal_by_number(int(text))
        raise ValidationError(f"Invalid proposal identifier: {identifier!r}")

    def list_proposals(
        self,
        status: Optional[ProposalStatus] = None,
        limit: int = 20,
        offset: int = 0,
        order: str = "desc",
    ) -> ProposalListResult:
        params = parse_input(ListProposalsInput, status=status, limit=limit, offset=offset, order=order)
        proposals, total = self.repository.list_proposals(
            status=params.status, limit=params.limit, offset=params.offset, order=params.order
        )
        return ProposalListResult(
            proposals=[ProposalSummary(**p.model_dump()) for p in proposals],
            total=total,
            has_more=params.offset + len(proposals) < total,
        )

    def get_proposal(self, identifier: ProposalIdentifier) -> Optional[ProposalDetail]:
        proposal = self.resolve(identifier)
        if proposal is None:
            return None
        return ProposalDetail(
            **proposal.model_dump(),
            total_votes=str(total_votes(proposal)),
            participation_rate=compute_participation(proposal),
            result=compute_result(proposal),
        )

    def get_proposal_votes(
        self,
        identifier: ProposalIdentifier,
        support: Optional[Union[VoteSupport, str, int]] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Optional[ProposalVotesResult]:
        """
        Page through a proposal's votes, newest first.

        The summary counts every stored vote of the proposal, independent of
        the ``support`` filter and the page.
        """
        params = parse_input(ProposalVotesInput, support=support, limit=limit, offset=offset)
        proposal = self.resolve(identifier)
        if proposal is None:
            return None

        votes, total = self.repository.get_votes(
            proposal.proposal_number, support=params.support, limit=params.limit, offset=params.offset
        )
        return ProposalVotesResult(
            proposal_number=proposal.proposal_number,
            votes=[
                VoteView(
                    voter=vote.voter,
                    support=vote.support.name,
                    weight=vote.weight,
                    reason=vote.reason,
                    timestamp=vote.timestamp,
                    transaction_hash=vote.transaction_hash,
                )
                for vote in votes
            ],
            summary=self.repository.get_vote_summary(proposal.proposal_number),
            total=total,
            has_more=params.offset + len(votes) < total,
        )
