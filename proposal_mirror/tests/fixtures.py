"""Sample subgraph payloads and a deterministic stand-in for the embedding model."""
import hashlib
import re
from typing import Any, Dict, List

import numpy as np

from ..data_models.schemas import SubgraphProposal, SubgraphVote

DAO = "0x880fb3cf5c6cc2d7dfc13a993e839a9411200c17"

# 2023-11-14: voting on the sample proposal ran from +1 day to +8 days
TIME_CREATED = 1700000000
VOTE_START = 1700086400
VOTE_END = 1700691200
AFTER_VOTING = VOTE_END + 3600

PROPOSAL_PAYLOAD: Dict[str, Any] = {
    "id": f"{DAO}-0x1234567890abcdef",
    "proposalId": "0x1234567890abcdef1234567890abcdef1234567890abcdef1234567890abcdef",
    "proposalNumber": 42,
    "title": "Sponsor Skater X for Olympics",
    "description": (
        "## Summary\n\nThis proposal requests 5 ETH to sponsor our beloved skater for the "
        "upcoming Olympics.\n\n## Details\n\n- Travel expenses: 2 ETH\n- Equipment: 1.5 ETH\n"
        "- Training costs: 1.5 ETH"
    ),
    "proposer": "0xABCDEF1234567890abcdef1234567890abcdef12",
    "timeCreated": str(TIME_CREATED),
    "voteStart": str(VOTE_START),
    "voteEnd": str(VOTE_END),
    "snapshotBlockNumber": "12345678",
    "forVotes": "10",
    "againstVotes": "5",
    "abstainVotes": "2",
    "quorumVotes": "8",
    "executed": False,
    "canceled": False,
    "vetoed": False,
    "queued": False,
    "transactionHash": "0xtxhash1234567890",
    "executableFrom": None,
    "expiresAt": None,
}


def proposal_payload(**overrides) -> Dict[str, Any]:
    """Raw subgraph proposal dict; keyword overrides use the camelCase names."""
    payload = dict(PROPOSAL_PAYLOAD)
    payload.update(overrides)
    number = payload["proposalNumber"]
    if "proposalId" not in overrides and number != PROPOSAL_PAYLOAD["proposalNumber"]:
        payload["proposalId"] = "0x" + f"{number:064x}"
        payload["id"] = f"{DAO}-{payload['proposalId']}"
    return payload


def make_proposal(**overrides) -> SubgraphProposal:
    return SubgraphProposal.model_validate(proposal_payload(**overrides))


def vote_payload(vote_id: str, support: int = 1, proposal_number: int = 42, **overrides) -> Dict[str, Any]:
    payload = {
        "id": vote_id,
        "voter": "0x" + hashlib.sha1(vote_id.encode()).hexdigest()[:40],
        "support": support,
        "weight": "3",
        "reason": None,
        "timestamp": str(VOTE_START + 100),
        "transactionHash": f"0xhash-{vote_id}",
        "proposal": {"proposalNumber": proposal_number, "title": "Sponsor Skater X for Olympics"},
    }
    payload.update(overrides)
    return payload


def make_vote(vote_id: str, support: int = 1, proposal_number: int = 42, **overrides) -> SubgraphVote:
    return SubgraphVote.model_validate(vote_payload(vote_id, support, proposal_number, **overrides))


class FakeSentenceModel:
    """
    Bag-of-words encoder with the ``SentenceTransformer.encode`` signature.

    Each lower-cased word adds 1.0 to a dimension chosen by hashing the word,
    so texts sharing words point in similar directions.
    """

    def __init__(self, dimension: int = 384):
        self.dimension = dimension
        self.calls: List[List[str]] = []

    def encode(self, sentences, **kwargs):
        self.calls.append(list(sentences))
        matrix = np.zeros((len(sentences), self.dimension), dtype=np.float32)
        for row, sentence in enumerate(sentences):
            for word in re.findall(r"[a-z0-9]+", sentence.lower()):
                column = int(hashlib.md5(word.encode()).hexdigest(), 16) % self.dimension
                matrix[row, column] += 1.0
        return matrix
