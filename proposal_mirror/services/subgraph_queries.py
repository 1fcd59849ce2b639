"""GraphQL documents for the governor subgraph."""

PROPOSAL_FIELDS = """
    id
    proposalId
    proposalNumber
    title
    description
    proposer
    timeCreated
    voteStart
    voteEnd
    snapshotBlockNumber
    forVotes
    againstVotes
    abstainVotes
    quorumVotes
    executed
    canceled
    vetoed
    queued
    transactionHash
    executableFrom
    expiresAt
"""

VOTE_FIELDS = """
    id
    voter
    support
    weight
    reason
    timestamp
    transactionHash
    proposal {
      proposalNumber
      title
    }
"""

PROPOSALS_QUERY = f"""
  query GetProposals($daoAddress: String!, $first: Int!, $skip: Int!) {{
    proposals(
      where: {{ dao: $daoAddress }}
      orderBy: timeCreated
      orderDirection: desc
      first: $first
      skip: $skip
    ) {{{PROPOSAL_FIELDS}    }}
  }}
"""

PROPOSAL_BY_NUMBER_QUERY = f"""
  query GetProposalByNumber($daoAddress: String!, $proposalNumber: Int!) {{
    proposals(where: {{ dao: $daoAddress, proposalNumber: $proposalNumber }}, first: 1) {{{PROPOSAL_FIELDS}    }}
  }}
"""

PROPOSAL_BY_ID_QUERY = f"""
  query GetProposalById($daoAddress: String!, $proposalId: String!) {{
    proposals(where: {{ dao: $daoAddress, proposalId: $proposalId }}, first: 1) {{{PROPOSAL_FIELDS}    }}
  }}
"""

VOTES_QUERY = f"""
  query GetProposalVotes($daoAddress: String!, $proposalNumber: Int!, $first: Int!, $skip: Int!) {{
    proposalVotes(
      where: {{ proposal_: {{ dao: $daoAddress, proposalNumber: $proposalNumber }} }}
      orderBy: timestamp
      orderDirection: desc
      first: $first
      skip: $skip
    ) {{{VOTE_FIELDS}    }}
  }}
"""

RECENT_PROPOSALS_QUERY = f"""
  query GetRecentProposals($daoAddress: String!, $since: BigInt!, $first: Int!, $skip: Int!) {{
    proposals(
      where: {{ dao: $daoAddress, timeCreated_gt: $since }}
      orderBy: timeCreated
      orderDirection: asc
      first: $first
      skip: $skip
    ) {{{PROPOSAL_FIELDS}    }}
  }}
"""
