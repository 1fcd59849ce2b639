"""DDL for the local proposal mirror, one script per supported dialect."""

from proposal_mirror.config.database_config import POSTGRES, SQLITE

_INDEXES = """
CREATE INDEX IF NOT EXISTS idx_proposals_status ON proposals(status);
CREATE INDEX IF NOT EXISTS idx_proposals_time ON proposals(time_created DESC);
CREATE INDEX IF NOT EXISTS idx_proposals_number ON proposals(proposal_number);
CREATE INDEX IF NOT EXISTS idx_votes_proposal ON votes(proposal_id);
CREATE INDEX IF NOT EXISTS idx_votes_voter ON votes(voter);
CREATE INDEX IF NOT EXISTS idx_votes_proposal_number ON votes(proposal_number);
CREATE INDEX IF NOT EXISTS idx_embeddings_proposal ON embeddings(proposal_id);
"""

# Tallies are TEXT: they are uint256 values and would overflow INTEGER/BIGINT
_TABLES = """
CREATE TABLE IF NOT EXISTS proposals (
  proposal_number {int} PRIMARY KEY,
  proposal_id TEXT UNIQUE NOT NULL,
  title TEXT NOT NULL DEFAULT '',
  description TEXT NOT NULL DEFAULT '',
  proposer TEXT NOT NULL,
  status TEXT NOT NULL,
  time_created {bigint} NOT NULL,
  vote_start {bigint} NOT NULL,
  vote_end {bigint} NOT NULL,
  snapshot_block TEXT,
  for_votes TEXT NOT NULL DEFAULT '0',
  against_votes TEXT NOT NULL DEFAULT '0',
  abstain_votes TEXT NOT NULL DEFAULT '0',
  quorum_votes TEXT NOT NULL DEFAULT '0',
  executed INTEGER NOT NULL DEFAULT 0,
  canceled INTEGER NOT NULL DEFAULT 0,
  vetoed INTEGER NOT NULL DEFAULT 0,
  queued INTEGER NOT NULL DEFAULT 0,
  transaction_hash TEXT,
  expires_at {bigint},
  executable_from {bigint},
  updated_at {bigint} NOT NULL
);

CREATE TABLE IF NOT EXISTS votes (
  id TEXT PRIMARY KEY,
  proposal_id TEXT NOT NULL REFERENCES proposals(proposal_id) ON UPDATE CASCADE,
  proposal_number {int} NOT NULL,
  voter TEXT NOT NULL,
  support INTEGER NOT NULL,
  weight TEXT NOT NULL,
  reason TEXT,
  timestamp {bigint} NOT NULL,
  transaction_hash TEXT
);

CREATE TABLE IF NOT EXISTS sync_metadata (
  key TEXT PRIMARY KEY,
  value TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS embeddings (
  id {serial},
  proposal_id TEXT NOT NULL REFERENCES proposals(proposal_id) ON UPDATE CASCADE,
  chunk_index INTEGER NOT NULL DEFAULT 0,
  chunk_text TEXT NOT NULL,
  embedding {blob} NOT NULL,
  text_hash TEXT,
  created_at {bigint} NOT NULL,
  UNIQUE (proposal_id, chunk_index)
);
"""

SQLITE_SCHEMA = _TABLES.format(
    int="INTEGER",
    bigint="INTEGER",
    serial="INTEGER PRIMARY KEY AUTOINCREMENT",
    blob="BLOB",
) + _INDEXES

POSTGRES_SCHEMA = _TABLES.format(
    int="INTEGER",
    bigint="BIGINT",
    serial="BIGSERIAL PRIMARY KEY",
    blob="BYTEA",
) + _INDEXES

SCHEMAS = {
    SQLITE: SQLITE_SCHEMA,
    POSTGRES: POSTGRES_SCHEMA,
}
