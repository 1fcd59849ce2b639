"""Local mirror of DAO governance proposals with semantic search."""

__version__ = "0.1.0"
