"""Text chunking for embedding generation."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import List

from proposal_mirror.services.errors import ValidationError

DEFAULT_MAX_CHUNK_SIZE = 500
DEFAULT_OVERLAP = 50
# Trailing window searched for a natural break point
BOUNDARY_WINDOW = 100

_LINE_ENDINGS = re.compile(r"\r\n?")
_EXCESS_NEWLINES = re.compile(r"\n{3,}")
_SENTENCE_END = re.compile(r"[.!?]\s+(?=[A-Z])")

_CODE_FENCE = re.compile(r"```[\s\S]*?```")
_CODE_SPAN = re.compile(r"`[^`\n]+`")
_HEADING = re.compile(r"#{1,6}\s+")
_UNORDERED_ITEM = re.compile(r"^[ \t]*[-*+][ \t]+", re.MULTILINE)
_ORDERED_ITEM = re.compile(r"^[ \t]*\d+\.[ \t]+", re.MULTILINE)
_EMPHASIS = re.compile(r"\*{1,2}([^*]+)\*{1,2}")
_IMAGE = re.compile(r"!\[([^\]]*)\]\([^)]+\)")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")


@dataclass(frozen=True)
class TextChunk:
    """A contiguous piece of the cleaned input, numbered from 0."""

    text: str
    index: int


def clean_text(text: str) -> str:
    normalized = _LINE_ENDINGS.sub("\n", text or "")
    return _EXCESS_NEWLINES.sub("\n\n", normalized).strip()


def chunk_text(
    text: str,
    max_chunk_size: int = DEFAULT_MAX_CHUNK_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> List[TextChunk]:
    """Split text into overlapping chunks, preferring sentence and line boundaries.

    Every chunk is at most ``max_chunk_size`` characters. Consecutive chunks
    share up to ``overlap`` characters and together they cover the whole
    cleaned text.
    """
    if max_chunk_size <= 0:
        raise ValidationError("max_chunk_size must be positive")
    if overlap < 0 or overlap >= max_chunk_size:
        raise ValidationError("overlap must be in [0, max_chunk_size)")

    cleaned = clean_text(text)
    if len(cleaned) <= max_chunk_size:
        return [TextChunk(text=cleaned, index=0)]

    length = len(cleaned)
    chunks: List[TextChunk] = []
    position = 0
    while position < length:
        end = min(position + max_chunk_size, length)
        if end < length:
            end = _find_break(cleaned, position, end, max_chunk_size, overlap)

        piece = cleaned[position:end].strip()
        if piece:
            chunks.append(TextChunk(text=piece, index=len(chunks)))

        next_position = end - overlap
        if next_position >= length - overlap:
            break
        position = next_position
    return chunks


def _find_break(text: str, position: int, end: int, max_chunk_size: int, overlap: int) -> int:
    """Return the best break offset in the trailing window before ``end``."""
    search_start = max(position + max_chunk_size - BOUNDARY_WINDOW, position)
    window = text[search_start:end]

    candidates = []
    sentence_ends = list(_SENTENCE_END.finditer(window))
    if sentence_ends and sentence_ends[-1].start() > 0:
        candidates.append(search_start + sentence_ends[-1].end())
    paragraph = window.rfind("\n\n")
    if paragraph > 0:
        candidates.append(search_start + paragraph + 2)
    line = window.rfind("\n")
    if line > 0:
        candidates.append(search_start + line + 1)

    # A break inside the overlap would stall the cursor
    for candidate in candidates:
        if position < candidate - overlap and candidate <= end:
            return candidate
    return end


def prepare_proposal_text(title: str, description: str) -> str:
    """Combine title and markdown description into plain text for embedding."""
    body = description or ""
    body = _CODE_FENCE.sub("", body)
    body = _CODE_SPAN.sub("", body)
    body = _HEADING.sub("", body)
    body = _UNORDERED_ITEM.sub("", body)
    body = _ORDERED_ITEM.sub("", body)
    body = _EMPHASIS.sub(r"\1", body)
    body = _IMAGE.sub(r"\1", body)
    body = _LINK.sub(r"\1", body)
    return f"{title or ''}\n\n{body}".strip()


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
