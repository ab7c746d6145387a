"""
schemas.py — MatcherAgent Pydantic v2 data contracts.

Defines:
  - ChunkMetadata   (where a chunk came from inside the corpus)
  - RetrievedChunk  (one nearest-neighbour hit — text, metadata, distance)
  - SourceCitation  (trimmed citation surfaced to the client)

Chunk dicts in chunks.pkl use the same keys as ChunkMetadata plus "text".
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

EXCERPT_PREVIEW_CHARS = 150


class ChunkMetadata(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    chunk_id: Optional[str] = None
    source_file: str = "unknown"
    page: Optional[int] = None
    chunk_index: Optional[int] = None
    total_chunks: Optional[int] = None


class RetrievedChunk(BaseModel):
    """
    One retrieval hit. distance is cosine distance (1 - cosine similarity),
    so lists returned by the retriever are ascending by distance.
    Read-only to the orchestrator; lives for one request.
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    text: str
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)
    distance: Optional[float] = None


class SourceCitation(BaseModel):
    """
    Citation entry in the explain response. Field names are the wire names.

    excerpt is the chunk text cut to EXCERPT_PREVIEW_CHARS, with "..." appended
    when it was cut.
    """
    model_config = ConfigDict(extra="forbid")

    file: str
    page: Optional[int] = None
    chunk_id: Optional[int] = None
    excerpt: str

    @classmethod
    def from_chunk(cls, chunk: RetrievedChunk) -> "SourceCitation":
        text = chunk.text
        excerpt = text[:EXCERPT_PREVIEW_CHARS]
        if len(text) > EXCERPT_PREVIEW_CHARS:
            excerpt += "..."
        return cls(
            file=chunk.metadata.source_file or "unknown",
            page=chunk.metadata.page or None,
            chunk_id=chunk.metadata.chunk_index,
            excerpt=excerpt,
        )


__all__ = [
    "ChunkMetadata",
    "RetrievedChunk",
    "SourceCitation",
    "EXCERPT_PREVIEW_CHARS",
]
