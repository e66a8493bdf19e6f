"""Per-trip retrieval index with hybrid search.

Three search modes over a trip's document chunks:

1. **keyword**  -- count of distinct query terms found as substrings (top 20)
2. **semantic** -- cosine similarity against the query embedding (top 10)
3. **both**     -- semantic hits first, then keyword hits not already
   present, capped at 15

Notes live in a separate collection and are searched semantically only.

Chunks whose embedding length differs from the query embedding (stale
vectors from another model) are skipped rather than failing the search.
Mutating methods expect the caller to hold the trip's lock; searches read
whatever was last written.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from .models import Chunk, IndexEntry, NoteChunk
from .store import TripStore

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Awaitable[List[float]]]

MAX_KEYWORD_MATCHES = 20
MAX_SEMANTIC_MATCHES = 10
MAX_COMBINED_MATCHES = 15
MAX_NOTE_MATCHES = 10


class SearchMode(str, enum.Enum):
    KEYWORD = "keyword"
    SEMANTIC = "semantic"
    BOTH = "both"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SearchMode":
        """Unknown or missing modes fall back to keyword."""
        try:
            return cls(value)
        except ValueError:
            return cls.KEYWORD


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity of two equal-length vectors; 0.0 if either has zero magnitude."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        raise ValueError(f"dimension mismatch: {va.shape} vs {vb.shape}")
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0.0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def _query_terms(query: str) -> List[str]:
    seen: Dict[str, None] = {}
    for term in query.lower().split():
        seen.setdefault(term, None)
    return list(seen)


def keyword_search(
    chunks: Sequence[Chunk],
    query: str,
    limit: int = MAX_KEYWORD_MATCHES,
) -> List[Tuple[Chunk, int]]:
    """Substring term-count scoring; ties keep insertion order."""
    terms = _query_terms(query)
    if not terms:
        return []
    scored: List[Tuple[Chunk, int]] = []
    for chunk in chunks:
        text = chunk.text.lower()
        score = sum(1 for t in terms if t in text)
        if score > 0:
            scored.append((chunk, score))
    scored.sort(key=lambda x: x[1], reverse=True)  # stable
    return scored[:limit]


def rank_by_similarity(
    items: Sequence[Tuple[object, Optional[List[float]]]],
    query_vec: Sequence[float],
    limit: int,
) -> List[Tuple[object, float]]:
    """Score ``(item, embedding)`` pairs against *query_vec*, best first.

    Items without an embedding, or with a different dimensionality, are
    skipped.
    """
    dims = len(query_vec)
    scored: List[Tuple[object, float]] = []
    for item, emb in items:
        if not emb or len(emb) != dims:
            continue
        scored.append((item, cosine_similarity(emb, query_vec)))
    scored.sort(key=lambda x: x[1], reverse=True)
    return scored[:limit]


def merge_hybrid(
    semantic: Sequence[Chunk],
    keyword: Sequence[Chunk],
    limit: int = MAX_COMBINED_MATCHES,
) -> List[Chunk]:
    """Semantic hits first, then keyword hits whose id is not already present."""
    seen = {c.id for c in semantic}
    merged = list(semantic)
    merged.extend(c for c in keyword if c.id not in seen)
    return merged[:limit]


@dataclass
class SearchOutcome:
    """Results of one search plus how they were produced.

    ``mode`` is the requested mode, or ``keyword_only`` when ``both`` lost
    its semantic layer.  ``degraded`` is set whenever semantic results were
    expected but could not be computed.
    """

    results: List[Chunk] = field(default_factory=list)
    mode: str = SearchMode.KEYWORD.value
    degraded: bool = False


class VectorIndex:
    """Chunk and note-chunk collections per trip, backed by :class:`TripStore`."""

    def __init__(self, store: TripStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Writes (caller holds the trip lock)
    # ------------------------------------------------------------------

    def _load_or_new(self, owner_id: str) -> IndexEntry:
        return self.store.load_index(owner_id) or IndexEntry(owner_id=owner_id)

    def append_chunks(self, owner_id: str, chunks: Sequence[Chunk]) -> IndexEntry:
        """Append chunks (no dedup), creating the entry if needed."""
        existing = self._load_or_new(owner_id)
        entry = IndexEntry(
            owner_id=owner_id,
            chunks=[*existing.chunks, *chunks],
            note_chunks=list(existing.note_chunks),
        )
        self.store.save_index(entry)
        logger.debug("Index %s: +%d chunks (total %d)", owner_id, len(chunks), len(entry.chunks))
        return entry

    def append_note_chunk(self, owner_id: str, note: NoteChunk) -> IndexEntry:
        existing = self._load_or_new(owner_id)
        return self.replace_note_chunks(owner_id, [*existing.note_chunks, note], existing)

    def replace_note_chunks(
        self,
        owner_id: str,
        note_chunks: Sequence[NoteChunk],
        existing: Optional[IndexEntry] = None,
    ) -> IndexEntry:
        existing = existing or self._load_or_new(owner_id)
        entry = IndexEntry(
            owner_id=owner_id,
            chunks=list(existing.chunks),
            note_chunks=list(note_chunks),
        )
        self.store.save_index(entry)
        return entry

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def summary(self, owner_id: str) -> Optional[Dict[str, int]]:
        entry = self.store.load_index(owner_id)
        if entry is None:
            return None
        return {
            "chunk_count": len(entry.chunks),
            "note_chunk_count": len(entry.note_chunks),
        }

    async def search(
        self,
        owner_id: str,
        query: str,
        mode: SearchMode | str,
        embed_fn: Optional[EmbedFn] = None,
    ) -> SearchOutcome:
        """Search a trip's document chunks.

        Semantic results need at least one stored embedding and an
        ``embed_fn``; without them the semantic layer is simply empty.  In
        ``both`` mode an embedding failure degrades to keyword results; in
        ``semantic`` mode it propagates.
        """
        mode = SearchMode(mode)
        outcome = SearchOutcome(mode=mode.value)

        q = (query or "").strip()
        if not q:
            return outcome

        entry = self.store.load_index(owner_id)
        chunks = list(entry.chunks) if entry else []
        if not chunks:
            return outcome

        keyword_hits: List[Chunk] = []
        if mode in (SearchMode.KEYWORD, SearchMode.BOTH):
            keyword_hits = [c for c, _ in keyword_search(chunks, q)]

        semantic_hits: List[Chunk] = []
        if mode in (SearchMode.SEMANTIC, SearchMode.BOTH):
            try:
                semantic_hits = await self._semantic(chunks, q, embed_fn)
            except Exception as exc:
                if mode is SearchMode.SEMANTIC:
                    raise
                logger.warning("Semantic search failed (keyword fallback): %s", exc)
                outcome.degraded = True
                outcome.mode = "keyword_only"
            else:
                outcome.degraded = not semantic_hits

        if mode is SearchMode.BOTH:
            outcome.results = merge_hybrid(semantic_hits, keyword_hits)
        elif mode is SearchMode.SEMANTIC:
            outcome.results = semantic_hits
        else:
            outcome.results = keyword_hits
        return outcome

    async def _semantic(
        self,
        chunks: Sequence[Chunk],
        query: str,
        embed_fn: Optional[EmbedFn],
    ) -> List[Chunk]:
        """Cosine-ranked chunks; empty when nothing can be compared."""
        if embed_fn is None or not any(c.embedding for c in chunks):
            return []
        query_vec = await embed_fn(query)
        ranked = rank_by_similarity(
            [(c, c.embedding) for c in chunks], query_vec, MAX_SEMANTIC_MATCHES,
        )
        if not ranked:
            logger.debug("No chunk embeddings match query dimensionality %d", len(query_vec))
        return [c for c, _ in ranked]  # type: ignore[misc]

    async def search_notes(
        self,
        owner_id: str,
        query: str,
        embed_fn: EmbedFn,
    ) -> List[Tuple[NoteChunk, float]]:
        """Semantic-only note search, best first, top 10."""
        entry = self.store.load_index(owner_id)
        notes = list(entry.note_chunks) if entry else []
        q = (query or "").strip()
        if not q or not any(n.embedding for n in notes):
            return []
        query_vec = await embed_fn(q)
        ranked = rank_by_similarity(
            [(n, n.embedding) for n in notes], query_vec, MAX_NOTE_MATCHES,
        )
        return [(n, score) for n, score in ranked]  # type: ignore[misc]
