"""Embedding client for an OpenAI-compatible ``/embeddings`` endpoint.

Talks to the endpoint with plain ``requests`` (see :mod:`trip_planner.http`)
and runs the blocking call in a worker thread.  Vectors are memoised per
``(model, text)`` in a bounded LRU, so re-indexing the same document or
repeating a search query does not hit the network again.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from collections import OrderedDict
from typing import Dict, List, Optional

from .config import load_config
from .http import post_with_retries

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Embedding request failed after retries, or the payload was unusable."""


class VectorCache:
    """Least-recently-used map from text digest to vector."""

    def __init__(self, max_items: int = 1024) -> None:
        self.max_items = max_items
        self._items: "OrderedDict[str, List[float]]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._items)

    def get(self, digest: str) -> Optional[List[float]]:
        vector = self._items.get(digest)
        if vector is not None:
            self._items.move_to_end(digest)
        return vector

    def put(self, digest: str, vector: List[float]) -> None:
        self._items[digest] = vector
        self._items.move_to_end(digest)
        while len(self._items) > self.max_items:
            self._items.popitem(last=False)


class OpenAIEmbeddings:
    """Async embedding client with retry and an in-memory LRU."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        max_retries: int = 3,
        cache_size: int = 1024,
    ) -> None:
        cfg = load_config()
        self.api_key = api_key or cfg.openai_api_key
        self.model = model or cfg.embedding_model
        self.endpoint = f"{(base_url or cfg.openai_base_url).rstrip('/')}/embeddings"
        self.max_retries = max_retries
        self.cache = VectorCache(cache_size)

    def digest(self, text: str) -> str:
        return hashlib.md5(f"{self.model}\x00{text}".encode("utf-8")).hexdigest()

    def _request(self, texts: List[str]) -> List[List[float]]:
        resp = post_with_retries(
            self.endpoint,
            {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"},
            {"model": self.model, "input": texts},
            max_retries=self.max_retries,
            error_cls=EmbeddingError,
            label="Embeddings",
        )
        try:
            rows = sorted(resp.json()["data"], key=lambda row: row["index"])
            vectors = [row["embedding"] for row in rows]
        except (ValueError, KeyError, TypeError) as exc:
            raise EmbeddingError(f"Malformed embeddings response: {exc}") from exc
        if len(vectors) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors

    async def embed(self, text: str) -> List[float]:
        """Vector for one text."""
        return (await self.embed_batch([text]))[0]

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Vectors for *texts*, same order; one request for all cache misses.

        Duplicate texts in the batch are sent once.
        """
        if not texts:
            return []

        digests = [self.digest(t) for t in texts]
        known: Dict[str, List[float]] = {}
        missing: Dict[str, str] = {}
        for digest, text in zip(digests, texts):
            if digest in known or digest in missing:
                continue
            vector = self.cache.get(digest)
            if vector is None:
                missing[digest] = text
            else:
                known[digest] = vector

        if missing:
            logger.debug("Embedding %d texts (%d cached)", len(missing), len(known))
            fresh = await asyncio.to_thread(self._request, list(missing.values()))
            for digest, vector in zip(missing, fresh):
                known[digest] = vector
                self.cache.put(digest, vector)

        return [known[d] for d in digests]
