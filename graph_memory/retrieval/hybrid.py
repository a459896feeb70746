"""
Semantic, keyword and hybrid search with Reciprocal Rank Fusion.

Hybrid search runs the vector query and the keyword query concurrently and
fuses the two rankings::

    score(d) = Σ weight[s] / (K + rank_s(d))   for each source s that returned d

with ``K = 60`` and weights 0.7 (semantic) / 0.3 (keyword).  Ranks are
1-based; equal scores keep first-encounter order, semantic list first.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from ..errors import ConfigurationError, EmbeddingError, StoreConnectionError
from ..store.chunk_store import ChunkGraphStore
from ..store.models import ChunkType, SearchResult, chunk_identity
from .keyword_index import KeywordDocument, KeywordHit, KeywordIndex

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

RRF_K = 60
SEMANTIC_WEIGHT = 0.7
KEYWORD_WEIGHT = 0.3

SEARCH_MODES = ("semantic", "keyword", "hybrid")

_FATAL_ERRORS = (ConfigurationError, EmbeddingError, StoreConnectionError)


# ---------------------------------------------------------------------------
# Fusion
# ---------------------------------------------------------------------------

def reciprocal_rank_fusion(
    semantic_ids: list[str],
    keyword_ids: list[str],
    semantic_weight: float = SEMANTIC_WEIGHT,
    keyword_weight: float = KEYWORD_WEIGHT,
    k: int = RRF_K,
) -> list[tuple[str, float]]:
    """
    Fuse two ranked id lists.

    Only the first occurrence of an id in a list counts as its rank.

    Returns
    -------
    list[tuple[str, float]]
        ``(doc_id, fused_score)`` sorted by descending score.
    """
    scores: dict[str, float] = {}
    for weight, ranked in ((semantic_weight, semantic_ids), (keyword_weight, keyword_ids)):
        seen: set[str] = set()
        for rank, doc_id in enumerate(ranked, start=1):
            if doc_id in seen:
                continue
            seen.add(doc_id)
            scores[doc_id] = scores.get(doc_id, 0.0) + weight / (k + rank)

    # dicts keep insertion order and sorted() is stable: ties stay first-seen.
    return sorted(scores.items(), key=lambda item: item[1], reverse=True)


def keyword_hit_to_result(hit: KeywordHit) -> SearchResult:
    data = dict(hit.fields)
    data["entity_name"] = hit.doc_id
    # The keyword index only holds metadata chunks.
    data.setdefault("chunk_type", ChunkType.METADATA)
    return SearchResult(score=hit.score, data=data)


def fuse_results(
    semantic: list[SearchResult],
    keyword: list[KeywordHit],
    limit: int,
    semantic_weight: float = SEMANTIC_WEIGHT,
    keyword_weight: float = KEYWORD_WEIGHT,
    k: int = RRF_K,
) -> list[SearchResult]:
    """
    Fuse semantic results and keyword hits into scored results.

    Documents are individual chunks, keyed by :func:`chunk_identity`, so a
    relation chunk never takes the rank or payload of its source entity's
    metadata chunk.
    """
    keyword_results = [keyword_hit_to_result(h) for h in keyword]
    semantic_keys = [chunk_identity(r.data) for r in semantic]
    keyword_keys = [chunk_identity(r.data) for r in keyword_results]

    by_key: dict[str, dict] = {}
    for key, result in zip(semantic_keys + keyword_keys, semantic + keyword_results):
        by_key.setdefault(key, result.data)

    fused = reciprocal_rank_fusion(semantic_keys, keyword_keys,
                                   semantic_weight, keyword_weight, k)
    return [SearchResult(score=score, data=by_key[key]) for key, score in fused[:limit]]


# ---------------------------------------------------------------------------
# SearchService
# ---------------------------------------------------------------------------

class SearchService:
    """
    Dispatches semantic / keyword / hybrid queries against the chunk store.

    Owns the process-local :class:`KeywordIndex`, rebuilt from a full scan of
    metadata chunks before every keyword query.

    Parameters
    ----------
    store:
        The :class:`~graph_memory.store.chunk_store.ChunkGraphStore`.
    keyword_index:
        Optional pre-built index (defaults to a fresh one).
    """

    def __init__(self, store: ChunkGraphStore,
                 keyword_index: Optional[KeywordIndex] = None) -> None:
        self._store = store
        self._keyword_index = keyword_index or KeywordIndex()

    @property
    def keyword_index(self) -> KeywordIndex:
        return self._keyword_index

    def rebuild_keyword_index(self) -> int:
        """Re-index every metadata chunk; returns the document count."""
        documents = [KeywordDocument.from_chunk(c) for c in self._store.metadata_chunks()]
        self._keyword_index.index(documents)
        return len(documents)

    def search(
        self,
        query: str,
        entity_types: Optional[list[str]] = None,
        limit: int = 20,
        mode: str = "semantic",
    ) -> list[SearchResult]:
        """
        Run a search; store failures are logged and yield an empty list.

        Raises
        ------
        ValueError
            For an unknown *mode*.
        """
        if mode not in SEARCH_MODES:
            raise ValueError(f"Unsupported search mode: {mode}")
        try:
            if mode == "semantic":
                return self.semantic_search(query, entity_types, limit)
            if mode == "keyword":
                return self.keyword_search(query, entity_types, limit)
            return self.hybrid_search(query, entity_types, limit)
        except _FATAL_ERRORS:
            raise
        except Exception as exc:
            logger.warning("Search error (%s): %s", mode, exc)
            return []

    def semantic_search(self, query: str, entity_types: Optional[list[str]] = None,
                        limit: int = 20) -> list[SearchResult]:
        return self._store.semantic_search(query, entity_types, limit)

    def _keyword_hits(self, query: str, entity_types: Optional[list[str]],
                      limit: int) -> list[KeywordHit]:
        self.rebuild_keyword_index()
        return self._keyword_index.search(query, limit, entity_types)

    def keyword_search(self, query: str, entity_types: Optional[list[str]] = None,
                       limit: int = 20) -> list[SearchResult]:
        return [keyword_hit_to_result(h) for h in self._keyword_hits(query, entity_types, limit)]

    def hybrid_search(self, query: str, entity_types: Optional[list[str]] = None,
                      limit: int = 20) -> list[SearchResult]:
        """Run both searches concurrently and fuse them with RRF."""
        with ThreadPoolExecutor(max_workers=2) as pool:
            semantic_future = pool.submit(self.semantic_search, query, entity_types, limit)
            keyword_future = pool.submit(self._keyword_hits, query, entity_types, limit)
            semantic = semantic_future.result()
            keyword = keyword_future.result()

        logger.debug("Hybrid search: %d semantic, %d keyword results",
                     len(semantic), len(keyword))
        return fuse_results(semantic, keyword, limit)
