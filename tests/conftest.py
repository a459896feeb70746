"""
Shared fixtures: an in-memory vector store and a deterministic embedder.

FakeVectorStore implements the same surface as
graph_memory.store.vector_store.QdrantStore (upsert, filtered delete,
filtered search, cursor scroll) over a dict, including the must/should
filter grammar with dotted keys, so store scenarios run end to end.
"""

from __future__ import annotations

import copy
import hashlib
import math

import pytest

from graph_memory.store.chunk_store import ChunkGraphStore
from graph_memory.manager import KnowledgeGraphManager
from graph_memory.response.assembler import ResponseAssembler

_MISSING = object()
VECTOR_SIZE = 8


# ---------------------------------------------------------------------------
# Filter evaluation
# ---------------------------------------------------------------------------

def _lookup(payload: dict, key: str):
    node = payload
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            return _MISSING
        node = node[part]
    return node


def _match_clause(payload: dict, clause: dict) -> bool:
    if "key" not in clause:
        return matches(payload, clause)
    value = _lookup(payload, clause["key"])
    if value is _MISSING:
        return False
    match = clause["match"]
    if "any" in match:
        return value in match["any"]
    return value == match["value"]


def matches(payload: dict, filters) -> bool:
    if not filters:
        return True
    if not all(_match_clause(payload, c) for c in filters.get("must") or []):
        return False
    should = filters.get("should") or []
    if should and not any(_match_clause(payload, c) for c in should):
        return False
    return True


def _cosine(a: list, b: list) -> float:
    na = math.sqrt(sum(x * x for x in a))
    nb = math.sqrt(sum(x * x for x in b))
    if not na or not nb:
        return 0.0
    return sum(x * y for x, y in zip(a, b)) / (na * nb)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeVectorStore:
    def __init__(self, vector_size: int = VECTOR_SIZE, collection: str = "test-graph"):
        self.points: dict = {}
        self._vector_size = vector_size
        self._collection = collection
        self.vector_name = None
        self.initialize_calls = 0
        self.fail_reads = False
        self.search_calls: list = []
        self.scroll_calls: list = []
        self.deleted_filters: list = []

    @property
    def collection(self) -> str:
        return self._collection

    @property
    def vector_size(self) -> int:
        return self._vector_size

    def connect(self) -> None:
        pass

    def initialize(self) -> int:
        self.initialize_calls += 1
        return self._vector_size

    def upsert(self, points) -> None:
        for pid, vector, payload in points:
            self.points[pid] = (list(vector), copy.deepcopy(payload))

    def delete_by_filter(self, filters: dict) -> None:
        self.deleted_filters.append(filters)
        for pid in [p for p, (_, payload) in self.points.items() if matches(payload, filters)]:
            del self.points[pid]

    def delete_points(self, point_ids) -> None:
        for pid in point_ids:
            self.points.pop(pid, None)

    def search(self, query_vector, top_k=10, filters=None) -> list:
        self.search_calls.append({"vector": query_vector, "top_k": top_k, "filters": filters})
        if self.fail_reads:
            raise RuntimeError("qdrant unavailable")
        hits = [
            {"id": pid, "score": _cosine(query_vector, vec), "payload": copy.deepcopy(payload)}
            for pid, (vec, payload) in self.points.items()
            if matches(payload, filters)
        ]
        hits.sort(key=lambda h: h["score"], reverse=True)
        return hits[:top_k]

    def scroll(self, filters=None, limit=100, offset=None):
        self.scroll_calls.append({"filters": filters, "limit": limit, "offset": offset})
        if self.fail_reads:
            raise RuntimeError("qdrant unavailable")
        matching = [
            {"id": pid, "payload": copy.deepcopy(payload)}
            for pid, (_, payload) in self.points.items()
            if matches(payload, filters)
        ]
        start = offset or 0
        page = matching[start:start + limit]
        next_offset = start + limit if start + limit < len(matching) else None
        return page, next_offset

    def collection_info(self):
        return {
            "name": self._collection,
            "points_count": len(self.points),
            "vector_size": self._vector_size,
        }

    def payloads(self, **criteria) -> list:
        """Stored payloads whose top-level fields equal *criteria*."""
        return [
            payload for _, payload in self.points.values()
            if all(payload.get(k) == v for k, v in criteria.items())
        ]


class FakeEmbedder:
    """Deterministic bag-of-characters embedding."""

    provider = "fake"

    def __init__(self, size: int = VECTOR_SIZE):
        self.size = size
        self.texts: list = []

    def embed(self, text: str) -> list:
        self.texts.append(text)
        vector = [0.0] * self.size
        for word in text.lower().split():
            digest = hashlib.sha256(word.encode("utf-8")).digest()
            vector[digest[0] % self.size] += 1.0
        return vector


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def vector_store():
    return FakeVectorStore()


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def chunk_store(vector_store, embedder):
    # Small batches so every scan crosses several scroll pages.
    return ChunkGraphStore(vector_store, embedder, batch_size=2)


@pytest.fixture
def manager(chunk_store):
    return KnowledgeGraphManager(chunk_store, assembler=ResponseAssembler(token_limit=20000))


@pytest.fixture
def add_implementation(vector_store):
    """Insert an indexer-written implementation chunk directly."""
    counter = {"next": 10_000_000}

    def _add(name, file_path="src/app.py", content="", calls=None, imports=None,
             nested=True, score_vector=None):
        counter["next"] += 1
        payload = {
            "type": "chunk",
            "chunk_type": "implementation",
            "entity_name": name,
            "content": content,
        }
        location = {"entity_type": "function", "file_path": file_path,
                    "line_number": 1, "end_line_number": 5}
        if nested:
            payload["metadata"] = location
        else:
            payload.update(location)
        if calls is not None or imports is not None:
            payload["semantic_metadata"] = {
                "calls": list(calls or []),
                "imports_used": list(imports or []),
            }
        vector = score_vector or [0.0] * VECTOR_SIZE
        vector_store.upsert([(counter["next"], vector, payload)])
        return counter["next"]

    return _add
