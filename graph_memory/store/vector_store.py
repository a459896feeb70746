"""
Qdrant vector store wrapper for the graph memory.

Provides a thin client wrapper for collection lifecycle, point upsert,
filtered search, cursor-based scroll and filtered delete.  Filters are
accepted in the dict grammar built by :mod:`graph_memory.store.filters`
and converted to ``qdrant_client.models`` objects here.

Distance: Cosine
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from ..config import Config
from ..errors import StoreConnectionError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DISTANCE = "Cosine"
DENSE_VECTOR_NAME = "dense"

# Default collection dimensions per embedding provider.
PROVIDER_VECTOR_SIZES = {
    "openai": 1536,
    "voyage": 512,
}


def default_vector_size(provider: str) -> int:
    """Return the vector size a new collection gets for *provider*."""
    return PROVIDER_VECTOR_SIZES.get((provider or "").lower(), 1536)


# ---------------------------------------------------------------------------
# Filter conversion
# ---------------------------------------------------------------------------

def _to_condition(clause: dict):
    from qdrant_client import models  # type: ignore

    if "key" not in clause:
        return to_qdrant_filter(clause)
    match = clause.get("match", {})
    if "any" in match:
        return models.FieldCondition(
            key=clause["key"], match=models.MatchAny(any=list(match["any"]))
        )
    return models.FieldCondition(
        key=clause["key"], match=models.MatchValue(value=match.get("value"))
    )


def to_qdrant_filter(filters: Optional[dict]):
    """Convert a ``{"must": [...], "should": [...]}`` dict to a Qdrant Filter."""
    if not filters:
        return None
    from qdrant_client import models  # type: ignore

    must = [_to_condition(c) for c in filters.get("must", [])]
    should = [_to_condition(c) for c in filters.get("should", [])]
    return models.Filter(must=must or None, should=should or None)


# ---------------------------------------------------------------------------
# QdrantStore
# ---------------------------------------------------------------------------

class QdrantStore:
    """
    Thin wrapper around the Qdrant client for one collection.

    Parameters
    ----------
    config:
        Loaded :class:`~graph_memory.config.Config`.  The Qdrant URL is
        validated immediately; the collection name is checked on every call.
    client:
        Optional pre-built client (tests inject a mock here).
    """

    def __init__(self, config: Config, client: Any = None) -> None:
        self._config = config
        self._url = config.validate_url()
        self._client = client
        self._connected = False
        self._vector_size = default_vector_size(config.EMBEDDING_PROVIDER)
        self._vector_name: Optional[str] = None

    # ------------------------------------------------------------------
    # Client & collection setup
    # ------------------------------------------------------------------

    @property
    def collection(self) -> str:
        return self._config.require_collection()

    @property
    def vector_size(self) -> int:
        return self._vector_size

    @property
    def vector_name(self) -> Optional[str]:
        return self._vector_name

    def _get_client(self):
        """Return a Qdrant client, raising if the package is not installed."""
        if self._client is not None:
            return self._client
        try:
            from qdrant_client import QdrantClient  # type: ignore
        except ImportError as exc:
            raise ImportError(
                "qdrant-client is required. Install it with: pip install qdrant-client"
            ) from exc

        self._client = QdrantClient(
            url=self._url,
            api_key=self._config.QDRANT_API_KEY or None,
            timeout=self._config.REQUEST_TIMEOUT,
        )
        return self._client

    def connect(self) -> None:
        """
        Verify connectivity, retrying with exponential back-off.

        Raises
        ------
        StoreConnectionError
            After ``CONNECT_RETRIES`` failed attempts.
        """
        if self._connected:
            return

        client = self._get_client()
        attempts = max(1, self._config.CONNECT_RETRIES)
        delay = self._config.CONNECT_RETRY_DELAY

        for attempt in range(1, attempts + 1):
            try:
                client.get_collections()
                self._connected = True
                return
            except Exception as exc:
                if attempt < attempts:
                    logger.warning(
                        "Qdrant connection attempt %d/%d failed: %s; retrying in %.1fs",
                        attempt, attempts, exc, delay,
                    )
                    time.sleep(delay)
                    delay *= 2
                else:
                    raise StoreConnectionError(
                        f"Failed to connect to Qdrant after {attempts} attempts: {exc}"
                    ) from exc

    def initialize(self) -> int:
        """
        Create the collection if missing, otherwise detect its vector size.

        Returns
        -------
        int
            The vector size the collection is configured with.
        """
        from qdrant_client.models import Distance, VectorParams  # type: ignore

        self.connect()
        collection = self.collection
        client = self._get_client()

        existing = [c.name for c in client.get_collections().collections]
        if collection not in existing:
            size = default_vector_size(self._config.EMBEDDING_PROVIDER)
            client.create_collection(
                collection_name=collection,
                vectors_config=VectorParams(size=size, distance=Distance.COSINE),
            )
            logger.info("Created Qdrant collection '%s' with %d-dimensional vectors",
                        collection, size)
            self._vector_size = size
            self._vector_name = None
            return size

        info = client.get_collection(collection)
        vectors = info.config.params.vectors
        size: Optional[int] = None
        if isinstance(vectors, dict):
            dense = vectors.get(DENSE_VECTOR_NAME)
            if dense is not None:
                size = dense.size
                self._vector_name = DENSE_VECTOR_NAME
        else:
            size = getattr(vectors, "size", None)
            self._vector_name = None

        if not size:
            logger.warning(
                "Collection '%s' has no vector configuration; index data first", collection
            )
            return self._vector_size

        self._vector_size = size
        logger.info("Using existing collection '%s' with %d-dimensional vectors",
                    collection, size)
        self._log_provider_for_size(size)
        return size

    @staticmethod
    def _log_provider_for_size(size: int) -> None:
        for provider, provider_size in PROVIDER_VECTOR_SIZES.items():
            if provider_size == size:
                logger.info("Detected %s embeddings (%d-dim)", provider, size)
                return
        logger.warning("Unknown vector size %d; embeddings may not match", size)

    def recreate_collection(self, vector_size: int) -> None:
        """Drop and re-create the collection with *vector_size* dimensions."""
        from qdrant_client.models import Distance, VectorParams  # type: ignore

        self.connect()
        client = self._get_client()
        client.delete_collection(collection_name=self.collection)
        client.create_collection(
            collection_name=self.collection,
            vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
        )
        self._vector_size = vector_size
        self._vector_name = None
        logger.info("Recreated collection '%s' with %d-dimensional vectors",
                    self.collection, vector_size)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    def _vector(self, vector: list[float]):
        if self._vector_name:
            return {self._vector_name: vector}
        return vector

    def upsert(self, points: list[tuple[int, list[float], dict]]) -> None:
        """
        Upsert vector points into the collection.

        Parameters
        ----------
        points:
            List of ``(point_id, vector, payload)`` tuples.
        """
        if not points:
            return

        from qdrant_client.models import PointStruct  # type: ignore

        self.connect()
        client = self._get_client()
        qdrant_points = [
            PointStruct(id=pid, vector=self._vector(vec), payload=payload)
            for pid, vec, payload in points
        ]
        client.upsert(collection_name=self.collection, points=qdrant_points)
        logger.debug("Upserted %d points into %s", len(points), self.collection)

    def delete_by_filter(self, filters: dict) -> None:
        """Delete every point matching *filters*."""
        from qdrant_client.models import FilterSelector  # type: ignore

        self.connect()
        self._get_client().delete(
            collection_name=self.collection,
            points_selector=FilterSelector(filter=to_qdrant_filter(filters)),
        )

    def delete_points(self, point_ids: list[int]) -> None:
        """Delete points by id."""
        from qdrant_client.models import PointIdsList  # type: ignore

        self.connect()
        self._get_client().delete(
            collection_name=self.collection,
            points_selector=PointIdsList(points=list(point_ids)),
        )

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    def search(
        self,
        query_vector: list[float],
        top_k: int = 10,
        filters: Optional[dict] = None,
    ) -> list[dict]:
        """
        Perform a cosine-similarity search.

        Returns
        -------
        list[dict]
            Each dict has ``id``, ``score`` (float) and ``payload`` (dict).
        """
        self.connect()
        results = self._get_client().query_points(
            collection_name=self.collection,
            query=query_vector,
            using=self._vector_name,
            limit=top_k,
            query_filter=to_qdrant_filter(filters),
            with_payload=True,
        )
        return [
            {"id": hit.id, "score": hit.score, "payload": hit.payload or {}}
            for hit in results.points
        ]

    def scroll(
        self,
        filters: Optional[dict] = None,
        limit: int = 100,
        offset: Any = None,
    ) -> tuple[list[dict], Any]:
        """
        Fetch one page of points matching *filters*.

        Returns
        -------
        tuple[list[dict], Any]
            ``(points, next_offset)``; ``next_offset`` is None on the last page.
        """
        self.connect()
        records, next_offset = self._get_client().scroll(
            collection_name=self.collection,
            scroll_filter=to_qdrant_filter(filters),
            limit=limit,
            offset=offset,
            with_payload=True,
            with_vectors=False,
        )
        return (
            [{"id": rec.id, "payload": rec.payload or {}} for rec in records],
            next_offset,
        )

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def collection_info(self) -> Optional[dict]:
        """
        Return basic info about the collection, or None if not found.

        Returns
        -------
        Optional[dict]
            Keys: ``name``, ``points_count``, ``vector_size``.
        """
        collection = self.collection
        try:
            info = self._get_client().get_collection(collection)
            return {
                "name": collection,
                "points_count": info.points_count,
                "vector_size": self._vector_size,
            }
        except Exception as exc:
            logger.debug("collection_info failed: %s", exc)
            return None
