"""
Chunk-based graph storage on top of the Qdrant collection.

Translates entities and relations to and from content-addressed chunks:

- one *metadata* chunk per entity, keyed ``manual::{name}::metadata``
- one *relation* chunk per relation, keyed
  ``relation::{from}-{type}-{to}::relation``
- zero or more *implementation* chunks per entity, written by an external
  indexer and only read here

Write paths propagate every error.  Read paths (scans and searches) log
store failures and degrade to empty results; configuration, connection and
embedding errors are never swallowed.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from ..errors import (
    ConfigurationError,
    EmbeddingError,
    EntityNotFoundError,
    StoreConnectionError,
)
from . import filters as F
from .embedder import Embedder, chunk_key, make_point_id
from .models import (
    CHUNK,
    ChunkRecord,
    ChunkType,
    Entity,
    KnowledgeGraph,
    Relation,
    ScrollOptions,
    SearchResult,
    read_payload,
    split_type_tokens,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SCROLL_BATCH_SIZE = 100
DEFAULT_SCAN_LIMIT = 10000
IMPLEMENTATION_LIMIT = 50

# Errors that always reach the caller, even on read paths.
_FATAL_ERRORS = (ConfigurationError, EmbeddingError, StoreConnectionError)

# Score multipliers applied to semantic hits.
CHUNK_TYPE_BOOSTS = {
    ChunkType.METADATA: 1.4,
    ChunkType.IMPLEMENTATION: 1.2,
}
ENTITY_TYPE_BOOSTS = {
    "function": 1.3, "class": 1.3, "method": 1.3,
    "interface": 1.15, "type": 1.15,
    "const": 1.1, "variable": 1.1,
    "import": 1.05,
}


@dataclass
class EntityGraph:
    """An entity with its direct relations and their endpoint entities."""

    target: ChunkRecord
    entities: list[Entity] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Key helpers
# ---------------------------------------------------------------------------

def entity_point_id(name: str) -> int:
    return make_point_id(chunk_key("manual", name, ChunkType.METADATA))


def relation_point_id(relation: Relation) -> int:
    logical_id = f"{relation.source}-{relation.relation_type}-{relation.target}"
    return make_point_id(chunk_key("relation", logical_id, ChunkType.RELATION))


def entity_text(entity: Entity) -> str:
    return f"{entity.name} ({entity.entity_type}): {'. '.join(entity.observations)}"


def relation_text(relation: Relation) -> str:
    return f"{relation.source} {relation.relation_type} {relation.target}"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# ChunkGraphStore
# ---------------------------------------------------------------------------

class ChunkGraphStore:
    """
    Entity/relation persistence and reconstruction over a vector store.

    Parameters
    ----------
    vector_store:
        A :class:`~graph_memory.store.vector_store.QdrantStore` (or any
        object with the same ``upsert/search/scroll/delete_*`` surface).
    embedder:
        An :class:`~graph_memory.store.embedder.Embedder`.
    batch_size:
        Page size for cursor-based scans.
    """

    def __init__(self, vector_store: Any, embedder: Embedder,
                 batch_size: int = SCROLL_BATCH_SIZE) -> None:
        self._store = vector_store
        self._embedder = embedder
        self._batch_size = batch_size
        self._initialized = False
        self._init_lock = threading.Lock()

    @property
    def vector_store(self) -> Any:
        return self._store

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def initialize(self) -> None:
        """
        Connect and create or inspect the collection (once).

        Hybrid search reaches this from two threads on first use; only one
        of them talks to the server.
        """
        if self._initialized:
            return
        with self._init_lock:
            if self._initialized:
                return
            self._store.initialize()
            self._initialized = True

    def _prepare(self) -> None:
        # Missing collection name is fatal before any round trip.
        _ = self._store.collection
        self.initialize()

    def _embed(self, text: str) -> list[float]:
        vector = self._embedder.embed(text)
        expected = self._store.vector_size
        if len(vector) != expected:
            logger.warning(
                "Embedding dimension %d does not match collection vector size %d",
                len(vector), expected,
            )
        return vector

    def _zero_vector(self) -> list[float]:
        return [0.0] * self._store.vector_size

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def persist_entity(self, entity: Entity) -> int:
        """Upsert the metadata chunk for *entity*; returns its point id."""
        self._prepare()
        vector = self._embed(entity_text(entity))
        point_id = entity_point_id(entity.name)
        payload = {
            "type": CHUNK,
            "chunk_type": ChunkType.METADATA,
            "entity_name": entity.name,
            "entity_type": entity.entity_type,
            "observations": list(entity.observations),
            "content": ". ".join(entity.observations),
            "created_at": _now(),
        }
        self._store.upsert([(point_id, vector, payload)])
        logger.debug("Persisted entity %s as point %d", entity.name, point_id)
        return point_id

    def persist_relation(self, relation: Relation) -> int:
        """Upsert the relation chunk for *relation*; returns its point id."""
        self._prepare()
        text = relation_text(relation)
        vector = self._embed(text)
        point_id = relation_point_id(relation)
        payload = {
            "type": CHUNK,
            "chunk_type": ChunkType.RELATION,
            "entity_name": relation.source,
            "entity_type": ChunkType.RELATION,
            "relation_target": relation.target,
            "relation_type": relation.relation_type,
            "content": text,
            "created_at": _now(),
        }
        self._store.upsert([(point_id, vector, payload)])
        logger.debug("Persisted relation %s as point %d", text, point_id)
        return point_id

    def delete_entity(self, name: str) -> None:
        """Delete the metadata and implementation chunks of *name* in one call."""
        self._prepare()
        self._store.delete_by_filter(F.entity_chunks_filter(name))

    def delete_relation(self, relation: Relation) -> None:
        """Delete the single relation chunk addressed by *relation*."""
        self._prepare()
        self._store.delete_points([relation_point_id(relation)])

    # ------------------------------------------------------------------
    # Scans
    # ------------------------------------------------------------------

    def _scan(self, filters: Optional[dict]) -> Iterator[ChunkRecord]:
        """Yield every chunk matching *filters*, following the scroll cursor."""
        offset = None
        pages = 0
        while True:
            points, next_offset = self._store.scroll(
                filters=filters, limit=self._batch_size, offset=offset
            )
            pages += 1
            logger.debug("Scroll page %d: %d points, next=%r", pages, len(points), next_offset)
            for point in points:
                if point.get("payload"):
                    yield read_payload(point["payload"])
            if next_offset is None:
                return
            offset = next_offset

    def metadata_chunks(self) -> list[ChunkRecord]:
        """Return every metadata chunk (keyword index source)."""
        self._prepare()
        return list(self._scan(F.metadata_chunks_filter()))

    def scroll_all(self, options: Optional[ScrollOptions] = None) -> KnowledgeGraph:
        """
        Reconstruct the graph from a full scan of the collection.

        Store failures are logged and yield an empty graph.
        """
        options = options or ScrollOptions()
        self._prepare()
        try:
            return self._scroll_all(options)
        except _FATAL_ERRORS:
            raise
        except Exception as exc:
            logger.warning("Failed to read graph from Qdrant: %s", exc)
            return KnowledgeGraph()

    def _scroll_all(self, options: ScrollOptions) -> KnowledgeGraph:
        limit = options.limit or DEFAULT_SCAN_LIMIT
        entity_types = options.entity_types
        graph = self._get_raw_data(limit, entity_types)

        relations = graph.relations
        if entity_types:
            relations = self.filter_relations_for_entities(relations, graph.entities)

        if options.mode == "relationships":
            endpoint_names: list[str] = []
            for rel in relations:
                for name in (rel.source, rel.target):
                    if name not in endpoint_names:
                        endpoint_names.append(name)
            matched = self.fetch_entities_by_names(endpoint_names, limit)
            matched_names = {e.name for e in matched}
            connecting = [
                r for r in relations
                if r.source in matched_names and r.target in matched_names
            ]
            logger.debug("relationships mode: %d entities, %d of %d relations",
                         len(matched), len(connecting), len(relations))
            return KnowledgeGraph(matched, connecting)

        return KnowledgeGraph(graph.entities, relations)

    def _get_raw_data(self, limit: int, entity_types: Optional[list[str]]) -> KnowledgeGraph:
        """
        Scan all chunks, capping entities at *limit* but never relations.
        """
        wanted_types, _ = split_type_tokens(entity_types)
        entities: list[Entity] = []
        relations: list[Relation] = []
        type_by_name: dict[str, str] = {}

        for record in self._scan(F.all_chunks_filter()):
            if record.chunk_type == ChunkType.METADATA:
                entity = record.to_entity()
                if entity is None:
                    continue
                type_by_name[entity.name] = entity.entity_type
                if len(entities) >= limit:
                    continue
                if wanted_types and entity.entity_type not in wanted_types:
                    continue
                entities.append(entity)
            elif record.chunk_type == ChunkType.RELATION:
                relation = record.to_relation()
                if relation is None:
                    logger.debug("Skipped relation chunk with missing fields: %r", record.raw)
                    continue
                relations.append(relation)

        relations = self.filter_relations_by_entity_types(relations, type_by_name, entity_types)
        logger.debug("Raw scan: %d entities, %d relations", len(entities), len(relations))
        return KnowledgeGraph(entities, relations)

    @staticmethod
    def filter_relations_by_entity_types(
        relations: list[Relation],
        type_by_name: dict[str, str],
        entity_types: Optional[list[str]],
    ) -> list[Relation]:
        """Keep relations with at least one endpoint of a requested type."""
        wanted, _ = split_type_tokens(entity_types)
        if not wanted:
            return relations
        return [
            r for r in relations
            if type_by_name.get(r.source) in wanted or type_by_name.get(r.target) in wanted
        ]

    @staticmethod
    def filter_relations_for_entities(
        relations: list[Relation], entities: list[Entity]
    ) -> list[Relation]:
        """Keep relations with at least one endpoint among *entities*."""
        names = {e.name for e in entities}
        return [r for r in relations if r.source in names or r.target in names]

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def fetch_entities_by_names(self, names: list[str],
                                limit: Optional[int] = None) -> list[Entity]:
        """Return the entities whose metadata chunks are named in *names*."""
        if not names:
            return []
        self._prepare()
        cap = limit or len(names)
        entities: list[Entity] = []
        seen: set[str] = set()
        for record in self._scan(F.metadata_by_names_filter(list(names))):
            entity = record.to_entity()
            if entity is None or entity.name in seen:
                continue
            seen.add(entity.name)
            entities.append(entity)
            if len(entities) >= cap:
                break
        return entities

    def get_entity(self, name: str) -> Optional[Entity]:
        found = self.fetch_entities_by_names([name], 1)
        return found[0] if found else None

    def relations_for_entity(self, name: str) -> list[Relation]:
        """Return every relation where *name* is the source or the target."""
        self._prepare()
        relations: list[Relation] = []
        for record in self._scan(F.relations_touching_filter(name)):
            relation = record.to_relation()
            if relation is not None:
                relations.append(relation)
        return relations

    def entity_graph(self, name: str, limit: Optional[int] = None) -> Optional[EntityGraph]:
        """
        Return *name* with its relations and related entities.

        Raises
        ------
        EntityNotFoundError
            If no metadata chunk exists for *name*.

        Returns None when the store fails mid-read.
        """
        self._prepare()
        try:
            hits = self.filter_search(F.metadata_by_name_filter(name), 1)
            if not hits:
                raise EntityNotFoundError(name)
            target = read_payload(hits[0].data)

            relations = self.relations_for_entity(name)
            names = [name]
            for rel in relations:
                for endpoint in (rel.source, rel.target):
                    if endpoint not in names:
                        names.append(endpoint)
            entities = self.fetch_entities_by_names(names, limit)
            return EntityGraph(target, entities, relations)
        except (EntityNotFoundError,) + _FATAL_ERRORS:
            raise
        except Exception as exc:
            logger.warning("Failed to read entity graph for %s: %s", name, exc)
            return None

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def semantic_search(self, query: str, entity_types: Optional[list[str]] = None,
                        limit: int = 20) -> list[SearchResult]:
        """Vector search for *query*; store errors propagate to the caller."""
        self._prepare()
        vector = self._embed(query)
        hits = self._store.search(
            query_vector=vector,
            top_k=limit,
            filters=F.build_entity_type_filter(entity_types),
        )
        return self.process_search_results(hits)

    @staticmethod
    def process_search_results(hits: list[dict]) -> list[SearchResult]:
        """Boost scores by chunk and entity type, then sort descending."""
        results: list[SearchResult] = []
        for hit in hits:
            payload = hit.get("payload")
            if not payload or not payload.get("chunk_type"):
                continue
            record = read_payload(payload)
            score = hit.get("score", 0.0)
            boost = CHUNK_TYPE_BOOSTS.get(record.chunk_type)
            if boost is None:
                boost = ENTITY_TYPE_BOOSTS.get(record.entity_type or "", 1.0)
            data = dict(payload)
            data["entity_name"] = record.entity_name or "unknown"
            results.append(SearchResult(score=score * boost, data=data))

        results.sort(key=lambda r: r.score, reverse=True)
        return results

    def filter_search(self, filters: Optional[dict], limit: int) -> list[SearchResult]:
        """Filter-only search using a neutral all-zero query vector."""
        self._prepare()
        hits = self._store.search(
            query_vector=self._zero_vector(), top_k=limit, filters=filters
        )
        return [
            SearchResult(score=hit.get("score", 0.0), data=dict(hit["payload"]))
            for hit in hits if hit.get("payload")
        ]

    def implementation_chunks(self, name: str,
                              limit: int = IMPLEMENTATION_LIMIT) -> list[SearchResult]:
        """Return the implementation chunks of *name*; empty on store failure."""
        self._prepare()
        try:
            results = self.filter_search(F.implementation_filter(name), limit)
        except _FATAL_ERRORS:
            raise
        except Exception as exc:
            logger.warning("Failed to get implementation chunks for %s: %s", name, exc)
            return []
        for result in results:
            result.data["has_implementation"] = False
        return [r for r in results if r.data.get("chunk_type") == ChunkType.IMPLEMENTATION]
