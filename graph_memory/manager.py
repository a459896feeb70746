"""
KnowledgeGraphManager: the caller-facing graph operations.

Wires the chunk store, the search service, the scope expander and the
response assembler together, and adds the referential checks the storage
layer does not make (relation endpoints and observation targets must
exist).  Multi-step mutations are independent round trips; a failure part
way through leaves earlier writes in place.
"""

from __future__ import annotations

import logging
from typing import Optional, Union

from .config import Config
from .errors import EntityNotFoundError
from .response.assembler import AssembledResponse, ResponseAssembler
from .retrieval.hybrid import SearchService
from .retrieval.scope import ScopeExpander
from .store.chunk_store import ChunkGraphStore
from .store.embedder import get_embedder
from .store.models import Entity, Relation, ScrollOptions, SearchResult
from .store.vector_store import QdrantStore

logger = logging.getLogger(__name__)

DEFAULT_GRAPH_LIMIT = 150
DEFAULT_SEARCH_LIMIT = 10
MAX_SEARCH_LIMIT = 100

GRAPH_MODES = ("smart", "entities", "relationships", "raw")


def _as_entity(item: Union[Entity, dict]) -> Entity:
    return item if isinstance(item, Entity) else Entity.from_dict(item)


def _as_relation(item: Union[Relation, dict]) -> Relation:
    return item if isinstance(item, Relation) else Relation.from_dict(item)


class KnowledgeGraphManager:
    """
    High-level knowledge graph API.

    Parameters
    ----------
    store:
        The :class:`ChunkGraphStore` holding the graph.
    search_service, scope_expander, assembler:
        Optional collaborators; defaults are built around *store*.
    """

    def __init__(
        self,
        store: ChunkGraphStore,
        search_service: Optional[SearchService] = None,
        scope_expander: Optional[ScopeExpander] = None,
        assembler: Optional[ResponseAssembler] = None,
    ) -> None:
        self.store = store
        self.search_service = search_service or SearchService(store)
        self.scope_expander = scope_expander or ScopeExpander(store)
        self.assembler = assembler or ResponseAssembler()

    @classmethod
    def from_config(cls, config: Config) -> "KnowledgeGraphManager":
        """Build a manager backed by Qdrant and the configured embedder."""
        vector_store = QdrantStore(config)
        store = ChunkGraphStore(vector_store, get_embedder(config))
        return cls(store, assembler=ResponseAssembler(token_limit=config.TOKEN_LIMIT))

    def initialize(self) -> None:
        self.store.initialize()

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def create_entities(self, entities: list) -> list[Entity]:
        """Persist each entity; an existing entity of the same name is replaced."""
        created = [_as_entity(e) for e in entities]
        for entity in created:
            self.store.persist_entity(entity)
        logger.info("Created %d entities", len(created))
        return created

    def _require_entity(self, name: str) -> Entity:
        entity = self.store.get_entity(name)
        if entity is None:
            raise EntityNotFoundError(name)
        return entity

    def add_observations(self, entity_name: str, contents: list[str]) -> Entity:
        """Append *contents* to the entity's observations."""
        entity = self._require_entity(entity_name)
        entity.observations.extend(contents)
        self.store.persist_entity(entity)
        return entity

    def delete_observations(self, entity_name: str, observations: list[str]) -> Entity:
        """Remove every observation equal to one of *observations*."""
        entity = self._require_entity(entity_name)
        doomed = set(observations)
        entity.observations = [o for o in entity.observations if o not in doomed]
        self.store.persist_entity(entity)
        return entity

    def delete_entities(self, entity_names: list[str]) -> None:
        """Delete each entity, then every relation that references it."""
        for name in entity_names:
            related = self.store.relations_for_entity(name)
            self.store.delete_entity(name)
            for relation in related:
                self.store.delete_relation(relation)
            logger.info("Deleted entity %s and %d relations", name, len(related))

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def create_relations(self, relations: list) -> list[Relation]:
        """
        Persist relations whose endpoints both exist.

        Raises
        ------
        EntityNotFoundError
            At the first relation with a missing endpoint; relations before
            it have already been written.
        """
        created = [_as_relation(r) for r in relations]
        names: list[str] = []
        for rel in created:
            for name in (rel.source, rel.target):
                if name not in names:
                    names.append(name)
        known = {e.name for e in self.store.fetch_entities_by_names(names)}

        for rel in created:
            for endpoint in (rel.source, rel.target):
                if endpoint not in known:
                    raise EntityNotFoundError(endpoint)
            self.store.persist_relation(rel)
        logger.info("Created %d relations", len(created))
        return created

    def delete_relations(self, relations: list) -> None:
        for rel in (_as_relation(r) for r in relations):
            self.store.delete_relation(rel)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def search_similar(
        self,
        query: str,
        entity_types: Optional[list[str]] = None,
        limit: int = DEFAULT_SEARCH_LIMIT,
        mode: str = "semantic",
    ) -> list[SearchResult]:
        limit = max(1, min(int(limit), MAX_SEARCH_LIMIT))
        return self.search_service.search(query, entity_types, limit, mode)

    def get_implementation(self, entity_name: str, scope: str = "minimal",
                           limit: Optional[int] = None) -> list[SearchResult]:
        return self.scope_expander.get_implementation(entity_name, scope, limit)

    def read_graph(
        self,
        mode: str = "smart",
        entity_types: Optional[list[str]] = None,
        entity: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> AssembledResponse:
        """
        Return a token-bounded view of the graph.

        With *entity*, the view is centred on that entity and its direct
        relations; otherwise the whole graph is scanned.

        Raises
        ------
        EntityNotFoundError
            If *entity* is given but does not exist.
        ValueError
            For an unknown *mode*.
        """
        if mode not in GRAPH_MODES:
            raise ValueError(f"Unknown mode: {mode}")
        limit = limit or DEFAULT_GRAPH_LIMIT

        if entity:
            view = self.store.entity_graph(entity, limit)
            if view is None:
                return self.assembler.error_response(
                    f"Error building response: failed to read graph for {entity}"
                )
            return self.assembler.assemble_entity_view(view, mode)

        graph = self.store.scroll_all(
            ScrollOptions(mode=mode, entity_types=entity_types, limit=limit)
        )
        return self.assembler.assemble(
            graph.entities, graph.relations, mode, entity_types, limit
        )

    def status(self) -> dict:
        """Collection name, point count and vector size, plus keyword index stats."""
        return {
            "collection": self.store.vector_store.collection_info(),
            "keyword_index": self.search_service.keyword_index.stats(),
        }
