"""
Storage layer: Qdrant collection access and the chunk graph model.

- vector_store: thin Qdrant client wrapper (lifecycle, upsert, search, scroll)
- embedder: embedding providers and deterministic point ids
- models: entities, relations, chunks and the payload layout adapter
- filters: payload filter construction
- chunk_store: entity/relation persistence and reconstruction
"""

from .chunk_store import ChunkGraphStore, EntityGraph
from .models import Entity, KnowledgeGraph, Relation, ScrollOptions, SearchResult

__all__ = [
    "ChunkGraphStore",
    "EntityGraph",
    "Entity",
    "KnowledgeGraph",
    "Relation",
    "ScrollOptions",
    "SearchResult",
]
