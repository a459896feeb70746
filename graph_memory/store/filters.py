"""
Payload filter construction.

Filters are plain dicts in Qdrant's wire grammar so that they can be built
and asserted on without the client installed::

    {"must": [clause, ...], "should": [clause, ...]}

where each clause is either ``{"key": k, "match": {"value": v}}``,
``{"key": k, "match": {"any": [...]}}`` or a nested filter dict.
:meth:`~graph_memory.store.vector_store.QdrantStore` converts them to
``qdrant_client.models.Filter`` at the wire boundary.
"""

from __future__ import annotations

from typing import Optional

from .models import CHUNK, ChunkType, split_type_tokens


def match_value(key: str, value) -> dict:
    return {"key": key, "match": {"value": value}}


def match_any(key: str, values: list) -> dict:
    return {"key": key, "match": {"any": list(values)}}


def either_layout(field: str, values: list) -> dict:
    """Match *field* in the nested (``metadata.``) or the flat location."""
    return {
        "should": [
            match_any(field, values),
            match_any(f"metadata.{field}", values),
        ]
    }


def build_entity_type_filter(types: Optional[list[str]]) -> Optional[dict]:
    """
    Build the search filter for a mixed entity-type / chunk-kind list.

    Entity types and chunk kinds are disjoint vocabularies.  One clause is
    built per non-empty facet; two facets are OR-ed so that neither facet's
    matches are dropped, a single facet becomes a plain ``must``.

    Returns
    -------
    Optional[dict]
        None when *types* is empty.
    """
    entity_types, chunk_kinds = split_type_tokens(types)

    conditions: list[dict] = []
    if entity_types:
        conditions.append(either_layout("entity_type", entity_types))
    if chunk_kinds:
        conditions.append(match_any("chunk_type", chunk_kinds))

    if not conditions:
        return None
    if len(conditions) == 1:
        return {"must": conditions}
    return {"should": conditions}


def all_chunks_filter() -> dict:
    return {"must": [match_value("type", CHUNK)]}


def metadata_chunks_filter() -> dict:
    return {
        "must": [
            match_value("type", CHUNK),
            match_value("chunk_type", ChunkType.METADATA),
        ]
    }


def entity_chunks_filter(name: str) -> dict:
    """Metadata and implementation chunks owned by entity *name*."""
    return {
        "must": [
            match_value("entity_name", name),
            match_any("chunk_type", [ChunkType.METADATA, ChunkType.IMPLEMENTATION]),
        ]
    }


def implementation_filter(name: str) -> dict:
    return {
        "must": [
            match_value("entity_name", name),
            match_value("chunk_type", ChunkType.IMPLEMENTATION),
        ]
    }


def metadata_by_name_filter(name: str) -> dict:
    return {
        "must": [
            match_value("entity_name", name),
            match_value("chunk_type", ChunkType.METADATA),
        ]
    }


def metadata_by_names_filter(names: list[str]) -> dict:
    return {
        "must": [
            match_value("chunk_type", ChunkType.METADATA),
            match_any("entity_name", names),
        ]
    }


def relations_touching_filter(name: str) -> dict:
    """Relation chunks where *name* is the source or the target."""
    return {
        "must": [
            match_value("type", CHUNK),
            match_value("chunk_type", ChunkType.RELATION),
            {
                "should": [
                    match_value("entity_name", name),
                    match_value("relation_target", name),
                ]
            },
        ]
    }


def same_file_implementation_filter(file_path: str) -> dict:
    return {
        "must": [
            match_value("chunk_type", ChunkType.IMPLEMENTATION),
            {
                "should": [
                    match_value("file_path", file_path),
                    match_value("metadata.file_path", file_path),
                ]
            },
        ]
    }


def named_implementation_filter(*name_groups: list[str]) -> Optional[dict]:
    """Implementation chunks whose name is in any of *name_groups*."""
    should = [match_any("entity_name", group) for group in name_groups if group]
    if not should:
        return None
    return {
        "must": [match_value("chunk_type", ChunkType.IMPLEMENTATION)],
        "should": should,
    }
