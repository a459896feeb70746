"""
Entity-centred graph summary.

Builds a :class:`networkx.MultiDiGraph` of the target entity, its related
entities and the relations between them, and reports connection statistics
from the target's point of view.
"""

from __future__ import annotations

from collections import Counter
from typing import Optional

import networkx as nx

from ..store.models import Entity, Relation

RELATED_ENTITY_LIMIT = 10
RELATION_LIMIT = 50


def build_graph(entities: list[Entity], relations: list[Relation]) -> nx.MultiDiGraph:
    """Return a multigraph with one node per entity and one edge per relation."""
    graph = nx.MultiDiGraph()
    for entity in entities:
        graph.add_node(entity.name, entity_type=entity.entity_type)
    for rel in relations:
        graph.add_edge(rel.source, rel.target, key=rel.relation_type,
                       relation_type=rel.relation_type)
    return graph


def _type_counts(edges) -> dict[str, int]:
    return dict(Counter(data["relation_type"] for _, _, data in edges))


def entity_summary(
    target_name: str,
    target_type: Optional[str],
    target_file: Optional[str],
    entities: list[Entity],
    relations: list[Relation],
) -> dict:
    """
    Summarise *target_name*'s neighbourhood.

    Returns
    -------
    dict
        ``{"target": ..., "stats": ..., "key_relationships": ...}`` where
        stats count every relation, those pointing at the target (incoming)
        and those leaving it (outgoing), plus entity types among *entities*.
    """
    graph = build_graph(entities, relations)
    if target_name not in graph:
        graph.add_node(target_name, entity_type=target_type)

    incoming = list(graph.in_edges(target_name, data=True))
    outgoing = list(graph.out_edges(target_name, data=True))

    type_counts = Counter(e.entity_type for e in entities)
    return {
        "target": {
            "name": target_name,
            "type": target_type,
            "file": target_file or "unknown",
        },
        "stats": {
            "total_connections": graph.number_of_edges(),
            "incoming": len(incoming),
            "outgoing": len(outgoing),
            "entity_types": [{"type": t, "count": c} for t, c in type_counts.items()],
        },
        "key_relationships": {
            "outgoing": _type_counts(outgoing),
            "incoming": _type_counts(incoming),
        },
    }
