"""
Data model for the chunk graph store.

Entities and relations are the logical records callers work with; chunks are
their physical representation as Qdrant point payloads.  Payloads written by
different indexer generations use two field layouts:

- **current**: descriptive fields nested under a ``metadata`` sub-object
  (``metadata.entity_type``, ``metadata.file_path`` ...)
- **legacy**: the same fields flat at the top level of the payload

:func:`read_payload` is the single adapter that normalises either layout
into a :class:`ChunkRecord`.  Nothing else in the package reads raw payload
fields.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import Any, Optional

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

CHUNK = "chunk"


class ChunkType:
    METADATA = "metadata"
    IMPLEMENTATION = "implementation"
    RELATION = "relation"


# Chunk-kind tokens callers may mix into an entity-type filter list.
CHUNK_KIND_TOKENS = (ChunkType.METADATA, ChunkType.IMPLEMENTATION)

# Payload layout versions understood by read_payload().
LAYOUT_LEGACY = 1
LAYOUT_NESTED = 2


# ---------------------------------------------------------------------------
# Logical records
# ---------------------------------------------------------------------------

@dataclass
class Entity:
    """A named node of the knowledge graph."""

    name: str
    entity_type: str
    observations: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Entity":
        """Build from a caller dict; accepts ``entityType`` or ``entity_type``."""
        entity_type = data.get("entityType") or data.get("entity_type") or ""
        return cls(
            name=data["name"],
            entity_type=entity_type,
            observations=list(data.get("observations") or []),
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "entityType": self.entity_type,
            "observations": list(self.observations),
        }


@dataclass(frozen=True)
class Relation:
    """A typed directed edge; identity is the ``(from, type, to)`` triple."""

    source: str
    target: str
    relation_type: str

    @classmethod
    def from_dict(cls, data: dict) -> "Relation":
        return cls(
            source=data["from"],
            target=data["to"],
            relation_type=data.get("relationType") or data.get("relation_type") or "",
        )

    def to_dict(self) -> dict:
        return {"from": self.source, "to": self.target, "relationType": self.relation_type}


@dataclass
class KnowledgeGraph:
    entities: list[Entity] = field(default_factory=list)
    relations: list[Relation] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "entities": [e.to_dict() for e in self.entities],
            "relations": [r.to_dict() for r in self.relations],
        }


@dataclass
class ScrollOptions:
    """Options for a full graph scan."""

    mode: str = "smart"     # "smart" | "entities" | "relationships" | "raw"
    entity_types: Optional[list[str]] = None
    limit: Optional[int] = None


@dataclass
class SearchResult:
    """A scored chunk returned by semantic, keyword or hybrid search."""

    score: float
    data: dict
    type: str = CHUNK

    @property
    def entity_name(self) -> str:
        return self.data.get("entity_name") or "unknown"

    def to_dict(self) -> dict:
        return {"type": self.type, "score": self.score, "data": self.data}


@dataclass
class SemanticMetadata:
    """Call/import facts about an implementation chunk."""

    calls: list[str] = field(default_factory=list)
    imports_used: list[str] = field(default_factory=list)
    file_path: Optional[str] = None
    exceptions_handled: list[str] = field(default_factory=list)
    complexity: Optional[int] = None
    inferred_types: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Versioned payload adapter
# ---------------------------------------------------------------------------

@dataclass
class ChunkRecord:
    """A chunk payload normalised to one canonical shape."""

    layout: int
    kind: str                       # "chunk" for graph chunks
    chunk_type: str
    entity_name: Optional[str]
    entity_type: Optional[str]
    observations: list[str]
    content: str
    file_path: Optional[str]
    line_number: Optional[int]
    end_line_number: Optional[int]
    relation_target: Optional[str]
    relation_type: Optional[str]
    semantic_metadata: Optional[dict]
    has_implementation: bool
    raw: dict

    def to_entity(self) -> Optional[Entity]:
        """Return the entity described by a metadata chunk, else None."""
        if self.chunk_type != ChunkType.METADATA:
            return None
        if not isinstance(self.entity_name, str) or not isinstance(self.entity_type, str):
            return None
        return Entity(self.entity_name, self.entity_type, list(self.observations))

    def to_relation(self) -> Optional[Relation]:
        """Return the relation described by a relation chunk, else None."""
        if self.chunk_type != ChunkType.RELATION:
            return None
        if not (self.entity_name and self.relation_target and self.relation_type):
            return None
        return Relation(self.entity_name, self.relation_target, self.relation_type)


def _pick(payload: dict, nested: dict, key: str, *legacy_keys: str) -> Any:
    """Nested layout first, then the flat field, then older aliases."""
    value = nested.get(key)
    if value is None:
        value = payload.get(key)
    for alias in legacy_keys:
        if value is not None:
            break
        value = payload.get(alias)
    return value


def read_payload(payload: Optional[dict]) -> ChunkRecord:
    """Normalise a raw Qdrant payload into a :class:`ChunkRecord`."""
    payload = payload or {}
    nested = payload.get("metadata")
    layout = LAYOUT_NESTED if isinstance(nested, dict) else LAYOUT_LEGACY
    if not isinstance(nested, dict):
        nested = {}

    observations = _pick(payload, nested, "observations") or []
    if not isinstance(observations, list):
        observations = [str(observations)]

    chunk_type = payload.get("chunk_type", "")
    entity_name = _pick(payload, nested, "entity_name", "name", "from")
    # Early relation chunks keyed entity_name by "from-type-to" and kept the
    # endpoints in from/to.
    if (chunk_type == ChunkType.RELATION
            and _pick(payload, nested, "relation_target") is None
            and payload.get("from") is not None):
        entity_name = payload["from"]

    return ChunkRecord(
        layout=layout,
        kind=payload.get("type", ""),
        chunk_type=chunk_type,
        entity_name=entity_name,
        entity_type=_pick(payload, nested, "entity_type"),
        observations=[str(o) for o in observations],
        content=payload.get("content") or "",
        file_path=_pick(payload, nested, "file_path"),
        line_number=_pick(payload, nested, "line_number"),
        end_line_number=_pick(payload, nested, "end_line_number"),
        relation_target=_pick(payload, nested, "relation_target", "to"),
        relation_type=_pick(payload, nested, "relation_type", "relationType"),
        semantic_metadata=payload.get("semantic_metadata"),
        has_implementation=bool(_pick(payload, nested, "has_implementation")),
        raw=payload,
    )


def chunk_identity(payload: Optional[dict]) -> str:
    """
    Stable key of the chunk behind *payload*.

    An entity's metadata chunk, its implementation chunks and the relation
    chunks it is the source of all share ``entity_name``; the key tells
    them apart.
    """
    record = read_payload(payload)
    parts = [record.chunk_type, record.entity_name]
    if record.chunk_type == ChunkType.RELATION:
        parts += [record.relation_type, record.relation_target]
    elif record.chunk_type == ChunkType.IMPLEMENTATION:
        parts += [record.file_path, record.line_number]
    return "::".join("" if p is None else str(p) for p in parts)


def split_type_tokens(types: Optional[list[str]]) -> tuple[list[str], list[str]]:
    """Split a mixed type list into ``(entity_types, chunk_kinds)``."""
    if not types:
        return [], []
    chunk_kinds = [t for t in types if t in CHUNK_KIND_TOKENS]
    entity_types = [t for t in types if t not in CHUNK_KIND_TOKENS]
    return entity_types, chunk_kinds
