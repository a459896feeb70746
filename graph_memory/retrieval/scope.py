"""
Implementation scope expansion along recorded call/import edges.

Scopes
------
minimal       the entity's own implementation chunks
logical       + same-file implementations that are called or private helpers
dependencies  + implementations named in the entity's imports or calls

Call/import facts come from a :class:`MetadataExtractor`.  The structured
extractor reads ``semantic_metadata`` written by the indexer; the pattern
extractor recovers approximate facts from the implementation text when the
indexer recorded none.  Callers go through :func:`extract_semantic_metadata`
and do not care which one answered.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from ..errors import ConfigurationError, EmbeddingError, StoreConnectionError
from ..store import filters as F
from ..store.chunk_store import ChunkGraphStore
from ..store.models import SearchResult, SemanticMetadata, read_payload

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SCOPES = ("minimal", "logical", "dependencies")
LOGICAL_LIMIT = 12
DEPENDENCIES_LIMIT = 40
PATTERN_MAX_NAMES = 10

_CALL_RE = re.compile(r"(\w+)\s*\(")
_IMPORT_RE = re.compile(r"(?:import|from)\s+(\w+)")

_FATAL_ERRORS = (ConfigurationError, EmbeddingError, StoreConnectionError)


# ---------------------------------------------------------------------------
# Metadata extraction strategies
# ---------------------------------------------------------------------------

class MetadataExtractor:
    """Derives :class:`SemanticMetadata` from an implementation chunk payload."""

    def applies_to(self, payload: dict) -> bool:
        raise NotImplementedError

    def extract(self, payload: dict) -> SemanticMetadata:
        raise NotImplementedError


class StructuredMetadataExtractor(MetadataExtractor):
    """Reads the indexer's ``semantic_metadata`` block."""

    def applies_to(self, payload: dict) -> bool:
        return isinstance(payload.get("semantic_metadata"), dict)

    def extract(self, payload: dict) -> SemanticMetadata:
        record = read_payload(payload)
        meta = payload["semantic_metadata"]
        return SemanticMetadata(
            calls=list(meta.get("calls") or []),
            imports_used=list(meta.get("imports_used") or []),
            file_path=record.file_path,
            exceptions_handled=list(meta.get("exceptions_handled") or []),
            complexity=meta.get("complexity"),
            inferred_types=list(meta.get("inferred_types") or []),
        )


class PatternMetadataExtractor(MetadataExtractor):
    """Approximates calls and imports with regular expressions over the text."""

    def applies_to(self, payload: dict) -> bool:
        return True

    def extract(self, payload: dict) -> SemanticMetadata:
        record = read_payload(payload)
        return SemanticMetadata(
            calls=self.extract_calls(record.content),
            imports_used=self.extract_imports(record.content),
            file_path=record.file_path,
        )

    @staticmethod
    def extract_calls(content: str) -> list[str]:
        names = [m for m in _CALL_RE.findall(content or "") if len(m) > 1]
        return names[:PATTERN_MAX_NAMES]

    @staticmethod
    def extract_imports(content: str) -> list[str]:
        return _IMPORT_RE.findall(content or "")[:PATTERN_MAX_NAMES]


DEFAULT_EXTRACTORS: tuple[MetadataExtractor, ...] = (
    StructuredMetadataExtractor(),
    PatternMetadataExtractor(),
)


def extract_semantic_metadata(
    base: list[SearchResult],
    extractors: tuple[MetadataExtractor, ...] = DEFAULT_EXTRACTORS,
) -> SemanticMetadata:
    """Return the call/import facts of the first base chunk."""
    if not base:
        return SemanticMetadata()
    payload = base[0].data
    for extractor in extractors:
        if extractor.applies_to(payload):
            return extractor.extract(payload)
    return SemanticMetadata(file_path=read_payload(payload).file_path)


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def merge_and_deduplicate(results: list[SearchResult]) -> list[SearchResult]:
    """
    Deduplicate by entity name, keeping the best-scoring occurrence.

    Output order is the first-seen order of each name, not score order.
    """
    best: dict[str, SearchResult] = {}
    for result in results:
        key = result.entity_name
        current = best.get(key)
        if current is None or result.score > current.score:
            best[key] = result
    return list(best.values())


# ---------------------------------------------------------------------------
# ScopeExpander
# ---------------------------------------------------------------------------

class ScopeExpander:
    """
    Grows an entity's implementation result set along call/import edges.

    Parameters
    ----------
    store:
        The :class:`~graph_memory.store.chunk_store.ChunkGraphStore` to query.
    """

    def __init__(self, store: ChunkGraphStore,
                 extractors: tuple[MetadataExtractor, ...] = DEFAULT_EXTRACTORS) -> None:
        self._store = store
        self._extractors = extractors

    def get_implementation(self, entity_name: str, scope: str = "minimal",
                           limit: Optional[int] = None) -> list[SearchResult]:
        """Fetch *entity_name*'s implementation chunks expanded to *scope*."""
        if scope not in SCOPES:
            raise ValueError(f"Unknown scope: {scope}")
        base = self._store.implementation_chunks(entity_name)
        if scope == "minimal":
            return base
        metadata = extract_semantic_metadata(base, self._extractors)
        return self.expand(base, metadata, scope, limit)

    def expand(self, base: list[SearchResult], metadata: SemanticMetadata,
               scope: str, limit: Optional[int] = None) -> list[SearchResult]:
        if scope == "logical":
            return self.expand_logical(base, metadata, limit)
        if scope == "dependencies":
            return self.expand_dependencies(base, metadata, limit)
        return base

    def expand_logical(self, base: list[SearchResult], metadata: SemanticMetadata,
                       limit: Optional[int] = None) -> list[SearchResult]:
        """Add same-file chunks that are called by, or private helpers of, the base."""
        if not metadata.file_path:
            return base
        try:
            hits = self._store.filter_search(
                F.same_file_implementation_filter(metadata.file_path),
                limit or LOGICAL_LIMIT,
            )
        except _FATAL_ERRORS:
            raise
        except Exception as exc:
            logger.warning("Failed to expand logical scope: %s", exc)
            return base

        calls = set(metadata.calls)
        additional = []
        for hit in hits:
            name = read_payload(hit.data).entity_name or ""
            if name in calls or name.startswith("_"):
                hit.data["has_implementation"] = False
                additional.append(hit)
        return merge_and_deduplicate(base + additional)

    def expand_dependencies(self, base: list[SearchResult], metadata: SemanticMetadata,
                            limit: Optional[int] = None) -> list[SearchResult]:
        """Add implementations named in the base's imports or calls, any file."""
        filters = F.named_implementation_filter(metadata.imports_used, metadata.calls)
        if filters is None:
            return base
        try:
            hits = self._store.filter_search(filters, limit or DEPENDENCIES_LIMIT)
        except _FATAL_ERRORS:
            raise
        except Exception as exc:
            logger.warning("Failed to expand dependency scope: %s", exc)
            return base

        for hit in hits:
            hit.data["has_implementation"] = False
        return merge_and_deduplicate(base + hits)
