"""
Unit tests for graph_memory.retrieval.scope
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from graph_memory.retrieval.scope import (
    PatternMetadataExtractor,
    ScopeExpander,
    StructuredMetadataExtractor,
    extract_semantic_metadata,
    merge_and_deduplicate,
)
from graph_memory.store.models import SearchResult, SemanticMetadata


def _names(results):
    return [r.entity_name for r in results]


# ---------------------------------------------------------------------------
# Tests: metadata extractors
# ---------------------------------------------------------------------------

class TestExtractors:
    def test_structured_reads_semantic_metadata(self):
        payload = {
            "entity_name": "foo",
            "metadata": {"file_path": "src/foo.py"},
            "semantic_metadata": {"calls": ["bar"], "imports_used": ["os"], "complexity": 3},
        }
        extractor = StructuredMetadataExtractor()
        assert extractor.applies_to(payload)
        meta = extractor.extract(payload)
        assert meta.calls == ["bar"]
        assert meta.imports_used == ["os"]
        assert meta.file_path == "src/foo.py"
        assert meta.complexity == 3

    def test_structured_does_not_apply_without_block(self):
        assert not StructuredMetadataExtractor().applies_to({"content": "x()"})

    def test_pattern_calls_and_imports(self):
        content = "import os\nimport json\ndef foo(a):\n    return bar(a) + f(1)\n"
        meta = PatternMetadataExtractor().extract({"content": content, "file_path": "a.py"})
        assert meta.calls == ["foo", "bar"]
        assert meta.imports_used == ["os", "json"]
        assert meta.file_path == "a.py"

    def test_pattern_caps_names(self):
        content = " ".join(f"fn{i}()" for i in range(15))
        assert len(PatternMetadataExtractor.extract_calls(content)) == 10

    def test_structured_preferred_over_pattern(self):
        base = [SearchResult(1.0, {"content": "other()", "semantic_metadata": {"calls": ["x"]}})]
        assert extract_semantic_metadata(base).calls == ["x"]

    def test_pattern_fallback(self):
        base = [SearchResult(1.0, {"content": "helper()"})]
        assert extract_semantic_metadata(base).calls == ["helper"]

    def test_empty_base(self):
        assert extract_semantic_metadata([]) == SemanticMetadata()


# ---------------------------------------------------------------------------
# Tests: merge
# ---------------------------------------------------------------------------

class TestMergeAndDeduplicate:
    def test_higher_score_survives_in_first_seen_position(self):
        results = [
            SearchResult(0.2, {"entity_name": "a", "v": 1}),
            SearchResult(0.5, {"entity_name": "b"}),
            SearchResult(0.9, {"entity_name": "a", "v": 2}),
        ]
        merged = merge_and_deduplicate(results)
        assert _names(merged) == ["a", "b"]
        assert merged[0].data["v"] == 2

    def test_equal_score_keeps_first(self):
        results = [SearchResult(0.5, {"entity_name": "a", "v": 1}),
                   SearchResult(0.5, {"entity_name": "a", "v": 2})]
        assert merge_and_deduplicate(results)[0].data["v"] == 1


# ---------------------------------------------------------------------------
# Tests: ScopeExpander
# ---------------------------------------------------------------------------

@pytest.fixture
def code(add_implementation):
    add_implementation("process", "src/app.py", "def process(): helper()",
                       calls=["helper", "load"], imports=["parse_args"])
    add_implementation("helper", "src/app.py", "def helper(): ...")
    add_implementation("_private", "src/app.py", "def _private(): ...")
    add_implementation("unrelated", "src/app.py", "def unrelated(): ...")
    add_implementation("load", "src/io.py", "def load(): ...")
    add_implementation("parse_args", "src/cli.py", "def parse_args(): ...", nested=False)
    add_implementation("elsewhere", "src/other.py", "def elsewhere(): ...")


@pytest.mark.usefixtures("code")
class TestScopeExpander:
    def test_minimal(self, chunk_store):
        results = ScopeExpander(chunk_store).get_implementation("process")
        assert _names(results) == ["process"]

    def test_logical_adds_called_and_private_same_file(self, chunk_store):
        results = ScopeExpander(chunk_store).get_implementation("process", "logical")
        assert _names(results) == ["process", "helper", "_private"]

    def test_dependencies_crosses_files(self, chunk_store):
        results = ScopeExpander(chunk_store).get_implementation("process", "dependencies")
        assert set(_names(results)) == {"process", "helper", "load", "parse_args"}
        assert _names(results)[0] == "process"

    def test_scopes_are_supersets_of_minimal(self, chunk_store):
        expander = ScopeExpander(chunk_store)
        minimal = set(_names(expander.get_implementation("process")))
        assert minimal <= set(_names(expander.get_implementation("process", "logical")))
        assert minimal <= set(_names(expander.get_implementation("process", "dependencies")))

    def test_expanded_chunks_flagged(self, chunk_store):
        results = ScopeExpander(chunk_store).get_implementation("process", "logical")
        assert all(r.data["has_implementation"] is False for r in results)

    def test_logical_limit(self, chunk_store, vector_store):
        ScopeExpander(chunk_store).get_implementation("process", "logical", limit=3)
        assert vector_store.search_calls[-1]["top_k"] == 3

    def test_default_limits(self, chunk_store, vector_store):
        expander = ScopeExpander(chunk_store)
        expander.get_implementation("process", "logical")
        assert vector_store.search_calls[-1]["top_k"] == 12
        expander.get_implementation("process", "dependencies")
        assert vector_store.search_calls[-1]["top_k"] == 40

    def test_unknown_entity_is_empty(self, chunk_store):
        assert ScopeExpander(chunk_store).get_implementation("ghost", "dependencies") == []

    def test_unknown_scope(self, chunk_store):
        with pytest.raises(ValueError):
            ScopeExpander(chunk_store).get_implementation("process", "everything")


class TestScopeExpanderFailures:
    def _store(self, base):
        store = MagicMock()
        store.implementation_chunks.return_value = base
        store.filter_search.side_effect = RuntimeError("qdrant unavailable")
        return store

    def test_logical_failure_returns_base(self):
        base = [SearchResult(0.0, {"entity_name": "f", "file_path": "a.py",
                                   "semantic_metadata": {"calls": ["g"]}})]
        assert ScopeExpander(self._store(base)).get_implementation("f", "logical") == base

    def test_dependencies_failure_returns_base(self):
        base = [SearchResult(0.0, {"entity_name": "f", "content": "helper()"})]
        assert ScopeExpander(self._store(base)).get_implementation("f", "dependencies") == base

    def test_logical_without_file_returns_base(self):
        base = [SearchResult(0.0, {"entity_name": "f", "semantic_metadata": {"calls": ["g"]}})]
        store = self._store(base)
        assert ScopeExpander(store).get_implementation("f", "logical") == base
        store.filter_search.assert_not_called()
