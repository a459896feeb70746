"""
Unit tests for graph_memory.store.filters
"""

from __future__ import annotations

from graph_memory.store import filters as F


class TestEntityTypeFilter:
    def test_empty_is_none(self):
        assert F.build_entity_type_filter(None) is None
        assert F.build_entity_type_filter([]) is None

    def test_entity_types_only_is_must(self):
        result = F.build_entity_type_filter(["class", "function"])
        assert result == {
            "must": [{
                "should": [
                    {"key": "entity_type", "match": {"any": ["class", "function"]}},
                    {"key": "metadata.entity_type", "match": {"any": ["class", "function"]}},
                ]
            }]
        }

    def test_chunk_kinds_only_is_must(self):
        result = F.build_entity_type_filter(["metadata"])
        assert result == {"must": [{"key": "chunk_type", "match": {"any": ["metadata"]}}]}

    def test_both_facets_are_or_ed(self):
        result = F.build_entity_type_filter(["class", "implementation"])
        assert "must" not in result
        assert len(result["should"]) == 2
        assert {"key": "chunk_type", "match": {"any": ["implementation"]}} in result["should"]


class TestFixedFilters:
    def test_entity_chunks_excludes_relations(self):
        result = F.entity_chunks_filter("foo")
        assert {"key": "entity_name", "match": {"value": "foo"}} in result["must"]
        assert {"key": "chunk_type",
                "match": {"any": ["metadata", "implementation"]}} in result["must"]

    def test_relations_touching_matches_either_end(self):
        result = F.relations_touching_filter("A")
        nested = result["must"][-1]
        assert nested == {
            "should": [
                {"key": "entity_name", "match": {"value": "A"}},
                {"key": "relation_target", "match": {"value": "A"}},
            ]
        }

    def test_same_file_checks_both_layouts(self):
        result = F.same_file_implementation_filter("src/a.py")
        keys = [c["key"] for c in result["must"][1]["should"]]
        assert keys == ["file_path", "metadata.file_path"]

    def test_named_implementation_skips_empty_groups(self):
        result = F.named_implementation_filter([], ["helper"])
        assert result["should"] == [{"key": "entity_name", "match": {"any": ["helper"]}}]

    def test_named_implementation_all_empty(self):
        assert F.named_implementation_filter([], []) is None
