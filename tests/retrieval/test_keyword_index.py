"""
Unit tests for graph_memory.retrieval.keyword_index
"""

from __future__ import annotations

import math

import pytest

from graph_memory.retrieval.keyword_index import KeywordDocument, KeywordIndex, tokenize
from graph_memory.store.models import read_payload


def _doc(doc_id, content, entity_type="function"):
    return KeywordDocument(doc_id=doc_id, content=content, entity_type=entity_type,
                           fields={"entity_name": doc_id, "entity_type": entity_type})


class TestTokenize:
    def test_snake_case_parts(self):
        assert tokenize("get_user Profile") == ["get_user", "get", "user", "profile"]

    def test_punctuation_dropped(self):
        assert tokenize("foo(bar), baz!") == ["foo", "bar", "baz"]

    def test_empty(self):
        assert tokenize("") == []
        assert tokenize(None) == []


class TestKeywordDocument:
    def test_from_chunk_prefixes_name(self):
        record = read_payload({
            "chunk_type": "metadata", "entity_name": "parse_config",
            "entity_type": "function", "content": "Reads settings",
        })
        doc = KeywordDocument.from_chunk(record)
        assert doc.doc_id == "parse_config"
        assert doc.content == "parse_config Reads settings"
        assert doc.fields["entity_type"] == "function"


class TestSearch:
    def test_bm25_score_single_term(self):
        index = KeywordIndex()
        index.index([_doc("d1", "apple"), _doc("d2", "banana")])
        hits = index.search("apple")
        assert [h.doc_id for h in hits] == ["d1"]
        # idf = ln(1 + 1.5/1.5); tf part = 1 * 2.2 / (1 + 1.2 * 1)
        assert hits[0].score == pytest.approx(math.log(2))

    def test_name_only_query_matches(self):
        index = KeywordIndex()
        index.index([_doc("parse_config", "parse_config Reads settings"),
                     _doc("render", "render Draws widgets")])
        assert [h.doc_id for h in index.search("config")] == ["parse_config"]

    def test_ranked_by_term_frequency(self):
        index = KeywordIndex()
        index.index([
            _doc("a", "cache"),
            _doc("b", "cache cache cache"),
            _doc("c", "unrelated words here"),
        ])
        assert [h.doc_id for h in index.search("cache")] == ["b", "a"]

    def test_limit(self):
        index = KeywordIndex()
        index.index([_doc(f"d{i}", "token") for i in range(5)])
        assert len(index.search("token", limit=2)) == 2

    def test_type_filter(self):
        index = KeywordIndex()
        index.index([_doc("Cache", "cache", "class"), _doc("get", "cache", "function")])
        assert [h.doc_id for h in index.search("cache", type_filter=["class"])] == ["Cache"]

    def test_metadata_kind_admits_all(self):
        index = KeywordIndex()
        index.index([_doc("Cache", "cache", "class"), _doc("get", "cache", "function")])
        assert len(index.search("cache", type_filter=["metadata"])) == 2

    def test_implementation_kind_admits_none(self):
        index = KeywordIndex()
        index.index([_doc("Cache", "cache", "class")])
        assert index.search("cache", type_filter=["implementation"]) == []

    def test_empty_index_and_query(self):
        index = KeywordIndex()
        assert index.search("anything") == []
        index.index([_doc("a", "word")])
        assert index.search("   ") == []


class TestRebuild:
    def test_index_replaces_contents(self):
        index = KeywordIndex()
        index.index([_doc("old", "alpha")])
        index.index([_doc("new", "beta")])
        assert len(index) == 1
        assert index.search("alpha") == []
        assert [h.doc_id for h in index.search("beta")] == ["new"]

    def test_clear(self):
        index = KeywordIndex()
        index.index([_doc("a", "alpha")])
        index.clear()
        assert len(index) == 0
        assert index.stats()["document_count"] == 0

    def test_stats(self):
        index = KeywordIndex()
        index.index([_doc("a", "one two"), _doc("b", "two three four five")])
        stats = index.stats()
        assert stats["document_count"] == 2
        assert stats["term_count"] == 5
        assert stats["avg_doc_length"] == 3.0
