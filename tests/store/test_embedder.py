"""
Unit tests for graph_memory.store.embedder

OpenAI and Voyage calls are mocked.
"""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from graph_memory.errors import ConfigurationError, EmbeddingError
from graph_memory.store.embedder import (
    OpenAIEmbedder,
    VoyageEmbedder,
    chunk_key,
    get_embedder,
    make_point_id,
)


class TestPointIds:
    def test_chunk_key_format(self):
        assert chunk_key("manual", "foo", "metadata") == "manual::foo::metadata"

    def test_make_point_id_deterministic(self):
        assert make_point_id("manual::foo::metadata") == make_point_id("manual::foo::metadata")
        assert make_point_id("manual::foo::metadata") != make_point_id("manual::bar::metadata")

    def test_make_point_id_is_uint32(self):
        for key in ("a", "b", "relation::A-calls-B::relation"):
            assert 0 <= make_point_id(key) <= 0xFFFFFFFF


class TestOpenAIEmbedder:
    def test_embed_uses_client(self):
        embedder = OpenAIEmbedder("text-embedding-3-small", "sk-test")
        client = MagicMock()
        client.embeddings.create.return_value = SimpleNamespace(
            data=[SimpleNamespace(embedding=[0.1, 0.2])]
        )
        embedder._client = client

        assert embedder.embed("hello") == [0.1, 0.2]
        client.embeddings.create.assert_called_once_with(
            model="text-embedding-3-small", input="hello"
        )

    def test_missing_key_raises_configuration_error(self):
        embedder = OpenAIEmbedder("text-embedding-3-small", "")
        with patch.dict("sys.modules", {"openai": MagicMock()}):
            with pytest.raises(ConfigurationError):
                embedder.embed("hello")

    def test_retries_then_raises(self):
        embedder = OpenAIEmbedder("m", "sk-test")
        client = MagicMock()
        client.embeddings.create.side_effect = RuntimeError("rate limited")
        embedder._client = client

        with patch("graph_memory.store.embedder.time.sleep") as sleep:
            with pytest.raises(EmbeddingError):
                embedder.embed("hello")
        assert client.embeddings.create.call_count == 3
        assert [c.args[0] for c in sleep.call_args_list] == [2, 4]

    def test_recovers_after_transient_error(self):
        embedder = OpenAIEmbedder("m", "sk-test")
        client = MagicMock()
        client.embeddings.create.side_effect = [
            RuntimeError("timeout"),
            SimpleNamespace(data=[SimpleNamespace(embedding=[1.0])]),
        ]
        embedder._client = client
        with patch("graph_memory.store.embedder.time.sleep"):
            assert embedder.embed("hello") == [1.0]


class TestVoyageEmbedder:
    def test_posts_document_input(self):
        response = MagicMock()
        response.json.return_value = {"data": [{"embedding": [0.5, 0.5]}]}
        with patch("graph_memory.store.embedder.requests.post", return_value=response) as post:
            result = VoyageEmbedder("voyage-3-lite", "vk").embed("text")

        assert result == [0.5, 0.5]
        body = post.call_args.kwargs["json"]
        assert body == {"input": "text", "model": "voyage-3-lite", "input_type": "document"}
        assert post.call_args.kwargs["headers"]["Authorization"] == "Bearer vk"

    def test_missing_key_is_not_retried(self):
        with patch("graph_memory.store.embedder.requests.post") as post:
            with pytest.raises(ConfigurationError):
                VoyageEmbedder("voyage-3-lite", "").embed("text")
        post.assert_not_called()


class TestGetEmbedder:
    def test_selects_provider(self):
        voyage = get_embedder(SimpleNamespace(
            EMBEDDING_PROVIDER="voyage", EMBEDDING_MODEL="voyage-3-lite", VOYAGE_API_KEY="k",
        ))
        assert isinstance(voyage, VoyageEmbedder)

        openai = get_embedder(SimpleNamespace(
            EMBEDDING_PROVIDER="openai", EMBEDDING_MODEL="text-embedding-3-small",
            OPENAI_API_KEY="k",
        ))
        assert isinstance(openai, OpenAIEmbedder)
        assert openai.model == "text-embedding-3-small"
