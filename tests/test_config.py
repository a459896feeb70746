"""
Unit tests for graph_memory.config
"""

from __future__ import annotations

import logging

import pytest

from graph_memory.config import Config
from graph_memory.errors import ConfigurationError

_ENV_KEYS = [
    "QDRANT_URL", "QDRANT_API_KEY", "COLLECTION_NAME", "EMBEDDING_PROVIDER",
    "EMBEDDING_MODEL", "OPENAI_API_KEY", "VOYAGE_API_KEY", "TOKEN_LIMIT",
    "QDRANT_CONNECT_RETRIES", "QDRANT_RETRY_DELAY", "QDRANT_TIMEOUT",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


class TestResolution:
    def test_defaults(self):
        config = Config()
        assert config.QDRANT_URL == ""
        assert config.EMBEDDING_PROVIDER == "openai"
        assert config.EMBEDDING_MODEL == "text-embedding-3-small"
        assert config.TOKEN_LIMIT == 20000
        assert config.CONNECT_RETRIES == 3
        assert config.CONNECT_RETRY_DELAY == 2.0

    def test_yaml_overrides_defaults(self):
        config = Config({
            "qdrant": {"url": "http://qdrant:6333", "collection": "graph"},
            "embedding_provider": "voyage",
            "token_limit": 5000,
        })
        assert config.QDRANT_URL == "http://qdrant:6333"
        assert config.COLLECTION_NAME == "graph"
        assert config.EMBEDDING_MODEL == "voyage-3-lite"
        assert config.TOKEN_LIMIT == 5000

    def test_env_overrides_yaml(self, monkeypatch):
        monkeypatch.setenv("QDRANT_URL", "https://env:6333")
        monkeypatch.setenv("TOKEN_LIMIT", "1234")
        monkeypatch.setenv("EMBEDDING_PROVIDER", "VOYAGE")
        config = Config({"qdrant": {"url": "http://yaml:6333"}, "token_limit": 5000})
        assert config.QDRANT_URL == "https://env:6333"
        assert config.TOKEN_LIMIT == 1234
        assert config.EMBEDDING_PROVIDER == "voyage"

    def test_api_key_sections(self):
        config = Config({"openai": {"api_key": "sk-yaml"}, "voyage": {"api_key": "vk"}})
        assert config.OPENAI_API_KEY == "sk-yaml"
        assert config.VOYAGE_API_KEY == "vk"


class TestValidation:
    @pytest.mark.parametrize("url", ["", "localhost:6333", "ftp://host"])
    def test_bad_urls(self, url):
        with pytest.raises(ConfigurationError):
            Config({"qdrant": {"url": url}}).validate_url()

    def test_good_url(self):
        assert Config({"qdrant": {"url": "https://q.example"}}).validate_url() == "https://q.example"

    def test_require_collection(self):
        with pytest.raises(ConfigurationError):
            Config().require_collection()
        assert Config({"qdrant": {"collection": "c"}}).require_collection() == "c"


class TestLoad:
    def test_load_explicit_file(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text("qdrant:\n  url: http://file:6333\n  collection: mem\n")
        config = Config.load(str(path))
        assert config.QDRANT_URL == "http://file:6333"
        assert config.COLLECTION_NAME == "mem"

    def test_missing_explicit_file_uses_defaults(self, tmp_path):
        config = Config.load(str(tmp_path / "nope.yaml"))
        assert config.QDRANT_URL == ""

    def test_invalid_yaml_ignored(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("qdrant: [unclosed\n")
        assert Config.load(str(path)).QDRANT_URL == ""

    def test_discovers_file_in_cwd(self, tmp_path, monkeypatch):
        (tmp_path / ".graph-memory.yaml").write_text("qdrant:\n  collection: found\n")
        monkeypatch.chdir(tmp_path)
        assert Config.load().COLLECTION_NAME == "found"


class TestEdgeCases:
    def test_empty_env_falls_back_to_yaml(self, monkeypatch):
        monkeypatch.setenv("QDRANT_URL", "")
        monkeypatch.setenv("TOKEN_LIMIT", "")
        config = Config({"qdrant": {"url": "http://yaml:6333"}, "token_limit": 5000})
        assert config.QDRANT_URL == "http://yaml:6333"
        assert config.TOKEN_LIMIT == 5000

    def test_non_mapping_section_uses_defaults(self):
        config = Config({"qdrant": "http://wrong-shape", "openai": ["sk"]})
        assert config.QDRANT_URL == ""
        assert config.OPENAI_API_KEY == ""

    def test_invalid_number_names_its_source(self, monkeypatch):
        monkeypatch.setenv("TOKEN_LIMIT", "lots")
        with pytest.raises(ConfigurationError, match=r"\$TOKEN_LIMIT"):
            Config()

    def test_invalid_yaml_number(self):
        with pytest.raises(ConfigurationError, match="connect_retry_delay"):
            Config({"connect_retry_delay": "soon"})

    def test_missing_explicit_file_is_logged(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING, logger="graph_memory.config"):
            Config.load(str(tmp_path / "nope.yaml"))
        assert "nope.yaml not found" in caplog.text

    def test_non_mapping_file_ignored(self, tmp_path, caplog):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with caplog.at_level(logging.WARNING, logger="graph_memory.config"):
            assert Config.load(str(path)).QDRANT_URL == ""
        assert "not a mapping" in caplog.text
