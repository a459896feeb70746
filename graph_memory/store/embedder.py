"""
Embedding providers and deterministic chunk ids.

Two providers are supported, selected by ``EMBEDDING_PROVIDER``:

- ``openai``: OpenAI Embeddings API via the ``openai`` SDK
- ``voyage``: Voyage AI HTTP API via ``requests``

A provider failure is raised as :class:`~graph_memory.errors.EmbeddingError`
after its own bounded retries; there is no substitution of another provider.
"""

from __future__ import annotations

import hashlib
import logging
import time

import requests

from ..config import Config
from ..errors import ConfigurationError, EmbeddingError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MAX_RETRIES = 3
VOYAGE_URL = "https://api.voyageai.com/v1/embeddings"


# ---------------------------------------------------------------------------
# Deterministic ids for idempotent Qdrant upserts
# ---------------------------------------------------------------------------

def chunk_key(namespace: str, logical_id: str, kind: str) -> str:
    """Return the canonical ``namespace::logical-id::kind`` key."""
    return f"{namespace}::{logical_id}::{kind}"


def make_point_id(key: str) -> int:
    """
    Hash *key* to a stable unsigned 32-bit point id.

    The first four bytes of the SHA-256 digest, read big-endian.  Identical
    keys always produce identical ids, so re-persisting overwrites in place.
    """
    digest = hashlib.sha256(key.encode("utf-8")).digest()
    return int.from_bytes(digest[:4], "big")


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

class Embedder:
    """Base class: text → fixed-length float vector."""

    provider = ""

    def __init__(self, model: str, max_retries: int = MAX_RETRIES) -> None:
        self.model = model
        self.max_retries = max_retries

    def _embed(self, text: str) -> list[float]:
        raise NotImplementedError

    def embed(self, text: str) -> list[float]:
        """
        Embed *text*, retrying with exponential back-off on failure.

        Raises
        ------
        EmbeddingError
            If all retries are exhausted.
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                return self._embed(text)
            except ConfigurationError:
                raise
            except Exception as exc:
                if attempt < self.max_retries:
                    wait = 2 ** attempt
                    logger.warning(
                        "%s embedding error (attempt %d/%d): %s; retrying in %ds",
                        self.provider, attempt, self.max_retries, exc, wait,
                    )
                    time.sleep(wait)
                else:
                    raise EmbeddingError(
                        f"Failed to generate embeddings with {self.provider}: {exc}"
                    ) from exc
        raise EmbeddingError(f"Failed to generate embeddings with {self.provider}")


class OpenAIEmbedder(Embedder):

    provider = "openai"

    def __init__(self, model: str, api_key: str, **kwargs) -> None:
        super().__init__(model, **kwargs)
        self._api_key = api_key
        self._client = None

    def _get_client(self):
        """Return an openai.OpenAI client, raising if not installed or unkeyed."""
        if self._client is not None:
            return self._client
        try:
            import openai  # type: ignore
        except ImportError as exc:
            raise ConfigurationError(
                "openai package is required for embedding. "
                "Install it with: pip install 'graph-memory[semantic]'"
            ) from exc
        if not self._api_key:
            raise ConfigurationError("OPENAI_API_KEY environment variable is not set.")
        self._client = openai.OpenAI(api_key=self._api_key)
        return self._client

    def _embed(self, text: str) -> list[float]:
        response = self._get_client().embeddings.create(model=self.model, input=text)
        return response.data[0].embedding


class VoyageEmbedder(Embedder):

    provider = "voyage"

    def __init__(self, model: str, api_key: str, **kwargs) -> None:
        super().__init__(model, **kwargs)
        self._api_key = api_key

    def _embed(self, text: str) -> list[float]:
        if not self._api_key:
            raise ConfigurationError(
                "VOYAGE_API_KEY environment variable is required for Voyage embeddings"
            )
        response = requests.post(
            VOYAGE_URL,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            json={"input": text, "model": self.model, "input_type": "document"},
            timeout=(10, 60),
        )
        response.raise_for_status()
        return response.json()["data"][0]["embedding"]


def get_embedder(config: Config) -> Embedder:
    """Return the embedder selected by ``config.EMBEDDING_PROVIDER``."""
    if config.EMBEDDING_PROVIDER == "voyage":
        return VoyageEmbedder(config.EMBEDDING_MODEL, config.VOYAGE_API_KEY)
    return OpenAIEmbedder(config.EMBEDDING_MODEL, config.OPENAI_API_KEY)
