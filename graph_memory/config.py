"""
Configuration: loads settings from .graph-memory.yaml, environment variables,
and built-in defaults (in that priority order: env > YAML > defaults).

Every setting is declared once in ``_SETTINGS`` with its environment
variable, its location in the YAML document and its default.  An empty
environment variable counts as unset.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Iterator

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _Setting:
    attr: str
    env: str
    path: tuple
    default: Any
    cast: Callable[[Any], Any] = str


_SETTINGS = (
    # Qdrant connection
    _Setting("QDRANT_URL", "QDRANT_URL", ("qdrant", "url"), ""),
    _Setting("QDRANT_API_KEY", "QDRANT_API_KEY", ("qdrant", "api_key"), ""),
    _Setting("COLLECTION_NAME", "COLLECTION_NAME", ("qdrant", "collection"), ""),
    _Setting("CONNECT_RETRIES", "QDRANT_CONNECT_RETRIES", ("connect_retries",), 3, int),
    _Setting("CONNECT_RETRY_DELAY", "QDRANT_RETRY_DELAY", ("connect_retry_delay",), 2.0, float),
    _Setting("REQUEST_TIMEOUT", "QDRANT_TIMEOUT", ("request_timeout",), 60, int),
    # Embedding provider
    _Setting("EMBEDDING_PROVIDER", "EMBEDDING_PROVIDER", ("embedding_provider",), "openai",
             lambda v: str(v).lower()),
    _Setting("EMBEDDING_MODEL", "EMBEDDING_MODEL", ("embedding_model",), ""),
    _Setting("OPENAI_API_KEY", "OPENAI_API_KEY", ("openai", "api_key"), ""),
    _Setting("VOYAGE_API_KEY", "VOYAGE_API_KEY", ("voyage", "api_key"), ""),
    # Response assembly
    _Setting("TOKEN_LIMIT", "TOKEN_LIMIT", ("token_limit",), 20000, int),
)

_DEFAULT_MODELS = {
    "openai": "text-embedding-3-small",
    "voyage": "voyage-3-lite",
}

_CONFIG_FILENAMES = (".graph-memory.yaml", ".graph-memory.yml")


def _config_candidates() -> Iterator[str]:
    for directory in (os.getcwd(), os.path.expanduser("~")):
        for name in _CONFIG_FILENAMES:
            yield os.path.join(directory, name)


def _find_config_file(explicit_path: str | None = None) -> str | None:
    """Return the explicit path if it exists, else the first file found in CWD then home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        logger.warning("Config file %s not found, using env and defaults", explicit_path)
        return None
    return next((p for p in _config_candidates() if os.path.isfile(p)), None)


def _load_yaml(path: str) -> dict:
    """Parse *path*; an unreadable or malformed file yields an empty mapping."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Ignoring config file %s: %s", path, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: top level is not a mapping", path)
        return {}
    return data


def _dig(data: dict, path: tuple) -> Any:
    node: Any = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _resolve(setting: _Setting, yaml_data: dict) -> Any:
    source, raw = f"${setting.env}", os.getenv(setting.env)
    if not raw:
        source, raw = ".".join(setting.path), _dig(yaml_data, setting.path)
    if raw is None:
        return setting.default
    try:
        return setting.cast(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid value for {source}: {raw!r}") from exc


class Config:
    """Application configuration.

    Settings are resolved in priority order:
    1. Environment variables
    2. .graph-memory.yaml config file
    3. Built-in defaults
    """

    def __init__(self, yaml_data: dict | None = None):
        yd = yaml_data or {}
        for setting in _SETTINGS:
            setattr(self, setting.attr, _resolve(setting, yd))

        if not self.EMBEDDING_MODEL:
            self.EMBEDDING_MODEL = _DEFAULT_MODELS.get(
                self.EMBEDDING_PROVIDER, _DEFAULT_MODELS["openai"])

    def validate_url(self) -> str:
        """Return the Qdrant URL, raising if it is missing or malformed."""
        if not self.QDRANT_URL:
            raise ConfigurationError("QDRANT_URL environment variable is required")
        if not (self.QDRANT_URL.startswith("http://")
                or self.QDRANT_URL.startswith("https://")):
            raise ConfigurationError("QDRANT_URL must start with http:// or https://")
        return self.QDRANT_URL

    def require_collection(self) -> str:
        """Return the collection name, raising if it is not configured."""
        if not self.COLLECTION_NAME:
            raise ConfigurationError("COLLECTION_NAME environment variable is required")
        return self.COLLECTION_NAME

    @classmethod
    def load(cls, config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(config_path)
        if path:
            logger.debug("Loading config from %s", path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data)
