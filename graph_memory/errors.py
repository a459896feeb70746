"""Exception hierarchy for graph_memory."""


class GraphMemoryError(Exception):
    """Base class for all graph_memory errors."""


class ConfigurationError(GraphMemoryError):
    """Raised when a required setting is missing or malformed."""


class StoreConnectionError(GraphMemoryError):
    """Raised when Qdrant cannot be reached after all startup retries."""


class EntityNotFoundError(GraphMemoryError):
    """Raised when an operation references an entity that does not exist."""

    def __init__(self, name: str):
        super().__init__(f"Entity not found: {name}")
        self.name = name


class EmbeddingError(GraphMemoryError):
    """Raised when the embedding provider fails after its retries."""
