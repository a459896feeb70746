"""
Graph Memory: a knowledge graph stored as content-addressed chunks in Qdrant.

Entities and typed relations are persisted as deterministic-id points in a
vector collection; queries combine semantic and keyword retrieval, expand
implementation scopes along recorded call/import edges, and assemble graph
views that fit a fixed token budget.
"""

__version__ = "0.1.0"
