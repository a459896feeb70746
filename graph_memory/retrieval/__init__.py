"""
Retrieval: keyword ranking, hybrid fusion and implementation scope expansion.
"""

from .hybrid import SearchService, reciprocal_rank_fusion
from .keyword_index import KeywordIndex
from .scope import ScopeExpander

__all__ = [
    "KeywordIndex",
    "ScopeExpander",
    "SearchService",
    "reciprocal_rank_fusion",
]
