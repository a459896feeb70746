"""
Response assembly: token-bounded graph views.
"""

from .assembler import AssembledResponse, ResponseAssembler, SectionState
from .tokens import TokenBudget, estimate_tokens

__all__ = [
    "AssembledResponse",
    "ResponseAssembler",
    "SectionState",
    "TokenBudget",
    "estimate_tokens",
]
