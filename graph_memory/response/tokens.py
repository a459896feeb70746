"""
Token estimation and budget bookkeeping for assembled responses.
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from typing import Any, Callable


def estimate_tokens(content: Any) -> int:
    """Rough token count of *content* rendered as compact JSON (~4 chars per token)."""
    if isinstance(content, str):
        text = content
    else:
        text = json.dumps(content, separators=(",", ":"), ensure_ascii=False, default=str)
    return len(text) // 4


@dataclass
class TokenBudget:
    total: int
    used: int = 0

    @property
    def remaining(self) -> int:
        return max(self.total - self.used, 0)

    def fits(self, content: Any) -> bool:
        return estimate_tokens(content) <= self.remaining

    def consume(self, tokens: int) -> None:
        self.used += tokens


# ---------------------------------------------------------------------------
# Truncation
# ---------------------------------------------------------------------------

def _is_empty(content: Any) -> bool:
    if isinstance(content, dict):
        return all(_is_empty(v) for v in content.values())
    if isinstance(content, list):
        return all(_is_empty(v) for v in content)
    return False


def _collections(content: Any) -> tuple[list[list], list[dict]]:
    """Return the non-empty lists and the non-empty nested dicts under *content*."""
    lists: list[list] = []
    dicts: list[dict] = []
    stack = [(content, True)]
    while stack:
        node, is_root = stack.pop()
        if isinstance(node, list):
            children = node
            if node:
                lists.append(node)
        elif isinstance(node, dict):
            children = list(node.values())
            if node and not is_root:
                dicts.append(node)
        else:
            continue
        stack.extend((c, False) for c in children if isinstance(c, (list, dict)))
    return lists, dicts


def _drop_trailing(content: Any) -> bool:
    """
    Remove one trailing item from the largest list inside *content*.

    Without lists, the last key of the largest nested dict goes, and only
    then the last key of *content* itself.  Returns False when nothing
    could be removed.
    """
    lists, dicts = _collections(content)
    if lists:
        max(lists, key=estimate_tokens).pop()
        return True
    if dicts:
        target = max(dicts, key=estimate_tokens)
        target.pop(next(reversed(target)))
        return True
    if isinstance(content, dict) and content:
        content.pop(next(reversed(content)))
        return True
    return False


def truncate_to_fit(content: Any, budget: TokenBudget,
                    measure: Callable[[Any], int] = estimate_tokens) -> Any:
    """
    Shrink a copy of *content* until it fits *budget*.

    *measure* prices a candidate; callers placing content inside a larger
    document pass one that includes the surrounding key and separators.
    Returns None if the content became empty before fitting.
    """
    current = copy.deepcopy(content)
    while measure(current) > budget.remaining:
        if not _drop_trailing(current):
            return None
    if _is_empty(current):
        return None
    return current
