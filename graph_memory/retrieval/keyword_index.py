"""
In-memory BM25 keyword index over metadata chunks.

The index is rebuilt wholesale from a full scan: :meth:`KeywordIndex.index`
builds a complete immutable snapshot and swaps it in with a single
reference assignment under a lock, so a concurrent :meth:`search` always
sees either the old or the new snapshot, never a half-built one.
"""

from __future__ import annotations

import logging
import math
import re
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Optional

from ..store.models import ChunkRecord, ChunkType, split_type_tokens

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_K1 = 1.2    # term-frequency saturation
DEFAULT_B = 0.75    # length normalisation

_TOKEN_RE = re.compile(r"[a-z0-9]+(?:_[a-z0-9]+)*")


def tokenize(text: str) -> list[str]:
    """
    Lower-case word tokens; ``snake_case`` words also yield their parts.

    >>> tokenize("get_user Profile")
    ['get_user', 'get', 'user', 'profile']
    """
    tokens: list[str] = []
    for word in _TOKEN_RE.findall((text or "").lower()):
        tokens.append(word)
        if "_" in word:
            tokens.extend(part for part in word.split("_") if part)
    return tokens


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class KeywordDocument:
    """A document to index: id, full text, entity type and source fields."""

    doc_id: str
    content: str
    entity_type: str = "unknown"
    fields: dict = field(default_factory=dict)

    @classmethod
    def from_chunk(cls, record: ChunkRecord) -> "KeywordDocument":
        """Index text is the entity name followed by the stored content."""
        name = record.entity_name or str(record.raw.get("id", ""))
        fields = dict(record.raw)
        fields.update({
            "entity_name": name,
            "entity_type": record.entity_type or "unknown",
            "observations": list(record.observations),
            "file_path": record.file_path,
            "line_number": record.line_number,
            "end_line_number": record.end_line_number,
            "has_implementation": record.has_implementation,
        })
        return cls(
            doc_id=name,
            content=f"{name} {record.content}".strip(),
            entity_type=record.entity_type or "unknown",
            fields=fields,
        )


@dataclass
class KeywordHit:
    doc_id: str
    score: float
    fields: dict


@dataclass(frozen=True)
class _Snapshot:
    documents: tuple
    term_freqs: tuple
    doc_lens: tuple
    doc_freqs: dict
    avgdl: float


_EMPTY = _Snapshot((), (), (), {}, 0.0)


# ---------------------------------------------------------------------------
# KeywordIndex
# ---------------------------------------------------------------------------

class KeywordIndex:
    """
    BM25 ranked retrieval over indexed documents.

    Parameters
    ----------
    k1:
        Term-frequency saturation constant.
    b:
        Length-normalisation constant.
    """

    def __init__(self, k1: float = DEFAULT_K1, b: float = DEFAULT_B) -> None:
        self.k1 = k1
        self.b = b
        self._snapshot: _Snapshot = _EMPTY
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._snapshot.documents)

    def clear(self) -> None:
        with self._lock:
            self._snapshot = _EMPTY

    def index(self, documents: list[KeywordDocument]) -> None:
        """Replace the index contents with *documents*."""
        term_freqs = []
        doc_lens = []
        doc_freqs: Counter = Counter()
        for doc in documents:
            tokens = tokenize(doc.content)
            tf = Counter(tokens)
            term_freqs.append(tf)
            doc_lens.append(len(tokens))
            doc_freqs.update(tf.keys())

        avgdl = sum(doc_lens) / len(doc_lens) if doc_lens else 0.0
        snapshot = _Snapshot(
            documents=tuple(documents),
            term_freqs=tuple(term_freqs),
            doc_lens=tuple(doc_lens),
            doc_freqs=dict(doc_freqs),
            avgdl=avgdl,
        )
        with self._lock:
            self._snapshot = snapshot
        logger.info("Keyword index built with %d documents", len(documents))

    def _idf(self, snapshot: _Snapshot, term: str) -> float:
        n = snapshot.doc_freqs.get(term, 0)
        total = len(snapshot.documents)
        return math.log(1 + (total - n + 0.5) / (n + 0.5))

    def search(
        self,
        query: str,
        limit: int = 20,
        type_filter: Optional[list[str]] = None,
    ) -> list[KeywordHit]:
        """
        Rank indexed documents against *query*.

        *type_filter* may mix entity types with chunk-kind tokens; indexed
        documents are metadata chunks, so only the ``metadata`` kind admits
        documents of every type.

        Returns
        -------
        list[KeywordHit]
            Hits with a positive score, best first, at most *limit*.
        """
        with self._lock:
            snapshot = self._snapshot
        if not snapshot.documents:
            return []

        wanted_types, chunk_kinds = split_type_tokens(type_filter)
        admit_all = not type_filter or ChunkType.METADATA in chunk_kinds

        query_terms = list(dict.fromkeys(tokenize(query)))
        if not query_terms:
            return []

        scored: list[tuple[float, int]] = []
        for i, doc in enumerate(snapshot.documents):
            if not admit_all and doc.entity_type not in wanted_types:
                continue
            tf = snapshot.term_freqs[i]
            norm = 1 - self.b + self.b * (snapshot.doc_lens[i] / snapshot.avgdl
                                          if snapshot.avgdl else 0.0)
            score = 0.0
            for term in query_terms:
                freq = tf.get(term, 0)
                if not freq:
                    continue
                score += self._idf(snapshot, term) * (
                    freq * (self.k1 + 1) / (freq + self.k1 * norm)
                )
            if score > 0:
                scored.append((score, i))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [
            KeywordHit(
                doc_id=snapshot.documents[i].doc_id,
                score=score,
                fields=snapshot.documents[i].fields,
            )
            for score, i in scored[:limit]
        ]

    def stats(self) -> dict:
        snapshot = self._snapshot
        return {
            "document_count": len(snapshot.documents),
            "term_count": len(snapshot.doc_freqs),
            "avg_doc_length": snapshot.avgdl,
        }
