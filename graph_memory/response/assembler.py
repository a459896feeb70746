"""
ResponseAssembler: shapes a graph view into a fixed token budget.

Rich views are built section by section, highest priority first.  Each
section ends in one of three states:

- **fitted**     built content fits the remaining budget and is committed
- **truncated**  trailing items were dropped until it fit
- **omitted**    its reserve was not available, or it could not be shrunk

Flat views (entities, relationships, raw) are fitted as a whole by
repeatedly cutting their lists to 80% of the previous length.

Each section is charged what it adds to the estimate of the whole
document, so the reported token count equals the estimate of the returned
content and never exceeds the limit.  If even the summary cannot fit, an empty,
truncated envelope is returned instead of a partial document.
"""

from __future__ import annotations

import enum
import json
import logging
import re
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from ..store.chunk_store import EntityGraph
from ..store.models import Entity, Relation, split_type_tokens
from . import graph_view
from .tokens import TokenBudget, estimate_tokens, truncate_to_fit

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

DEFAULT_TOKEN_LIMIT = 20000
DEFAULT_SECTION_LIMIT = 50
TRUNCATION_SLACK = 200
SHRINK_FACTOR = 0.8

SUMMARY = "summary"
API_SURFACE = "apiSurface"
STRUCTURE = "structure"
DEPENDENCIES = "dependencies"
RELATIONS = "relations"
ENTITIES = "entities"

SECTION_PRIORITIES = {
    SUMMARY: 5,
    API_SURFACE: 4,
    STRUCTURE: 3,
    DEPENDENCIES: 2,
    RELATIONS: 1,
}
SECTION_RESERVES = {
    SUMMARY: 0,
    API_SURFACE: 500,
    STRUCTURE: 1000,
    DEPENDENCIES: 300,
    RELATIONS: 200,
}

# Entity-centred views place related entities between summary and relations.
ENTITY_VIEW_PRIORITY = 3
ENTITY_VIEW_RESERVE = 200

DOCSTRING_MAX = 200
SIGNATURE_MAX = 100
KEY_MODULE_LIMIT = 10
DEPENDENCY_LIMIT = 20
KEY_USAGE_LIMIT = 30
KEY_USAGE_TYPES = ("calls", "uses", "implements")

_DEFINED_IN = "Defined in:"
_LINE_RE = re.compile(r"Line:\s*(-?\d+)")
_DOCSTRING_PREFIX_RE = re.compile(r".*docstring[:\s]*")


class SectionState(str, enum.Enum):
    PENDING = "pending"
    FITTED = "fitted"
    TRUNCATED = "truncated"
    OMITTED = "omitted"


@dataclass
class Section:
    """A candidate section: how to build it and how much room it needs."""

    name: str
    priority: int
    reserve: int
    build: Callable[[], Any]
    critical: bool = False
    state: SectionState = SectionState.PENDING


@dataclass
class AssembledResponse:
    content: dict
    token_count: int
    token_limit: int
    truncated: bool = False
    truncation_reason: Optional[str] = None
    sections_included: list[str] = field(default_factory=list)
    section_states: dict[str, SectionState] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "content": self.content,
            "meta": {
                "tokenCount": self.token_count,
                "tokenLimit": self.token_limit,
                "truncated": self.truncated,
                "truncationReason": self.truncation_reason,
                "sectionsIncluded": list(self.sections_included),
            },
        }

    def to_text(self) -> str:
        """Compact JSON content followed by an HTML-comment metadata trailer."""
        text = json.dumps(self.content, separators=(",", ":"), ensure_ascii=False, default=str)
        meta = (
            "\n\n<!-- Response Metadata:\n"
            f"Tokens: {self.token_count}/{self.token_limit}\n"
            f"Truncated: {str(self.truncated).lower()}\n"
            f"Sections: {', '.join(self.sections_included)}\n"
        )
        if self.truncation_reason:
            meta += f"Reason: {self.truncation_reason}\n"
        return text + meta + "-->"


class CriticalSectionOverflow(Exception):
    """The critical section could not be fitted even after truncation."""

    def __init__(self, name: str) -> None:
        super().__init__(f"{name} section exceeds token limit")
        self.name = name


# ---------------------------------------------------------------------------
# Observation parsing
# ---------------------------------------------------------------------------

def _find(observations: list[str], *needles: str) -> Optional[str]:
    for obs in observations:
        if any(n in obs for n in needles):
            return obs
    return None


def defined_in(entity: Entity) -> Optional[str]:
    obs = _find(entity.observations, _DEFINED_IN)
    return obs.replace(_DEFINED_IN, "").strip() if obs else None


def _line(entity: Entity) -> int:
    obs = _find(entity.observations, "Line:")
    match = _LINE_RE.search(obs) if obs else None
    return int(match.group(1)) if match else 0


def _docstring(entity: Entity) -> Optional[str]:
    obs = _find(entity.observations, "docstring", "Description")
    if obs is None:
        return None
    return _DOCSTRING_PREFIX_RE.sub("", obs, count=1).strip()[:DOCSTRING_MAX]


def _signature(entity: Entity) -> Optional[str]:
    obs = _find(entity.observations, "Signature:", "(")
    return obs.strip()[:SIGNATURE_MAX] if obs else None


# ---------------------------------------------------------------------------
# Section builders
# ---------------------------------------------------------------------------

def key_modules(entities: list[Entity]) -> list[str]:
    """First path segment of every multi-segment ``Defined in`` path."""
    modules: list[str] = []
    for entity in entities:
        path = defined_in(entity)
        if not path:
            continue
        parts = path.split("/")
        if len(parts) > 1 and parts[0] not in modules:
            modules.append(parts[0])
    return modules[:KEY_MODULE_LIMIT]


def build_summary(entities: list[Entity], relations: list[Relation]) -> dict:
    return {
        "totalEntities": len(entities),
        "totalRelations": len(relations),
        "breakdown": dict(Counter(e.entity_type for e in entities)),
        "keyModules": key_modules(entities),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


def build_structure(entities: list[Entity]) -> dict:
    structure: dict[str, dict] = {}
    for entity in entities:
        path = defined_in(entity)
        if path is None:
            continue
        node = structure.setdefault(path, {"type": "file", "entities": 0})
        node["entities"] += 1
    return structure


def build_api_surface(entities: list[Entity], limit: int) -> dict:
    """Public classes and functions with their location, signature and doc excerpt."""
    classes = []
    for cls in [e for e in entities if e.entity_type == "class" and not e.name.startswith("_")][:limit]:
        item = {"name": cls.name, "file": defined_in(cls) or "", "line": _line(cls)}
        doc = _docstring(cls)
        if doc is not None:
            item["docstring"] = doc
        item["methods"] = []
        item["inherits"] = []
        classes.append(item)

    functions = []
    callables = [
        e for e in entities
        if e.entity_type in ("function", "method") and not e.name.startswith("_")
    ]
    for fn in callables[:limit]:
        item = {"name": fn.name, "file": defined_in(fn) or "", "line": _line(fn)}
        signature = _signature(fn)
        if signature is not None:
            item["signature"] = signature
        doc = _docstring(fn)
        if doc is not None:
            item["docstring"] = doc
        functions.append(item)

    return {"classes": classes, "functions": functions}


def _is_internal_target(target: str) -> bool:
    return "/" in target or ".py" in target


def build_dependencies(relations: list[Relation]) -> dict:
    imports = [r for r in relations if r.relation_type == "imports"]
    external: list[str] = []
    for rel in imports:
        if not _is_internal_target(rel.target) and rel.target not in external:
            external.append(rel.target)
    internal = [
        {"from": r.source, "to": r.target}
        for r in imports if _is_internal_target(r.target)
    ]
    return {
        "external": external[:DEPENDENCY_LIMIT],
        "internal": internal[:DEPENDENCY_LIMIT],
    }


def build_relations(relations: list[Relation]) -> dict:
    inheritance = [
        {"from": r.source, "to": r.target}
        for r in relations if r.relation_type == "inherits"
    ]
    key_usages = [
        {"from": r.source, "to": r.target, "type": r.relation_type}
        for r in relations if r.relation_type in KEY_USAGE_TYPES
    ]
    return {"inheritance": inheritance, "keyUsages": key_usages[:KEY_USAGE_LIMIT]}


# ---------------------------------------------------------------------------
# ResponseAssembler
# ---------------------------------------------------------------------------

class ResponseAssembler:
    """
    Builds token-bounded graph views.

    Parameters
    ----------
    token_limit:
        Maximum estimated tokens of the assembled content.
    truncation_slack:
        Remaining budget above which a non-critical section that does not
        fit is truncated rather than omitted.
    """

    def __init__(self, token_limit: int = DEFAULT_TOKEN_LIMIT,
                 truncation_slack: int = TRUNCATION_SLACK) -> None:
        self.token_limit = token_limit
        self.truncation_slack = truncation_slack

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def assemble(
        self,
        entities: list[Entity],
        relations: list[Relation],
        mode: str = "smart",
        entity_types: Optional[list[str]] = None,
        limit: Optional[int] = None,
    ) -> AssembledResponse:
        """
        Assemble a whole-graph view in *mode*.

        Any failure while building is reported through the error envelope.
        """
        try:
            if mode == "smart":
                return self.place_sections(
                    self._smart_sections(entities, relations, limit or DEFAULT_SECTION_LIMIT)
                )
            if mode == "entities":
                return self._entities_view(entities, entity_types, limit)
            if mode == "relationships":
                return self._relationships_view(relations)
            if mode == "raw":
                return self._raw_view(entities, relations)
            raise ValueError(f"Unknown mode: {mode}")
        except CriticalSectionOverflow as exc:
            return self.error_response(str(exc))
        except Exception as exc:
            logger.warning("Failed to assemble %s response: %s", mode, exc)
            return self.error_response(f"Error building response: {exc}")

    def assemble_entity_view(self, view: EntityGraph, mode: str = "smart") -> AssembledResponse:
        """Assemble the neighbourhood of a single entity."""
        try:
            if mode != "smart":
                return self._raw_view(view.entities, view.relations)
            return self.place_sections(self._entity_sections(view))
        except CriticalSectionOverflow as exc:
            return self.error_response(str(exc))
        except Exception as exc:
            logger.warning("Failed to assemble entity view: %s", exc)
            return self.error_response(f"Error building response: {exc}")

    def error_response(self, reason: str) -> AssembledResponse:
        return AssembledResponse(
            content={"entities": [], "relations": []},
            token_count=0,
            token_limit=self.token_limit,
            truncated=True,
            truncation_reason=reason,
        )

    # ------------------------------------------------------------------
    # Section placement
    # ------------------------------------------------------------------

    def place_sections(self, sections: list[Section],
                       budget: Optional[TokenBudget] = None) -> AssembledResponse:
        """
        Place *sections* into *budget* by descending priority.

        Raises
        ------
        CriticalSectionOverflow
            If a critical section cannot be committed even truncated.
        """
        budget = budget or TokenBudget(self.token_limit)
        start = budget.used
        content: dict = {}
        included: list[str] = []
        truncated = False
        reason: Optional[str] = None

        for section in sorted(sections, key=lambda s: s.priority, reverse=True):
            if budget.remaining < section.reserve and not section.critical:
                section.state = SectionState.OMITTED
                truncated = True
                reason = self.omitted_reason(section.name)
                logger.debug("Section %s omitted: %d < reserve %d",
                             section.name, budget.remaining, section.reserve)
                continue

            def cost(part: Any, name: str = section.name) -> int:
                # Marginal size in the document: key, separators and value.
                return estimate_tokens({**content, name: part}) - estimate_tokens(content)

            built = section.build()
            tokens = cost(built)
            if tokens <= budget.remaining:
                content[section.name] = built
                budget.consume(tokens)
                included.append(section.name)
                section.state = SectionState.FITTED
                continue

            shrunk = None
            if section.critical or budget.remaining > self.truncation_slack:
                shrunk = truncate_to_fit(built, budget, measure=cost)
            if shrunk is not None:
                budget.consume(cost(shrunk))
                content[section.name] = shrunk
                included.append(f"{section.name} (truncated)")
                section.state = SectionState.TRUNCATED
                truncated = True
                if reason is None:
                    reason = f"{section.name} section truncated to fit token limit"
                continue

            if section.critical:
                raise CriticalSectionOverflow(section.name)
            section.state = SectionState.OMITTED
            truncated = True
            reason = self.omitted_reason(section.name)
            logger.debug("Section %s omitted: needs %d, %d remaining",
                         section.name, tokens, budget.remaining)

        return AssembledResponse(
            content=content,
            token_count=budget.used - start,
            token_limit=budget.total,
            truncated=truncated,
            truncation_reason=reason if truncated else None,
            sections_included=included,
            section_states={s.name: s.state for s in sections},
        )

    @staticmethod
    def omitted_reason(name: str) -> str:
        return f"{name} section excluded due to token limit"

    def _smart_sections(self, entities: list[Entity], relations: list[Relation],
                        limit: int) -> list[Section]:
        return [
            Section(SUMMARY, SECTION_PRIORITIES[SUMMARY], SECTION_RESERVES[SUMMARY],
                    lambda: build_summary(entities, relations), critical=True),
            Section(STRUCTURE, SECTION_PRIORITIES[STRUCTURE], SECTION_RESERVES[STRUCTURE],
                    lambda: build_structure(entities)),
            Section(API_SURFACE, SECTION_PRIORITIES[API_SURFACE], SECTION_RESERVES[API_SURFACE],
                    lambda: build_api_surface(entities, limit)),
            Section(DEPENDENCIES, SECTION_PRIORITIES[DEPENDENCIES],
                    SECTION_RESERVES[DEPENDENCIES], lambda: build_dependencies(relations)),
            Section(RELATIONS, SECTION_PRIORITIES[RELATIONS], SECTION_RESERVES[RELATIONS],
                    lambda: build_relations(relations)),
        ]

    def _entity_sections(self, view: EntityGraph) -> list[Section]:
        target = view.target
        return [
            Section(SUMMARY, SECTION_PRIORITIES[SUMMARY], SECTION_RESERVES[SUMMARY],
                    lambda: graph_view.entity_summary(
                        target.entity_name, target.entity_type, target.file_path,
                        view.entities, view.relations,
                    ),
                    critical=True),
            Section(ENTITIES, ENTITY_VIEW_PRIORITY, ENTITY_VIEW_RESERVE,
                    lambda: [e.to_dict() for e in
                             view.entities[:graph_view.RELATED_ENTITY_LIMIT]]),
            Section(RELATIONS, SECTION_PRIORITIES[RELATIONS], SECTION_RESERVES[RELATIONS],
                    lambda: [r.to_dict() for r in
                             view.relations[:graph_view.RELATION_LIMIT]]),
        ]

    # ------------------------------------------------------------------
    # Flat views
    # ------------------------------------------------------------------

    def fit_flat(self, entities: list[dict], relations: list[dict]) -> tuple[dict, bool]:
        """
        Cut both lists to 80% of their length until the content fits.

        Returns the fitted content and whether anything was cut.
        """
        budget = TokenBudget(self.token_limit)
        content = {"entities": entities, "relations": relations}
        cut = False
        while not budget.fits(content) and (content["entities"] or content["relations"]):
            content = {
                "entities": content["entities"][:int(len(content["entities"]) * SHRINK_FACTOR)],
                "relations": content["relations"][:int(len(content["relations"]) * SHRINK_FACTOR)],
            }
            cut = True
        return content, cut

    def _flat_response(self, content: dict, cut: bool, reason: Optional[str],
                       sections: list[str]) -> AssembledResponse:
        tokens = estimate_tokens(content)
        if tokens > self.token_limit:
            return self.error_response("response exceeds token limit")
        return AssembledResponse(
            content=content,
            token_count=tokens,
            token_limit=self.token_limit,
            truncated=cut,
            truncation_reason=reason if cut else None,
            sections_included=sections,
            section_states={
                name: SectionState.TRUNCATED if cut else SectionState.FITTED
                for name in sections
            },
        )

    def _entities_view(self, entities: list[Entity], entity_types: Optional[list[str]],
                       limit: Optional[int]) -> AssembledResponse:
        wanted, _ = split_type_tokens(entity_types)
        if wanted:
            entities = [e for e in entities if e.entity_type in wanted]
        if limit:
            entities = entities[:limit]
        content, cut = self.fit_flat([e.to_dict() for e in entities], [])
        reason = f"Reduced from {len(entities)} to {len(content['entities'])} entities"
        return self._flat_response(content, cut, reason, [ENTITIES])

    def _relationships_view(self, relations: list[Relation]) -> AssembledResponse:
        content, cut = self.fit_flat([], [r.to_dict() for r in relations])
        reason = f"Reduced from {len(relations)} to {len(content['relations'])} relations"
        return self._flat_response(content, cut, reason, [RELATIONS])

    def _raw_view(self, entities: list[Entity], relations: list[Relation]) -> AssembledResponse:
        content, cut = self.fit_flat(
            [e.to_dict() for e in entities], [r.to_dict() for r in relations]
        )
        reason = (
            f"Reduced from {len(entities)} to {len(content['entities'])} entities "
            f"and {len(relations)} to {len(content['relations'])} relations"
        )
        return self._flat_response(content, cut, reason, [ENTITIES, RELATIONS])
