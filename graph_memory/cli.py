"""
`graph-memory` command line.

Commands
--------
graph-memory create-entities FILE                -- create entities from a JSON file
graph-memory create-relations FILE               -- create relations from a JSON file
graph-memory add-observations NAME OBS [OBS ...]
graph-memory delete-observations NAME OBS [OBS ...]
graph-memory delete-entities NAME [NAME ...]
graph-memory delete-relations FILE
graph-memory load FILE                           -- bulk import {"entities": [...], "relations": [...]}
graph-memory search "<query>" --mode hybrid --types class,function --limit 10
graph-memory implementation NAME --scope logical
graph-memory graph --mode smart --entity NAME --limit 150
graph-memory status

Global options ``--config PATH`` (YAML config file) and ``--verbose``.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Optional

from tqdm import tqdm

from .config import Config
from .errors import GraphMemoryError
from .manager import GRAPH_MODES, KnowledgeGraphManager
from .retrieval.hybrid import SEARCH_MODES
from .retrieval.scope import SCOPES

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_manager(args: argparse.Namespace) -> KnowledgeGraphManager:
    """Build and initialise a manager from the loaded configuration."""
    config = Config.load(args.config)
    manager = KnowledgeGraphManager.from_config(config)
    manager.initialize()
    return manager


def _read_json(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _read_items(path: str, key: str) -> list:
    """Load a JSON list, or the list stored under *key* of a JSON object."""
    data = _read_json(path)
    if isinstance(data, dict):
        data = data.get(key, [])
    if not isinstance(data, list):
        raise ValueError(f"{path}: expected a list of {key}")
    return data


def _split_types(value: Optional[str]) -> Optional[list[str]]:
    if not value:
        return None
    return [t.strip() for t in value.split(",") if t.strip()]


def _print_results(results: list, title: str) -> None:
    if not results:
        print(f"  (no results for: {title})")
        return
    print(f"\n{title}  [{len(results)} result(s)]")
    print("-" * 60)
    for r in results:
        data = r.data
        name = r.entity_name
        etype = data.get("entity_type") or (data.get("metadata") or {}).get("entity_type", "")
        fpath = data.get("file_path") or (data.get("metadata") or {}).get("file_path", "")
        label = f"{r.score:6.3f}  {etype:<10}  {name}"
        print(f"  {label:<60}  {fpath or ''}")


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_create_entities(args: argparse.Namespace) -> None:
    manager = _get_manager(args)
    created = manager.create_entities(_read_items(args.file, "entities"))
    print(f"Created {len(created)} entities")


def _cmd_create_relations(args: argparse.Namespace) -> None:
    manager = _get_manager(args)
    created = manager.create_relations(_read_items(args.file, "relations"))
    print(f"Created {len(created)} relations")


def _cmd_add_observations(args: argparse.Namespace) -> None:
    manager = _get_manager(args)
    entity = manager.add_observations(args.name, args.observations)
    print(f"Entity {entity.name} now has {len(entity.observations)} observations")


def _cmd_delete_observations(args: argparse.Namespace) -> None:
    manager = _get_manager(args)
    entity = manager.delete_observations(args.name, args.observations)
    print(f"Entity {entity.name} now has {len(entity.observations)} observations")


def _cmd_delete_entities(args: argparse.Namespace) -> None:
    manager = _get_manager(args)
    manager.delete_entities(args.names)
    print(f"Deleted {len(args.names)} entities")


def _cmd_delete_relations(args: argparse.Namespace) -> None:
    manager = _get_manager(args)
    relations = _read_items(args.file, "relations")
    manager.delete_relations(relations)
    print(f"Deleted {len(relations)} relations")


def _cmd_load(args: argparse.Namespace) -> None:
    """Bulk import entities first, then relations, with a progress bar."""
    data = _read_json(args.file)
    if not isinstance(data, dict):
        raise ValueError(f"{args.file}: expected an object with entities and relations")
    entities = data.get("entities") or []
    relations = data.get("relations") or []

    manager = _get_manager(args)
    for entity in tqdm(entities, unit="entity", desc="Entities"):
        manager.create_entities([entity])
    for relation in tqdm(relations, unit="relation", desc="Relations"):
        manager.create_relations([relation])

    print(f"\nLoaded {len(entities)} entities and {len(relations)} relations")


def _cmd_search(args: argparse.Namespace) -> None:
    manager = _get_manager(args)
    results = manager.search_similar(
        args.query, _split_types(args.types), args.limit, args.mode
    )
    _print_results(results, f"{args.mode} search: {args.query!r}")


def _cmd_implementation(args: argparse.Namespace) -> None:
    manager = _get_manager(args)
    results = manager.get_implementation(args.name, args.scope, args.limit)
    if not results:
        print(f"No implementation found for: {args.name}")
        return
    for r in results:
        data = r.data
        meta = data.get("metadata") or {}
        fpath = data.get("file_path") or meta.get("file_path") or ""
        start = data.get("line_number") or meta.get("line_number") or 0
        print(f"\n# {r.entity_name}  {fpath}:{start}")
        print(data.get("content", ""))


def _cmd_graph(args: argparse.Namespace) -> None:
    manager = _get_manager(args)
    response = manager.read_graph(
        mode=args.mode,
        entity_types=_split_types(args.types),
        entity=args.entity,
        limit=args.limit,
    )
    print(response.to_text())


def _cmd_status(args: argparse.Namespace) -> None:
    manager = _get_manager(args)
    status = manager.status()
    print("\nGraph Memory Status")
    print("=" * 40)
    collection = status["collection"]
    if collection is None:
        print("  Collection not found")
    else:
        for k, v in collection.items():
            print(f"  {k:<20} {v}")
    for k, v in status["keyword_index"].items():
        print(f"  {k:<20} {v}")
    print()


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="graph-memory",
        description="Knowledge graph memory stored in a Qdrant collection",
    )
    parser.add_argument("--config", default=None, metavar="PATH",
                        help="Path to a .graph-memory.yaml config file")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    p = subparsers.add_parser("create-entities", help="Create entities from a JSON file")
    p.add_argument("file")
    p.set_defaults(func=_cmd_create_entities)

    p = subparsers.add_parser("create-relations", help="Create relations from a JSON file")
    p.add_argument("file")
    p.set_defaults(func=_cmd_create_relations)

    p = subparsers.add_parser("add-observations", help="Append observations to an entity")
    p.add_argument("name")
    p.add_argument("observations", nargs="+")
    p.set_defaults(func=_cmd_add_observations)

    p = subparsers.add_parser("delete-observations", help="Remove observations from an entity")
    p.add_argument("name")
    p.add_argument("observations", nargs="+")
    p.set_defaults(func=_cmd_delete_observations)

    p = subparsers.add_parser("delete-entities", help="Delete entities and their relations")
    p.add_argument("names", nargs="+")
    p.set_defaults(func=_cmd_delete_entities)

    p = subparsers.add_parser("delete-relations", help="Delete relations listed in a JSON file")
    p.add_argument("file")
    p.set_defaults(func=_cmd_delete_relations)

    p = subparsers.add_parser("load", help="Bulk import a graph JSON file")
    p.add_argument("file")
    p.set_defaults(func=_cmd_load)

    p = subparsers.add_parser("search", help="Search entities and chunks")
    p.add_argument("query")
    p.add_argument("--types", default=None,
                   help="Comma-separated entity types or chunk kinds")
    p.add_argument("--limit", type=int, default=10,
                   help="Number of results to return (default: 10, max: 100)")
    p.add_argument("--mode", choices=SEARCH_MODES, default="semantic")
    p.set_defaults(func=_cmd_search)

    p = subparsers.add_parser("implementation", help="Show an entity's implementation")
    p.add_argument("name")
    p.add_argument("--scope", choices=SCOPES, default="minimal")
    p.add_argument("--limit", type=int, default=None,
                   help="Cap on chunks fetched by scope expansion")
    p.set_defaults(func=_cmd_implementation)

    p = subparsers.add_parser("graph", help="Print a token-bounded graph view")
    p.add_argument("--mode", choices=GRAPH_MODES, default="smart")
    p.add_argument("--types", default=None, help="Comma-separated entity types")
    p.add_argument("--entity", default=None, help="Centre the view on this entity")
    p.add_argument("--limit", type=int, default=None,
                   help="Maximum number of entities (default: 150)")
    p.set_defaults(func=_cmd_graph)

    p = subparsers.add_parser("status", help="Show collection and index status")
    p.set_defaults(func=_cmd_status)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> None:
    """
    Main entry point for the ``graph-memory`` console script.

    Parameters
    ----------
    argv:
        Argument list without the program name.  Defaults to sys.argv.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not logging.root.handlers:
        logging.basicConfig(
            level=logging.DEBUG if args.verbose else logging.WARNING,
            format="%(levelname)s  %(name)s  %(message)s",
        )

    try:
        args.func(args)
    except (GraphMemoryError, ValueError, OSError) as exc:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
