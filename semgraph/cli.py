"""
`semgraph` command line.

Commands
--------
semgraph scan                                  -- full scan of the project
semgraph scan --incremental                    -- rescan only what changed
semgraph watch                                 -- sync, then follow file changes
semgraph query "who calls fetchUser"           -- natural language or query text
semgraph query --template find-callers fetchUser
semgraph query "MATCH (s:Symbol) RETURN s.name" --format json
semgraph stats                                 -- graph and metrics summary
semgraph templates                             -- list query templates
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from typing import Optional

from tqdm import tqdm

from . import __version__
from .config import Config
from .errors import SemgraphError
from .query.cypher import QueryResult
from .query.templates import TEMPLATES

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _load_config(args: argparse.Namespace) -> Config:
    """Config from file/env, with command-line flags layered on top."""
    config = Config.load(args.path, getattr(args, "config", None))
    if getattr(args, "include", None):
        config.INCLUDE = list(args.include)
    if getattr(args, "exclude", None):
        config.EXCLUDE = list(args.exclude)
    if getattr(args, "workers", None):
        config.MAX_WORKERS = max(1, args.workers)
    if getattr(args, "debounce", None) is not None:
        config.DEBOUNCE_SECONDS = args.debounce
    return config


def _engine(args: argparse.Namespace):
    from .engine import Engine
    return Engine(args.path, config=_load_config(args), revision=getattr(args, "revision", None))


def _parse_params(pairs: Optional[list[str]]) -> dict:
    params: dict = {}
    for pair in pairs or []:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            print(f"Invalid --param '{pair}'. Use: --param name=value", file=sys.stderr)
            sys.exit(1)
        try:
            params[key.strip()] = json.loads(value)
        except ValueError:
            params[key.strip()] = value
    return params


def _print_table(result: QueryResult) -> None:
    if not result.rows:
        print("  (no results)")
        return
    cells = [[_cell(row.get(c)) for c in result.columns] for row in result.rows]
    widths = [
        min(60, max([len(c)] + [len(r[i]) for r in cells]))
        for i, c in enumerate(result.columns)
    ]
    print("  ".join(c.ljust(w) for c, w in zip(result.columns, widths)))
    print("  ".join("-" * w for w in widths))
    for row in cells:
        print("  ".join(v[:w].ljust(w) for v, w in zip(row, widths)))
    print(f"\n  [{result.row_count} row(s)]")


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


# ---------------------------------------------------------------------------
# Sub-command handlers
# ---------------------------------------------------------------------------

def _cmd_scan(args: argparse.Namespace) -> None:
    """Full or incremental scan of the project."""
    engine = _engine(args)
    mode = "incremental" if args.incremental else "full"
    print(f"Scanning project ({mode}): {engine.project_root}")

    pbar = tqdm(total=None, unit="file", desc="Parsing", disable=not sys.stderr.isatty())

    def _progress(current: int, total: int, filename: str) -> None:
        if pbar.total != total:
            pbar.total = total
            pbar.refresh()
        pbar.set_postfix_str(os.path.basename(filename), refresh=False)
        pbar.update(1)

    try:
        summary = engine.scan(incremental=args.incremental, progress_callback=_progress)
    finally:
        pbar.close()

    if args.format == "json":
        print(json.dumps(summary.to_dict(), indent=2))
        return
    print(
        f"\nScan complete:\n"
        f"  Files:         {summary.files_total}\n"
        f"  Processed:     {summary.files_processed}\n"
        f"  Skipped:       {summary.files_skipped}\n"
        f"  Failed:        {summary.files_failed}\n"
        f"  Deleted:       {summary.files_deleted}\n"
        f"  Symbols:       {summary.symbols}\n"
        f"  Types:         {summary.types}\n"
        f"  Relationships: {summary.relationships}\n"
        f"  Time:          {summary.elapsed_seconds:.1f}s"
    )
    for path in summary.skipped_paths:
        print(f"  skipped  {path}")
    for path in summary.failed_paths:
        print(f"  failed   {path}")
    if summary.top_complexity:
        print("\nMost complex files:")
        for entry in summary.top_complexity:
            print(f"  {entry['complexity_sum']:>6}  {entry['path']}")


def _cmd_watch(args: argparse.Namespace) -> None:
    """Sync the stores, then follow file changes until interrupted."""
    engine = _engine(args)

    def _report(cycle) -> None:
        if cycle.error:
            print(f"  cycle error: {cycle.error}", file=sys.stderr)
        elif cycle.changes is not None and cycle.changes.has_changes:
            c = cycle.changes
            print(f"  +{len(c.added)} ~{len(c.modified)} -{len(c.deleted)}")

    print(f"Watching {engine.project_root} ... (Ctrl+C to stop)")
    loop = engine.watch(block=False, on_cycle=_report)
    try:
        while loop.state.value != "shutting_down":
            time.sleep(0.5)
    except KeyboardInterrupt:
        print("\nWatcher stopped.")
    finally:
        engine.close()


def _cmd_query(args: argparse.Namespace) -> None:
    """Run a template, a natural-language request or query text."""
    engine = _engine(args)
    params = _parse_params(args.param)
    t0 = time.perf_counter()
    if args.template:
        result = engine.run_template(args.template, *args.text)
    else:
        text = " ".join(args.text).strip()
        if not text:
            print("Usage: semgraph query <text> | --template NAME ARGS...", file=sys.stderr)
            sys.exit(1)
        if args.explain:
            print(json.dumps(engine.parse(text).to_dict(), indent=2))
        result = engine.query(text, params)
    elapsed_ms = (time.perf_counter() - t0) * 1000

    if args.format == "json":
        print(json.dumps(result.to_dict(), indent=2, default=str))
        return
    _print_table(result)
    print(f"  Query time: {elapsed_ms:.1f}ms")


def _cmd_stats(args: argparse.Namespace) -> None:
    """Print graph and metrics summary."""
    stats = _engine(args).stats()
    if args.format == "json":
        print(json.dumps(stats, indent=2, default=str))
        return
    graph = stats["graph"]
    print("\nSemantic Graph Status")
    print("=" * 40)
    print(f"  {'project_root':<20} {stats['project_root']}")
    print(f"  {'revision':<20} {stats['revision'] or '-'}")
    print(f"  {'nodes':<20} {graph['node_count']}")
    print(f"  {'edges':<20} {graph['edge_count']}")
    for label, count in sorted(graph["by_node_type"].items()):
        print(f"    {label:<18} {count}")
    for kind, count in sorted(graph["by_edge_type"].items()):
        print(f"    {kind:<18} {count}")
    metrics = stats["metrics"]
    for key in ("file_count", "fingerprint_count", "total_lines", "code_lines",
                "complexity_sum"):
        print(f"  {key:<20} {metrics.get(key, 0)}")
    for language, count in sorted(metrics.get("languages", {}).items()):
        print(f"    {language:<18} {count}")
    print()


def _cmd_templates(args: argparse.Namespace) -> None:
    """List the query template catalog."""
    for template in TEMPLATES.values():
        print(f"  {template.usage:<45} {template.description}")


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------

def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="semgraph",
        description="Semantic graph of a source tree: scan, watch and query",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--path", default=".", help="Project root (default: current directory)")
    common.add_argument("--config", help="Explicit .semgraph.yaml to use")
    common.add_argument("--format", choices=("text", "json"), default="text")

    subparsers = parser.add_subparsers(dest="cmd", metavar="COMMAND")
    subparsers.required = True

    # --- scan ---
    scan_p = subparsers.add_parser("scan", parents=[common], help="Scan the project")
    scan_p.add_argument("--incremental", action="store_true",
                        help="Rescan only files whose content changed")
    scan_p.add_argument("--include", action="append", metavar="GLOB",
                        help="Only scan matching paths (repeatable)")
    scan_p.add_argument("--exclude", action="append", metavar="GLOB",
                        help="Skip matching paths (repeatable)")
    scan_p.add_argument("--workers", type=int, help="Extraction threads")
    scan_p.add_argument("--revision", help="Revision tag to record")
    scan_p.set_defaults(func=_cmd_scan)

    # --- watch ---
    watch_p = subparsers.add_parser("watch", parents=[common],
                                    help="Keep the graph in sync with the tree")
    watch_p.add_argument("--debounce", type=float, help="Quiet period in seconds")
    watch_p.add_argument("--revision", help="Revision tag to record")
    watch_p.set_defaults(func=_cmd_watch)

    # --- query ---
    query_p = subparsers.add_parser("query", parents=[common], help="Query the graph")
    query_p.add_argument("text", nargs="*", help="Request, query text or template arguments")
    query_p.add_argument("--template", metavar="NAME", help="Run a named template")
    query_p.add_argument("--param", action="append", metavar="NAME=VALUE",
                         help="Bind $NAME (JSON values accepted)")
    query_p.add_argument("--explain", action="store_true",
                         help="Show how the request was interpreted")
    query_p.set_defaults(func=_cmd_query)

    # --- stats ---
    stats_p = subparsers.add_parser("stats", parents=[common], help="Show graph summary")
    stats_p.set_defaults(func=_cmd_stats)

    # --- templates ---
    templates_p = subparsers.add_parser("templates", help="List query templates")
    templates_p.set_defaults(func=_cmd_templates)

    return parser


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> None:
    """
    Entry point for the ``semgraph`` console script.

    Parameters
    ----------
    argv:
        Argument list without the program name; defaults to sys.argv.
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
    except SemgraphError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
