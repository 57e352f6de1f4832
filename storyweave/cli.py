from __future__ import annotations

import argparse
from pathlib import Path
from typing import Any, Sequence

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table

from storyweave.config import AppConfigRoot, load_config
from storyweave.config.loader import env_snapshot
from storyweave.consistency.auditor import ConsistencyAuditor
from storyweave.consistency.models import ConsistencyVerdict
from storyweave.elements.selector import ElementSelector
from storyweave.memory.manager import cleanup
from storyweave.narrative.store import branch_nodes
from storyweave.storage.snapshots import load_snapshot, save_snapshot
from storyweave.utils.logging import setup_logging

console = Console()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="storyweave")
    parser.add_argument("--config", type=Path, default=None, help="Path to custom config YAML")
    parser.add_argument("--profile", type=str, default=None, help="Config profile name")
    parser.add_argument("--data-dir", type=Path, default=None, help="Override data directory")
    parser.add_argument("--log-level", type=str, default=None, help="Override log level")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("config", help="Validate and print effective config")

    audit_parser = subparsers.add_parser("audit", help="Run the consistency auditor over a saved story")
    audit_parser.add_argument("--snapshot", type=Path, default=None, help="Snapshot JSON path")
    audit_parser.add_argument("--window", type=int, default=None, help="Number of recent turns to audit")
    audit_parser.add_argument("--node", type=str, default=None, help="Audit the lineage ending at this node id")

    branches_parser = subparsers.add_parser("branches", help="List story branches")
    branches_parser.add_argument("--snapshot", type=Path, default=None, help="Snapshot JSON path")

    context_parser = subparsers.add_parser("context", help="Render the element context for the next prompt")
    context_parser.add_argument("--snapshot", type=Path, default=None, help="Snapshot JSON path")
    context_parser.add_argument("--text", type=str, required=True, help="Current narrative text")
    context_parser.add_argument("--max-elements", type=int, default=None, help="Maximum referenced elements")

    cleanup_parser = subparsers.add_parser("cleanup", help="Evict stale memory banks and save the snapshot")
    cleanup_parser.add_argument("--snapshot", type=Path, default=None, help="Snapshot JSON path")
    cleanup_parser.add_argument("--max-age-hours", type=float, default=None, help="Age threshold in hours")
    cleanup_parser.add_argument("--max-size-bytes", type=int, default=None, help="Total size budget in bytes")
    cleanup_parser.add_argument(
        "--no-keep-active",
        action="store_true",
        help="Evict every stale bank regardless of the size budget",
    )

    return parser


def _build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    app_overrides: dict[str, Any] = {}
    if args.data_dir:
        app_overrides["data_dir"] = str(args.data_dir)
    if args.log_level:
        app_overrides["log_level"] = args.log_level
    if app_overrides:
        overrides["app"] = app_overrides
    return overrides


def _snapshot_path(args: argparse.Namespace, config: AppConfigRoot) -> Path:
    return args.snapshot or config.storage.snapshot_path


def _print_config(config: AppConfigRoot) -> None:
    console.print(Panel(Pretty(config.model_dump(mode="json")), title="Effective Config"))
    console.print(Panel(Pretty(env_snapshot()), title="Env Snapshot"))


def _print_verdict(verdict: ConsistencyVerdict) -> None:
    table = Table(title="Consistency Findings", show_header=True, header_style="bold")
    table.add_column("Turn")
    table.add_column("Node")
    table.add_column("Type")
    table.add_column("Severity")
    table.add_column("Description")
    for finding in verdict.findings:
        table.add_row(
            str(finding.turn_index),
            finding.node_id or "-",
            finding.type,
            finding.severity,
            finding.description,
        )
    console.print(table)

    summary = f"score={verdict.overall_score} window={verdict.window_size} consistent={verdict.is_consistent}"
    if verdict.needs_revision:
        summary += f"\nNeeds revision: {verdict.revision_reason}"
    console.print(Panel(summary, title="Verdict"))


def run(args: argparse.Namespace, config: AppConfigRoot) -> None:
    if args.command == "config":
        _print_config(config)
        return

    snapshot_path = _snapshot_path(args, config)
    snapshot = load_snapshot(snapshot_path)
    store, catalog = snapshot.store, snapshot.catalog

    if args.command == "audit":
        auditor = ConsistencyAuditor(config.audit, strict_mode=config.checker.strict_mode)
        if args.node:
            verdict = auditor.audit_path(store, args.node, args.window)
        else:
            verdict = auditor.audit(store, args.window)
        _print_verdict(verdict)
        return

    if args.command == "branches":
        table = Table(title="Branches", show_header=True, header_style="bold")
        table.add_column("ID")
        table.add_column("Name")
        table.add_column("Fork point")
        table.add_column("Nodes")
        table.add_column("Memory bank")
        table.add_column("Current")
        for branch in store.branches:
            table.add_row(
                branch.id,
                branch.name,
                branch.parent_node_id or "-",
                str(len(branch_nodes(store, branch.id))),
                "yes" if branch.id in store.memory_banks else "no",
                "*" if branch.id == store.current_branch_id else "",
            )
        console.print(table)
        return

    if args.command == "context":
        selector = ElementSelector(catalog, config=config.selector)
        context = selector.abbreviated_context(args.text, args.max_elements)
        console.print(Panel(context or "(no elements)", title="Prompt Context"))
        hints = selector.foreshadowing_opportunities(args.text)
        if hints:
            table = Table(title="Foreshadowing", show_header=True, header_style="bold")
            table.add_column("Hint")
            table.add_column("Target")
            table.add_column("Subtlety")
            for hint in hints:
                table.add_row(hint.hint, hint.target_element_id, str(hint.subtlety))
            console.print(table)
        return

    if args.command == "cleanup":
        memory = config.memory
        before = store.memory_stats
        store = cleanup(
            store,
            max_age_hours=memory.cleanup_max_age_hours if args.max_age_hours is None else args.max_age_hours,
            max_size_bytes=memory.cleanup_max_total_bytes if args.max_size_bytes is None else args.max_size_bytes,
            keep_active=memory.keep_active and not args.no_keep_active,
        )
        save_snapshot(snapshot_path, store, catalog)

        table = Table(title="Cleanup Summary", show_header=True, header_style="bold")
        table.add_column("Metric")
        table.add_column("Value")
        table.add_row("Banks (before/after)", f"{before.total_memory_banks}/{store.memory_stats.total_memory_banks}")
        table.add_row("Bytes (before/after)", f"{before.total_memory_size}/{store.memory_stats.total_memory_size}")
        table.add_row("Snapshot", str(snapshot_path))
        console.print(table)
        return

    raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    config = load_config(
        config_path=args.config,
        profile=args.profile,
        overrides=_build_overrides(args),
    )

    setup_logging(config.app.log_level)
    logger.info("Loaded configuration")

    run(args, config)


if __name__ == "__main__":
    main()
