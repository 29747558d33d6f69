from __future__ import annotations

import argparse
import os
from pathlib import Path
import sys
from typing import NoReturn

from conflictlabeler.config import AppConfig, load_config, load_config_from_env
from conflictlabeler.events import TriggerEvent, load_event
from conflictlabeler.github_gateway import GitHubGateway
from conflictlabeler.observability import configure_logging
from conflictlabeler.runner import ConflictLabelRunner, RunReport


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="conflictlabeler")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser(
        "run", help="Sync the conflict label with the mergeability of open pull requests"
    )
    run_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="TOML config file; defaults to GitHub Actions INPUT_* variables",
    )
    run_parser.add_argument(
        "--event-name",
        default=None,
        help="Triggering event name (defaults to $GITHUB_EVENT_NAME)",
    )
    run_parser.add_argument(
        "--event-path",
        type=Path,
        default=None,
        help="Triggering event payload JSON (defaults to $GITHUB_EVENT_PATH)",
    )
    run_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log the label changes that would be made without applying them",
    )
    run_parser.add_argument(
        "-v",
        "--verbose",
        nargs="?",
        const="high",
        default=None,
        choices=("low", "high"),
        help="Log to stderr; 'low' keeps only high-signal events",
    )

    return parser


def main() -> None:
    args = build_parser().parse_args()
    configure_logging(getattr(args, "verbose", None))

    if args.command == "run":
        try:
            config = _load_app_config(args.config)
            event = _load_trigger_event(args.event_name, args.event_path)
            report = _cmd_run(config, event=event, dry_run=bool(args.dry_run))
        except Exception as exc:  # noqa: BLE001
            _fail(str(exc))
        if not report.ok:
            _fail(report.failure_message())
        return

    raise RuntimeError(f"Unknown command: {args.command}")


def _cmd_run(config: AppConfig, *, event: TriggerEvent, dry_run: bool) -> RunReport:
    github = GitHubGateway(config.repo.owner, config.repo.name, token=config.token)
    runner = ConflictLabelRunner(config, github=github, event=event, dry_run=dry_run)
    report = runner.run()
    for number, action in report.actions:
        if action != "noop":
            print(f"#{number}: {action}")
    return report


def _load_app_config(path: Path | None) -> AppConfig:
    if path is not None:
        return load_config(path, environ=os.environ)
    return load_config_from_env(os.environ)


def _load_trigger_event(name: str | None, path: Path | None) -> TriggerEvent:
    event_name = name or os.environ.get("GITHUB_EVENT_NAME", "")
    event_path = path
    if event_path is None and os.environ.get("GITHUB_EVENT_PATH"):
        event_path = Path(os.environ["GITHUB_EVENT_PATH"])
    return load_event(event_name, event_path)


def _fail(message: str) -> NoReturn:
    if os.environ.get("GITHUB_ACTIONS") == "true":
        print(f"::error::{message}")
    print(message, file=sys.stderr)
    raise SystemExit(1)
