"""Command line front end for the synchronisation engine."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Any, List, Optional

from sheetsync.cells import parse_cell_value
from sheetsync.conflicts import ResolutionStrategy
from sheetsync.errors import ConflictUnresolvedError, SyncError
from sheetsync.logging_config import configure_logging
from sheetsync.orchestrator import SyncOrchestrator
from sheetsync.scheduler import ScheduledResync, targets_from_config
from sheetsync.settings import SYNC_SETTINGS_PATH, SyncSettings, load_sync_settings

logger = logging.getLogger(__name__)

# Failures reported as "Error: ..." instead of a traceback.
_HANDLED_ERRORS = (SyncError, ValueError, OSError)


def _json_default(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return str(value)


def _dump(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, indent=2, default=_json_default)


def _read_json(path: str) -> Any:
    with open(path, "r", encoding="utf-8") as handle:
        return json.load(handle)


def _read_records(path: str) -> List[dict]:
    payload = _read_json(path)
    if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
        raise ValueError(f"{path} must contain a JSON list of objects")
    return payload


def load_settings(args: argparse.Namespace) -> SyncSettings:
    return load_sync_settings(args.settings)


def build_orchestrator(settings: SyncSettings) -> SyncOrchestrator:
    return SyncOrchestrator.from_settings(settings)


def _target(args: argparse.Namespace, settings: SyncSettings) -> tuple[str, str]:
    resource_id = args.spreadsheet or settings.spreadsheet_id
    if not resource_id:
        raise ValueError("No spreadsheet id given; pass --spreadsheet or set spreadsheet_id in the settings")
    return resource_id, args.range or settings.default_range


def _order_spec(text: str) -> dict:
    field_name, _, direction = text.partition(":")
    return {"field": field_name, "direction": direction or "ASC"}


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
def command_pull(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    resource_id, range_spec = _target(args, settings)
    where = [
        {"field": name, "operator": operator, "value": parse_cell_value(value)}
        for name, operator, value in args.where or ()
    ]
    result = build_orchestrator(settings).pull(
        resource_id,
        range_spec,
        args.label,
        columns=[column.strip() for column in args.columns.split(",")] if args.columns else None,
        where=where or None,
        order_by=[_order_spec(item) for item in args.order_by or ()] or None,
        offset=args.offset,
        limit=args.limit,
        rules=_read_json(args.rules) if args.rules else None,
    )
    output = _dump(result.records)
    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
    else:
        print(output)
    print(f"Pulled {result.record_count} of {result.total_records} records.", file=sys.stderr)
    for invalid in result.invalid_records:
        print(f"Invalid record {invalid.index}: {'; '.join(invalid.errors)}", file=sys.stderr)
    return 0


def command_push(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    resource_id, range_spec = _target(args, settings)
    result = build_orchestrator(settings).push(
        resource_id,
        range_spec,
        _read_records(args.input),
        rules=_read_json(args.rules) if args.rules else None,
        formatting=_read_json(args.formatting) if args.formatting else None,
        sheet_validation=_read_json(args.sheet_validation) if args.sheet_validation else None,
    )
    print(f"Pushed {result.record_count} records to {resource_id} {range_spec}.")
    if result.provisioning_error:
        print(f"Warning: formatting was not applied: {result.provisioning_error}", file=sys.stderr)
    return 0


def command_append(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    resource_id, range_spec = _target(args, settings)
    result = build_orchestrator(settings).append(resource_id, range_spec, _read_records(args.input))
    print(f"Appended {result.record_count} records to {resource_id} {range_spec}.")
    return 0


def command_sync(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    resource_id, range_spec = _target(args, settings)
    result = build_orchestrator(settings).bidirectional(
        resource_id,
        range_spec,
        _read_records(args.input),
        args.strategy or settings.default_strategy,
        target_label=args.label,
    )
    summary = result.summary
    print(
        f"Synced {result.push.record_count} records using '{result.strategy.value}' "
        f"({summary.total} conflicts, severity {summary.severity})."
    )
    if result.unresolved:
        message = f"{len(result.unresolved)} conflicts need manual review"
        if args.fail_on_unresolved:
            raise ConflictUnresolvedError(message, conflicts=result.unresolved)
        print(f"Warning: {message}", file=sys.stderr)
    return 0


def command_batch(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    operations = _read_json(args.input)
    if not isinstance(operations, list):
        raise ValueError(f"{args.input} must contain a JSON list of operations")
    batch = build_orchestrator(settings).batch_sync(operations)
    for item in batch.items:
        if item.success:
            print(f"[{item.index}] {item.operation}: ok")
        else:
            error = item.error or {}
            print(f"[{item.index}] {item.operation}: failed ({error.get('message')})")
    print(f"{batch.succeeded} succeeded, {batch.failed} failed.")
    return 0 if batch.failed == 0 else 1


def command_history(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    orchestrator = build_orchestrator(settings)
    if args.all:
        history = orchestrator.get_all_sync_history()
        print(_dump({key: [entry.to_dict() for entry in entries] for key, entries in history.items()}))
        return 0
    resource_id, range_spec = _target(args, settings)
    entries = orchestrator.get_sync_history(resource_id, range_spec, args.limit)
    print(_dump([entry.to_dict() for entry in entries]))
    return 0


def command_clear_history(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    resource_id, range_spec = _target(args, settings)
    removed = build_orchestrator(settings).clear_sync_history(resource_id, range_spec)
    print(f"Removed {removed} history entries.")
    return 0


def command_schedule(args: argparse.Namespace) -> int:
    settings = load_settings(args)
    if not settings.targets:
        print("No sync targets configured.")
        return 0
    targets = targets_from_config(settings.targets)

    def report(status: str, payload: dict) -> None:
        print(f"{status}: {_dump(payload)}")

    scheduler = ScheduledResync(
        build_orchestrator(settings),
        lambda: targets,
        interval_seconds=args.interval or settings.sync_interval_seconds,
        status_callback=report,
    )
    if args.once:
        outcome = scheduler.run_once()
        failed = [label for label, payload in outcome.items() if payload.get("operation") == "error"]
        return 1 if failed else 0

    print(f"Resyncing {len(targets)} targets every {scheduler.interval}s. Press Ctrl+C to stop.")
    scheduler.start()
    try:
        scheduler.wait()
    except KeyboardInterrupt:
        pass
    finally:
        scheduler.stop()
    return 0


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------
def _add_target_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--spreadsheet", help="Spreadsheet id (defaults to the configured one)")
    parser.add_argument("--range", help="A1 range (defaults to the configured one)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bidirectional spreadsheet synchronisation tool")
    parser.add_argument("--settings", default=SYNC_SETTINGS_PATH, help="Path to sync_settings.json")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log debug messages")
    subparsers = parser.add_subparsers(dest="command", required=True)

    pull_parser = subparsers.add_parser("pull", help="Pull records from the sheet")
    _add_target_arguments(pull_parser)
    pull_parser.add_argument("--label", default="records", help="Prefix of the synthetic record ids")
    pull_parser.add_argument("--columns", help="Comma separated header names to keep")
    pull_parser.add_argument(
        "--where",
        nargs=3,
        action="append",
        metavar=("FIELD", "OPERATOR", "VALUE"),
        help="Filter condition; may be repeated",
    )
    pull_parser.add_argument("--order-by", action="append", metavar="FIELD[:DESC]", help="Sort key; may be repeated")
    pull_parser.add_argument("--offset", type=int, default=0)
    pull_parser.add_argument("--limit", type=int)
    pull_parser.add_argument("--rules", help="JSON file with validation rules")
    pull_parser.add_argument("--output", help="Write the records to this file instead of stdout")
    pull_parser.set_defaults(func=command_pull)

    push_parser = subparsers.add_parser("push", help="Overwrite the range with local records")
    _add_target_arguments(push_parser)
    push_parser.add_argument("--input", required=True, help="JSON file with a list of records")
    push_parser.add_argument("--rules", help="JSON file with validation rules")
    push_parser.add_argument("--formatting", help="JSON file with spreadsheet formatting requests")
    push_parser.add_argument("--sheet-validation", help="JSON file with spreadsheet data validation rules")
    push_parser.set_defaults(func=command_push)

    append_parser = subparsers.add_parser("append", help="Append local records below the existing rows")
    _add_target_arguments(append_parser)
    append_parser.add_argument("--input", required=True, help="JSON file with a list of records")
    append_parser.set_defaults(func=command_append)

    sync_parser = subparsers.add_parser("sync", help="Pull, resolve conflicts and push back")
    _add_target_arguments(sync_parser)
    sync_parser.add_argument("--input", required=True, help="JSON file with the local records")
    sync_parser.add_argument(
        "--strategy",
        choices=[strategy.value for strategy in ResolutionStrategy],
        help="Conflict resolution strategy",
    )
    sync_parser.add_argument("--label", default="records", help="Prefix of the synthetic record ids")
    sync_parser.add_argument(
        "--fail-on-unresolved",
        action="store_true",
        help="Exit with an error when the manual strategy leaves conflicts",
    )
    sync_parser.set_defaults(func=command_sync)

    batch_parser = subparsers.add_parser("batch", help="Run a JSON list of operations")
    batch_parser.add_argument("--input", required=True, help="JSON file with the operations")
    batch_parser.set_defaults(func=command_batch)

    history_parser = subparsers.add_parser("history", help="Show sync history")
    _add_target_arguments(history_parser)
    history_parser.add_argument("--limit", type=int, help="Only show the most recent entries")
    history_parser.add_argument("--all", action="store_true", help="Show history for every range")
    history_parser.set_defaults(func=command_history)

    clear_parser = subparsers.add_parser("clear-history", help="Delete sync history for a range")
    _add_target_arguments(clear_parser)
    clear_parser.set_defaults(func=command_clear_history)

    schedule_parser = subparsers.add_parser("schedule", help="Resync the configured targets periodically")
    schedule_parser.add_argument("--interval", type=int, help="Seconds between passes")
    schedule_parser.add_argument("--once", action="store_true", help="Run a single pass and exit")
    schedule_parser.set_defaults(func=command_schedule)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(logging.DEBUG if args.verbose else logging.INFO, console=args.verbose)
    try:
        return args.func(args)
    except _HANDLED_ERRORS as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
