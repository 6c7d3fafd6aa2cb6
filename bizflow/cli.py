"""
Bizflow Command Line Interface

Offline checks for workflow definitions stored as JSON files.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from bizflow.automation.errors import AutomationError
from bizflow.automation.templates import get_builtin_templates
from bizflow.automation.triggers.schedule import upcoming_runs
from bizflow.automation.types import parse_datetime
from bizflow.automation.validation import dry_run_workflow, validate_workflow, workflow_from_definition
from bizflow.core.clock import FixedClock
from bizflow.core.logging import setup_logging


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="bizflow",
        description="Bizflow - workflow automation CLI",
    )
    parser.add_argument("--log-level", default="ERROR", help="Log level")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Validate command
    validate_parser = subparsers.add_parser("validate", help="Validate a workflow definition")
    validate_parser.add_argument("file", type=Path, help="Workflow JSON file")

    # Test command
    test_parser = subparsers.add_parser("test", help="Dry-run a workflow against a sample payload")
    test_parser.add_argument("file", type=Path, help="Workflow JSON file")
    test_parser.add_argument("--payload", type=Path, required=True, help="Sample payload JSON file")

    # Next runs command
    runs_parser = subparsers.add_parser("next-runs", help="Show upcoming runs of a scheduled workflow")
    runs_parser.add_argument("file", type=Path, help="Workflow JSON file")
    runs_parser.add_argument("--count", type=int, default=5, help="Number of runs")
    runs_parser.add_argument("--from", dest="start", help="Reference time (ISO 8601), defaults to now")

    # Templates command
    subparsers.add_parser("templates", help="List built-in templates")

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 2

    setup_logging(args.log_level, json_logs=True)

    try:
        if args.command == "validate":
            return cmd_validate(args.file)
        if args.command == "test":
            return cmd_test(args.file, args.payload)
        if args.command == "next-runs":
            return cmd_next_runs(args.file, args.count, args.start)
        if args.command == "templates":
            return cmd_templates()
    except AutomationError as e:
        _print(e.to_dict())
        return 1
    except (OSError, json.JSONDecodeError) as e:
        _print({"error": str(e)})
        return 1

    parser.print_help()
    return 2


def _load_json(path: Path) -> Dict[str, Any]:
    with open(path, "r") as f:
        return json.load(f)


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def cmd_validate(path: Path) -> int:
    """Validate a definition and report every problem."""
    report = validate_workflow(_load_json(path))
    _print(report.to_dict())
    return 0 if report.is_valid else 1


def cmd_test(path: Path, payload_path: Path) -> int:
    """Predict what a sample event would do."""
    workflow, _ = workflow_from_definition(_load_json(path))
    result = dry_run_workflow(workflow, _load_json(payload_path))
    _print(result)
    return 0


def cmd_next_runs(path: Path, count: int, start: Optional[str]) -> int:
    data = _load_json(path)
    reference = parse_datetime(start) if start else datetime.now(timezone.utc)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)

    workflow, _ = workflow_from_definition(data, clock=FixedClock(reference))
    if not workflow.is_scheduled:
        _print({"error": f"Workflow trigger is {workflow.trigger.type.value}, not SCHEDULED"})
        return 1

    runs = upcoming_runs(
        workflow.trigger.schedule,
        parse_datetime(data.get("created_at")) or workflow.created_at,
        parse_datetime(data.get("last_run_at")),
        count=count,
    )
    _print({"workflow": workflow.name, "next_runs": [r.isoformat() for r in runs]})
    return 0


def cmd_templates() -> int:
    _print([t.to_dict() for t in get_builtin_templates()])
    return 0


if __name__ == "__main__":
    sys.exit(main())
