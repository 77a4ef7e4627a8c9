"""Command-line entry point.

Usage
-----
schtask-inventory
schtask-inventory --max-tasks 200 --output-path C:\\temp\\tasks.ndjson
python -m schtask_inventory --log-path C:\\temp\\tasks.log
"""

from __future__ import annotations

import argparse
import sys
from typing import List, Optional

from schtask_inventory.config import Settings, ValidationError
from schtask_inventory.logging_config import setup_logging
from schtask_inventory.pipeline import SnapshotPipeline


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="schtask-inventory",
        description="Write scheduled tasks and their recent run history as NDJSON.",
    )
    parser.add_argument("--log-path", help="Diagnostic log file.")
    parser.add_argument("--output-path", help="NDJSON output (active-response log).")
    parser.add_argument(
        "--max-tasks", type=int, help="Process at most this many tasks (0 = all)."
    )
    parser.add_argument("--action", help="Value of the 'action' field in each record.")
    parser.add_argument("--lookback-days", type=int, help="History window in days.")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env(
            log_path=args.log_path,
            output_path=args.output_path,
            max_tasks=args.max_tasks,
            action=args.action,
            lookback_days=args.lookback_days,
        )
    except ValidationError as exc:
        parser.error(str(exc))

    setup_logging(
        settings.log_path,
        max_bytes=settings.log_max_bytes,
        backup_count=settings.log_backup_count,
    )
    return SnapshotPipeline(settings).run()


if __name__ == "__main__":
    sys.exit(main())
