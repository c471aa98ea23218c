# main.py
"""CLI entry point for tomewright."""

from __future__ import annotations

import argparse
import sys

from config import settings
from orchestration.cli_runner import resolve_project_dir, run, run_cleanup


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate a book phase by phase, resuming from any earlier run."
    )
    parser.add_argument("--title", default=None, help="Title of the book to generate")
    parser.add_argument(
        "--braindump", default=None, help="Premise text to use instead of generating one"
    )
    parser.add_argument(
        "--project-dir",
        default=None,
        help="Existing project directory to resume from",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Abort the run after this many seconds",
    )
    parser.add_argument(
        "--no-reuse",
        action="store_true",
        help="Regenerate premise through outline even when they already exist",
    )
    parser.add_argument(
        "--cleanup-logs",
        type=int,
        nargs="?",
        const=settings.LOG_RETENTION_DAYS,
        default=None,
        metavar="DAYS",
        help="Delete non-essential logs older than DAYS and exit",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Parse command-line arguments and start a run."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.title and not args.project_dir:
        parser.error("one of --title or --project-dir is required")
    if args.cleanup_logs is not None:
        return run_cleanup(
            resolve_project_dir(args.title, args.project_dir), args.cleanup_logs
        )
    return run(
        args.title,
        braindump=args.braindump,
        project_dir=args.project_dir,
        timeout=args.timeout,
        reuse=not args.no_reuse,
    )


if __name__ == "__main__":
    sys.exit(main())
