"""
Command-line entry point.

Archives one publication into a Markdown ZIP bundle or an EPUB file.
"""

import sys
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from . import __version__
from .core.controller import COOKIE_ENV_VAR, ArchiveController, RunConfig
from .core.errors import ArchiveError, ValidationError
from .core.logger import initialize_logging
from .utils.validators import parse_date, validate_publication_url


ERROR_REPORT_NAME = "error_report.txt"


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="stackarchive",
        description="Archive a Substack publication as a Markdown bundle or an EPUB e-book.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Environment variables:
  {COOKIE_ENV_VAR}    Session cookie used when --cookie is not given
        """
    )
    ap.add_argument("url", help="Publication URL (name.substack.com, substack.com/@name or a custom domain)")
    ap.add_argument("--format", dest="output_format", choices=["markdown", "epub"], default="markdown",
                    help="Output format (default: markdown)")
    ap.add_argument("--output", default="output", help="Output directory (default: output)")
    ap.add_argument("--cookie", help="Session cookie string for paid content (substack.sid=... or connect.sid=...)")
    ap.add_argument("--start-date", help="Only posts published on or after this day (YYYY-MM-DD)")
    ap.add_argument("--end-date", help="Only posts published on or before this day (YYYY-MM-DD)")
    ap.add_argument("--delay", type=float, default=1.0, help="Seconds between requests (default: 1.0)")
    ap.add_argument("--image-workers", type=int, default=5, help="Concurrent image downloads (default: 5)")
    ap.add_argument("--log-dir", default="logs", help="Directory for log files (default: logs)")
    ap.add_argument("--verbose", action="store_true", help="Show debug output on the console")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return ap


def config_from_args(args: argparse.Namespace) -> RunConfig:
    """
    Validate arguments and map them onto a RunConfig.

    Raises:
        ValidationError: On a bad URL, date or numeric option
    """
    ok, identifier, error = validate_publication_url(args.url)
    if not ok:
        raise ValidationError(f"Invalid URL: {error}")
    try:
        start_date = parse_date(args.start_date)
        end_date = parse_date(args.end_date)
    except ValueError as e:
        raise ValidationError(f"Invalid date: {e}") from e
    if args.delay < 0:
        raise ValidationError("--delay must not be negative")
    if args.image_workers < 1:
        raise ValidationError("--image-workers must be at least 1")

    return RunConfig.from_env(
        identifier,
        output_dir=args.output,
        output_format=args.output_format,
        request_delay=args.delay,
        image_workers=args.image_workers,
        credential=args.cookie,
        start_date=start_date,
        end_date=end_date,
    )


def print_progress(event):
    kind = event.get("type")
    if kind == "stage":
        print(f"[{event['stage']}]")
    elif kind == "discovery":
        print(f"  found {event['total']} posts")
    elif kind == "post":
        print(f"  [{event['current']}/{event['total']}] {event['title']}")
    elif kind == "images":
        print(f"  images {event['progress']}", end="\r")
    elif kind == "complete":
        print(f"\n  wrote {event['filename']} ({event['documents']} posts, {event['images']} images)")


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args)
    except ValidationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    initialize_logging(args.log_dir, logging.DEBUG if args.verbose else logging.WARNING)

    controller = ArchiveController(config)
    try:
        result = controller.run(progress=print_progress)
    except ArchiveError as e:
        print(f"error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        controller.stop()
        print("\ninterrupted", file=sys.stderr)
        return 130
    finally:
        controller.close()

    for warning in result.warnings:
        print(f"[warn] {warning}")
    if result.errors:
        report = Path(args.log_dir) / ERROR_REPORT_NAME
        report.parent.mkdir(parents=True, exist_ok=True)
        controller.tracker.save_error_report(str(report))
        print(f"[warn] {len(result.errors)} items failed; see {report} for details")
    return 0


if __name__ == "__main__":
    sys.exit(main())
