"""Command-line entry for sectioncal_lite."""

from __future__ import annotations

import argparse
import sys
from typing import NoReturn

from . import run_server


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for sectioncal_lite CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="sectioncal_lite",
        description="SectionCal Lite - school calendar section lookup server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m sectioncal_lite                                  # Port 10000, URL from SECTIONCAL_ICS_URL
  python -m sectioncal_lite --port 3000                      # Start server on port 3000
  python -m sectioncal_lite --ics-url https://host/cal.ics   # Override the calendar feed
        """,
    )

    parser.add_argument(
        "--port",
        type=int,
        metavar="PORT",
        help="Port number for the web server (default: 10000, or SECTIONCAL_WEB_PORT/PORT)",
    )
    parser.add_argument(
        "--ics-url",
        metavar="URL",
        help="Calendar feed URL (default: SECTIONCAL_ICS_URL or ICS_URL)",
    )

    return parser


def main(argv: list[str] | None = None) -> NoReturn:
    """Run the sectioncal_lite CLI."""
    parser = _create_parser()
    args = parser.parse_args(argv)

    run_server(args)
    sys.exit(0)


if __name__ == "__main__":
    main()
