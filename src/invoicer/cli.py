"""Command-line entry point.

    invoicer --worklog jan.csv --worklog feb.csv --recipient tags/acme.toml
    invoicer --config invoicer.toml --worklog hours.csv
    cat hours.csv | invoicer --stdin --date 2024-03-31 --counter 7
"""

import argparse
import sys
from datetime import datetime
from pathlib import Path

import tomli

from .config import load_config
from .invoicer import Invoicer
from .logging_setup import setup_logging


def _parse_date(value: str) -> datetime:
    try:
        return datetime.strptime(value, "%Y-%m-%d")
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def build_parser():
    parser = argparse.ArgumentParser(
        prog="invoicer",
        description="Generate LaTeX invoices from CSV worklogs",
    )
    parser.add_argument("-w", "--worklog", action="append", default=[], help="Worklog CSV file (can specify multiple)")
    parser.add_argument("-r", "--recipient", action="append", default=[], help="Recipient TOML file (can specify multiple)")
    parser.add_argument("-c", "--config", help="Config TOML file (default: ./invoicer.toml)")
    parser.add_argument("-o", "--output", help="Output .tex file (counter is appended for multiple recipients)")
    parser.add_argument("--counter", type=int, help="First invoice counter (default: 1)")
    parser.add_argument("--date", type=_parse_date, help="Invoice date (YYYY-MM-DD, default: today)")
    parser.add_argument("--stdin", action="store_true", help="Read a worklog CSV from stdin")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_config(Path(args.config) if args.config else None)
    except (OSError, tomli.TOMLDecodeError, ValueError) as e:
        print(f"Error: could not load config: {e}", file=sys.stderr)
        sys.exit(1)
    setup_logging(config, verbose=args.verbose)

    invoicer = Invoicer(config, date=args.date, counter=args.counter)

    for worklog in args.worklog:
        invoicer.load_worklog(Path(worklog))
    if args.stdin:
        invoicer.load_worklog_stream(sys.stdin)

    for recipient in args.recipient:
        invoicer.load_recipient(Path(recipient))
    if not args.recipient:
        invoicer.add_recipients_from_worklog()

    if not invoicer.has_recipients():
        print("Error: No recipient given!", file=sys.stderr)
        sys.exit(1)

    results = invoicer.generate(Path(args.output) if args.output else None)

    for r in results:
        label = "total (incl. VAT)" if r["with_tax"] else "total"
        print(f"{r['file']}: {r['positions']} positions, {label} = {r['total_text']}")


if __name__ == "__main__":
    main()
