"""lock CLI: pin, verify and audit dataset artifacts."""

import argparse
import json
import logging
import sys
from pathlib import Path


def _emit(payload: bytes, newline: bool = False) -> None:
    """Write the exact payload bytes to stdout."""
    data = payload + b"\n" if newline else payload
    stream = getattr(sys.stdout, "buffer", None)
    if stream is None:
        sys.stdout.write(data.decode("utf-8"))
        sys.stdout.flush()
        return
    sys.stdout.flush()
    stream.write(data)
    stream.flush()


def _print_json(value) -> None:
    print(json.dumps(value, indent=2, sort_keys=True, ensure_ascii=False))


def _warn_witness(result, quiet: bool) -> None:
    if result.witness_error and not quiet:
        print(f"lock: witness append warning: {result.witness_error}", file=sys.stderr)


def _witness_filters(args):
    from .kernel.witness import WitnessFilters

    return WitnessFilters(
        tool=args.tool,
        outcome=args.outcome,
        input_hash=args.input_hash,
        since=args.since,
        until=args.until,
    )


def _run_witness(args) -> int:
    from .api import default_ledger
    from ._internal.reporting.human import render_witness_record
    from .kernel.witness import WitnessReadError

    ledger = default_ledger()
    filters = _witness_filters(args)
    try:
        if args.witness_command == "query":
            records = ledger.query(filters, limit=args.limit)
            if args.json:
                _print_json([r.to_document() for r in records])
            elif records:
                for record in records:
                    print(render_witness_record(record))
            else:
                print("no matching witness records", file=sys.stderr)
            return 0 if records else 1
        if args.witness_command == "last":
            record = ledger.last(filters)
            if args.json:
                _print_json(record.to_document() if record else None)
            elif record:
                print(render_witness_record(record))
            else:
                print("no witness records", file=sys.stderr)
            return 0 if record else 1
        count = ledger.count(filters)
        if args.json:
            _print_json({"count": count})
        else:
            print(count)
        return 0
    except WitnessReadError as e:
        print(f"lock: witness ledger error: {e}", file=sys.stderr)
        return 2


def main():
    """Main CLI entry point for the lock command."""
    from . import __version__
    from ._internal.config import log_level_from_env

    logging.basicConfig(
        level=log_level_from_env(),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    parser = argparse.ArgumentParser(
        prog="lock",
        description="lock: pin a dataset's artifacts into a self-verifying lockfile"
    )
    parser.add_argument("--version", action="version", version=f"lock {__version__}")
    # Common arguments
    parent_parser = argparse.ArgumentParser(add_help=False)
    parent_parser.add_argument(
        "--quiet",
        action="store_true",
        help="Suppress witness warnings on stderr."
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # build command
    build_parser = subparsers.add_parser(
        "build",
        help="Build a lockfile from a JSONL record stream",
        parents=[parent_parser]
    )
    build_parser.add_argument(
        "input",
        nargs="?",
        type=Path,
        default=None,
        help="JSONL manifest file (default: stdin)"
    )
    build_parser.add_argument("--dataset-id", default=None, help="Dataset identifier to record")
    build_parser.add_argument("--as-of", default=None, help="As-of timestamp to record")
    build_parser.add_argument("--note", default=None, help="Free-form note to record")
    build_parser.add_argument(
        "--no-witness",
        action="store_true",
        help="Do not append a record to the witness ledger"
    )

    # verify command
    verify_parser = subparsers.add_parser(
        "verify",
        help="Verify a lockfile's self-hash and, with --root, its members",
        parents=[parent_parser]
    )
    verify_parser.add_argument("lockfile", type=Path, help="Path to the lockfile")
    verify_parser.add_argument(
        "--root",
        type=Path,
        default=None,
        help="Directory to resolve member paths against (enables member checks)"
    )
    verify_parser.add_argument(
        "--strict",
        action="store_true",
        help="Treat skipped members as failures"
    )
    verify_parser.add_argument("--json", action="store_true", help="Emit the JSON report")
    verify_parser.add_argument(
        "--no-witness",
        action="store_true",
        help="Do not append a record to the witness ledger"
    )

    # witness command
    witness_parser = subparsers.add_parser(
        "witness",
        help="Query the witness ledger"
    )
    witness_subparsers = witness_parser.add_subparsers(dest="witness_command", help="Ledger queries")
    filter_parser = argparse.ArgumentParser(add_help=False)
    filter_parser.add_argument("--tool", default=None, help="Only records from this tool")
    filter_parser.add_argument("--outcome", default=None, help="Only records with this outcome")
    filter_parser.add_argument(
        "--input-hash",
        default=None,
        help="Only records with an input hash containing this text"
    )
    filter_parser.add_argument("--since", default=None, help="Only records after this RFC 3339 instant")
    filter_parser.add_argument("--until", default=None, help="Only records before this RFC 3339 instant")
    filter_parser.add_argument("--json", action="store_true", help="Emit JSON")

    query_parser = witness_subparsers.add_parser(
        "query",
        help="List matching records, newest first",
        parents=[filter_parser]
    )
    query_parser.add_argument("--limit", type=int, default=20, help="Maximum records to list")
    witness_subparsers.add_parser("last", help="Show the most recent record", parents=[filter_parser])
    witness_subparsers.add_parser("count", help="Count matching records", parents=[filter_parser])

    # schema command
    subparsers.add_parser("schema", help="Print the JSON Schema of the lockfile format")

    args = parser.parse_args()

    if args.command == "build":
        from .api import run_build

        result = run_build(
            args.input,
            dataset_id=args.dataset_id,
            as_of=args.as_of,
            note=args.note,
            witness=not args.no_witness,
        )
        _emit(result.payload)
        _warn_witness(result, args.quiet)
        sys.exit(result.exit_code)
    elif args.command == "verify":
        from .api import run_verify

        result = run_verify(
            args.lockfile,
            root=args.root,
            strict=args.strict,
            as_json=args.json,
            witness=not args.no_witness,
        )
        _emit(result.payload, newline=not args.json and result.document.get("outcome") != "REFUSAL")
        _warn_witness(result, args.quiet)
        sys.exit(result.exit_code)
    elif args.command == "witness" and args.witness_command:
        sys.exit(_run_witness(args))
    elif args.command == "witness":
        witness_parser.print_help()
        sys.exit(1)
    elif args.command == "schema":
        from .kernel.lockfile import Lockfile

        _print_json(Lockfile.model_json_schema())
        sys.exit(0)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
