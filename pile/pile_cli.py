"""
PILE command-line runner.

Runs a script file against a host built from a JSON or YAML data file
whose top level maps collection names to lists of records.

Usage:
    pile script.pile --data elements.yaml
    pile script.pile --data elements.json --format json --trace
    pile script.pile --dump
"""

import argparse
import sys
from pathlib import Path
from typing import Optional, List

import yaml

from pile.pile_runtime import ScriptRunner, MappingHost
from pile.pile_datatypes import PileError, ParseError
from pile.pile_printer import Printer
from pile.pile_serialize import deserialize, serialize

# sysexits.h
EX_USAGE = 64
EX_DATAERR = 65
EX_NOINPUT = 66


def load_host(data_path: str) -> MappingHost:
    """Builds a MappingHost from a JSON/YAML data file."""
    text = Path(data_path).read_text(encoding="utf-8")
    data = deserialize(text, path=data_path)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ValueError("data file must map collection names to lists of records")
    for name, records in data.items():
        if not isinstance(records, list):
            raise ValueError(f"collection {name!r} must be a list")
    return MappingHost(data)


def run_script_file(file_path: str, *, data: Optional[str] = None, fmt: str = "pile",
                    trace: bool = False, dump: bool = False) -> int:
    """Run a PILE script file non-interactively and return an exit status."""
    p = Path(file_path)
    try:
        source = p.read_text(encoding="utf-8")
    except OSError:
        print(f"Error: file cannot be read: {file_path}", file=sys.stderr)
        return EX_NOINPUT
    except UnicodeDecodeError as e:
        print(f"Error: script is not valid UTF-8: {file_path}: {e.reason}", file=sys.stderr)
        return EX_DATAERR

    host = None
    if data:
        try:
            host = load_host(data)
        except OSError:
            print(f"Error: file cannot be read: {data}", file=sys.stderr)
            return EX_NOINPUT
        except (ValueError, yaml.YAMLError) as e:
            print(f"Error: bad data file {data}: {e}", file=sys.stderr)
            return EX_DATAERR

    runner = ScriptRunner(host_object=host, trace=trace)

    if dump:
        try:
            code = runner.parse(source)
        except PileError as e:
            print(f"ParseError: {e.message}", file=sys.stderr)
            return EX_DATAERR
        print(Printer().pformat_program(code))
        return 0

    result = runner.handle_script(source)
    for effect in result.side_effects:
        if effect.get('topics') == ['trace']:
            print(effect.get('message', ''), file=sys.stderr)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        return EX_DATAERR if isinstance(result.error, ParseError) else 1
    if result.value:
        print(serialize(result.value, fmt=fmt))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point"""
    parser = argparse.ArgumentParser(
        prog="pile",
        description="Run a PILE stack script against a data-file host.",
    )
    parser.add_argument("path", help="Path to the PILE script")
    parser.add_argument(
        "--data",
        type=str,
        help="JSON or YAML file mapping collection names to lists of records",
    )
    parser.add_argument(
        "--format",
        choices=("pile", "json", "yaml"),
        default="pile",
        dest="fmt",
        help="Output format for the final stack",
    )
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Print every executed instruction and the resulting stack to stderr",
    )
    parser.add_argument(
        "--dump",
        action="store_true",
        help="Print the decoded instructions instead of running them",
    )

    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return EX_USAGE if e.code else 0

    return run_script_file(args.path, data=args.data, fmt=args.fmt, trace=args.trace, dump=args.dump)


if __name__ == "__main__":
    sys.exit(main())
