# -*- coding: utf-8 -*-
"""
Bytecode VM runner: load a bytecode file -> execute -> report the result
Usage: python bytecode_vm.py [file] [--debug] [--dump] [--max-steps N]
"""

import argparse
import logging
import sys
from typing import List, Optional, TextIO

from bytecode_interpreter import ExecutionError, execute
from bytecode_parser import LoadError, format_program, load_file

__version__ = "0.1.0"

# the name the original runner read its program from
DEFAULT_PROGRAM = "byteCode.txt"

EXIT_OK = 0
EXIT_LOAD_FAULT = 1
EXIT_RUNTIME_FAULT = 2

log = logging.getLogger(__name__)


def init_logging(debug: bool = False, stream: Optional[TextIO] = None) -> None:
    """Configure the root logger. DEBUG traces every executed instruction."""
    root = logging.getLogger()
    for h in list(root.handlers):
        root.removeHandler(h)
    root.setLevel(logging.DEBUG if debug else logging.WARNING)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)


# -----------------------------
# Status sink
# -----------------------------
def report(out: TextIO, result: Optional[int] = None,
           load_error: Optional[LoadError] = None,
           run_error: Optional[ExecutionError] = None) -> None:
    if load_error is not None:
        print(f"Unable to parse with error: {load_error}", file=out)
    elif run_error is not None:
        print(f"Error: {run_error}", file=out)
    else:
        print(f"Result: {result}.", file=out)


def run_file(path, max_steps: Optional[int] = None, dump: bool = False,
             out: Optional[TextIO] = None) -> int:
    out = out or sys.stdout
    try:
        program = load_file(path)
    except LoadError as e:
        report(out, load_error=e)
        return EXIT_LOAD_FAULT
    print("Parsing successful!", file=out)

    if dump:
        for row in format_program(program):
            print(row, file=out)

    try:
        result = execute(program, max_steps=max_steps)
    except ExecutionError as e:
        log.debug("execution aborted: %r", e)
        report(out, run_error=e)
        return EXIT_RUNTIME_FAULT
    report(out, result=result)
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Stack bytecode virtual machine')
    parser.add_argument('file', nargs='?', default=DEFAULT_PROGRAM,
                        help=f'bytecode file to execute (default: {DEFAULT_PROGRAM})')
    parser.add_argument('--max-steps', type=int, default=None, metavar='N',
                        help='abort after N executed instructions')
    parser.add_argument('--dump', action='store_true', help='print the assembled program')
    parser.add_argument('--debug', action='store_true', help='trace execution on stderr')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    args = parser.parse_args(argv)

    init_logging(debug=args.debug)
    return run_file(args.file, max_steps=args.max_steps, dump=args.dump)


if __name__ == "__main__":
    sys.exit(main())
