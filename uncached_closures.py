"""
Uncached closure detector (entry point).

Reports closures that capture a local variable of an enclosing function. Such
upvalues differ per call of the enclosing function, so the runtime can't cache and
reuse the closure object and has to allocate a new one every time.

Usage:
    python uncached_closures.py [options] PATH [PATH ...]

PATH can be a Lua file, a directory (searched for *.lua / *.luau) or '-' for stdin.
Sources are parsed as standard Lua: Luau-only syntax (type annotations, '+=',
'continue') is reported as a SyntaxError.

Warnings go to stderr, one per line:
    file.lua(4,12): UncachedClosureWarning: Usage of upvalue "x" declared at
    file.lua(2,9) prevents closure "inner" at file.lua(3,9) from being cached

Options:
    --summary          Print a summary to stdout after the analysis
    --report [file]    Save a report (.json, anything else is plain text)
    --quiet / -q       Don't print warnings (exit status is the same)
    --workers / -j     Number of parallel workers (default: 1)

Exit status is 1 when an input could not be read or parsed, 0 otherwise.
Warnings never change the exit status.
"""

import argparse
import sys
from concurrent.futures import ProcessPoolExecutor, as_completed
from pathlib import Path

from closure_analyzer import analyze_file
from diagnostics import report_finding, report_parse_error
from discovery import STDIN_PATH, discover_inputs
from reporter import Reporter


def analyze_input_worker(args_tuple):
    """Worker function for parallel analyze_file calls."""
    file_name, source = args_tuple
    try:
        return (file_name, analyze_file(Path(file_name), source), None)
    except Exception as e:
        return (file_name, None, str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="uncached-closures",
        description="Find closures that can't be cached because they capture upvalues"
    )
    parser.add_argument(
        "paths",
        nargs="*",
        metavar="PATH",
        help="Lua file, directory of scripts, or '-' to read stdin"
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print a summary to stdout after the analysis"
    )
    parser.add_argument(
        "--report",
        type=str,
        default=None,
        help="Save a report (.json, anything else is plain text)"
    )
    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Don't print warnings"
    )
    parser.add_argument(
        "--workers", "-j",
        type=int,
        default=1,
        help="Number of parallel workers (default: 1)"
    )
    return parser


def run_analysis(inputs, sources, workers):
    """Analyze all inputs, returns (file_name, result, error) in input order."""
    jobs = [(name, sources.get(name)) for name in inputs]

    if workers <= 1 or len(jobs) <= 1:
        return [analyze_input_worker(job) for job in jobs]

    outcomes = {}
    with ProcessPoolExecutor(max_workers=workers) as executor:
        futures = [executor.submit(analyze_input_worker, job) for job in jobs]
        for future in as_completed(futures):
            file_name, result, error = future.result()
            outcomes[file_name] = (file_name, result, error)

    return [outcomes[name] for name in inputs]


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.paths:
        parser.print_help()
        return 1

    inputs = discover_inputs(args.paths)

    # stdin can't be handed to a worker process
    sources = {}
    if STDIN_PATH in inputs:
        sources[STDIN_PATH] = sys.stdin.read()

    reporter = Reporter()
    failed = False

    for file_name, result, error in run_analysis(inputs, sources, args.workers):
        if error is not None:
            print(f"analysis failed for {file_name}: {error}", file=sys.stderr)
            failed = True
            continue

        reporter.add_result(file_name, result)

        if result.read_error is not None:
            print(f"failed reading file: {file_name}", file=sys.stderr)
            failed = True
            continue

        if result.parse_errors:
            print("Parse errors were encountered:", file=sys.stderr)
            for parse_error in result.parse_errors:
                report_parse_error(file_name, parse_error)
            failed = True
            continue

        if not args.quiet:
            for finding in result.findings:
                report_finding(file_name, finding)

    if args.summary:
        reporter.print_summary()

    if args.report:
        report_path = Path(args.report)
        try:
            reporter.save(report_path)
        except OSError as e:
            print(f"Could not save report to {report_path}: {e}", file=sys.stderr)
            failed = True

    return 1 if failed else 0


if __name__ == "__main__":
    sys.exit(main())
