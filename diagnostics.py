"""
Diagnostic formatting, one line per diagnostic on stderr:

    file.lua(12,9): UncachedClosureWarning: Usage of upvalue "x" declared at ...
"""

import sys
from typing import Optional, TextIO

from models import Finding, Location, ParseError


SYNTAX_ERROR = 'SyntaxError'
UNCACHED_CLOSURE_WARNING = 'UncachedClosureWarning'


def format_location(file_name: str, location: Location) -> str:
    """Render a 0-based location 1-based, editor style."""
    return f"{file_name}({location.line + 1},{location.column + 1})"


def report(file_name: str, location: Location, kind: str, message: str,
           stream: Optional[TextIO] = None):
    stream = stream if stream is not None else sys.stderr
    print(f"{format_location(file_name, location)}: {kind}: {message}", file=stream)


def format_finding(file_name: str, finding: Finding) -> str:
    """Build the warning message for a finding (without the location prefix)."""
    return (
        f'Usage of upvalue "{finding.variable}" declared at '
        f'{format_location(file_name, finding.declared_at)} prevents '
        f'{finding.closure_description} at '
        f'{format_location(file_name, finding.closure_location)} from being cached'
    )


def report_finding(file_name: str, finding: Finding, stream: Optional[TextIO] = None):
    report(file_name, finding.location, UNCACHED_CLOSURE_WARNING,
           format_finding(file_name, finding), stream)


def report_parse_error(file_name: str, error: ParseError, stream: Optional[TextIO] = None):
    report(file_name, error.location, SYNTAX_ERROR, error.message, stream)
