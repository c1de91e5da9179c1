"""
Bound syntax tree and analysis results.

The binder builds these from a luaparser AST; the closure analyzer only reads them.
Positions are 0-based, they're rendered 1-based by diagnostics.format_location().
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional


# depth of code that is not inside any function (the chunk itself)
TOP_LEVEL_DEPTH = 0


@dataclass(frozen=True, order=True)
class Location:
    """Start position of a node."""
    line: int
    column: int


@dataclass(eq=False)
class Local:
    """A local variable declaration."""
    name: str
    location: Location
    function_depth: int = TOP_LEVEL_DEPTH  # depth of the declaring function


@dataclass(eq=False)
class Node:
    """Generic syntax node, kind is mostly the luaparser node type name."""
    kind: str
    location: Location
    children: List['Node'] = field(default_factory=list)

    def walk_children(self) -> Iterator['Node']:
        return iter(self.children)


@dataclass(eq=False)
class Closure(Node):
    """A function literal, children hold its body statements."""
    depth: int = 1
    debug_name: Optional[str] = None
    params: List[Local] = field(default_factory=list)

    @property
    def body(self) -> List[Node]:
        return self.children


@dataclass(eq=False)
class LocalRef(Node):
    """A read or write of a local variable."""
    local: Optional[Local] = None
    upvalue: bool = False


@dataclass
class Finding:
    """A closure that can't be cached because of one upvalue reference."""
    variable: str
    declared_at: Location
    closure_name: Optional[str]
    closure_location: Location
    location: Location      # the reference itself

    @property
    def closure_description(self) -> str:
        if self.closure_name is None:
            return "anonymous closure"
        return f'closure "{self.closure_name}"'


@dataclass
class ParseError:
    """A syntax error reported by the parser."""
    message: str
    location: Location


@dataclass
class FileResult:
    """Outcome of analyzing one input."""
    path: Path
    findings: List[Finding] = field(default_factory=list)
    parse_errors: List[ParseError] = field(default_factory=list)
    read_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.read_error is None and not self.parse_errors
