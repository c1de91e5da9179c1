"""
Finds closures that can't be cached because they capture a local of an enclosing function.

A closure can only be reused across calls when it captures nothing that differs per
activation of its enclosing function. Locals declared at top level are fine, locals of
an enclosing function are not.
"""

from contextlib import contextmanager
from pathlib import Path
from typing import Iterable, List, Optional, Union

from binder import LuaSyntaxError, bind_source
from models import (
    TOP_LEVEL_DEPTH, Closure, FileResult, Finding, LocalRef, Node, ParseError,
)


class FunctionStack:
    """Closures whose bodies are currently being walked, innermost last."""

    def __init__(self):
        self._closures: List[Closure] = []

    def __len__(self):
        return len(self._closures)

    def __bool__(self):
        return bool(self._closures)

    def push(self, closure: Closure):
        self._closures.append(closure)

    def pop(self) -> Closure:
        return self._closures.pop()

    def current(self) -> Optional[Closure]:
        return self._closures[-1] if self._closures else None

    @property
    def depth(self) -> int:
        current = self.current()
        return current.depth if current else TOP_LEVEL_DEPTH

    @contextmanager
    def entered(self, closure: Closure):
        self.push(closure)
        try:
            yield closure
        finally:
            self.pop()


def is_capture(ref: LocalRef, current: Optional[Closure]) -> bool:
    """True if `ref` inside `current` makes the closure uncacheable."""
    if current is None or not ref.upvalue or ref.local is None:
        return False
    declared_depth = getattr(ref.local, 'function_depth', None)
    # missing or bogus annotations are never reported
    if not isinstance(declared_depth, int) or declared_depth == TOP_LEVEL_DEPTH:
        return False
    return current.depth > declared_depth


# what a visit handler returns: recurse into children, stop here, or walk these instead
Traversal = Union[bool, Iterable[Node]]


class ClosureAnalyzer:
    """Walks a bound tree and collects capture findings in source order."""

    def __init__(self):
        self.reset()

    def reset(self):
        self.functions = FunctionStack()
        self.findings: List[Finding] = []

    def analyze(self, tree: Node) -> List[Finding]:
        self.reset()
        self._walk(tree)
        return self.findings

    def _walk(self, node: Node):
        handler = getattr(self, f'_visit_{type(node).__name__}', None)
        result: Traversal = handler(node) if handler else True

        if result is True:
            children = node.walk_children()
        elif result is False:
            return
        else:
            children = result

        for child in children:
            self._walk(child)

    def _walk_all(self, nodes: Iterable[Node]):
        for node in nodes:
            self._walk(node)

    def _visit_Closure(self, node: Closure) -> Traversal:
        with self.functions.entered(node):
            self._walk_all(node.body)
        # body already walked
        return False

    def _visit_LocalRef(self, node: LocalRef) -> Traversal:
        current = self.functions.current()
        if is_capture(node, current):
            self.findings.append(Finding(
                variable=node.local.name,
                declared_at=node.local.location,
                closure_name=current.debug_name,
                closure_location=current.location,
                location=node.location,
            ))
        return True


def analyze_source(source: str) -> List[Finding]:
    """Analyze Lua source text; raises LuaSyntaxError if it doesn't parse."""
    return ClosureAnalyzer().analyze(bind_source(source))


def analyze_file(file_path: Path, source: Optional[str] = None) -> FileResult:
    """Analyze one file. Read and parse errors are recorded, not raised."""
    result = FileResult(path=file_path)

    if source is None:
        try:
            source = file_path.read_text(encoding='utf-8', errors='replace')
        except OSError as e:
            result.read_error = str(e)
            return result

    try:
        result.findings = analyze_source(source)
    except LuaSyntaxError as e:
        result.parse_errors.append(ParseError(e.message, e.location))

    return result
