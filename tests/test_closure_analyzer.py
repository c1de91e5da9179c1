"""Tests for the capture classifier and the function stack.

Trees here are built by hand, no parser involved.
"""

import pytest

from closure_analyzer import ClosureAnalyzer, FunctionStack, is_capture
from models import TOP_LEVEL_DEPTH, Closure, Local, LocalRef, Location, Node


# ============================================================================
# Helpers
# ============================================================================


def loc(line, column=0):
    return Location(line, column)


def closure(depth, body=None, name=None, line=0):
    return Closure('Closure', loc(line), list(body or []), depth=depth, debug_name=name)


def ref(local, line, upvalue=True, column=4):
    return LocalRef('Name', loc(line, column), local=local, upvalue=upvalue)


def chunk(*statements):
    return Node('Chunk', loc(0), list(statements))


# ============================================================================
# FunctionStack
# ============================================================================


class TestFunctionStack:

    def test_empty_stack(self):
        stack = FunctionStack()
        assert stack.current() is None
        assert len(stack) == 0
        assert not stack
        assert stack.depth == TOP_LEVEL_DEPTH

    def test_push_pop(self):
        stack = FunctionStack()
        outer, inner = closure(1), closure(2)

        stack.push(outer)
        stack.push(inner)
        assert stack.current() is inner
        assert stack.depth == 2
        assert len(stack) == 2

        assert stack.pop() is inner
        assert stack.current() is outer
        assert stack.pop() is outer
        assert stack.current() is None

    def test_entered_pops_on_error(self):
        stack = FunctionStack()
        with pytest.raises(RuntimeError):
            with stack.entered(closure(1)):
                assert len(stack) == 1
                raise RuntimeError("boom")
        assert len(stack) == 0


# ============================================================================
# is_capture
# ============================================================================


class TestIsCapture:

    def test_capture_from_enclosing_function(self):
        x = Local('x', loc(1), function_depth=1)
        assert is_capture(ref(x, 3), closure(2))

    def test_not_an_upvalue(self):
        x = Local('x', loc(1), function_depth=1)
        assert not is_capture(ref(x, 3, upvalue=False), closure(2))

    def test_top_level_local(self):
        y = Local('y', loc(0), function_depth=TOP_LEVEL_DEPTH)
        assert not is_capture(ref(y, 2), closure(1))

    def test_outside_any_closure(self):
        x = Local('x', loc(1), function_depth=1)
        assert not is_capture(ref(x, 3), None)

    def test_same_depth_is_not_a_capture(self):
        x = Local('x', loc(1), function_depth=2)
        assert not is_capture(ref(x, 3), closure(2))

    @pytest.mark.parametrize("depth", [None, "1", 1.5])
    def test_bad_depth_annotation_is_ignored(self, depth):
        x = Local('x', loc(1), function_depth=depth)
        assert not is_capture(ref(x, 3), closure(2))

    def test_missing_local_is_ignored(self):
        broken = LocalRef('Name', loc(3), local=None, upvalue=True)
        assert not is_capture(broken, closure(2))


# ============================================================================
# ClosureAnalyzer
# ============================================================================


class TestClosureAnalyzer:

    def test_reports_capture(self):
        x = Local('x', loc(1, 8), function_depth=1)
        inner = closure(2, [Node('Return', loc(3), [ref(x, 3, column=11)])], name='inner', line=2)
        outer = closure(1, [Node('LocalAssign', loc(1)), Node('LocalFunction', loc(2), [inner])])

        findings = ClosureAnalyzer().analyze(chunk(Node('Function', loc(0), [outer])))

        assert len(findings) == 1
        f = findings[0]
        assert f.variable == 'x'
        assert f.declared_at == loc(1, 8)
        assert f.closure_name == 'inner'
        assert f.closure_location == loc(2)
        assert f.location == loc(3, 11)
        assert f.closure_description == 'closure "inner"'

    def test_anonymous_closure_description(self):
        x = Local('x', loc(1), function_depth=1)
        tree = chunk(closure(1, [closure(2, [ref(x, 3)])]))
        findings = ClosureAnalyzer().analyze(tree)
        assert findings[0].closure_name is None
        assert findings[0].closure_description == 'anonymous closure'

    def test_attributed_to_innermost_closure(self):
        v = Local('v', loc(1), function_depth=1)
        c = closure(3, [ref(v, 4)], name='c', line=3)
        b = closure(2, [c], name='b', line=2)
        a = closure(1, [b], name='a')

        findings = ClosureAnalyzer().analyze(chunk(a))

        assert [f.closure_name for f in findings] == ['c']

    def test_nothing_outside_closures(self):
        x = Local('x', loc(0), function_depth=1)
        findings = ClosureAnalyzer().analyze(chunk(ref(x, 1)))
        assert findings == []

    def test_closure_without_upvalues(self):
        deep = closure(1, [closure(2, [closure(3, [closure(4, [Node('Return', loc(5))])])])])
        assert ClosureAnalyzer().analyze(chunk(deep)) == []

    def test_findings_in_source_order(self):
        x = Local('x', loc(1), function_depth=1)
        y = Local('y', loc(2), function_depth=1)
        first = closure(2, [Node('Call', loc(3), [ref(y, 3), ref(x, 3, column=9)])], line=3)
        second = closure(2, [ref(x, 5)], line=5)
        tree = chunk(closure(1, [first, second]))

        findings = ClosureAnalyzer().analyze(tree)

        assert [(f.variable, f.location) for f in findings] == [
            ('y', loc(3, 4)),
            ('x', loc(3, 9)),
            ('x', loc(5, 4)),
        ]

    def test_closure_body_walked_once(self):
        x = Local('x', loc(1), function_depth=1)
        tree = chunk(closure(1, [closure(2, [ref(x, 3)])]))
        assert len(ClosureAnalyzer().analyze(tree)) == 1

    def test_stack_balanced_after_walk(self):
        analyzer = ClosureAnalyzer()
        analyzer.analyze(chunk(closure(1, [closure(2)]), closure(1)))
        assert len(analyzer.functions) == 0

    def test_rerun_is_idempotent(self):
        x = Local('x', loc(1), function_depth=1)
        tree = chunk(closure(1, [closure(2, [ref(x, 3), ref(x, 4)])]))
        analyzer = ClosureAnalyzer()
        assert analyzer.analyze(tree) == analyzer.analyze(tree)
        assert len(analyzer.findings) == 2

    def test_handler_can_choose_children(self):
        x = Local('x', loc(1), function_depth=1)
        skipped = Node('Skipped', loc(3), [ref(x, 3)])
        kept = Node('Kept', loc(4), [ref(x, 4)])

        class OnlyKept(ClosureAnalyzer):
            def _visit_Node(self, node):
                if node.kind == 'Pair':
                    return [node.children[1]]
                return True

        tree = chunk(closure(1, [closure(2, [Node('Pair', loc(2), [skipped, kept])])]))
        findings = OnlyKept().analyze(tree)
        assert [f.location.line for f in findings] == [4]
