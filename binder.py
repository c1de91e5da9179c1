"""
Lua front end: parses source with https://pypi.org/project/luaparser/ and resolves
every variable reference to its local declaration.

The result is a bound tree (see models.py) where each local reference knows the
Local it binds to, whether it is an upvalue, and each closure knows its nesting depth.
"""

import io
import re
import sys
from bisect import bisect_right
from contextlib import contextmanager
from typing import Dict, List, Optional

from luaparser import ast
from luaparser.astnodes import (
    Node as LuaNode, Chunk, Block,
    Function, LocalFunction, Method, AnonymousFunction,
    Assign, LocalAssign,
    Repeat, Fornum, Forin,
    Call, Invoke, Index, IndexNotation, Name, Field,
    Goto, Label, Comment,
)

from models import TOP_LEVEL_DEPTH, Closure, Local, LocalRef, Location, Node


# Format: [@index,start:stop='text',<type>,line:col]
TOKEN_START_RE = re.compile(r"\[@-?\d+,(\d+):-?\d+='")
FUNCTION_KEYWORD_RE = re.compile(r"\bfunction\b")
LOCAL_KEYWORD_RE = re.compile(r"\blocal\b")
FOR_KEYWORD_RE = re.compile(r"\bfor\b")
# luaparser 3.2: "... at line 2, column 8", luaparser 4: "syntax errors: line 2:6: ..."
ERROR_POSITION_RES = (
    re.compile(r"\bline (\d+), column (\d+)"),
    re.compile(r"\bline (\d+):(\d+)"),
)


class LuaSyntaxError(Exception):
    """Source text could not be parsed."""

    def __init__(self, message: str, location: Location):
        super().__init__(message)
        self.message = message
        self.location = location


def strip_shebang(source: str) -> str:
    """Blank out a leading '#!' line, keeping line numbers intact."""
    if source.startswith('#!'):
        newline = source.find('\n')
        return '' if newline < 0 else source[newline:]
    return source


def parse_source(source: str) -> Chunk:
    """Parse Lua source, raising LuaSyntaxError on failure."""
    # antlr prints recognition errors to stderr on its own
    old_stderr = sys.stderr
    sys.stderr = io.StringIO()
    try:
        return ast.parse(source)
    except Exception as e:
        message, location = _split_error_message(str(e))
        raise LuaSyntaxError(message, location) from e
    finally:
        sys.stderr = old_stderr


def _split_error_message(text: str):
    """Message and 0-based position of a luaparser error (lines are 1-based there)."""
    message = ' '.join(text.split()) or 'syntax error'
    for pattern in ERROR_POSITION_RES:
        match = pattern.search(text)
        if match:
            line = max(int(match.group(1)) - 1, 0)
            return message, Location(line, int(match.group(2)))
    return message, Location(0, 0)


class Binder:
    """Builds a bound tree out of a luaparser AST."""

    def __init__(self):
        self.reset()

    def reset(self, source: str = ""):
        self.source = source
        self.line_starts: List[int] = [0] + [i + 1 for i, c in enumerate(source) if c == '\n']
        self.scopes: List[Dict[str, Local]] = []
        self.function_depth: int = TOP_LEVEL_DEPTH
        self.last_offset = 0
        self.last_location = Location(0, 0)
        # id(AnonymousFunction) -> name of the variable it's assigned to
        self.debug_names: Dict[int, str] = {}

    def bind(self, chunk: Chunk, source: str = "") -> Node:
        self.reset(source)
        with self._scope():
            body = self._bind_statements(chunk.body)
        return Node('Chunk', Location(0, 0), body)

    # positions

    def _offset_location(self, offset: int) -> Location:
        line = bisect_right(self.line_starts, offset) - 1
        return Location(line, offset - self.line_starts[line])

    def _start_offset(self, node: LuaNode) -> Optional[int]:
        ft = getattr(node, 'first_token', None)
        if ft is not None:
            match = TOKEN_START_RE.match(str(ft))
            if match:
                return int(match.group(1))
        start = getattr(node, 'start_char', None)
        if isinstance(start, int):
            return start
        return None

    def _move_to(self, offset: int) -> Location:
        self.last_offset = offset
        self.last_location = self._offset_location(offset)
        return self.last_location

    def _location(self, node: LuaNode) -> Location:
        """Start of a node, or the last known position when luaparser has none."""
        offset = self._start_offset(node)
        if offset is not None:
            return self._move_to(offset)
        return self.last_location

    def _function_offset(self, node: LuaNode, name_node=None) -> int:
        """Offset of the 'function' keyword of a function definition."""
        if name_node is not None:
            # 'function' is the closest keyword before the name
            name_offset = self._start_offset(_base_name(name_node))
            if name_offset is not None:
                keyword = self.source.rfind('function', 0, name_offset)
                if keyword >= 0:
                    return keyword

        offset = self._start_offset(node)
        if offset is None:
            offset = self.last_offset
        match = FUNCTION_KEYWORD_RE.search(self.source, offset)
        return match.start() if match else offset

    def _after_keyword(self, node: LuaNode, keyword_re) -> int:
        """Offset just past the keyword that starts a statement."""
        offset = self._start_offset(node)
        if offset is None:
            offset = self.last_offset
        match = keyword_re.search(self.source, offset)
        return match.end() if match else offset

    # scopes

    @contextmanager
    def _scope(self):
        self.scopes.append({})
        try:
            yield self.scopes[-1]
        finally:
            self.scopes.pop()

    def _declare_all(self, name_nodes, search_from: int) -> List[Local]:
        """
        Declare names in the innermost scope.

        Newer luaparser releases keep no token on declared names, those are found
        in the source text, left to right from search_from.
        """
        declared = []
        for name_node in name_nodes:
            name = getattr(name_node, 'id', None)
            if not isinstance(name, str):
                continue
            offset = self._start_offset(name_node)
            if offset is None:
                match = re.compile(r'\b%s\b' % re.escape(name)).search(self.source, search_from)
                if match:
                    offset = match.start()
            if offset is not None:
                location = self._offset_location(offset)
                search_from = offset + len(name)
            else:
                location = self.last_location
            local = Local(name, location, self.function_depth)
            self.scopes[-1][name] = local
            declared.append(local)
        return declared

    def _declare(self, name_node: LuaNode, search_from: int) -> Optional[Local]:
        declared = self._declare_all([name_node], search_from)
        return declared[0] if declared else None

    def _lookup(self, name: str) -> Optional[Local]:
        for scope in reversed(self.scopes):
            local = scope.get(name)
            if local is not None:
                return local
        return None

    # traversal

    def _bind(self, node) -> Optional[Node]:
        """Bind a node and dispatch to specific handler."""
        if node is None or isinstance(node, Comment):
            return None

        handler = getattr(self, f'_bind_{type(node).__name__}', None)
        if handler:
            return handler(node)
        return Node(type(node).__name__, self._location(node), self._bind_children(node))

    def _bind_all(self, nodes) -> List[Node]:
        if nodes is None:
            return []
        if isinstance(nodes, LuaNode):
            nodes = [nodes]
        elif not isinstance(nodes, (list, tuple)):
            # plain values, e.g. the default step of 'for i = a, b'
            return []
        result = []
        for node in nodes:
            if not isinstance(node, LuaNode):
                continue
            bound = self._bind(node)
            if bound is not None:
                result.append(bound)
        return result

    def _bind_children(self, node: LuaNode) -> List[Node]:
        """Bind all children of a node, in attribute order."""
        try:
            node_dict = vars(node) if hasattr(node, '__dict__') else {}
        except TypeError:
            node_dict = {}

        children = []
        for key, value in node_dict.items():
            if key.startswith('_') or key == 'comments':
                continue
            if isinstance(value, LuaNode):
                bound = self._bind(value)
                if bound is not None:
                    children.append(bound)
            elif isinstance(value, list):
                children.extend(self._bind_all([v for v in value if isinstance(v, LuaNode)]))
        return children

    def _bind_statements(self, block) -> List[Node]:
        """Statements of a block, in the current scope."""
        if isinstance(block, Block):
            return self._bind_all(block.body)
        return self._bind_all(block)

    def _bind_Block(self, node: Block) -> Node:
        location = self._location(node)
        with self._scope():
            return Node('Block', location, self._bind_statements(node))

    def _bind_Name(self, node: Name) -> Node:
        location = self._location(node)
        local = self._lookup(node.id)
        if local is None:
            return Node('Global', location)
        return LocalRef('Name', location, local=local,
                        upvalue=local.function_depth != self.function_depth)

    def _bind_Index(self, node: Index) -> Node:
        location = self._location(node)
        children = self._bind_all(node.value)
        # t.field: the field name is not a variable
        if getattr(node, 'notation', IndexNotation.DOT) != IndexNotation.DOT:
            children.extend(self._bind_all(node.idx))
        return Node('Index', location, children)

    def _bind_Call(self, node: Call) -> Node:
        location = self._location(node)
        return Node('Call', location, self._bind_all(node.func) + self._bind_all(node.args))

    def _bind_Invoke(self, node: Invoke) -> Node:
        # obj:method(...) - method name is not a variable
        location = self._location(node)
        return Node('Invoke', location, self._bind_all(node.source) + self._bind_all(node.args))

    def _bind_Field(self, node: Field) -> Node:
        location = self._location(node)
        children = []
        key = node.key
        # {name = v} uses a plain key, {[name] = v} an expression
        if getattr(node, 'between_brackets', False) or not isinstance(key, Name):
            children.extend(self._bind_all(key))
        children.extend(self._bind_all(node.value))
        return Node('Field', location, children)

    def _bind_Goto(self, node: Goto) -> Node:
        return Node('Goto', self._location(node))

    def _bind_Label(self, node: Label) -> Node:
        return Node('Label', self._location(node))

    def _bind_LocalAssign(self, node: LocalAssign) -> Node:
        location = self._location(node)
        names_from = self._after_keyword(node, LOCAL_KEYWORD_RE)
        targets = node.targets or []
        values = node.values or []
        self._remember_debug_names(targets, values)

        # initializers don't see the new locals
        children = self._bind_all(values)
        self._declare_all(targets, names_from)
        return Node('LocalAssign', location, children)

    def _bind_Assign(self, node: Assign) -> Node:
        location = self._location(node)
        targets = node.targets or []
        values = node.values or []
        self._remember_debug_names(targets, values)
        return Node('Assign', location, self._bind_all(targets) + self._bind_all(values))

    def _remember_debug_names(self, targets, values):
        for target, value in zip(targets, values):
            if isinstance(target, Name) and isinstance(value, AnonymousFunction):
                self.debug_names[id(value)] = target.id

    def _bind_Fornum(self, node: Fornum) -> Node:
        location = self._location(node)
        names_from = self._after_keyword(node, FOR_KEYWORD_RE)
        children = self._bind_all(node.start) + self._bind_all(node.stop) + self._bind_all(node.step)
        with self._scope():
            self._declare(node.target, names_from)
            children.extend(self._bind_statements(node.body))
        return Node('Fornum', location, children)

    def _bind_Forin(self, node: Forin) -> Node:
        location = self._location(node)
        names_from = self._after_keyword(node, FOR_KEYWORD_RE)
        children = self._bind_all(node.iter)
        with self._scope():
            self._declare_all(node.targets or [], names_from)
            children.extend(self._bind_statements(node.body))
        return Node('Forin', location, children)

    def _bind_Repeat(self, node: Repeat) -> Node:
        location = self._location(node)
        # the 'until' condition sees locals of the loop body
        with self._scope():
            children = self._bind_statements(node.body)
            children.extend(self._bind_all(node.test))
        return Node('Repeat', location, children)

    # functions

    def _bind_function(self, node, debug_name: Optional[str], name_node=None,
                       method: bool = False) -> Closure:
        keyword = self._function_offset(node, name_node)
        location = self._move_to(keyword)
        params_from = self.source.find('(', keyword)
        self.function_depth += 1
        closure = Closure('Closure', location, depth=self.function_depth, debug_name=debug_name)
        try:
            with self._scope() as scope:
                if method:
                    closure.params.append(Local('self', location, self.function_depth))
                    scope['self'] = closure.params[-1]
                closure.params.extend(self._declare_all(node.args or [], max(params_from, keyword)))
                closure.children = self._bind_statements(node.body)
        finally:
            self.function_depth -= 1
        return closure

    def _bind_AnonymousFunction(self, node: AnonymousFunction) -> Closure:
        return self._bind_function(node, self.debug_names.pop(id(node), None))

    def _bind_LocalFunction(self, node: LocalFunction) -> Node:
        location = self._location(node)
        # declared before the body so the function can call itself
        local = self._declare(node.name, self._after_keyword(node, FUNCTION_KEYWORD_RE))
        name = local.name if local else None
        return Node('LocalFunction', location, [self._bind_function(node, name, node.name)])

    def _bind_Function(self, node: Function) -> Node:
        location = self._location(node)
        target = self._bind_all(node.name)
        closure = self._bind_function(node, _last_name(node.name), node.name)
        return Node('Function', location, target + [closure])

    def _bind_Method(self, node: Method) -> Node:
        location = self._location(node)
        source = self._bind_all(node.source)
        closure = self._bind_function(node, _last_name(node.name), node.source, method=True)
        return Node('Method', location, source + [closure])


def _base_name(node):
    """Leftmost name of a.b.c, where the source text of the expression starts."""
    while isinstance(node, Index):
        node = node.value
    return node


def _last_name(node) -> Optional[str]:
    """Debug name of 'function a.b.c()': the last component."""
    if isinstance(node, Name):
        return node.id
    if isinstance(node, Index):
        return _last_name(node.idx)
    return None


def bind_source(source: str) -> Node:
    """Shebang strip, parse and bind in one go."""
    source = strip_shebang(source)
    return Binder().bind(parse_source(source), source)
