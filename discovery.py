"""
This finds the Lua sources to analyze from command line paths.

A path can be a single file, a directory (searched recursively) or '-' for stdin.

.luau files are picked up too, but luaparser only knows standard Lua syntax. Luau
additions (type annotations, compound assignment like '+=', 'continue') make the
file come back as a SyntaxError instead of being analyzed.
"""

from pathlib import Path
from typing import List


LUA_SUFFIXES = ('.lua', '.luau')

STDIN_PATH = '-'


def find_scripts(root_path: Path) -> List[Path]:
    """Find all Lua scripts under a directory."""
    scripts = []
    seen = set()

    for suffix in LUA_SUFFIXES:
        for lua_file in root_path.rglob(f'*{suffix}'):
            if lua_file in seen or not lua_file.is_file():
                continue
            rel_parts = lua_file.relative_to(root_path).parts
            # Skip node_modules and hidden directories
            if 'node_modules' in rel_parts:
                continue
            if any(part.startswith('.') for part in rel_parts):
                continue
            scripts.append(lua_file)
            seen.add(lua_file)

    return sorted(scripts)


def discover_inputs(paths: List[str]) -> List[str]:
    """
    Expand command line paths into the list of inputs to analyze.

    - '-' stays as is (stdin)
    - a directory is replaced by the scripts found in it
    - anything else is kept, so unreadable files get reported later

    Order follows the command line, duplicates are dropped.
    """
    inputs = []
    seen = set()

    for raw in paths:
        if raw == STDIN_PATH:
            candidates = [raw]
        else:
            path = Path(raw)
            if path.is_dir():
                candidates = [str(p) for p in find_scripts(path)]
            else:
                candidates = [raw]

        for candidate in candidates:
            if candidate not in seen:
                inputs.append(candidate)
                seen.add(candidate)

    return inputs
