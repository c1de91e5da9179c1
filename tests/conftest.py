"""Shared pytest fixtures."""

import pytest


@pytest.fixture
def tmp_lua_file(tmp_path):
    """Fixture to create temporary Lua files for testing."""
    def _create_file(content: str, filename: str = "test.lua"):
        file_path = tmp_path / filename
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
        return file_path
    return _create_file
