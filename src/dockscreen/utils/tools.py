"""Lookup of the external command-line tools the pipeline shells out to."""

from __future__ import annotations

import os
import shutil
from collections.abc import Mapping
from pathlib import Path

DEFAULT_TOOLS = {
    "obabel": "obabel",
    "unidocktools": "unidocktools",
    "unidock": "unidock",
}


def resolve_tool(tool_path: str | os.PathLike | None) -> str | None:
    """Return an executable path for *tool_path*, or None if it is unusable.

    Absolute or relative paths must point to an executable file; bare names
    are looked up on ``PATH``.
    """
    if not tool_path:
        return None

    path = Path(str(tool_path))
    if path.parent != Path(".") or path.is_absolute():
        if path.is_file() and os.access(path, os.X_OK):
            return str(path)
        return None

    return shutil.which(str(tool_path))


def tool_map(config: Mapping | None) -> dict[str, str]:
    """Merge configured tool overrides onto the default tool names."""
    tools = dict(DEFAULT_TOOLS)
    if config:
        tools.update({k: str(v) for k, v in (config.get("tools") or {}).items() if v})
    return tools


def check_requirements(tools: Mapping[str, str]) -> list[str]:
    """Return the names of required tools that cannot be resolved."""
    return [name for name, value in tools.items() if resolve_tool(value) is None]
