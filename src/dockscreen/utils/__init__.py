"""Utility functions for dockscreen package."""

from dockscreen.utils.parallel import parallel_map, resolve_n_jobs
from dockscreen.utils.tools import check_requirements, resolve_tool

__all__ = ["check_requirements", "parallel_map", "resolve_n_jobs", "resolve_tool"]
