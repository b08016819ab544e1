"""Bounded worker pools shared by the pipeline stages."""

from __future__ import annotations

import os
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")

NJOBS_ENV = "DOCKSCREEN_NJOBS"


def resolve_n_jobs(config: dict | None = None, default: int = -1) -> int:
    """Resolve the number of parallel workers for a run.

    ``config["n_jobs"]`` wins over *default*. Values ``<= 0`` mean "all
    available cores": ``DOCKSCREEN_NJOBS`` if set, then
    ``SLURM_CPUS_PER_TASK``, then ``os.cpu_count()``.

    Returns:
        Positive integer >= 1.
    """
    n_jobs = default
    if config and config.get("n_jobs") is not None:
        n_jobs = int(config["n_jobs"])

    if n_jobs <= 0:
        env_n_jobs = os.environ.get(NJOBS_ENV)
        if env_n_jobs:
            try:
                parsed = int(env_n_jobs)
                if parsed > 0:
                    n_jobs = parsed
            except ValueError:
                pass

    if n_jobs <= 0:
        slurm_cpus = os.environ.get("SLURM_CPUS_PER_TASK")
        if slurm_cpus:
            n_jobs = int(slurm_cpus)
        else:
            n_jobs = os.cpu_count() or 1

    return max(1, n_jobs)


def parallel_map(
    func: Callable[[T], R],
    items: Sequence[T],
    n_jobs: int,
    progress: Callable[[int, int], None] | None = None,
) -> list[R]:
    """Apply *func* to every element of *items* on a pool of *n_jobs* threads.

    Meant for work that mostly waits on child processes, so threads are
    enough to keep *n_jobs* external tools busy. ``n_jobs == 1`` (or a single
    item) runs sequentially in the caller.

    Args:
        func: Callable applied to each item.
        items: Sequence of arguments to map over.
        n_jobs: Number of workers.
        progress: Called as ``progress(done, total)`` after each result.

    Returns:
        List of results in the same order as *items*.
    """
    length = len(items)
    if length == 0:
        return []

    if n_jobs == 1 or length == 1:
        out = []
        for idx, item in enumerate(items, start=1):
            out.append(func(item))
            if progress:
                progress(idx, length)
        return out

    with ThreadPoolExecutor(max_workers=n_jobs) as executor:
        out = []
        for idx, result in enumerate(executor.map(func, items), start=1):
            out.append(result)
            if progress:
                progress(idx, length)
        return out
