from __future__ import annotations

import math
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

DEFAULT_BATCH_SIZE = 100


def _normalize_extension(extension: str) -> str:
    extension = extension.lower()
    return extension if extension.startswith(".") else f".{extension}"


def discover_ligand_files(root: str | Path, extension: str = ".sdf") -> list[Path]:
    """Recursively list regular files under *root* with the given extension.

    The result is sorted so repeated scans of an unchanged tree agree. A
    missing or empty root yields an empty list.
    """
    root = Path(root)
    if not root.is_dir():
        return []
    suffix = _normalize_extension(extension)
    return sorted(
        p for p in root.rglob("*") if p.is_file() and p.suffix.lower() == suffix
    )


def scan_ligand_directory(directory: str | Path, extension: str = ".sdf") -> list[Path]:
    """Non-recursive scan of a flat ligand directory, sorted by name."""
    directory = Path(directory)
    if not directory.is_dir():
        return []
    suffix = _normalize_extension(extension)
    return sorted(
        p for p in directory.iterdir() if p.is_file() and p.suffix.lower() == suffix
    )


def batch_count(n_items: int, batch_size: int) -> int:
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return math.ceil(n_items / batch_size)


def make_batches(items: Sequence[Path], batch_size: int = DEFAULT_BATCH_SIZE) -> list[list[Path]]:
    """Split *items* into consecutive batches of at most *batch_size* entries.

    Relative order is preserved, every item lands in exactly one batch, and
    the number of batches is ``ceil(len(items) / batch_size)``.
    """
    n = batch_count(len(items), batch_size)
    return [list(items[i * batch_size : (i + 1) * batch_size]) for i in range(n)]


def write_listing(paths: Sequence[Path], listing_path: Path) -> Path:
    """Write one path per line; the format consumed by unidocktools and unidock."""
    listing_path.parent.mkdir(parents=True, exist_ok=True)
    with listing_path.open("w", encoding="utf-8") as f:
        for path in paths:
            f.write(f"{path}\n")
    return listing_path


@contextmanager
def batch_listing(paths: Sequence[Path], listing_path: Path) -> Iterator[Path]:
    """Materialize a temporary batch listing, removed once the block exits."""
    write_listing(paths, listing_path)
    try:
        yield listing_path
    finally:
        listing_path.unlink(missing_ok=True)
