from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path

from dockscreen.configs.logger import logger
from dockscreen.stages.discovery.utils import scan_ligand_directory, write_listing


def build_ligand_index(accepted: Sequence[Path], manifest_path: Path) -> Path:
    """Write the accepted ligands, one absolute path per line, in the given order."""
    manifest_path = Path(manifest_path)
    paths = [Path(p).resolve() for p in accepted]
    write_listing(paths, manifest_path)
    logger.info("Wrote %d ligands to index %s", len(paths), manifest_path)
    return manifest_path


def rebuild_index_from_directory(
    prepared_dir: Path, manifest_path: Path, extension: str = ".sdf"
) -> list[Path]:
    """Rebuild a manifest from whatever structure files are in *prepared_dir*.

    Used to re-index a finished preparation without rerunning it; results are
    sorted so the manifest is stable across calls.
    """
    found = scan_ligand_directory(prepared_dir, extension)
    build_ligand_index(found, manifest_path)
    return found


def read_ligand_index(manifest_path: Path) -> list[Path]:
    with Path(manifest_path).open(encoding="utf-8") as f:
        return [Path(line.strip()) for line in f if line.strip()]
