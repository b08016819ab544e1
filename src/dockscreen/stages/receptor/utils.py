from __future__ import annotations

import shlex
import subprocess
from pathlib import Path

from dockscreen.configs.logger import logger


def prepare_receptor(
    receptor_pdb: str | Path,
    output_path: str | Path,
    unidocktools: str = "unidocktools",
    timeout: float | None = None,
) -> Path:
    """Convert a receptor PDB into the PDBQT Uni-Dock expects.

    Raises:
        FileNotFoundError: If the input PDB is missing.
        RuntimeError: If ``unidocktools proteinprep`` fails, times out, or
            writes nothing.
    """
    receptor_pdb = Path(receptor_pdb)
    output_path = Path(output_path)
    if not receptor_pdb.is_file():
        raise FileNotFoundError(f"PDB file not found: {receptor_pdb}")

    output_path.parent.mkdir(parents=True, exist_ok=True)
    cmd = [
        unidocktools,
        "proteinprep",
        "-r",
        str(receptor_pdb.resolve()),
        "-o",
        str(output_path.resolve()),
    ]
    logger.info("Running protein preparation: %s", " ".join(shlex.quote(c) for c in cmd))

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(f"Protein preparation exceeded {timeout}s") from e
    except OSError as e:
        raise RuntimeError(f"Protein preparation could not start: {e}") from e

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        stdout = (result.stdout or "").strip()
        raise RuntimeError(
            f"Protein preparation failed (exit={result.returncode}): {stderr or stdout}"
        )
    if not output_path.is_file():
        raise RuntimeError(f"Protein preparation produced no output at {output_path}")

    logger.info("Protein preparation completed successfully: %s", output_path)
    return output_path


def resolve_receptor(
    receptor_override: str | Path | None,
    receptor_pdb: str | Path | None,
    prepared_dir: Path,
    unidocktools: str = "unidocktools",
    timeout: float | None = None,
) -> Path:
    """Use a precomputed receptor when given, otherwise prepare one from the PDB."""
    if receptor_override:
        receptor = Path(receptor_override)
        if not receptor.is_file():
            raise FileNotFoundError(f"Receptor file not found: {receptor}")
        logger.info("Using precomputed receptor: %s", receptor)
        return receptor

    if not receptor_pdb:
        raise ValueError("Either a PDB file or a precomputed receptor is required")
    return prepare_receptor(
        receptor_pdb, Path(prepared_dir) / "receptor.pdbqt", unidocktools, timeout
    )
