import gzip
import shutil
import subprocess
from pathlib import Path

from dockscreen.configs.logger import logger

DOWNLOADER_SUFFIXES = (".curl", ".sh")
STRUCTURE_SUFFIXES = (".sdf", ".mol2", ".mol", ".pdb")


def _archive_suffixes() -> tuple[str, ...]:
    suffixes = []
    for _name, extensions, _desc in shutil.get_unpack_formats():
        suffixes.extend(extensions)
    return tuple(suffixes)


def _run_downloader(script: Path, dest: Path, timeout: float | None) -> None:
    """Execute a downloader script (e.g. a ZINC ``.curl`` file) inside *dest*."""
    logger.info("Running downloader script %s in %s", script.name, dest)
    try:
        result = subprocess.run(
            ["bash", str(script.resolve())],
            cwd=str(dest),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(
            f"Downloader script {script} exceeded {timeout}s"
        ) from e

    if result.returncode != 0:
        logger.error("Downloader output:\n%s", (result.stderr or result.stdout).strip())
        raise RuntimeError(
            f"Downloader script {script} failed with exit code {result.returncode}"
        )


def _gunzip(path: Path, target: Path) -> None:
    with gzip.open(path, "rb") as src, target.open("wb") as dst:
        shutil.copyfileobj(src, dst)


def decompress_gz_files(root: Path) -> int:
    """Decompress every ``*.gz`` file below *root* in place, removing the archive.

    Regular gzip members only; ``.tar.gz`` bundles are unpacked earlier by
    :func:`extract_ligand_bundle`. Corrupt members are logged and left as-is.

    Returns:
        Number of files decompressed.
    """
    count = 0
    for gz_path in sorted(Path(root).rglob("*.gz")):
        if not gz_path.is_file() or gz_path.name.endswith(".tar.gz"):
            continue
        target = gz_path.with_suffix("")
        try:
            _gunzip(gz_path, target)
        except (OSError, EOFError) as e:
            logger.warning("Failed to decompress %s: %s", gz_path, e)
            target.unlink(missing_ok=True)
            continue
        gz_path.unlink()
        count += 1
    return count


def extract_ligand_bundle(
    bundle: str | Path, dest: str | Path, timeout: float | None = None
) -> Path:
    """Materialize a ligand bundle as a directory tree of structure files.

    Args:
        bundle: A directory, a downloader script (``.curl``/``.sh``), a tar/zip
            archive, a single ``.gz`` file or a single structure file.
        dest: Extraction directory (created if missing).
        timeout: Wall-clock cap for downloader scripts.

    Returns:
        Root directory to discover ligand files from.

    Raises:
        FileNotFoundError: If *bundle* does not exist.
        ValueError: If the bundle type is not recognized.
        RuntimeError: If a downloader script fails or times out.
    """
    bundle = Path(bundle)
    dest = Path(dest)
    if not bundle.exists():
        raise FileNotFoundError(f"Ligand bundle not found: {bundle}")

    if bundle.is_dir():
        logger.info("Using ligand directory in place: %s", bundle)
        root = bundle
    else:
        dest.mkdir(parents=True, exist_ok=True)
        name = bundle.name.lower()
        if name.endswith(DOWNLOADER_SUFFIXES):
            _run_downloader(bundle, dest, timeout)
        elif name.endswith(_archive_suffixes()):
            logger.info("Unpacking archive %s into %s", bundle, dest)
            shutil.unpack_archive(str(bundle), str(dest))
        elif name.endswith(".gz"):
            _gunzip(bundle, dest / bundle.name[: -len(".gz")])
        elif name.endswith(STRUCTURE_SUFFIXES):
            shutil.copy2(bundle, dest / bundle.name)
        else:
            raise ValueError(f"Unrecognized ligand bundle type: {bundle}")
        root = dest

    decompressed = decompress_gz_files(root)
    if decompressed:
        logger.info("Decompressed %d .gz files under %s", decompressed, root)
    return root
