from __future__ import annotations

import re
import subprocess
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from dockscreen.configs.logger import logger
from dockscreen.stages.discovery.utils import (
    DEFAULT_BATCH_SIZE,
    batch_listing,
    make_batches,
)

# unidocktools ligandprep: "WARNING ... ligand <path> idx <i> is invalid mol"
INVALID_MOL_RE = re.compile(
    r"WARNING.*\bligand (?P<path>.+?) idx\s*(?P<index>\d+)?.*is invalid mol"
)

BATCH_OK = "ok"
BATCH_FAILED = "failed"
BATCH_TIMEOUT = "timeout"


@dataclass
class BatchOutcome:
    index: int
    inputs: list[Path]
    status: str
    returncode: int | None = None
    output: str = ""
    invalid: list[Path] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)
    accepted: list[Path] = field(default_factory=list)


@dataclass
class SanitizeReport:
    """Outcome of every batch plus the accepted set, in batch order."""

    batches: list[BatchOutcome] = field(default_factory=list)

    @property
    def accepted(self) -> list[Path]:
        return [p for b in self.batches for p in b.accepted]

    @property
    def removed(self) -> list[Path]:
        return [p for b in self.batches for p in b.removed]

    @property
    def failed_batches(self) -> list[BatchOutcome]:
        return [b for b in self.batches if b.status != BATCH_OK]


def parse_invalid_ligands(output: str) -> list[Path]:
    """Extract ligand paths flagged as invalid molecules, first-seen order."""
    seen: dict[str, None] = {}
    for line in output.splitlines():
        match = INVALID_MOL_RE.search(line)
        if match:
            seen.setdefault(match.group("path").strip(), None)
    return [Path(p) for p in seen]


def remove_invalid_ligands(paths: Sequence[Path]) -> list[Path]:
    """Delete the flagged files that exist; returns what was removed."""
    removed = []
    for path in paths:
        if path.is_file():
            path.unlink()
            removed.append(path)
            logger.info("Removed invalid file: %s", path.name)
    return removed


def prepared_output_path(source: Path, prepared_dir: Path) -> Path:
    """Where ligandprep writes the prepared copy of *source* (same file name)."""
    return prepared_dir / source.name


def run_ligandprep(
    listing: Path,
    prepared_dir: Path,
    unidocktools: str = "unidocktools",
    timeout: float | None = None,
) -> tuple[str, int | None, str]:
    """Invoke ``unidocktools ligandprep`` on a batch listing.

    Returns:
        ``(status, returncode, combined stdout+stderr)``; never raises for
        tool failures.
    """
    cmd = [unidocktools, "ligandprep", "-i", str(listing), "-sd", str(prepared_dir)]
    try:
        result = subprocess.run(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        output = e.stdout or ""
        if isinstance(output, bytes):
            output = output.decode(errors="replace")
        return BATCH_TIMEOUT, None, output
    except OSError as e:
        return BATCH_FAILED, None, str(e)

    status = BATCH_OK if result.returncode == 0 else BATCH_FAILED
    return status, result.returncode, result.stdout or ""


def sanitize_batch(
    index: int,
    inputs: list[Path],
    prepared_dir: Path,
    listing_dir: Path,
    unidocktools: str = "unidocktools",
    timeout: float | None = None,
) -> BatchOutcome:
    """Prepare one batch and drop the ligands the tool flags as invalid."""
    listing_path = listing_dir / f"batch_{index:04d}.txt"
    with batch_listing([p.resolve() for p in inputs], listing_path) as listing:
        status, returncode, output = run_ligandprep(
            listing, prepared_dir, unidocktools, timeout
        )

    outcome = BatchOutcome(index, inputs, status, returncode, output)
    outcome.invalid = parse_invalid_ligands(output)
    outcome.removed = remove_invalid_ligands(outcome.invalid)

    # A killed batch may have left half-written outputs behind.
    if status == BATCH_TIMEOUT:
        return outcome

    flagged = {p.resolve() for p in outcome.invalid}
    for source in inputs:
        if source.resolve() in flagged:
            continue
        prepared = prepared_output_path(source, prepared_dir)
        if prepared.is_file():
            outcome.accepted.append(prepared)
    return outcome


def _log_batch(outcome: BatchOutcome, n_batches: int, timeout: float | None) -> None:
    label = f"Batch {outcome.index}/{n_batches}"
    if outcome.status == BATCH_OK:
        logger.info(
            "%s: %d accepted, %d invalid of %d files",
            label,
            len(outcome.accepted),
            len(outcome.invalid),
            len(outcome.inputs),
        )
        if outcome.output.strip():
            logger.debug("Ligandprep output:\n%s", outcome.output.rstrip())
        return

    reason = (
        f"timed out after {timeout}s"
        if outcome.status == BATCH_TIMEOUT
        else f"failed (exit={outcome.returncode})"
    )
    logger.warning(
        "%s %s: %d accepted, %d invalid of %d files",
        label,
        reason,
        len(outcome.accepted),
        len(outcome.invalid),
        len(outcome.inputs),
    )
    if not outcome.invalid:
        logger.warning(
            "Ligandprep output:\n%s", outcome.output.rstrip() or "<no output>"
        )


def sanitize_ligands(
    files: Sequence[Path],
    prepared_dir: Path,
    listing_dir: Path,
    unidocktools: str = "unidocktools",
    batch_size: int = DEFAULT_BATCH_SIZE,
    timeout: float | None = None,
    progress: Callable[[int, int], None] | None = None,
) -> SanitizeReport:
    """Run ligand preparation batch by batch, tolerating failed batches.

    Batches run one at a time. A crashed or timed-out batch is logged with
    its raw output and the run moves on to the next batch.
    """
    prepared_dir = Path(prepared_dir)
    prepared_dir.mkdir(parents=True, exist_ok=True)
    batches = make_batches(list(files), batch_size)
    logger.info(
        "Starting sanitization of %d files in %d batches of up to %d",
        len(files),
        len(batches),
        batch_size,
    )

    report = SanitizeReport()
    for idx, batch in enumerate(batches, start=1):
        outcome = sanitize_batch(
            idx, batch, prepared_dir, Path(listing_dir), unidocktools, timeout
        )
        _log_batch(outcome, len(batches), timeout)
        report.batches.append(outcome)
        if progress:
            progress(idx, len(batches))

    logger.info(
        "After sanitization: %d files accepted, %d removed, %d failed batches",
        len(report.accepted),
        len(report.removed),
        len(report.failed_batches),
    )
    return report
