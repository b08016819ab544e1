from __future__ import annotations

import subprocess
from collections import Counter
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from dockscreen.configs.logger import logger
from dockscreen.utils.parallel import parallel_map

OUTPUT_PREFIX = "ligand_"

STATUS_CONVERTED = "converted"
STATUS_TIMEOUT = "timeout"
STATUS_FAILED = "failed"


@dataclass(frozen=True)
class ConversionTask:
    """One obabel ``--gen3D`` invocation."""

    source: Path
    target: Path
    obabel: str = "obabel"
    timeout: float | None = 10.0


@dataclass(frozen=True)
class ConversionOutcome:
    source: Path
    target: Path
    status: str
    returncode: int | None = None
    message: str = ""

    @property
    def converted(self) -> bool:
        return self.status == STATUS_CONVERTED


@dataclass
class NormalizeReport:
    """Per-file conversion outcomes in discovery order."""

    outcomes: list[ConversionOutcome] = field(default_factory=list)

    @property
    def converted(self) -> list[Path]:
        return [o.target for o in self.outcomes if o.converted]

    @property
    def skipped(self) -> list[ConversionOutcome]:
        return [o for o in self.outcomes if not o.converted]

    def counts(self) -> dict[str, int]:
        return dict(Counter(o.status for o in self.outcomes))


def plan_targets(
    files: Sequence[Path], output_dir: Path, prefix: str = OUTPUT_PREFIX
) -> list[Path]:
    """Map each input to ``output_dir/<prefix><stem><suffix>``.

    Inputs from different subdirectories can share a stem, so later
    duplicates get a ``_<n>`` suffix. Mapping is deterministic for a given
    input order.
    """
    taken: set[str] = set()
    targets = []
    for source in files:
        base = f"{prefix}{source.stem}"
        name = f"{base}{source.suffix}"
        n = 1
        while name in taken:
            name = f"{base}_{n}{source.suffix}"
            n += 1
        taken.add(name)
        targets.append(output_dir / name)
    return targets


def _describe_file(path: Path) -> str:
    try:
        return f"{path.stat().st_size} bytes"
    except OSError as e:
        return f"unreadable ({e.strerror})"


def convert_ligand(task: ConversionTask) -> ConversionOutcome:
    """Run obabel on one file; never raises.

    On timeout the child is killed by ``subprocess.run``. Any output left at
    the target after a timeout or failure is removed, so a file at the target
    path always means a completed conversion.
    """
    cmd = [task.obabel, str(task.source), "-O", str(task.target), "--gen3D"]
    try:
        result = subprocess.run(
            cmd, capture_output=True, text=True, timeout=task.timeout
        )
    except subprocess.TimeoutExpired:
        task.target.unlink(missing_ok=True)
        return ConversionOutcome(
            task.source, task.target, STATUS_TIMEOUT, None, f"exceeded {task.timeout}s"
        )
    except OSError as e:
        task.target.unlink(missing_ok=True)
        return ConversionOutcome(task.source, task.target, STATUS_FAILED, None, str(e))

    if result.returncode != 0:
        task.target.unlink(missing_ok=True)
        message = (result.stderr or "").strip().splitlines()
        return ConversionOutcome(
            task.source,
            task.target,
            STATUS_FAILED,
            result.returncode,
            message[-1] if message else "",
        )

    if not task.target.exists():
        return ConversionOutcome(
            task.source, task.target, STATUS_FAILED, 0, "no output written"
        )
    return ConversionOutcome(task.source, task.target, STATUS_CONVERTED, 0)


def normalize_ligands(
    files: Sequence[Path],
    output_dir: Path,
    obabel: str = "obabel",
    timeout: float | None = 10.0,
    n_jobs: int = 1,
    progress: Callable[[int, int], None] | None = None,
) -> NormalizeReport:
    """Generate 3D coordinates for every file on a bounded worker pool.

    Each file gets its own timeout; a stuck conversion is killed without
    holding up the others. Failures are tallied and logged, never raised.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    if not files:
        logger.info("No ligand files to convert")
        return NormalizeReport()

    targets = plan_targets(files, output_dir)
    tasks = [
        ConversionTask(source, target, obabel, timeout)
        for source, target in zip(files, targets)
    ]
    logger.info(
        "Converting %d ligand files with obabel --gen3D (%d workers, %ss timeout)",
        len(tasks),
        n_jobs,
        timeout,
    )
    outcomes = parallel_map(
        convert_ligand, tasks, n_jobs=n_jobs, progress=progress
    )
    report = NormalizeReport(outcomes)

    for outcome in report.skipped:
        if outcome.status == STATUS_TIMEOUT:
            logger.warning("Skipped (timeout): %s", outcome.source)
        else:
            logger.warning(
                "Skipped (failed, exit=%s): %s [%s] %s",
                outcome.returncode,
                outcome.source,
                _describe_file(outcome.source),
                outcome.message,
            )

    logger.info(
        "Successfully processed %d out of %d files",
        len(report.converted),
        len(outcomes),
    )
    return report
