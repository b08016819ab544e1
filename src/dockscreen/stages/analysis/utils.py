"""Energy scanning of Uni-Dock result files.

Result files hold one or more SD records separated by ``$$$$``. Uni-Dock tags
each pose with a line like ``ENERGY=   -7.12  LOWER_BOUND=...``; only the first
record of a file (its best pose) is inspected.
"""

from __future__ import annotations

import math
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import pandas as pd

from dockscreen.configs.logger import logger
from dockscreen.stages.discovery.utils import scan_ligand_directory

RECORD_DELIMITER = "$$$$"
ENERGY_TAG = "ENERGY="
DEFAULT_MONITOR_INTERVAL = 3600.0


@dataclass(frozen=True)
class EnergyRecord:
    path: Path
    energy: float

    @property
    def valid(self) -> bool:
        return math.isfinite(self.energy)


@dataclass(frozen=True)
class ProgressSnapshot:
    timestamp: datetime
    file_count: int
    best: EnergyRecord | None


@dataclass
class AnalysisReport:
    output_dir: Path
    records: list[EnergyRecord] = field(default_factory=list)

    @property
    def file_count(self) -> int:
        return len(self.records)

    @property
    def best(self) -> EnergyRecord | None:
        return find_best(self.records)


def parse_energy(text: str) -> float:
    """Energy of the first record in *text*, or ``inf`` if it has none."""
    first_record = text.split(RECORD_DELIMITER, 1)[0]
    for line in first_record.splitlines():
        if line.startswith(ENERGY_TAG):
            try:
                value = float(line.split("=")[1].strip().split()[0])
            except (IndexError, ValueError):
                return math.inf
            return math.inf if math.isnan(value) else value
    return math.inf


def extract_energy(path: str | Path) -> float:
    """Read *path* and return its first-record energy; ``inf`` on any error."""
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError:
        return math.inf
    return parse_energy(text)


def scan_energies(output_dir: str | Path, extension: str = ".sdf") -> list[EnergyRecord]:
    """Energy record for every result file currently in *output_dir*."""
    return [
        EnergyRecord(path, extract_energy(path))
        for path in scan_ligand_directory(output_dir, extension)
    ]


def find_best(records: list[EnergyRecord]) -> EnergyRecord | None:
    """Lowest finite energy; ``None`` when no record parsed."""
    best = None
    for record in records:
        if record.valid and (best is None or record.energy < best.energy):
            best = record
    return best


def take_snapshot(output_dir: str | Path, extension: str = ".sdf") -> ProgressSnapshot:
    records = scan_energies(output_dir, extension)
    return ProgressSnapshot(datetime.now(), len(records), find_best(records))


def format_status_line(snapshot: ProgressSnapshot) -> str:
    status = f"Progress: {snapshot.file_count} files processed"
    if snapshot.best is not None:
        status += (
            f", Lowest energy: {snapshot.best.energy} ({snapshot.best.path.name})"
        )
    return status


class ProgressMonitor:
    """Periodically logs how many result files exist and the best energy so far.

    Runs on a daemon thread until :meth:`stop` is called. Each cycle rescans
    the output directory from scratch and only reads from it. The first cycle
    runs immediately.
    """

    def __init__(
        self,
        output_dir: str | Path,
        interval: float = DEFAULT_MONITOR_INTERVAL,
        extension: str = ".sdf",
    ) -> None:
        self.output_dir = Path(output_dir)
        self.interval = float(interval)
        self.extension = extension
        self.snapshots: list[ProgressSnapshot] = []
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def poll_once(self) -> ProgressSnapshot:
        snapshot = take_snapshot(self.output_dir, self.extension)
        self.snapshots.append(snapshot)
        logger.info(format_status_line(snapshot))
        return snapshot

    def run(self) -> None:
        """Poll until stopped; also usable in the foreground."""
        while not self._stop_event.is_set():
            try:
                self.poll_once()
            except OSError as e:
                logger.warning("Progress scan of %s failed: %s", self.output_dir, e)
            if self._stop_event.wait(self.interval):
                break

    def start(self) -> ProgressMonitor:
        if self._thread is not None:
            raise RuntimeError("Progress monitor already started")
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run, name="dockscreen-progress", daemon=True
        )
        self._thread.start()
        return self

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self) -> ProgressMonitor:
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def analyze_results(output_dir: str | Path, extension: str = ".sdf") -> AnalysisReport:
    """One-shot scan of the docking output directory."""
    return AnalysisReport(Path(output_dir), scan_energies(output_dir, extension))


def format_report(report: AnalysisReport) -> list[str]:
    if report.file_count == 0:
        return [f"No result files found in {report.output_dir}"]
    best = report.best
    if best is None:
        return [
            f"No valid energy values found in any of {report.file_count} result files"
        ]
    return [
        "Final results:",
        f"Result files scanned: {report.file_count}",
        f"File with lowest energy: {best.path.name}",
        f"Energy value: {best.energy}",
    ]


def results_table(records: list[EnergyRecord]) -> pd.DataFrame:
    """Rank result files by energy; files without a parsable energy come last."""
    df = pd.DataFrame(
        {
            "file": [r.path.name for r in records],
            "path": [str(r.path) for r in records],
            "energy": [r.energy if r.valid else None for r in records],
        },
        columns=["file", "path", "energy"],
    )
    df["energy"] = df["energy"].astype(float)
    df = df.sort_values(["energy", "file"], na_position="last", kind="mergesort")
    df = df.reset_index(drop=True)
    df["rank"] = df["energy"].rank(method="min").astype("Int64")
    return df
