import shutil
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

import yaml

from dockscreen.configs.logger import logger
from dockscreen.stages.analysis.utils import (
    AnalysisReport,
    ProgressMonitor,
    analyze_results,
    format_report,
    results_table,
)
from dockscreen.stages.discovery.utils import discover_ligand_files, scan_ligand_directory
from dockscreen.stages.docking.utils import (
    DockingBox,
    DockingOutcome,
    build_unidock_command,
    run_docking,
)
from dockscreen.stages.extract.utils import extract_ligand_bundle
from dockscreen.stages.index.utils import build_ligand_index
from dockscreen.stages.normalize.utils import NormalizeReport, normalize_ligands
from dockscreen.stages.receptor.utils import resolve_receptor
from dockscreen.stages.sanitize.utils import SanitizeReport, sanitize_ligands
from dockscreen.utils.parallel import resolve_n_jobs
from dockscreen.utils.tools import tool_map

# Directory names inside a run folder
DIR_EXTRACTED = "extracted"
DIR_PROCESSED = "processed_ligands"
DIR_PREPARED = "prepared_ligands"
DIR_PROTEIN = "prepared_protein"
DIR_DOCKING_OUTPUT = "docking_output"
DIR_BATCHES = "batches"
DIR_CONFIGS = "configs"
DIR_FINISHED = "finished"

# File names
FILE_LIGAND_INDEX = "ligand_index.txt"
FILE_DOCKING_LOG = "unidock_run.log"
FILE_SUMMARY = "docking_summary.csv"
FILE_RESOLVED_CONFIG = "config_resolved.yml"
FILE_RUN_INCOMPLETE = ".RUN_INCOMPLETE"

# Stage names
STAGE_RECEPTOR = "receptor"
STAGE_EXTRACT = "extract"
STAGE_NORMALIZE = "normalize"
STAGE_SANITIZE = "sanitize"
STAGE_INDEX = "index"
STAGE_DOCKING = "docking"
STAGE_ANALYSIS = "analysis"

STAGE_DESCRIPTIONS = {
    STAGE_RECEPTOR: "Prepare the receptor PDBQT with unidocktools proteinprep",
    STAGE_EXTRACT: "Download or unpack the ligand bundle and gunzip its files",
    STAGE_NORMALIZE: "Generate 3D coordinates per ligand with obabel (timeout per file)",
    STAGE_SANITIZE: "Batch unidocktools ligandprep; drop ligands flagged invalid",
    STAGE_INDEX: "Write the accepted ligands to the ligand index",
    STAGE_DOCKING: "Run Uni-Dock on the GPU while a monitor logs progress",
    STAGE_ANALYSIS: "Report the lowest-energy result and write a ranked summary",
}
STAGE_ORDER = list(STAGE_DESCRIPTIONS)

# Intermediate artifacts moved away when organize_finished is set
ORGANIZED_ITEMS = (
    DIR_EXTRACTED,
    DIR_PROCESSED,
    DIR_PREPARED,
    DIR_PROTEIN,
    DIR_BATCHES,
    FILE_LIGAND_INDEX,
)


class StageProgressReporter:
    """Emit structured progress events for a single pipeline stage."""

    def __init__(self, emit_event, stage: str, stage_index: int, total_stages: int) -> None:
        self._emit_event = emit_event
        self.stage = stage
        self.stage_index = stage_index
        self.total_stages = total_stages

    def _emit(self, event_type: str, **payload) -> None:
        if self._emit_event is None:
            return
        self._emit_event(
            {
                "type": event_type,
                "stage": self.stage,
                "stage_index": self.stage_index,
                "total_stages": self.total_stages,
                **payload,
            }
        )

    def start(self, message: str | None = None) -> None:
        self._emit("stage_start", message=message)

    def progress(self, current: int, total: int, message: str | None = None) -> None:
        self._emit("stage_progress", current=int(current), total=int(total), message=message)

    def complete(self, ok: bool = True, message: str | None = None) -> None:
        self._emit("stage_complete", ok=bool(ok), message=message)


def _log_stage_header(stage_label: str) -> None:
    """Log a formatted stage header."""
    separator = "[#B29EEE]" + "─" * 59 + "[/#B29EEE]"
    logger.info(separator)
    logger.info("[#B29EEE]  %s[/#B29EEE]", stage_label)
    logger.info(separator)


def _format_duration(seconds: float) -> str:
    """Format seconds into a human-readable duration string."""
    if seconds < 60:
        return f"{seconds:.0f}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{int(minutes)}m {int(secs)}s"
    hours, minutes = divmod(minutes, 60)
    return f"{int(hours)}h {int(minutes)}m"


@dataclass
class ScreeningResult:
    """Everything a caller needs to judge a finished run."""

    run_dir: Path
    receptor: Path | None = None
    discovered: int = 0
    normalize: NormalizeReport = field(default_factory=NormalizeReport)
    sanitize: SanitizeReport = field(default_factory=SanitizeReport)
    ligand_index: Path | None = None
    docking: DockingOutcome | None = None
    analysis: AnalysisReport | None = None
    summary_csv: Path | None = None

    @property
    def accepted(self) -> list[Path]:
        return self.sanitize.accepted


class VirtualScreeningPipeline:
    """Runs receptor prep, ligand prep, docking and analysis for one run folder.

    The accepted ligand set is carried from stage to stage in memory; the
    ligand index is written from it rather than from a directory listing.
    """

    def __init__(self, config: dict, progress_callback=None):
        self.config = config
        self.progress_callback = progress_callback
        self.run_dir = Path(config["folder_to_save"]).resolve()
        self.tools = tool_map(config)
        self.extension = config.get("ligand_extension", ".sdf")

    def _reporter(self, stage: str) -> StageProgressReporter:
        return StageProgressReporter(
            self.progress_callback,
            stage,
            STAGE_ORDER.index(stage) + 1,
            len(STAGE_ORDER),
        )

    def path(self, name: str) -> Path:
        return self.run_dir / name

    def prepare_receptor(self) -> Path:
        _log_stage_header("Receptor preparation")
        reporter = self._reporter(STAGE_RECEPTOR)
        reporter.start()
        receptor = resolve_receptor(
            self.config.get("receptor"),
            self.config.get("pdb_file"),
            self.path(DIR_PROTEIN),
            self.tools["unidocktools"],
            self.config.get("protein_prep_timeout"),
        )
        reporter.complete()
        return receptor

    def extract(self) -> list[Path]:
        _log_stage_header("Ligand extraction")
        reporter = self._reporter(STAGE_EXTRACT)
        reporter.start()
        bundle = self.config.get("bundle")
        logger.info("Extracting ligand bundle: %s", bundle)
        root = extract_ligand_bundle(
            bundle, self.path(DIR_EXTRACTED), self.config.get("download_timeout")
        )
        files = discover_ligand_files(root, self.extension)
        logger.info("Found %d input %s files", len(files), self.extension)
        reporter.complete(message=f"{len(files)} files")
        return files

    def normalize(self, files: list[Path]) -> NormalizeReport:
        _log_stage_header("3D structure generation (obabel)")
        reporter = self._reporter(STAGE_NORMALIZE)
        reporter.start()
        report = normalize_ligands(
            files,
            self.path(DIR_PROCESSED),
            obabel=self.tools["obabel"],
            timeout=self.config.get("convert_timeout"),
            n_jobs=resolve_n_jobs(self.config),
            progress=reporter.progress,
        )
        reporter.complete(message=f"{len(report.converted)}/{len(files)} converted")
        return report

    def sanitize(self, files: list[Path]) -> SanitizeReport:
        _log_stage_header("Ligand sanitization (unidocktools ligandprep)")
        reporter = self._reporter(STAGE_SANITIZE)
        reporter.start()
        report = sanitize_ligands(
            files,
            self.path(DIR_PREPARED),
            self.path(DIR_BATCHES),
            unidocktools=self.tools["unidocktools"],
            batch_size=int(self.config.get("batch_size", 100)),
            timeout=self.config.get("sanitize_timeout"),
            progress=reporter.progress,
        )
        reporter.complete(ok=not report.failed_batches)
        return report

    def build_index(self, accepted: list[Path]) -> Path:
        _log_stage_header("Ligand index")
        reporter = self._reporter(STAGE_INDEX)
        reporter.start()
        manifest = build_ligand_index(accepted, self.path(FILE_LIGAND_INDEX))
        logger.info("Found %d sanitized ligands to process", len(accepted))
        reporter.complete(message=f"{len(accepted)} ligands")
        return manifest

    def dock(self, receptor: Path, manifest: Path, n_ligands: int) -> DockingOutcome:
        _log_stage_header("Docking (Uni-Dock)")
        reporter = self._reporter(STAGE_DOCKING)
        reporter.start()
        docking_cfg = self.config.get("docking") or {}
        box = DockingBox.from_config(docking_cfg)
        output_dir = self.path(DIR_DOCKING_OUTPUT)
        output_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Center: (%s, %s, %s)", *box.center)
        logger.info("Box size: (%s, %s, %s)", *box.size)
        logger.info("Receptor: %s", receptor)
        logger.info("Max GPU Memory: %s MB", docking_cfg.get("max_gpu_memory"))

        cmd = build_unidock_command(
            receptor,
            manifest,
            box,
            output_dir,
            int(docking_cfg.get("max_gpu_memory", 20480)),
            unidock=self.tools["unidock"],
            extra_args=docking_cfg.get("extra_args") or (),
        )
        monitor = ProgressMonitor(
            output_dir,
            interval=float(self.config.get("monitor_interval", 3600)),
            extension=self.extension,
        )
        tick = None
        if self.progress_callback is not None:

            def tick() -> None:
                done = len(scan_ligand_directory(output_dir, self.extension))
                reporter.progress(min(done, n_ligands), n_ligands)

        started = time.perf_counter()
        with monitor:
            outcome = run_docking(cmd, self.path(FILE_DOCKING_LOG), n_ligands, tick=tick)
        logger.info(
            "Docking finished with status '%s' (exit=%s) after %s",
            outcome.status,
            outcome.returncode,
            _format_duration(time.perf_counter() - started),
        )
        reporter.complete(ok=outcome.ok)
        return outcome

    def analyze(self) -> tuple[AnalysisReport, Path]:
        _log_stage_header("Final analysis")
        reporter = self._reporter(STAGE_ANALYSIS)
        reporter.start()
        report = analyze_results(self.path(DIR_DOCKING_OUTPUT), self.extension)
        for line in format_report(report):
            logger.info(line)
        summary = self.path(FILE_SUMMARY)
        results_table(report.records).to_csv(summary, index=False)
        logger.info("Ranked results written to %s", summary)
        reporter.complete()
        return report, summary

    def organize(self) -> list[Path]:
        """Move intermediate artifacts into ``finished/``."""
        finished = self.path(DIR_FINISHED)
        finished.mkdir(parents=True, exist_ok=True)
        moved = []
        for name in ORGANIZED_ITEMS:
            item = self.path(name)
            if not item.exists():
                continue
            target = finished / name
            if target.exists():
                logger.warning("Not moving %s: %s already exists", item, target)
                continue
            shutil.move(str(item), str(target))
            moved.append(target)
            logger.info("Moved %s to finished folder", name)
        return moved

    def run(self) -> ScreeningResult:
        result = ScreeningResult(self.run_dir)
        result.receptor = self.prepare_receptor()

        files = self.extract()
        result.discovered = len(files)
        result.normalize = self.normalize(files)
        result.sanitize = self.sanitize(result.normalize.converted)
        result.ligand_index = self.build_index(result.sanitize.accepted)

        result.docking = self.dock(
            result.receptor, result.ligand_index, len(result.sanitize.accepted)
        )
        result.analysis, result.summary_csv = self.analyze()

        if self.config.get("organize_finished"):
            self.organize()
        return result


def save_config_snapshot(config: dict) -> Path:
    """Write the resolved run configuration for provenance."""
    dest_dir = Path(config["folder_to_save"]) / DIR_CONFIGS
    dest_dir.mkdir(parents=True, exist_ok=True)
    path = dest_dir / FILE_RESOLVED_CONFIG
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(config, f, sort_keys=False)
    logger.info("Saved run config snapshot to: %s", path)
    return path


def run_screening(config: dict, progress_callback=None) -> ScreeningResult:
    """Run the whole pipeline for *config*, leaving a marker if interrupted.

    Configuration errors propagate to the caller; per-file and per-batch
    failures are part of the returned result.
    """
    folder = Path(config["folder_to_save"])
    folder.mkdir(parents=True, exist_ok=True)
    incomplete_marker = folder / FILE_RUN_INCOMPLETE
    incomplete_marker.write_text(
        f"Pipeline started: {datetime.now().isoformat()}\n"
        "This file is removed automatically on completion.\n"
        "If you see it, the run was interrupted or failed.\n"
    )

    save_config_snapshot(config)
    result = VirtualScreeningPipeline(config, progress_callback).run()
    incomplete_marker.unlink(missing_ok=True)
    return result
