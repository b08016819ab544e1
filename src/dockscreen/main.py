import re
import sys
from pathlib import Path

import click
import typer
import yaml
from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from dockscreen import __version__
from dockscreen.configs.logger import LoggerSingleton, load_config, logger
from dockscreen.pipeline import STAGE_DESCRIPTIONS, run_screening
from dockscreen.stages.analysis.utils import (
    ProgressMonitor,
    analyze_results,
    format_report,
    results_table,
)
from dockscreen.stages.index.utils import rebuild_index_from_directory
from dockscreen.utils.tools import check_requirements, tool_map

DEFAULT_CONFIG_PATH = str(Path(__file__).resolve().parent / "configs" / "config.yml")

app = typer.Typer(
    name="dockscreen",
    help="GPU virtual screening: ligand preparation, Uni-Dock docking and energy reporting.",
    add_completion=False,
    rich_markup_mode="rich",
    context_settings={"help_option_names": ["-h", "--help"]},
)
console = Console()


def _folder_is_empty(folder: Path) -> bool:
    """Check if a folder doesn't exist or has no contents."""
    return not folder.exists() or not any(folder.iterdir())


def _get_unique_results_folder(base_folder) -> Path:
    """Return *base_folder* if unused, else the next free ``<name>_N`` sibling."""
    base_folder = Path(base_folder)
    if _folder_is_empty(base_folder):
        return base_folder
    parent = base_folder.parent
    base_name = base_folder.name

    max_number = 0
    pattern = re.compile(rf"^{re.escape(base_name)}_(\d+)$")
    if parent.exists():
        for item in parent.iterdir():
            if item.is_dir():
                match = pattern.match(item.name)
                if match:
                    max_number = max(max_number, int(match.group(1)))

    return parent / f"{base_name}_{max_number + 1}"


def _apply_cli_overrides(config: dict, overrides: dict) -> dict:
    """Overlay non-None CLI values onto the loaded config.

    Keys of the form ``docking.<name>`` target the nested docking section;
    box coordinates are passed as ``docking.center.<i>``/``docking.size.<i>``.
    """
    docking = dict(config.get("docking") or {})
    docking["center"] = list(docking.get("center") or [0.0, 0.0, 0.0])
    docking["size"] = list(docking.get("size") or [20.0, 20.0, 20.0])

    for key, value in overrides.items():
        if value is None:
            continue
        parts = key.split(".")
        if parts[0] != "docking":
            config[key] = value
        elif len(parts) == 2:
            docking[parts[1]] = value
        else:
            docking[parts[1]][int(parts[2])] = float(value)

    config["docking"] = docking
    return config


def _build_progress_callback(progress: Progress):
    """Render pipeline stage events as one Rich progress task per stage."""
    tasks: dict[str, int] = {}

    def _callback(event: dict) -> None:
        stage = str(event.get("stage", ""))
        label = f"{event.get('stage_index', 0)}/{event.get('total_stages', 0)} {stage}"
        if stage not in tasks:
            tasks[stage] = progress.add_task(label, total=None)
        task_id = tasks[stage]
        event_type = event.get("type")
        if event_type == "stage_progress":
            progress.update(task_id, total=max(int(event["total"]), 1), completed=event["current"])
        elif event_type == "stage_complete":
            suffix = f" · {event['message']}" if event.get("message") else ""
            status = "" if event.get("ok", True) else " [red](with failures)[/red]"
            progress.update(task_id, total=1, completed=1, description=label + suffix + status)

    return _callback


@app.command()
def run(
    bundle: str | None = typer.Option(
        None, "--bundle", "-c", help="Ligand bundle: .curl downloader, archive, .gz, .sdf or directory"
    ),
    pdb_file: str | None = typer.Option(None, "--pdb", "-p", help="Input receptor PDB file"),
    receptor: str | None = typer.Option(
        None, "--receptor", help="Precomputed receptor PDBQT (skips protein preparation)"
    ),
    center_x: float | None = typer.Option(None, "--center-x", "-x", help="Docking box center X"),
    center_y: float | None = typer.Option(None, "--center-y", "-y", help="Docking box center Y"),
    center_z: float | None = typer.Option(None, "--center-z", "-z", help="Docking box center Z"),
    size_x: float | None = typer.Option(None, "--size-x", "-sx", help="Docking box size X"),
    size_y: float | None = typer.Option(None, "--size-y", "-sy", help="Docking box size Y"),
    size_z: float | None = typer.Option(None, "--size-z", "-sz", help="Docking box size Z"),
    max_gpu_memory: int | None = typer.Option(
        None, "--max-gpu-memory", "-m", help="Max GPU memory in MB"
    ),
    config_path: str = typer.Option(DEFAULT_CONFIG_PATH, "--config", help="YAML config file"),
    out_dir: str | None = typer.Option(
        None, "--out", "-o", help="Run directory (overrides config folder_to_save)"
    ),
    batch_size: int | None = typer.Option(None, "--batch-size", min=1, help="Ligands per ligandprep batch"),
    n_jobs: int | None = typer.Option(None, "--n-jobs", help="obabel workers (-1 = all cores)"),
    convert_timeout: float | None = typer.Option(
        None, "--convert-timeout", help="Seconds allowed per obabel conversion"
    ),
    sanitize_timeout: float | None = typer.Option(
        None, "--sanitize-timeout", help="Seconds allowed per ligandprep batch"
    ),
    monitor_interval: float | None = typer.Option(
        None, "--monitor-interval", help="Seconds between progress log lines while docking"
    ),
    organize: bool = typer.Option(
        False, "--organize", help="Move intermediates into finished/ afterwards"
    ),
    strict: bool = typer.Option(
        False, "--strict", help="Exit 1 when the docking engine exits non-zero"
    ),
    show_progress: bool = typer.Option(False, "--progress", help="Show live stage progress"),
) -> None:
    """
    Run the full virtual screening workflow.

    Examples
    --------
    \b
    dockscreen run -c ZINC-downloader-3D-sdf.gz.curl -p receptor.pdb
    \b
    dockscreen run -c ligands.tar.gz --receptor receptor.pdbqt -x 10 -y 12 -z 3 -m 8192
    """
    try:
        config = load_config(config_path)
    except (OSError, yaml.YAMLError) as e:
        logger.error("Could not load config %s: %s", config_path, e)
        raise typer.Exit(code=1) from e

    _apply_cli_overrides(
        config,
        {
            "bundle": str(Path(bundle).resolve()) if bundle else None,
            "pdb_file": str(Path(pdb_file).resolve()) if pdb_file else None,
            "receptor": str(Path(receptor).resolve()) if receptor else None,
            "batch_size": batch_size,
            "n_jobs": n_jobs,
            "convert_timeout": convert_timeout,
            "sanitize_timeout": sanitize_timeout,
            "monitor_interval": monitor_interval,
            "organize_finished": True if organize else None,
            "fail_on_docking_error": True if strict else None,
            "docking.center.0": center_x,
            "docking.center.1": center_y,
            "docking.center.2": center_z,
            "docking.size.0": size_x,
            "docking.size.1": size_y,
            "docking.size.2": size_z,
            "docking.max_gpu_memory": max_gpu_memory,
        },
    )

    if out_dir:
        folder_to_save = Path(out_dir).resolve()
    else:
        folder_to_save = _get_unique_results_folder(
            Path(config.get("folder_to_save", "results/run"))
        ).resolve()
    config["folder_to_save"] = str(folder_to_save)
    log_file = LoggerSingleton().configure_log_directory(
        folder_to_save, config.get("log_file", "virtual_screening.log")
    )
    logger.info("Run folder: %s (log: %s)", folder_to_save, log_file)

    if not config.get("bundle"):
        logger.error("Ligand bundle path is required (--bundle/-c)")
        raise typer.Exit(code=1)
    if not config.get("pdb_file") and not config.get("receptor"):
        logger.error("PDB file path is required (--pdb/-p) unless --receptor is given")
        raise typer.Exit(code=1)

    missing = check_requirements(tool_map(config))
    if missing:
        for name in missing:
            logger.error("Required command '%s' not found. Please install it first.", name)
        raise typer.Exit(code=1)

    try:
        if show_progress:
            with Progress(
                SpinnerColumn(style="dim"),
                TextColumn("[bold]{task.description}[/bold]"),
                BarColumn(bar_width=30),
                TimeElapsedColumn(),
                console=LoggerSingleton().console,
            ) as progress:
                result = run_screening(config, _build_progress_callback(progress))
        else:
            result = run_screening(config)
    except (FileNotFoundError, ValueError, RuntimeError) as e:
        logger.error("%s", e)
        raise typer.Exit(code=1) from e

    _print_summary(result)

    docking = result.docking
    if docking is not None and docking.returncode not in (0, None):
        logger.error("Docking engine exited with status %s", docking.returncode)
        if config.get("fail_on_docking_error"):
            raise typer.Exit(code=1)
    logger.info("Virtual screening process completed!")


def _print_summary(result) -> None:
    table = Table(title="Virtual screening summary", show_header=True, header_style="bold")
    table.add_column("Step", style="bold", no_wrap=True)
    table.add_column("Result")
    table.add_row("Input files", str(result.discovered))
    counts = result.normalize.counts()
    table.add_row(
        "Converted (obabel)",
        f"{len(result.normalize.converted)} "
        f"(timeout {counts.get('timeout', 0)}, failed {counts.get('failed', 0)})",
    )
    table.add_row(
        "Accepted (ligandprep)",
        f"{len(result.accepted)} (removed {len(result.sanitize.removed)}, "
        f"failed batches {len(result.sanitize.failed_batches)})",
    )
    if result.docking is not None:
        table.add_row("Docking", f"{result.docking.status} (exit {result.docking.returncode})")
    if result.analysis is not None:
        best = result.analysis.best
        table.add_row(
            "Best pose",
            f"{best.path.name}: {best.energy}" if best else "no valid result",
        )
    LoggerSingleton().console.print(table)


@app.command()
def analyze(
    results_dir: str = typer.Argument(..., help="Docking output directory"),
    csv_path: str | None = typer.Option(None, "--csv", help="Write the ranked table here"),
    extension: str = typer.Option(".sdf", "--ext", help="Result file extension"),
) -> None:
    """Report the lowest-energy result in a docking output directory."""
    results_path = Path(results_dir)
    if not results_path.is_dir():
        console.print(f"[red]Error:[/red] Results directory does not exist: {results_path}")
        raise typer.Exit(code=1)

    report = analyze_results(results_path, extension)
    for line in format_report(report):
        console.print(line)
    if csv_path:
        results_table(report.records).to_csv(csv_path, index=False)
        console.print(f"Ranked results written to {csv_path}")


@app.command()
def monitor(
    results_dir: str = typer.Argument(..., help="Docking output directory to watch"),
    interval: float = typer.Option(3600.0, "--interval", min=0.0, help="Seconds between scans"),
    log_path: str | None = typer.Option(None, "--log", help="Append status lines to this file"),
    once: bool = typer.Option(False, "--once", help="Scan once and exit"),
) -> None:
    """Log progress of a running docking job until interrupted (Ctrl-C)."""
    if log_path:
        log = Path(log_path)
        LoggerSingleton().configure_log_directory(log.parent, log.name)

    watcher = ProgressMonitor(results_dir, interval=interval)
    if once:
        watcher.poll_once()
        return
    try:
        watcher.run()
    except KeyboardInterrupt:
        logger.info("Progress monitor stopped")


@app.command()
def index(
    prepared_dir: str = typer.Argument(..., help="Directory of prepared ligands"),
    manifest: str = typer.Argument(..., help="Ligand index file to write"),
    extension: str = typer.Option(".sdf", "--ext", help="Ligand file extension"),
) -> None:
    """Rebuild a ligand index from the files in a prepared-ligand directory."""
    found = rebuild_index_from_directory(Path(prepared_dir), Path(manifest), extension)
    console.print(f"{len(found)} ligands written to {manifest}")


@app.command()
def info() -> None:
    """Display the pipeline stages."""
    table = Table(title="Pipeline Stages", show_header=True, header_style="bold")
    table.add_column("Stage", style="bold", no_wrap=True)
    table.add_column("Description", style="white")
    for stage, description in STAGE_DESCRIPTIONS.items():
        table.add_row(stage, description)
    console.print(table)


@app.command()
def version() -> None:
    """Display version information."""
    console.print(f"dockscreen version {__version__}")


def cli() -> None:
    """Console entry point; usage errors exit 1 instead of click's 2."""
    try:
        code = app(standalone_mode=False)
    except click.UsageError as e:
        e.show()
        sys.exit(1)
    except click.Abort:
        console.print("Aborted!")
        sys.exit(1)
    sys.exit(code or 0)


if __name__ == "__main__":
    cli()
