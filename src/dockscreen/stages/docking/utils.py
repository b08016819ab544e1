from __future__ import annotations

import shlex
import subprocess
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from dockscreen.configs.logger import logger

STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_SKIPPED = "skipped"


@dataclass(frozen=True)
class DockingBox:
    center: tuple[float, float, float]
    size: tuple[float, float, float]

    @classmethod
    def from_config(cls, docking_cfg: dict) -> DockingBox:
        center = tuple(float(v) for v in docking_cfg["center"])
        size = tuple(float(v) for v in docking_cfg["size"])
        if len(center) != 3 or len(size) != 3:
            raise ValueError("Docking box center and size need exactly 3 values each")
        if any(v <= 0 for v in size):
            raise ValueError(f"Docking box size must be positive, got {size}")
        return cls(center, size)


@dataclass
class DockingOutcome:
    """Exit status of the docking engine, reported to the caller as-is."""

    status: str
    returncode: int | None = None
    log_path: Path | None = None
    command: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.status == STATUS_COMPLETED


def build_unidock_command(
    receptor: Path,
    ligand_index: Path,
    box: DockingBox,
    output_dir: Path,
    max_gpu_memory: int,
    unidock: str = "unidock",
    extra_args: Sequence[str] = (),
) -> list[str]:
    cmd = [
        unidock,
        "--receptor",
        str(Path(receptor).resolve()),
        "--ligand_index",
        str(Path(ligand_index).resolve()),
    ]
    for axis, value in zip("xyz", box.center):
        cmd.extend([f"--center_{axis}", str(value)])
    for axis, value in zip("xyz", box.size):
        cmd.extend([f"--size_{axis}", str(value)])
    cmd.extend(
        [
            "--dir",
            str(Path(output_dir).resolve()),
            "--max_gpu_memory",
            str(int(max_gpu_memory)),
        ]
    )
    cmd.extend(str(a) for a in extra_args)
    return cmd


def _log_exit(returncode: int, log_path: Path) -> None:
    if returncode == 143:
        logger.error(
            "unidock terminated by SIGTERM (exit 143) - likely a time limit or "
            "external kill. Log: %s",
            log_path,
        )
    elif returncode == 137:
        logger.error(
            "unidock killed by SIGKILL (exit 137) - likely the OOM killer. "
            "Consider lowering --max-gpu-memory. Log: %s",
            log_path,
        )
    else:
        logger.error("unidock failed with exit code %d. See log: %s", returncode, log_path)


def run_docking(
    cmd: list[str],
    log_path: Path,
    n_ligands: int,
    tick: Callable[[], None] | None = None,
    poll_interval: float = 0.5,
) -> DockingOutcome:
    """Run the docking engine to completion and report its exit status.

    Engine stdout/stderr go to *log_path*. The call blocks until the engine
    exits; *tick* is invoked while waiting.
    """
    log_path = Path(log_path)
    if n_ligands == 0:
        logger.warning("Ligand index is empty; skipping docking")
        return DockingOutcome(STATUS_SKIPPED, None, None, cmd)

    logger.info("Running unidock: %s", " ".join(shlex.quote(c) for c in cmd))
    log_path.parent.mkdir(parents=True, exist_ok=True)
    with open(log_path, "wb") as logf:
        try:
            proc = subprocess.Popen(cmd, stdout=logf, stderr=subprocess.STDOUT)
        except OSError as e:
            logger.error("Could not start unidock: %s", e)
            return DockingOutcome(STATUS_FAILED, 127, log_path, cmd)
        while proc.poll() is None:
            if tick:
                tick()
            time.sleep(poll_interval)
        if tick:
            tick()

    returncode = proc.returncode
    if returncode == 0:
        logger.info("unidock completed successfully. Log: %s", log_path)
        return DockingOutcome(STATUS_COMPLETED, 0, log_path, cmd)

    _log_exit(returncode, log_path)
    return DockingOutcome(STATUS_FAILED, returncode, log_path, cmd)
