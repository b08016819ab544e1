"""Shared fixtures for pytest tests.

External tools (obabel, unidocktools, unidock) are replaced by small bash
scripts written into the test's tmp directory. Their behavior is steered by
markers inside the ligand files:

- ``HANG``: obabel writes a partial output file and then hangs
- ``FAIL``: obabel exits non-zero
- ``INVALID``: unidocktools ligandprep reports the ligand as an invalid mol
- ``INVALID_EXIT``: as ``INVALID``, and the whole batch then exits 1
- ``E=<value>``: energy written by the fake unidock for this ligand
"""

import os
import stat
from pathlib import Path

import pytest
import yaml

FAKE_OBABEL = r"""#!/usr/bin/env bash
in="$1"; out="$3"
if grep -q HANG "$in"; then
    echo partial > "$out"
    exec sleep 30
fi
if grep -q FAIL "$in"; then
    echo "0 molecules converted" >&2
    exit 1
fi
cp "$in" "$out"
"""

FAKE_UNIDOCKTOOLS = r"""#!/usr/bin/env bash
cmd="$1"; shift
case "$cmd" in
  proteinprep)
    while [ $# -gt 0 ]; do
      case "$1" in -r) r="$2"; shift 2;; -o) o="$2"; shift 2;; *) shift;; esac
    done
    grep -q BROKEN "$r" && { echo "proteinprep: cannot parse $r" >&2; exit 2; }
    cp "$r" "$o"
    ;;
  ligandprep)
    while [ $# -gt 0 ]; do
      case "$1" in -i) i="$2"; shift 2;; -sd) sd="$2"; shift 2;; *) shift;; esac
    done
    grep -q CRASH $(cat "$i") 2>/dev/null && { echo "Segmentation fault"; exit 139; }
    grep -q SLOW $(cat "$i") 2>/dev/null && exec sleep 30
    idx=0
    while IFS= read -r lig; do
      if grep -q INVALID "$lig"; then
        echo "2024-01-01 WARNING ligand $lig idx $idx is invalid mol"
      else
        cp "$lig" "$sd/"
      fi
      idx=$((idx + 1))
    done < "$i"
    if grep -q INVALID_EXIT $(cat "$i") 2>/dev/null; then exit 1; fi
    ;;
  *) exit 64;;
esac
"""

FAKE_UNIDOCK = r"""#!/usr/bin/env bash
while [ $# -gt 0 ]; do
  case "$1" in --ligand_index) idx="$2"; shift 2;; --dir) dir="$2"; shift 2;; *) shift;; esac
done
while IFS= read -r lig; do
  e=$(grep -m1 '^E=' "$lig" | cut -d= -f2)
  out="$dir/$(basename "$lig" .sdf)_out.sdf"
  {
    printf 'pose\n\n\n> <Uni-Dock RESULT>\n'
    printf 'ENERGY=  %s  LOWER_BOUND=  0.000  UPPER_BOUND=  0.000\n\n' "${e:-0.0}"
    printf '%s\n' '$$$$'
  } > "$out"
done < "$idx"
exit "${FAKE_UNIDOCK_EXIT:-0}"
"""


def write_tool(directory: Path, name: str, body: str) -> Path:
    """Write an executable script and return its path."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text(body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def write_ligand(directory: Path, name: str, *markers: str) -> Path:
    """Write a minimal one-record SD file carrying the given marker lines."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    body = "\n".join([path.stem, "  dockscreen-test", "", *markers, "M  END", "$$$$", ""])
    path.write_text(body)
    return path


def write_result(directory: Path, name: str, *records: str) -> Path:
    """Write a docking result file made of the given record bodies."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / name
    path.write_text("".join(f"{r}\n$$$$\n" for r in records))
    return path


@pytest.fixture
def tools_dir(tmp_path):
    return tmp_path / "bin"


@pytest.fixture
def fake_obabel(tools_dir):
    return write_tool(tools_dir, "obabel", FAKE_OBABEL)


@pytest.fixture
def fake_unidocktools(tools_dir):
    return write_tool(tools_dir, "unidocktools", FAKE_UNIDOCKTOOLS)


@pytest.fixture
def fake_unidock(tools_dir):
    return write_tool(tools_dir, "unidock", FAKE_UNIDOCK)


@pytest.fixture
def fake_tools(fake_obabel, fake_unidocktools, fake_unidock):
    return {
        "obabel": str(fake_obabel),
        "unidocktools": str(fake_unidocktools),
        "unidock": str(fake_unidock),
    }


@pytest.fixture
def receptor_pdb(tmp_path):
    path = tmp_path / "receptor.pdb"
    path.write_text("ATOM      1  N   ALA A   1      11.104   6.134  -6.504\nEND\n")
    return path


@pytest.fixture
def ligand_dir(tmp_path):
    """Three ligands in a nested tree with distinct energies."""
    root = tmp_path / "ligands"
    write_ligand(root / "AA", "ZINC001.sdf", "E=-5.3")
    write_ligand(root / "AB", "ZINC002.sdf", "E=-12.1")
    write_ligand(root / "AB" / "deep", "ZINC003.sdf", "E=-7.0")
    return root


@pytest.fixture
def run_config_file(tmp_path, fake_tools):
    """Config file pointing at the fake tools with fast timeouts."""
    config = {
        "folder_to_save": str(tmp_path / "results" / "run"),
        "log_file": "virtual_screening.log",
        "n_jobs": 2,
        "ligand_extension": ".sdf",
        "batch_size": 2,
        "convert_timeout": 2,
        "sanitize_timeout": 5,
        "protein_prep_timeout": 5,
        "download_timeout": 5,
        "monitor_interval": 0.1,
        "organize_finished": False,
        "fail_on_docking_error": False,
        "tools": fake_tools,
        "docking": {
            "center": [1.0, 2.0, 3.0],
            "size": [20.0, 20.0, 20.0],
            "max_gpu_memory": 1024,
            "extra_args": [],
        },
    }
    path = tmp_path / "config.yml"
    path.write_text(yaml.safe_dump(config, sort_keys=False))
    return path


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch):
    """Keep worker-count environment overrides from leaking into tests."""
    for var in ("DOCKSCREEN_NJOBS", "SLURM_CPUS_PER_TASK"):
        monkeypatch.delenv(var, raising=False)
    yield
    os.environ.pop("FAKE_UNIDOCK_EXIT", None)
