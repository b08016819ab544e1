"""Tests for energy extraction, progress monitoring and result analysis."""

import math
import time

import pandas as pd
import pytest

from conftest import write_result
from dockscreen.stages.analysis.utils import (
    EnergyRecord,
    ProgressMonitor,
    analyze_results,
    extract_energy,
    find_best,
    format_report,
    format_status_line,
    parse_energy,
    results_table,
    take_snapshot,
)

UNIDOCK_RECORD = "pose\n\n> <Uni-Dock RESULT>\nENERGY=  {}  LOWER_BOUND=  0.000  UPPER_BOUND=  0.000\n"


class TestParseEnergy:
    """Tests for parse_energy function."""

    def test_first_record_only(self):
        text = UNIDOCK_RECORD.format("-7.5") + "$$$$\n" + UNIDOCK_RECORD.format("-99.0")
        assert parse_energy(text) == -7.5

    def test_first_tag_line_wins(self):
        assert parse_energy("ENERGY=-1.0\nENERGY=-5.0\n") == -1.0

    def test_tag_must_start_the_line(self):
        assert parse_energy("  ENERGY=-3.0\nREMARK ENERGY=-4.0\n") == math.inf

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "no tag here\n",
            "ENERGY=\n",
            "ENERGY=abc -1\n",
            "ENERGY=nan\n",
            "$$$$\nENERGY=-9.0\n",
        ],
    )
    def test_unparseable_is_infinity(self, text):
        assert parse_energy(text) == math.inf

    def test_value_with_trailing_fields(self):
        assert parse_energy("ENERGY=   -10.25   LOWER_BOUND=1\n") == -10.25


class TestExtractEnergy:
    """Tests for extract_energy on files."""

    def test_missing_file_is_infinity(self, tmp_path):
        assert extract_energy(tmp_path / "missing.sdf") == math.inf

    def test_directory_is_infinity(self, tmp_path):
        assert extract_energy(tmp_path) == math.inf

    def test_binary_garbage_is_infinity(self, tmp_path):
        path = tmp_path / "garbage.sdf"
        path.write_bytes(b"\xff\xfe\x00\x81")
        assert extract_energy(path) == math.inf


class TestFindBest:
    """Tests for find_best function."""

    def test_all_invalid_gives_none(self, tmp_path):
        records = [EnergyRecord(tmp_path / "a", math.inf), EnergyRecord(tmp_path / "b", math.inf)]
        assert find_best(records) is None

    def test_ignores_infinite(self, tmp_path):
        records = [EnergyRecord(tmp_path / "a", math.inf), EnergyRecord(tmp_path / "b", -1.0)]
        assert find_best(records).path.name == "b"


class TestAnalyzeResults:
    """Tests for the one-shot analyzer."""

    def test_reports_lowest_energy_file(self, tmp_path):
        write_result(tmp_path, "first_out.sdf", UNIDOCK_RECORD.format("-5.3"))
        write_result(tmp_path, "second_out.sdf", UNIDOCK_RECORD.format("-12.1"))
        report = analyze_results(tmp_path)
        assert report.file_count == 2
        assert report.best.path.name == "second_out.sdf"
        assert report.best.energy == -12.1
        lines = format_report(report)
        assert "File with lowest energy: second_out.sdf" in lines
        assert "Energy value: -12.1" in lines

    def test_no_result_files(self, tmp_path):
        report = analyze_results(tmp_path)
        assert report.best is None
        lines = format_report(report)
        assert lines == [f"No result files found in {tmp_path}"]
        assert "inf" not in " ".join(lines)

    def test_no_valid_values(self, tmp_path):
        write_result(tmp_path, "a_out.sdf", "pose without tag")
        report = analyze_results(tmp_path)
        lines = format_report(report)
        assert len(lines) == 1
        assert lines[0].startswith("No valid energy values found")
        assert "inf" not in lines[0]


class TestResultsTable:
    """Tests for the ranked pandas summary."""

    def test_sorted_with_unparsed_last(self, tmp_path):
        records = [
            EnergyRecord(tmp_path / "a.sdf", -5.0),
            EnergyRecord(tmp_path / "b.sdf", math.inf),
            EnergyRecord(tmp_path / "c.sdf", -9.0),
        ]
        df = results_table(records)
        assert list(df["file"]) == ["c.sdf", "a.sdf", "b.sdf"]
        assert df["energy"].iloc[0] == -9.0
        assert pd.isna(df["energy"].iloc[2])
        assert list(df["rank"].iloc[:2]) == [1, 2]
        assert pd.isna(df["rank"].iloc[2])

    def test_empty(self):
        df = results_table([])
        assert list(df.columns) == ["file", "path", "energy", "rank"]
        assert df.empty


class TestProgressMonitor:
    """Tests for the periodic progress monitor."""

    def test_snapshot_status_line(self, tmp_path):
        write_result(tmp_path, "a_out.sdf", UNIDOCK_RECORD.format("-3.0"))
        write_result(tmp_path, "b_out.sdf", "broken")
        snapshot = take_snapshot(tmp_path)
        assert snapshot.file_count == 2
        assert format_status_line(snapshot) == (
            "Progress: 2 files processed, Lowest energy: -3.0 (a_out.sdf)"
        )

    def test_status_line_without_results(self, tmp_path):
        assert format_status_line(take_snapshot(tmp_path)) == "Progress: 0 files processed"

    def test_snapshot_is_recomputed_each_cycle(self, tmp_path):
        best = write_result(tmp_path, "best_out.sdf", UNIDOCK_RECORD.format("-20.0"))
        write_result(tmp_path, "other_out.sdf", UNIDOCK_RECORD.format("-4.0"))
        monitor = ProgressMonitor(tmp_path, interval=60)
        assert monitor.poll_once().best.energy == -20.0
        best.unlink()
        assert monitor.poll_once().best.energy == -4.0

    def test_does_not_write_into_output_dir(self, tmp_path):
        write_result(tmp_path, "a_out.sdf", UNIDOCK_RECORD.format("-1.0"))
        before = sorted(tmp_path.iterdir())
        ProgressMonitor(tmp_path).poll_once()
        assert sorted(tmp_path.iterdir()) == before

    def test_background_polling_stops_on_request(self, tmp_path):
        monitor = ProgressMonitor(tmp_path, interval=0.05)
        with monitor:
            deadline = time.monotonic() + 5
            while len(monitor.snapshots) < 3 and time.monotonic() < deadline:
                time.sleep(0.02)
            assert monitor.running
        assert not monitor.running
        assert len(monitor.snapshots) >= 3
        count = len(monitor.snapshots)
        time.sleep(0.2)
        assert len(monitor.snapshots) == count

    def test_long_interval_still_stops_promptly(self, tmp_path):
        monitor = ProgressMonitor(tmp_path, interval=3600).start()
        started = time.monotonic()
        monitor.stop()
        assert time.monotonic() - started < 5
        assert len(monitor.snapshots) <= 1

    def test_cannot_start_twice(self, tmp_path):
        monitor = ProgressMonitor(tmp_path, interval=3600).start()
        try:
            with pytest.raises(RuntimeError):
                monitor.start()
        finally:
            monitor.stop()
