"""Tests for ligand file discovery and batching."""

from pathlib import Path

import pytest

from conftest import write_ligand
from dockscreen.stages.discovery.utils import (
    batch_count,
    batch_listing,
    discover_ligand_files,
    make_batches,
    scan_ligand_directory,
)


class TestDiscoverLigandFiles:
    """Tests for discover_ligand_files function."""

    def test_recursive_and_sorted(self, ligand_dir):
        files = discover_ligand_files(ligand_dir)
        assert [f.name for f in files] == ["ZINC001.sdf", "ZINC002.sdf", "ZINC003.sdf"]
        assert files == sorted(files)

    def test_filters_by_extension(self, tmp_path):
        write_ligand(tmp_path, "a.sdf")
        write_ligand(tmp_path, "b.SDF")
        (tmp_path / "notes.txt").write_text("x")
        (tmp_path / "c.sdf.gz").write_bytes(b"\x1f\x8b")
        names = [f.name for f in discover_ligand_files(tmp_path, "sdf")]
        assert names == ["a.sdf", "b.SDF"]

    def test_skips_directories_named_like_files(self, tmp_path):
        (tmp_path / "fake.sdf").mkdir()
        assert discover_ligand_files(tmp_path) == []

    def test_empty_or_missing_root_is_not_an_error(self, tmp_path):
        assert discover_ligand_files(tmp_path) == []
        assert discover_ligand_files(tmp_path / "missing") == []

    def test_repeated_scan_is_stable(self, ligand_dir):
        assert discover_ligand_files(ligand_dir) == discover_ligand_files(ligand_dir)


class TestScanLigandDirectory:
    """Tests for the flat, non-recursive scan."""

    def test_ignores_subdirectories(self, ligand_dir):
        write_ligand(ligand_dir, "top.sdf")
        assert [p.name for p in scan_ligand_directory(ligand_dir)] == ["top.sdf"]


class TestMakeBatches:
    """Tests for make_batches function."""

    @pytest.mark.parametrize(
        "n_items,batch_size,expected",
        [(0, 100, 0), (1, 100, 1), (100, 100, 1), (101, 100, 2), (250, 100, 3), (7, 3, 3)],
    )
    def test_batch_count_is_ceiling(self, n_items, batch_size, expected):
        items = [Path(f"l{i}.sdf") for i in range(n_items)]
        batches = make_batches(items, batch_size)
        assert len(batches) == expected == batch_count(n_items, batch_size)

    def test_every_item_once_in_order(self):
        items = [Path(f"l{i:03d}.sdf") for i in range(23)]
        batches = make_batches(items, 5)
        assert [p for b in batches for p in b] == items
        assert all(len(b) == 5 for b in batches[:-1])
        assert len(batches[-1]) == 3

    def test_invalid_batch_size(self):
        with pytest.raises(ValueError):
            make_batches([Path("a.sdf")], 0)


class TestBatchListing:
    """Tests for temporary batch listings."""

    def test_listing_written_then_removed(self, tmp_path):
        paths = [tmp_path / "a.sdf", tmp_path / "b.sdf"]
        listing_path = tmp_path / "batches" / "batch_0001.txt"
        with batch_listing(paths, listing_path) as listing:
            assert listing.read_text().splitlines() == [str(p) for p in paths]
        assert not listing_path.exists()

    def test_listing_removed_on_error(self, tmp_path):
        listing_path = tmp_path / "batch.txt"
        with pytest.raises(RuntimeError):
            with batch_listing([tmp_path / "a.sdf"], listing_path):
                raise RuntimeError("boom")
        assert not listing_path.exists()
