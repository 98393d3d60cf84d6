"""Shared fixtures: synthetic BPCH files and metadata tables."""

import pytest

from helpers import STANDARD_TITLE, block, bpch_bytes, diaginfo_text, tracerinfo_text


@pytest.fixture
def make_block():
    """Factory for the bytes of one data block."""
    return block


@pytest.fixture
def metadata_dir(tmp_path):
    """Directory holding tracerinfo.dat and diaginfo.dat."""
    (tmp_path / "tracerinfo.dat").write_text(tracerinfo_text())
    (tmp_path / "diaginfo.dat").write_text(diaginfo_text())
    return tmp_path


@pytest.fixture
def make_bpch(metadata_dir):
    """Factory writing a BPCH file next to the metadata tables."""

    def _make(blocks, title: str = STANDARD_TITLE, name: str = "ctm.bpch"):
        path = metadata_dir / name
        path.write_bytes(bpch_bytes(blocks, title))
        return path

    return _make


@pytest.fixture
def two_sample_file(make_bpch):
    """Two samples of NOx, each [1, 2, 3, 4] on a 2x2 block, one day apart."""
    return make_bpch(
        [
            block("IJ-AVG-$", 1, [1, 2, 3, 4], dims=(2, 2, 1), tau0=0.0, tau1=24.0),
            block("IJ-AVG-$", 1, [1, 2, 3, 4], dims=(2, 2, 1), tau0=24.0, tau1=48.0),
        ]
    )
