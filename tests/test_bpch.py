"""Tests for bpchctm.bpch module."""

import io
import logging
from pathlib import Path

import numpy as np
import pytest
import xarray as xr

from bpchctm import BPCHFile, SeriesKey, open_dataset, read_bpch
from bpchctm.bpch import materialize
from bpchctm.dataset import CTMDataset
from bpchctm.errors import (
    BPCHFormatError,
    BPCHReadError,
    ErrorPolicy,
    GridNotRecognizedError,
    IdentifierError,
    MissingTracerError,
)
from bpchctm.metadata import (
    CSPEC_TITLE,
    PSC_TITLE,
    DiagnosticCategory,
    MetadataTables,
    TracerDefinition,
)
from bpchctm.records import EPOCH_DAY_NUMBER, RecordReader, read_file_start
from bpchctm.scan import BlockResolver, scan_structure

from helpers import block, bpch_bytes, tracerinfo_text


class TestReadBpch:
    """Tests for read_bpch function."""

    def test_two_samples(self, two_sample_file):
        """Test a tracer written twice becomes one series of two samples."""
        ctm, model, info = read_bpch(two_sample_file)
        assert list(ctm) == [SeriesKey("C_IJ_AVG", "T_NOx")]

        nox = ctm["C_IJ_AVG", "T_NOx"]
        assert nox.data.shape == (2, 2, 2)
        # tracerinfo scale factor of 2 applied
        np.testing.assert_array_equal(nox.data[..., 0].ravel(order="F"), [2, 4, 6, 8])
        np.testing.assert_array_equal(nox.data[..., 1].ravel(order="F"), [2, 4, 6, 8])
        np.testing.assert_array_equal(
            nox.datenum[:, 0], [EPOCH_DAY_NUMBER, EPOCH_DAY_NUMBER + 1]
        )
        np.testing.assert_array_equal(
            nox.datenum[:, 1], [EPOCH_DAY_NUMBER + 1, EPOCH_DAY_NUMBER + 2]
        )

    def test_series_metadata(self, two_sample_file):
        """Test the series carries its tracer table entry."""
        ctm, _, _ = read_bpch(two_sample_file)
        nox = ctm["C_IJ_AVG"]["T_NOx"]
        assert nox.name == "NOx tracer"
        assert nox.unit == "ppbv"
        assert nox.molecular_weight == pytest.approx(46e-3)
        assert nox.dims == (2, 2)
        assert nox.start == (1, 1, 1)
        assert nox.times[1] == nox.times[0] + np.timedelta64(1, "D")

    def test_info(self, two_sample_file):
        """Test the file summary lists all table ids."""
        _, _, info = read_bpch(two_sample_file)
        assert info.tracer_ids == ["T_NOx", "T_Ox", "T_PSURF"]
        assert info.category_ids == ["C_IJ_AVG", "C_PEDGE"]
        assert info.file_type == "CTM bin 02"
        assert info.header.model_name == "GEOS5"

    def test_only_info(self, two_sample_file):
        """Test only the ids are returned when requested."""
        ctm, model, info = read_bpch(two_sample_file, only_info=True)
        assert ctm is None
        assert model is None
        assert info.tracer_ids == ["T_NOx", "T_Ox", "T_PSURF"]
        assert info.category_ids == ["C_IJ_AVG", "C_PEDGE"]

    def test_only_info_skips_data(self, make_bpch):
        """Test only_info does not look at the data blocks."""
        path = make_bpch([block("IJ-AVG-$", 9, [1, 2, 3, 4])])
        ctm, _, info = read_bpch(path, only_info=True)
        assert ctm is None
        assert info.tracer_ids == ["T_NOx", "T_Ox", "T_PSURF"]

    def test_idempotent(self, two_sample_file):
        """Test reading the same file twice gives equal results."""
        first, _, _ = read_bpch(two_sample_file)
        second, _, _ = read_bpch(two_sample_file)
        assert first.equals(second)

    def test_order_of_first_occurrence(self, make_bpch):
        """Test series are stored in the order they first appear."""
        path = make_bpch(
            [
                block("IJ-AVG-$", 2, [1, 2, 3, 4]),
                block("IJ-AVG-$", 1, [1, 2, 3, 4]),
                block("IJ-AVG-$", 2, [1, 2, 3, 4], tau0=24.0),
                block("IJ-AVG-$", 1, [1, 2, 3, 4], tau0=24.0),
            ]
        )
        ctm, _, _ = read_bpch(path)
        assert [key.tracer for key in ctm] == ["T_Ox", "T_NOx"]
        assert ctm.tracers("C_IJ_AVG") == ["T_Ox", "T_NOx"]

    def test_explicit_table_paths(self, two_sample_file, tmp_path):
        """Test metadata tables given explicitly."""
        meta = tmp_path / "meta"
        meta.mkdir()
        (meta / "tracers.dat").write_text(
            tracerinfo_text([("NOx", "Nitrogen oxides", 46e-3, 1, 1, 1.0, "ppbv")])
        )
        (meta / "diag.dat").write_text((two_sample_file.parent / "diaginfo.dat").read_text())
        ctm, _, _ = read_bpch(
            two_sample_file, tracerinfo=meta / "tracers.dat", diaginfo=meta / "diag.dat"
        )
        nox = ctm["C_IJ_AVG", "T_NOx"]
        assert nox.name == "Nitrogen oxides"
        np.testing.assert_array_equal(nox.data[..., 0].ravel(order="F"), [1, 2, 3, 4])

    def test_missing_input(self, metadata_dir):
        """Test a missing BPCH file raises."""
        with pytest.raises(FileNotFoundError, match="BPCH input file"):
            read_bpch(metadata_dir / "nothing.bpch")

    def test_missing_tracerinfo(self, two_sample_file):
        """Test a missing tracer table raises before reading."""
        (two_sample_file.parent / "tracerinfo.dat").unlink()
        with pytest.raises(FileNotFoundError, match="Tracer data file"):
            read_bpch(two_sample_file)

    def test_missing_diaginfo(self, two_sample_file):
        """Test a missing category table raises before reading."""
        (two_sample_file.parent / "diaginfo.dat").unlink()
        with pytest.raises(FileNotFoundError, match="Diagnostics data file"):
            read_bpch(two_sample_file)

    def test_missing_tracer_strict(self, make_bpch):
        """Test an unknown tracer aborts the read in strict mode."""
        path = make_bpch([block("IJ-AVG-$", 9, [1, 2, 3, 4])])
        with pytest.raises(MissingTracerError):
            read_bpch(path)

    def test_missing_tracer_lenient(self, make_bpch, caplog):
        """Test an unknown tracer is skipped with a single warning."""
        path = make_bpch(
            [
                block("IJ-AVG-$", 9, [1, 2, 3, 4]),
                block("IJ-AVG-$", 1, [1, 2, 3, 4]),
                block("IJ-AVG-$", 9, [1, 2, 3, 4], tau0=24.0),
            ]
        )
        with caplog.at_level(logging.WARNING):
            ctm, _, _ = read_bpch(path, brute_force=True)
        assert len(ctm) == 1
        assert ctm["C_IJ_AVG", "T_NOx"].n_samples == 1
        assert caplog.text.count("Tracer 9 not recorded in tracerinfo.dat") == 1

    def test_lenient_quiet(self, make_bpch, caplog):
        """Test skipped blocks are not reported when not verbose."""
        path = make_bpch([block("IJ-AVG-$", 9, [1, 2, 3, 4])])
        with caplog.at_level(logging.WARNING):
            ctm, _, _ = read_bpch(path, brute_force=True, verbose=False)
        assert len(ctm) == 0
        assert caplog.text == ""

    def test_uneven_samples_lenient(self, make_bpch):
        """Test tracers of one category with different sample counts."""
        path = make_bpch(
            [
                block("IJ-AVG-$", 1, [1, 2, 3, 4]),
                block("IJ-AVG-$", 2, [1, 2, 3, 4]),
                block("IJ-AVG-$", 1, [1, 2, 3, 4], tau0=24.0),
            ]
        )
        ctm, _, _ = read_bpch(path, brute_force=True)
        assert ctm["C_IJ_AVG", "T_NOx"].n_samples == 2
        assert ctm["C_IJ_AVG", "T_Ox"].n_samples == 1

    def test_uncategorized(self, make_bpch):
        """Test an empty category table stores all tracers under 'data'."""
        path = make_bpch(
            [block("IJ-AVG-$", 1, [1, 2, 3, 4]), block("IJ-AVG-$", 2, [1, 2, 3, 4])]
        )
        (path.parent / "diaginfo.dat").write_text("# no categories\n")
        ctm, _, info = read_bpch(path)
        assert info.category_ids == []
        assert ctm.categories == ["data"]
        assert ctm.tracers("data") == ["T_NOx", "T_Ox"]

    def test_invalid_identifier_strict(self, make_bpch):
        """Test a tracer name that cannot become an identifier."""
        path = make_bpch([block("IJ-AVG-$", 1, [1, 2, 3, 4])])
        (path.parent / "tracerinfo.dat").write_text(
            tracerinfo_text([("NO+", "cation", 30e-3, 1, 1, 1.0, "ppbv")])
        )
        with pytest.raises(IdentifierError):
            read_bpch(path)

    def test_truncated(self, two_sample_file):
        """Test a truncated file raises a read error naming the file."""
        data = two_sample_file.read_bytes()
        two_sample_file.write_bytes(data[:-6])
        with pytest.raises(BPCHReadError, match="Read error in file"):
            read_bpch(two_sample_file)

    def test_unknown_model(self, make_bpch):
        """Test an unknown model name raises."""
        path = make_bpch([block("IJ-AVG-$", 1, [1, 2, 3, 4], model="MERRA2")])
        with pytest.raises(GridNotRecognizedError):
            read_bpch(path)


class TestModelData:
    """Tests for the derived model data."""

    def test_without_pressure(self, two_sample_file):
        """Test grid areas without a surface pressure tracer."""
        _, model, _ = read_bpch(two_sample_file)
        assert model.grid_area.shape == (72, 46)
        assert len(model.lon_edges) == 73
        assert len(model.lat_edges) == 47
        assert model.z_values.size == 0
        assert model.pressure is None

    def test_pressure_levels(self, make_bpch):
        """Test approximate pressure levels from the surface pressure tracer."""
        psurf = np.empty((2, 2, 2))
        psurf[..., 0] = 1000.0
        psurf[..., 1] = 500.0
        path = make_bpch(
            [
                block("IJ-AVG-$", 1, [1, 2, 3, 4]),
                block("PEDGE-$", 1, psurf, dims=(2, 2, 2), unit="hPa"),
            ]
        )
        ctm, model, _ = read_bpch(path)
        assert ("C_PEDGE", "T_PSURF") in ctm
        np.testing.assert_allclose(model.z_values, [1000.0, 500.0, 0.01])
        assert model.z_unit == "hPa"
        assert model.grid_area.shape == (72, 46)

    def test_model_data_disabled(self, two_sample_file):
        """Test model data can be skipped."""
        ctm, model, _ = read_bpch(two_sample_file, model_data=False)
        assert model is None
        assert len(ctm) == 1


class TestCheckpointFiles:
    """Tests for PSC and CSPEC checkpoint files."""

    def test_psc_floor(self, make_bpch):
        """Test PSC states are floored."""
        path = make_bpch(
            [block("IJ-PSC-$", 1, [1.1, 2.1, 0.1, 3.9])], title=PSC_TITLE
        )
        ctm, _, info = read_bpch(path)
        assert info.tracer_ids == ["T_STATE_PSC"]
        assert info.category_ids == ["C_IJ_PSC"]
        psc = ctm["C_IJ_PSC", "T_STATE_PSC"]
        assert psc.unit == "-"
        np.testing.assert_array_equal(psc.data[..., 0].ravel(order="F"), [1, 2, 0, 3])

    def test_cspec_not_floored(self, make_bpch):
        """Test CSPEC concentrations are read as stored."""
        path = make_bpch([block("IJ-CHK-$", 1, [1.5, 2.5, 0.5, 3.5])], title=CSPEC_TITLE)
        ctm, _, _ = read_bpch(path)
        cspec = ctm["C_IJ_CHK", "T_STATE_PSC"]
        assert cspec.unit == "molec/cm3/box"
        np.testing.assert_array_equal(
            cspec.data[..., 0].ravel(order="F"), [1.5, 2.5, 0.5, 3.5]
        )


class TestBPCHFile:
    """Tests for BPCHFile class."""

    def test_header(self, two_sample_file):
        """Test reading the model header only."""
        bpch = BPCHFile(two_sample_file)
        assert bpch.header.model_name == "GEOS5"
        assert bpch.header.resolution == (5.0, 4.0)
        assert bpch.header.title == "GEOS-CHEM binary punch file v. 2.0"

    def test_grid(self, two_sample_file):
        """Test the grid of the file."""
        grid = BPCHFile(two_sample_file).grid
        assert grid.name == "GEOS 4x5"
        assert grid.num_alts == 72

    def test_default_tables(self, two_sample_file):
        """Test the metadata tables default to the input directory."""
        bpch = BPCHFile(two_sample_file, tracerinfo="default", diaginfo="")
        assert bpch.tracerinfo == two_sample_file.parent / "tracerinfo.dat"
        assert bpch.diaginfo == two_sample_file.parent / "diaginfo.dat"

    def test_policy(self, two_sample_file):
        """Test the error flags become the reader's policy."""
        bpch = BPCHFile(two_sample_file, verbose=False, brute_force=True)
        assert bpch.policy.verbose is False
        assert bpch.policy.brute_force is True


class TestOpenDataset:
    """Tests for open_dataset function."""

    def test_open(self, two_sample_file):
        """Test opening a category as an xarray Dataset."""
        ds = open_dataset(two_sample_file)
        assert isinstance(ds, xr.Dataset)
        assert "T_NOx" in ds.data_vars
        assert ds["T_NOx"].dims == ("lon", "lat", "time")
        assert ds.sizes["time"] == 2
        assert ds.attrs["category"] == "C_IJ_AVG"
        assert ds.attrs["model_name"] == "GEOS5"
        assert ds["T_NOx"].attrs["units"] == "ppbv"
        np.testing.assert_array_equal(ds["lon"].values, [-180.0, -175.0])

    def test_unknown_category(self, two_sample_file):
        """Test opening a category the file does not hold."""
        with pytest.raises(KeyError):
            open_dataset(two_sample_file, category="C_PEDGE")

    def test_different_levels(self, make_bpch):
        """Test tracers of one category with different level counts."""
        path = make_bpch(
            [
                block("IJ-AVG-$", 1, np.ones((2, 2, 3)), dims=(2, 2, 3)),
                block("IJ-AVG-$", 2, np.ones((2, 2, 4)), dims=(2, 2, 4)),
            ]
        )
        ds = open_dataset(path)
        assert ds["T_NOx"].dims == ("lon", "lat", "lev", "time")
        assert ds.sizes["lev"] == 4
        np.testing.assert_array_equal(ds["lev"].values, [1, 2, 3, 4])
        np.testing.assert_array_equal(ds["T_NOx"].sel(lev=[1, 2, 3]), 2.0)
        assert np.isnan(ds["T_NOx"].sel(lev=4)).all()
        np.testing.assert_array_equal(ds["T_Ox"], 1.0)


class TestMaterialize:
    """Tests for the second pass over the data blocks."""

    def test_stops_when_filled(self):
        """Test the second pass stops once every sample has been read."""
        trailing = block("IJ-AVG-$", 9, [1, 2, 3, 4], tau0=48.0)
        data = bpch_bytes(
            [
                block("IJ-AVG-$", 1, [1, 2, 3, 4], tau0=0.0),
                block("IJ-AVG-$", 1, [5, 6, 7, 8], tau0=24.0),
                trailing,
            ]
        )
        reader = RecordReader(io.BytesIO(data))
        read_file_start(reader)
        data_start = reader.tell()

        policy = ErrorPolicy.lenient(verbose=False)
        tables = MetadataTables(
            tracers={1: TracerDefinition(1, "NOx", scale=2.0)},
            categories={"IJ-AVG-$": DiagnosticCategory("IJ-AVG-$")},
        )
        resolver = BlockResolver(tables, {"IJ-AVG-$": "C_IJ_AVG"}, {1: "T_NOx"}, policy)
        scan = scan_structure(reader, resolver, data_start, policy)
        assert scan.n_skipped == 1
        assert scan.data_end == len(data)

        ctm = CTMDataset()
        materialize(reader, scan, resolver, ctm)
        assert reader.tell() == len(data) - len(trailing)

        nox = ctm["C_IJ_AVG", "T_NOx"]
        assert nox.n_samples == 2
        np.testing.assert_array_equal(
            nox.datenum[:, 0], [EPOCH_DAY_NUMBER, EPOCH_DAY_NUMBER + 1]
        )
        np.testing.assert_array_equal(nox.data[..., 1].ravel(order="F"), [10, 12, 14, 16])

    def test_counts_match_first_pass(self, make_bpch):
        """Test every series holds as many samples as the first pass counted."""
        path = make_bpch(
            [
                block("IJ-AVG-$", 1, [1, 2, 3, 4], tau0=0.0),
                block("IJ-AVG-$", 2, [1, 2, 3, 4], tau0=0.0),
                block("IJ-AVG-$", 1, [1, 2, 3, 4], tau0=24.0),
                block("IJ-AVG-$", 2, [1, 2, 3, 4], tau0=24.0),
                block("IJ-AVG-$", 1, [1, 2, 3, 4], tau0=48.0),
                block("IJ-AVG-$", 2, [1, 2, 3, 4], tau0=48.0),
            ]
        )
        ctm, _, _ = read_bpch(path)
        for series in ctm.values():
            assert series.n_samples == 3
            assert np.all(np.diff(series.datenum[:, 0]) == 1)


class TestFileHandling:
    """Tests that files are closed on every exit path."""

    @pytest.fixture
    def opened(self, monkeypatch):
        """Every file object opened through Path.open during the test."""
        handles = []
        path_open = Path.open

        def tracking_open(self, *args, **kwargs):
            f = path_open(self, *args, **kwargs)
            handles.append(f)
            return f

        monkeypatch.setattr(Path, "open", tracking_open)
        return handles

    def test_closed_after_read(self, two_sample_file, opened):
        """Test the file is closed after a successful read."""
        read_bpch(two_sample_file)
        assert opened
        assert all(f.closed for f in opened)

    def test_closed_after_missing_tracer(self, make_bpch, opened):
        """Test the file is closed when the first pass aborts."""
        path = make_bpch([block("IJ-AVG-$", 9, [1, 2, 3, 4])])
        with pytest.raises(MissingTracerError):
            read_bpch(path)
        assert any(Path(f.name) == path for f in opened)
        assert all(f.closed for f in opened)

    def test_closed_after_truncation(self, two_sample_file, opened):
        """Test the file is closed when a record is truncated."""
        data = two_sample_file.read_bytes()
        two_sample_file.write_bytes(data[:-6])
        with pytest.raises(BPCHReadError):
            read_bpch(two_sample_file)
        assert any(Path(f.name) == two_sample_file for f in opened)
        assert all(f.closed for f in opened)

    def test_closed_after_second_pass_error(self, make_bpch, opened):
        """Test the file is closed when decoding a payload fails."""
        path = make_bpch([block("IJ-AVG-$", 1, [1, 2, 3], dims=(2, 2, 1))])
        with pytest.raises(BPCHFormatError):
            read_bpch(path)
        assert all(f.closed for f in opened)
