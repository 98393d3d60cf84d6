"""
BPCH file reader.

This module provides the main BPCHFile class for reading GEOS-Chem binary
punch files. The data section is walked twice: a first pass works out the
structure of the file, a second pass allocates one array per (category,
tracer) pair and fills it.
"""

import logging
from collections import Counter
from pathlib import Path

import xarray as xr

from bpchctm.dataset import BPCHInfo, CTMDataset, ModelDataset, SeriesKey, TracerSeries
from bpchctm.errors import BPCHFormatError, BPCHReadError, ErrorPolicy, Outcome
from bpchctm.grid import GridDefinition, resolve_grid
from bpchctm.metadata import (
    DIAGINFO_FILE,
    TRACERINFO_FILE,
    MetadataTables,
    default_table_path,
)
from bpchctm.postprocess import (
    apply_file_corrections,
    build_model_dataset,
    is_surface_pressure,
)
from bpchctm.records import (
    FileHeader,
    RecordReader,
    read_block_header,
    read_file_header,
    read_file_start,
    read_payload,
    tau_to_datenum,
)
from bpchctm.sanitize import sanitize_names
from bpchctm.scan import BlockResolver, ScanResult, scan_structure

logger = logging.getLogger(__name__)


def materialize(
    reader: RecordReader,
    scan: ScanResult,
    resolver: BlockResolver,
    ctm: CTMDataset,
) -> SeriesKey | None:
    """
    Second pass: read every data block into the arrays of `ctm`.

    Parameters
    ----------
    reader : RecordReader
        Reader over the open file.
    scan : ScanResult
        Structure found by the first pass.
    resolver : BlockResolver
        The resolver used for the first pass.
    ctm : CTMDataset
        Dataset receiving the series, in order of first occurrence.

    Returns
    -------
    SeriesKey or None
        Key of the first surface pressure series found.
    """
    reader.seek(scan.data_start)
    filled: Counter = Counter()
    remaining = scan.n_samples
    psurf = None

    while reader.tell() < scan.data_end and remaining > 0:
        reader.skip()
        block = read_block_header(reader)

        resolution = resolver.resolve(block)
        if resolution.outcome is Outcome.FATAL:
            raise resolution.error
        if resolution.outcome is Outcome.SKIP:
            reader.skip()
            continue

        key = resolution.key
        index = filled[key]
        if index == 0:
            layout = scan.layouts[key]
            ctm.add(
                TracerSeries.allocate(
                    scan.samples(key),
                    category=key.category,
                    tracer=key.tracer,
                    name=layout.tracer.full_name or layout.tracer.name,
                    unit=layout.unit,
                    molecular_weight=layout.tracer.molecular_weight,
                    carbon=layout.tracer.carbon,
                    dims=layout.dims,
                    start=layout.start,
                )
            )
            if psurf is None and is_surface_pressure(key):
                psurf = key

        series = ctm[key]
        if index >= series.n_samples:
            raise BPCHFormatError(f"{key} has more samples than found in first pass")

        series.data[..., index] = read_payload(reader, block) * resolution.tracer.scale
        series.datenum[index] = tau_to_datenum(block.taus)
        filled[key] += 1
        remaining -= 1

    logger.debug("Read %d samples into %d series", sum(filled.values()), len(ctm))
    return psurf


class BPCHFile:
    """
    GEOS-Chem binary punch file.

    Parameters
    ----------
    filename : Path or str
        Path of the BPCH file.
    tracerinfo : Path or str, optional
        Path of the 'tracerinfo.dat' file. None or 'default' selects the
        file next to `filename`.
    diaginfo : Path or str, optional
        Path of the 'diaginfo.dat' file, with the same default.
    verbose : bool
        Log warnings for recoverable errors.
    brute_force : bool
        Skip recoverable errors (unknown tracers, invalid identifiers)
        instead of aborting.

    Raises
    ------
    FileNotFoundError
        If the BPCH file or one of the metadata files does not exist.
    """

    def __init__(
        self,
        filename: Path | str,
        tracerinfo: Path | str | None = None,
        diaginfo: Path | str | None = None,
        verbose: bool = True,
        brute_force: bool = False,
    ):
        self.path = Path(filename)
        self.tracerinfo = default_table_path(self.path, tracerinfo, TRACERINFO_FILE)
        self.diaginfo = default_table_path(self.path, diaginfo, DIAGINFO_FILE)
        self.policy = ErrorPolicy(verbose=verbose, brute_force=brute_force)

        if not self.path.exists():
            raise FileNotFoundError(f"BPCH input file not found: {self.path}")
        if not self.tracerinfo.exists():
            raise FileNotFoundError(f"Tracer data file not found: {self.tracerinfo}")
        if not self.diaginfo.exists():
            raise FileNotFoundError(f"Diagnostics data file not found: {self.diaginfo}")

    def read(
        self, only_info: bool = False, model_data: bool = True
    ) -> tuple[CTMDataset | None, ModelDataset | None, BPCHInfo]:
        """
        Read the file.

        Parameters
        ----------
        only_info : bool
            Only read the headers and return the sanitized tracer and category
            ids, without scanning the data blocks.
        model_data : bool
            Derive grid areas and pressure levels.

        Returns
        -------
        tuple[CTMDataset | None, ModelDataset | None, BPCHInfo]
            The data (None if `only_info`), the model data (None if
            `only_info` or not `model_data`) and the file summary.
        """
        with self.path.open("rb") as f:
            reader = RecordReader(f)
            try:
                return self._read(reader, only_info=only_info, model_data=model_data)
            except BPCHReadError as e:
                raise BPCHReadError(f"Read error in file {self.path}: {e}") from e

    def _read(self, reader: RecordReader, only_info: bool, model_data: bool):
        file_type, title = read_file_start(reader)
        data_start = reader.tell()

        header = read_file_header(reader, title=title, file_type=file_type)
        grid = resolve_grid(header.model_name, header.resolution)
        logger.debug("%s: %s on %s grid", self.path.name, header.model_name, grid.name)

        tables = MetadataTables.for_file(title, self.tracerinfo, self.diaginfo)
        category_ids, tracer_ids = self._identifiers(tables)
        info = BPCHInfo(
            tracer_ids=list(tracer_ids.values()),
            category_ids=list(category_ids.values()),
            title=title,
            file_type=file_type,
            header=header,
        )
        if only_info:
            return None, None, info

        resolver = BlockResolver(tables, category_ids, tracer_ids, self.policy)
        scan = scan_structure(reader, resolver, data_start, self.policy)

        ctm = CTMDataset(header=header, grid=grid)
        psurf = materialize(reader, scan, resolver, ctm)
        apply_file_corrections(tables.kind, ctm)

        model = build_model_dataset(grid, ctm, psurf) if model_data else None
        return ctm, model, info

    def _identifiers(
        self, tables: MetadataTables
    ) -> tuple[dict[str, str], dict[int, str]]:
        category_names = tables.category_names
        category_ids = dict(
            zip(category_names, sanitize_names(category_names, "category", self.policy))
        )
        tracer_ids = dict(
            zip(
                tables.tracers,
                sanitize_names(tables.tracer_names, "tracer", self.policy),
            )
        )
        return category_ids, tracer_ids

    @property
    def header(self) -> FileHeader:
        """Model header of the file."""
        with self.path.open("rb") as f:
            reader = RecordReader(f)
            file_type, title = read_file_start(reader)
            return read_file_header(reader, title=title, file_type=file_type)

    @property
    def grid(self) -> GridDefinition:
        header = self.header
        return resolve_grid(header.model_name, header.resolution)


def read_bpch(
    filename: Path | str,
    tracerinfo: Path | str | None = None,
    diaginfo: Path | str | None = None,
    verbose: bool = True,
    brute_force: bool = False,
    only_info: bool = False,
    model_data: bool = True,
) -> tuple[CTMDataset | None, ModelDataset | None, BPCHInfo]:
    """
    Read all data from a BPCH file.

    Parameters
    ----------
    filename : Path or str
        Path of the BPCH file.
    tracerinfo, diaginfo : Path or str, optional
        Metadata files. None, '' or 'default' select 'tracerinfo.dat' and
        'diaginfo.dat' in the directory of `filename`.
    verbose : bool
        Log warnings for recoverable errors.
    brute_force : bool
        Skip recoverable errors instead of aborting.
    only_info : bool
        Only return the sanitized tracer and category ids.
    model_data : bool
        Derive grid areas and pressure levels.

    Returns
    -------
    tuple[CTMDataset | None, ModelDataset | None, BPCHInfo]

    Examples
    --------
    >>> ctm, model, info = read_bpch("ctm.bpch")
    >>> ctm["C_IJ_AVG", "T_NOx"].dims
    (72, 46, 47)
    """
    bpch = BPCHFile(
        filename,
        tracerinfo=tracerinfo,
        diaginfo=diaginfo,
        verbose=verbose,
        brute_force=brute_force,
    )
    return bpch.read(only_info=only_info, model_data=model_data)


def open_dataset(
    filename: Path | str, category: str | None = None, **kwargs
) -> xr.Dataset:
    """
    Open one diagnostic category of a BPCH file as an xarray Dataset.

    Parameters
    ----------
    filename : Path or str
        Path of the BPCH file.
    category : str, optional
        Sanitized category id, e.g. 'C_IJ_AVG'. Defaults to the first
        category in the file.
    **kwargs
        Keyword arguments passed to `read_bpch()`.

    Returns
    -------
    xr.Dataset
    """
    kwargs.setdefault("model_data", False)
    ctm, _, _ = read_bpch(filename, **kwargs)
    return ctm.to_dataset(category)
