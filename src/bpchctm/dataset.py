"""
In-memory containers for the content of a BPCH file.

A :class:`CTMDataset` maps ``(category, tracer)`` identifier pairs onto
:class:`TracerSeries`, each holding one array whose trailing axis is time.
"""

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd
import xarray as xr

from bpchctm.grid import GridDefinition
from bpchctm.records import FileHeader, datenum_to_datetime

SPATIAL_DIMS = ("lon", "lat", "lev")


@dataclass(frozen=True, order=True)
class SeriesKey:
    """Sanitized (category, tracer) identifier pair."""

    category: str
    tracer: str

    def __str__(self) -> str:
        return f"{self.category}.{self.tracer}"


@dataclass(eq=False)
class TracerSeries:
    """
    All samples of one tracer within one diagnostic category.

    Parameters
    ----------
    category : str
        Sanitized category id, e.g. 'C_IJ_AVG'.
    tracer : str
        Sanitized tracer id, e.g. 'T_NOx'.
    name : str
        Full tracer name.
    unit : str
        Unit of the (scaled) data.
    molecular_weight : float
        Tracer molecular weight.
    carbon : float
        Moles of carbon per mole of tracer.
    dims : tuple[int, ...]
        Spatial shape of one sample.
    start : tuple[int, ...]
        1-based (I0, J0, L0) position of the first box on the model grid.
    datenum : np.ndarray
        (n, 2) array of sample start and end times as day numbers.
    data : np.ndarray
        Array of shape ``dims + (n,)``.
    """

    category: str
    tracer: str
    name: str
    unit: str
    molecular_weight: float
    carbon: float
    dims: tuple[int, ...]
    start: tuple[int, ...]
    datenum: np.ndarray = field(repr=False)
    data: np.ndarray = field(repr=False)

    @classmethod
    def allocate(cls, n_samples: int, **kwargs) -> "TracerSeries":
        dims = tuple(kwargs["dims"])
        return cls(
            datenum=np.zeros((n_samples, 2)),
            data=np.zeros(dims + (n_samples,)),
            **kwargs,
        )

    @property
    def key(self) -> SeriesKey:
        return SeriesKey(self.category, self.tracer)

    def equals(self, other: "TracerSeries") -> bool:
        """True if both series hold the same metadata, times and data."""
        return (
            self.key == other.key
            and self.name == other.name
            and self.unit == other.unit
            and self.dims == other.dims
            and self.start == other.start
            and np.array_equal(self.datenum, other.datenum)
            and np.array_equal(self.data, other.data)
        )

    @property
    def n_samples(self) -> int:
        return self.data.shape[-1]

    @property
    def times(self) -> pd.DatetimeIndex:
        """Start time of each sample."""
        return datenum_to_datetime(self.datenum[:, 0])

    @property
    def time_bounds(self) -> pd.DataFrame:
        """Start and end time of each sample."""
        return pd.DataFrame(
            {
                "start": datenum_to_datetime(self.datenum[:, 0]),
                "end": datenum_to_datetime(self.datenum[:, 1]),
            }
        )

    def to_dataarray(self, grid: GridDefinition | None = None) -> xr.DataArray:
        """
        Convert the series into an xarray DataArray.

        Spatial axes are named 'lon', 'lat' and 'lev' and carry the 1-based
        model box indices of the block. When `grid` is given, longitude and
        latitude axes that fit inside the grid carry the box centres instead,
        so series covering different parts of the grid align on merge.
        """
        dims = SPATIAL_DIMS[: len(self.dims)] + ("time",)
        coords: dict[str, Any] = {"time": self.times}

        for axis, dim in enumerate(dims[:-1]):
            first = self.start[axis] if len(self.start) > axis else 1
            coords[dim] = first + np.arange(self.dims[axis])

        if grid is not None:
            for axis, (dim, centers) in enumerate(
                (("lon", grid.lon_centers), ("lat", grid.lat_centers))
            ):
                if axis >= len(self.dims):
                    break
                first = int(coords[dim][0]) - 1
                if first < 0:
                    continue
                values = centers[first : first + self.dims[axis]]
                if len(values) == self.dims[axis]:
                    coords[dim] = values

        return xr.DataArray(
            data=self.data,
            dims=dims,
            coords=coords,
            name=self.tracer,
            attrs={
                "long_name": self.name,
                "units": self.unit,
                "molecular_weight": self.molecular_weight,
                "carbon": self.carbon,
                "category": self.category,
            },
        )


class CTMDataset(Mapping):
    """
    Ordered mapping of :class:`SeriesKey` onto :class:`TracerSeries`.

    Series can be looked up by key, by ``(category, tracer)`` tuple, or all
    series of a category at once by category id::

        ctm[SeriesKey("C_IJ_AVG", "T_NOx")]
        ctm["C_IJ_AVG", "T_NOx"]
        ctm["C_IJ_AVG"]["T_NOx"]

    Parameters
    ----------
    header : FileHeader, optional
        Model header of the file the data was read from.
    grid : GridDefinition, optional
        Model grid of the file.
    """

    def __init__(
        self, header: FileHeader | None = None, grid: GridDefinition | None = None
    ):
        self.header = header
        self.grid = grid
        self._series: dict[SeriesKey, TracerSeries] = {}

    def add(self, series: TracerSeries) -> None:
        if series.key in self._series:
            raise KeyError(f"Series {series.key} already present")
        self._series[series.key] = series

    def __getitem__(self, key):
        if isinstance(key, SeriesKey):
            return self._series[key]
        if isinstance(key, tuple):
            return self._series[SeriesKey(*key)]
        tracers = {k.tracer: s for k, s in self._series.items() if k.category == key}
        if not tracers:
            raise KeyError(key)
        return tracers

    def __contains__(self, key) -> bool:
        try:
            self[key]
        except KeyError:
            return False
        return True

    def __iter__(self) -> Iterator[SeriesKey]:
        return iter(self._series)

    def __len__(self) -> int:
        return len(self._series)

    def __repr__(self) -> str:
        return f"CTMDataset(categories={self.categories}, n_series={len(self)})"

    @property
    def categories(self) -> list[str]:
        return list(dict.fromkeys(k.category for k in self._series))

    def tracers(self, category: str) -> list[str]:
        return [k.tracer for k in self._series if k.category == category]

    def equals(self, other: "CTMDataset") -> bool:
        """True if both datasets hold equal series in the same order."""
        if list(self) != list(other):
            return False
        return all(s.equals(other[k]) for k, s in self._series.items())

    def to_dataset(self, category: str | None = None) -> xr.Dataset:
        """
        Convert the series of one category into an xarray Dataset.

        Parameters
        ----------
        category : str, optional
            Category id. Defaults to the first category of the file.
        """
        if category is None:
            if not self._series:
                raise ValueError("Dataset is empty")
            category = self.categories[0]

        arrays = [s.to_dataarray(self.grid) for s in self[category].values()]
        ds = xr.merge(arrays, compat="no_conflicts", join="outer")
        ds.attrs = {"category": category}
        if self.header is not None:
            ds.attrs.update(
                {
                    "title": self.header.title,
                    "model_name": self.header.model_name,
                    "lon_res": self.header.lon_res,
                    "lat_res": self.header.lat_res,
                    "half_polar": int(self.header.half_polar),
                    "center_180": int(self.header.center_180),
                }
            )
        return ds


@dataclass
class ModelDataset:
    """
    Grid-derived quantities of a model run.

    Parameters
    ----------
    lon_edges : np.ndarray
        Longitude box edges.
    lat_edges : np.ndarray
        Latitude box edges.
    grid_area : np.ndarray
        (n_lon, n_lat) box areas in m^2.
    z_values : np.ndarray
        Approximate pressure levels; empty when the file holds no surface
        pressure.
    z_unit : str
        Unit of `z_values`.
    pressure : np.ndarray, optional
        Surface pressure data the levels were derived from.
    """

    lon_edges: np.ndarray
    lat_edges: np.ndarray
    grid_area: np.ndarray
    z_values: np.ndarray = field(default_factory=lambda: np.array([]))
    z_unit: str = "hPa"
    pressure: np.ndarray | None = field(default=None, repr=False)


@dataclass
class BPCHInfo:
    """
    Structural summary of a BPCH file.

    Parameters
    ----------
    tracer_ids : list[str]
        Sanitized ids of all tracers in the tracer table.
    category_ids : list[str]
        Sanitized ids of all categories in the category table.
    title : str
        Title line of the file.
    file_type : str
        File type tag of the file.
    header : FileHeader, optional
        Model header of the file.
    """

    tracer_ids: list[str]
    category_ids: list[str]
    title: str = ""
    file_type: str = ""
    header: FileHeader | None = None
