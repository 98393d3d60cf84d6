"""
Quantities derived from a fully read BPCH file.
"""

import logging

import numpy as np

from bpchctm.dataset import CTMDataset, ModelDataset, SeriesKey
from bpchctm.grid import GridDefinition
from bpchctm.metadata import FileKind

logger = logging.getLogger(__name__)

PSURF_TRACER = "T_PSURF"
PSC_KEY = SeriesKey("C_IJ_PSC", "T_STATE_PSC")

# The model top is always at 0.01 hPa
TOP_OF_ATMOSPHERE = 0.01
TOA_TOLERANCE = 1e-5


def is_surface_pressure(key: SeriesKey) -> bool:
    return key.tracer.upper() == PSURF_TRACER


def pressure_levels(pressure: np.ndarray, weights: np.ndarray) -> np.ndarray:
    """
    Approximate pressure level of every vertical level.

    Parameters
    ----------
    pressure : np.ndarray
        Pressure array of shape (n_lon, n_lat[, n_lev], n_time).
    weights : np.ndarray
        (n_lat,) area of one box in every latitude band.

    Returns
    -------
    np.ndarray
        Pressure averaged over time and longitude, then area-weighted over
        latitude. The model top is appended if the last level lies below it.
    """
    pressure = np.asarray(pressure, dtype=float)
    if pressure.ndim < 3:
        raise ValueError(
            f"Pressure needs lon, lat and time axes, got shape {pressure.shape}"
        )

    zonal = pressure.mean(axis=-1).mean(axis=0)
    weights = np.asarray(weights, dtype=float)
    levels = np.atleast_1d(np.tensordot(weights / weights.sum(), zonal, axes=(0, 0)))

    if levels[-1] > TOP_OF_ATMOSPHERE + TOA_TOLERANCE:
        levels = np.append(levels, TOP_OF_ATMOSPHERE)
    return levels


def build_model_dataset(
    grid: GridDefinition, ctm: CTMDataset, psurf: SeriesKey | None = None
) -> ModelDataset:
    """
    Derive grid areas and approximate pressure levels.

    Parameters
    ----------
    grid : GridDefinition
        Model grid.
    ctm : CTMDataset
        Data read from the file.
    psurf : SeriesKey, optional
        Key of the surface pressure series, if the file holds one.
    """
    area = grid.area
    model = ModelDataset(
        lon_edges=grid.lon_edges.copy(),
        lat_edges=grid.lat_edges.copy(),
        grid_area=area,
    )
    if psurf is None:
        return model

    series = ctm[psurf]
    model.pressure = series.data
    model.z_unit = series.unit

    if series.data.ndim < 3:
        logger.warning(
            "Surface pressure %s has no latitude axis; pressure levels not derived.",
            psurf,
        )
        return model

    first = max(series.start[1] - 1, 0) if len(series.start) > 1 else 0
    weights = area[0, first : first + series.dims[1]]
    model.z_values = pressure_levels(series.data, weights)
    return model


def apply_file_corrections(kind: FileKind, ctm: CTMDataset) -> None:
    """
    Fix known encoding artefacts of special file types, in place.
    """
    if kind is FileKind.PSC and PSC_KEY in ctm:
        # PSC states are stored with a 0.1 offset
        series = ctm[PSC_KEY]
        np.floor(series.data, out=series.data)
