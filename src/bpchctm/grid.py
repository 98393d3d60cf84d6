"""
Grid definitions for GEOS-Chem model output.

This module maps the model name and horizontal resolution stored in a BPCH
file onto the global latitude-longitude grids used by GEOS and GCAP driven
simulations, and computes the surface area of their grid boxes.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar

import numpy as np
import pyproj

from bpchctm.errors import GridNotRecognizedError

# Earth radius used by GEOS-Chem (m)
EARTH_RADIUS = 6.375e6


def _edges(start: float, step: float, stop: float) -> np.ndarray:
    """Inclusive range, robust to floating point steps."""
    n = int(round((stop - start) / step)) + 1
    return start + np.arange(n) * step


def _polar(south: float, interior: np.ndarray, north: float) -> np.ndarray:
    return np.concatenate(([south], interior, [north]))


# Number of vertical levels per GEOS generation: (full, reduced)
GEOS_LEVELS = {
    "3": (30, 48),
    "4": (55, 30),
    "5": (72, 47),
}

# Horizontal presets keyed by round(lon_res * 3)
# Each value is a (name, lon_edges, lon_centers, lat_edges, lat_centers) tuple
_THIRD = 1.0 / 3.0
GEOS_PRESETS = {
    15: (
        "4x5",
        _edges(-182.5, 5.0, 177.5),
        _edges(-180.0, 5.0, 175.0),
        _polar(-90.0, _edges(-88.0, 4.0, 88.0), 90.0),
        _polar(-89.0, _edges(-86.0, 4.0, 86.0), 89.0),
    ),
    8: (
        "2x2.5",
        _edges(-181.25, 2.5, 178.75),
        _edges(-180.0, 2.5, 177.5),
        _polar(-90.0, _edges(-89.0, 2.0, 89.0), 90.0),
        _polar(-89.5, _edges(-88.0, 2.0, 88.0), 89.5),
    ),
    4: (
        "1x1.25",
        _edges(-180.625, 1.25, 179.375),
        _edges(-180.0, 1.25, 178.75),
        _polar(-90.0, _edges(-89.5, 1.0, 89.5), 90.0),
        _polar(-89.75, _edges(-89.0, 1.0, 89.0), 89.75),
    ),
    3: (
        "1x1",
        _edges(-180.5, 1.0, 179.5),
        _edges(-180.0, 1.0, 179.0),
        _polar(-90.0, _edges(-89.5, 1.0, 89.5), 90.0),
        _polar(-89.75, _edges(-89.0, 1.0, 89.0), 89.75),
    ),
    2: (
        "0.5x0.667",
        _edges(-180.0 - _THIRD, 2 * _THIRD, 179.0 + 2 * _THIRD),
        _edges(-180.0, 2 * _THIRD, 179.0 + _THIRD),
        _polar(-90.0, _edges(-89.75, 0.5, 89.75), 90.0),
        _polar(-89.875, _edges(-89.5, 0.5, 89.5), 89.875),
    ),
}

GCAP_LEVELS = 23


def grid_area(
    lon_edges: np.ndarray, lat_edges: np.ndarray, radius: float = EARTH_RADIUS
) -> np.ndarray:
    """
    Surface area of the boxes of a regular latitude-longitude grid.

    Parameters
    ----------
    lon_edges : np.ndarray
        Longitude edges in degrees, length n_lon + 1.
    lat_edges : np.ndarray
        Latitude edges in degrees, length n_lat + 1.
    radius : float
        Radius of the sphere in metres.

    Returns
    -------
    np.ndarray
        Box areas in m^2, shape (n_lon, n_lat).
    """
    dlon = np.deg2rad(np.diff(np.asarray(lon_edges, dtype=float)))
    dsin = np.diff(np.sin(np.deg2rad(np.asarray(lat_edges, dtype=float))))
    return radius**2 * np.outer(dlon, dsin)


@dataclass(frozen=True, eq=False)
class GridDefinition:
    """
    Horizontal and vertical extent of a model grid.

    Parameters
    ----------
    name : str
        Name of the grid, e.g. 'GEOS 2x2.5'.
    lon_edges : np.ndarray
        Longitude box edges (degrees east).
    lon_centers : np.ndarray
        Longitude box centres.
    lat_edges : np.ndarray
        Latitude box edges (degrees north).
    lat_centers : np.ndarray
        Latitude box centres.
    num_alts : int
        Number of vertical levels.

    Attributes
    ----------
    crs : pyproj.CRS
        Spherical lat-lon coordinate reference system of the model.
    """

    name: str
    lon_edges: np.ndarray = field(repr=False)
    lon_centers: np.ndarray = field(repr=False)
    lat_edges: np.ndarray = field(repr=False)
    lat_centers: np.ndarray = field(repr=False)
    num_alts: int

    PARAMS: ClassVar[dict[str, Any]] = {
        "proj": "longlat",
        "R": EARTH_RADIUS,
    }

    def __post_init__(self):
        for axis in ("lon", "lat"):
            edges = getattr(self, f"{axis}_edges")
            centers = getattr(self, f"{axis}_centers")
            if len(centers) != len(edges) - 1:
                raise ValueError(
                    f"{self.name}: {len(centers)} {axis} centres for {len(edges)} edges"
                )

    @property
    def shape(self) -> tuple[int, int, int]:
        """(n_lon, n_lat, n_alt)"""
        return (len(self.lon_centers), len(self.lat_centers), self.num_alts)

    @property
    def crs(self) -> pyproj.CRS:
        return pyproj.CRS.from_dict(self.PARAMS)

    @property
    def area(self) -> np.ndarray:
        """
        Box areas in m^2, shape (n_lon, n_lat).
        """
        radius = self.crs.ellipsoid.semi_major_metre
        return grid_area(self.lon_edges, self.lat_edges, radius=radius)

    def __eq__(self, other) -> bool:
        if not isinstance(other, GridDefinition):
            return False
        return (
            self.name == other.name
            and self.num_alts == other.num_alts
            and np.array_equal(self.lon_edges, other.lon_edges)
            and np.array_equal(self.lat_edges, other.lat_edges)
        )

    def __hash__(self) -> int:
        return hash((self.name, self.num_alts, len(self.lon_edges), len(self.lat_edges)))


def _geos_levels(model_name: str) -> int:
    # Only the reduced level models carry more than 'GEOS5' / 'GEOS3'
    reduced = len(model_name) > 5
    generation = model_name[4:5]
    if generation not in GEOS_LEVELS:
        raise GridNotRecognizedError(
            f"Vertical grid of model '{model_name}' not recognized"
        )
    full, reduced_levels = GEOS_LEVELS[generation]
    return reduced_levels if reduced else full


def resolve_grid(model_name: str, resolution: tuple[float, float]) -> GridDefinition:
    """
    Resolve the grid of a model.

    Parameters
    ----------
    model_name : str
        Model name as stored in the file, e.g. 'GEOS5' or 'GEOS5_47L'.
    resolution : tuple[float, float]
        Longitude and latitude resolution in degrees.

    Returns
    -------
    GridDefinition

    Raises
    ------
    GridNotRecognizedError
        If the model family, level count or horizontal resolution is unknown.
    """
    model_name = model_name.strip()
    family = model_name[:4].lower()

    if family == "geos":
        num_alts = _geos_levels(model_name)
        code = int(round(resolution[0] * 3))
        if code not in GEOS_PRESETS:
            raise GridNotRecognizedError(
                f"Horizontal resolution {resolution[0]} x {resolution[1]} of model "
                f"'{model_name}' not recognized"
            )
        preset, lon_e, lon_c, lat_e, lat_c = GEOS_PRESETS[code]
        return GridDefinition(
            name=f"GEOS {preset}",
            lon_edges=lon_e.copy(),
            lon_centers=lon_c.copy(),
            lat_edges=lat_e.copy(),
            lat_centers=lat_c.copy(),
            num_alts=num_alts,
        )

    if family == "gcap":
        # GCAP 4x5 has no half-sized polar boxes
        return GridDefinition(
            name="GCAP 4x5",
            lon_edges=_edges(-182.5, 5.0, 177.5),
            lon_centers=_edges(-180.0, 5.0, 175.0),
            lat_edges=_edges(-90.0, 4.0, 90.0),
            lat_centers=_edges(-88.0, 4.0, 88.0),
            num_alts=GCAP_LEVELS,
        )

    raise GridNotRecognizedError(f"Grid '{model_name}' not recognized")
