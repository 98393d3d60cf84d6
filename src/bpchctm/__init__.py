"""
bpchctm: Python package for reading GEOS-Chem binary punch (BPCH) files.

This package provides tools to read the tracer fields stored in BPCH files
written by the GEOS-Chem chemistry transport model, together with the model
grid they are defined on.
"""

__version__ = "2025.10.0"
__author__ = "James Mineau"
__email__ = "jameskmineau@gmail.com"

from .bpch import BPCHFile, open_dataset, read_bpch
from .dataset import BPCHInfo, CTMDataset, ModelDataset, SeriesKey, TracerSeries
from .errors import BPCHError, ErrorPolicy
from .grid import GridDefinition, resolve_grid

__all__ = [
    "BPCHFile",
    "BPCHError",
    "BPCHInfo",
    "CTMDataset",
    "ErrorPolicy",
    "GridDefinition",
    "ModelDataset",
    "SeriesKey",
    "TracerSeries",
    "open_dataset",
    "read_bpch",
    "resolve_grid",
]
