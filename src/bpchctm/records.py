"""
BPCH record parsing.

This module provides the Fortran sequential-record reader used to walk a
binary punch file, the fixed layouts of the records found in it (file header
and data block header), and the conversion of GEOS-Chem "tau" timestamps.
All values are big-endian.
"""

import struct
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, BinaryIO, ClassVar

import numpy as np
import pandas as pd

from bpchctm.errors import BPCHFormatError, BPCHReadError

# Tau values are hours since this instant
TAU_EPOCH = pd.Timestamp("1985-01-01 00:00:00")
# Proleptic Gregorian ordinal (date.toordinal) of TAU_EPOCH
EPOCH_DAY_NUMBER = TAU_EPOCH.toordinal()

FILETYPE_LENGTH = 40
TITLE_LENGTH = 80


def _decode(raw: bytes) -> str:
    return raw.decode("ascii", errors="ignore").strip()


def tau_to_datenum(tau: float | Sequence[float] | np.ndarray) -> np.ndarray:
    """
    Convert tau values to fractional day numbers.

    Parameters
    ----------
    tau : float or array-like
        Hours since 1985-01-01 00:00.

    Returns
    -------
    np.ndarray
        ``EPOCH_DAY_NUMBER + tau / 24``, same shape as `tau`.
    """
    return EPOCH_DAY_NUMBER + np.asarray(tau, dtype=np.float64) / 24.0


def datenum_to_datetime(datenum: float | Sequence[float] | np.ndarray) -> pd.DatetimeIndex:
    """
    Convert fractional day numbers back to timestamps.
    """
    days = np.atleast_1d(np.asarray(datenum, dtype=np.float64)) - EPOCH_DAY_NUMBER
    return pd.DatetimeIndex(TAU_EPOCH + pd.to_timedelta(days, unit="D"))


def tau_to_datetime(tau: float | Sequence[float] | np.ndarray) -> pd.DatetimeIndex:
    """
    Convert tau values to timestamps.
    """
    hours = np.atleast_1d(np.asarray(tau, dtype=np.float64))
    return pd.DatetimeIndex(TAU_EPOCH + pd.to_timedelta(hours, unit="h"))


class RecordReader:
    """
    Reader for Fortran unformatted sequential records.

    Each record is framed by a 4-byte length, the payload of that length and
    a trailing copy of the length.

    Parameters
    ----------
    f : BinaryIO
        Seekable binary file object, positioned at the start of a record.
    """

    MARKER: ClassVar[struct.Struct] = struct.Struct(">i")

    def __init__(self, f: BinaryIO):
        self.f = f

    def tell(self) -> int:
        return self.f.tell()

    def seek(self, offset: int) -> None:
        try:
            self.f.seek(offset)
        except (OSError, ValueError) as e:
            raise BPCHReadError(f"Could not seek to offset {offset}") from e
        if self.f.tell() != offset:
            raise BPCHReadError(f"Could not seek to offset {offset}")

    def end_offset(self) -> int:
        """
        Offset of the end of the file. The current position is preserved.
        """
        current = self.f.tell()
        self.f.seek(0, 2)
        end = self.f.tell()
        self.f.seek(current)
        return end

    def _marker(self) -> int:
        raw = self.f.read(self.MARKER.size)
        if len(raw) != self.MARKER.size:
            raise BPCHReadError(f"Unexpected end of file at offset {self.f.tell()}")
        (length,) = self.MARKER.unpack(raw)
        if length < 0:
            raise BPCHReadError(f"Negative record length {length}")
        return length

    def _close_record(self, length: int) -> None:
        trailer = self._marker()
        if trailer != length:
            raise BPCHReadError(
                f"Record length mismatch: header {length}, trailer {trailer}"
            )

    def read(self) -> bytes:
        """
        Read the payload of the next record.
        """
        length = self._marker()
        payload = self.f.read(length)
        if len(payload) != length:
            raise BPCHReadError(
                f"Truncated record: expected {length} bytes, got {len(payload)}"
            )
        self._close_record(length)
        return payload

    def skip(self) -> int:
        """
        Move past the next record without reading its payload.

        Returns
        -------
        int
            The payload length of the skipped record.
        """
        length = self._marker()
        self.f.seek(length, 1)
        self._close_record(length)
        return length

    def read_fields(self, layout: struct.Struct) -> tuple[Any, ...]:
        """
        Read the next record and decode it with a fixed struct layout.
        """
        payload = self.read()
        if len(payload) != layout.size:
            raise BPCHReadError(
                f"Record is {len(payload)} bytes, expected {layout.size}"
            )
        return layout.unpack(payload)

    def read_array(self, dtype: str = ">f4") -> np.ndarray:
        """
        Read the next record as a flat array of `dtype` values.
        """
        payload = self.read()
        itemsize = np.dtype(dtype).itemsize
        if len(payload) % itemsize:
            raise BPCHReadError(
                f"Record of {len(payload)} bytes is not a whole number of {dtype} values"
            )
        return np.frombuffer(payload, dtype=dtype)


@dataclass(frozen=True)
class FileHeader:
    """
    Model description found at the top of every data block.

    Parameters
    ----------
    model_name : str
        Model name, e.g. 'GEOS5_47L'.
    resolution : tuple[float, float]
        Longitude and latitude resolution in degrees.
    half_polar : bool
        True if the model has half-sized boxes at the poles.
    center_180 : bool
        True if the first longitude box is centred on 180 degrees.
    title : str
        Title line of the file.
    file_type : str
        File type tag of the file, e.g. 'CTM bin 02'.
    """

    model_name: str
    resolution: tuple[float, float]
    half_polar: bool
    center_180: bool
    title: str = ""
    file_type: str = ""

    LAYOUT: ClassVar[struct.Struct] = struct.Struct(">20s2f2i")

    @classmethod
    def from_fields(cls, fields: Sequence[Any], **kwargs) -> "FileHeader":
        name, lon_res, lat_res, half_polar, center_180 = fields
        return cls(
            model_name=_decode(name),
            resolution=(float(lon_res), float(lat_res)),
            half_polar=bool(half_polar),
            center_180=bool(center_180),
            **kwargs,
        )

    @property
    def lon_res(self) -> float:
        return self.resolution[0]

    @property
    def lat_res(self) -> float:
        return self.resolution[1]


@dataclass(frozen=True)
class DataBlockHeader:
    """
    Description of one data block: which tracer, when, and how large.

    Parameters
    ----------
    category : str
        Diagnostic category name, e.g. 'IJ-AVG-$'.
    tracer : int
        Tracer number, relative to the category offset.
    unit : str
        Unit string of the data.
    tau0 : float
        Start of the averaging period (hours since 1985-01-01).
    tau1 : float
        End of the averaging period.
    dims : tuple[int, ...]
        NI, NJ, NL, I0, J0, L0.
    nbytes : int
        Length of the payload in bytes.
    """

    category: str
    tracer: int
    unit: str
    tau0: float
    tau1: float
    dims: tuple[int, ...]
    nbytes: int

    LAYOUT: ClassVar[struct.Struct] = struct.Struct(">40si40s2d40s6ii")

    @classmethod
    def from_fields(cls, fields: Sequence[Any]) -> "DataBlockHeader":
        category, tracer, unit, tau0, tau1, _reserved, *rest = fields
        *dims, nbytes = rest
        return cls(
            category=_decode(category),
            tracer=int(tracer),
            unit=_decode(unit),
            tau0=float(tau0),
            tau1=float(tau1),
            dims=tuple(int(d) for d in dims),
            nbytes=int(nbytes),
        )

    @property
    def shape(self) -> tuple[int, ...]:
        """
        Effective shape of the block: NI, NJ, NL with trailing singleton
        axes dropped. Always has at least one axis.
        """
        shape = list(self.dims[:3])
        while len(shape) > 1 and shape[-1] == 1:
            shape.pop()
        return tuple(shape)

    @property
    def start(self) -> tuple[int, ...]:
        """1-based indices (I0, J0, L0) of the first box of the block."""
        return tuple(self.dims[3:6])

    @property
    def size(self) -> int:
        return int(np.prod(self.shape))

    @property
    def taus(self) -> tuple[float, float]:
        return (self.tau0, self.tau1)


def read_file_start(reader: RecordReader) -> tuple[str, str]:
    """
    Read the file type tag and title line at the start of a BPCH file.
    """
    reader.seek(0)
    file_type = _decode(reader.read())
    title = _decode(reader.read())
    return file_type, title


def read_file_header(reader: RecordReader, **kwargs) -> FileHeader:
    """
    Read a model header record at the current position.
    """
    return FileHeader.from_fields(reader.read_fields(FileHeader.LAYOUT), **kwargs)


def read_block_header(reader: RecordReader) -> DataBlockHeader:
    """
    Read a data block header record at the current position.
    """
    return DataBlockHeader.from_fields(reader.read_fields(DataBlockHeader.LAYOUT))


def read_payload(reader: RecordReader, block: DataBlockHeader) -> np.ndarray:
    """
    Read the payload of `block` and reshape it in Fortran order.

    Raises
    ------
    BPCHFormatError
        If the number of values does not match the block dimensions.
    """
    values = reader.read_array(">f4")
    if values.size != block.size:
        raise BPCHFormatError(
            f"Data block for tracer {block.tracer} ({block.category}) holds "
            f"{values.size} values, expected {block.size} for dims {block.shape}"
        )
    return values.astype(np.float64).reshape(block.shape, order="F")
