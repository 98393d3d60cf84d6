"""
Tracer and diagnostic category metadata.

GEOS-Chem describes the content of its BPCH output in two fixed-width text
files written next to the output: 'tracerinfo.dat' (one line per tracer) and
'diaginfo.dat' (one line per diagnostic category). Checkpoint files for PSC
states and CSPEC concentrations are not described there, so their tables are
synthesized here.
"""

import enum
import io
import logging
from dataclasses import dataclass, field
from pathlib import Path

import pandas as pd

logger = logging.getLogger(__name__)

TRACERINFO_FILE = "tracerinfo.dat"
DIAGINFO_FILE = "diaginfo.dat"
DEFAULT = "default"

# (name, start, width)
TRACERINFO_FMT = (
    ("name", 0, 8),
    ("full_name", 9, 30),
    ("molecular_weight", 39, 10),
    ("carbon", 49, 3),
    ("number", 52, 9),
    ("scale", 61, 10),
    ("unit", 72, 40),
)
DIAGINFO_FMT = (
    ("offset", 0, 8),
    ("name", 9, 40),
    ("description", 49, 9999),
)

PSC_TITLE = "GEOS-CHEM Checkpoint File: Instantaneous PSC state (unitless)"
CSPEC_TITLE = "geos-chem checkpoint file: instantaneous species concentrations (#/cm3)"
KNOWN_TITLES = (
    "geos-chem diag49 instantaneous timeseries",
    "geos-chem binary punch file v. 2.0",
    "geos-chem adj file: instantaneous adjoint concentrations",
)


class FileKind(enum.Enum):
    """Kind of BPCH file, as identified by its title line."""

    KNOWN = "known"
    PSC = "psc"
    CSPEC = "cspec"
    UNKNOWN = "unknown"

    @classmethod
    def from_title(cls, title: str) -> "FileKind":
        title = title.strip().lower()
        if title == PSC_TITLE.lower():
            return cls.PSC
        if title == CSPEC_TITLE.lower():
            return cls.CSPEC
        if title in KNOWN_TITLES:
            return cls.KNOWN
        return cls.UNKNOWN


@dataclass(frozen=True)
class TracerDefinition:
    """
    One line of 'tracerinfo.dat'.

    Parameters
    ----------
    number : int
        Tracer number, including the category offset.
    name : str
        Short tracer id, e.g. 'NOx'.
    full_name : str
        Descriptive name.
    molecular_weight : float
        Molecular weight (kg/mol).
    carbon : float
        Moles of carbon per mole of tracer.
    scale : float
        Factor applied to the raw values stored in the file.
    unit : str
        Unit of the scaled values.
    """

    number: int
    name: str
    full_name: str = ""
    molecular_weight: float = 1.0
    carbon: float = 1.0
    scale: float = 1.0
    unit: str = ""


@dataclass(frozen=True)
class DiagnosticCategory:
    """One line of 'diaginfo.dat'."""

    name: str
    offset: int = 0
    description: str = ""


def _read_fixed_width(path: Path | str, fmt) -> pd.DataFrame:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Metadata file not found: {path}")

    with path.open() as f:
        lines = [
            line.rstrip("\n")
            for line in f
            if line.strip() and not line.startswith("#")
        ]

    names = [name for name, _, _ in fmt]
    if not lines:
        return pd.DataFrame(columns=names)

    colspecs = [(start, start + width) for _, start, width in fmt]
    return pd.read_fwf(
        io.StringIO("\n".join(lines)),
        colspecs=colspecs,
        names=names,
        header=None,
        dtype=str,
        keep_default_na=False,
    )


def _text(value) -> str:
    if pd.isna(value):
        return ""
    return str(value).strip()


def read_tracerinfo(path: Path | str) -> dict[int, TracerDefinition]:
    """
    Read a 'tracerinfo.dat' file.

    Parameters
    ----------
    path : Path or str
        Location of the file.

    Returns
    -------
    dict[int, TracerDefinition]
        Tracer definitions keyed by tracer number, in file order. If a number
        is defined twice the first definition is kept.

    Raises
    ------
    FileNotFoundError
        If `path` does not exist.
    """
    df = _read_fixed_width(path, TRACERINFO_FMT)

    tracers = {}
    for row in df.itertuples(index=False):
        tracer = TracerDefinition(
            number=int(row.number),
            name=_text(row.name),
            full_name=_text(row.full_name),
            molecular_weight=float(_text(row.molecular_weight) or 0.0),
            carbon=float(_text(row.carbon) or 1.0),
            scale=float(_text(row.scale) or 1.0),
            unit=_text(row.unit),
        )
        if tracer.number in tracers:
            logger.debug(
                "Tracer number %d defined twice in %s; keeping '%s'",
                tracer.number,
                path,
                tracers[tracer.number].name,
            )
            continue
        tracers[tracer.number] = tracer
    return tracers


def read_diaginfo(path: Path | str) -> dict[str, DiagnosticCategory]:
    """
    Read a 'diaginfo.dat' file.

    Returns
    -------
    dict[str, DiagnosticCategory]
        Categories keyed by name, in file order.
    """
    df = _read_fixed_width(path, DIAGINFO_FMT)

    categories = {}
    for row in df.itertuples(index=False):
        category = DiagnosticCategory(
            name=_text(row.name),
            offset=int(row.offset),
            description=_text(row.description),
        )
        categories.setdefault(category.name, category)
    return categories


def default_table_path(
    input_file: Path | str, path: Path | str | None, filename: str
) -> Path:
    """
    Resolve the location of a metadata table.

    `path` values of None, '' or 'default' select `filename` in the directory
    of `input_file`.
    """
    if path is None or str(path).strip() == "" or str(path).lower() == DEFAULT:
        return Path(input_file).parent / filename
    return Path(path)


@dataclass
class MetadataTables:
    """
    Tracer and category lookup tables for one BPCH file.

    Parameters
    ----------
    tracers : dict[int, TracerDefinition]
        Tracers keyed by number.
    categories : dict[str, DiagnosticCategory]
        Categories keyed by name. May be empty.
    kind : FileKind
        Kind of the file the tables describe.
    """

    tracers: dict[int, TracerDefinition]
    categories: dict[str, DiagnosticCategory] = field(default_factory=dict)
    kind: FileKind = FileKind.KNOWN

    @classmethod
    def for_file(
        cls,
        title: str,
        tracerinfo: Path | str | None = None,
        diaginfo: Path | str | None = None,
    ) -> "MetadataTables":
        """
        Build the tables for a file with the given title line.

        PSC and CSPEC checkpoint files get a synthetic single tracer,
        single category table; any other file reads `tracerinfo` and
        `diaginfo`.
        """
        kind = FileKind.from_title(title)

        if kind is FileKind.PSC:
            return cls.single(unit="-", category="IJ-PSC-$", kind=kind)
        if kind is FileKind.CSPEC:
            return cls.single(unit="molec/cm3/box", category="IJ-CHK-$", kind=kind)

        if kind is FileKind.UNKNOWN:
            logger.warning("File type '%s' not recognised; attempting to parse.", title)

        if tracerinfo is None or diaginfo is None:
            raise ValueError("tracerinfo and diaginfo paths are required")

        return cls(
            tracers=read_tracerinfo(tracerinfo),
            categories=read_diaginfo(diaginfo),
            kind=kind,
        )

    @classmethod
    def single(cls, unit: str, category: str, kind: FileKind) -> "MetadataTables":
        tracer = TracerDefinition(
            number=1,
            name="STATE_PSC",
            full_name="PSC state",
            molecular_weight=1.0,
            carbon=1.0,
            scale=1.0,
            unit=unit,
        )
        return cls(
            tracers={tracer.number: tracer},
            categories={category: DiagnosticCategory(name=category, offset=0)},
            kind=kind,
        )

    def tracer(self, number: int) -> TracerDefinition | None:
        return self.tracers.get(number)

    def category(self, name: str) -> DiagnosticCategory | None:
        return self.categories.get(name)

    @property
    def tracer_names(self) -> list[str]:
        return [t.name for t in self.tracers.values()]

    @property
    def category_names(self) -> list[str]:
        return list(self.categories)
