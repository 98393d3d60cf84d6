"""Writers for synthetic BPCH files and metadata tables."""

import struct

import numpy as np

STANDARD_TITLE = "GEOS-CHEM binary punch file v. 2.0"

TRACERS = [
    # name, full name, weight, carbon, number, scale, unit
    ("NOx", "NOx tracer", 46e-3, 1, 1, 2.0, "ppbv"),
    ("Ox", "Ox tracer", 48e-3, 1, 2, 1.0, "ppbv"),
    ("PSURF", "Surface pressure", 1.0, 1, 1001, 1.0, "hPa"),
]

CATEGORIES = [
    # offset, name, description
    (0, "IJ-AVG-$", "Tracer concentration"),
    (1000, "PEDGE-$", "Pressure at level edges"),
]


def record(payload: bytes) -> bytes:
    marker = struct.pack(">i", len(payload))
    return marker + payload + marker


def block(
    category: str,
    tracer: int,
    values,
    dims=(2, 2, 1),
    tau0: float = 0.0,
    tau1: float = 0.0,
    start=(1, 1, 1),
    model: str = "GEOS5",
    resolution=(5.0, 4.0),
    unit: str = "ppbv",
) -> bytes:
    model_header = struct.pack(
        ">20s2f2i", model.ljust(20).encode(), resolution[0], resolution[1], 1, 0
    )
    payload = np.asarray(values, dtype=">f4").ravel(order="F")
    info = struct.pack(
        ">40si40s2d40s6ii",
        category.ljust(40).encode(),
        tracer,
        unit.ljust(40).encode(),
        tau0,
        tau1,
        b" " * 40,
        *dims,
        *start,
        payload.nbytes,
    )
    return record(model_header) + record(info) + record(payload.tobytes())


def bpch_bytes(blocks, title: str = STANDARD_TITLE) -> bytes:
    return (
        record(b"CTM bin 02".ljust(40))
        + record(title.ljust(80).encode())
        + b"".join(blocks)
    )


def tracerinfo_text(tracers=TRACERS) -> str:
    lines = ["#" + "1234567890" * 8, "# NAME  FULLNAME  MOLWT  C  TRACER  SCALE  UNIT"]
    for name, full, weight, carbon, number, scale, unit in tracers:
        lines.append(
            f"{name:<8} {full:<30}{weight:10.3E}{carbon:3d}{number:9d}{scale:10.3E} {unit}"
        )
    return "\n".join(lines) + "\n"


def diaginfo_text(categories=CATEGORIES) -> str:
    lines = ["# OFFSET NAME DESCRIPTION"]
    for offset, name, description in categories:
        lines.append(f"{offset:8d} {name:<40}{description}")
    return "\n".join(lines) + "\n"


