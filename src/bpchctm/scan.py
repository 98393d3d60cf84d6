"""
Structural scan of a BPCH file.

The first pass over the data blocks decodes only the block headers. It works
out which (category, tracer) pairs the file holds, the spatial shape of each,
and how many time samples every pair has, so that the second pass can
allocate every array once at its final size.
"""

import enum
import logging
from collections import Counter
from dataclasses import dataclass, field

import numpy as np

from bpchctm.dataset import SeriesKey
from bpchctm.errors import (
    BPCHError,
    BPCHFormatError,
    ErrorPolicy,
    MissingCategoryError,
    MissingTracerError,
    Outcome,
    SampleCountError,
)
from bpchctm.metadata import MetadataTables, TracerDefinition
from bpchctm.records import DataBlockHeader, RecordReader, read_block_header

logger = logging.getLogger(__name__)

UNCATEGORIZED_ID = "data"


class CategoryMode(enum.Enum):
    """How data blocks are assigned to categories."""

    CATEGORIZED = "categorized"
    # No category table: everything is stored under UNCATEGORIZED_ID
    UNCATEGORIZED = "uncategorized"


@dataclass(frozen=True)
class Resolution:
    """Result of resolving a data block against the metadata tables."""

    outcome: Outcome
    key: SeriesKey | None = None
    tracer: TracerDefinition | None = None
    error: BPCHError | None = None


class BlockResolver:
    """
    Resolve data block headers to (category, tracer) identifier pairs.

    Parameters
    ----------
    tables : MetadataTables
        Tracer and category tables of the file.
    category_ids : dict[str, str]
        Sanitized id of every category name.
    tracer_ids : dict[int, str]
        Sanitized id of every tracer number.
    policy : ErrorPolicy
        Decides whether unresolved blocks are skipped or fatal.
    """

    def __init__(
        self,
        tables: MetadataTables,
        category_ids: dict[str, str],
        tracer_ids: dict[int, str],
        policy: ErrorPolicy,
    ):
        self.tables = tables
        self.category_ids = category_ids
        self.tracer_ids = tracer_ids
        self.policy = policy
        self._reported: set[tuple[type, str]] = set()

        if tables.categories:
            self.mode = CategoryMode.CATEGORIZED
        else:
            self.mode = CategoryMode.UNCATEGORIZED
            policy.warn(
                "No categories found; storing all tracers under category '%s'.",
                UNCATEGORIZED_ID,
            )

    def resolve(self, block: DataBlockHeader) -> Resolution:
        """Resolve `block` to its identifier pair, or to a skip or fatal outcome."""
        if self.mode is CategoryMode.UNCATEGORIZED:
            category_id, offset = UNCATEGORIZED_ID, 0
        else:
            category = self.tables.category(block.category)
            if category is None:
                return self._unresolved(MissingCategoryError(block.category))
            category_id, offset = self.category_ids[category.name], category.offset

        number = block.tracer + offset
        tracer = self.tables.tracer(number)
        if tracer is None:
            return self._unresolved(MissingTracerError(number))

        return Resolution(
            outcome=Outcome.SUCCESS,
            key=SeriesKey(category_id, self.tracer_ids[number]),
            tracer=tracer,
        )

    def _unresolved(self, error: BPCHError) -> Resolution:
        if not self.policy.brute_force:
            return Resolution(outcome=Outcome.FATAL, error=error)

        # Report each missing tracer / category once, not once per block
        marker = (type(error), str(error))
        if marker in self._reported:
            return Resolution(outcome=Outcome.SKIP, error=error)
        self._reported.add(marker)
        return Resolution(outcome=self.policy.handle(error), error=error)

    @property
    def category_keys(self) -> list[str]:
        """Category ids samples are counted under, in table order."""
        if self.mode is CategoryMode.UNCATEGORIZED:
            return [UNCATEGORIZED_ID]
        return list(dict.fromkeys(self.category_ids.values()))


@dataclass(frozen=True)
class PairLayout:
    """Shape and metadata of a (category, tracer) pair, from its first block."""

    key: SeriesKey
    tracer: TracerDefinition
    dims: tuple[int, ...]
    start: tuple[int, ...]
    unit: str

    @classmethod
    def from_block(
        cls, key: SeriesKey, tracer: TracerDefinition, block: DataBlockHeader
    ) -> "PairLayout":
        return cls(
            key=key,
            tracer=tracer,
            dims=block.shape,
            start=block.start,
            unit=tracer.unit or block.unit,
        )


@dataclass
class ScanResult:
    """
    Structure of the data section of a BPCH file.

    Attributes
    ----------
    mode : CategoryMode
        Whether blocks are stored under their own categories.
    data_start : int
        Offset of the first data block.
    data_end : int
        Offset of the end of the file.
    layouts : dict[SeriesKey, PairLayout]
        Every pair found, in order of first occurrence.
    pair_counts : dict[SeriesKey, int]
        Number of blocks of every pair.
    category_counts : dict[str, float]
        Number of time samples of every category: blocks in the category
        divided by the number of distinct tracers in it.
    n_blocks : int
        Number of data blocks in the file.
    n_skipped : int
        Number of blocks that could not be resolved and were skipped.
    """

    mode: CategoryMode
    data_start: int
    data_end: int
    layouts: dict[SeriesKey, PairLayout] = field(default_factory=dict)
    pair_counts: dict[SeriesKey, int] = field(default_factory=dict)
    category_counts: dict[str, float] = field(default_factory=dict)
    n_blocks: int = 0
    n_skipped: int = 0

    def samples(self, key: SeriesKey) -> int:
        """Number of time samples to allocate for `key`."""
        return self.pair_counts[key]

    @property
    def n_samples(self) -> int:
        return sum(self.pair_counts.values())


def normalize_counts(
    categories: list[str], tallies: Counter, tracers_per_category: Counter
) -> dict[str, float]:
    """
    Divide the per-category block tallies by the number of distinct tracers
    per category. Non-finite results (no tracer seen) become 0.
    """
    tally = np.array([tallies[c] for c in categories], dtype=float)
    n_tracers = np.array([tracers_per_category[c] for c in categories], dtype=float)
    with np.errstate(divide="ignore", invalid="ignore"):
        counts = tally / n_tracers
    counts[~np.isfinite(counts)] = 0.0
    return dict(zip(categories, counts.tolist()))


def check_counts(scan: ScanResult, policy: ErrorPolicy) -> None:
    """
    Check that all tracers of a category have as many samples as the category.

    Raises
    ------
    SampleCountError
        In strict mode, if a category holds tracers with different numbers of
        samples.
    """
    uneven = [
        f"{key}: {count} (category: {scan.category_counts[key.category]:g})"
        for key, count in scan.pair_counts.items()
        if count != scan.category_counts[key.category]
    ]
    if not uneven:
        return
    error = SampleCountError(
        "Tracers within a category have different numbers of samples: "
        + ", ".join(uneven)
    )
    if policy.handle(error, action="sizing each tracer separately") is Outcome.FATAL:
        raise error


def scan_structure(
    reader: RecordReader,
    resolver: BlockResolver,
    data_start: int,
    policy: ErrorPolicy,
) -> ScanResult:
    """
    First pass: walk every data block without reading its payload.

    Parameters
    ----------
    reader : RecordReader
        Reader over the open file.
    resolver : BlockResolver
        Resolves block headers to identifier pairs.
    data_start : int
        Offset of the first data block.
    policy : ErrorPolicy
        Error handling strategy.

    Returns
    -------
    ScanResult

    Raises
    ------
    MissingTracerError, MissingCategoryError
        In strict mode, for blocks the tables do not describe.
    BPCHFormatError
        If a pair changes shape within the file.
    BPCHReadError
        If the file is truncated or malformed.
    """
    reader.seek(data_start)
    scan = ScanResult(
        mode=resolver.mode, data_start=data_start, data_end=reader.end_offset()
    )
    tallies: Counter = Counter()
    pair_counts: Counter = Counter()

    while reader.tell() < scan.data_end:
        # Model header: identical for all blocks, read once up front
        reader.skip()
        block = read_block_header(reader)
        reader.skip()
        scan.n_blocks += 1

        resolution = resolver.resolve(block)
        if resolution.outcome is Outcome.FATAL:
            raise resolution.error
        if resolution.outcome is Outcome.SKIP:
            scan.n_skipped += 1
            continue

        key = resolution.key
        layout = scan.layouts.get(key)
        if layout is None:
            scan.layouts[key] = PairLayout.from_block(key, resolution.tracer, block)
        elif layout.dims != block.shape:
            raise BPCHFormatError(
                f"{key} changes shape from {layout.dims} to {block.shape}"
            )
        pair_counts[key] += 1
        tallies[key.category] += 1

    scan.pair_counts = dict(pair_counts)
    tracers_per_category = Counter(key.category for key in scan.layouts)
    scan.category_counts = normalize_counts(
        resolver.category_keys, tallies, tracers_per_category
    )
    check_counts(scan, policy)

    logger.debug(
        "Scanned %d blocks (%d skipped): %d series in %d categories",
        scan.n_blocks,
        scan.n_skipped,
        len(scan.layouts),
        len(tracers_per_category),
    )
    return scan
