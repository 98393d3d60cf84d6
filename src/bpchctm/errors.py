"""
Exceptions and the strict/lenient error-handling policy.

Fatal conditions always propagate as exceptions. Recoverable conditions
(a tracer or category missing from the metadata tables, an identifier that
cannot be sanitized) are routed through an :class:`ErrorPolicy`, which decides
whether the caller skips the offending item or aborts.
"""

import enum
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)


class BPCHError(Exception):
    """Base class for all errors raised while reading BPCH files."""


class BPCHReadError(BPCHError, OSError):
    """A Fortran record could not be read (truncated file, bad framing)."""


class BPCHFormatError(BPCHError, ValueError):
    """A record was read but its content is inconsistent with its header."""


class GridNotRecognizedError(BPCHError, ValueError):
    """The model name / resolution pair does not match a known grid."""


class MissingTracerError(BPCHError, LookupError):
    """A data block refers to a tracer number absent from the tracer table."""

    def __init__(self, number: int):
        self.number = number
        super().__init__(f"Tracer {number} not recorded in tracerinfo.dat")


class MissingCategoryError(BPCHError, LookupError):
    """A data block refers to a category absent from the category table."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Category '{name}' not recorded in diaginfo.dat")


class IdentifierError(BPCHError, ValueError):
    """A name could not be turned into a unique, valid identifier."""


class SampleCountError(BPCHError, ValueError):
    """Tracers of one category were written a different number of times."""


class Outcome(enum.Enum):
    """Result of handling a recoverable error."""

    SUCCESS = "success"
    SKIP = "skip"
    FATAL = "fatal"


@dataclass(frozen=True)
class ErrorPolicy:
    """
    Strategy deciding what happens to recoverable errors.

    Parameters
    ----------
    verbose : bool
        Log a warning for every recoverable error that is skipped.
    brute_force : bool
        Skip recoverable errors instead of aborting.
    """

    verbose: bool = True
    brute_force: bool = False

    @classmethod
    def strict(cls, verbose: bool = True) -> "ErrorPolicy":
        """Policy that aborts on the first recoverable error."""
        return cls(verbose=verbose, brute_force=False)

    @classmethod
    def lenient(cls, verbose: bool = True) -> "ErrorPolicy":
        """Policy that skips recoverable errors."""
        return cls(verbose=verbose, brute_force=True)

    def handle(self, error: BPCHError, action: str = "skipping") -> Outcome:
        """
        Classify a recoverable error.

        Returns ``Outcome.FATAL`` in strict mode; the call site is expected to
        raise `error`. In lenient mode the error is logged (when verbose) and
        ``Outcome.SKIP`` is returned.
        """
        if not self.brute_force:
            return Outcome.FATAL
        self.warn(f"{error} - {action}.")
        return Outcome.SKIP

    def warn(self, message: str, *args) -> None:
        if self.verbose:
            logger.warning(message, *args)
