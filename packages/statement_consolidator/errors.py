"""Exception hierarchy for ``statement_consolidator``.

Failures are contained at the smallest scope that can absorb them:
transaction < file < account group < batch. Only ``BatchError`` aborts a run.
A denied rate-limit check is a boolean, not an exception.
"""

from __future__ import annotations

from typing import Any


class ConsolidationError(Exception):
    """Base class for all errors raised by this package."""


class InvalidFileError(ConsolidationError):
    """A statement file failed format validation; the file is skipped."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"invalid statement file {path}: {reason}")
        self.path = path
        self.reason = reason


class ParseError(ConsolidationError):
    """A statement file (or a row inside it) could not be parsed."""

    def __init__(self, path: str, reason: str, *, line: int | None = None) -> None:
        where = f"{path}:{line}" if line is not None else path
        super().__init__(f"failed to parse {where}: {reason}")
        self.path = path
        self.reason = reason
        self.line = line


class CategorizationError(ConsolidationError):
    """A categorization tier failed for a single transaction."""


class PersistenceError(ConsolidationError):
    """Reading or writing a mapping file failed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"mapping file {path}: {reason}")
        self.path = path
        self.reason = reason


class BatchError(ConsolidationError):
    """Fatal batch condition (e.g. no readable input files at all)."""


class OperationCancelled(ConsolidationError):
    """Cancellation was requested; ``partial`` holds the work finished so far."""

    def __init__(self, message: str, *, partial: Any = None) -> None:
        super().__init__(message)
        self.partial = partial


__all__ = [
    "BatchError",
    "CategorizationError",
    "ConsolidationError",
    "InvalidFileError",
    "OperationCancelled",
    "ParseError",
    "PersistenceError",
]
